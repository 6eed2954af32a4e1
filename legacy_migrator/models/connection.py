"""Connection settings for source and target databases."""

import os
from typing import Dict, Mapping, Optional
from urllib.parse import parse_qs, unquote, urlparse

from pydantic import BaseModel, Field
from sqlalchemy.engine import URL

LOCAL_HOST_PREFIXES = ("localhost", "127.", "192.168.", "10.")

DRIVERS = {
    "mysql": "mysql+pymysql",
    "postgresql": "postgresql+psycopg",
    "postgres": "postgresql+psycopg",
}

DEFAULT_PORTS = {
    "mysql": 3306,
    "postgresql": 5432,
}


class DatabaseSettings(BaseModel):
    """Where and how to connect to one database."""
    dialect: str = "postgresql"
    host: str = "localhost"
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None
    database: str = ""
    ssl: bool = False
    query: Dict[str, str] = Field(default_factory=dict)

    @property
    def drivername(self) -> str:
        return DRIVERS.get(self.dialect, self.dialect)

    def url(self) -> URL:
        """Build the SQLAlchemy URL."""
        query = dict(self.query)
        if self.dialect == "postgresql":
            query.setdefault("sslmode", "require" if self.ssl else "disable")
        return URL.create(
            self.drivername,
            username=self.username,
            password=self.password,
            host=self.host,
            port=self.port or DEFAULT_PORTS.get(self.dialect),
            database=self.database,
            query=query,
        )

    def safe_description(self) -> str:
        """Host/database string without credentials, for logging."""
        port = self.port or DEFAULT_PORTS.get(self.dialect)
        return f"{self.dialect}://{self.host}:{port}/{self.database}"

    @classmethod
    def from_url(cls, url: str) -> "DatabaseSettings":
        """
        Parse a connection string.

        SSL is off for local and private-network hosts, or when the URL
        says ``sslmode=disable``. Otherwise it is required.
        """
        parsed = urlparse(url)
        scheme = parsed.scheme.split("+")[0]
        if scheme not in DRIVERS:
            raise ValueError(f"Unsupported database URL scheme: {parsed.scheme}")
        dialect = "mysql" if scheme == "mysql" else "postgresql"

        params = {k: v[-1] for k, v in parse_qs(parsed.query).items()}
        sslmode = params.pop("sslmode", None)
        host = parsed.hostname or "localhost"
        if sslmode is not None:
            ssl = sslmode != "disable"
        else:
            ssl = not is_local_host(host)

        return cls(
            dialect=dialect,
            host=host,
            port=parsed.port,
            username=unquote(parsed.username) if parsed.username else None,
            password=unquote(parsed.password) if parsed.password else None,
            database=parsed.path.lstrip("/"),
            ssl=ssl,
            query=params,
        )

    @classmethod
    def from_env(
        cls,
        prefix: str,
        dialect: str = "postgresql",
        env: Optional[Mapping[str, str]] = None,
        user_key: str = "USERNAME",
    ) -> "DatabaseSettings":
        """
        Read ``<prefix>HOST``, ``<prefix>PORT``, ``<prefix><user_key>``,
        ``<prefix>PASSWORD`` and ``<prefix>NAME``.

        The host variable may hold a full connection URL, in which case the
        other variables are ignored.
        """
        env = os.environ if env is None else env
        host = env.get(f"{prefix}HOST")
        if host and "://" in host:
            return cls.from_url(host)

        missing = [
            f"{prefix}{key}"
            for key in ("HOST", user_key, "PASSWORD", "NAME")
            if env.get(f"{prefix}{key}") in (None, "")
        ]
        if missing:
            raise ValueError(f"Missing database configuration: {', '.join(missing)}")

        port = env.get(f"{prefix}PORT")
        return cls(
            dialect=dialect,
            host=host,
            port=int(port) if port else DEFAULT_PORTS.get(dialect),
            username=env[f"{prefix}{user_key}"],
            password=env[f"{prefix}PASSWORD"],
            database=env[f"{prefix}NAME"],
            ssl=not is_local_host(host),
        )


def is_local_host(host: str) -> bool:
    return host.startswith(LOCAL_HOST_PREFIXES)


def mysql_source_settings(env: Optional[Mapping[str, str]] = None) -> DatabaseSettings:
    """Legacy MySQL source from DATABASE_* variables."""
    return DatabaseSettings.from_env("DATABASE_", dialect="mysql", env=env, user_key="USER")


def local_pg_settings(env: Optional[Mapping[str, str]] = None) -> DatabaseSettings:
    return DatabaseSettings.from_env("PG_DB_", env=env)


def remote_pg_settings(env: Optional[Mapping[str, str]] = None) -> DatabaseSettings:
    return DatabaseSettings.from_env("REMOTE_PG_DB_", env=env)
