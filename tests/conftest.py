"""Shared fixtures: in-memory SQLite databases standing in for the legacy source and the new target."""

import pytest
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    Time,
    create_engine,
)
from sqlalchemy.pool import StaticPool

from legacy_migrator.extractors.database_extractor import DatabaseExtractor
from legacy_migrator.loaders.database_loader import DatabaseLoader
from legacy_migrator.models.migration import MigrationConfig
from legacy_migrator.services.mapping import MappingRegistry
from legacy_migrator.services.statistics import StatisticsAggregator

# Legacy schema: integer flags, JSON stored as text, organisation referenced by organisationRef
LEGACY = MetaData()

Table(
    "organisation", LEGACY,
    Column("uid", Integer, primary_key=True),
    Column("name", String(100)),
    Column("email", String(100)),
    Column("ref", String(50)),
    Column("status", String(20)),
    Column("isDeleted", Integer, default=0),
    Column("address", Text),
)

Table(
    "branch", LEGACY,
    Column("uid", Integer, primary_key=True),
    Column("name", String(100)),
    Column("email", String(100)),
    Column("ref", String(50)),
    Column("organisationRef", Integer),
)

Table(
    "users", LEGACY,
    Column("uid", Integer, primary_key=True),
    Column("email", String(100)),
    Column("username", String(100)),
    Column("name", String(100)),
    Column("organisationRef", Integer),
    Column("branchUid", Integer),
    Column("managedBranches", Text),
    Column("managedDoors", Text),
    Column("managedStaff", Text),
    Column("updatedAt", DateTime),
)

Table(
    "attendance", LEGACY,
    Column("uid", Integer, primary_key=True),
    Column("owner", Integer),
    Column("checkIn", DateTime),
    Column("createdAt", DateTime),
    Column("status", String(20)),
)

Table(
    "order", LEGACY,
    Column("uid", Integer, primary_key=True),
    Column("orderNumber", String(50)),
    Column("placedBy", Integer),
    Column("organisationRef", Integer),
    Column("branchUid", Integer),
    Column("totalAmount", Integer),
    Column("createdAt", DateTime),
)

Table(
    "order_item", LEGACY,
    Column("uid", Integer, primary_key=True),
    Column("orderId", Integer),
    Column("quantity", Integer),
    Column("unitPrice", Integer),
    Column("createdAt", DateTime),
)

Table(
    "journal", LEGACY,
    Column("uid", Integer, primary_key=True),
    Column("owner", Integer),
    Column("organisationRef", Integer),
    Column("branchUid", Integer),
    Column("comments", Text),
    Column("createdAt", DateTime),
)

Table(
    "asset", LEGACY,
    Column("uid", Integer, primary_key=True),
    Column("owner", Integer),
    Column("organisationRef", Integer),
    Column("brand", String(50)),
    Column("serialNumber", String(50)),
    Column("createdAt", DateTime),
)

Table(
    "feedback", LEGACY,
    Column("uid", Integer, primary_key=True),
    Column("token", String(50)),
    Column("title", String(100)),
    Column("organisationRef", Integer),
    Column("createdAt", DateTime),
)

Table(
    "reseller", LEGACY,
    Column("uid", Integer, primary_key=True),
    Column("name", String(100)),
    Column("organisationRef", Integer),
    Column("createdAt", DateTime),
)

Table(
    "banners", LEGACY,
    Column("uid", Integer, primary_key=True),
    Column("title", String(100)),
    Column("organisationRef", Integer),
    Column("createdAt", DateTime),
)

Table(
    "project", LEGACY,
    Column("uid", Integer, primary_key=True),
    Column("name", String(100)),
    Column("organisationRef", Integer),
    Column("isDeleted", Integer, default=0),
    Column("createdAt", DateTime),
)

# New schema
TARGET = MetaData()

Table(
    "organisation", TARGET,
    Column("uid", Integer, primary_key=True),
    Column("name", String(100)),
    Column("email", String(100)),
    Column("ref", String(50), unique=True),
    Column("status", String(20)),
    Column("isDeleted", Boolean, default=False),
    Column("address", JSON),
    Column("updatedAt", DateTime),
)

Table(
    "branch", TARGET,
    Column("uid", Integer, primary_key=True),
    Column("name", String(100)),
    Column("email", String(100)),
    Column("ref", String(50)),
    Column("status", String(20)),
    Column("country", String(10)),
    Column("isDeleted", Boolean, default=False),
    Column("address", JSON),
    Column("organisationUid", Integer, ForeignKey("organisation.uid")),
)

Table(
    "users", TARGET,
    Column("uid", Integer, primary_key=True),
    Column("username", String(100)),
    Column("password", String(100)),
    Column("name", String(100)),
    Column("email", String(100)),
    Column("role", String(20)),
    Column("status", String(20)),
    Column("accessLevel", String(20)),
    Column("photoURL", String(200)),
    Column("avatar", String(200)),
    Column("organisationRef", String(20)),
    Column("organisationUid", Integer),
    Column("branchUid", Integer),
    Column("managedBranches", Text),
    Column("managedDoors", Text),
    Column("managedStaff", Text),
    Column("assignedClientIds", Text),
    Column("preferences", JSON),
    Column("updatedAt", DateTime),
)

Table(
    "organisation_hours", TARGET,
    Column("uid", Integer, primary_key=True),
    Column("ref", String(50)),
    Column("openTime", Time),
    Column("closeTime", Time),
    Column("weeklySchedule", JSON),
    Column("timezone", String(50)),
    Column("holidayMode", Boolean, default=False),
    Column("isDeleted", Boolean, default=False),
    Column("organisationUid", Integer),
)

Table(
    "order", TARGET,
    Column("uid", Integer, primary_key=True),
    Column("orderNumber", String(50)),
    Column("placedByUid", Integer),
    Column("organisationUid", Integer),
    Column("branchUid", Integer),
    Column("totalAmount", Integer),
    Column("totalItems", Integer),
    Column("status", String(30)),
    Column("createdAt", DateTime),
)

Table(
    "order_item", TARGET,
    Column("uid", Integer, primary_key=True),
    Column("orderUid", Integer),
    Column("quantity", Integer),
    Column("unitPrice", Integer),
    Column("totalPrice", Integer),
    Column("isShipped", Boolean),
    Column("createdAt", DateTime),
)

Table(
    "journal", TARGET,
    Column("uid", Integer, primary_key=True),
    Column("ownerUid", Integer),
    Column("organisationUid", Integer),
    Column("branchUid", Integer),
    Column("comments", Text),
    Column("isDeleted", Boolean),
    Column("createdAt", DateTime),
)

Table(
    "asset", TARGET,
    Column("uid", Integer, primary_key=True),
    Column("ownerUid", Integer),
    Column("organisationUid", Integer),
    Column("branchUid", Integer),
    Column("brand", String(50)),
    Column("serialNumber", String(50)),
    Column("isDeleted", Boolean),
    Column("createdAt", DateTime),
)

Table(
    "feedback", TARGET,
    Column("uid", Integer, primary_key=True),
    Column("token", String(50)),
    Column("title", String(100)),
    Column("organisationUid", Integer),
    Column("branchUid", Integer),
    Column("createdAt", DateTime),
)

Table(
    "reseller", TARGET,
    Column("uid", Integer, primary_key=True),
    Column("name", String(100)),
    Column("organisationUid", Integer),
    Column("branchUid", Integer),
    Column("createdAt", DateTime),
)

Table(
    "banners", TARGET,
    Column("uid", Integer, primary_key=True),
    Column("title", String(100)),
    Column("organisationUid", Integer),
    Column("branchUid", Integer),
    Column("createdAt", DateTime),
)

Table(
    "project", TARGET,
    Column("uid", Integer, primary_key=True),
    Column("name", String(100)),
    Column("organisationUid", Integer),
    Column("branchUid", Integer),
    Column("isDeleted", Boolean),
    Column("createdAt", DateTime),
)


def _memory_engine():
    return create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


@pytest.fixture
def source_engine():
    """Legacy database with the legacy schema and no rows."""
    engine = _memory_engine()
    LEGACY.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def target_engine():
    """New database with the target schema and no rows."""
    engine = _memory_engine()
    TARGET.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def remote_engine():
    """A second database with the target schema, for verbatim copies."""
    engine = _memory_engine()
    TARGET.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def extractor(source_engine):
    return DatabaseExtractor(source_engine, sleep=lambda _: None)


@pytest.fixture
def loader(target_engine):
    loader = DatabaseLoader(target_engine)
    loader.connect()
    yield loader
    loader.close()


@pytest.fixture
def mappings():
    return MappingRegistry()


@pytest.fixture
def stats():
    return StatisticsAggregator()


@pytest.fixture
def config():
    return MigrationConfig()


def insert_rows(engine, table_name, metadata, rows):
    """Seed ``rows`` into ``table_name``."""
    with engine.begin() as conn:
        for row in rows:
            conn.execute(metadata.tables[table_name].insert(), row)


def fetch_all(engine, table_name, metadata):
    """All rows of ``table_name`` as dicts, ordered by primary key."""
    table = metadata.tables[table_name]
    pk = list(table.primary_key.columns)[0]
    with engine.connect() as conn:
        return [dict(r) for r in conn.execute(table.select().order_by(pk)).mappings()]
