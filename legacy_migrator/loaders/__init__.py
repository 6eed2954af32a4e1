"""Target database loaders."""

from .base import BaseLoader, ConstraintRestoreError, TargetConnectionError
from .database_loader import DatabaseLoader

__all__ = [
    "BaseLoader",
    "ConstraintRestoreError",
    "TargetConnectionError",
    "DatabaseLoader",
]
