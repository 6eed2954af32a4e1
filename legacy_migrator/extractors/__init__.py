"""Source database extractors."""

from .base import (
    BaseExtractor,
    ExtractionResult,
    RetryPolicy,
    SourceConnectionError,
    SourceTableMissing,
)
from .database_extractor import DatabaseExtractor

__all__ = [
    "BaseExtractor",
    "ExtractionResult",
    "RetryPolicy",
    "SourceConnectionError",
    "SourceTableMissing",
    "DatabaseExtractor",
]
