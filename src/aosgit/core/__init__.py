"""Core engine layer for aosgit.

This module provides version ordering, snapshot expansion, commit chain
construction and repository materialization.
"""

from aosgit.core.catalog import CatalogEntry, CatalogError, CatalogParseError, Version, VersionCatalog
from aosgit.core.fetch import FetchError, NotFoundError
from aosgit.core.history import History, HistoryBuilder, ReleaseComponent, ReleasePoint
from aosgit.core.repository import (
    DestinationNotEmptyError,
    RefWriteError,
    RepositoryWriter,
    RepositoryWriterError,
    materialize,
)
from aosgit.core.snapshot import ArchiveError, SnapshotExpander

__all__ = [
    "CatalogEntry",
    "CatalogError",
    "CatalogParseError",
    "Version",
    "VersionCatalog",
    "FetchError",
    "NotFoundError",
    "History",
    "HistoryBuilder",
    "ReleaseComponent",
    "ReleasePoint",
    "RepositoryWriter",
    "RepositoryWriterError",
    "RefWriteError",
    "DestinationNotEmptyError",
    "materialize",
    "ArchiveError",
    "SnapshotExpander",
]
