"""Object catalog and user directory for chunkdrive."""

from typing import TYPE_CHECKING

from chunkdrive.catalog.models import StoredObject, TypeUsage, UsageSummary, User
from chunkdrive.catalog.store import CatalogStore

if TYPE_CHECKING:
    from chunkdrive.config import StorageConfig

__all__ = [
    "CatalogStore",
    "create_catalog",
    "StoredObject",
    "TypeUsage",
    "UsageSummary",
    "User",
]


def create_catalog(config: "StorageConfig") -> CatalogStore:
    """Create the catalog described by the storage configuration.

    The catalog shares the chunk store's database file.
    """
    from chunkdrive.catalog.sqlite import SQLiteCatalog

    return SQLiteCatalog(config.sqlite_path)
