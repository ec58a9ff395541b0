"""Catalog store protocol for chunkdrive."""

from typing import Protocol

from chunkdrive.catalog.models import StoredObject, UsageSummary, User


class CatalogStore(Protocol):
    """Protocol defining the object catalog and user directory.

    Every mutation of a stored object is a single field-level update that
    also bumps ``updated_at``; implementations must not read-modify-write.
    """

    async def init_db(self) -> None:
        """Create the schema if needed. Must be idempotent."""
        ...

    async def close(self) -> None:
        """Close the database connection and release resources."""
        ...

    async def ping(self) -> None:
        """Raise if the catalog is not usable."""
        ...

    # -- Stored objects --------------------------------------------------------

    async def insert_object(self, obj: StoredObject) -> None:
        """Insert a new catalog record."""
        ...

    async def get_object(self, object_id: str) -> StoredObject | None:
        """Return a record by id, or None if it does not exist."""
        ...

    async def delete_object(self, object_id: str) -> StoredObject | None:
        """Delete a record and return it, or None if it did not exist."""
        ...

    async def chunk_set_ids(self) -> set[str]:
        """Return the chunk set ids referenced by catalog records."""
        ...

    async def rename_object(self, object_id: str, name: str) -> bool:
        """Set ``name``. Returns False if the record does not exist."""
        ...

    async def set_shared_with(self, object_id: str, emails: list[str]) -> bool:
        """Replace the share list. Returns False if the record does not exist."""
        ...

    async def set_public(self, object_id: str, is_public: bool) -> bool:
        """Set the public flag. Returns False if the record does not exist."""
        ...

    async def set_tags(self, object_id: str, tags: list[str]) -> bool:
        """Replace the tag list. Returns False if the record does not exist."""
        ...

    async def list_objects(
        self,
        owner_id: str,
        owner_email: str,
        types: list[str] | None = None,
        search: str = "",
        sort_column: str = "created_at",
        descending: bool = True,
        limit: int = 100,
    ) -> tuple[int, list[StoredObject]]:
        """List records owned by or shared with a user.

        Returns:
            ``(total, page)`` where ``total`` ignores ``limit``.
        """
        ...

    async def aggregate_usage(
        self, owner_id: str, owner_email: str, quota: int = 0
    ) -> UsageSummary:
        """Sum sizes per file type over the same ownership filter as listing."""
        ...

    # -- Users -----------------------------------------------------------------

    async def create_user(
        self, full_name: str, email: str, password_hash: str, avatar: str = ""
    ) -> User:
        """Create a user. Raises EmailInUse if the email is taken."""
        ...

    async def get_user(self, user_id: str) -> User | None:
        ...

    async def get_user_by_email(self, email: str) -> User | None:
        ...

    async def search_users(self, query: str, limit: int = 10) -> list[User]:
        """Case-insensitive substring search over email and full name."""
        ...
