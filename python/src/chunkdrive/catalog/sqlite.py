"""SQLite-backed catalog for chunkdrive.

Implements the CatalogStore protocol using aiosqlite for async access.
All tables use CREATE TABLE IF NOT EXISTS for schema idempotency.
Share lists and tags are stored as JSON arrays; membership tests use the
json_each() table-valued function.
"""

import json
import logging
import uuid
from typing import Any

import aiosqlite

from chunkdrive.catalog.models import (
    SCHEMA_VERSION,
    StoredObject,
    TypeUsage,
    UsageSummary,
    User,
)
from chunkdrive.errors import EmailInUse
from chunkdrive.timestamps import now_iso
from chunkdrive.validation import FILE_TYPES

logger = logging.getLogger(__name__)

_SORTABLE_COLUMNS = frozenset({"created_at", "updated_at", "name", "size", "type"})

# Row visible to a user: owned by them, or their email is in the share list.
_VISIBLE_TO = (
    "(owner_id = ? OR EXISTS "
    "(SELECT 1 FROM json_each(files.shared_with) WHERE json_each.value = ?))"
)


class SQLiteCatalog:
    """Catalog backed by a local SQLite database.

    Attributes:
        db_path: Path to the SQLite database file.
        _db: The aiosqlite connection, set after init_db().
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the SQLite catalog.

        Args:
            db_path: Filesystem path to the SQLite database file.
                     Use ':memory:' for an in-memory database (useful in tests).
        """
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def init_db(self) -> None:
        """Open the database and create tables if they do not exist.

        Sets WAL journal mode, NORMAL synchronous and a 5-second busy timeout.
        Idempotent: safe to call on every startup.
        """
        if self._db is None:
            self._db = await aiosqlite.connect(self.db_path)
            self._db.row_factory = aiosqlite.Row

            await self._db.execute("PRAGMA journal_mode = WAL")
            await self._db.execute("PRAGMA synchronous = NORMAL")
            await self._db.execute("PRAGMA busy_timeout = 5000")

        await self._create_tables()

    async def _create_tables(self) -> None:
        """Create all tables and indexes if they do not already exist.

        Checks sqlite_master first to skip DDL on warm starts.
        """
        assert self._db is not None

        async with self._db.execute(
            "SELECT 1 FROM sqlite_master WHERE type='table' AND name='catalog_schema_version'"
        ) as cursor:
            if await cursor.fetchone() is not None:
                return

        await self._db.executescript("""
            CREATE TABLE IF NOT EXISTS files (
                id              TEXT PRIMARY KEY,
                name            TEXT NOT NULL,
                url             TEXT NOT NULL DEFAULT '',
                content_type    TEXT NOT NULL DEFAULT 'application/octet-stream',
                size            INTEGER NOT NULL,
                chunk_set_id    TEXT NOT NULL UNIQUE,
                owner_id        TEXT NOT NULL,
                account_id      TEXT NOT NULL DEFAULT '',
                shared_with     TEXT NOT NULL DEFAULT '[]',
                is_public       INTEGER NOT NULL DEFAULT 0,
                type            TEXT NOT NULL DEFAULT 'other',
                extension       TEXT NOT NULL DEFAULT '',
                tags            TEXT NOT NULL DEFAULT '[]',
                created_at      TEXT NOT NULL,
                updated_at      TEXT NOT NULL,
                schema_version  INTEGER NOT NULL DEFAULT 1
            );

            CREATE INDEX IF NOT EXISTS idx_files_owner_created
                ON files(owner_id, created_at DESC);
            CREATE INDEX IF NOT EXISTS idx_files_name
                ON files(name);

            CREATE TABLE IF NOT EXISTS users (
                id             TEXT PRIMARY KEY,
                full_name      TEXT NOT NULL,
                email          TEXT NOT NULL UNIQUE,
                avatar         TEXT NOT NULL DEFAULT '',
                password_hash  TEXT NOT NULL,
                created_at     TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS catalog_schema_version (
                version    INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            );
        """)

        await self._db.execute(
            "INSERT OR IGNORE INTO catalog_schema_version (version, applied_at) VALUES (?, ?)",
            (SCHEMA_VERSION, now_iso()),
        )
        await self._db.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def ping(self) -> None:
        assert self._db is not None
        async with self._db.execute("SELECT 1") as cursor:
            await cursor.fetchone()

    # -- Row conversion --------------------------------------------------------

    @staticmethod
    def _row_to_object(row: aiosqlite.Row) -> StoredObject:
        data: dict[str, Any] = dict(row)
        data["shared_with"] = _load_json_list(data.get("shared_with"))
        data["tags"] = _load_json_list(data.get("tags"))
        data["is_public"] = bool(data.get("is_public"))
        return StoredObject.model_validate(data)

    # -- Stored objects --------------------------------------------------------

    async def insert_object(self, obj: StoredObject) -> None:
        """Insert a new catalog record.

        Args:
            obj: The validated record. Its id must be new.
        """
        assert self._db is not None
        await self._db.execute(
            """INSERT INTO files
               (id, name, url, content_type, size, chunk_set_id, owner_id, account_id,
                shared_with, is_public, type, extension, tags, created_at, updated_at,
                schema_version)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                obj.id,
                obj.name,
                obj.url,
                obj.content_type,
                obj.size,
                obj.chunk_set_id,
                obj.owner_id,
                obj.account_id,
                json.dumps(obj.shared_with),
                int(obj.is_public),
                obj.type,
                obj.extension,
                json.dumps(obj.tags),
                obj.created_at,
                obj.updated_at,
                obj.schema_version,
            ),
        )
        await self._db.commit()

    async def get_object(self, object_id: str) -> StoredObject | None:
        """Retrieve a single record.

        Args:
            object_id: The object identifier.

        Returns:
            The record, or None if it does not exist.
        """
        assert self._db is not None
        async with self._db.execute("SELECT * FROM files WHERE id = ?", (object_id,)) as cursor:
            row = await cursor.fetchone()
        return None if row is None else self._row_to_object(row)

    async def delete_object(self, object_id: str) -> StoredObject | None:
        """Delete a record.

        Args:
            object_id: The object identifier.

        Returns:
            The deleted record, or None if there was nothing to delete.
        """
        assert self._db is not None
        obj = await self.get_object(object_id)
        if obj is None:
            return None
        await self._db.execute("DELETE FROM files WHERE id = ?", (object_id,))
        await self._db.commit()
        return obj

    async def chunk_set_ids(self) -> set[str]:
        """Return the chunk set id of every catalog record."""
        assert self._db is not None
        async with self._db.execute("SELECT chunk_set_id FROM files") as cursor:
            rows = await cursor.fetchall()
        return {r[0] for r in rows}

    async def _update_field(self, object_id: str, column: str, value: Any) -> bool:
        """Set one column and bump updated_at in a single statement."""
        assert self._db is not None
        cursor = await self._db.execute(
            f"UPDATE files SET {column} = ?, updated_at = ? WHERE id = ?",
            (value, now_iso(), object_id),
        )
        updated = cursor.rowcount > 0
        await cursor.close()
        await self._db.commit()
        return updated

    async def rename_object(self, object_id: str, name: str) -> bool:
        return await self._update_field(object_id, "name", name)

    async def set_shared_with(self, object_id: str, emails: list[str]) -> bool:
        return await self._update_field(object_id, "shared_with", json.dumps(emails))

    async def set_public(self, object_id: str, is_public: bool) -> bool:
        return await self._update_field(object_id, "is_public", int(is_public))

    async def set_tags(self, object_id: str, tags: list[str]) -> bool:
        return await self._update_field(object_id, "tags", json.dumps(tags))

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

        Args:
            owner_id: The user's id.
            owner_email: The user's email, matched against share lists.
            types: If non-empty, only these file types.
            search: Case-insensitive substring that must occur in the name.
            sort_column: One of created_at, updated_at, name, size, type.
            descending: Sort direction.
            limit: Maximum number of records returned.

        Returns:
            ``(total, page)``; ``total`` counts every match, ignoring ``limit``.
        """
        assert self._db is not None
        if sort_column not in _SORTABLE_COLUMNS:
            raise ValueError(f"Unsupported sort column: {sort_column}")

        where = [_VISIBLE_TO]
        params: list[Any] = [owner_id, owner_email.lower()]
        if types:
            where.append(f"type IN ({', '.join('?' for _ in types)})")
            params.extend(types)
        if search:
            where.append("instr(lower(name), ?) > 0")
            params.append(search.lower())
        where_sql = " AND ".join(where)

        async with self._db.execute(
            f"SELECT COUNT(*) FROM files WHERE {where_sql}", params
        ) as cursor:
            row = await cursor.fetchone()
            total = row[0] if row else 0

        direction = "DESC" if descending else "ASC"
        async with self._db.execute(
            f"SELECT * FROM files WHERE {where_sql} "
            f"ORDER BY {sort_column} {direction}, id ASC LIMIT ?",
            [*params, limit],
        ) as cursor:
            rows = await cursor.fetchall()

        return total, [self._row_to_object(r) for r in rows]

    async def aggregate_usage(
        self, owner_id: str, owner_email: str, quota: int = 0
    ) -> UsageSummary:
        """Sum sizes and latest creation time per file type.

        Every known type appears in the result, with zero size and an empty
        date when the user has no files of that type.
        """
        assert self._db is not None
        by_type = {t: TypeUsage() for t in FILE_TYPES}
        async with self._db.execute(
            f"""SELECT type, COALESCE(SUM(size), 0), MAX(created_at)
                FROM files WHERE {_VISIBLE_TO} GROUP BY type""",
            (owner_id, owner_email.lower()),
        ) as cursor:
            rows = await cursor.fetchall()

        used = 0
        for file_type, size, latest in rows:
            by_type[file_type] = TypeUsage(size=size, latest_date=latest or "")
            used += size
        return UsageSummary(by_type=by_type, used=used, all=quota)

    # -- Users -----------------------------------------------------------------

    async def create_user(
        self, full_name: str, email: str, password_hash: str, avatar: str = ""
    ) -> User:
        """Create a user.

        Args:
            full_name: Display name.
            email: Email address; stored lowercased and unique.
            password_hash: Serialized password hash.
            avatar: Avatar URL.

        Returns:
            The created user.

        Raises:
            EmailInUse: If another user already has this email.
        """
        assert self._db is not None
        user = User(
            id=uuid.uuid4().hex,
            full_name=full_name,
            email=email.lower(),
            avatar=avatar,
            password_hash=password_hash,
            created_at=now_iso(),
        )
        # The connection is shared across requests; never roll it back.
        cursor = await self._db.execute(
            """INSERT INTO users (id, full_name, email, avatar, password_hash, created_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(email) DO NOTHING""",
            (
                user.id,
                user.full_name,
                user.email,
                user.avatar,
                user.password_hash,
                user.created_at,
            ),
        )
        inserted = cursor.rowcount > 0
        await cursor.close()
        await self._db.commit()
        if not inserted:
            raise EmailInUse()
        logger.info("Created user %s", user.id, extra={"owner_id": user.id})
        return user

    async def get_user(self, user_id: str) -> User | None:
        assert self._db is not None
        async with self._db.execute("SELECT * FROM users WHERE id = ?", (user_id,)) as cursor:
            row = await cursor.fetchone()
        return None if row is None else User.model_validate(dict(row))

    async def get_user_by_email(self, email: str) -> User | None:
        assert self._db is not None
        async with self._db.execute(
            "SELECT * FROM users WHERE email = ?", (email.lower(),)
        ) as cursor:
            row = await cursor.fetchone()
        return None if row is None else User.model_validate(dict(row))

    async def search_users(self, query: str, limit: int = 10) -> list[User]:
        """Case-insensitive substring search over email and full name.

        Args:
            query: Literal text to look for (no wildcards).
            limit: Maximum number of users returned.

        Returns:
            Matching users ordered by name.
        """
        assert self._db is not None
        needle = query.lower()
        async with self._db.execute(
            """SELECT * FROM users
               WHERE instr(lower(email), ?) > 0 OR instr(lower(full_name), ?) > 0
               ORDER BY full_name ASC, email ASC LIMIT ?""",
            (needle, needle, limit),
        ) as cursor:
            rows = await cursor.fetchall()
        return [User.model_validate(dict(r)) for r in rows]


def _load_json_list(value: Any) -> list[str]:
    """Decode a JSON array column, treating anything malformed as empty."""
    if not value:
        return []
    try:
        decoded = json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return []
    return [str(v) for v in decoded] if isinstance(decoded, list) else []
