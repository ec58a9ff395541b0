"""Tests for the SQLite catalog.

Each test gets its own fresh SQLiteCatalog instance backed by a temp file.
"""

import asyncio
import uuid

import pytest

from chunkdrive.catalog.models import StoredObject
from chunkdrive.catalog.sqlite import SQLiteCatalog
from chunkdrive.errors import EmailInUse

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def store(tmp_path):
    """Create a fresh SQLiteCatalog for each test."""
    s = SQLiteCatalog(str(tmp_path / "catalog.db"))
    await s.init_db()
    yield s
    await s.close()


def make_object(
    owner_id: str = "owner1",
    name: str = "a.txt",
    size: int = 10,
    type: str = "document",
    created_at: str = "2024-01-01T00:00:00.000Z",
    shared_with: list[str] | None = None,
) -> StoredObject:
    object_id = uuid.uuid4().hex
    return StoredObject(
        id=object_id,
        name=name,
        url=f"/api/files/{object_id}",
        content_type="text/plain",
        size=size,
        chunk_set_id=uuid.uuid4().hex,
        owner_id=owner_id,
        account_id=owner_id,
        shared_with=shared_with or [],
        type=type,
        extension=name.rpartition(".")[2] if "." in name else "",
        created_at=created_at,
        updated_at=created_at,
    )


# ---------------------------------------------------------------------------
# Schema idempotency
# ---------------------------------------------------------------------------


class TestSchemaIdempotency:
    async def test_init_db_twice(self, tmp_path):
        """Calling init_db twice on the same DB does not raise."""
        s = SQLiteCatalog(str(tmp_path / "idempotent.db"))
        await s.init_db()
        await s.init_db()
        await s.close()

    async def test_schema_version_exists(self, store):
        async with store._db.execute("SELECT version FROM catalog_schema_version") as cursor:
            row = await cursor.fetchone()
        assert row[0] == 1


# ---------------------------------------------------------------------------
# Stored objects
# ---------------------------------------------------------------------------


class TestObjects:
    async def test_insert_and_get(self, store):
        obj = make_object(shared_with=["b@x.com"])
        await store.insert_object(obj)
        loaded = await store.get_object(obj.id)
        assert loaded == obj

    async def test_chunk_set_ids(self, store):
        first, second = make_object(), make_object()
        await store.insert_object(first)
        await store.insert_object(second)
        await store.delete_object(second.id)
        assert await store.chunk_set_ids() == {first.chunk_set_id}

    async def test_get_missing_returns_none(self, store):
        assert await store.get_object("0" * 32) is None

    async def test_delete_returns_record_once(self, store):
        obj = make_object()
        await store.insert_object(obj)
        deleted = await store.delete_object(obj.id)
        assert deleted is not None and deleted.id == obj.id
        assert await store.delete_object(obj.id) is None
        assert await store.get_object(obj.id) is None

    async def test_rename_bumps_updated_at(self, store):
        obj = make_object()
        await store.insert_object(obj)
        assert await store.rename_object(obj.id, "b.txt") is True
        loaded = await store.get_object(obj.id)
        assert loaded.name == "b.txt"
        assert loaded.updated_at > obj.updated_at
        assert loaded.created_at == obj.created_at

    async def test_field_updates_are_independent(self, store):
        """Each mutation touches only its own field."""
        obj = make_object()
        await store.insert_object(obj)
        await store.set_tags(obj.id, ["invoice", "pdf"])
        await store.rename_object(obj.id, "renamed.txt")
        await store.set_shared_with(obj.id, ["c@x.com"])
        await store.set_public(obj.id, True)
        loaded = await store.get_object(obj.id)
        assert loaded.tags == ["invoice", "pdf"]
        assert loaded.name == "renamed.txt"
        assert loaded.shared_with == ["c@x.com"]
        assert loaded.is_public is True

    async def test_updates_on_missing_object_return_false(self, store):
        missing = "0" * 32
        assert await store.rename_object(missing, "x") is False
        assert await store.set_tags(missing, ["a"]) is False
        assert await store.set_shared_with(missing, []) is False
        assert await store.set_public(missing, True) is False


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class TestListObjects:
    @pytest.fixture
    async def populated(self, store):
        objs = [
            make_object(name="Report.pdf", size=300, type="document",
                        created_at="2024-01-03T00:00:00.000Z"),
            make_object(name="photo.png", size=200, type="image",
                        created_at="2024-01-02T00:00:00.000Z"),
            make_object(name="song.mp3", size=100, type="audio",
                        created_at="2024-01-01T00:00:00.000Z"),
            make_object(owner_id="owner2", name="shared-report.txt", size=50,
                        type="document", created_at="2024-01-04T00:00:00.000Z",
                        shared_with=["one@x.com"]),
            make_object(owner_id="owner2", name="private.txt", size=70,
                        type="document", created_at="2024-01-05T00:00:00.000Z"),
        ]
        for o in objs:
            await store.insert_object(o)
        return store

    async def test_owned_and_shared_newest_first(self, populated):
        total, page = await populated.list_objects("owner1", "one@x.com")
        assert total == 4
        assert [o.name for o in page] == [
            "shared-report.txt",
            "Report.pdf",
            "photo.png",
            "song.mp3",
        ]

    async def test_share_match_is_case_insensitive(self, populated):
        total, _ = await populated.list_objects("nobody", "ONE@X.COM")
        assert total == 1

    async def test_type_filter(self, populated):
        total_all, _ = await populated.list_objects("owner1", "one@x.com")
        total, page = await populated.list_objects("owner1", "one@x.com", types=["document"])
        assert {o.type for o in page} == {"document"}
        assert total == 2
        _, excluded = await populated.list_objects(
            "owner1", "one@x.com", types=["image", "audio"]
        )
        assert total + len(excluded) == total_all

    async def test_search_is_case_insensitive_substring(self, populated):
        total, page = await populated.list_objects("owner1", "one@x.com", search="REPORT")
        assert total == 2
        assert {o.name for o in page} == {"Report.pdf", "shared-report.txt"}

    async def test_search_treats_wildcards_literally(self, populated):
        total, _ = await populated.list_objects("owner1", "one@x.com", search="%")
        assert total == 0

    async def test_sort_by_size_ascending(self, populated):
        _, page = await populated.list_objects(
            "owner1", "one@x.com", sort_column="size", descending=False
        )
        assert [o.size for o in page] == [50, 100, 200, 300]

    async def test_limit_caps_page_not_total(self, populated):
        total, page = await populated.list_objects("owner1", "one@x.com", limit=2)
        assert total == 4
        assert len(page) == 2

    async def test_unknown_sort_column_rejected(self, populated):
        with pytest.raises(ValueError):
            await populated.list_objects("owner1", "", sort_column="id; DROP TABLE files")


class TestAggregateUsage:
    async def test_sums_per_type(self, store):
        await store.insert_object(make_object(size=10, type="document",
                                              created_at="2024-01-01T00:00:00.000Z"))
        await store.insert_object(make_object(size=15, type="document",
                                              created_at="2024-02-01T00:00:00.000Z"))
        await store.insert_object(make_object(size=5, type="image"))
        await store.insert_object(make_object(owner_id="other", size=999, type="video"))

        usage = await store.aggregate_usage("owner1", "one@x.com", quota=1000)

        assert usage.by_type["document"].size == 25
        assert usage.by_type["document"].latest_date == "2024-02-01T00:00:00.000Z"
        assert usage.by_type["image"].size == 5
        assert usage.by_type["video"].size == 0
        assert usage.by_type["video"].latest_date == ""
        assert usage.used == 30
        assert usage.all == 1000

    async def test_api_shape(self, store):
        usage = await store.aggregate_usage("owner1", "", quota=7)
        body = usage.to_api()
        assert set(body) == {"image", "document", "video", "audio", "other", "used", "all"}
        assert body["other"] == {"size": 0, "latestDate": ""}


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class TestUsers:
    async def test_create_and_lookup(self, store):
        user = await store.create_user("Ada Lovelace", "Ada@Example.com", "hash")
        assert user.email == "ada@example.com"
        assert (await store.get_user(user.id)) == user
        assert (await store.get_user_by_email("ADA@example.com")) == user

    async def test_duplicate_email_rejected(self, store):
        await store.create_user("Ada", "ada@example.com", "hash")
        with pytest.raises(EmailInUse):
            await store.create_user("Other Ada", "ADA@example.com", "hash")

    async def test_duplicate_email_keeps_concurrent_writes(self, store):
        """A rejected signup must not discard another request's pending insert."""
        await store.create_user("Ada", "ada@example.com", "hash")
        obj = make_object()

        results = await asyncio.gather(
            store.create_user("B", "ada@example.com", "hash"),
            store.insert_object(obj),
            return_exceptions=True,
        )

        assert isinstance(results[0], EmailInUse)
        assert results[1] is None
        assert (await store.get_object(obj.id)) == obj

        # Survives a reconnect, so the row was committed.
        await store.close()
        await store.init_db()
        assert (await store.get_object(obj.id)) == obj

    async def test_search_by_name_or_email(self, store):
        await store.create_user("Ada Lovelace", "ada@example.com", "h")
        await store.create_user("Grace Hopper", "grace@navy.mil", "h")
        await store.create_user("Alan Turing", "alan@example.com", "h")

        by_email = await store.search_users("EXAMPLE")
        assert [u.full_name for u in by_email] == ["Ada Lovelace", "Alan Turing"]
        by_name = await store.search_users("hopper")
        assert [u.email for u in by_name] == ["grace@navy.mil"]

    async def test_search_limit(self, store):
        for i in range(12):
            await store.create_user(f"User {i:02d}", f"user{i}@example.com", "h")
        assert len(await store.search_users("user", limit=10)) == 10
