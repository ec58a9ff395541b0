"""Tests for the access gate."""

import pytest

from chunkdrive.access import Identity, can_modify, can_read
from chunkdrive.catalog.models import StoredObject

OWNER = Identity(user_id="u1", email="u1@x.com")
FRIEND = Identity(user_id="u2", email="u2@x.com")
STRANGER = Identity(user_id="u3", email="u3@x.com")


def make_object(**overrides) -> StoredObject:
    fields = dict(
        id="a" * 32,
        name="a.txt",
        size=10,
        chunk_set_id="b" * 32,
        owner_id="u1",
        created_at="2024-01-01T00:00:00.000Z",
        updated_at="2024-01-01T00:00:00.000Z",
    )
    fields.update(overrides)
    return StoredObject(**fields)


class TestCanRead:
    def test_private_object_denies_anonymous(self):
        assert can_read(make_object(), None) is False

    def test_owner_can_read(self):
        assert can_read(make_object(), OWNER) is True

    def test_stranger_denied(self):
        assert can_read(make_object(), STRANGER) is False

    def test_share_list_grants_read(self):
        obj = make_object(shared_with=["u2@x.com"])
        assert can_read(obj, FRIEND) is True
        assert can_read(obj, STRANGER) is False

    def test_share_match_ignores_caller_email_case(self):
        obj = make_object(shared_with=["u2@x.com"])
        assert can_read(obj, Identity(user_id="u2", email="U2@X.COM")) is True

    @pytest.mark.parametrize("identity", [None, OWNER, FRIEND, STRANGER])
    def test_public_object_readable_by_anyone(self, identity):
        assert can_read(make_object(is_public=True), identity) is True

    def test_deterministic(self):
        obj = make_object(shared_with=["u2@x.com"])
        results = {can_read(obj, FRIEND) for _ in range(5)}
        assert results == {True}


class TestCanModify:
    def test_only_owner(self):
        obj = make_object(shared_with=["u2@x.com"], is_public=True)
        assert can_modify(obj, OWNER) is True
        assert can_modify(obj, FRIEND) is False
        assert can_modify(obj, None) is False
