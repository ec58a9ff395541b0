"""Access gate: who may read or modify a stored object.

Both checks are pure functions of the record and the caller and are
evaluated on every request; nothing here is cached.
"""

from dataclasses import dataclass

from chunkdrive.catalog.models import StoredObject


@dataclass(frozen=True)
class Identity:
    """The authenticated caller of a request."""

    user_id: str
    email: str
    full_name: str = ""


def can_read(obj: StoredObject, identity: Identity | None) -> bool:
    """Return True if ``identity`` may read ``obj``.

    Public objects are readable by anyone, including anonymous callers.
    Otherwise the caller must be the owner or have their email on the
    object's share list.
    """
    if obj.is_public:
        return True
    if identity is None:
        return False
    if identity.user_id == obj.owner_id:
        return True
    return identity.email.lower() in obj.shared_with


def can_modify(obj: StoredObject, identity: Identity | None) -> bool:
    """Return True if ``identity`` may rename, share, retag or delete ``obj``."""
    return identity is not None and identity.user_id == obj.owner_id
