"""Request input validation helpers for chunkdrive.

These functions enforce identifier, naming and listing-parameter rules
independently of any HTTP handler so they can be unit-tested in isolation.

Each function raises ``BadInput`` on invalid input.
"""

import re

from chunkdrive.errors import BadInput

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Object, chunk set and user ids are uuid4().hex values.
_ID_RE = re.compile(r"^[0-9a-f]{32}$")

# Deliberately loose: one "@", no whitespace, a dot in the domain part.
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_MAX_NAME_LENGTH = 255
_MAX_LIMIT = 1000
DEFAULT_LIMIT = 100
DEFAULT_SORT = "$createdAt-desc"

# Public sort field name -> catalog column.
SORT_FIELDS = {
    "$createdAt": "created_at",
    "createdAt": "created_at",
    "$updatedAt": "updated_at",
    "updatedAt": "updated_at",
    "name": "name",
    "size": "size",
    "type": "type",
}

FILE_TYPES = ("image", "document", "video", "audio", "other")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_id(value: str | None, what: str = "id") -> str:
    """Validate a 32-character hex identifier.

    Args:
        value: The candidate identifier.
        what: Field name used in the error message.

    Returns:
        The identifier, unchanged.

    Raises:
        BadInput: If the value is missing or not a 32-char lowercase hex string.
    """
    if not value or not _ID_RE.match(value):
        raise BadInput(f"Invalid {what}")
    return value


def validate_filename(name: str | None) -> str:
    """Validate a display filename.

    Raises:
        BadInput: If the name is blank, too long, or contains a path separator.
    """
    if name is None or not name.strip():
        raise BadInput("File name is required")
    name = name.strip()
    if len(name) > _MAX_NAME_LENGTH:
        raise BadInput(f"File name must be at most {_MAX_NAME_LENGTH} characters")
    if "/" in name or "\\" in name or "\x00" in name:
        raise BadInput("File name must not contain path separators")
    return name


def normalize_email(email: str | None) -> str:
    """Validate an email address and return it lowercased.

    Raises:
        BadInput: If the address is missing or malformed.
    """
    if not email or not _EMAIL_RE.match(email.strip()):
        raise BadInput("Invalid email address")
    return email.strip().lower()


def normalize_emails(emails: list[str]) -> list[str]:
    """Normalize a share list: validate, lowercase, drop duplicates, keep order."""
    seen: dict[str, None] = {}
    for email in emails:
        seen.setdefault(normalize_email(email), None)
    return list(seen)


def parse_sort(sort: str | None) -> tuple[str, bool]:
    """Parse a ``field-order`` sort key.

    Args:
        sort: e.g. ``"$createdAt-desc"`` or ``"name-asc"``. Empty means the
            default (newest first).

    Returns:
        A ``(column, descending)`` tuple.

    Raises:
        BadInput: If the field is unknown or the order is not asc/desc.
    """
    if not sort:
        sort = DEFAULT_SORT
    field, _, order = sort.rpartition("-")
    if not field:
        field, order = order, "desc"
    column = SORT_FIELDS.get(field)
    if column is None:
        raise BadInput(f"Unknown sort field: {field}")
    if order not in ("asc", "desc"):
        raise BadInput(f"Unknown sort order: {order}")
    return column, order == "desc"


def validate_limit(value: int | None) -> int:
    """Validate the listing page size.

    Returns:
        The limit, or ``DEFAULT_LIMIT`` when not given.

    Raises:
        BadInput: If the value is outside ``[1, 1000]``.
    """
    if value is None:
        return DEFAULT_LIMIT
    if value < 1 or value > _MAX_LIMIT:
        raise BadInput(f"limit must be an integer between 1 and {_MAX_LIMIT}")
    return value


def validate_types(types: list[str]) -> list[str]:
    """Validate a type filter.

    Raises:
        BadInput: If any entry is not a known file type category.
    """
    for t in types:
        if t not in FILE_TYPES:
            raise BadInput(f"Unknown file type: {t}")
    return list(dict.fromkeys(types))
