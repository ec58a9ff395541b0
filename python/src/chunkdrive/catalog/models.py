"""Data model types for the chunkdrive catalog.

Catalog rows are validated into these Pydantic models when they leave the
database, so handlers never see untyped documents. Unknown columns are
ignored; missing optional fields take their defaults.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SCHEMA_VERSION = 1

FileType = Literal["image", "document", "video", "audio", "other"]


class StoredObject(BaseModel):
    """Catalog record for one stored file.

    Attributes:
        id: Object identifier, immutable.
        name: Display filename.
        url: Download path for the object.
        content_type: MIME type declared at upload.
        size: Payload length in bytes.
        chunk_set_id: Chunk set holding the payload; owned by this record.
        owner_id: Id of the uploading user, immutable.
        account_id: Account id supplied at upload (UI compatibility).
        shared_with: Lowercased emails granted read access.
        is_public: Whether anyone may read the object.
        type: Category derived from the filename at creation.
        extension: Lowercased extension derived at creation.
        tags: Enrichment tags, replaced wholesale by each enrichment.
        created_at: ISO 8601 creation timestamp.
        updated_at: ISO 8601 timestamp of the last mutation.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    url: str = ""
    content_type: str = "application/octet-stream"
    size: int = Field(ge=0)
    chunk_set_id: str
    owner_id: str
    account_id: str = ""
    shared_with: list[str] = Field(default_factory=list)
    is_public: bool = False
    type: FileType = "other"
    extension: str = ""
    tags: list[str] = Field(default_factory=list)
    created_at: str
    updated_at: str
    schema_version: int = SCHEMA_VERSION

    def to_api(self) -> dict:
        """Render the record in the JSON shape served to clients."""
        return {
            "$id": self.id,
            "$createdAt": self.created_at,
            "$updatedAt": self.updated_at,
            "type": self.type,
            "name": self.name,
            "url": self.url,
            "extension": self.extension,
            "size": self.size,
            "contentType": self.content_type,
            "owner": self.owner_id,
            "accountId": self.account_id,
            "users": list(self.shared_with),
            "isPublic": self.is_public,
            "tags": list(self.tags),
            "bucketFileId": self.chunk_set_id,
        }


class User(BaseModel):
    """A registered account."""

    model_config = ConfigDict(extra="ignore")

    id: str
    full_name: str
    email: str
    avatar: str = ""
    password_hash: str
    created_at: str

    def to_api(self) -> dict:
        """Public view of the user; never includes the password hash."""
        return {
            "$id": self.id,
            "fullName": self.full_name,
            "email": self.email,
            "avatar": self.avatar,
            "accountId": self.id,
        }


class TypeUsage(BaseModel):
    """Storage used by one file type."""

    size: int = 0
    latest_date: str = ""


class UsageSummary(BaseModel):
    """Per-type storage usage plus grand total and quota."""

    by_type: dict[str, TypeUsage]
    used: int = 0
    all: int = 0

    def to_api(self) -> dict:
        result: dict = {
            name: {"size": usage.size, "latestDate": usage.latest_date}
            for name, usage in self.by_type.items()
        }
        result["used"] = self.used
        result["all"] = self.all
        return result
