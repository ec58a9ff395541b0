"""Configuration loading and Pydantic models for chunkdrive."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

_MIB = 1024 * 1024

# Sessions signed with this key can be forged by anyone; startup warns.
DEFAULT_AUTH_SECRET = "chunkdrive-dev-secret"


class ServerConfig(BaseModel):
    """Server binding and runtime configuration."""

    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    log_format: str = "text"
    shutdown_timeout: int = 30


class AuthConfig(BaseModel):
    """Session and upload-identity configuration."""

    enabled: bool = True
    secret: str = DEFAULT_AUTH_SECRET
    session_ttl_seconds: int = 7 * 24 * 60 * 60
    cookie_name: str = "app_session"


class StorageConfig(BaseModel):
    """Chunk store and catalog configuration."""

    sqlite_path: str = "./data/chunkdrive.db"
    chunk_size_bytes: int = 255 * 1024
    max_upload_bytes: int = 50 * _MIB
    quota_bytes: int = 2 * 1024 * _MIB


class EnrichmentConfig(BaseModel):
    """Tag-generation collaborator configuration."""

    enabled: bool = True
    api_key: str = ""
    model: str = "gemini-1.5-flash"
    endpoint: str = "https://generativelanguage.googleapis.com/v1beta/models"
    timeout_seconds: float = 15.0
    preview_bytes: int = 8 * 1024
    inline_image_max_bytes: int = 4 * _MIB


class CacheConfig(BaseModel):
    """Listing cache configuration."""

    listing_ttl_seconds: float = 30.0


class ObservabilityConfig(BaseModel):
    """Metrics and health probe toggles."""

    metrics: bool = True
    health_check: bool = True


class ChunkDriveConfig(BaseModel):
    """Top-level chunkdrive configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


def _pick(data: dict[str, Any], keys: tuple[str, ...]) -> dict[str, Any]:
    """Return only the keys of ``data`` that are present, so Pydantic defaults apply."""
    return {k: data[k] for k in keys if k in data}


def _parse_server(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the server section from YAML data into a dict for Pydantic."""
    if data is None:
        return {}
    return _pick(data, ("host", "port", "log_level", "log_format", "shutdown_timeout"))


def _parse_auth(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the auth section from YAML data."""
    if data is None:
        return {}
    return _pick(data, ("enabled", "secret", "session_ttl_seconds", "cookie_name"))


def _parse_storage(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the storage section from YAML data.

    Handles nested structure: storage.sqlite.path -> sqlite_path
    """
    if data is None:
        return {}
    result = _pick(data, ("chunk_size_bytes", "max_upload_bytes", "quota_bytes"))
    sqlite_section = data.get("sqlite")
    if isinstance(sqlite_section, dict) and "path" in sqlite_section:
        result["sqlite_path"] = sqlite_section["path"]
    return result


def _parse_enrichment(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the enrichment section from YAML data.

    An absent or empty ``api_key`` falls back to the ``GOOGLE_API_KEY`` and
    ``GEMINI_API_KEY`` environment variables.
    """
    result = _pick(
        data or {},
        (
            "enabled",
            "api_key",
            "model",
            "endpoint",
            "timeout_seconds",
            "preview_bytes",
            "inline_image_max_bytes",
        ),
    )
    if not result.get("api_key"):
        env_key = os.environ.get("GOOGLE_API_KEY") or os.environ.get("GEMINI_API_KEY")
        if env_key:
            result["api_key"] = env_key
    return result


def _parse_cache(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the cache section from YAML data."""
    if data is None:
        return {}
    return _pick(data, ("listing_ttl_seconds",))


def _parse_observability(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the observability section from YAML data."""
    if data is None:
        return {}
    return _pick(data, ("metrics", "health_check"))


def load_config(path: Path) -> ChunkDriveConfig:
    """Load a ChunkDriveConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated ChunkDriveConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        pydantic.ValidationError: If a value has the wrong type.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return ChunkDriveConfig(
        server=ServerConfig(**_parse_server(raw.get("server"))),
        auth=AuthConfig(**_parse_auth(raw.get("auth"))),
        storage=StorageConfig(**_parse_storage(raw.get("storage"))),
        enrichment=EnrichmentConfig(**_parse_enrichment(raw.get("enrichment"))),
        cache=CacheConfig(**_parse_cache(raw.get("cache"))),
        observability=ObservabilityConfig(**_parse_observability(raw.get("observability"))),
    )
