"""Tests for chunkdrive configuration loading."""

import tempfile
from pathlib import Path

import pydantic
import pytest
import yaml

from chunkdrive.config import ChunkDriveConfig, load_config


def _load(data: dict) -> ChunkDriveConfig:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        yaml.dump(data, f)
        f.flush()
        return load_config(Path(f.name))


class TestLoadConfig:
    """Tests for load_config()."""

    def test_load_example_config(self, monkeypatch):
        """The shipped example config loads and matches the documented values."""
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        config = load_config(
            Path(__file__).resolve().parent.parent.parent / "chunkdrive.example.yaml"
        )
        assert config.server.port == 8080
        assert config.auth.secret == "change-me"
        assert config.storage.sqlite_path == "./data/chunkdrive.db"
        assert config.storage.chunk_size_bytes == 255 * 1024
        assert config.storage.max_upload_bytes == 50 * 1024 * 1024
        assert config.enrichment.model == "gemini-1.5-flash"
        assert config.enrichment.api_key == ""
        assert config.cache.listing_ttl_seconds == 30

    def test_load_minimal_config(self):
        """An empty YAML document uses defaults for all fields."""
        config = _load({})
        assert config.server.host == "0.0.0.0"
        assert config.server.port == 8080
        assert config.auth.enabled is True
        assert config.storage.chunk_size_bytes == 255 * 1024

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == ChunkDriveConfig()

    def test_nested_sqlite_path(self):
        """storage.sqlite.path is flattened into sqlite_path."""
        config = _load({"storage": {"sqlite": {"path": "/custom/drive.db"}}})
        assert config.storage.sqlite_path == "/custom/drive.db"

    def test_unknown_keys_ignored(self):
        config = _load({"server": {"port": 9001, "region": "us-east-1"}, "extra": {"a": 1}})
        assert config.server.port == 9001

    def test_wrong_type_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            _load({"server": {"port": "not-a-port"}})

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")


class TestEnrichmentKey:
    def test_env_fallback(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.setenv("GOOGLE_API_KEY", "from-env")
        assert _load({}).enrichment.api_key == "from-env"

    def test_gemini_env_name(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        monkeypatch.setenv("GEMINI_API_KEY", "gemini-env")
        assert _load({"enrichment": {"api_key": ""}}).enrichment.api_key == "gemini-env"

    def test_file_value_wins(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_API_KEY", "from-env")
        config = _load({"enrichment": {"api_key": "from-file"}})
        assert config.enrichment.api_key == "from-file"
