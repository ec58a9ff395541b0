"""Tests for the command-line entry point."""

from pathlib import Path

import pytest
import yaml

from chunkdrive import cli
from chunkdrive.config import ChunkDriveConfig, ObservabilityConfig


class TestParseArgs:
    def test_defaults(self):
        args = cli.parse_args([])
        assert args.config == Path("chunkdrive.yaml")
        assert args.host is None
        assert args.port is None

    def test_overrides_applied(self):
        args = cli.parse_args(
            ["--host", "127.0.0.1", "--port", "9100", "--log-format", "json",
             "--log-level", "DEBUG", "--shutdown-timeout", "5"]
        )
        config = cli.apply_overrides(ChunkDriveConfig(), args)
        assert config.server.host == "127.0.0.1"
        assert config.server.port == 9100
        assert config.server.log_format == "json"
        assert config.server.log_level == "DEBUG"
        assert config.server.shutdown_timeout == 5

    def test_rejects_unknown_log_format(self):
        with pytest.raises(SystemExit):
            cli.parse_args(["--log-format", "xml"])


class TestMain:
    @pytest.fixture
    def captured(self, monkeypatch):
        """Stub out the server so main() returns after building the app."""
        seen = {}

        def fake_create_app(config):
            seen["config"] = config
            return "app"

        def fake_run(app, **kwargs):
            seen["app"] = app
            seen["run"] = kwargs

        monkeypatch.setattr(cli, "create_app", fake_create_app)
        monkeypatch.setattr(cli.uvicorn, "run", fake_run)
        monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: None)
        return seen

    def test_loads_config_and_runs(self, tmp_path, captured):
        path = tmp_path / "drive.yaml"
        path.write_text(yaml.dump({"server": {"port": 9200}, "auth": {"secret": "s3cret"}}))

        cli.main(["--config", str(path), "--host", "127.0.0.1"])

        assert captured["app"] == "app"
        assert captured["run"]["host"] == "127.0.0.1"
        assert captured["run"]["port"] == 9200
        assert captured["config"].auth.secret == "s3cret"

    def test_missing_default_config_uses_defaults(self, tmp_path, monkeypatch, captured):
        monkeypatch.chdir(tmp_path)
        cli.main([])
        assert captured["config"].server.port == ChunkDriveConfig().server.port
        assert captured["config"].observability == ObservabilityConfig()

    def test_missing_explicit_config_exits(self, tmp_path, captured):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--config", str(tmp_path / "absent.yaml")])
        assert exc_info.value.code == 1
        assert "app" not in captured
