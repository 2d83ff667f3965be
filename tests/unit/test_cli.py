"""
Unit tests for the metasync CLI interface.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner

from metasync.cli import handle_errors, main
from metasync.exceptions import ConfigurationError
from metasync.sync.service import MetaDiffService
from tests.conftest import FakeIntrospector, column, fk, pk_column


@pytest.fixture
def runner():
    """Click test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep commands from reconfiguring the root logger."""
    configure = MagicMock()
    monkeypatch.setattr("metasync.config.LoggingConfig.configure", configure)
    return configure


@pytest.fixture
def live_schema(monkeypatch):
    """Point the service used by commands at a fake schema."""
    schema = FakeIntrospector(
        {
            "users": [pk_column(), column("name")],
            "orders": [pk_column(), column("user_id", "integer")],
        },
        relations=[fk("orders", "user_id", "users")],
    )

    def make_service(store, concurrency=None):
        return MetaDiffService(store, introspector_factory=lambda source: schema, concurrency=concurrency)

    monkeypatch.setattr("metasync.sync.service.MetaDiffService", make_service)
    return schema


class TestCLIMain:
    """Test main CLI functionality."""

    def test_cli_help(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "keep a table catalog in step" in result.output
        for command in ("init", "validate-config", "diff", "sync", "cache-clear"):
            assert command in result.output

    def test_cli_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestInitCommand:
    """Test init command functionality."""

    def test_init_default_output(self, runner):
        with runner.isolated_filesystem():
            result = runner.invoke(main, ["init"])
            assert result.exit_code == 0
            assert "Configuration file created: metasync-config.yaml" in result.output

            with open("metasync-config.yaml") as f:
                data = yaml.safe_load(f)
            assert data["catalog"]["backend"] == "postgres"
            assert data["bases"][0]["sources"][0]["schema"] == "public"

    @patch("metasync.cli.click.confirm")
    def test_init_file_exists_no_overwrite(self, mock_confirm, runner):
        mock_confirm.return_value = False

        with runner.isolated_filesystem():
            with open("config.yaml", "w") as f:
                f.write("existing content")

            result = runner.invoke(main, ["init", "-o", "config.yaml"])

            assert result.exit_code == 0
            with open("config.yaml") as f:
                assert f.read() == "existing content"

    @patch("metasync.cli.click.confirm")
    def test_init_file_exists_overwrite(self, mock_confirm, runner):
        mock_confirm.return_value = True

        with runner.isolated_filesystem():
            with open("config.yaml", "w") as f:
                f.write("existing content")

            result = runner.invoke(main, ["init", "-o", "config.yaml"])

            assert result.exit_code == 0
            with open("config.yaml") as f:
                assert "bases" in f.read()


class TestValidateConfigCommand:
    def test_valid_config(self, runner, temp_config_file):
        result = runner.invoke(main, ["validate-config", "-c", temp_config_file])
        assert result.exit_code == 0
        assert "Configuration is valid" in result.output
        assert "Catalog backend: memory" in result.output

    def test_invalid_config(self, runner, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.dump({"cache": {"backend": "redis"}}))

        result = runner.invoke(main, ["validate-config", "-c", str(path)])

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_missing_file(self, runner):
        result = runner.invoke(main, ["validate-config", "-c", "does-not-exist.yaml"])
        assert result.exit_code == 2


class TestDiffCommand:
    """Test diff previews against the fake schema."""

    def test_diff_table(self, runner, temp_config_file, live_schema):
        result = runner.invoke(main, ["diff", "-c", temp_config_file, "--base", "base1"])

        assert result.exit_code == 0
        assert "Detected Changes" in result.output
        assert "TABLE_NEW" in result.output

    def test_diff_json(self, runner, temp_config_file, live_schema):
        result = runner.invoke(
            main, ["diff", "-c", temp_config_file, "--base", "base1", "--source", "src1", "--json"]
        )

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [d["table_name"] for d in data] == ["users", "orders"]
        assert data[0]["detectedChanges"][0]["type"] == "TABLE_NEW"

    def test_diff_in_sync(self, runner, temp_config_file, live_schema):
        live_schema.table_columns.clear()
        live_schema.relation_list.clear()

        result = runner.invoke(main, ["diff", "-c", temp_config_file, "--base", "base1"])

        assert result.exit_code == 0
        assert "Catalog is in sync" in result.output

    def test_unknown_base(self, runner, temp_config_file, live_schema):
        result = runner.invoke(main, ["diff", "-c", temp_config_file, "--base", "nope"])
        assert result.exit_code == 1
        assert "Base configuration 'nope' not found" in result.output

    def test_debug_sets_log_level(self, runner, temp_config_file, live_schema):
        with patch("metasync.cli.MetaSyncConfig.from_yaml") as from_yaml:
            config = MagicMock()
            config.get_base.side_effect = ConfigurationError("stop here")
            from_yaml.return_value = config

            runner.invoke(main, ["--debug", "diff", "-c", temp_config_file, "--base", "base1"])

        assert config.logging.level == "DEBUG"
        config.logging.configure.assert_called_once()


class TestSyncCommand:
    def test_sync(self, runner, temp_config_file, live_schema):
        result = runner.invoke(main, ["sync", "-c", temp_config_file, "--base", "base1"])

        assert result.exit_code == 0
        assert "Sync Results" in result.output
        assert "success" in result.output
        assert "Sync completed" in result.output
        assert live_schema.close_count == 1

    def test_sync_unknown_source(self, runner, temp_config_file, live_schema):
        result = runner.invoke(
            main, ["sync", "-c", temp_config_file, "--base", "base1", "--source", "nope"]
        )
        assert result.exit_code == 1
        assert "Source 'nope' not found" in result.output


class TestCacheClearCommand:
    def test_cache_clear(self, runner, temp_config_file):
        cache = MagicMock()
        cache.destroy = AsyncMock()
        cache.close = AsyncMock()

        with patch("metasync.catalog.cache.create_cache", return_value=cache):
            result = runner.invoke(main, ["cache-clear", "-c", temp_config_file])

        assert result.exit_code == 0
        assert "Catalog cache cleared" in result.output
        cache.destroy.assert_awaited_once()
        cache.close.assert_awaited_once()


class TestHandleErrors:
    """Test the error handling decorator."""

    def test_metasync_error_exits_with_one(self):
        @handle_errors
        def failing():
            raise ConfigurationError("bad config")

        with pytest.raises(SystemExit) as exc_info:
            failing()
        assert exc_info.value.code == 1

    def test_keyboard_interrupt_exits_cleanly(self):
        @handle_errors
        def interrupted():
            raise KeyboardInterrupt()

        with pytest.raises(SystemExit) as exc_info:
            interrupted()
        assert exc_info.value.code == 0

    def test_unexpected_error(self):
        @handle_errors
        def broken():
            raise RuntimeError("boom")

        with pytest.raises(SystemExit) as exc_info:
            broken()
        assert exc_info.value.code == 1

    def test_success_passes_through(self):
        @handle_errors
        def ok():
            return "done"

        assert ok() == "done"
