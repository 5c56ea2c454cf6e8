"""Unit tests for the catalogcache CLI commands."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from catalogcache.cli import main
from catalogcache.exceptions import RemoteError, TransientRemoteError
from catalogcache.models import ItemState
from catalogcache.store import RecordStore
from catalogcache.sync import SyncEngine


@pytest.fixture
def runner():
    """Provide a Click CLI test runner."""
    return CliRunner(env={"CATALOGCACHE_TOKEN": None})


@pytest.fixture
def cache_file(tmp_path):
    return tmp_path / "cache.json"


@pytest.fixture
def mock_config(cache_file):
    """Mock the config module."""
    with patch("catalogcache.cli.config") as mock:
        mock.token = None
        mock.api_url = "https://catalog.example/services/library"
        mock.cache_file = cache_file
        mock.get_config_path.return_value = Path("/mock/config")
        yield mock


@pytest.fixture
def seeded_cache(cache_file, make_record):
    """Cache holding records 1 (ACTIVE, ref 'one') and 2 (INACTIVE)."""
    engine = SyncEngine(None, None, RecordStore(cache_file))
    engine.merge(make_record(1, 28, "one", name="First"))
    engine.merge(make_record(2, 20, "two", state=ItemState.INACTIVE, name="Second"))
    engine.save()
    return cache_file


@pytest.fixture
def remote(fake_client):
    """Patch CatalogClient to serve pages from a FakeCatalogClient."""

    def install(pages, failures=None):
        fake = fake_client(pages, failures)
        patcher = patch("catalogcache.cli.CatalogClient")
        mock_class = patcher.start()
        mock_class.return_value.fetch_page.side_effect = fake.fetch_page
        fake.mock_class = mock_class
        return fake

    yield install
    patch.stopall()


class TestMainGroup:
    """Tests for the main CLI group."""

    def test_main_help(self, runner):
        """Test main help shows all commands."""
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "Catalog Cache" in result.output
        assert "--token" in result.output
        assert "init" in result.output
        assert "update" in result.output
        assert "full-read" in result.output
        assert "show" in result.output
        assert "status" in result.output

    def test_update_help(self, runner):
        result = runner.invoke(main, ["update", "--help"])
        assert result.exit_code == 0
        assert "--include-deleted" in result.output
        assert "--retry-delay" in result.output


class TestInitCommand:
    """Tests for the init command."""

    @patch("catalogcache.cli.CatalogClient")
    def test_init_with_valid_token(self, mock_client_class, mock_config, runner):
        """Test init with a valid token."""
        result = runner.invoke(main, ["init"], input="valid_token\n")

        assert result.exit_code == 0
        assert "Token is valid" in result.output
        assert "Configuration saved successfully" in result.output
        mock_client_class.return_value.fetch_page.assert_called_once_with(
            "valid_token", page_size=1, page_number=0
        )
        mock_config.save_token.assert_called_once_with("valid_token")
        mock_config.save_cache_file.assert_not_called()

    @patch("catalogcache.cli.CatalogClient")
    def test_init_saves_cache_file(self, mock_client_class, mock_config, runner):
        result = runner.invoke(main, ["init", "-t", "tok", "-c", "mirror.json"])

        assert result.exit_code == 0
        mock_config.save_cache_file.assert_called_once_with(Path("mirror.json"))

    @patch("catalogcache.cli.CatalogClient")
    def test_init_with_invalid_token_cancel(
        self, mock_client_class, mock_config, runner
    ):
        """Test init with an invalid token and the user cancels."""
        mock_client_class.return_value.fetch_page.side_effect = RemoteError(
            "Invalid token or unauthorized access"
        )

        result = runner.invoke(main, ["init"], input="bad_token\nn\n")

        assert result.exit_code == 1
        assert "Token validation failed" in result.output
        assert "Configuration cancelled" in result.output
        mock_config.save_token.assert_not_called()

    @patch("catalogcache.cli.CatalogClient")
    def test_init_with_invalid_token_save_anyway(
        self, mock_client_class, mock_config, runner
    ):
        """Test init with an invalid token saved anyway."""
        mock_client_class.return_value.fetch_page.side_effect = TransientRemoteError(
            "Network error"
        )

        result = runner.invoke(main, ["init"], input="offline_token\ny\n")

        assert result.exit_code == 0
        mock_config.save_token.assert_called_once_with("offline_token")


class TestSyncCommands:
    """Tests for the update and full-read commands."""

    def test_update_without_token(self, mock_config, runner):
        """Test that a token is required."""
        result = runner.invoke(main, ["update"])

        assert result.exit_code == 1
        assert "No read token configured" in result.output
        assert "Usage:" in result.output

    def test_update_uses_configured_token(
        self, mock_config, runner, remote, make_record, cache_file
    ):
        mock_config.token = "from-config"
        fake = remote([[make_record(5, 50)]])

        result = runner.invoke(main, ["update", "--no-progress"])

        assert result.exit_code == 0
        assert fake.calls[0]["credential"] == "from-config"
        fake.mock_class.assert_called_once_with(mock_config.api_url)
        assert RecordStore(cache_file).deserialize().ids() == [5]

    def test_update_json_summary(
        self, mock_config, runner, remote, make_record, seeded_cache
    ):
        fake = remote([[make_record(3, 40, "three"), make_record(4, 10)]])

        result = runner.invoke(
            main,
            [
                "-t",
                "tok",
                "-c",
                str(seeded_cache),
                "--json",
                "update",
                "--page-size",
                "2",
            ],
        )

        assert result.exit_code == 0, result.output
        stats = json.loads(result.output)
        assert stats["inserted"] == 2
        assert stats["pages"] == 1
        assert stats["cached"] == 4
        assert fake.requested == [0]
        assert fake.calls[0]["page_size"] == 2

    def test_update_with_progress(self, mock_config, runner, remote, make_record):
        remote([[make_record(3, 40)], [make_record(4, 30)]])

        result = runner.invoke(main, ["-t", "tok", "update"])

        assert result.exit_code == 0, result.output
        assert "Sync complete!" in result.output
        assert "Sync Summary" in result.output

    def test_full_read_discards_cache(
        self, mock_config, runner, remote, make_record, seeded_cache
    ):
        fake = remote([[make_record(3, 40)]])

        result = runner.invoke(
            main, ["-t", "tok", "-c", str(seeded_cache), "full-read", "--no-progress"]
        )

        assert result.exit_code == 0, result.output
        assert fake.requested == [0, 1]
        assert RecordStore(seeded_cache).deserialize().ids() == [3]

    def test_remote_failure_keeps_merged_pages(
        self, mock_config, runner, remote, make_record, cache_file
    ):
        remote(
            [[make_record(3, 40)], [make_record(4, 30)]],
            failures={1: [TransientRemoteError("Rate limit exceeded")]},
        )

        result = runner.invoke(
            main,
            ["-t", "tok", "update", "--no-progress", "--max-tries", "1"],
        )

        assert result.exit_code == 1
        assert "merged pages were kept" in result.output
        assert "Usage:" not in result.output
        assert RecordStore(cache_file).deserialize().ids() == [3]

    def test_lenient_skips_bad_records(
        self, mock_config, runner, remote, make_record, seeded_cache
    ):
        remote([[make_record(3, 40), make_record(1, None)]])

        strict = runner.invoke(
            main, ["-t", "tok", "-c", str(seeded_cache), "update", "--no-progress"]
        )
        assert strict.exit_code == 1
        assert "Sync failed" in strict.output

        lenient = runner.invoke(
            main,
            ["-t", "tok", "-c", str(seeded_cache), "--json", "update", "--lenient"],
        )
        assert lenient.exit_code == 0, lenient.output
        assert json.loads(lenient.output)["errors"] == 1

    def test_invalid_page_size(self, mock_config, runner):
        result = runner.invoke(main, ["-t", "tok", "update", "--page-size", "500"])
        assert result.exit_code == 2


class TestShowCommand:
    """Tests for the show command."""

    def test_show_by_id(self, mock_config, runner, seeded_cache):
        result = runner.invoke(main, ["-c", str(seeded_cache), "show", "1"])

        assert result.exit_code == 0
        assert "Record 1" in result.output
        assert "First" in result.output

    def test_show_by_reference_id_json(self, mock_config, runner, seeded_cache):
        result = runner.invoke(
            main, ["-c", str(seeded_cache), "--json", "show", "-r", "one"]
        )

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["id"] == 1
        assert data["lastModifiedDate"] == 28

    def test_show_inactive_needs_all_states(self, mock_config, runner, seeded_cache):
        hidden = runner.invoke(main, ["-c", str(seeded_cache), "show", "2"])
        assert hidden.exit_code == 1
        assert "not found" in hidden.output

        shown = runner.invoke(main, ["-c", str(seeded_cache), "show", "2", "-a"])
        assert shown.exit_code == 0
        assert "INACTIVE" in shown.output

    def test_show_requires_exactly_one_key(self, mock_config, runner, seeded_cache):
        neither = runner.invoke(main, ["-c", str(seeded_cache), "show"])
        both = runner.invoke(main, ["-c", str(seeded_cache), "show", "1", "-r", "one"])

        assert neither.exit_code == 1
        assert both.exit_code == 1
        assert "exactly one" in both.output


class TestStatusCommand:
    """Tests for the status command."""

    def test_status(self, mock_config, runner, seeded_cache):
        result = runner.invoke(main, ["-c", str(seeded_cache), "--json", "status"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["Exists"] is True
        assert data["Records"] == 2
        assert data["Active"] == 1
        assert data["Inactive"] == 1
        assert data["Reference ids"] == 2
        assert data["Latest modified"] == "1970-01-01 00:00:00.028 UTC"
        assert data["Missing timestamps"] == 0

    def test_status_without_cache(self, mock_config, runner):
        """Test status falls back to the configured cache file."""
        result = runner.invoke(main, ["--json", "status"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["Exists"] is False
        assert data["Records"] == 0
        assert data["Latest modified"] == "epoch"
