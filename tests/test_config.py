"""Tests for configuration module."""

import shutil
import tempfile
from pathlib import Path

import pytest

from vibesync.config import (
    DEFAULT_API_URL,
    Config,
    SourceConfig,
    get_app_dir,
    get_config,
    get_default_config,
    is_debug_enabled,
    load_config,
)


@pytest.fixture
def temp_config_dir():
    """Create a temporary config directory."""
    temp_dir = tempfile.mkdtemp()
    yield Path(temp_dir)
    shutil.rmtree(temp_dir)


class TestDefaultConfig:
    """Tests for default configuration when no file exists."""

    def test_default_config_returns_valid_config(self):
        """Default config should return a valid Config object."""
        config = get_default_config()
        assert isinstance(config, Config)

    def test_default_config_has_both_sources(self):
        """Default config should have entries for Claude Code and Cursor."""
        config = get_default_config()
        for source in ("claude_code", "cursor"):
            assert isinstance(config.sources[source], SourceConfig)
            assert config.is_source_enabled(source)

    def test_default_source_paths_fall_back_to_reader(self):
        """Unset paths mean each reader uses its own default location."""
        config = get_default_config()
        assert config.get_source_path("claude_code") is None
        assert config.get_workspace_path("cursor") is None

    def test_default_api_and_state(self):
        config = get_default_config()
        assert config.api.url == DEFAULT_API_URL
        assert config.api.timeout == 30.0
        assert config.state_path == get_app_dir() / "state.sqlite"

    def test_app_dir_is_under_home(self, isolated_home):
        assert get_app_dir() == isolated_home / ".vibesync"


class TestLoadConfig:
    """Tests for loading configuration from TOML files."""

    def test_missing_file_returns_defaults(self, temp_config_dir):
        """A missing config file yields the defaults."""
        config = load_config(temp_config_dir / "config.toml")
        assert config.api.url == DEFAULT_API_URL

    def test_partial_config_merges_with_defaults(self, temp_config_dir):
        """Only the keys present in the file override defaults."""
        config_file = temp_config_dir / "config.toml"
        config_file.write_text(
            """
[sources.claude_code]
path = "~/custom/projects"

[sources.cursor]
enabled = false
"""
        )

        config = load_config(config_file)

        assert config.get_source_path("claude_code") == Path("~/custom/projects").expanduser()
        assert config.is_source_enabled("claude_code") is True
        assert config.is_source_enabled("cursor") is False
        assert config.api.url == DEFAULT_API_URL

    def test_api_and_state_sections(self, temp_config_dir):
        config_file = temp_config_dir / "config.toml"
        config_file.write_text(
            """
[api]
url = "http://localhost:3000/"
timeout = 5

[state]
path = "/tmp/vibesync-test/state.sqlite"
"""
        )

        config = load_config(config_file)

        assert config.api.url == "http://localhost:3000"
        assert config.api.timeout == 5
        assert config.state_path == Path("/tmp/vibesync-test/state.sqlite")

    def test_cursor_workspace_path(self, temp_config_dir):
        config_file = temp_config_dir / "config.toml"
        config_file.write_text('[sources.cursor]\nworkspace_path = "/data/ws"\n')

        config = load_config(config_file)

        assert config.get_workspace_path("cursor") == Path("/data/ws")

    def test_invalid_toml_falls_back_to_defaults(self, temp_config_dir):
        config_file = temp_config_dir / "config.toml"
        config_file.write_text("[api\nurl = ")

        config = load_config(config_file)

        assert config.api.url == DEFAULT_API_URL

    def test_invalid_url_is_ignored(self, temp_config_dir):
        config_file = temp_config_dir / "config.toml"
        config_file.write_text('[api]\nurl = "ftp://example.com"\n')

        config = load_config(config_file)

        assert config.api.url == DEFAULT_API_URL

    def test_unknown_source_is_kept(self, temp_config_dir):
        config_file = temp_config_dir / "config.toml"
        config_file.write_text('[sources.vscode]\nenabled = false\npath = "/x"\n')

        config = load_config(config_file)

        assert config.is_source_enabled("vscode") is False
        assert config.is_source_enabled("nonexistent") is False


class TestEnvironmentOverride:
    def test_env_url_wins(self, temp_config_dir, monkeypatch):
        config_file = temp_config_dir / "config.toml"
        config_file.write_text('[api]\nurl = "https://from-file.example.com"\ntimeout = 12\n')
        monkeypatch.setenv("VIBESYNC_API_URL", "https://staging.example.com")

        config = load_config(config_file)

        assert config.api.url == "https://staging.example.com"
        assert config.api.timeout == 12

    def test_invalid_env_url_is_ignored(self, temp_config_dir, monkeypatch):
        monkeypatch.setenv("VIBESYNC_API_URL", "not a url")

        config = load_config(temp_config_dir / "config.toml")

        assert config.api.url == DEFAULT_API_URL

    @pytest.mark.parametrize(("value", "expected"), [("true", True), ("TRUE", True), ("1", False), ("", False)])
    def test_debug_flag(self, monkeypatch, value, expected):
        monkeypatch.setenv("VIBESYNC_DEBUG", value)
        assert is_debug_enabled() is expected


def test_get_config_reads_home_config_once(isolated_home):
    app_dir = isolated_home / ".vibesync"
    app_dir.mkdir()
    (app_dir / "config.toml").write_text('[api]\nurl = "http://localhost:9000"\n')

    first = get_config()
    (app_dir / "config.toml").write_text('[api]\nurl = "http://localhost:9999"\n')

    assert first.api.url == "http://localhost:9000"
    assert get_config() is first
