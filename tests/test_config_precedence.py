"""Test configuration precedence: CLI > Env > TOML > Defaults."""

from __future__ import annotations

import tempfile
from pathlib import Path

from typer.testing import CliRunner

from media_canon.cli import app, state
from media_canon.config import Config

TOML_CONTENT = """
[http]
timeout_s = 20.0
user_agent = "media-canon-tests/1.0"

[wikidata]
max_depth = 4
genre_roots = ["Q1", "Q2"]

[musicbrainz]
min_interval_s = 2.0
bonus_scan_limit = 10

[bonus_scoring]
min_coverage = 0.9
single_extra_bonus = 40

[providers]
tmdb_api_key = "toml-tmdb"

[logging]
level = "DEBUG"
"""


def _write_toml(content: str) -> Path:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".toml", delete=False) as f:
        f.write(content)
        return Path(f.name)


def test_toml_loading():
    """Test that TOML configuration is loaded correctly."""
    config_path = _write_toml(TOML_CONTENT)

    try:
        config = Config.load(config_path)

        assert config.http.timeout_s == 20.0
        assert config.http.user_agent == "media-canon-tests/1.0"
        assert config.wikidata.max_depth == 4
        assert config.wikidata.genre_roots == ["Q1", "Q2"]
        assert config.musicbrainz.min_interval_s == 2.0
        assert config.musicbrainz.bonus_scan_limit == 10
        assert config.bonus_scoring.min_coverage == 0.9
        assert config.bonus_scoring.single_extra_bonus == 40
        assert config.providers.tmdb_api_key == "toml-tmdb"
        assert config.logging.level == "DEBUG"

        # Untouched sections keep their defaults
        assert config.wikidata.retries == 2
        assert config.bonus_scoring.official_bonus == 25
    finally:
        config_path.unlink()


def test_env_overrides_toml(monkeypatch):  # pyright: ignore[reportMissingParameterType,reportUnknownParameterType]
    """Test that environment variables override TOML configuration."""
    config_path = _write_toml(TOML_CONTENT)

    try:
        monkeypatch.setenv("MEDIA_CANON_HTTP_TIMEOUT_S", "7.5")  # pyright: ignore[reportUnknownMemberType]
        monkeypatch.setenv("MEDIA_CANON_WIKIDATA_MAX_DEPTH", "6")  # pyright: ignore[reportUnknownMemberType]
        monkeypatch.setenv("MEDIA_CANON_MUSICBRAINZ_MIN_INTERVAL_S", "1.5")  # pyright: ignore[reportUnknownMemberType]
        monkeypatch.setenv("TMDB_API_KEY", "env-tmdb")  # pyright: ignore[reportUnknownMemberType]

        config = Config.load(config_path)

        assert config.http.timeout_s == 7.5  # from env, not 20.0 from TOML
        assert config.wikidata.max_depth == 6
        assert config.musicbrainz.min_interval_s == 1.5
        assert config.providers.tmdb_api_key == "env-tmdb"
        # TOML values without an env override survive
        assert config.wikidata.genre_roots == ["Q1", "Q2"]
    finally:
        config_path.unlink()


def test_cli_precedence_over_env_and_toml(monkeypatch):  # pyright: ignore[reportMissingParameterType,reportUnknownParameterType]
    """Test that CLI arguments have highest precedence over env vars and TOML."""
    config_path = _write_toml(TOML_CONTENT)

    try:
        monkeypatch.setenv("MEDIA_CANON_HTTP_TIMEOUT_S", "7.5")  # pyright: ignore[reportUnknownMemberType]
        monkeypatch.setenv("MEDIA_CANON_MUSICBRAINZ_MIN_INTERVAL_S", "1.5")  # pyright: ignore[reportUnknownMemberType]

        runner = CliRunner()
        result = runner.invoke(
            app,
            [
                "--config",
                str(config_path),
                "--timeout",
                "3",
                "--min-interval",
                "0.5",
                "album-id",
                "The Beatles",
                "Abbey Road",
            ],
        )

        assert result.exit_code == 0
        assert state.config.http.timeout_s == 3.0
        assert state.config.musicbrainz.min_interval_s == 0.5
        assert state.config.wikidata.max_depth == 4
    finally:
        config_path.unlink()


def test_logging_env_vars(monkeypatch):  # pyright: ignore[reportMissingParameterType,reportUnknownParameterType]
    """Test that logging environment variables work correctly."""
    monkeypatch.setenv("MEDIA_CANON_LOGGING_LEVEL", "INFO")  # pyright: ignore[reportUnknownMemberType]
    monkeypatch.setenv("MEDIA_CANON_LOGGING_REDACT_SECRETS", "false")  # pyright: ignore[reportUnknownMemberType]

    config = Config.load()

    assert config.logging.level == "INFO"
    assert config.logging.redact_secrets is False


def test_blocked_instance_env_list(monkeypatch):  # pyright: ignore[reportMissingParameterType,reportUnknownParameterType]
    monkeypatch.setenv("MEDIA_CANON_WIKIDATA_BLOCKED_INSTANCE_OF", "Q24856, Q4167410")  # pyright: ignore[reportUnknownMemberType]

    config = Config.load()

    assert config.wikidata.blocked_instance_of == ["Q24856", "Q4167410"]
