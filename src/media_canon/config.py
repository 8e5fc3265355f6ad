from __future__ import annotations

import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field

SEVEN_DAYS_S = 7 * 24 * 3600


class HttpConfig(BaseModel):
    """Outbound HTTP configuration shared by every provider."""

    timeout_s: float = Field(default=15.0, gt=0)
    user_agent: str = Field(default="media-canon/0.1.0 (media metadata reconciliation)")


class WikidataConfig(BaseModel):
    """Knowledge-graph adapter configuration."""

    api_url: str = Field(default="https://www.wikidata.org/w/api.php")
    retries: int = Field(default=2, ge=0)
    backoff_base_s: float = Field(default=0.25, ge=0)
    max_depth: int = Field(default=8, ge=0)
    max_genres: int = Field(default=2, ge=0)
    entity_cache_ttl_s: int = Field(default=SEVEN_DAYS_S, ge=0)

    # Instance-of ids rejected as concrete works: film series, book series,
    # media franchise, saga
    blocked_instance_of: list[str] = Field(
        default_factory=lambda: ["Q24856", "Q277759", "Q7058673", "Q196600"]
    )

    # Root genres that more specific genres fold into
    genre_roots: list[str] = Field(
        default_factory=lambda: [
            "Q132311",
            "Q24925",
            "Q16575965",
            "Q19765983",
            "Q1762165",
            "Q21802675",
            "Q40831",
            "Q25372",
        ]
    )


class MusicBrainzConfig(BaseModel):
    """Music encyclopedia adapter configuration."""

    base_url: str = Field(default="https://musicbrainz.org/ws/2")
    min_interval_s: float = Field(default=1.1, ge=0)
    cache_ttl_s: int = Field(default=SEVEN_DAYS_S, ge=0)
    retries: int = Field(default=2, ge=0)
    backoff_base_s: float = Field(default=0.25, ge=0)

    # Base release selection
    base_scan_limit: int = Field(default=14, ge=1)
    min_tracks: int = Field(default=5, ge=1)
    max_tracks: int = Field(default=30, ge=1)

    # Bonus edition search
    bonus_scan_limit: int = Field(default=18, ge=0)


class BonusScoringConfig(BaseModel):
    """
    Tunable weights for picking a bonus edition.

    Empirically chosen; adjusting them changes which edition wins, never
    whether a result is well-formed.
    """

    min_coverage: float = Field(default=0.85, ge=0.0, le=1.0)
    max_track_surplus: int = Field(default=8, ge=1)
    max_extra_tracks: int = Field(default=5, ge=1)
    official_bonus: float = Field(default=25.0)
    single_extra_bonus: float = Field(default=60.0)
    extra_track_penalty: float = Field(default=8.0)
    edition_keyword_bonus: float = Field(default=12.0)
    recency_cap: float = Field(default=10.0, ge=0)
    recency_base_year: int = Field(default=1970)
    recency_years_per_point: float = Field(default=5.0, gt=0)


class ProvidersConfig(BaseModel):
    """Credentials for the secondary content providers (read from env if absent)."""

    tmdb_api_key: str | None = Field(default=None)
    rawg_api_key: str | None = Field(default=None)
    google_books_api_key: str | None = Field(default=None)
    lastfm_api_key: str | None = Field(default=None)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="WARNING")  # DEBUG, INFO, WARNING, ERROR
    format: str = Field(default="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    redact_secrets: bool = Field(default=True)


class Config(BaseModel):
    """
    Main configuration for media-canon.

    Loads from TOML file with optional environment variable overrides.
    """

    http: HttpConfig = Field(default_factory=HttpConfig)
    wikidata: WikidataConfig = Field(default_factory=WikidataConfig)
    musicbrainz: MusicBrainzConfig = Field(default_factory=MusicBrainzConfig)
    bonus_scoring: BonusScoringConfig = Field(default_factory=BonusScoringConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """
        Load configuration from TOML file with environment variable overrides.

        Environment variables take precedence and follow the pattern:
        MEDIA_CANON_<SECTION>_<KEY> (e.g., MEDIA_CANON_HTTP_TIMEOUT_S)

        All values are gathered into a single dictionary first, then validated
        by Pydantic to ensure consistent type checking and coercion.
        """
        config_dict: dict[str, object] = {}

        if config_path and config_path.exists():
            config_dict = tomllib.loads(config_path.read_text())

        config_dict = cls._merge_env_overrides(config_dict)
        return cls.model_validate(config_dict)

    @staticmethod
    def _section(config_dict: dict[str, object], name: str) -> dict[str, object]:
        section = config_dict.setdefault(name, {})
        if not isinstance(section, dict):
            section = {}
            config_dict[name] = section
        return section

    @classmethod
    def _merge_env_overrides(cls, config_dict: dict[str, object]) -> dict[str, object]:
        """
        Merge environment variable overrides into config dictionary.

        Returns a new dictionary with env vars applied, ready for Pydantic validation.
        """
        env_prefix = "MEDIA_CANON_"

        http = cls._section(config_dict, "http")
        if timeout := os.getenv(f"{env_prefix}HTTP_TIMEOUT_S"):
            http["timeout_s"] = timeout
        if user_agent := os.getenv(f"{env_prefix}HTTP_USER_AGENT"):
            http["user_agent"] = user_agent

        wikidata = cls._section(config_dict, "wikidata")
        if wd_url := os.getenv(f"{env_prefix}WIKIDATA_API_URL"):
            wikidata["api_url"] = wd_url
        if wd_retries := os.getenv(f"{env_prefix}WIKIDATA_RETRIES"):
            wikidata["retries"] = wd_retries
        if wd_depth := os.getenv(f"{env_prefix}WIKIDATA_MAX_DEPTH"):
            wikidata["max_depth"] = wd_depth
        if wd_genres := os.getenv(f"{env_prefix}WIKIDATA_MAX_GENRES"):
            wikidata["max_genres"] = wd_genres
        if wd_ttl := os.getenv(f"{env_prefix}WIKIDATA_ENTITY_CACHE_TTL_S"):
            wikidata["entity_cache_ttl_s"] = wd_ttl
        if wd_roots := os.getenv(f"{env_prefix}WIKIDATA_GENRE_ROOTS"):
            wikidata["genre_roots"] = [q.strip() for q in wd_roots.split(",") if q.strip()]
        if wd_blocked := os.getenv(f"{env_prefix}WIKIDATA_BLOCKED_INSTANCE_OF"):
            wikidata["blocked_instance_of"] = [q.strip() for q in wd_blocked.split(",") if q.strip()]

        musicbrainz = cls._section(config_dict, "musicbrainz")
        if mb_url := os.getenv(f"{env_prefix}MUSICBRAINZ_BASE_URL"):
            musicbrainz["base_url"] = mb_url
        if mb_interval := os.getenv(f"{env_prefix}MUSICBRAINZ_MIN_INTERVAL_S"):
            musicbrainz["min_interval_s"] = mb_interval
        if mb_ttl := os.getenv(f"{env_prefix}MUSICBRAINZ_CACHE_TTL_S"):
            musicbrainz["cache_ttl_s"] = mb_ttl

        # API credentials from env
        providers = cls._section(config_dict, "providers")
        if tmdb_key := os.getenv("TMDB_API_KEY"):
            providers["tmdb_api_key"] = tmdb_key
        if rawg_key := os.getenv("RAWG_API_KEY"):
            providers["rawg_api_key"] = rawg_key
        if books_key := os.getenv("GOOGLE_BOOKS_API_KEY"):
            providers["google_books_api_key"] = books_key
        if lastfm_key := os.getenv("LASTFM_API_KEY"):
            providers["lastfm_api_key"] = lastfm_key

        logging_config = cls._section(config_dict, "logging")
        if log_level := os.getenv(f"{env_prefix}LOGGING_LEVEL"):
            logging_config["level"] = log_level
        if log_format := os.getenv(f"{env_prefix}LOGGING_FORMAT"):
            logging_config["format"] = log_format
        if log_redact := os.getenv(f"{env_prefix}LOGGING_REDACT_SECRETS"):
            logging_config["redact_secrets"] = log_redact.lower() in ("true", "1", "yes")

        return config_dict


## Tests


def test_config_defaults():
    config = Config()
    assert config.http.timeout_s == 15.0
    assert config.musicbrainz.min_interval_s == 1.1
    assert config.musicbrainz.cache_ttl_s == SEVEN_DAYS_S
    assert config.wikidata.max_depth == 8
    assert config.wikidata.retries == 2
    assert config.wikidata.backoff_base_s == 0.25
    assert "Q24856" in config.wikidata.blocked_instance_of


def test_config_bonus_scoring_defaults():
    scoring = Config().bonus_scoring
    assert scoring.min_coverage == 0.85
    assert scoring.official_bonus == 25
    assert scoring.single_extra_bonus == 60
    assert scoring.extra_track_penalty == 8
    assert scoring.edition_keyword_bonus == 12
    assert scoring.recency_cap == 10


def test_config_from_dict():
    config = Config.model_validate(
        {
            "http": {"timeout_s": 5},
            "musicbrainz": {"min_interval_s": 0, "bonus_scan_limit": 3},
        }
    )
    assert config.http.timeout_s == 5.0
    assert config.musicbrainz.min_interval_s == 0
    assert config.musicbrainz.bonus_scan_limit == 3


def test_config_env_overrides(
    monkeypatch,  # pyright: ignore[reportMissingParameterType,reportUnknownParameterType]
):
    monkeypatch.setenv("MEDIA_CANON_HTTP_TIMEOUT_S", "30")  # pyright: ignore[reportUnknownMemberType]
    monkeypatch.setenv("MEDIA_CANON_WIKIDATA_GENRE_ROOTS", "Q1, Q2")  # pyright: ignore[reportUnknownMemberType]
    monkeypatch.setenv("LASTFM_API_KEY", "lf-key")  # pyright: ignore[reportUnknownMemberType]

    config = Config.load()
    assert config.http.timeout_s == 30.0
    assert config.wikidata.genre_roots == ["Q1", "Q2"]
    assert config.providers.lastfm_api_key == "lf-key"


def test_config_load_nonexistent_file():
    config = Config.load(Path("/nonexistent/config.toml"))
    assert config.wikidata.max_genres == 2
