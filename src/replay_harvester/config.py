"""Configuration management for the replay harvester."""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import CredentialError

DEFAULT_RANKS = [
    "bronze-1",
    "bronze-2",
    "bronze-3",
    "silver-1",
    "silver-2",
    "silver-3",
    "gold-1",
    "gold-2",
    "gold-3",
    "platinum-1",
    "platinum-2",
    "platinum-3",
    "diamond-1",
    "diamond-2",
    "diamond-3",
    "champion-1",
    "champion-2",
    "champion-3",
    "grand-champion-1",
    "grand-champion-2",
    "grand-champion-3",
]


class AppSettings(BaseSettings):
    """Harvester settings with dotenv support.

    Environment variables can be set directly or via .env file. ``RANKS`` is
    read as a JSON list, e.g. ``RANKS='["gold-1", "gold-2"]'``.
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore'
    )

    # ===================
    # Storage
    # ===================
    INDEX_DIR: Path = Field(default=Path('replays'), description='Root directory of the persisted index')
    TOKEN_FILE: Path = Field(default=Path('token'), description='File holding the API token')

    # ===================
    # Upstream query
    # ===================
    API_URL: str = Field(
        default='https://ballchasing.com/api/replays',
        description='Replay listing endpoint'
    )
    PLAYLIST: str = Field(default='ranked-standard', description='Playlist filter')
    SEASON: str = Field(default='f13', description='Season filter')
    PAGE_SIZE: int = Field(default=200, ge=1, le=200, description='Replays requested per index page')
    RANKS: List[str] = Field(
        default_factory=lambda: list(DEFAULT_RANKS),
        description='Ordered ranks swept by the harvester'
    )

    # ===================
    # Rate Limits
    # ===================
    MIN_INTERVAL_S: float = Field(
        default=0.6,
        gt=0,
        description='Minimum spacing between sweep steps (2 calls/second budget)'
    )
    HOURLY_CALL_BUDGET: int = Field(
        default=500,
        ge=1,
        description='Maximum upstream calls in any rolling hour'
    )
    COOLDOWN_S: float = Field(
        default=60.0,
        ge=0,
        description='Extra wait after a throttling or outage signal'
    )
    TIMEOUT_S: float = Field(default=10.0, gt=0, description='HTTP request timeout in seconds')

    # ===================
    # Bootstrap
    # ===================
    BOOTSTRAP_ATTEMPTS: int = Field(default=3, ge=1, description='Attempts per rank for the initial query')

    # ===================
    # Logging
    # ===================
    LOG_LEVEL: str = Field(default='INFO', description='Logging level')
    LOG_FORMAT: str = Field(default='text', description='Log format: text or json')
    LOG_FILE: Optional[Path] = Field(default=None, description='Log file path')

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of: {', '.join(valid_levels)}")
        return v_upper

    @field_validator('LOG_FORMAT')
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in ('text', 'json'):
            raise ValueError(f"LOG_FORMAT must be text or json (got: {v})")
        return v_lower

    @field_validator('RANKS')
    @classmethod
    def validate_ranks(cls, v: List[str]) -> List[str]:
        """Ranks must be a non-empty list of unique, non-blank names."""
        ranks = [rank.strip() for rank in v]
        if not ranks:
            raise ValueError("RANKS must contain at least one rank")
        if any(not rank for rank in ranks):
            raise ValueError("RANKS must not contain blank entries")
        if len(set(ranks)) != len(ranks):
            raise ValueError("RANKS must not contain duplicates")
        return ranks


@lru_cache()
def get_settings() -> AppSettings:
    """Get cached application settings.

    Loads settings from:
    1. Environment variables
    2. .env file (if exists)
    3. Default values

    Returns:
        AppSettings: Cached settings instance
    """
    return AppSettings()


def load_token(path: Path) -> str:
    """Read the API token from ``path``.

    Raises:
        CredentialError: If the file is missing, unreadable or empty
    """
    try:
        token = Path(path).read_text(encoding='utf-8').strip()
    except FileNotFoundError as e:
        raise CredentialError(f"Token file not found: {path}") from e
    except OSError as e:
        raise CredentialError(f"Failed to read token file {path}: {e}") from e

    if not token:
        raise CredentialError(f"Token file is empty: {path}")
    return token
