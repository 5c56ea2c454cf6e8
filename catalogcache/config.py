"""Configuration for the catalog cache command line tool.

The core (engine, index, store) never reads this module; values are passed
into it explicitly. Only the CLI resolves defaults from the user config file
and the environment.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .utils import DEFAULT_MAX_TRIES, DEFAULT_PAGE_SIZE, DEFAULT_RETRY_DELAY

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.brightcove.com/services/library"
DEFAULT_CACHE_FILE = Path("cache.json")

TOKEN_ENV_VAR = "CATALOGCACHE_TOKEN"
API_URL_ENV_VAR = "CATALOGCACHE_API_URL"
CACHE_FILE_ENV_VAR = "CATALOGCACHE_CACHE_FILE"


@dataclass
class CacheSettings:
    """Behaviour switches for a cache and its sync passes."""

    page_size: int = DEFAULT_PAGE_SIZE
    """Records requested per remote page"""

    include_deleted: bool = False
    """Keep DELETED records in the cache instead of discarding them"""

    strip_invalid_characters: bool = True
    """Remove characters invalid in the snapshot format before writing"""

    strict: bool = True
    """Abort the whole pass when a record can't be merged"""

    max_tries: int = DEFAULT_MAX_TRIES
    """Consecutive transient failures tolerated per remote operation"""

    retry_delay: float = DEFAULT_RETRY_DELAY
    """Fixed delay between retries, in seconds"""

    def __post_init__(self) -> None:
        if self.page_size < 1:
            raise ValueError("page_size must be at least 1")
        if self.max_tries < 1:
            raise ValueError("max_tries must be at least 1")
        if self.retry_delay < 0:
            raise ValueError("retry_delay must not be negative")


class Config:
    """User configuration stored in ~/.config/catalogcache/config."""

    def __init__(self, config_dir: Optional[Path] = None):
        if config_dir is None:
            config_dir = Path.home() / ".config" / "catalogcache"
        self.config_dir = config_dir
        self.config_file = self.config_dir / "config"
        self._values: dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        if not self.config_file.exists():
            return
        try:
            with open(self.config_file, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#") or "=" not in line:
                        continue
                    key, value = line.split("=", 1)
                    self._values[key.strip()] = value.strip()
        except OSError as e:
            logger.warning(f"Failed to read config file {self.config_file}: {e}")

    def _save(self) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as f:
            for key, value in sorted(self._values.items()):
                f.write(f"{key}={value}\n")
        # The file holds a credential
        self.config_file.chmod(0o600)

    @property
    def token(self) -> Optional[str]:
        return os.environ.get(TOKEN_ENV_VAR) or self._values.get(TOKEN_ENV_VAR)

    @property
    def api_url(self) -> str:
        return (
            os.environ.get(API_URL_ENV_VAR)
            or self._values.get(API_URL_ENV_VAR)
            or DEFAULT_API_URL
        )

    @property
    def cache_file(self) -> Path:
        value = os.environ.get(CACHE_FILE_ENV_VAR) or self._values.get(
            CACHE_FILE_ENV_VAR
        )
        return Path(value) if value else DEFAULT_CACHE_FILE

    def is_configured(self) -> bool:
        return bool(self.token)

    def save_token(self, token: str) -> None:
        self._values[TOKEN_ENV_VAR] = token
        self._save()

    def save_cache_file(self, cache_file: Path) -> None:
        self._values[CACHE_FILE_ENV_VAR] = str(cache_file)
        self._save()

    def get_config_path(self) -> Path:
        return self.config_file


config = Config()
