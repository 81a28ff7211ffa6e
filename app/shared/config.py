"""
Process-wide settings source.

Values are merged from, lowest priority first:
1) `env.example` (committed, safe placeholders)
2) `env.local` (optional, MUST NOT be committed)
3) System environment variables
"""

import os
from pathlib import Path

from dotenv import dotenv_values
from loguru import logger

PROJECT_ROOT = Path(__file__).parent.parent.parent

_TRUE_VALUES = {"true", "1", "yes", "on"}


class EnvironConfig:
    """Singleton view over the merged env files and environment."""

    _instance = None
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self._values: dict[str, str | None] = {}
            self._load()
            EnvironConfig._initialized = True

    def _load(self):
        for name in ("env.example", "env.local"):
            path = PROJECT_ROOT / name
            if path.exists():
                self._values.update(dotenv_values(path))
                logger.info("Loaded settings from {}", path)

        self._values.update(os.environ)

    def reload(self):
        """Re-read env files and environment, e.g. after a test changed os.environ."""
        self._values.clear()
        self._load()

    def __contains__(self, key):
        return key in self._values

    def get(self, key, default=None):
        return self._values.get(key, default)

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        if value is None:
            return default
        return str(value).strip().lower() in _TRUE_VALUES

    def get_list(self, key: str) -> list[str]:
        """Comma separated value as a list, blanks dropped."""
        return [x.strip() for x in (self.get(key) or "").split(",") if x.strip()]


config = EnvironConfig()
