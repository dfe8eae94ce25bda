"""
Configuration loader for Hijack Force Bot.

Parameters live in JSON files next to this module, one per concern:

    app.json      storage location, observation retention, logging
    trading.json  runtime defaults and autotrader settings
    signals.json  force engine, predictor and fusion parameters
    timing.json   loop intervals, timeouts, cooldowns
    feeds.json    tick feed, RSS/social feeds, provider endpoints

Secrets and deployment overrides come from the environment (.env is
loaded on import): TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID, HIJACK_DB_PATH,
TICK_FEED_URL, AUTOTRADER_ENABLED.

Usage:
    from config.loader import get_config, get_env_var

    signals = get_config().get_signals_config()
    enabled = get_env_var("AUTOTRADER_ENABLED", False, bool)
"""

import json
import os
from decimal import InvalidOperation
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()

_CONFIG_DIR = Path(__file__).parent
_PROJECT_ROOT = _CONFIG_DIR.parent

_DEFAULT_DB_PATH = "data/hijack.db"
_TRUE_STRINGS = ("true", "1", "yes", "on")


def _load_json(filepath: Path) -> Dict[str, Any]:
    """Parsed JSON object, or {} when the file is missing or malformed."""
    if not filepath.exists():
        print(f"[CONFIG_WARN] Config file not found: {filepath}")
        return {}
    try:
        data = json.loads(filepath.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        print(f"[CONFIG_ERROR] Invalid JSON in {filepath}: {e}")
        return {}
    if not isinstance(data, dict):
        print(f"[CONFIG_ERROR] Expected a JSON object in {filepath}")
        return {}
    return data


def get_env_var(var_name: str, default_value: Any, var_type: type) -> Any:
    """
    Typed environment lookup.

    bool accepts true/1/yes/on (case-insensitive); any other set value is
    False. Values that fail conversion fall back to default_value.
    """
    raw = os.getenv(var_name)
    if raw is None or raw == "":
        return default_value
    if var_type is bool:
        return raw.strip().lower() in _TRUE_STRINGS
    try:
        return var_type(raw)
    except (ValueError, TypeError, InvalidOperation):
        return default_value


class ConfigLoader:
    """Cached access to the JSON config files; one shared instance per process."""

    _instance: Optional["ConfigLoader"] = None

    def __init__(self, config_dir: Path = _CONFIG_DIR, project_root: Path = _PROJECT_ROOT):
        self._config_dir = config_dir
        self._project_root = project_root

    @classmethod
    def get_instance(cls) -> "ConfigLoader":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @property
    def project_root(self) -> Path:
        return self._project_root

    def resolve_path(self, path: str) -> Path:
        """Absolute paths pass through; relative ones are taken from the project root."""
        candidate = Path(path)
        return candidate if candidate.is_absolute() else self._project_root / candidate

    # ------------------------------------------------------------------
    # Per-file accessors
    # ------------------------------------------------------------------

    @lru_cache(maxsize=1)
    def get_app_config(self) -> Dict[str, Any]:
        return _load_json(self._config_dir / "app.json")

    @lru_cache(maxsize=1)
    def get_trading_config(self) -> Dict[str, Any]:
        return _load_json(self._config_dir / "trading.json")

    @lru_cache(maxsize=1)
    def get_signals_config(self) -> Dict[str, Any]:
        return _load_json(self._config_dir / "signals.json")

    @lru_cache(maxsize=1)
    def get_timing_config(self) -> Dict[str, Any]:
        return _load_json(self._config_dir / "timing.json")

    @lru_cache(maxsize=1)
    def get_feeds_config(self) -> Dict[str, Any]:
        return _load_json(self._config_dir / "feeds.json")

    @lru_cache(maxsize=16)
    def get_config_file(self, config_name: str) -> Dict[str, Any]:
        """Any other <config_name>.json in the config directory."""
        return _load_json(self._config_dir / f"{config_name}.json")

    # ------------------------------------------------------------------
    # Derived settings
    # ------------------------------------------------------------------

    def get_db_path(self) -> Path:
        """SQLite file: HIJACK_DB_PATH, else app.json storage.db_path."""
        configured = self.get_app_config().get("storage", {}).get("db_path", _DEFAULT_DB_PATH)
        return self.resolve_path(get_env_var("HIJACK_DB_PATH", configured, str))

    def clear_cache(self) -> None:
        """Drop cached file contents so the next access re-reads from disk."""
        for accessor in (
            self.get_app_config,
            self.get_trading_config,
            self.get_signals_config,
            self.get_timing_config,
            self.get_feeds_config,
            self.get_config_file,
        ):
            accessor.cache_clear()


def get_config() -> ConfigLoader:
    return ConfigLoader.get_instance()
