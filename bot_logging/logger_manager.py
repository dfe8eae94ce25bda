"""
Logging setup for Hijack Force Bot.

Each component writes to its own rotating file under logs/<Module_Folder>/.
Trade lifecycle records (entries, exits, fused signals) additionally go to
a JSON-lines trail in logs/Trade_Event_Logs/trade_events.log, one object
per line, with Decimal values kept as strings.

Settings come from the "logging" section of config/app.json:
    log_dir         root folder (relative to the project root)
    level           default level name for module loggers
    max_bytes       rotate a file once it reaches this size
    backup_count    rotated files kept per logger
    console         also echo the "main" logger to stderr
    module_folders  component -> folder name, created at startup

Usage:
    from bot_logging.logger_manager import setup_module_logger

    logger = setup_module_logger("force_engine", "force_engine.log", module_folder="Force_Engine_Logs")
"""

import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from config.loader import get_config
from shared.serialization_utils import dumps

_PROJECT_ROOT = Path(__file__).parent.parent

_log_cfg: dict[str, Any] = get_config().get_app_config().get("logging", {})

_LOG_DIR = str(_PROJECT_ROOT / _log_cfg.get("log_dir", "logs"))
_DEFAULT_LEVEL = logging.getLevelName(str(_log_cfg.get("level", "INFO")).upper())
_MAX_BYTES = int(_log_cfg.get("max_bytes", 10 * 1024 * 1024))
_BACKUP_COUNT = int(_log_cfg.get("backup_count", 5))
_CONSOLE_LOGGERS = {"main"} if _log_cfg.get("console", True) else set()
_MODULE_FOLDERS: dict[str, str] = _log_cfg.get("module_folders", {})

# Record attributes copied into JSON output when set via `extra=`
_JSON_EXTRA_KEYS = (
    "trace_id",
    "event_type",
    "ticker",
    "source_module",
    "force",
    "price",
    "position_id",
    "error",
    "data",
)


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _JSON_EXTRA_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return dumps(entry)


class HumanReadableFormatter(logging.Formatter):
    FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-16s | %(message)s"
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(self) -> None:
        super().__init__(fmt=self.FORMAT, datefmt=self.DATE_FORMAT)


def create_module_log_directories() -> dict[str, str]:
    """Create logs/ and every configured module folder; returns key -> path."""
    os.makedirs(_LOG_DIR, exist_ok=True)
    paths = {}
    for key, folder in _MODULE_FOLDERS.items():
        path = os.path.join(_LOG_DIR, folder)
        os.makedirs(path, exist_ok=True)
        paths[key] = path
    return paths


def setup_module_logger(
    name: str,
    log_file: str,
    level: int | None = None,
    module_folder: str | None = None,
    use_json_formatter: bool = False,
) -> logging.Logger:
    """
    Return the named logger, attaching a rotating file handler on first use.

    Args:
        name: Logger name, one per component.
        log_file: File name inside module_folder (or directly in logs/).
        level: Overrides the configured default level.
        module_folder: Sub-folder of logs/, e.g. "Paper_Trader_Logs".
        use_json_formatter: Write JSON lines instead of the pipe format.

    Calling it again for the same name returns the existing logger
    unchanged, so components constructed more than once never duplicate
    handlers.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(level if level is not None else _DEFAULT_LEVEL)
    logger.propagate = False

    folder = os.path.join(_LOG_DIR, module_folder) if module_folder else _LOG_DIR
    os.makedirs(folder, exist_ok=True)

    formatter: logging.Formatter = JSONFormatter() if use_json_formatter else HumanReadableFormatter()

    file_handler = RotatingFileHandler(
        os.path.join(folder, log_file),
        maxBytes=_MAX_BYTES,
        backupCount=_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if name in _CONSOLE_LOGGERS:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(HumanReadableFormatter())
        logger.addHandler(console)

    return logger


def get_trade_event_logger() -> logging.Logger:
    return setup_module_logger(
        "trade_events",
        "trade_events.log",
        level=logging.INFO,
        module_folder="Trade_Event_Logs",
        use_json_formatter=True,
    )


def log_trade_event(
    event_type: str,
    ticker: str,
    source_module: str,
    data: dict[str, Any],
) -> None:
    """Append one trade lifecycle record (ENTRY, exit reason, FUSED_SIGNAL) to the trail."""
    get_trade_event_logger().info(
        "%s %s",
        event_type,
        ticker,
        extra={
            "event_type": event_type,
            "ticker": ticker,
            "source_module": source_module,
            "data": data,
        },
    )
