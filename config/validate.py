"""
Startup and runtime validation of Hijack Force Bot configuration.

validate_all_configs() runs once at startup over every JSON file and raises
a single ConfigValidationError listing all problems, so a misconfigured
deployment fails before any task starts. validate_runtime_changes() guards
RiskController.update() against out-of-range thresholds.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from config.loader import get_config

_MISSING = object()


class ConfigValidationError(ValueError):
    """A config file or runtime update is missing keys or holds invalid values."""


def _lookup(config: dict[str, Any], dotted_key: str) -> Any:
    node: Any = config
    for part in dotted_key.split("."):
        if not isinstance(node, dict):
            return _MISSING
        node = node.get(part, _MISSING)
        if node is _MISSING:
            break
    return node


def _missing_keys(config: dict[str, Any], dotted_keys: list[str]) -> list[str]:
    return [key for key in dotted_keys if _lookup(config, key) is _MISSING]


def _as_decimal(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() else None


def validate_app_config(config: dict[str, Any]) -> list[str]:
    errors = _missing_keys(config, ["storage.db_path", "logging.log_dir"])
    retention = _lookup(config, "storage.observation_retention_hours")
    if retention is not _MISSING and not (_as_decimal(retention) or 0) > 0:
        errors.append("storage.observation_retention_hours: must be > 0")
    return errors


def validate_trading_config(config: dict[str, Any]) -> list[str]:
    """Required runtime defaults present, and in range."""
    errors = _missing_keys(
        config,
        [
            "runtime_defaults.entry_threshold",
            "runtime_defaults.exit_threshold",
            "runtime_defaults.stop_loss_percent",
            "runtime_defaults.take_profit_percent",
            "runtime_defaults.max_open_positions",
            "runtime_defaults.trade_size_usd",
            "autotrader.mode",
        ],
    )
    if not errors:
        errors.extend(validate_runtime_changes(config["runtime_defaults"]))
    return errors


def validate_signals_config(config: dict[str, Any]) -> list[str]:
    """Force and fusion sections present; every fusion weight a positive number."""
    errors = _missing_keys(
        config,
        [
            "force.hijack_threshold",
            "force.window_seconds",
            "fusion.primary_weights",
            "fusion.fallback_weights",
        ],
    )
    for table in ("primary_weights", "fallback_weights"):
        weights = _lookup(config, f"fusion.{table}")
        if not isinstance(weights, dict):
            continue
        for source, weight in weights.items():
            if not (_as_decimal(weight) or 0) > 0:
                errors.append(f"fusion.{table}.{source}: weight must be > 0")
    return errors


def validate_timing_config(config: dict[str, Any]) -> list[str]:
    """Scan interval present; every *_seconds value a positive number."""
    errors = _missing_keys(config, ["autotrader.scan_interval_seconds"])
    for section, values in config.items():
        if not isinstance(values, dict):
            continue
        for key, value in values.items():
            if key.endswith("_seconds") and not (_as_decimal(value) or 0) > 0:
                errors.append(f"{section}.{key}: must be > 0")
    return errors


def validate_feeds_config(config: dict[str, Any]) -> list[str]:
    errors = _missing_keys(config, ["tick_feed.url", "tick_feed.ticker_map"])
    if not errors:
        ticker_map = config["tick_feed"]["ticker_map"]
        if not isinstance(ticker_map, dict) or len(ticker_map) == 0:
            errors.append("tick_feed.ticker_map: must be a non-empty mapping")
    return errors


# ---------------------------------------------------------------------------
# Runtime config update validation
# ---------------------------------------------------------------------------

_BOOL_FIELDS = (
    "kill_switch",
    "paper_trading_enabled",
    "live_trading_enabled",
    "trailing_stop_enabled",
    "require_narrative",
)

# field -> (lower bound, inclusive?, upper bound, inclusive?)
_NUMERIC_BOUNDS: dict[str, tuple[Decimal | None, bool, Decimal | None, bool]] = {
    "entry_threshold": (Decimal("0"), True, None, False),
    "exit_threshold": (Decimal("0"), True, None, False),
    "stop_loss_percent": (Decimal("-100"), True, Decimal("0"), True),
    "take_profit_percent": (Decimal("0"), False, None, False),
    "trailing_stop_percent": (Decimal("0"), True, Decimal("100"), True),
    "trailing_activation_percent": (Decimal("0"), True, None, False),
    "trade_size_usd": (Decimal("0"), False, None, False),
}

_INT_FIELDS = ("max_open_positions", "cooldown_minutes")


def validate_runtime_changes(changes: dict[str, Any]) -> list[str]:
    """
    Validate a (partial) runtime config mapping.

    Returns a list of human-readable problems; empty when every value is
    known and in range.
    """
    errors: list[str] = []
    known = set(_BOOL_FIELDS) | set(_NUMERIC_BOUNDS) | set(_INT_FIELDS)

    for key, value in changes.items():
        if key not in known:
            errors.append(f"{key}: unknown runtime setting")
            continue

        if key in _BOOL_FIELDS:
            if not isinstance(value, bool):
                errors.append(f"{key}: must be a boolean")
            continue

        if key in _INT_FIELDS:
            if isinstance(value, bool) or not isinstance(value, int):
                errors.append(f"{key}: must be an integer")
            elif value < 0:
                errors.append(f"{key}: must be >= 0")
            continue

        if isinstance(value, bool):
            errors.append(f"{key}: must be numeric")
            continue
        try:
            number = Decimal(str(value))
        except (InvalidOperation, ValueError):
            errors.append(f"{key}: must be numeric")
            continue
        if not number.is_finite():
            errors.append(f"{key}: must be finite")
            continue

        low, low_inclusive, high, high_inclusive = _NUMERIC_BOUNDS[key]
        if low is not None and (number < low or (number == low and not low_inclusive)):
            op = ">=" if low_inclusive else ">"
            errors.append(f"{key}: must be {op} {low}")
        if high is not None and (number > high or (number == high and not high_inclusive)):
            op = "<=" if high_inclusive else "<"
            errors.append(f"{key}: must be {op} {high}")

    return errors


def validate_all_configs() -> None:
    """Check every config file; raise one ConfigValidationError naming all problems."""
    loader = get_config()
    checks: list[tuple[str, Callable[[], dict[str, Any]], Callable[[dict[str, Any]], list[str]]]] = [
        ("app.json", loader.get_app_config, validate_app_config),
        ("trading.json", loader.get_trading_config, validate_trading_config),
        ("signals.json", loader.get_signals_config, validate_signals_config),
        ("timing.json", loader.get_timing_config, validate_timing_config),
        ("feeds.json", loader.get_feeds_config, validate_feeds_config),
    ]

    report: list[str] = []
    for name, load, validate in checks:
        config = load()
        problems = validate(config) if config else ["file is empty or not found"]
        if problems:
            report.append(f"  {name}:")
            report.extend(f"    - {problem}" for problem in problems)

    if report:
        raise ConfigValidationError("Configuration validation failed:\n" + "\n".join(report))
