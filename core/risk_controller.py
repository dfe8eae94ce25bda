"""
Risk and runtime configuration controller for Hijack Force Bot.

Single owner of every mutable trading control checked before an entry:
kill switch, trading toggles, thresholds, per-ticker cooldowns and the
trailing-stop high-water marks. Also holds the autotrader settings and
mode presets.

State is in-memory and process-wide; a restart reloads the defaults from
config/trading.json (falling back to shared.constants).

Emergency stop: creating a PAUSE file in the project root activates the
kill switch on the next check.

Usage:
    from core.risk_controller import RiskController

    risk = RiskController()
    risk.update(entry_threshold="0.1")
    if risk.is_paper_trading_allowed() and not risk.is_on_cooldown("BTCUSDT"):
        ...
"""

from __future__ import annotations

import dataclasses
import time
from decimal import Decimal
from pathlib import Path
from typing import Any

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from config.validate import ConfigValidationError, validate_runtime_changes
from shared.constants import MODE_PRESETS, SECONDS_PER_MINUTE
from shared.types import AutoTraderSettings, RuntimeConfig, TradingMode

_PROJECT_ROOT = Path(__file__).parent.parent
_SENTINEL_FILE = _PROJECT_ROOT / "PAUSE"

_DECIMAL_FIELDS = {
    f.name for f in dataclasses.fields(RuntimeConfig) if f.type in (Decimal, "Decimal")
}
_AUTOTRADER_FIELDS = {f.name for f in dataclasses.fields(AutoTraderSettings)}


def _coerce_runtime(changes: dict[str, Any]) -> dict[str, Any]:
    """Convert numeric strings/floats to Decimal for Decimal-typed fields."""
    return {
        key: Decimal(str(value)) if key in _DECIMAL_FIELDS else value
        for key, value in changes.items()
    }


class RiskController:
    """
    Runtime trading controls shared by the paper trader and autotrader.

    Updates are validated before merging: an invalid update is rejected as
    a whole and leaves the current config untouched.
    """

    def __init__(self) -> None:
        self._logger = setup_module_logger(
            "risk_controller", "risk_controller.log", module_folder="Risk_Logs"
        )

        trading_cfg = get_config().get_trading_config()
        self._defaults = self._load_defaults(trading_cfg.get("runtime_defaults", {}))
        self._autotrader_defaults = self._load_autotrader(trading_cfg.get("autotrader", {}))

        self._config = self._defaults
        self._autotrader = self._autotrader_defaults
        self._kill_reason = ""

        # ticker -> (monotonic start, duration seconds)
        self._cooldowns: dict[str, tuple[float, float]] = {}
        self._high_water_marks: dict[str, Decimal] = {}

        self._logger.info(
            "RiskController initialized: paper=%s live=%s entry=%s exit=%s "
            "sl=%s%% tp=%s%% max_positions=%d size=$%s",
            self._config.paper_trading_enabled,
            self._config.live_trading_enabled,
            self._config.entry_threshold,
            self._config.exit_threshold,
            self._config.stop_loss_percent,
            self._config.take_profit_percent,
            self._config.max_open_positions,
            self._config.trade_size_usd,
        )

    def _load_defaults(self, raw: dict[str, Any]) -> RuntimeConfig:
        errors = validate_runtime_changes(raw)
        if errors:
            self._logger.error("Invalid runtime_defaults, using built-in defaults: %s", errors)
            return RuntimeConfig()
        defaults = dataclasses.replace(RuntimeConfig(), **_coerce_runtime(raw))
        if defaults.kill_switch:
            defaults = dataclasses.replace(
                defaults, paper_trading_enabled=False, live_trading_enabled=False
            )
        return defaults

    def _load_autotrader(self, raw: dict[str, Any]) -> AutoTraderSettings:
        try:
            return self._merge_autotrader(AutoTraderSettings(), raw, apply_preset=False)
        except ConfigValidationError as exc:
            self._logger.error("Invalid autotrader config, using built-in defaults: %s", exc)
            return AutoTraderSettings()

    # ------------------------------------------------------------------
    # Runtime config
    # ------------------------------------------------------------------

    @property
    def config(self) -> RuntimeConfig:
        return self._config

    @property
    def defaults(self) -> RuntimeConfig:
        return self._defaults

    def update(self, **changes: Any) -> RuntimeConfig:
        """Partially update the runtime config; raises ConfigValidationError."""
        errors = validate_runtime_changes(changes)
        kill_after = changes.get("kill_switch", self._config.kill_switch)
        if kill_after:
            errors.extend(
                f"{flag}: cannot enable while kill switch is active"
                for flag in ("paper_trading_enabled", "live_trading_enabled")
                if changes.get(flag) is True
            )
        if errors:
            self._logger.warning("Rejected runtime config update %s: %s", changes, errors)
            raise ConfigValidationError("; ".join(errors))

        remaining = dict(changes)
        kill_switch = remaining.pop("kill_switch", None)
        if kill_switch is True and not self._config.kill_switch:
            self.activate_kill_switch("runtime config update")
        elif kill_switch is False and self._config.kill_switch:
            self.deactivate_kill_switch()

        self._config = dataclasses.replace(self._config, **_coerce_runtime(remaining))
        self._logger.info("Runtime config updated: %s", changes)
        return self._config

    def reset(self) -> RuntimeConfig:
        self._config = self._defaults
        self._kill_reason = ""
        self._logger.info("Runtime config reset to defaults")
        return self._config

    # ------------------------------------------------------------------
    # Kill switch
    # ------------------------------------------------------------------

    @property
    def kill_reason(self) -> str:
        return self._kill_reason

    def activate_kill_switch(self, reason: str = "manual") -> None:
        """Stop all trading: kill switch on, paper and live trading off."""
        self._config = dataclasses.replace(
            self._config,
            kill_switch=True,
            paper_trading_enabled=False,
            live_trading_enabled=False,
        )
        self._kill_reason = reason
        self._logger.critical("KILL SWITCH ACTIVATED: %s", reason)

    def deactivate_kill_switch(self) -> None:
        """Clear the kill switch and resume paper trading only."""
        self._config = dataclasses.replace(
            self._config, kill_switch=False, paper_trading_enabled=True
        )
        self._kill_reason = ""
        self._logger.warning("Kill switch cleared: paper trading resumed")

    def check_pause_sentinel(self) -> bool:
        """Check for PAUSE file in project root (emergency manual override)."""
        exists = _SENTINEL_FILE.exists()
        if exists and not self._config.kill_switch:
            self.activate_kill_switch("PAUSE sentinel file detected")
        return exists

    def is_trading_allowed(self) -> bool:
        cfg = self._config
        return not cfg.kill_switch and (cfg.paper_trading_enabled or cfg.live_trading_enabled)

    def is_paper_trading_allowed(self) -> bool:
        return not self._config.kill_switch and self._config.paper_trading_enabled

    def is_live_trading_allowed(self) -> bool:
        return not self._config.kill_switch and self._config.live_trading_enabled

    # ------------------------------------------------------------------
    # Per-ticker cooldowns (monotonic clock)
    # ------------------------------------------------------------------

    def start_cooldown(self, ticker: str, minutes: int | None = None) -> None:
        duration = (self._config.cooldown_minutes if minutes is None else minutes) * SECONDS_PER_MINUTE
        self._cooldowns[ticker] = (time.monotonic(), float(duration))
        self._logger.debug("Cooldown started for %s: %ds", ticker, duration)

    def cooldown_remaining(self, ticker: str) -> float:
        entry = self._cooldowns.get(ticker)
        if entry is None:
            return 0.0
        started, duration = entry
        remaining = duration - (time.monotonic() - started)
        if remaining <= 0:
            del self._cooldowns[ticker]
            return 0.0
        return remaining

    def is_on_cooldown(self, ticker: str) -> bool:
        return self.cooldown_remaining(ticker) > 0

    def clear_cooldown(self, ticker: str) -> None:
        self._cooldowns.pop(ticker, None)

    # ------------------------------------------------------------------
    # Trailing-stop high-water marks
    # ------------------------------------------------------------------

    def update_high_water_mark(self, ticker: str, price: Decimal, entry_price: Decimal) -> Decimal:
        """Ratchet the mark upward from the entry price; returns the current mark."""
        current = self._high_water_marks.get(ticker, entry_price)
        if price > current:
            current = price
        self._high_water_marks[ticker] = current
        return current

    def get_high_water_mark(self, ticker: str) -> Decimal | None:
        return self._high_water_marks.get(ticker)

    def clear_high_water_mark(self, ticker: str) -> None:
        self._high_water_marks.pop(ticker, None)

    # ------------------------------------------------------------------
    # Autotrader settings
    # ------------------------------------------------------------------

    @property
    def autotrader(self) -> AutoTraderSettings:
        return self._autotrader

    @staticmethod
    def _merge_autotrader(
        current: AutoTraderSettings, changes: dict[str, Any], apply_preset: bool = True
    ) -> AutoTraderSettings:
        unknown = set(changes) - _AUTOTRADER_FIELDS
        if unknown:
            raise ConfigValidationError(f"Unknown autotrader settings: {sorted(unknown)}")

        merged = dict(changes)
        if "mode" in merged:
            try:
                merged["mode"] = TradingMode(str(getattr(merged["mode"], "value", merged["mode"])).upper())
            except ValueError as exc:
                raise ConfigValidationError(f"Unknown autotrader mode: {changes['mode']}") from exc
        if "position_size_usd" in merged:
            merged["position_size_usd"] = Decimal(str(merged["position_size_usd"]))
            if merged["position_size_usd"] <= 0:
                raise ConfigValidationError("position_size_usd: must be > 0")
        for key in ("max_open_positions", "min_confidence", "min_alignment_score", "cooldown_minutes"):
            value = merged.get(key)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
                raise ConfigValidationError(f"{key}: must be a non-negative integer")

        settings = dataclasses.replace(current, **merged)
        if apply_preset and "mode" in merged:
            settings = dataclasses.replace(settings, **MODE_PRESETS[settings.mode.value])
        return settings

    def update_autotrader(self, **changes: Any) -> AutoTraderSettings:
        """Merge autotrader settings; a mode change applies that mode's preset."""
        self._autotrader = self._merge_autotrader(self._autotrader, changes)
        self._logger.info("Autotrader settings updated: %s", self._autotrader)
        return self._autotrader

    def apply_mode(self, mode: TradingMode) -> AutoTraderSettings:
        """Apply a mode preset and enable the autotrader."""
        self._autotrader = dataclasses.replace(
            self._merge_autotrader(self._autotrader, {"mode": mode}), enabled=True
        )
        return self._autotrader

    def disable_autotrader(self) -> None:
        self._autotrader = dataclasses.replace(self._autotrader, enabled=False)
