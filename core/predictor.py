"""
Heuristic momentum predictor for Hijack Force Bot.

Pattern-matching direction calls over recent observations. This is not a
trained model: each detector votes UP or DOWN with a fixed confidence and
the net vote decides the direction.

Patterns:
    VOLUME_SPIKE      recent 5-point avg volume > 3x earlier avg    UP    70
    MOMENTUM_BUILD    >= 3 of last 5 changes positive               UP    65
    MOMENTUM_DECLINE  >= 3 of last 5 changes negative               DOWN  60
    RANGE_BREAKOUT    latest value > 5% away from earlier mean      sign  55
    ACCELERATION      |mean of last 3 accelerations| > 0.001        sign  50
    OVERBOUGHT        RSI > 70                                      DOWN  45
    OVERSOLD          RSI < 30                                      UP    45

Usage:
    from core.predictor import MomentumPredictor

    predictor = MomentumPredictor()
    prediction = predictor.predict("BTCUSDT", observations)
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from core.force_engine import acceleration_series
from shared.constants import (
    MIN_PREDICTION_POINTS,
    PREDICTION_LOOKBACK_POINTS,
    PREDICTION_LOOKBACK_SECONDS,
    PREDICTION_NET_THRESHOLD,
)
from shared.types import Observation, PatternMatch, Prediction, PredictionDirection

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

_ZERO = Decimal("0")
_RECENT = 5
_VOLUME_SPIKE_RATIO = Decimal("3")
_BREAKOUT_PCT = Decimal("0.05")
_ACCEL_EPSILON = Decimal("0.001")
_RSI_OVERBOUGHT = Decimal("70")
_RSI_OVERSOLD = Decimal("30")
_RSI_LOSS_FLOOR = Decimal("0.0001")
_FORCE_SCALE = Decimal("0.1")


def _mean(values: Sequence[Decimal]) -> Decimal:
    if not values:
        return _ZERO
    return sum(values, _ZERO) / Decimal(len(values))


def relative_strength_index(changes: Sequence[Decimal]) -> Decimal:
    """RSI over the given value changes; no losses floors the average loss."""
    gains = [c for c in changes if c > 0]
    losses = [-c for c in changes if c < 0]
    avg_gain = _mean(gains)
    avg_loss = _mean(losses) if losses else _RSI_LOSS_FLOOR
    rs = avg_gain / avg_loss
    return Decimal("100") - Decimal("100") / (1 + rs)


def detect_patterns(observations: Sequence[Observation]) -> list[PatternMatch]:
    """Run every detector over a time-ordered window (caller checks length)."""
    values = [o.value for o in observations]
    volumes = [o.volume for o in observations]
    patterns: list[PatternMatch] = []

    recent_volume = _mean(volumes[-_RECENT:])
    earlier_volume = _mean(volumes[:-_RECENT])
    if earlier_volume > 0 and recent_volume > earlier_volume * _VOLUME_SPIKE_RATIO:
        patterns.append(
            PatternMatch(
                name="VOLUME_SPIKE",
                direction=PredictionDirection.UP,
                confidence=70,
                description=f"Volume {recent_volume / earlier_volume:.1f}x above average",
            )
        )

    recent_values = values[-(_RECENT + 1):]
    changes = [recent_values[i] - recent_values[i - 1] for i in range(1, len(recent_values))]
    rising = sum(1 for c in changes if c > 0)
    falling = sum(1 for c in changes if c < 0)
    if rising >= 3:
        patterns.append(
            PatternMatch(
                name="MOMENTUM_BUILD",
                direction=PredictionDirection.UP,
                confidence=65,
                description=f"{rising} of last {len(changes)} moves up",
            )
        )
    elif falling >= 3:
        patterns.append(
            PatternMatch(
                name="MOMENTUM_DECLINE",
                direction=PredictionDirection.DOWN,
                confidence=60,
                description=f"{falling} of last {len(changes)} moves down",
            )
        )

    earlier_mean = _mean(values[:-_RECENT])
    if earlier_mean != 0:
        deviation = (values[-1] - earlier_mean) / earlier_mean
        if abs(deviation) > _BREAKOUT_PCT:
            patterns.append(
                PatternMatch(
                    name="RANGE_BREAKOUT",
                    direction=PredictionDirection.UP if deviation > 0 else PredictionDirection.DOWN,
                    confidence=55,
                    description=f"{deviation * 100:.1f}% from range mean",
                )
            )

    accelerations = acceleration_series(values)
    if accelerations:
        avg_accel = _mean(accelerations[-3:])
        if abs(avg_accel) > _ACCEL_EPSILON:
            patterns.append(
                PatternMatch(
                    name="ACCELERATION",
                    direction=PredictionDirection.UP if avg_accel > 0 else PredictionDirection.DOWN,
                    confidence=50,
                    description=f"Average acceleration {avg_accel:.6f}",
                )
            )

    rsi = relative_strength_index(changes)
    if rsi > _RSI_OVERBOUGHT:
        patterns.append(
            PatternMatch(
                name="OVERBOUGHT",
                direction=PredictionDirection.DOWN,
                confidence=45,
                description=f"RSI {rsi:.1f}",
            )
        )
    elif rsi < _RSI_OVERSOLD:
        patterns.append(
            PatternMatch(
                name="OVERSOLD",
                direction=PredictionDirection.UP,
                confidence=45,
                description=f"RSI {rsi:.1f}",
            )
        )

    return patterns


def combine_patterns(
    ticker: str, patterns: Sequence[PatternMatch], price: Decimal
) -> Prediction:
    """Net the pattern votes into one direction, confidence and expected force."""
    up = sum(p.confidence for p in patterns if p.direction == PredictionDirection.UP)
    down = sum(p.confidence for p in patterns if p.direction == PredictionDirection.DOWN)
    net = up - down

    if net > PREDICTION_NET_THRESHOLD:
        direction = PredictionDirection.UP
    elif net < -PREDICTION_NET_THRESHOLD:
        direction = PredictionDirection.DOWN
    else:
        direction = PredictionDirection.NEUTRAL

    if patterns:
        mean_conf = Decimal(sum(p.confidence for p in patterns)) / Decimal(len(patterns))
        confidence = int(mean_conf.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    else:
        confidence = 0

    predicted_force = (Decimal(abs(net)) / Decimal("100") * _FORCE_SCALE).quantize(
        Decimal("0.0001"), rounding=ROUND_HALF_UP
    )
    return Prediction(
        ticker=ticker,
        direction=direction,
        confidence=confidence,
        predicted_force=predicted_force,
        patterns=list(patterns),
        price=price,
    )


class MomentumPredictor:
    """Predicts short-horizon direction per ticker from its recent window."""

    def __init__(self) -> None:
        cfg = get_config().get_signals_config().get("predictor", {})
        self._min_points: int = cfg.get("min_points", MIN_PREDICTION_POINTS)
        self._lookback_points: int = cfg.get("lookback_points", PREDICTION_LOOKBACK_POINTS)
        self._lookback_seconds: int = cfg.get("lookback_seconds", PREDICTION_LOOKBACK_SECONDS)

        self._logger = setup_module_logger(
            "predictor", "predictor.log", module_folder="Predictor_Logs"
        )

    @property
    def lookback_points(self) -> int:
        return self._lookback_points

    @property
    def lookback_seconds(self) -> int:
        return self._lookback_seconds

    def predict(self, ticker: str, observations: Sequence[Observation]) -> Prediction | None:
        """Prediction from the last lookback_points observations, None below min_points."""
        window = list(observations)[-self._lookback_points:]
        if len(window) < self._min_points:
            return None

        patterns = detect_patterns(window)
        prediction = combine_patterns(ticker, patterns, window[-1].value)
        self._logger.debug(
            "Prediction %s: %s conf=%d patterns=%s",
            ticker,
            prediction.direction.value,
            prediction.confidence,
            [p.name for p in patterns],
        )
        return prediction

    def predict_all(self, windows: Mapping[str, Sequence[Observation]]) -> list[Prediction]:
        predictions = []
        for ticker, observations in windows.items():
            prediction = self.predict(ticker, observations)
            if prediction is not None:
                predictions.append(prediction)
        return predictions

    def high_confidence(
        self, windows: Mapping[str, Sequence[Observation]], min_confidence: int
    ) -> list[Prediction]:
        """Directional predictions at or above the confidence floor, best first."""
        selected = [
            p
            for p in self.predict_all(windows)
            if p.direction != PredictionDirection.NEUTRAL and p.confidence >= min_confidence
        ]
        selected.sort(key=lambda p: p.confidence, reverse=True)
        return selected
