"""
Multi-source signal fusion for Hijack Force Bot.

Combines one primary directional vote with auxiliary sentiment votes into a
weighted-alignment trade signal.

Modes:
    PRIMARY   prediction 30, fear/greed 20, social 20, options 15 (BTC/ETH),
              on-chain 15
    FALLBACK  force 35, fear/greed 20, social 25, on-chain 20

Each source is a SignalSource variant. Auxiliary sources are queried
concurrently with a per-source timeout; a source that fails, times out or
reports no data is omitted from the vote. NEUTRAL votes count toward the
total weight, so they dilute the alignment score.

    direction = LONG if bullish > bearish else SHORT
    alignment = round(max(bullish, bearish) / total * 100)

Fusion has no side effects: archiving and execution belong to the caller.

Usage:
    fusion = SignalFusion(data_service, social_tracker)
    signal = await fusion.fuse("BTCUSDT", prediction, price, FusionMode.PRIMARY)
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from core.narrative import base_asset
from shared.constants import (
    DEFAULT_ENTRY_THRESHOLD,
    FALLBACK_WEIGHTS,
    FEAR_GREED_BEARISH_MIN,
    FEAR_GREED_BULLISH_MAX,
    MIN_CONTRIBUTING_SOURCES,
    ONCHAIN_BEARISH_MAX,
    ONCHAIN_BULLISH_MIN,
    OPTIONS_TICKERS,
    PERCENT,
    PRIMARY_WEIGHTS,
    SOCIAL_BEARISH_MAX,
    SOCIAL_BULLISH_MIN,
)
from shared.types import (
    ForceReading,
    FusionMode,
    Prediction,
    PredictionDirection,
    SignalPolarity,
    SignalVote,
    TradeDirection,
    TradeSignal,
    VoteTally,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from core.data_service import SentimentDataService
    from core.narrative import SocialTracker

_ZERO = Decimal("0")
_DEFAULT_SOURCE_TIMEOUT = 5


class SourceUnavailableError(Exception):
    """Raised by a signal source that has no data for this cycle."""


# ---------------------------------------------------------------------------
# Classification helpers
# ---------------------------------------------------------------------------


def classify_fear_greed(value: int) -> SignalPolarity:
    # Contrarian: extreme fear buys, extreme greed sells
    if value <= FEAR_GREED_BULLISH_MAX:
        return SignalPolarity.BULLISH
    if value >= FEAR_GREED_BEARISH_MIN:
        return SignalPolarity.BEARISH
    return SignalPolarity.NEUTRAL


def classify_social(score: Decimal) -> SignalPolarity:
    if score >= SOCIAL_BULLISH_MIN:
        return SignalPolarity.BULLISH
    if score <= SOCIAL_BEARISH_MAX:
        return SignalPolarity.BEARISH
    return SignalPolarity.NEUTRAL


def classify_onchain(score: int) -> SignalPolarity:
    if score >= ONCHAIN_BULLISH_MIN:
        return SignalPolarity.BULLISH
    if score <= ONCHAIN_BEARISH_MAX:
        return SignalPolarity.BEARISH
    return SignalPolarity.NEUTRAL


def tally(votes: Sequence[SignalVote]) -> VoteTally:
    """Weighted bullish/bearish split and alignment score of a vote set."""
    bullish = sum((v.weight for v in votes if v.signal == SignalPolarity.BULLISH), _ZERO)
    bearish = sum((v.weight for v in votes if v.signal == SignalPolarity.BEARISH), _ZERO)
    total = sum((v.weight for v in votes), _ZERO)

    direction = TradeDirection.LONG if bullish > bearish else TradeDirection.SHORT
    if total > 0:
        ratio = max(bullish, bearish) / total * PERCENT
        alignment = int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    else:
        alignment = 0

    return VoteTally(
        bullish_weight=bullish,
        bearish_weight=bearish,
        total_weight=total,
        direction=direction,
        alignment_score=alignment,
    )


# ---------------------------------------------------------------------------
# Signal sources
# ---------------------------------------------------------------------------


class SignalSource(ABC):
    """One weighted vote in the fusion."""

    name: str = ""

    def __init__(self, weight: Decimal) -> None:
        self.weight = weight

    def applies_to(self, ticker: str) -> bool:
        return True

    @abstractmethod
    async def vote(self, ticker: str) -> SignalVote:
        """Return this source's vote or raise SourceUnavailableError."""

    def _vote(self, signal: SignalPolarity, value: str) -> SignalVote:
        return SignalVote(source=self.name, signal=signal, value=value, weight=self.weight)


class PredictionSource(SignalSource):
    name = "Momentum Predictor"

    def __init__(self, prediction: Prediction, weight: Decimal) -> None:
        super().__init__(weight)
        self._prediction = prediction

    async def vote(self, ticker: str) -> SignalVote:
        direction = self._prediction.direction
        if direction == PredictionDirection.UP:
            signal = SignalPolarity.BULLISH
        elif direction == PredictionDirection.DOWN:
            signal = SignalPolarity.BEARISH
        else:
            signal = SignalPolarity.NEUTRAL
        return self._vote(signal, f"{self._prediction.confidence}% conf, {direction.value}")


class ForceSource(SignalSource):
    name = "Hijack Force"

    def __init__(self, reading: ForceReading, entry_threshold: Decimal, weight: Decimal) -> None:
        super().__init__(weight)
        self._reading = reading
        self._entry_threshold = entry_threshold

    async def vote(self, ticker: str) -> SignalVote:
        reading = self._reading
        signal = SignalPolarity.NEUTRAL
        if reading.hijack_force >= self._entry_threshold:
            if reading.acceleration > 0:
                signal = SignalPolarity.BULLISH
            elif reading.acceleration < 0:
                signal = SignalPolarity.BEARISH
        return self._vote(signal, f"Force {reading.hijack_force:.4f}, accel {reading.acceleration:+.4f}")


class FearGreedSource(SignalSource):
    name = "Fear & Greed"

    def __init__(self, data_service: SentimentDataService, weight: Decimal) -> None:
        super().__init__(weight)
        self._data_service = data_service

    async def vote(self, ticker: str) -> SignalVote:
        index = await self._data_service.get_fear_greed()
        if index is None:
            raise SourceUnavailableError("Fear & Greed index unavailable")
        return self._vote(classify_fear_greed(index.value), f"{index.value} ({index.label})")


class SocialSource(SignalSource):
    name = "Social Sentiment"

    def __init__(self, social: SocialTracker, weight: Decimal) -> None:
        super().__init__(weight)
        self._social = social

    async def vote(self, ticker: str) -> SignalVote:
        social = self._social.get_score(ticker)
        return self._vote(
            classify_social(social.score), f"Score: {social.score:.1f}, {social.posts} posts"
        )


class OptionsSource(SignalSource):
    name = "Options Flow"

    def __init__(
        self,
        data_service: SentimentDataService,
        weight: Decimal,
        tickers: Sequence[str] = OPTIONS_TICKERS,
    ) -> None:
        super().__init__(weight)
        self._data_service = data_service
        self._tickers = {t.upper() for t in tickers}

    def applies_to(self, ticker: str) -> bool:
        return base_asset(ticker) in self._tickers

    async def vote(self, ticker: str) -> SignalVote:
        options = await self._data_service.get_options_sentiment(base_asset(ticker))
        if options is None:
            raise SourceUnavailableError(f"No options data for {ticker}")
        return self._vote(
            options.sentiment, f"P/C: {options.put_call_ratio:.2f}, {options.sentiment.value}"
        )


class OnChainSource(SignalSource):
    name = "On-Chain"

    def __init__(self, data_service: SentimentDataService, weight: Decimal) -> None:
        super().__init__(weight)
        self._data_service = data_service

    async def vote(self, ticker: str) -> SignalVote:
        health = await self._data_service.get_onchain_health(base_asset(ticker))
        if health is None:
            raise SourceUnavailableError(f"No on-chain data for {ticker}")
        return self._vote(classify_onchain(health.score), f"Health: {health.score}/100")


# ---------------------------------------------------------------------------
# Fusion
# ---------------------------------------------------------------------------


class SignalFusion:
    """Builds TradeSignals from a primary vote plus the auxiliary sources."""

    def __init__(
        self,
        data_service: SentimentDataService,
        social: SocialTracker,
    ) -> None:
        cfg = get_config()
        fusion_cfg = cfg.get_signals_config().get("fusion", {})
        self._min_sources: int = fusion_cfg.get("min_sources", MIN_CONTRIBUTING_SOURCES)
        self._primary_weights = self._load_weights(
            fusion_cfg.get("primary_weights"), PRIMARY_WEIGHTS
        )
        self._fallback_weights = self._load_weights(
            fusion_cfg.get("fallback_weights"), FALLBACK_WEIGHTS
        )
        options_tickers = fusion_cfg.get("options_tickers", list(OPTIONS_TICKERS))

        self._source_timeout: float = (
            cfg.get_timing_config().get("fusion", {}).get("source_timeout_seconds", _DEFAULT_SOURCE_TIMEOUT)
        )

        pw = self._primary_weights
        fw = self._fallback_weights
        self._auxiliary: dict[FusionMode, list[SignalSource]] = {
            FusionMode.PRIMARY: [
                FearGreedSource(data_service, pw["fear_greed"]),
                SocialSource(social, pw["social"]),
                OptionsSource(data_service, pw["options"], options_tickers),
                OnChainSource(data_service, pw["onchain"]),
            ],
            FusionMode.FALLBACK: [
                FearGreedSource(data_service, fw["fear_greed"]),
                SocialSource(social, fw["social"]),
                OnChainSource(data_service, fw["onchain"]),
            ],
        }

        self._logger = setup_module_logger(
            "signal_fusion", "signal_fusion.log", module_folder="Signal_Fusion_Logs"
        )

    @staticmethod
    def _load_weights(
        configured: dict[str, str] | None, defaults: dict[str, Decimal]
    ) -> dict[str, Decimal]:
        weights = dict(defaults)
        for key, value in (configured or {}).items():
            weights[key] = Decimal(str(value))
        return weights

    def primary_source(
        self,
        primary: Prediction | ForceReading,
        mode: FusionMode,
        entry_threshold: Decimal = DEFAULT_ENTRY_THRESHOLD,
    ) -> SignalSource:
        if mode == FusionMode.PRIMARY:
            if not isinstance(primary, Prediction):
                raise TypeError("PRIMARY fusion requires a Prediction")
            return PredictionSource(primary, self._primary_weights["prediction"])
        if not isinstance(primary, ForceReading):
            raise TypeError("FALLBACK fusion requires a ForceReading")
        return ForceSource(primary, entry_threshold, self._fallback_weights["force"])

    async def _collect(self, ticker: str, sources: Sequence[SignalSource]) -> list[SignalVote]:
        applicable = [s for s in sources if s.applies_to(ticker)]
        results = await asyncio.gather(
            *(asyncio.wait_for(s.vote(ticker), timeout=self._source_timeout) for s in applicable),
            return_exceptions=True,
        )

        votes: list[SignalVote] = []
        for source, result in zip(applicable, results):
            if isinstance(result, SignalVote):
                votes.append(result)
            elif isinstance(result, BaseException):
                self._logger.debug("Source '%s' skipped for %s: %r", source.name, ticker, result)
        return votes

    async def fuse(
        self,
        ticker: str,
        primary: Prediction | ForceReading,
        price: Decimal,
        mode: FusionMode = FusionMode.PRIMARY,
        entry_threshold: Decimal = DEFAULT_ENTRY_THRESHOLD,
    ) -> TradeSignal | None:
        """
        Fuse the primary vote with the auxiliary sources for one ticker.

        Returns None when fewer than the minimum number of sources voted.
        """
        primary_vote = await self.primary_source(primary, mode, entry_threshold).vote(ticker)
        votes = [primary_vote] + await self._collect(ticker, self._auxiliary[mode])

        if len(votes) < self._min_sources:
            self._logger.debug(
                "Fusion %s: only %d/%d sources voted", ticker, len(votes), self._min_sources
            )
            return None

        result = tally(votes)
        if mode == FusionMode.PRIMARY:
            confidence = primary.confidence
            force = _ZERO
        else:
            confidence = result.alignment_score
            force = primary.hijack_force

        signal = TradeSignal(
            ticker=ticker,
            direction=result.direction,
            confidence=confidence,
            alignment_score=result.alignment_score,
            signals=votes,
            price=price,
            timestamp=time.time(),
            mode=mode,
            force=force,
        )
        self._logger.info(
            "Fused %s %s: %s conf=%d align=%d votes=%d",
            mode.value,
            ticker,
            result.direction.value,
            confidence,
            result.alignment_score,
            len(votes),
        )
        return signal
