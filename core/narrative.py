"""
News narrative and social sentiment trackers for Hijack Force Bot.

Both trackers poll RSS feeds through SentimentDataService and score each
item with a keyword dictionary (+1 per hype word, -1 per panic word).

    NarrativeTracker  news headlines -> latest/strongest headline per asset
                      (feeds the "require narrative" entry gate)
    SocialTracker     influencer posts -> weighted mean score per asset
                      (feeds the social sentiment fusion source)

Only items younger than two hours count.

Usage:
    narrative = NarrativeTracker(data_service)
    await narrative.refresh()
    narrative.get_narrative("BTCUSDT").score
"""

from __future__ import annotations

import asyncio
import time
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.constants import (
    DEFAULT_FEED_POLL_SECONDS,
    DEFAULT_NEWS_FEEDS,
    NARRATIVE_MAX_AGE_SECONDS,
)
from shared.types import FeedItem, Narrative, SocialScore

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from core.data_service import SentimentDataService

HYPE_WORDS = (
    "surge", "blast", "skyrocket", "record", "all-time high", "breakout",
    "bull", "rally", "jump", "soar", "massive", "buy", "adoption",
    "bullish", "pump", "moon", "explode", "spike", "gain", "winner",
)

PANIC_WORDS = (
    "crash", "plunge", "collapse", "ban", "lawsuit", "hack", "dump",
    "bear", "fear", "sell", "regulatory", "arrest", "scam", "fraud",
    "bearish", "tank", "drop", "fall", "lose", "warning", "risk",
)

# First match wins, so multi-word names precede their prefixes.
ASSET_KEYWORDS: dict[str, tuple[str, ...]] = {
    "BCH": ("bitcoin cash", "bch"),
    "BTC": ("bitcoin", "btc"),
    "ETH": ("ethereum", "eth", "ether"),
    "SOL": ("solana", "sol"),
    "DOGE": ("dogecoin", "doge"),
    "PEPE": ("pepe",),
    "XRP": ("xrp", "ripple"),
    "ADA": ("cardano", "ada"),
    "AVAX": ("avalanche", "avax"),
    "LINK": ("chainlink", "link"),
    "DOT": ("polkadot", "dot"),
    "SHIB": ("shiba", "shib"),
    "LTC": ("litecoin", "ltc"),
    "MATIC": ("polygon", "matic"),
    "UNI": ("uniswap", "uni"),
    "ARB": ("arbitrum", "arb"),
    "OP": ("optimism",),
    "SUI": ("sui",),
    "APT": ("aptos", "apt"),
}

SOCIAL_BULLISH_WORDS = (
    "bullish", "moon", "pump", "breakout", "buy", "long", "accumulate",
    "hodl", "all time high", "ath", "rally", "surge", "soar", "launch",
    "massive", "huge", "institutional", "adoption", "bullrun",
    "undervalued", "🚀", "📈", "💪", "🔥",
)

SOCIAL_BEARISH_WORDS = (
    "bearish", "dump", "crash", "sell", "short", "warning", "careful",
    "concern", "dead", "scam", "rug", "collapse", "plunge", "drop", "fear",
    "panic", "bubble", "overvalued", "correction", "exit", "📉", "⚠️", "🚨", "💀",
)

SOCIAL_ASSET_KEYWORDS: dict[str, tuple[str, ...]] = {
    "BTC": ("bitcoin", "btc", "$btc", "sats"),
    "ETH": ("ethereum", "eth", "$eth", "vitalik"),
    "SOL": ("solana", "sol", "$sol"),
    "DOGE": ("doge", "dogecoin", "$doge", "elon"),
    "XRP": ("xrp", "ripple", "$xrp"),
    "ADA": ("cardano", "ada", "$ada"),
    "AVAX": ("avalanche", "avax", "$avax"),
    "LINK": ("chainlink", "link", "$link"),
    "DOT": ("polkadot", "dot", "$dot"),
    "SHIB": ("shiba", "shib", "$shib"),
    "PEPE": ("pepe", "$pepe"),
    "MATIC": ("polygon", "matic", "$matic"),
}

_SOCIAL_ITEM_CLAMP = 10
_NO_HEADLINE = "--"


def score_text(
    text: str,
    positive: Sequence[str] = HYPE_WORDS,
    negative: Sequence[str] = PANIC_WORDS,
) -> int:
    """+1 for each positive word present, -1 for each negative word present."""
    lowered = text.lower()
    score = sum(1 for word in positive if word in lowered)
    score -= sum(1 for word in negative if word in lowered)
    return score


def detect_asset(text: str) -> str | None:
    """First asset in ASSET_KEYWORDS order whose keyword appears in the text."""
    lowered = text.lower()
    for asset, keywords in ASSET_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            return asset
    return None


def base_asset(ticker: str) -> str:
    """BTCUSDT / BTC-USD / btcusd -> BTC."""
    cleaned = ticker.upper().replace("-", "")
    for suffix in ("USDT", "USD"):
        if cleaned.endswith(suffix) and len(cleaned) > len(suffix):
            return cleaned[: -len(suffix)]
    return cleaned


class NarrativeTracker:
    """Caches the most relevant recent headline and its score per asset."""

    def __init__(self, data_service: SentimentDataService) -> None:
        self._data_service = data_service

        cfg = get_config()
        self._feeds: list[str] = cfg.get_feeds_config().get("news_feeds", DEFAULT_NEWS_FEEDS)
        self._poll_interval: float = (
            cfg.get_timing_config().get("feeds", {}).get("poll_interval_seconds", DEFAULT_FEED_POLL_SECONDS)
        )

        self._cache: dict[str, Narrative] = {}
        self._running = False

        self._logger = setup_module_logger(
            "narrative", "narrative.log", module_folder="Narrative_Logs"
        )

    def ingest(self, items: Iterable[FeedItem], now: float | None = None) -> int:
        """
        Score items into the cache; returns how many replaced a cached entry.

        An item replaces the cached headline when it is newer or carries a
        stronger (absolute) score.
        """
        now = time.time() if now is None else now
        updated = 0
        for item in items:
            text = f"{item.title} {item.summary}"
            asset = detect_asset(text)
            if asset is None:
                continue

            published = item.published if item.published is not None else now
            if now - published >= NARRATIVE_MAX_AGE_SECONDS:
                continue

            score = score_text(text)
            existing = self._cache.get(asset)
            if (
                existing is None
                or published > existing.updated_at
                or abs(score) > abs(existing.score)
            ):
                self._cache[asset] = Narrative(
                    ticker=asset, score=score, headline=item.title, updated_at=published
                )
                updated += 1
        return updated

    async def refresh(self) -> int:
        results = await asyncio.gather(
            *(self._data_service.fetch_feed(url) for url in self._feeds),
            return_exceptions=True,
        )
        updated = 0
        for url, result in zip(self._feeds, results):
            if isinstance(result, BaseException):
                self._logger.warning("News feed %s failed: %s", url, result)
                continue
            updated += self.ingest(result)
        self._logger.info("Narrative scan complete: %d headlines cached/updated", updated)
        return updated

    def get_narrative(self, ticker: str) -> Narrative:
        asset = base_asset(ticker)
        cached = self._cache.get(asset)
        if cached is None:
            return Narrative(ticker=asset, score=0, headline=_NO_HEADLINE, updated_at=0.0)
        return cached

    def snapshot(self) -> dict[str, Narrative]:
        return dict(self._cache)

    async def run(self) -> None:
        self._running = True
        self._logger.info("Narrative tracker started: %d feeds", len(self._feeds))
        try:
            while self._running:
                try:
                    await self.refresh()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self._logger.error("Narrative refresh error: %s", exc, exc_info=True)
                await asyncio.sleep(self._poll_interval)
        except asyncio.CancelledError:
            self._logger.info("Narrative tracker cancelled")
        finally:
            self._running = False

    def stop(self) -> None:
        self._running = False


class SocialTracker:
    """Weighted keyword sentiment of recent social posts per asset."""

    def __init__(self, data_service: SentimentDataService) -> None:
        self._data_service = data_service

        cfg = get_config()
        self._feeds: list[tuple[str, Decimal]] = [
            (f["url"], Decimal(str(f.get("weight", "1"))))
            for f in cfg.get_feeds_config().get("social_feeds", [])
            if f.get("url")
        ]
        self._poll_interval: float = (
            cfg.get_timing_config().get("feeds", {}).get("poll_interval_seconds", DEFAULT_FEED_POLL_SECONDS)
        )

        # (published, lowered text, weighted score)
        self._posts: list[tuple[float, str, Decimal]] = []
        self._scores: dict[str, SocialScore] = {}
        self._running = False

        self._logger = setup_module_logger(
            "social", "social.log", module_folder="Narrative_Logs"
        )

    def ingest(self, items: Iterable[FeedItem], weight: Decimal, now: float | None = None) -> None:
        now = time.time() if now is None else now
        for item in items:
            published = item.published if item.published is not None else now
            if now - published >= NARRATIVE_MAX_AGE_SECONDS:
                continue
            text = f"{item.title} {item.summary}".lower()
            if any(p[1] == text[:200] for p in self._posts):
                continue
            score = score_text(text, SOCIAL_BULLISH_WORDS, SOCIAL_BEARISH_WORDS)
            raw = max(-_SOCIAL_ITEM_CLAMP, min(_SOCIAL_ITEM_CLAMP, score))
            self._posts.append((published, text[:200], Decimal(raw) * weight))

    def recompute(self, now: float | None = None) -> None:
        """Drop posts older than two hours and rebuild per-asset scores."""
        now = time.time() if now is None else now
        self._posts = [p for p in self._posts if now - p[0] < NARRATIVE_MAX_AGE_SECONDS]
        self._posts.sort(key=lambda p: p[0], reverse=True)

        scores: dict[str, SocialScore] = {}
        for asset, keywords in SOCIAL_ASSET_KEYWORDS.items():
            relevant = [p for p in self._posts if any(k in p[1] for k in keywords)]
            if not relevant:
                continue
            mean = sum((p[2] for p in relevant), Decimal("0")) / Decimal(len(relevant))
            scores[asset] = SocialScore(
                ticker=asset,
                score=mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP),
                posts=len(relevant),
                last_post=relevant[0][1],
            )
        self._scores = scores

    async def refresh(self) -> None:
        urls = [url for url, _ in self._feeds]
        results = await asyncio.gather(
            *(self._data_service.fetch_feed(url) for url in urls),
            return_exceptions=True,
        )
        for (url, weight), result in zip(self._feeds, results):
            if isinstance(result, BaseException):
                self._logger.debug("Social feed %s failed: %s", url, result)
                continue
            self.ingest(result, weight)
        self.recompute()
        self._logger.info("Social scan complete: %d posts tracked", len(self._posts))

    def get_score(self, ticker: str) -> SocialScore:
        asset = base_asset(ticker)
        return self._scores.get(
            asset, SocialScore(ticker=asset, score=Decimal("0"), posts=0, last_post=_NO_HEADLINE)
        )

    async def run(self) -> None:
        self._running = True
        self._logger.info("Social tracker started: %d feeds", len(self._feeds))
        try:
            while self._running:
                try:
                    await self.refresh()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self._logger.error("Social refresh error: %s", exc, exc_info=True)
                await asyncio.sleep(self._poll_interval)
        except asyncio.CancelledError:
            self._logger.info("Social tracker cancelled")
        finally:
            self._running = False

    def stop(self) -> None:
        self._running = False
