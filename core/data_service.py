"""
Sentiment, options and on-chain data service for Hijack Force Bot.

Fetches, caches and normalizes the auxiliary market context used by signal
fusion and the narrative trackers.

Data Sources:
    - alternative.me: Crypto Fear & Greed index
    - Deribit public API: option book summaries -> put/call volume ratio
    - blockchain.info: BTC network stats -> on-chain health score
    - RSS feeds: news headlines and social posts

Caching (in-memory with per-data-type TTL):
    - Fear & Greed: 300s
    - Options sentiment: 300s
    - On-chain health: 600s

Network failures return None (or an empty list for feeds) rather than
raising, so callers can treat the source as unavailable this cycle.

Usage:
    data_service = SentimentDataService(session)
    index = await data_service.get_fear_greed()
    options = await data_service.get_options_sentiment("BTC")
"""

from __future__ import annotations

import time
import xml.etree.ElementTree as ET
from datetime import datetime
from decimal import Decimal, InvalidOperation
from email.utils import parsedate_to_datetime
from typing import Any

import aiohttp

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.constants import (
    BLOCKCHAIN_STATS_URL,
    DERIBIT_BOOK_SUMMARY_URL,
    FEAR_GREED_URL,
    ONCHAIN_BASELINE_SCORE,
    PUT_CALL_BEARISH_MIN,
    PUT_CALL_BULLISH_MAX,
)
from shared.types import (
    FearGreedIndex,
    FeedItem,
    OnChainHealth,
    OptionsSentiment,
    SignalPolarity,
)

# ---------------------------------------------------------------------------
# Cache entry
# ---------------------------------------------------------------------------


class _CacheEntry:
    """In-memory cache entry with TTL."""

    __slots__ = ("data", "expires_at")

    def __init__(self, data: Any, ttl_seconds: float) -> None:
        self.data = data
        self.expires_at = time.monotonic() + ttl_seconds

    @property
    def is_valid(self) -> bool:
        return time.monotonic() < self.expires_at


# ---------------------------------------------------------------------------
# TTL defaults (seconds) per data type
# ---------------------------------------------------------------------------

_TTL_FEAR_GREED = 300
_TTL_OPTIONS = 300
_TTL_ONCHAIN = 600

_USER_AGENT = "hijack-force-bot/1.0"


def classify_put_call_ratio(ratio: Decimal) -> SignalPolarity:
    """Low put/call is bullish positioning, high put/call bearish."""
    if ratio < PUT_CALL_BULLISH_MAX:
        return SignalPolarity.BULLISH
    if ratio > PUT_CALL_BEARISH_MIN:
        return SignalPolarity.BEARISH
    return SignalPolarity.NEUTRAL


def score_network_stats(ticker: str, stats: dict[str, Any] | None) -> OnChainHealth:
    """
    Health score 0-100 around a baseline of 50.

    +15 active addresses > 100k, -10 < 10k, +10 tx count > 500k,
    +15 hash rate > 400M. No stats keeps the baseline.
    """
    if not stats:
        return OnChainHealth(ticker=ticker, score=ONCHAIN_BASELINE_SCORE, factors=["No data available"])

    score = ONCHAIN_BASELINE_SCORE
    factors: list[str] = []

    addresses = stats.get("n_unique_addresses") or 0
    if addresses > 100_000:
        score += 15
        factors.append(f"High activity: {addresses / 1000:.0f}k addresses")
    elif addresses < 10_000:
        score -= 10
        factors.append(f"Low activity: {addresses} addresses")

    tx_count = stats.get("n_tx") or 0
    if tx_count > 500_000:
        score += 10
        factors.append(f"High tx volume: {tx_count / 1_000_000:.1f}M txs")

    hash_rate = stats.get("hash_rate") or 0
    if hash_rate > 400_000_000:
        score += 15
        factors.append("Strong hash rate")

    return OnChainHealth(ticker=ticker, score=max(0, min(100, score)), factors=factors)


def parse_feed(xml_text: str, source: str = "") -> list[FeedItem]:
    """Parse RSS 2.0 <item> or Atom <entry> elements into FeedItems."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError:
        return []

    items: list[FeedItem] = []
    for node in root.iter():
        tag = node.tag.rsplit("}", 1)[-1]
        if tag not in ("item", "entry"):
            continue

        fields: dict[str, str] = {}
        for child in node:
            child_tag = child.tag.rsplit("}", 1)[-1]
            if child.text and child_tag not in fields:
                fields[child_tag] = child.text.strip()

        title = fields.get("title", "")
        if not title:
            continue
        summary = fields.get("description") or fields.get("summary") or fields.get("content", "")
        published = _parse_timestamp(
            fields.get("pubDate") or fields.get("published") or fields.get("updated")
        )
        items.append(FeedItem(title=title, summary=summary, published=published, source=source))
    return items


def _parse_timestamp(raw: str | None) -> float | None:
    if not raw:
        return None
    try:
        return parsedate_to_datetime(raw).timestamp()
    except (TypeError, ValueError):
        pass
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None


class SentimentDataService:
    """
    Async fetcher for the auxiliary signal providers with per-data-type caching.

    All public methods return typed dataclasses from shared/types.py, or
    None when the upstream source is unavailable.
    """

    def __init__(self, session: aiohttp.ClientSession | None = None) -> None:
        """
        Args:
            session: Shared aiohttp session (created internally if None).
        """
        self._session = session
        self._owns_session = session is None

        cfg = get_config()
        providers = cfg.get_feeds_config().get("providers", {})
        self._fear_greed_url: str = providers.get("fear_greed_url", FEAR_GREED_URL)
        self._deribit_url: str = providers.get("deribit_url", DERIBIT_BOOK_SUMMARY_URL)
        self._blockchain_url: str = providers.get("blockchain_stats_url", BLOCKCHAIN_STATS_URL)

        timing = cfg.get_timing_config()
        cache_cfg = timing.get("cache", {})
        self._ttl_fear_greed = cache_cfg.get("fear_greed_ttl_seconds", _TTL_FEAR_GREED)
        self._ttl_options = cache_cfg.get("options_ttl_seconds", _TTL_OPTIONS)
        self._ttl_onchain = cache_cfg.get("onchain_ttl_seconds", _TTL_ONCHAIN)
        self._request_timeout = timing.get("feeds", {}).get("request_timeout_seconds", 10)

        self._cache: dict[str, _CacheEntry] = {}

        self._logger = setup_module_logger(
            "data_service", "data_service.log", module_folder="Data_Service_Logs"
        )

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._request_timeout),
                headers={"User-Agent": _USER_AGENT},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    # ------------------------------------------------------------------
    # Cache helpers
    # ------------------------------------------------------------------

    def _get_cached(self, key: str) -> Any | None:
        entry = self._cache.get(key)
        if entry and entry.is_valid:
            self._logger.debug("Cache hit: %s", key)
            return entry.data
        return None

    def _set_cached(self, key: str, data: Any, ttl: float) -> None:
        self._cache[key] = _CacheEntry(data, ttl)

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _get_json(self, url: str, params: dict[str, str] | None = None) -> Any:
        """Fetch JSON from URL with error handling."""
        session = await self._get_session()
        try:
            async with session.get(url, params=params) as resp:
                if resp.status == 429:
                    self._logger.warning("Rate limited by %s", url)
                    return None
                if resp.status != 200:
                    self._logger.warning("HTTP %d from %s", resp.status, url)
                    return None
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            self._logger.warning("Request failed for %s: %s", url, e)
            return None

    async def _get_text(self, url: str) -> str | None:
        session = await self._get_session()
        try:
            async with session.get(url) as resp:
                if resp.status != 200:
                    self._logger.debug("HTTP %d from %s", resp.status, url)
                    return None
                return await resp.text()
        except (aiohttp.ClientError, TimeoutError, UnicodeDecodeError) as e:
            self._logger.debug("Feed request failed for %s: %s", url, e)
            return None

    # ------------------------------------------------------------------
    # Fear & Greed
    # ------------------------------------------------------------------

    async def get_fear_greed(self) -> FearGreedIndex | None:
        """Latest Crypto Fear & Greed reading (0 = extreme fear, 100 = extreme greed)."""
        cached = self._get_cached("fear_greed")
        if cached is not None:
            return cached

        data = await self._get_json(self._fear_greed_url, params={"limit": "1"})
        try:
            entry = data["data"][0]
            index = FearGreedIndex(
                value=int(entry["value"]),
                label=str(entry.get("value_classification", "")),
            )
        except (TypeError, KeyError, IndexError, ValueError):
            self._logger.debug("Fear & Greed unavailable or malformed: %s", data)
            return None

        self._set_cached("fear_greed", index, self._ttl_fear_greed)
        return index

    # ------------------------------------------------------------------
    # Options flow (Deribit)
    # ------------------------------------------------------------------

    async def get_options_sentiment(self, currency: str) -> OptionsSentiment | None:
        """
        Aggregate put/call volume ratio over all listed options for a currency.

        Deribit option instrument names end in "-C" (call) or "-P" (put).
        """
        currency = currency.upper()
        cache_key = f"options:{currency}"
        cached = self._get_cached(cache_key)
        if cached is not None:
            return cached

        data = await self._get_json(
            self._deribit_url, params={"currency": currency, "kind": "option"}
        )
        if not data or not isinstance(data.get("result"), list):
            return None

        call_volume = Decimal("0")
        put_volume = Decimal("0")
        for book in data["result"]:
            name = str(book.get("instrument_name", ""))
            try:
                volume = Decimal(str(book.get("volume") or 0))
            except InvalidOperation:
                continue
            if name.endswith("-C"):
                call_volume += volume
            elif name.endswith("-P"):
                put_volume += volume

        if call_volume <= 0:
            self._logger.debug("No call volume for %s options", currency)
            return None

        ratio = (put_volume / call_volume).quantize(Decimal("0.01"))
        sentiment = OptionsSentiment(
            currency=currency,
            put_call_ratio=ratio,
            sentiment=classify_put_call_ratio(ratio),
        )
        self._set_cached(cache_key, sentiment, self._ttl_options)
        return sentiment

    # ------------------------------------------------------------------
    # On-chain health
    # ------------------------------------------------------------------

    async def get_onchain_health(self, ticker: str) -> OnChainHealth | None:
        """
        On-chain health for a base asset.

        Only BTC has a free stats source; other assets keep the baseline.
        Returns None when the BTC stats request fails.
        """
        base = ticker.upper()
        cache_key = f"onchain:{base}"
        cached = self._get_cached(cache_key)
        if cached is not None:
            return cached

        if base != "BTC":
            health = score_network_stats(base, None)
        else:
            stats = await self._get_json(self._blockchain_url)
            if not isinstance(stats, dict):
                return None
            health = score_network_stats(base, stats)

        self._set_cached(cache_key, health, self._ttl_onchain)
        return health

    # ------------------------------------------------------------------
    # RSS feeds
    # ------------------------------------------------------------------

    async def fetch_feed(self, url: str) -> list[FeedItem]:
        """Fetch and parse one RSS/Atom feed; failures yield an empty list."""
        text = await self._get_text(url)
        if text is None:
            return []
        items = parse_feed(text, source=url)
        self._logger.debug("Fetched %d items from %s", len(items), url)
        return items
