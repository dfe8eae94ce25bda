"""
Shared data types for Hijack Force Bot.

Centralized dataclasses and enums used across all modules.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SignalPolarity(Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class TradeDirection(Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class PredictionDirection(Enum):
    UP = "UP"
    DOWN = "DOWN"
    NEUTRAL = "NEUTRAL"


class Trend(Enum):
    UP = "UP"  # acceleration > 0.001
    DOWN = "DOWN"  # acceleration < -0.001
    FLAT = "FLAT"


class PositionStatus(Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"  # terminal


class HijackEventType(Enum):
    ENTRY = "ENTRY"
    TAKE_PROFIT = "TAKE_PROFIT"
    STOP_LOSS = "STOP_LOSS"
    MOMENTUM_DIED = "MOMENTUM_DIED"
    TRAILING_STOP = "TRAILING_STOP"


class FusionMode(Enum):
    PRIMARY = "PRIMARY"  # prediction-led vote
    FALLBACK = "FALLBACK"  # force-led vote


class TradingMode(Enum):
    AGGRESSIVE = "AGGRESSIVE"
    BALANCED = "BALANCED"
    CONSERVATIVE = "CONSERVATIVE"


# ---------------------------------------------------------------------------
# Market Data Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Observation:
    """Single trade tick for one ticker."""

    ticker: str
    value: Decimal  # price (or proxy score)
    volume: Decimal
    time: float  # unix seconds


@dataclass(frozen=True)
class ForceReading:
    ticker: str
    hijack_force: Decimal  # always >= 0
    latest_value: Decimal
    latest_volume: Decimal
    acceleration: Decimal  # signed, last central difference
    is_hijacking: bool


@dataclass(frozen=True)
class TimeframeForce:
    timeframe: str  # "1m", "5m", "15m"
    force: Decimal
    acceleration: Decimal
    trend: Trend


@dataclass(frozen=True)
class MultiTimeframeForce:
    ticker: str
    frames: list[TimeframeForce]
    confluence: bool  # all frames share a non-FLAT trend


# ---------------------------------------------------------------------------
# Prediction Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PatternMatch:
    name: str  # e.g. "VOLUME_SPIKE", "MOMENTUM_BUILD"
    direction: PredictionDirection
    confidence: int  # 0-100
    description: str


@dataclass(frozen=True)
class Prediction:
    ticker: str
    direction: PredictionDirection
    confidence: int  # 0-100
    predicted_force: Decimal
    patterns: list[PatternMatch]
    price: Decimal


# ---------------------------------------------------------------------------
# Signal Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceScore:
    """Result of one capability lookup (fear/greed, social, options, on-chain)."""

    classification: SignalPolarity
    numeric_value: Decimal
    display: str


@dataclass(frozen=True)
class SignalVote:
    source: str
    signal: SignalPolarity
    value: str  # display string
    weight: Decimal


@dataclass(frozen=True)
class VoteTally:
    bullish_weight: Decimal
    bearish_weight: Decimal
    total_weight: Decimal
    direction: TradeDirection
    alignment_score: int  # 0-100


@dataclass(frozen=True)
class TradeSignal:
    ticker: str
    direction: TradeDirection
    confidence: int  # 0-100
    alignment_score: int  # 0-100
    signals: list[SignalVote]
    price: Decimal
    timestamp: float
    mode: FusionMode = FusionMode.PRIMARY
    force: Decimal = Decimal("0")


@dataclass(frozen=True)
class FearGreedIndex:
    value: int  # 0-100
    label: str  # e.g. "Extreme Fear"


@dataclass(frozen=True)
class OptionsSentiment:
    currency: str
    put_call_ratio: Decimal
    sentiment: SignalPolarity


@dataclass(frozen=True)
class OnChainHealth:
    ticker: str
    score: int  # 0-100, baseline 50
    factors: list[str]


@dataclass(frozen=True)
class FeedItem:
    title: str
    summary: str
    published: float | None  # unix seconds, None when the feed omits it
    source: str = ""


@dataclass(frozen=True)
class Narrative:
    ticker: str
    score: int
    headline: str
    updated_at: float


@dataclass(frozen=True)
class SocialScore:
    ticker: str
    score: Decimal
    posts: int
    last_post: str


# ---------------------------------------------------------------------------
# Position Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Position:
    id: int
    ticker: str
    entry_price: Decimal
    quantity: Decimal  # trade_size_usd / entry_price, fixed at entry
    status: PositionStatus
    force_at_entry: Decimal
    opened_at: float
    exit_price: Decimal | None = None
    profit: Decimal | None = None
    closed_at: float | None = None
    exit_reason: str | None = None


@dataclass(frozen=True)
class HijackEvent:
    ticker: str
    price: Decimal
    force: Decimal
    narrative_score: int
    event_type: HijackEventType
    recorded_at: float


@dataclass(frozen=True)
class EntryCheck:
    can_proceed: bool
    reason: str


@dataclass(frozen=True)
class ExitDecision:
    event_type: HijackEventType
    pnl_percent: Decimal
    reason: str


# ---------------------------------------------------------------------------
# Runtime Configuration Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuntimeConfig:
    kill_switch: bool = False
    paper_trading_enabled: bool = True
    live_trading_enabled: bool = False
    entry_threshold: Decimal = Decimal("0.08")
    exit_threshold: Decimal = Decimal("0.01")
    stop_loss_percent: Decimal = Decimal("-2.0")
    take_profit_percent: Decimal = Decimal("3.0")
    trailing_stop_enabled: bool = True
    trailing_stop_percent: Decimal = Decimal("1.5")
    trailing_activation_percent: Decimal = Decimal("1.0")
    require_narrative: bool = True
    max_open_positions: int = 5
    trade_size_usd: Decimal = Decimal("1000")
    cooldown_minutes: int = 30


@dataclass(frozen=True)
class AutoTraderSettings:
    enabled: bool = False
    mode: TradingMode = TradingMode.BALANCED
    max_open_positions: int = 3
    position_size_usd: Decimal = Decimal("100")
    min_confidence: int = 55
    require_sentiment_alignment: bool = True
    min_alignment_score: int = 60
    cooldown_minutes: int = 30


# ---------------------------------------------------------------------------
# Statistics Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TradingStats:
    total_trades: int
    wins: int
    losses: int
    win_rate: Decimal  # percent, 0-100
    total_pnl_usd: Decimal
    avg_pnl_usd: Decimal
    open_positions: int


@dataclass(frozen=True)
class PnLBucket:
    day: str  # YYYY-MM-DD (UTC)
    daily_pnl: Decimal
    trades: int


@dataclass(frozen=True)
class BacktestTrade:
    ticker: str
    entry_price: Decimal
    exit_price: Decimal
    entry_time: float
    exit_time: float
    force_at_entry: Decimal
    pnl_percent: Decimal
    pnl_usd: Decimal
    exit_reason: str


@dataclass(frozen=True)
class BacktestSummary:
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: Decimal = Decimal("0")  # percent, 0-100
    total_pnl_usd: Decimal = Decimal("0")
    avg_pnl_usd: Decimal = Decimal("0")
    max_win_usd: Decimal = Decimal("0")
    max_loss_usd: Decimal = Decimal("0")
    profit_factor: Decimal = Decimal("0")  # Infinity when nothing was lost
    sharpe_ratio: Decimal = Decimal("0")
    max_drawdown_percent: Decimal = Decimal("0")


@dataclass(frozen=True)
class EquityPoint:
    day: str  # YYYY-MM-DD (UTC) of the closing trade
    value: Decimal


@dataclass(frozen=True)
class BacktestResult:
    start: float
    end: float
    config: RuntimeConfig
    trades: list[BacktestTrade]
    summary: BacktestSummary
    equity: list[EquityPoint]
    open_at_end: list[str]  # tickers still holding a position when the data ran out


@dataclass
class BotStats:
    is_running: bool = False
    mode: TradingMode = TradingMode.BALANCED
    trades_executed: int = 0
    signals_generated: int = 0
    last_signal: TradeSignal | None = None
    last_trade_at: float | None = None
    uptime_seconds: int = 0
    recent_signals: list[TradeSignal] = field(default_factory=list)
