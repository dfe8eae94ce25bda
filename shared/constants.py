"""
Shared constants for Hijack Force Bot.

Numeric constants, provider endpoints, and default values used across all modules.
"""

from decimal import Decimal

# ---------------------------------------------------------------------------
# Numeric Constants
# ---------------------------------------------------------------------------

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400
PERCENT = Decimal("100")

# ---------------------------------------------------------------------------
# Force Engine Defaults
# ---------------------------------------------------------------------------

MIN_FORCE_POINTS = 3  # central difference needs i-1, i, i+1
DEFAULT_HIJACK_THRESHOLD = Decimal("0.05")  # alerting only, not trading
DEFAULT_SCAN_WINDOW_SECONDS = 180
DEFAULT_MAX_POINTS_PER_TICKER = 50
TREND_EPSILON = Decimal("0.001")
TIMEFRAME_MINUTES = {"1m": 1, "5m": 5, "15m": 15}
TIMEFRAME_WINDOW_MULTIPLIER = 3

# ---------------------------------------------------------------------------
# Predictor Defaults
# ---------------------------------------------------------------------------

MIN_PREDICTION_POINTS = 10
PREDICTION_LOOKBACK_POINTS = 60
PREDICTION_LOOKBACK_SECONDS = 2 * SECONDS_PER_HOUR
PREDICTION_NET_THRESHOLD = 10

# ---------------------------------------------------------------------------
# Backtest Defaults
# ---------------------------------------------------------------------------

BACKTEST_HISTORY_POINTS = 50  # per-ticker replay window
BACKTEST_DEFAULT_HOURS = 24
SHARPE_PERIODS_PER_YEAR = 252

# ---------------------------------------------------------------------------
# Signal Fusion Weights (percent points)
# ---------------------------------------------------------------------------

PRIMARY_WEIGHTS = {
    "prediction": Decimal("30"),
    "fear_greed": Decimal("20"),
    "social": Decimal("20"),
    "options": Decimal("15"),
    "onchain": Decimal("15"),
}

FALLBACK_WEIGHTS = {
    "force": Decimal("35"),
    "fear_greed": Decimal("20"),
    "social": Decimal("25"),
    "onchain": Decimal("20"),
}

MIN_CONTRIBUTING_SOURCES = 3
OPTIONS_TICKERS = ("BTC", "ETH")

# Classification thresholds
FEAR_GREED_BULLISH_MAX = 25  # extreme fear -> contrarian buy
FEAR_GREED_BEARISH_MIN = 75  # extreme greed -> contrarian sell
SOCIAL_BULLISH_MIN = Decimal("2")
SOCIAL_BEARISH_MAX = Decimal("-2")
ONCHAIN_BULLISH_MIN = 70
ONCHAIN_BEARISH_MAX = 40
PUT_CALL_BULLISH_MAX = Decimal("0.7")
PUT_CALL_BEARISH_MIN = Decimal("1.0")
ONCHAIN_BASELINE_SCORE = 50

# ---------------------------------------------------------------------------
# Default Runtime Config
# ---------------------------------------------------------------------------

DEFAULT_KILL_SWITCH = False
DEFAULT_PAPER_TRADING_ENABLED = True
DEFAULT_LIVE_TRADING_ENABLED = False
DEFAULT_ENTRY_THRESHOLD = Decimal("0.08")
DEFAULT_EXIT_THRESHOLD = Decimal("0.01")
DEFAULT_STOP_LOSS_PERCENT = Decimal("-2.0")
DEFAULT_TAKE_PROFIT_PERCENT = Decimal("3.0")
DEFAULT_TRAILING_STOP_ENABLED = True
DEFAULT_TRAILING_STOP_PERCENT = Decimal("1.5")
DEFAULT_TRAILING_ACTIVATION_PERCENT = Decimal("1.0")
DEFAULT_REQUIRE_NARRATIVE = True
DEFAULT_MAX_OPEN_POSITIONS = 5
DEFAULT_TRADE_SIZE_USD = Decimal("1000")
DEFAULT_COOLDOWN_MINUTES = 30

# ---------------------------------------------------------------------------
# Autotrader Mode Presets
# ---------------------------------------------------------------------------

MODE_PRESETS = {
    "AGGRESSIVE": {
        "min_confidence": 45,
        "min_alignment_score": 40,
        "require_sentiment_alignment": False,
        "cooldown_minutes": 15,
    },
    "BALANCED": {
        "min_confidence": 55,
        "min_alignment_score": 60,
        "require_sentiment_alignment": True,
        "cooldown_minutes": 30,
    },
    "CONSERVATIVE": {
        "min_confidence": 70,
        "min_alignment_score": 75,
        "require_sentiment_alignment": True,
        "cooldown_minutes": 60,
    },
}

DEFAULT_SCAN_INTERVAL_SECONDS = 30

# ---------------------------------------------------------------------------
# External Endpoints
# ---------------------------------------------------------------------------

COINCAP_TRADES_WS = "wss://ws.coincap.io/trades/binance"
FEAR_GREED_URL = "https://api.alternative.me/fng/"
DERIBIT_BOOK_SUMMARY_URL = (
    "https://www.deribit.com/api/v2/public/get_book_summary_by_currency"
)
BLOCKCHAIN_STATS_URL = "https://blockchain.info/stats?format=json"
TELEGRAM_API_BASE = "https://api.telegram.org"

COINCAP_TICKER_MAP = {
    "bitcoin": "BTCUSDT",
    "ethereum": "ETHUSDT",
    "solana": "SOLUSDT",
    "dogecoin": "DOGEUSDT",
    "pepe": "PEPEUSDT",
}

DEFAULT_NEWS_FEEDS = [
    "https://cointelegraph.com/rss",
    "https://www.coindesk.com/arc/outboundfeeds/rss/",
    "https://decrypt.co/feed",
]

DEFAULT_RECONNECT_DELAY_SECONDS = 5
DEFAULT_FEED_POLL_SECONDS = 300
NARRATIVE_MAX_AGE_SECONDS = 2 * SECONDS_PER_HOUR
DEFAULT_ALERT_COOLDOWN_SECONDS = 300
