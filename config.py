"""
Configuration for the real-time P&L pipeline and margin engine
"""
import logging
import os
from pathlib import Path
from typing import Optional

# Paths
BASE_DIR = Path(__file__).parent
LOGS_DIR = BASE_DIR / "logs"
REPORTS_DIR = BASE_DIR / "performance-results"

# Portfolio defaults
DEFAULT_CASH_BALANCE = 10_000.0
CONTRACT_MULTIPLIER = 100  # one option contract = 100 shares

# Price cache
PRICE_CACHE_CAPACITY = 500
PRICE_CHANGE_EPSILON = 0.01  # moves under one cent reuse the cached P&L

# P&L engine cadence (milliseconds)
BASE_UPDATE_INTERVAL_MS = 5000
FAST_UPDATE_INTERVAL_MS = 1000
VOLATILITY_THRESHOLD_PCT = 2.0  # max |percent change| that switches to the fast interval
MONITOR_INTERVAL_MS = 5000
WRITE_DEBOUNCE_MS = 100
HEARTBEAT_EVERY_N_TICKS = 10
METRICS_SMOOTHING = 0.1  # EMA alpha for average update time

# Streaming feed
STREAM_URL = os.getenv("OPTIONS_PULSE_STREAM_URL", "ws://localhost:3001")
MAX_RECONNECT_ATTEMPTS = 10
INITIAL_RECONNECT_DELAY_MS = 1000
MAX_RECONNECT_DELAY_MS = 30_000
RECONNECT_JITTER_MS = 1000
HEARTBEAT_INTERVAL_MS = 30_000
MESSAGE_QUEUE_LIMIT = 1000
BATCH_SIZE = 50
THROTTLE_MS = 1000
LATENCY_BUFFER_SIZE = 100

# Adaptive throttle bounds
MIN_THROTTLE_MS = 100
MAX_THROTTLE_MS = 5000
HIGH_MESSAGE_RATE = 100.0  # msg/s above which the throttle is raised 10%
LOW_MESSAGE_RATE = 10.0  # msg/s below which the throttle is lowered 10%
THROTTLE_STEP = 0.10

# Batches larger than this are parsed off the ingest thread
WORKER_BATCH_THRESHOLD = 10

# Margin
STOCK_INITIAL_MARGIN_PCT = 0.50  # Reg-T initial margin for long stock
NAKED_MARGIN_PCT = 0.20
NAKED_MARGIN_MIN_PCT = 0.10
COLLAR_MIN_SPREAD_PCT = 0.10
MARGIN_AMBER_PCT = 60.0
MARGIN_RED_PCT = 80.0

# Income ETFs and the strategy each one is run with
INCOME_ETF_STRATEGIES = {
    "MSTY": "covered-call",
    "PLTY": "cash-secured-put",
    "TSLY": "collar",
}

# Dividend risk: margin multiplier inside the ex-dividend window
DIVIDEND_RISK_WINDOW_DAYS = 5
DIVIDEND_RISK_FACTOR = 1.5

# Risk alerts
PORTFOLIO_DELTA_LIMIT = 1500.0
DEFAULT_VOLATILITY = 0.30

# Logging
LOG_LEVEL = os.getenv("OPTIONS_PULSE_LOG_LEVEL", "INFO")


def configure_logging(level: Optional[str] = None, log_file: bool = True) -> None:
    """Install stream (and file) handlers. Called by entry points only."""
    handlers = [logging.StreamHandler()]
    if log_file:
        LOGS_DIR.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(LOGS_DIR / "options_pulse.log"))

    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )
