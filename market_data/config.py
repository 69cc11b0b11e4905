"""
Configuration for the Market Data Service.
Reads provider keys and tuning from the .env file in the project root.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

_env_path = Path(__file__).parent.parent / ".env"
load_dotenv(_env_path)

# Alpha Vantage free tier: 5 requests/minute, 500 requests/day
ALPHA_VANTAGE_API_KEY: str = os.getenv("ALPHA_VANTAGE_API_KEY", "")
ALPHA_VANTAGE_BASE_URL: str = os.getenv(
    "ALPHA_VANTAGE_BASE_URL", "https://www.alphavantage.co/query"
)
ALPHA_VANTAGE_REQUESTS_PER_MINUTE: int = int(
    os.getenv("ALPHA_VANTAGE_REQUESTS_PER_MINUTE", "5")
)
HTTP_TIMEOUT_SECONDS: float = float(os.getenv("MARKET_DATA_HTTP_TIMEOUT", "10"))

# Provider order: primary first, then fallbacks
PROVIDER_ORDER: list = [
    p.strip()
    for p in os.getenv("MARKET_DATA_PROVIDERS", "alphavantage,yfinance,mock").split(",")
    if p.strip()
]

# Cache TTL in seconds (default 5 minutes)
CACHE_TTL_SECONDS: int = int(os.getenv("MARKET_DATA_CACHE_TTL", "300"))

# Retry with linear backoff: retry_delay * attempt
RETRY_ATTEMPTS: int = int(os.getenv("MARKET_DATA_RETRY_ATTEMPTS", "3"))
RETRY_DELAY_SECONDS: float = float(os.getenv("MARKET_DATA_RETRY_DELAY", "1.0"))

# Multi-quote batching to respect provider rate limits
QUOTE_BATCH_SIZE: int = 5
QUOTE_BATCH_DELAY_SECONDS: float = 0.2
