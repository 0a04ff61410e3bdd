"""
Market API Routers.
"""
from . import health, markets, news, reports, weather

__all__ = ["health", "markets", "news", "reports", "weather"]
