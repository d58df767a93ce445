"""
Shared test fixtures for ladderbot tests.

Provides reusable fixtures for:
- Candle windows built from close series
- Bot configs with test-friendly defaults
- Mock order gateway / market data source
"""

import os

import pytest
from unittest.mock import AsyncMock

from ladderbot.config import _ENV_FIELDS
from ladderbot.models import BotConfig, Candle, PositionSnapshot, ProfitTier

# Window with a fresh local low deep in the channel after a sharp fall
LONG_CLOSES = [100.0] * 20 + [90.0, 80.0, 70.0, 69.0, 75.0, 76.0]
# Mirror image: fresh local high after a sharp rise
SHORT_CLOSES = [100.0] * 20 + [110.0, 120.0, 130.0, 131.0, 125.0, 124.0]


def candles_from_closes(closes):
    """One candle per close with a 1-point wick each side."""
    return [
        Candle(open_time=i * 60_000, open=c, high=c + 1.0, low=c - 1.0, close=c, volume=1.0)
        for i, c in enumerate(closes)
    ]


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every bot env var, including ones a dotenv load sets during the test."""
    for name in _ENV_FIELDS:
        monkeypatch.delenv(name, raising=False)
    yield
    for name in _ENV_FIELDS:
        os.environ.pop(name, None)


# ---------------------------------------------------------------------------
# Config / candles
# ---------------------------------------------------------------------------


@pytest.fixture
def two_tier_ladder():
    return (ProfitTier.from_tenths(20, 1), ProfitTier.from_tenths(40, 1))


@pytest.fixture
def make_config(two_tier_ladder):
    def _make(**overrides):
        values = dict(
            symbol="BTCUSDT",
            max_position_amount=0.01,
            stop_percent=0.05,
            profit_ladder=two_tier_ladder,
            poll_seconds=60.0,
            max_run_hours=1.0,
            max_consecutive_failures=5,
            failure_backoff_seconds=240.0,
        )
        values.update(overrides)
        return BotConfig(**values)
    return _make


@pytest.fixture
def long_candles():
    return candles_from_closes(LONG_CLOSES)


@pytest.fixture
def short_candles():
    return candles_from_closes(SHORT_CLOSES)


@pytest.fixture
def flat_candles():
    """Strictly rising closes: no local extremum anywhere."""
    return candles_from_closes([float(c) for c in range(100, 130)])


# ---------------------------------------------------------------------------
# Gateway mocks
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_gateway():
    gw = AsyncMock()
    gw.get_position.return_value = PositionSnapshot(symbol="BTCUSDT", side=None, wallet_balance=1000.0)
    gw.list_open_orders.return_value = []
    gw.cancel_all_open_orders.return_value = None
    gw.get_mark_price.return_value = 50000.0
    gw.submit_limit_orders.return_value = [{"orderId": 1}]
    return gw


@pytest.fixture
def mock_market(flat_candles):
    md = AsyncMock()
    md.get_recent_candles.return_value = flat_candles
    return md
