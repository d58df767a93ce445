# Technical indicators over a fixed candle window
"""
Batch indicators recomputed from scratch on every tick.

All functions take plain float sequences indexed like the candle window
(oldest first) and return a list of the same length. Undefined values are
NaN and are propagated, never raised; deciding whether an undefined value
matters is the signal detector's job.
"""
from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

from ladderbot.models import Candle, IndicatorRow

logger = logging.getLogger(__name__)

NAN = float("nan")


def true_range(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float]) -> List[float]:
    """True range per candle; index 0 has no previous close and is 0."""
    n = len(closes)
    tr = [0.0] * n
    for i in range(1, n):
        prev_close = closes[i - 1]
        tr[i] = max(
            highs[i] - lows[i],
            abs(highs[i] - prev_close),
            abs(lows[i] - prev_close),
        )
    return tr


def average_true_range(tr: Sequence[float], period: int = 14) -> List[float]:
    """Simple mean of TR over the trailing `period` candles; 0 before index `period`."""
    if period <= 0:
        raise ValueError(f"ATR period must be positive, got {period}")
    n = len(tr)
    atr = [0.0] * n
    for i in range(period, n):
        atr[i] = sum(tr[i - period + 1:i + 1]) / period
    return atr


def rolling_max(values: Sequence[float], size: int) -> List[float]:
    if size <= 0:
        raise ValueError(f"window size must be positive, got {size}")
    return [max(values[max(0, i - size + 1):i + 1]) for i in range(len(values))]


def rolling_min(values: Sequence[float], size: int) -> List[float]:
    if size <= 0:
        raise ValueError(f"window size must be positive, got {size}")
    return [min(values[max(0, i - size + 1):i + 1]) for i in range(len(values))]


def position_in_channel(
    closes: Sequence[float],
    channel_lows: Sequence[float],
    channel_highs: Sequence[float],
) -> List[float]:
    """Where the close sits inside the channel: 0 at the low band, 1 at the high band.

    A flat channel (high == low) yields NaN.
    """
    res = []
    for close, low, high in zip(closes, channel_lows, channel_highs):
        width = high - low
        res.append((close - low) / width if width != 0 else NAN)
    return res


def _min_max_scale(values: Sequence[float]) -> List[float]:
    lo, hi = min(values), max(values)
    span = hi - lo
    if span == 0:
        return [NAN] * len(values)
    return [(v - lo) / span for v in values]


def _ols_slope(xs: Sequence[float], ys: Sequence[float]) -> float:
    n = len(xs)
    mean_x = sum(xs) / n
    mean_y = sum(ys) / n
    cov = sum((x - mean_x) * (y - mean_y) for x, y in zip(xs, ys))
    var = sum((x - mean_x) ** 2 for x in xs)
    if var == 0 or math.isnan(var):
        return NAN
    return cov / var


def slope_angles(closes: Sequence[float], window: int = 5) -> List[float]:
    """Regression slope of the last `window` closes, in degrees.

    Both the x-index and the closes are min-max scaled to [0, 1] before the
    least-squares fit, so 45 degrees means "moved the full range of the
    window in a straight line". Indices below `window` are reported as 0; a
    flat window gives NaN.
    """
    if window < 2:
        raise ValueError(f"slope window must be >= 2, got {window}")
    n = len(closes)
    angles = [0.0] * n
    xs = _min_max_scale([float(i) for i in range(window)])
    for i in range(window, n):
        ys = _min_max_scale(closes[i - window + 1:i + 1])
        slope = _ols_slope(xs, ys)
        angles[i] = math.degrees(math.atan(slope))
    return angles


def local_high_index(closes: Sequence[float], i: int) -> Optional[int]:
    """Return `i` when close[i] is a local top, else None."""
    if not (0 < i < len(closes) - 1):
        return None
    prev_c, cur, next_c = closes[i - 1], closes[i], closes[i + 1]
    if cur >= next_c and cur >= prev_c and prev_c > next_c:
        return i
    return None


def local_low_index(closes: Sequence[float], i: int) -> Optional[int]:
    """Return `i - 1` when close[i] is a local bottom, else None.

    The low is reported one candle earlier than the high; callers rely on
    that offset, keep it.
    """
    if not (0 < i < len(closes) - 1):
        return None
    prev_c, cur, next_c = closes[i - 1], closes[i], closes[i + 1]
    if cur <= next_c and cur <= prev_c and prev_c < next_c:
        return i - 1
    return None


class IndicatorEngine:
    """Derives one IndicatorRow per candle from a chronologically ascending window."""

    def __init__(self, atr_period: int = 14, slope_window: int = 5, channel_window: int = 10):
        self.atr_period = atr_period
        self.slope_window = slope_window
        self.channel_window = channel_window

    @property
    def warmup(self) -> int:
        """Candles needed before every indicator is defined."""
        return max(self.atr_period, self.slope_window, self.channel_window)

    def compute(self, candles: Sequence[Candle]) -> List[IndicatorRow]:
        highs = [c.high for c in candles]
        lows = [c.low for c in candles]
        closes = [c.close for c in candles]

        tr = true_range(highs, lows, closes)
        atr = average_true_range(tr, self.atr_period)
        slope = slope_angles(closes, self.slope_window)
        chan_high = rolling_max(highs, self.channel_window)
        chan_low = rolling_min(lows, self.channel_window)
        pos = position_in_channel(closes, chan_low, chan_high)

        rows = []
        for i in range(len(candles)):
            # A reported index of 0 is not an extremum
            high_idx = local_high_index(closes, i)
            low_idx = local_low_index(closes, i)
            rows.append(IndicatorRow(
                true_range=tr[i],
                atr=atr[i],
                slope_angle=slope[i],
                channel_high=chan_high[i],
                channel_low=chan_low[i],
                position_in_channel=pos[i],
                is_local_high=high_idx is not None and high_idx > 0,
                is_local_low=low_idx is not None and low_idx > 0,
            ))

        logger.debug(f"[INDICATORS] Computed {len(rows)} rows | Warmup={self.warmup}")
        return rows
