from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

from ladderbot.exceptions import ConfigurationError, DataError
from ladderbot.indicators import IndicatorEngine
from ladderbot.models import Candle, IndicatorRow, PositionSide

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignalThresholds:
    channel_mid: float = 0.5
    long_slope_max: float = -20.0  # LONG needs a steeper fall than this
    short_slope_min: float = 20.0  # SHORT needs a steeper rise than this


class SignalDetector:
    """Entry rule: fade a fresh local extremum at the matching edge of the channel.

    The last candle of the window is still open, so `limit - 2` is the last
    closed candle and the extremum test runs on the one before it (it needs a
    closed candle on each side).
    """

    def __init__(self, engine: Optional[IndicatorEngine] = None, thresholds: Optional[SignalThresholds] = None):
        self.engine = engine or IndicatorEngine()
        self.thresholds = thresholds or SignalThresholds()

    @staticmethod
    def evaluation_index(limit: int) -> int:
        last_closed = limit - 2
        if last_closed <= 0:
            raise ConfigurationError(f"candle limit must be greater than 2, got {limit}")
        return last_closed - 1

    def detect(self, candles: Sequence[Candle]) -> Optional[PositionSide]:
        """Run the indicator pipeline over the window and return LONG, SHORT or None.

        A short window from the exchange fails the tick with DataError; only
        the configured limit is a configuration problem.
        """
        if len(candles) <= 2:
            raise DataError(f"candle window too short: got {len(candles)}, need more than 2")
        idx = self.evaluation_index(len(candles))
        rows = self.engine.compute(candles)
        return self.decide(rows, idx)

    def decide(self, rows: Sequence[IndicatorRow], idx: int) -> Optional[PositionSide]:
        row = rows[idx]
        th = self.thresholds

        if row.is_local_low and self._channel_position(row, idx) < th.channel_mid:
            slope = self._slope(row, idx)
            if slope < th.long_slope_max:
                logger.info(
                    f"[SIGNAL] LONG | Idx={idx} PosInChan={row.position_in_channel:.3f} Slope={slope:.2f}"
                )
                return PositionSide.LONG

        if row.is_local_high and self._channel_position(row, idx) > th.channel_mid:
            slope = self._slope(row, idx)
            if slope > th.short_slope_min:
                logger.info(
                    f"[SIGNAL] SHORT | Idx={idx} PosInChan={row.position_in_channel:.3f} Slope={slope:.2f}"
                )
                return PositionSide.SHORT

        logger.debug(
            f"[SIGNAL] None | Idx={idx} LocalLow={row.is_local_low} LocalHigh={row.is_local_high} "
            f"PosInChan={row.position_in_channel:.3f} Slope={row.slope_angle:.2f}"
        )
        return None

    def _channel_position(self, row: IndicatorRow, idx: int) -> float:
        if math.isnan(row.position_in_channel):
            raise DataError(f"position in channel undefined at index {idx} (flat channel)")
        return row.position_in_channel

    def _slope(self, row: IndicatorRow, idx: int) -> float:
        if idx < self.engine.slope_window:
            raise DataError(
                f"slope undefined at index {idx}: needs {self.engine.slope_window} candles of warm-up"
            )
        if math.isnan(row.slope_angle):
            raise DataError(f"slope undefined at index {idx} (flat close window)")
        return row.slope_angle
