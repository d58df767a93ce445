# Fixed-cadence trading loop with failure backoff and bounded run time
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from ladderbot.exceptions import ConfigurationError, DataError, GatewayError
from ladderbot.position_manager import PositionLifecycleManager, TickContext

logger = logging.getLogger(__name__)


class TradingLoop:
    """Runs ticks strictly one after another until the run time is used up or
    the stop event is set.

    A failed tick (data, gateway or unexpected error) is logged and counted.
    After `max_consecutive_failures` in a row the loop sleeps the extended
    backoff once and starts counting again; a successful tick also resets the
    count. ConfigurationError is never contained here.
    """

    def __init__(
        self,
        manager: PositionLifecycleManager,
        ctx: TickContext,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.manager = manager
        self.ctx = ctx
        self._clock = clock
        self.backoffs = 0

    async def _sleep(self, seconds: float, stop_event: asyncio.Event) -> bool:
        """Sleep up to `seconds`; True when woken early by the stop event."""
        if seconds <= 0:
            return stop_event.is_set()
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _tick(self) -> bool:
        ctx = self.ctx
        try:
            await self.manager.run_tick(ctx)
        except ConfigurationError:
            raise
        except DataError as e:
            logger.warning(f"[TICK] #{ctx.tick} skipped, indicator undefined: {e.message}")
        except GatewayError as e:
            logger.error(f"[TICK] #{ctx.tick} gateway error (code={e.code}): {e.message}")
        except Exception as e:
            logger.error(f"[TICK] #{ctx.tick} unexpected error: {e}", exc_info=True)
        else:
            return True
        return False

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> int:
        """Run until done; returns the number of ticks executed."""
        stop_event = stop_event or asyncio.Event()
        cfg = self.ctx.config
        deadline = self._clock() + cfg.max_run_seconds
        logger.info(
            f"[BOT] Trading loop started | Symbol={cfg.symbol} Interval={cfg.interval} "
            f"Poll={cfg.poll_seconds:g}s MaxRun={cfg.max_run_hours:g}h Mode={cfg.mode}"
        )

        while not stop_event.is_set():
            if self._clock() >= deadline:
                logger.info("[BOT] Maximum run time reached")
                break

            self.ctx.tick += 1
            if await self._tick():
                self.ctx.consecutive_failures = 0
            else:
                self.ctx.consecutive_failures += 1

            delay = cfg.poll_seconds
            if self.ctx.consecutive_failures >= cfg.max_consecutive_failures:
                logger.warning(
                    f"[BOT] {self.ctx.consecutive_failures} consecutive failed ticks, "
                    f"backing off for {cfg.failure_backoff_seconds:g}s"
                )
                self.ctx.consecutive_failures = 0
                self.backoffs += 1
                delay = cfg.failure_backoff_seconds

            remaining = deadline - self._clock()
            if remaining <= 0:
                logger.info("[BOT] Maximum run time reached")
                break
            if await self._sleep(min(delay, remaining), stop_event):
                break

        if stop_event.is_set():
            logger.info("[BOT] Stop requested, loop exiting")
        logger.info(f"[BOT] Trading loop finished | Ticks={self.ctx.tick} Policy={self.ctx.policy.to_dict()}")
        return self.ctx.tick
