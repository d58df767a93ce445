# Per-tick position lifecycle: entry on signal, tiered exits while holding
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ladderbot.exit_policy import ExitDecision, TieredExitPolicy
from ladderbot.gateway import MarketDataSource, OrderGateway
from ladderbot.ladder_store import LadderStore
from ladderbot.models import BotConfig, OrderRequest, PositionSide, PositionSnapshot
from ladderbot.signal_detector import SignalDetector

logger = logging.getLogger(__name__)

CLOSE_SLIPPAGE = 0.01


@dataclass
class TickContext:
    """State threaded through every tick of one run. Owned by the trading loop."""
    config: BotConfig
    policy: TieredExitPolicy
    tick: int = 0
    consecutive_failures: int = 0
    last_signal: Optional[PositionSide] = None

    @classmethod
    def from_config(cls, config: BotConfig) -> "TickContext":
        policy = TieredExitPolicy(
            ladder=config.profit_ladder,
            max_position_amount=config.max_position_amount,
            stop_percent=config.stop_percent,
        )
        return cls(config=config, policy=policy)


@dataclass(frozen=True)
class TickOutcome:
    action: str  # "idle" | "entry" | "exit"
    orders: Tuple[OrderRequest, ...] = ()
    signal: Optional[PositionSide] = None
    decision: Optional[ExitDecision] = None
    snapshot: Optional[PositionSnapshot] = field(default=None, compare=False)


class PositionLifecycleManager:
    """Runs one tick against the gateway.

    Quantity and side always come from the gateway snapshot. Only ladder
    progress lives in process, in the context's TieredExitPolicy. Any gateway
    error aborts the rest of the tick and propagates to the caller.
    """

    def __init__(
        self,
        gateway: OrderGateway,
        market_data: MarketDataSource,
        detector: Optional[SignalDetector] = None,
        ladder_store: Optional[LadderStore] = None,
    ):
        self.gateway = gateway
        self.market_data = market_data
        self.detector = detector or SignalDetector()
        self.ladder_store = ladder_store

    async def run_tick(self, ctx: TickContext) -> TickOutcome:
        cfg = ctx.config
        snapshot = await self.gateway.get_position(cfg.symbol)
        logger.info(
            f"[TICK] #{ctx.tick} {cfg.symbol} | Side={snapshot.side.value if snapshot.side else 'flat'} "
            f"Qty={snapshot.quantity:f} Entry={snapshot.entry_price:.2f} "
            f"uPnL={snapshot.unrealized_profit:.4f} Wallet={snapshot.wallet_balance:.2f} Lev={snapshot.leverage:g}"
        )
        if snapshot.is_open:
            return await self._manage_open(ctx, snapshot)
        return await self._look_for_entry(ctx, snapshot)

    # ── flat ─────────────────────────────────────────────────────────────────

    async def _look_for_entry(self, ctx: TickContext, snapshot: PositionSnapshot) -> TickOutcome:
        cfg = ctx.config
        if ctx.policy.is_holding:
            ctx.policy.reset("gateway reports no position")
            if self.ladder_store:
                await self.ladder_store.clear(cfg.symbol)

        open_orders = await self.gateway.list_open_orders(cfg.symbol)
        if open_orders:
            logger.info(f"[ORDER] {len(open_orders)} stray open order(s) while flat, cancelling")
            await self.gateway.cancel_all_open_orders(cfg.symbol)

        candles = await self.market_data.get_recent_candles(cfg.symbol, cfg.interval, cfg.candle_limit)
        signal = self.detector.detect(candles)
        ctx.last_signal = signal
        if signal is None:
            return TickOutcome(action="idle", snapshot=snapshot)

        mark = await self.gateway.get_mark_price(cfg.symbol)
        slip = cfg.entry_slippage if signal == PositionSide.LONG else -cfg.entry_slippage
        order = OrderRequest(
            symbol=cfg.symbol,
            side=signal.entry_order_side,
            quantity=cfg.max_position_amount,
            price=round(mark * (1 + slip), cfg.price_decimals),
            reason=f"entry_{signal.value}",
        )
        logger.info(
            f"[ENTRY] {signal.value.upper()} | {order.side.value} {order.quantity:f} {cfg.symbol} "
            f"@ {order.price:.{cfg.price_decimals}f} (mark {mark:.2f})"
        )
        await self.gateway.submit_limit_orders([order])
        ctx.policy.open(signal, mark, reason="entry order placed")
        return TickOutcome(action="entry", orders=(order,), signal=signal, snapshot=snapshot)

    # ── holding ──────────────────────────────────────────────────────────────

    async def _adopt(self, ctx: TickContext, snapshot: PositionSnapshot) -> None:
        """Align the policy with a position it did not open (restart, manual trade, flip)."""
        consumed = 0
        if self.ladder_store:
            consumed = await self.ladder_store.load(snapshot.symbol, snapshot.side, snapshot.entry_price) or 0
        ctx.policy.open(
            snapshot.side,
            snapshot.entry_price,
            consumed_tiers=consumed,
            reason=f"adopted gateway position, {consumed} tier(s) already taken",
        )

    async def _manage_open(self, ctx: TickContext, snapshot: PositionSnapshot) -> TickOutcome:
        cfg = ctx.config
        policy = ctx.policy
        if not policy.is_holding or policy.side != snapshot.side:
            await self._adopt(ctx, snapshot)
        policy.update_entry_price(snapshot.entry_price)

        mark = await self.gateway.get_mark_price(cfg.symbol)
        decision = policy.evaluate(mark, abs(snapshot.quantity))
        if not decision.should_close:
            return TickOutcome(action="idle", decision=decision, snapshot=snapshot)

        slip = -CLOSE_SLIPPAGE if snapshot.side == PositionSide.LONG else CLOSE_SLIPPAGE
        price = round(mark * (1 + slip), cfg.price_decimals)
        orders: List[OrderRequest] = [
            OrderRequest(
                symbol=cfg.symbol,
                side=snapshot.side.close_order_side,
                quantity=close.quantity,
                price=price,
                reason=close.reason,
            )
            for close in decision.closes
        ]
        logger.info(
            f"[EXIT] {len(orders)} close order(s) | Side={snapshot.side.value} Qty={decision.total_quantity:f} "
            f"@ {price:.{cfg.price_decimals}f} (mark {mark:.2f})"
        )
        await self.gateway.submit_limit_orders(orders)

        side, entry = policy.side, policy.entry_price
        policy.apply(decision)
        if self.ladder_store:
            if policy.is_holding:
                await self.ladder_store.save(cfg.symbol, side, entry, policy.consumed_tiers)
            else:
                await self.ladder_store.clear(cfg.symbol)
        return TickOutcome(action="exit", orders=tuple(orders), decision=decision, snapshot=snapshot)
