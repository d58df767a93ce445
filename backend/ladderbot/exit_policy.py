"""TieredExitPolicy: profit ladder + stop-loss for the one open position.

States:
    EMPTY    : no position, ladder at its full configured length
    HOLDING  : position open; remaining ladder is a suffix of the configured one

Transitions:
    EMPTY   → HOLDING  (open: entry placed on a signal, or a held position adopted)
    HOLDING → EMPTY    (stop-loss fired, or the gateway reports the position flat)
    HOLDING → HOLDING  (ladder tier(s) hit: exactly one tier dropped from the front)

Evaluation is two-phase. `evaluate()` only decides, from a snapshot of the
ladder, which closes to send. `apply()` commits the transition once those
orders were accepted, so a failed submission leaves the ladder untouched.

The ladder drops only its head tier per tick, however many tiers of the
snapshot matched. That mirrors the behaviour this bot has always had; do not
generalise it to "drop every matched tier" without a product decision.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional, Sequence, Tuple

from ladderbot.models import PositionSide, ProfitTier

logger = logging.getLogger(__name__)


class PolicyPhase(Enum):
    EMPTY = auto()
    HOLDING = auto()


@dataclass(frozen=True)
class PositionState:
    side: Optional[PositionSide]
    entry_price: float
    remaining_ladder: Tuple[ProfitTier, ...]


@dataclass(frozen=True)
class ExitClose:
    quantity: float
    reason: str
    tier: Optional[ProfitTier] = None


@dataclass(frozen=True)
class ExitDecision:
    closes: Tuple[ExitClose, ...] = ()
    stop_loss: bool = False
    stop_price: float = 0.0
    tiers_hit: int = 0

    @property
    def should_close(self) -> bool:
        return bool(self.closes)

    @property
    def total_quantity(self) -> float:
        return sum(c.quantity for c in self.closes)


NO_EXIT = ExitDecision()


class TieredExitPolicy:
    """Owns ladder progress for one run. The gateway owns quantity and side."""

    def __init__(self, ladder: Sequence[ProfitTier], max_position_amount: float, stop_percent: float) -> None:
        self._ladder: Tuple[ProfitTier, ...] = tuple(ladder)
        self.max_position_amount = float(max_position_amount)
        self.stop_percent = float(stop_percent)

        self._phase = PolicyPhase.EMPTY
        self._side: Optional[PositionSide] = None
        self._entry_price = 0.0
        self._remaining: Tuple[ProfitTier, ...] = self._ladder

    # ── read ──────────────────────────────────────────────────────────────────

    @property
    def phase(self) -> PolicyPhase:
        return self._phase

    @property
    def is_holding(self) -> bool:
        return self._phase == PolicyPhase.HOLDING

    @property
    def side(self) -> Optional[PositionSide]:
        return self._side

    @property
    def entry_price(self) -> float:
        return self._entry_price

    @property
    def configured_ladder(self) -> Tuple[ProfitTier, ...]:
        return self._ladder

    @property
    def remaining_ladder(self) -> Tuple[ProfitTier, ...]:
        return self._remaining

    @property
    def consumed_tiers(self) -> int:
        return len(self._ladder) - len(self._remaining)

    @property
    def state(self) -> PositionState:
        return PositionState(side=self._side, entry_price=self._entry_price, remaining_ladder=self._remaining)

    # ── transitions ──────────────────────────────────────────────────────────

    def open(self, side: PositionSide, entry_price: float, consumed_tiers: int = 0, reason: str = "") -> None:
        """EMPTY → HOLDING with the full ladder, or with `consumed_tiers` already taken off the front."""
        consumed = max(0, min(int(consumed_tiers), len(self._ladder)))
        previous = self._phase
        self._phase = PolicyPhase.HOLDING
        self._side = side
        self._entry_price = float(entry_price)
        self._remaining = self._ladder[consumed:]
        logger.info(
            f"[STATE] {previous.name} → HOLDING | Side={side.value} Entry={self._entry_price:.2f} "
            f"Tiers={len(self._remaining)}/{len(self._ladder)}"
            + (f" | {reason}" if reason else "")
        )

    def reset(self, reason: str = "") -> None:
        """Back to EMPTY with the full ladder."""
        if self._phase == PolicyPhase.HOLDING:
            logger.info("[STATE] HOLDING → EMPTY" + (f" | {reason}" if reason else ""))
        self._phase = PolicyPhase.EMPTY
        self._side = None
        self._entry_price = 0.0
        self._remaining = self._ladder

    def update_entry_price(self, entry_price: float) -> None:
        """Follow the gateway's authoritative entry price while holding."""
        if self.is_holding and entry_price > 0:
            self._entry_price = float(entry_price)

    # ── evaluation ───────────────────────────────────────────────────────────

    def stop_price(self, entry_price: Optional[float] = None) -> float:
        entry = self._entry_price if entry_price is None else float(entry_price)
        if self._side == PositionSide.SHORT:
            return entry * (1 + self.stop_percent)
        return entry * (1 - self.stop_percent)

    def evaluate(self, price: float, quantity: float, entry_price: Optional[float] = None) -> ExitDecision:
        """Decide the closes for this tick without changing state.

        Stop-loss has priority and closes the whole `quantity`. Otherwise every
        tier of the current ladder snapshot whose delta is exceeded produces a
        partial close of `max_position_amount * contract_fraction`.
        """
        if not self.is_holding:
            return NO_EXIT

        entry = self._entry_price if entry_price is None else float(entry_price)
        stop = self.stop_price(entry)
        is_long = self._side == PositionSide.LONG

        stopped = price < stop if is_long else price > stop
        if stopped:
            logger.info(
                f"[EXIT] Stop-loss hit | Side={self._side.value} Price={price:.2f} "
                f"Entry={entry:.2f} Stop={stop:.2f} Qty={abs(quantity)}"
            )
            return ExitDecision(
                closes=(ExitClose(quantity=abs(quantity), reason="stop_loss"),),
                stop_loss=True,
                stop_price=stop,
            )

        snapshot = self._remaining
        closes = []
        for tier in snapshot:
            moved = price > entry + tier.price_delta if is_long else price < entry - tier.price_delta
            if moved:
                qty = abs(self.max_position_amount * tier.contract_fraction)
                closes.append(ExitClose(quantity=qty, reason=f"ladder_{tier.price_delta:g}", tier=tier))

        if closes:
            logger.info(
                f"[LADDER] {len(closes)} tier(s) hit | Side={self._side.value} Price={price:.2f} "
                f"Entry={entry:.2f} Deltas={[c.tier.price_delta for c in closes]}"
            )
        return ExitDecision(closes=tuple(closes), stop_price=stop, tiers_hit=len(closes))

    def apply(self, decision: ExitDecision) -> None:
        """Commit the state transition for a decision whose orders went through."""
        if decision.stop_loss:
            self.reset("stop-loss")
            return
        if decision.tiers_hit and self._remaining:
            dropped = self._remaining[0]
            self._remaining = self._remaining[1:]
            logger.info(
                f"[LADDER] Dropped head tier delta={dropped.price_delta:g} | "
                f"Remaining={len(self._remaining)}/{len(self._ladder)}"
            )

    def to_dict(self) -> dict:
        state = self.state
        return {
            "phase": self._phase.name,
            "side": state.side.value if state.side else None,
            "entry_price": state.entry_price,
            "remaining_tiers": len(state.remaining_ladder),
            "configured_tiers": len(self._ladder),
        }
