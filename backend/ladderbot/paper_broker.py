# Paper trading: in-memory account on top of real market prices
from __future__ import annotations

import logging
from typing import List, Protocol, Sequence

from ladderbot.models import OrderRequest, OrderSide, PositionSide, PositionSnapshot

logger = logging.getLogger(__name__)

_QTY_EPS = 1e-12


class PriceSource(Protocol):
    async def get_mark_price(self, symbol: str) -> float: ...


class PaperBroker:
    """OrderGateway that fills every limit order instantly at the current price.

    Orders against the open position reduce it and realise PnL into the wallet
    balance; they never flip it. The surplus of an oversized close is dropped.
    """

    def __init__(self, price_source: PriceSource, symbol: str, balance: float = 10000.0, leverage: float = 1.0):
        self.price_source = price_source
        self.symbol = symbol
        self.wallet_balance = float(balance)
        self.leverage = float(leverage)
        self.quantity = 0.0  # signed: >0 long, <0 short
        self.entry_price = 0.0
        self.realized_pnl = 0.0
        self.fills: List[dict] = []
        self._order_seq = 0

    async def get_mark_price(self, symbol: str) -> float:
        return await self.price_source.get_mark_price(symbol)

    async def get_position(self, symbol: str) -> PositionSnapshot:
        if symbol != self.symbol or abs(self.quantity) < _QTY_EPS:
            return PositionSnapshot(symbol=symbol, side=None, wallet_balance=self.wallet_balance, leverage=self.leverage)
        mark = await self.get_mark_price(symbol)
        return PositionSnapshot(
            symbol=symbol,
            side=PositionSide.LONG if self.quantity > 0 else PositionSide.SHORT,
            quantity=self.quantity,
            entry_price=self.entry_price,
            unrealized_profit=self.quantity * (mark - self.entry_price),
            wallet_balance=self.wallet_balance,
            leverage=self.leverage,
        )

    async def list_open_orders(self, symbol: str) -> List[dict]:
        # Fills are immediate, nothing ever rests on the book
        return []

    async def cancel_all_open_orders(self, symbol: str) -> None:
        logger.info(f"[PAPER] Cancel all open orders | Symbol={symbol} (no resting orders)")

    async def submit_limit_orders(self, orders: Sequence[OrderRequest]) -> List[dict]:
        if not orders:
            return []
        price = await self.get_mark_price(self.symbol)
        results = []
        for order in orders:
            results.append(self._fill(order, price))
        return results

    def _fill(self, order: OrderRequest, price: float) -> dict:
        self._order_seq += 1
        signed = order.quantity if order.side == OrderSide.BUY else -order.quantity
        filled = abs(signed)
        pnl = 0.0

        if abs(self.quantity) < _QTY_EPS or (self.quantity > 0) == (signed > 0):
            new_qty = self.quantity + signed
            self.entry_price = (abs(self.quantity) * self.entry_price + abs(signed) * price) / abs(new_qty)
            self.quantity = new_qty
        else:
            filled = min(abs(signed), abs(self.quantity))
            direction = 1.0 if self.quantity > 0 else -1.0
            pnl = filled * (price - self.entry_price) * direction
            self.wallet_balance += pnl
            self.realized_pnl += pnl
            self.quantity -= direction * filled
            if abs(self.quantity) < _QTY_EPS:
                self.quantity = 0.0
                self.entry_price = 0.0
            if abs(signed) - filled > _QTY_EPS:
                logger.warning(
                    f"[PAPER] Close larger than position, {abs(signed) - filled:f} {order.symbol} not filled"
                )

        fill = {
            "orderId": self._order_seq,
            "symbol": order.symbol,
            "side": order.side.value,
            "price": price,
            "executedQty": filled,
            "realizedPnl": pnl,
            "reason": order.reason,
        }
        self.fills.append(fill)
        logger.info(
            f"[PAPER] {order.side.value} {filled:f} {order.symbol} @ {price:.2f} | Limit={order.price:.2f} "
            f"PnL={pnl:.4f} Position={self.quantity:f} Wallet={self.wallet_balance:.2f} Reason={order.reason}"
        )
        return fill
