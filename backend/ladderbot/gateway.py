from __future__ import annotations

from typing import List, Protocol, Sequence

from ladderbot.models import Candle, OrderRequest, PositionSnapshot


class OrderGateway(Protocol):
    async def get_position(self, symbol: str) -> PositionSnapshot: ...

    async def list_open_orders(self, symbol: str) -> List[dict]: ...

    async def cancel_all_open_orders(self, symbol: str) -> None: ...

    async def get_mark_price(self, symbol: str) -> float: ...

    async def submit_limit_orders(self, orders: Sequence[OrderRequest]) -> List[dict]: ...


class MarketDataSource(Protocol):
    async def get_recent_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]: ...
