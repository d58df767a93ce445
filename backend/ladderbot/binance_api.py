# Binance USD-M futures REST wrapper (order gateway + market data)
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlencode

import httpx

from ladderbot.exceptions import ConfigurationError, GatewayError
from ladderbot.models import Candle, OrderRequest, PositionSide, PositionSnapshot

logger = logging.getLogger(__name__)

_TIMESTAMP_ERROR = -1021


class BinanceFuturesAPI:
    """Async client for the handful of futures endpoints the bot needs.

    Every failure (transport, HTTP status, exchange error payload) surfaces as
    GatewayError so the trading loop can count it and retry next tick.
    """

    PRODUCTION_URL = "https://fapi.binance.com"
    TESTNET_URL = "https://testnet.binancefuture.com"
    MAX_BATCH_ORDERS = 5
    RECV_WINDOW = 10000

    def __init__(
        self,
        api_key: str = "",
        api_secret: str = "",
        testnet: bool = True,
        price_decimals: int = 2,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.price_decimals = int(price_decimals)
        self.base_url = base_url or (self.TESTNET_URL if testnet else self.PRODUCTION_URL)
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=5.0),
        )
        self._time_offset = 0  # ms: server_time - local_time

    async def close(self) -> None:
        await self._client.aclose()

    # ── transport ────────────────────────────────────────────────────────────

    def _signed_query(self, params: Dict[str, Any]) -> str:
        if not (self.api_key and self.api_secret):
            raise ConfigurationError("Binance API key/secret not configured")
        params = dict(params)
        params["timestamp"] = int(time.time() * 1000) + self._time_offset
        params["recvWindow"] = self.RECV_WINDOW
        qs = urlencode(params)
        sig = hmac.new(self.api_secret.encode(), qs.encode(), hashlib.sha256).hexdigest()
        return f"{qs}&signature={sig}"

    async def _sync_time(self) -> None:
        data = await self._request("GET", "/fapi/v1/time")
        self._time_offset = int(data["serverTime"]) - int(time.time() * 1000)
        logger.info(f"[BINANCE] Clock offset re-synced: {self._time_offset}ms")

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        signed: bool = False,
        _retry: bool = True,
    ) -> Any:
        params = params or {}
        headers = {}
        if signed:
            qs = self._signed_query(params)
            headers["X-MBX-APIKEY"] = self.api_key
        else:
            qs = urlencode(params)
        url = f"{path}?{qs}" if qs else path

        try:
            resp = await self._client.request(method, url, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"[BINANCE] {method} {path}: {e}")
            raise GatewayError(f"{method} {path} failed: {e}") from e

        if resp.status_code >= 400:
            code, msg = None, resp.text
            try:
                body = resp.json()
                code, msg = body.get("code"), body.get("msg", msg)
            except ValueError:
                pass
            if signed and _retry and code == _TIMESTAMP_ERROR:
                logger.warning("[BINANCE] Timestamp outside recvWindow, re-syncing clock...")
                await self._sync_time()
                return await self._request(method, path, params, signed=True, _retry=False)
            logger.error(f"[BINANCE] {method} {path}: HTTP {resp.status_code} code={code} {msg}")
            raise GatewayError(f"{method} {path}: {msg}", code=code, status_code=resp.status_code)

        try:
            return resp.json() if resp.content else {}
        except ValueError as e:
            raise GatewayError(f"{method} {path}: invalid JSON response") from e

    # ── formatting ───────────────────────────────────────────────────────────

    def format_price(self, price: float) -> str:
        return f"{price:.{self.price_decimals}f}"

    @staticmethod
    def format_quantity(quantity: float) -> str:
        return f"{quantity:f}"

    # ── order gateway ────────────────────────────────────────────────────────

    async def get_account(self) -> dict:
        return await self._request("GET", "/fapi/v2/account", signed=True)

    async def get_position(self, symbol: str) -> PositionSnapshot:
        """Position for `symbol` plus account-level PnL and wallet balance."""
        account = await self.get_account()
        try:
            profit = float(account.get("totalUnrealizedProfit") or 0.0)
            balance = float(account.get("totalWalletBalance") or 0.0)
            rows = [p for p in (account.get("positions") or []) if p.get("symbol") == symbol]
            # One-way mode has a single row; in hedge mode take the non-empty leg
            row = next((p for p in rows if float(p.get("positionAmt") or 0) != 0), rows[0] if rows else None)
            if row is None:
                return PositionSnapshot(symbol=symbol, side=None, unrealized_profit=profit, wallet_balance=balance)
            amount = float(row.get("positionAmt") or 0.0)
            entry_price = float(row.get("entryPrice") or 0.0)
            leverage = float(row.get("leverage") or 0.0)
        except (TypeError, ValueError, AttributeError) as e:
            raise GatewayError(f"Unexpected account payload for {symbol}: {e}") from e

        side = None
        if amount > 0:
            side = PositionSide.LONG
        elif amount < 0:
            side = PositionSide.SHORT

        return PositionSnapshot(
            symbol=symbol,
            side=side,
            quantity=amount,
            entry_price=entry_price,
            unrealized_profit=profit,
            wallet_balance=balance,
            leverage=leverage,
        )

    async def list_open_orders(self, symbol: str) -> List[dict]:
        return await self._request("GET", "/fapi/v1/openOrders", {"symbol": symbol}, signed=True)

    async def cancel_all_open_orders(self, symbol: str) -> None:
        await self._request("DELETE", "/fapi/v1/allOpenOrders", {"symbol": symbol}, signed=True)
        logger.info(f"[ORDER] Cancelled all open orders | Symbol={symbol}")

    async def get_mark_price(self, symbol: str) -> float:
        data = await self._request("GET", "/fapi/v1/ticker/price", {"symbol": symbol})
        try:
            price = float(data["price"])
        except (KeyError, TypeError, ValueError) as e:
            raise GatewayError(f"No price for {symbol}: {data}") from e
        if price <= 0:
            raise GatewayError(f"Non-positive price for {symbol}: {price}")
        return price

    def _order_payload(self, order: OrderRequest) -> dict:
        return {
            "symbol": order.symbol,
            "side": order.side.value,
            "type": "LIMIT",
            "quantity": self.format_quantity(order.quantity),
            "price": self.format_price(order.price),
            "timeInForce": order.time_in_force,
        }

    async def submit_limit_orders(self, orders: Sequence[OrderRequest]) -> List[dict]:
        """Submit limit orders through batchOrders, at most 5 per request."""
        results: List[dict] = []
        orders = list(orders)
        for start in range(0, len(orders), self.MAX_BATCH_ORDERS):
            chunk = orders[start:start + self.MAX_BATCH_ORDERS]
            batch = json.dumps([self._order_payload(o) for o in chunk], separators=(",", ":"))
            resp = await self._request("POST", "/fapi/v1/batchOrders", {"batchOrders": batch}, signed=True)
            for order, item in zip(chunk, resp or []):
                if isinstance(item, dict) and "code" in item and "orderId" not in item:
                    raise GatewayError(
                        f"Order rejected: {order.side.value} {order.quantity} {order.symbol} @ "
                        f"{self.format_price(order.price)}: {item.get('msg')}",
                        code=item.get("code"),
                    )
                logger.info(
                    f"[ORDER] ✓ {order.side.value} {self.format_quantity(order.quantity)} {order.symbol} @ "
                    f"{self.format_price(order.price)} | OrderID={item.get('orderId')} Reason={order.reason}"
                )
                results.append(item)
        return results

    # ── market data ──────────────────────────────────────────────────────────

    async def get_recent_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        """Last `limit` klines, oldest first. The final one is the still-open candle."""
        rows = await self._request(
            "GET", "/fapi/v1/klines", {"symbol": symbol, "interval": interval, "limit": int(limit)}
        )
        try:
            candles = [
                Candle(
                    open_time=int(r[0]),
                    open=float(r[1]),
                    high=float(r[2]),
                    low=float(r[3]),
                    close=float(r[4]),
                    volume=float(r[5]),
                )
                for r in rows
            ]
        except (TypeError, ValueError, IndexError) as e:
            raise GatewayError(f"Malformed klines for {symbol}: {e}") from e
        candles.sort(key=lambda c: c.open_time)
        return candles
