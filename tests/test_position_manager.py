"""
Tests for ladderbot/position_manager.py

Covers:
- flat: stray order cleanup, signal -> single entry order, no signal -> idle
- holding: adoption of a gateway position, ladder closes, stop-loss close
- gateway errors abort the tick without touching ladder progress
- ladder progress restored from / written to the LadderStore
"""

import logging

import pytest

from ladderbot.exceptions import GatewayError
from ladderbot.exit_policy import PolicyPhase
from ladderbot.ladder_store import LadderStore
from ladderbot.models import OrderSide, PositionSide, PositionSnapshot
from ladderbot.position_manager import PositionLifecycleManager, TickContext


def _holding(side=PositionSide.LONG, qty=0.01, entry=100.0):
    signed = qty if side == PositionSide.LONG else -qty
    return PositionSnapshot(symbol="BTCUSDT", side=side, quantity=signed, entry_price=entry, wallet_balance=1000.0)


@pytest.fixture
def ctx(make_config):
    return TickContext.from_config(make_config())


@pytest.fixture
def manager(mock_gateway, mock_market):
    return PositionLifecycleManager(mock_gateway, mock_market)


# ---------------------------------------------------------------------------
# Flat
# ---------------------------------------------------------------------------


class TestEntry:
    @pytest.mark.asyncio
    async def test_long_signal_places_one_buy(self, manager, ctx, mock_gateway, mock_market, long_candles):
        """Happy path: LONG at mark 50000 -> BUY 0.01 @ 50500.00."""
        mock_market.get_recent_candles.return_value = long_candles

        outcome = await manager.run_tick(ctx)

        assert outcome.action == "entry"
        mock_gateway.submit_limit_orders.assert_awaited_once()
        orders = mock_gateway.submit_limit_orders.await_args.args[0]
        assert len(orders) == 1
        assert orders[0].side == OrderSide.BUY
        assert orders[0].quantity == pytest.approx(0.01)
        assert orders[0].price == pytest.approx(50500.00)
        assert orders[0].time_in_force == "GTC"
        assert ctx.policy.side == PositionSide.LONG
        assert ctx.last_signal == PositionSide.LONG

    @pytest.mark.asyncio
    async def test_short_signal_places_one_sell(self, manager, ctx, mock_gateway, mock_market, short_candles):
        mock_market.get_recent_candles.return_value = short_candles

        outcome = await manager.run_tick(ctx)

        order = outcome.orders[0]
        assert order.side == OrderSide.SELL
        assert order.price == pytest.approx(49500.00)
        assert ctx.policy.side == PositionSide.SHORT

    @pytest.mark.asyncio
    async def test_fetches_configured_window(self, manager, ctx, mock_market):
        await manager.run_tick(ctx)
        mock_market.get_recent_candles.assert_awaited_once_with("BTCUSDT", "1m", 103)

    @pytest.mark.asyncio
    async def test_tick_log_reports_leverage(self, manager, ctx, mock_gateway, caplog):
        mock_gateway.get_position.return_value = PositionSnapshot(
            symbol="BTCUSDT", side=None, wallet_balance=1000.0, leverage=20.0
        )
        caplog.set_level(logging.INFO, logger="ladderbot.position_manager")

        await manager.run_tick(ctx)

        assert any("[TICK]" in r.getMessage() and "Lev=20" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_no_signal_is_idle(self, manager, ctx, mock_gateway):
        outcome = await manager.run_tick(ctx)

        assert outcome.action == "idle"
        mock_gateway.submit_limit_orders.assert_not_awaited()
        mock_gateway.get_mark_price.assert_not_awaited()
        assert ctx.policy.phase == PolicyPhase.EMPTY

    @pytest.mark.asyncio
    async def test_stray_orders_cancelled_when_flat(self, manager, ctx, mock_gateway):
        mock_gateway.list_open_orders.return_value = [{"orderId": 7}]
        await manager.run_tick(ctx)
        mock_gateway.cancel_all_open_orders.assert_awaited_once_with("BTCUSDT")

    @pytest.mark.asyncio
    async def test_no_cancel_without_open_orders(self, manager, ctx, mock_gateway):
        await manager.run_tick(ctx)
        mock_gateway.cancel_all_open_orders.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_flat_gateway_resets_holding_policy(self, manager, ctx):
        ctx.policy.open(PositionSide.LONG, 100.0, consumed_tiers=1)
        await manager.run_tick(ctx)
        assert ctx.policy.phase == PolicyPhase.EMPTY
        assert ctx.policy.consumed_tiers == 0

    @pytest.mark.asyncio
    async def test_failed_entry_leaves_policy_empty(self, manager, ctx, mock_gateway, mock_market, long_candles):
        mock_market.get_recent_candles.return_value = long_candles
        mock_gateway.submit_limit_orders.side_effect = GatewayError("rejected", code=-2019)

        with pytest.raises(GatewayError):
            await manager.run_tick(ctx)
        assert ctx.policy.phase == PolicyPhase.EMPTY


# ---------------------------------------------------------------------------
# Holding
# ---------------------------------------------------------------------------


class TestExits:
    @pytest.mark.asyncio
    async def test_adopts_gateway_position(self, manager, ctx, mock_gateway, mock_market):
        mock_gateway.get_position.return_value = _holding(entry=100.0)
        mock_gateway.get_mark_price.return_value = 105.0

        outcome = await manager.run_tick(ctx)

        assert outcome.action == "idle"
        assert ctx.policy.is_holding
        assert ctx.policy.entry_price == 100.0
        mock_market.get_recent_candles.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_long_tier_close_sells_below_mark(self, manager, ctx, mock_gateway, two_tier_ladder):
        mock_gateway.get_position.return_value = _holding(entry=100.0)
        mock_gateway.get_mark_price.return_value = 121.0

        outcome = await manager.run_tick(ctx)

        assert outcome.action == "exit"
        (order,) = mock_gateway.submit_limit_orders.await_args.args[0]
        assert order.side == OrderSide.SELL
        assert order.quantity == pytest.approx(0.001)
        assert order.price == pytest.approx(119.79)
        assert ctx.policy.remaining_ladder == (two_tier_ladder[1],)

    @pytest.mark.asyncio
    async def test_short_tier_close_buys_above_mark(self, manager, ctx, mock_gateway):
        mock_gateway.get_position.return_value = _holding(side=PositionSide.SHORT, entry=100.0)
        mock_gateway.get_mark_price.return_value = 79.0

        outcome = await manager.run_tick(ctx)

        order = outcome.orders[0]
        assert order.side == OrderSide.BUY
        assert order.price == pytest.approx(79.79)

    @pytest.mark.asyncio
    async def test_stop_loss_closes_full_quantity(self, manager, ctx, mock_gateway, two_tier_ladder):
        mock_gateway.get_position.return_value = _holding(qty=0.009, entry=100.0)
        mock_gateway.get_mark_price.return_value = 94.0

        outcome = await manager.run_tick(ctx)

        assert outcome.decision.stop_loss is True
        (order,) = outcome.orders
        assert order.quantity == pytest.approx(0.009)
        assert ctx.policy.phase == PolicyPhase.EMPTY
        assert ctx.policy.remaining_ladder == two_tier_ladder

    @pytest.mark.asyncio
    async def test_failed_close_keeps_ladder(self, manager, ctx, mock_gateway, two_tier_ladder):
        mock_gateway.get_position.return_value = _holding(entry=100.0)
        mock_gateway.get_mark_price.return_value = 121.0
        mock_gateway.submit_limit_orders.side_effect = GatewayError("timeout")

        with pytest.raises(GatewayError):
            await manager.run_tick(ctx)
        assert ctx.policy.remaining_ladder == two_tier_ladder

    @pytest.mark.asyncio
    async def test_side_flip_readopts(self, manager, ctx, mock_gateway):
        ctx.policy.open(PositionSide.LONG, 100.0, consumed_tiers=1)
        mock_gateway.get_position.return_value = _holding(side=PositionSide.SHORT, entry=110.0)
        mock_gateway.get_mark_price.return_value = 110.0

        await manager.run_tick(ctx)

        assert ctx.policy.side == PositionSide.SHORT
        assert ctx.policy.consumed_tiers == 0

    @pytest.mark.asyncio
    async def test_entry_price_follows_gateway(self, manager, ctx, mock_gateway):
        ctx.policy.open(PositionSide.LONG, 100.0)
        mock_gateway.get_position.return_value = _holding(entry=100.4)
        mock_gateway.get_mark_price.return_value = 101.0

        await manager.run_tick(ctx)

        assert ctx.policy.entry_price == pytest.approx(100.4)


# ---------------------------------------------------------------------------
# Ladder store
# ---------------------------------------------------------------------------


class TestLadderStoreIntegration:
    @pytest.mark.asyncio
    async def test_restores_progress_on_adopt(self, tmp_path, ctx, mock_gateway, mock_market, two_tier_ladder):
        store = LadderStore(str(tmp_path / "ladder.db"))
        await store.init()
        await store.save("BTCUSDT", PositionSide.LONG, 100.0, 1)
        manager = PositionLifecycleManager(mock_gateway, mock_market, ladder_store=store)
        mock_gateway.get_position.return_value = _holding(entry=100.0)
        mock_gateway.get_mark_price.return_value = 101.0

        await manager.run_tick(ctx)

        assert ctx.policy.remaining_ladder == (two_tier_ladder[1],)

    @pytest.mark.asyncio
    async def test_saves_progress_after_tier(self, tmp_path, ctx, mock_gateway, mock_market):
        store = LadderStore(str(tmp_path / "ladder.db"))
        await store.init()
        manager = PositionLifecycleManager(mock_gateway, mock_market, ladder_store=store)
        mock_gateway.get_position.return_value = _holding(entry=100.0)
        mock_gateway.get_mark_price.return_value = 121.0

        await manager.run_tick(ctx)

        assert await store.load("BTCUSDT", PositionSide.LONG, 100.0) == 1

    @pytest.mark.asyncio
    async def test_clears_progress_on_stop(self, tmp_path, ctx, mock_gateway, mock_market):
        store = LadderStore(str(tmp_path / "ladder.db"))
        await store.init()
        await store.save("BTCUSDT", PositionSide.LONG, 100.0, 1)
        manager = PositionLifecycleManager(mock_gateway, mock_market, ladder_store=store)
        mock_gateway.get_position.return_value = _holding(entry=100.0)
        mock_gateway.get_mark_price.return_value = 90.0

        await manager.run_tick(ctx)

        assert await store.load("BTCUSDT", PositionSide.LONG, 100.0) is None
