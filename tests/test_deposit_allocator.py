"""Tests for quote acceptance and deposit target allocation."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import make_zec_address
from zecswap.exceptions import (
    AllocationUnavailable,
    InvalidDestinationAddress,
    QuoteAlreadyConsumed,
    QuoteExpired,
    QuoteNotFound,
)
from zecswap.ledger.database import session_scope
from zecswap.ledger.models import OrderStatus, QuoteState
from zecswap.ledger.repository import SwapRepository


def _corrupt_checksum(address: str) -> str:
    return address[:-1] + ("2" if address[-1] != "2" else "3")


class TestAcceptQuote:
    """Tests for turning a quote into an order."""

    @pytest.mark.asyncio
    async def test_accept_opens_pending_order(self, core, clock, zec_address):
        quote = await core.quotes.request_quote("btc", "0.01")
        clock.advance(60)

        order = await core.allocator.accept_quote(quote.id, zec_address)

        assert order.id.startswith("ord_")
        assert order.status == OrderStatus.PENDING
        assert order.quote_id == quote.id
        assert order.expected_input_amount == Decimal("0.01")
        assert order.expected_output == Decimal("0.0094525")
        assert order.destination_address == zec_address
        assert order.deposit_memo is None
        assert order.deposit_address.startswith("bc1q")
        assert order.deposit_deadline == clock.now + timedelta(seconds=900)
        assert [t.to_status for t in order.transitions] == [OrderStatus.PENDING]

        stored = await core.quotes.get_quote(quote.id)
        assert stored.state == QuoteState.CONSUMED
        assert stored.consumed_at == clock.now

    @pytest.mark.asyncio
    async def test_quote_is_single_use(self, core, zec_address):
        quote = await core.quotes.request_quote("btc", "0.01")
        await core.allocator.accept_quote(quote.id, zec_address)

        with pytest.raises(QuoteAlreadyConsumed):
            await core.allocator.accept_quote(quote.id, zec_address)

    @pytest.mark.asyncio
    async def test_concurrent_accepts_consume_once(self, core, zec_address):
        """Two simultaneous accepts: exactly one order, one QuoteAlreadyConsumed."""
        quote = await core.quotes.request_quote("btc", "0.01")

        results = await asyncio.gather(
            core.allocator.accept_quote(quote.id, zec_address),
            core.allocator.accept_quote(quote.id, zec_address),
            return_exceptions=True,
        )

        orders = [r for r in results if not isinstance(r, Exception)]
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(orders) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], QuoteAlreadyConsumed)

    @pytest.mark.asyncio
    async def test_expired_quote_rejected(self, core, clock, zec_address):
        quote = await core.quotes.request_quote("btc", "0.01")
        clock.advance(900)

        with pytest.raises(QuoteExpired):
            await core.allocator.accept_quote(quote.id, zec_address)

        # Rejection does not consume the quote
        assert (await core.quotes.get_quote(quote.id)).state == QuoteState.UNUSED

    @pytest.mark.asyncio
    async def test_consumed_reported_before_expired(self, core, clock, zec_address):
        quote = await core.quotes.request_quote("btc", "0.01")
        await core.allocator.accept_quote(quote.id, zec_address)
        clock.advance(3600)

        with pytest.raises(QuoteAlreadyConsumed):
            await core.allocator.accept_quote(quote.id, zec_address)

    @pytest.mark.asyncio
    async def test_unknown_quote(self, core, zec_address):
        with pytest.raises(QuoteNotFound):
            await core.allocator.accept_quote("q_missing", zec_address)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "address",
        [
            "",
            "not-an-address",
            "zs1z7rejlpsa98s2rrrfkwmaxu53e4ue0ulcrw0h4x5g8jl04tak0d3mm47vdtahatqrlkngh9sly",
            make_zec_address(b"\x1d\x25"),  # testnet tm address on mainnet
            _corrupt_checksum(make_zec_address()),
        ],
    )
    async def test_invalid_destination(self, core, address):
        quote = await core.quotes.request_quote("btc", "0.01")

        with pytest.raises(InvalidDestinationAddress):
            await core.allocator.accept_quote(quote.id, address)

        assert (await core.quotes.get_quote(quote.id)).state == QuoteState.UNUSED

    @pytest.mark.asyncio
    async def test_p2sh_destination_accepted(self, core):
        quote = await core.quotes.request_quote("btc", "0.01")

        order = await core.allocator.accept_quote(quote.id, make_zec_address(b"\x1c\xbd", 7))

        assert order.destination_address.startswith("t3")


class TestAddressPool:
    """Tests for memo-less deposit address allocation."""

    async def _open(self, core, zec_address, asset_id="btc", amount="0.01"):
        quote = await core.quotes.request_quote(asset_id, amount)
        return await core.allocator.accept_quote(quote.id, zec_address)

    @pytest.mark.asyncio
    async def test_live_orders_get_distinct_addresses(self, core, zec_address):
        orders = [await self._open(core, zec_address) for _ in range(3)]

        assert len({o.deposit_address for o in orders}) == 3

    @pytest.mark.asyncio
    async def test_concurrent_accepts_get_distinct_addresses(self, core, zec_address):
        quotes = [await core.quotes.request_quote("eth", "1") for _ in range(4)]

        orders = await asyncio.gather(
            *(core.allocator.accept_quote(q.id, zec_address) for q in quotes)
        )

        assert len({o.deposit_address for o in orders}) == 4
        assert all(o.deposit_address.startswith("0x") for o in orders)

    @pytest.mark.asyncio
    async def test_pool_exhaustion(self, core, zec_address):
        """Pool size is 5 in tests; the sixth live order cannot be served."""
        for _ in range(5):
            await self._open(core, zec_address)

        quote = await core.quotes.request_quote("btc", "0.01")
        with pytest.raises(AllocationUnavailable):
            await core.allocator.accept_quote(quote.id, zec_address)

    @pytest.mark.asyncio
    async def test_pools_are_per_asset(self, core, zec_address):
        for _ in range(5):
            await self._open(core, zec_address)

        order = await self._open(core, zec_address, asset_id="ltc", amount="1")
        assert order.deposit_address.startswith("ltc1q")

    @pytest.mark.asyncio
    async def test_address_reused_after_terminal_status(self, core, clock, zec_address):
        first = await self._open(core, zec_address)

        clock.advance(901)
        assert await core.orders.expire_overdue() == 1

        second = await self._open(core, zec_address)
        assert second.deposit_address == first.deposit_address

        async with session_scope(core.session_factory) as session:
            assert await SwapRepository(session).count_pool_addresses("btc") == 1


class TestMemoAllocation:
    """Tests for shared-address assets told apart by memo."""

    @pytest.mark.asyncio
    async def test_memo_orders_share_address(self, core, zec_address):
        orders = []
        for _ in range(6):
            quote = await core.quotes.request_quote("xrp", "100")
            orders.append(await core.allocator.accept_quote(quote.id, zec_address))

        # More orders than the pool size: memo assets never draw from the pool
        assert len({o.deposit_address for o in orders}) == 1
        assert len({o.deposit_memo for o in orders}) == 6
        for order in orders:
            assert order.deposit_memo.isdigit()
            assert len(order.deposit_memo) == 9
            assert not order.deposit_memo.startswith("0")

    @pytest.mark.asyncio
    async def test_memo_collision_is_retried(self, core, zec_address, monkeypatch):
        quote = await core.quotes.request_quote("xlm", "10")
        first = await core.allocator.accept_quote(quote.id, zec_address)

        taken = int(first.deposit_memo) - 10 ** 8
        draws = iter([taken, taken, taken + 1])
        monkeypatch.setattr(
            "zecswap.services.deposit_allocator.secrets.randbelow", lambda _: next(draws)
        )

        quote = await core.quotes.request_quote("xlm", "10")
        second = await core.allocator.accept_quote(quote.id, zec_address)

        assert second.deposit_memo == str(int(first.deposit_memo) + 1)

    @pytest.mark.asyncio
    async def test_memo_space_exhausted(self, core, zec_address, monkeypatch):
        quote = await core.quotes.request_quote("ton", "5")
        first = await core.allocator.accept_quote(quote.id, zec_address)

        taken = int(first.deposit_memo) - 10 ** 8
        monkeypatch.setattr(
            "zecswap.services.deposit_allocator.secrets.randbelow", lambda _: taken
        )

        quote = await core.quotes.request_quote("ton", "5")
        with pytest.raises(AllocationUnavailable):
            await core.allocator.accept_quote(quote.id, zec_address)

        # The failed accept rolled back entirely
        assert (await core.quotes.get_quote(quote.id)).state == QuoteState.UNUSED
