"""Tests for the order state machine."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import START, FakeClock
from zecswap.exceptions import InvalidTransition, OrderNotFound, ReportRejected
from zecswap.ledger.database import session_scope
from zecswap.ledger.models import ALLOWED_TRANSITIONS, OrderStatus
from zecswap.ledger.repository import SwapRepository
from zecswap.services.container import build_core
from zecswap.services.conversion import ConversionBackend


async def open_order(core, zec_address, asset_id="btc", amount="0.01"):
    quote = await core.quotes.request_quote(asset_id, amount)
    return await core.allocator.accept_quote(quote.id, zec_address)


class FailingBackend(ConversionBackend):
    @property
    def name(self) -> str:
        return "failing"

    async def submit(self, request):
        raise RuntimeError("backend down")


class TestLifecycleTable:
    """Tests for the closed status enum and its edges."""

    def test_terminal_states_have_no_exits(self):
        for status in (OrderStatus.COMPLETE, OrderStatus.FAILED, OrderStatus.EXPIRED):
            assert status.is_terminal
            assert ALLOWED_TRANSITIONS[status] == frozenset()

    def test_allowed_edges(self):
        assert OrderStatus.PENDING.can_transition_to(OrderStatus.DEPOSITED)
        assert OrderStatus.PENDING.can_transition_to(OrderStatus.EXPIRED)
        assert OrderStatus.DEPOSITED.can_transition_to(OrderStatus.PROCESSING)
        assert OrderStatus.PROCESSING.can_transition_to(OrderStatus.COMPLETE)
        assert OrderStatus.PROCESSING.can_transition_to(OrderStatus.FAILED)

        assert not OrderStatus.PENDING.can_transition_to(OrderStatus.COMPLETE)
        assert not OrderStatus.DEPOSITED.can_transition_to(OrderStatus.EXPIRED)
        assert not OrderStatus.EXPIRED.can_transition_to(OrderStatus.PENDING)


class TestReportDeposit:
    """Tests for watcher deposit reports."""

    @pytest.mark.asyncio
    async def test_full_deposit_starts_conversion(self, core, zec_address, conversion_backend):
        order = await open_order(core, zec_address)

        ack = await core.orders.report_deposit(order.id, "tx1", "0.01", "btc")

        assert ack.counted and not ack.duplicate and not ack.late
        assert ack.status == OrderStatus.PROCESSING
        assert order.id in conversion_backend.submitted

        view = await core.status.get_status(order.id)
        assert [t.to_status for t in view.transitions] == [
            OrderStatus.PENDING,
            OrderStatus.DEPOSITED,
            OrderStatus.PROCESSING,
        ]
        assert view.received_amount == Decimal("0.01")

    @pytest.mark.asyncio
    async def test_partial_deposits_accumulate(self, core, zec_address):
        order = await open_order(core, zec_address)

        ack = await core.orders.report_deposit(order.id, "tx1", "0.004", "btc")
        assert ack.status == OrderStatus.PENDING

        ack = await core.orders.report_deposit(order.id, "tx2", "0.006", "btc")
        assert ack.status == OrderStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_sufficiency_independent_of_arrival_order(self, core, zec_address):
        first = await open_order(core, zec_address)
        second = await open_order(core, zec_address)

        await core.orders.report_deposit(first.id, "a", "0.003", "btc")
        await core.orders.report_deposit(first.id, "b", "0.007", "btc")
        await core.orders.report_deposit(second.id, "b", "0.007", "btc")
        await core.orders.report_deposit(second.id, "a", "0.003", "btc")

        for order in (first, second):
            view = await core.status.get_status(order.id)
            assert view.status == OrderStatus.PROCESSING
            assert view.received_amount == Decimal("0.010")

    @pytest.mark.asyncio
    async def test_duplicate_report_is_idempotent(self, core, zec_address):
        order = await open_order(core, zec_address)

        await core.orders.report_deposit(order.id, "tx1", "0.004", "btc")
        ack = await core.orders.report_deposit(order.id, "tx1", "0.004", "btc")

        assert ack.duplicate
        view = await core.status.get_status(order.id)
        assert len(view.deposits) == 1
        assert view.received_amount == Decimal("0.004")
        assert view.status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_duplicate_after_completion_is_acknowledged(self, core, zec_address):
        order = await open_order(core, zec_address)
        await core.orders.report_deposit(order.id, "tx1", "0.01", "btc")
        await core.orders.report_settlement(order.id, True, settlement_reference="zec-tx")

        ack = await core.orders.report_deposit(order.id, "tx1", "0.01", "btc")

        assert ack.duplicate
        assert ack.status == OrderStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_record_once(self, core, zec_address):
        order = await open_order(core, zec_address)

        acks = await asyncio.gather(
            *(core.orders.report_deposit(order.id, "tx1", "0.01", "btc") for _ in range(3))
        )

        assert sum(1 for a in acks if not a.duplicate) == 1
        view = await core.status.get_status(order.id)
        assert len(view.deposits) == 1
        assert view.status == OrderStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_wrong_asset_not_counted(self, core, zec_address):
        order = await open_order(core, zec_address)

        ack = await core.orders.report_deposit(order.id, "tx1", "1", "ltc")

        assert not ack.counted
        assert ack.status == OrderStatus.PENDING
        view = await core.status.get_status(order.id)
        assert view.received_amount == Decimal("0")
        assert view.deposits[0].counted is False

    @pytest.mark.asyncio
    async def test_memo_must_match(self, core, zec_address):
        order = await open_order(core, zec_address, asset_id="xrp", amount="100")

        ack = await core.orders.report_deposit(order.id, "tx1", "100", "xrp", memo="1")
        assert not ack.counted
        assert ack.status == OrderStatus.PENDING

        ack = await core.orders.report_deposit(order.id, "tx2", "100", "xrp", memo=order.deposit_memo)
        assert ack.counted
        assert ack.status == OrderStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_unknown_order(self, core):
        with pytest.raises(OrderNotFound):
            await core.orders.report_deposit("ord_missing", "tx1", "1", "btc")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-1", "lots"])
    async def test_malformed_amount_rejected(self, core, zec_address, amount):
        order = await open_order(core, zec_address)

        with pytest.raises(ReportRejected):
            await core.orders.report_deposit(order.id, "tx1", amount, "btc")

    @pytest.mark.asyncio
    async def test_report_for_finished_order_rejected(self, core, zec_address):
        order = await open_order(core, zec_address)
        await core.orders.report_deposit(order.id, "tx1", "0.01", "btc")
        await core.orders.report_settlement(order.id, False, error="no liquidity")

        with pytest.raises(ReportRejected):
            await core.orders.report_deposit(order.id, "tx2", "0.01", "btc")


class TestDeadline:
    """Tests for deadline expiry racing deposit reports."""

    @pytest.mark.asyncio
    async def test_deposit_just_before_deadline_wins(self, core, clock, zec_address):
        order = await open_order(core, zec_address)

        clock.advance(899)
        ack = await core.orders.report_deposit(order.id, "tx1", "0.01", "btc")

        assert ack.status == OrderStatus.PROCESSING
        assert not ack.late
        assert await core.orders.expire_overdue() == 0

    @pytest.mark.asyncio
    async def test_late_deposit_after_deadline(self, core, clock, zec_address):
        """Accept at T, deposit reported at T+901: expired, deposit recorded as late."""
        order = await open_order(core, zec_address)

        clock.advance(901)
        ack = await core.orders.report_deposit(order.id, "tx1", "0.01", "btc")

        assert ack.late
        assert ack.status == OrderStatus.EXPIRED
        view = await core.status.get_status(order.id)
        assert view.status == OrderStatus.EXPIRED
        assert view.deposits[0].late is True
        assert view.seconds_remaining == 0
        # Late money is listed for reconciliation, not counted as received
        assert view.received_amount == Decimal("0")

    @pytest.mark.asyncio
    async def test_deposit_at_exact_deadline_is_late(self, core, clock, zec_address):
        order = await open_order(core, zec_address)

        clock.advance(900)
        ack = await core.orders.report_deposit(order.id, "tx1", "0.01", "btc")

        assert ack.late
        assert ack.status == OrderStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_late_deposit_never_resurrects(self, core, clock, zec_address):
        order = await open_order(core, zec_address)
        clock.advance(901)
        assert await core.orders.expire_overdue() == 1

        ack = await core.orders.report_deposit(order.id, "tx1", "0.01", "btc")

        assert ack.late
        assert ack.status == OrderStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_partial_deposit_still_expires(self, core, clock, zec_address):
        order = await open_order(core, zec_address)
        await core.orders.report_deposit(order.id, "tx1", "0.005", "btc")

        clock.advance(900)
        assert await core.orders.expire_overdue() == 1

        view = await core.status.get_status(order.id)
        assert view.status == OrderStatus.EXPIRED
        assert "partial" in view.transitions[-1].reason

    @pytest.mark.asyncio
    async def test_expiry_releases_deposit_target(self, core, clock, zec_address):
        order = await open_order(core, zec_address)
        clock.advance(901)
        await core.orders.expire_overdue()

        async with session_scope(core.session_factory) as session:
            repo = SwapRepository(session)
            assert not await repo.is_target_bound("btc", order.deposit_address)


class TestSettlement:
    """Tests for conversion outcomes."""

    @pytest.mark.asyncio
    async def test_settlement_success(self, core, zec_address):
        order = await open_order(core, zec_address)
        await core.orders.report_deposit(order.id, "tx1", "0.01", "btc")

        settled = await core.orders.report_settlement(order.id, True, settlement_reference="zec-tx")

        assert settled.status == OrderStatus.COMPLETE
        assert settled.settlement_reference == "zec-tx"
        async with session_scope(core.session_factory) as session:
            assert not await SwapRepository(session).is_target_bound("btc", order.deposit_address)

    @pytest.mark.asyncio
    async def test_settlement_failure(self, core, zec_address):
        order = await open_order(core, zec_address)
        await core.orders.report_deposit(order.id, "tx1", "0.01", "btc")

        settled = await core.orders.report_settlement(order.id, False, error="slippage")

        assert settled.status == OrderStatus.FAILED
        assert settled.error_message == "slippage"

    @pytest.mark.asyncio
    async def test_repeated_settlement_is_noop(self, core, zec_address):
        order = await open_order(core, zec_address)
        await core.orders.report_deposit(order.id, "tx1", "0.01", "btc")
        await core.orders.report_settlement(order.id, True, settlement_reference="zec-tx")

        again = await core.orders.report_settlement(order.id, True, settlement_reference="zec-tx")

        assert again.status == OrderStatus.COMPLETE
        assert len(again.transitions) == 4

    @pytest.mark.asyncio
    async def test_contradicting_settlement_rejected(self, core, zec_address):
        order = await open_order(core, zec_address)
        await core.orders.report_deposit(order.id, "tx1", "0.01", "btc")
        await core.orders.report_settlement(order.id, True)

        with pytest.raises(InvalidTransition):
            await core.orders.report_settlement(order.id, False, error="late failure")

    @pytest.mark.asyncio
    async def test_settlement_before_deposit_rejected(self, core, zec_address):
        order = await open_order(core, zec_address)

        with pytest.raises(InvalidTransition):
            await core.orders.report_settlement(order.id, True)

        assert (await core.status.get_status(order.id)).status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_settlement_for_expired_order_rejected(self, core, clock, zec_address):
        order = await open_order(core, zec_address)
        clock.advance(901)
        await core.orders.expire_overdue()

        with pytest.raises(InvalidTransition):
            await core.orders.report_settlement(order.id, True)

    @pytest.mark.asyncio
    async def test_submission_failure_fails_order(
        self, settings, session_factory, catalog, rate_source, clock, zec_address
    ):
        core = build_core(
            settings,
            session_factory=session_factory,
            catalog=catalog,
            rate_source=rate_source,
            conversion_backend=FailingBackend(),
            clock=clock,
        )
        order = await open_order(core, zec_address)

        ack = await core.orders.report_deposit(order.id, "tx1", "0.01", "btc")

        assert ack.status == OrderStatus.FAILED
        view = await core.status.get_status(order.id)
        assert "backend down" in view.error_message


class TestSweepEntryPoints:
    """Tests for expire_overdue, resume_conversions and the deposit-sent hint."""

    @pytest.mark.asyncio
    async def test_expire_overdue_only_touches_overdue(self, core, clock, zec_address):
        old = await open_order(core, zec_address)
        clock.advance(600)
        fresh = await open_order(core, zec_address)
        clock.advance(300)

        assert await core.orders.expire_overdue() == 1
        assert (await core.status.get_status(old.id)).status == OrderStatus.EXPIRED
        assert (await core.status.get_status(fresh.id)).status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_resume_conversions_picks_up_deposited(self, core, zec_address, conversion_backend):
        order = await open_order(core, zec_address)

        # Simulate a crash between the deposit commit and the submission
        async with session_scope(core.session_factory) as session:
            stored = await SwapRepository(session).get_order(order.id)
            stored.status = OrderStatus.DEPOSITED

        assert await core.orders.resume_conversions() == 1
        assert (await core.status.get_status(order.id)).status == OrderStatus.PROCESSING
        assert order.id in conversion_backend.submitted
        assert await core.orders.resume_conversions() == 0

    @pytest.mark.asyncio
    async def test_acknowledge_deposit_sent(self, core, clock, zec_address):
        order = await open_order(core, zec_address)
        clock.advance(30)

        acked = await core.orders.acknowledge_deposit_sent(order.id)

        assert acked.status == OrderStatus.PENDING
        assert acked.deposit_sent_at == clock.now

    @pytest.mark.asyncio
    async def test_acknowledge_unknown_order(self, core):
        with pytest.raises(OrderNotFound):
            await core.orders.acknowledge_deposit_sent("ord_missing")

    @pytest.mark.asyncio
    async def test_terminal_orders_drop_their_lock(self, core, clock, zec_address):
        order = await open_order(core, zec_address)
        await core.orders.report_deposit(order.id, "tx1", "0.004", "btc")
        assert len(core.order_locks) == 1

        clock.advance(901)
        await core.orders.expire_overdue()
        assert len(core.order_locks) == 0


class TestLockRegistryHygiene:
    """Order locks must not pile up for orders that need no more serialization."""

    @pytest.mark.asyncio
    async def test_unknown_orders_leave_no_locks(self, core):
        for i in range(20):
            with pytest.raises(OrderNotFound):
                await core.orders.acknowledge_deposit_sent(f"ord_missing_{i}")
            with pytest.raises(OrderNotFound):
                await core.orders.report_deposit(f"ord_missing_{i}", "tx1", "1", "btc")

        assert len(core.order_locks) == 0

    @pytest.mark.asyncio
    async def test_rejected_reports_leave_no_locks(self, core, zec_address):
        order = await open_order(core, zec_address)
        await core.orders.report_deposit(order.id, "tx1", "0.01", "btc")
        await core.orders.report_settlement(order.id, True)

        for i in range(5):
            with pytest.raises(ReportRejected):
                await core.orders.report_deposit(order.id, f"extra{i}", "0.01", "btc")
            await core.orders.acknowledge_deposit_sent(order.id)

        assert len(core.order_locks) == 0

    @pytest.mark.asyncio
    async def test_live_order_keeps_its_lock_after_rejection(self, core, zec_address):
        order = await open_order(core, zec_address)

        with pytest.raises(InvalidTransition):
            await core.orders.report_settlement(order.id, True)

        assert len(core.order_locks) == 1


class TestConcurrentWriters:
    """A second process on the same database has its own locks; the row version arbitrates."""

    @staticmethod
    def other_process(settings, session_factory, catalog, rate_source, conversion_backend, seconds):
        return build_core(
            settings,
            session_factory=session_factory,
            catalog=catalog,
            rate_source=rate_source,
            conversion_backend=conversion_backend,
            clock=FakeClock(START + timedelta(seconds=seconds)),
        )

    @pytest.mark.asyncio
    async def test_stale_expiry_does_not_overwrite_processing(
        self, core, settings, session_factory, catalog, rate_source, conversion_backend,
        zec_address, monkeypatch,
    ):
        order = await open_order(core, zec_address)
        sweeper_side = self.other_process(
            settings, session_factory, catalog, rate_source, conversion_backend, 901
        )

        loaded = asyncio.Event()
        resume = asyncio.Event()
        load = sweeper_side.orders._load

        async def load_then_wait(repo, order_id):
            found = await load(repo, order_id)
            if not loaded.is_set():
                loaded.set()
                await resume.wait()
            return found

        monkeypatch.setattr(sweeper_side.orders, "_load", load_then_wait)

        # The sweeper reads the order while it is still pending
        expiry = asyncio.create_task(sweeper_side.orders.expire_if_overdue(order.id))
        await loaded.wait()

        ack = await core.orders.report_deposit(order.id, "tx1", "0.01", "btc")
        assert ack.status == OrderStatus.PROCESSING

        resume.set()
        assert await expiry is False

        view = await core.status.get_status(order.id)
        assert view.status == OrderStatus.PROCESSING
        assert [t.to_status for t in view.transitions] == [
            OrderStatus.PENDING,
            OrderStatus.DEPOSITED,
            OrderStatus.PROCESSING,
        ]
        async with session_scope(core.session_factory) as session:
            assert await SwapRepository(session).is_target_bound("btc", order.deposit_address)

    @pytest.mark.asyncio
    async def test_deposit_racing_expiry_applies_one_outcome(
        self, core, settings, session_factory, catalog, rate_source, conversion_backend, zec_address,
    ):
        """Whichever of the two is applied first wins; the other sees its result."""
        order = await open_order(core, zec_address)
        sweeper_side = self.other_process(
            settings, session_factory, catalog, rate_source, conversion_backend, 901
        )

        ack, expired = await asyncio.gather(
            core.orders.report_deposit(order.id, "tx1", "0.01", "btc"),
            sweeper_side.orders.expire_if_overdue(order.id),
        )

        view = await core.status.get_status(order.id)
        trail = [t.to_status for t in view.transitions]
        assert len(view.deposits) == 1
        if expired:
            assert trail == [OrderStatus.PENDING, OrderStatus.EXPIRED]
            assert ack.late and ack.status == OrderStatus.EXPIRED
            assert view.deposits[0].late is True
        else:
            assert trail == [OrderStatus.PENDING, OrderStatus.DEPOSITED, OrderStatus.PROCESSING]
            assert not ack.late
            assert view.status == OrderStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_deposit_racing_deadline_tick_in_one_process(self, core, clock, zec_address):
        order = await open_order(core, zec_address)
        clock.advance(900)

        ack, expired = await asyncio.gather(
            core.orders.report_deposit(order.id, "tx1", "0.01", "btc"),
            core.orders.expire_if_overdue(order.id),
        )

        view = await core.status.get_status(order.id)
        # Exactly one expiry, applied by whichever call ran first
        assert [t.to_status for t in view.transitions] == [OrderStatus.PENDING, OrderStatus.EXPIRED]
        assert ack.late
        assert isinstance(expired, bool)
        assert len(core.order_locks) == 0
