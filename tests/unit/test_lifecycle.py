"""Unit tests for contest lifecycle transitions.

CRITICAL TESTS:
- Contests below the participant minimum are cancelled and every fee refunded once
- Completion is idempotent and only happens once every entry is valued
- Status never moves backwards
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from arena.models.domain import CoinTransactionType, ContestStatus
from arena.services.contests import ContestService
from arena.services.exceptions import InvalidContestStateError
from arena.services.lifecycle import ContestLifecycle
from arena.services.pricing import LedgerPriceOracle


@pytest.fixture
def lifecycle(ledger, oracle, clock):
    return ContestLifecycle(ledger, oracle, clock=clock, min_participants=2)


def results_of(ledger, contest_id):
    return {
        e.id: (e.final_portfolio_value, e.roi, e.rank)
        for e in ledger.entries
        if e.contest_id == contest_id
    }


class TestStartContest:
    """Test upcoming -> active and the abandonment rule."""

    async def test_scan_starts_due_contest(self, ledger, lifecycle, clock):
        contest = ledger.add_contest(start_time=clock.now - timedelta(seconds=1))
        ledger.add_entry(contest)
        ledger.add_entry(contest)

        stats = await lifecycle.scan()

        assert ledger.stored_contest(contest.id).status == "active"
        assert stats["contests_checked"] == 1
        assert stats["started"] == 1
        assert stats["errors"] == 0

    async def test_scan_leaves_future_contest_alone(self, ledger, lifecycle, clock):
        contest = ledger.add_contest(start_time=clock.now + timedelta(minutes=5))
        ledger.add_entry(contest)
        ledger.add_entry(contest)

        stats = await lifecycle.scan()

        assert ledger.stored_contest(contest.id).status == "upcoming"
        assert stats["started"] == 0

    async def test_start_instant_is_inclusive(self, ledger, lifecycle, clock):
        contest = ledger.add_contest(start_time=clock.now)
        ledger.add_entry(contest)
        ledger.add_entry(contest)

        status = await lifecycle.check_contest(contest)

        assert status is ContestStatus.ACTIVE

    async def test_abandoned_contest_refunds_single_entrant(self, ledger, oracle, lifecycle, clock):
        """
        A contest with max 50 participants, a 100 coin fee and a single
        entry reaches its start time: it is cancelled and the entrant gets
        100 coins back with a refund transaction.
        """
        ledger.set_price("AAPL", "150.00")
        contest = ledger.add_contest(
            name="Lonely Cup",
            max_participants=50,
            entry_fee=100,
            start_time=clock.now + timedelta(minutes=1),
        )
        user = ledger.add_user(coins_balance=1000)
        service = ContestService(ledger, oracle, clock=clock)
        await service.join_contest(contest.id, user.id, [("AAPL", 100)])
        assert ledger.users[user.id].coins_balance == 900

        clock.advance(minutes=1)
        stats = await lifecycle.scan()

        assert ledger.stored_contest(contest.id).status == "cancelled"
        assert stats["cancelled"] == 1
        refunds = ledger.transactions_for(contest.id, CoinTransactionType.REFUND)
        assert len(refunds) == 1
        assert refunds[0].user_id == user.id
        assert refunds[0].amount == 100
        assert refunds[0].description == "Refund for abandoned contest: Lonely Cup"
        assert ledger.users[user.id].coins_balance == 1000

    async def test_abandoned_contest_without_entries(self, ledger, lifecycle, clock):
        contest = ledger.add_contest(start_time=clock.now)

        status = await lifecycle.check_contest(contest)

        assert status is ContestStatus.CANCELLED
        assert ledger.coin_transactions == []

    async def test_free_contest_cancels_without_refund_rows(self, ledger, lifecycle, clock):
        contest = ledger.add_contest(start_time=clock.now, entry_fee=0)
        ledger.add_entry(contest)

        status = await lifecycle.check_contest(contest)

        assert status is ContestStatus.CANCELLED
        assert ledger.coin_transactions == []

    async def test_minimum_is_configurable(self, ledger, oracle, clock):
        lifecycle = ContestLifecycle(ledger, oracle, clock=clock, min_participants=3)
        contest = ledger.add_contest(start_time=clock.now)
        ledger.add_entry(contest)
        ledger.add_entry(contest)

        status = await lifecycle.check_contest(contest)

        assert status is ContestStatus.CANCELLED

    async def test_lost_race_is_a_noop(self, ledger, lifecycle, clock):
        """Two workers holding the same stale read: only one flips the status."""
        contest = ledger.add_contest(start_time=clock.now)
        ledger.add_entry(contest)
        ledger.add_entry(contest)
        first_read = await ledger.get_contest(contest.id)
        second_read = await ledger.get_contest(contest.id)

        assert await lifecycle.start_contest(first_read) is ContestStatus.ACTIVE
        assert await lifecycle.start_contest(second_read) is ContestStatus.ACTIVE

        attempts = [
            call for call in ledger.transition_calls
            if call == (contest.id, ContestStatus.UPCOMING, ContestStatus.ACTIVE)
        ]
        assert len(attempts) == 2
        assert ledger.stored_contest(contest.id).status == "active"


class TestCancelContest:
    """Test refunds and the cancelled flip."""

    async def test_refund_sum_matches_fees(self, ledger, oracle, lifecycle, clock):
        ledger.set_price("MSFT", "400")
        contest = ledger.add_contest(entry_fee=75)
        service = ContestService(ledger, oracle, clock=clock)
        users = [ledger.add_user(coins_balance=500) for _ in range(3)]
        for user in users:
            await service.join_contest(contest.id, user.id, [("MSFT", 100)])

        await lifecycle.cancel_contest(contest)

        refunds = ledger.transactions_for(contest.id, CoinTransactionType.REFUND)
        assert sum(t.amount for t in refunds) == 75 * len(users)
        assert all(ledger.users[u.id].coins_balance == 500 for u in users)
        assert refunds[0].description == "Refund for cancelled contest: Weekly Tech Showdown"

    async def test_retry_after_partial_failure_refunds_each_user_once(self, ledger, lifecycle):
        contest = ledger.add_contest(entry_fee=40)
        users = [ledger.add_user(coins_balance=0) for _ in range(3)]
        for user in users:
            ledger.add_entry(contest, user)
        ledger.fail_next_transaction_for.add(users[1].id)

        with pytest.raises(RuntimeError):
            await lifecycle.cancel_contest(contest)

        # Not cancelled until every refund committed
        assert ledger.stored_contest(contest.id).status == "upcoming"
        assert len(ledger.transactions_for(contest.id, CoinTransactionType.REFUND)) == 1

        status = await lifecycle.cancel_contest(await ledger.get_contest(contest.id))

        assert status is ContestStatus.CANCELLED
        refunds = ledger.transactions_for(contest.id, CoinTransactionType.REFUND)
        assert sorted(t.user_id for t in refunds) == sorted(u.id for u in users)
        assert all(ledger.users[u.id].coins_balance == 40 for u in users)

    async def test_active_contest_cannot_be_cancelled(self, ledger, lifecycle):
        contest = ledger.add_contest(status="active")

        with pytest.raises(InvalidContestStateError, match="current status: active"):
            await lifecycle.cancel_contest(contest)

    async def test_overlapping_checks_refund_once(self, interleaving_ledger, clock):
        """A timer and the scan abandoning the same contest together pay one refund."""
        ledger = interleaving_ledger
        lifecycle = ContestLifecycle(
            ledger, LedgerPriceOracle(ledger), clock=clock, min_participants=2
        )
        contest = ledger.add_contest(entry_fee=100, start_time=clock.now)
        user = ledger.add_user(coins_balance=0)
        ledger.add_entry(contest, user)

        statuses = await asyncio.gather(
            lifecycle.check_contest(await ledger.get_contest(contest.id)),
            lifecycle.check_contest(await ledger.get_contest(contest.id)),
        )

        assert statuses == [ContestStatus.CANCELLED, ContestStatus.CANCELLED]
        assert len(ledger.transactions_for(contest.id, CoinTransactionType.REFUND)) == 1
        assert ledger.users[user.id].coins_balance == 100


class TestCompleteContest:
    """Test active -> completed."""

    def _active_contest(self, ledger, clock):
        ledger.set_price("AAPL", "165.00")
        ledger.set_price("TSLA", "180.00")
        contest = ledger.add_contest(
            status="active",
            start_time=clock.now - timedelta(days=1),
            end_time=clock.now,
        )
        ledger.add_entry(contest, holdings={"AAPL": "0.4", "TSLA": "0.2"})  # 102.00
        ledger.add_entry(contest, holdings={"TSLA": "0.5"})                 # 90.00
        ledger.add_entry(contest, holdings={"AAPL": "0.8"})                 # 132.00
        return contest

    async def test_completion_values_and_ranks(self, ledger, lifecycle, clock):
        contest = self._active_contest(ledger, clock)

        stats = await lifecycle.scan()

        assert stats["completed"] == 1
        assert ledger.stored_contest(contest.id).status == "completed"
        stored = sorted(
            (e for e in ledger.entries if e.contest_id == contest.id), key=lambda e: e.rank
        )
        assert [e.final_portfolio_value for e in stored] == [
            Decimal("132.00"), Decimal("102.00"), Decimal("90.00")
        ]
        assert [e.roi for e in stored] == [Decimal("32.00"), Decimal("2.00"), Decimal("-10.00")]
        assert [e.rank for e in stored] == [1, 2, 3]

    async def test_completion_is_idempotent(self, ledger, lifecycle, clock):
        """
        Redoing the completion sequence (as after a crash before the flip)
        gives the same values, ROI and ranks.
        """
        contest = self._active_contest(ledger, clock)

        await lifecycle.calculate_results(contest)
        first = results_of(ledger, contest.id)

        summary = await lifecycle.complete_contest(contest)

        assert summary.status is ContestStatus.COMPLETED
        assert results_of(ledger, contest.id) == first

        await lifecycle.calculate_results(await ledger.get_contest(contest.id))
        assert results_of(ledger, contest.id) == first

    async def test_second_completion_is_rejected(self, ledger, lifecycle, clock):
        contest = self._active_contest(ledger, clock)
        await lifecycle.complete_contest(contest)

        with pytest.raises(InvalidContestStateError):
            await lifecycle.complete_contest(await ledger.get_contest(contest.id))

    async def test_missing_price_blocks_completion(self, ledger, lifecycle, clock):
        contest = self._active_contest(ledger, clock)
        delisted = ledger.add_entry(contest, holdings={"GONE": "1"})

        summary = await lifecycle.complete_contest(contest)

        assert summary.status is ContestStatus.ACTIVE
        assert not summary.complete
        assert summary.unresolved == [delisted.id]
        assert ledger.stored_contest(contest.id).status == "active"

        ledger.set_price("GONE", "50.00")
        stats = await lifecycle.scan()

        assert stats["completed"] == 1
        assert ledger.stored_contest(contest.id).status == "completed"
        assert ledger.stored_entry(delisted.id).rank == 4

    async def test_contest_with_no_entries_completes(self, ledger, lifecycle, clock):
        contest = ledger.add_contest(status="active", end_time=clock.now)

        status = await lifecycle.check_contest(contest)

        assert status is ContestStatus.COMPLETED


class TestNoBackwardTransitions:
    """Terminal contests stay terminal."""

    @pytest.mark.parametrize("status", ["completed", "cancelled"])
    async def test_scan_ignores_terminal_contests(self, ledger, lifecycle, clock, status):
        contest = ledger.add_contest(
            status=status,
            start_time=clock.now - timedelta(days=2),
            end_time=clock.now - timedelta(days=1),
        )

        stats = await lifecycle.scan()

        assert stats["contests_checked"] == 0
        assert ledger.stored_contest(contest.id).status == status
        assert ledger.transition_calls == []

    @pytest.mark.parametrize("status", ["active", "completed", "cancelled"])
    async def test_start_requires_upcoming(self, ledger, lifecycle, status):
        contest = ledger.add_contest(status=status)

        with pytest.raises(InvalidContestStateError, match="must be upcoming"):
            await lifecycle.start_contest(contest)

    async def test_check_on_terminal_contest_reports_status(self, ledger, lifecycle, clock):
        contest = ledger.add_contest(status="completed", end_time=clock.now - timedelta(hours=1))

        assert await lifecycle.check_contest(contest) is ContestStatus.COMPLETED
        assert ledger.transition_calls == []


class TestScanResilience:
    """A failing contest does not stop the scan."""

    async def test_error_on_one_contest_is_counted(self, ledger, lifecycle, clock, monkeypatch):
        broken = ledger.add_contest(start_time=clock.now - timedelta(minutes=2))
        healthy = ledger.add_contest(start_time=clock.now - timedelta(minutes=1))
        ledger.add_entry(healthy)
        ledger.add_entry(healthy)

        count_entries = ledger.count_entries

        async def failing_count(contest_id):
            if contest_id == broken.id:
                raise RuntimeError("database timeout")
            return await count_entries(contest_id)

        monkeypatch.setattr(ledger, "count_entries", failing_count)

        stats = await lifecycle.scan()

        assert stats["errors"] == 1
        assert stats["started"] == 1
        assert ledger.stored_contest(broken.id).status == "upcoming"
        assert ledger.stored_contest(healthy.id).status == "active"
