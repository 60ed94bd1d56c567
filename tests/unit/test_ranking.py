"""Unit tests for ranking and rank movement."""

import uuid
from decimal import Decimal

from arena.services.ranking import EntryResult, assign_ranks, rank_changes


def result(roi: str | None, value: str = "100.00") -> EntryResult:
    return EntryResult(
        entry_id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        final_portfolio_value=Decimal(value),
        roi=Decimal(roi) if roi is not None else None,
    )


class TestAssignRanks:
    """Test ROI descending ranking."""

    def test_highest_roi_ranks_first(self):
        low, high, mid = result("-3.50"), result("12.00"), result("2.00")

        ranked = assign_ranks([low, high, mid])

        assert [r.entry_id for r in ranked] == [high.entry_id, mid.entry_id, low.entry_id]
        assert [r.rank for r in ranked] == [1, 2, 3]

    def test_ranks_are_one_to_n_without_gaps(self):
        results = [result(str(roi)) for roi in (5, -1, 0, 8, 3, 3, 10)]

        ranked = assign_ranks(results)

        assert sorted(r.rank for r in ranked) == list(range(1, len(results) + 1))

    def test_ties_keep_input_order(self):
        """Equal ROI entries keep creation order and still get distinct ranks."""
        first, second, third = result("2.00"), result("2.00"), result("2.00")

        ranked = assign_ranks([first, second, third])

        assert [r.entry_id for r in ranked] == [first.entry_id, second.entry_id, third.entry_id]
        assert [r.rank for r in ranked] == [1, 2, 3]

    def test_tie_below_a_leader(self):
        leader, tied_a, tied_b = result("9.00"), result("1.00"), result("1.00")

        ranked = assign_ranks([tied_a, leader, tied_b])

        assert [(r.entry_id, r.rank) for r in ranked] == [
            (leader.entry_id, 1),
            (tied_a.entry_id, 2),
            (tied_b.entry_id, 3),
        ]

    def test_entries_without_roi_are_dropped(self):
        ranked = assign_ranks([result(None), result("1.00"), result(None)])

        assert len(ranked) == 1
        assert ranked[0].rank == 1

    def test_empty_input(self):
        assert assign_ranks([]) == []

    def test_input_is_not_mutated(self):
        original = result("4.00")

        assign_ranks([original])

        assert original.rank is None


class TestRankChanges:
    """Test rank movement between two leaderboard batches."""

    def test_positive_change_means_climbing(self):
        climber, faller = uuid.uuid4(), uuid.uuid4()

        changes = rank_changes(
            latest=[(climber, 1), (faller, 2)],
            previous=[(faller, 1), (climber, 2)],
        )

        assert changes == {climber: 1, faller: -1}

    def test_unchanged_rank_is_zero(self):
        user = uuid.uuid4()
        assert rank_changes([(user, 3)], [(user, 3)]) == {user: 0}

    def test_new_user_has_no_change(self):
        newcomer, regular = uuid.uuid4(), uuid.uuid4()

        changes = rank_changes([(newcomer, 1), (regular, 2)], [(regular, 1)])

        assert newcomer not in changes
        assert changes[regular] == -1
