"""
Unit tests for the daily rollup stage.
"""
from collections import defaultdict
from datetime import date, datetime

import pytest


def _expected_from_filtered(rows):
    out = defaultdict(lambda: {"total_quantity": 0, "completed_count": 0, "refunded_count": 0})
    for r in rows:
        agg = out[r["date"]]
        agg["total_quantity"] += r["quantity"]
        if r["status"] == "completed":
            agg["completed_count"] += 1
        elif r["status"] == "refunded":
            agg["refunded_count"] += 1
    return {d: dict(v) for d, v in out.items()}


def _actual(rows):
    return {
        r["date"]: {
            "total_quantity": r["total_quantity"],
            "completed_count": r["completed_count"],
            "refunded_count": r["refunded_count"],
        }
        for r in rows
    }


@pytest.mark.unit
class TestAggregateStage:
    def test_concrete_daily_rollup(self, filter_stage, aggregate_stage, add_raw, raw, filtered_rows, aggregate_rows):
        add_raw(
            raw(4, "completed", quantity=3, timestamp=datetime(2024, 12, 2, 8, 0)),
            raw(5, "pending", quantity=1, timestamp=datetime(2024, 12, 2, 9, 0)),
            raw(6, "completed", quantity=4, timestamp=datetime(2024, 12, 2, 10, 0)),
        )

        filter_stage.run()
        assert [r["id"] for r in filtered_rows()] == [4, 6]

        result = aggregate_stage.run()

        assert result.rows_read == 1
        assert aggregate_rows() == [
            {"date": date(2024, 12, 2), "total_quantity": 7, "completed_count": 2, "refunded_count": 0}
        ]

    def test_counts_refunds_per_date(self, filter_stage, aggregate_stage, add_raw, raw, aggregate_rows):
        add_raw(
            raw(1, "completed", quantity=2, timestamp=datetime(2024, 12, 1, 8, 0)),
            raw(2, "refunded", quantity=1, timestamp=datetime(2024, 12, 1, 9, 0)),
            raw(3, "refunded", quantity=5, timestamp=datetime(2024, 12, 3, 9, 0)),
        )
        filter_stage.run()

        aggregate_stage.run()

        assert _actual(aggregate_rows()) == {
            date(2024, 12, 1): {"total_quantity": 3, "completed_count": 1, "refunded_count": 1},
            date(2024, 12, 3): {"total_quantity": 5, "completed_count": 0, "refunded_count": 1},
        }

    def test_recomputes_every_date_after_late_changes(
        self, filter_stage, aggregate_stage, add_raw, raw, filtered_rows, aggregate_rows
    ):
        add_raw(raw(1, "completed", quantity=2, timestamp=datetime(2024, 11, 30, 8, 0)))
        filter_stage.run()
        aggregate_stage.run()

        # Late-arriving duplicate moves id 1 to a refund on the same old date.
        add_raw(
            raw(1, "refunded", quantity=2, timestamp=datetime(2024, 11, 30, 18, 0)),
            raw(2, "completed", quantity=6, timestamp=datetime(2024, 12, 2, 8, 0)),
        )
        filter_stage.run()
        aggregate_stage.run()

        assert _actual(aggregate_rows()) == _expected_from_filtered(filtered_rows())
        assert _actual(aggregate_rows())[date(2024, 11, 30)] == {
            "total_quantity": 2,
            "completed_count": 0,
            "refunded_count": 1,
        }

    def test_rerun_is_idempotent(self, filter_stage, aggregate_stage, add_raw, raw, aggregate_rows):
        add_raw(raw(1, "completed", quantity=2), raw(2, "refunded", quantity=3))
        filter_stage.run()
        aggregate_stage.run()
        before = aggregate_rows()

        result = aggregate_stage.run()

        assert aggregate_rows() == before
        assert result.rows_affected == 0
        assert result.merge.unchanged == 1

    def test_empty_filtered_set_leaves_aggregates_untouched(self, aggregate_stage, aggregate_rows):
        result = aggregate_stage.run()

        assert result.rows_read == 0
        assert aggregate_rows() == []

    @pytest.mark.parametrize(
        "sequence",
        [
            ["f", "a", "f", "a"],
            ["f", "f", "a", "a"],
            ["f", "a", "a", "f", "a"],
        ],
    )
    def test_consistency_holds_across_rerun_orders(
        self, sequence, filter_stage, aggregate_stage, add_raw, raw, filtered_rows, aggregate_rows
    ):
        batches = iter(
            [
                [raw(1, "completed", quantity=1), raw(2, "pending", quantity=4)],
                [raw(2, "completed", quantity=4), raw(3, "refunded", quantity=2, timestamp=datetime(2024, 12, 3))],
                [raw(1, "refunded", quantity=1)],
            ]
        )
        for step in sequence:
            if step == "f":
                add_raw(*next(batches, []))
                filter_stage.run()
            else:
                aggregate_stage.run()

        assert _actual(aggregate_rows()) == _expected_from_filtered(filtered_rows())
