"""Tests for community_dispatch/delinquency/state.py.

recompute_delinquency is pure, so everything here runs without a database.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from community_dispatch.db.models import DelinquencyAggregate
from community_dispatch.delinquency.state import (
    DelinquencyState,
    apply_state,
    days_between,
    recompute_delinquency,
    snapshot,
)

NOW = datetime(2026, 5, 10, 2, 0, tzinfo=timezone.utc)


# ===========================================================================
# days_between
# ===========================================================================

class TestDaysBetween:
    def test_whole_days_are_counted(self):
        assert days_between(NOW - timedelta(days=30), NOW) == 30

    def test_partial_day_is_floored(self):
        assert days_between(NOW - timedelta(days=44, hours=23), NOW) == 44

    def test_same_instant_counts_as_one_day(self):
        assert days_between(NOW, NOW) == 1

    def test_naive_start_is_treated_as_utc(self):
        naive = (NOW - timedelta(days=3)).replace(tzinfo=None)
        assert days_between(naive, NOW) == 3


# ===========================================================================
# recompute_delinquency
# ===========================================================================

class TestRecomputeDelinquency:
    def test_first_positive_balance_starts_aging(self):
        state = recompute_delinquency(DelinquencyState(amount_owed=Decimal("120.00")), NOW)

        assert state.is_delinquent is True
        assert state.first_delinquency_date == NOW
        assert state.days_in_arrears == 1

    def test_existing_first_date_is_kept_and_aged(self):
        first = NOW - timedelta(days=12)
        state = recompute_delinquency(
            DelinquencyState(amount_owed=Decimal("50"), is_delinquent=True, first_delinquency_date=first),
            NOW,
        )

        assert state.first_delinquency_date == first
        assert state.days_in_arrears == 12

    def test_zero_balance_clears_aging_and_suspension(self):
        state = recompute_delinquency(
            DelinquencyState(
                amount_owed=Decimal("0"),
                is_delinquent=True,
                days_in_arrears=70,
                first_delinquency_date=NOW - timedelta(days=70),
                is_suspended_for_delinquency=True,
                suspension_date=NOW - timedelta(days=10),
                suspension_reason="automatic delinquency (>60 days)",
            ),
            NOW,
        )

        assert state.is_delinquent is False
        assert state.days_in_arrears == 0
        assert state.first_delinquency_date is None
        assert state.is_suspended_for_delinquency is False
        assert state.suspension_date is None
        # history survives reinstatement
        assert state.suspension_reason == "automatic delinquency (>60 days)"

    def test_suspension_flag_untouched_while_balance_positive(self):
        state = recompute_delinquency(
            DelinquencyState(
                amount_owed=Decimal("10"),
                is_delinquent=True,
                first_delinquency_date=NOW - timedelta(days=65),
                is_suspended_for_delinquency=True,
                suspension_date=NOW - timedelta(days=5),
            ),
            NOW,
        )

        assert state.is_suspended_for_delinquency is True
        assert state.days_in_arrears == 65

    def test_negative_balance_rejected(self):
        with pytest.raises(ValueError):
            recompute_delinquency(DelinquencyState(amount_owed=Decimal("-1")), NOW)

    def test_input_state_is_not_mutated(self):
        original = DelinquencyState(amount_owed=Decimal("5"))
        recompute_delinquency(original, NOW)

        assert original.is_delinquent is False
        assert original.first_delinquency_date is None

    def test_recompute_is_idempotent(self):
        once = recompute_delinquency(DelinquencyState(amount_owed=Decimal("5")), NOW)
        assert recompute_delinquency(once, NOW) == once


# ===========================================================================
# snapshot / apply_state
# ===========================================================================

class TestSnapshotApply:
    def test_round_trip_through_aggregate_row(self):
        aggregate = DelinquencyAggregate(amount_owed=Decimal("80"))
        state = recompute_delinquency(snapshot(aggregate), NOW)
        apply_state(aggregate, state)

        assert aggregate.is_delinquent is True
        assert aggregate.days_in_arrears == 1
        assert aggregate.first_delinquency_date == NOW

    def test_snapshot_normalises_unset_columns(self):
        state = snapshot(DelinquencyAggregate())

        assert state.amount_owed == Decimal("0")
        assert state.is_delinquent is False
        assert state.days_in_arrears == 0
