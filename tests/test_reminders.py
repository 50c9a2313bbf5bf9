from datetime import datetime, timezone
from decimal import Decimal

import pytest

from community_dispatch.delinquency.reminders import (
    SUSPENSION_REASON,
    SUSPENSION_THRESHOLD_DAYS,
    reminder_for,
    reminder_payload,
    suspension_payload,
)


@pytest.mark.parametrize("days", [0, 1, 29, 31, 44, 46, 54, 60, 61, 90])
def test_no_reminder_outside_thresholds(days):
    assert reminder_for(days) is None


def test_first_notice_at_30_days():
    reminder = reminder_for(30)

    assert reminder is not None
    assert reminder.title == "Delinquency reminder"
    assert "30 more days" in reminder.body


def test_second_notice_at_45_days():
    reminder = reminder_for(45)

    assert reminder is not None
    assert "15 days remaining" in reminder.body


@pytest.mark.parametrize("days,remaining", [(55, 5), (57, 3), (59, 1)])
def test_critical_window_counts_down(days, remaining):
    reminder = reminder_for(days)

    assert reminder.title == "Critical delinquency"
    assert f"Only {remaining} days remaining" in reminder.body
    assert reminder.days_in_arrears == days


def test_threshold_constant():
    assert SUSPENSION_THRESHOLD_DAYS == 60
    assert SUSPENSION_REASON == "automatic delinquency (>60 days)"


def test_payloads_carry_string_values_only():
    reminder = reminder_payload(45, Decimal("150.50"))
    suspended = suspension_payload(datetime(2026, 3, 2, 2, 0, tzinfo=timezone.utc), Decimal("150.50"))

    assert reminder == {
        "type": "delinquency",
        "action": "delinquency_reminder",
        "days_in_arrears": "45",
        "amount_owed": "150.50",
    }
    assert suspended["action"] == "suspended_auto"
    assert suspended["suspension_date"].startswith("2026-03-02T02:00:00")
    assert all(isinstance(value, str) for value in suspended.values())
