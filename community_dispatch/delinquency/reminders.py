"""Reminder table for delinquent households.

Thresholds are evaluated on exact ``days_in_arrears`` values; anything at or
past the suspension threshold is handled by the suspension sweep instead.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

SUSPENSION_THRESHOLD_DAYS = 60
SUSPENSION_REASON = "automatic delinquency (>60 days)"

_FIRST_NOTICE_DAY = 30
_SECOND_NOTICE_DAY = 45
_CRITICAL_WINDOW_START = 55


@dataclass(frozen=True)
class Reminder:
    title: str
    body: str
    days_in_arrears: int


def reminder_for(days_in_arrears: int) -> Reminder | None:
    """Return the reminder due at *days_in_arrears*, or ``None``."""
    if days_in_arrears == _FIRST_NOTICE_DAY:
        return Reminder(
            title="Delinquency reminder",
            body=(
                "Your account is 30 days in arrears. "
                "You have 30 more days to settle your balance before suspension."
            ),
            days_in_arrears=days_in_arrears,
        )
    if days_in_arrears == _SECOND_NOTICE_DAY:
        return Reminder(
            title="Delinquency - 15 days remaining",
            body="Only 15 days remaining to settle your balance before suspension.",
            days_in_arrears=days_in_arrears,
        )
    if _CRITICAL_WINDOW_START <= days_in_arrears < SUSPENSION_THRESHOLD_DAYS:
        remaining = SUSPENSION_THRESHOLD_DAYS - days_in_arrears
        return Reminder(
            title="Critical delinquency",
            body=f"Only {remaining} days remaining before your account is suspended.",
            days_in_arrears=days_in_arrears,
        )
    return None


def reminder_payload(days_in_arrears: int, amount_owed: Decimal) -> dict[str, str]:
    return {
        "type": "delinquency",
        "action": "delinquency_reminder",
        "days_in_arrears": str(days_in_arrears),
        "amount_owed": str(amount_owed),
    }


def suspension_payload(suspended_at: datetime, amount_owed: Decimal) -> dict[str, str]:
    return {
        "type": "delinquency",
        "action": "suspended_auto",
        "reason": SUSPENSION_REASON,
        "suspension_date": suspended_at.isoformat(),
        "amount_owed": str(amount_owed),
    }


SUSPENSION_TITLE = "Account suspended for delinquency"
SUSPENSION_BODY = (
    "Your access has been suspended automatically after more than "
    f"{SUSPENSION_THRESHOLD_DAYS} days in arrears."
)
