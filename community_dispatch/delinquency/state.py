"""Derived delinquency fields as a pure function of balance and clock.

    CLEAR ──amount_owed > 0──▶ DELINQUENT ──aging──▶ DELINQUENT
      ▲                            │
      └──────amount_owed == 0──────┘   (also clears the suspension flag)

:func:`recompute_delinquency` never touches storage.  The repository calls it
through :func:`snapshot` / :func:`apply_state` before every write, so a save
always reflects the *current* ``amount_owed`` rather than an earlier read.
"""
from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import datetime, timedelta
from decimal import Decimal

from community_dispatch.core.timeutil import as_utc

_ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class DelinquencyState:
    amount_owed: Decimal
    is_delinquent: bool = False
    days_in_arrears: int = 0
    first_delinquency_date: datetime | None = None
    is_suspended_for_delinquency: bool = False
    suspension_date: datetime | None = None
    suspension_reason: str | None = None


def days_between(start: datetime, now: datetime) -> int:
    """Whole days elapsed from *start* to *now*, floored at 1."""
    elapsed = as_utc(now) - as_utc(start)
    return max(1, elapsed // _ONE_DAY)


def recompute_delinquency(state: DelinquencyState, now: datetime) -> DelinquencyState:
    amount = Decimal(state.amount_owed or 0)
    if amount < 0:
        raise ValueError(f"amount_owed must be non-negative, got {amount}")

    if amount > 0:
        if state.first_delinquency_date is None:
            return replace(
                state,
                amount_owed=amount,
                is_delinquent=True,
                first_delinquency_date=now,
                days_in_arrears=1,
            )
        return replace(
            state,
            amount_owed=amount,
            is_delinquent=True,
            days_in_arrears=days_between(state.first_delinquency_date, now),
        )

    # Only the flag is cleared; the suspension reason stays as history.
    return replace(
        state,
        amount_owed=amount,
        is_delinquent=False,
        days_in_arrears=0,
        first_delinquency_date=None,
        is_suspended_for_delinquency=False,
        suspension_date=None,
    )


def snapshot(aggregate) -> DelinquencyState:
    """Copy the persisted fields of an aggregate row into a ``DelinquencyState``."""
    return DelinquencyState(
        amount_owed=Decimal(aggregate.amount_owed or 0),
        is_delinquent=bool(aggregate.is_delinquent),
        days_in_arrears=aggregate.days_in_arrears or 0,
        first_delinquency_date=as_utc(aggregate.first_delinquency_date),
        is_suspended_for_delinquency=bool(aggregate.is_suspended_for_delinquency),
        suspension_date=as_utc(aggregate.suspension_date),
        suspension_reason=aggregate.suspension_reason,
    )


def apply_state(aggregate, state: DelinquencyState) -> None:
    for field in fields(DelinquencyState):
        setattr(aggregate, field.name, getattr(state, field.name))
