"""Read-only operator views of delinquency aggregates."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from community_dispatch.api.deps import get_delinquency_tracker
from community_dispatch.core.errors import NotFoundError
from community_dispatch.core.timeutil import as_utc
from community_dispatch.db.models import DelinquencyAggregate
from community_dispatch.delinquency.tracker import DelinquencyTracker

router = APIRouter(prefix="/delinquency", tags=["delinquency"])


def _iso(value):
    value = as_utc(value)
    return value.isoformat() if value else None


def _serialize_aggregate(aggregate: DelinquencyAggregate) -> dict:
    return {
        "resident_id": str(aggregate.resident_id),
        "amount_owed": str(aggregate.amount_owed),
        "is_delinquent": aggregate.is_delinquent,
        "days_in_arrears": aggregate.days_in_arrears,
        "first_delinquency_date": _iso(aggregate.first_delinquency_date),
        "notifications_sent": aggregate.notifications_sent,
        "last_notification_date": _iso(aggregate.last_notification_date),
        "is_suspended_for_delinquency": aggregate.is_suspended_for_delinquency,
        "suspension_date": _iso(aggregate.suspension_date),
        "suspension_reason": aggregate.suspension_reason,
    }


@router.get("", summary="Delinquent households, longest arrears first")
def list_delinquent(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    tracker: DelinquencyTracker = Depends(get_delinquency_tracker),
):
    return [_serialize_aggregate(a) for a in tracker.aggregates.list_delinquent(limit=limit, offset=offset)]


@router.get("/{resident_id}", summary="Delinquency state of one household")
def get_aggregate(resident_id: UUID, tracker: DelinquencyTracker = Depends(get_delinquency_tracker)):
    try:
        aggregate = tracker.get_for_resident(resident_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return _serialize_aggregate(aggregate)
