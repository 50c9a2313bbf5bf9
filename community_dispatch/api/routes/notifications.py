"""Notification inbox routes for the calling user."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from community_dispatch.api.deps import get_current_user_ref, get_dispatcher
from community_dispatch.core.errors import NotFoundError
from community_dispatch.db.models import NotificationRecord
from community_dispatch.notifications.dispatcher import NotificationDispatcher

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _serialize_notification(record: NotificationRecord) -> dict:
    return {
        "id": str(record.id),
        "channel": record.channel,
        "title": record.title,
        "body": record.body,
        "payload": record.payload or {},
        "sent": record.sent,
        "sent_at": record.sent_at.isoformat() if record.sent_at else None,
        "delivery_error": record.delivery_error,
        "action_required": record.action_required,
        "action_type": record.action_type,
        "action_payload": record.action_payload,
        "read": record.read,
        "created_at": record.created_at.isoformat() if record.created_at else None,
    }


@router.get("", summary="List the caller's notifications")
def list_notifications(
    unread_only: bool = False,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user_ref: str = Depends(get_current_user_ref),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    items, total = dispatcher.list_for_user(user_ref, unread_only=unread_only, limit=limit, offset=offset)
    return {
        "notifications": [_serialize_notification(n) for n in items],
        "total": total,
        "has_more": offset + len(items) < total,
    }


@router.post("/{notification_id}/read", summary="Mark a notification as read")
def mark_read(
    notification_id: UUID,
    user_ref: str = Depends(get_current_user_ref),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    try:
        record = dispatcher.mark_as_read(notification_id, user_ref)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return _serialize_notification(record)
