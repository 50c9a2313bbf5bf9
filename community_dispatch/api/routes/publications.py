"""Scheduled publication status and manual release trigger."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from community_dispatch.api.deps import get_publication_releaser
from community_dispatch.publications.release import PublicationReleaser

router = APIRouter(prefix="/publications/scheduled", tags=["publications"])


@router.get("/status", summary="Release status of scheduled publications")
def release_status(releaser: PublicationReleaser = Depends(get_publication_releaser)):
    return releaser.status_report()


@router.post("/release", summary="Release every due publication now")
async def force_release(releaser: PublicationReleaser = Depends(get_publication_releaser)):
    report = await releaser.release_due()
    return {
        "released": report.released,
        "failed": report.failed,
        "recipients_attempted": report.recipients_attempted,
        "pending": releaser.publications.count_pending(),
    }
