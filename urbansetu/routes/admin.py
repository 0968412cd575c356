from typing import Optional
import logging

from fastapi import APIRouter, Depends, Query
from pydantic import ValidationError as PydanticValidationError

from urbansetu.core.auth import require_admin
from urbansetu.core.dependencies import get_event_bus, get_repository
from urbansetu.core.exceptions import ValidationError
from urbansetu.models.complaint_model import Complaint, ComplaintFilters, ComplaintUpdate
from urbansetu.services import dashboard_service
from urbansetu.services.complaint_repository import ComplaintRepository
from urbansetu.services.session_service import UserSession
from urbansetu.services.submission_events import StatusChanged, SubmissionEventBus

logger = logging.getLogger(__name__)

router = APIRouter()


def complaint_filters(
    status: Optional[str] = Query(None, description="pending, in_progress, resolved or all"),
    category: Optional[str] = Query(None),
    department: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Matches description or address"),
) -> ComplaintFilters:
    """Validated before any query is built."""
    try:
        return ComplaintFilters(
            status=status or None,
            category=category or None,
            department=department,
            search_text=search,
        )
    except PydanticValidationError as e:
        errors = {".".join(str(p) for p in err["loc"]) or "filters": err["msg"] for err in e.errors()}
        raise ValidationError("Invalid filters", errors=errors)


@router.get("/complaints")
async def list_complaints(
    session: UserSession = Depends(require_admin),
    filters: ComplaintFilters = Depends(complaint_filters),
    repository: ComplaintRepository = Depends(get_repository),
):
    return await dashboard_service.admin_complaints(repository, filters)


@router.get("/stats")
async def stats(
    session: UserSession = Depends(require_admin),
    repository: ComplaintRepository = Depends(get_repository),
):
    return await dashboard_service.admin_stats(repository)


@router.get("/map")
async def complaint_map(
    session: UserSession = Depends(require_admin),
    filters: ComplaintFilters = Depends(complaint_filters),
    repository: ComplaintRepository = Depends(get_repository),
):
    return await dashboard_service.admin_map(repository, filters)


@router.patch("/complaints/{complaint_id}", response_model=Complaint)
async def update_complaint(
    complaint_id: str,
    updates: ComplaintUpdate,
    session: UserSession = Depends(require_admin),
    repository: ComplaintRepository = Depends(get_repository),
    events: SubmissionEventBus = Depends(get_event_bus),
):
    """
    Status changes follow the lifecycle (forward only); notes, assignee,
    priority and category can be edited in any state.
    """
    before = await repository.get(complaint_id)
    updated = await repository.update_status(complaint_id, updates)
    logger.info(f"🛠️ Admin {session.user.email} updated complaint {complaint_id}")
    if updated.status != before.status:
        await events.publish(StatusChanged(
            complaint_id=updated.id,
            user_id=updated.user_id,
            old_status=before.status,
            new_status=updated.status,
            changed_at=updated.updated_at,
        ))
    return updated
