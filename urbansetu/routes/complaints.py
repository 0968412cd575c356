import logging

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from urbansetu.core.auth import get_current_session, require_citizen
from urbansetu.core.dependencies import get_repository
from urbansetu.core.exceptions import NotFoundError
from urbansetu.models.complaint_model import ComplaintStats
from urbansetu.models.user_model import UserType
from urbansetu.services import dashboard_service
from urbansetu.services.complaint_repository import ComplaintRepository
from urbansetu.services.session_service import UserSession

logger = logging.getLogger(__name__)

router = APIRouter()
images_router = APIRouter()


@router.get("/complaints/mine")
async def my_complaints(
    session: UserSession = Depends(require_citizen),
    repository: ComplaintRepository = Depends(get_repository),
):
    complaints = await repository.list_by_reporter(session.user_id)
    return [dashboard_service.complaint_card(c) for c in complaints]


@router.get("/complaints/stats", response_model=ComplaintStats, response_model_by_alias=True)
async def my_stats(
    session: UserSession = Depends(require_citizen),
    repository: ComplaintRepository = Depends(get_repository),
):
    return await repository.get_stats(session.user_id)


@router.get("/complaints/{complaint_id}")
async def complaint_detail(
    complaint_id: str,
    session: UserSession = Depends(get_current_session),
    repository: ComplaintRepository = Depends(get_repository),
):
    """Tracking view: the complaint with its progress timeline."""
    detail = await dashboard_service.tracking_detail(repository, complaint_id)
    if session.user_type != UserType.admin and detail["user_id"] != session.user_id:
        # other citizens' complaints are indistinguishable from missing ones
        raise NotFoundError(f"Complaint {complaint_id} not found")
    return detail


@images_router.get("/images/{owner_id}/{name}")
async def get_image(
    owner_id: str,
    name: str,
    repository: ComplaintRepository = Depends(get_repository),
):
    content, content_type = await repository.get_image(f"{owner_id}/{name}")
    return Response(content=content, media_type=content_type, headers={"Cache-Control": "public, max-age=86400"})
