from fastapi import APIRouter, Depends

from urbansetu.core.auth import require_citizen
from urbansetu.core.dependencies import get_repository, get_submission_tracker
from urbansetu.services import dashboard_service
from urbansetu.services.complaint_repository import ComplaintRepository
from urbansetu.services.session_service import UserSession
from urbansetu.services.submission_events import RecentSubmissionTracker

router = APIRouter()


@router.get("/citizen")
async def citizen_dashboard(
    session: UserSession = Depends(require_citizen),
    repository: ComplaintRepository = Depends(get_repository),
    tracker: RecentSubmissionTracker = Depends(get_submission_tracker),
):
    """Own complaints, counts, and the one-shot progress banner flag."""
    return await dashboard_service.citizen_dashboard(repository, tracker, session.user_id)
