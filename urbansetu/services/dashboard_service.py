import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from urbansetu.models.complaint_model import Complaint, ComplaintFilters, ComplaintStatus
from urbansetu.services import lifecycle
from urbansetu.services.complaint_repository import ComplaintRepository
from urbansetu.services.submission_events import RecentSubmissionTracker

logger = logging.getLogger(__name__)

# Lucknow city centre, used for pins without coordinates
DEFAULT_MAP_CENTER = (26.8467, 80.9462)
RECENT_WINDOW = timedelta(hours=24)
OPEN_STATUSES = (ComplaintStatus.pending, ComplaintStatus.in_progress)


def complaint_title(complaint: Complaint) -> str:
    first_segment = (complaint.address or "").split(",")[0].strip()
    return f"{complaint.category.value} - {first_segment or 'Location'}"


def complaint_card(complaint: Complaint) -> Dict[str, Any]:
    card = complaint.model_dump(mode="json")
    card["title"] = complaint_title(complaint)
    card["progress"] = lifecycle.progress_percent(complaint.status)
    return card


def has_recent_submission(complaints: List[Complaint], now: Optional[datetime] = None) -> bool:
    now = now or datetime.utcnow()
    return any(
        c.status in OPEN_STATUSES and now - c.created_at <= RECENT_WINDOW
        for c in complaints
    )


def map_pin(complaint: Complaint) -> Dict[str, Any]:
    return {
        "id": complaint.id,
        "position": [complaint.latitude, complaint.longitude],
        "title": complaint_title(complaint),
        "description": complaint.description,
        "status": complaint.status.value,
        "priority": complaint.priority.value,
        "category": complaint.category.value,
    }


def count_today(complaints: List[Complaint], now: Optional[datetime] = None) -> int:
    today = (now or datetime.utcnow()).date()
    return sum(1 for c in complaints if c.created_at.date() == today)


async def citizen_dashboard(repository: ComplaintRepository, tracker: RecentSubmissionTracker,
                            user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.utcnow()
    complaints = await repository.list_by_reporter(user_id)
    stats = await repository.get_stats(user_id)
    return {
        "complaints": [complaint_card(c) for c in complaints],
        "stats": stats.model_dump(by_alias=True),
        "has_recent_submission": has_recent_submission(complaints, now),
        "show_progress": tracker.consume(user_id, now),
    }


async def admin_stats(repository: ComplaintRepository, now: Optional[datetime] = None) -> Dict[str, Any]:
    stats = await repository.get_stats()
    complaints = await repository.list_all(ComplaintFilters())
    data = stats.model_dump(by_alias=True)
    data["today"] = count_today(complaints, now)
    return data


async def admin_complaints(repository: ComplaintRepository, filters: ComplaintFilters) -> List[Dict[str, Any]]:
    complaints = await repository.list_all(filters)
    logger.debug(f"Admin list returned {len(complaints)} complaints for {filters.model_dump(exclude_none=True)}")
    return [complaint_card(c) for c in complaints]


async def admin_map(repository: ComplaintRepository, filters: Optional[ComplaintFilters] = None) -> Dict[str, Any]:
    complaints = await repository.list_all(filters or ComplaintFilters())
    return {
        "center": list(DEFAULT_MAP_CENTER),
        "pins": [map_pin(c) for c in complaints],
    }


async def tracking_detail(repository: ComplaintRepository, complaint_id: str) -> Dict[str, Any]:
    complaint = await repository.get(complaint_id)
    detail = complaint_card(complaint)
    detail["timeline"] = [
        {**entry, "timestamp": entry["timestamp"].isoformat() if entry["timestamp"] else None}
        for entry in lifecycle.build_timeline(complaint)
    ]
    return detail
