"""
Complaint lifecycle

Canonical status progression is pending -> in_progress -> resolved.
Only admins move a complaint; moves are forward-only. Applying an update
here is pure: the repository persists whatever ``apply_update`` returns.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union
import logging

from urbansetu.core.exceptions import InvalidTransitionError
from urbansetu.models.complaint_model import (
    Complaint,
    ComplaintStatus,
    ComplaintUpdate,
    department_for,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[ComplaintStatus, frozenset] = {
    ComplaintStatus.pending: frozenset({ComplaintStatus.in_progress, ComplaintStatus.resolved}),
    ComplaintStatus.in_progress: frozenset({ComplaintStatus.resolved}),
    ComplaintStatus.resolved: frozenset(),
}

CLEARABLE_FIELDS = frozenset({"admin_notes", "assigned_to"})

# Dashboard progress bar heights; "registered" is the creation step shown on
# the tracking timeline and is not a stored status.
PROGRESS_PERCENT = {
    "registered": 25,
    ComplaintStatus.pending.value: 50,
    ComplaintStatus.in_progress.value: 75,
    ComplaintStatus.resolved.value: 100,
}


def can_transition(current: Union[ComplaintStatus, str], target: Union[ComplaintStatus, str]) -> bool:
    current = ComplaintStatus(current)
    target = ComplaintStatus(target)
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS[current]


def validate_transition(current: Union[ComplaintStatus, str], target: Union[ComplaintStatus, str]) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(ComplaintStatus(current).value, ComplaintStatus(target).value)


def apply_update(complaint: Complaint, update: ComplaintUpdate, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Compute the field changes an admin update produces.

    Returns the dict of fields to persist. ``updated_at`` is always part of
    it; ``in_progress_at`` is stamped on entry into in_progress and
    ``resolved_at`` is set on entry into resolved and cleared otherwise.
    """
    now = now or datetime.utcnow()
    changes: Dict[str, Any] = {
        field: value for field, value in update.model_dump(exclude_unset=True).items()
        if value is not None or field in CLEARABLE_FIELDS
    }

    target = changes.get("status", complaint.status)
    validate_transition(complaint.status, target)

    if "category" in changes:
        changes["department"] = department_for(changes["category"])

    if ComplaintStatus(target) == ComplaintStatus.in_progress and complaint.status != ComplaintStatus.in_progress:
        changes["in_progress_at"] = now

    if ComplaintStatus(target) == ComplaintStatus.resolved:
        if complaint.status != ComplaintStatus.resolved or complaint.resolved_at is None:
            changes["resolved_at"] = now
    else:
        changes["resolved_at"] = None

    changes["updated_at"] = now

    if "status" in changes and changes["status"] != complaint.status:
        logger.info(f"🔄 Complaint {complaint.id}: {complaint.status.value} -> {ComplaintStatus(target).value}")
    return changes


def progress_percent(status: Union[ComplaintStatus, str]) -> int:
    key = status.value if isinstance(status, ComplaintStatus) else str(status)
    return PROGRESS_PERCENT.get(key, PROGRESS_PERCENT["registered"])


def build_timeline(complaint: Complaint) -> List[Dict[str, Any]]:
    """Tracking view entries, oldest first."""
    timeline = [
        {
            "status": "registered",
            "title": "Complaint Registered",
            "description": "Your complaint has been successfully registered and assigned a tracking ID.",
            "timestamp": complaint.created_at,
            "user": "System",
        }
    ]

    if complaint.status in (ComplaintStatus.in_progress, ComplaintStatus.resolved):
        timeline.append({
            "status": "forwarded",
            "title": "Forwarded to Department",
            "description": f"Complaint has been forwarded to the {complaint.department} for review and action.",
            # pending -> resolved skips in_progress; forwarding then coincides with resolution
            "timestamp": complaint.in_progress_at or complaint.resolved_at,
            "user": "System",
        })

    if complaint.status == ComplaintStatus.resolved:
        timeline.append({
            "status": "resolved",
            "title": "Issue Resolved",
            "description": "The issue has been successfully resolved by the department.",
            "timestamp": complaint.resolved_at,
            "user": complaint.assigned_to or complaint.department,
        })

    return timeline
