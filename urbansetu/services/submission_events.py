"""
Submission events

The wizard publishes ``ComplaintSubmitted`` after a successful create and the
admin routes publish ``StatusChanged``. Subscribers:

- ``RecentSubmissionTracker`` drives the citizen dashboard's one-shot
  "show progress" flag
- the websocket broadcaster pushes live updates to the reporter's open
  dashboards and to every admin dashboard

Delivery is in-process and best effort; a failing subscriber is logged and
never fails the publishing request.
"""

import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from urbansetu.core.config import get_settings
from urbansetu.models.complaint_model import Category, ComplaintStatus
from urbansetu.services.socket_manager import ConnectionManager

logger = logging.getLogger(__name__)


class ComplaintSubmitted(BaseModel):
    type: str = "complaint_submitted"
    complaint_id: str
    user_id: str
    category: Category
    department: str
    submitted_at: datetime = Field(default_factory=datetime.utcnow)


class StatusChanged(BaseModel):
    type: str = "status_changed"
    complaint_id: str
    user_id: str
    old_status: ComplaintStatus
    new_status: ComplaintStatus
    changed_at: datetime = Field(default_factory=datetime.utcnow)


SubmissionEvent = Union[ComplaintSubmitted, StatusChanged]
Subscriber = Callable[[SubmissionEvent], Awaitable[None]]


class SubmissionEventBus:

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, handler: Subscriber) -> None:
        self._subscribers.append(handler)

    async def publish(self, event: SubmissionEvent) -> None:
        logger.debug(f"📣 Publishing {event.type} for complaint {event.complaint_id}")
        for handler in list(self._subscribers):
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"❌ Event subscriber {getattr(handler, '__qualname__', handler)} failed: {e}", exc_info=True)


class RecentSubmissionTracker:
    """Last submission time per reporter, consumed once by the dashboard."""

    def __init__(self, window_hours: Optional[int] = None):
        hours = window_hours if window_hours is not None else get_settings().recent_submission_hours
        self.window = timedelta(hours=hours)
        self._last_submission: Dict[str, datetime] = {}

    async def handle(self, event: SubmissionEvent) -> None:
        if isinstance(event, ComplaintSubmitted):
            self.prune()
            self.record(event.user_id, event.submitted_at)

    def record(self, user_id: str, submitted_at: Optional[datetime] = None) -> None:
        self._last_submission[user_id] = submitted_at or datetime.utcnow()

    def consume(self, user_id: str, now: Optional[datetime] = None) -> bool:
        """True once per submission while it is inside the window; the mark is cleared either way."""
        now = now or datetime.utcnow()
        submitted_at = self._last_submission.pop(user_id, None)
        if submitted_at is None:
            return False
        return now - submitted_at <= self.window

    def prune(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        stale = [uid for uid, ts in self._last_submission.items() if now - ts > self.window]
        for uid in stale:
            del self._last_submission[uid]
        return len(stale)

    def __len__(self) -> int:
        return len(self._last_submission)


def websocket_broadcaster(connections: ConnectionManager) -> Subscriber:
    async def broadcast(event: SubmissionEvent) -> None:
        await connections.notify(event.model_dump(mode="json"), event.user_id)

    return broadcast
