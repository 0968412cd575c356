"""
Complaint submission wizard endpoints.

A citizen opens a draft, attaches a photo, fills the details, confirms the
location and submits. Each response is the current draft, including the
step it is in and any non-blocking warnings.
"""

from typing import Optional
import logging

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel

from urbansetu.core.auth import require_citizen
from urbansetu.core.dependencies import (
    get_classifier,
    get_event_bus,
    get_geocoder,
    get_repository,
    get_wizard_registry,
)
from urbansetu.models.complaint_model import Category, Priority
from urbansetu.services.classifier_service import ImageClassifier
from urbansetu.services.complaint_repository import ComplaintRepository
from urbansetu.services.geocode_service import ReverseGeocoder
from urbansetu.services.session_service import UserSession
from urbansetu.services.submission_events import SubmissionEventBus
from urbansetu.services.wizard_service import WizardRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


class OpenDraftRequest(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class DetailsRequest(BaseModel):
    category: Optional[Category] = None
    description: Optional[str] = None
    priority: Optional[Priority] = None

    class Config:
        extra = "forbid"


class LocationRequest(BaseModel):
    latitude: float
    longitude: float
    address: Optional[str] = None


@router.post("", status_code=201)
async def open_draft(
    request: Optional[OpenDraftRequest] = None,
    session: UserSession = Depends(require_citizen),
    registry: WizardRegistry = Depends(get_wizard_registry),
    geocoder: ReverseGeocoder = Depends(get_geocoder),
):
    """Open a draft, optionally seeded with the device's GPS position."""
    wizard = registry.open(session.user_id)
    if request and request.latitude is not None and request.longitude is not None:
        await wizard.set_location(request.latitude, request.longitude, geocoder)
    return wizard.draft.view()


@router.get("/{draft_id}")
async def get_draft(
    draft_id: str,
    session: UserSession = Depends(require_citizen),
    registry: WizardRegistry = Depends(get_wizard_registry),
):
    return registry.get(draft_id, session.user_id).draft.view()


@router.post("/{draft_id}/image")
async def attach_image(
    draft_id: str,
    image: UploadFile = File(...),
    session: UserSession = Depends(require_citizen),
    registry: WizardRegistry = Depends(get_wizard_registry),
    classifier: ImageClassifier = Depends(get_classifier),
):
    wizard = registry.get(draft_id, session.user_id)
    content = await image.read()
    logger.info(f"📸 Image received for draft {draft_id}: {image.filename} ({len(content)} bytes)")
    draft = await wizard.attach_image(content, image.filename, image.content_type, classifier)
    return draft.view()


@router.put("/{draft_id}/details")
async def update_details(
    draft_id: str,
    request: DetailsRequest,
    session: UserSession = Depends(require_citizen),
    registry: WizardRegistry = Depends(get_wizard_registry),
):
    wizard = registry.get(draft_id, session.user_id)
    return wizard.update_details(request.category, request.description, request.priority).view()


@router.put("/{draft_id}/location")
async def set_location(
    draft_id: str,
    request: LocationRequest,
    session: UserSession = Depends(require_citizen),
    registry: WizardRegistry = Depends(get_wizard_registry),
    geocoder: ReverseGeocoder = Depends(get_geocoder),
):
    """Map click, marker drag or GPS refresh; the address is re-geocoded unless given."""
    wizard = registry.get(draft_id, session.user_id)
    draft = await wizard.set_location(request.latitude, request.longitude, geocoder, request.address)
    return draft.view()


@router.post("/{draft_id}/next")
async def next_step(
    draft_id: str,
    session: UserSession = Depends(require_citizen),
    registry: WizardRegistry = Depends(get_wizard_registry),
):
    return registry.get(draft_id, session.user_id).next().view()


@router.post("/{draft_id}/back")
async def previous_step(
    draft_id: str,
    session: UserSession = Depends(require_citizen),
    registry: WizardRegistry = Depends(get_wizard_registry),
):
    return registry.get(draft_id, session.user_id).back().view()


@router.post("/{draft_id}/submit")
async def submit(
    draft_id: str,
    session: UserSession = Depends(require_citizen),
    registry: WizardRegistry = Depends(get_wizard_registry),
    repository: ComplaintRepository = Depends(get_repository),
    events: SubmissionEventBus = Depends(get_event_bus),
):
    wizard = registry.get(draft_id, session.user_id)
    draft = await wizard.submit(repository, events)
    return draft.view()


@router.post("/{draft_id}/retry")
async def retry(
    draft_id: str,
    session: UserSession = Depends(require_citizen),
    registry: WizardRegistry = Depends(get_wizard_registry),
    repository: ComplaintRepository = Depends(get_repository),
    events: SubmissionEventBus = Depends(get_event_bus),
):
    wizard = registry.get(draft_id, session.user_id)
    draft = await wizard.retry(repository, events)
    return draft.view()
