"""
Submission Wizard

Server-held draft that walks a citizen through
capture -> details -> location_review -> submitting -> done
(with ``failed`` reachable from submitting). Every complaint a citizen
files goes through exactly one wizard, and a wizard creates at most one
complaint.

Collaborators (classifier, geocoder, repository, event bus) are passed to
the operations that need them, so the routes can inject them per request.
"""

import logging
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from urbansetu.core.exceptions import (
    ClassificationError,
    NotFoundError,
    StorageError,
    UploadError,
    UrbanSetuError,
    ValidationError,
    WizardStateError,
)
from urbansetu.models.complaint_model import (
    ADDRESS_PLACEHOLDER,
    Category,
    ClassifierResult,
    Complaint,
    ComplaintCreate,
    Priority,
    department_for,
    render_description,
)
from urbansetu.services.classifier_service import CONFIDENCE_THRESHOLD, ImageClassifier
from urbansetu.services.complaint_repository import ComplaintRepository
from urbansetu.services.geocode_service import ReverseGeocoder
from urbansetu.services.submission_events import ComplaintSubmitted, SubmissionEventBus

logger = logging.getLogger(__name__)


class WizardStep(str, Enum):
    capture = "capture"
    details = "details"
    location_review = "location_review"
    submitting = "submitting"
    done = "done"
    failed = "failed"


EDITABLE_STEPS = frozenset({WizardStep.capture, WizardStep.details, WizardStep.location_review})

FORWARD = {
    WizardStep.capture: WizardStep.details,
    WizardStep.details: WizardStep.location_review,
}

BACKWARD = {
    WizardStep.details: WizardStep.capture,
    WizardStep.location_review: WizardStep.details,
    WizardStep.failed: WizardStep.location_review,
}


class SubmissionDraft(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    step: WizardStep = WizardStep.capture

    image: Optional[bytes] = Field(default=None, exclude=True)
    image_filename: Optional[str] = None
    image_content_type: Optional[str] = None
    image_url: Optional[str] = None
    ai_prediction: Optional[ClassifierResult] = None
    autofilled: bool = False

    category: Optional[Category] = None
    description: str = ""
    priority: Priority = Priority.medium
    address: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    warnings: List[str] = []
    error: Optional[str] = None
    complaint_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def department(self) -> Optional[str]:
        return department_for(self.category) if self.category else None

    @property
    def has_image(self) -> bool:
        return bool(self.image)

    def view(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["department"] = self.department
        data["has_image"] = self.has_image
        return data


def _valid_coordinates(latitude: Optional[float], longitude: Optional[float]) -> bool:
    return (
        latitude is not None
        and longitude is not None
        and -90.0 <= latitude <= 90.0
        and -180.0 <= longitude <= 180.0
    )


class SubmissionWizard:

    def __init__(self, draft: SubmissionDraft):
        self.draft = draft

    # -- guards ------------------------------------------------------------

    def _require(self, *steps: WizardStep) -> None:
        if self.draft.step not in steps:
            allowed = ", ".join(s.value for s in steps)
            raise WizardStateError(
                f"Not allowed in step '{self.draft.step.value}' (expected {allowed})",
                details={"step": self.draft.step.value},
            )

    def _touch(self) -> None:
        self.draft.updated_at = datetime.utcnow()

    def _warn(self, message: str) -> None:
        self.draft.warnings.append(message)
        logger.warning(f"⚠️ Draft {self.draft.id}: {message}")

    def _address_text(self) -> Optional[str]:
        if self.draft.address:
            return self.draft.address
        if _valid_coordinates(self.draft.latitude, self.draft.longitude):
            return f"{self.draft.latitude:.6f}, {self.draft.longitude:.6f}"
        return None

    def _substitute_address(self) -> None:
        address = self._address_text()
        if address and ADDRESS_PLACEHOLDER in self.draft.description:
            self.draft.description = self.draft.description.replace(ADDRESS_PLACEHOLDER, address)

    # -- capture -----------------------------------------------------------

    async def attach_image(self, content: bytes, filename: Optional[str], content_type: Optional[str],
                           classifier: ImageClassifier) -> SubmissionDraft:
        """
        Keep the photo and ask the classifier about it. Confident results
        (strictly above the threshold) pre-fill category and description;
        a classifier failure leaves the fields for manual entry.
        """
        self._require(WizardStep.capture)
        if not content:
            raise ValidationError("Image is required", errors={"image": "Please capture or upload an image"})
        if not content_type or not content_type.lower().startswith("image/"):
            raise UploadError(f"Invalid file type: {content_type}. Only images are allowed.")

        self.draft.image = content
        self.draft.image_filename = filename
        self.draft.image_content_type = content_type
        self.draft.image_url = None
        self.draft.ai_prediction = None
        self._touch()

        try:
            result = await classifier.classify(content, content_type)
        except ClassificationError as e:
            self._warn(f"Automatic detection unavailable, please choose the category manually ({e.message})")
            return self.draft

        self.draft.ai_prediction = result
        if result.confidence > CONFIDENCE_THRESHOLD:
            self.draft.category = result.label
            self.draft.description = render_description(result.label, self._address_text())
            self.draft.autofilled = True
            logger.info(f"🤖 Draft {self.draft.id} pre-filled as {result.label.value} ({result.confidence:.2f})")
        else:
            logger.info(f"Draft {self.draft.id}: low confidence {result.confidence:.2f} for {result.label.value}, manual entry")
        return self.draft

    # -- details -----------------------------------------------------------

    def update_details(self, category: Optional[Category] = None, description: Optional[str] = None,
                       priority: Optional[Priority] = None) -> SubmissionDraft:
        self._require(*EDITABLE_STEPS)
        if category is not None:
            self.draft.category = category
        if description is not None:
            self.draft.description = description
        if priority is not None:
            self.draft.priority = priority
        self._substitute_address()
        self._touch()
        return self.draft

    # -- location ----------------------------------------------------------

    async def set_location(self, latitude: float, longitude: float, geocoder: ReverseGeocoder,
                           address: Optional[str] = None) -> SubmissionDraft:
        """Pin the complaint; an address typed by the user wins over geocoding."""
        self._require(*EDITABLE_STEPS)
        if not _valid_coordinates(latitude, longitude):
            raise ValidationError(
                "Invalid coordinates",
                errors={"location": "Latitude must be within [-90, 90] and longitude within [-180, 180]"},
            )

        self.draft.latitude = float(latitude)
        self.draft.longitude = float(longitude)
        if address and address.strip():
            self.draft.address = address.strip()
        else:
            self.draft.address = await geocoder.reverse(self.draft.latitude, self.draft.longitude)
        self._substitute_address()
        self._touch()
        return self.draft

    # -- navigation --------------------------------------------------------

    def _step_errors(self, step: WizardStep) -> Dict[str, str]:
        errors: Dict[str, str] = {}
        if step == WizardStep.capture:
            if not self.draft.image:
                errors["image"] = "Please capture or upload an image"
        elif step == WizardStep.details:
            if self.draft.category is None:
                errors["category"] = "Please select a category"
            if not self.draft.description.strip():
                errors["description"] = "Description is required"
        elif step == WizardStep.location_review:
            if not self.draft.address.strip():
                errors["address"] = "Address is required"
            if not _valid_coordinates(self.draft.latitude, self.draft.longitude):
                errors["location"] = "Please pick a location on the map"
        return errors

    def next(self) -> SubmissionDraft:
        self._require(*FORWARD)
        errors = self._step_errors(self.draft.step)
        if errors:
            raise ValidationError("Please complete this step", errors=errors)
        self.draft.step = FORWARD[self.draft.step]
        self._touch()
        return self.draft

    def back(self) -> SubmissionDraft:
        self._require(*BACKWARD)
        self.draft.step = BACKWARD[self.draft.step]
        self.draft.error = None
        self._touch()
        return self.draft

    # -- submission --------------------------------------------------------

    async def submit(self, repository: ComplaintRepository,
                     events: Optional[SubmissionEventBus] = None) -> SubmissionDraft:
        if self.draft.step == WizardStep.done:
            raise WizardStateError(
                f"Draft {self.draft.id} was already submitted as complaint {self.draft.complaint_id}",
                details={"step": self.draft.step.value, "complaint_id": self.draft.complaint_id},
            )
        self._require(WizardStep.location_review)

        errors: Dict[str, str] = {}
        for step in (WizardStep.details, WizardStep.location_review):
            errors.update(self._step_errors(step))
        if errors:
            raise ValidationError("Missing required fields", errors=errors)

        return await self._run(repository, events)

    async def retry(self, repository: ComplaintRepository,
                    events: Optional[SubmissionEventBus] = None) -> SubmissionDraft:
        self._require(WizardStep.failed)
        logger.info(f"🔁 Retrying submission of draft {self.draft.id}")
        return await self._run(repository, events)

    async def _run(self, repository: ComplaintRepository, events: Optional[SubmissionEventBus]) -> SubmissionDraft:
        self.draft.step = WizardStep.submitting
        self.draft.error = None
        self._touch()

        try:
            complaint = await self._file(repository)
        except UrbanSetuError as e:
            self._fail(e.message)
            raise
        except Exception as e:
            logger.error(f"❌ Draft {self.draft.id} hit an unexpected error while submitting: {e}", exc_info=True)
            self._fail(str(e) or type(e).__name__)
            raise StorageError("Submission failed, please retry") from e

        self.draft.step = WizardStep.done
        self.draft.complaint_id = complaint.id
        self._touch()
        logger.info(f"🎉 Draft {self.draft.id} submitted as complaint {complaint.id}")

        if events is not None:
            await events.publish(ComplaintSubmitted(
                complaint_id=complaint.id,
                user_id=complaint.user_id,
                category=complaint.category,
                department=complaint.department,
                submitted_at=complaint.created_at,
            ))
        return self.draft

    async def _file(self, repository: ComplaintRepository) -> Complaint:
        if self.draft.image and not self.draft.image_url:
            try:
                self.draft.image_url = await repository.upload_image(
                    self.draft.image,
                    self.draft.image_filename,
                    self.draft.image_content_type,
                    self.draft.user_id,
                )
            except UploadError as e:
                self.draft.image_url = None
                self._warn(f"Image upload failed, the complaint will be filed without a photo ({e.message})")

        payload = ComplaintCreate(
            user_id=self.draft.user_id,
            category=self.draft.category,
            description=self.draft.description,
            priority=self.draft.priority,
            address=self.draft.address,
            latitude=self.draft.latitude,
            longitude=self.draft.longitude,
            image_url=self.draft.image_url,
            ai_prediction=self.draft.ai_prediction,
        )
        return await repository.create(payload)

    def _fail(self, message: str) -> None:
        # Draft stays retryable; the uploaded image_url is kept
        self.draft.step = WizardStep.failed
        self.draft.error = message
        self._touch()
        logger.error(f"❌ Draft {self.draft.id} submission failed: {message}")


class WizardRegistry:
    """In-process drafts keyed by id, each owned by one reporter."""

    def __init__(self, max_age_hours: int = 24):
        self.max_age = timedelta(hours=max_age_hours)
        self._drafts: Dict[str, SubmissionDraft] = {}

    def open(self, user_id: str) -> SubmissionWizard:
        self.prune()
        draft = SubmissionDraft(user_id=user_id)
        self._drafts[draft.id] = draft
        logger.info(f"🧾 Opened draft {draft.id} for user {user_id}")
        return SubmissionWizard(draft)

    def get(self, draft_id: str, user_id: str) -> SubmissionWizard:
        draft = self._drafts.get(draft_id)
        if draft is None or draft.user_id != user_id:
            raise NotFoundError(f"Draft {draft_id} not found")
        return SubmissionWizard(draft)

    def prune(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        stale = [d.id for d in self._drafts.values() if now - d.updated_at > self.max_age]
        for draft_id in stale:
            del self._drafts[draft_id]
        if stale:
            logger.debug(f"Pruned {len(stale)} stale drafts")
        return len(stale)

    def __len__(self) -> int:
        return len(self._drafts)
