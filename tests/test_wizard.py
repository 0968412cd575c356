import pytest

from urbansetu.core.exceptions import (
    NotFoundError,
    StorageError,
    UploadError,
    ValidationError,
    WizardStateError,
)
from urbansetu.models.complaint_model import Category, ComplaintStatus, Priority
from urbansetu.services.classifier_service import ImageClassifier
from urbansetu.services.complaint_repository import InMemoryComplaintRepository
from urbansetu.services.submission_events import (
    ComplaintSubmitted,
    RecentSubmissionTracker,
    SubmissionEventBus,
)
from urbansetu.services.wizard_service import WizardRegistry, WizardStep

from conftest import StaticClassifierProvider, classifier_for, make_truncated_image


class FlakyRepository(InMemoryComplaintRepository):
    """Fails the first ``failures`` creates with StorageError."""

    def __init__(self, failures=1, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures
        self.uploads = 0

    async def _insert(self, complaint):
        if self.failures:
            self.failures -= 1
            raise StorageError("database unreachable")
        await super()._insert(complaint)

    async def _put_blob(self, path, content, content_type, owner_id):
        self.uploads += 1
        await super()._put_blob(path, content, content_type, owner_id)


class NoBucketRepository(InMemoryComplaintRepository):
    async def _put_blob(self, path, content, content_type, owner_id):
        raise UploadError("Bucket not found")


class CrashingUploadRepository(InMemoryComplaintRepository):
    """upload_image blows up with a non-domain error until ``crashes`` runs out."""

    def __init__(self, crashes=1, **kwargs):
        super().__init__(**kwargs)
        self.crashes = crashes

    async def upload_image(self, content, filename, content_type, owner_id):
        if self.crashes:
            self.crashes -= 1
            raise RuntimeError("socket closed mid-upload")
        return await super().upload_image(content, filename, content_type, owner_id)


@pytest.fixture
def registry():
    return WizardRegistry()


async def fill_wizard(wizard, png_bytes, classifier, geocoder):
    await wizard.attach_image(png_bytes, "pothole.png", "image/png", classifier)
    wizard.next()
    if wizard.draft.category is None:
        wizard.update_details(category=Category.pothole, description="pothole near gate")
    wizard.next()
    await wizard.set_location(26.8467, 80.9462, geocoder)
    return wizard


async def test_full_submission_creates_one_pending_complaint(registry, repository, png_bytes, pothole_classifier, geocoder):
    events = SubmissionEventBus()
    received = []

    async def collect(event):
        received.append(event)

    events.subscribe(collect)
    wizard = await fill_wizard(registry.open("citizen-1"), png_bytes, pothole_classifier, geocoder)
    draft = await wizard.submit(repository, events)

    assert draft.step == WizardStep.done
    complaints = await repository.list_by_reporter("citizen-1")
    assert len(complaints) == 1
    complaint = complaints[0]
    assert complaint.id == draft.complaint_id
    assert complaint.status == ComplaintStatus.pending
    assert complaint.resolved_at is None
    assert complaint.department == "Road Authority"
    assert complaint.image_url and "/api/images/citizen-1/" in complaint.image_url
    assert complaint.ai_confidence == pytest.approx(0.92)
    assert len(received) == 1 and isinstance(received[0], ComplaintSubmitted)


async def test_confident_classification_prefills_template(registry, png_bytes, pothole_classifier):
    wizard = registry.open("citizen-1")
    draft = await wizard.attach_image(png_bytes, "p.png", "image/png", pothole_classifier)
    assert draft.category == Category.pothole
    assert draft.department == "Road Authority"
    assert draft.autofilled
    assert draft.description.startswith("I have noticed a pothole at [ADDRESS].")


async def test_confidence_exactly_at_threshold_does_not_prefill(registry, png_bytes):
    wizard = registry.open("citizen-1")
    draft = await wizard.attach_image(png_bytes, "p.png", "image/png", classifier_for("Garbage", 0.6))
    assert draft.category is None
    assert draft.description == ""
    assert not draft.autofilled
    assert draft.ai_prediction.confidence == pytest.approx(0.6)


async def test_placeholder_is_substituted_once_address_is_known(registry, png_bytes, pothole_classifier, geocoder):
    wizard = registry.open("citizen-1")
    await wizard.attach_image(png_bytes, "p.png", "image/png", pothole_classifier)
    wizard.next()
    wizard.next()
    draft = await wizard.set_location(26.85, 80.94, geocoder)
    assert "[ADDRESS]" not in draft.description
    assert "12, MG Road, Hazratganj" in draft.description


async def test_template_uses_coordinates_when_only_location_is_known(registry, png_bytes, pothole_classifier):
    wizard = registry.open("citizen-1")
    wizard.draft.latitude, wizard.draft.longitude = 26.8467, 80.9462
    draft = await wizard.attach_image(png_bytes, "p.png", "image/png", pothole_classifier)
    assert "26.846700, 80.946200" in draft.description


async def test_classification_failure_is_a_warning(registry, png_bytes):
    wizard = registry.open("citizen-1")
    classifier = ImageClassifier([StaticClassifierProvider(fail=True)])
    draft = await wizard.attach_image(png_bytes, "p.png", "image/png", classifier)
    assert draft.step == WizardStep.capture
    assert draft.category is None
    assert draft.warnings
    wizard.next()
    assert wizard.draft.step == WizardStep.details


async def test_capture_requires_an_image(registry):
    wizard = registry.open("citizen-1")
    with pytest.raises(ValidationError) as exc_info:
        wizard.next()
    assert "image" in exc_info.value.errors


async def test_details_require_category_and_description(registry, png_bytes):
    wizard = registry.open("citizen-1")
    await wizard.attach_image(png_bytes, "p.png", "image/png", ImageClassifier([]))
    wizard.next()
    with pytest.raises(ValidationError) as exc_info:
        wizard.next()
    assert set(exc_info.value.errors) == {"category", "description"}


async def test_back_navigation_keeps_values(registry, png_bytes, pothole_classifier, geocoder):
    wizard = await fill_wizard(registry.open("citizen-1"), png_bytes, pothole_classifier, geocoder)
    wizard.update_details(priority=Priority.urgent)
    before = wizard.draft.model_dump(exclude={"step", "updated_at"})

    wizard.back()
    assert wizard.draft.step == WizardStep.details
    wizard.back()
    assert wizard.draft.step == WizardStep.capture
    assert wizard.draft.model_dump(exclude={"step", "updated_at"}) == before
    assert wizard.draft.image == png_bytes


async def test_all_geocoders_failing_still_submits(registry, repository, png_bytes, pothole_classifier, failing_geocoder):
    wizard = await fill_wizard(registry.open("citizen-1"), png_bytes, pothole_classifier, failing_geocoder)
    draft = await wizard.submit(repository)
    assert draft.step == WizardStep.done
    complaint = await repository.get(draft.complaint_id)
    assert complaint.address == "GPS Location: 26.846700, 80.946200"


async def test_invalid_coordinates_rejected(registry, geocoder):
    wizard = registry.open("citizen-1")
    with pytest.raises(ValidationError):
        await wizard.set_location(95.0, 80.0, geocoder)


async def test_failed_upload_is_not_fatal(registry, png_bytes, pothole_classifier, geocoder):
    repository = NoBucketRepository()
    wizard = await fill_wizard(registry.open("citizen-1"), png_bytes, pothole_classifier, geocoder)
    draft = await wizard.submit(repository)
    assert draft.step == WizardStep.done
    assert draft.image_url is None
    assert any("upload failed" in w for w in draft.warnings)
    assert (await repository.get(draft.complaint_id)).image_url is None


async def test_storage_failure_then_retry_keeps_data_and_upload(registry, png_bytes, pothole_classifier, geocoder):
    repository = FlakyRepository(failures=1)
    tracker = RecentSubmissionTracker()
    events = SubmissionEventBus()
    events.subscribe(tracker.handle)

    wizard = await fill_wizard(registry.open("citizen-1"), png_bytes, pothole_classifier, geocoder)
    with pytest.raises(StorageError):
        await wizard.submit(repository, events)
    assert wizard.draft.step == WizardStep.failed
    assert wizard.draft.error == "database unreachable"
    uploaded_url = wizard.draft.image_url
    assert uploaded_url

    draft = await wizard.retry(repository, events)
    assert draft.step == WizardStep.done
    assert draft.image_url == uploaded_url
    assert repository.uploads == 1
    assert len(await repository.list_by_reporter("citizen-1")) == 1
    assert tracker.consume("citizen-1")


async def test_failed_draft_can_go_back_to_location(registry, png_bytes, pothole_classifier, geocoder):
    wizard = await fill_wizard(registry.open("citizen-1"), png_bytes, pothole_classifier, geocoder)
    with pytest.raises(StorageError):
        await wizard.submit(FlakyRepository(failures=1))
    wizard.back()
    assert wizard.draft.step == WizardStep.location_review
    assert wizard.draft.error is None


async def test_wizard_completes_at_most_once(registry, repository, png_bytes, pothole_classifier, geocoder):
    wizard = await fill_wizard(registry.open("citizen-1"), png_bytes, pothole_classifier, geocoder)
    await wizard.submit(repository)
    with pytest.raises(WizardStateError):
        await wizard.submit(repository)
    with pytest.raises(WizardStateError):
        await wizard.retry(repository)
    assert len(await repository.list_all()) == 1


async def test_submit_only_from_location_review(registry, repository):
    with pytest.raises(WizardStateError):
        await registry.open("citizen-1").submit(repository)


def test_registry_scopes_drafts_to_owner(registry):
    wizard = registry.open("citizen-1")
    assert registry.get(wizard.draft.id, "citizen-1").draft is wizard.draft
    with pytest.raises(NotFoundError):
        registry.get(wizard.draft.id, "citizen-2")
    with pytest.raises(NotFoundError):
        registry.get("missing", "citizen-1")


async def test_truncated_photo_is_filed_without_image(registry, repository, pothole_classifier, geocoder):
    wizard = await fill_wizard(registry.open("citizen-1"), make_truncated_image(), pothole_classifier, geocoder)
    draft = await wizard.submit(repository)
    assert draft.step == WizardStep.done
    assert draft.image_url is None
    assert any("upload failed" in w for w in draft.warnings)
    complaint = await repository.get(draft.complaint_id)
    assert complaint.image_url is None
    assert complaint.department == "Road Authority"


async def test_unexpected_upload_error_leaves_draft_retryable(registry, png_bytes, pothole_classifier, geocoder):
    repository = CrashingUploadRepository(crashes=1)
    wizard = await fill_wizard(registry.open("citizen-1"), png_bytes, pothole_classifier, geocoder)
    with pytest.raises(StorageError):
        await wizard.submit(repository)
    assert wizard.draft.step == WizardStep.failed
    assert wizard.draft.error == "socket closed mid-upload"
    assert wizard.draft.category == Category.pothole

    draft = await wizard.retry(repository)
    assert draft.step == WizardStep.done
    assert draft.image_url
    assert len(await repository.list_by_reporter("citizen-1")) == 1
