import io
import os
from typing import List, Optional

# Must be set before anything imports urbansetu settings
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["REDIS_URL"] = ""
os.environ["CLASSIFIER_ENDPOINT"] = ""
os.environ["GEMINI_API_KEY"] = ""
os.environ["PUBLIC_BASE_URL"] = ""

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from urbansetu.core.dependencies import get_classifier, get_geocoder
from urbansetu.core.exceptions import ClassificationError, GeocodeError
from urbansetu.models.complaint_model import Prediction
from urbansetu.services.classifier_service import ClassifierProvider, ImageClassifier
from urbansetu.services.complaint_repository import InMemoryComplaintRepository
from urbansetu.services.geocode_service import GeocodeProvider, ReverseGeocoder


def make_image(size=(64, 64), fmt="PNG", color=(180, 60, 40)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


def make_truncated_image(size=(1600, 1600)) -> bytes:
    """A PNG whose header parses but whose pixel data is cut off halfway."""
    buf = io.BytesIO()
    Image.effect_noise(size, 64).save(buf, format="PNG")
    data = buf.getvalue()
    return data[: len(data) // 2]


class StaticClassifierProvider(ClassifierProvider):
    """Returns a fixed ranking, or raises when ``fail`` is set."""

    def __init__(self, predictions: Optional[List[Prediction]] = None, fail: bool = False, name: str = "static"):
        self.predictions = predictions or []
        self.fail = fail
        self.name = name
        self.calls = 0

    async def predict(self, image: bytes, content_type: str = "image/jpeg") -> List[Prediction]:
        self.calls += 1
        if self.fail:
            raise ClassificationError(f"{self.name} is down")
        return list(self.predictions)


class StaticGeocodeProvider(GeocodeProvider):

    def __init__(self, address: Optional[str] = None, fail: bool = False, name: str = "static"):
        super().__init__()
        self.address = address
        self.fail = fail
        self.name = name
        self.calls = 0

    async def reverse(self, latitude: float, longitude: float) -> Optional[str]:
        self.calls += 1
        if self.fail:
            raise GeocodeError(f"{self.name} is down")
        return self.address


def classifier_for(label: str, probability: float) -> ImageClassifier:
    return ImageClassifier([StaticClassifierProvider([Prediction(label=label, probability=probability)])])


@pytest.fixture
def png_bytes() -> bytes:
    return make_image()


@pytest.fixture
def repository() -> InMemoryComplaintRepository:
    return InMemoryComplaintRepository()


@pytest.fixture
def geocoder() -> ReverseGeocoder:
    return ReverseGeocoder([StaticGeocodeProvider("12, MG Road, Hazratganj, Lucknow, Uttar Pradesh, 226001")])


@pytest.fixture
def failing_geocoder() -> ReverseGeocoder:
    return ReverseGeocoder([
        StaticGeocodeProvider(fail=True, name="nominatim"),
        StaticGeocodeProvider(fail=True, name="bigdatacloud"),
        StaticGeocodeProvider(fail=True, name="nominatim_compact"),
    ])


@pytest.fixture
def pothole_classifier() -> ImageClassifier:
    return classifier_for("Pothole", 0.92)


@pytest.fixture
def client(pothole_classifier, geocoder):
    from urbansetu.main import app

    app.dependency_overrides[get_classifier] = lambda: pothole_classifier
    app.dependency_overrides[get_geocoder] = lambda: geocoder
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def register(client: TestClient, email: str, user_type: str = "citizen", password: str = "secret123") -> dict:
    payload = {
        "email": email,
        "password": password,
        "name": email.split("@")[0].title(),
        "user_type": user_type,
    }
    if user_type == "admin":
        payload["department"] = "Municipal Corporation"
    response = client.post("/api/auth/register", json=payload)
    assert response.status_code == 201, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def citizen_headers(client) -> dict:
    return register(client, "asha@example.com")


@pytest.fixture
def admin_headers(client) -> dict:
    return register(client, "officer@example.com", user_type="admin")
