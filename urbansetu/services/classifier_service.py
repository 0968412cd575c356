import asyncio
import io
import json
import logging
import re
from typing import List, Optional

import aiohttp
import google.generativeai as genai
from PIL import Image

from urbansetu.core.config import get_settings
from urbansetu.core.exceptions import ClassificationError
from urbansetu.models.complaint_model import Category, ClassifierResult, Prediction
from urbansetu.utils.image_utils import UNREADABLE_IMAGE_ERRORS

logger = logging.getLogger(__name__)

# Predictions at or below this never pre-fill the form
CONFIDENCE_THRESHOLD = 0.6

_LABEL_ALIASES = {
    "pothole": Category.pothole,
    "potholes": Category.pothole,
    "garbage": Category.garbage,
    "trash": Category.garbage,
    "sewage": Category.sewage,
    "streetlight": Category.street_light,
    "street_light": Category.street_light,
    "street light": Category.street_light,
    "fallentree": Category.fallen_tree,
    "fallen_tree": Category.fallen_tree,
    "fallen tree": Category.fallen_tree,
}


def to_category(label: Optional[str]) -> Optional[Category]:
    """Map a model label onto one of the five classes, or None."""
    if not label:
        return None
    key = label.strip().lower()
    if key in _LABEL_ALIASES:
        return _LABEL_ALIASES[key]
    return _LABEL_ALIASES.get(key.replace("-", " "))


def parse_predictions(payload) -> List[Prediction]:
    """
    Accepts ``[{"className": ..., "probability": ...}]`` (or ``label``) and
    returns known-class predictions ranked by probability.
    """
    if isinstance(payload, dict):
        payload = payload.get("predictions", [])
    if not isinstance(payload, list):
        return []

    predictions: List[Prediction] = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        category = to_category(item.get("className") or item.get("label"))
        if category is None:
            continue
        try:
            probability = float(item.get("probability", 0.0))
        except (TypeError, ValueError):
            continue
        predictions.append(Prediction(label=category.value, probability=min(max(probability, 0.0), 1.0)))

    predictions.sort(key=lambda p: p.probability, reverse=True)
    return predictions


class ClassifierProvider:
    name = "provider"

    async def predict(self, image: bytes, content_type: str = "image/jpeg") -> List[Prediction]:
        raise NotImplementedError


class RemoteModelProvider(ClassifierProvider):
    """Hosted export of the trained image model, answering ranked class JSON."""

    name = "remote_model"

    def __init__(self, endpoint: Optional[str] = None, timeout: Optional[float] = None):
        settings = get_settings()
        self.endpoint = endpoint or settings.classifier_endpoint
        self.timeout = timeout or settings.ai_timeout

    async def predict(self, image: bytes, content_type: str = "image/jpeg") -> List[Prediction]:
        if not self.endpoint:
            raise ClassificationError("CLASSIFIER_ENDPOINT is not configured")

        form = aiohttp.FormData()
        form.add_field("image", image, filename="complaint", content_type=content_type)
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.post(self.endpoint, data=form) as response:
                    if response.status != 200:
                        raise ClassificationError(f"Model endpoint returned HTTP {response.status}")
                    payload = await response.json(content_type=None)
        except ClassificationError:
            raise
        except Exception as e:
            raise ClassificationError(f"Model endpoint request failed: {e}")
        return parse_predictions(payload)


class GeminiProvider(ClassifierProvider):
    name = "gemini"

    PROMPT = f"""
You are classifying a photo submitted to a civic complaint portal.
Choose among exactly these classes: {", ".join(c.value for c in Category)}.
Score every class with a probability between 0 and 1 (they should sum to about 1).
If the photo shows none of them, give every class a low probability.

Return JSON only:
[{{"className": "<class>", "probability": <number>}}, ...]
"""

    def __init__(self, api_key: Optional[str] = None, model_name: Optional[str] = None,
                 timeout: Optional[float] = None):
        settings = get_settings()
        self.api_key = api_key or settings.gemini_api_key
        self.model_name = model_name or settings.gemini_model
        self.timeout = timeout or settings.ai_timeout
        self._model = None

    def _get_model(self):
        if self._model is None:
            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(self.model_name)
        return self._model

    async def predict(self, image: bytes, content_type: str = "image/jpeg") -> List[Prediction]:
        if not self.api_key:
            raise ClassificationError("GEMINI_API_KEY is not set")

        try:
            pil_image = Image.open(io.BytesIO(image))
            pil_image.load()
        except UNREADABLE_IMAGE_ERRORS as e:
            raise ClassificationError(f"Unreadable image: {e}")

        try:
            model = self._get_model()
            response = await asyncio.wait_for(
                asyncio.to_thread(model.generate_content, [self.PROMPT, pil_image]),
                timeout=self.timeout,
            )
            text = response.text
        except asyncio.TimeoutError:
            raise ClassificationError(f"Gemini timed out after {self.timeout}s")
        except Exception as e:
            raise ClassificationError(f"Gemini request failed: {e}")

        logger.debug(f"Gemini classification raw output: {text}")
        json_match = re.search(r"\[[\s\S]*\]", text) or re.search(r"\{[\s\S]*\}", text)
        if not json_match:
            raise ClassificationError("No valid JSON found in Gemini response")
        try:
            payload = json.loads(json_match.group(0))
        except json.JSONDecodeError as e:
            raise ClassificationError(f"Gemini returned malformed JSON: {e}")
        return parse_predictions(payload)


def default_providers() -> List[ClassifierProvider]:
    settings = get_settings()
    providers: List[ClassifierProvider] = []
    if settings.classifier_endpoint:
        providers.append(RemoteModelProvider())
    if settings.gemini_api_key:
        providers.append(GeminiProvider())
    if not providers:
        logger.warning("⚠️ No classifier configured (CLASSIFIER_ENDPOINT / GEMINI_API_KEY); manual category entry only")
    return providers


class ImageClassifier:

    def __init__(self, providers: Optional[List[ClassifierProvider]] = None):
        self.providers = providers if providers is not None else default_providers()

    async def classify(self, image: bytes, content_type: str = "image/jpeg") -> ClassifierResult:
        """Top prediction of the first provider that returns a usable ranking."""
        if not image:
            raise ClassificationError("No image to classify")

        failures = []
        for provider in self.providers:
            try:
                predictions = await provider.predict(image, content_type)
            except ClassificationError as e:
                logger.warning(f"⚠️ Classifier {provider.name} failed: {e.message}")
                failures.append(f"{provider.name}: {e.message}")
                continue
            if not predictions:
                failures.append(f"{provider.name}: no known class in response")
                continue

            top = predictions[0]
            logger.info(f"🤖 {provider.name} classified image as {top.label} ({top.probability * 100:.1f}% confidence)")
            return ClassifierResult(
                label=Category(top.label),
                confidence=top.probability,
                all_predictions=predictions,
                provider=provider.name,
            )

        raise ClassificationError(
            "Image classification unavailable",
            details={"providers": failures},
        )
