"""
Complaint Repository

The only data-access surface used by the wizard, the dashboards and the
routes. ``ComplaintRepository`` owns validation, lifecycle rules and cache
invalidation; subclasses supply the storage primitives:

- ``MongoComplaintRepository``: motor collection + GridFS bucket
- ``InMemoryComplaintRepository``: process-local fallback when MongoDB is
  unreachable (and for local development)
"""

import logging
import re
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from gridfs.errors import NoFile
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from urbansetu.core.config import get_settings
from urbansetu.core.exceptions import NotFoundError, StorageError, UploadError, ValidationError
from urbansetu.models.complaint_model import (
    Complaint,
    ComplaintCreate,
    ComplaintFilters,
    ComplaintStats,
    ComplaintStatus,
    ComplaintUpdate,
    department_for,
)
from urbansetu.services import lifecycle
from urbansetu.services.redis_service import RedisService
from urbansetu.utils.image_utils import extension_for, normalize_image, validate_image

logger = logging.getLogger(__name__)

DATETIME_FIELDS = ("created_at", "updated_at", "resolved_at")


def validate_new_complaint(data: ComplaintCreate) -> Dict[str, str]:
    """Per-field error messages for a complaint about to be created."""
    errors: Dict[str, str] = {}
    if not (data.user_id or "").strip():
        errors["user_id"] = "Reporter is required"
    if data.category is None:
        errors["category"] = "Category is required"
    if not (data.description or "").strip():
        errors["description"] = "Description is required"
    if not (data.address or "").strip():
        errors["address"] = "Address is required"
    if data.latitude is None or not -90.0 <= data.latitude <= 90.0:
        errors["latitude"] = "Latitude must be between -90 and 90"
    if data.longitude is None or not -180.0 <= data.longitude <= 180.0:
        errors["longitude"] = "Longitude must be between -180 and 180"
    return errors


def build_complaint_query(filters: Optional[ComplaintFilters] = None, user_id: Optional[str] = None) -> Dict[str, Any]:
    """MongoDB filter document for the given filters."""
    query: Dict[str, Any] = {}
    if user_id:
        query["user_id"] = user_id
    if filters is None:
        return query
    if filters.status_value:
        query["status"] = filters.status_value
    if filters.category:
        query["category"] = filters.category.value
    if filters.department:
        query["department"] = filters.department
    if filters.search_text:
        pattern = {"$regex": re.escape(filters.search_text), "$options": "i"}
        query["$or"] = [{"description": pattern}, {"address": pattern}]
    return query


def matches_filters(complaint: Complaint, filters: Optional[ComplaintFilters]) -> bool:
    if filters is None:
        return True
    if filters.status_value and complaint.status.value != filters.status_value:
        return False
    if filters.category and complaint.category != filters.category:
        return False
    if filters.department and complaint.department != filters.department:
        return False
    if filters.search_text:
        needle = filters.search_text.lower()
        if needle not in complaint.description.lower() and needle not in complaint.address.lower():
            return False
    return True


def stats_from_rows(rows: Iterable[Tuple[str, str, int]]) -> ComplaintStats:
    stats = ComplaintStats()
    for status, category, count in rows:
        stats.total += count
        if status == ComplaintStatus.pending.value:
            stats.pending += count
        elif status == ComplaintStatus.in_progress.value:
            stats.in_progress += count
        elif status == ComplaintStatus.resolved.value:
            stats.resolved += count
        stats.by_category[category] = stats.by_category.get(category, 0) + count
    return stats


def to_document(complaint: Complaint) -> Dict[str, Any]:
    doc = complaint.model_dump(mode="json")
    for field in DATETIME_FIELDS:
        doc[field] = getattr(complaint, field)
    doc["_id"] = doc.pop("id")
    return doc


def from_document(doc: Dict[str, Any]) -> Complaint:
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return Complaint.model_validate(doc)


def _plain(changes: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (v.value if hasattr(v, "value") else v) for k, v in changes.items()}


class ComplaintRepository(ABC):

    def __init__(self, cache: Optional[RedisService] = None, max_image_bytes: Optional[int] = None,
                 public_base_url: Optional[str] = None):
        settings = get_settings()
        self.cache = cache
        self.max_image_bytes = max_image_bytes or settings.max_image_bytes
        self.public_base_url = settings.public_base_url if public_base_url is None else public_base_url

    # -- storage primitives ------------------------------------------------

    @abstractmethod
    async def _insert(self, complaint: Complaint) -> None: ...

    @abstractmethod
    async def _find_one(self, complaint_id: str) -> Optional[Complaint]: ...

    @abstractmethod
    async def _find(self, filters: Optional[ComplaintFilters], user_id: Optional[str]) -> List[Complaint]: ...

    @abstractmethod
    async def _update(self, complaint_id: str, changes: Dict[str, Any]) -> Optional[Complaint]: ...

    @abstractmethod
    async def _status_category_rows(self, user_id: Optional[str]) -> List[Tuple[str, str, int]]: ...

    @abstractmethod
    async def _put_blob(self, path: str, content: bytes, content_type: str, owner_id: str) -> None: ...

    @abstractmethod
    async def _get_blob(self, path: str) -> Optional[Tuple[bytes, str]]: ...

    # -- operations --------------------------------------------------------

    async def create(self, data: ComplaintCreate) -> Complaint:
        errors = validate_new_complaint(data)
        if errors:
            logger.warning(f"Complaint rejected, missing/invalid fields: {list(errors)}")
            raise ValidationError("Missing required fields", errors=errors)

        now = datetime.utcnow()
        complaint = Complaint(
            user_id=data.user_id.strip(),
            category=data.category,
            description=data.description.strip(),
            priority=data.priority,
            department=department_for(data.category),
            address=data.address.strip(),
            latitude=float(data.latitude),
            longitude=float(data.longitude),
            image_url=data.image_url,
            ai_prediction=data.ai_prediction,
            ai_confidence=data.ai_prediction.confidence if data.ai_prediction else None,
            status=ComplaintStatus.pending,
            created_at=now,
            updated_at=now,
            resolved_at=None,
        )

        await self._insert(complaint)
        await self._invalidate()
        logger.info(f"📝 Stored complaint {complaint.id} ({complaint.category.value} -> {complaint.department}) for user {complaint.user_id}")
        return complaint

    async def get(self, complaint_id: str) -> Complaint:
        complaint = await self._find_one(complaint_id)
        if complaint is None:
            raise NotFoundError(f"Complaint {complaint_id} not found")
        return complaint

    async def list_by_reporter(self, user_id: str) -> List[Complaint]:
        cached = await self._cached_list("reporter", user_id=user_id)
        if cached is not None:
            return cached
        complaints = await self._find(None, user_id)
        await self._cache_list(complaints, "reporter", user_id=user_id)
        return complaints

    async def list_all(self, filters: Optional[ComplaintFilters] = None) -> List[Complaint]:
        filters = filters or ComplaintFilters()
        params = filters.model_dump(mode="json")
        cached = await self._cached_list("all", **params)
        if cached is not None:
            return cached
        complaints = await self._find(filters, None)
        await self._cache_list(complaints, "all", **params)
        return complaints

    async def update_status(self, complaint_id: str, updates: ComplaintUpdate) -> Complaint:
        current = await self.get(complaint_id)
        changes = lifecycle.apply_update(current, updates)
        updated = await self._update(complaint_id, _plain(changes))
        if updated is None:
            raise NotFoundError(f"Complaint {complaint_id} not found")
        await self._invalidate()
        logger.info(f"✅ Complaint {complaint_id} updated: {sorted(changes)}")
        return updated

    async def upload_image(self, content: bytes, filename: Optional[str], content_type: Optional[str],
                           owner_id: str) -> str:
        validate_image(content, content_type, self.max_image_bytes)
        content, stored_type = normalize_image(content)
        ext = "jpg" if stored_type == "image/jpeg" else extension_for(filename, stored_type)
        path = f"{owner_id}/{int(time.time() * 1000)}.{ext}"

        try:
            await self._put_blob(path, content, stored_type, owner_id)
        except UploadError:
            raise
        except Exception as e:
            logger.error(f"❌ Image upload failed for {path}: {e}", exc_info=True)
            raise UploadError(f"Image storage rejected the upload: {e}")

        logger.info(f"🖼️ Uploaded image {path} ({len(content)} bytes)")
        return f"{self.public_base_url}/api/images/{path}"

    async def get_image(self, path: str) -> Tuple[bytes, str]:
        blob = await self._get_blob(path)
        if blob is None:
            raise NotFoundError(f"Image {path} not found")
        return blob

    async def get_stats(self, user_id: Optional[str] = None) -> ComplaintStats:
        if self.cache is not None:
            cached = await self.cache.get_cached_complaints("stats", user_id=user_id)
            if cached is not None:
                return ComplaintStats.model_validate(cached)

        stats = stats_from_rows(await self._status_category_rows(user_id))
        if self.cache is not None:
            await self.cache.cache_complaints(stats.model_dump(), "stats", user_id=user_id)
        return stats

    # -- cache helpers -----------------------------------------------------

    async def _cached_list(self, kind: str, **params) -> Optional[List[Complaint]]:
        if self.cache is None:
            return None
        cached = await self.cache.get_cached_complaints(kind, **params)
        if cached is None:
            return None
        return [Complaint.model_validate(item) for item in cached]

    async def _cache_list(self, complaints: List[Complaint], kind: str, **params) -> None:
        if self.cache is not None:
            await self.cache.cache_complaints([c.model_dump(mode="json") for c in complaints], kind, **params)

    async def _invalidate(self) -> None:
        if self.cache is not None:
            await self.cache.invalidate_complaints_cache()


class MongoComplaintRepository(ComplaintRepository):

    def __init__(self, db, fs, **kwargs):
        super().__init__(**kwargs)
        self.db = db
        self.fs = fs
        self.collection = db["complaints"]

    async def _insert(self, complaint: Complaint) -> None:
        try:
            await self.collection.insert_one(to_document(complaint))
        except PyMongoError as e:
            logger.error(f"Failed to insert complaint {complaint.id}: {e}", exc_info=True)
            raise StorageError(f"Failed to store complaint: {e}")

    async def _find_one(self, complaint_id: str) -> Optional[Complaint]:
        try:
            doc = await self.collection.find_one({"_id": complaint_id})
        except PyMongoError as e:
            raise StorageError(f"Failed to read complaint {complaint_id}: {e}")
        return from_document(doc) if doc else None

    async def _find(self, filters: Optional[ComplaintFilters], user_id: Optional[str]) -> List[Complaint]:
        query = build_complaint_query(filters, user_id)
        try:
            cursor = self.collection.find(query).sort("created_at", -1)
            docs = await cursor.to_list(length=None)
        except PyMongoError as e:
            logger.error(f"❌ Complaint query failed ({query}): {e}", exc_info=True)
            raise StorageError(f"Failed to fetch complaints: {e}")
        return [from_document(doc) for doc in docs]

    async def _update(self, complaint_id: str, changes: Dict[str, Any]) -> Optional[Complaint]:
        try:
            doc = await self.collection.find_one_and_update(
                {"_id": complaint_id},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            logger.error(f"Failed to update complaint {complaint_id}: {e}", exc_info=True)
            raise StorageError(f"Failed to update complaint: {e}")
        return from_document(doc) if doc else None

    async def _status_category_rows(self, user_id: Optional[str]) -> List[Tuple[str, str, int]]:
        pipeline = []
        if user_id:
            pipeline.append({"$match": {"user_id": user_id}})
        pipeline.append({"$group": {"_id": {"status": "$status", "category": "$category"}, "count": {"$sum": 1}}})
        try:
            rows = await self.collection.aggregate(pipeline).to_list(length=None)
        except PyMongoError as e:
            raise StorageError(f"Failed to compute complaint stats: {e}")
        return [(row["_id"]["status"], row["_id"]["category"], row["count"]) for row in rows]

    async def _put_blob(self, path: str, content: bytes, content_type: str, owner_id: str) -> None:
        await self.fs.upload_from_stream(
            path,
            content,
            metadata={"content_type": content_type, "owner_id": owner_id},
        )

    async def _get_blob(self, path: str) -> Optional[Tuple[bytes, str]]:
        try:
            grid_out = await self.fs.open_download_stream_by_name(path)
            content = await grid_out.read()
        except NoFile:
            return None
        except PyMongoError as e:
            raise StorageError(f"Failed to read image {path}: {e}")
        metadata = grid_out.metadata or {}
        return content, metadata.get("content_type", "image/jpeg")


class InMemoryComplaintRepository(ComplaintRepository):

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._complaints: Dict[str, Complaint] = {}
        self._sequence: Dict[str, int] = {}
        self._blobs: Dict[str, Tuple[bytes, str]] = {}

    async def _insert(self, complaint: Complaint) -> None:
        if complaint.id in self._complaints:
            raise StorageError(f"Duplicate complaint id {complaint.id}")
        self._complaints[complaint.id] = complaint.model_copy(deep=True)
        self._sequence[complaint.id] = len(self._sequence)

    async def _find_one(self, complaint_id: str) -> Optional[Complaint]:
        complaint = self._complaints.get(complaint_id)
        return complaint.model_copy(deep=True) if complaint else None

    async def _find(self, filters: Optional[ComplaintFilters], user_id: Optional[str]) -> List[Complaint]:
        found = [
            c.model_copy(deep=True)
            for c in self._complaints.values()
            if (user_id is None or c.user_id == user_id) and matches_filters(c, filters)
        ]
        # insertion order breaks created_at ties
        found.sort(key=lambda c: (c.created_at, self._sequence[c.id]), reverse=True)
        return found

    async def _update(self, complaint_id: str, changes: Dict[str, Any]) -> Optional[Complaint]:
        current = self._complaints.get(complaint_id)
        if current is None:
            return None
        updated = Complaint.model_validate({**current.model_dump(), **changes})
        self._complaints[complaint_id] = updated
        return updated.model_copy(deep=True)

    async def _status_category_rows(self, user_id: Optional[str]) -> List[Tuple[str, str, int]]:
        return [
            (c.status.value, c.category.value, 1)
            for c in self._complaints.values()
            if user_id is None or c.user_id == user_id
        ]

    async def _put_blob(self, path: str, content: bytes, content_type: str, owner_id: str) -> None:
        if path in self._blobs:
            raise UploadError(f"Image {path} already exists")
        self._blobs[path] = (content, content_type)

    async def _get_blob(self, path: str) -> Optional[Tuple[bytes, str]]:
        return self._blobs.get(path)
