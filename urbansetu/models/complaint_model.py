from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Union, Literal
from datetime import datetime
from enum import Enum
import uuid


class Category(str, Enum):
    pothole = "Pothole"
    garbage = "Garbage"
    sewage = "Sewage"
    street_light = "StreetLight"
    fallen_tree = "FallenTree"


class Priority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class ComplaintStatus(str, Enum):
    pending = "pending"           # Created by the wizard, awaiting triage
    in_progress = "in_progress"   # Forwarded to the department
    resolved = "resolved"         # Closed by an admin


DEPARTMENT_MAPPING: Dict[Category, str] = {
    Category.pothole: "Road Authority",
    Category.garbage: "Sanitation Department",
    Category.sewage: "Water & Sewage Board",
    Category.street_light: "Electrical Department",
    Category.fallen_tree: "Parks & Horticulture",
}

ADDRESS_PLACEHOLDER = "[ADDRESS]"

DESCRIPTION_TEMPLATES: Dict[Category, str] = {
    Category.pothole: "I have noticed a pothole at [ADDRESS]. It is creating difficulty for pedestrians and vehicles.",
    Category.garbage: "There is accumulated garbage at [ADDRESS]. It needs immediate attention for cleanliness.",
    Category.sewage: "There is sewage overflow/blockage at [ADDRESS]. It is causing unhygienic conditions.",
    Category.street_light: "Street light is not working at [ADDRESS]. It is causing safety concerns during night time.",
    Category.fallen_tree: "A tree has fallen at [ADDRESS]. It is blocking the path and needs removal.",
}


def department_for(category: Union[Category, str]) -> str:
    return DEPARTMENT_MAPPING[Category(category)]


def render_description(category: Union[Category, str], address: Optional[str] = None) -> str:
    template = DESCRIPTION_TEMPLATES[Category(category)]
    return template.replace(ADDRESS_PLACEHOLDER, address or ADDRESS_PLACEHOLDER)


class Prediction(BaseModel):
    label: str
    probability: float


class ClassifierResult(BaseModel):
    label: Category
    confidence: float = Field(ge=0.0, le=1.0)
    all_predictions: List[Prediction] = []
    provider: Optional[str] = None


class Complaint(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    category: Category
    description: str
    priority: Priority = Priority.medium
    department: str
    address: str
    latitude: float
    longitude: float
    image_url: Optional[str] = None
    ai_prediction: Optional[ClassifierResult] = None
    ai_confidence: Optional[float] = None
    status: ComplaintStatus = ComplaintStatus.pending
    admin_notes: Optional[str] = None
    assigned_to: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    in_progress_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    class Config:
        populate_by_name = True


class ComplaintCreate(BaseModel):
    """Payload handed to the repository; required fields are checked there."""
    user_id: Optional[str] = None
    category: Optional[Category] = None
    description: Optional[str] = None
    priority: Priority = Priority.medium
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    image_url: Optional[str] = None
    ai_prediction: Optional[ClassifierResult] = None


class ComplaintUpdate(BaseModel):
    """Admin-side partial update. Anything not listed here is immutable. Notes and
    assignee can be cleared by sending null explicitly."""
    status: Optional[ComplaintStatus] = None
    admin_notes: Optional[str] = None
    assigned_to: Optional[str] = None
    priority: Optional[Priority] = None
    category: Optional[Category] = None

    class Config:
        extra = "forbid"


class ComplaintFilters(BaseModel):
    status: Optional[Union[ComplaintStatus, Literal["all"]]] = None
    category: Optional[Category] = None
    department: Optional[str] = None
    search_text: Optional[str] = None

    class Config:
        extra = "forbid"

    @field_validator("department", "search_text")
    @classmethod
    def blank_to_none(cls, v):
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("department")
    @classmethod
    def known_department(cls, v):
        if v is not None and v not in DEPARTMENT_MAPPING.values():
            raise ValueError(f"Unknown department '{v}'")
        return v

    @property
    def status_value(self) -> Optional[str]:
        if self.status is None or self.status == "all":
            return None
        return ComplaintStatus(self.status).value


class ComplaintStats(BaseModel):
    total: int = 0
    pending: int = 0
    in_progress: int = Field(0, alias="inProgress")
    resolved: int = 0
    by_category: Dict[str, int] = Field(default_factory=dict, alias="byCategory")

    class Config:
        populate_by_name = True
