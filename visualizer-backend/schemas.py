"""
Pydantic models for data validation in the Floor-Plan Visualizer.
Covers the HTTP API and the shapes returned by the external image/vision service.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator

NO_REASON = "No reason provided by validator."


# --- API models ---

class RenderResponse(BaseModel):
    """One render job as exposed to the client."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    floor_plan_id: str
    render_type: str  # "isometric" | "room_wise"
    room_name: Optional[str] = None
    image_url: Optional[str] = None
    prompt_used: str
    status: str  # "pending" | "processing" | "completed" | "failed"
    error_message: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class FloorPlanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    project_id: str
    original_filename: str
    file_url: str
    file_size: int
    width: Optional[int] = None
    height: Optional[int] = None
    uploaded_at: datetime


class ProjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ProjectDetailResponse(ProjectResponse):
    """Project with its floor plan and renders; the polling target."""
    floor_plan: Optional[FloorPlanResponse] = None
    renders: List[RenderResponse] = []


class ProjectSummaryResponse(ProjectResponse):
    """History entry."""
    thumbnail_url: Optional[str] = None
    completed_renders: int = 0
    total_renders: int = 0


class UploadResponse(BaseModel):
    """Response when a floor plan is uploaded and its render jobs are submitted."""
    project_id: str
    floor_plan_id: str
    renders: List[RenderResponse]
    warnings: List[str] = []


# --- External service models ---

class ImageDatum(BaseModel):
    b64_json: Optional[str] = None
    url: Optional[str] = None


class ImageEditResponse(BaseModel):
    data: List[ImageDatum] = []


class ChatMessage(BaseModel):
    content: Optional[str] = None


class ChatChoice(BaseModel):
    message: Optional[ChatMessage] = None


class ChatCompletionResponse(BaseModel):
    choices: List[ChatChoice] = []

    def first_content(self) -> str:
        if not self.choices or self.choices[0].message is None:
            return ""
        return self.choices[0].message.content or ""


class FaithfulnessResult(BaseModel):
    """Verdict of the vision reviewer comparing a render against its source plan."""
    is_faithful: bool = False
    score: int = 0
    reason: str = NO_REASON
    source_room_count: Optional[int] = None
    generated_room_count: Optional[int] = None

    @field_validator("is_faithful", mode="before")
    @classmethod
    def _coerce_flag(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in ("true", "yes", "1")
        return bool(value)

    @field_validator("score", mode="before")
    @classmethod
    def _coerce_score(cls, value: Any) -> int:
        try:
            score = int(round(float(value)))
        except (TypeError, ValueError):
            return 0
        return max(0, min(100, score))

    @field_validator("reason", mode="before")
    @classmethod
    def _coerce_reason(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            return NO_REASON
        return str(value).strip()

    @field_validator("source_room_count", "generated_room_count", mode="before")
    @classmethod
    def _coerce_count(cls, value: Any) -> Optional[int]:
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    @property
    def room_counts_match(self) -> bool:
        """False only when both counts were reported and they differ."""
        if self.source_room_count is None or self.generated_room_count is None:
            return True
        return self.source_room_count == self.generated_room_count
