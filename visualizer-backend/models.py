# models.py

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Text, Integer, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from database import Base


def generate_uuid():
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc)


class RenderType:
    ISOMETRIC = "isometric"
    ROOM_WISE = "room_wise"
    ALL = (ISOMETRIC, ROOM_WISE)


class RenderStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    TERMINAL = (COMPLETED, FAILED)


class Project(Base):
    """One upload session."""

    __tablename__ = "projects"

    id = Column(String, primary_key=True, index=True, default=generate_uuid)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    floor_plans = relationship(
        "FloorPlan", back_populates="project", cascade="all, delete-orphan", passive_deletes=True
    )


class FloorPlan(Base):
    """Uploaded 2D plan; file_url holds a data URI or a remote URL."""

    __tablename__ = "floor_plans"

    id = Column(String, primary_key=True, index=True, default=generate_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    original_filename = Column(String, nullable=False)
    file_url = Column(Text, nullable=False)
    file_size = Column(Integer, default=0)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    uploaded_at = Column(DateTime(timezone=True), default=utcnow)

    project = relationship("Project", back_populates="floor_plans")
    renders = relationship(
        "RenderJob",
        back_populates="floor_plan",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="RenderJob.created_at",
    )


class RenderJob(Base):
    """Render job tracking one isometric or room-wise image."""

    __tablename__ = "renders"

    id = Column(String, primary_key=True, index=True, default=generate_uuid)
    floor_plan_id = Column(String, ForeignKey("floor_plans.id", ondelete="CASCADE"), nullable=False, index=True)
    render_type = Column(String, nullable=False)  # isometric, room_wise
    room_name = Column(String, nullable=True)
    image_url = Column(Text, nullable=True)
    prompt_used = Column(Text, nullable=False)
    status = Column(String, default=RenderStatus.PENDING, index=True)  # pending, processing, completed, failed
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    floor_plan = relationship("FloorPlan", back_populates="renders")

    @property
    def label(self) -> str:
        return self.room_name if self.render_type == RenderType.ROOM_WISE and self.room_name else self.render_type
