"""
Job store operations over projects, floor plans and render jobs.

Every render update goes through ``update_render_job`` which enforces the row
invariants: image_url is set iff the job completed, error_message is set iff
it failed, completed_at is written once, status only moves forward
(pending -> processing -> completed | failed), and a settled job never
changes again.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from errors import InvalidTransitionError
from models import FloorPlan, Project, RenderJob, RenderStatus, RenderType, utcnow


def create_project(db: Session, name: str, description: Optional[str] = None) -> Project:
    project = Project(name=name, description=description)
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


def get_project(db: Session, project_id: str) -> Optional[Project]:
    return db.query(Project).filter(Project.id == project_id).first()


def list_recent_projects(db: Session, limit: int = 10) -> List[Project]:
    return db.query(Project).order_by(Project.created_at.desc()).limit(limit).all()


def delete_project(db: Session, project_id: str) -> bool:
    project = get_project(db, project_id)
    if not project:
        return False
    db.delete(project)
    db.commit()
    logging.info(f"🗑️ Deleted project {project_id} with its floor plans and renders")
    return True


def create_floor_plan(
    db: Session,
    project_id: str,
    original_filename: str,
    file_url: str,
    file_size: int,
    width: Optional[int] = None,
    height: Optional[int] = None,
) -> FloorPlan:
    floor_plan = FloorPlan(
        project_id=project_id,
        original_filename=original_filename,
        file_url=file_url,
        file_size=file_size,
        width=width,
        height=height,
    )
    db.add(floor_plan)
    db.commit()
    db.refresh(floor_plan)
    return floor_plan


def get_floor_plan_by_project(db: Session, project_id: str) -> Optional[FloorPlan]:
    return (
        db.query(FloorPlan)
        .filter(FloorPlan.project_id == project_id)
        .order_by(FloorPlan.uploaded_at)
        .first()
    )


def create_render_job(
    db: Session,
    floor_plan_id: str,
    render_type: str,
    prompt_used: str,
    room_name: Optional[str] = None,
    status: str = RenderStatus.PROCESSING,
) -> RenderJob:
    if render_type not in RenderType.ALL:
        raise ValueError(f"Unknown render type: {render_type}")
    if (render_type == RenderType.ROOM_WISE) != bool(room_name):
        raise ValueError("room_name is required for room_wise renders and only for them.")
    if status in RenderStatus.TERMINAL:
        raise InvalidTransitionError("Render jobs cannot be created already settled.")

    render = RenderJob(
        floor_plan_id=floor_plan_id,
        render_type=render_type,
        room_name=room_name,
        prompt_used=prompt_used,
        status=status,
    )
    db.add(render)
    db.commit()
    db.refresh(render)
    return render


def get_render_job(db: Session, render_id: str) -> Optional[RenderJob]:
    return db.query(RenderJob).filter(RenderJob.id == render_id).first()


def list_renders_by_floor_plan(db: Session, floor_plan_id: str) -> List[RenderJob]:
    return (
        db.query(RenderJob)
        .filter(RenderJob.floor_plan_id == floor_plan_id)
        .order_by(RenderJob.created_at.asc())
        .all()
    )


def update_render_job(
    db: Session,
    render_id: str,
    status: str,
    image_url: Optional[str] = None,
    error_message: Optional[str] = None,
) -> RenderJob:
    # Reload so a settlement or delete from another session is seen
    render = db.query(RenderJob).filter(RenderJob.id == render_id).populate_existing().first()
    if render is None:
        raise LookupError(f"Render job {render_id} not found.")
    if render.status in RenderStatus.TERMINAL:
        raise InvalidTransitionError(f"Render job {render_id} already settled as {render.status}.")

    if status == RenderStatus.COMPLETED:
        if not image_url or error_message:
            raise InvalidTransitionError("A completed render needs an image_url and no error_message.")
    elif status == RenderStatus.FAILED:
        if not error_message or image_url:
            raise InvalidTransitionError("A failed render needs an error_message and no image_url.")
    elif status == RenderStatus.PROCESSING:
        if render.status != RenderStatus.PENDING:
            raise InvalidTransitionError(f"Render job {render_id} cannot move from {render.status} to {status}.")
        if image_url or error_message:
            raise InvalidTransitionError("An unsettled render cannot carry an image or an error.")
    elif status == RenderStatus.PENDING:
        raise InvalidTransitionError(f"Render job {render_id} cannot return to {status}.")
    else:
        raise InvalidTransitionError(f"Unknown render status: {status}")

    render.status = status
    render.image_url = image_url
    render.error_message = error_message
    if status == RenderStatus.COMPLETED:
        render.completed_at = utcnow()
    db.commit()
    db.refresh(render)
    return render


def count_renders(renders: List[RenderJob]) -> dict:
    completed = sum(1 for r in renders if r.status == RenderStatus.COMPLETED)
    return {"completed_renders": completed, "total_renders": len(renders)}
