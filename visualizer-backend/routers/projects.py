"""
Router for floor-plan projects and their render jobs.
Handles upload + job submission, polling, history and image download.
"""

import re
import logging
import unicodedata
from urllib.parse import quote
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

import crud
from config import DEFAULT_PROJECT_DESCRIPTION, RECENT_PROJECTS_LIMIT, Settings
from database import get_db
from errors import ConfigurationError, DecodeError, ServiceError
from models import Project, RenderStatus, RenderType
from orchestrator import build_isometric_prompt, build_room_prompt
from projector import read_dimensions, sniff_mime_type, to_data_url
from schemas import (
    FloorPlanResponse,
    ProjectDetailResponse,
    ProjectResponse,
    ProjectSummaryResponse,
    RenderResponse,
    UploadResponse,
)
from services import RoomDetector, fetch_image
from tasks import dispatch_renders

# Create the router
router = APIRouter(tags=["projects"])


def get_settings() -> Settings:
    return Settings.from_env()


def download_filename(project_name: str, render_label: str) -> str:
    stem = re.sub(r'[\\/:*?"<>|\r\n]+', "_", f"{project_name}-{render_label}").strip()
    return f"{stem}.png"


def content_disposition(filename: str) -> str:
    """ASCII filename for old clients plus the RFC 5987 UTF-8 form."""
    decomposed = unicodedata.normalize("NFKD", filename)
    fallback = "".join(c for c in decomposed if not unicodedata.combining(c))
    fallback = re.sub(r"[^\x20-\x7e]", "_", fallback)
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


def _project_detail(db: Session, project: Project) -> ProjectDetailResponse:
    floor_plan = crud.get_floor_plan_by_project(db, project.id)
    renders = crud.list_renders_by_floor_plan(db, floor_plan.id) if floor_plan else []
    return ProjectDetailResponse(
        **ProjectResponse.model_validate(project).model_dump(),
        floor_plan=FloorPlanResponse.model_validate(floor_plan) if floor_plan else None,
        renders=[RenderResponse.model_validate(r) for r in renders],
    )


@router.post("/projects/", response_model=UploadResponse)
def upload_floor_plan(
    file: UploadFile = File(...),
    name: str = Form(...),
    description: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Stores the uploaded plan, creates one isometric job plus one job per
    detected room (all in processing), and queues them on Celery.
    """
    project_name = name.strip()
    if not project_name:
        raise HTTPException(status_code=400, detail="Project name is required.")

    content = file.file.read()
    try:
        width, height = read_dimensions(content)
        mime_type = sniff_mime_type(content)
    except DecodeError as e:
        raise HTTPException(status_code=400, detail=str(e))

    project = crud.create_project(db, project_name, description or DEFAULT_PROJECT_DESCRIPTION)
    file_url = to_data_url(content, mime_type)
    floor_plan = crud.create_floor_plan(
        db,
        project_id=project.id,
        original_filename=file.filename or "floor-plan",
        file_url=file_url,
        file_size=len(content),
        width=width,
        height=height,
    )
    renders = [
        crud.create_render_job(db, floor_plan.id, RenderType.ISOMETRIC, build_isometric_prompt(project_name, 1))
    ]

    warnings: List[str] = []
    try:
        rooms = RoomDetector(settings).detect(file_url)
    except ConfigurationError as e:
        logging.warning(f"⚠️ Room detection skipped for project {project.id}: {e}")
        warnings.append(f"Room renders skipped: {e}")
        rooms = []
    except ServiceError as e:
        logging.error(f"❌ Room detection failed for project {project.id}: {e}")
        warnings.append(f"Room detection failed: {e}")
        rooms = []

    for room in rooms:
        renders.append(
            crud.create_render_job(
                db, floor_plan.id, RenderType.ROOM_WISE, build_room_prompt(room), room_name=room
            )
        )

    try:
        dispatch_renders([r.id for r in renders])
    except Exception as e:
        logging.error(f"Failed to submit render tasks to Celery: {e}")
        for render in renders:
            crud.update_render_job(
                db, render.id, RenderStatus.FAILED, error_message="Could not queue render job."
            )
        raise HTTPException(status_code=503, detail="Failed to start the render jobs.")

    logging.info(f"✨ Project {project.id} submitted with {len(renders)} render jobs")
    return UploadResponse(
        project_id=project.id,
        floor_plan_id=floor_plan.id,
        renders=[RenderResponse.model_validate(r) for r in renders],
        warnings=warnings,
    )


@router.get("/projects/", response_model=List[ProjectSummaryResponse])
def list_projects(limit: int = RECENT_PROJECTS_LIMIT, db: Session = Depends(get_db)):
    """Recent projects, newest first, with their render progress."""
    summaries = []
    for project in crud.list_recent_projects(db, limit):
        floor_plan = crud.get_floor_plan_by_project(db, project.id)
        renders = crud.list_renders_by_floor_plan(db, floor_plan.id) if floor_plan else []
        summaries.append(
            ProjectSummaryResponse(
                **ProjectResponse.model_validate(project).model_dump(),
                thumbnail_url=floor_plan.file_url if floor_plan else None,
                **crud.count_renders(renders),
            )
        )
    return summaries


@router.get("/projects/{project_id}", response_model=ProjectDetailResponse)
def get_project(project_id: str, db: Session = Depends(get_db)):
    project = crud.get_project(db, project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found.")
    return _project_detail(db, project)


@router.delete("/projects/{project_id}", status_code=204)
def delete_project(project_id: str, db: Session = Depends(get_db)):
    if not crud.delete_project(db, project_id):
        raise HTTPException(status_code=404, detail="Project not found.")
    return Response(status_code=204)


@router.get("/renders/{render_id}", response_model=RenderResponse)
def get_render(render_id: str, db: Session = Depends(get_db)):
    render = crud.get_render_job(db, render_id)
    if not render:
        raise HTTPException(status_code=404, detail="Render not found.")
    return render


@router.get("/renders/{render_id}/download")
def download_render(render_id: str, db: Session = Depends(get_db)):
    """Serves a completed render as a PNG attachment named after its project."""
    render = crud.get_render_job(db, render_id)
    if not render:
        raise HTTPException(status_code=404, detail="Render not found.")
    if render.status != RenderStatus.COMPLETED:
        raise HTTPException(status_code=409, detail=f"Render is {render.status}, nothing to download.")

    try:
        image = fetch_image(render.image_url)
    except DecodeError as e:
        raise HTTPException(status_code=500, detail=f"Stored image is unreadable: {e}")
    except ServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))

    filename = download_filename(render.floor_plan.project.name, render.label)
    return Response(
        content=image,
        media_type="image/png",
        headers={"Content-Disposition": content_disposition(filename)},
    )
