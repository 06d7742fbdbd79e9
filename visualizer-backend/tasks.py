# tasks.py

import logging
import traceback
from typing import Iterable, Optional

from celery import Celery, group
from celery.result import GroupResult
from sqlalchemy.orm import Session

import crud
from config import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    MAX_CONCURRENT_REQUESTS,
    RENDER_TASK_RATE_LIMIT,
    Settings,
)
from database import SessionLocal
from errors import InvalidTransitionError, VisualizerError
from models import RenderJob, RenderStatus, RenderType
from orchestrator import RenderOrchestrator

celery = Celery('tasks', broker=CELERY_BROKER_URL, backend=CELERY_RESULT_BACKEND)
celery.conf.update(worker_concurrency=MAX_CONCURRENT_REQUESTS, task_acks_late=True)
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")


def build_orchestrator(settings: Optional[Settings] = None) -> RenderOrchestrator:
    return RenderOrchestrator(settings or Settings.from_env())


def _write_outcome(db: Session, render_id: str, status: str, **fields) -> Optional[RenderJob]:
    try:
        return crud.update_render_job(db, render_id, status, **fields)
    except LookupError:
        logging.warning(f"⚠️ Render job {render_id} was deleted while running, dropping its {status} result")
    except InvalidTransitionError as e:
        logging.warning(f"⚠️ Render job {render_id} was settled elsewhere, dropping its {status} result: {e}")
    return None


def settle_render_job(db: Session, render_id: str, orchestrator: RenderOrchestrator) -> Optional[RenderJob]:
    """
    Run one render job through the orchestrator and write its terminal status.
    Every outcome, including unexpected crashes, settles the row. Returns None
    when the row is missing or disappears before its result is written.
    """
    render = crud.get_render_job(db, render_id)
    if render is None:
        logging.error(f"❌ Render job {render_id} not found")
        return None
    if render.status in RenderStatus.TERMINAL:
        logging.info(f"Render job {render_id} already {render.status}, skipping")
        return render

    floor_plan = render.floor_plan
    try:
        logging.info(f"📝 Worker received {render.render_type} job {render_id} ({render.label})")
        plan_image = orchestrator.image_fetcher(floor_plan.file_url)
        if render.render_type == RenderType.ISOMETRIC:
            outcome = orchestrator.render_isometric(plan_image, floor_plan.project.name)
        else:
            outcome = orchestrator.render_room(plan_image, render.room_name)
    except VisualizerError as e:
        logging.error(f"❌ Worker failed job {render_id}. Error: {e}")
        return _write_outcome(db, render_id, RenderStatus.FAILED, error_message=str(e))
    except Exception as e:
        logging.error(f"❌ Worker crashed on job {render_id}. Error: {e}")
        traceback.print_exc()
        return _write_outcome(db, render_id, RenderStatus.FAILED, error_message=f"Unexpected error: {e}")

    logging.info(f"✅ Worker finished job {render_id} from {outcome.source} after {outcome.attempts} attempts")
    return _write_outcome(db, render_id, RenderStatus.COMPLETED, image_url=outcome.image_url)


@celery.task(rate_limit=RENDER_TASK_RATE_LIMIT)
def render_job_task(render_id: str):
    """Background task that settles one render row in the database."""
    db = SessionLocal()
    try:
        render = settle_render_job(db, render_id, build_orchestrator())
        return render.status if render else None
    finally:
        db.close()


def dispatch_renders(render_ids: Iterable[str]) -> GroupResult:
    """Queue one task per render job; the GroupResult joins them."""
    result = group(render_job_task.s(render_id) for render_id in render_ids).apply_async()
    logging.info(f"✨ Dispatched render group {result.id}")
    return result
