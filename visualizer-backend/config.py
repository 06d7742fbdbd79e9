"""
Configuration file for the Floor-Plan Visualizer backend.
Contains all global constants, render policies and prompt engineering templates.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

# --- Constants ---
PROJECT_ROOT = os.getcwd()
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{os.path.join(PROJECT_ROOT, 'visualizer.db')}")
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))

OPENAI_API_BASE = os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")
IMAGE_MODEL = os.getenv("IMAGE_MODEL", "gpt-image-1")
VISION_MODEL = os.getenv("VISION_MODEL", "gpt-4o")
IMAGE_SIZE = "1536x1024"
IMAGE_QUALITY = "high"

GENERATION_TIMEOUT_SECONDS = 120
EVALUATION_TIMEOUT_SECONDS = 60

# Outbound request cap per process, and per-worker Celery task rate.
MAX_CONCURRENT_REQUESTS = int(os.getenv("MAX_CONCURRENT_REQUESTS", "4"))
RENDER_TASK_RATE_LIMIT = os.getenv("RENDER_TASK_RATE_LIMIT", "10/m")

RECENT_PROJECTS_LIMIT = 10

# --- Projection constants ---
SKEW_X = -0.58
SCALE_Y = 0.68
PROJECTION_PADDING = 40
EXTRUSION_LAYERS = 28
EXTRUSION_STEP = 1
EXTRUSION_MAX_OPACITY = 0.18

ROOM_RENDER_MIN_SCORE = 60

LENIENT = "lenient"
STRICT = "strict"


@dataclass(frozen=True)
class RenderPolicy:
    """Acceptance and fallback rules for the isometric retry loop."""
    accept_threshold: int
    require_room_count_match: bool
    max_attempts: int
    fallback: str
    composite_on_accept: bool
    room_min_score: int = ROOM_RENDER_MIN_SCORE


# Default: always produce an image. Accept at >=90 with matching room counts,
# fall back to the deterministic projection when every attempt misses.
DEFAULT_RENDER_POLICY = RenderPolicy(
    accept_threshold=90,
    require_room_count_match=True,
    max_attempts=4,
    fallback=LENIENT,
    composite_on_accept=True,
)

# Fail fast: accept at >=70 on the faithfulness flag alone, fail the job on exhaustion.
STRICT_RENDER_POLICY = RenderPolicy(
    accept_threshold=70,
    require_room_count_match=False,
    max_attempts=2,
    fallback=STRICT,
    composite_on_accept=False,
)

RENDER_POLICIES = {LENIENT: DEFAULT_RENDER_POLICY, STRICT: STRICT_RENDER_POLICY}


@dataclass
class Settings:
    openai_api_key: Optional[str] = None
    api_base: str = OPENAI_API_BASE
    image_model: str = IMAGE_MODEL
    vision_model: str = VISION_MODEL
    image_size: str = IMAGE_SIZE
    image_quality: str = IMAGE_QUALITY
    generation_timeout: float = GENERATION_TIMEOUT_SECONDS
    evaluation_timeout: float = EVALUATION_TIMEOUT_SECONDS
    policy: RenderPolicy = field(default_factory=lambda: DEFAULT_RENDER_POLICY)

    @property
    def has_credential(self) -> bool:
        return bool(self.openai_api_key)

    @classmethod
    def from_env(cls) -> "Settings":
        # Keys pasted into dashboards often carry a trailing newline
        key = (os.getenv("OPENAI_API_KEY") or "").strip() or None
        policy_name = os.getenv("RENDER_POLICY", LENIENT).strip().lower()
        return cls(
            openai_api_key=key,
            policy=RENDER_POLICIES.get(policy_name, DEFAULT_RENDER_POLICY),
        )


# --- Prompt Engineering Section ---

ISOMETRIC_PROMPT_TEMPLATE = """Turn the supplied isometric floor-plan projection into a finished 3D isometric dollhouse-style render for "{project_name}".

Hard constraints (must follow):
- The supplied image is already the exact isometric projection of the plan. Keep every wall, partition and opening where it is.
- Keep room count and adjacency exactly as shown.
- Do NOT add or remove rooms, corridors, stairs, doors, windows, or structural elements.
- Do NOT hallucinate unseen areas. If unclear, leave the area simple and neutral instead of inventing details.
- Only extrude walls upward and apply materials; never move a boundary.

Rendering style:
- Keep the same isometric camera angle as the supplied projection.
- Realistic but restrained materials and lighting, professional architectural visualization.
- Faithfulness to the plan first, aesthetics second."""

ISOMETRIC_RETRY_INSTRUCTION = """Retry pass: the previous render drifted from the plan. Preserve every boundary and partition exactly, keep the room polygons, relative wall lengths and opening positions. Drop decoration, furniture and props if needed; geometric accuracy is the only priority."""

ROOM_PROMPT_TEMPLATE = """Generate a room-wise 3D interior render for "{room_name}" using the uploaded 2D floor plan as source geometry.
{room_context}
Hard constraints (must follow):
- Focus only on the specified "{room_name}" from the plan.
- Keep the room shape, entry/exit position, and proportions aligned to the source plan.
- Do NOT invent extra rooms or alter the plan layout.
- Do NOT add architectural elements that are not supported by the source plan.
- If this room is ambiguous in the plan, keep the render minimal and neutral rather than guessing.

Rendering style:
- Professional architectural interior visualization.
- Eye-level perspective, realistic materials and lighting.
- Prioritize faithfulness to the uploaded plan over decorative creativity."""

EVALUATOR_SYSTEM_PROMPT = "You are a strict architectural geometry reviewer. Compare source floor plan and generated render only for layout faithfulness."

EVALUATOR_USER_TEMPLATE = """Compare these two images:
1) Source floor plan
2) Generated {render_kind} 3D render

Return JSON with:
- is_faithful (boolean): true only if room structure, shape, boundaries, and adjacency are preserved
- score (0-100): geometric faithfulness score
- reason (string): short reason
- source_room_count (integer): number of rooms in the source plan
- generated_room_count (integer): number of rooms visible in the render

Fail if rooms are added/removed, room shape changes significantly, or adjacency changes."""

ROOM_DETECTION_PROMPT = "Analyze this uploaded 2D floor plan and identify only clearly visible and clearly labeled room types. Do not invent hidden rooms. Return ONLY a JSON array of unique room names, nothing else."

DEFAULT_PROJECT_DESCRIPTION = "AI-generated 3D visualization"
