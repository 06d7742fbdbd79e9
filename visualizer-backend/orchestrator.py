"""
Render orchestration: decides which image a render job settles with.

Isometric jobs run a best-of-N loop against the generator, scored by the
faithfulness evaluator and anchored on the deterministic projection. Room jobs
get a single threshold-gated attempt. The orchestrator never touches the job
store; callers settle the row with whatever it returns or raises.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from config import (
    ISOMETRIC_PROMPT_TEMPLATE,
    ISOMETRIC_RETRY_INSTRUCTION,
    ROOM_PROMPT_TEMPLATE,
    STRICT,
    Settings,
)
from errors import ConfigurationError, DecodeError, LayoutMismatchError, ServiceError
from models import RenderType
from projector import fit_to_canvas, project, read_dimensions, sniff_mime_type, to_data_url
from schemas import FaithfulnessResult
from services import FaithfulnessEvaluator, GenerationClient, fetch_image

GENERATED = "generated"
PROJECTION = "projection"


@dataclass
class RenderOutcome:
    image_url: str
    source: str  # "generated" | "projection"
    attempts: int = 0
    score: Optional[int] = None
    reason: Optional[str] = None


@dataclass
class _Candidate:
    image_url: str
    score: int
    reason: str


def build_isometric_prompt(project_name: str, attempt: int) -> str:
    prompt = ISOMETRIC_PROMPT_TEMPLATE.format(project_name=project_name)
    if attempt > 1:
        prompt = f"{prompt}\n\n{ISOMETRIC_RETRY_INSTRUCTION}"
    return prompt


def build_room_prompt(room_name: str, room_description: Optional[str] = None) -> str:
    room_context = f"Room context: {room_description}.\n" if room_description else ""
    return ROOM_PROMPT_TEMPLATE.format(room_name=room_name, room_context=room_context)


class RenderOrchestrator:
    """Runs one render job to an accepted image, a fallback, or an error."""

    def __init__(
        self,
        settings: Settings,
        generator: Optional[GenerationClient] = None,
        evaluator: Optional[FaithfulnessEvaluator] = None,
        image_fetcher: Callable[[str], bytes] = fetch_image,
    ):
        self.settings = settings
        self.policy = settings.policy
        self.generator = generator or GenerationClient(settings)
        self.evaluator = evaluator or FaithfulnessEvaluator(settings)
        self.image_fetcher = image_fetcher

    def _accepts(self, verdict: FaithfulnessResult) -> bool:
        if not verdict.is_faithful or verdict.score < self.policy.accept_threshold:
            return False
        if self.policy.require_room_count_match and not verdict.room_counts_match:
            return False
        return True

    def _composite(self, image_url: str, projection: bytes) -> str:
        try:
            styled = self.image_fetcher(image_url)
            return to_data_url(fit_to_canvas(styled, read_dimensions(projection)))
        except (ServiceError, DecodeError) as e:
            logging.warning(f"⚠️ Could not composite accepted render, keeping it as returned: {e}")
            return image_url

    def render_isometric(self, plan_image: bytes, project_name: str) -> RenderOutcome:
        projection = project(plan_image)
        projection_url = to_data_url(projection)

        if not self.settings.has_credential:
            logging.warning("⚠️ No API key configured, settling isometric job with the deterministic projection")
            return RenderOutcome(projection_url, PROJECTION)

        best: Optional[_Candidate] = None
        last_error: Optional[ServiceError] = None
        attempts = 0
        for attempt in range(1, self.policy.max_attempts + 1):
            attempts = attempt
            prompt = build_isometric_prompt(project_name, attempt)
            try:
                candidate = self.generator.generate(projection, prompt)
                verdict = self.evaluator.evaluate(projection_url, candidate, RenderType.ISOMETRIC)
            except ServiceError as e:
                logging.warning(f"⚠️ Isometric attempt {attempt}/{self.policy.max_attempts} failed: {e}")
                last_error = e
                continue

            logging.info(
                f"🔍 Isometric attempt {attempt}/{self.policy.max_attempts}: "
                f"score={verdict.score} faithful={verdict.is_faithful}"
            )
            if best is None or verdict.score > best.score:
                best = _Candidate(candidate, verdict.score, verdict.reason)

            if self._accepts(verdict):
                image_url = candidate
                if self.policy.composite_on_accept:
                    image_url = self._composite(candidate, projection)
                logging.info(f"✅ Accepted isometric render on attempt {attempt} ({verdict.score}/100)")
                return RenderOutcome(image_url, GENERATED, attempt, verdict.score, verdict.reason)

        if self.policy.fallback == STRICT:
            if best is None:
                raise last_error
            raise LayoutMismatchError(best.score, best.reason)

        logging.warning(
            f"⚠️ No isometric render accepted after {attempts} attempts, "
            f"falling back to the deterministic projection"
        )
        return RenderOutcome(
            projection_url,
            PROJECTION,
            attempts,
            best.score if best else None,
            best.reason if best else None,
        )

    def render_room(self, plan_image: bytes, room_name: str, room_description: Optional[str] = None) -> RenderOutcome:
        if not self.settings.has_credential:
            raise ConfigurationError("OpenAI API key is not configured")

        mime_type = sniff_mime_type(plan_image)
        plan_url = to_data_url(plan_image, mime_type)
        prompt = build_room_prompt(room_name, room_description)

        candidate = self.generator.generate(plan_image, prompt, mime_type=mime_type)
        verdict = self.evaluator.evaluate(plan_url, candidate, RenderType.ROOM_WISE)
        logging.info(f"🔍 Room render '{room_name}': score={verdict.score}")

        if verdict.score < self.policy.room_min_score:
            raise LayoutMismatchError(
                verdict.score, verdict.reason, label="Room render is too different from source layout"
            )
        return RenderOutcome(candidate, GENERATED, 1, verdict.score, verdict.reason)
