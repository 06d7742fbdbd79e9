"""
Service classes for the Floor-Plan Visualizer.
Contains the clients for the external image-generation and vision endpoints:
GenerationClient, FaithfulnessEvaluator and RoomDetector.
"""

import re
import json
import logging
import threading
from typing import List, Optional

import requests
from pydantic import ValidationError

from config import (
    EVALUATION_TIMEOUT_SECONDS,
    EVALUATOR_SYSTEM_PROMPT,
    EVALUATOR_USER_TEMPLATE,
    MAX_CONCURRENT_REQUESTS,
    ROOM_DETECTION_PROMPT,
    Settings,
)
from errors import ConfigurationError, DecodeError, ParseError, ServiceError, ServiceTimeoutError
from projector import parse_data_url
from schemas import ChatCompletionResponse, FaithfulnessResult, ImageEditResponse

# Shared by every client in the process.
_outbound_slots = threading.BoundedSemaphore(MAX_CONCURRENT_REQUESTS)


def _upstream_message(response: requests.Response, fallback: str) -> str:
    try:
        return response.json().get("error", {}).get("message") or fallback
    except (ValueError, AttributeError):
        return response.text.strip() or fallback


def fetch_image(reference: str, timeout: float = EVALUATION_TIMEOUT_SECONDS) -> bytes:
    """Resolve an image reference (data URI or remote URL) to raw bytes."""
    if reference.startswith("data:"):
        return parse_data_url(reference)
    if not reference.startswith(("http://", "https://")):
        raise DecodeError("Unsupported image reference.")
    try:
        response = requests.get(reference, timeout=timeout)
    except requests.Timeout:
        raise ServiceTimeoutError("Request timed out while fetching image.")
    except requests.RequestException as e:
        raise ServiceError(f"Could not fetch image: {e}")
    if not response.ok:
        raise ServiceError(f"Could not fetch image (HTTP {response.status_code}).", response.status_code)
    return response.content


class OpenAIClient:
    """Base class: credential check, bounded concurrency and error normalization."""

    failure_message = "Request to the image service failed"

    def __init__(self, settings: Settings):
        self.settings = settings

    def _require_credential(self):
        if not self.settings.has_credential:
            raise ConfigurationError("OpenAI API key is not configured")

    def _post(self, path: str, timeout: float, **kwargs) -> requests.Response:
        """
        POST under the shared concurrency bound. Waiting for a free slot counts
        against the timeout; the requests timeout itself is per socket operation.
        """
        self._require_credential()
        url = f"{self.settings.api_base.rstrip('/')}/{path.lstrip('/')}"
        headers = {"Authorization": f"Bearer {self.settings.openai_api_key}"}
        if not _outbound_slots.acquire(timeout=timeout):
            logging.error(f"❌ {path} waited {timeout}s for a free request slot")
            raise ServiceTimeoutError(f"Request timed out after {timeout:g}s. Please try again.")
        try:
            response = requests.post(url, headers=headers, timeout=timeout, **kwargs)
        except requests.Timeout:
            logging.error(f"❌ {path} timed out after {timeout}s")
            raise ServiceTimeoutError(f"Request timed out after {timeout:g}s. Please try again.")
        except requests.RequestException as e:
            raise ServiceError(f"Could not connect to the image service: {e}")
        finally:
            _outbound_slots.release()

        if not response.ok:
            message = _upstream_message(response, self.failure_message)
            logging.error(f"❌ {path} returned HTTP {response.status_code}: {message}")
            raise ServiceError(message, response.status_code)
        return response

    def _chat(self, messages: list, timeout: float, **options) -> requests.Response:
        payload = {"model": self.settings.vision_model, "messages": messages}
        payload.update(options)
        return self._post("chat/completions", timeout, json=payload)


class GenerationClient(OpenAIClient):
    """Requests an edited image derived from a source image and an instruction."""

    failure_message = "Failed to generate image from floor plan"

    def generate(
        self,
        source_image: bytes,
        prompt: str,
        size_hint: Optional[str] = None,
        quality_hint: Optional[str] = None,
        mime_type: str = "image/png",
    ) -> str:
        data = {
            "model": self.settings.image_model,
            "prompt": prompt,
            "size": size_hint or self.settings.image_size,
            "quality": quality_hint or self.settings.image_quality,
        }
        extension = "jpg" if "jpeg" in mime_type else "png"
        files = {"image": (f"floor-plan.{extension}", source_image, mime_type)}
        logging.info(f"🎨 Requesting image edit from {self.settings.image_model}")
        response = self._post("images/edits", self.settings.generation_timeout, data=data, files=files)

        try:
            parsed = ImageEditResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ServiceError(f"Unreadable response from image service: {e}")

        generated = parsed.data[0] if parsed.data else None
        if generated and generated.b64_json:
            return f"data:image/png;base64,{generated.b64_json}"
        if generated and generated.url:
            return generated.url
        raise ServiceError("No generated image returned")


class FaithfulnessEvaluator(OpenAIClient):
    """Scores how well a generated render preserves the room layout of its source."""

    failure_message = "Failed to validate render faithfulness"

    def evaluate(self, source_image: str, generated_image: str, render_kind: str) -> FaithfulnessResult:
        messages = [
            {"role": "system", "content": EVALUATOR_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": EVALUATOR_USER_TEMPLATE.format(render_kind=render_kind)},
                    {"type": "image_url", "image_url": {"url": source_image}},
                    {"type": "image_url", "image_url": {"url": generated_image}},
                ],
            },
        ]
        response = self._chat(
            messages,
            self.settings.evaluation_timeout,
            response_format={"type": "json_object"},
            max_tokens=250,
        )

        if not response.content.strip():
            logging.warning("⚠️ Validator returned an empty body, using default verdict")
            return FaithfulnessResult()
        try:
            envelope = response.json()
        except ValueError as e:
            raise ServiceError(f"Unparseable response from validator: {e}")

        try:
            return self.parse_verdict(envelope)
        except ParseError as e:
            logging.warning(f"⚠️ Malformed validator verdict, using default: {e}")
            return FaithfulnessResult()

    @staticmethod
    def parse_verdict(envelope) -> FaithfulnessResult:
        try:
            content = ChatCompletionResponse.model_validate(envelope).first_content()
        except ValidationError as e:
            raise ParseError(f"Unexpected completion shape: {e}")
        if not content.strip():
            return FaithfulnessResult()
        try:
            fields = json.loads(content)
        except json.JSONDecodeError as e:
            raise ParseError(f"Verdict is not JSON: {e}")
        if not isinstance(fields, dict):
            raise ParseError("Verdict is not a JSON object")
        try:
            return FaithfulnessResult.model_validate(fields)
        except ValidationError as e:
            raise ParseError(str(e))


class RoomDetector(OpenAIClient):
    """Lists the clearly labelled rooms of an uploaded floor plan."""

    failure_message = "Failed to analyze floor plan"

    @staticmethod
    def _strip_markdown(text: str) -> str:
        return re.sub(r"```(?:json)?\s*|\s*```", "", text.strip()).strip()

    @classmethod
    def parse_rooms(cls, content: str) -> List[str]:
        try:
            rooms = json.loads(cls._strip_markdown(content))
        except json.JSONDecodeError:
            logging.warning(f"⚠️ Room list is not valid JSON: {content[:200]!r}")
            return []
        if not isinstance(rooms, list):
            return []

        unique = []
        for room in rooms:
            name = room.strip() if isinstance(room, str) else ""
            if name and name not in unique:
                unique.append(name)
        return unique

    def detect(self, plan_image: str) -> List[str]:
        self._require_credential()
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": ROOM_DETECTION_PROMPT},
                    {"type": "image_url", "image_url": {"url": plan_image}},
                ],
            }
        ]
        response = self._chat(messages, self.settings.evaluation_timeout, max_tokens=500)
        try:
            content = ChatCompletionResponse.model_validate(response.json()).first_content()
        except (ValueError, ValidationError) as e:
            raise ServiceError(f"Unparseable response from room detection: {e}")

        rooms = self.parse_rooms(content)
        logging.info(f"🏠 Detected {len(rooms)} rooms: {rooms}")
        return rooms
