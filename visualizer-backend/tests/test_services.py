# tests/test_services.py

import json
import os
import sys
import threading
from unittest.mock import patch

import pytest
import requests

# Add the parent directory to the Python path so we can import from it
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Settings
from errors import ConfigurationError, DecodeError, ServiceError, ServiceTimeoutError
from schemas import NO_REASON
from services import FaithfulnessEvaluator, GenerationClient, RoomDetector, fetch_image
from fakes import make_response, solid_data_url, solid_png

SETTINGS = Settings(openai_api_key="sk-test")
NO_KEY = Settings(openai_api_key=None)


def chat_body(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


# --- GenerationClient ---

def test_generation_returns_data_url_for_inline_payload():
    with patch("services.requests.post", return_value=make_response(json_body={"data": [{"b64_json": "QUJD"}]})) as post:
        result = GenerationClient(SETTINGS).generate(b"png-bytes", "style it")

    assert result == "data:image/png;base64,QUJD"
    kwargs = post.call_args.kwargs
    assert post.call_args.args[0].endswith("/images/edits")
    assert kwargs["timeout"] == 120
    assert kwargs["data"]["prompt"] == "style it"
    assert kwargs["data"]["size"] == "1536x1024"
    assert kwargs["files"]["image"][1] == b"png-bytes"
    assert kwargs["headers"]["Authorization"] == "Bearer sk-test"


def test_generation_returns_remote_url_and_honours_hints():
    body = {"data": [{"url": "https://cdn.example.com/render.png"}]}
    with patch("services.requests.post", return_value=make_response(json_body=body)) as post:
        result = GenerationClient(SETTINGS).generate(b"x", "p", size_hint="1024x1024", quality_hint="low")

    assert result == "https://cdn.example.com/render.png"
    assert post.call_args.kwargs["data"]["size"] == "1024x1024"
    assert post.call_args.kwargs["data"]["quality"] == "low"


def test_generation_carries_upstream_error_message():
    body = {"error": {"message": "Invalid image file"}}
    with patch("services.requests.post", return_value=make_response(400, json_body=body)):
        with pytest.raises(ServiceError, match="Invalid image file") as exc_info:
            GenerationClient(SETTINGS).generate(b"x", "p")

    assert exc_info.value.status_code == 400
    assert not isinstance(exc_info.value, ServiceTimeoutError)


def test_generation_timeout_is_distinct_from_transport_failure():
    with patch("services.requests.post", side_effect=requests.Timeout("slow")):
        with pytest.raises(ServiceTimeoutError):
            GenerationClient(SETTINGS).generate(b"x", "p")

    with patch("services.requests.post", side_effect=requests.ConnectionError("refused")):
        with pytest.raises(ServiceError) as exc_info:
            GenerationClient(SETTINGS).generate(b"x", "p")
    assert not isinstance(exc_info.value, ServiceTimeoutError)


def test_generation_times_out_waiting_for_a_request_slot():
    slots = threading.BoundedSemaphore(1)
    slots.acquire()
    settings = Settings(openai_api_key="sk-test", generation_timeout=0.01)

    with patch("services._outbound_slots", slots), patch("services.requests.post") as post:
        with pytest.raises(ServiceTimeoutError):
            GenerationClient(settings).generate(b"x", "p")
    post.assert_not_called()


def test_request_slot_is_released_after_failures():
    slots = threading.BoundedSemaphore(1)

    with patch("services._outbound_slots", slots):
        with patch("services.requests.post", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(ServiceError):
                GenerationClient(SETTINGS).generate(b"x", "p")
        with patch("services.requests.post", return_value=make_response(500, json_body={})):
            with pytest.raises(ServiceError):
                GenerationClient(SETTINGS).generate(b"x", "p")

    assert slots.acquire(blocking=False)


def test_generation_without_image_in_response_fails():
    with patch("services.requests.post", return_value=make_response(json_body={"data": []})):
        with pytest.raises(ServiceError, match="No generated image returned"):
            GenerationClient(SETTINGS).generate(b"x", "p")


def test_generation_without_credential_never_calls_network():
    with patch("services.requests.post") as post:
        with pytest.raises(ConfigurationError):
            GenerationClient(NO_KEY).generate(b"x", "p")
    post.assert_not_called()


# --- FaithfulnessEvaluator ---

def test_evaluator_parses_structured_verdict():
    content = json.dumps({
        "is_faithful": True, "score": 88, "reason": "matches",
        "source_room_count": 6, "generated_room_count": 6,
    })
    with patch("services.requests.post", return_value=make_response(json_body=chat_body(content))) as post:
        result = FaithfulnessEvaluator(SETTINGS).evaluate("data:a", "data:b", "isometric")

    assert result.is_faithful is True
    assert result.score == 88
    assert result.reason == "matches"
    assert result.room_counts_match
    payload = post.call_args.kwargs["json"]
    assert post.call_args.kwargs["timeout"] == 60
    assert payload["response_format"] == {"type": "json_object"}
    assert "isometric" in payload["messages"][1]["content"][0]["text"]
    assert payload["messages"][1]["content"][2]["image_url"]["url"] == "data:b"


def test_evaluator_defaults_on_empty_body():
    with patch("services.requests.post", return_value=make_response(text="")):
        result = FaithfulnessEvaluator(SETTINGS).evaluate("data:a", "data:b", "isometric")

    assert (result.is_faithful, result.score, result.reason) == (False, 0, NO_REASON)


@pytest.mark.parametrize("body", [
    chat_body(""),
    chat_body(None),
    chat_body("not json at all"),
    chat_body("[1, 2, 3]"),
    chat_body("{}"),
    {"choices": []},
    {"unexpected": "shape"},
])
def test_evaluator_defaults_on_malformed_verdict(body):
    with patch("services.requests.post", return_value=make_response(json_body=body)):
        result = FaithfulnessEvaluator(SETTINGS).evaluate("data:a", "data:b", "room_wise")

    assert (result.is_faithful, result.score, result.reason) == (False, 0, NO_REASON)


def test_evaluator_coerces_loose_fields():
    content = json.dumps({"is_faithful": "true", "score": "87.6", "reason": "  ok  "})
    with patch("services.requests.post", return_value=make_response(json_body=chat_body(content))):
        result = FaithfulnessEvaluator(SETTINGS).evaluate("data:a", "data:b", "isometric")
    assert (result.is_faithful, result.score, result.reason) == (True, 88, "ok")

    content = json.dumps({"is_faithful": 1, "score": 250})
    with patch("services.requests.post", return_value=make_response(json_body=chat_body(content))):
        result = FaithfulnessEvaluator(SETTINGS).evaluate("data:a", "data:b", "isometric")
    assert (result.is_faithful, result.score, result.reason) == (True, 100, NO_REASON)


def test_evaluator_non_json_envelope_is_a_service_error():
    with patch("services.requests.post", return_value=make_response(text="<html>gateway</html>")):
        with pytest.raises(ServiceError):
            FaithfulnessEvaluator(SETTINGS).evaluate("data:a", "data:b", "isometric")


def test_evaluator_http_failure_is_a_service_error():
    with patch("services.requests.post", return_value=make_response(500, text="upstream exploded")):
        with pytest.raises(ServiceError, match="upstream exploded"):
            FaithfulnessEvaluator(SETTINGS).evaluate("data:a", "data:b", "isometric")


def test_evaluator_timeout():
    with patch("services.requests.post", side_effect=requests.ReadTimeout("slow")):
        with pytest.raises(ServiceTimeoutError):
            FaithfulnessEvaluator(SETTINGS).evaluate("data:a", "data:b", "isometric")


# --- RoomDetector ---

def test_room_detector_strips_fences_and_deduplicates():
    content = '```json\n["Kitchen", " Living Room ", "Kitchen", "", 42, "Bedroom"]\n```'
    with patch("services.requests.post", return_value=make_response(json_body=chat_body(content))) as post:
        rooms = RoomDetector(SETTINGS).detect("data:plan")

    assert rooms == ["Kitchen", "Living Room", "Bedroom"]
    assert post.call_args.kwargs["timeout"] == 60


@pytest.mark.parametrize("content", ['{"rooms": ["Kitchen"]}', "I see a kitchen.", ""])
def test_room_detector_returns_empty_list_for_unusable_answers(content):
    with patch("services.requests.post", return_value=make_response(json_body=chat_body(content))):
        assert RoomDetector(SETTINGS).detect("data:plan") == []


def test_room_detector_without_credential_never_calls_network():
    with patch("services.requests.post") as post:
        with pytest.raises(ConfigurationError):
            RoomDetector(NO_KEY).detect("data:plan")
    post.assert_not_called()


# --- fetch_image ---

def test_fetch_image_decodes_data_urls_without_network():
    png = solid_png((5, 5, 5))
    with patch("services.requests.get") as get:
        assert fetch_image(solid_data_url((5, 5, 5))) == png
    get.assert_not_called()


def test_fetch_image_downloads_remote_urls():
    response = make_response(text="raw-bytes")
    with patch("services.requests.get", return_value=response) as get:
        assert fetch_image("https://cdn.example.com/r.png") == b"raw-bytes"
    assert get.call_args.kwargs["timeout"] == 60


def test_fetch_image_rejects_unknown_schemes():
    with pytest.raises(DecodeError):
        fetch_image("ftp://example.com/r.png")
