from __future__ import annotations

import io
import json
from pathlib import Path
from urllib.error import HTTPError, URLError

import pytest

from peinture_engine.providers import gitee, http
from peinture_engine.providers.base import (
    EDIT,
    FATAL_ERROR,
    GENERATE,
    QUOTA_EXHAUSTED,
    TEXT,
    TRANSIENT_ERROR,
    VIDEO_POLL,
    VIDEO_SUBMIT,
)
from peinture_engine.providers.a4f import A4FProvider
from peinture_engine.providers.gitee import GiteeProvider, parse_task_status
from peinture_engine.providers.http import classify_http_failure, error_message
from peinture_engine.providers.modelscope import ModelScopeProvider


class DummyResponse:
    def __init__(self, payload: dict) -> None:
        self._body = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "DummyResponse":
        return self

    def __exit__(self, *args) -> None:
        return None


def _capture(monkeypatch, payload: dict) -> list:
    requests = []

    def fake_urlopen(req, timeout=None):
        requests.append(req)
        return DummyResponse(payload)

    monkeypatch.setattr(http, "urlopen", fake_urlopen)
    return requests


def _raise(monkeypatch, exc: Exception) -> None:
    def fake_urlopen(req, timeout=None):
        raise exc

    monkeypatch.setattr(http, "urlopen", fake_urlopen)


@pytest.mark.parametrize(
    ("code", "body", "expected"),
    [
        (429, "", QUOTA_EXHAUSTED),
        (403, '{"error": "You have exceeded your free GPU quota"}', QUOTA_EXHAUSTED),
        (500, "", TRANSIENT_ERROR),
        (408, "", TRANSIENT_ERROR),
        (None, "", TRANSIENT_ERROR),
        (400, '{"message": "bad prompt"}', FATAL_ERROR),
        (401, "", FATAL_ERROR),
    ],
)
def test_classify_http_failure(code, body, expected) -> None:
    assert classify_http_failure(code, body) == expected


def test_error_message_prefers_payload_message() -> None:
    assert error_message('{"error": {"message": "nope"}}', "fallback") == "nope"
    assert error_message("plain text", "fallback") == "plain text"
    assert error_message("[]", "fallback") == "fallback"


def test_generate_posts_expected_body(monkeypatch) -> None:
    requests = _capture(monkeypatch, {"data": [{"url": "https://gitee.example/img.png"}]})
    provider = GiteeProvider()

    result = provider.issue(
        GENERATE,
        "tok",
        {"prompt": "a cat", "model": "z-image-turbo", "width": 1024, "height": 1024, "seed": 5, "steps": 9},
    )

    assert result.ok
    assert result.payload["url"] == "https://gitee.example/img.png"
    assert result.payload["seed"] == 5
    body = json.loads(requests[0].data.decode("utf-8"))
    assert body["model"] == "z-image-turbo"
    assert body["num_inference_steps"] == 9
    assert "guidance_scale" not in body
    assert requests[0].get_header("Authorization") == "Bearer tok"


def test_generate_without_url_is_fatal(monkeypatch) -> None:
    _capture(monkeypatch, {"data": []})
    result = GiteeProvider().issue(GENERATE, "tok", {"prompt": "a cat"})
    assert result.status == FATAL_ERROR


def test_http_quota_is_returned_not_raised(monkeypatch) -> None:
    body = io.BytesIO(b'{"message": "Daily quota exceeded"}')
    _raise(monkeypatch, HTTPError("https://ai.gitee.com", 403, "Forbidden", {}, body))

    result = GiteeProvider().issue(GENERATE, "tok", {"prompt": "a cat"})

    assert result.status == QUOTA_EXHAUSTED
    assert "Daily quota exceeded" in (result.error or "")


def test_network_failure_is_transient(monkeypatch) -> None:
    _raise(monkeypatch, URLError("timed out"))
    result = GiteeProvider().issue(GENERATE, "tok", {"prompt": "a cat"})
    assert result.status == TRANSIENT_ERROR


def test_missing_token_is_fatal() -> None:
    assert GiteeProvider().issue(GENERATE, None, {}).status == FATAL_ERROR


def test_video_submit_uses_multipart_and_predict(monkeypatch, tmp_path: Path) -> None:
    requests = _capture(monkeypatch, {"task_id": "task-77"})
    image = tmp_path / "frame.png"
    image.write_bytes(b"\x89PNG fake")

    result = GiteeProvider().issue(
        VIDEO_SUBMIT,
        "tok",
        {"image_url": str(image), "width": 1024, "height": 576, "duration": 3, "prompt": "wave", "model": "Wan"},
    )

    assert result.ok
    assert result.payload == {"task_id": "task-77", "predict": gitee.FIRST_POLL_DELAY_S}
    raw = requests[0].data
    assert b'name="num_frames"\r\n\r\n48' in raw
    assert b'name="height"\r\n\r\n720' in raw
    assert b'name="width"\r\n\r\n1280' in raw
    assert b"\x89PNG fake" in raw
    assert requests[0].get_header("Content-type").startswith("multipart/form-data; boundary=")


def test_video_submit_sends_remote_image_as_form_field(monkeypatch) -> None:
    requests = _capture(monkeypatch, {"task_id": "task-78"})

    result = GiteeProvider().issue(
        VIDEO_SUBMIT,
        "tok",
        {"image_url": "https://gitee.example/img.png", "width": 1024, "height": 1024, "model": "Wan"},
    )

    assert result.ok
    assert result.payload["task_id"] == "task-78"
    raw = requests[0].data
    assert b'name="image"\r\n\r\nhttps://gitee.example/img.png\r\n' in raw
    assert b"filename=" not in raw


def test_video_submit_missing_local_image_is_fatal(tmp_path: Path) -> None:
    result = GiteeProvider().issue(VIDEO_SUBMIT, "tok", {"image_url": str(tmp_path / "gone.png")})
    assert result.status == FATAL_ERROR


def test_video_poll_maps_task_status(monkeypatch) -> None:
    _capture(monkeypatch, {"status": "success", "output": {"file_url": "https://gitee.example/v.mp4"}})
    result = GiteeProvider().issue(VIDEO_POLL, "tok", {"task_id": "task-77"})
    assert result.payload == {"status": "success", "video_url": "https://gitee.example/v.mp4"}


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ({"status": "waiting"}, {"status": "processing"}),
        ({"status": "in_progress"}, {"status": "processing", "raw_status": "in_progress"}),
        ({"status": "failure", "output": {"error": "nsfw"}}, {"status": "failed", "error": "nsfw"}),
        ({"status": "cancelled"}, {"status": "failed", "error": "Video generation failed"}),
        ({"status": "success", "output": {}}, {"status": "failed", "error": "Video task finished without a file url"}),
    ],
)
def test_parse_task_status(payload, expected) -> None:
    assert parse_task_status(payload) == expected


def test_a4f_generate_picks_closest_size(monkeypatch) -> None:
    requests = _capture(monkeypatch, {"data": [{"url": "https://a4f.example/img.png"}]})
    provider = A4FProvider(base_url="https://a4f.example/v1/")

    result = provider.issue(GENERATE, "tok", {"prompt": "a cat", "model": "provider-8/imagen-4", "width": 576, "height": 1024})

    assert result.payload["url"] == "https://a4f.example/img.png"
    assert requests[0].full_url == "https://a4f.example/v1/images/generations"
    assert json.loads(requests[0].data.decode("utf-8"))["size"] == "1024x1792"


def test_a4f_text_returns_message_content(monkeypatch) -> None:
    _capture(monkeypatch, {"choices": [{"message": {"content": "a sleek red fox at dusk"}}]})

    result = A4FProvider(base_url="https://a4f.example/v1").issue(TEXT, "tok", {"prompt": "fox"})

    assert result.payload == {"text": "a sleek red fox at dusk"}


def test_a4f_unsupported_operation_is_fatal() -> None:
    result = A4FProvider(base_url="https://a4f.example/v1").issue(VIDEO_SUBMIT, "tok", {})
    assert result.status == FATAL_ERROR


def test_modelscope_generate_posts_size_and_guidance(monkeypatch) -> None:
    requests = _capture(monkeypatch, {"images": [{"url": "https://ms.example/img.png"}]})

    result = ModelScopeProvider().issue(
        GENERATE,
        "ms-tok",
        {"prompt": "a cat", "model": "black-forest-labs/FLUX.2-dev", "width": 1024, "height": 576, "guidance_scale": 3.5},
    )

    assert result.payload["url"] == "https://ms.example/img.png"
    assert requests[0].full_url == "https://api-inference.modelscope.cn/v1/images/generations"
    body = json.loads(requests[0].data.decode("utf-8"))
    assert body["size"] == "1024x576"
    assert body["guidance"] == 3.5
    assert body["steps"] == 9
    assert requests[0].get_header("Authorization") == "Bearer ms-tok"


def test_modelscope_edit_passes_remote_sources(monkeypatch) -> None:
    requests = _capture(monkeypatch, {"images": [{"url": "https://ms.example/edited.png"}]})

    result = ModelScopeProvider().issue(
        EDIT,
        "ms-tok",
        {"prompt": "make it blue", "model": "Qwen/Qwen-Image-Edit-2509", "images": ["https://cdn.example.com/a.png"]},
    )

    assert result.payload["url"] == "https://ms.example/edited.png"
    assert len(requests) == 1
    body = json.loads(requests[0].data.decode("utf-8"))
    assert body["image_url"] == ["https://cdn.example.com/a.png"]
    assert (body["steps"], body["guidance"]) == (16, 4)


def test_modelscope_arrearage_is_quota(monkeypatch) -> None:
    body = io.BytesIO(b'{"message": "Arrearage: the account balance is insufficient"}')
    _raise(monkeypatch, HTTPError("https://api-inference.modelscope.cn", 400, "Bad Request", {}, body))

    result = ModelScopeProvider().issue(TEXT, "ms-tok", {"prompt": "fox"})

    assert result.status == QUOTA_EXHAUSTED


def test_modelscope_requires_token() -> None:
    assert ModelScopeProvider().issue(GENERATE, None, {"prompt": "a cat"}).status == FATAL_ERROR
    assert ModelScopeProvider().issue(VIDEO_SUBMIT, "ms-tok", {}).status == FATAL_ERROR
