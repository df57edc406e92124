"""Hugging Face provider.

Image, upscale and video models run on public Gradio Spaces through the
queue API: join the queue, then read the ``process_completed`` message from
the session's event stream. Spaces accept anonymous calls on the shared
public quota; a token only raises the limit.
"""

from __future__ import annotations

import mimetypes
import random
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

from .base import (
    EDIT,
    FATAL_ERROR,
    GENERATE,
    QUOTA_EXHAUSTED,
    TEXT,
    TRANSIENT_ERROR,
    UPSCALE,
    VIDEO_SUBMIT,
    ProviderResult,
    unsupported,
)
from .gitee import VIDEO_NEGATIVE_PROMPT
from .http import (
    HttpFailure,
    bearer_headers,
    get_bytes,
    is_quota_message,
    post_json,
    post_multipart,
    stream_events,
)


TEXT_URL = "https://text.pollinations.ai/openai"
QWEN_IMAGE_EDIT_URL = "https://linoyts-qwen-image-edit-2509-fast.hf.space"


@dataclass(frozen=True)
class GradioEndpoint:
    base_url: str
    fn_index: int
    trigger_id: int


GENERATE_ENDPOINTS = {
    "z-image-turbo": GradioEndpoint("https://luca115-z-image-turbo.hf.space", 1, 16),
    "qwen-image-fast": GradioEndpoint("https://mcp-tools-qwen-image-fast.hf.space", 1, 6),
    "ovis-image": GradioEndpoint("https://aidc-ai-ovis-image-7b.hf.space", 2, 5),
    "flux-1-schnell": GradioEndpoint("https://black-forest-labs-flux-1-schnell.hf.space", 2, 5),
}
EDIT_ENDPOINT = GradioEndpoint(QWEN_IMAGE_EDIT_URL, 0, 12)
UPSCALE_ENDPOINT = GradioEndpoint("https://tuan2308-upscaler.hf.space", 1, 17)
VIDEO_ENDPOINT = GradioEndpoint("https://fradeck619-wan2-2-fp8da-aoti-faster.hf.space", 0, 16)

_DEFAULT_STEPS = {"z-image-turbo": 9, "qwen-image-fast": 8, "ovis-image": 24, "flux-1-schnell": 4}
_QWEN_SEED_PREFIX = "Seed used for generation: "


def _file_data(path: str) -> dict[str, Any]:
    return {"path": path, "meta": {"_type": "gradio.FileData"}}


def upload_file(base_url: str, source: str, token: str | None, timeout_s: float) -> str:
    """Upload a local path or remote url to a Space; return the Space-side file path."""
    parsed = urlparse(source)
    name = Path(parsed.path).name or "image.png"
    if parsed.scheme in {"http", "https"}:
        data = get_bytes(source, {}, timeout_s)
    else:
        path = Path(source)
        if not path.is_file():
            raise HttpFailure(ProviderResult.failure(FATAL_ERROR, f"Image source not found: {source}"))
        data = path.read_bytes()
    mime = mimetypes.guess_type(name)[0] or "image/png"
    reply = post_multipart(
        f"{base_url}/gradio_api/upload",
        {},
        [("files", name, data, mime)],
        bearer_headers(token, None),
        timeout_s,
    )
    items = reply.get("data")
    if not isinstance(items, list) or not items:
        raise HttpFailure(ProviderResult.failure(FATAL_ERROR, "Invalid upload response from Gradio."))
    return str(items[0])


def run_gradio_task(
    endpoint: GradioEndpoint,
    data: list[Any],
    token: str | None,
    timeout_s: float,
) -> dict[str, Any]:
    session_hash = uuid.uuid4().hex[:12]
    payload = {
        "data": data,
        "fn_index": endpoint.fn_index,
        "trigger_id": endpoint.trigger_id,
        "session_hash": session_hash,
        "event_data": None,
    }
    post_json(f"{endpoint.base_url}/gradio_api/queue/join", payload, bearer_headers(token), timeout_s)
    stream_url = f"{endpoint.base_url}/gradio_api/queue/data?session_hash={session_hash}"
    for message in stream_events(stream_url, bearer_headers(token, None), timeout_s):
        if message.get("msg") != "process_completed":
            continue
        output = message.get("output") if isinstance(message.get("output"), dict) else {}
        if message.get("success"):
            return output
        detail = output.get(" ") or output.get("error") or ""
        title = message.get("title") or output.get("title") or "Gradio task process failed"
        text = f"{title}: {detail}" if detail else str(title)
        status = QUOTA_EXHAUSTED if is_quota_message(text) else FATAL_ERROR
        raise HttpFailure(ProviderResult.failure(status, text))
    raise HttpFailure(ProviderResult.failure(TRANSIENT_ERROR, "Gradio stream closed without result."))


def _first_url(output: Mapping[str, Any]) -> str | None:
    data = output.get("data")
    if not isinstance(data, list) or not data:
        return None
    first = data[0]
    if isinstance(first, dict):
        return first.get("url")
    return None


class HuggingFaceProvider:
    name = "huggingface"
    requires_token = False

    def __init__(self, request_timeout: float = 300.0) -> None:
        self.request_timeout = request_timeout

    def issue(self, operation: str, token: str | None, params: Mapping[str, Any]) -> ProviderResult:
        handlers = {
            GENERATE: self._generate,
            EDIT: self._edit,
            UPSCALE: self._upscale,
            TEXT: self._text,
            VIDEO_SUBMIT: self._submit_video,
        }
        handler = handlers.get(operation)
        if handler is None:
            return unsupported(self.name, operation)
        try:
            return handler(token, params)
        except HttpFailure as exc:
            return exc.result

    def _generate(self, token: str | None, params: Mapping[str, Any]) -> ProviderResult:
        model = str(params.get("model") or "z-image-turbo")
        endpoint = GENERATE_ENDPOINTS.get(model)
        if endpoint is None:
            return ProviderResult.failure(FATAL_ERROR, f"Unknown Hugging Face model '{model}'.")
        prompt = params.get("prompt") or ""
        width = int(params.get("width") or 1024)
        height = int(params.get("height") or 1024)
        steps = int(params.get("steps") or _DEFAULT_STEPS[model])
        seed = params.get("seed")
        if model == "qwen-image-fast":
            # The Space sizes the image from the aspect ratio and can pick the seed itself.
            aspect_ratio = params.get("aspect_ratio") or "1:1"
            data = [prompt, seed if seed is not None else 42, seed is None, aspect_ratio, 3, steps]
        else:
            if seed is None:
                seed = random.randint(0, 2_147_483_646)
            if model == "flux-1-schnell":
                data = [prompt, seed, False, width, height, steps]
            elif model == "ovis-image":
                data = [prompt, height, width, seed, steps, 4]
            else:
                data = [prompt, height, width, steps, seed, False]
        output = run_gradio_task(endpoint, data, token, self.request_timeout)
        url = _first_url(output)
        if not url:
            return ProviderResult.failure(FATAL_ERROR, "Hugging Face returned no image url.")
        if model == "qwen-image-fast":
            seed = _qwen_seed(output, seed if seed is not None else 42)
        return ProviderResult.success(url=url, width=width, height=height, seed=seed, steps=steps)

    def _edit(self, token: str | None, params: Mapping[str, Any]) -> ProviderResult:
        sources = [str(value) for value in params.get("images") or []]
        if not sources:
            return ProviderResult.failure(FATAL_ERROR, "Hugging Face edit requires at least one image.")
        images = []
        for source in sources:
            path = upload_file(EDIT_ENDPOINT.base_url, source, token, self.request_timeout)
            images.append({"image": _file_data(path), "caption": None})
        seed = params.get("seed")
        if seed is None:
            seed = random.randint(0, 2_147_483_646)
        steps = int(params.get("steps") or 4)
        data = [
            images,
            params.get("prompt") or "",
            seed,
            False,
            params.get("guidance_scale") or 1,
            steps,
            int(params.get("height") or 1024),
            int(params.get("width") or 1024),
            True,
        ]
        output = run_gradio_task(EDIT_ENDPOINT, data, token, self.request_timeout)
        gallery = output.get("data")
        url = None
        if isinstance(gallery, list) and gallery and isinstance(gallery[0], list) and gallery[0]:
            first = gallery[0][0]
            if isinstance(first, dict):
                url = (first.get("image") or {}).get("url")
        if not url:
            return ProviderResult.failure(FATAL_ERROR, "Hugging Face returned no edited image url.")
        return ProviderResult.success(url=url, seed=seed, steps=steps)

    def _upscale(self, token: str | None, params: Mapping[str, Any]) -> ProviderResult:
        path = upload_file(UPSCALE_ENDPOINT.base_url, str(params.get("image_url") or ""), token, self.request_timeout)
        data = [
            _file_data(path),
            params.get("model") or "RealESRGAN_x4plus",
            0.5,
            False,
            int(params.get("scale") or 4),
        ]
        output = run_gradio_task(UPSCALE_ENDPOINT, data, token, self.request_timeout)
        url = _first_url(output)
        if not url:
            return ProviderResult.failure(FATAL_ERROR, "Hugging Face upscaler returned no image url.")
        return ProviderResult.success(url=url)

    def _text(self, token: str | None, params: Mapping[str, Any]) -> ProviderResult:
        body = {
            "model": params.get("model") or "openai-fast",
            "messages": [
                {"role": "system", "content": params.get("system_prompt") or ""},
                {"role": "user", "content": params.get("prompt") or ""},
            ],
            "stream": False,
        }
        # Pollinations is keyless; the Hugging Face token is not sent there.
        data = post_json(TEXT_URL, body, bearer_headers(None), self.request_timeout)
        choices = data.get("choices") or []
        content = None
        if choices and isinstance(choices[0], dict):
            content = (choices[0].get("message") or {}).get("content")
        return ProviderResult.success(text=content or params.get("prompt") or "")

    def _submit_video(self, token: str | None, params: Mapping[str, Any]) -> ProviderResult:
        source = str(params.get("image_url") or "")
        if urlparse(source).scheme in {"http", "https"}:
            path = source
        else:
            path = upload_file(VIDEO_ENDPOINT.base_url, source, token, self.request_timeout)
        guidance = params.get("guidance") or 1
        data = [
            _file_data(path),
            params.get("prompt") or "",
            int(params.get("steps") or 6),
            VIDEO_NEGATIVE_PROMPT,
            float(params.get("duration") or 3),
            guidance,
            guidance,
            int(params.get("seed") or 42),
            False,
        ]
        output = run_gradio_task(VIDEO_ENDPOINT, data, token, self.request_timeout)
        items = output.get("data")
        video = items[0] if isinstance(items, list) and items else None
        if isinstance(video, dict):
            video = (video.get("video") or {}).get("url") or video.get("url")
        if not video or not isinstance(video, str):
            return ProviderResult.failure(FATAL_ERROR, "Hugging Face returned no video.")
        # The Space renders synchronously, so there is no task to poll.
        return ProviderResult.success(video_url=video)


def _qwen_seed(output: Mapping[str, Any], fallback: int) -> int:
    data = output.get("data")
    if isinstance(data, list) and len(data) > 1 and isinstance(data[1], str) and _QWEN_SEED_PREFIX in data[1]:
        try:
            return int(data[1].replace(_QWEN_SEED_PREFIX, "").strip())
        except ValueError:
            return fallback
    return fallback
