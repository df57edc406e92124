"""Gitee AI provider."""

from __future__ import annotations

import mimetypes
import random
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

from ..sizes import video_dimensions
from .base import (
    EDIT,
    FATAL_ERROR,
    GENERATE,
    TASK_FAILED,
    TASK_PROCESSING,
    TASK_SUCCESS,
    TEXT,
    VIDEO_POLL,
    VIDEO_SUBMIT,
    ProviderResult,
    unsupported,
)
from .http import HttpFailure, bearer_headers, get_json, post_json, post_multipart


API_BASE_URL = "https://ai.gitee.com"
GENERATE_URL = f"{API_BASE_URL}/v1/images/generations"
EDIT_URL = f"{API_BASE_URL}/v1/images/edits"
CHAT_URL = f"{API_BASE_URL}/v1/chat/completions"
VIDEO_TASK_URL = f"{API_BASE_URL}/v1/async/videos/image-to-video"
TASK_STATUS_URL = f"{API_BASE_URL}/api/v1/task"

FRAMES_PER_SECOND = 16
# Image-to-video tasks take minutes; first status check waits this long.
FIRST_POLL_DELAY_S = 400
VIDEO_NEGATIVE_PROMPT = (
    "Vivid colors, overexposed, static, blurry details, subtitles, worst quality, low quality, "
    "JPEG compression artifacts, ugly, incomplete, extra fingers, poorly drawn hands, poorly drawn face, "
    "deformed, disfigured, still image, cluttered background, walking backward, screen shaking"
)
_PENDING_TASK_STATES = {"waiting", "is_process", "processing", "pending", "queued"}


class GiteeProvider:
    name = "gitee"
    requires_token = True

    def __init__(self, request_timeout: float = 120.0) -> None:
        self.request_timeout = request_timeout

    def issue(self, operation: str, token: str | None, params: Mapping[str, Any]) -> ProviderResult:
        if not token:
            return ProviderResult.failure(FATAL_ERROR, "Gitee AI requires an API token.")
        handlers = {
            GENERATE: self._generate,
            EDIT: self._edit,
            TEXT: self._text,
            VIDEO_SUBMIT: self._submit_video,
            VIDEO_POLL: self._poll_video,
        }
        handler = handlers.get(operation)
        if handler is None:
            return unsupported(self.name, operation)
        try:
            return handler(token, params)
        except HttpFailure as exc:
            return exc.result

    def _generate(self, token: str, params: Mapping[str, Any]) -> ProviderResult:
        seed = params.get("seed")
        if seed is None:
            seed = random.randint(0, 2_147_483_646)
        body: dict[str, Any] = {
            "prompt": params.get("prompt"),
            "model": params.get("model"),
            "width": params.get("width"),
            "height": params.get("height"),
            "seed": seed,
            "num_inference_steps": params.get("steps") or 9,
            "response_format": "url",
        }
        if params.get("guidance_scale") is not None:
            body["guidance_scale"] = params["guidance_scale"]
        data = post_json(GENERATE_URL, body, bearer_headers(token), self.request_timeout)
        items = data.get("data")
        url = items[0].get("url") if isinstance(items, list) and items and isinstance(items[0], dict) else None
        if not url:
            return ProviderResult.failure(FATAL_ERROR, "Gitee AI returned no image url.")
        return ProviderResult.success(
            url=url,
            width=params.get("width"),
            height=params.get("height"),
            seed=seed,
            steps=body["num_inference_steps"],
        )

    def _edit(self, token: str, params: Mapping[str, Any]) -> ProviderResult:
        files = []
        for value in params.get("images") or []:
            path = Path(str(value))
            if not path.is_file():
                return ProviderResult.failure(FATAL_ERROR, f"Edit source not found: {path}")
            mime = mimetypes.guess_type(path.name)[0] or "image/png"
            files.append(("image", path.name, path.read_bytes(), mime))
        if not files:
            return ProviderResult.failure(FATAL_ERROR, "Gitee AI edit requires at least one image.")
        seed = params.get("seed")
        if seed is None:
            seed = random.randint(0, 2_147_483_646)
        fields = {
            "prompt": params.get("prompt") or "",
            "model": params.get("model"),
            "num_inference_steps": int(params.get("steps") or 16),
            "cfg_scale": params.get("guidance_scale") or 4,
            "seed": seed,
            "response_format": "url",
        }
        data = post_multipart(EDIT_URL, fields, files, bearer_headers(token, None), self.request_timeout)
        items = data.get("data")
        url = items[0].get("url") if isinstance(items, list) and items and isinstance(items[0], dict) else None
        if not url:
            return ProviderResult.failure(FATAL_ERROR, "Gitee AI returned no edited image url.")
        return ProviderResult.success(url=url, seed=seed, steps=fields["num_inference_steps"])

    def _text(self, token: str, params: Mapping[str, Any]) -> ProviderResult:
        body = {
            "model": params.get("model"),
            "messages": [
                {"role": "system", "content": params.get("system_prompt") or ""},
                {"role": "user", "content": params.get("prompt") or ""},
            ],
            "stream": False,
        }
        data = post_json(CHAT_URL, body, bearer_headers(token), self.request_timeout)
        choices = data.get("choices") or []
        content = None
        if choices and isinstance(choices[0], dict):
            content = (choices[0].get("message") or {}).get("content")
        return ProviderResult.success(text=content or params.get("prompt") or "")

    def _submit_video(self, token: str, params: Mapping[str, Any]) -> ProviderResult:
        image_url = str(params.get("image_url") or "")
        width, height = video_dimensions(int(params.get("width") or 1024), int(params.get("height") or 1024))
        duration = float(params.get("duration") or 3)
        fields = {
            "prompt": params.get("prompt") or "",
            "negative_prompt": VIDEO_NEGATIVE_PROMPT,
            "model": params.get("model"),
            "num_inference_steps": int(params.get("steps") or 10),
            "num_frames": round(duration * FRAMES_PER_SECOND),
            "guidance_scale": params.get("guidance") or 4,
            "width": width,
            "height": height,
        }
        files = []
        if urlparse(image_url).scheme in {"http", "https"}:
            # The task endpoint fetches remote images itself.
            fields["image"] = image_url
        else:
            image_path = Path(image_url)
            if not image_path.is_file():
                return ProviderResult.failure(FATAL_ERROR, f"Video source not found: {image_url}")
            mime = mimetypes.guess_type(image_path.name)[0] or "image/png"
            files.append(("image", image_path.name, image_path.read_bytes(), mime))
        data = post_multipart(VIDEO_TASK_URL, fields, files, bearer_headers(token, None), self.request_timeout)
        task_id = data.get("task_id")
        if not task_id:
            return ProviderResult.failure(FATAL_ERROR, "Gitee AI returned no video task id.")
        return ProviderResult.success(task_id=str(task_id), predict=FIRST_POLL_DELAY_S)

    def _poll_video(self, token: str, params: Mapping[str, Any]) -> ProviderResult:
        task_id = str(params.get("task_id") or "")
        data = get_json(f"{TASK_STATUS_URL}/{task_id}", bearer_headers(token, None), self.request_timeout)
        return ProviderResult.success(**parse_task_status(data))


def parse_task_status(data: Mapping[str, Any]) -> dict[str, Any]:
    status = str(data.get("status") or "").lower()
    output = data.get("output") if isinstance(data.get("output"), dict) else {}
    if status == "success":
        url = output.get("file_url")
        if url:
            return {"status": TASK_SUCCESS, "video_url": url}
        return {"status": TASK_FAILED, "error": "Video task finished without a file url"}
    if status in {"failure", "failed", "error", "cancelled"}:
        message = output.get("error") or output.get("message") or "Video generation failed"
        return {"status": TASK_FAILED, "error": str(message)}
    if status in _PENDING_TASK_STATES or not status:
        return {"status": TASK_PROCESSING}
    return {"status": TASK_PROCESSING, "raw_status": status}
