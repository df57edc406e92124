"""ModelScope API-Inference provider."""

from __future__ import annotations

import random
from typing import Any, Mapping
from urllib.parse import urlparse

from .base import EDIT, FATAL_ERROR, GENERATE, TEXT, ProviderResult, unsupported
from .http import HttpFailure, bearer_headers, post_json
from .huggingface import QWEN_IMAGE_EDIT_URL, upload_file


API_BASE_URL = "https://api-inference.modelscope.cn/v1"
GENERATE_URL = f"{API_BASE_URL}/images/generations"
CHAT_URL = f"{API_BASE_URL}/chat/completions"
# Edit sources must be public urls; local files are staged on this Space anonymously.
UPLOAD_FILE_PREFIX = f"{QWEN_IMAGE_EDIT_URL}/gradio_api/file="


class ModelScopeProvider:
    name = "modelscope"
    requires_token = True

    def __init__(self, request_timeout: float = 120.0) -> None:
        self.request_timeout = request_timeout

    def issue(self, operation: str, token: str | None, params: Mapping[str, Any]) -> ProviderResult:
        if not token:
            return ProviderResult.failure(FATAL_ERROR, "ModelScope requires an API token.")
        handlers = {
            GENERATE: self._generate,
            EDIT: self._edit,
            TEXT: self._text,
        }
        handler = handlers.get(operation)
        if handler is None:
            return unsupported(self.name, operation)
        try:
            return handler(token, params)
        except HttpFailure as exc:
            return exc.result

    def _generate(self, token: str, params: Mapping[str, Any]) -> ProviderResult:
        width = int(params.get("width") or 1024)
        height = int(params.get("height") or 1024)
        seed = params.get("seed")
        if seed is None:
            seed = random.randint(0, 2_147_483_646)
        body: dict[str, Any] = {
            "prompt": params.get("prompt"),
            "model": params.get("model"),
            "size": f"{width}x{height}",
            "seed": seed,
            "steps": params.get("steps") or 9,
        }
        if params.get("guidance_scale") is not None:
            body["guidance"] = params["guidance_scale"]
        data = post_json(GENERATE_URL, body, bearer_headers(token), self.request_timeout)
        url = _first_image(data)
        if not url:
            return ProviderResult.failure(FATAL_ERROR, "ModelScope returned no image url.")
        return ProviderResult.success(url=url, width=width, height=height, seed=seed, steps=body["steps"])

    def _edit(self, token: str, params: Mapping[str, Any]) -> ProviderResult:
        image_urls = []
        for value in params.get("images") or []:
            source = str(value)
            if urlparse(source).scheme in {"http", "https"}:
                image_urls.append(source)
            else:
                path = upload_file(QWEN_IMAGE_EDIT_URL, source, None, self.request_timeout)
                image_urls.append(f"{UPLOAD_FILE_PREFIX}{path}")
        if not image_urls:
            return ProviderResult.failure(FATAL_ERROR, "ModelScope edit requires at least one image.")
        seed = params.get("seed")
        if seed is None:
            seed = random.randint(0, 2_147_483_646)
        body = {
            "prompt": params.get("prompt") or "",
            "model": params.get("model"),
            "image_url": image_urls,
            "seed": seed,
            "steps": int(params.get("steps") or 16),
            "guidance": params.get("guidance_scale") or 4,
        }
        data = post_json(GENERATE_URL, body, bearer_headers(token), self.request_timeout)
        url = _first_image(data)
        if not url:
            return ProviderResult.failure(FATAL_ERROR, "ModelScope returned no edited image url.")
        return ProviderResult.success(url=url, seed=seed, steps=body["steps"])

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


def _first_image(data: Mapping[str, Any]) -> str | None:
    images = data.get("images")
    if isinstance(images, list) and images and isinstance(images[0], dict):
        return images[0].get("url")
    return None
