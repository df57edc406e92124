"""A4F provider (OpenAI-compatible)."""

from __future__ import annotations

import os
from typing import Any, Mapping

from .base import FATAL_ERROR, GENERATE, TEXT, ProviderResult, unsupported
from .http import HttpFailure, bearer_headers, post_json


DEFAULT_BASE_URL = "https://api.a4f.co/v1"


def _closest_size(width: int, height: int) -> str:
    if width > height:
        return "1792x1024"
    if height > width:
        return "1024x1792"
    return "1024x1024"


class A4FProvider:
    name = "a4f"
    requires_token = True

    def __init__(self, base_url: str | None = None, request_timeout: float = 120.0) -> None:
        self.base_url = (base_url or os.getenv("A4F_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.request_timeout = request_timeout

    def issue(self, operation: str, token: str | None, params: Mapping[str, Any]) -> ProviderResult:
        if not token:
            return ProviderResult.failure(FATAL_ERROR, "A4F requires an API token.")
        try:
            if operation == GENERATE:
                return self._generate(token, params)
            if operation == TEXT:
                return self._text(token, params)
        except HttpFailure as exc:
            return exc.result
        return unsupported(self.name, operation)

    def _generate(self, token: str, params: Mapping[str, Any]) -> ProviderResult:
        width = int(params.get("width") or 1024)
        height = int(params.get("height") or 1024)
        body = {
            "model": params.get("model"),
            "prompt": params.get("prompt"),
            "n": 1,
            "size": _closest_size(width, height),
            "response_format": "url",
        }
        data = post_json(f"{self.base_url}/images/generations", body, bearer_headers(token), self.request_timeout)
        items = data.get("data")
        url = items[0].get("url") if isinstance(items, list) and items and isinstance(items[0], dict) else None
        if not url:
            return ProviderResult.failure(FATAL_ERROR, "A4F returned no image url.")
        return ProviderResult.success(url=url, width=width, height=height, seed=params.get("seed"))

    def _text(self, token: str, params: Mapping[str, Any]) -> ProviderResult:
        body = {
            "model": params.get("model"),
            "messages": [
                {"role": "system", "content": params.get("system_prompt") or ""},
                {"role": "user", "content": params.get("prompt") or ""},
            ],
            "stream": False,
        }
        data = post_json(f"{self.base_url}/chat/completions", body, bearer_headers(token), self.request_timeout)
        choices = data.get("choices") or []
        content = None
        if choices and isinstance(choices[0], dict):
            content = (choices[0].get("message") or {}).get("content")
        return ProviderResult.success(text=content or params.get("prompt") or "")
