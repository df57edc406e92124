"""Blocking JSON-over-HTTP helpers that classify failures."""

from __future__ import annotations

import json
import uuid
from typing import Any, Iterator, Mapping, Sequence
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .base import FATAL_ERROR, QUOTA_EXHAUSTED, TRANSIENT_ERROR, ProviderResult


_QUOTA_MARKERS = (
    "quota",
    "credit",
    "rate limit",
    "exceeded your free gpu quota",
    "arrearage",
)


def is_quota_message(text: str) -> bool:
    lowered = (text or "").lower()
    return any(marker in lowered for marker in _QUOTA_MARKERS)


def classify_http_failure(code: int | None, body: str = "") -> str:
    if code == 429 or is_quota_message(body):
        return QUOTA_EXHAUSTED
    if code is None or code == 408 or code >= 500:
        return TRANSIENT_ERROR
    return FATAL_ERROR


def error_message(raw: str, fallback: str) -> str:
    try:
        payload = json.loads(raw)
    except Exception:
        return raw.strip() or fallback
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("error")
        if isinstance(message, dict):
            message = message.get("message")
        if message:
            return str(message)
    return fallback


class HttpFailure(Exception):
    def __init__(self, result: ProviderResult) -> None:
        super().__init__(result.error)
        self.result = result


def bearer_headers(token: str | None, content_type: str | None = "application/json") -> dict[str, str]:
    headers = {"accept": "application/json"}
    if content_type:
        headers["Content-Type"] = content_type
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def post_json(url: str, payload: Mapping[str, Any], headers: Mapping[str, str], timeout_s: float) -> dict[str, Any]:
    body = json.dumps(payload).encode("utf-8")
    return _send(Request(url, data=body, headers=dict(headers), method="POST"), timeout_s)


def get_json(url: str, headers: Mapping[str, str], timeout_s: float) -> dict[str, Any]:
    return _send(Request(url, headers=dict(headers), method="GET"), timeout_s)


def post_multipart(
    url: str,
    fields: Mapping[str, Any],
    files: Sequence[tuple[str, str, bytes, str]],
    headers: Mapping[str, str],
    timeout_s: float,
) -> dict[str, Any]:
    boundary = f"----peinture{uuid.uuid4().hex}"
    chunks: list[bytes] = []
    for name, value in fields.items():
        chunks.append(
            f"--{boundary}\r\nContent-Disposition: form-data; name=\"{name}\"\r\n\r\n{value}\r\n".encode("utf-8")
        )
    for name, filename, data, mime in files:
        chunks.append(
            (
                f"--{boundary}\r\nContent-Disposition: form-data; name=\"{name}\"; filename=\"{filename}\"\r\n"
                f"Content-Type: {mime}\r\n\r\n"
            ).encode("utf-8")
        )
        chunks.append(data)
        chunks.append(b"\r\n")
    chunks.append(f"--{boundary}--\r\n".encode("utf-8"))
    merged = dict(headers)
    merged["Content-Type"] = f"multipart/form-data; boundary={boundary}"
    return _send(Request(url, data=b"".join(chunks), headers=merged, method="POST"), timeout_s)


def get_bytes(url: str, headers: Mapping[str, str], timeout_s: float) -> bytes:
    req = Request(url, headers=dict(headers), method="GET")
    try:
        with urlopen(req, timeout=timeout_s) as response:
            return response.read()
    except HTTPError as exc:
        raise _http_failure(exc) from exc
    except (URLError, TimeoutError, ConnectionError) as exc:
        raise HttpFailure(ProviderResult.failure(TRANSIENT_ERROR, f"Request failed: {exc}")) from exc


def stream_events(url: str, headers: Mapping[str, str], timeout_s: float) -> Iterator[dict[str, Any]]:
    """Yield the JSON ``data:`` messages of a server-sent event stream.

    Lines that are not JSON objects (heartbeats, comments) are skipped.
    """
    merged = {key: value for key, value in headers.items() if key.lower() != "accept"}
    merged["accept"] = "text/event-stream"
    try:
        response = urlopen(Request(url, headers=merged, method="GET"), timeout=timeout_s)
    except HTTPError as exc:
        raise _http_failure(exc) from exc
    except (URLError, TimeoutError, ConnectionError) as exc:
        raise HttpFailure(ProviderResult.failure(TRANSIENT_ERROR, f"Request failed: {exc}")) from exc
    with response:
        try:
            for raw in response:
                line = raw.decode("utf-8", errors="replace").strip()
                if not line.startswith("data:"):
                    continue
                try:
                    message = json.loads(line[len("data:") :])
                except ValueError:
                    continue
                if isinstance(message, dict):
                    yield message
        except (TimeoutError, ConnectionError) as exc:
            raise HttpFailure(ProviderResult.failure(TRANSIENT_ERROR, f"Event stream interrupted: {exc}")) from exc


def _http_failure(exc: HTTPError) -> HttpFailure:
    raw = exc.read().decode("utf-8", errors="replace") if exc.fp else str(exc)
    status = classify_http_failure(exc.code, raw)
    message = error_message(raw, f"HTTP {exc.code}")
    return HttpFailure(ProviderResult.failure(status, f"{message} ({exc.code})"))


def _send(req: Request, timeout_s: float) -> dict[str, Any]:
    try:
        with urlopen(req, timeout=timeout_s) as response:
            raw = response.read().decode("utf-8")
    except HTTPError as exc:
        raise _http_failure(exc) from exc
    except (URLError, TimeoutError, ConnectionError) as exc:
        raise HttpFailure(ProviderResult.failure(TRANSIENT_ERROR, f"Request failed: {exc}")) from exc
    try:
        payload_json = json.loads(raw)
    except Exception:
        payload_json = {"raw": raw}
    return payload_json if isinstance(payload_json, dict) else {"data": payload_json}
