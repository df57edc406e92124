"""Dry-run provider (offline)."""

from __future__ import annotations

import hashlib
import random
import time
import uuid
from pathlib import Path
from typing import Any, Mapping

from PIL import Image, ImageDraw, ImageFont

from .base import (
    EDIT,
    FATAL_ERROR,
    GENERATE,
    TASK_PROCESSING,
    TASK_SUCCESS,
    TEXT,
    UPSCALE,
    VIDEO_POLL,
    VIDEO_SUBMIT,
    ProviderResult,
    unsupported,
)


class DryRunProvider:
    name = "dryrun"
    requires_token = False

    def __init__(self, polls_before_ready: int = 2, predict_s: float | None = None) -> None:
        self.polls_before_ready = polls_before_ready
        self.predict_s = predict_s
        self._tasks: dict[str, dict[str, Any]] = {}

    def issue(self, operation: str, token: str | None, params: Mapping[str, Any]) -> ProviderResult:
        if operation in {GENERATE, EDIT}:
            return self._render(operation, params)
        if operation == UPSCALE:
            return self._upscale(params)
        if operation == TEXT:
            prompt = str(params.get("prompt") or "").strip()
            return ProviderResult.success(text=f"{prompt}, cinematic lighting, intricate detail")
        if operation == VIDEO_SUBMIT:
            return self._submit_video(params)
        if operation == VIDEO_POLL:
            return self._poll_video(params)
        return unsupported(self.name, operation)

    def _render(self, operation: str, params: Mapping[str, Any]) -> ProviderResult:
        prompt = str(params.get("prompt") or "")
        width = int(params.get("width") or 1024)
        height = int(params.get("height") or 1024)
        seed = params.get("seed")
        if seed is None:
            seed = random.randint(1, 2_147_483_647)
        image_path = _build_path(params.get("out_dir"), "artifact", "png")
        image = Image.new("RGB", (width, height), _color_from_prompt(prompt, int(seed)))
        draw = ImageDraw.Draw(image)
        font = ImageFont.load_default()
        draw.text((20, 20), f"dryrun {operation}\n{prompt[:60]}", fill=(255, 255, 255), font=font)
        image.save(image_path)
        return ProviderResult.success(url=str(image_path), width=width, height=height, seed=int(seed))

    def _upscale(self, params: Mapping[str, Any]) -> ProviderResult:
        source = Path(str(params.get("image_url") or ""))
        if not source.is_file():
            return ProviderResult.failure(FATAL_ERROR, f"Upscale source not found: {source}")
        scale = int(params.get("scale") or 4)
        with Image.open(source) as image:
            upscaled = image.resize((image.width * scale, image.height * scale), Image.Resampling.LANCZOS)
        target = _build_path(params.get("out_dir"), "upscaled", "png")
        upscaled.save(target)
        return ProviderResult.success(url=str(target), width=upscaled.width, height=upscaled.height)

    def _submit_video(self, params: Mapping[str, Any]) -> ProviderResult:
        source = Path(str(params.get("image_url") or ""))
        if not source.is_file():
            return ProviderResult.failure(FATAL_ERROR, f"Video source not found: {source}")
        task_id = f"dryrun-{uuid.uuid4().hex[:12]}"
        self._tasks[task_id] = {
            "source": source,
            "remaining": max(0, int(self.polls_before_ready)),
            "duration": float(params.get("duration") or 3),
            "out_dir": params.get("out_dir"),
        }
        payload: dict[str, Any] = {"task_id": task_id}
        if self.predict_s is not None:
            payload["predict"] = self.predict_s
        return ProviderResult.success(**payload)

    def _poll_video(self, params: Mapping[str, Any]) -> ProviderResult:
        task_id = str(params.get("task_id") or "")
        task = self._tasks.get(task_id)
        if task is None:
            return ProviderResult.success(status="failed", error=f"Task {task_id} not found")
        if task["remaining"] > 0:
            task["remaining"] -= 1
            return ProviderResult.success(status=TASK_PROCESSING)
        video_path = task.get("video_path")
        if video_path is None:
            video_path = _render_clip(task["source"], task["duration"], task["out_dir"])
            task["video_path"] = video_path
        return ProviderResult.success(status=TASK_SUCCESS, video_url=str(video_path))


def _render_clip(source: Path, duration: float, out_dir: Any) -> Path:
    frames: list[Image.Image] = []
    with Image.open(source) as image:
        base = image.convert("RGB")
        base.thumbnail((256, 256))
    count = max(2, min(24, int(duration * 4)))
    for idx in range(count):
        shift = idx * 4
        frames.append(base.rotate(0, translate=(shift % base.width, 0)))
    target = _build_path(out_dir, "live", "gif")
    frames[0].save(target, save_all=True, append_images=frames[1:], duration=250, loop=0)
    return target


def _build_path(out_dir: Any, prefix: str, ext: str) -> Path:
    base_dir = Path(str(out_dir)) if out_dir else Path(".")
    base_dir.mkdir(parents=True, exist_ok=True)
    stamp = int(time.time() * 1000)
    return base_dir / f"{prefix}-{stamp}-{uuid.uuid4().hex[:6]}.{ext}"


def _color_from_prompt(prompt: str, seed: int) -> tuple[int, int, int]:
    digest = hashlib.sha256(f"{prompt}:{seed}".encode("utf-8")).digest()
    return digest[0], digest[1], digest[2]
