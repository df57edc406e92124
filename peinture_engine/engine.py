"""Core Peinture engine orchestration."""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Mapping
from urllib.parse import urlparse

from .config import FIXED_SYSTEM_PROMPT_SUFFIX, Settings, video_settings_for
from .errors import (
    ConfigurationError,
    FatalError,
    GatewayError,
    JobNotFound,
    PeintureError,
    QuotaExhausted,
    TransientError,
)
from .history.prompts import PromptHistory
from .history.store import HistoryStore
from .jobs.models import GenerationJob, VideoStatus
from .jobs.tracker import VideoPoller
from .models.registry import ModelRegistry, ModelSpec
from .models.selectors import ModelSelector
from .providers import default_registry
from .providers.base import (
    EDIT,
    GENERATE,
    QUOTA_EXHAUSTED,
    TEXT,
    TRANSIENT_ERROR,
    UPSCALE,
    VIDEO_SUBMIT,
    ProviderRegistry,
)
from .providers.gateway import ProviderGateway
from .runs.events import EventWriter
from .sizes import resolve_dimensions
from .storage import JsonFileBackend, PersistenceBackend
from .tokens import TokenPools, TokenStats
from .utils import new_job_id, now_ms, token_fingerprint


@dataclass
class StagedUpscale:
    job_id: str
    url: str
    width: int | None = None
    height: int | None = None


class PeintureEngine:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        provider_registry: ProviderRegistry | None = None,
        backend: PersistenceBackend | None = None,
        model_registry: ModelRegistry | None = None,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or Settings()
        self.session_id = str(uuid.uuid4())
        self.events = EventWriter(self.settings.events_path, self.session_id)
        self.backend = backend if backend is not None else JsonFileBackend(self.settings.data_dir)
        self.providers = provider_registry or default_registry()
        self.gateway = ProviderGateway(self.providers, self.events)
        self.model_selector = ModelSelector(model_registry or ModelRegistry())
        self._clock = clock
        self._sleep = sleep
        self.pools = TokenPools(self.settings.tokens, day_offsets=self.settings.day_offsets, clock=clock)
        for provider in set(self.providers.list()) | set(self.pools.providers()):
            self.pools.load_health(provider, self.backend.load_token_health(provider))
        self.history = HistoryStore(self.backend, clock=clock, events=self.events)
        self.prompts = PromptHistory(self.backend, events=self.events)
        self.poller = VideoPoller(
            self.gateway,
            self.pools,
            self._apply_video_patch,
            backoff=self.settings.poll_backoff,
            clock=clock,
            sleep=sleep,
            events=self.events,
        )
        self.current_id: str | None = None
        self.pending_upscale: StagedUpscale | None = None
        self.events.emit("session_started", data_dir=str(self.settings.data_dir))
        self.load()

    def load(self) -> list[GenerationJob]:
        jobs = self.history.load()
        self.prompts.load()
        for job in self.history.last_evicted:
            self._discard_artifacts(job.url, job.video_url)
        head = self.history.head()
        self.current_id = head.id if head else None
        self.resume_pending_videos()
        return jobs

    # Prompts

    def record_prompt(self, prompt: str) -> bool:
        added = self.prompts.add(prompt)
        if added:
            self.events.emit("prompt_recorded", count=len(self.prompts))
        return added

    async def optimize_prompt(self, prompt: str, *, provider: str | None = None, model: str | None = None) -> str:
        if not self.record_prompt(prompt):
            raise ValueError("Prompt must not be empty.")
        provider = provider or self.settings.text_provider
        spec = self.model_selector.select(provider, model, "text").model
        params = {
            "prompt": prompt.strip(),
            "system_prompt": self.settings.system_prompt + FIXED_SYSTEM_PROMPT_SUFFIX,
            "model": spec.remote_id,
        }
        payload = await self._run_with_tokens(provider, TEXT, params)
        text = str(payload.get("text") or "").strip()
        return text or prompt.strip()

    # Images

    async def generate(
        self,
        prompt: str,
        *,
        provider: str | None = None,
        model: str | None = None,
        aspect_ratio: str = "1:1",
        seed: int | None = None,
        steps: int | None = None,
        guidance_scale: float | None = None,
        enable_hd: bool = True,
    ) -> GenerationJob:
        if not self.record_prompt(prompt):
            raise ValueError("Prompt must not be empty.")
        provider = provider or self.settings.provider
        if model is None and provider == self.settings.provider:
            model = self.settings.model
        spec = self.model_selector.select(provider, model, GENERATE).model
        width, height = resolve_dimensions(aspect_ratio, enable_hd=enable_hd, multiplier=spec.hd_multiplier)
        if spec.steps is not None:
            steps = spec.steps.clamp(steps)
        if guidance_scale is None:
            guidance_scale = spec.guidance_default
        params = {
            "prompt": prompt.strip(),
            "model": spec.remote_id,
            "width": width,
            "height": height,
            "seed": seed,
            "steps": steps,
            "guidance_scale": guidance_scale,
            "aspect_ratio": aspect_ratio,
            "out_dir": str(self.settings.artifacts_dir),
        }
        return await self._create_job(GENERATE, provider, spec, params, aspect_ratio=aspect_ratio)

    async def edit(
        self,
        prompt: str,
        images: Iterable[str | Path],
        *,
        provider: str | None = None,
        model: str | None = None,
        seed: int | None = None,
        steps: int | None = None,
        guidance_scale: float | None = None,
    ) -> GenerationJob:
        sources = [str(image) for image in images]
        if not sources:
            raise ValueError("Edit needs at least one source image.")
        if not self.record_prompt(prompt):
            raise ValueError("Prompt must not be empty.")
        provider = provider or self.settings.provider
        spec = self.model_selector.select(provider, model, EDIT).model
        if spec.steps is not None:
            steps = spec.steps.clamp(steps)
        params = {
            "prompt": prompt.strip(),
            "model": spec.remote_id,
            "images": sources,
            "seed": seed,
            "steps": steps,
            "guidance_scale": guidance_scale,
            "out_dir": str(self.settings.artifacts_dir),
        }
        return await self._create_job(EDIT, provider, spec, params, aspect_ratio="custom")

    async def _create_job(
        self,
        operation: str,
        provider: str,
        spec: ModelSpec,
        params: Mapping[str, Any],
        *,
        aspect_ratio: str,
    ) -> GenerationJob:
        self.events.emit(
            "generation_started",
            operation=operation,
            provider=provider,
            model=spec.name,
            width=params.get("width"),
            height=params.get("height"),
        )
        started = time.monotonic()
        try:
            payload = await self._run_with_tokens(provider, operation, params)
        except PeintureError as exc:
            self.events.emit(
                "generation_failed",
                operation=operation,
                provider=provider,
                model=spec.name,
                error=str(exc),
                status=getattr(exc, "status", None),
            )
            raise
        duration = round(time.monotonic() - started, 3)
        url = payload.get("url")
        if not url:
            raise FatalError("Provider returned no image.", provider=provider, operation=operation)
        job_id = new_job_id()
        job = GenerationJob(
            id=job_id,
            prompt=str(params.get("prompt") or ""),
            aspect_ratio=aspect_ratio,
            model=spec.name,
            provider=provider,
            created_at=self._clock(),
            url=str(url),
            seed=payload.get("seed", params.get("seed")),
            steps=payload.get("steps", params.get("steps")),
            guidance_scale=params.get("guidance_scale"),
            width=payload.get("width", params.get("width")),
            height=payload.get("height", params.get("height")),
            duration_seconds=duration,
            file_name=_file_name(job_id, str(url)),
        )
        self.history.insert(job)
        self.current_id = job.id
        self.discard_upscale()
        self.events.emit(
            "job_created",
            job_id=job.id,
            provider=provider,
            model=spec.name,
            duration_s=duration,
        )
        return job

    async def _run_with_tokens(self, provider: str, operation: str, params: Mapping[str, Any]) -> Mapping[str, Any]:
        """Issue one operation, rotating tokens on quota and retrying transient failures."""
        pool = self.pools.pool(provider)
        needs_token = self.gateway.requires_token(provider)
        token = pool.select_key()
        if needs_token and token is None:
            raise ConfigurationError(f"No API token configured for '{provider}'.")
        tried: list[str] = []
        transient_failures = 0
        while True:
            result = await asyncio.to_thread(self.gateway.issue, provider, token, operation, params)
            if result.ok:
                return result.payload
            error = result.error or result.status
            if result.status == QUOTA_EXHAUSTED:
                if token is None:
                    raise QuotaExhausted(error, provider=provider, operation=operation)
                pool.mark_exhausted(token)
                self._save_token_health(provider)
                self.events.emit(
                    "token_exhausted",
                    provider=provider,
                    operation=operation,
                    token=token_fingerprint(token),
                )
                tried.append(token)
                token = pool.next_key(tried)
                if token is None:
                    raise QuotaExhausted(
                        f"All {len(pool)} tokens for '{provider}' are exhausted: {error}",
                        provider=provider,
                        operation=operation,
                    )
                continue
            if result.status == TRANSIENT_ERROR:
                transient_failures += 1
                if transient_failures > self.settings.transient_retries:
                    raise TransientError(error, provider=provider, operation=operation)
                self.events.emit(
                    "generation_retry",
                    provider=provider,
                    operation=operation,
                    attempt=transient_failures,
                    error=error,
                )
                await self._sleep(self.settings.transient_backoff_s * transient_failures)
                continue
            raise FatalError(error, provider=provider, operation=operation)

    # Upscale

    async def upscale(self, job_id: str | None = None) -> str:
        job = self._require_job(job_id)
        provider = self.settings.upscale_provider
        spec = self.model_selector.select(provider, None, UPSCALE).model
        params = {
            "image_url": job.url,
            "model": spec.remote_id,
            "scale": 4,
            "out_dir": str(self.settings.artifacts_dir),
        }
        payload = await self._run_with_tokens(provider, UPSCALE, params)
        url = payload.get("url")
        if not url:
            raise FatalError("Upscaler returned no image.", provider=provider, operation=UPSCALE)
        if job.id not in self.history:
            self._discard_artifacts(str(url))
            raise JobNotFound(f"Job '{job.id}' was deleted during upscale.")
        if self.pending_upscale is not None:
            self._discard_artifacts(self.pending_upscale.url)
        self.pending_upscale = StagedUpscale(job.id, str(url), payload.get("width"), payload.get("height"))
        self.events.emit("upscale_staged", job_id=job.id, provider=provider)
        return str(url)

    def apply_upscale(self, width: int | None = None, height: int | None = None) -> GenerationJob:
        staged = self.pending_upscale
        if staged is None:
            raise PeintureError("No upscaled image is waiting to be applied.")
        job = self._require_job(staged.job_id)
        previous_url = job.url
        patch: dict[str, Any] = {"url": staged.url, "is_upscaled": True}
        width = width if width is not None else staged.width
        height = height if height is not None else staged.height
        if width is not None and height is not None:
            patch["width"] = int(width)
            patch["height"] = int(height)
        self.history.update(job.id, patch)
        self.pending_upscale = None
        self._discard_artifacts(previous_url)
        self.events.emit("upscale_applied", job_id=job.id, width=job.width, height=job.height)
        self.events.emit("job_updated", job_id=job.id, fields=sorted(patch))
        return job

    def discard_upscale(self) -> None:
        staged = self.pending_upscale
        if staged is None:
            return
        self.pending_upscale = None
        self._discard_artifacts(staged.url)
        self.events.emit("upscale_discarded", job_id=staged.job_id)

    # History

    def toggle_blur(self, job_id: str | None = None) -> GenerationJob:
        job = self._require_job(job_id)
        self.history.update(job.id, {"is_blurred": not job.is_blurred})
        self.events.emit("job_updated", job_id=job.id, fields=["is_blurred"])
        return job

    def select(self, job_id: str) -> GenerationJob:
        job = self.history.get(job_id)
        if job is None:
            raise JobNotFound(f"No job '{job_id}' in history.")
        if job.id != self.current_id:
            self.discard_upscale()
        self.current_id = job.id
        return job

    def current(self) -> GenerationJob | None:
        return self.history.get(self.current_id)

    def delete(self, job_id: str | None = None) -> GenerationJob:
        job = self._require_job(job_id)
        self.poller.cancel(job.id)
        if self.pending_upscale is not None and self.pending_upscale.job_id == job.id:
            self.discard_upscale()
        self.history.remove(job.id)
        self._discard_artifacts(job.url, job.video_url)
        if self.current_id == job.id:
            head = self.history.head()
            self.current_id = head.id if head else None
        self.events.emit("job_deleted", job_id=job.id, current_id=self.current_id)
        return job

    # Video

    async def request_video(
        self,
        job_id: str | None = None,
        *,
        provider: str | None = None,
        overrides: Mapping[str, Any] | None = None,
    ) -> GenerationJob:
        job = self._require_job(job_id)
        if job.video_pending or job.id in self.poller:
            return job
        provider = provider or self.settings.video_provider
        spec = self.model_selector.select(provider, None, "video").model
        if self.gateway.requires_token(provider) and not len(self.pools.pool(provider)):
            raise ConfigurationError(f"No API token configured for '{provider}'.")
        video = video_settings_for(provider, dict(overrides) if overrides else None)
        self.history.update(
            job.id,
            {
                "video_status": VideoStatus.GENERATING,
                "video_url": None,
                "video_task_id": None,
                "video_error": None,
                "video_next_poll_time": None,
                "video_provider": provider,
                "video_started_at": self._clock(),
            },
        )
        self.events.emit("video_requested", job_id=job.id, provider=provider, model=spec.name)
        params = {
            "image_url": job.url,
            "width": job.width,
            "height": job.height,
            "prompt": video.prompt,
            "duration": video.duration,
            "steps": video.steps,
            "guidance": video.guidance,
            "model": spec.remote_id,
            "out_dir": str(self.settings.artifacts_dir),
        }
        try:
            payload = await self._run_with_tokens(provider, VIDEO_SUBMIT, params)
        except GatewayError as exc:
            if job.id in self.history:
                self._apply_video_patch(job.id, {"video_status": VideoStatus.FAILED, "video_error": str(exc)})
            return job
        if job.id not in self.history:
            # Deleted while the submission was in flight.
            return job
        if payload.get("video_url"):
            self._apply_video_patch(
                job.id,
                {"video_status": VideoStatus.SUCCESS, "video_url": str(payload["video_url"])},
            )
            return job
        task_id = payload.get("task_id")
        if not task_id:
            self._apply_video_patch(
                job.id,
                {"video_status": VideoStatus.FAILED, "video_error": "Provider returned no video task."},
            )
            return job
        now = self._clock()
        predict = payload.get("predict")
        if predict is not None:
            first_poll_at = now + int(float(predict) * 1000)
        else:
            first_poll_at = now + self.settings.poll_backoff.delay_ms(0)
        self.history.update(job.id, {"video_task_id": str(task_id), "video_next_poll_time": first_poll_at})
        self.poller.track(job, first_poll_at=first_poll_at)
        return job

    async def poll_videos(self) -> int:
        return await self.poller.tick()

    async def run_video_polling(self) -> None:
        await self.poller.run_until_idle()

    def resume_pending_videos(self) -> list[str]:
        resumed: list[str] = []
        for job in self.history.all():
            if job.video_pending and not job.video_task_id:
                # Submission never returned a task id.
                self._apply_video_patch(
                    job.id,
                    {"video_status": VideoStatus.FAILED, "video_error": "Video generation interrupted"},
                )
        for job in self.history.pending_videos():
            if job.id in self.poller:
                continue
            self.poller.track(job, first_poll_at=job.video_next_poll_time)
            resumed.append(job.id)
        return resumed

    def _apply_video_patch(self, job_id: str, patch: dict[str, Any]) -> None:
        if job_id not in self.history:
            return
        job = self.history.update(job_id, patch)
        self.events.emit(
            "video_finished",
            job_id=job_id,
            status=job.video_status,
            error=job.video_error,
        )

    # Tokens

    def token_stats(self, provider: str) -> TokenStats:
        return self.pools.pool(provider).stats()

    def set_tokens(self, provider: str, raw: str | None) -> TokenStats:
        return self.pools.set_tokens(provider, raw).stats()

    def close(self) -> None:
        for provider in self.pools.providers():
            self._save_token_health(provider)
        self.events.emit(
            "session_finished",
            jobs=len(self.history),
            pending_videos=len(self.poller),
        )

    # Internals

    def _require_job(self, job_id: str | None) -> GenerationJob:
        target = job_id or self.current_id
        job = self.history.get(target)
        if job is None:
            raise JobNotFound(f"No job '{target}' in history." if target else "No current job.")
        return job

    def _save_token_health(self, provider: str) -> None:
        try:
            self.backend.save_token_health(provider, self.pools.health_snapshot(provider))
        except OSError as exc:
            self.events.emit("persist_failed", target=f"tokens:{provider}", error=str(exc))

    def _discard_artifacts(self, *urls: str | None) -> None:
        """Delete local files this engine rendered; remote urls are left alone."""
        root = self.settings.artifacts_dir.resolve()
        for url in urls:
            if not url or urlparse(url).scheme in {"http", "https"}:
                continue
            path = Path(url).resolve()
            if not path.is_relative_to(root) or not path.is_file():
                continue
            try:
                path.unlink()
            except OSError as exc:
                self.events.emit("persist_failed", target=str(path), error=str(exc))


def _file_name(job_id: str, url: str) -> str:
    suffix = Path(urlparse(url).path).suffix or ".png"
    return f"generated-{job_id}{suffix}"
