"""Asynchronous video task tracking with capped backoff polling.

Each pending video is a ``JobTracker``: a small scheduled-task record
(``attempt``, ``next_poll_time``) keyed by job id. ``VideoPoller`` owns the
trackers and is driven from a single event loop; cancelling a job means the
tracker is dropped, so nothing can poll on its behalf afterwards.

Intermediate "still processing" polls only move the tracker's own
``next_poll_time``. The job record is patched once, on the terminal
transition.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from ..errors import VideoTimeout
from ..providers.base import (
    QUOTA_EXHAUSTED,
    SUCCESS,
    TASK_FAILED,
    TASK_PROCESSING,
    TASK_SUCCESS,
    TRANSIENT_ERROR,
    VIDEO_POLL,
)
from ..providers.gateway import ProviderGateway
from ..runs.events import EventWriter
from ..tokens import TokenPools
from ..utils import now_ms
from .models import GenerationJob, VideoStatus


@dataclass(frozen=True)
class PollBackoff:
    initial_ms: int = 5_000
    factor: float = 1.5
    cap_ms: int = 60_000
    max_attempts: int = 120
    max_elapsed_ms: int | None = 30 * 60 * 1000

    def __post_init__(self) -> None:
        if self.initial_ms < 0 or self.cap_ms < self.initial_ms:
            raise ValueError("Backoff needs 0 <= initial_ms <= cap_ms.")
        if self.factor < 1:
            raise ValueError("Backoff factor must be >= 1.")
        if self.max_attempts < 1:
            raise ValueError("Backoff needs at least one attempt.")

    def delay_ms(self, attempt: int) -> int:
        if attempt <= 0:
            return self.initial_ms
        if attempt > 64:
            return self.cap_ms
        return min(self.cap_ms, int(self.initial_ms * self.factor**attempt))


@dataclass
class PollOutcome:
    status: str
    video_url: str | None = None
    error: str | None = None


class JobTracker:
    def __init__(
        self,
        job_id: str,
        provider: str,
        task_id: str,
        *,
        started_at: int,
        backoff: PollBackoff,
        first_poll_at: int | None = None,
    ) -> None:
        self.job_id = job_id
        self.provider = provider
        self.task_id = task_id
        self.started_at = started_at
        self.backoff = backoff
        self.attempt = 0
        self.state = VideoStatus.GENERATING
        self.in_flight = False
        if first_poll_at is None:
            first_poll_at = started_at + backoff.delay_ms(0)
        self.next_poll_time = first_poll_at

    @property
    def active(self) -> bool:
        return self.state == VideoStatus.GENERATING

    def is_due(self, now: int) -> bool:
        return self.active and not self.in_flight and now >= self.next_poll_time

    def check_budget(self, now: int) -> None:
        elapsed_s = (now - self.started_at) / 1000
        if self.attempt >= self.backoff.max_attempts:
            raise VideoTimeout(f"Video generation timed out after {self.attempt} polls ({elapsed_s:.0f}s).")
        limit = self.backoff.max_elapsed_ms
        if limit is not None and now - self.started_at >= limit:
            raise VideoTimeout(f"Video generation timed out after {elapsed_s:.0f}s ({self.attempt} polls).")

    def apply(self, outcome: PollOutcome, now: int) -> dict[str, Any] | None:
        """Consume one poll result; return the terminal patch, if any."""
        if not self.active:
            return None
        self.attempt += 1
        if outcome.status == TASK_SUCCESS and outcome.video_url:
            self.state = VideoStatus.SUCCESS
            return {"video_status": VideoStatus.SUCCESS, "video_url": outcome.video_url}
        if outcome.status in {TASK_SUCCESS, TASK_FAILED}:
            self.state = VideoStatus.FAILED
            error = outcome.error or "Video generation failed"
            if outcome.status == TASK_SUCCESS:
                error = "Video task reported success without a video url"
            return {"video_status": VideoStatus.FAILED, "video_error": error}
        try:
            self.check_budget(now)
        except VideoTimeout as exc:
            self.state = VideoStatus.FAILED
            return {"video_status": VideoStatus.FAILED, "video_error": str(exc)}
        self.next_poll_time = max(self.next_poll_time, now + self.backoff.delay_ms(self.attempt))
        return None


class VideoPoller:
    def __init__(
        self,
        gateway: ProviderGateway,
        pools: TokenPools,
        on_update: Callable[[str, dict[str, Any]], None],
        *,
        backoff: PollBackoff | None = None,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        events: EventWriter | None = None,
    ) -> None:
        self.gateway = gateway
        self.pools = pools
        self.on_update = on_update
        self.backoff = backoff or PollBackoff()
        self.events = events
        self._clock = clock
        self._sleep = sleep
        self._trackers: dict[str, JobTracker] = {}

    def track(self, job: GenerationJob, *, first_poll_at: int | None = None) -> JobTracker:
        if not job.video_pending or not job.video_task_id:
            raise ValueError(f"Job '{job.id}' has no pending video task.")
        provider = job.video_provider or job.provider
        # Elapsed budget counts from submission, across restarts.
        started_at = job.video_started_at if job.video_started_at is not None else self._clock()
        tracker = JobTracker(
            job.id,
            provider,
            job.video_task_id,
            started_at=started_at,
            backoff=self.backoff,
            first_poll_at=first_poll_at,
        )
        self._trackers[job.id] = tracker
        return tracker

    def cancel(self, job_id: str) -> bool:
        return self._trackers.pop(job_id, None) is not None

    def tracker(self, job_id: str) -> JobTracker | None:
        return self._trackers.get(job_id)

    def due(self, now: int) -> list[JobTracker]:
        return [tracker for tracker in self._trackers.values() if tracker.is_due(now)]

    def next_wake(self) -> int | None:
        times = [tracker.next_poll_time for tracker in self._trackers.values() if tracker.active]
        return min(times) if times else None

    async def poll_once(self, tracker: JobTracker) -> dict[str, Any] | None:
        if not tracker.is_due(self._clock()):
            return None
        pool = self.pools.pool(tracker.provider)
        token = pool.select_key()
        if token is None and self.gateway.requires_token(tracker.provider):
            outcome = PollOutcome(TASK_FAILED, error=f"No usable token for {tracker.provider}")
        else:
            tracker.in_flight = True
            try:
                result = await asyncio.to_thread(
                    self.gateway.issue,
                    tracker.provider,
                    token,
                    VIDEO_POLL,
                    {"task_id": tracker.task_id},
                )
            finally:
                tracker.in_flight = False
            if result.status == QUOTA_EXHAUSTED and token:
                pool.mark_exhausted(token)
                self._emit("token_exhausted", provider=tracker.provider, operation=VIDEO_POLL)
            outcome = _outcome_from(result.status, result.payload, result.error)

        if self._trackers.get(tracker.job_id) is not tracker:
            # Cancelled while the request was in flight.
            return None
        patch = tracker.apply(outcome, self._clock())
        self._emit(
            "video_polled",
            job_id=tracker.job_id,
            attempt=tracker.attempt,
            status=outcome.status,
            next_poll_time=tracker.next_poll_time if tracker.active else None,
        )
        if not tracker.active:
            self._trackers.pop(tracker.job_id, None)
        if patch is not None:
            self.on_update(tracker.job_id, patch)
        return patch

    async def tick(self) -> int:
        ready = self.due(self._clock())
        if ready:
            await asyncio.gather(*(self.poll_once(tracker) for tracker in ready))
        return len(ready)

    async def run_until_idle(self) -> None:
        while self._trackers:
            await self.tick()
            wake = self.next_wake()
            if wake is None:
                break
            delay_ms = max(0, wake - self._clock())
            await self._sleep(delay_ms / 1000)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._trackers

    def __len__(self) -> int:
        return len(self._trackers)

    def _emit(self, event_type: str, **payload: Any) -> None:
        if self.events is not None:
            self.events.emit(event_type, **payload)


def _outcome_from(status: str, payload: Mapping[str, Any], error: str | None) -> PollOutcome:
    if status == SUCCESS:
        task_status = str(payload.get("status") or TASK_PROCESSING)
        return PollOutcome(task_status, video_url=payload.get("video_url"), error=payload.get("error"))
    if status in {QUOTA_EXHAUSTED, TRANSIENT_ERROR}:
        return PollOutcome(TASK_PROCESSING, error=error)
    return PollOutcome(TASK_FAILED, error=error or "Video status check failed")
