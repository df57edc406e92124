"""Bounded, TTL-evicting history of generated artifacts."""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Mapping

from ..jobs.models import IMMUTABLE_FIELDS, GenerationJob, field_names
from ..runs.events import EventWriter
from ..storage import PersistenceBackend
from ..utils import now_ms


HISTORY_TTL_MS = 24 * 60 * 60 * 1000


class HistoryStore:
    """Newest-first collection of jobs keyed by id.

    Eviction happens once, in ``load``. Only ``insert`` changes ordering;
    ``update`` mutates the stored object in place.
    """

    def __init__(
        self,
        backend: PersistenceBackend,
        *,
        ttl_ms: int = HISTORY_TTL_MS,
        clock: Callable[[], int] = now_ms,
        events: EventWriter | None = None,
    ) -> None:
        self.backend = backend
        self.ttl_ms = ttl_ms
        self.events = events
        self._clock = clock
        self._entries: list[GenerationJob] = []
        self.last_evicted: list[GenerationJob] = []

    def load(self) -> list[GenerationJob]:
        now = self._clock()
        kept: list[GenerationJob] = []
        evicted: list[GenerationJob] = []
        seen: set[str] = set()
        dropped = 0
        for item in self.backend.load_history():
            try:
                job = GenerationJob.from_dict(item)
            except (TypeError, ValueError):
                dropped += 1
                continue
            if job.id in seen:
                dropped += 1
                continue
            seen.add(job.id)
            if now - job.created_at >= self.ttl_ms:
                evicted.append(job)
                continue
            kept.append(job)
        kept.sort(key=lambda job: job.created_at, reverse=True)
        self._entries = kept
        self.last_evicted = evicted
        self._emit("history_loaded", count=len(kept), evicted=len(evicted), dropped=dropped)
        if evicted:
            self._emit("history_evicted", job_ids=[job.id for job in evicted])
        if evicted or dropped:
            self.persist()
        return list(self._entries)

    def insert(self, job: GenerationJob) -> GenerationJob:
        if self.get(job.id) is not None:
            raise ValueError(f"Job '{job.id}' already in history.")
        job.validate()
        self._entries.insert(0, job)
        self.persist()
        return job

    def update(self, job_id: str, patch: Mapping[str, Any]) -> GenerationJob:
        job = self.get(job_id)
        if job is None:
            raise KeyError(job_id)
        changes = dict(patch)
        forbidden = IMMUTABLE_FIELDS.intersection(changes)
        if forbidden:
            raise ValueError(f"Cannot patch {', '.join(sorted(forbidden))}.")
        unknown = set(changes) - field_names()
        if unknown:
            raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}.")
        # Validate on a copy so a bad patch leaves the entry untouched.
        replace(job, **changes).validate()
        for key, value in changes.items():
            setattr(job, key, value)
        self.persist()
        return job

    def remove(self, job_id: str) -> GenerationJob | None:
        for index, job in enumerate(self._entries):
            if job.id == job_id:
                del self._entries[index]
                self.persist()
                return job
        return None

    def get(self, job_id: str | None) -> GenerationJob | None:
        if not job_id:
            return None
        for job in self._entries:
            if job.id == job_id:
                return job
        return None

    def head(self) -> GenerationJob | None:
        return self._entries[0] if self._entries else None

    def all(self) -> list[GenerationJob]:
        return list(self._entries)

    def pending_videos(self) -> list[GenerationJob]:
        return [job for job in self._entries if job.video_pending and job.video_task_id]

    def persist(self) -> None:
        payload = [job.to_dict() for job in self._entries]
        try:
            self.backend.save_history(payload)
        except (OSError, TypeError, ValueError) as exc:
            self._emit("persist_failed", target="history", error=str(exc))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, job_id: object) -> bool:
        return isinstance(job_id, str) and self.get(job_id) is not None

    def _emit(self, event_type: str, **payload: Any) -> None:
        if self.events is not None:
            self.events.emit(event_type, **payload)
