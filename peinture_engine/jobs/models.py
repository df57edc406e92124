"""Generation job record and its video sub-state."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Mapping


class VideoStatus:
    GENERATING = "generating"
    SUCCESS = "success"
    FAILED = "failed"

    ALL = (GENERATING, SUCCESS, FAILED)


# Fields fixed at creation; patches may not touch them.
IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


@dataclass
class GenerationJob:
    id: str
    prompt: str
    aspect_ratio: str
    model: str
    provider: str
    created_at: int
    url: str
    seed: int | None = None
    steps: int | None = None
    guidance_scale: float | None = None
    width: int | None = None
    height: int | None = None
    duration_seconds: float | None = None
    is_upscaled: bool = False
    is_blurred: bool = False
    file_name: str | None = None
    video_status: str | None = None
    video_url: str | None = None
    video_task_id: str | None = None
    video_error: str | None = None
    video_next_poll_time: int | None = None
    video_provider: str | None = None
    video_started_at: int | None = None

    def validate(self) -> None:
        if not self.id:
            raise ValueError("Job id must be non-empty.")
        status = self.video_status
        if status is None:
            return
        if status not in VideoStatus.ALL:
            raise ValueError(f"Unknown video status '{status}'.")
        if status == VideoStatus.SUCCESS and not self.video_url:
            raise ValueError("Video status 'success' requires a video url.")
        if status == VideoStatus.FAILED and not self.video_error:
            raise ValueError("Video status 'failed' requires a video error.")

    @property
    def video_pending(self) -> bool:
        return self.video_status == VideoStatus.GENERATING

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "GenerationJob":
        known = field_names()
        data = {key: value for key, value in payload.items() if key in known}
        job = cls(**data)
        job.created_at = int(job.created_at)
        job.validate()
        return job


def field_names() -> frozenset[str]:
    return frozenset(item.name for item in fields(GenerationJob))
