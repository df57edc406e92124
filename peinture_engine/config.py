"""Runtime settings resolved from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from .jobs.tracker import PollBackoff
from .utils import getenv_flag, getenv_number, load_dotenv


DEFAULT_DATA_DIR = Path.home() / ".peinture"
TOKEN_ENV_PREFIX = "PEINTURE_TOKENS_"

DEFAULT_SYSTEM_PROMPT = (
    "I am a master AI image prompt engineering advisor. I rewrite, expand and enhance the user's image "
    "prompt with dramatic lighting, intricate textures, compelling composition and a distinctive artistic "
    "style. My output is only the refined prompt, under 300 words, in prose, with no markdown or quotes."
)
FIXED_SYSTEM_PROMPT_SUFFIX = "\nEnsure the output language matches the language of user's prompt that needs to be optimized."


@dataclass(frozen=True)
class VideoSettings:
    prompt: str = "make this image come alive, cinematic motion, smooth animation"
    duration: float = 3
    steps: int = 10
    guidance: float = 4

    def merged(self, overrides: dict | None) -> "VideoSettings":
        if not overrides:
            return self
        values = {
            "prompt": overrides.get("prompt", self.prompt),
            "duration": overrides.get("duration", self.duration),
            "steps": overrides.get("steps", self.steps),
            "guidance": overrides.get("guidance", self.guidance),
        }
        return VideoSettings(**values)


DEFAULT_VIDEO_SETTINGS: dict[str, VideoSettings] = {
    "huggingface": VideoSettings(steps=6, guidance=1),
    "gitee": VideoSettings(),
    "modelscope": VideoSettings(),
    "a4f": VideoSettings(),
    "dryrun": VideoSettings(),
}


def video_settings_for(provider: str, overrides: dict | None = None) -> VideoSettings:
    base = DEFAULT_VIDEO_SETTINGS.get(provider, DEFAULT_VIDEO_SETTINGS["huggingface"])
    return base.merged(overrides)


@dataclass
class Settings:
    data_dir: Path = DEFAULT_DATA_DIR
    provider: str = "dryrun"
    model: str | None = None
    text_provider: str = "dryrun"
    upscale_provider: str = "dryrun"
    video_provider: str = "dryrun"
    tokens: dict[str, str] = field(default_factory=dict)
    day_offsets: dict[str, float] = field(default_factory=dict)
    transient_retries: int = 2
    transient_backoff_s: float = 1.0
    poll_backoff: PollBackoff = field(default_factory=PollBackoff)
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    events_enabled: bool = True

    @property
    def artifacts_dir(self) -> Path:
        return self.data_dir / "artifacts"

    @property
    def events_path(self) -> Path | None:
        return self.data_dir / "events.jsonl" if self.events_enabled else None

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> "Settings":
        if dotenv:
            load_dotenv()
        data_dir = Path(os.getenv("PEINTURE_DATA_DIR") or DEFAULT_DATA_DIR).expanduser()
        tokens = {
            key[len(TOKEN_ENV_PREFIX) :].lower(): value
            for key, value in os.environ.items()
            if key.startswith(TOKEN_ENV_PREFIX) and value.strip()
        }
        defaults = PollBackoff()
        timeout_s = getenv_number("PEINTURE_POLL_TIMEOUT_S", defaults.max_elapsed_ms / 1000)
        initial_ms = int(getenv_number("PEINTURE_POLL_INITIAL_S", defaults.initial_ms / 1000) * 1000)
        cap_ms = max(initial_ms, int(getenv_number("PEINTURE_POLL_CAP_S", defaults.cap_ms / 1000) * 1000))
        backoff = PollBackoff(
            initial_ms=initial_ms,
            factor=defaults.factor,
            cap_ms=cap_ms,
            max_attempts=max(1, int(getenv_number("PEINTURE_POLL_MAX_ATTEMPTS", defaults.max_attempts))),
            max_elapsed_ms=int(timeout_s * 1000) if timeout_s > 0 else None,
        )
        return cls(
            data_dir=data_dir,
            provider=(os.getenv("PEINTURE_PROVIDER") or "dryrun").strip().lower(),
            model=(os.getenv("PEINTURE_MODEL") or "").strip() or None,
            text_provider=(os.getenv("PEINTURE_TEXT_PROVIDER") or "dryrun").strip().lower(),
            upscale_provider=(os.getenv("PEINTURE_UPSCALE_PROVIDER") or "dryrun").strip().lower(),
            video_provider=(os.getenv("PEINTURE_VIDEO_PROVIDER") or "dryrun").strip().lower(),
            tokens=tokens,
            transient_retries=int(getenv_number("PEINTURE_TRANSIENT_RETRIES", 2)),
            transient_backoff_s=getenv_number("PEINTURE_TRANSIENT_BACKOFF_S", 1.0),
            poll_backoff=backoff,
            system_prompt=os.getenv("PEINTURE_SYSTEM_PROMPT") or DEFAULT_SYSTEM_PROMPT,
            events_enabled=getenv_flag("PEINTURE_EVENTS", True),
        )
