from __future__ import annotations

import json
from pathlib import Path

import pytest

from peinture_engine.history.store import HistoryStore
from peinture_engine.jobs.models import GenerationJob
from peinture_engine.runs.events import EventWriter
from peinture_engine.storage import JsonFileBackend, MemoryBackend


HOUR_MS = 60 * 60 * 1000
T0 = 1_700_000_000_000


class FakeClock:
    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


def _job(job_id: str, created_at: int = T0, **overrides) -> GenerationJob:
    values = {
        "id": job_id,
        "prompt": f"prompt {job_id}",
        "aspect_ratio": "1:1",
        "model": "z-image-turbo",
        "provider": "gitee",
        "created_at": created_at,
        "url": f"https://example.com/{job_id}.png",
    }
    values.update(overrides)
    return GenerationJob(**values)


def test_load_evicts_entries_older_than_a_day() -> None:
    backend = MemoryBackend(
        history=[_job("old").to_dict(), _job("fresh", created_at=T0 + 2 * HOUR_MS).to_dict()]
    )
    store = HistoryStore(backend, clock=FakeClock(T0 + 25 * HOUR_MS))

    loaded = store.load()

    assert [job.id for job in loaded] == ["fresh"]
    assert [job.id for job in store.last_evicted] == ["old"]
    assert [item["id"] for item in backend.history] == ["fresh"]


def test_load_sorts_newest_first_and_drops_malformed() -> None:
    backend = MemoryBackend(
        history=[
            _job("a", created_at=T0).to_dict(),
            {"id": "broken"},
            _job("b", created_at=T0 + 10).to_dict(),
            _job("a", created_at=T0 + 20).to_dict(),
            _job("bad", video_status="success").to_dict(),
        ]
    )
    events = EventWriter(None, "session")
    store = HistoryStore(backend, clock=FakeClock(T0 + 100), events=events)

    assert [job.id for job in store.load()] == ["b", "a"]
    loaded_event = [event for event in events.recent if event["type"] == "history_loaded"][0]
    assert loaded_event["dropped"] == 3
    assert len(backend.history) == 2


def test_load_without_changes_does_not_rewrite() -> None:
    backend = MemoryBackend(history=[_job("a").to_dict()])
    store = HistoryStore(backend, clock=FakeClock(T0 + HOUR_MS))
    store.load()
    assert backend.saves == 0


def test_insert_prepends_and_persists() -> None:
    backend = MemoryBackend()
    store = HistoryStore(backend, clock=FakeClock())
    store.insert(_job("a"))
    store.insert(_job("b"))

    assert [job.id for job in store.all()] == ["b", "a"]
    assert store.head().id == "b"
    assert [item["id"] for item in backend.history] == ["b", "a"]


def test_insert_rejects_duplicate_id() -> None:
    store = HistoryStore(MemoryBackend(), clock=FakeClock())
    store.insert(_job("a"))
    with pytest.raises(ValueError):
        store.insert(_job("a"))
    assert len(store) == 1


def test_update_keeps_position_and_other_entries() -> None:
    store = HistoryStore(MemoryBackend(), clock=FakeClock())
    for job_id in ("a", "b", "c"):
        store.insert(_job(job_id))
    before_a = store.get("a").to_dict()
    before_c = store.get("c").to_dict()

    updated = store.update("b", {"is_blurred": True, "prompt": "edited"})

    assert [job.id for job in store.all()] == ["c", "b", "a"]
    assert updated is store.get("b")
    assert updated.is_blurred is True
    assert updated.prompt == "edited"
    assert updated.url == "https://example.com/b.png"
    assert store.get("a").to_dict() == before_a
    assert store.get("c").to_dict() == before_c


def test_update_rejects_immutable_and_unknown_fields() -> None:
    store = HistoryStore(MemoryBackend(), clock=FakeClock())
    store.insert(_job("a"))

    with pytest.raises(ValueError):
        store.update("a", {"id": "z"})
    with pytest.raises(ValueError):
        store.update("a", {"created_at": 1})
    with pytest.raises(ValueError):
        store.update("a", {"colour": "red"})
    with pytest.raises(KeyError):
        store.update("missing", {"is_blurred": True})


def test_invalid_patch_leaves_entry_untouched() -> None:
    store = HistoryStore(MemoryBackend(), clock=FakeClock())
    store.insert(_job("a"))

    with pytest.raises(ValueError):
        store.update("a", {"video_status": "success", "is_blurred": True})

    job = store.get("a")
    assert job.video_status is None
    assert job.is_blurred is False


def test_remove_returns_entry() -> None:
    backend = MemoryBackend()
    store = HistoryStore(backend, clock=FakeClock())
    store.insert(_job("a"))
    store.insert(_job("b"))

    removed = store.remove("b")

    assert removed is not None and removed.id == "b"
    assert store.remove("b") is None
    assert "b" not in store
    assert store.head().id == "a"
    assert [item["id"] for item in backend.history] == ["a"]


class _BrokenBackend(MemoryBackend):
    def save_history(self, entries):
        raise OSError("disk full")


def test_persist_failure_is_reported_as_event() -> None:
    events = EventWriter(None, "session")
    store = HistoryStore(_BrokenBackend(), clock=FakeClock(), events=events)
    store.insert(_job("a"))

    assert store.head().id == "a"
    failures = [event for event in events.recent if event["type"] == "persist_failed"]
    assert failures and failures[0]["error"] == "disk full"


def test_json_backend_survives_reload(tmp_path: Path) -> None:
    backend = JsonFileBackend(tmp_path)
    store = HistoryStore(backend, clock=FakeClock())
    store.insert(_job("a"))
    store.update("a", {"video_status": "generating", "video_task_id": "t-1"})

    reloaded = HistoryStore(JsonFileBackend(tmp_path), clock=FakeClock(T0 + HOUR_MS))
    jobs = reloaded.load()

    assert [job.id for job in jobs] == ["a"]
    assert reloaded.pending_videos()[0].video_task_id == "t-1"
    assert json.loads((tmp_path / "history.json").read_text(encoding="utf-8"))[0]["id"] == "a"


def test_json_backend_tolerates_corrupt_files(tmp_path: Path) -> None:
    (tmp_path / "history.json").write_text("{not json", encoding="utf-8")
    (tmp_path / "prompts.json").write_text('{"a": 1}', encoding="utf-8")
    backend = JsonFileBackend(tmp_path)

    assert backend.load_history() == []
    assert backend.load_prompt_history() == []
    assert backend.load_token_health("gitee") == {}
