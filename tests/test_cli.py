from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

from peinture_engine import cli


def _run(monkeypatch, capsys, tmp_path: Path, *argv: str) -> tuple[int, object]:
    monkeypatch.setattr(sys, "argv", ["peinture", "--data-dir", str(tmp_path), *argv])
    with pytest.raises(SystemExit) as excinfo:
        cli.main()
    out = capsys.readouterr().out
    return excinfo.value.code, json.loads(out)


@pytest.fixture
def dryrun_env(monkeypatch):
    for key in ("PEINTURE_PROVIDER", "PEINTURE_MODEL", "PEINTURE_UPSCALE_PROVIDER", "PEINTURE_VIDEO_PROVIDER"):
        monkeypatch.setenv(key, "dryrun" if key != "PEINTURE_MODEL" else "")
    monkeypatch.setenv("PEINTURE_POLL_INITIAL_S", "0")
    monkeypatch.setenv("PEINTURE_POLL_CAP_S", "0")
    return monkeypatch


def test_generate_then_history(dryrun_env, capsys, tmp_path: Path) -> None:
    code, job = _run(dryrun_env, capsys, tmp_path, "generate", "a paper boat", "--no-hd", "--seed", "3")
    assert code == 0
    assert job["prompt"] == "a paper boat"
    assert job["seed"] == 3

    code, history = _run(dryrun_env, capsys, tmp_path, "history")
    assert code == 0
    assert [item["id"] for item in history] == [job["id"]]

    code, prompts = _run(dryrun_env, capsys, tmp_path, "prompts")
    assert prompts == ["a paper boat"]


def test_blur_and_delete(dryrun_env, capsys, tmp_path: Path) -> None:
    _, job = _run(dryrun_env, capsys, tmp_path, "generate", "a kite", "--no-hd")

    _, blurred = _run(dryrun_env, capsys, tmp_path, "blur", job["id"])
    assert blurred["is_blurred"] is True

    _, deleted = _run(dryrun_env, capsys, tmp_path, "delete", job["id"])
    assert deleted == {"deleted": job["id"], "current_id": None}


def test_video_waits_for_completion(dryrun_env, capsys, tmp_path: Path) -> None:
    _run(dryrun_env, capsys, tmp_path, "generate", "a lantern", "--no-hd")

    code, job = _run(dryrun_env, capsys, tmp_path, "video")

    assert code == 0
    assert job["video_status"] == "success"
    assert Path(job["video_url"]).exists()


def test_errors_are_reported_as_json(dryrun_env, capsys, tmp_path: Path) -> None:
    code, payload = _run(dryrun_env, capsys, tmp_path, "blur", "missing-id")

    assert code == 1
    assert payload["type"] == "JobNotFound"
