"""Peinture CLI entrypoints."""

from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import asdict
from pathlib import Path
from typing import Any

from .config import Settings
from .engine import PeintureEngine
from .errors import PeintureError
from .jobs.models import VideoStatus
from .sizes import ASPECT_RATIOS


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="peinture")
    parser.add_argument("--data-dir", dest="data_dir", help="History, prompts and artifacts directory")
    sub = parser.add_subparsers(dest="command")

    generate = sub.add_parser("generate", help="Generate an image from a prompt")
    generate.add_argument("prompt")
    generate.add_argument("--provider")
    generate.add_argument("--model")
    generate.add_argument("--aspect-ratio", dest="aspect_ratio", default="1:1", choices=ASPECT_RATIOS)
    generate.add_argument("--seed", type=int)
    generate.add_argument("--steps", type=int)
    generate.add_argument("--guidance", type=float)
    generate.add_argument("--no-hd", dest="enable_hd", action="store_false")
    generate.add_argument("--optimize", action="store_true", help="Rewrite the prompt before generating")

    history = sub.add_parser("history", help="List generated images, newest first")
    history.add_argument("--limit", type=int)

    prompts = sub.add_parser("prompts", help="Show recent prompts")
    prompts.add_argument("--clear", action="store_true")

    tokens = sub.add_parser("tokens", help="Show token pool usage")
    tokens.add_argument("--provider", action="append", dest="providers")

    video = sub.add_parser("video", help="Turn an image into a short video")
    video.add_argument("job_id", nargs="?")
    video.add_argument("--provider")
    video.add_argument("--prompt")
    video.add_argument("--duration", type=float)
    video.add_argument("--no-wait", dest="wait", action="store_false")

    upscale = sub.add_parser("upscale", help="Upscale an image")
    upscale.add_argument("job_id", nargs="?")
    upscale.add_argument("--discard", action="store_true", help="Render the upscale but keep the original")

    blur = sub.add_parser("blur", help="Toggle the blur flag of an image")
    blur.add_argument("job_id", nargs="?")

    delete = sub.add_parser("delete", help="Delete an image from history")
    delete.add_argument("job_id", nargs="?")
    return parser


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def _handle_generate(engine: PeintureEngine, args: argparse.Namespace) -> int:
    prompt = args.prompt
    if args.optimize:
        prompt = await engine.optimize_prompt(prompt)
    job = await engine.generate(
        prompt,
        provider=args.provider,
        model=args.model,
        aspect_ratio=args.aspect_ratio,
        seed=args.seed,
        steps=args.steps,
        guidance_scale=args.guidance,
        enable_hd=args.enable_hd,
    )
    _print_json(job.to_dict())
    return 0


async def _handle_video(engine: PeintureEngine, args: argparse.Namespace) -> int:
    overrides = {}
    if args.prompt:
        overrides["prompt"] = args.prompt
    if args.duration is not None:
        overrides["duration"] = args.duration
    job = await engine.request_video(args.job_id, provider=args.provider, overrides=overrides or None)
    if args.wait:
        await engine.run_video_polling()
    _print_json(job.to_dict())
    return 0 if job.video_status != VideoStatus.FAILED else 1


async def _handle_upscale(engine: PeintureEngine, args: argparse.Namespace) -> int:
    url = await engine.upscale(args.job_id)
    if args.discard:
        engine.discard_upscale()
        _print_json({"discarded": url})
        return 0
    _print_json(engine.apply_upscale().to_dict())
    return 0


async def _dispatch(engine: PeintureEngine, args: argparse.Namespace) -> int:
    if args.command == "generate":
        return await _handle_generate(engine, args)
    if args.command == "video":
        return await _handle_video(engine, args)
    if args.command == "upscale":
        return await _handle_upscale(engine, args)
    if args.command == "history":
        jobs = engine.history.all()
        if args.limit is not None:
            jobs = jobs[: args.limit]
        _print_json([job.to_dict() for job in jobs])
        return 0
    if args.command == "prompts":
        if args.clear:
            engine.prompts.clear()
        _print_json(engine.prompts.all())
        return 0
    if args.command == "tokens":
        providers = args.providers or engine.pools.usable_providers()
        _print_json({provider: asdict(engine.token_stats(provider)) for provider in providers})
        return 0
    if args.command == "blur":
        _print_json(engine.toggle_blur(args.job_id).to_dict())
        return 0
    if args.command == "delete":
        job = engine.delete(args.job_id)
        _print_json({"deleted": job.id, "current_id": engine.current_id})
        return 0
    raise ValueError(f"Unknown command '{args.command}'.")


async def _run(args: argparse.Namespace) -> int:
    settings = Settings.from_env()
    if args.data_dir:
        settings.data_dir = Path(args.data_dir).expanduser()
    engine = PeintureEngine(settings)
    try:
        return await _dispatch(engine, args)
    except (PeintureError, ValueError) as exc:
        _print_json({"error": str(exc), "type": type(exc).__name__})
        return 1
    finally:
        engine.close()


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        raise SystemExit(1)
    raise SystemExit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
