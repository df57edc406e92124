"""Aspect ratio to pixel dimension helpers."""

from __future__ import annotations


_BASE_DIMENSIONS: dict[str, tuple[int, int]] = {
    "1:1": (1024, 1024),
    "16:9": (1024, 576),
    "4:3": (1024, 768),
    "3:2": (960, 640),
    "9:16": (576, 1024),
    "3:4": (768, 1024),
    "2:3": (640, 960),
    "5:4": (1024, 819),
    "4:5": (819, 1024),
}

ASPECT_RATIOS = tuple(_BASE_DIMENSIONS)


def base_dimensions(aspect_ratio: str | None) -> tuple[int, int]:
    return _BASE_DIMENSIONS.get((aspect_ratio or "").strip(), _BASE_DIMENSIONS["1:1"])


def resolve_dimensions(aspect_ratio: str | None, *, enable_hd: bool = False, multiplier: float = 2.0) -> tuple[int, int]:
    width, height = base_dimensions(aspect_ratio)
    if not enable_hd:
        return width, height
    return round(width * multiplier), round(height * multiplier)


def video_dimensions(width: int, height: int, short_side: int = 720) -> tuple[int, int]:
    """Scale so the short side is ``short_side``; both sides rounded down to even."""
    width = max(1, int(width))
    height = max(1, int(height))
    ratio = width / height
    if width >= height:
        height = short_side
        width = round(height * ratio)
    else:
        width = short_side
        height = round(width / ratio)
    if width % 2:
        width -= 1
    if height % 2:
        height -= 1
    return width, height
