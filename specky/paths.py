"""Mapping of untrusted relative paths onto the project tree."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Union

from .models import PathResolution, SkipReason


_DRIVE_LETTER = re.compile(r"^[A-Za-z]:")
_FORBIDDEN_SEGMENTS = {"", ".", ".."}


def normalize_claimed_path(claimed: str) -> str:
    return claimed.replace("\\", "/").strip()


def sanitize_path(root: Union[Path, str], claimed: str) -> PathResolution:
    """Resolve ``claimed`` inside ``root`` or explain why it was rejected.

    Rules, in order: empty path, leading ``/`` or ``~``, drive letter,
    any empty, ``.`` or ``..`` segment. A path that passes but resolves
    outside the root through a symlink is rejected as well.
    """
    normalized = normalize_claimed_path(claimed)

    if not normalized:
        return _reject(claimed, "empty_path", "path is empty")
    if normalized.startswith("/"):
        return _reject(claimed, "absolute_path", "absolute paths are not allowed")
    if normalized.startswith("~"):
        return _reject(claimed, "home_path", "home-relative paths are not allowed")
    if _DRIVE_LETTER.match(normalized):
        return _reject(claimed, "drive_letter", "drive-qualified paths are not allowed")

    segments = normalized.split("/")
    for segment in segments:
        if segment in _FORBIDDEN_SEGMENTS:
            shown = segment or "<empty>"
            return _reject(claimed, "invalid_segment", f"segment '{shown}' is not allowed")

    base = Path(root).resolve()
    candidate = base.joinpath(*segments)
    try:
        candidate.resolve().relative_to(base)
    except ValueError:
        return _reject(claimed, "outside_root", "path resolves outside the project root")

    return PathResolution(claimed=claimed, resolved=candidate)


def is_safe_path(root: Union[Path, str], claimed: str) -> bool:
    return sanitize_path(root, claimed).ok


def _reject(claimed: str, code: str, detail: str) -> PathResolution:
    return PathResolution(claimed=claimed, skip=SkipReason(path=claimed, code=code, detail=detail))
