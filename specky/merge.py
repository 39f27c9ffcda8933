"""Merge strategy selection and the line-oriented heuristic merger.

The merger never parses code. It finds the first top-level declaration in
the proposed snippet, looks for a declaration with the same name in the
existing file and swaps that line range. Full replacement is the default
whenever a signal is ambiguous.
"""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import List, Optional, Tuple

from .models import MergeDecision


FULL_REPLACE_EXTENSIONS = frozenset({
    # configuration
    "json", "jsonc", "yaml", "yml", "toml", "ini", "cfg", "conf", "env", "lock", "properties",
    # markup
    "xml", "html", "htm", "svg", "css", "scss", "less", "vue", "svelte",
    # documentation
    "md", "mdx", "rst", "txt", "adoc", "csv",
})

_DECLARATION = re.compile(
    r"^(?:export[ \t]+(?:default[ \t]+)?)?"
    r"(?:pub(?:\([^)\n]*\))?[ \t]+)?"
    r"(?:(?:async|abstract|static|public|private|protected|final|declare)[ \t]+)*"
    r"(?P<keyword>function\*?|class|interface|type|enum|const|let|var|def|fn|func|struct|trait)"
    r"[ \t]+(?P<name>[A-Za-z_$][\w$]*)"
)
_DECORATOR = re.compile(r"^@[A-Za-z_]")

_COMPLETE_FILE_MARKERS = (
    re.compile(r"^[ \t]*/\*"),
    re.compile(r'^(?:"""|\'\'\')'),
    re.compile(r"^[ \t]*import(?:[ \t]+|[({*\"'])"),
    re.compile(r"^[ \t]*from[ \t]+\S+[ \t]+import[ \t]"),
    re.compile(r"^[ \t]*#include[ \t]*[<\"]"),
    re.compile(r"^[ \t]*(?:use|using|package)[ \t]+[\w.:]+"),
    re.compile(r"\brequire\(\s*['\"]"),
)


def file_extension(path: str) -> str:
    return PurePosixPath(path.replace("\\", "/")).suffix.lstrip(".").lower()


def has_complete_file_markers(content: str) -> bool:
    """True when the snippet looks like a whole file rather than one declaration."""
    for line in content.split("\n"):
        for marker in _COMPLETE_FILE_MARKERS:
            if marker.search(line):
                return True
    return False


def find_declaration_name(content: str) -> Optional[str]:
    """Name of the first top-level declaration in ``content``."""
    for line in content.split("\n"):
        match = _DECLARATION.match(line)
        if match:
            return match.group("name")
    return None


def _is_boundary(line: str) -> bool:
    return bool(_DECLARATION.match(line) or _DECORATOR.match(line))


def is_decorated(content: str) -> bool:
    """True when a decorator precedes the first declaration in ``content``."""
    for line in content.split("\n"):
        if _DECLARATION.match(line):
            return False
        if _DECORATOR.match(line):
            return True
    return False


def locate_declaration(existing: str, name: str, include_decorators: bool = True) -> Optional[Tuple[int, int]]:
    """Return the ``[start, end)`` line range of top-level declaration ``name``.

    Decorators directly above the declaration belong to the range unless
    ``include_decorators`` is false. The range
    ends at the next line starting a top-level declaration (or a decorator),
    or at end of file. Blank lines just before that boundary
    stay outside the range so spacing survives the splice.
    """
    lines = existing.split("\n")
    start = None
    for index, line in enumerate(lines):
        match = _DECLARATION.match(line)
        if match and match.group("name") == name:
            start = index
            break
    if start is None:
        return None

    declaration_line = start
    while include_decorators and start > 0 and _DECORATOR.match(lines[start - 1]):
        start -= 1

    end = len(lines)
    for index in range(declaration_line + 1, len(lines)):
        if _is_boundary(lines[index]):
            end = index
            break
    while end > start + 1 and not lines[end - 1].strip():
        end -= 1
    return start, end


def choose_strategy(path: str, existing: str, proposed: str, replace_ratio: float = 0.8) -> Tuple[str, str]:
    """Decide between ``replace`` and ``merge`` for an existing file."""
    if len(proposed) > replace_ratio * len(existing):
        return "replace", "proposed content is large relative to the existing file"
    if file_extension(path) in FULL_REPLACE_EXTENSIONS:
        return "replace", "structured or markup file"
    if has_complete_file_markers(proposed):
        return "replace", "proposed content looks like a complete file"
    return "merge", "small single-declaration edit"


def append_content(existing: str, proposed: str) -> str:
    trailing_newline = existing.endswith("\n")
    merged = existing.rstrip("\n") + "\n\n" + proposed.strip("\n")
    return merged + "\n" if trailing_newline else merged


def splice_content(existing: str, proposed: str, start: int, end: int) -> str:
    lines = existing.split("\n")
    replacement: List[str] = proposed.strip("\n").split("\n")
    return "\n".join(lines[:start] + replacement + lines[end:])


def plan_merge(path: str, existing: Optional[str], proposed: str, replace_ratio: float = 0.8) -> MergeDecision:
    """Produce the final file body for one change.

    ``existing is None`` means the file does not exist yet.
    """
    if existing is None:
        return MergeDecision(strategy="create", content=proposed, reason="file does not exist")

    strategy, reason = choose_strategy(path, existing, proposed, replace_ratio)
    if strategy == "replace":
        return MergeDecision(strategy="replace", content=proposed, reason=reason)

    name = find_declaration_name(proposed)
    if name is None:
        return MergeDecision(strategy="replace", content=proposed, reason="no declaration found in proposed content")

    span = locate_declaration(existing, name, include_decorators=is_decorated(proposed))
    if span is None:
        return MergeDecision(
            strategy="append",
            content=append_content(existing, proposed),
            reason=f"declaration '{name}' not found in existing file",
            declaration=name,
        )

    start, end = span
    return MergeDecision(
        strategy="splice",
        content=splice_content(existing, proposed, start, end),
        reason=f"replaced declaration '{name}'",
        declaration=name,
        start_line=start,
        end_line=end,
    )
