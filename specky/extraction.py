"""Extraction of file changes, shell commands and path tokens from generated text.

Everything here is a two-phase, line-oriented scan: fenced regions are
tokenized first, then headings are matched against the line immediately
preceding each fence. No pattern is ever run across a whole document, so
large or adversarial generated text cannot trigger catastrophic backtracking.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .models import ChangeSet, ProposedChange


_FENCE_OPEN = re.compile(r"^(?P<indent> {0,3})(?P<fence>`{3,}|~{3,})(?P<info>[^`]*)$")
_CHANGE_HEADING = re.compile(r"^ {0,3}#{1,6}[ \t]+`(?P<path>[^`]+)`")

SHELL_LANGUAGES = frozenset({"bash", "sh", "shell", "zsh", "console", "terminal", "powershell", "pwsh"})
PROMPT_CHARACTERS = ("$", ">")

CONTEXT_EXTENSIONS = (
    "ts", "tsx", "js", "jsx", "mjs", "cjs", "py", "json", "md",
    "yaml", "yml", "css", "scss", "html", "go", "rs", "java",
)
_PATH_TOKEN = re.compile(r"[\w][\w./-]*\.(?:" + "|".join(CONTEXT_EXTENSIONS) + r")")
_TOKEN_TRIM = "`'\"()[]{}<>,;:!?"


@dataclass(slots=True)
class FencedBlock:
    """A closed fenced region. Line numbers are 0-based."""

    open_line: int
    close_line: int
    info: str
    content: str

    @property
    def language(self) -> str:
        parts = self.info.strip().split()
        return parts[0].lower() if parts else ""


def scan_fenced_blocks(text: str) -> List[FencedBlock]:
    """Tokenize every closed fenced block.

    A block closes on a line holding only the same fence character repeated
    at least as many times as the opener. An unclosed trailing fence is
    dropped.
    """
    lines = text.split("\n")
    blocks: List[FencedBlock] = []
    index = 0
    while index < len(lines):
        match = _FENCE_OPEN.match(lines[index].rstrip("\r"))
        if not match:
            index += 1
            continue

        fence = match.group("fence")
        close = _find_close(lines, index + 1, fence)
        if close is None:
            break

        body = [line.rstrip("\r") for line in lines[index + 1:close]]
        blocks.append(FencedBlock(
            open_line=index,
            close_line=close,
            info=match.group("info").strip(),
            content="\n".join(body),
        ))
        index = close + 1
    return blocks


def _find_close(lines: List[str], start: int, fence: str) -> Optional[int]:
    char = fence[0]
    for index in range(start, len(lines)):
        candidate = lines[index].strip()
        if len(candidate) >= len(fence) and candidate == char * len(candidate):
            return index
    return None


def _heading_path(line: str) -> Optional[str]:
    match = _CHANGE_HEADING.match(line.rstrip("\r"))
    if not match:
        return None
    path = match.group("path").strip()
    return path or None


def _change_blocks(text: str) -> List[tuple]:
    lines = text.split("\n")
    found = []
    for block in scan_fenced_blocks(text):
        if block.open_line == 0:
            continue
        path = _heading_path(lines[block.open_line - 1])
        if path is not None:
            found.append((path, block))
    return found


def extract_changes(text: str) -> ChangeSet:
    """Collect ``(path, content)`` pairs from labeled file blocks.

    A change block is a heading whose text starts with a back-ticked path,
    e.g. ``#### `src/a.ts` (new)``, immediately followed by a fenced block.
    Anything else, including a blank line between heading and fence, is
    ignored. An empty list is a valid outcome.
    """
    return [ProposedChange(path=path, content=block.content) for path, block in _change_blocks(text)]


def extract_shell_commands(text: str, limit: int = 10) -> List[str]:
    """Pull runnable lines out of shell-tagged fenced blocks.

    Blank and comment lines are skipped and one leading prompt character is
    stripped. Order of first appearance is kept, duplicates are dropped and
    at most ``limit`` commands are returned. Blocks that are file changes
    are never treated as commands. Nothing here executes anything.
    """
    change_lines = {block.open_line for _, block in _change_blocks(text)}
    commands: List[str] = []
    seen = set()
    for block in scan_fenced_blocks(text):
        if block.open_line in change_lines or block.language not in SHELL_LANGUAGES:
            continue
        for raw in block.content.split("\n"):
            command = _clean_command(raw)
            if not command or command in seen:
                continue
            seen.add(command)
            commands.append(command)
            if len(commands) >= limit:
                return commands
    return commands


def _clean_command(raw: str) -> str:
    line = raw.strip()
    if not line or line.startswith("#"):
        return ""
    if line[0] in PROMPT_CHARACTERS:
        line = line[1:].strip()
    if line.startswith("#"):
        return ""
    return line


def extract_path_tokens(text: str, limit: int = 5, extensions: Iterable[str] = CONTEXT_EXTENSIONS) -> List[str]:
    """Find file-path-shaped tokens (back-ticked or bare) in free text."""
    allowed = {ext.lower() for ext in extensions}
    tokens: List[str] = []
    for word in text.split():
        candidate = word.strip(_TOKEN_TRIM).rstrip(".")
        if not candidate or not _PATH_TOKEN.fullmatch(candidate):
            continue
        if candidate.rsplit(".", 1)[-1].lower() not in allowed:
            continue
        if candidate not in tokens:
            tokens.append(candidate)
            if len(tokens) >= limit:
                break
    return tokens
