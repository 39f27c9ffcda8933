"""Smart context: excerpts of files a task title mentions."""

from __future__ import annotations

import logging
from typing import Iterable, List

from .extraction import CONTEXT_EXTENSIONS, extract_path_tokens
from .filestore import LocalFileStore
from .models import SmartContext, SmartContextEntry
from .paths import sanitize_path


logger = logging.getLogger("specky.context")

TRUNCATION_NOTE = "\n... (truncated)"


class SmartContextBuilder:
    """Builds a bounded block of file excerpts for an implementation prompt.

    The character budget is shared by every entry of one request. The entry
    that crosses it is truncated and building stops there.
    """

    def __init__(
        self,
        store: LocalFileStore,
        char_budget: int = 12000,
        max_files: int = 5,
        extensions: Iterable[str] = CONTEXT_EXTENSIONS,
    ):
        self.store = store
        self.char_budget = char_budget
        self.max_files = max_files
        self.extensions = tuple(extensions)

    def build(self, task_title: str) -> SmartContext:
        tokens = extract_path_tokens(task_title, limit=self.max_files, extensions=self.extensions)
        context = SmartContext()
        if not tokens:
            return context

        remaining = self.char_budget
        blocks: List[str] = []
        for token in tokens:
            if remaining <= 0:
                break

            resolution = sanitize_path(self.store.root, token)
            if not resolution.ok or not self.store.is_file(resolution.resolved):
                logger.debug(f"No context for '{token}'")
                continue

            content = self.store.read_text(resolution.resolved)
            if content is None:
                continue

            truncated = len(content) > remaining
            excerpt = content[:remaining] if truncated else content
            remaining -= len(excerpt)

            context.entries.append(SmartContextEntry(path=token, excerpt=excerpt, truncated=truncated))
            blocks.append(_fence(token, excerpt, truncated))

        if context.entries:
            context.text = "## Relevant Files\n\n" + "\n\n".join(blocks)
            logger.info(f"Smart context: {len(context.entries)} file(s), {self.char_budget - remaining} chars")
        return context


def _fence(path: str, excerpt: str, truncated: bool) -> str:
    language = path.rsplit(".", 1)[-1]
    body = excerpt.rstrip("\n")
    if truncated:
        body += TRUNCATION_NOTE
    return f"File `{path}`:\n```{language}\n{body}\n```"
