"""Applying extracted change sets to the project tree.

Every change is sanitized and merged first. Changes that survive are
written as one ``FileTransaction``: on commit failure nothing counts as
applied. Dry runs render a comparison per change and touch nothing.
"""

from __future__ import annotations

import difflib
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .errors import TransactionError
from .filestore import FileTransaction, LocalFileStore
from .merge import plan_merge
from .models import ApplyReport, ChangeSet, MergeDecision, Preview, SkipReason
from .paths import normalize_claimed_path, sanitize_path
from .specky_logging import (
    log_change_skipped,
    log_changes_applied,
    log_changes_previewed,
    log_error_with_context,
    log_operation,
    log_performance,
)


logger = logging.getLogger("specky.applicator")

PreviewSink = Callable[[Preview], None]

COLUMN_WIDTH = 60
_MARKERS = {"equal": " ", "replace": "|", "delete": "<", "insert": ">"}


def side_by_side(original: str, proposed: str, width: int = COLUMN_WIDTH) -> str:
    """Render a two-column comparison of ``original`` and ``proposed``."""
    left = original.splitlines()
    right = proposed.splitlines()
    rows = [f"{'current'.ljust(width)}   proposed", f"{'-' * width}   {'-' * width}"]

    matcher = difflib.SequenceMatcher(None, left, right, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        before = left[i1:i2]
        after = right[j1:j2]
        for offset in range(max(len(before), len(after))):
            cell = before[offset] if offset < len(before) else ""
            other = after[offset] if offset < len(after) else ""
            rows.append(f"{_cell(cell, width)} {_MARKERS[tag]} {other.expandtabs(4)}".rstrip())
    return "\n".join(rows)


def _cell(text: str, width: int) -> str:
    text = text.expandtabs(4)
    if len(text) > width:
        text = text[:width - 1] + "…"
    return text.ljust(width)


def unified(path: str, original: str, proposed: str) -> str:
    diff = difflib.unified_diff(
        original.splitlines(keepends=True),
        proposed.splitlines(keepends=True),
        fromfile=f"a/{path}",
        tofile=f"b/{path}",
    )
    return "".join(diff)


def log_preview(preview: Preview) -> None:
    """Default preview sink: write the comparison to the log."""
    logger.info(f"Preview: {preview.title}\n{preview.comparison}")


class ChangeApplicator:
    """Sanitizes, merges and commits proposed changes."""

    def __init__(
        self,
        store: LocalFileStore,
        preview_sink: Optional[PreviewSink] = None,
        replace_ratio: float = 0.8,
        comparison_style: str = "side_by_side",
    ):
        self.store = store
        self.preview_sink = preview_sink or log_preview
        self.replace_ratio = replace_ratio
        self.comparison_style = comparison_style

    def plan(self, changes: ChangeSet) -> Tuple[List[Tuple[str, Path, Optional[str], MergeDecision]], List[SkipReason]]:
        """Resolve and merge every change without writing anything.

        Returns ``(planned, skipped)`` where each planned entry is
        ``(relative_path, absolute_path, current_text, decision)``. Several
        changes to the same path are merged in order.
        """
        planned: Dict[Path, Tuple[str, Path, Optional[str], MergeDecision]] = {}
        skipped: List[SkipReason] = []

        for change in changes:
            resolution = sanitize_path(self.store.root, change.path)
            if not resolution.ok:
                skipped.append(resolution.skip)
                continue

            target = resolution.resolved
            relative = normalize_claimed_path(change.path)
            if target.exists() and not target.is_file():
                skipped.append(SkipReason(path=change.path, code="not_a_file", detail="target exists and is not a file"))
                continue

            if target in planned:
                _, _, original, previous = planned[target]
                current: Optional[str] = previous.content
            else:
                data = self.store.read(target)
                try:
                    original = None if data is None else data.decode("utf-8")
                except UnicodeDecodeError:
                    skipped.append(SkipReason(path=change.path, code="not_text", detail="existing file is not UTF-8 text"))
                    continue
                current = original

            decision = plan_merge(relative, current, change.content, self.replace_ratio)
            if target in planned and original is None:
                decision.strategy = "create"
            planned[target] = (relative, target, original, decision)

        for skip in skipped:
            logger.warning(f"Skipping change to '{skip.path}': {skip.code} ({skip.detail})")
            log_change_skipped(skip.path, skip.code)

        return list(planned.values()), skipped

    @log_performance("apply_changes")
    def apply(self, changes: ChangeSet, dry_run: bool = False) -> ApplyReport:
        """Apply ``changes`` as one transaction, or preview them when ``dry_run``."""
        if dry_run:
            return self.preview(changes)

        planned, skipped = self.plan(changes)
        report = ApplyReport(skipped=skipped)
        if not planned:
            return report

        transaction = FileTransaction()
        for relative, target, original, decision in planned:
            report.decisions[relative] = decision
            if original is None:
                transaction.create_file(target)
                transaction.insert(target, 0, decision.content)
            else:
                transaction.replace(target, 0, len(original), decision.content)

        with log_operation("commit_changes", file_count=len(planned)):
            try:
                self.store.commit(transaction)
            except (TransactionError, OSError) as e:
                log_error_with_context(e, {
                    "operation": "apply_changes",
                    "paths": [relative for relative, _, _, _ in planned],
                })
                report.error = str(e)
                return report

        report.applied = [relative for relative, _, _, _ in planned]
        log_changes_applied(report.applied, skipped=len(skipped))
        return report

    def preview(self, changes: ChangeSet) -> ApplyReport:
        """Open one comparison per change. Never mutates the store."""
        planned, skipped = self.plan(changes)
        report = ApplyReport(skipped=skipped, dry_run=True)

        for relative, _, original, decision in planned:
            report.decisions[relative] = decision
            preview = self._render(relative, original, decision)
            try:
                self.preview_sink(preview)
            except Exception as e:
                log_error_with_context(e, {"operation": "open_preview", "path": relative})
                continue
            report.previews_opened += 1

        log_changes_previewed(report.previews_opened)
        return report

    def _render(self, relative: str, original: Optional[str], decision: MergeDecision) -> Preview:
        is_creation = original is None
        before = original or ""
        if self.comparison_style == "unified":
            comparison = unified(relative, before, decision.content)
        else:
            comparison = side_by_side(before, decision.content)
        suffix = "(new)" if is_creation else f"({decision.strategy})"
        return Preview(
            path=relative,
            title=f"{relative} {suffix}",
            original=before,
            proposed=decision.content,
            comparison=comparison,
            is_creation=is_creation,
        )

    def undo_last(self) -> List[str]:
        """Revert the last committed change set. Returns project-relative paths."""
        restored = self.store.undo_last()
        return [path.relative_to(self.store.root).as_posix() for path in restored]

    @property
    def can_undo(self) -> bool:
        return self.store.can_undo


def describe_report(report: ApplyReport) -> str:
    """One-line human summary of an apply report."""
    if report.error:
        return f"Apply failed, no files were changed: {report.error}"
    if report.dry_run:
        text = f"Opened {report.previews_opened} preview(s)"
    else:
        text = f"Applied {len(report.applied)} file(s)"
    if report.skipped:
        text += f", skipped {len(report.skipped)}"
    return text
