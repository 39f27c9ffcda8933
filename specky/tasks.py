"""Task model parsing for tasks.md checklists.

Turns checkbox lines (``<indent>- [ ] title`` / ``- [x] title``) into a
nested task tree. Two spaces of indentation make one level of nesting.
The text stays the single source of truth: toggling rewrites exactly one
line and the tree is re-parsed afterwards.
"""

from __future__ import annotations

import re
from typing import Iterable, Iterator, List, Optional, Tuple

from .models import FeatureProgress, Task


_TASK_LINE_PATTERN = re.compile(r"^(?P<indent>[ \t]*)- \[(?P<mark>[ xX])\] (?P<title>.+)$")
_MARKER_PATTERN = re.compile(r"\[(?P<mark>[ xX])\]")

INDENT_WIDTH = 2


def parse_tasks(content: str) -> List[Task]:
    """Parse checkbox lines into an ordered list of root tasks.

    ``stack[k]`` holds the most recent task seen at depth ``k``. A task whose
    expected parent is missing (indentation skipped a level) attaches to the
    nearest shallower task, and becomes a root when there is none.
    """
    roots: List[Task] = []
    stack: List[Optional[Task]] = [None]
    counter = 0

    for index, line in enumerate(content.split("\n")):
        match = _TASK_LINE_PATTERN.match(line)
        if not match:
            continue

        level = len(match.group("indent")) // INDENT_WIDTH
        task = Task(
            task_id=f"task-{counter}",
            title=match.group("title").strip(),
            completed=match.group("mark").lower() == "x",
            source_line=index + 1,
            indent_level=level,
        )
        counter += 1

        if level == 0:
            roots.append(task)
            stack = [task]
            continue

        parent = _find_parent(stack, level - 1)
        if parent is not None:
            parent.children.append(task)
        else:
            roots.append(task)

        while len(stack) <= level:
            stack.append(None)
        stack[level] = task
        del stack[level + 1:]

    return roots


def _find_parent(stack: List[Optional[Task]], parent_level: int) -> Optional[Task]:
    if parent_level < len(stack) and stack[parent_level] is not None:
        return stack[parent_level]
    for level in range(min(parent_level, len(stack)) - 1, -1, -1):
        if stack[level] is not None:
            return stack[level]
    return None


def iter_tasks(tasks: Iterable[Task]) -> Iterator[Task]:
    """Pre-order traversal, parents before children."""
    for task in tasks:
        yield task
        yield from iter_tasks(task.children)


def flatten_tasks(tasks: Iterable[Task]) -> List[Task]:
    return list(iter_tasks(tasks))


def count_tasks(tasks: Iterable[Task]) -> Tuple[int, int]:
    """Return ``(total, completed)`` across the whole tree."""
    total = 0
    completed = 0
    for task in iter_tasks(tasks):
        total += 1
        if task.completed:
            completed += 1
    return total, completed


def calculate_progress(tasks: Iterable[Task]) -> FeatureProgress:
    total, completed = count_tasks(tasks)
    return FeatureProgress.from_counts(total, completed)


def find_task(tasks: Iterable[Task], task_id: str) -> Optional[Task]:
    for task in iter_tasks(tasks):
        if task.task_id == task_id:
            return task
    return None


def select_task(tasks: Iterable[Task], index: int) -> Optional[Task]:
    """Select the Nth task (1-based) in pre-order across the whole tree."""
    if index < 1:
        return None
    flat = flatten_tasks(tasks)
    if index > len(flat):
        return None
    return flat[index - 1]


def first_incomplete(tasks: Iterable[Task]) -> Optional[Task]:
    for task in iter_tasks(tasks):
        if not task.completed:
            return task
    return None


def set_task_marker(content: str, task: Task, completed: Optional[bool] = None) -> str:
    """Rewrite the checkbox marker on the task's source line.

    ``completed=None`` flips the current state. Only that one line changes;
    the line must still look like a checkbox task, otherwise ``ValueError``
    is raised and nothing is rewritten.
    """
    lines = content.split("\n")
    index = task.source_line - 1
    if index < 0 or index >= len(lines):
        raise ValueError(f"Task '{task.task_id}' points at line {task.source_line}, which does not exist")

    line = lines[index]
    match = _TASK_LINE_PATTERN.match(line)
    if not match:
        raise ValueError(f"Line {task.source_line} is no longer a checkbox task: {line!r}")

    currently_done = match.group("mark").lower() == "x"
    target = (not currently_done) if completed is None else completed
    if target == currently_done:
        return content

    new_mark = "[x]" if target else "[ ]"
    lines[index] = _MARKER_PATTERN.sub(new_mark, line, count=1)
    return "\n".join(lines)


def toggle_task(content: str, task_id: str) -> Tuple[str, Task]:
    """Flip the marker of ``task_id``; returns the new text and the parsed task."""
    task = find_task(parse_tasks(content), task_id)
    if task is None:
        raise KeyError(task_id)
    return set_task_marker(content, task), task


def render_tasks(tasks: Iterable[Task], level: int = 0) -> str:
    """Render a task tree back into canonical checkbox text."""
    lines: List[str] = []
    for task in tasks:
        mark = "x" if task.completed else " "
        lines.append(f"{' ' * (INDENT_WIDTH * level)}- [{mark}] {task.title}")
        if task.children:
            lines.append(render_tasks(task.children, level + 1))
    return "\n".join(lines)


def progress_bar(percentage: int, width: int = 10) -> str:
    filled = (2 * percentage * width + 100) // 200
    return "[" + "█" * filled + "░" * (width - filled) + "]"


def format_progress(progress: FeatureProgress) -> str:
    """Format progress for display, e.g. ``[█████░░░░░] 5/10 (50%)``."""
    if progress.total_tasks == 0:
        return "No tasks defined"
    return (
        f"{progress_bar(progress.percentage)} "
        f"{progress.completed_tasks}/{progress.total_tasks} ({progress.percentage}%)"
    )
