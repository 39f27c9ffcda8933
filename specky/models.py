"""Data models for the Specky implementation pipeline.

This module contains the core data structures used throughout Specky,
representing features, parsed tasks, quality gate verdicts, proposed file
changes and the reports produced when those changes are applied.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional


ARTIFACT_FILES: Dict[str, str] = {
    "spec": "spec.md",
    "plan": "plan.md",
    "tasks": "tasks.md",
}


def percent_half_up(part: int, whole: int) -> int:
    """Integer percentage of ``part`` in ``whole``, halves rounded up (1/8 is 13)."""
    return (200 * part + whole) // (2 * whole)


@dataclass(slots=True)
class Task:
    """Representation of a single tasks.md checkbox entry and its subtasks."""

    task_id: str
    title: str
    completed: bool
    source_line: int  # 1-based line number in the tasks text
    indent_level: int = 0
    children: List["Task"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "task_id": self.task_id,
            "title": self.title,
            "completed": self.completed,
            "source_line": self.source_line,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass(slots=True)
class FeatureProgress:
    """Completion counters for a task tree."""

    total_tasks: int = 0
    completed_tasks: int = 0
    percentage: int = 0

    @classmethod
    def from_counts(cls, total: int, completed: int) -> "FeatureProgress":
        """Build progress, reporting 0% when there are no tasks."""
        percentage = percent_half_up(completed, total) if total > 0 else 0
        return cls(total_tasks=total, completed_tasks=completed, percentage=percentage)

    def to_dict(self) -> Dict[str, int]:
        """Convert to dictionary representation."""
        return {
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_tasks,
            "percentage": self.percentage,
        }


@dataclass(slots=True)
class FeatureArtifact:
    """Filesystem pointer for one markdown artifact of a feature."""

    artifact_type: str  # 'spec', 'plan', 'tasks'
    path: Path
    exists: bool
    last_modified: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "artifact_type": self.artifact_type,
            "path": str(self.path),
            "exists": self.exists,
            "last_modified": self.last_modified,
        }


@dataclass(slots=True)
class Feature:
    """A feature directory (e.g. ``001-user-auth``) with its artifacts."""

    feature_id: str
    number: int
    name: str
    path: Path
    artifacts: Dict[str, FeatureArtifact] = field(default_factory=dict)
    progress: FeatureProgress = field(default_factory=FeatureProgress)

    def has_artifact(self, artifact_type: str) -> bool:
        """Check whether the named artifact exists on disk."""
        artifact = self.artifacts.get(artifact_type)
        return bool(artifact and artifact.exists)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "feature_id": self.feature_id,
            "number": self.number,
            "name": self.name,
            "path": str(self.path),
            "artifacts": {name: artifact.to_dict() for name, artifact in self.artifacts.items()},
            "progress": self.progress.to_dict(),
        }


@dataclass(slots=True)
class QualityCheck:
    """Outcome of a single readiness check."""

    name: str
    passed: bool
    message: str
    severity: str  # 'error', 'warning', 'info'

    def is_blocking(self) -> bool:
        """An unresolved error blocks implementation; warnings never do."""
        return self.severity == "error" and not self.passed

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "passed": self.passed,
            "message": self.message,
            "severity": self.severity,
        }


@dataclass(slots=True)
class QualityGateResult:
    """Aggregate verdict of the quality gate."""

    passed: bool
    checks: List[QualityCheck]
    summary: str

    def errors(self) -> List[QualityCheck]:
        """Unresolved error-severity checks."""
        return [check for check in self.checks if check.is_blocking()]

    def warnings(self) -> List[QualityCheck]:
        """Failed warning-severity checks."""
        return [check for check in self.checks if check.severity == "warning" and not check.passed]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "passed": self.passed,
            "summary": self.summary,
            "checks": [check.to_dict() for check in self.checks],
        }


@dataclass(slots=True)
class ProposedChange:
    """A file edit claimed by generated text. ``path`` is untrusted."""

    path: str
    content: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {"path": self.path, "content_length": len(self.content)}


ChangeSet = List[ProposedChange]


@dataclass(slots=True)
class SkipReason:
    """Why a single proposed change was dropped from a batch."""

    path: str
    code: str  # e.g. 'absolute_path', 'invalid_segment', 'outside_root', 'not_a_file'
    detail: str = ""

    def to_dict(self) -> Dict[str, str]:
        """Convert to dictionary representation."""
        return {"path": self.path, "code": self.code, "detail": self.detail}


@dataclass(slots=True)
class PathResolution:
    """Either a concrete location inside the project root or a skip reason."""

    claimed: str
    resolved: Optional[Path] = None
    skip: Optional[SkipReason] = None

    @property
    def ok(self) -> bool:
        return self.resolved is not None and self.skip is None


@dataclass(slots=True)
class MergeDecision:
    """How a resolved change will be written."""

    strategy: str  # 'create', 'replace', 'splice', 'append'
    content: str  # full resulting file body
    reason: str = ""
    declaration: Optional[str] = None
    start_line: Optional[int] = None  # 0-based, splice only
    end_line: Optional[int] = None  # exclusive, splice only

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "strategy": self.strategy,
            "reason": self.reason,
            "declaration": self.declaration,
            "start_line": self.start_line,
            "end_line": self.end_line,
        }


@dataclass(slots=True)
class Preview:
    """Before/after comparison rendered for a dry run."""

    path: str
    title: str
    original: str
    proposed: str
    comparison: str
    is_creation: bool = False


@dataclass(slots=True)
class ApplyReport:
    """Outcome of applying or previewing one change set."""

    applied: List[str] = field(default_factory=list)
    skipped: List[SkipReason] = field(default_factory=list)
    decisions: Dict[str, MergeDecision] = field(default_factory=dict)
    previews_opened: int = 0
    dry_run: bool = False
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and (bool(self.applied) or self.previews_opened > 0)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "applied": list(self.applied),
            "skipped": [skip.to_dict() for skip in self.skipped],
            "decisions": {path: decision.to_dict() for path, decision in self.decisions.items()},
            "previews_opened": self.previews_opened,
            "dry_run": self.dry_run,
            "error": self.error,
        }


@dataclass(slots=True)
class SmartContextEntry:
    """Excerpt of a project file referenced by a task title."""

    path: str
    excerpt: str
    truncated: bool = False


@dataclass(slots=True)
class SmartContext:
    """Bounded context block injected into an implementation prompt."""

    entries: List[SmartContextEntry] = field(default_factory=list)
    text: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.entries


class PipelineStatus:
    """Terminal outcomes of one implementation run."""

    BLOCKED = "blocked"
    ALL_COMPLETE = "all_complete"
    CANCELLED = "cancelled"
    GENERATION_FAILED = "generation_failed"
    NO_CHANGES = "no_changes"
    APPLY_FAILED = "apply_failed"
    APPLIED = "applied"
    PREVIEWED = "previewed"


@dataclass(slots=True)
class ImplementResult:
    """Everything one pass of the implementation pipeline produced."""

    feature_id: str
    status: str
    message: str
    gate: Optional[QualityGateResult] = None
    task: Optional[Task] = None
    output: str = ""
    changes_found: int = 0
    report: Optional[ApplyReport] = None
    commands: List[str] = field(default_factory=list)
    review: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    next_task: Optional[Task] = None
    finished_at: str = field(default_factory=lambda: datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "feature_id": self.feature_id,
            "status": self.status,
            "message": self.message,
            "gate": self.gate.to_dict() if self.gate else None,
            "task": self.task.to_dict() if self.task else None,
            "changes_found": self.changes_found,
            "report": self.report.to_dict() if self.report else None,
            "commands": list(self.commands),
            "review": self.review,
            "warnings": list(self.warnings),
            "next_task": self.next_task.to_dict() if self.next_task else None,
            "finished_at": self.finished_at,
        }


@dataclass(slots=True)
class WorkflowStep:
    """Represents a single step in the Specky workflow."""

    step_number: int
    name: str
    tool_name: str
    description: str
    purpose: str
    prerequisites: List[str] = field(default_factory=list)
    expected_output: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "step": self.step_number,
            "name": self.name,
            "tool": self.tool_name,
            "description": self.description,
            "purpose": self.purpose,
            "prerequisites": list(self.prerequisites),
            "expected_output": self.expected_output,
        }


# Workflow step definitions
WORKFLOW_STEPS = [
    WorkflowStep(
        step_number=1,
        name="Specification",
        tool_name="specify",
        description="Turn a feature description into a testable specification",
        purpose="Capture what the feature does before deciding how",
        expected_output="Specification saved to .specky/{feature_id}/spec.md",
    ),
    WorkflowStep(
        step_number=2,
        name="Clarification",
        tool_name="clarify",
        description="Surface ambiguities and missing information in spec.md",
        purpose="Resolve questions that would cause rework during implementation",
        prerequisites=["Specification"],
    ),
    WorkflowStep(
        step_number=3,
        name="Technical Plan",
        tool_name="plan",
        description="Create the technical plan from the specification",
        purpose="Decide architecture, components and trade-offs",
        prerequisites=["Specification"],
        expected_output="Plan saved to .specky/{feature_id}/plan.md",
    ),
    WorkflowStep(
        step_number=4,
        name="Task Breakdown",
        tool_name="tasks",
        description="Break the plan into nested checkbox tasks",
        purpose="Create an executable checklist for implementation",
        prerequisites=["Technical Plan"],
        expected_output="Tasks saved to .specky/{feature_id}/tasks.md",
    ),
    WorkflowStep(
        step_number=5,
        name="Implementation",
        tool_name="implement",
        description="Pass the quality gate, generate code for the next task and apply it",
        purpose="Apply generated changes as one previewable, undoable transaction",
        prerequisites=["Task Breakdown"],
        expected_output="Files written to the project and the task checked off",
    ),
]
