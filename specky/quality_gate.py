"""Readiness checks run before every implementation attempt.

The gate is recomputed on each call and never cached: artifacts can be
edited between runs. Only error-severity checks block.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .config import SpeckySettings
from .models import Feature, QualityCheck, QualityGateResult
from .specky_logging import log_quality_gate
from .workspace import Workspace


logger = logging.getLogger("specky.quality_gate")

_ICONS = {"passed": "✅", "error": "❌", "other": "⚠️"}


class QualityGate:
    """Validates a feature's spec, plan and tasks for implementation."""

    def __init__(self, workspace: Workspace, settings: Optional[SpeckySettings] = None):
        self.workspace = workspace
        self.settings = settings or workspace.settings

    def validate_for_implementation(self, feature_id: str) -> QualityGateResult:
        feature = self.workspace.find_feature(feature_id)
        if feature is None:
            result = QualityGateResult(
                passed=False,
                checks=[QualityCheck("Feature Exists", False, f'Feature "{feature_id}" not found', "error")],
                summary="Feature not found",
            )
            log_quality_gate(feature_id, False, errors=1, warnings=0)
            return result

        checks = [
            self._artifact_exists(feature, "spec", "Specification Exists", "specify"),
            self._artifact_exists(feature, "plan", "Plan Exists", "plan"),
            self._artifact_exists(feature, "tasks", "Tasks Exist", "tasks"),
            self._spec_completeness(feature),
            self._plan_completeness(feature),
            self._tasks_progress(feature),
        ]

        result = QualityGateResult(passed=False, checks=checks, summary="")
        errors = result.errors()
        warnings = result.warnings()
        result.passed = not errors
        if result.passed and not warnings:
            result.summary = "All quality gates passed. Ready for implementation."
        elif result.passed:
            result.summary = f"Ready with {len(warnings)} warning(s)"
        else:
            result.summary = f"{len(errors)} error(s) must be resolved before implementation"

        logger.info(f"Quality gate for {feature_id}: {result.summary}")
        log_quality_gate(feature_id, result.passed, errors=len(errors), warnings=len(warnings))
        return result

    def _artifact_exists(self, feature: Feature, artifact_type: str, name: str, command: str) -> QualityCheck:
        filename = feature.artifacts[artifact_type].path.name
        if feature.has_artifact(artifact_type):
            return QualityCheck(name, True, f"{filename} found", "error")
        return QualityCheck(name, False, f"Missing {filename} - run /{command} first", "error")

    def _spec_completeness(self, feature: Feature) -> QualityCheck:
        name = "Specification Complete"
        if not feature.has_artifact("spec"):
            return QualityCheck(name, False, "Cannot check - spec.md missing", "info")

        content = self._read(feature, "spec")
        if not content:
            return QualityCheck(name, False, "Could not read spec.md", "warning")

        lowered = content.lower()
        missing = [section for section in self.settings.required_spec_sections if section.lower() not in lowered]
        if missing:
            return QualityCheck(name, False, f"Missing sections: {', '.join(missing)}", "warning")

        markers = [marker for marker in self.settings.open_markers if marker in content]
        if markers:
            return QualityCheck(name, False, f"Spec contains {'/'.join(markers)} markers", "warning")

        return QualityCheck(name, True, "All required sections present", "info")

    def _plan_completeness(self, feature: Feature) -> QualityCheck:
        name = "Plan Complete"
        if not feature.has_artifact("plan"):
            return QualityCheck(name, False, "Cannot check - plan.md missing", "info")

        content = self._read(feature, "plan")
        if not content:
            return QualityCheck(name, False, "Could not read plan.md", "warning")
        if len(content) < self.settings.plan_min_length:
            return QualityCheck(name, False, "Plan seems too short - consider adding more detail", "warning")
        return QualityCheck(name, True, "Plan has sufficient detail", "info")

    def _tasks_progress(self, feature: Feature) -> QualityCheck:
        progress = feature.progress
        if progress.total_tasks == 0:
            return QualityCheck("Tasks Defined", False, "No tasks found in tasks.md", "warning")
        return QualityCheck(
            "Tasks Progress",
            True,
            f"{progress.completed_tasks}/{progress.total_tasks} tasks complete ({progress.percentage}%)",
            "info",
        )

    def _read(self, feature: Feature, artifact_type: str) -> Optional[str]:
        try:
            return self.workspace.read_artifact(feature.feature_id, artifact_type)
        except OSError as e:
            logger.warning(f"Could not read {artifact_type} for {feature.feature_id}: {e}")
            return None


def format_results(result: QualityGateResult) -> str:
    """Render a gate result as markdown."""
    lines: List[str] = ["## Quality Gate Results", "", result.summary, ""]
    for check in result.checks:
        if check.passed:
            icon = _ICONS["passed"]
        elif check.severity == "error":
            icon = _ICONS["error"]
        else:
            icon = _ICONS["other"]
        lines.append(f"{icon} **{check.name}**: {check.message}")
    return "\n".join(lines)
