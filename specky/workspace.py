"""Workspace management for the Specky workflow.

This module owns the artifact store: one ``NNN-slug`` directory per feature
under the storage directory (``.specky`` by default), each holding
``spec.md``, ``plan.md`` and ``tasks.md``. Task state lives only in the
checkbox markers of ``tasks.md``.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .config import SpeckySettings
from .errors import FeatureNotFoundError, TaskNotFoundError
from .filestore import LocalFileStore
from .models import ARTIFACT_FILES, Feature, FeatureArtifact, FeatureProgress, Task
from .specky_logging import (
    log_artifact_written,
    log_error_with_context,
    log_operation,
    log_performance,
    log_task_toggle,
    observability_hooks,
)
from .tasks import (
    calculate_progress,
    find_task,
    first_incomplete,
    flatten_tasks,
    format_progress,
    parse_tasks,
    select_task,
    set_task_marker,
)


logger = logging.getLogger("specky.workspace")

_FEATURE_DIR_PATTERN = re.compile(r"^(?P<number>\d{3})-(?P<name>.+)$")
DEFAULT_FEATURE_SLUG = "new-feature"


class Workspace:
    """Manage Specky artifacts within a repository."""

    def __init__(
        self,
        root: Union[Path, str],
        settings: Optional[SpeckySettings] = None,
        store: Optional[LocalFileStore] = None,
    ):
        self.root = Path(root).resolve()
        self.settings = settings or SpeckySettings()
        self.store = store or LocalFileStore(self.root)
        self.base_dir = self.root / self.settings.storage_dir
        logger.debug(f"Workspace at {self.root} (artifacts in {self.base_dir})")

    # ------------------------------------------------------------------
    # Feature helpers
    # ------------------------------------------------------------------

    def list_features(self) -> List[Feature]:
        """List features sorted by number. Missing storage means no features."""
        if not self.base_dir.is_dir():
            return []

        features: List[Feature] = []
        for path in self.base_dir.iterdir():
            if not path.is_dir():
                continue
            match = _FEATURE_DIR_PATTERN.match(path.name)
            if not match:
                continue
            features.append(self._load_feature(path, int(match.group("number")), match.group("name")))

        features.sort(key=lambda feature: feature.number)
        return features

    def find_feature(self, feature_id: str) -> Optional[Feature]:
        match = _FEATURE_DIR_PATTERN.match(feature_id or "")
        if not match or "/" in feature_id or "\\" in feature_id:
            return None
        path = self.base_dir / feature_id
        if not path.is_dir():
            return None
        return self._load_feature(path, int(match.group("number")), match.group("name"))

    def get_feature(self, feature_id: str) -> Feature:
        feature = self.find_feature(feature_id)
        if feature is None:
            raise FeatureNotFoundError(feature_id)
        return feature

    def _load_feature(self, path: Path, number: int, name: str) -> Feature:
        artifacts: Dict[str, FeatureArtifact] = {}
        for artifact_type, filename in ARTIFACT_FILES.items():
            artifact_path = path / filename
            if artifact_path.is_file():
                artifacts[artifact_type] = FeatureArtifact(
                    artifact_type=artifact_type,
                    path=artifact_path,
                    exists=True,
                    last_modified=artifact_path.stat().st_mtime,
                )
            else:
                artifacts[artifact_type] = FeatureArtifact(artifact_type=artifact_type, path=artifact_path, exists=False)

        progress = FeatureProgress()
        if artifacts["tasks"].exists:
            progress = calculate_progress(parse_tasks(artifacts["tasks"].path.read_text(encoding="utf-8")))

        return Feature(feature_id=path.name, number=number, name=name, path=path, artifacts=artifacts, progress=progress)

    def _next_feature_number(self) -> int:
        features = self.list_features()
        if not features:
            return 1
        return max(feature.number for feature in features) + 1

    @log_performance("create_feature")
    def create_feature(self, name: str) -> Feature:
        """Create ``NNN-slug`` for ``name`` with the next free number."""
        slug = self._slugify(name) or DEFAULT_FEATURE_SLUG
        number = self._next_feature_number()
        feature_id = f"{number:03d}-{slug}"
        while (self.base_dir / feature_id).exists():
            number += 1
            feature_id = f"{number:03d}-{slug}"

        path = self.base_dir / feature_id
        try:
            path.mkdir(parents=True)
        except OSError as e:
            log_error_with_context(e, {"operation": "create_feature", "feature_id": feature_id})
            raise

        logger.info(f"Created feature {feature_id}")
        observability_hooks.log_workflow_event("feature_created", feature_id=feature_id, name=slug)
        return self._load_feature(path, number, slug)

    @staticmethod
    def extract_feature_name(prompt: str) -> str:
        """Feature name from the first three words longer than two characters."""
        cleaned = re.sub(r"[^a-zA-Z0-9\s]", "", prompt)
        words = [word for word in cleaned.split() if len(word) > 2][:3]
        if not words:
            return DEFAULT_FEATURE_SLUG
        return "-".join(words).lower()

    def _slugify(self, value: str) -> str:
        return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")

    # ------------------------------------------------------------------
    # Artifact IO
    # ------------------------------------------------------------------

    def artifact_path(self, feature_id: str, artifact_type: str) -> Path:
        if artifact_type not in ARTIFACT_FILES:
            raise ValueError(f"Unknown artifact type '{artifact_type}'. Expected one of {', '.join(ARTIFACT_FILES)}")
        return self.base_dir / feature_id / ARTIFACT_FILES[artifact_type]

    def read_artifact(self, feature_id: str, artifact_type: str) -> Optional[str]:
        """Artifact text, or ``None`` when it has not been written yet."""
        self.get_feature(feature_id)
        return self.store.read_text(self.artifact_path(feature_id, artifact_type))

    def write_artifact(self, feature_id: str, artifact_type: str, content: str) -> Path:
        self.get_feature(feature_id)
        path = self.artifact_path(feature_id, artifact_type)
        with log_operation("write_artifact", feature_id=feature_id, artifact_type=artifact_type):
            self.store.write_text(path, content, undoable=False)
        log_artifact_written(feature_id, artifact_type, content_length=len(content))
        return path

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def parse_tasks(self, feature_id: str) -> List[Task]:
        content = self.read_artifact(feature_id, "tasks")
        if content is None:
            return []
        return parse_tasks(content)

    def resolve_task(self, feature_id: str, task_ref: str) -> Task:
        """Look a task up by id (``task-3``) or 1-based position (``4``)."""
        tasks = self.parse_tasks(feature_id)
        ref = str(task_ref).strip()
        task = select_task(tasks, int(ref)) if ref.isdigit() else find_task(tasks, ref)
        if task is None:
            raise TaskNotFoundError(feature_id, ref)
        return task

    def set_task_completion(self, feature_id: str, task_ref: str, completed: Optional[bool] = None) -> Task:
        """Set (or flip, when ``completed`` is None) one task's checkbox.

        Only the task's own line in ``tasks.md`` is rewritten. Returns the
        task as parsed after the write.
        """
        with log_operation("update_task", feature_id=feature_id, task_ref=str(task_ref), completed=completed):
            content = self.read_artifact(feature_id, "tasks")
            if content is None:
                raise FileNotFoundError(
                    f"No tasks.md found for feature '{feature_id}'. Generate tasks before updating."
                )

            task = self.resolve_task(feature_id, task_ref)
            updated = set_task_marker(content, task, completed)
            if updated != content:
                self.write_artifact(feature_id, "tasks", updated)

            refreshed = find_task(parse_tasks(updated), task.task_id)

        log_task_toggle(feature_id, refreshed.task_id, refreshed.completed)
        return refreshed

    def toggle_task(self, feature_id: str, task_ref: str) -> Task:
        return self.set_task_completion(feature_id, task_ref, None)

    def complete_task(self, feature_id: str, task_ref: str) -> Task:
        return self.set_task_completion(feature_id, task_ref, True)

    def next_task(self, feature_id: str) -> Optional[Task]:
        """First incomplete task in pre-order."""
        return first_incomplete(self.parse_tasks(feature_id))

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def feature_progress(self, feature_id: str) -> FeatureProgress:
        return calculate_progress(self.parse_tasks(feature_id))

    def overall_progress(self) -> FeatureProgress:
        total = 0
        completed = 0
        for feature in self.list_features():
            total += feature.progress.total_tasks
            completed += feature.progress.completed_tasks
        return FeatureProgress.from_counts(total, completed)

    def feature_status(self, feature_id: str) -> Dict[str, Any]:
        """Get the status of a feature."""
        feature = self.get_feature(feature_id)
        tasks = self.parse_tasks(feature_id)
        flat = flatten_tasks(tasks)
        next_task = first_incomplete(tasks)

        return {
            "feature_id": feature.feature_id,
            "name": feature.name,
            "spec_path": str(feature.artifacts["spec"].path) if feature.has_artifact("spec") else None,
            "plan_path": str(feature.artifacts["plan"].path) if feature.has_artifact("plan") else None,
            "tasks_path": str(feature.artifacts["tasks"].path) if feature.has_artifact("tasks") else None,
            "progress": feature.progress.to_dict(),
            "progress_display": format_progress(feature.progress),
            "tasks": {
                "total": feature.progress.total_tasks,
                "completed": feature.progress.completed_tasks,
                "remaining": feature.progress.total_tasks - feature.progress.completed_tasks,
                "all_completed": bool(flat) and next_task is None,
                "items": [task.to_dict() for task in tasks],
            },
            "next_task": next_task.to_dict() if next_task else None,
        }
