"""MCP server exposing the Specky spec-driven development workflow."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from specky.config import SpeckySettings
from specky.specky_logging import initialize_default_logging
from specky.tasks import format_progress
from specky.workflow import WorkflowManager, workflow_guide

mcp = FastMCP("specky")

SERVER_ROOT = Path(__file__).resolve().parent

_MANAGERS: Dict[Path, WorkflowManager] = {}


def _settings() -> SpeckySettings:
    return SpeckySettings.from_env()


def _candidate_bases() -> List[Path]:
    cwd = Path.cwd().resolve()
    bases: List[Path] = [cwd]
    bases.extend(cwd.parents)
    if SERVER_ROOT not in bases:
        bases.append(SERVER_ROOT)
    for parent in SERVER_ROOT.parents:
        if parent not in bases:
            bases.append(parent)
    return bases


def _locate_workspace_root(storage_dir: str) -> Optional[Path]:
    for base in _candidate_bases():
        if (base / storage_dir).is_dir():
            return base
    return None


def _resolve_root(root: Optional[str], settings: SpeckySettings) -> Path:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    if settings.project_root:
        env_path = settings.project_root.resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable SPECKY_PROJECT_ROOT points to '{settings.project_root}', which does not exist."
            )
        return env_path

    detected_root = _locate_workspace_root(settings.storage_dir)
    if detected_root:
        return detected_root

    raise ValueError(
        "Unable to determine project root automatically. Provide the 'root' argument when calling the tool "
        "or set the SPECKY_PROJECT_ROOT environment variable."
    )


def _manager(root: Optional[str]) -> WorkflowManager:
    """One manager per project root, so undo survives across tool calls."""
    settings = _settings()
    resolved = _resolve_root(root, settings)
    manager = _MANAGERS.get(resolved)
    if manager is None:
        manager = WorkflowManager(resolved, settings)
        _MANAGERS[resolved] = manager
    return manager


@mcp.tool()
def create_feature(name: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Create an empty feature directory (NNN-name) under the storage directory."""

    return _manager(root).create_feature(name)


@mcp.tool()
def list_features(root: Optional[str] = None) -> Dict[str, Any]:
    """Enumerate features with their artifacts and task progress."""

    return _manager(root).list_features()


@mcp.resource("specky://features")
def resource_features() -> str:
    """Resource view exposing feature metadata for discovery."""

    try:
        manager = _manager(None)
    except ValueError:
        return "No project root detected. Launch tools with a 'root' argument or set SPECKY_PROJECT_ROOT."

    features = manager.workspace.list_features()
    if not features:
        return "No features have been created yet."

    lines = ["Specky Features"]
    for feature in features:
        lines.append("")
        lines.append(f"- {feature.feature_id}: {feature.name}")
        for artifact_type, artifact in feature.artifacts.items():
            if artifact.exists:
                lines.append(f"  {artifact_type.capitalize()}: {artifact.path}")
        lines.append(f"  Progress: {format_progress(feature.progress)}")

    return "\n".join(lines)


@mcp.tool()
def feature_status(feature_id: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Report artifact paths, task counts and the next open task for a feature."""

    return _manager(root).feature_status(feature_id)


@mcp.tool()
def list_tasks(feature_id: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Return the nested task tree parsed from tasks.md."""

    return _manager(root).list_tasks(feature_id)


@mcp.tool()
def toggle_task(
    feature_id: str,
    task: str,
    completed: Optional[bool] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Flip a task checkbox, or set it when 'completed' is given.
    'task' is a task id such as 'task-3' or a 1-based position in the list."""

    return _manager(root).toggle_task(feature_id, task, completed)


@mcp.tool()
def next_task(feature_id: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Retrieve the next incomplete task, if any, to guide sequential execution."""

    return _manager(root).next_task(feature_id)


@mcp.tool()
def validate_feature(feature_id: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Run the implementation quality gate and return every check."""

    return _manager(root).validate_feature(feature_id)


@mcp.tool()
async def specify(prompt: str, feature_id: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 1: Turn a feature description into spec.md.
    Creates a new feature unless feature_id is given. Add '--model <name>' to override the model."""

    return await _manager(root).specify(prompt, feature_id)


@mcp.tool()
async def clarify(feature_id: Optional[str] = None, prompt: str = "", root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 2: List ambiguities and open questions in spec.md. Writes nothing."""

    return await _manager(root).clarify(feature_id, prompt)


@mcp.tool()
async def plan(feature_id: Optional[str] = None, prompt: str = "", root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 3: Write plan.md from spec.md."""

    return await _manager(root).plan(feature_id, prompt)


@mcp.tool()
async def tasks(feature_id: Optional[str] = None, prompt: str = "", root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 4: Write tasks.md (nested checkboxes) from spec.md and plan.md."""

    return await _manager(root).tasks(feature_id, prompt)


@mcp.tool()
async def implement(
    feature_id: Optional[str] = None,
    prompt: str = "",
    task_index: Optional[int] = None,
    dry_run: bool = False,
    review: bool = False,
    auto_complete: bool = True,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 5: Pass the quality gate, generate code for the next (or selected) task and apply it.
    dry_run previews without writing. Suggested shell commands are returned for you to confirm and run."""

    return await _manager(root).implement(
        feature_id,
        prompt=prompt,
        task_index=task_index,
        dry_run=dry_run,
        review=review,
        auto_complete=auto_complete,
    )


@mcp.tool()
def undo_last_apply(root: Optional[str] = None) -> Dict[str, Any]:
    """Revert the files written by the most recent implement run."""

    return _manager(root).undo_last_apply()


@mcp.tool()
def list_models(refresh: bool = False, root: Optional[str] = None) -> Dict[str, Any]:
    """List the models available to the provider layer and the model each command uses.
    Pass refresh=True to reload the cached model list."""

    return _manager(root).list_models(refresh)


@mcp.tool()
def get_workflow_guide() -> Dict[str, Any]:
    """Describe the workflow steps, their order and usage tips."""

    return {
        **workflow_guide(),
        "root_resolution": "root argument, then SPECKY_PROJECT_ROOT, then the nearest directory holding the storage directory",
    }


if __name__ == "__main__":
    settings = _settings()
    initialize_default_logging(settings.log_level, settings.log_file)
    mcp.run(transport="stdio")
