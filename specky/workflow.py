"""Workflow management for Specky.

This module provides the command surface of the specify -> clarify ->
plan -> tasks -> implement workflow. Every public method returns a plain
dict; failures come back as ``error`` / ``suggestion`` /
``next_suggested_step`` instead of raising, so tool hosts can show them
directly.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from . import prompts
from .applicator import ChangeApplicator
from .config import SpeckySettings
from .errors import FeatureNotFoundError, GenerationCancelled, GenerationError
from .models import WORKFLOW_STEPS, PipelineStatus
from .oracle import CancellationToken, ModelCatalog, ModelSelector, OracleFactory, collect_text, litellm_factory, user_message
from .pipeline import ImplementationPipeline
from .quality_gate import QualityGate, format_results
from .specky_logging import log_error_with_context, log_performance, log_workflow_step, observability_hooks
from .tasks import format_progress
from .workspace import Workspace


logger = logging.getLogger("specky.workflow")

_NEXT_STEP_AFTER_IMPLEMENT = {
    PipelineStatus.BLOCKED: "validate_feature",
    PipelineStatus.ALL_COMPLETE: "feature_status",
    PipelineStatus.CANCELLED: "implement",
    PipelineStatus.GENERATION_FAILED: "implement",
    PipelineStatus.NO_CHANGES: "implement",
    PipelineStatus.APPLY_FAILED: "implement",
    PipelineStatus.PREVIEWED: "implement",
    PipelineStatus.APPLIED: "implement",
}


def workflow_guide() -> Dict[str, Any]:
    """Describe the workflow steps and usage tips."""
    return {
        "workflow_overview": "Spec-driven development workflow in recommended order",
        "steps": [step.to_dict() for step in WORKFLOW_STEPS],
        "tips": [
            "Append '--model <name>' to any prompt to override the configured model",
            "implement runs the quality gate first; errors block, warnings do not",
            "Use dry_run to preview changes before anything is written",
            "undo_last_apply reverts the most recent applied change set",
            "Suggested shell commands are returned, never executed",
        ],
    }


class WorkflowManager:
    """Manages the complete Specky workflow for one project root."""

    def __init__(
        self,
        root: Union[Path, str],
        settings: Optional[SpeckySettings] = None,
        oracle_factory: OracleFactory = litellm_factory,
        on_chunk: Optional[Callable[[str], None]] = None,
        catalog: Optional[ModelCatalog] = None,
    ):
        self.settings = settings or SpeckySettings.from_env()
        self.workspace = Workspace(root, self.settings)
        self.oracle_factory = oracle_factory
        self.on_chunk = on_chunk
        self.model_selector = ModelSelector(self.settings, catalog)
        self.gate = QualityGate(self.workspace, self.settings)
        self.applicator = ChangeApplicator(self.workspace.store, replace_ratio=self.settings.full_replace_ratio)
        self.pipeline = ImplementationPipeline(
            self.workspace,
            oracle_factory=oracle_factory,
            settings=self.settings,
            applicator=self.applicator,
            gate=self.gate,
            model_selector=self.model_selector,
            on_chunk=on_chunk,
        )

    # ------------------------------------------------------------------
    # Feature management
    # ------------------------------------------------------------------

    def list_features(self) -> Dict[str, Any]:
        """List all features in the workspace."""
        features = self.workspace.list_features()
        overall = self.workspace.overall_progress()
        return {
            "features": [feature.to_dict() for feature in features],
            "count": len(features),
            "overall_progress": overall.to_dict(),
            "message": f"Found {len(features)} features" if features else "No features yet. Use specify to create your first feature.",
        }

    def create_feature(self, name: str) -> Dict[str, Any]:
        try:
            feature = self.workspace.create_feature(name)
            return {
                "feature": feature.to_dict(),
                "next_suggested_step": "specify",
                "workflow_tip": f"Next: Write the specification for '{feature.feature_id}' with specify",
                "message": f"Created feature {feature.feature_id}",
            }
        except Exception as e:
            log_error_with_context(e, {"operation": "create_feature", "name": name})
            return {
                "error": f"Failed to create feature: {e}",
                "suggestion": "Check that the project root exists and is writable",
                "next_suggested_step": "create_feature",
            }

    def feature_status(self, feature_id: Optional[str] = None) -> Dict[str, Any]:
        """Get the status of a feature."""
        try:
            return self.workspace.feature_status(self._resolve_feature_id(feature_id))
        except Exception as e:
            return {
                "error": f"Failed to get feature status: {e}",
                "suggestion": f"Check that feature '{feature_id}' exists",
                "next_suggested_step": "list_features",
            }

    def _resolve_feature_id(self, feature_id: Optional[str]) -> str:
        """Pick the feature to work on; a single feature is used implicitly."""
        if feature_id:
            return self.workspace.get_feature(feature_id).feature_id
        features = self.workspace.list_features()
        if len(features) == 1:
            return features[0].feature_id
        if not features:
            raise FeatureNotFoundError("(none)")
        choices = ", ".join(feature.feature_id for feature in features)
        raise ValueError(f"Several features exist, pass feature_id explicitly. Choices: {choices}")

    # ------------------------------------------------------------------
    # Artifact generation
    # ------------------------------------------------------------------

    async def _generate(self, command: str, system_prompt: str, user_prompt: str, model: str,
                        token: Optional[CancellationToken]) -> str:
        messages = [user_message(system_prompt), user_message(user_prompt)]
        logger.info(f"Running {command} with {self.model_selector.display_name(model)}")
        return await collect_text(self.oracle_factory(model), messages, token, self.on_chunk)

    @log_performance("specify")
    async def specify(self, prompt: str, feature_id: Optional[str] = None,
                      token: Optional[CancellationToken] = None) -> Dict[str, Any]:
        """Generate (or regenerate) a feature specification."""
        selection = self.model_selector.effective_model("specify", prompt)
        clean_prompt = selection["clean_prompt"]
        if not clean_prompt.strip() and not feature_id:
            return {
                "error": "Please provide a description of what you want to build.",
                "suggestion": "Example: specify('Build a user authentication system with email/password and OAuth support')",
                "next_suggested_step": "specify",
            }

        try:
            if feature_id:
                feature = self.workspace.get_feature(feature_id)
            else:
                feature = self.workspace.create_feature(Workspace.extract_feature_name(clean_prompt))
            log_workflow_step("specify", feature.feature_id, model=selection["model"])

            content = await self._generate(
                "specify",
                prompts.specify(feature.name),
                clean_prompt or prompts.DEFAULT_USER_PROMPTS["specify"],
                selection["model"],
                token,
            )
            path = self.workspace.write_artifact(feature.feature_id, "spec", content)
            return {
                "feature_id": feature.feature_id,
                "content": content,
                "spec_path": str(path),
                "model": selection["model"],
                "next_suggested_step": "clarify",
                "workflow_tip": "Next: Use clarify to identify ambiguities or plan to create the technical plan",
                "message": f"Saved to {self._relative(path)}",
            }
        except Exception as e:
            return self._command_error("specify", e, feature_id, "specify")

    @log_performance("clarify")
    async def clarify(self, feature_id: Optional[str] = None, prompt: str = "",
                      token: Optional[CancellationToken] = None) -> Dict[str, Any]:
        """Analyse spec.md for ambiguities. Writes nothing."""
        selection = self.model_selector.effective_model("clarify", prompt)
        try:
            feature_id = self._resolve_feature_id(feature_id)
            spec = self.workspace.read_artifact(feature_id, "spec")
            if not spec:
                return {
                    "error": "No specification found",
                    "suggestion": f"Call specify first to create a specification for feature '{feature_id}'",
                    "next_suggested_step": "specify",
                }
            feature = self.workspace.get_feature(feature_id)
            log_workflow_step("clarify", feature_id, model=selection["model"])

            content = await self._generate(
                "clarify",
                prompts.clarify(feature.name, spec),
                selection["clean_prompt"] or prompts.DEFAULT_USER_PROMPTS["clarify"],
                selection["model"],
                token,
            )
            return {
                "feature_id": feature_id,
                "content": content,
                "model": selection["model"],
                "next_suggested_step": "plan",
                "workflow_tip": "Next: Address these clarifications, then use specify to update the spec, or proceed to plan",
            }
        except Exception as e:
            return self._command_error("clarify", e, feature_id, "specify")

    @log_performance("plan")
    async def plan(self, feature_id: Optional[str] = None, prompt: str = "",
                   token: Optional[CancellationToken] = None) -> Dict[str, Any]:
        """Generate the technical plan from spec.md."""
        selection = self.model_selector.effective_model("plan", prompt)
        try:
            feature_id = self._resolve_feature_id(feature_id)
            spec = self.workspace.read_artifact(feature_id, "spec")
            if not spec:
                return {
                    "error": "No specification found",
                    "suggestion": f"Call specify first to create a specification for feature '{feature_id}'",
                    "next_suggested_step": "specify",
                }
            feature = self.workspace.get_feature(feature_id)
            log_workflow_step("plan", feature_id, model=selection["model"])

            content = await self._generate(
                "plan",
                prompts.plan(feature.name, spec),
                selection["clean_prompt"] or prompts.DEFAULT_USER_PROMPTS["plan"],
                selection["model"],
                token,
            )
            path = self.workspace.write_artifact(feature_id, "plan", content)
            return {
                "feature_id": feature_id,
                "content": content,
                "plan_path": str(path),
                "model": selection["model"],
                "next_suggested_step": "tasks",
                "workflow_tip": "Next: Use tasks to break the plan down into implementable tasks",
                "message": f"Saved to {self._relative(path)}",
            }
        except Exception as e:
            return self._command_error("plan", e, feature_id, "specify")

    @log_performance("tasks")
    async def tasks(self, feature_id: Optional[str] = None, prompt: str = "",
                    token: Optional[CancellationToken] = None) -> Dict[str, Any]:
        """Break the plan into checkbox tasks."""
        selection = self.model_selector.effective_model("tasks", prompt)
        try:
            feature_id = self._resolve_feature_id(feature_id)
            spec = self.workspace.read_artifact(feature_id, "spec")
            plan = self.workspace.read_artifact(feature_id, "plan")
            if not spec or not plan:
                return {
                    "error": "Missing specification or plan",
                    "suggestion": "Complete the specify and plan steps first",
                    "next_suggested_step": "specify" if not spec else "plan",
                }
            feature = self.workspace.get_feature(feature_id)
            log_workflow_step("tasks", feature_id, model=selection["model"])

            content = await self._generate(
                "tasks",
                prompts.tasks(feature.name, spec, plan),
                selection["clean_prompt"] or prompts.DEFAULT_USER_PROMPTS["tasks"],
                selection["model"],
                token,
            )
            path = self.workspace.write_artifact(feature_id, "tasks", content)
            progress = self.workspace.feature_progress(feature_id)
            return {
                "feature_id": feature_id,
                "content": content,
                "tasks_path": str(path),
                "model": selection["model"],
                "progress": progress.to_dict(),
                "next_suggested_step": "implement",
                "workflow_tip": "Next: Use implement to start implementing tasks",
                "message": f"Saved to {self._relative(path)}",
            }
        except Exception as e:
            return self._command_error("tasks", e, feature_id, "plan")

    # ------------------------------------------------------------------
    # Implementation
    # ------------------------------------------------------------------

    def validate_feature(self, feature_id: Optional[str] = None) -> Dict[str, Any]:
        """Run the quality gate without implementing anything."""
        try:
            feature_id = self._resolve_feature_id(feature_id)
        except Exception as e:
            return self._command_error("validate_feature", e, feature_id, "list_features")
        result = self.gate.validate_for_implementation(feature_id)
        return {
            "feature_id": feature_id,
            "gate": result.to_dict(),
            "report": format_results(result),
            "next_suggested_step": "implement" if result.passed else self._first_missing_step(result),
        }

    def _first_missing_step(self, result) -> str:
        for check in result.errors():
            if check.name.startswith("Specification"):
                return "specify"
            if check.name.startswith("Plan"):
                return "plan"
            if check.name.startswith("Tasks"):
                return "tasks"
        return "list_features"

    async def implement(
        self,
        feature_id: Optional[str] = None,
        prompt: str = "",
        task_index: Optional[int] = None,
        dry_run: bool = False,
        review: bool = False,
        auto_complete: bool = True,
        token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        """Implement the next (or the selected) task and apply the result."""
        try:
            feature_id = self._resolve_feature_id(feature_id)
            result = await self.pipeline.run(
                feature_id,
                prompt=prompt,
                task_index=task_index,
                dry_run=dry_run,
                review=review,
                auto_complete=auto_complete,
                token=token,
            )
        except Exception as e:
            return self._command_error("implement", e, feature_id, "list_tasks")

        response = result.to_dict()
        response["output"] = result.output
        response["next_suggested_step"] = _NEXT_STEP_AFTER_IMPLEMENT.get(result.status, "feature_status")
        if result.commands:
            response["workflow_tip"] = "Review the suggested commands and run them yourself if they look right"
        if result.status == PipelineStatus.APPLIED:
            response["undo_available"] = self.applicator.can_undo
        return response

    def undo_last_apply(self) -> Dict[str, Any]:
        """Revert the files written by the last applied change set."""
        if not self.applicator.can_undo:
            return {
                "error": "Nothing to undo",
                "suggestion": "Only the most recent applied change set can be reverted",
                "next_suggested_step": "implement",
            }
        try:
            restored = self.applicator.undo_last()
        except Exception as e:
            return self._command_error("undo_last_apply", e, None, "implement")
        observability_hooks.log_workflow_event("changes_reverted", paths=restored)
        return {
            "restored": restored,
            "count": len(restored),
            "message": f"Reverted {len(restored)} file(s)",
            "next_suggested_step": "implement",
        }

    # ------------------------------------------------------------------
    # Task execution
    # ------------------------------------------------------------------

    def list_tasks(self, feature_id: Optional[str] = None) -> Dict[str, Any]:
        """List tasks for a feature."""
        try:
            feature_id = self._resolve_feature_id(feature_id)
            tasks = self.workspace.parse_tasks(feature_id)
            progress = self.workspace.feature_progress(feature_id)
            return {
                "feature_id": feature_id,
                "tasks": [task.to_dict() for task in tasks],
                "progress": progress.to_dict(),
                "progress_display": format_progress(progress),
            }
        except Exception as e:
            return {
                "error": f"Failed to list tasks: {e}",
                "suggestion": f"Generate tasks for feature '{feature_id}' first",
                "next_suggested_step": "tasks",
            }

    def next_task(self, feature_id: Optional[str] = None) -> Dict[str, Any]:
        """Get the next task for a feature."""
        try:
            feature_id = self._resolve_feature_id(feature_id)
            task = self.workspace.next_task(feature_id)
            progress = self.workspace.feature_progress(feature_id)
            return {
                "feature_id": feature_id,
                "task": task.to_dict() if task else None,
                "remaining": progress.total_tasks - progress.completed_tasks,
                "next_suggested_step": "implement" if task else "feature_status",
            }
        except Exception as e:
            return {
                "error": f"Failed to get next task: {e}",
                "suggestion": f"Generate tasks for feature '{feature_id}' first",
                "next_suggested_step": "tasks",
            }

    def toggle_task(self, feature_id: str, task_ref: str, completed: Optional[bool] = None) -> Dict[str, Any]:
        """Flip (or set) a task's checkbox in tasks.md."""
        try:
            task = self.workspace.set_task_completion(feature_id, task_ref, completed)
            progress = self.workspace.feature_progress(feature_id)
            next_task = self.workspace.next_task(feature_id)
            return {
                "feature_id": feature_id,
                "task": task.to_dict(),
                "progress": progress.to_dict(),
                "all_completed": progress.total_tasks > 0 and next_task is None,
                "next_task": next_task.to_dict() if next_task else None,
            }
        except Exception as e:
            return {
                "error": f"Failed to update task: {e}",
                "suggestion": f"Check that task '{task_ref}' exists for feature '{feature_id}'",
                "next_suggested_step": "list_tasks",
            }

    # ------------------------------------------------------------------
    # Workflow guidance
    # ------------------------------------------------------------------

    def list_models(self, refresh: bool = False) -> Dict[str, Any]:
        """Models the provider layer knows, plus the model each command uses."""
        if refresh:
            self.model_selector.catalog.invalidate()
        models = self.model_selector.available_models()
        commands = ("specify", "clarify", "plan", "tasks", "implement", "review")
        return {
            "models": models,
            "count": len(models),
            "configured": {
                command: self.model_selector.effective_model(command, "")["model"]
                for command in commands
            },
            "tip": "Add '--model <name>' to a prompt to override the model for one command",
        }

    def get_workflow_guide(self) -> Dict[str, Any]:
        """Get comprehensive workflow guidance."""
        return workflow_guide()

    def help(self, feature_id: Optional[str] = None) -> Dict[str, Any]:
        guide = self.get_workflow_guide()
        commands = {step.tool_name: step.description for step in WORKFLOW_STEPS}
        response: Dict[str, Any] = {"commands": commands, "tips": guide["tips"]}
        try:
            active = self._resolve_feature_id(feature_id)
        except (FeatureNotFoundError, ValueError):
            response["getting_started"] = "specify('Build a todo app with user accounts')"
            return response
        feature = self.workspace.get_feature(active)
        response["active_feature"] = feature.feature_id
        response["progress"] = format_progress(feature.progress)
        return response

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.workspace.root).as_posix()
        except ValueError:
            return str(path)

    def _command_error(self, command: str, error: Exception, feature_id: Optional[str], next_step: str) -> Dict[str, Any]:
        log_error_with_context(error, {"operation": command, "feature_id": feature_id})
        if isinstance(error, GenerationCancelled):
            suggestion = "The request was cancelled, run it again when ready"
        elif isinstance(error, GenerationError):
            suggestion = "Check the model name and provider credentials, then retry"
        elif isinstance(error, FeatureNotFoundError):
            suggestion = "Use list_features to see existing features, or specify to create one"
            next_step = "list_features" if feature_id else "specify"
        else:
            suggestion = f"Check the inputs for {command}"
        return {
            "error": f"Failed to run {command}: {error}",
            "suggestion": suggestion,
            "next_suggested_step": next_step,
        }
