"""The implementation pipeline.

One run is a single cooperative chain: validate, select a task, build
smart context, generate, extract, preview or apply, optionally review,
mark the task complete, and report the next task. Generation is the only
cancellable step and it always finishes before anything touches disk.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from . import prompts
from .applicator import ChangeApplicator, describe_report
from .config import SpeckySettings
from .context import SmartContextBuilder
from .errors import GenerationCancelled, GenerationError, SpeckyError, TaskNotFoundError
from .extraction import extract_changes, extract_shell_commands
from .models import ImplementResult, PipelineStatus, Task
from .oracle import CancellationToken, ModelSelector, OracleFactory, collect_text, litellm_factory, user_message
from .quality_gate import QualityGate, format_results
from .specky_logging import log_error_with_context, log_performance, log_workflow_step, observability_hooks
from .tasks import first_incomplete, flatten_tasks, find_task, select_task
from .workspace import Workspace


logger = logging.getLogger("specky.pipeline")


class ImplementationPipeline:
    """Runs ``/implement`` for one feature at a time."""

    def __init__(
        self,
        workspace: Workspace,
        oracle_factory: OracleFactory = litellm_factory,
        settings: Optional[SpeckySettings] = None,
        applicator: Optional[ChangeApplicator] = None,
        gate: Optional[QualityGate] = None,
        context_builder: Optional[SmartContextBuilder] = None,
        model_selector: Optional[ModelSelector] = None,
        on_chunk: Optional[Callable[[str], None]] = None,
    ):
        self.workspace = workspace
        self.settings = settings or workspace.settings
        self.oracle_factory = oracle_factory
        self.applicator = applicator or ChangeApplicator(workspace.store, replace_ratio=self.settings.full_replace_ratio)
        self.gate = gate or QualityGate(workspace, self.settings)
        self.context_builder = context_builder or SmartContextBuilder(
            workspace.store,
            char_budget=self.settings.context_char_budget,
            max_files=self.settings.context_max_files,
        )
        self.model_selector = model_selector or ModelSelector(self.settings)
        self.on_chunk = on_chunk

    @log_performance("implement_pipeline")
    async def run(
        self,
        feature_id: str,
        prompt: str = "",
        task_index: Optional[int] = None,
        dry_run: bool = False,
        review: bool = False,
        auto_complete: bool = True,
        token: Optional[CancellationToken] = None,
    ) -> ImplementResult:
        log_workflow_step("implement", feature_id, dry_run=dry_run, review=review, task_index=task_index)

        gate = self.gate.validate_for_implementation(feature_id)
        if not gate.passed:
            return self._finish(ImplementResult(
                feature_id=feature_id,
                status=PipelineStatus.BLOCKED,
                message=f"Cannot proceed with implementation. Resolve the errors first.\n\n{format_results(gate)}",
                gate=gate,
            ))

        feature = self.workspace.get_feature(feature_id)
        tasks = self.workspace.parse_tasks(feature_id)
        if task_index is not None:
            task = select_task(tasks, task_index)
            if task is None:
                raise TaskNotFoundError(feature_id, str(task_index))
        else:
            task = first_incomplete(tasks)
        if task is None:
            return self._finish(ImplementResult(
                feature_id=feature_id,
                status=PipelineStatus.ALL_COMPLETE,
                message="All tasks are complete! No more tasks to implement.",
                gate=gate,
            ))

        selection = self.model_selector.effective_model("implement", prompt)
        model = selection["model"]
        logger.info(f"Implementing '{task.title}' for {feature_id} with {self.model_selector.display_name(model)}")

        context = self.context_builder.build(task.title)
        messages = [
            user_message(prompts.implement(
                feature.name,
                self.workspace.read_artifact(feature_id, "spec") or "",
                self.workspace.read_artifact(feature_id, "plan") or "",
                self.workspace.read_artifact(feature_id, "tasks") or "",
                task.title,
                None if context.is_empty else context.text,
            )),
            user_message(selection["clean_prompt"] or prompts.implement_user_prompt(task.title)),
        ]

        result = ImplementResult(feature_id=feature_id, status=PipelineStatus.APPLIED, message="", gate=gate, task=task)
        try:
            output = await collect_text(self.oracle_factory(model), messages, token, self.on_chunk)
        except GenerationCancelled:
            result.status = PipelineStatus.CANCELLED
            result.message = "Generation was cancelled. No files were changed."
            return self._finish(result)
        except GenerationError as e:
            log_error_with_context(e, {"operation": "implement_generate", "feature_id": feature_id, "model": model})
            result.status = PipelineStatus.GENERATION_FAILED
            result.message = f"Generation failed: {e}"
            return self._finish(result)

        result.output = output
        result.commands = extract_shell_commands(output, limit=self.settings.max_shell_commands)
        changes = extract_changes(output)
        result.changes_found = len(changes)
        if not changes:
            result.status = PipelineStatus.NO_CHANGES
            result.message = "No file changes found in the generated output."
            return self._finish(result)

        report = self.applicator.apply(changes, dry_run=dry_run)
        result.report = report
        if dry_run:
            result.status = PipelineStatus.PREVIEWED
            result.message = describe_report(report)
            return self._finish(result)
        if report.error:
            result.status = PipelineStatus.APPLY_FAILED
            result.message = describe_report(report)
            return self._finish(result)
        if not report.applied:
            result.status = PipelineStatus.NO_CHANGES
            result.message = f"All {len(report.skipped)} proposed change(s) were skipped."
            return self._finish(result)

        result.message = describe_report(report)

        if review:
            result.review = await self._review(feature.name, task, report.applied, output, token, result.warnings)

        if auto_complete:
            try:
                self._mark_complete(feature_id, task)
            except (SpeckyError, ValueError, OSError) as e:
                log_error_with_context(e, {"operation": "mark_task_complete", "feature_id": feature_id})
                result.warnings.append(
                    f"Files were applied but task '{task.title}' could not be marked complete: {e}. "
                    f"Mark it manually in tasks.md."
                )

        result.next_task = self.workspace.next_task(feature_id)
        return self._finish(result)

    async def _review(
        self,
        feature_name: str,
        task: Task,
        applied: List[str],
        output: str,
        token: Optional[CancellationToken],
        warnings: List[str],
    ) -> Optional[str]:
        model = self.model_selector.configured_model("review")
        messages = [
            user_message(prompts.review(feature_name, task.title, applied, output)),
            user_message(prompts.DEFAULT_USER_PROMPTS["review"]),
        ]
        try:
            return await collect_text(self.oracle_factory(model), messages, token)
        except (GenerationError, GenerationCancelled) as e:
            logger.warning(f"Review failed: {e}")
            warnings.append(f"Review could not be completed: {e}")
            return None

    def _mark_complete(self, feature_id: str, task: Task) -> Task:
        # The apply may have rewritten tasks.md, so re-check the task by title.
        tasks = self.workspace.parse_tasks(feature_id)
        current = find_task(tasks, task.task_id)
        if current is None or current.title != task.title:
            current = next((item for item in flatten_tasks(tasks) if item.title == task.title), None)
        if current is None:
            raise TaskNotFoundError(feature_id, task.title)
        return self.workspace.complete_task(feature_id, current.task_id)

    def _finish(self, result: ImplementResult) -> ImplementResult:
        logger.info(f"Implement run for {result.feature_id} finished: {result.status}")
        observability_hooks.log_workflow_event(
            "implement_finished",
            feature_id=result.feature_id,
            status=result.status,
            changes_found=result.changes_found,
        )
        return result
