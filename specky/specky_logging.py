"""Logging and observability utilities for Specky.

This module provides structured logging, performance monitoring,
and observability hooks for the implementation pipeline.
"""

from __future__ import annotations

import asyncio
import json
import time
import logging as std_logging
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union


def setup_logging(log_level: Union[str, int] = std_logging.INFO, log_file: Optional[Path] = None) -> None:
    """Setup structured logging for Specky."""

    logger = std_logging.getLogger("specky")
    logger.setLevel(log_level)
    logger.handlers.clear()

    detailed_formatter = std_logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # stdout belongs to the MCP stdio transport
    console_handler = std_logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(detailed_formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = std_logging.FileHandler(log_file)
        file_handler.setLevel(std_logging.DEBUG)
        file_handler.setFormatter(JsonFormatter())
        logger.addHandler(file_handler)

    logger.info("Specky logging initialized")


class JsonFormatter(std_logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: std_logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        return json.dumps(log_entry, default=str)


class PerformanceMonitor:
    """Monitor performance metrics for Specky operations."""

    def __init__(self):
        self.metrics: Dict[str, List[Dict[str, Any]]] = {}

    def record_metric(self, name: str, value: Any, tags: Optional[Dict[str, str]] = None) -> None:
        """Record a performance metric."""
        metric = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "name": name,
            "value": value,
            "tags": tags or {},
        }
        self.metrics.setdefault(name, []).append(metric)

        logger = std_logging.getLogger("specky.performance")
        logger.debug(f"Metric recorded: {name}={value}", extra={"extra_fields": metric})

    def get_metrics(self, name: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        """Get recorded metrics."""
        if name:
            return {name: self.metrics.get(name, [])}
        return self.metrics.copy()

    def clear(self) -> None:
        self.metrics.clear()


# Global performance monitor instance
performance_monitor = PerformanceMonitor()


def _record_success(operation_name: str, start_time: float) -> None:
    duration = time.time() - start_time
    performance_monitor.record_metric(f"{operation_name}_duration", duration, {"status": "success"})
    std_logging.getLogger("specky.performance").info(
        f"Completed operation: {operation_name} in {duration:.3f}s",
        extra={"extra_fields": {"operation": operation_name, "duration": duration, "status": "success"}},
    )


def _record_failure(operation_name: str, start_time: float, error: BaseException) -> None:
    duration = time.time() - start_time
    performance_monitor.record_metric(
        f"{operation_name}_duration",
        duration,
        {"status": "error", "error_type": type(error).__name__},
    )
    std_logging.getLogger("specky.performance").error(
        f"Failed operation: {operation_name} after {duration:.3f}s - {error}",
        extra={"extra_fields": {
            "operation": operation_name,
            "duration": duration,
            "status": "error",
            "error_type": type(error).__name__,
            "error_message": str(error),
        }},
    )


def log_performance(operation_name: str):
    """Decorator to log performance metrics for sync or async operations."""
    def decorator(func):
        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                start_time = time.time()
                std_logging.getLogger("specky.performance").info(f"Starting operation: {operation_name}")
                try:
                    result = await func(*args, **kwargs)
                except BaseException as e:
                    _record_failure(operation_name, start_time, e)
                    raise
                _record_success(operation_name, start_time)
                return result

            return async_wrapper

        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            std_logging.getLogger("specky.performance").info(f"Starting operation: {operation_name}")
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _record_failure(operation_name, start_time, e)
                raise
            _record_success(operation_name, start_time)
            return result

        return wrapper
    return decorator


@contextmanager
def log_operation(operation_name: str, **extra_fields):
    """Context manager to log operations with custom fields."""
    logger = std_logging.getLogger("specky.operations")
    start_time = time.time()

    logger.info(f"Starting operation: {operation_name}", extra={"extra_fields": {
        "operation": operation_name,
        "status": "started",
        **extra_fields,
    }})

    try:
        yield

        duration = time.time() - start_time
        logger.info(f"Completed operation: {operation_name} in {duration:.3f}s", extra={"extra_fields": {
            "operation": operation_name,
            "status": "completed",
            "duration": duration,
            **extra_fields,
        }})

    except Exception as e:
        duration = time.time() - start_time
        logger.error(f"Failed operation: {operation_name} after {duration:.3f}s - {str(e)}", extra={"extra_fields": {
            "operation": operation_name,
            "status": "failed",
            "duration": duration,
            "error_type": type(e).__name__,
            "error_message": str(e),
            **extra_fields,
        }}, exc_info=True)

        raise


class ObservabilityHooks:
    """Observability hooks for Specky workflow events."""

    def __init__(self):
        self.hooks: Dict[str, List[Callable[..., Any]]] = {}
        self.logger = std_logging.getLogger("specky.observability")

    def register_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        """Register a callback for a specific event type."""
        self.hooks.setdefault(event_type, []).append(callback)
        self.logger.debug(f"Registered hook for event: {event_type}")

    def unregister_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        """Remove a previously registered callback, if present."""
        callbacks = self.hooks.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def trigger_hooks(self, event_type: str, **data) -> None:
        """Trigger all callbacks for a specific event type."""
        if event_type in self.hooks:
            self.logger.debug(f"Triggering {len(self.hooks[event_type])} hooks for event: {event_type}")
            for hook in list(self.hooks[event_type]):
                try:
                    hook(**data)
                except Exception as e:
                    self.logger.error(f"Hook failed for event {event_type}: {e}")

    def log_workflow_event(self, event_type: str, feature_id: Optional[str] = None, **data) -> None:
        """Log a workflow event and trigger hooks."""
        event_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "feature_id": feature_id,
            **data,
        }

        self.logger.info(f"Workflow event: {event_type}", extra={"extra_fields": event_data})

        # event_type is positional for trigger_hooks
        hook_data = {k: v for k, v in event_data.items() if k != "event_type"}
        self.trigger_hooks(event_type, **hook_data)


# Global observability hooks instance
observability_hooks = ObservabilityHooks()


def log_workflow_step(step_name: str, feature_id: Optional[str] = None, **extra_fields):
    """Log a workflow step with observability."""
    observability_hooks.log_workflow_event(
        f"workflow_step_{step_name.lower()}",
        feature_id=feature_id,
        step_name=step_name,
        **extra_fields,
    )


def log_artifact_event(event_type: str, artifact_type: str, feature_id: str, **extra_fields):
    """Log an artifact-related event."""
    observability_hooks.log_workflow_event(
        f"artifact_{event_type.lower()}",
        feature_id=feature_id,
        artifact_type=artifact_type,
        **extra_fields,
    )


def log_error_with_context(error: BaseException, context: Dict[str, Any], **extra_fields):
    """Log an error with rich context information."""
    logger = std_logging.getLogger("specky.errors")

    error_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "error_type": type(error).__name__,
        "error_message": str(error),
        "context": context,
        **extra_fields,
    }

    logger.error(
        f"Error in {context.get('operation', 'unknown operation')}: {str(error)}",
        extra={"extra_fields": error_data},
        exc_info=error,
    )


# Convenience functions for common operations
def log_artifact_written(feature_id: str, artifact_type: str, **extra_fields):
    """Log an artifact write (spec, plan or tasks)."""
    log_artifact_event("written", artifact_type, feature_id, **extra_fields)


def log_task_toggle(feature_id: str, task_id: str, completed: bool, **extra_fields):
    """Log a checkbox toggle in tasks.md."""
    log_artifact_event("updated", "task", feature_id, task_id=task_id, completed=completed, **extra_fields)


def log_quality_gate(feature_id: str, passed: bool, **extra_fields):
    """Log a quality gate evaluation."""
    observability_hooks.log_workflow_event("quality_gate_evaluated", feature_id=feature_id, passed=passed, **extra_fields)


def log_changes_applied(paths: List[str], **extra_fields):
    """Log a committed change set."""
    observability_hooks.log_workflow_event("changes_applied", paths=list(paths), count=len(paths), **extra_fields)


def log_changes_previewed(count: int, **extra_fields):
    """Log a dry-run preview."""
    observability_hooks.log_workflow_event("changes_previewed", count=count, **extra_fields)


def log_change_skipped(path: str, code: str, **extra_fields):
    """Log a change dropped from its batch."""
    observability_hooks.log_workflow_event("change_skipped", path=path, code=code, **extra_fields)


_default_logging_initialized = False


def initialize_default_logging(log_level: Union[str, int] = std_logging.INFO, log_file: Optional[Path] = None) -> None:
    """Initialize default logging if not already done."""
    global _default_logging_initialized
    if not _default_logging_initialized:
        setup_logging(log_level, log_file)
        _default_logging_initialized = True
