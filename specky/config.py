"""Environment-driven configuration for Specky."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional


DEFAULT_REQUIRED_SECTIONS = (
    "## Problem Statement",
    "## Functional Requirements",
    "## Error Scenarios",
)
DEFAULT_OPEN_MARKERS = ("TODO", "TBD")

ENV_PREFIX = "SPECKY_"


def _split_list(raw: str) -> List[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _int_value(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got '{raw}'") from None
    if value < 0:
        raise ValueError(f"{ENV_PREFIX}{name} must not be negative, got {value}")
    return value


@dataclass(slots=True)
class SpeckySettings:
    """Tunable knobs of the workflow and implementation pipeline."""

    storage_dir: str = ".specky"
    project_root: Optional[Path] = None
    planning_model: str = "claude-opus-4.5"
    implementation_model: str = "claude-sonnet-4.5"
    command_models: Dict[str, str] = field(default_factory=dict)
    required_spec_sections: List[str] = field(default_factory=lambda: list(DEFAULT_REQUIRED_SECTIONS))
    open_markers: List[str] = field(default_factory=lambda: list(DEFAULT_OPEN_MARKERS))
    plan_min_length: int = 500
    context_char_budget: int = 12000
    context_max_files: int = 5
    max_shell_commands: int = 10
    full_replace_ratio: float = 0.8
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "SpeckySettings":
        """Build settings from ``SPECKY_*`` environment variables."""
        env = os.environ if env is None else env
        settings = cls()

        storage_dir = env.get(ENV_PREFIX + "STORAGE_DIR")
        if storage_dir and storage_dir.strip():
            settings.storage_dir = storage_dir.strip()

        project_root = env.get(ENV_PREFIX + "PROJECT_ROOT")
        if project_root and project_root.strip():
            settings.project_root = Path(project_root).expanduser()

        settings.planning_model = env.get(ENV_PREFIX + "PLANNING_MODEL") or settings.planning_model
        settings.implementation_model = env.get(ENV_PREFIX + "IMPLEMENTATION_MODEL") or settings.implementation_model
        for command in ("specify", "plan", "tasks"):
            model = env.get(f"{ENV_PREFIX}{command.upper()}_MODEL")
            if model:
                settings.command_models[command] = model

        sections = env.get(ENV_PREFIX + "REQUIRED_SPEC_SECTIONS")
        if sections is not None:
            settings.required_spec_sections = _split_list(sections)
        markers = env.get(ENV_PREFIX + "OPEN_MARKERS")
        if markers is not None:
            settings.open_markers = _split_list(markers)

        settings.plan_min_length = _int_value(env, "PLAN_MIN_LENGTH", settings.plan_min_length)
        settings.context_char_budget = _int_value(env, "CONTEXT_CHAR_BUDGET", settings.context_char_budget)
        settings.context_max_files = _int_value(env, "CONTEXT_MAX_FILES", settings.context_max_files)
        settings.max_shell_commands = _int_value(env, "MAX_SHELL_COMMANDS", settings.max_shell_commands)

        settings.log_level = (env.get(ENV_PREFIX + "LOG_LEVEL") or settings.log_level).upper()
        log_file = env.get(ENV_PREFIX + "LOG_FILE")
        if log_file:
            settings.log_file = Path(log_file).expanduser()

        return settings
