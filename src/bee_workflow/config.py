"""Runtime settings for built workflows."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import SettingsError

ENV_PREFIX = "BEE_WORKFLOW_"


class WorkflowSettings(BaseModel):
    """Settings shared by every execution of a workflow."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # "threads" runs each concurrent branch in its own event loop on a worker
    # thread; "asyncio" schedules branches as tasks on the caller's loop.
    concurrency_mode: Literal["threads", "asyncio"] = "threads"
    max_parallel_workers: Optional[int] = Field(default=None, gt=0)
    max_detached_workers: int = Field(default=4, gt=0)
    log_level: str = "WARNING"
    record_metrics: bool = True

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level '{value}'")
        return level

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "WorkflowSettings":
        try:
            return cls(**dict(data))
        except ValidationError as exc:
            raise SettingsError(f"Invalid workflow settings: {exc}") from exc

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "WorkflowSettings":
        """Load settings from a YAML file, optionally nested under ``workflow:``."""
        try:
            with open(path, "r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise SettingsError(f"Cannot read settings file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise SettingsError(f"Settings file {path} must contain a mapping")
        if "workflow" in data:
            data = data["workflow"] or {}
            if not isinstance(data, dict):
                raise SettingsError(f"Section 'workflow' in {path} must be a mapping")
        return cls.from_mapping(data)

    @classmethod
    def from_env(
        cls, prefix: str = ENV_PREFIX, environ: Optional[Mapping[str, str]] = None
    ) -> "WorkflowSettings":
        environ = os.environ if environ is None else environ
        data: Dict[str, Any] = {}
        for name in cls.model_fields:
            raw = environ.get(f"{prefix}{name.upper()}")
            if raw is None:
                continue
            # Reuse the YAML scalar rules so "true", "8" and "null" coerce naturally.
            try:
                data[name] = yaml.safe_load(raw) if raw.strip() else None
            except yaml.YAMLError as exc:
                raise SettingsError(f"Cannot parse {prefix}{name.upper()}: {exc}") from exc
        return cls.from_mapping(data)


def configure_logging(settings: WorkflowSettings) -> logging.Logger:
    """Apply ``settings.log_level`` to the package logger."""
    logger = logging.getLogger("bee_workflow")
    logger.setLevel(settings.log_level)
    return logger
