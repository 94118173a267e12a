"""Strategies folding parallel branch payloads back into one payload.

A strategy is any callable ``(original, [branch payloads]) -> payload``. The
helpers here understand dataclasses, ``NamedTuple``s, mappings and pydantic
models; other payload types need a caller supplied strategy.
"""
from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, Sequence

from .errors import WorkflowConfigurationError

LOGGER = logging.getLogger("bee_workflow.merge")

MergeFunction = Callable[[Any, List[Any]], Any]


def payload_fields(payload: Any) -> Dict[str, Any]:
    """Return the replaceable fields of ``payload`` as a name -> value dict."""
    if dataclasses.is_dataclass(payload) and not isinstance(payload, type):
        return {
            f.name: getattr(payload, f.name)
            for f in dataclasses.fields(payload)
            if f.init
        }
    if isinstance(payload, tuple) and hasattr(payload, "_asdict"):
        return dict(payload._asdict())
    if isinstance(payload, Mapping):
        return dict(payload)
    model_fields = getattr(type(payload), "model_fields", None)
    if isinstance(model_fields, dict) and hasattr(payload, "model_copy"):
        return {name: getattr(payload, name) for name in model_fields}
    raise WorkflowConfigurationError(
        f"Cannot merge payloads of type {type(payload).__name__}; "
        "pass merge= to parallel() with an explicit strategy"
    )


def replace_fields(payload: Any, changes: Dict[str, Any]) -> Any:
    """Build a new payload of the same type with ``changes`` applied."""
    if not changes:
        return payload
    if dataclasses.is_dataclass(payload) and not isinstance(payload, type):
        return dataclasses.replace(payload, **changes)
    if isinstance(payload, tuple) and hasattr(payload, "_replace"):
        return payload._replace(**changes)
    if isinstance(payload, Mapping):
        merged = dict(payload)
        merged.update(changes)
        return merged if type(payload) is dict else type(payload)(merged)
    if hasattr(payload, "model_copy"):
        return payload.model_copy(update=changes)
    raise WorkflowConfigurationError(
        f"Cannot rebuild payload of type {type(payload).__name__}"
    )


def _differs(left: Any, right: Any) -> bool:
    return not (left is right or left == right)


def merge_changed_fields(original: Any, results: Sequence[Any]) -> Any:
    """Take every field a branch changed relative to ``original``.

    When two branches change the same field to different values the later
    branch wins and a warning is logged.
    """
    base = payload_fields(original)
    changes: Dict[str, Any] = {}
    owners: Dict[str, int] = {}
    for index, result in enumerate(results):
        for name, value in payload_fields(result).items():
            if name in base and not _differs(base[name], value):
                continue
            if name in changes and _differs(changes[name], value):
                LOGGER.warning(
                    "Parallel branches %s and %s both changed field '%s'; keeping branch %s",
                    owners[name],
                    index,
                    name,
                    index,
                )
            changes[name] = value
            owners[name] = index
    return replace_fields(original, changes)


def _zero_value(value: Any) -> Any:
    if value is None:
        return None
    try:
        return type(value)()
    except Exception:
        return None


def merge_non_default_fields(original: Any, results: Sequence[Any]) -> Any:
    """Copy every branch field whose value differs from its type's zero value.

    The zero value is what the value's type builds with no arguments (``0``,
    ``""``, empty containers); declared field defaults are not consulted. A
    branch that deliberately resets a field to zero is indistinguishable from
    one that left it alone; prefer :func:`merge_changed_fields` unless that
    behaviour is wanted.
    """
    changes: Dict[str, Any] = {}
    for result in results:
        for name, value in payload_fields(result).items():
            if value is None:
                continue
            if _differs(value, _zero_value(value)):
                changes[name] = value
    return replace_fields(original, changes)
