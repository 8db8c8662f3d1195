"""Input mapping resolution between workflow steps.

A step's ``input_mapping`` maps configuration keys to either a literal value
or a reference of the form ``"<source-step>:<dot.path>"``. References are
resolved against the outputs recorded by earlier steps of the same run.
Resolution is best effort: a reference that cannot be followed sets the key to
``None`` instead of failing the step.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

REFERENCE_SEPARATOR = ":"


class _Missing:
    """Marker for a value that could not be resolved."""

    _instance: Optional["_Missing"] = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def is_reference(value: Any) -> bool:
    """Return ``True`` when ``value`` points at another step's output."""
    return isinstance(value, str) and REFERENCE_SEPARATOR in value


def resolve_path(value: Any, path: str) -> Any:
    """Descend into ``value`` following a dotted ``path``.

    Mapping segments select keys; integer segments index into lists. Returns
    ``MISSING`` as soon as a segment cannot be followed. An empty path returns
    ``value`` itself.
    """
    if value is MISSING:
        return MISSING
    if not path:
        return value

    current = value
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, (list, tuple)):
            try:
                index = int(segment)
            except ValueError:
                return MISSING
            if index < 0 or index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def resolve_reference(reference: str, outputs: Mapping[str, Any]) -> Any:
    """Resolve ``"<source>:<path>"`` against ``outputs``.

    Only the first separator splits source from path.
    """
    source, _, path = reference.partition(REFERENCE_SEPARATOR)
    if source not in outputs:
        logger.warning(f"Referenced step {source} not found or has no output")
        return MISSING
    return resolve_path(outputs[source], path)


def resolve_inputs(
    step_config: Optional[Mapping[str, Any]],
    input_mapping: Optional[Mapping[str, Any]],
    outputs: Mapping[str, Any],
) -> dict[str, Any]:
    """Return a new configuration with ``input_mapping`` applied.

    ``step_config`` is never mutated. Literal mapping values (non-strings or
    strings without ``:``) pass through unchanged; references that cannot be
    followed set the key to ``None``.
    """
    resolved: dict[str, Any] = copy.deepcopy(dict(step_config or {}))
    if not input_mapping:
        return resolved

    for key, mapping_value in input_mapping.items():
        if not is_reference(mapping_value):
            resolved[key] = copy.deepcopy(mapping_value)
            continue

        value = resolve_reference(mapping_value, outputs)
        if value is MISSING:
            logger.debug(f"Input {key} resolved to nothing from {mapping_value}")
            resolved[key] = None
        else:
            resolved[key] = copy.deepcopy(value)
            logger.info(f"Passing data from {mapping_value} to input {key}")
    return resolved
