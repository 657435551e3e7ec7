"""Execution steps — the flat, branch-tagged trace the unroller emits."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

from .expr import Expr
from .values import serialize_value


class StepKind(str, Enum):
    # Frames and calls
    FRAME_PUSH = "FRAME_PUSH"
    FRAME_POP = "FRAME_POP"
    CALL_ENTER = "CALL_ENTER"
    CALL_PARAM_BIND = "CALL_PARAM_BIND"
    CALL_RETURN = "CALL_RETURN"
    RETURN = "RETURN"
    # Memory effects
    BIND_VARIABLE = "BIND_VARIABLE"
    ALLOCATE_HEAP = "ALLOCATE_HEAP"
    SET_HEAP_FIELD = "SET_HEAP_FIELD"
    DEREF_STORE = "DEREF_STORE"
    ARRAY_STORE = "ARRAY_STORE"
    POINTER_STEP = "POINTER_STEP"
    # Decision points
    BRANCH_IF = "BRANCH_IF"
    BRANCH_SWITCH = "BRANCH_SWITCH"
    LOOP_CHECK = "LOOP_CHECK"
    LOOP_ENTER = "LOOP_ENTER"
    LOOP_EXIT = "LOOP_EXIT"
    # Console
    LOG_OUTPUT = "LOG_OUTPUT"


class BranchTag(BaseModel):
    """Marks a step live only when ``label`` is selected for step ``owner``."""

    model_config = ConfigDict(frozen=True)

    owner: int
    label: str

    def __str__(self) -> str:
        return f"{self.owner}:{self.label}"


class ExecutionStep(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: StepKind
    source_line: int = 0
    payload: dict[str, Any] = {}
    branch_tags: tuple[BranchTag, ...] = ()

    def is_live(self, selected: dict[int, str]) -> bool:
        """True unless some tag names a label other than the selected one."""
        return all(selected.get(tag.owner) == tag.label for tag in self.branch_tags)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "line": self.source_line,
            "payload": {k: _payload_value(v) for k, v in self.payload.items()},
            "tags": [str(t) for t in self.branch_tags],
        }

    def __str__(self) -> str:
        parts = [self.kind.value.lower()]
        for key, value in self.payload.items():
            if value is None or value == "" or value == ():
                continue
            parts.append(f"{key}={_payload_value(value)}")
        base = " ".join(parts)
        if self.branch_tags:
            base = f"{base}  [{', '.join(str(t) for t in self.branch_tags)}]"
        return f"{base}  # line {self.source_line}"


def _payload_value(v: Any) -> Any:
    if isinstance(v, Expr):
        return str(v)
    if isinstance(v, (list, tuple)):
        return [_payload_value(x) for x in v]
    if isinstance(v, dict):
        return {str(k): _payload_value(x) for k, x in v.items()}
    return serialize_value(v)
