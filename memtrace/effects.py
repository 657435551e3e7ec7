"""Effect Sink — notifications the executor emits, plus two concrete sinks."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from .values import serialize_value

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class EffectSink(ABC):
    """Fire-and-forget receiver of executor notifications.

    Values arrive as copies; a sink never feeds anything back into the
    executor.
    """

    @abstractmethod
    def reset(self) -> None: ...

    @abstractmethod
    def set_status(self, status: RunStatus) -> None: ...

    @abstractmethod
    def push_frame(self, name: str) -> None: ...

    @abstractmethod
    def pop_frame(self) -> None: ...

    @abstractmethod
    def set_variable(self, name: str, value: Any, type_name: str, address: str) -> None: ...

    @abstractmethod
    def allocate_heap(self, address: str, value: Any) -> None: ...

    @abstractmethod
    def update_heap(self, address: str, value: Any) -> None: ...

    @abstractmethod
    def log_output(self, text: str) -> None: ...

    def set_line(self, line: int) -> None:
        """Current-line highlight; ignored unless a sink cares."""


class RecordingSink(EffectSink):
    """Records every call as a ``(method, *args)`` tuple."""

    def __init__(self):
        self.calls: list[tuple] = []

    def reset(self) -> None:
        self.calls.append(("reset",))

    def set_status(self, status: RunStatus) -> None:
        self.calls.append(("set_status", status))

    def push_frame(self, name: str) -> None:
        self.calls.append(("push_frame", name))

    def pop_frame(self) -> None:
        self.calls.append(("pop_frame",))

    def set_variable(self, name: str, value: Any, type_name: str, address: str) -> None:
        self.calls.append(("set_variable", name, value, type_name, address))

    def allocate_heap(self, address: str, value: Any) -> None:
        self.calls.append(("allocate_heap", address, value))

    def update_heap(self, address: str, value: Any) -> None:
        self.calls.append(("update_heap", address, value))

    def log_output(self, text: str) -> None:
        self.calls.append(("log_output", text))

    def named(self, method: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == method]


class VisualizationState(EffectSink):
    """Render-ready state store: frames, heap, console lines, line and status."""

    def __init__(self):
        self.stack: list[dict[str, Any]] = []
        self.heap: dict[str, Any] = {}
        self.output: list[str] = []
        self.current_line = 0
        self.status = RunStatus.IDLE
        self.error = ""
        self._frame_ids = 0

    def reset(self) -> None:
        self.stack = []
        self.heap = {}
        self.output = []
        self.current_line = 0
        self.status = RunStatus.IDLE
        self.error = ""
        self._frame_ids = 0

    def set_status(self, status: RunStatus) -> None:
        self.status = status

    def set_error(self, message: str) -> None:
        self.error = message
        self.status = RunStatus.ERROR

    def push_frame(self, name: str) -> None:
        self.stack.append({"id": self._frame_ids, "name": name, "variables": {}})
        self._frame_ids += 1

    def pop_frame(self) -> None:
        if not self.stack:
            logger.debug("pop_frame on an empty stack")
            return
        self.stack.pop()

    def set_variable(self, name: str, value: Any, type_name: str, address: str) -> None:
        if not self.stack:
            logger.debug("set_variable(%s) with no frame", name)
            return
        # a write through a pointer lands in the frame owning that address
        frame = next(
            (
                f
                for f in reversed(self.stack)
                if name in f["variables"] and f["variables"][name]["address"] == address
            ),
            self.stack[-1],
        )
        frame["variables"][name] = {
            "value": value,
            "type": type_name,
            "address": address,
        }

    def allocate_heap(self, address: str, value: Any) -> None:
        self.heap[address] = value

    def update_heap(self, address: str, value: Any) -> None:
        self.heap[address] = value

    def log_output(self, text: str) -> None:
        self.output.append(text)

    def set_line(self, line: int) -> None:
        self.current_line = line

    def variable(self, name: str) -> Any:
        """Value of ``name`` in the innermost frame that binds it."""
        for frame in reversed(self.stack):
            if name in frame["variables"]:
                return frame["variables"][name]["value"]
        raise KeyError(name)

    def snapshot(self) -> dict[str, Any]:
        return {
            "stack": [
                {
                    "id": f["id"],
                    "name": f["name"],
                    "variables": {
                        k: {**v, "value": serialize_value(v["value"])}
                        for k, v in f["variables"].items()
                    },
                }
                for f in self.stack
            ],
            "heap": {k: serialize_value(v) for k, v in self.heap.items()},
            "output": list(self.output),
            "current_line": self.current_line,
            "status": self.status.value,
            "error": self.error,
        }
