"""Runtime executor — replays steps against the authoritative Memory."""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable

from . import constants
from .effects import EffectSink, RunStatus, VisualizationState
from .evaluate import Evaluator
from .expr import Index
from .memory import AddressAllocator, Binding, HeapCell, Memory
from .output import resolve_template
from .steps import ExecutionStep, StepKind
from .values import UNRESOLVED, PendingArithmetic, is_reference, shift_reference

logger = logging.getLogger(__name__)


class Executor:
    """Consumes an ``ExecutionStep`` list one step at a time.

    ``selected`` records the runtime branch label chosen at each decision
    step; a step is applied only when every one of its tags agrees with it.
    After a live ``return``, the remainder of that activation is skipped up
    to its matching frame pop.
    """

    def __init__(self, steps: list[ExecutionStep], effects: EffectSink | None = None):
        self.steps = list(steps)
        self.effects = effects if effects is not None else VisualizationState()
        self.reset()

    def reset(self) -> None:
        """Discard all runtime state; the next step applied is step 0."""
        self.memory = Memory()
        self.addresses = AddressAllocator.for_stack()
        self.selected: dict[int, str] = {}
        self.cursor = 0
        self.applied: list[int] = []
        self.suppressed = 0
        self._pending_args: list[Any] = []
        self._return_value: Any = None
        self._unwinding = False
        self._unwind_depth = 0
        self.effects.reset()

    @property
    def done(self) -> bool:
        return self.cursor >= len(self.steps)

    @property
    def total(self) -> int:
        return len(self.steps)

    @property
    def _eval(self) -> Evaluator:
        return Evaluator(self.memory)

    # ── driving ──────────────────────────────────────────────────

    def step(self) -> ExecutionStep | None:
        """Advance past suppressed steps and apply the next live one."""
        while not self.done:
            index = self.cursor
            if self._consume():
                return self.steps[index]
        return None

    def seek(self, index: int) -> None:
        """Replay from a clean state until ``index`` steps have been consumed."""
        self.reset()
        target = max(0, min(index, len(self.steps)))
        while self.cursor < target:
            self._consume()

    def run(self) -> None:
        while not self.done:
            self._consume()

    def _consume(self) -> bool:
        """Consume one raw step; True when it was applied."""
        index = self.cursor
        step = self.steps[index]
        self.cursor += 1
        if not step.is_live(self.selected):
            self.suppressed += 1
            logger.debug("Suppressed step %d (%s)", index, step.kind.value)
            return False
        if self._unwinding and not self._unwound(step):
            self.suppressed += 1
            return False
        self.effects.set_line(step.source_line)
        self.DISPATCH[step.kind](self, index, step)
        self.applied.append(index)
        return True

    def _unwound(self, step: ExecutionStep) -> bool:
        """While skipping after a return: True once the activation's frame pop arrives."""
        if step.kind == StepKind.FRAME_PUSH:
            self._unwind_depth += 1
            return False
        if step.kind == StepKind.FRAME_POP:
            if self._unwind_depth == 0:
                self._unwinding = False
                return True
            self._unwind_depth -= 1
        return False

    # ── helpers ──────────────────────────────────────────────────

    def _materialize(self, payload: dict[str, Any]) -> Any:
        """Runtime value for a payload, falling back to the unrolled value."""
        value = copy.deepcopy(payload.get("value"))
        if isinstance(value, PendingArithmetic):
            resolved = self._eval.resolve_pending(value)
            return None if resolved is UNRESOLVED else resolved
        evaluator = self._eval
        expr = payload.get("expr")
        if expr is not None:
            resolved = evaluator.value(expr)
            if resolved is not UNRESOLVED:
                value = copy.deepcopy(resolved)
        for i, element in enumerate(payload.get("elements") or ()):
            if isinstance(value, list) and i < len(value):
                resolved = evaluator.value(element)
                if resolved is not UNRESOLVED:
                    value[i] = copy.deepcopy(resolved)
        for name, field_expr in (payload.get("fields") or {}).items():
            if isinstance(value, dict):
                resolved = evaluator.value(field_expr)
                if resolved is not UNRESOLVED:
                    value[name] = copy.deepcopy(resolved)
        return value

    def _notify(self, changed: Binding | HeapCell | None) -> None:
        if isinstance(changed, Binding):
            self.effects.set_variable(
                changed.name,
                copy.deepcopy(changed.value),
                changed.declared_type,
                changed.address,
            )
        elif isinstance(changed, HeapCell):
            self.effects.update_heap(changed.address, copy.deepcopy(changed.value))

    def _bind(self, name: str, value: Any, type_name: str, declare: bool) -> None:
        binding = self.memory.bind(
            name, value, type_name, declare=declare, allocator=self.addresses
        )
        self._notify(binding)

    def _select(self, index: int, label: str) -> None:
        self.selected[index] = label
        logger.debug("Step %d selects %s", index, label)

    # ── handlers ─────────────────────────────────────────────────

    def _frame_push(self, index: int, step: ExecutionStep) -> None:
        name = step.payload["function"]
        self.memory.push_scope(name)
        self.effects.push_frame(name)

    def _frame_pop(self, index: int, step: ExecutionStep) -> None:
        self.memory.pop_scope()
        self.effects.pop_frame()

    def _call_enter(self, index: int, step: ExecutionStep) -> None:
        fallback = step.payload.get("arguments", [])
        args: list[Any] = []
        for i, expr in enumerate(step.payload.get("argument_exprs", ())):
            value = self._eval.value(expr)
            if value is UNRESOLVED:
                value = fallback[i] if i < len(fallback) else None
            args.append(copy.deepcopy(value))
        self._pending_args = args
        self._return_value = None

    def _call_param_bind(self, index: int, step: ExecutionStep) -> None:
        position = step.payload["position"]
        if position < len(self._pending_args):
            value = self._pending_args[position]
        else:
            value = copy.deepcopy(step.payload.get("value"))
        self._bind(step.payload["name"], value, step.payload.get("type", ""), declare=True)

    def _call_return(self, index: int, step: ExecutionStep) -> None:
        value = self._return_value
        self._return_value = None
        self.memory.results[step.payload["slot"]] = value
        target = step.payload.get("target")
        if target:
            self._bind(
                target,
                copy.deepcopy(value),
                step.payload.get("target_type", ""),
                declare=step.payload.get("declare", False),
            )

    def _return(self, index: int, step: ExecutionStep) -> None:
        expr = step.payload.get("expr")
        value = self._eval.value(expr) if expr is not None else None
        if value is UNRESOLVED:
            value = step.payload.get("value")
        self._return_value = copy.deepcopy(value)
        self._unwinding = True
        self._unwind_depth = 0

    def _bind_variable(self, index: int, step: ExecutionStep) -> None:
        value = self._materialize(step.payload)
        self._bind(
            step.payload["name"],
            value,
            step.payload.get("type", ""),
            declare=step.payload.get("declare", False),
        )

    def _allocate_heap(self, index: int, step: ExecutionStep) -> None:
        value = self._materialize(step.payload)
        address = step.payload["address"]
        self.memory.allocate(address, step.payload.get("type", ""), value)
        self.effects.allocate_heap(address, copy.deepcopy(value))

    def _set_heap_field(self, index: int, step: ExecutionStep) -> None:
        pointer = self._eval.value(step.payload["pointer"])
        value = self._materialize(step.payload)
        cell = self.memory.set_field(pointer, step.payload["field"], value)
        if cell is None:
            logger.debug("Field store through unresolved pointer %s", step.payload["pointer"])
            return
        self._notify(cell)

    def _deref_store(self, index: int, step: ExecutionStep) -> None:
        ref = self._eval.value(step.payload["pointer"])
        if not is_reference(ref):
            logger.debug("Store through non-pointer %s skipped", step.payload["pointer"])
            return
        changed = self.memory.store(ref, self._materialize(step.payload))
        if changed is None:
            logger.debug("Store through dangling reference %s skipped", ref)
            return
        self._notify(changed)

    def _array_store(self, index: int, step: ExecutionStep) -> None:
        ref = self._eval.reference(Index(step.payload["array"], step.payload["index"]))
        if ref is UNRESOLVED:
            logger.debug("Array store to unresolved %s skipped", step.payload["array"])
            return
        changed = self.memory.store(ref, self._materialize(step.payload))
        if changed is None:
            logger.debug("Array store out of range at %s skipped", ref)
            return
        self._notify(changed)

    def _pointer_step(self, index: int, step: ExecutionStep) -> None:
        binding = self.memory.lookup(step.payload["name"])
        if binding is None:
            logger.debug("Step of unbound %s skipped", step.payload["name"])
            return
        shifted = shift_reference(binding.value, step.payload["delta"])
        if shifted is UNRESOLVED:
            logger.debug("Step of non-steppable %s skipped", step.payload["name"])
            return
        binding.value = shifted
        self._notify(binding)

    def _branch_if(self, index: int, step: ExecutionStep) -> None:
        taken = self._eval.condition(step.payload["condition"])
        if taken is UNRESOLVED:
            self._select(index, step.payload["predicted"])
            return
        self._select(index, constants.BRANCH_THEN if taken else constants.BRANCH_ELSE)

    def _branch_switch(self, index: int, step: ExecutionStep) -> None:
        evaluator = self._eval
        subject = evaluator.value(step.payload["discriminant"])
        if subject is UNRESOLVED:
            self._select(index, step.payload["predicted"])
            return
        label = next(
            (
                label
                for label, value_expr in step.payload.get("cases", {}).items()
                if evaluator.value(value_expr) == subject
            ),
            constants.CASE_DEFAULT,
        )
        self._select(index, label)

    def _loop_check(self, index: int, step: ExecutionStep) -> None:
        condition = step.payload.get("condition")
        proceed = True if condition is None else self._eval.condition(condition)
        if proceed is UNRESOLVED:
            self._select(index, step.payload["predicted"])
            return
        self._select(index, constants.LOOP_ITERATE if proceed else constants.LOOP_EXIT)

    def _loop_marker(self, index: int, step: ExecutionStep) -> None:
        pass

    def _log_output(self, index: int, step: ExecutionStep) -> None:
        text = resolve_template(
            step.payload["template"], list(step.payload.get("expressions", ())), self._eval
        )
        self.effects.log_output(text)

    DISPATCH: dict[StepKind, Callable] = {
        StepKind.FRAME_PUSH: _frame_push,
        StepKind.FRAME_POP: _frame_pop,
        StepKind.CALL_ENTER: _call_enter,
        StepKind.CALL_PARAM_BIND: _call_param_bind,
        StepKind.CALL_RETURN: _call_return,
        StepKind.RETURN: _return,
        StepKind.BIND_VARIABLE: _bind_variable,
        StepKind.ALLOCATE_HEAP: _allocate_heap,
        StepKind.SET_HEAP_FIELD: _set_heap_field,
        StepKind.DEREF_STORE: _deref_store,
        StepKind.ARRAY_STORE: _array_store,
        StepKind.POINTER_STEP: _pointer_step,
        StepKind.BRANCH_IF: _branch_if,
        StepKind.BRANCH_SWITCH: _branch_switch,
        StepKind.LOOP_CHECK: _loop_check,
        StepKind.LOOP_ENTER: _loop_marker,
        StepKind.LOOP_EXIT: _loop_marker,
        StepKind.LOG_OUTPUT: _log_output,
    }


def execute(steps: list[ExecutionStep], effects: EffectSink | None = None) -> Executor:
    """Replay ``steps`` to completion, driving ``effects``."""
    executor = Executor(steps, effects)
    executor.effects.set_status(RunStatus.RUNNING)
    executor.run()
    executor.effects.set_status(RunStatus.COMPLETED)
    logger.info(
        "Executed %d of %d steps (%d suppressed)",
        len(executor.applied),
        executor.total,
        executor.suppressed,
    )
    return executor
