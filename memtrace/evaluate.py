"""Structural expression evaluation against a Memory."""

from __future__ import annotations

import logging
from typing import Any

from . import constants
from .expr import (
    AddressOf,
    ArrayLiteral,
    BinaryOp,
    CallResult,
    Conditional,
    Deref,
    Expr,
    FieldAccess,
    Index,
    Literal,
    Name,
    Opaque,
    SizeOf,
    UnaryOp,
)
from .memory import Memory
from .values import (
    UNRESOLVED,
    ArrayElementRef,
    HeapAddress,
    Operators,
    PendingArithmetic,
    VariableRef,
    is_number,
    is_reference,
    shift_reference,
    truthy,
)

logger = logging.getLogger(__name__)


def type_size(type_name: str) -> Any:
    """Byte size of a type name, or UNRESOLVED."""
    text = " ".join(type_name.replace("const", "").split())
    if text.endswith("*"):
        return constants.POINTER_SIZE
    return constants.PRIMITIVE_SIZES.get(text, UNRESOLVED)


class Evaluator:
    """Evaluates expressions over one Memory.

    The unroller runs it over its speculative analysis state, the executor
    over the authoritative runtime state; both see the same semantics.
    """

    def __init__(self, memory: Memory):
        self.memory = memory

    def value(self, expr: Expr | None) -> Any:
        if expr is None:
            return UNRESOLVED
        handler = self._DISPATCH.get(type(expr))
        if handler is None:
            logger.debug("No evaluator for %s", type(expr).__name__)
            return UNRESOLVED
        return handler(self, expr)

    def condition(self, expr: Expr | None) -> Any:
        """Truthiness of ``expr``: True, False or UNRESOLVED."""
        return truthy(self.value(expr))

    # ── rvalues ──────────────────────────────────────────────────

    def _literal(self, expr: Literal) -> Any:
        return expr.value

    def _name(self, expr: Name) -> Any:
        scope = self.memory.owner_of(expr.name)
        if scope is None:
            logger.debug("Unbound name %s", expr.name)
            return UNRESOLVED
        binding = scope.bindings[expr.name]
        if binding.is_array:
            return ArrayElementRef(expr.name, 0, scope.id)
        return binding.value

    def _binary(self, expr: BinaryOp) -> Any:
        if expr.op in ("&&", "||"):
            left = self.condition(expr.left)
            if left is not UNRESOLVED:
                if expr.op == "&&" and not left:
                    return False
                if expr.op == "||" and left:
                    return True
            right = self.condition(expr.right)
            if left is UNRESOLVED or right is UNRESOLVED:
                return UNRESOLVED
            return bool(right)
        lhs = self.value(expr.left)
        rhs = self.value(expr.right)
        if expr.op == "+" and is_number(lhs) and is_reference(rhs):
            return shift_reference(rhs, lhs)
        return Operators.eval_binop(expr.op, lhs, rhs)

    def _unary(self, expr: UnaryOp) -> Any:
        return Operators.eval_unop(expr.op, self.value(expr.operand))

    def _address_of(self, expr: AddressOf) -> Any:
        return self.reference(expr.target)

    def _deref(self, expr: Deref) -> Any:
        pointer = self.value(expr.pointer)
        if not is_reference(pointer):
            logger.debug("Dereference of non-pointer %s", expr.pointer)
            return UNRESOLVED
        return self.memory.load(pointer)

    def _index(self, expr: Index) -> Any:
        ref = self.reference(expr)
        if ref is UNRESOLVED:
            return UNRESOLVED
        return self.memory.load(ref)

    def _field(self, expr: FieldAccess) -> Any:
        base = self.value(expr.base)
        if is_reference(base):
            base = self._cell_value(base)
        if isinstance(base, dict):
            return base.get(expr.field_name, UNRESOLVED)
        return UNRESOLVED

    def _cell_value(self, ref: Any) -> Any:
        if isinstance(ref, HeapAddress):
            cell = self.memory.heap.get(ref.token)
            return cell.value if cell is not None else UNRESOLVED
        return self.memory.load(ref)

    def _sizeof(self, expr: SizeOf) -> Any:
        operand = expr.operand
        # sizeof(x) may parse as a type descriptor naming a variable
        if operand is None and self.memory.lookup(expr.type_name) is not None:
            operand = Name(expr.type_name)
        if isinstance(operand, Name):
            binding = self.memory.lookup(operand.name)
            if binding is None:
                return type_size(operand.name)
            if binding.is_array:
                return len(binding.value) * constants.ELEMENT_SIZE
            return type_size(binding.declared_type)
        if operand is not None:
            value = self.value(operand)
            if is_reference(value) or value is None:
                return constants.POINTER_SIZE
            if isinstance(value, float):
                return constants.PRIMITIVE_SIZES["double"]
            if is_number(value):
                return constants.ELEMENT_SIZE
            return UNRESOLVED
        return type_size(expr.type_name)

    def _conditional(self, expr: Conditional) -> Any:
        test = self.condition(expr.condition)
        if test is UNRESOLVED:
            return UNRESOLVED
        return self.value(expr.consequence if test else expr.alternative)

    def _call_result(self, expr: CallResult) -> Any:
        return self.memory.results.get(expr.slot, expr.fallback)

    def _opaque(self, expr: Opaque) -> Any:
        return expr.text

    def _array(self, expr: ArrayLiteral) -> Any:
        return [self.value(e) for e in expr.elements]

    _DISPATCH = {
        Literal: _literal,
        Name: _name,
        BinaryOp: _binary,
        UnaryOp: _unary,
        AddressOf: _address_of,
        Deref: _deref,
        Index: _index,
        FieldAccess: _field,
        SizeOf: _sizeof,
        Conditional: _conditional,
        CallResult: _call_result,
        Opaque: _opaque,
        ArrayLiteral: _array,
    }

    # ── lvalues ──────────────────────────────────────────────────

    def reference(self, expr: Expr) -> Any:
        """Reference naming the storage ``expr`` denotes, or UNRESOLVED."""
        if isinstance(expr, Name):
            scope = self.memory.owner_of(expr.name)
            if scope is None:
                return UNRESOLVED
            if scope.bindings[expr.name].is_array:
                return ArrayElementRef(expr.name, 0, scope.id)
            return VariableRef(expr.name, scope.id)
        if isinstance(expr, Index):
            base = self.value(expr.base)
            index = self.value(expr.index)
            if not is_reference(base) or not isinstance(index, int):
                return UNRESOLVED
            if isinstance(base, VariableRef):
                return UNRESOLVED
            return shift_reference(base, index)
        if isinstance(expr, Deref):
            pointer = self.value(expr.pointer)
            return pointer if is_reference(pointer) else UNRESOLVED
        return UNRESOLVED

    def resolve_pending(self, value: Any) -> Any:
        """Resolve ``PendingArithmetic`` against the current value of its base."""
        if not isinstance(value, PendingArithmetic):
            return value
        base = self.value(Name(value.base))
        delta = value.offset if value.op == "+" else -value.offset
        return shift_reference(base, delta)
