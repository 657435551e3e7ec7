"""Symbolic memory model — scope stack, heap and mock address allocation."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any

from . import constants
from .values import (
    UNRESOLVED,
    ArrayElementRef,
    HeapAddress,
    VariableRef,
    serialize_value,
)

logger = logging.getLogger(__name__)


@dataclass
class AddressAllocator:
    """Deterministic mock-address sequence; one instance per run."""

    base: int
    stride: int
    issued: int = 0

    def allocate(self) -> str:
        address = f"0x{self.base + self.issued * self.stride:08X}"
        self.issued += 1
        return address

    @classmethod
    def for_stack(cls) -> AddressAllocator:
        return cls(constants.STACK_ADDRESS_BASE, constants.STACK_ADDRESS_STRIDE)

    @classmethod
    def for_heap(cls) -> AddressAllocator:
        return cls(constants.HEAP_ADDRESS_BASE, constants.HEAP_ADDRESS_STRIDE)


@dataclass
class Binding:
    name: str
    value: Any = None
    declared_type: str = ""
    address: str = ""

    @property
    def is_array(self) -> bool:
        return isinstance(self.value, list)

    def to_dict(self) -> dict:
        return {
            "value": serialize_value(self.value),
            "type": self.declared_type,
            "address": self.address,
        }


@dataclass
class Scope:
    id: int
    function_name: str
    bindings: dict[str, Binding] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.function_name,
            "variables": {k: b.to_dict() for k, b in self.bindings.items()},
        }


@dataclass
class HeapCell:
    address: str
    declared_type: str = ""
    value: Any = None

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "type": self.declared_type,
            "value": serialize_value(self.value),
        }


@dataclass
class Memory:
    """Scope stack plus heap.

    Name lookup is strictly per activation: the current scope first, then
    the global scope. Everything else is reached through references, which
    carry the id of the scope they were taken in.
    """

    scopes: list[Scope] = field(default_factory=list)
    heap: dict[str, HeapCell] = field(default_factory=dict)
    results: dict[int, Any] = field(default_factory=dict)
    scope_counter: int = 0

    # ── scopes ───────────────────────────────────────────────────

    @property
    def current(self) -> Scope | None:
        return self.scopes[-1] if self.scopes else None

    def push_scope(self, function_name: str) -> Scope:
        scope = Scope(id=self.scope_counter, function_name=function_name)
        self.scope_counter += 1
        self.scopes.append(scope)
        return scope

    def pop_scope(self) -> Scope | None:
        if not self.scopes:
            logger.debug("Pop on empty scope stack ignored")
            return None
        return self.scopes.pop()

    def scope_by_id(self, scope_id: int | None) -> Scope | None:
        if scope_id is None:
            return None
        return next((s for s in self.scopes if s.id == scope_id), None)

    def _global_scope(self) -> Scope | None:
        if self.scopes and self.scopes[0].function_name == constants.GLOBAL_FRAME_NAME:
            return self.scopes[0]
        return None

    def owner_of(self, name: str) -> Scope | None:
        """Scope that a bare name resolves in, or None when unbound."""
        scope = self.current
        if scope is not None and name in scope.bindings:
            return scope
        glob = self._global_scope()
        if glob is not None and name in glob.bindings:
            return glob
        return None

    def lookup(self, name: str) -> Binding | None:
        scope = self.owner_of(name)
        return scope.bindings[name] if scope is not None else None

    def bind(
        self,
        name: str,
        value: Any,
        declared_type: str = "",
        address: str = "",
        declare: bool = False,
        allocator: AddressAllocator | None = None,
    ) -> Binding | None:
        """Bind ``name``; a fresh declaration always lands in the current scope."""
        scope = self.current if declare else (self.owner_of(name) or self.current)
        if scope is None:
            logger.debug("Bind of %s with no active scope", name)
            return None
        existing = scope.bindings.get(name)
        if existing is not None:
            existing.value = value
            existing.declared_type = declared_type or existing.declared_type
            return existing
        if not address and allocator is not None:
            address = allocator.allocate()
        binding = Binding(name, value, declared_type, address)
        scope.bindings[name] = binding
        return binding

    # ── references ───────────────────────────────────────────────

    def _binding_for(self, name: str, scope_id: int | None) -> Binding | None:
        scope = self.scope_by_id(scope_id)
        if scope is not None and name in scope.bindings:
            return scope.bindings[name]
        if scope_id is None:
            return self.lookup(name)
        for scope in reversed(self.scopes):
            if name in scope.bindings:
                return scope.bindings[name]
        return None

    def load(self, ref: Any) -> Any:
        """Read through a reference, one level only."""
        if isinstance(ref, VariableRef):
            binding = self._binding_for(ref.name, ref.scope_id)
            return binding.value if binding is not None else UNRESOLVED
        if isinstance(ref, ArrayElementRef):
            binding = self._binding_for(ref.array_name, ref.scope_id)
            if binding is None or not binding.is_array:
                return UNRESOLVED
            if 0 <= ref.index < len(binding.value):
                return binding.value[ref.index]
            return UNRESOLVED
        if isinstance(ref, HeapAddress):
            cell = self.heap.get(ref.token)
            if cell is None:
                return UNRESOLVED
            if isinstance(cell.value, list):
                if 0 <= ref.offset < len(cell.value):
                    return cell.value[ref.offset]
                return UNRESOLVED
            return cell.value if ref.offset == 0 else UNRESOLVED
        return UNRESOLVED

    def store(self, ref: Any, value: Any) -> Binding | HeapCell | None:
        """Write through a reference; returns what changed, or None if unresolved."""
        if isinstance(ref, VariableRef):
            binding = self._binding_for(ref.name, ref.scope_id)
            if binding is None:
                return None
            binding.value = value
            return binding
        if isinstance(ref, ArrayElementRef):
            binding = self._binding_for(ref.array_name, ref.scope_id)
            if binding is None or not binding.is_array:
                return None
            if not 0 <= ref.index < len(binding.value):
                return None
            binding.value[ref.index] = value
            return binding
        if isinstance(ref, HeapAddress):
            cell = self.heap.get(ref.token)
            if cell is None:
                return None
            if isinstance(cell.value, list):
                if not 0 <= ref.offset < len(cell.value):
                    return None
                cell.value[ref.offset] = value
            elif ref.offset == 0:
                cell.value = value
            else:
                return None
            return cell
        return None

    # ── heap ─────────────────────────────────────────────────────

    def allocate(self, address: str, declared_type: str, value: Any) -> HeapCell:
        cell = HeapCell(address, declared_type, value)
        self.heap[address] = cell
        return cell

    def set_field(self, ref: Any, field_name: str, value: Any) -> HeapCell | None:
        if not isinstance(ref, HeapAddress):
            return None
        cell = self.heap.get(ref.token)
        if cell is None:
            return None
        if not isinstance(cell.value, dict):
            cell.value = {}
        cell.value[field_name] = value
        return cell

    # ── snapshots ────────────────────────────────────────────────

    def clone(self) -> Memory:
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        return {
            "stack": [s.to_dict() for s in self.scopes],
            "heap": {k: c.to_dict() for k, c in self.heap.items()},
        }
