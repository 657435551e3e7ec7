"""Tests for symbolic values, operators and the memory model."""

from __future__ import annotations

import copy

from memtrace import constants
from memtrace.memory import AddressAllocator, Memory
from memtrace.values import (
    UNRESOLVED,
    ArrayElementRef,
    HeapAddress,
    Operators,
    VariableRef,
    format_value,
    parse_number,
    serialize_value,
    shift_reference,
    truthy,
)


class TestOperators:
    def test_integer_division_truncates_toward_zero(self):
        assert Operators.eval_binop("/", -7, 2) == -3
        assert Operators.eval_binop("%", -7, 2) == -1

    def test_division_by_zero_is_unresolved(self):
        assert Operators.eval_binop("/", 1, 0) is UNRESOLVED

    def test_unresolved_operand_propagates(self):
        assert Operators.eval_binop("+", UNRESOLVED, 1) is UNRESOLVED
        assert Operators.eval_unop("-", UNRESOLVED) is UNRESOLVED

    def test_pointer_plus_int_shifts_reference(self):
        assert Operators.eval_binop("+", HeapAddress("0x1", 0), 2) == HeapAddress("0x1", 2)
        assert Operators.eval_binop("-", ArrayElementRef("a", 3), 1) == ArrayElementRef("a", 2)

    def test_null_comparison(self):
        assert Operators.eval_binop("==", None, 0) is True
        assert Operators.eval_binop("!=", HeapAddress("0x1"), None) is True

    def test_type_mismatch_is_unresolved(self):
        assert Operators.eval_binop("-", "text", 1) is UNRESOLVED


class TestValueHelpers:
    def test_parse_number_variants(self):
        assert parse_number("42") == 42
        assert parse_number("0x1F") == 31
        assert parse_number("010") == 8
        assert parse_number("10u") == 10
        assert parse_number("2.5f") == 2.5

    def test_format_value(self):
        assert format_value(None) == constants.NULL_DISPLAY
        assert format_value(True) == "1"
        assert format_value([1, 2]) == "{1, 2}"

    def test_truthy(self):
        assert truthy(0) is False
        assert truthy(VariableRef("x")) is True
        assert truthy(UNRESOLVED) is UNRESOLVED

    def test_shift_reference_rejects_non_pointers(self):
        assert shift_reference(VariableRef("x"), 1) is UNRESOLVED

    def test_scope_id_ignored_in_equality(self):
        assert VariableRef("x", 1) == VariableRef("x", 7)

    def test_unresolved_survives_deepcopy(self):
        assert copy.deepcopy({"v": UNRESOLVED})["v"] is UNRESOLVED

    def test_serialize_reference(self):
        assert serialize_value(HeapAddress("0x10", 1)) == {"ref": "heap", "token": "0x10", "offset": 1}


class TestAddressAllocator:
    def test_stack_addresses_are_sequential(self):
        allocator = AddressAllocator.for_stack()
        first, second = allocator.allocate(), allocator.allocate()
        assert int(second, 16) - int(first, 16) == constants.STACK_ADDRESS_STRIDE
        assert first == f"0x{constants.STACK_ADDRESS_BASE:08X}"


class TestMemory:
    def test_lookup_is_per_activation(self):
        memory = Memory()
        memory.push_scope("main")
        memory.bind("x", 1, "int", declare=True)
        memory.push_scope("f")
        assert memory.lookup("x") is None

    def test_global_scope_is_visible(self):
        memory = Memory()
        memory.push_scope(constants.GLOBAL_FRAME_NAME)
        memory.bind("g", 3, "int", declare=True)
        memory.push_scope("main")
        assert memory.lookup("g").value == 3

    def test_rebind_keeps_address(self):
        memory = Memory()
        memory.push_scope("main")
        allocator = AddressAllocator.for_stack()
        first = memory.bind("x", 1, "int", declare=True, allocator=allocator)
        second = memory.bind("x", 2, allocator=allocator)
        assert first is second
        assert second.address == first.address
        assert allocator.issued == 1

    def test_store_through_reference_into_caller_scope(self):
        memory = Memory()
        main = memory.push_scope("main")
        memory.bind("v", 1, "int", declare=True)
        memory.push_scope("f")
        changed = memory.store(VariableRef("v", main.id), 5)
        assert changed.value == 5
        assert main.bindings["v"].value == 5

    def test_heap_array_offsets(self):
        memory = Memory()
        memory.allocate("0x1", "int[3]", [0, 0, 0])
        memory.store(HeapAddress("0x1", 2), 9)
        assert memory.load(HeapAddress("0x1", 2)) == 9
        assert memory.load(HeapAddress("0x1", 3)) is UNRESOLVED

    def test_clone_is_independent(self):
        memory = Memory()
        memory.push_scope("main")
        memory.bind("a", [1, 2], "int[2]", declare=True)
        clone = memory.clone()
        clone.lookup("a").value[0] = 99
        assert memory.lookup("a").value == [1, 2]
