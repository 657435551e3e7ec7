"""Tests for the static unroller — C++ syntax tree -> branch-tagged steps."""

from __future__ import annotations

import tree_sitter_language_pack

from memtrace import constants
from memtrace.expr import AddressOf, BinaryOp, Name
from memtrace.nodes import TreeSitterNode
from memtrace.run_types import UnrollPolicy
from memtrace.steps import ExecutionStep, StepKind
from memtrace.unroller import Unroller, unroll
from memtrace.values import HeapAddress, PendingArithmetic


def _unroll(source: str, policy: UnrollPolicy | None = None) -> list[ExecutionStep]:
    parser = tree_sitter_language_pack.get_parser("cpp")
    source_bytes = source.encode("utf-8")
    tree = parser.parse(source_bytes)
    return unroll(TreeSitterNode.root(tree, source_bytes), policy)


def _kinds(steps: list[ExecutionStep]) -> list[StepKind]:
    return [s.kind for s in steps]


def _find_all(steps: list[ExecutionStep], kind: StepKind) -> list[ExecutionStep]:
    return [s for s in steps if s.kind == kind]


def _binds(steps: list[ExecutionStep], name: str) -> list[ExecutionStep]:
    return [
        s for s in steps if s.kind == StepKind.BIND_VARIABLE and s.payload["name"] == name
    ]


class TestFrames:
    def test_main_is_wrapped_in_frame_push_and_pop(self):
        steps = _unroll("int main() { int x = 1; return 0; }")
        assert steps[0].kind == StepKind.FRAME_PUSH
        assert steps[0].payload["function"] == "main"
        assert steps[-1].kind == StepKind.FRAME_POP

    def test_declaration_emits_bind_with_type_and_value(self):
        steps = _unroll("int main() { int x = 10; return 0; }")
        (bind,) = _binds(steps, "x")
        assert bind.payload["type"] == "int"
        assert bind.payload["value"] == 10
        assert bind.payload["declare"] is True
        assert bind.source_line == 1

    def test_uninitialized_scalar_defaults_to_zero_and_pointer_to_null(self):
        steps = _unroll("int main() { int x; int* p; return 0; }")
        assert _binds(steps, "x")[0].payload["value"] == 0
        assert _binds(steps, "p")[0].payload["value"] is None
        assert _binds(steps, "p")[0].payload["type"] == "int*"

    def test_globals_live_in_a_global_frame(self):
        steps = _unroll("int counter = 5;\nint main() { return counter; }")
        assert steps[0].payload["function"] == constants.GLOBAL_FRAME_NAME
        assert _binds(steps, "counter")[0].payload["value"] == 5
        assert steps[-1].payload["function"] == constants.GLOBAL_FRAME_NAME

    def test_prototypes_alone_do_not_open_a_global_frame(self):
        steps = _unroll("int add(int, int);\nint* find(int);\nint main() { return 0; }")
        pushes = [s.payload["function"] for s in _find_all(steps, StepKind.FRAME_PUSH)]
        assert pushes == ["main"]

    def test_no_main_unrolls_top_level_statements(self):
        steps = _unroll("int x = 1;\nint y = x + 1;\n")
        assert _binds(steps, "y")[0].payload["value"] == 2
        assert steps[0].kind == StepKind.FRAME_PUSH
        assert steps[-1].kind == StepKind.FRAME_POP


class TestPointers:
    def test_address_of_binds_structural_expression(self):
        steps = _unroll("int main() { int x = 1; int* p = &x; return 0; }")
        (bind,) = _binds(steps, "p")
        assert bind.payload["expr"] == AddressOf(Name("x"))
        assert bind.payload["type"] == "int*"

    def test_deref_assignment_emits_deref_store(self):
        steps = _unroll("int main() { int x = 1; int* p = &x; *p = 5; return 0; }")
        (store,) = _find_all(steps, StepKind.DEREF_STORE)
        assert store.payload["pointer"] == Name("p")
        assert store.payload["value"] == 5

    def test_pointer_increment_emits_pointer_step(self):
        steps = _unroll("int main() { int a[3] = {1, 2, 3}; int* p = a; p++; return 0; }")
        (step,) = _find_all(steps, StepKind.POINTER_STEP)
        assert step.payload == {"name": "p", "delta": 1}

    def test_pointer_compound_assignment_emits_pointer_step(self):
        steps = _unroll("int main() { int a[3] = {1, 2, 3}; int* p = a; p += 2; return 0; }")
        (step,) = _find_all(steps, StepKind.POINTER_STEP)
        assert step.payload["delta"] == 2

    def test_pointer_plus_literal_is_pending_arithmetic(self):
        steps = _unroll("int main() { int a[3] = {1, 2, 3}; int* p = a; int* q = p + 1; return 0; }")
        (bind,) = _binds(steps, "q")
        assert bind.payload["value"] == PendingArithmetic("p", "+", 1)


class TestHeap:
    def test_new_scalar_allocates_before_binding(self):
        steps = _unroll("int main() { int* p = new int(42); return 0; }")
        alloc = _find_all(steps, StepKind.ALLOCATE_HEAP)[0]
        bind = _binds(steps, "p")[0]
        assert steps.index(alloc) < steps.index(bind)
        assert alloc.payload["value"] == 42
        assert alloc.payload["type"] == "int"
        assert bind.payload["value"] == HeapAddress(alloc.payload["address"])

    def test_heap_addresses_are_distinct_and_deterministic(self):
        source = "int main() { int* a = new int(1); int* b = new int(2); return 0; }"
        first = [s.payload["address"] for s in _find_all(_unroll(source), StepKind.ALLOCATE_HEAP)]
        second = [s.payload["address"] for s in _find_all(_unroll(source), StepKind.ALLOCATE_HEAP)]
        assert first == second
        assert len(set(first)) == 2

    def test_new_array_uses_declared_length(self):
        steps = _unroll("int main() { int* p = new int[4]; return 0; }")
        (alloc,) = _find_all(steps, StepKind.ALLOCATE_HEAP)
        assert alloc.payload["value"] == [0, 0, 0, 0]

    def test_new_struct_fills_fields_positionally(self):
        source = """\
struct Node { int value; Node* next; };
int main() {
    Node* n = new Node{7, nullptr};
    n->value = 8;
    return 0;
}
"""
        steps = _unroll(source)
        (alloc,) = _find_all(steps, StepKind.ALLOCATE_HEAP)
        assert alloc.payload["value"] == {"value": 7, "next": None}
        (field_store,) = _find_all(steps, StepKind.SET_HEAP_FIELD)
        assert field_store.payload["field"] == "value"
        assert field_store.payload["value"] == 8

    def test_malloc_allocates_one_cell_per_element(self):
        steps = _unroll("int main() { int* m = (int*)malloc(3 * sizeof(int)); return 0; }")
        (alloc,) = _find_all(steps, StepKind.ALLOCATE_HEAP)
        assert alloc.payload["value"] == [0, 0, 0]

    def test_heap_blocks_stop_at_element_ceiling(self):
        source = "int main() { int* a = new int[5000000]; int* m = (int*)malloc(400000000); return 0; }"
        steps = _unroll(source, UnrollPolicy(max_array_elements=8))
        new_block, malloc_block = _find_all(steps, StepKind.ALLOCATE_HEAP)
        assert new_block.payload["value"] == [0] * 8
        assert malloc_block.payload["value"] == [0] * 8


class TestArrays:
    def test_initializer_list_binds_elements(self):
        steps = _unroll("int main() { int a[3] = {1, 2, 3}; return 0; }")
        (bind,) = _binds(steps, "a")
        assert bind.payload["value"] == [1, 2, 3]
        assert bind.payload["type"] == "int[3]"

    def test_sized_array_without_initializer_is_zero_filled(self):
        steps = _unroll("int main() { int a[4]; return 0; }")
        assert _binds(steps, "a")[0].payload["value"] == [0, 0, 0, 0]

    def test_subscript_assignment_emits_array_store(self):
        steps = _unroll("int main() { int a[3] = {1, 2, 3}; a[1] = 7; return 0; }")
        (store,) = _find_all(steps, StepKind.ARRAY_STORE)
        assert store.payload["index_value"] == 1
        assert store.payload["value"] == 7

    def test_sizeof_array_divided_by_element(self):
        steps = _unroll("int main() { int a[4]; int n = sizeof(a) / sizeof(a[0]); return 0; }")
        assert _binds(steps, "n")[0].payload["value"] == 4


    def test_oversized_array_stops_at_element_ceiling(self):
        steps = _unroll("int main() { int big[20000000]; big[0] = 1; return 0; }", UnrollPolicy(max_array_elements=8))
        (bind,) = _binds(steps, "big")
        assert bind.payload["value"] == [0] * 8
        (store,) = _find_all(steps, StepKind.ARRAY_STORE)
        assert store.payload["value"] == 1

class TestBranches:
    def test_if_unrolls_both_branches_with_tags(self):
        source = "int main() { int x = 7; int y = 0; if (x > 5) { y = 1; } else { y = 2; } return 0; }"
        steps = _unroll(source)
        (branch,) = _find_all(steps, StepKind.BRANCH_IF)
        owner = steps.index(branch)
        tagged = {s.payload["value"]: s.branch_tags for s in _binds(steps, "y")[1:]}
        assert [(t.owner, t.label) for t in tagged[1]] == [(owner, constants.BRANCH_THEN)]
        assert [(t.owner, t.label) for t in tagged[2]] == [(owner, constants.BRANCH_ELSE)]
        assert branch.payload["predicted"] == constants.BRANCH_THEN

    def test_if_condition_is_structural(self):
        steps = _unroll("int main() { int x = 1; if (x > 5) { x = 0; } return 0; }")
        (branch,) = _find_all(steps, StepKind.BRANCH_IF)
        assert isinstance(branch.payload["condition"], BinaryOp)
        assert branch.payload["text"] == "x > 5"

    def test_switch_labels_each_case(self):
        source = """\
int main() {
    int k = 2;
    int r = 0;
    switch (k) {
        case 1: r = 10; break;
        case 2: r = 20; break;
        default: r = 30;
    }
    return 0;
}
"""
        steps = _unroll(source)
        (switch,) = _find_all(steps, StepKind.BRANCH_SWITCH)
        assert switch.payload["predicted"] == "case-2"
        labels = {s.branch_tags[-1].label for s in _binds(steps, "r")[1:]}
        assert labels == {"case-1", "case-2", constants.CASE_DEFAULT}

    def test_statement_after_predicted_return_is_not_emitted(self):
        source = "int f(int n) { if (n < 10) { return 1; } return 2; }\nint main() { int r = f(3); return 0; }"
        steps = _unroll(source)
        returns = [s.payload["value"] for s in _find_all(steps, StepKind.RETURN) if s.payload["function"] == "f"]
        assert returns == [1]


class TestLoops:
    def test_for_loop_unrolls_each_iteration(self):
        source = "int main() { int sum = 0; for (int i = 0; i < 3; i++) { sum += i; } return 0; }"
        steps = _unroll(source)
        checks = _find_all(steps, StepKind.LOOP_CHECK)
        assert [c.payload["predicted"] for c in checks] == [
            constants.LOOP_ITERATE,
            constants.LOOP_ITERATE,
            constants.LOOP_ITERATE,
            constants.LOOP_EXIT,
        ]
        assert len(_find_all(steps, StepKind.LOOP_ENTER)) == 3
        assert len(_find_all(steps, StepKind.LOOP_EXIT)) == 3

    def test_iteration_steps_carry_their_check_tag(self):
        source = "int main() { int sum = 0; for (int i = 0; i < 2; i++) { sum += i; } return 0; }"
        steps = _unroll(source)
        first_check = steps.index(_find_all(steps, StepKind.LOOP_CHECK)[0])
        body_bind = _binds(steps, "sum")[1]
        assert (first_check, constants.LOOP_ITERATE) in [
            (t.owner, t.label) for t in body_bind.branch_tags
        ]

    def test_infinite_loop_stops_at_iteration_ceiling(self):
        policy = UnrollPolicy(max_loop_iterations=5)
        steps = _unroll("int main() { int x = 0; while (1) { x++; } return 0; }", policy)
        assert len(_find_all(steps, StepKind.LOOP_ENTER)) == 5
        assert _find_all(steps, StepKind.LOOP_CHECK)[-1].payload["predicted"] == constants.LOOP_EXIT
        assert steps[-1].kind == StepKind.FRAME_POP

    def test_do_while_enters_before_first_check(self):
        steps = _unroll("int main() { int x = 0; do { x++; } while (x < 2); return 0; }")
        loop_kinds = [
            k for k in _kinds(steps) if k in (StepKind.LOOP_ENTER, StepKind.LOOP_CHECK)
        ]
        assert loop_kinds[0] == StepKind.LOOP_ENTER

    def test_break_ends_unrolling(self):
        source = "int main() { int x = 0; while (1) { x++; if (x == 2) { break; } } return 0; }"
        steps = _unroll(source)
        assert len(_find_all(steps, StepKind.LOOP_ENTER)) == 2


class TestCalls:
    def test_call_sequence(self):
        source = "int add(int a, int b) { return a + b; }\nint main() { int r = add(2, 3); return 0; }"
        steps = _unroll(source)
        call_kinds = [
            k
            for k in _kinds(steps)
            if k
            in (
                StepKind.CALL_ENTER,
                StepKind.FRAME_PUSH,
                StepKind.CALL_PARAM_BIND,
                StepKind.RETURN,
                StepKind.FRAME_POP,
                StepKind.CALL_RETURN,
            )
        ]
        assert call_kinds[:7] == [
            StepKind.FRAME_PUSH,
            StepKind.CALL_ENTER,
            StepKind.FRAME_PUSH,
            StepKind.CALL_PARAM_BIND,
            StepKind.CALL_PARAM_BIND,
            StepKind.RETURN,
            StepKind.FRAME_POP,
        ]
        (ret,) = _find_all(steps, StepKind.CALL_RETURN)
        assert ret.payload["target"] == "r"
        assert ret.payload["value"] == 5

    def test_unnamed_parameter_keeps_later_positions(self):
        source = "int f(int, int b) { return b; }\nint main() { int r = f(1, 2); return 0; }"
        steps = _unroll(source)
        (param,) = _find_all(steps, StepKind.CALL_PARAM_BIND)
        assert param.payload["name"] == "b"
        assert param.payload["position"] == 1
        assert param.payload["value"] == 2
        (ret,) = _find_all(steps, StepKind.CALL_RETURN)
        assert ret.payload["value"] == 2

    def test_recursion_predicts_result(self):
        source = """\
int factorial(int n) {
    if (n <= 1) {
        return 1;
    }
    return n * factorial(n - 1);
}
int main() {
    int r = factorial(4);
    return 0;
}
"""
        steps = _unroll(source)
        outer = [s for s in _find_all(steps, StepKind.CALL_RETURN) if s.payload["target"] == "r"]
        assert outer[0].payload["value"] == 24

    def test_unbounded_recursion_stops_at_depth_ceiling(self):
        policy = UnrollPolicy(max_call_depth=5)
        steps = _unroll("int f(int n) { return f(n + 1); }\nint main() { f(0); return 0; }", policy)
        pushes = [s for s in _find_all(steps, StepKind.FRAME_PUSH) if s.payload["function"] == "f"]
        assert 0 < len(pushes) < policy.max_call_depth

    def test_step_ceiling_truncates(self):
        parser = tree_sitter_language_pack.get_parser("cpp")
        source = b"int main() { int x = 0; while (1) { x++; } return 0; }"
        root = TreeSitterNode.root(parser.parse(source), source)
        unroller = Unroller(UnrollPolicy(max_steps=10))
        steps = unroller.unroll(root)
        assert len(steps) == 10
        assert unroller.truncated


class TestOutput:
    def test_cout_builds_template(self):
        source = 'int main() { int x = 5; int* p = &x; std::cout << "x = " << x << ", p = " << *p << std::endl; return 0; }'
        (out,) = _find_all(_unroll(source), StepKind.LOG_OUTPUT)
        assert out.payload["template"] == "x = {x}, p = {*p}"

    def test_printf_expands_format(self):
        source = 'int main() { int x = 5; printf("%d+%d\\n", x, 1); return 0; }'
        (out,) = _find_all(_unroll(source), StepKind.LOG_OUTPUT)
        assert out.payload["template"] == "{x}+1"

    def test_complex_operand_gets_slot(self):
        source = "int main() { int x = 5; std::cout << x * 2 << std::endl; return 0; }"
        (out,) = _find_all(_unroll(source), StepKind.LOG_OUTPUT)
        assert out.payload["template"] == "{$0}"
        assert len(out.payload["expressions"]) == 1


class TestDeterminism:
    def test_same_source_yields_identical_steps(self):
        source = """\
int fib(int n) { if (n < 2) { return n; } return fib(n - 1) + fib(n - 2); }
int main() { int* p = new int(3); int r = fib(*p); return 0; }
"""
        first = [s.to_dict() for s in _unroll(source)]
        second = [s.to_dict() for s in _unroll(source)]
        assert first == second
