"""Tests for structural expression evaluation and output templates."""

from __future__ import annotations

from memtrace.effects import RecordingSink, VisualizationState
from memtrace.evaluate import Evaluator, type_size
from memtrace.expr import (
    AddressOf,
    BinaryOp,
    CallResult,
    Conditional,
    Deref,
    FieldAccess,
    Index,
    Literal,
    Name,
    Opaque,
    SizeOf,
)
from memtrace.memory import Memory
from memtrace.node_kinds import ExprKind, StmtKind
from memtrace.output import TemplateBuilder, resolve_template
from memtrace.values import UNRESOLVED, ArrayElementRef, HeapAddress, VariableRef


def _memory() -> Memory:
    memory = Memory()
    memory.push_scope("main")
    memory.bind("x", 5, "int", declare=True)
    memory.bind("arr", [1, 2, 3], "int[3]", declare=True)
    memory.bind("p", VariableRef("x", 0), "int*", declare=True)
    memory.bind("pp", VariableRef("p", 0), "int**", declare=True)
    memory.allocate("0x10", "Node", {"value": 7, "next": None})
    memory.bind("node", HeapAddress("0x10"), "Node*", declare=True)
    return memory


class TestEvaluator:
    def test_name_and_arithmetic(self):
        evaluator = Evaluator(_memory())
        assert evaluator.value(BinaryOp("*", Name("x"), Literal(3))) == 15

    def test_unbound_name_is_unresolved(self):
        assert Evaluator(_memory()).value(Name("missing")) is UNRESOLVED

    def test_array_name_decays_to_first_element(self):
        assert Evaluator(_memory()).value(Name("arr")) == ArrayElementRef("arr", 0)

    def test_index_and_pointer_index(self):
        evaluator = Evaluator(_memory())
        assert evaluator.value(Index(Name("arr"), Literal(2))) == 3
        assert evaluator.value(Index(Name("arr"), Literal(5))) is UNRESOLVED

    def test_dereference_chain(self):
        evaluator = Evaluator(_memory())
        assert evaluator.value(Deref(Name("p"))) == 5
        assert evaluator.value(Deref(Deref(Name("pp")))) == 5

    def test_address_of(self):
        assert Evaluator(_memory()).value(AddressOf(Name("x"))) == VariableRef("x")

    def test_arrow_field(self):
        evaluator = Evaluator(_memory())
        assert evaluator.value(FieldAccess(Name("node"), "value", arrow=True)) == 7

    def test_short_circuit(self):
        evaluator = Evaluator(_memory())
        assert evaluator.value(BinaryOp("&&", Literal(0), Name("missing"))) is False
        assert evaluator.value(BinaryOp("||", Literal(1), Name("missing"))) is True
        assert evaluator.value(BinaryOp("&&", Literal(1), Name("missing"))) is UNRESOLVED

    def test_conditional(self):
        expr = Conditional(BinaryOp(">", Name("x"), Literal(3)), Literal("big"), Literal("small"))
        assert Evaluator(_memory()).value(expr) == "big"

    def test_sizeof(self):
        evaluator = Evaluator(_memory())
        assert evaluator.value(SizeOf(operand=Name("arr"))) == 12
        assert evaluator.value(SizeOf(type_name="arr")) == 12
        assert evaluator.value(SizeOf(type_name="double")) == 8
        assert type_size("char*") == 8

    def test_call_result_prefers_runtime_slot(self):
        memory = _memory()
        expr = CallResult("f", 0, fallback=1)
        assert Evaluator(memory).value(expr) == 1
        memory.results[0] = 42
        assert Evaluator(memory).value(expr) == 42

    def test_opaque_evaluates_to_text(self):
        assert Evaluator(_memory()).value(Opaque("rand()")) == "rand()"


class TestTemplates:
    def test_placeholder_forms(self):
        builder = TemplateBuilder()
        builder.operand(Literal("v: "))
        builder.operand(Name("x"))
        builder.operand(Deref(Name("p")))
        builder.operand(Deref(Deref(Name("pp"))))
        builder.operand(BinaryOp("+", Name("x"), Literal(1)))
        builder.operand(Name("std::endl"))
        assert builder.template == "v: {x}{*p}{**pp}{$0}"
        assert len(builder.expressions) == 1

    def test_resolution(self):
        builder = TemplateBuilder()
        builder.printf("%d %d %d %d%%", [Name("x"), Deref(Name("p")), Deref(Deref(Name("pp"))), BinaryOp("-", Name("x"), Literal(1))])
        text = resolve_template(builder.template, builder.expressions, Evaluator(_memory()))
        assert text == "5 5 5 4%"

    def test_literal_braces_are_escaped(self):
        builder = TemplateBuilder()
        builder.operand(Literal("{x} "))
        builder.operand(Name("x"))
        builder.printf(" {*p}=%d", [Deref(Name("p"))])
        assert builder.template == "{{x}} {x} {{*p}}={*p}"
        text = resolve_template(builder.template, builder.expressions, Evaluator(_memory()))
        assert text == "{x} 5 {*p}=5"

    def test_substituted_values_are_not_rescanned(self):
        memory = _memory()
        memory.bind("s", "{x}", "string", declare=True)
        assert resolve_template("{s}", [], Evaluator(memory)) == "{x}"

    def test_unresolved_placeholder_is_kept(self):
        text = resolve_template("{missing} and {*missing}", [], Evaluator(_memory()))
        assert text == "{missing} and {*missing}"


class TestNodeKinds:
    def test_statement_classification(self):
        assert StmtKind.classify("if_statement") == StmtKind.IF
        assert StmtKind.classify("comment") == StmtKind.IGNORED
        assert StmtKind.classify("try_statement") == StmtKind.UNSUPPORTED

    def test_expression_classification(self):
        assert ExprKind.classify("pointer_expression") == ExprKind.POINTER
        assert ExprKind.classify("lambda_expression") == ExprKind.UNSUPPORTED


class TestSinks:
    def test_recording_sink_filters_by_method(self):
        sink = RecordingSink()
        sink.push_frame("main")
        sink.log_output("hi")
        assert sink.named("log_output") == [("log_output", "hi")]

    def test_visualization_routes_write_to_owning_frame(self):
        state = VisualizationState()
        state.push_frame("main")
        state.set_variable("v", 1, "int", "0x7FFE1A00")
        state.push_frame("f")
        state.set_variable("v", 2, "int", "0x7FFE1A04")
        state.set_variable("v", 9, "int", "0x7FFE1A00")
        assert state.stack[0]["variables"]["v"]["value"] == 9
        assert state.stack[1]["variables"]["v"]["value"] == 2
        assert state.variable("v") == 2
