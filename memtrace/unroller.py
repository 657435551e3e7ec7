"""Static unroller — flattens a syntax tree into a bounded, branch-tagged step list.

Every branch of every decision point is unrolled; the steps of each branch
carry a ``BranchTag`` naming the decision step that owns them, so the
executor can suppress the branches the program does not take at runtime.
A speculative ``Memory`` (the analysis state) runs alongside to predict
branch directions and loop trip counts; it decides only which branch's
effects flow into the statements that follow, never which steps exist.
"""

from __future__ import annotations

import copy
import logging
from enum import Enum
from typing import Any, Callable

from . import constants
from .evaluate import Evaluator
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
from .memory import AddressAllocator, Memory
from .node_kinds import ExprKind, StmtKind
from .nodes import SyntaxNode
from .output import TemplateBuilder
from .run_types import UnrollPolicy
from .steps import BranchTag, ExecutionStep, StepKind
from .values import (
    UNRESOLVED,
    HeapAddress,
    PendingArithmetic,
    is_reference,
    format_value,
    parse_number,
    shift_reference,
)

logger = logging.getLogger(__name__)

_DECLARATOR_KINDS: frozenset[str] = frozenset(
    {
        "init_declarator",
        "identifier",
        "pointer_declarator",
        "array_declarator",
        "reference_declarator",
        "parenthesized_declarator",
    }
)

_FIELD_DECLARATOR_KINDS: frozenset[str] = frozenset(
    {"field_identifier", "pointer_declarator", "array_declarator", "reference_declarator"}
)

_STRUCT_KINDS: frozenset[str] = frozenset({"struct_specifier", "class_specifier"})

_STRING_TYPES: frozenset[str] = frozenset({"string", "std::string"})

_ESCAPES: dict[str, str] = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "0": "\0",
    "\\": "\\",
    "'": "'",
    '"': '"',
}


class _Flow(Enum):
    """Abrupt completion raised by the analysis."""

    BREAK = "break"
    CONTINUE = "continue"
    RETURN = "return"


# ── helpers ──────────────────────────────────────────────────────


def _unescape(body: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\" and i + 1 < len(body):
            out.append(_ESCAPES.get(body[i + 1], body[i + 1]))
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _quoted_value(text: str, quote: str) -> str:
    start = text.find(quote)
    end = text.rfind(quote)
    if start == -1 or end <= start:
        return text
    return _unescape(text[start + 1 : end])


def _operator(node: SyntaxNode) -> str:
    op = node.child_by_field("operator")
    return op.text if op is not None else ""


def _unwrap(node: SyntaxNode | None) -> SyntaxNode | None:
    """Strip parentheses and condition clauses down to the inner expression."""
    while node is not None and node.kind in ("parenthesized_expression", "condition_clause"):
        inner = node.child_by_field("value") or node.child_at(node.named_child_count - 1)
        if inner is None:
            break
        node = inner
    return node


def _condition_text(node: SyntaxNode | None) -> str:
    inner = _unwrap(node)
    return inner.text if inner is not None else ""


def _known(value: Any) -> Any:
    return None if value is UNRESOLVED else value


def _bare_type(type_name: str) -> str:
    words = [w for w in type_name.replace("*", " ").replace("&", " ").split()]
    words = [w for w in words if w not in ("const", "struct", "class", "static", "volatile")]
    return " ".join(words)


def _declarator(
    node: SyntaxNode | None, base_type: str
) -> tuple[str, str, bool, SyntaxNode | None]:
    """Name, full type, array-ness and size node of a (possibly nested) declarator."""
    suffix = ""
    is_array = False
    size: SyntaxNode | None = None
    while node is not None:
        kind = node.kind
        if kind in ("identifier", "field_identifier"):
            type_name = f"{base_type}{suffix}"
            if is_array:
                type_name = f"{type_name}[{size.text if size is not None else ''}]"
            return node.text, type_name, is_array, size
        if kind == "pointer_declarator":
            suffix += "*"
            node = node.child_by_field("declarator")
        elif kind == "reference_declarator":
            suffix += "&"
            node = node.child_at(0)
        elif kind == "array_declarator":
            is_array = True
            size = node.child_by_field("size")
            node = node.child_by_field("declarator")
        elif kind in ("init_declarator", "parenthesized_declarator"):
            node = node.child_by_field("declarator") or node.child_at(0)
        else:
            return "", base_type, False, None
    return "", base_type, False, None


def _function_declarator(node: SyntaxNode | None) -> SyntaxNode | None:
    while node is not None and node.kind != "function_declarator":
        node = node.child_by_field("declarator") or node.child_at(0)
    return node


def _declares_variable(node: SyntaxNode) -> bool:
    """True for a declaration that binds at least one variable, not only prototypes."""
    if node.kind != StmtKind.DECLARATION:
        return False
    return any(
        _declarator(child, "")[0]
        for child in node.named_children()
        if child.kind in _DECLARATOR_KINDS
    )


def _subscript_index(node: SyntaxNode) -> SyntaxNode | None:
    index = node.child_by_field("index")
    if index is not None:
        return index
    indices = node.child_by_field("indices")
    return indices.child_at(0) if indices is not None else None


def _arguments(node: SyntaxNode | None) -> list[SyntaxNode]:
    if node is None:
        return []
    return [c for c in node.named_children() if c.kind != "comment"]


# ── unroller ─────────────────────────────────────────────────────


class Unroller:
    """Walks a syntax tree and emits the ordered ``ExecutionStep`` list."""

    def __init__(self, policy: UnrollPolicy | None = None):
        self.policy = policy or UnrollPolicy()
        self._reset()

    def _reset(self) -> None:
        self.steps: list[ExecutionStep] = []
        self._tags: list[BranchTag] = []
        self._state = Memory()
        self._heap = AddressAllocator.for_heap()
        self._functions: dict[str, SyntaxNode] = {}
        self._params: dict[str, list[tuple[str, str]]] = {}
        self._structs: dict[str, list[tuple[str, str]]] = {}
        self._flow: _Flow | None = None
        self._return_value: Any = None
        self._call_depth = 0
        self._dead = 0
        self._slot_counter = 0
        self._loop_counter = 0
        self.truncated = False

    @property
    def function_count(self) -> int:
        return len(self._functions)

    @property
    def _eval(self) -> Evaluator:
        return Evaluator(self._state)

    # ── entry point ──────────────────────────────────────────────

    def unroll(self, root: SyntaxNode) -> list[ExecutionStep]:
        self._reset()
        top_level = list(root.named_children())
        for node in top_level:
            self._collect(node)

        main = self._functions.get(constants.ENTRY_FUNCTION)
        if main is None:
            logger.warning(
                "No %s() found; unrolling top-level statements",
                constants.ENTRY_FUNCTION,
            )
            self._enter_global(root)
            for node in top_level:
                if node.kind != StmtKind.FUNCTION_DEFINITION:
                    self._stmt(node)
            self._leave_global(root)
        else:
            globals_ = [n for n in top_level if _declares_variable(n)]
            if globals_:
                self._enter_global(root)
                for node in globals_:
                    self._stmt(node)
            self._invoke(constants.ENTRY_FUNCTION, [])
            if globals_:
                self._leave_global(root)

        logger.info(
            "Unrolled %d steps from %d functions%s",
            len(self.steps),
            len(self._functions),
            " (truncated)" if self.truncated else "",
        )
        return list(self.steps)

    def _enter_global(self, root: SyntaxNode) -> None:
        self._emit(StepKind.FRAME_PUSH, root.start_line, function=constants.GLOBAL_FRAME_NAME)
        self._state.push_scope(constants.GLOBAL_FRAME_NAME)

    def _leave_global(self, root: SyntaxNode) -> None:
        self._state.pop_scope()
        self._emit(StepKind.FRAME_POP, root.end_line, function=constants.GLOBAL_FRAME_NAME)

    def _collect(self, node: SyntaxNode) -> None:
        """Record top-level function bodies and struct layouts."""
        if node.kind == StmtKind.FUNCTION_DEFINITION:
            decl = _function_declarator(node.child_by_field("declarator"))
            name_node = decl.child_by_field("declarator") if decl is not None else None
            if name_node is None:
                logger.debug("Function without a name at line %d", node.start_line)
                return
            self._functions[name_node.text] = node
            self._params[name_node.text] = self._parameters(decl)
            return
        if node.kind in _STRUCT_KINDS:
            self._collect_struct(node)
            return
        type_node = node.child_by_field("type")
        if type_node is not None and type_node.kind in _STRUCT_KINDS:
            self._collect_struct(type_node)

    def _parameters(self, decl: SyntaxNode) -> list[tuple[str, str]]:
        params: list[tuple[str, str]] = []
        for param in _arguments(decl.child_by_field("parameters")):
            type_node = param.child_by_field("type")
            base = type_node.text if type_node is not None else ""
            name, type_name, is_array, _ = _declarator(param.child_by_field("declarator"), base)
            params.append((name, f"{base}*" if is_array else type_name))
        return params

    def _collect_struct(self, node: SyntaxNode) -> None:
        name_node = node.child_by_field("name")
        body = node.child_by_field("body")
        if name_node is None or body is None:
            return
        fields: list[tuple[str, str]] = []
        for decl in body.named_children():
            if decl.kind != "field_declaration":
                continue
            type_node = decl.child_by_field("type")
            base = type_node.text if type_node is not None else ""
            for child in decl.named_children():
                if child.kind not in _FIELD_DECLARATOR_KINDS:
                    continue
                name, type_name, _, _ = _declarator(child, base)
                if name:
                    fields.append((name, type_name))
        self._structs[name_node.text] = fields
        logger.debug("Struct %s: %d fields", name_node.text, len(fields))

    # ── emission ─────────────────────────────────────────────────

    def _emit(self, kind: StepKind, line: int, **payload: Any) -> int:
        """Append a step tagged with the current branch context; -1 past the ceiling."""
        if len(self.steps) >= self.policy.max_steps:
            if not self.truncated:
                logger.debug("Step ceiling %d reached; trace truncated", self.policy.max_steps)
            self.truncated = True
            return -1
        step = ExecutionStep(
            kind=kind,
            source_line=line,
            payload=copy.deepcopy(payload),
            branch_tags=tuple(self._tags),
        )
        self.steps.append(step)
        return len(self.steps) - 1

    def _speculate(
        self,
        owner: int,
        label: str,
        nodes: list[SyntaxNode],
        base: Memory,
        live: bool,
    ) -> tuple[Memory, _Flow | None]:
        """Unroll one branch over a copy of ``base``; returns its end state."""
        saved_return = self._return_value
        self._state = base.clone()
        self._flow = None
        self._tags.append(BranchTag(owner=owner, label=label))
        if not live:
            self._dead += 1
        for node in nodes:
            self._stmt(node)
        if not live:
            self._dead -= 1
            self._return_value = saved_return
        self._tags.pop()
        return self._state, self._flow

    # ── statements ───────────────────────────────────────────────

    def _stmt(self, node: SyntaxNode | None) -> None:
        if node is None or self.truncated or self._flow is not None:
            return
        kind = StmtKind.classify(node.kind)
        handler = self._STMT_DISPATCH.get(kind)
        if handler is None:
            logger.debug(
                "Unsupported statement %s at line %d; recursing", node.kind, node.start_line
            )
            for child in node.named_children():
                self._stmt(child)
            return
        handler(self, node)

    def _ignore(self, node: SyntaxNode) -> None:
        pass

    def _nested_function(self, node: SyntaxNode) -> None:
        logger.debug("Nested function definition at line %d ignored", node.start_line)

    def _block(self, node: SyntaxNode) -> None:
        for child in node.named_children():
            self._stmt(child)
            if self._flow is not None or self.truncated:
                break

    def _expression_statement(self, node: SyntaxNode) -> None:
        inner = node.child_at(0)
        if inner is not None:
            self._effect(inner)

    def _declaration(self, node: SyntaxNode) -> None:
        type_node = node.child_by_field("type")
        base_type = type_node.text if type_node is not None else ""
        for child in node.named_children():
            if child.kind not in _DECLARATOR_KINDS:
                continue
            value_node = child.child_by_field("value") if child.kind == "init_declarator" else None
            name, type_name, is_array, size_node = _declarator(child, base_type)
            if not name:
                continue
            self._declare(child, name, type_name, is_array, size_node, value_node)

    def _declare(
        self,
        node: SyntaxNode,
        name: str,
        type_name: str,
        is_array: bool,
        size_node: SyntaxNode | None,
        value_node: SyntaxNode | None,
    ) -> None:
        if value_node is not None and value_node.kind == "argument_list":
            value_node = value_node.child_at(0)
        is_list = value_node is not None and value_node.kind == ExprKind.INITIALIZER_LIST
        if is_list or (is_array and value_node is None):
            self._declare_aggregate(node, name, type_name, is_array, size_node, value_node)
            return
        if value_node is None:
            value = self._default_value(type_name)
            self._emit(
                StepKind.BIND_VARIABLE,
                node.start_line,
                name=name,
                type=type_name,
                value=value,
                expr=None,
                declare=True,
            )
            self._state.bind(name, value, type_name, declare=True)
            return
        if self._is_user_call(value_node):
            self._call_node(value_node, target=name, target_type=type_name, declare=True)
            return
        pending = self._pending_arithmetic(value_node) if type_name.endswith("*") else None
        expr = self._expr(value_node)
        if pending is not None:
            value = self._eval.resolve_pending(pending)
        else:
            value = self._eval.value(expr)
        self._emit(
            StepKind.BIND_VARIABLE,
            node.start_line,
            name=name,
            type=type_name,
            value=pending if pending is not None else _known(value),
            expr=expr,
            declare=True,
        )
        self._state.bind(name, copy.deepcopy(value), type_name, declare=True)

    def _declare_aggregate(
        self,
        node: SyntaxNode,
        name: str,
        type_name: str,
        is_array: bool,
        size_node: SyntaxNode | None,
        value_node: SyntaxNode | None,
    ) -> None:
        items = _arguments(value_node)
        struct_name = _bare_type(type_name)
        if not is_array and struct_name in self._structs:
            value = self._struct_value(struct_name)
            fields = {
                fname: self._expr(item)
                for (fname, _), item in zip(self._structs[struct_name], items)
            }
            for fname, item in fields.items():
                resolved = self._eval.value(item)
                if resolved is not UNRESOLVED:
                    value[fname] = resolved
            self._emit(
                StepKind.BIND_VARIABLE,
                node.start_line,
                name=name,
                type=type_name,
                value=value,
                expr=None,
                fields=fields,
                declare=True,
            )
            self._state.bind(name, copy.deepcopy(value), type_name, declare=True)
            return

        elements = tuple(self._expr(item) for item in items)
        size = self._eval.value(self._expr(size_node)) if size_node is not None else UNRESOLVED
        if not isinstance(size, int) or isinstance(size, bool) or size < 0:
            size = len(elements)
        size = self._capped(size, node)
        element_type = type_name.split("[", 1)[0]
        value = [self._default_value(element_type) for _ in range(size)]
        for i, element in enumerate(elements[:size]):
            resolved = self._eval.value(element)
            if resolved is not UNRESOLVED:
                value[i] = resolved
        if size_node is None and is_array:
            type_name = f"{element_type}[{size}]"
        self._emit(
            StepKind.BIND_VARIABLE,
            node.start_line,
            name=name,
            type=type_name,
            value=value,
            expr=None,
            elements=elements[:size],
            declare=True,
        )
        self._state.bind(name, copy.deepcopy(value), type_name, declare=True)

    def _capped(self, count: int, node: SyntaxNode) -> int:
        if count > self.policy.max_array_elements:
            logger.debug(
                "Element ceiling reached at line %d: %d of %d elements kept",
                node.start_line,
                self.policy.max_array_elements,
                count,
            )
            return self.policy.max_array_elements
        return count

    def _default_value(self, type_name: str) -> Any:
        if "*" in type_name:
            return None
        bare = _bare_type(type_name)
        if bare in self._structs:
            return self._struct_value(bare)
        if bare in _STRING_TYPES:
            return ""
        return 0

    def _struct_value(self, struct_name: str) -> dict[str, Any]:
        return {
            fname: self._default_value(ftype)
            for fname, ftype in self._structs.get(struct_name, [])
        }

    def _if(self, node: SyntaxNode) -> None:
        cond_node = node.child_by_field("condition")
        cond = self._expr(cond_node) if cond_node is not None else Literal(True)
        taken = self._eval.condition(cond) is True
        owner = self._emit(
            StepKind.BRANCH_IF,
            node.start_line,
            condition=cond,
            predicted=constants.BRANCH_THEN if taken else constants.BRANCH_ELSE,
            text=_condition_text(cond_node),
        )
        if owner < 0:
            return
        consequence = node.child_by_field("consequence")
        alternative = node.child_by_field("alternative")
        if alternative is not None and alternative.kind == "else_clause":
            alternative = alternative.child_by_field("body") or alternative.child_at(0)

        base = self._state
        then_outcome = self._speculate(
            owner, constants.BRANCH_THEN, [consequence] if consequence else [], base, taken
        )
        else_outcome = self._speculate(
            owner, constants.BRANCH_ELSE, [alternative] if alternative else [], base, not taken
        )
        self._state, self._flow = then_outcome if taken else else_outcome

    def _switch(self, node: SyntaxNode) -> None:
        cond_node = node.child_by_field("condition")
        body = node.child_by_field("body")
        discriminant = self._expr(cond_node)
        subject = self._eval.value(discriminant)

        cases: list[tuple[str, Expr | None, list[SyntaxNode]]] = []
        for case in body.named_children() if body is not None else []:
            if case.kind != "case_statement":
                continue
            value_node = case.child_by_field("value")
            stmts = [c for c in case.named_children() if c != value_node]
            if value_node is None:
                cases.append((constants.CASE_DEFAULT, None, stmts))
                continue
            value_expr = self._expr(value_node)
            value = self._eval.value(value_expr)
            shown = format_value(value) if value is not UNRESOLVED else value_node.text
            cases.append((f"{constants.CASE_LABEL_PREFIX}{shown}", value_expr, stmts))

        predicted = constants.CASE_DEFAULT
        if subject is not UNRESOLVED:
            predicted = next(
                (
                    label
                    for label, value_expr, _ in cases
                    if value_expr is not None and self._eval.value(value_expr) == subject
                ),
                constants.CASE_DEFAULT,
            )
        owner = self._emit(
            StepKind.BRANCH_SWITCH,
            node.start_line,
            discriminant=discriminant,
            cases={label: value_expr for label, value_expr, _ in cases if value_expr is not None},
            predicted=predicted,
            text=_condition_text(cond_node),
        )
        if owner < 0:
            return

        base = self._state
        chosen: tuple[Memory, _Flow | None] = (base, None)
        for label, _, stmts in cases:
            outcome = self._speculate(owner, label, stmts, base, label == predicted)
            if label == predicted:
                chosen = outcome
        self._state, flow = chosen
        self._flow = None if flow is _Flow.BREAK else flow

    def _while(self, node: SyntaxNode) -> None:
        self._loop(node, "while", node.child_by_field("condition"), node.child_by_field("body"))

    def _for(self, node: SyntaxNode) -> None:
        init = node.child_by_field("initializer")
        if init is not None:
            if StmtKind.classify(init.kind) == StmtKind.DECLARATION:
                self._stmt(init)
            else:
                self._effect(init)
        self._loop(
            node,
            "for",
            node.child_by_field("condition"),
            node.child_by_field("body"),
            update=node.child_by_field("update"),
        )

    def _do(self, node: SyntaxNode) -> None:
        self._loop(
            node,
            "do",
            node.child_by_field("condition"),
            node.child_by_field("body"),
            check_first=False,
        )

    def _loop(
        self,
        node: SyntaxNode,
        construct: str,
        cond_node: SyntaxNode | None,
        body: SyntaxNode | None,
        update: SyntaxNode | None = None,
        check_first: bool = True,
    ) -> None:
        """Eager unrolling; each check owns an ``iterate`` tag carried by the rest of the loop."""
        loop_id = self._loop_counter
        self._loop_counter += 1
        depth = len(self._tags)
        text = _condition_text(cond_node)
        iteration = 0
        while not self.truncated:
            if check_first or iteration > 0:
                cond = self._expr(cond_node) if cond_node is not None else None
                within = iteration < self.policy.max_loop_iterations
                proceed = within and (cond is None or self._eval.condition(cond) is True)
                check = self._emit(
                    StepKind.LOOP_CHECK,
                    node.start_line,
                    loop=loop_id,
                    construct=construct,
                    condition=cond,
                    predicted=constants.LOOP_ITERATE if proceed else constants.LOOP_EXIT,
                    iteration=iteration,
                    text=text,
                )
                if not within:
                    logger.debug(
                        "Loop at line %d hit the %d-iteration ceiling",
                        node.start_line,
                        self.policy.max_loop_iterations,
                    )
                if check < 0 or not proceed:
                    break
                self._tags.append(BranchTag(owner=check, label=constants.LOOP_ITERATE))

            self._emit(StepKind.LOOP_ENTER, node.start_line, loop=loop_id, iteration=iteration)
            self._stmt(body)
            flow = self._flow
            if flow in (_Flow.BREAK, _Flow.CONTINUE):
                self._flow = None
            if flow is None or flow is _Flow.CONTINUE:
                self._effect(update)
            self._emit(StepKind.LOOP_EXIT, node.end_line, loop=loop_id, iteration=iteration)
            if flow in (_Flow.BREAK, _Flow.RETURN):
                break
            iteration += 1
        del self._tags[depth:]

    def _return(self, node: SyntaxNode) -> None:
        value_node = node.child_at(0)
        expr = self._expr(value_node) if value_node is not None else None
        value = self._eval.value(expr) if expr is not None else None
        scope = self._state.current
        self._emit(
            StepKind.RETURN,
            node.start_line,
            function=scope.function_name if scope is not None else "",
            value=_known(value),
            expr=expr,
        )
        self._return_value = _known(value)
        self._flow = _Flow.RETURN

    def _break(self, node: SyntaxNode) -> None:
        self._flow = _Flow.BREAK

    def _continue(self, node: SyntaxNode) -> None:
        self._flow = _Flow.CONTINUE

    _STMT_DISPATCH: dict[StmtKind, Callable] = {
        StmtKind.TRANSLATION_UNIT: _block,
        StmtKind.FUNCTION_DEFINITION: _nested_function,
        StmtKind.DECLARATION: _declaration,
        StmtKind.EXPRESSION_STATEMENT: _expression_statement,
        StmtKind.IF: _if,
        StmtKind.SWITCH: _switch,
        StmtKind.WHILE: _while,
        StmtKind.FOR: _for,
        StmtKind.DO: _do,
        StmtKind.RETURN: _return,
        StmtKind.BREAK: _break,
        StmtKind.CONTINUE: _continue,
        StmtKind.COMPOUND: _block,
        StmtKind.IGNORED: _ignore,
    }

    # ── side effects ─────────────────────────────────────────────

    def _effect(self, node: SyntaxNode | None) -> None:
        """Unroll an expression evaluated for its side effects."""
        if node is None or self.truncated:
            return
        kind = ExprKind.classify(node.kind)
        if kind == ExprKind.ASSIGNMENT:
            self._assign(node)
        elif kind == ExprKind.UPDATE:
            self._update(node)
        elif kind == ExprKind.CALL:
            self._call_node(node)
        elif kind == ExprKind.BINARY and self._stream_operands(node) is not None:
            self._stream_output(node)
        elif kind == ExprKind.COMMA:
            self._effect(node.child_by_field("left"))
            self._effect(node.child_by_field("right"))
        elif kind == ExprKind.PARENTHESIZED:
            self._effect(node.child_at(0))
        else:
            self._expr(node)

    def _assign(self, node: SyntaxNode) -> None:
        left = _unwrap(node.child_by_field("left"))
        right = node.child_by_field("right")
        op = _operator(node) or "="
        if left is None or right is None:
            return
        if left.kind == ExprKind.IDENTIFIER:
            self._assign_variable(left, op, right, node)
            return
        if op == "=":
            value_expr = self._expr(right)
        else:
            value_expr = BinaryOp(op[:-1], self._expr(left), self._expr(right))
        self._store(left, value_expr, node)

    def _assign_variable(
        self, left: SyntaxNode, op: str, right: SyntaxNode, node: SyntaxNode
    ) -> None:
        name = left.text
        binding = self._state.lookup(name)
        declared = binding.declared_type if binding is not None else ""
        pointer = binding is not None and (
            declared.endswith("*") or is_reference(binding.value)
        )
        if op in ("+=", "-=") and pointer:
            delta = self._eval.value(self._expr(right))
            if isinstance(delta, int) and not isinstance(delta, bool):
                self._pointer_step(name, delta if op == "+=" else -delta, node)
                return
        if op == "=" and self._is_user_call(right):
            self._call_node(right, target=name, target_type=declared, declare=False)
            return
        pending = self._pending_arithmetic(right) if op == "=" and pointer else None
        if op == "=":
            expr = self._expr(right)
        else:
            expr = BinaryOp(op[:-1], Name(name), self._expr(right))
        if pending is not None:
            self._bind(name, declared, pending, expr, node)
        else:
            self._bind(name, declared, self._eval.value(expr), expr, node)

    def _bind(self, name: str, type_name: str, value: Any, expr: Expr, node: SyntaxNode) -> None:
        resolved = self._eval.resolve_pending(value)
        self._emit(
            StepKind.BIND_VARIABLE,
            node.start_line,
            name=name,
            type=type_name,
            value=value if isinstance(value, PendingArithmetic) else _known(value),
            expr=expr,
            declare=False,
        )
        self._state.bind(name, copy.deepcopy(resolved), type_name)

    def _store(self, target: SyntaxNode, value_expr: Expr, node: SyntaxNode) -> None:
        """Write ``value_expr`` through an lvalue that is not a bare name."""
        target = _unwrap(target)
        kind = ExprKind.classify(target.kind)
        value = self._eval.value(value_expr)

        if kind == ExprKind.IDENTIFIER:
            binding = self._state.lookup(target.text)
            declared = binding.declared_type if binding is not None else ""
            self._bind(target.text, declared, value, value_expr, node)
        elif kind == ExprKind.POINTER and _operator(target) == "*":
            pointer = self._expr(target.child_by_field("argument"))
            self._emit(
                StepKind.DEREF_STORE,
                node.start_line,
                pointer=pointer,
                value=_known(value),
                expr=value_expr,
            )
            ref = self._eval.value(pointer)
            if is_reference(ref):
                self._state.store(ref, copy.deepcopy(value))
        elif kind == ExprKind.SUBSCRIPT:
            array = self._expr(target.child_by_field("argument"))
            index = self._expr(_subscript_index(target))
            self._emit(
                StepKind.ARRAY_STORE,
                node.start_line,
                array=array,
                index=index,
                index_value=_known(self._eval.value(index)),
                value=_known(value),
                expr=value_expr,
            )
            ref = self._eval.reference(Index(array, index))
            if ref is not UNRESOLVED:
                self._state.store(ref, copy.deepcopy(value))
        elif kind == ExprKind.FIELD:
            base = self._expr(target.child_by_field("argument"))
            field_node = target.child_by_field("field")
            field_name = field_node.text if field_node is not None else ""
            if _operator(target) != "->":
                if not isinstance(base, Deref):
                    logger.debug(
                        "Member store on a stack object at line %d unsupported", node.start_line
                    )
                    return
                base = base.pointer
            self._emit(
                StepKind.SET_HEAP_FIELD,
                node.start_line,
                pointer=base,
                field=field_name,
                value=_known(value),
                expr=value_expr,
            )
            self._state.set_field(self._eval.value(base), field_name, copy.deepcopy(value))
        else:
            logger.debug("Unsupported store target %s at line %d", target.kind, node.start_line)

    def _update(self, node: SyntaxNode) -> None:
        argument = _unwrap(node.child_by_field("argument"))
        delta = 1 if _operator(node) == "++" else -1
        if argument is None:
            return
        if argument.kind == ExprKind.IDENTIFIER:
            self._pointer_step(argument.text, delta, node)
            return
        op = "+" if delta > 0 else "-"
        self._store(argument, BinaryOp(op, self._expr(argument), Literal(1)), node)

    def _pointer_step(self, name: str, delta: int, node: SyntaxNode) -> None:
        self._emit(StepKind.POINTER_STEP, node.start_line, name=name, delta=delta)
        binding = self._state.lookup(name)
        if binding is None:
            return
        shifted = shift_reference(binding.value, delta)
        if shifted is not UNRESOLVED:
            binding.value = shifted

    def _pending_arithmetic(self, node: SyntaxNode) -> PendingArithmetic | None:
        """``q + n`` / ``q - n`` over a pointer-valued ``q`` with a literal ``n``."""
        node = _unwrap(node)
        if node is None or node.kind != ExprKind.BINARY:
            return None
        op = _operator(node)
        left = node.child_by_field("left")
        right = node.child_by_field("right")
        if op not in ("+", "-") or left is None or right is None:
            return None
        if left.kind != ExprKind.IDENTIFIER or right.kind != ExprKind.NUMBER:
            return None
        binding = self._state.lookup(left.text)
        if binding is None:
            return None
        if not (binding.declared_type.endswith("*") or binding.is_array or is_reference(binding.value)):
            return None
        offset = parse_number(right.text)
        if not isinstance(offset, int):
            return None
        return PendingArithmetic(left.text, op, offset)

    # ── output ───────────────────────────────────────────────────

    def _stream_operands(self, node: SyntaxNode) -> list[SyntaxNode] | None:
        operands: list[SyntaxNode] = []
        while node is not None and node.kind == ExprKind.BINARY and _operator(node) == "<<":
            right = node.child_by_field("right")
            if right is not None:
                operands.append(right)
            node = node.child_by_field("left")
        if node is None or node.text not in constants.OUTPUT_STREAMS:
            return None
        return list(reversed(operands))

    def _stream_output(self, node: SyntaxNode) -> None:
        builder = TemplateBuilder()
        for operand in self._stream_operands(node) or []:
            builder.operand(self._expr(operand))
        self._emit_output(builder, node)

    def _print_call(self, name: str, args: list[SyntaxNode], node: SyntaxNode) -> None:
        builder = TemplateBuilder()
        if args:
            first = self._expr(args[0])
            if name == "printf" and isinstance(first, Literal) and isinstance(first.value, str):
                builder.printf(first.value, [self._expr(a) for a in args[1:]])
            else:
                builder.operand(first)
        self._emit_output(builder, node)

    def _emit_output(self, builder: TemplateBuilder, node: SyntaxNode) -> None:
        self._emit(
            StepKind.LOG_OUTPUT,
            node.start_line,
            template=builder.template,
            expressions=tuple(builder.expressions),
        )

    # ── calls ────────────────────────────────────────────────────

    def _is_user_call(self, node: SyntaxNode | None) -> bool:
        if node is None or node.kind != ExprKind.CALL:
            return False
        function = node.child_by_field("function")
        return function is not None and function.text in self._functions

    def _call_node(
        self,
        node: SyntaxNode,
        target: str = "",
        target_type: str = "",
        declare: bool = False,
    ) -> Expr:
        function = node.child_by_field("function")
        name = function.text if function is not None else ""
        args = _arguments(node.child_by_field("arguments"))
        if name in constants.PRINT_FUNCTIONS:
            self._print_call(name, args, node)
            return Literal(0)
        if name in constants.ALLOCATION_FUNCTIONS:
            return self._malloc(name, args, node)
        if name in constants.DEALLOCATION_FUNCTIONS:
            logger.debug("Deallocation at line %d not modelled", node.start_line)
            return Literal(None)
        if name not in self._functions:
            logger.debug("Call to unknown function %s at line %d", name, node.start_line)
            for arg in args:
                self._expr(arg)
            return Opaque(node.text, node.kind)
        return self._call(name, args, node, target, target_type, declare)

    def _call(
        self,
        name: str,
        args: list[SyntaxNode],
        node: SyntaxNode,
        target: str,
        target_type: str,
        declare: bool,
    ) -> Expr:
        if self._call_depth >= self.policy.max_call_depth:
            logger.debug("Call depth ceiling reached at %s() line %d", name, node.start_line)
            return Opaque(node.text, node.kind)
        if self._dead > self.policy.max_speculative_depth:
            logger.debug("Speculative call to %s() at line %d not expanded", name, node.start_line)
            return Opaque(node.text, node.kind)

        arg_exprs = tuple(self._expr(a) for a in args)
        arg_values = [self._eval.value(e) for e in arg_exprs]
        slot = self._slot_counter
        self._slot_counter += 1
        self._emit(
            StepKind.CALL_ENTER,
            node.start_line,
            function=name,
            arguments=[_known(v) for v in arg_values],
            argument_exprs=arg_exprs,
            slot=slot,
        )
        result = self._invoke(name, arg_values)
        self._state.results[slot] = result
        self._emit(
            StepKind.CALL_RETURN,
            node.start_line,
            function=name,
            target=target,
            target_type=target_type,
            declare=declare,
            slot=slot,
            value=result,
        )
        if target:
            self._state.bind(target, copy.deepcopy(result), target_type, declare=declare)
        return CallResult(name, slot, fallback=result)

    def _invoke(self, name: str, arg_values: list[Any]) -> Any:
        """Unroll one activation of ``name``; returns the predicted return value."""
        func = self._functions[name]
        self._emit(StepKind.FRAME_PUSH, func.start_line, function=name)
        self._state.push_scope(name)
        for position, (pname, ptype) in enumerate(self._params.get(name, [])):
            if not pname:
                continue
            if position >= len(arg_values):
                logger.debug("%s(): no argument for parameter %s", name, pname)
                continue
            value = arg_values[position]
            self._emit(
                StepKind.CALL_PARAM_BIND,
                func.start_line,
                name=pname,
                type=ptype,
                position=position,
                value=_known(value),
            )
            self._state.bind(pname, copy.deepcopy(value), ptype, declare=True)

        saved = (self._flow, self._return_value)
        self._flow, self._return_value = None, None
        self._call_depth += 1
        self._stmt(func.child_by_field("body"))
        self._call_depth -= 1
        result = self._return_value
        self._flow, self._return_value = saved

        self._state.pop_scope()
        self._emit(StepKind.FRAME_POP, func.end_line, function=name)
        return result

    def _malloc(self, name: str, args: list[SyntaxNode], node: SyntaxNode) -> Expr:
        sizes = [self._eval.value(self._expr(a)) for a in args]
        total: Any = UNRESOLVED
        if sizes and all(isinstance(s, int) for s in sizes):
            total = sizes[0] * sizes[1] if name == "calloc" and len(sizes) > 1 else sizes[0]
        cells = total // constants.ELEMENT_SIZE if isinstance(total, int) else 1
        cells = self._capped(cells, node)
        value: Any = [0] * cells if cells > 1 else 0
        return self._allocate_cell(node, "", value)

    def _allocate_cell(
        self,
        node: SyntaxNode,
        type_name: str,
        value: Any,
        expr: Expr | None = None,
        elements: tuple[Expr, ...] = (),
        fields: dict[str, Expr] | None = None,
    ) -> Expr:
        address = self._heap.allocate()
        self._emit(
            StepKind.ALLOCATE_HEAP,
            node.start_line,
            address=address,
            type=type_name,
            value=_known(value),
            expr=expr,
            elements=elements,
            fields=fields or {},
        )
        self._state.allocate(address, type_name, copy.deepcopy(value))
        return Literal(HeapAddress(address))

    def _new(self, node: SyntaxNode) -> Expr:
        type_node = node.child_by_field("type")
        type_name = type_node.text if type_node is not None else ""
        items = _arguments(node.child_by_field("arguments"))
        declarator = node.child_by_field("declarator")

        if declarator is not None:
            length_node = declarator.child_by_field("length") or declarator.child_at(0)
            length = self._eval.value(self._expr(length_node)) if length_node else UNRESOLVED
            if not isinstance(length, int) or isinstance(length, bool) or length < 0:
                length = len(items)
            length = self._capped(length, node)
            elements = tuple(self._expr(item) for item in items[:length])
            value = [self._default_value(type_name) for _ in range(length)]
            for i, element in enumerate(elements):
                resolved = self._eval.value(element)
                if resolved is not UNRESOLVED:
                    value[i] = resolved
            return self._allocate_cell(node, f"{type_name}[{length}]", value, elements=elements)

        bare = _bare_type(type_name)
        if bare in self._structs:
            value = self._struct_value(bare)
            fields = {
                fname: self._expr(item) for (fname, _), item in zip(self._structs[bare], items)
            }
            for fname, item in fields.items():
                resolved = self._eval.value(item)
                if resolved is not UNRESOLVED:
                    value[fname] = resolved
            return self._allocate_cell(node, type_name, value, fields=fields)

        expr = self._expr(items[0]) if items else None
        value = self._eval.value(expr) if expr is not None else self._default_value(type_name)
        return self._allocate_cell(node, type_name, value, expr=expr)

    # ── expressions ──────────────────────────────────────────────

    def _expr(self, node: SyntaxNode | None) -> Expr:
        """Build the structural expression for ``node``, unrolling nested calls."""
        if node is None:
            return Literal(None)
        kind = ExprKind.classify(node.kind)
        handler = self._EXPR_DISPATCH.get(kind)
        if handler is None:
            logger.debug("Unsupported expression %s at line %d", node.kind, node.start_line)
            return Opaque(node.text, node.kind)
        return handler(self, node)

    def _number(self, node: SyntaxNode) -> Expr:
        value = parse_number(node.text)
        if value is UNRESOLVED:
            return Opaque(node.text, node.kind)
        return Literal(value)

    def _string(self, node: SyntaxNode) -> Expr:
        return Literal(_quoted_value(node.text, '"'))

    def _concatenated(self, node: SyntaxNode) -> Expr:
        return Literal(
            "".join(
                _quoted_value(c.text, '"')
                for c in node.named_children()
                if c.kind == ExprKind.STRING
            )
        )

    def _char(self, node: SyntaxNode) -> Expr:
        return Literal(_quoted_value(node.text, "'"))

    def _true(self, node: SyntaxNode) -> Expr:
        return Literal(True)

    def _false(self, node: SyntaxNode) -> Expr:
        return Literal(False)

    def _null(self, node: SyntaxNode) -> Expr:
        return Literal(None)

    def _identifier(self, node: SyntaxNode) -> Expr:
        if node.text in constants.NULL_LITERALS:
            return Literal(None)
        return Name(node.text)

    def _binary(self, node: SyntaxNode) -> Expr:
        return BinaryOp(
            _operator(node),
            self._expr(node.child_by_field("left")),
            self._expr(node.child_by_field("right")),
        )

    def _unary(self, node: SyntaxNode) -> Expr:
        return UnaryOp(_operator(node), self._expr(node.child_by_field("argument")))

    def _update_value(self, node: SyntaxNode) -> Expr:
        logger.debug("Increment inside an expression at line %d unsupported", node.start_line)
        return Opaque(node.text, node.kind)

    def _assignment_value(self, node: SyntaxNode) -> Expr:
        self._assign(node)
        return self._expr(_unwrap(node.child_by_field("left")))

    def _call_value(self, node: SyntaxNode) -> Expr:
        return self._call_node(node)

    def _subscript(self, node: SyntaxNode) -> Expr:
        return Index(
            self._expr(node.child_by_field("argument")),
            self._expr(_subscript_index(node)),
        )

    def _pointer(self, node: SyntaxNode) -> Expr:
        argument = self._expr(node.child_by_field("argument"))
        if _operator(node) == "&":
            return AddressOf(argument)
        return Deref(argument)

    def _field(self, node: SyntaxNode) -> Expr:
        field_node = node.child_by_field("field")
        return FieldAccess(
            self._expr(node.child_by_field("argument")),
            field_node.text if field_node is not None else "",
            arrow=_operator(node) == "->",
        )

    def _parenthesized(self, node: SyntaxNode) -> Expr:
        return self._expr(_unwrap(node))

    def _sizeof(self, node: SyntaxNode) -> Expr:
        type_node = node.child_by_field("type")
        if type_node is not None:
            return SizeOf(type_name=type_node.text)
        operand = _unwrap(node.child_by_field("value"))
        return SizeOf(operand=self._expr(operand))

    def _cast(self, node: SyntaxNode) -> Expr:
        return self._expr(node.child_by_field("value"))

    def _conditional(self, node: SyntaxNode) -> Expr:
        return Conditional(
            self._expr(node.child_by_field("condition")),
            self._expr(node.child_by_field("consequence")),
            self._expr(node.child_by_field("alternative")),
        )

    def _initializer_list(self, node: SyntaxNode) -> Expr:
        return ArrayLiteral(tuple(self._expr(c) for c in _arguments(node)))

    def _comma(self, node: SyntaxNode) -> Expr:
        self._effect(node.child_by_field("left"))
        return self._expr(node.child_by_field("right"))

    _EXPR_DISPATCH: dict[ExprKind, Callable] = {
        ExprKind.NUMBER: _number,
        ExprKind.STRING: _string,
        ExprKind.CONCATENATED_STRING: _concatenated,
        ExprKind.CHAR: _char,
        ExprKind.TRUE: _true,
        ExprKind.FALSE: _false,
        ExprKind.NULL: _null,
        ExprKind.NULLPTR: _null,
        ExprKind.IDENTIFIER: _identifier,
        ExprKind.QUALIFIED_IDENTIFIER: _identifier,
        ExprKind.FIELD_IDENTIFIER: _identifier,
        ExprKind.BINARY: _binary,
        ExprKind.UNARY: _unary,
        ExprKind.UPDATE: _update_value,
        ExprKind.ASSIGNMENT: _assignment_value,
        ExprKind.CALL: _call_value,
        ExprKind.SUBSCRIPT: _subscript,
        ExprKind.POINTER: _pointer,
        ExprKind.FIELD: _field,
        ExprKind.PARENTHESIZED: _parenthesized,
        ExprKind.CONDITION_CLAUSE: _parenthesized,
        ExprKind.SIZEOF: _sizeof,
        ExprKind.NEW: _new,
        ExprKind.CAST: _cast,
        ExprKind.CONDITIONAL: _conditional,
        ExprKind.INITIALIZER_LIST: _initializer_list,
        ExprKind.COMMA: _comma,
    }


def unroll(root: SyntaxNode, policy: UnrollPolicy | None = None) -> list[ExecutionStep]:
    """Flatten ``root`` into its ordered, branch-tagged step list."""
    return Unroller(policy).unroll(root)
