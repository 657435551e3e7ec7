"""Console output templates — built statically, resolved at runtime."""

from __future__ import annotations

import logging
import re
from typing import Any

from . import constants
from .evaluate import Evaluator
from .expr import Deref, Expr, Literal, Name
from .values import UNRESOLVED, format_value

logger = logging.getLogger(__name__)

# Alternation order is resolution order at any one position: escaped braces,
# then double dereference, single dereference, expression slot, bare name.
_PLACEHOLDER = re.compile(
    r"(?P<open>\{\{)"
    r"|(?P<close>\}\})"
    r"|\{\*\*(?P<double>[A-Za-z_]\w*)\}"
    r"|\{\*(?P<single>[A-Za-z_]\w*)\}"
    r"|\{\$(?P<slot>\d+)\}"
    r"|\{(?P<bare>[A-Za-z_]\w*)\}"
)

_PRINTF_SPEC = re.compile(r"%%|%[-+ #0]*\d*(?:\.\d+)?(?:hh|h|ll|l|L|z)?[diouxXeEfgGcspu]")


class TemplateBuilder:
    """Accumulates text and placeholders for one output statement."""

    def __init__(self):
        self._parts: list[str] = []
        self.expressions: list[Expr] = []

    def text(self, value: str) -> None:
        self._parts.append(_escape(value))

    def newline(self) -> None:
        self._parts.append("\n")

    def operand(self, expr: Expr) -> None:
        """Append a placeholder (or literal text) for one streamed operand."""
        if isinstance(expr, Literal):
            self.text(format_value(expr.value))
        elif isinstance(expr, Name) and expr.name in constants.OUTPUT_LINE_ENDS:
            self.newline()
        elif isinstance(expr, Name):
            self._parts.append(f"{{{expr.name}}}")
        elif isinstance(expr, Deref) and isinstance(expr.pointer, Name):
            self._parts.append(f"{{*{expr.pointer.name}}}")
        elif (
            isinstance(expr, Deref)
            and isinstance(expr.pointer, Deref)
            and isinstance(expr.pointer.pointer, Name)
        ):
            self._parts.append(f"{{**{expr.pointer.pointer.name}}}")
        else:
            self._parts.append(f"{{${len(self.expressions)}}}")
            self.expressions.append(expr)

    def printf(self, fmt: str, args: list[Expr]) -> None:
        """Expand a printf-style format string against its argument expressions."""
        remaining = iter(args)
        cursor = 0
        for match in _PRINTF_SPEC.finditer(fmt):
            self.text(fmt[cursor : match.start()])
            cursor = match.end()
            if match.group(0) == "%%":
                self.text("%")
                continue
            arg = next(remaining, None)
            if arg is None:
                self.text(match.group(0))
            else:
                self.operand(arg)
        self.text(fmt[cursor:])

    @property
    def template(self) -> str:
        return "".join(self._parts).rstrip("\n")


def resolve_template(template: str, expressions: list[Expr], evaluator: Evaluator) -> str:
    """Substitute placeholders, double dereference first and bare names last.

    Substituted values are never rescanned; doubled braces come out as
    literal braces.
    """
    memory = evaluator.memory

    def substitute(match: re.Match) -> str:
        if match.group("open"):
            return "{"
        if match.group("close"):
            return "}"
        if match.group("double"):
            first = evaluator.value(Deref(Name(match.group("double"))))
            return _render(match, memory.load(first) if first is not UNRESOLVED else UNRESOLVED)
        if match.group("single"):
            return _render(match, evaluator.value(Deref(Name(match.group("single")))))
        if match.group("slot"):
            index = int(match.group("slot"))
            if index >= len(expressions):
                return match.group(0)
            return _render(match, evaluator.value(expressions[index]))
        binding = memory.lookup(match.group("bare"))
        return _render(match, binding.value if binding is not None else UNRESOLVED)

    return _PLACEHOLDER.sub(substitute, template)


def _escape(text: str) -> str:
    return text.replace("{", "{{").replace("}", "}}")


def _render(match: re.Match, value: Any) -> str:
    if value is UNRESOLVED:
        logger.debug("Unresolved output placeholder %s", match.group(0))
        return match.group(0)
    return format_value(value)
