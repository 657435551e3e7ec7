"""Structural expressions — what conditions and stored values are re-evaluated from."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class Expr:
    """Base class for structural expressions."""


@dataclass(frozen=True)
class Literal(Expr):
    value: Any

    def __str__(self) -> str:
        return repr(self.value) if isinstance(self.value, str) else str(self.value)


@dataclass(frozen=True)
class Name(Expr):
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class BinaryOp(Expr):
    op: str
    left: Expr
    right: Expr

    def __str__(self) -> str:
        return f"({self.left} {self.op} {self.right})"


@dataclass(frozen=True)
class UnaryOp(Expr):
    op: str
    operand: Expr

    def __str__(self) -> str:
        return f"{self.op}{self.operand}"


@dataclass(frozen=True)
class AddressOf(Expr):
    target: Expr

    def __str__(self) -> str:
        return f"&{self.target}"


@dataclass(frozen=True)
class Deref(Expr):
    pointer: Expr

    def __str__(self) -> str:
        return f"*{self.pointer}"


@dataclass(frozen=True)
class Index(Expr):
    base: Expr
    index: Expr

    def __str__(self) -> str:
        return f"{self.base}[{self.index}]"


@dataclass(frozen=True)
class FieldAccess(Expr):
    base: Expr
    field_name: str
    arrow: bool = False

    def __str__(self) -> str:
        return f"{self.base}{'->' if self.arrow else '.'}{self.field_name}"


@dataclass(frozen=True)
class SizeOf(Expr):
    """``sizeof`` of a type name or of a named variable."""

    type_name: str = ""
    operand: Expr | None = None

    def __str__(self) -> str:
        return f"sizeof({self.type_name or self.operand})"


@dataclass(frozen=True)
class Conditional(Expr):
    condition: Expr
    consequence: Expr
    alternative: Expr

    def __str__(self) -> str:
        return f"({self.condition} ? {self.consequence} : {self.alternative})"


@dataclass(frozen=True)
class CallResult(Expr):
    """Value a call site delivered into result slot ``slot``."""

    function: str
    slot: int
    fallback: Any = None

    def __str__(self) -> str:
        return f"{self.function}()#{self.slot}"


@dataclass(frozen=True)
class Opaque(Expr):
    """Unsupported construct: evaluates to its raw source text."""

    text: str
    kind: str = ""

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class ArrayLiteral(Expr):
    elements: tuple[Expr, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        return "{" + ", ".join(str(e) for e in self.elements) + "}"
