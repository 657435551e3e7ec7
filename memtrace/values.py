"""Symbolic values — reference stand-ins plus primitive operator evaluation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from . import constants

# ── Data types ───────────────────────────────────────────────────


@dataclass(frozen=True)
class VariableRef:
    """Address of a named variable (``&x``)."""

    name: str
    scope_id: int | None = field(default=None, compare=False)

    def to_dict(self) -> dict:
        return {"ref": "variable", "name": self.name}

    def __str__(self) -> str:
        return f"&{self.name}"


@dataclass(frozen=True)
class ArrayElementRef:
    """Address of one slot of a stack array (``&arr[i]`` or a decayed ``arr``)."""

    array_name: str
    index: int
    scope_id: int | None = field(default=None, compare=False)

    def shifted(self, delta: int) -> ArrayElementRef:
        return ArrayElementRef(self.array_name, self.index + delta, self.scope_id)

    def to_dict(self) -> dict:
        return {"ref": "element", "array": self.array_name, "index": self.index}

    def __str__(self) -> str:
        return f"{self.array_name}[{self.index}]"


@dataclass(frozen=True)
class HeapAddress:
    """Address of a heap cell; ``offset`` indexes into ``new T[n]`` cells."""

    token: str
    offset: int = 0

    def shifted(self, delta: int) -> HeapAddress:
        return HeapAddress(self.token, self.offset + delta)

    def to_dict(self) -> dict:
        return {"ref": "heap", "token": self.token, "offset": self.offset}

    def __str__(self) -> str:
        if self.offset:
            return f"{self.token}+{self.offset}"
        return self.token


@dataclass(frozen=True)
class PendingArithmetic:
    """``base op offset`` resolved against the runtime value of ``base``."""

    base: str
    op: str
    offset: int

    def to_dict(self) -> dict:
        return {"ref": "pending", "base": self.base, "op": self.op, "offset": self.offset}

    def __str__(self) -> str:
        return f"{self.base} {self.op} {self.offset}"


Reference = Union[VariableRef, ArrayElementRef, HeapAddress]
SymbolicValue = Union[
    int, float, str, bool, None, list, dict, VariableRef, ArrayElementRef, HeapAddress,
    PendingArithmetic,
]

REFERENCE_TYPES = (VariableRef, ArrayElementRef, HeapAddress)


class _Unresolved:
    """Sentinel for a value or reference that cannot be determined."""

    def __repr__(self) -> str:
        return "UNRESOLVED"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> _Unresolved:
        return self

    def __deepcopy__(self, memo: dict) -> _Unresolved:
        return self


UNRESOLVED = _Unresolved()


def is_reference(value: Any) -> bool:
    return isinstance(value, REFERENCE_TYPES)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def shift_reference(value: Any, delta: int) -> Any:
    """Pointer arithmetic: move a reference ``delta`` elements."""
    if isinstance(value, (ArrayElementRef, HeapAddress)):
        return value.shifted(delta)
    if is_number(value):
        return value + delta
    return UNRESOLVED


def serialize_value(v: Any) -> Any:
    if is_reference(v) or isinstance(v, PendingArithmetic):
        return v.to_dict()
    if isinstance(v, list):
        return [serialize_value(x) for x in v]
    if isinstance(v, dict):
        return {k: serialize_value(x) for k, x in v.items()}
    return v


def format_value(v: Any) -> str:
    """Render a value the way console output shows it."""
    if v is None:
        return constants.NULL_DISPLAY
    if isinstance(v, bool):
        return "1" if v else "0"
    if isinstance(v, float):
        return f"{v:g}"
    if isinstance(v, list):
        return "{" + ", ".join(format_value(x) for x in v) + "}"
    if isinstance(v, dict):
        return "{" + ", ".join(f"{k}: {format_value(x)}" for k, x in v.items()) + "}"
    return str(v)


def truthy(v: Any) -> Any:
    """C truthiness; references are non-null, unresolved stays unresolved."""
    if v is UNRESOLVED:
        return UNRESOLVED
    if v is None:
        return False
    if is_reference(v):
        return True
    if isinstance(v, str):
        return len(v) > 0
    return bool(v)


def parse_number(raw: str) -> Any:
    """Parse a C number literal (suffixes, hex, octal, binary)."""
    text = raw.replace("'", "").lower()
    is_float = "." in text or ("e" in text and not text.startswith("0x"))
    text = text.rstrip("ulf") if not text.startswith("0x") else text.rstrip("ul")
    try:
        if is_float:
            return float(text)
        if text.startswith("0x"):
            return int(text, 16)
        if text.startswith("0b"):
            return int(text, 2)
        if len(text) > 1 and text.startswith("0"):
            return int(text, 8)
        return int(text)
    except ValueError:
        return UNRESOLVED


class Operators:
    """Binary and unary operator evaluation with an explicit UNRESOLVED result."""

    BINOP_TABLE: dict[str, Any] = {
        "+": lambda a, b: a + b,
        "-": lambda a, b: a - b,
        "*": lambda a, b: a * b,
        "/": lambda a, b: Operators._divide(a, b),
        "%": lambda a, b: Operators._modulo(a, b),
        "==": lambda a, b: a == b,
        "!=": lambda a, b: a != b,
        "<": lambda a, b: a < b,
        ">": lambda a, b: a > b,
        "<=": lambda a, b: a <= b,
        ">=": lambda a, b: a >= b,
        "&": lambda a, b: a & b,
        "|": lambda a, b: a | b,
        "^": lambda a, b: a ^ b,
        "<<": lambda a, b: a << b,
        ">>": lambda a, b: a >> b,
    }

    COMPARISONS: frozenset[str] = frozenset({"==", "!=", "<", ">", "<=", ">="})

    @staticmethod
    def _divide(a: Any, b: Any) -> Any:
        if b == 0:
            return UNRESOLVED
        if isinstance(a, int) and isinstance(b, int):
            # C truncates toward zero
            q = abs(a) // abs(b)
            return q if (a >= 0) == (b >= 0) else -q
        return a / b

    @staticmethod
    def _modulo(a: Any, b: Any) -> Any:
        if b == 0:
            return UNRESOLVED
        if isinstance(a, int) and isinstance(b, int):
            return a - b * Operators._divide(a, b)
        return UNRESOLVED

    @classmethod
    def eval_binop(cls, op: str, lhs: Any, rhs: Any) -> Any:
        if lhs is UNRESOLVED or rhs is UNRESOLVED:
            return UNRESOLVED
        if op == "&&":
            return bool(truthy(lhs)) and bool(truthy(rhs))
        if op == "||":
            return bool(truthy(lhs)) or bool(truthy(rhs))
        if op in ("+", "-") and is_reference(lhs) and is_number(rhs):
            return shift_reference(lhs, rhs if op == "+" else -rhs)
        if op in ("==", "!=") and (is_reference(lhs) or is_reference(rhs)):
            same = lhs == rhs
            return same if op == "==" else not same
        if op in ("==", "!=") and (lhs is None or rhs is None):
            same = lhs is rhs or (lhs in (0, None) and rhs in (0, None))
            return same if op == "==" else not same
        fn = cls.BINOP_TABLE.get(op)
        if fn is None:
            return UNRESOLVED
        try:
            result = fn(lhs, rhs)
        except Exception:
            return UNRESOLVED
        if op in cls.COMPARISONS:
            return bool(result)
        return result

    @classmethod
    def eval_unop(cls, op: str, operand: Any) -> Any:
        if operand is UNRESOLVED:
            return UNRESOLVED
        try:
            if op == "-":
                return -operand
            if op == "+":
                return +operand
            if op == "!":
                return not truthy(operand)
            if op == "~":
                return ~operand
        except Exception:
            pass
        return UNRESOLVED
