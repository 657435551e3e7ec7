"""Node Inspection Interface — the only view of the syntax tree the unroller uses."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterator

from pydantic import BaseModel


class Span(BaseModel):
    """1-based inclusive line span of a node."""

    start_line: int
    end_line: int

    def __str__(self) -> str:
        if self.start_line == self.end_line:
            return f"{self.start_line}"
        return f"{self.start_line}-{self.end_line}"


class SyntaxNode(ABC):
    """Generic node inspection interface.

    ``child_at`` and ``named_child_count`` address *named* children only;
    anonymous tokens (operators, punctuation) are reached through fields.
    """

    @property
    @abstractmethod
    def kind(self) -> str: ...

    @property
    @abstractmethod
    def text(self) -> str: ...

    @property
    @abstractmethod
    def span(self) -> Span: ...

    @property
    @abstractmethod
    def named_child_count(self) -> int: ...

    @abstractmethod
    def child_by_field(self, name: str) -> SyntaxNode | None: ...

    @abstractmethod
    def child_at(self, index: int) -> SyntaxNode | None: ...

    @property
    def start_line(self) -> int:
        return self.span.start_line

    @property
    def end_line(self) -> int:
        return self.span.end_line

    def named_children(self) -> Iterator[SyntaxNode]:
        for i in range(self.named_child_count):
            child = self.child_at(i)
            if child is not None:
                yield child

    def __repr__(self) -> str:
        return f"<{self.kind} @{self.span}>"


class TreeSitterNode(SyntaxNode):
    """Adapter over a py-tree-sitter ``Node`` plus its source bytes."""

    def __init__(self, node, source: bytes):
        self._node = node
        self._source = source

    @classmethod
    def root(cls, tree, source: bytes) -> TreeSitterNode:
        return cls(tree.root_node, source)

    @property
    def kind(self) -> str:
        return self._node.type

    @property
    def text(self) -> str:
        return self._source[self._node.start_byte : self._node.end_byte].decode(
            "utf-8"
        )

    @property
    def span(self) -> Span:
        return Span(
            start_line=self._node.start_point[0] + 1,
            end_line=self._node.end_point[0] + 1,
        )

    @property
    def named_child_count(self) -> int:
        return self._node.named_child_count

    def child_by_field(self, name: str) -> SyntaxNode | None:
        child = self._node.child_by_field_name(name)
        return TreeSitterNode(child, self._source) if child is not None else None

    def child_at(self, index: int) -> SyntaxNode | None:
        if index < 0 or index >= self._node.named_child_count:
            return None
        child = self._node.named_child(index)
        return TreeSitterNode(child, self._source) if child is not None else None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TreeSitterNode):
            return NotImplemented
        return (
            self._node.start_byte == other._node.start_byte
            and self._node.end_byte == other._node.end_byte
            and self._node.type == other._node.type
        )

    def __hash__(self) -> int:
        return hash((self._node.start_byte, self._node.end_byte, self._node.type))
