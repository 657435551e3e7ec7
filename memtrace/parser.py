"""Tree-Sitter Parsing Layer."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from . import constants

logger = logging.getLogger(__name__)


class SourceParseError(ValueError):
    """Raised when the source text does not parse cleanly."""

    def __init__(self, message: str, line: int = 0):
        super().__init__(message)
        self.line = line


class ParserFactory(ABC):
    """Abstract factory for obtaining a language parser."""

    @abstractmethod
    def get_parser(self, language: str): ...


class TreeSitterParserFactory(ParserFactory):
    """Concrete factory that delegates to tree-sitter-language-pack."""

    def get_parser(self, language: str):
        import tree_sitter_language_pack as tslp

        return tslp.get_parser(language)


def _first_error_line(node) -> int:
    if node.type == "ERROR" or node.is_missing:
        return node.start_point[0] + 1
    for child in node.children:
        if child.has_error:
            return _first_error_line(child)
    return node.start_point[0] + 1


class Parser:
    """Thin wrapper around a parser factory.

    Parse failures are the one hard error of the pipeline: a tree containing
    ERROR or MISSING nodes raises ``SourceParseError`` before any unrolling.
    """

    def __init__(self, parser_factory: ParserFactory):
        self._factory = parser_factory

    def parse(self, source: str, language: str = constants.DEFAULT_LANGUAGE):
        if language not in constants.SUPPORTED_LANGUAGES:
            raise ValueError(f"Unsupported language: {language}")
        parser = self._factory.get_parser(language)
        tree = parser.parse(source.encode("utf-8"))
        if tree.root_node.has_error:
            line = _first_error_line(tree.root_node)
            logger.info("Parse failed at line %d", line)
            raise SourceParseError(f"Syntax error near line {line}", line=line)
        return tree
