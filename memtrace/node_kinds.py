"""Closed node-kind vocabularies for statement and expression dispatch."""

from __future__ import annotations

from enum import Enum


class StmtKind(str, Enum):
    TRANSLATION_UNIT = "translation_unit"
    FUNCTION_DEFINITION = "function_definition"
    DECLARATION = "declaration"
    EXPRESSION_STATEMENT = "expression_statement"
    IF = "if_statement"
    SWITCH = "switch_statement"
    WHILE = "while_statement"
    FOR = "for_statement"
    DO = "do_statement"
    RETURN = "return_statement"
    BREAK = "break_statement"
    CONTINUE = "continue_statement"
    COMPOUND = "compound_statement"
    IGNORED = "<ignored>"
    UNSUPPORTED = "<unsupported>"

    @classmethod
    def classify(cls, kind: str) -> StmtKind:
        if kind in _IGNORED_STATEMENTS:
            return cls.IGNORED
        try:
            member = cls(kind)
        except ValueError:
            return cls.UNSUPPORTED
        if member in (cls.IGNORED, cls.UNSUPPORTED):
            return cls.UNSUPPORTED
        return member


_IGNORED_STATEMENTS: frozenset[str] = frozenset(
    {
        "comment",
        "preproc_include",
        "preproc_def",
        "preproc_function_def",
        "preproc_call",
        "preproc_ifdef",
        "preproc_if",
        "using_declaration",
        "alias_declaration",
        "namespace_alias_definition",
        "struct_specifier",
        "class_specifier",
        "enum_specifier",
        "type_definition",
        "empty_statement",
        ";",
    }
)


class ExprKind(str, Enum):
    NUMBER = "number_literal"
    STRING = "string_literal"
    CONCATENATED_STRING = "concatenated_string"
    CHAR = "char_literal"
    TRUE = "true"
    FALSE = "false"
    NULL = "null"
    NULLPTR = "nullptr"
    IDENTIFIER = "identifier"
    QUALIFIED_IDENTIFIER = "qualified_identifier"
    FIELD_IDENTIFIER = "field_identifier"
    BINARY = "binary_expression"
    UNARY = "unary_expression"
    UPDATE = "update_expression"
    ASSIGNMENT = "assignment_expression"
    CALL = "call_expression"
    SUBSCRIPT = "subscript_expression"
    POINTER = "pointer_expression"
    FIELD = "field_expression"
    PARENTHESIZED = "parenthesized_expression"
    CONDITION_CLAUSE = "condition_clause"
    SIZEOF = "sizeof_expression"
    NEW = "new_expression"
    CAST = "cast_expression"
    CONDITIONAL = "conditional_expression"
    INITIALIZER_LIST = "initializer_list"
    COMMA = "comma_expression"
    UNSUPPORTED = "<unsupported>"

    @classmethod
    def classify(cls, kind: str) -> ExprKind:
        try:
            member = cls(kind)
        except ValueError:
            return cls.UNSUPPORTED
        return member
