"""Named constants — eliminates magic strings across the codebase."""

from __future__ import annotations

DEFAULT_LANGUAGE = "cpp"
SUPPORTED_LANGUAGES: tuple[str, ...] = ("cpp", "c")

ENTRY_FUNCTION = "main"
GLOBAL_FRAME_NAME = "<global>"

# Unrolling ceilings (visualization limits, not language semantics)
MAX_LOOP_ITERATIONS = 10
MAX_CALL_DEPTH = 20
MAX_STEPS = 5000
MAX_SPECULATIVE_DEPTH = 2
MAX_ARRAY_ELEMENTS = 1000

# Mock address ranges
STACK_ADDRESS_BASE = 0x7FFE1A00
STACK_ADDRESS_STRIDE = 4
HEAP_ADDRESS_BASE = 0x00602010
HEAP_ADDRESS_STRIDE = 0x20

ELEMENT_SIZE = 4
POINTER_SIZE = 8
PRIMITIVE_SIZES: dict[str, int] = {
    "char": 1,
    "bool": 1,
    "short": 2,
    "int": 4,
    "unsigned": 4,
    "unsigned int": 4,
    "float": 4,
    "long": 8,
    "long long": 8,
    "double": 8,
    "size_t": 8,
}

# Branch labels
BRANCH_THEN = "then"
BRANCH_ELSE = "else"
CASE_LABEL_PREFIX = "case-"
CASE_DEFAULT = "case-default"
LOOP_ITERATE = "iterate"
LOOP_EXIT = "exit"

# Output templates
OUTPUT_STREAMS: frozenset[str] = frozenset({"cout", "std::cout", "cerr", "std::cerr"})
OUTPUT_LINE_ENDS: frozenset[str] = frozenset({"endl", "std::endl"})
PRINT_FUNCTIONS: frozenset[str] = frozenset({"printf", "puts"})

NULL_LITERALS: frozenset[str] = frozenset({"nullptr", "NULL"})
NULL_DISPLAY = "nullptr"

DEFAULT_PLAYBACK_DELAY = 0.8

ALLOCATION_FUNCTIONS: frozenset[str] = frozenset({"malloc", "calloc"})
DEALLOCATION_FUNCTIONS: frozenset[str] = frozenset({"free"})
