"""Composable API functions for the memtrace pipeline.

Each function corresponds to a CLI workflow (--steps-only, --json, full run)
but is callable programmatically without argparse.
"""

from __future__ import annotations

import logging

from . import constants
from .effects import EffectSink, RunStatus, VisualizationState
from .executor import Executor, execute
from .nodes import TreeSitterNode
from .parser import Parser, SourceParseError, TreeSitterParserFactory
from .run_types import UnrollPolicy
from .steps import ExecutionStep
from .unroller import unroll

logger = logging.getLogger(__name__)


def parse_source(source: str, language: str = constants.DEFAULT_LANGUAGE) -> TreeSitterNode:
    """Parse source text and wrap the tree root for the unroller.

    Args:
        source: The C/C++ source text.
        language: "cpp" or "c".

    Returns:
        The root node behind the node inspection interface.

    Raises:
        SourceParseError: The source contains a syntax error.
    """
    tree = Parser(TreeSitterParserFactory()).parse(source, language)
    return TreeSitterNode.root(tree, source.encode("utf-8"))


def unroll_source(
    source: str,
    language: str = constants.DEFAULT_LANGUAGE,
    policy: UnrollPolicy | None = None,
) -> list[ExecutionStep]:
    """Parse and unroll source into its branch-tagged step list.

    Args:
        source: The C/C++ source text.
        language: "cpp" or "c".
        policy: Loop, call-depth and step ceilings; defaults apply when None.

    Returns:
        The ordered list of execution steps.
    """
    logger.info("Unrolling source (%s)", language)
    return unroll(parse_source(source, language), policy)


def dump_steps(
    source: str,
    language: str = constants.DEFAULT_LANGUAGE,
    policy: UnrollPolicy | None = None,
) -> str:
    """Unroll source and return a human-readable text dump.

    Args:
        source: The C/C++ source text.
        language: "cpp" or "c".
        policy: Unrolling ceilings.

    Returns:
        A multi-line string with one numbered step per line.
    """
    steps = unroll_source(source, language, policy)
    return "\n".join(f"  {i:>4}  {step}" for i, step in enumerate(steps))


def trace_source(
    source: str,
    language: str = constants.DEFAULT_LANGUAGE,
    policy: UnrollPolicy | None = None,
    effects: EffectSink | None = None,
) -> Executor:
    """Unroll and execute source to completion.

    A syntax error is reported through the sink (status ERROR) when it is
    a ``VisualizationState``; otherwise it propagates.

    Args:
        source: The C/C++ source text.
        language: "cpp" or "c".
        policy: Unrolling ceilings.
        effects: Sink receiving notifications; a fresh VisualizationState
            when None.

    Returns:
        The executor after its final step.
    """
    sink = effects if effects is not None else VisualizationState()
    try:
        steps = unroll_source(source, language, policy)
    except SourceParseError as e:
        if isinstance(sink, VisualizationState):
            executor = Executor([], sink)
            sink.set_error(str(e))
            sink.set_line(e.line)
            return executor
        raise
    return execute(steps, sink)


def final_state(
    source: str,
    language: str = constants.DEFAULT_LANGUAGE,
    policy: UnrollPolicy | None = None,
) -> dict:
    """Run source and return the serialized final visualization state.

    Args:
        source: The C/C++ source text.
        language: "cpp" or "c".
        policy: Unrolling ceilings.

    Returns:
        A JSON-ready dict of stack, heap, output, line and status.
    """
    state = VisualizationState()
    trace_source(source, language, policy, state)
    if state.status == RunStatus.ERROR:
        logger.info("Run ended in error: %s", state.error)
    return state.snapshot()
