"""Orchestrator — run() entry point."""

from __future__ import annotations

import logging
import time

from . import constants
from .effects import EffectSink, VisualizationState
from .executor import execute
from .nodes import TreeSitterNode
from .parser import Parser, TreeSitterParserFactory
from .run_types import PipelineStats, UnrollPolicy
from .unroller import Unroller

logger = logging.getLogger(__name__)


def run(
    source: str,
    language: str = constants.DEFAULT_LANGUAGE,
    policy: UnrollPolicy | None = None,
    verbose: bool = False,
    effects: EffectSink | None = None,
) -> VisualizationState | EffectSink:
    """End-to-end: parse → unroll → execute.

    Args:
        source: Raw source code string.
        language: Source language name ("cpp" or "c").
        policy: Unrolling ceilings.
        verbose: Print the step list and pipeline statistics.
        effects: Sink to drive; a fresh VisualizationState when None.
    """
    pipeline_start = time.perf_counter()
    stats = PipelineStats(
        source_bytes=len(source.encode("utf-8")),
        source_lines=source.count("\n")
        + (1 if source and not source.endswith("\n") else 0),
        language=language,
    )

    # 1. Parse
    t0 = time.perf_counter()
    tree = Parser(TreeSitterParserFactory()).parse(source, language)
    root = TreeSitterNode.root(tree, source.encode("utf-8"))
    stats.parse_time = time.perf_counter() - t0

    # 2. Unroll
    t0 = time.perf_counter()
    unroller = Unroller(policy)
    steps = unroller.unroll(root)
    stats.unroll_time = time.perf_counter() - t0
    stats.step_count = len(steps)
    stats.function_count = unroller.function_count

    if verbose:
        print("═══ Steps ═══")
        for i, step in enumerate(steps):
            print(f"  {i:>4}  {step}")
        print()
    if unroller.truncated:
        logger.warning("Step ceiling reached; trace truncated at %d steps", len(steps))

    # 3. Execute
    sink = effects if effects is not None else VisualizationState()
    t0 = time.perf_counter()
    executor = execute(steps, sink)
    stats.execution_time = time.perf_counter() - t0
    stats.executed_steps = len(executor.applied)
    stats.suppressed_steps = executor.suppressed
    stats.final_frames = len(executor.memory.scopes)
    stats.final_heap_cells = len(executor.memory.heap)
    if isinstance(sink, VisualizationState):
        stats.output_lines = len(sink.output)

    stats.total_time = time.perf_counter() - pipeline_start
    logger.info("\n%s", stats.report())
    if verbose:
        print(stats.report())

    return sink
