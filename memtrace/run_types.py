"""Run pipeline data types (pure data, no business logic)."""

from __future__ import annotations

from dataclasses import dataclass

from . import constants


@dataclass(frozen=True)
class UnrollPolicy:
    """Ceilings that keep the unrolled trace finite."""

    max_loop_iterations: int = constants.MAX_LOOP_ITERATIONS
    max_call_depth: int = constants.MAX_CALL_DEPTH
    max_steps: int = constants.MAX_STEPS
    max_speculative_depth: int = constants.MAX_SPECULATIVE_DEPTH
    max_array_elements: int = constants.MAX_ARRAY_ELEMENTS


@dataclass(frozen=True)
class PlaybackConfig:
    """Groups autoplay configuration."""

    delay_seconds: float = constants.DEFAULT_PLAYBACK_DELAY


@dataclass
class PipelineStats:
    """Timing and size statistics for each pipeline stage."""

    source_bytes: int = 0
    source_lines: int = 0
    language: str = ""

    # Stage timings (seconds)
    parse_time: float = 0.0
    unroll_time: float = 0.0
    execution_time: float = 0.0
    total_time: float = 0.0

    # Output sizes
    step_count: int = 0
    function_count: int = 0
    executed_steps: int = 0
    suppressed_steps: int = 0

    # Final state
    final_frames: int = 0
    final_heap_cells: int = 0
    output_lines: int = 0

    def report(self) -> str:
        lines = [
            "═══ Pipeline Statistics ═══",
            f"  Source: {self.source_lines} lines, {self.source_bytes} bytes ({self.language})",
            "",
            f"  {'Stage':<20} {'Time':>10}  {'Output':>30}",
            f"  {'─' * 20} {'─' * 10}  {'─' * 30}",
        ]

        stages = [
            ("Parse", self.parse_time, ""),
            (
                "Unroll",
                self.unroll_time,
                f"{self.step_count} steps, {self.function_count} functions",
            ),
            (
                "Execute",
                self.execution_time,
                f"{self.executed_steps} applied, {self.suppressed_steps} suppressed",
            ),
        ]
        for name, t, output in stages:
            time_str = f"{t * 1000:>8.1f}ms"
            lines.append(f"  {name:<20} {time_str:>10}  {output:>30}")

        lines.append(f"  {'─' * 20} {'─' * 10}  {'─' * 30}")
        lines.append(f"  {'Total':<20} {self.total_time * 1000:>8.1f}ms")
        lines.append("")
        lines.append(
            f"  Final state: {self.final_frames} frames,"
            f" {self.final_heap_cells} heap cells,"
            f" {self.output_lines} output lines"
        )
        return "\n".join(lines)
