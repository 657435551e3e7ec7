"""Command-line entry point."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging

from . import constants
from .api import dump_steps, unroll_source
from .effects import VisualizationState
from .parser import SourceParseError
from .playback import Playback
from .run import run
from .run_types import PlaybackConfig, UnrollPolicy

logger = logging.getLogger(__name__)

DEMO_SOURCE = """\
#include <iostream>

int factorial(int n) {
    if (n <= 1) {
        return 1;
    }
    return n * factorial(n - 1);
}

int main() {
    int x = 10;
    int* ptr = &x;
    *ptr = 20;
    int* cell = new int(42);
    *cell = factorial(4);
    std::cout << "x = " << x << ", cell = " << *cell << std::endl;
    return 0;
}
"""


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Memory trace visualizer for C/C++")
    parser.add_argument("file", nargs="?", help="Source file to trace")
    parser.add_argument(
        "--language",
        "-l",
        default=constants.DEFAULT_LANGUAGE,
        choices=constants.SUPPORTED_LANGUAGES,
        help=f"Source language (default: {constants.DEFAULT_LANGUAGE})",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=constants.MAX_LOOP_ITERATIONS,
        help=f"Loop unrolling ceiling (default: {constants.MAX_LOOP_ITERATIONS})",
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        default=constants.MAX_CALL_DEPTH,
        help=f"Call depth ceiling (default: {constants.MAX_CALL_DEPTH})",
    )
    parser.add_argument(
        "--max-steps",
        "-n",
        type=int,
        default=constants.MAX_STEPS,
        help=f"Total step ceiling (default: {constants.MAX_STEPS})",
    )
    parser.add_argument(
        "--max-array-elements",
        type=int,
        default=constants.MAX_ARRAY_ELEMENTS,
        help=f"Elements kept per array or heap block (default: {constants.MAX_ARRAY_ELEMENTS})",
    )
    parser.add_argument(
        "--steps-only", action="store_true", help="Only print the unrolled steps"
    )
    parser.add_argument(
        "--json", action="store_true", help="Print steps or final state as JSON"
    )
    parser.add_argument(
        "--play",
        action="store_true",
        help="Autoplay the trace, printing console output as it appears",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=constants.DEFAULT_PLAYBACK_DELAY,
        help=f"Seconds between autoplay steps (default: {constants.DEFAULT_PLAYBACK_DELAY})",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Print steps and pipeline statistics"
    )
    return parser


class _EchoingState(VisualizationState):
    """Visualization state that also echoes console lines to stdout."""

    def log_output(self, text: str) -> None:
        super().log_output(text)
        print(text)


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    if not args.file:
        source = DEMO_SOURCE
        print("No file provided. Using built-in demo:\n")
        print(source)
    else:
        with open(args.file) as f:
            source = f.read()

    policy = UnrollPolicy(
        max_loop_iterations=args.max_iterations,
        max_call_depth=args.max_depth,
        max_steps=args.max_steps,
        max_array_elements=args.max_array_elements,
    )

    try:
        if args.steps_only:
            if args.json:
                steps = unroll_source(source, args.language, policy)
                print(json.dumps([s.to_dict() for s in steps], indent=2, default=str))
            else:
                print("═══ Steps ═══")
                print(dump_steps(source, args.language, policy))
            return 0

        if args.play:
            state = _EchoingState()
            playback = Playback(
                unroll_source(source, args.language, policy),
                state,
                PlaybackConfig(delay_seconds=args.delay),
            )
            asyncio.run(playback.play())
        else:
            state = run(source, language=args.language, policy=policy, verbose=args.verbose)
    except SourceParseError as e:
        print(f"error: {e}")
        return 1

    if not args.json:
        print("\n═══ Final State ═══")
    print(json.dumps(state.snapshot(), indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
