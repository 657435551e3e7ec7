"""Memory trace visualizer for C/C++ programs."""

from .run import run  # noqa: F401
from .api import (  # noqa: F401
    parse_source,
    unroll_source,
    dump_steps,
    trace_source,
    final_state,
)
from .playback import Playback  # noqa: F401
