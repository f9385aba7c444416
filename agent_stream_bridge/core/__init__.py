"""Core infrastructure module.

Foundation services required by all domains:
- Configuration schema (Valves)
- Error classes and error rendering
- Session logging and timing instrumentation
- Pure utility functions
"""

from .config import Valves, namespaced_tool_prefix
from .errors import (
    AgentStreamError,
    ErrorMessages,
    ToolExecutionError,
    UpstreamHTTPError,
    UpstreamStreamError,
    describe_error,
)
from .logging_system import SessionLogger
from .timing_logger import timed, timing_mark, timing_scope
from .utils import _hostname_of

__all__ = [
    "Valves",
    "namespaced_tool_prefix",
    "AgentStreamError",
    "ErrorMessages",
    "ToolExecutionError",
    "UpstreamHTTPError",
    "UpstreamStreamError",
    "describe_error",
    "SessionLogger",
    "timed",
    "timing_mark",
    "timing_scope",
    "_hostname_of",
]
