from .framing import COMMAND_END_MARKER, SentinelBuffer, resolve_backspaces
from .session import SessionState, ShellSession

__all__ = [
    "COMMAND_END_MARKER",
    "SentinelBuffer",
    "SessionState",
    "ShellSession",
    "resolve_backspaces",
]
