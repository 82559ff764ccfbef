from .ai_commands import AIRunOutcome, run_ai_command
from .console import Console
from .shell_commands import run_shell_command

__all__ = [
    "AIRunOutcome",
    "Console",
    "run_ai_command",
    "run_shell_command",
]
