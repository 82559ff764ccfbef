from __future__ import annotations

import json
import logging

from core.errors import ShellTimeoutError
from core.types import ROLE_ASSISTANT, ROLE_USER, CommandResult, Turn
from history.store import TranscriptStore
from shell.session import ShellSession

from .console import Console


def command_output_turn(stdout: str) -> Turn:
    return Turn(role=ROLE_ASSISTANT, content=f"Command output: {json.dumps(stdout, ensure_ascii=False)}")


async def run_shell_command(
    user_input: str,
    *,
    store: TranscriptStore,
    shell: ShellSession,
    console: Console,
    logger: logging.Logger | None = None,
) -> CommandResult | None:
    command = user_input.strip()
    store.append(Turn(role=ROLE_USER, content=command))
    if logger:
        logger.info("shell command=%r", command)

    try:
        result = await shell.run(command)
    except ShellTimeoutError as err:
        message = f"Execution Error: {err}"
        console.error(message)
        store.append(Turn(role=ROLE_ASSISTANT, content=message))
        return None

    if result.failed:
        if result.stdout:
            console.output(result.stdout)
        console.error(result.stderr)
        store.append(Turn(role=ROLE_ASSISTANT, content=f"Error: {result.stderr}"))
    else:
        console.output(result.stdout)
        store.append(command_output_turn(result.stdout))
    return result
