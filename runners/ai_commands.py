from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from core.client import extract_content
from core.content import parse_reply
from core.errors import ChatServiceError, ReplyFormatError, ShellTimeoutError
from core.types import ROLE_ASSISTANT, ROLE_USER, ChatClient, Turn
from history.store import TranscriptStore
from shell.session import ShellSession

from .console import Console
from .shell_commands import command_output_turn

OUTCOME_DONE = "done"
OUTCOME_STOPPED = "stopped"
OUTCOME_ERROR = "error"
OUTCOME_MAX_STEPS = "max_steps"


@dataclass(frozen=True)
class AIRunOutcome:
    reason: str
    steps: int


async def _summarize(client: ChatClient, text: str, logger: logging.Logger | None) -> str:
    try:
        summary = await client.summarize_error(text)
    except ChatServiceError as err:
        if logger:
            logger.warning("error summary unavailable, using raw stderr: %s", err)
        return text
    return summary or text


def _record_error(store: TranscriptStore, console: Console, message: str) -> None:
    console.error(message)
    store.append(Turn(role=ROLE_ASSISTANT, content=message))


async def run_ai_command(
    request: str,
    *,
    store: TranscriptStore,
    client: ChatClient,
    shell: ShellSession,
    console: Console,
    should_stop: Callable[[], bool] | None = None,
    max_steps: int = 25,
    logger: logging.Logger | None = None,
) -> AIRunOutcome:
    """Let the model work towards ``request`` one shell command at a time.

    Each step sends the transcript to the chat service, records the reply,
    and runs the command it names. The loop ends when the reply carries no
    command (or ``done``), when ``should_stop`` turns true between steps,
    after ``max_steps`` replies, or on the first chat or protocol error.
    A dispatched shell command is never interrupted.
    """
    store.append(Turn(role=ROLE_USER, content=request.strip()))
    if logger:
        logger.info("ai request=%r", request.strip())

    steps = 0
    while steps < max_steps:
        if should_stop is not None and should_stop():
            console.warning("Stopping AI commands - user interrupted.")
            return AIRunOutcome(reason=OUTCOME_STOPPED, steps=steps)
        steps += 1

        console.working()
        try:
            response = await client.chat(store.transcript)
            reply = parse_reply(extract_content(response))
        except (ChatServiceError, ReplyFormatError) as err:
            if logger:
                logger.warning("ai step=%d failed: %s", steps, err)
            _record_error(store, console, f"Error: {err}")
            return AIRunOutcome(reason=OUTCOME_ERROR, steps=steps)

        store.append(Turn(role=ROLE_ASSISTANT, content=reply.to_json()))
        if reply.reasoning.strip():
            console.reasoning(reply.reasoning.strip())
        if reply.conclusion.strip():
            console.conclusion(reply.conclusion.strip())

        command = reply.next_command
        if command is None:
            return AIRunOutcome(reason=OUTCOME_DONE, steps=steps)

        console.command(command)
        if logger:
            logger.info("ai step=%d command=%r", steps, command)
        try:
            result = await shell.run(command)
        except ShellTimeoutError as err:
            _record_error(store, console, f"Execution Error: {err}")
            return AIRunOutcome(reason=OUTCOME_ERROR, steps=steps)

        if result.failed:
            summary = await _summarize(client, result.stderr, logger)
            _record_error(store, console, f"Error: {summary}")
        else:
            console.output(result.stdout)
            store.append(command_output_turn(result.stdout))

    console.warning(f"Stopped after {max_steps} steps without a final answer.")
    if logger:
        logger.warning("ai loop hit max_steps=%d", max_steps)
    return AIRunOutcome(reason=OUTCOME_MAX_STEPS, steps=steps)
