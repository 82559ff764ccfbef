#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import os
import signal
from pathlib import Path

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import ANSI
from prompt_toolkit.history import InMemoryHistory

from core.client import OpenAICompatChatClient
from core.config import DEFAULT_CONFIG_PATH, SUPPORTED_POLICIES, AppConfig, load_config
from core.errors import AishError, HistoryStorageError, ShellExitedError
from core.logging_utils import create_session_logger
from core.types import ROLE_USER, Turn
from history.eviction import build_policy
from history.storage import FileHistoryStorage
from history.store import TranscriptStore
from history.tokenizer import build_tokenizer
from runners.ai_commands import run_ai_command
from runners.console import Console
from runners.shell_commands import run_shell_command
from shell.session import ShellSession

QUIT_COMMANDS = {"/quit", "/exit"}
HISTORY_PREVIEW_CHARS = 160


def _help_text(cfg: AppConfig) -> str:
    return "\n".join(
        [
            f"  {cfg.ai_prefix}<request>   ask the assistant; it may run shell commands step by step",
            "  <command>     run a command directly in the shell",
            "  /history      show the transcript (truncated)",
            "  /tokens       show transcript size against the token budget",
            "  /clear        drop everything except the system prompt",
            "  /help         show this help",
            "  /quit         exit (also /exit or Ctrl-D)",
        ],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="aish: interactive shell with an AI assistant")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="JSON config file (missing file = defaults)")
    parser.add_argument("--log-dir", default="~/.aish/logs", help="Directory for session log files")
    parser.add_argument("--debug", action="store_true", help="Write request/response payloads to the log")
    parser.add_argument("--policy", choices=sorted(SUPPORTED_POLICIES), default=None, help="History eviction policy")
    parser.add_argument("--max-tokens", type=int, default=None, help="Token budget for the transcript")
    parser.add_argument(
        "--command-timeout",
        type=float,
        default=None,
        help="Seconds to wait for each shell command (default: wait forever)",
    )
    return parser


def apply_overrides(cfg: AppConfig, args: argparse.Namespace) -> AppConfig:
    changes: dict[str, object] = {}
    if args.policy is not None:
        changes["eviction_policy"] = args.policy
    if args.max_tokens is not None and args.max_tokens > 0:
        changes["history_max_tokens"] = args.max_tokens
    if args.command_timeout is not None and args.command_timeout > 0:
        changes["command_timeout_seconds"] = args.command_timeout
    return dataclasses.replace(cfg, **changes) if changes else cfg


def build_store(cfg: AppConfig, logger: logging.Logger | None = None) -> TranscriptStore:
    tokenizer = build_tokenizer(cfg.tokenizer, encoding_name=cfg.token_encoding)
    return TranscriptStore(
        storage=FileHistoryStorage(cfg.history_path, logger=logger),
        policy=build_policy(cfg.eviction_policy, tokenizer),
        tokenizer=tokenizer,
        max_tokens=cfg.history_max_tokens,
        system_prompt=cfg.system_prompt,
        logger=logger,
    )


def build_client(cfg: AppConfig, logger: logging.Logger | None = None) -> OpenAICompatChatClient:
    return OpenAICompatChatClient(
        base_url=cfg.base_url,
        model_name=cfg.model_name,
        api_key_env=cfg.api_key_env,
        api_key=cfg.api_key,
        timeout_seconds=cfg.timeout_seconds,
        temperature=cfg.temperature,
        n=cfg.n,
        provider_preferences=cfg.provider_preferences,
        logger=logger,
    )


def prompt_text(store: TranscriptStore) -> str:
    return f"\033[36m(t:{store.token_count()}:{store.max_tokens}) aish \033[96m%\033[0m "


def handle_builtin(text: str, *, store: TranscriptStore, console: Console, cfg: AppConfig) -> bool:
    if text == "/help":
        console.output(_help_text(cfg))
        return True
    if text == "/tokens":
        console.output(f"{store.token_count()} / {store.max_tokens} tokens, {len(store.transcript)} turns")
        return True
    if text == "/history":
        for turn in store.transcript:
            one_line = " ".join(turn.content.split())
            if len(one_line) > HISTORY_PREVIEW_CHARS:
                one_line = one_line[: HISTORY_PREVIEW_CHARS - 3] + "..."
            console.output(f"[{turn.role}] {one_line}")
        return True
    if text == "/clear":
        try:
            store.reset()
        except HistoryStorageError as err:
            console.error(f"History cleared in memory only: {err}")
            return True
        console.info("History cleared.")
        return True
    return False


async def watch_shell_exit(shell: ShellSession, prompt_session: PromptSession[str]) -> None:
    """End a pending prompt with :class:`ShellExitedError` once the shell dies."""
    await shell.wait_closed()
    if prompt_session.app.is_running:
        prompt_session.app.exit(exception=ShellExitedError(shell.returncode))


def _install_stop_handler(stop_requested: asyncio.Event, console: Console) -> bool:
    def _on_sigint() -> None:
        stop_requested.set()
        console.warning("(^C) stop requested; the running command is not interrupted.")

    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, _on_sigint)
    except (NotImplementedError, RuntimeError):
        return False
    return True


def _remove_stop_handler() -> None:
    asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)


async def dispatch(
    text: str,
    *,
    cfg: AppConfig,
    store: TranscriptStore,
    client: OpenAICompatChatClient,
    shell: ShellSession,
    console: Console,
    stop_requested: asyncio.Event,
    logger: logging.Logger,
) -> None:
    if text.startswith(cfg.ai_prefix):
        request = text[len(cfg.ai_prefix) :].strip()
        if not request:
            console.warning(f"Type a request after '{cfg.ai_prefix}', e.g. {cfg.ai_prefix}list large files here")
            return
        stop_requested.clear()
        outcome = await run_ai_command(
            request,
            store=store,
            client=client,
            shell=shell,
            console=console,
            should_stop=stop_requested.is_set,
            max_steps=cfg.max_ai_steps,
            logger=logger,
        )
        logger.info("ai finished reason=%s steps=%d", outcome.reason, outcome.steps)
        return
    await run_shell_command(text, store=store, shell=shell, console=console, logger=logger)


async def async_main() -> int:
    args = build_parser().parse_args()
    cfg = apply_overrides(load_config(args.config), args)

    logger, log_path = create_session_logger(log_dir=args.log_dir, debug=args.debug)
    logger.info(
        "startup model=%s provider=%s policy=%s max_tokens=%d",
        cfg.model_name,
        cfg.provider,
        cfg.eviction_policy,
        cfg.history_max_tokens,
    )

    working_dir = Path(cfg.working_dir or Path.home()).expanduser()
    os.chdir(working_dir)

    console = Console()
    client = build_client(cfg, logger.getChild("chat"))
    store = build_store(cfg, logger.getChild("history"))
    store.init()
    shell = ShellSession(
        program=cfg.shell_program,
        args=cfg.shell_args,
        cwd=str(working_dir),
        command_timeout_seconds=cfg.command_timeout_seconds,
        logger=logger.getChild("shell"),
    )
    await shell.start()

    console.info("Welcome to aish - your interactive AI shell assistant!")
    console.info(f'Tip: start a line with "{cfg.ai_prefix}" to ask the assistant; anything else runs in the shell.')
    console.info(f"model={cfg.model_name} | log file: {log_path} | /help for commands\n")

    prompt_session: PromptSession[str] = PromptSession(history=InMemoryHistory())
    exit_watcher = asyncio.create_task(watch_shell_exit(shell, prompt_session))
    runner_logger = logger.getChild("runner")
    stop_requested = asyncio.Event()
    exit_code = 0
    try:
        while True:
            shell.raise_if_exited()
            try:
                line = await prompt_session.prompt_async(ANSI(prompt_text(store)))
            except KeyboardInterrupt:
                console.warning("(^C) Ctrl-C was pressed. Use /quit or Ctrl-D to exit.")
                continue
            except EOFError:
                break

            text = line.strip()
            if not text:
                continue
            if text in QUIT_COMMANDS:
                break
            shell.raise_if_exited()
            try:
                if handle_builtin(text, store=store, console=console, cfg=cfg):
                    continue
            except AishError as err:
                logger.error("built-in %r failed: %s", text, err)
                console.error(f"Error: {err}")
                continue

            handler_installed = _install_stop_handler(stop_requested, console)
            try:
                await dispatch(
                    text,
                    cfg=cfg,
                    store=store,
                    client=client,
                    shell=shell,
                    console=console,
                    stop_requested=stop_requested,
                    logger=runner_logger,
                )
            except ShellExitedError:
                raise
            except Exception as err:  # noqa: BLE001
                logger.exception("unexpected error while handling %r", text)
                console.error(f"Unexpected Error: {err}")
                try:
                    store.append(Turn(role=ROLE_USER, content=f"Error encountered: {err}"))
                except Exception as record_err:  # noqa: BLE001
                    logger.error("could not record error in history: %s", record_err)
            finally:
                if handler_installed:
                    _remove_stop_handler()
    except ShellExitedError as err:
        console.error(f"\n{err}")
        logger.error("fatal: %s", err)
        exit_code = err.returncode if err.returncode is not None else 1
    finally:
        exit_watcher.cancel()
        await shell.close()
        logger.info("shutdown exit_code=%d", exit_code)
    return exit_code


def main() -> int:
    return asyncio.run(async_main())


if __name__ == "__main__":
    raise SystemExit(main())
