from __future__ import annotations

import asyncio
import io
import logging
import unittest
from typing import List, Sequence

from cli import apply_overrides, build_parser, dispatch, handle_builtin, prompt_text, watch_shell_exit
from core.config import AppConfig
from core.errors import HistoryStorageError, ShellExitedError
from core.types import CommandResult, Turn
from history.eviction import SimpleFifoPolicy
from history.storage import MemoryHistoryStorage
from history.store import TranscriptStore
from history.tokenizer import EstimatingTokenizer
from runners.console import Console
from test_runners import ScriptedChatClient, ScriptedShell, reply


class FailingStorage(MemoryHistoryStorage):
    def save(self, turns: Sequence[Turn]) -> None:
        raise HistoryStorageError("Failed to write history to /nope/h.json: [Errno 17] File exists")


class ParserTests(unittest.TestCase):
    def test_overrides_replace_config_values(self) -> None:
        args = build_parser().parse_args(
            ["--policy", "simple_fifo", "--max-tokens", "512", "--command-timeout", "7.5"],
        )
        cfg = apply_overrides(AppConfig(), args)
        self.assertEqual(cfg.eviction_policy, "simple_fifo")
        self.assertEqual(cfg.history_max_tokens, 512)
        self.assertEqual(cfg.command_timeout_seconds, 7.5)

    def test_no_flags_keep_config(self) -> None:
        cfg = AppConfig(model_name="m")
        self.assertIs(apply_overrides(cfg, build_parser().parse_args([])), cfg)

    def test_non_positive_numbers_ignored(self) -> None:
        args = build_parser().parse_args(["--max-tokens", "0", "--command-timeout", "-1"])
        cfg = apply_overrides(AppConfig(), args)
        self.assertEqual(cfg.history_max_tokens, AppConfig().history_max_tokens)
        self.assertIsNone(cfg.command_timeout_seconds)


class BuiltinTests(unittest.TestCase):
    def setUp(self) -> None:
        tokenizer = EstimatingTokenizer()
        self.storage = MemoryHistoryStorage()
        self.store = TranscriptStore(
            storage=self.storage,
            policy=SimpleFifoPolicy(tokenizer),
            tokenizer=tokenizer,
            max_tokens=1000,
            system_prompt="sys",
        )
        self.store.init()
        self.out = io.StringIO()
        self.console = Console(stream=self.out, color=False)
        self.cfg = AppConfig()

    def handle(self, text: str) -> bool:
        return handle_builtin(text, store=self.store, console=self.console, cfg=self.cfg)

    def test_tokens_reports_budget(self) -> None:
        self.assertTrue(self.handle("/tokens"))
        self.assertIn(f"{self.store.token_count()} / 1000 tokens, 1 turns", self.out.getvalue())

    def test_history_truncates_long_turns(self) -> None:
        self.store.append(Turn("user", "x" * 500))
        self.assertTrue(self.handle("/history"))
        lines = self.out.getvalue().splitlines()
        self.assertEqual(lines[0], "[system] sys")
        self.assertTrue(lines[1].startswith("[user] xxx"))
        self.assertTrue(lines[1].endswith("..."))

    def test_clear_resets_transcript(self) -> None:
        self.store.append(Turn("user", "pwd"))
        self.assertTrue(self.handle("/clear"))
        self.assertEqual(self.store.transcript, (Turn("system", "sys"),))
        self.assertEqual(self.storage.load(), [Turn("system", "sys")])

    def test_help_and_unknown(self) -> None:
        self.assertTrue(self.handle("/help"))
        self.assertIn("/tokens", self.out.getvalue())
        self.assertFalse(self.handle("/list files"))
        self.assertFalse(self.handle("ls"))

    def test_prompt_shows_token_usage(self) -> None:
        self.assertIn(f"(t:{self.store.token_count()}:1000) aish", prompt_text(self.store))

    def test_clear_with_failing_storage_reports_and_continues(self) -> None:
        tokenizer = EstimatingTokenizer()
        store = TranscriptStore(
            storage=FailingStorage([Turn("system", "sys"), Turn("user", "pwd")]),
            policy=SimpleFifoPolicy(tokenizer),
            tokenizer=tokenizer,
            max_tokens=1000,
            system_prompt="sys",
        )
        store.init()

        handled = handle_builtin("/clear", store=store, console=self.console, cfg=self.cfg)

        self.assertTrue(handled)
        self.assertEqual(store.transcript, (Turn("system", "sys"),))
        self.assertIn("History cleared in memory only", self.out.getvalue())
        self.assertIn("File exists", self.out.getvalue())


class FakeApp:
    def __init__(self, running: bool) -> None:
        self.is_running = running
        self.exits: List[BaseException] = []

    def exit(self, *, exception: BaseException) -> None:
        self.exits.append(exception)


class FakePromptSession:
    def __init__(self, running: bool) -> None:
        self.app = FakeApp(running)


class ClosableShell:
    def __init__(self) -> None:
        self.closed = asyncio.Event()
        self.returncode: int | None = None

    async def wait_closed(self) -> None:
        await self.closed.wait()


class WatchShellExitTests(unittest.IsolatedAsyncioTestCase):
    async def test_pending_prompt_is_ended_when_shell_dies(self) -> None:
        shell = ClosableShell()
        prompt_session = FakePromptSession(running=True)
        watcher = asyncio.create_task(watch_shell_exit(shell, prompt_session))  # type: ignore[arg-type]
        await asyncio.sleep(0)
        self.assertFalse(watcher.done())

        shell.returncode = -9
        shell.closed.set()
        await asyncio.wait_for(watcher, timeout=1)

        self.assertEqual(len(prompt_session.app.exits), 1)
        error = prompt_session.app.exits[0]
        self.assertIsInstance(error, ShellExitedError)
        self.assertEqual(error.returncode, -9)  # type: ignore[attr-defined]

    async def test_idle_prompt_is_left_alone(self) -> None:
        shell = ClosableShell()
        shell.closed.set()
        prompt_session = FakePromptSession(running=False)

        await watch_shell_exit(shell, prompt_session)  # type: ignore[arg-type]

        self.assertEqual(prompt_session.app.exits, [])


class DispatchTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        tokenizer = EstimatingTokenizer()
        self.store = TranscriptStore(
            storage=MemoryHistoryStorage(),
            policy=SimpleFifoPolicy(tokenizer),
            tokenizer=tokenizer,
            max_tokens=100_000,
            system_prompt="sys",
        )
        self.store.init()
        self.out = io.StringIO()
        self.console = Console(stream=self.out, color=False)
        self.cfg = AppConfig()
        self.logger = logging.getLogger("aish.tests.dispatch")

    async def run_line(self, text: str, client: ScriptedChatClient, shell: ScriptedShell) -> asyncio.Event:
        stop_requested = asyncio.Event()
        stop_requested.set()
        await dispatch(
            text,
            cfg=self.cfg,
            store=self.store,
            client=client,  # type: ignore[arg-type]
            shell=shell,  # type: ignore[arg-type]
            console=self.console,
            stop_requested=stop_requested,
            logger=self.logger,
        )
        return stop_requested

    async def test_prefixed_line_goes_to_assistant(self) -> None:
        client = ScriptedChatClient([reply("ls"), reply(None, conclusion="done listing")])
        shell = ScriptedShell([CommandResult(stdout="a.txt")])

        stop_requested = await self.run_line("/  list the files ", client, shell)

        self.assertFalse(stop_requested.is_set())
        self.assertEqual(len(client.seen), 2)
        self.assertEqual(client.seen[0][-1], Turn("user", "list the files"))
        self.assertEqual(shell.commands, ["ls"])

    async def test_bare_prefix_only_warns(self) -> None:
        client = ScriptedChatClient([])
        shell = ScriptedShell([])

        await self.run_line("/   ", client, shell)

        self.assertEqual(client.seen, [])
        self.assertEqual(shell.commands, [])
        self.assertEqual(len(self.store.transcript), 1)
        self.assertIn("Type a request after '/'", self.out.getvalue())

    async def test_other_lines_go_to_shell(self) -> None:
        client = ScriptedChatClient([])
        shell = ScriptedShell([CommandResult(stdout="/home/me")])

        await self.run_line("pwd", client, shell)

        self.assertEqual(client.seen, [])
        self.assertEqual(shell.commands, ["pwd"])
        self.assertEqual(self.store.transcript[-1], Turn("assistant", 'Command output: "/home/me"'))


if __name__ == "__main__":
    unittest.main()
