from __future__ import annotations

import asyncio
import os
import shutil
import signal
import tempfile
import unittest
from pathlib import Path

from core.errors import ShellError, ShellExitedError, ShellTimeoutError
from core.types import CommandResult
from shell.session import SessionState, ShellSession


@unittest.skipIf(shutil.which("bash") is None, "bash is required")
class ShellSessionTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.shell = ShellSession(program="bash")
        await self.shell.start()

    async def asyncTearDown(self) -> None:
        await self.shell.close()

    async def test_captures_stdout(self) -> None:
        result = await self.shell.run("echo hi")
        self.assertEqual(result, CommandResult(stdout="hi", stderr=""))
        self.assertFalse(result.failed)

    async def test_multiline_output_is_trimmed(self) -> None:
        result = await self.shell.run("printf '\\n  x\\ny\\n\\n'")
        self.assertEqual(result.stdout, "x\ny")

    async def test_captures_stderr(self) -> None:
        # The pause lets the stderr reader catch up before the sentinel is echoed.
        result = await self.shell.run("echo oops 1>&2; sleep 0.2")
        self.assertEqual(result.stdout, "")
        self.assertEqual(result.stderr, "oops")
        self.assertTrue(result.failed)

    async def test_state_persists_between_commands(self) -> None:
        await self.shell.run("export AISH_TEST_VALUE=kept")
        result = await self.shell.run("echo $AISH_TEST_VALUE")
        self.assertEqual(result.stdout, "kept")

        with tempfile.TemporaryDirectory(prefix="aish-shell-") as temp_dir:
            await self.shell.run(f"cd '{temp_dir}'")
            result = await self.shell.run("pwd -P")
            self.assertEqual(result.stdout, str(Path(temp_dir).resolve()))
            await self.shell.run("cd /")

    async def test_concurrent_calls_are_served_in_order(self) -> None:
        results = await asyncio.gather(
            self.shell.run("sleep 0.1; echo first"),
            self.shell.run("echo second"),
            self.shell.run("echo third"),
        )
        self.assertEqual([r.stdout for r in results], ["first", "second", "third"])

    async def test_state_returns_to_idle(self) -> None:
        self.assertIs(self.shell.state, SessionState.IDLE)
        task = asyncio.create_task(self.shell.run("sleep 0.2; echo done"))
        await asyncio.sleep(0.05)
        self.assertIs(self.shell.state, SessionState.AWAITING_SENTINEL)
        await task
        self.assertIs(self.shell.state, SessionState.IDLE)

    async def test_timed_out_output_does_not_leak_into_next_command(self) -> None:
        with self.assertRaises(ShellTimeoutError) as ctx:
            await self.shell.run("sleep 0.5; echo late", timeout=0.1)
        self.assertEqual(ctx.exception.command, "sleep 0.5; echo late")
        self.assertIs(self.shell.state, SessionState.IDLE)

        result = await self.shell.run("echo next")
        self.assertEqual(result.stdout, "next")

    async def test_exit_closes_the_session(self) -> None:
        with self.assertRaises(ShellExitedError) as ctx:
            await self.shell.run("exit 3")
        self.assertEqual(ctx.exception.returncode, 3)
        self.assertIs(self.shell.state, SessionState.CLOSED)
        self.assertEqual(self.shell.returncode, 3)

        with self.assertRaises(ShellExitedError):
            await self.shell.run("echo unreachable")

    async def test_idle_shell_death_is_reported(self) -> None:
        self.assertIsNone(self.shell.raise_if_exited())
        pid = self.shell.pid
        self.assertIsNotNone(pid)
        os.kill(pid, signal.SIGKILL)  # type: ignore[arg-type]

        await asyncio.wait_for(self.shell.wait_closed(), timeout=5)

        self.assertIs(self.shell.state, SessionState.CLOSED)
        self.assertEqual(self.shell.returncode, -signal.SIGKILL)
        with self.assertRaises(ShellExitedError) as ctx:
            self.shell.raise_if_exited()
        self.assertEqual(ctx.exception.returncode, -signal.SIGKILL)


@unittest.skipIf(shutil.which("bash") is None, "bash is required")
class ShellSessionLifecycleTests(unittest.IsolatedAsyncioTestCase):
    async def test_run_before_start_raises(self) -> None:
        shell = ShellSession()
        with self.assertRaises(ShellError):
            await shell.run("echo hi")

    async def test_context_manager_closes_process(self) -> None:
        async with ShellSession(command_timeout_seconds=5) as shell:
            self.assertIsNotNone(shell.pid)
            result = await shell.run("echo inside")
            self.assertEqual(result.stdout, "inside")
        self.assertIs(shell.state, SessionState.CLOSED)

        with self.assertRaises(ShellExitedError):
            await shell.run("echo after")

    async def test_start_twice_raises(self) -> None:
        async with ShellSession() as shell:
            with self.assertRaises(ShellError):
                await shell.start()

    async def test_custom_working_directory(self) -> None:
        with tempfile.TemporaryDirectory(prefix="aish-shell-") as temp_dir:
            async with ShellSession(cwd=temp_dir) as shell:
                result = await shell.run("pwd -P")
            self.assertEqual(result.stdout, str(Path(temp_dir).resolve()))


if __name__ == "__main__":
    unittest.main()
