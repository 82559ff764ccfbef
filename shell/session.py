"""One long-lived shell process driven as a request/response service.

Each command is written to the shell's stdin followed by ``echo <sentinel>``.
Both output streams are decoded incrementally and cut at the sentinel by a
:class:`SentinelBuffer`; the stdout sentinel completes the command.

Only stdout carries the sentinel. A command's stderr is whatever stderr text
has arrived by the time its stdout sentinel is seen. Stderr that is flushed
later than stdout is reported with the next command instead.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Sequence

from core.errors import ShellError, ShellExitedError, ShellTimeoutError
from core.types import CommandResult

from .framing import COMMAND_END_MARKER, SentinelBuffer

DEFAULT_INIT_SCRIPT = 'export PS1="PROMPT> "\n'


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_SENTINEL = "awaiting_sentinel"
    CLOSED = "closed"


class ShellSession:
    def __init__(
        self,
        *,
        program: str = "bash",
        args: Sequence[str] = (),
        cwd: str | None = None,
        env: Dict[str, str] | None = None,
        init_script: str = DEFAULT_INIT_SCRIPT,
        sentinel: str = COMMAND_END_MARKER,
        command_timeout_seconds: float | None = None,
        read_size: int = 4096,
        logger: logging.Logger | None = None,
    ) -> None:
        self.program = program
        self.args = list(args)
        self.cwd = cwd
        self.env = env
        self.init_script = init_script
        self.sentinel = sentinel
        self.command_timeout_seconds = command_timeout_seconds
        self.read_size = read_size
        self.logger = logger

        self._proc: asyncio.subprocess.Process | None = None
        self._reader_tasks: List[asyncio.Task[None]] = []
        self._stdout_buffer = SentinelBuffer(sentinel)
        self._stderr_buffer = SentinelBuffer(sentinel)
        self._stderr_segments: List[str] = []
        self._request_lock = asyncio.Lock()
        self._waiter: asyncio.Future[CommandResult] | None = None
        self._orphaned_sentinels = 0
        self._state = SessionState.IDLE
        self._started = False
        self._closing = False
        self._returncode: int | None = None
        self._exited = asyncio.Event()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def returncode(self) -> int | None:
        return self._returncode

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    async def __aenter__(self) -> "ShellSession":
        await self.start()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    async def start(self) -> None:
        if self._started:
            raise ShellError("Shell session already started")
        proc = await asyncio.create_subprocess_exec(
            self.program,
            *self.args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.cwd,
            env=self.env if self.env is not None else dict(os.environ),
            # Keep terminal Ctrl-C away from the shell; it only stops the AI loop.
            start_new_session=True,
        )
        if proc.stdin is None or proc.stdout is None or proc.stderr is None:
            raise ShellError(f"{self.program}: failed to open stdio pipes")
        self._proc = proc
        self._started = True
        self._reader_tasks = [
            asyncio.create_task(self._pump(proc.stdout, self._stdout_buffer, self._on_stdout_segment, self._on_exit)),
            asyncio.create_task(self._pump(proc.stderr, self._stderr_buffer, self._on_stderr_segment, None)),
        ]
        if self.logger:
            self.logger.info("shell started pid=%s program=%s cwd=%s", proc.pid, self.program, self.cwd or os.getcwd())
        if self.init_script:
            await self._write(self.init_script)

    async def run(self, command: str, timeout: float | None = None) -> CommandResult:
        """Run one command line and return its captured output.

        Calls are served one at a time. Non-empty stderr is returned, not
        raised. Raises :class:`ShellTimeoutError` when the deadline passes
        and :class:`ShellExitedError` when the shell has gone away.
        """
        deadline = timeout if timeout is not None else self.command_timeout_seconds
        async with self._request_lock:
            self._ensure_running()
            waiter: asyncio.Future[CommandResult] = asyncio.get_running_loop().create_future()
            self._waiter = waiter
            self._state = SessionState.AWAITING_SENTINEL
            written = False
            if self.logger:
                self.logger.debug("shell run command=%r timeout=%s", command, deadline)
            try:
                await self._write(f"{command}\necho {self.sentinel}\n")
                written = True
                if deadline is None:
                    result = await waiter
                else:
                    result = await asyncio.wait_for(waiter, timeout=deadline)
            except asyncio.TimeoutError:
                self._orphaned_sentinels += 1
                if self.logger:
                    self.logger.warning("shell command timed out after %ss: %r", deadline, command)
                raise ShellTimeoutError(command, deadline) from None
            except asyncio.CancelledError:
                if written and not waiter.done():
                    self._orphaned_sentinels += 1
                raise
            finally:
                self._waiter = None
                if self._state is SessionState.AWAITING_SENTINEL:
                    self._state = SessionState.IDLE
            if self.logger:
                self.logger.debug(
                    "shell finished stdout_chars=%d stderr_chars=%d",
                    len(result.stdout),
                    len(result.stderr),
                )
            return result

    async def wait_closed(self) -> None:
        """Block until the shell process is gone, whether it exited or was closed."""
        await self._exited.wait()

    def raise_if_exited(self) -> None:
        if self._state is SessionState.CLOSED:
            raise ShellExitedError(self._returncode)

    async def close(self) -> None:
        self._closing = True
        proc = self._proc
        if proc is not None and proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()
        if proc is not None and proc.returncode is None:
            try:
                proc.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(proc.wait(), timeout=2)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
        for task in self._reader_tasks:
            if not task.done():
                task.cancel()
        for task in self._reader_tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._reader_tasks = []
        self._mark_closed(proc.returncode if proc is not None else None)

    def _ensure_running(self) -> None:
        if not self._started:
            raise ShellError("Shell session not started")
        self.raise_if_exited()

    async def _write(self, text: str) -> None:
        proc = self._proc
        if proc is None or proc.stdin is None or proc.stdin.is_closing():
            raise ShellExitedError(self._returncode)
        try:
            proc.stdin.write(text.encode("utf-8"))
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as err:
            raise ShellExitedError(proc.returncode) from err

    async def _pump(
        self,
        stream: asyncio.StreamReader,
        buffer: SentinelBuffer,
        on_segment: Callable[[str], None],
        on_eof: Callable[[], Awaitable[None]] | None,
    ) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(self.read_size)
            text = decoder.decode(chunk, final=not chunk)
            for segment in buffer.feed(text):
                on_segment(segment)
            if not chunk:
                break
        if on_eof is not None:
            await on_eof()

    def _on_stdout_segment(self, stdout: str) -> None:
        stderr_parts = [*self._stderr_segments, self._stderr_buffer.drain()]
        self._stderr_segments = []
        stderr = "\n".join(part for part in stderr_parts if part)

        if self._orphaned_sentinels > 0:
            self._orphaned_sentinels -= 1
            if self.logger:
                self.logger.warning(
                    "discarded output of a timed-out command stdout_chars=%d stderr_chars=%d",
                    len(stdout),
                    len(stderr),
                )
            return

        waiter = self._waiter
        if waiter is None or waiter.done():
            if self.logger:
                self.logger.warning("sentinel seen with no command in flight; output dropped: %r", stdout[:200])
            return
        waiter.set_result(CommandResult(stdout=stdout, stderr=stderr))

    def _on_stderr_segment(self, stderr: str) -> None:
        if stderr:
            self._stderr_segments.append(stderr)

    async def _on_exit(self) -> None:
        returncode = await self._proc.wait() if self._proc is not None else None
        if self.logger and not self._closing:
            self.logger.error("shell process exited code=%s", returncode)
        self._mark_closed(returncode)

    def _mark_closed(self, returncode: int | None) -> None:
        self._returncode = returncode
        self._state = SessionState.CLOSED
        self._exited.set()
        waiter = self._waiter
        if waiter is not None and not waiter.done():
            waiter.set_exception(ShellExitedError(returncode))
