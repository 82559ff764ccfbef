from __future__ import annotations

import os
import sys
from typing import TextIO


class Console:
    """Terminal output for the REPL and the command runners."""

    def __init__(self, *, stream: TextIO | None = None, color: bool | None = None) -> None:
        self.stream = stream or sys.stdout
        if color is None:
            color = self.stream.isatty() and os.environ.get("NO_COLOR") is None
        self.color = color

    def _paint(self, text: str, code: str) -> str:
        if not self.color:
            return text
        return f"\033[{code}m{text}\033[0m"

    def _write(self, text: str) -> None:
        print(text, file=self.stream, flush=True)

    def info(self, text: str) -> None:
        self._write(self._paint(text, "32"))

    def warning(self, text: str) -> None:
        self._write(self._paint(text, "33"))

    def error(self, text: str) -> None:
        self._write(self._paint(text, "31"))

    def output(self, text: str) -> None:
        self._write(self._paint(text, "97"))

    def reasoning(self, text: str) -> None:
        self._write(f"🤔 {self._paint(text, '90')}")

    def conclusion(self, text: str) -> None:
        self._write(f"✅ {self._paint(text, '37')}")

    def command(self, text: str) -> None:
        self._write(f"🛠️  {self._paint(text, '37')}")

    def working(self) -> None:
        self._write(self._paint("⚙️  working...", "2;37"))
