from __future__ import annotations

from typing import List

COMMAND_END_MARKER = "__COMMAND_END__"
BACKSPACE = "\b"


def resolve_backspaces(text: str) -> str:
    chars: List[str] = []
    for ch in text:
        if ch == BACKSPACE:
            if chars:
                chars.pop()
        else:
            chars.append(ch)
    return "".join(chars)


class SentinelBuffer:
    """Accumulates one output stream and cuts it at each sentinel.

    ``feed`` returns the completed segments, trimmed, in arrival order.
    Text after the last sentinel stays pending for the next chunk.
    """

    def __init__(self, sentinel: str = COMMAND_END_MARKER) -> None:
        if not sentinel:
            raise ValueError("sentinel must be non-empty")
        self.sentinel = sentinel
        self._pending = ""

    @property
    def pending(self) -> str:
        return self._pending

    def feed(self, chunk: str) -> List[str]:
        cleaned = resolve_backspaces(self._pending + chunk)
        segments: List[str] = []
        while True:
            head, found, tail = cleaned.partition(self.sentinel)
            if not found:
                break
            segments.append(head.strip())
            cleaned = tail
        self._pending = cleaned
        return segments

    def drain(self) -> str:
        text = self._pending.strip()
        self._pending = ""
        return text
