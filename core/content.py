from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Dict

from .errors import ReplyFormatError

_REPLY_KEYS = ("reasoning", "conclusion", "command")
_PAIR_PATTERN = re.compile(r'"(\w+)":\s*(?:"((?:[^"\\]|\\.)*)"|null)')


@dataclass(frozen=True)
class Reply:
    reasoning: str = ""
    conclusion: str = ""
    command: str | None = None

    @property
    def next_command(self) -> str | None:
        command = (self.command or "").strip()
        if not command or command.lower() == "done":
            return None
        return command

    @property
    def is_done(self) -> bool:
        return self.next_command is None

    def to_json(self) -> str:
        payload: Dict[str, object] = {
            "reasoning": self.reasoning,
            "conclusion": self.conclusion,
            "command": self.command,
        }
        return json.dumps(payload, ensure_ascii=False)


def _unescape(value: str) -> str:
    return value.replace("\\\\", "\\").replace("\\n", "\n").replace("\\t", "\t").replace('\\"', '"')


def _parse_fallback(text: str) -> Reply | None:
    found: Dict[str, str | None] = {}
    for match in _PAIR_PATTERN.finditer(text):
        key, raw_value = match.group(1), match.group(2)
        if key not in _REPLY_KEYS:
            continue
        found[key] = _unescape(raw_value) if raw_value is not None else None
    if not found:
        return None
    return Reply(
        reasoning=found.get("reasoning") or "",
        conclusion=found.get("conclusion") or "",
        command=found.get("command"),
    )


def parse_reply(text: str) -> Reply:
    """Parse an assistant message into a :class:`Reply`.

    Strict JSON is tried first. Models often wrap the object in prose or
    code fences, so a regex pass over ``"key": "value"`` pairs follows.
    Raises :class:`ReplyFormatError` when neither finds any reply field.
    """
    stripped = text.strip()
    if not stripped:
        raise ReplyFormatError("Invalid or empty response from AI.")

    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError:
        parsed = None

    if isinstance(parsed, dict) and any(key in parsed for key in _REPLY_KEYS):
        command = parsed.get("command")
        return Reply(
            reasoning=str(parsed.get("reasoning") or ""),
            conclusion=str(parsed.get("conclusion") or ""),
            command=None if command is None else str(command),
        )

    reply = _parse_fallback(stripped)
    if reply is None:
        raise ReplyFormatError(f"Response is not in the reasoning/conclusion/command format: {stripped[:200]}")
    return reply
