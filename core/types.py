from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Protocol, Sequence


Message = Dict[str, object]

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLES = (ROLE_SYSTEM, ROLE_USER, ROLE_ASSISTANT)


@dataclass(frozen=True)
class Turn:
    role: str
    content: str

    def to_message(self) -> Message:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_message(cls, raw: Message) -> "Turn":
        role = str(raw.get("role", ""))
        if role not in ROLES:
            raise ValueError(f"Unsupported turn role: {role!r}")
        content = raw.get("content")
        return cls(role=role, content="" if content is None else str(content))


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str = ""

    @property
    def failed(self) -> bool:
        return bool(self.stderr)


class ChatClient(Protocol):
    async def chat(self, turns: Sequence[Turn]) -> Dict[str, object]: ...

    async def summarize_error(self, text: str) -> str: ...


def to_messages(turns: Sequence[Turn]) -> List[Message]:
    return [turn.to_message() for turn in turns]
