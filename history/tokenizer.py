from __future__ import annotations

import math
from abc import ABC, abstractmethod
from functools import cached_property
from typing import Sequence

import tiktoken

from core.types import Turn


def serialize_turns(turns: Sequence[Turn]) -> str:
    return "\n".join(f"<|{turn.role}|> {turn.content}" for turn in turns)


class Tokenizer(ABC):
    @abstractmethod
    def count_text(self, text: str) -> int:
        raise NotImplementedError

    def count_tokens(self, turns: Sequence[Turn]) -> int:
        return self.count_text(serialize_turns(turns))


class TiktokenTokenizer(Tokenizer):
    def __init__(self, encoding_name: str = "gpt2") -> None:
        self.encoding_name = encoding_name

    @cached_property
    def encoding(self) -> tiktoken.Encoding:
        return tiktoken.get_encoding(self.encoding_name)

    def count_text(self, text: str) -> int:
        # Role tags look like special tokens but must be counted as plain text.
        return len(self.encoding.encode(text, disallowed_special=()))


class EstimatingTokenizer(Tokenizer):
    """Offline fallback: roughly one token per four characters."""

    def __init__(self, chars_per_token: int = 4) -> None:
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token

    def count_text(self, text: str) -> int:
        if not text:
            return 0
        return int(math.ceil(len(text) / self.chars_per_token))


def build_tokenizer(name: str, *, encoding_name: str = "gpt2") -> Tokenizer:
    if name == "tiktoken":
        return TiktokenTokenizer(encoding_name)
    if name == "estimate":
        return EstimatingTokenizer()
    raise ValueError(f"Unknown tokenizer: {name}")
