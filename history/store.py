from __future__ import annotations

import logging
from typing import List, Tuple

from core.prompts import SYS_PROMPT
from core.types import ROLE_SYSTEM, Message, Turn, to_messages

from .eviction import EvictionPolicy
from .storage import HistoryStorage
from .tokenizer import Tokenizer


class TranscriptStore:
    def __init__(
        self,
        *,
        storage: HistoryStorage,
        policy: EvictionPolicy,
        tokenizer: Tokenizer,
        max_tokens: int,
        system_prompt: str = SYS_PROMPT,
        logger: logging.Logger | None = None,
    ) -> None:
        if max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        self.storage = storage
        self.policy = policy
        self.tokenizer = tokenizer
        self.max_tokens = max_tokens
        self.system_prompt = system_prompt
        self.logger = logger
        self._turns: List[Turn] = [self._system_turn()]

    @property
    def transcript(self) -> Tuple[Turn, ...]:
        return tuple(self._turns)

    def messages(self) -> List[Message]:
        return to_messages(self._turns)

    def token_count(self) -> int:
        return self.tokenizer.count_tokens(self._turns)

    def init(self) -> None:
        loaded = self.storage.load()
        if not loaded:
            self._turns = [self._system_turn()]
            if self.logger:
                self.logger.info("history seeded with system prompt")
            return
        self._turns = self._normalize(loaded)
        if self.logger:
            self.logger.info("history loaded turns=%d tokens=%d", len(self._turns), self.token_count())

    def append(self, turn: Turn) -> None:
        if turn.role == ROLE_SYSTEM:
            raise ValueError("The system turn is fixed; append user or assistant turns only.")
        self._turns.append(turn)
        before = len(self._turns)
        self._turns = self.policy.trim(self._turns, self.max_tokens)
        if self.logger and len(self._turns) != before:
            self.logger.info(
                "history trimmed policy=%s turns=%d->%d max_tokens=%d",
                self.policy.name,
                before,
                len(self._turns),
                self.max_tokens,
            )
        self.storage.save(self._turns)

    def reset(self) -> None:
        self._turns = [self._system_turn()]
        self.storage.save(self._turns)

    def _system_turn(self) -> Turn:
        return Turn(role=ROLE_SYSTEM, content=self.system_prompt)

    def _normalize(self, turns: List[Turn]) -> List[Turn]:
        system_seen = False
        normalized: List[Turn] = []
        for turn in turns:
            if turn.role == ROLE_SYSTEM:
                if system_seen:
                    if self.logger:
                        self.logger.warning("dropping extra system turn from loaded history")
                    continue
                system_seen = True
            normalized.append(turn)
        if not system_seen:
            normalized.insert(0, self._system_turn())
        return normalized
