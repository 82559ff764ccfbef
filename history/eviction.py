from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Sequence

from core.errors import MissingSystemTurnError
from core.types import ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_USER, Turn

from .tokenizer import Tokenizer


def find_system_index(turns: Sequence[Turn]) -> int:
    indexes = [idx for idx, turn in enumerate(turns) if turn.role == ROLE_SYSTEM]
    if not indexes:
        raise MissingSystemTurnError()
    if len(indexes) > 1:
        raise ValueError(f"Transcript holds {len(indexes)} system turns; exactly one is allowed.")
    return indexes[0]


def _drop_oldest_non_system(turns: List[Turn]) -> bool:
    for idx, turn in enumerate(turns):
        if turn.role != ROLE_SYSTEM:
            del turns[idx]
            return True
    return False


class EvictionPolicy(ABC):
    name = ""

    def __init__(self, tokenizer: Tokenizer) -> None:
        self.tokenizer = tokenizer

    @abstractmethod
    def trim(self, turns: Sequence[Turn], max_tokens: int) -> List[Turn]:
        """Return a new transcript that fits ``max_tokens`` where achievable.

        The system turn always survives and survivors keep their order.
        Raises :class:`MissingSystemTurnError` when there is no system turn
        and ``ValueError`` when there is more than one.
        """
        raise NotImplementedError


class SimpleFifoPolicy(EvictionPolicy):
    name = "simple_fifo"

    def trim(self, turns: Sequence[Turn], max_tokens: int) -> List[Turn]:
        find_system_index(turns)
        kept = list(turns)
        total = self.tokenizer.count_tokens(kept)
        while total > max_tokens and len(kept) > 1:
            if not _drop_oldest_non_system(kept):
                break
            total = self.tokenizer.count_tokens(kept)
        return kept


class LatestInteractionPolicy(EvictionPolicy):
    """FIFO eviction that never gives up the latest exchange.

    The last user turn and the first assistant turn answering it are
    located in the untouched input before anything is removed. When
    FIFO eviction down to three turns still overflows the budget, the
    result is rebuilt from the input as system, user, assistant, so
    earlier deletions cannot change which exchange counts as latest.
    """

    name = "latest_interaction"
    min_turns = 3

    def trim(self, turns: Sequence[Turn], max_tokens: int) -> List[Turn]:
        system_idx = find_system_index(turns)
        last_user_idx, reply_idx = self._latest_interaction(turns)

        kept = list(turns)
        total = self.tokenizer.count_tokens(kept)
        if total <= max_tokens:
            return kept

        while total > max_tokens and len(kept) > self.min_turns:
            if not _drop_oldest_non_system(kept):
                break
            total = self.tokenizer.count_tokens(kept)
        if total <= max_tokens:
            return kept

        final = [turns[system_idx]]
        if last_user_idx is not None:
            final.append(turns[last_user_idx])
        if reply_idx is not None:
            final.append(turns[reply_idx])
        return final

    @staticmethod
    def _latest_interaction(turns: Sequence[Turn]) -> tuple[int | None, int | None]:
        last_user_idx: int | None = None
        for idx in range(len(turns) - 1, -1, -1):
            if turns[idx].role == ROLE_USER:
                last_user_idx = idx
                break
        if last_user_idx is None:
            return None, None
        for idx in range(last_user_idx + 1, len(turns)):
            if turns[idx].role == ROLE_ASSISTANT:
                return last_user_idx, idx
        return last_user_idx, None


POLICIES = {
    SimpleFifoPolicy.name: SimpleFifoPolicy,
    LatestInteractionPolicy.name: LatestInteractionPolicy,
}


def build_policy(name: str, tokenizer: Tokenizer) -> EvictionPolicy:
    try:
        policy_cls = POLICIES[name]
    except KeyError:
        raise ValueError(f"Unknown eviction policy: {name}") from None
    return policy_cls(tokenizer)
