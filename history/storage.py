from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Sequence

from core.errors import HistoryStorageError
from core.types import Turn, to_messages


class HistoryStorage(ABC):
    @abstractmethod
    def load(self) -> List[Turn] | None:
        """Return the stored transcript, or None when nothing usable is stored."""
        raise NotImplementedError

    @abstractmethod
    def save(self, turns: Sequence[Turn]) -> None:
        raise NotImplementedError


class MemoryHistoryStorage(HistoryStorage):
    def __init__(self, turns: Sequence[Turn] | None = None) -> None:
        self._turns: List[Turn] | None = list(turns) if turns is not None else None
        self.save_count = 0

    def load(self) -> List[Turn] | None:
        return list(self._turns) if self._turns is not None else None

    def save(self, turns: Sequence[Turn]) -> None:
        self._turns = list(turns)
        self.save_count += 1


class FileHistoryStorage(HistoryStorage):
    def __init__(self, path: str | Path, *, logger: logging.Logger | None = None) -> None:
        self.path = Path(path).expanduser()
        self.logger = logger

    def load(self) -> List[Turn] | None:
        if not self.path.exists():
            return None
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(raw, list):
                raise ValueError("history file must hold a JSON array")
            return [Turn.from_message(item) for item in raw if isinstance(item, dict)]
        except (OSError, ValueError) as err:
            if self.logger:
                self.logger.warning("history file %s unreadable, starting fresh: %s", self.path, err)
            return None

    def save(self, turns: Sequence[Turn]) -> None:
        data = json.dumps(to_messages(turns), ensure_ascii=False, indent=2)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(data, encoding="utf-8")
        except OSError as err:
            raise HistoryStorageError(f"Failed to write history to {self.path}: {err}") from err
        if self.logger:
            self.logger.debug("history saved path=%s turns=%d", self.path, len(turns))
