from __future__ import annotations


class AishError(RuntimeError):
    pass


class ChatServiceError(AishError):
    pass


class ReplyFormatError(AishError):
    pass


class ShellError(AishError):
    pass


class ShellExitedError(ShellError):
    def __init__(self, returncode: int | None) -> None:
        self.returncode = returncode
        super().__init__(f"Shell process exited with code {returncode}")


class ShellTimeoutError(ShellError):
    def __init__(self, command: str, timeout: float) -> None:
        self.command = command
        self.timeout = timeout
        super().__init__(f"Command timed out after {timeout:g} seconds: {command}")


class HistoryStorageError(AishError):
    pass


class MissingSystemTurnError(ValueError):
    def __init__(self) -> None:
        super().__init__("System prompt is missing in the provided messages.")
