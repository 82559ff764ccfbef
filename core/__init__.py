from .client import OpenAICompatChatClient, extract_content
from .config import AppConfig, load_config
from .content import Reply, parse_reply
from .errors import (
    AishError,
    ChatServiceError,
    HistoryStorageError,
    MissingSystemTurnError,
    ReplyFormatError,
    ShellError,
    ShellExitedError,
    ShellTimeoutError,
)
from .logging_utils import create_session_logger
from .prompts import SYS_PROMPT
from .types import ChatClient, CommandResult, Message, Turn

__all__ = [
    "AishError",
    "AppConfig",
    "ChatClient",
    "ChatServiceError",
    "CommandResult",
    "HistoryStorageError",
    "Message",
    "MissingSystemTurnError",
    "OpenAICompatChatClient",
    "Reply",
    "ReplyFormatError",
    "SYS_PROMPT",
    "ShellError",
    "ShellExitedError",
    "ShellTimeoutError",
    "Turn",
    "create_session_logger",
    "extract_content",
    "load_config",
    "parse_reply",
]
