from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from .prompts import SYS_PROMPT

DEFAULT_CONFIG_PATH = "~/.aish/config.json"
DEFAULT_HISTORY_FILE = "~/.aish_history.json"
DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL_NAME = "qwen/qwen-2.5-coder-32b-instruct"
DEFAULT_MAX_TOKENS = 16384

SUPPORTED_POLICIES = {"latest_interaction", "simple_fifo"}
SUPPORTED_TOKENIZERS = {"tiktoken", "estimate"}


@dataclass(frozen=True)
class AppConfig:
    provider: str = "openai_compat"
    model_name: str = DEFAULT_MODEL_NAME
    base_url: str = DEFAULT_BASE_URL
    api_key_env: str | None = "AISH_API_KEY"
    api_key: str | None = None
    timeout_seconds: int = 60
    temperature: float = 0.2
    n: int = 1
    provider_preferences: Dict[str, object] | None = None
    history_file: str = DEFAULT_HISTORY_FILE
    history_max_tokens: int = DEFAULT_MAX_TOKENS
    eviction_policy: str = "latest_interaction"
    tokenizer: str = "tiktoken"
    token_encoding: str = "gpt2"
    shell_program: str = "bash"
    shell_args: List[str] = field(default_factory=list)
    working_dir: str | None = None
    command_timeout_seconds: float | None = None
    ai_prefix: str = "/"
    max_ai_steps: int = 25
    system_prompt: str = SYS_PROMPT

    @property
    def history_path(self) -> Path:
        return Path(self.history_file).expanduser()


_ENV_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _is_env_var_name(value: str) -> bool:
    return bool(_ENV_NAME_PATTERN.match(value))


def _str_or_none(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _int_or_default(value: object, default: int, *, minimum: int) -> int:
    try:
        parsed = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    return max(minimum, parsed)


def _positive_float_or_none(value: object) -> float | None:
    if value is None:
        return None
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if parsed <= 0:
        return None
    return parsed


def read_raw_config(path: str | None) -> Dict[str, object]:
    if not path:
        return {}
    target = Path(path).expanduser()
    if not target.exists():
        return {}
    raw = json.loads(target.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"Config file must hold a JSON object: {target}")
    return raw


def load_config(path: str | None = DEFAULT_CONFIG_PATH) -> AppConfig:
    raw = read_raw_config(path)

    api_key = _str_or_none(raw.get("api_key"))
    api_key_env: str | None = None
    candidate = _str_or_none(raw.get("api_key_env"))
    if candidate:
        if _is_env_var_name(candidate):
            api_key_env = candidate
        elif api_key is None:
            # A literal key placed under api_key_env is treated as the key itself.
            api_key = candidate
    if api_key_env is None:
        api_key_env = "AISH_API_KEY"

    base_url = _str_or_none(raw.get("base_url")) or os.environ.get("AISH_BASE_URL", "").strip() or DEFAULT_BASE_URL
    model_name = _str_or_none(raw.get("model_name")) or os.environ.get("AISH_MODEL", "").strip() or DEFAULT_MODEL_NAME

    try:
        temperature = float(raw.get("temperature", 0.2))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        temperature = 0.2
    temperature = min(2.0, max(0.0, temperature))

    preferences_raw = raw.get("provider_preferences")
    provider_preferences = dict(preferences_raw) if isinstance(preferences_raw, dict) else None

    policy = str(raw.get("eviction_policy", "latest_interaction")).strip().lower()
    if policy not in SUPPORTED_POLICIES:
        policy = "latest_interaction"

    tokenizer = str(raw.get("tokenizer", "tiktoken")).strip().lower()
    if tokenizer not in SUPPORTED_TOKENIZERS:
        tokenizer = "tiktoken"

    shell_args_raw = raw.get("shell_args", [])
    shell_args = [str(part) for part in shell_args_raw] if isinstance(shell_args_raw, list) else []

    ai_prefix = str(raw.get("ai_prefix", "/"))
    if not ai_prefix.strip():
        ai_prefix = "/"

    return AppConfig(
        provider=str(raw.get("provider", "openai_compat")),
        model_name=model_name,
        base_url=base_url,
        api_key_env=api_key_env,
        api_key=api_key,
        timeout_seconds=_int_or_default(raw.get("timeout_seconds", 60), 60, minimum=1),
        temperature=temperature,
        n=_int_or_default(raw.get("n", 1), 1, minimum=1),
        provider_preferences=provider_preferences,
        history_file=_str_or_none(raw.get("history_file")) or DEFAULT_HISTORY_FILE,
        history_max_tokens=_int_or_default(
            raw.get("history_max_tokens", DEFAULT_MAX_TOKENS),
            DEFAULT_MAX_TOKENS,
            minimum=1,
        ),
        eviction_policy=policy,
        tokenizer=tokenizer,
        token_encoding=_str_or_none(raw.get("token_encoding")) or "gpt2",
        shell_program=_str_or_none(raw.get("shell_program")) or "bash",
        shell_args=shell_args,
        working_dir=_str_or_none(raw.get("working_dir")),
        command_timeout_seconds=_positive_float_or_none(raw.get("command_timeout_seconds")),
        ai_prefix=ai_prefix.strip(),
        max_ai_steps=_int_or_default(raw.get("max_ai_steps", 25), 25, minimum=1),
        system_prompt=_str_or_none(raw.get("system_prompt")) or SYS_PROMPT,
    )
