from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Sequence
from urllib import error, request

from .errors import ChatServiceError
from .prompts import SUMMARIZE_ERROR_PROMPT
from .types import ChatClient, Message, Turn, to_messages


@dataclass(frozen=True)
class OpenAICompatChatClient(ChatClient):
    base_url: str
    model_name: str
    api_key_env: str | None = None
    api_key: str | None = None
    timeout_seconds: int = 60
    temperature: float = 0.2
    n: int = 1
    provider_preferences: Dict[str, object] | None = None
    logger: logging.Logger | None = None

    def resolve_api_key(self) -> str:
        if self.api_key and self.api_key.strip():
            return self.api_key.strip()

        if self.api_key_env:
            api_key_from_env = os.environ.get(self.api_key_env, "").strip()
            if api_key_from_env:
                return api_key_from_env

        fallback = os.environ.get("OPENAI_API_KEY", "").strip()
        if fallback:
            return fallback

        env_name = self.api_key_env or "OPENAI_API_KEY"
        raise ChatServiceError(
            f"Missing API key. Set config.api_key, or set env var {env_name} (or OPENAI_API_KEY).",
        )

    async def chat(self, turns: Sequence[Turn]) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "model": self.model_name,
            "messages": to_messages(turns),
            "temperature": self.temperature,
            "n": self.n,
        }
        if self.provider_preferences:
            payload["provider"] = self.provider_preferences
        return await asyncio.to_thread(self._post_sync, payload)

    async def summarize_error(self, text: str) -> str:
        messages: List[Message] = [
            {"role": "system", "content": SUMMARIZE_ERROR_PROMPT.format(error=text)},
        ]
        payload: Dict[str, object] = {"model": self.model_name, "messages": messages}
        data = await asyncio.to_thread(self._post_sync, payload)
        return extract_content(data).strip()

    def _post_sync(self, payload: Dict[str, object]) -> Dict[str, object]:
        api_key = self.resolve_api_key()

        if self.logger:
            self.logger.debug("request payload: %s", json.dumps(payload, ensure_ascii=False, indent=2))

        body = json.dumps(payload).encode("utf-8")
        req = request.Request(
            url=f"{self.base_url.rstrip('/')}/chat/completions",
            data=body,
            method="POST",
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read().decode("utf-8")
        except error.HTTPError as err:
            detail = err.read().decode("utf-8", errors="replace").strip()
            raise ChatServiceError(f"Chat service returned HTTP {err.code}: {detail or err.reason}") from err
        except error.URLError as err:
            raise ChatServiceError(f"Chat service unreachable: {err.reason}") from err
        except TimeoutError as err:
            raise ChatServiceError(f"Chat service timed out after {self.timeout_seconds} seconds") from err

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as err:
            raise ChatServiceError(f"Chat service returned invalid JSON: {raw[:200]}") from err
        if not isinstance(data, dict):
            raise ChatServiceError("Chat service response must be a JSON object")

        if self.logger:
            self.logger.debug("raw response: %s", json.dumps(data, ensure_ascii=False, indent=2))
        return data


def extract_content(response: Dict[str, object]) -> str:
    choices = response.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, dict):
        return ""
    message = first.get("message")
    if not isinstance(message, dict):
        return ""
    return str(message.get("content") or "")
