"""Dialogue generator clients.

The generator is stateless: each call receives the full message history and
returns the next utterance as text.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from viva import config
from viva.errors import GenerationFailure

LOG = logging.getLogger("viva.llm")


class DialogueGenerator(Protocol):
    async def generate_reply(self, messages: Sequence[Dict[str, str]]) -> str:
        ...


class ChatCompletionsGenerator:
    """Calls an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(
        self,
        url: str = config.LLM_URL,
        model: str = config.LLM_MODEL,
        api_key: Optional[str] = config.LLM_API_KEY,
        timeout: float = config.LLM_TIMEOUT,
        max_tokens: int = config.LLM_MAX_TOKENS,
        temperature: float = config.LLM_TEMPERATURE,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _payload(self, messages: Sequence[Dict[str, str]]) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "top_p": 1.0,
            "stream": False,
        }

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.url, headers=self._headers(), json=payload, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.url, headers=self._headers(), json=payload)

    async def generate_reply(self, messages: Sequence[Dict[str, str]]) -> str:
        if not self.api_key:
            LOG.warning("VIVA_LLM_API_KEY missing; request will likely be rejected")
        payload = self._payload(messages)
        LOG.info("Calling LLM: model=%s messages=%s", self.model, len(payload["messages"]))
        try:
            resp = await self._post(payload)
        except httpx.HTTPError as exc:
            LOG.warning("LLM request failed: %s", exc)
            raise GenerationFailure(f"llm request failed: {exc}") from exc

        if resp.status_code != 200:
            LOG.warning("LLM responded with %s: %s", resp.status_code, resp.text[:200])
            raise GenerationFailure(f"llm responded with {resp.status_code}")

        try:
            data = resp.json()
            choices = data.get("choices") or []
            content = (choices[0].get("message", {}).get("content") or "").strip() if choices else ""
        except (ValueError, AttributeError, TypeError) as exc:
            LOG.warning("LLM returned an unreadable body: %s", resp.text[:200])
            raise GenerationFailure("llm returned an unreadable body") from exc
        return content


class MockDialogueGenerator:
    """Canned replies for offline development and tests."""

    def __init__(self, replies: Optional[List[str]] = None) -> None:
        self.replies = list(replies) if replies else [
            "This is a mock response. I am simulating a viva session. Please continue your answer."
        ]
        self.calls: List[List[Dict[str, str]]] = []

    async def generate_reply(self, messages: Sequence[Dict[str, str]]) -> str:
        self.calls.append([dict(m) for m in messages])
        LOG.info("[mock] generating reply for %s message(s)", len(messages))
        index = min(len(self.calls) - 1, len(self.replies) - 1)
        return self.replies[index]
