from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from viva.errors import GenerationFailure
from viva.llm import ChatCompletionsGenerator, MockDialogueGenerator

MESSAGES = [
    {"role": "system", "content": "You are an examiner."},
    {"role": "user", "content": "Ready."},
]


def _generator(handler) -> ChatCompletionsGenerator:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ChatCompletionsGenerator(
        url="https://llm.test/v1/chat/completions", model="test-model", api_key="secret", client=client
    )


def test_generator_posts_history_and_returns_content() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "  What is entropy?  "}}]})

    reply = asyncio.run(_generator(handler).generate_reply(MESSAGES))

    assert reply == "What is entropy?"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"]["model"] == "test-model"
    assert seen["body"]["messages"] == MESSAGES


def test_non_200_raises_generation_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="overloaded")

    with pytest.raises(GenerationFailure):
        asyncio.run(_generator(handler).generate_reply(MESSAGES))


def test_transport_error_raises_generation_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(GenerationFailure):
        asyncio.run(_generator(handler).generate_reply(MESSAGES))


def test_empty_choices_yield_empty_reply() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": []})

    assert asyncio.run(_generator(handler).generate_reply(MESSAGES)) == ""


def test_mock_generator_cycles_through_replies_and_records_calls() -> None:
    mock = MockDialogueGenerator(["first", "second"])

    async def _run() -> list[str]:
        return [await mock.generate_reply(MESSAGES) for _ in range(3)]

    assert asyncio.run(_run()) == ["first", "second", "second"]
    assert len(mock.calls) == 3
