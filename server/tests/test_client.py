from __future__ import annotations

import asyncio
from types import SimpleNamespace

import httpx
import openai
import pytest

from npcmind.llm.client import CredentialState, OracleClient


def _request() -> httpx.Request:
    return httpx.Request("POST", "https://oracle.test/v1/chat/completions")


def _rate_limited() -> openai.RateLimitError:
    return openai.RateLimitError("rate limited", response=httpx.Response(429, request=_request()), body=None)


def _completion(text: str) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


class FakeSDK:
    def __init__(self, api_key: str, behaviour):
        self.api_key = api_key
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))
        self._behaviour = behaviour

    async def _create(self, **kwargs):
        return await self._behaviour(self.api_key, kwargs)


def _client(behaviour, keys_seen: list[str], secondary: str | None = "key-2", **kwargs) -> OracleClient:
    def factory(*, api_key, base_url, timeout, max_retries):
        assert max_retries == 0
        keys_seen.append(api_key)
        return FakeSDK(api_key, behaviour)

    return OracleClient(
        enabled=True,
        base_url="https://oracle.test/v1",
        model="test-model",
        credentials=CredentialState(primary="key-1", secondary=secondary),
        client_factory=factory,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_rotation_happens_at_most_once():
    used_keys: list[str] = []

    async def always_429(api_key, kwargs):
        used_keys.append(api_key)
        raise _rate_limited()

    keys_seen: list[str] = []
    client = _client(always_429, keys_seen)

    assert await client.invoke("first") is None
    assert client.credentials.rotated is True
    assert client.credentials.current == "key-2"

    assert await client.invoke("second") is None
    assert await client.invoke("third") is None
    assert client.credentials.current == "key-2"
    assert used_keys == ["key-1", "key-2", "key-2"]
    assert keys_seen == ["key-1", "key-2"]


@pytest.mark.asyncio
async def test_rotation_without_secondary_key_is_still_spent():
    async def always_429(api_key, kwargs):
        raise _rate_limited()

    client = _client(always_429, [], secondary=None)

    assert await client.invoke("prompt") is None
    assert client.credentials.rotated is True
    assert client.credentials.current == "key-1"
    assert client.credentials.rotate_once() is False


@pytest.mark.asyncio
async def test_successful_call_returns_text_and_sends_prompt():
    seen_kwargs: list[dict] = []

    async def ok(api_key, kwargs):
        seen_kwargs.append(kwargs)
        return _completion('  {"action": "follow"}  ')

    client = _client(ok, [])

    assert await client.invoke("hello oracle") == '{"action": "follow"}'
    assert seen_kwargs[0]["messages"] == [{"role": "user", "content": "hello oracle"}]
    assert seen_kwargs[0]["model"] == "test-model"
    assert client.calls == 1


@pytest.mark.asyncio
async def test_failures_become_none():
    async def unreachable(api_key, kwargs):
        raise openai.APIConnectionError(request=_request())

    async def server_error(api_key, kwargs):
        raise openai.InternalServerError("boom", response=httpx.Response(500, request=_request()), body=None)

    async def broken(api_key, kwargs):
        raise ValueError("unexpected payload")

    for behaviour in (unreachable, server_error, broken):
        client = _client(behaviour, [])
        assert await client.invoke("prompt") is None
        assert client.credentials.rotated is False


@pytest.mark.asyncio
async def test_hung_call_times_out():
    async def hang(api_key, kwargs):
        await asyncio.sleep(10)

    client = _client(hang, [], timeout_sec=0.05)

    assert await client.invoke("prompt") is None


@pytest.mark.asyncio
async def test_disabled_client_does_no_io():
    client = OracleClient.disabled()

    assert await client.invoke("prompt") is None
    assert client.calls == 0


def test_from_env_requires_model_and_key(monkeypatch):
    monkeypatch.setenv("NPC_ORACLE_ENABLED", "1")
    monkeypatch.setenv("NPC_ORACLE_MODEL", "gpt-test")
    monkeypatch.delenv("NPC_ORACLE_API_KEY", raising=False)
    assert OracleClient.from_env().enabled is False

    monkeypatch.setenv("NPC_ORACLE_API_KEY", "key-1")
    monkeypatch.setenv("NPC_ORACLE_API_KEY_SECONDARY", "key-2")
    monkeypatch.setenv("NPC_ORACLE_TIMEOUT_SEC", "not-a-number")
    client = OracleClient.from_env()
    assert client.enabled is True
    assert client.credentials.secondary == "key-2"
    assert client.timeout_sec == 20.0
