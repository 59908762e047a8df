"""
Tests for the text generation client and its response cache.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from summary_mailer.services.openai_service import TextGenerationError, TextGenerationService, resolve_model
from summary_mailer.services.response_cache import ResponseCache


def completion(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


def status_error(cls, code):
    request = httpx.Request("POST", "https://gateway.test/v1/chat/completions")
    return cls("error", response=httpx.Response(code, request=request), body=None)


def make_client(*results):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=list(results))
    return client


class TestResponseCache:
    @pytest.mark.asyncio
    async def test_round_trip_with_ttl(self, fake_redis):
        cache = ResponseCache(fake_redis, ttl_seconds=60)

        await cache.set("deepseek", "sys", "user", "answer")

        assert await cache.get("deepseek", "sys", "user") == "answer"
        assert list(fake_redis.ttls.values()) == [60]

    def test_key_depends_on_every_part(self, fake_redis):
        cache = ResponseCache(fake_redis, ttl_seconds=60)

        keys = {
            cache.key_for("deepseek", "sys", "user"),
            cache.key_for("kimi", "sys", "user"),
            cache.key_for("deepseek", "sys2", "user"),
            cache.key_for("deepseek", "sys", "user2"),
        }

        assert len(keys) == 4
        assert all(key.startswith("textgen:response:") for key in keys)

    @pytest.mark.asyncio
    async def test_store_errors_are_misses(self):
        store = MagicMock()
        store.get = AsyncMock(side_effect=ConnectionError("down"))
        store.set_with_ttl = AsyncMock(side_effect=ConnectionError("down"))
        cache = ResponseCache(store, ttl_seconds=60)

        assert await cache.get("m", "s", "u") is None
        await cache.set("m", "s", "u", "text")

    def test_ttl_must_be_positive(self, fake_redis):
        with pytest.raises(ValueError):
            ResponseCache(fake_redis, ttl_seconds=0)


class TestTextGenerationService:
    @pytest.mark.asyncio
    async def test_returns_stripped_completion_and_caches_it(self, fake_redis):
        client = make_client(completion("  hello  "))
        cache = ResponseCache(fake_redis, ttl_seconds=60)
        service = TextGenerationService(client=client, cache=cache)

        assert await service.generate("deepseek", "sys", "user") == "hello"
        assert await service.generate("deepseek", "sys", "user") == "hello"
        assert client.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_works_without_cache(self):
        client = make_client(completion("a"), completion("b"))
        service = TextGenerationService(client=client)

        assert await service.generate("deepseek", "sys", "user") == "a"
        assert await service.generate("deepseek", "sys", "user") == "b"

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self, monkeypatch):
        monkeypatch.setattr("summary_mailer.services.openai_service.asyncio.sleep", AsyncMock())
        client = make_client(status_error(openai.RateLimitError, 429), completion("ok"))

        result = await TextGenerationService(client=client).generate("deepseek", "s", "u")

        assert result == "ok"
        assert client.chat.completions.create.await_count == 2

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self):
        client = make_client(status_error(openai.BadRequestError, 400))

        with pytest.raises(TextGenerationError):
            await TextGenerationService(client=client).generate("deepseek", "s", "u")

        assert client.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_empty_responses_exhaust_retries(self):
        client = make_client(completion(""), completion(None), completion(""))

        with pytest.raises(TextGenerationError) as exc_info:
            await TextGenerationService(client=client).generate("deepseek", "s", "u")

        assert exc_info.value.recoverable is True
        assert client.chat.completions.create.await_count == 3


def test_resolve_model():
    assert resolve_model("glm", "kimi") == "glm"
    assert resolve_model(None, "kimi") == "kimi"
    assert resolve_model("", None) == "deepseek"
    assert resolve_model("gpt-99", "kimi") == "deepseek"
