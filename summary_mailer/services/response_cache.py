"""Time-bounded cache for text-generation responses."""

import hashlib
import json
from typing import Protocol

from summary_mailer.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool: ...


class ResponseCache:
    """
    Caches generated text keyed by the full request content.

    Every entry expires after ``ttl_seconds``. Store failures are misses,
    so a broken or absent cache only costs latency.
    """

    def __init__(self, store: KeyValueStore, ttl_seconds: int, prefix: str = "textgen:response:"):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def key_for(self, model: str, system_prompt: str, user_prompt: str) -> str:
        payload = json.dumps([model, system_prompt, user_prompt], ensure_ascii=False)
        digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
        return f"{self.prefix}{digest}"

    async def get(self, model: str, system_prompt: str, user_prompt: str) -> str | None:
        key = self.key_for(model, system_prompt, user_prompt)
        try:
            return await self.store.get(key)
        except Exception as e:
            logger.warning("Response cache read failed", error=str(e))
            return None

    async def set(self, model: str, system_prompt: str, user_prompt: str, text: str) -> None:
        key = self.key_for(model, system_prompt, user_prompt)
        try:
            await self.store.set_with_ttl(key, text, self.ttl_seconds)
        except Exception as e:
            logger.warning("Response cache write failed", error=str(e))
