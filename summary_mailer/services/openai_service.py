# summary_mailer/services/openai_service.py
"""
Text generation client.

Talks to an OpenAI-compatible chat completions gateway that fronts several
models. The caller owns prompt construction and output parsing; this
module returns the raw completion text.
"""

import asyncio

import openai
from openai import AsyncOpenAI

from summary_mailer.config import settings
from summary_mailer.infrastructure.observability.logging import get_logger
from summary_mailer.services.response_cache import ResponseCache

logger = get_logger(__name__)

MAX_RETRIES = 2


class TextGenerationError(Exception):
    """Raised when the text generation gateway fails or returns nothing."""

    def __init__(self, message: str, api_error: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.api_error = api_error
        self.recoverable = recoverable


def resolve_model(*candidates: str | None) -> str:
    """The first non-empty candidate if it is an allowed model, else the default model."""
    chosen = next((candidate for candidate in candidates if candidate), None)
    if chosen in settings.TEXT_GEN_ALLOWED_MODELS:
        return chosen
    return settings.TEXT_GEN_DEFAULT_MODEL


class TextGenerationService:
    """Async chat-completions client with an optional response cache."""

    def __init__(self, client: AsyncOpenAI | None = None, cache: ResponseCache | None = None):
        self.client = client or AsyncOpenAI(
            api_key=settings.TEXT_GEN_API_KEY,
            base_url=settings.TEXT_GEN_BASE_URL,
            timeout=settings.TEXT_GEN_TIMEOUT_SECONDS,
            max_retries=0,
        )
        self.cache = cache

    async def generate(self, model: str, system_prompt: str, user_prompt: str) -> str:
        """
        Generate a completion for one system + user prompt pair.

        Returns:
            The completion text

        Raises:
            TextGenerationError: If the gateway fails after retries or returns empty text
        """
        if self.cache:
            cached = await self.cache.get(model, system_prompt, user_prompt)
            if cached is not None:
                logger.debug("Text generation cache hit", model=model)
                return cached

        text = await self._call_with_retry(model, system_prompt, user_prompt)

        if self.cache:
            await self.cache.set(model, system_prompt, user_prompt, text)

        return text

    async def _call_with_retry(self, model: str, system_prompt: str, user_prompt: str) -> str:
        last_error: Exception | None = None

        for attempt in range(MAX_RETRIES + 1):
            try:
                response = await self.client.chat.completions.create(
                    model=model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_prompt},
                    ],
                    stream=False,
                )

                if not response.choices or not response.choices[0].message.content:
                    raise TextGenerationError("Empty response from text generation gateway")

                text = response.choices[0].message.content.strip()
                logger.info(
                    "Text generation call successful",
                    model=model,
                    attempt=attempt + 1,
                    response_length=len(text),
                )
                return text

            except openai.RateLimitError as e:
                last_error = e
                wait_time = min(2**attempt, 30)
                logger.warning(
                    "Text generation rate limited, retrying",
                    attempt=attempt + 1,
                    wait_time=wait_time,
                    error=str(e),
                )
                if attempt < MAX_RETRIES:
                    await asyncio.sleep(wait_time)

            except openai.APITimeoutError as e:
                last_error = e
                logger.warning(
                    "Text generation timeout, retrying",
                    attempt=attempt + 1,
                    timeout=settings.TEXT_GEN_TIMEOUT_SECONDS,
                )

            except openai.APIStatusError as e:
                last_error = e
                if 400 <= e.status_code < 500:
                    logger.error("Text generation client error (not retrying)", error=str(e))
                    break
                logger.warning("Text generation API error, retrying", attempt=attempt + 1, error=str(e))

            except (openai.APIError, TextGenerationError) as e:
                last_error = e
                logger.warning(
                    "Text generation failed, retrying",
                    attempt=attempt + 1,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        logger.error(
            "Text generation failed after all retries",
            model=model,
            final_error=str(last_error),
        )
        raise TextGenerationError(
            "Text generation gateway failed",
            api_error=str(last_error),
            recoverable=True,
        ) from last_error
