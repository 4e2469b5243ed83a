"""OpenAI-compatible language model client."""

import asyncio
import logging

from live_translate.retry import NO_RETRY, RetryPolicy

logger = logging.getLogger(__name__)


class LanguageModelClient:
    """Sends a single-prompt chat completion and returns the text.

    Lazy-initializes the AsyncOpenAI client on first use.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        timeout: float = 30.0,
        temperature: float = 0.3,
        retry: RetryPolicy | None = None,
    ):
        """Initialize language model client.

        Args:
            api_key: API key for the endpoint
            model: Chat model name
            base_url: Optional OpenAI-compatible base URL
            timeout: Request timeout in seconds
            temperature: Sampling temperature
            retry: Retry policy applied to each completion request
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.temperature = temperature
        self.retry = retry or NO_RETRY
        self._client = None
        self._client_lock = asyncio.Lock()
        logger.info(
            "LanguageModelClient initialized: model=%s, base_url=%s",
            model,
            base_url or "default",
        )

    async def _ensure_client_initialized(self) -> None:
        """Create the AsyncOpenAI client on first use.

        Raises:
            RuntimeError: If the API key is missing or client creation fails
        """
        async with self._client_lock:
            if self._client is not None:
                return

            if not self.api_key:
                raise RuntimeError(
                    "Language model API key missing. "
                    "Set llm.api_key or the OPENAI_API_KEY environment variable."
                )

            try:
                from openai import AsyncOpenAI

                self._client = AsyncOpenAI(
                    api_key=self.api_key,
                    base_url=self.base_url,
                    timeout=self.timeout,
                )
            except Exception as e:
                logger.error("Failed to initialize language model client: %s", e)
                raise RuntimeError(f"Failed to initialize language model client: {e}") from e

    async def complete(self, prompt: str) -> str:
        """Return the model's completion for ``prompt``.

        Raises:
            RuntimeError: If the request fails or the completion is empty
        """
        await self._ensure_client_initialized()
        return await self.retry.run(
            lambda: self._complete_once(prompt),
            description="Language model request",
        )

    async def _complete_once(self, prompt: str) -> str:
        from openai import OpenAIError

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
            )
        except OpenAIError as e:
            raise RuntimeError(f"Language model request failed: {e}") from e

        if not response.choices:
            raise RuntimeError("Language model returned no choices")

        content = response.choices[0].message.content
        if not isinstance(content, str) or not content.strip():
            raise RuntimeError("Language model returned an empty completion")

        logger.debug("Completion received: %d chars", len(content))
        return content.strip()

    async def shutdown(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.close()
            self._client = None
            logger.debug("Language model client closed")
