"""
LLM Client for OpenAI-compatible chat endpoints.

Provides an async wrapper around the OpenAI SDK for the grading and tutoring
providers. Transient failures are retried through the backoff transport;
everything else surfaces as an LLMError.
"""

import logging
from typing import Any

from openai import APIStatusError, AsyncOpenAI

from mock_examiner.config import Settings, get_settings
from mock_examiner.retry import is_network_error, retry_with_backoff

logger = logging.getLogger(__name__)

Message = dict[str, str]


class LLMError(Exception):
    """Raised when an LLM API call fails."""

    def __init__(self, message: str, cause: Exception | None = None, retryable: bool = False):
        self.cause = cause
        self.retryable = retryable
        super().__init__(message)


class TransientNetworkError(LLMError):
    """Raised when a transient network failure outlasts every retry."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message, cause=cause, retryable=True)


class LLMClient:
    """
    Client for one OpenAI-compatible provider.

    The SDK's own retries are disabled so the backoff transport is the
    single retry layer.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        default_model: str,
        settings: Settings | None = None,
        name: str = "llm",
    ):
        """
        Initialize the LLM client.

        Args:
            api_key: Provider API key.
            base_url: Provider base URL.
            default_model: Model used when a call does not name one.
            settings: Configuration settings. Uses global settings if not provided.
            name: Label used in log messages.
        """
        self._settings = settings or get_settings()
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)
        self.default_model = default_model
        self.name = name

    @classmethod
    def for_grader(cls, settings: Settings) -> "LLMClient":
        """Build the strict grading client from settings."""
        if not settings.grader_api_key:
            raise LLMError("Grader API key is not configured")
        return cls(
            api_key=settings.grader_api_key,
            base_url=settings.grader_base_url,
            default_model=settings.grader_model,
            settings=settings,
            name="grader",
        )

    @classmethod
    def for_tutor(cls, settings: Settings) -> "LLMClient":
        """Build the tutor / extraction client from settings."""
        if not settings.tutor_api_key:
            raise LLMError("Tutor API key is not configured")
        return cls(
            api_key=settings.tutor_api_key,
            base_url=settings.tutor_base_url,
            default_model=settings.tutor_model,
            settings=settings,
            name="tutor",
        )

    async def generate(
        self,
        system_prompt: str | None,
        user_prompt: str,
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> str:
        """
        Generate a response from a system and a user prompt.

        Raises:
            LLMError: If generation fails after all retries.
        """
        messages: list[Message] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})
        return await self.chat(messages, model, temperature, max_tokens, json_mode)

    async def chat(
        self,
        messages: list[Message],
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> str:
        """
        Send a chat conversation and return the reply text.

        Args:
            messages: Chat messages to send.
            model: Model override (uses the client's default if None).
            temperature: Sampling temperature.
            max_tokens: Maximum response tokens.
            json_mode: Request a JSON object response.

        Returns:
            The generated text.

        Raises:
            TransientNetworkError: If the provider stayed unreachable.
            LLMError: For any other failure, including an empty reply.
        """
        request: dict[str, Any] = {
            "model": model or self.default_model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens is not None:
            request["max_tokens"] = max_tokens
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        async def _call() -> str:
            response = await self._client.chat.completions.create(**request)
            if response.choices and response.choices[0].message.content:
                return response.choices[0].message.content
            raise LLMError(f"Empty response from {self.name} model {request['model']}")

        def _on_retry(error: BaseException, attempt: int) -> None:
            logger.info("%s call to %s retrying (attempt %d): %s", self.name, request["model"], attempt, error)

        try:
            return await retry_with_backoff(
                _call,
                max_attempts=self._settings.retry_max_attempts,
                base_delay=self._settings.retry_base_delay,
                max_delay=self._settings.retry_max_delay,
                on_retry=_on_retry,
            )
        except LLMError:
            raise
        except APIStatusError as e:
            if is_network_error(e):
                raise TransientNetworkError(
                    f"{self.name} provider error after retries: {e.message}", cause=e
                ) from e
            raise LLMError(f"{self.name} API error: {e.message}", cause=e) from e
        except Exception as e:
            if is_network_error(e):
                raise TransientNetworkError(
                    f"{self.name} provider unreachable: {e}", cause=e
                ) from e
            raise LLMError(f"Unexpected {self.name} error: {e}", cause=e) from e

    async def health_check(self) -> bool:
        """
        Check if the provider is reachable.

        Returns:
            True if the provider answered, False otherwise.
        """
        try:
            response = await self._client.chat.completions.create(
                model=self.default_model,
                messages=[{"role": "user", "content": "ping"}],
                max_tokens=5,
            )
            return bool(response.choices)
        except Exception as e:
            logger.warning("%s health check failed: %s", self.name, e)
            return False
