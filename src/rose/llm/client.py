"""Chat-completion client for the remote language model."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ..errors import ModelResponseError, TransportError
from .retry import Sleep, linear_backoff, retry_async

logger = logging.getLogger(__name__)


@dataclass
class ModelConfig:
    """Configuration for the model endpoint."""

    api_key: str = ""
    model: str = "deepseek-chat"
    base_url: str = "https://api.deepseek.com"
    temperature: float = 0.85
    max_tokens: int = 300
    timeout: float = 30.0
    max_attempts: int = 3
    backoff_step: float = 1.0


class ModelClient:
    """Resilient wrapper around ``POST {base_url}/chat/completions``.

    Transport failures and empty or malformed bodies are retried with linear
    backoff. When every attempt fails the last error is raised, so callers
    decide how to degrade.

    Example:
        client = ModelClient(ModelConfig(api_key="..."))
        reply = await client.complete([{"role": "user", "content": "你好"}])
    """

    def __init__(
        self,
        config: ModelConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize the client.

        Args:
            config: Endpoint configuration.
            http_client: Optional pre-built client (tests pass one with a
                mock transport). An injected client is not closed by
                :meth:`aclose`.
            sleep: Coroutine used to wait between attempts.
        """
        self.config = config or ModelConfig()
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=self.config.timeout)
        self._complete_with_retry = retry_async(
            max_attempts=self.config.max_attempts,
            backoff=linear_backoff(self.config.backoff_step),
            exceptions=(TransportError, ModelResponseError),
            sleep=sleep,
        )(self._request)

    @property
    def model(self) -> str:
        """Return the model being used."""
        return self.config.model

    async def complete(self, messages: list[dict[str, str]]) -> str:
        """Send a message list and return the assistant's text.

        Raises:
            TransportError: Network failure, timeout or non-2xx status on
                the final attempt.
            ModelResponseError: Empty or malformed body on the final attempt.
        """
        return await self._complete_with_retry(messages)

    async def _request(self, messages: list[dict[str, str]]) -> str:
        payload = {
            "model": self.config.model,
            "messages": messages,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

        try:
            response = await self._http.post(
                f"{self.config.base_url.rstrip('/')}/chat/completions",
                json=payload,
                headers=headers,
                timeout=self.config.timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out after {self.config.timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"HTTP {e.response.status_code}: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Request failed: {e}") from e

        return self._parse_content(response)

    def _parse_content(self, response: httpx.Response) -> str:
        try:
            data: Any = response.json()
        except ValueError as e:
            raise ModelResponseError(f"Response is not JSON: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None

        if not isinstance(content, str) or not content.strip():
            logger.error(f"Model returned empty content: {str(data)[:500]}")
            raise ModelResponseError("empty content")

        return content.strip()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()
