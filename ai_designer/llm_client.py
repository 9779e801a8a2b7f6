from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from ai_designer.config import settings

logger = logging.getLogger(__name__)


class LLMClientError(RuntimeError):
    def __init__(self, *, message: str, status_code: int = 500) -> None:
        super().__init__(message)
        self.status_code = status_code


class LLMClientConfigError(LLMClientError):
    pass


class LLMTimeoutError(LLMClientError):
    def __init__(self, *, message: str) -> None:
        super().__init__(message=message, status_code=504)


@dataclass(frozen=True)
class ChatCompletion:
    content: str
    model: str


class OpenRouterClient:
    """Chat-completions client with a primary -> fallback model chain.

    Each model gets ``max_attempts`` HTTP tries with exponential backoff on network errors and 5xx
    responses. 4xx responses are final. The whole chain is bounded by ``timeout_seconds``.
    """

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url or settings.OPENROUTER_BASE_URL
        self._timeout = timeout_seconds if timeout_seconds is not None else settings.LLM_REQUEST_TIMEOUT_SECONDS
        self._max_attempts = max_attempts or settings.LLM_HTTP_ATTEMPTS
        self._backoff = backoff_seconds if backoff_seconds is not None else settings.LLM_RETRY_BACKOFF_SECONDS
        self._transport = transport

    async def complete(
        self,
        *,
        api_key: Optional[str],
        messages: list[dict[str, str]],
        model: str,
        fallback_model: Optional[str] = None,
        temperature: float = 0.5,
        max_tokens: int = 1500,
    ) -> ChatCompletion:
        if not api_key:
            raise LLMClientConfigError(message="OpenRouter API key not configured")
        try:
            return await asyncio.wait_for(
                self._complete_with_fallback(
                    api_key=api_key,
                    messages=messages,
                    model=model,
                    fallback_model=fallback_model,
                    temperature=temperature,
                    max_tokens=max_tokens,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise LLMTimeoutError(message=f"LLM request exceeded {self._timeout:.0f}s") from exc

    async def _complete_with_fallback(
        self,
        *,
        api_key: str,
        messages: list[dict[str, str]],
        model: str,
        fallback_model: Optional[str],
        temperature: float,
        max_tokens: int,
    ) -> ChatCompletion:
        chain = [model]
        if fallback_model and fallback_model != model:
            chain.append(fallback_model)

        last_error: LLMClientError | None = None
        for candidate in chain:
            payload = {
                "model": candidate,
                "messages": messages,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
            try:
                response = await self._post_with_retry(api_key=api_key, payload=payload)
            except LLMClientError as exc:
                logger.warning("llm_client.model_failed", extra={"model": candidate, "error": str(exc)})
                last_error = exc
                continue

            if response.status_code >= 500:
                logger.warning(
                    "llm_client.model_failed",
                    extra={"model": candidate, "status_code": response.status_code},
                )
                last_error = LLMClientError(
                    message=f"LLM call failed ({response.status_code}): {response.text}"
                )
                continue
            if response.status_code >= 400:
                raise LLMClientError(message=f"LLM call failed ({response.status_code}): {response.text}")

            if candidate != model:
                logger.info("llm_client.fallback_used", extra={"primary": model, "fallback": candidate})
            return ChatCompletion(content=self._extract_content(response), model=candidate)

        raise last_error or LLMClientError(message="All LLM models failed")

    async def _post_with_retry(self, *, api_key: str, payload: dict[str, Any]) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": settings.OPENROUTER_HTTP_REFERER,
            "X-Title": settings.OPENROUTER_APP_TITLE,
        }
        for attempt in range(self._max_attempts):
            is_last = attempt == self._max_attempts - 1
            try:
                async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                    response = await client.post(self._base_url, json=payload, headers=headers)
            except httpx.RequestError as exc:
                if is_last:
                    raise LLMClientError(message=f"Network error while calling LLM: {exc}") from exc
                await asyncio.sleep(self._backoff * (2**attempt))
                continue

            if response.status_code >= 500 and not is_last:
                await asyncio.sleep(self._backoff * (2**attempt))
                continue
            return response

        raise LLMClientError(message="LLM retries exhausted")

    @staticmethod
    def _extract_content(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError as exc:
            raise LLMClientError(message="LLM returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise LLMClientError(message="LLM response must be a JSON object")
        choices = body.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            raise LLMClientError(message="LLM response is missing choices")
        message = choices[0].get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise LLMClientError(message="LLM response is missing message content")
        return content
