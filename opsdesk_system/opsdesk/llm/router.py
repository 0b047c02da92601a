"""
Reasoning service client and it does:
- Sends prompts to an OpenAI-compatible chat completions endpoint
- Retries transient errors with backoff
- Parses JSON answers, with one strict-formatter repair round

Main purpose:
Central interface for all model calls. Every failure surfaces as ReasoningServiceError
so callers can fall back deterministically.
"""


import asyncio

import httpx

from opsdesk.core.config import settings
from opsdesk.core.errors import ReasoningServiceError
from opsdesk.core.logging import get_logger
from opsdesk.llm.json_parse import extract_json_object
from opsdesk.llm.prompts import JSON_REPAIR_SYSTEM, build_repair_prompt

log = get_logger("llm.router")

_TRANSIENT = (429, 500, 502, 503, 504)


def _safe_snippet(text: str, n: int = 400) -> str:
    return (text or "")[:n].replace("\n", "\\n").replace("\r", "\\r")


class ReasoningService:
    def __init__(
        self,
        *,
        provider: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep=asyncio.sleep,
    ):
        self.provider = (provider if provider is not None else settings.LLM_PROVIDER).lower().strip()
        self.api_key = api_key if api_key is not None else settings.LLM_API_KEY
        self.base_url = base_url or settings.LLM_BASE_URL
        self.model = model or settings.LLM_MODEL
        self.timeout = timeout or settings.LLM_TIMEOUT
        self.max_retries = max_retries or settings.LLM_MAX_RETRIES
        self._transport = transport
        self._sleep = sleep

    async def chat(
        self,
        system: str,
        user: str,
        *,
        temperature: float = 0.2,
        max_tokens: int | None = None,
    ) -> str:
        if self.provider == "mock":
            raise ReasoningServiceError("LLM_PROVIDER=mock: reasoning service disabled")
        if self.provider != "openai":
            raise ReasoningServiceError(f"Unsupported LLM_PROVIDER={self.provider}. Use openai or mock.")
        if not self.api_key:
            raise ReasoningServiceError("Missing LLM_API_KEY. Put it in your .env")

        url = f"{self.base_url.rstrip('/')}/chat/completions"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        payload: dict = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": temperature,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens

        timeout = httpx.Timeout(self.timeout, connect=10.0)

        last_err: Exception | None = None
        for attempt in range(self.max_retries):
            try:
                async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                    r = await client.post(url, headers=headers, json=payload)
            except httpx.HTTPError as e:
                last_err = e
                backoff = 0.6 * (2**attempt)
                log.warning(
                    f"Reasoning call failed: {e}. retrying in {backoff:.1f}s "
                    f"(attempt {attempt+1}/{self.max_retries})"
                )
                await self._sleep(backoff)
                continue

            if r.status_code in _TRANSIENT:
                last_err = ReasoningServiceError(f"transient {r.status_code}: {_safe_snippet(r.text)}")
                backoff = 0.6 * (2**attempt)
                log.warning(f"{last_err}. retrying in {backoff:.1f}s (attempt {attempt+1}/{self.max_retries})")
                await self._sleep(backoff)
                continue

            if r.status_code >= 400:
                raise ReasoningServiceError(f"Reasoning service error {r.status_code}: {_safe_snippet(r.text)}")

            try:
                content = r.json()["choices"][0]["message"]["content"]
            except (ValueError, KeyError, IndexError, TypeError) as e:
                raise ReasoningServiceError(f"Unexpected reasoning response: {_safe_snippet(r.text)}") from e
            if not isinstance(content, str) or not content.strip():
                raise ReasoningServiceError("Empty response from reasoning service")
            return content.strip()

        raise ReasoningServiceError(f"Reasoning call failed after retries: {last_err}")

    async def chat_json(self, system: str, user: str) -> dict:
        """
        Returns a parsed JSON object.
        Non-JSON answers get one strict-formatter repair round, then ReasoningServiceError.
        """
        text = await self.chat(system, user, temperature=0.1)
        try:
            return extract_json_object(text)
        except ValueError as e:
            log.warning(f"JSON parse failed (attempt1): {e}. Snippet={_safe_snippet(text)}. Trying repair...")

        text2 = await self.chat(JSON_REPAIR_SYSTEM, build_repair_prompt(text), temperature=0.0)
        try:
            return extract_json_object(text2)
        except ValueError as e2:
            raise ReasoningServiceError(
                f"Reasoning service did not return JSON: {e2}. Snippet={_safe_snippet(text2)}"
            ) from e2
