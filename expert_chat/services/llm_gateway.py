"""
Chat-completions gateway client.

Talks to any OpenAI-compatible `/chat/completions` endpoint (Groq by
default). Two call shapes are used by the expert chat:

- `complete()`: non-streaming, optionally with tools; returns the first
  choice's assistant message.
- `open_stream()`: streaming, no tools; returns the open upstream response
  whose body is relayed to the client as-is. The caller must close it.

Non-2xx responses are mapped to `GatewayError` subclasses carrying the
status and the message shown to farmers.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from .. import config

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Failed to get AI response"


class GatewayError(Exception):
    status_code = 500

    def __init__(self, message: str = GENERIC_FAILURE, status_code: Optional[int] = None, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.upstream_status = upstream_status


class RateLimitedError(GatewayError):
    status_code = 429

    def __init__(self, upstream_status: int = 429):
        super().__init__("Too many requests. Please try again in a moment.", upstream_status=upstream_status)


class QuotaExhaustedError(GatewayError):
    status_code = 402

    def __init__(self, upstream_status: int = 402):
        super().__init__("AI service temporarily unavailable.", upstream_status=upstream_status)


class GatewayNotConfigured(GatewayError):
    def __init__(self):
        super().__init__("AI service not configured")


def error_for_status(status_code: int) -> GatewayError:
    if status_code == 429:
        return RateLimitedError()
    if status_code == 402:
        return QuotaExhaustedError()
    return GatewayError(GENERIC_FAILURE, upstream_status=status_code)


class ChatCompletionsClient:
    def __init__(self, api_url: Optional[str] = None, api_key: Optional[str] = None, model: Optional[str] = None,
                 timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_url = api_url or config.LLM_API_URL
        self.api_key = config.LLM_API_KEY if api_key is None else api_key
        self.model = model or config.LLM_MODEL
        self.timeout = timeout or config.LLM_TIMEOUT_SECONDS
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            # avoid inheriting proxy settings, as the vision clients do
            self._http = httpx.AsyncClient(timeout=self.timeout, transport=self._transport, trust_env=False)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            logger.error("[ChatCompletionsClient] LLM_API_KEY is not configured")
            raise GatewayNotConfigured()
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    async def complete(self, messages: List[Dict[str, Any]], tools: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"model": self.model, "messages": messages}
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        headers = self._headers()
        try:
            resp = await self.http.post(self.api_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error("[ChatCompletionsClient.complete] transport error: %s", e)
            raise GatewayError() from e

        if not resp.is_success:
            logger.error("[ChatCompletionsClient.complete] AI gateway error: %s %s", resp.status_code, resp.text[:300])
            raise error_for_status(resp.status_code)

        try:
            message = resp.json()["choices"][0]["message"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.error("[ChatCompletionsClient.complete] unexpected payload: %s", resp.text[:300])
            raise GatewayError() from e
        if not isinstance(message, dict):
            raise GatewayError()
        return message

    async def open_stream(self, messages: List[Dict[str, Any]]) -> httpx.Response:
        payload = {"model": self.model, "messages": messages, "stream": True}
        headers = self._headers()
        request = self.http.build_request("POST", self.api_url, json=payload, headers=headers)
        try:
            resp = await self.http.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.error("[ChatCompletionsClient.open_stream] transport error: %s", e)
            raise GatewayError() from e

        if not resp.is_success:
            try:
                body = (await resp.aread()).decode("utf-8", errors="ignore")
            except httpx.HTTPError:
                body = ""
            finally:
                await resp.aclose()
            logger.error("[ChatCompletionsClient.open_stream] AI gateway error: %s %s", resp.status_code, body[:300])
            raise error_for_status(resp.status_code)
        return resp
