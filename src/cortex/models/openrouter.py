"""Async client for the hosted model, reached through OpenRouter.

OpenRouter speaks the OpenAI chat-completions format.  The hosted pathway
uses it for the agent's conversation itself and for the smaller cognition
calls around it (learning extraction, distillation, failure analysis), so
the client only implements non-streamed completions, optionally in JSON
mode, with the sampling knobs the agent exposes.

Throttling (HTTP 429) and transient gateway errors (502/503) are retried
with exponential backoff, honouring ``Retry-After`` when the server sends
it.  Every other failure, including transport errors, surfaces as
:class:`OpenRouterError`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"

_RETRY_STATUSES = frozenset({429, 502, 503})
_MAX_ATTEMPTS = 3
_BACKOFF_SECONDS = 1.0
_TIMEOUT = aiohttp.ClientTimeout(total=120)


class OpenRouterError(Exception):
    """A hosted request failed.

    ``status_code`` is the HTTP status, or ``0`` when the server could not
    be reached at all.
    """

    def __init__(self, message: str, status_code: int, model: str | None = None) -> None:
        self.message = message
        self.status_code = status_code
        self.model = model
        where = f" (model={model})" if model else ""
        super().__init__(f"OpenRouter error {status_code}{where}: {message}")

    @property
    def unreachable(self) -> bool:
        return self.status_code == 0


@dataclass(frozen=True, slots=True)
class ChatResponse:
    content: str
    model: str
    input_tokens: int
    output_tokens: int
    cost: float
    finish_reason: str


def _error_message(body: Any) -> str | None:
    """The provider's error text, if *body* carries one.

    OpenRouter sometimes embeds an error object in a 200 response.
    """
    if not isinstance(body, dict) or "error" not in body:
        return None
    err = body["error"]
    if isinstance(err, dict):
        return str(err.get("message", err))
    return str(err)


def _retry_delay(resp: aiohttp.ClientResponse, attempt: int) -> float:
    header = resp.headers.get("Retry-After")
    if header:
        try:
            return max(0.0, float(header))
        except ValueError:
            pass
    return _BACKOFF_SECONDS * (2 ** attempt)


class OpenRouterClient:
    """Chat completions against OpenRouter.

    The HTTP session is opened on first use.  ``session_cost`` accumulates
    the USD cost reported for every completed request.

    Args:
        api_key: OpenRouter API key.
        base_url: Override for proxies and tests.
        app_title: Sent as ``X-Title`` for OpenRouter's usage dashboard.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        app_title: str = "Agent Cortex",
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._app_title = app_title
        self._session: aiohttp.ClientSession | None = None
        self.session_cost = 0.0

    async def __aenter__(self) -> OpenRouterClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def _http(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                    "X-Title": self._app_title,
                },
                timeout=_TIMEOUT,
            )
        return self._session

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._base_url}/chat/completions"
        model = payload.get("model")
        status = 0
        for attempt in range(_MAX_ATTEMPTS):
            try:
                async with self._http().post(url, json=payload) as resp:
                    status = resp.status
                    if status in _RETRY_STATUSES and attempt < _MAX_ATTEMPTS - 1:
                        delay = _retry_delay(resp, attempt)
                        logger.warning(
                            "OpenRouter returned %d, retrying in %.1fs (attempt %d/%d).",
                            status, delay, attempt + 1, _MAX_ATTEMPTS,
                        )
                        await asyncio.sleep(delay)
                        continue
                    body = await resp.json(content_type=None)
            except (aiohttp.ClientError, OSError, TimeoutError) as exc:
                raise OpenRouterError(f"Cannot reach OpenRouter: {exc}", 0, model) from exc

            message = _error_message(body)
            if message is not None:
                raise OpenRouterError(message, status, model)
            if status >= 400 or not isinstance(body, dict):
                raise OpenRouterError(f"Unexpected response: {body!r}", status, model)
            return body

        raise OpenRouterError("Gave up after repeated throttling.", status, model)

    @staticmethod
    def _cost(body: dict[str, Any]) -> float:
        usage = body.get("usage") or {}
        raw = usage.get("total_cost", usage.get("cost", body.get("cost", 0.0)))
        try:
            return float(raw)
        except (TypeError, ValueError):
            return 0.0

    async def chat(
        self,
        model: str,
        messages: list[dict[str, Any]],
        temperature: float = 0.7,
        max_tokens: int = 4096,
        top_p: float | None = None,
        top_k: int | None = None,
        json_mode: bool = False,
    ) -> ChatResponse:
        """Run one chat completion.

        ``top_p`` and ``top_k`` are only sent when given.  With
        ``json_mode`` the provider is asked for a JSON object reply.

        Raises:
            OpenRouterError: On any API or transport failure, or when no
                choice comes back.
        """
        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if top_p is not None:
            payload["top_p"] = top_p
        if top_k is not None:
            payload["top_k"] = top_k
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        body = await self._post(payload)
        choices = body.get("choices") or []
        if not choices:
            raise OpenRouterError("Completion returned no choices.", 200, model)

        choice = choices[0]
        usage = body.get("usage") or {}
        cost = self._cost(body)
        self.session_cost += cost
        response = ChatResponse(
            content=(choice.get("message") or {}).get("content") or "",
            model=body.get("model", model),
            input_tokens=int(usage.get("prompt_tokens", 0)),
            output_tokens=int(usage.get("completion_tokens", 0)),
            cost=cost,
            finish_reason=choice.get("finish_reason") or "unknown",
        )
        logger.debug(
            "Completion from %s: %d+%d tokens, $%.6f, finish=%s.",
            response.model, response.input_tokens, response.output_tokens,
            cost, response.finish_reason,
        )
        return response

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
            logger.debug("OpenRouter session closed (cost so far $%.6f).", self.session_cost)
        self._session = None
