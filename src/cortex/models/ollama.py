"""Local generation backend: an asyncio client for Ollama's HTTP API.

The native pathway needs three things from the server: a streamed
completion (``POST /api/generate`` with ``"stream": true``), the list of
installed models (``GET /api/tags``) and model housekeeping (pull/delete).

Both streamed endpoints answer with NDJSON, one object per line.  A
generation line looks like ``{"response": "<text>", "done": false}``; the
last one carries ``"done": true``.  Failures are reported through three
exception types so the pipeline can phrase them for the user: the server
is down, the model is missing, or something else went wrong.
"""

from __future__ import annotations

import json as _json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_URL = "http://localhost:11434"

_STREAM_TIMEOUT = aiohttp.ClientTimeout(total=None, sock_connect=10, sock_read=300)
_TAGS_TIMEOUT = aiohttp.ClientTimeout(total=10)

_TRANSPORT_ERRORS = (aiohttp.ClientError, OSError, TimeoutError)


class OllamaError(Exception):
    """Any failure talking to Ollama."""


class OllamaUnavailableError(OllamaError):
    """Nothing is listening at the configured URL."""


class OllamaModelError(OllamaError):
    """The model named in the request is not installed."""


@dataclass(frozen=True, slots=True)
class LocalModel:
    """An installed model as listed by ``/api/tags``.

    ``model`` is the identifier generation calls expect; ``name`` is the
    tag shown to the user (usually identical).
    """

    name: str
    model: str
    size: int = 0
    modified_at: str = ""


@dataclass(frozen=True, slots=True)
class PullProgress:
    status: str
    digest: str | None = None
    total: int | None = None
    completed: int | None = None

    @property
    def percent(self) -> int | None:
        if self.total and self.completed:
            return round(self.completed / self.total * 100)
        return None


def _error_detail(body: Any, fallback: str) -> str:
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return fallback


def _raise_for_status(status: int, detail: str, model: str | None = None) -> None:
    """Raise the exception matching an error status (or in-band error text)."""
    if status == 404 or "not found" in detail.lower():
        if model:
            raise OllamaModelError(f"Model {model!r} is not installed: {detail}")
        raise OllamaModelError(f"Not found: {detail}")
    raise OllamaError(f"Ollama answered {status}: {detail}")


async def _ndjson(content: aiohttp.StreamReader) -> AsyncIterator[dict[str, Any]]:
    """Decode a streamed body line by line, skipping blank lines."""
    async for raw in content:
        text = raw.decode("utf-8", errors="replace").strip()
        if not text:
            continue
        try:
            obj = _json.loads(text)
        except _json.JSONDecodeError as exc:
            raise OllamaError(f"Malformed stream fragment from Ollama: {text[:120]}") from exc
        if isinstance(obj, dict):
            yield obj


class GenerationStream:
    """Text fragments of one streamed generation, in arrival order.

    Single use.  Iteration ends at the ``done`` marker or the end of the
    body, whichever comes first.  :meth:`aclose` may be called at any time
    (the session orchestrator does so to cancel) and releases the
    connection.

    Iteration raises :class:`OllamaError` for an in-band error or an
    unparseable line, and :class:`OllamaUnavailableError` when the
    connection drops.
    """

    def __init__(self, response: aiohttp.ClientResponse, model: str) -> None:
        self._response = response
        self._model = model
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[str]:
        return self._fragments()

    async def _fragments(self) -> AsyncIterator[str]:
        try:
            async for obj in _ndjson(self._response.content):
                if self._closed:
                    return
                if obj.get("error"):
                    _raise_for_status(500, str(obj["error"]), self._model)
                if obj.get("response"):
                    yield obj["response"]
                if obj.get("done"):
                    return
        except aiohttp.ClientError as exc:
            raise OllamaUnavailableError(f"Ollama stream interrupted: {exc}") from exc
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._response.release()


class OllamaClient:
    """Talks to one Ollama server.

    The aiohttp session is opened on first request.  Timeouts are chosen
    per call: the tag listing is short, streams only bound the idle time
    between chunks.
    """

    def __init__(self, base_url: str = DEFAULT_URL) -> None:
        self._base_url = base_url.rstrip("/")
        self._session: aiohttp.ClientSession | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    def __repr__(self) -> str:
        return f"OllamaClient({self._base_url!r})"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    def _unreachable(self, exc: BaseException) -> OllamaUnavailableError:
        return OllamaUnavailableError(f"No Ollama server at {self._base_url}: {exc}")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        model: str | None = None,
    ) -> dict[str, Any]:
        try:
            async with self._get_session().request(
                method, self._base_url + path, json=json, timeout=_TAGS_TIMEOUT,
            ) as resp:
                body = await resp.json(content_type=None)
                if resp.status >= 400:
                    _raise_for_status(resp.status, _error_detail(body, str(resp.reason)), model)
        except OllamaError:
            raise
        except _TRANSPORT_ERRORS as exc:
            raise self._unreachable(exc) from exc
        return body if isinstance(body, dict) else {}

    async def open_stream(self, model: str, prompt: str) -> GenerationStream:
        """Submit *prompt* to *model* and return the stream of its reply.

        The status line is checked before returning, so an unreachable
        server or a missing model raises here, not on first iteration.
        """
        payload = {"model": model, "prompt": prompt, "stream": True}
        try:
            resp = await self._get_session().post(
                self._base_url + "/api/generate", json=payload, timeout=_STREAM_TIMEOUT,
            )
        except _TRANSPORT_ERRORS as exc:
            raise self._unreachable(exc) from exc

        if resp.status >= 400:
            try:
                body = await resp.json(content_type=None)
            except (ValueError, aiohttp.ClientError):
                body = None
            finally:
                resp.release()
            _raise_for_status(resp.status, _error_detail(body, str(resp.reason)), model)

        logger.debug("Streaming from %s (%d prompt chars).", model, len(prompt))
        return GenerationStream(resp, model)

    async def list_models(self) -> list[LocalModel]:
        """Installed models in the order the server lists them."""
        data = await self._request("GET", "/api/tags")
        return [
            LocalModel(
                name=entry.get("name", ""),
                model=entry.get("model") or entry.get("name", ""),
                size=int(entry.get("size") or 0),
                modified_at=entry.get("modified_at", ""),
            )
            for entry in data.get("models") or []
        ]

    async def pull_model(self, model: str) -> AsyncIterator[PullProgress]:
        """Download *model*, yielding progress until the ``success`` record."""
        payload = {"name": model, "stream": True}
        try:
            async with self._get_session().post(
                self._base_url + "/api/pull", json=payload, timeout=_STREAM_TIMEOUT,
            ) as resp:
                if resp.status >= 400:
                    body = await resp.json(content_type=None)
                    detail = _error_detail(body, str(resp.reason))
                    raise OllamaError(f"Could not pull {model!r}: {detail}")

                previous = None
                async for obj in _ndjson(resp.content):
                    if obj.get("error"):
                        raise OllamaError(f"Could not pull {model!r}: {obj['error']}")
                    progress = PullProgress(
                        status=obj.get("status", ""),
                        digest=obj.get("digest"),
                        total=obj.get("total"),
                        completed=obj.get("completed"),
                    )
                    if progress.status != previous:
                        logger.info("Pull %s: %s", model, progress.status)
                        previous = progress.status
                    yield progress
                    if progress.status == "success":
                        return
        except OllamaError:
            raise
        except _TRANSPORT_ERRORS as exc:
            raise self._unreachable(exc) from exc

    async def delete_model(self, model: str) -> None:
        """Remove *model* from the server."""
        await self._request("DELETE", "/api/delete", json={"name": model}, model=model)
        logger.info("Deleted local model %s.", model)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> OllamaClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()
