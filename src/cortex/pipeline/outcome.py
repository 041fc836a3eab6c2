"""Result shapes produced by the native pipeline.

A message ends in exactly one terminal :class:`PipelineState`.  Finished
answers are :class:`CommandOutcome` values; generated answers are
:class:`TokenStream` objects that reach their terminal state only once they
have been drained, cancelled, or have failed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Callable

log = logging.getLogger(__name__)


class OutcomeKind(str, Enum):
    LOCAL = "local"
    NATIVE_INFERENCE = "native_inference"
    COGNITION = "cognition"
    ERROR = "error"


class PipelineState(str, Enum):
    RECEIVED = "received"
    TIER1_CHECK = "tier1_check"
    TIER2_CHECK = "tier2_check"
    TIER3_ATTEMPT = "tier3_attempt"
    STREAMING = "streaming"
    RESPOND = "respond"
    ERROR_RESPOND = "error_respond"
    STATIC_FALLBACK = "static_fallback"
    COMPLETE = "complete"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: frozenset[PipelineState] = frozenset({
    PipelineState.RESPOND,
    PipelineState.ERROR_RESPOND,
    PipelineState.STATIC_FALLBACK,
    PipelineState.COMPLETE,
})


@dataclass(frozen=True)
class CommandOutcome:
    """A finished answer.

    Attributes:
        response_text: Text for the transcript, if any.
        kind: How the answer was produced.
        updated_knowledge: When set, the complete new knowledge list for the
            agent (not a delta).  Apply it to the store and the mirror
            together.
        state: The terminal state this outcome represents.
        tier: Name of the handler that produced it.
    """

    response_text: str | None
    kind: OutcomeKind
    updated_knowledge: list[str] | None = None
    state: PipelineState = PipelineState.RESPOND
    tier: str | None = None

    @classmethod
    def error(cls, text: str, tier: str | None = None) -> CommandOutcome:
        return cls(text, OutcomeKind.ERROR, state=PipelineState.ERROR_RESPOND, tier=tier)


class TokenStream:
    """A lazy, finite, non-restartable sequence of text fragments.

    Fragments are yielded in arrival order.  The consumer must drain the
    stream or call :meth:`aclose`; ``async with stream:`` does the latter.

    A failure inside the source does not propagate: iteration simply ends,
    :attr:`error` holds an ``Error`` outcome built by *on_error*, and
    :attr:`state` becomes ``ERROR_RESPOND``.  Fragments already delivered
    stay delivered.  :meth:`cancel` stops iteration at the next fragment
    boundary and ends in ``COMPLETE`` with :attr:`cancelled` set.

    Args:
        source: An async iterator of fragments, or one already-complete string.
        on_error: Maps a source exception to the outcome reported for it.
        tier: Name of the handler that opened the stream.
    """

    def __init__(
        self,
        source: AsyncIterator[str] | str,
        *,
        on_error: Callable[[Exception], CommandOutcome] | None = None,
        tier: str | None = None,
    ) -> None:
        self._source = source
        self._on_error = on_error
        self.tier = tier
        self.state = PipelineState.STREAMING
        self.error: CommandOutcome | None = None
        self.cancelled = False
        self.fragment_count = 0
        self._iterator: Any = None
        self._released = False

    def __aiter__(self) -> AsyncIterator[str]:
        if self._iterator is not None:
            raise RuntimeError("TokenStream can only be iterated once")
        self._iterator = self._iterate()
        return self._iterator

    async def _iterate(self) -> AsyncIterator[str]:
        try:
            if isinstance(self._source, str):
                if self._source and not self.cancelled:
                    self.fragment_count += 1
                    yield self._source
            else:
                async for fragment in self._source:
                    if self.cancelled:
                        break
                    if not fragment:
                        continue
                    self.fragment_count += 1
                    yield fragment
        except Exception as exc:
            log.warning("Stream failed after %d fragments: %s", self.fragment_count, exc)
            self.error = (
                self._on_error(exc) if self._on_error is not None
                else CommandOutcome.error(str(exc), tier=self.tier)
            )
            self.state = PipelineState.ERROR_RESPOND
            return
        finally:
            await self._release()
        self.state = PipelineState.COMPLETE

    async def _release(self) -> None:
        if self._released:
            return
        self._released = True
        closer = getattr(self._source, "aclose", None)
        if closer is not None:
            await closer()

    def cancel(self) -> None:
        """Stop at the next fragment boundary."""
        self.cancelled = True

    async def aclose(self) -> None:
        """Abandon the stream and release the underlying source."""
        self.cancelled = True
        if self._iterator is not None:
            await self._iterator.aclose()
        await self._release()
        if self.state is PipelineState.STREAMING:
            self.state = PipelineState.COMPLETE

    async def collect(self) -> str:
        """Drain the stream and return the concatenated text."""
        return "".join([fragment async for fragment in self])

    async def __aenter__(self) -> TokenStream:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"TokenStream(state={self.state.value}, fragments={self.fragment_count})"


PipelineResult = CommandOutcome | TokenStream
