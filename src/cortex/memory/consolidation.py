from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

log = logging.getLogger(__name__)

Distiller = Callable[[list[str]], Awaitable[Any]]


class ConsolidationError(Exception):
    """The distillation step failed or returned something unusable."""


@dataclass(frozen=True)
class ConsolidationSchedule:
    """Every ``interval``-th conversation message, once more than ``min_messages`` exist.

    Counts are of user and agent messages only; system notes do not count.
    """

    interval: int = 10
    min_messages: int = 5

    def is_due(self, message_count: int) -> bool:
        return message_count > self.min_messages and message_count % self.interval == 0


def validate_distilled(result: Any, original: list[str]) -> list[str]:
    if not isinstance(result, list):
        raise ConsolidationError(f"distillation returned {type(result).__name__}, expected a list")
    if not all(isinstance(item, str) for item in result):
        raise ConsolidationError("distillation returned non-string entries")
    cleaned = [item.strip() for item in result if item.strip()]
    if not cleaned and original:
        raise ConsolidationError("distillation returned an empty list for a non-empty knowledge base")
    return cleaned


class Consolidator:
    """Replaces a knowledge list with a distilled version of itself.

    Knowledge lists shorter than ``min_entries`` are returned untouched
    without calling the distiller.
    """

    def __init__(self, distill: Distiller, min_entries: int = 3) -> None:
        self._distill = distill
        self.min_entries = min_entries

    async def consolidate(self, knowledge: list[str]) -> list[str]:
        """Return the distilled list.

        Raises:
            ConsolidationError: If the distiller raised or its result was
                malformed.  The caller keeps its existing knowledge.
        """
        if len(knowledge) < self.min_entries:
            log.debug("Skipping consolidation: %d entries (< %d).", len(knowledge), self.min_entries)
            return list(knowledge)
        try:
            result = await self._distill(list(knowledge))
        except ConsolidationError:
            raise
        except Exception as exc:
            raise ConsolidationError(f"distillation failed: {exc}") from exc
        distilled = validate_distilled(result, knowledge)
        log.info("Consolidated knowledge: %d -> %d entries.", len(knowledge), len(distilled))
        return distilled
