"""Tier 1: explicit memory directives.

Rules are tried in order against the whole trimmed message and the first
match wins.  "Already known" and "not found" are ordinary ``LOCAL``
answers, not errors.  Every mutating answer carries the agent's complete new
knowledge list in ``updated_knowledge``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable

from cortex.memory.store import MemoryStore
from cortex.pipeline.base import MessageContext
from cortex.pipeline.outcome import CommandOutcome, OutcomeKind

log = logging.getLogger(__name__)

Handler = Callable[[MessageContext, "re.Match[str]"], Awaitable[CommandOutcome]]


@dataclass(frozen=True)
class CommandRule:
    name: str
    pattern: re.Pattern[str]
    handler: Handler


class CommandTier:
    """Regex-driven ``remember`` / ``forget`` / ``forget everything``."""

    name = "commands"

    def __init__(self, store: MemoryStore) -> None:
        self._store = store
        # The clear rule precedes "forget <fact>", which would otherwise
        # swallow "forget everything".
        self.rules: list[CommandRule] = [
            CommandRule("remember", re.compile(r"^remember (?:that )?(.+)", re.IGNORECASE), self._remember),
            CommandRule(
                "clear",
                re.compile(r"^(forget everything|clear your memory|reset knowledge)\b", re.IGNORECASE),
                self._clear,
            ),
            CommandRule("forget", re.compile(r"^forget (?:that )?(.+)", re.IGNORECASE), self._forget),
        ]

    def match(self, text: str) -> tuple[CommandRule, re.Match[str]] | None:
        normalized = text.strip()
        for rule in self.rules:
            m = rule.pattern.match(normalized)
            if m:
                return rule, m
        return None

    async def try_handle(self, ctx: MessageContext) -> CommandOutcome | None:
        found = self.match(ctx.text)
        if found is None:
            return None
        rule, m = found
        log.debug("Command rule %r matched for %s.", rule.name, ctx.agent.name)
        return await rule.handler(ctx, m)

    def _local(self, text: str, knowledge: list[str] | None = None) -> CommandOutcome:
        return CommandOutcome(text, OutcomeKind.LOCAL, updated_knowledge=knowledge, tier=self.name)

    async def _remember(self, ctx: MessageContext, m: re.Match[str]) -> CommandOutcome:
        fact = m.group(1).strip()
        records = await self._store.list_records(ctx.agent.name)
        folded = fact.casefold()
        if any(r.content.casefold() == folded for r in records):
            return self._local(f'I already have a memory of that: "{fact}"')
        await self._store.add(ctx.agent.name, fact)
        return self._local(
            f'OK, I\'ll remember that: "{fact}"',
            [*(r.content for r in records), fact],
        )

    async def _forget(self, ctx: MessageContext, m: re.Match[str]) -> CommandOutcome:
        fact = m.group(1).strip()
        records = await self._store.list_records(ctx.agent.name)
        folded = fact.casefold()
        target = next((r for r in records if r.content.casefold() == folded), None)
        if target is None:
            return self._local(f'I couldn\'t find a memory of "{fact}" to forget.')
        await self._store.delete(ctx.agent.name, target.id)
        return self._local(
            f'OK, I have forgotten: "{target.content}"',
            [r.content for r in records if r.id != target.id],
        )

    async def _clear(self, ctx: MessageContext, m: re.Match[str]) -> CommandOutcome:
        records = await self._store.list_records(ctx.agent.name)
        if not records:
            return self._local("I don't have any memories to forget.")
        await self._store.clear(ctx.agent.name)
        return self._local("Understood. I have cleared all of my persistent memories.", [])
