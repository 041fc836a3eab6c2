"""Entry point for `python -m cortex`: a terminal chat with one agent."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

log = logging.getLogger("cortex")

HELP = """Commands:
  /native, /hosted       switch pathway
  /mode <name>           chat | logic | math | code | emotion
  /connect [url]         connect to the local Ollama server
  /model <name>          select a local model
  /pull <name>           pull a local model
  /delete <name>         delete a local model
  /import <file>         import one concept per line
  /analyze               suggest memories from this conversation
  /approve <n>           store suggestion n
  /memories              list stored memories
  /quit                  exit"""


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="cortex", description="Chat with an agent.")
    parser.add_argument("--agent", type=Path, help="Agent profile JSON file.")
    parser.add_argument("--offline", action="store_true", help="Never use the hosted model.")
    parser.add_argument("--debug", action="store_true", help="Verbose logging.")
    return parser.parse_args(argv)


async def _build(settings, offline: bool):
    from cortex.memory.backends import build_backend
    from cortex.memory.store import MemoryStore
    from cortex.models.intent import ZeroShotClassifier
    from cortex.models.openrouter import OpenRouterClient
    from cortex.pipeline.orchestrator import NativePipeline
    from cortex.session.cognition import HostedCognition
    from cortex.session.orchestrator import SessionOrchestrator

    backend = build_backend(
        settings.MEMORY_BACKEND,
        file_path=settings.MEMORY_FILE_PATH,
        redis_url=settings.REDIS_URL,
    )
    store = MemoryStore(backend)

    classifier = None
    if settings.INTENT_ENABLED:
        classifier = ZeroShotClassifier(settings.INTENT_MODEL)
        classifier.start()

    cognition = None
    if settings.hosted_configured and not offline:
        cognition = HostedCognition(OpenRouterClient(settings.OPENROUTER_API_KEY), settings.HOSTED_MODEL)

    session = SessionOrchestrator(
        store,
        NativePipeline.build(store, classifier, settings),
        cognition=cognition,
        settings=settings,
    )
    session.init(offline=offline)
    return session, classifier, cognition


async def _handle_command(session, line: str) -> bool:
    """Run a slash command.  Returns ``False`` to exit."""
    from cortex.agent import Mode
    from cortex.session.orchestrator import Pathway

    cmd, _, arg = line[1:].partition(" ")
    arg = arg.strip()
    if cmd in ("quit", "exit"):
        return False
    if cmd in ("native", "hosted"):
        if not session.set_pathway(Pathway(cmd)):
            print(f"Hosted pathway unavailable: {session.hosted_unavailable_reason}")
    elif cmd == "mode":
        try:
            session.set_mode(Mode(arg.lower()))
        except ValueError:
            print(f"Unknown mode {arg!r}.")
    elif cmd == "connect":
        if arg:
            await session.set_local_url(arg)
        status = await session.connect_local_backend()
        if status.connected:
            print(f"Connected. Models: {', '.join(m.name for m in status.models) or '(none)'}")
            print(f"Using: {session.local.model or '(none)'}")
        else:
            print(f"Not connected: {status.error}")
    elif cmd == "model":
        session.select_local_model(arg)
    elif cmd == "pull":
        async for progress in session.pull_model(arg):
            pct = progress.percent
            print(f"  {progress.status}" + (f" {pct}%" if pct is not None else ""))
    elif cmd == "delete":
        await session.delete_model(arg)
    elif cmd == "import":
        path = Path(arg)
        count = await session.import_knowledge(path.read_text(encoding="utf-8"), path.name)
        print(f"Imported {count} concepts.")
    elif cmd == "analyze":
        suggestions = await session.analyze_conversation()
        for i, memory in enumerate(suggestions or [], 1):
            print(f"  {i}. {memory}")
    elif cmd == "approve":
        suggestions = session.suggested_memories or []
        index = int(arg) - 1
        if 0 <= index < len(suggestions):
            await session.approve_memory(suggestions[index])
    elif cmd == "memories":
        for memory in session.agent.knowledge_base:
            print(f"  - {memory}")
    else:
        print(HELP)
    return True


async def _run(args: argparse.Namespace) -> None:
    from cortex.config import get_settings

    settings = get_settings()
    session, classifier, cognition = await _build(settings, args.offline)

    data = {}
    if args.agent:
        data = json.loads(args.agent.read_text(encoding="utf-8"))
    agent = await session.load_agent(data)
    if settings.OLLAMA_MODEL or session.pathway.value == "native":
        await session.connect_local_backend()

    print(f"{agent.name} ({session.pathway.value}). Type /help for commands.")
    try:
        while True:
            try:
                line = await asyncio.to_thread(input, "> ")
            except EOFError:
                break
            line = line.strip()
            if not line:
                continue
            if line.startswith("/"):
                try:
                    if not await _handle_command(session, line):
                        break
                except Exception as e:
                    log.error("Command failed: %s", e)
                continue
            seen = session.transcript.message_count
            try:
                await session.send_message(line)
            except Exception as e:
                log.error("Message failed: %s", e)
                continue
            for msg in session.transcript.messages[seen + 1:]:
                prefix = agent.name if msg.sender == "agent" else "*"
                print(f"{prefix}: {msg.text}")
    finally:
        await session.close()
        if classifier is not None:
            await classifier.close()
        if cognition is not None:
            await cognition.close()
        await session.store.close()


def main(argv: list[str] | None = None) -> None:
    # Load .env from canonical locations before anything else.
    load_dotenv("config/.env")
    load_dotenv()

    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    try:
        from cortex.config import get_settings

        get_settings()
    except Exception as e:
        log.error("Configuration error: %s", e)
        log.error("Edit config/.env (or set environment variables) and restart.")
        sys.exit(1)

    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        log.info("Interrupted.")


if __name__ == "__main__":
    main()
