from __future__ import annotations

import argparse
import asyncio
import sys

from loguru import logger

from chat_engine.config import load_config
from chat_engine.manager import ChatOrchestrator


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Chat with the configured personas from the terminal")
    p.add_argument("--session-id", type=str, default="cli:local-user", help="Composite session id, e.g. cli:alice or cli:group:g1:alice")
    p.add_argument("--agents-file", type=str, default=None, help="JSON file with agent definitions (defaults to AGENTS_FILE env)")
    p.add_argument("--log-level", type=str, default="INFO", help="Loguru level for stderr output")
    p.add_argument("--max-agent-chain", type=int, default=None, help="Override MAX_AGENT_CHAIN")
    return p.parse_args()


async def _read_line(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


async def main() -> None:
    args = parse_args()
    logger.remove()
    logger.add(sys.stderr, level=args.log_level.upper(), colorize=True, format="{time:HH:mm:ss} | {level} | {message}")

    config = load_config(agents_file=args.agents_file)
    if args.max_agent_chain is not None:
        config.group_chat.max_agent_chain = args.max_agent_chain
    orchestrator = ChatOrchestrator.from_config(config)
    logger.info(f"Starting chat | session={args.session_id} agents={len(config.agents)}")

    while True:
        try:
            line = (await _read_line("you> ")).strip()
        except (EOFError, KeyboardInterrupt):
            break
        if not line:
            continue
        if line in ("/quit", "/exit"):
            break
        if line == "/clear":
            orchestrator.clear_session(args.session_id)
            print("(session cleared)")
            continue
        if line == "/stats":
            stats = orchestrator.get_session_stats(args.session_id)["context"]
            print(f"(messages={stats.message_count} summaries={stats.summary_count})")
            continue

        try:
            result = await orchestrator.handle_message(args.session_id, line)
        except Exception as e:
            logger.error(f"Failed to answer: {e}")
            print(f"Sorry, something went wrong while answering: {e}")
            continue

        name = _agent_name(orchestrator, result.agent_id)
        print(f"{name}> {result.response}")
        for step in result.chain:
            print(f"{_agent_name(orchestrator, step.agent_id)}> {step.response}")


def _agent_name(orchestrator: ChatOrchestrator, agent_id: str | None) -> str:
    agent = orchestrator.registry.get_agent(agent_id) if agent_id else None
    return agent.name if agent else "assistant"


if __name__ == "__main__":
    asyncio.run(main())
