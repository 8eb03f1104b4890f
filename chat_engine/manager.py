from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger

from .agents import AgentRegistry, ProviderFactory
from .chain import ChainController, Sleeper
from .config import EngineConfig
from .context import ContextStats, SessionContextStore
from .context_builder import HybridMemoryManager
from .llm import create_llm_provider
from .memory import SemanticMemoryStore
from .models import Agent, MemoryRecord, Role, Session
from .sessions import SessionRegistry
from .states import ChainMetrics, ChainStep


@dataclass
class ChatResult:
    session_id: str
    response: str
    agent_id: Optional[str] = None
    chain: List[ChainStep] = field(default_factory=list)
    memories: List[MemoryRecord] = field(default_factory=list)
    chain_metrics: ChainMetrics = field(default_factory=ChainMetrics)


class ChatOrchestrator:
    """Runs one incoming message through the engine.

    user turn -> select agent -> memory context -> LLM -> assistant turn ->
    chain follow-ups (group sessions only). Messages for the same session are
    processed one at a time; different sessions run concurrently.
    """

    def __init__(
        self,
        contexts: SessionContextStore,
        memory: HybridMemoryManager,
        registry: AgentRegistry,
        chain: ChainController,
        sessions: Optional[SessionRegistry] = None,
        chain_timeout: Optional[float] = None,
    ) -> None:
        self.contexts = contexts
        self.memory = memory
        self.registry = registry
        self.chain = chain
        self.sessions = sessions or SessionRegistry()
        self.chain_timeout = chain_timeout
        self._locks: Dict[str, asyncio.Lock] = {}

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        provider_factory: ProviderFactory = create_llm_provider,
        rng: Optional[random.Random] = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> "ChatOrchestrator":
        remote = None
        if config.remote_memory.enabled:
            from .remote_memory import PineconeMemoryBackend

            remote = PineconeMemoryBackend(config.remote_memory.index_name, config.remote_memory.namespace)
            logger.info(f"memory_backend | remote=pinecone index={config.remote_memory.index_name}")
        store = SemanticMemoryStore(remote=remote)
        registry = AgentRegistry(config.agents, config.group_chat, config.llm, provider_factory=provider_factory)
        chain = ChainController(registry, config.group_chat, rng=rng, delay=config.chain_delay, sleep=sleep)
        return cls(
            contexts=SessionContextStore(config.memory),
            memory=HybridMemoryManager(store),
            registry=registry,
            chain=chain,
            chain_timeout=config.chain_timeout,
        )

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    async def handle_message(
        self,
        session_id: str,
        content: str,
        user_id: Optional[str] = None,
        group_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChatResult:
        """Answer one incoming message. LLM failures on the first response propagate."""
        async with self._lock_for(session_id):
            session = self.sessions.get_or_create(session_id, user_id=user_id, group_id=group_id, metadata=metadata)
            logger.info(f"message_in | session={session_id} preview={content[:50]!r}")
            self.contexts.add_message(session_id, Role.USER.value, content, metadata=metadata)
            turns = self.contexts.get_context(session_id)

            agent = self.registry.select_agent(content, turns) if len(self.registry) else None
            mem = self.memory.build_context(turns, session.user_id, content)
            agent_prompt = (
                self.registry.build_multi_agent_system_prompt(agent, include_roster=session.is_group)
                if agent is not None
                else ""
            )
            provider = self.registry.get_llm_provider(agent.id if agent else "")
            response = await provider.chat(
                turns,
                system_prompt=_join_prompts(agent_prompt, mem.system_prompt) or None,
            )
            self.contexts.add_message(
                session_id, Role.ASSISTANT.value, response, agent_id=agent.id if agent else None
            )
            result = ChatResult(
                session_id=session_id,
                response=response,
                agent_id=agent.id if agent else None,
                memories=mem.relevant_memories,
            )
            logger.info(f"message_out | session={session_id} agent={result.agent_id}")

            if agent is not None and session.is_group:
                await self._run_chain(session, agent, response, mem.system_prompt, result)
            return result

    async def _run_chain(
        self,
        session: Session,
        agent: Agent,
        response: str,
        memory_prompt: str,
        result: ChatResult,
    ) -> None:
        async def run_hop(next_agent: Agent, depth: int) -> str:
            turns = self.contexts.get_context(session.id)
            provider = self.registry.get_llm_provider(next_agent.id)
            prompt = self.registry.build_multi_agent_system_prompt(next_agent, include_roster=True)
            text = await provider.chat(
                turns,
                system_prompt=_join_prompts(prompt, memory_prompt),
            )
            self.contexts.add_message(session.id, Role.ASSISTANT.value, text, agent_id=next_agent.id)
            result.chain.append(ChainStep(agent_id=next_agent.id, response=text, depth=depth))
            logger.info(f"chain_hop | session={session.id} agent={next_agent.id} depth={depth}")
            return text

        run = self.chain.run_chain(agent.id, response, run_hop, metrics=result.chain_metrics)
        if self.chain_timeout is None:
            await run
            return
        try:
            await asyncio.wait_for(run, timeout=self.chain_timeout)
        except asyncio.TimeoutError:
            result.chain_metrics.aborted = True
            logger.warning(f"chain_timeout | session={session.id} hops={len(result.chain)}")

    def clear_session(self, session_id: str) -> None:
        self.sessions.delete(session_id)
        self.contexts.clear_context(session_id)
        # the session lock is kept: a woken waiter may still be queued on it
        logger.info(f"session_cleared | session={session_id}")

    def get_session_stats(self, session_id: str) -> Dict[str, Any]:
        stats: ContextStats = self.contexts.get_stats(session_id)
        return {"session": self.sessions.get(session_id), "context": stats}

    def get_status(self) -> Dict[str, Any]:
        return {
            "sessions": len(self.sessions),
            "agents": len(self.registry),
            "group_chat": self.registry.group_chat.enabled,
        }


def _join_prompts(*parts: str) -> str:
    return "\n\n".join(p for p in parts if p)
