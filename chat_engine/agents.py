from __future__ import annotations

import os
import re
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from loguru import logger

from .config import LLMConfig
from .llm import LLMProvider, create_llm_provider
from .models import Agent, GroupChatConfig, Role, Turn


_DEFAULT_PROMPT = (
    "You are a helpful conversation agent. Answer concisely, stay in character,"
    " and ask one clarifying question when the request is ambiguous."
)

MENTION_RE = re.compile(r"@(\w+)")

ProviderFactory = Callable[[LLMConfig], LLMProvider]


def _load_default_prompt() -> str:
    # Allow override via PROMPTS_DIR; else use local prompts/agent_prompt.md
    base_dir = os.getenv("PROMPTS_DIR")
    if base_dir:
        path = Path(base_dir) / "agent_prompt.md"
    else:
        path = Path(__file__).resolve().parents[1] / "prompts" / "agent_prompt.md"
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        logger.debug(f"Using built-in agent prompt: {e}")
        return _DEFAULT_PROMPT


class NoAgentsRegistered(RuntimeError):
    pass


class AgentRegistry:
    """Registry of personas plus the selection rules for incoming messages.

    Selection precedence, first match wins:
      1. trigger keyword (registration order, then trigger order)
      2. `@word` mention matched against agent names
      3. the agent of the most recent assistant turn in context
      4. the default agent
    """

    def __init__(
        self,
        agents: Iterable[Agent],
        group_chat: GroupChatConfig,
        llm_config: LLMConfig,
        provider_factory: ProviderFactory = create_llm_provider,
    ) -> None:
        self.group_chat = group_chat
        self.llm_config = llm_config
        self._provider_factory = provider_factory
        self._agents: Dict[str, Agent] = {}
        self._default_agent_id: Optional[str] = None
        self._providers: Dict[str, LLMProvider] = {}
        self._shared_provider: Optional[LLMProvider] = None
        self._fallback_prompt: Optional[str] = None

        for agent in agents:
            self.register_agent(agent)
        logger.info(f"agent_registry_init | agents={len(self._agents)}")

    def register_agent(self, agent: Agent) -> None:
        if not agent.system_prompt:
            if self._fallback_prompt is None:
                self._fallback_prompt = _load_default_prompt()
            agent = replace(agent, system_prompt=self._fallback_prompt)
        self._agents[agent.id] = agent
        if agent.is_default:
            self._default_agent_id = agent.id
        elif self._default_agent_id == agent.id:
            self._default_agent_id = None

        self._providers.pop(agent.id, None)
        if agent.llm_override:
            self._providers[agent.id] = self._provider_factory(self.llm_config.merged(agent.llm_override))
        logger.info(f"agent_registered | name={agent.name} id={agent.id} default={agent.is_default}")

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        return self._agents.get(agent_id)

    def get_default_agent(self) -> Optional[Agent]:
        if self._default_agent_id:
            return self._agents.get(self._default_agent_id)
        return next(iter(self._agents.values()), None)

    def get_all_agents(self) -> List[Agent]:
        return list(self._agents.values())

    def __len__(self) -> int:
        return len(self._agents)

    def select_agent(self, content: str, context: Optional[List[Turn]] = None) -> Agent:
        if not self._agents:
            raise NoAgentsRegistered("select_agent called on an empty agent registry")
        low = (content or "").lower()

        for agent in self._agents.values():
            for trigger in agent.triggers:
                if trigger and trigger.lower() in low:
                    logger.debug(f"agent_selected | agent={agent.name} reason=trigger keyword={trigger}")
                    return agent

        mention = MENTION_RE.search(content or "")
        if mention:
            name = mention.group(1).lower()
            for agent in self._agents.values():
                if name in agent.name.lower():
                    logger.debug(f"agent_selected | agent={agent.name} reason=mention")
                    return agent

        for turn in reversed(context or []):
            if turn.role == Role.ASSISTANT.value and turn.agent_id:
                # only the most recent attributed assistant turn counts
                agent = self._agents.get(turn.agent_id)
                if agent is not None:
                    logger.debug(f"agent_selected | agent={agent.name} reason=continuity")
                    return agent
                break

        agent = self.get_default_agent()
        logger.debug(f"agent_selected | agent={agent.name} reason=default")
        return agent

    def get_llm_provider(self, agent_id: str) -> LLMProvider:
        provider = self._providers.get(agent_id)
        if provider is not None:
            return provider
        if self._shared_provider is None:
            self._shared_provider = self._provider_factory(self.llm_config)
        return self._shared_provider

    def build_multi_agent_system_prompt(self, agent: Agent, include_roster: bool = False) -> str:
        prompt = agent.system_prompt
        if not (self.group_chat.enabled and include_roster and len(self._agents) > 1):
            return prompt
        others = [a for a in self._agents.values() if a.id != agent.id]
        if not others:
            return prompt
        lines = [
            "",
            "",
            "## Other agents",
            "In group chats you can collaborate with other agents. The other agents are:",
        ]
        lines.extend(f"- {other.name}: {other.description or 'no description'}" for other in others)
        lines.append("")
        lines.append("To get another agent's attention, mention it as @name.")
        return prompt + "\n".join(lines) + "\n"
