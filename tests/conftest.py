from __future__ import annotations

import random
from typing import Callable, List, Optional, Union

import pytest

from chat_engine.agents import AgentRegistry
from chat_engine.config import LLMConfig
from chat_engine.models import Agent, GroupChatConfig, Turn


class FakeProvider:
    """In-memory LLMProvider recording every call."""

    def __init__(self, reply: Union[str, Callable[[List[Turn], Optional[str]], str]] = "ok", fail_on: Optional[set] = None):
        self.reply = reply
        self.fail_on = fail_on or set()
        self.calls: List[dict] = []

    async def chat(self, turns, system_prompt=None, max_tokens=None, temperature=None) -> str:
        self.calls.append({"turns": list(turns), "system_prompt": system_prompt})
        if len(self.calls) in self.fail_on:
            raise RuntimeError(f"provider failure on call {len(self.calls)}")
        if callable(self.reply):
            return self.reply(turns, system_prompt)
        return self.reply


class SequenceRandom(random.Random):
    """random.Random whose random() replays a fixed sequence (last value repeats)."""

    def __init__(self, values: List[float]):
        super().__init__(0)
        self.values = list(values)
        self.draws = 0

    def random(self) -> float:
        idx = min(self.draws, len(self.values) - 1)
        self.draws += 1
        return self.values[idx]


async def no_sleep(_delay: float) -> None:
    return None


@pytest.fixture
def agents() -> List[Agent]:
    return [
        Agent(id="alpha", name="Alpha", system_prompt="You are Alpha.", triggers=["foo"], description="first persona"),
        Agent(id="beta", name="Beta", system_prompt="You are Beta.", is_default=True),
    ]


@pytest.fixture
def group_chat() -> GroupChatConfig:
    return GroupChatConfig(enabled=True, agent_interaction=True, max_agent_chain=3, chain_threshold=0.5)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def registry(agents, group_chat, provider) -> AgentRegistry:
    return AgentRegistry(agents, group_chat, LLMConfig(), provider_factory=lambda cfg: provider)
