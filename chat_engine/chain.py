from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, List, Optional

from loguru import logger

from .agents import AgentRegistry
from .models import Agent, GroupChatConfig
from .states import ChainDecision, ChainMetrics, ChainState, ChainStep


# (agent, depth) -> response text for that hop
HopRunner = Callable[[Agent, int], Awaitable[str]]
Sleeper = Callable[[float], Awaitable[None]]


class ChainController:
    """Decides and drives persona-to-persona follow-ups for one message.

    The chain is a bounded state machine: ANSWERED(0) -> CHAINED(1) -> ... ->
    TERMINAL. `depth` counts hops after the first response and chaining is
    only evaluated while depth < max_agent_chain.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        group_chat: GroupChatConfig,
        rng: Optional[random.Random] = None,
        delay: float = 1.0,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self.group_chat = group_chat
        self.rng = rng or random.Random()
        self.delay = delay
        self._sleep = sleep

    def should_chain_agent(self, last_agent_id: str, response_text: str, depth: int) -> ChainDecision:
        cfg = self.group_chat
        if not cfg.enabled or not cfg.agent_interaction:
            return ChainDecision(False)
        if cfg.max_agent_chain is None:
            raise ValueError("max_agent_chain must be configured to evaluate chaining")
        if depth >= cfg.max_agent_chain:
            return ChainDecision(False)

        low = (response_text or "").lower()
        for agent in self.registry.get_all_agents():
            if agent.id == last_agent_id:
                continue
            patterns = [f"@{agent.name}", agent.name, *agent.triggers]
            if not any(p and p.lower() in low for p in patterns):
                continue
            if self.rng.random() < cfg.chain_threshold:
                logger.info(f"chain_decision | from={last_agent_id} to={agent.id} depth={depth}")
                return ChainDecision(True, agent)
        return ChainDecision(False)

    async def run_chain(
        self,
        first_agent_id: str,
        first_response: str,
        run_hop: HopRunner,
        metrics: Optional[ChainMetrics] = None,
    ) -> List[ChainStep]:
        """Run follow-up hops until the chain is terminal.

        A failing hop ends the chain silently; completed hops are kept.
        """
        metrics = metrics if metrics is not None else ChainMetrics()
        steps: List[ChainStep] = []
        state = ChainState.ANSWERED
        depth = 0
        agent_id, response = first_agent_id, first_response

        while state != ChainState.TERMINAL:
            decision = self.should_chain_agent(agent_id, response, depth)
            if not decision.should_chain or decision.next_agent is None:
                state = ChainState.TERMINAL
                break

            next_agent = decision.next_agent
            await self._sleep(self.delay)
            try:
                response = await run_hop(next_agent, depth + 1)
            except Exception:
                logger.exception(f"chain_aborted | agent={next_agent.id} depth={depth + 1}")
                metrics.aborted = True
                state = ChainState.TERMINAL
                break

            depth += 1
            agent_id = next_agent.id
            state = ChainState.CHAINED
            steps.append(ChainStep(agent_id=agent_id, response=response, depth=depth, state=state))
            metrics.hops = depth
            metrics.agents.append(agent_id)

        logger.debug(f"chain_terminal | hops={len(steps)} aborted={metrics.aborted}")
        return steps
