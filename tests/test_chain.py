import pytest

from chat_engine.agents import AgentRegistry
from chat_engine.chain import ChainController
from chat_engine.config import LLMConfig
from chat_engine.models import Agent, GroupChatConfig
from chat_engine.states import ChainMetrics, ChainState

from conftest import SequenceRandom, no_sleep


def controller(registry, group_chat, draws=(0.0,), sleep=no_sleep):
    return ChainController(registry, group_chat, rng=SequenceRandom(list(draws)), delay=0.0, sleep=sleep)


class TestShouldChain:

    def test_disabled_group_chat_never_chains(self, registry):
        ctl = controller(registry, GroupChatConfig(enabled=False, agent_interaction=True))
        assert not ctl.should_chain_agent("beta", "@Alpha help", 0).should_chain

    def test_interaction_off_never_chains(self, registry):
        ctl = controller(registry, GroupChatConfig(enabled=True, agent_interaction=False))
        assert not ctl.should_chain_agent("beta", "@Alpha help", 0).should_chain

    def test_depth_limit(self, registry, group_chat):
        ctl = controller(registry, group_chat)
        assert not ctl.should_chain_agent("beta", "@Alpha help", 3).should_chain

    def test_missing_max_chain_raises(self, registry):
        ctl = controller(registry, GroupChatConfig(enabled=True, agent_interaction=True, max_agent_chain=None))
        with pytest.raises(ValueError):
            ctl.should_chain_agent("beta", "@Alpha help", 0)

    def test_mention_with_passing_draw(self, registry, group_chat):
        ctl = controller(registry, group_chat, draws=[0.1])
        decision = ctl.should_chain_agent("beta", "maybe @Alpha knows", 0)
        assert decision.should_chain
        assert decision.next_agent.id == "alpha"

    def test_failing_draw_does_not_chain(self, registry, group_chat):
        rng = SequenceRandom([0.9])
        ctl = ChainController(registry, group_chat, rng=rng, delay=0.0, sleep=no_sleep)
        assert not ctl.should_chain_agent("beta", "maybe @Alpha knows", 0).should_chain
        assert rng.draws == 1

    def test_trigger_word_in_response_qualifies(self, registry, group_chat):
        ctl = controller(registry, group_chat)
        assert ctl.should_chain_agent("beta", "that sounds like a FOO question", 0).next_agent.id == "alpha"

    def test_no_draw_without_match(self, registry, group_chat):
        rng = SequenceRandom([0.0])
        ctl = ChainController(registry, group_chat, rng=rng, delay=0.0, sleep=no_sleep)
        assert not ctl.should_chain_agent("beta", "nothing relevant", 0).should_chain
        assert rng.draws == 0

    def test_speaking_agent_is_skipped(self, registry, group_chat):
        ctl = controller(registry, group_chat)
        assert not ctl.should_chain_agent("alpha", "I am Alpha", 0).should_chain

    def test_failed_draw_moves_to_next_candidate(self, group_chat, provider):
        reg = AgentRegistry(
            [
                Agent(id="a", name="Ann", system_prompt="a"),
                Agent(id="b", name="Bob", system_prompt="b"),
                Agent(id="c", name="Cid", system_prompt="c", is_default=True),
            ],
            group_chat,
            LLMConfig(),
            provider_factory=lambda cfg: provider,
        )
        ctl = controller(reg, group_chat, draws=[0.9, 0.1])
        decision = ctl.should_chain_agent("c", "ask Ann or Bob", 0)
        assert decision.next_agent.id == "b"

    def test_registration_order_wins(self, group_chat, provider):
        reg = AgentRegistry(
            [
                Agent(id="a", name="Ann", system_prompt="a"),
                Agent(id="b", name="Bob", system_prompt="b"),
                Agent(id="c", name="Cid", system_prompt="c"),
            ],
            group_chat,
            LLMConfig(),
            provider_factory=lambda cfg: provider,
        )
        ctl = controller(reg, group_chat)
        assert ctl.should_chain_agent("c", "Bob and Ann", 0).next_agent.id == "a"

    def test_threshold_one_always_passes(self, registry):
        cfg = GroupChatConfig(enabled=True, agent_interaction=True, max_agent_chain=3, chain_threshold=1.0)
        ctl = controller(registry, cfg, draws=[0.999])
        assert ctl.should_chain_agent("beta", "@Alpha", 0).should_chain

    def test_threshold_zero_never_passes(self, registry):
        cfg = GroupChatConfig(enabled=True, agent_interaction=True, max_agent_chain=3, chain_threshold=0.0)
        ctl = controller(registry, cfg, draws=[0.0])
        assert not ctl.should_chain_agent("beta", "@Alpha", 0).should_chain


class TestRunChain:

    @pytest.mark.asyncio
    async def test_ping_pong_stops_at_max_depth(self, registry, group_chat):
        ctl = controller(registry, group_chat)
        calls = []

        async def run_hop(agent, depth):
            calls.append((agent.id, depth))
            # each reply addresses the other persona
            return "over to @Beta" if agent.id == "alpha" else "over to @Alpha"

        metrics = ChainMetrics()
        steps = await ctl.run_chain("beta", "ask @Alpha", run_hop, metrics)

        assert calls == [("alpha", 1), ("beta", 2), ("alpha", 3)]
        assert [s.depth for s in steps] == [1, 2, 3]
        assert all(s.state == ChainState.CHAINED for s in steps)
        assert metrics.hops == 3
        assert metrics.agents == ["alpha", "beta", "alpha"]
        assert not metrics.aborted

    @pytest.mark.asyncio
    async def test_no_chain_returns_empty(self, registry, group_chat):
        ctl = controller(registry, group_chat)

        async def run_hop(agent, depth):
            raise AssertionError("should not be called")

        assert await ctl.run_chain("beta", "plain answer", run_hop) == []

    @pytest.mark.asyncio
    async def test_failing_hop_aborts_and_keeps_completed(self, registry, group_chat):
        ctl = controller(registry, group_chat)

        async def run_hop(agent, depth):
            if depth == 2:
                raise RuntimeError("boom")
            return "ask @Beta"

        metrics = ChainMetrics()
        steps = await ctl.run_chain("beta", "ask @Alpha", run_hop, metrics)

        assert [(s.agent_id, s.depth) for s in steps] == [("alpha", 1)]
        assert metrics.aborted

    @pytest.mark.asyncio
    async def test_sleeps_before_each_hop(self, registry, group_chat):
        delays = []

        async def record_sleep(delay):
            delays.append(delay)

        ctl = ChainController(registry, group_chat, rng=SequenceRandom([0.0]), delay=1.5, sleep=record_sleep)

        async def run_hop(agent, depth):
            return "done" if depth == 2 else ("ask @Beta" if agent.id == "alpha" else "ask @Alpha")

        steps = await ctl.run_chain("beta", "ask @Alpha", run_hop)

        assert len(steps) == 2
        assert delays == [1.5, 1.5]
