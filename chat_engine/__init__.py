"""
Conversation-state and persona orchestration engine for chat agents.

Modules:
- context: per-session sliding window with summary compaction
- memory: long-term per-user facts (local heuristics, optional remote backend)
- context_builder: memory-augmented system prompts
- agents: persona registry + selection
- chain: bounded persona-to-persona follow-ups
- manager: ChatOrchestrator tying the above to an LLM provider
- llm: LangChain ChatOpenAI provider
- insights: read-only analytics over stored memories
"""

from .agents import AgentRegistry, NoAgentsRegistered
from .chain import ChainController
from .config import EngineConfig, LLMConfig, MemoryConfig, load_config
from .context import SessionContextStore
from .context_builder import HybridMemoryManager
from .manager import ChatOrchestrator, ChatResult
from .insights import MemoryInsights
from .memory import SemanticMemoryStore
from .models import Agent, GroupChatConfig, MemoryRecord, Session, Turn
from .sessions import SessionRegistry

__all__ = [
    "Agent",
    "AgentRegistry",
    "ChainController",
    "ChatOrchestrator",
    "ChatResult",
    "EngineConfig",
    "GroupChatConfig",
    "HybridMemoryManager",
    "LLMConfig",
    "MemoryConfig",
    "MemoryInsights",
    "MemoryRecord",
    "NoAgentsRegistered",
    "SemanticMemoryStore",
    "Session",
    "SessionContextStore",
    "SessionRegistry",
    "Turn",
    "load_config",
]
