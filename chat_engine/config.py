from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from loguru import logger

from .models import Agent, GroupChatConfig


# Load env from common locations early so os.getenv sees .env values
try:
    here = Path(__file__).resolve().parents[1]
    for env_path in (here / ".env", Path.cwd() / ".env"):
        if env_path.is_file():
            load_dotenv(dotenv_path=str(env_path), override=False)
            break
except OSError as e:
    logger.warning(f"Could not load .env file: {e}")


_TRUTHY = ("1", "true", "yes")


def env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid integer for {name}={raw!r}; using {default}")
        return default


def env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid float for {name}={raw!r}; using {default}")
        return default


@dataclass
class MemoryConfig:
    short_term_window: int = 20
    compress_threshold: int = 20

    def __post_init__(self) -> None:
        if self.short_term_window <= 0:
            raise ValueError(f"short_term_window must be > 0, got {self.short_term_window}")
        if self.compress_threshold <= 0:
            raise ValueError(f"compress_threshold must be > 0, got {self.compress_threshold}")
        if self.compress_threshold < 10:
            logger.warning(
                f"compress_threshold={self.compress_threshold} is below 10; windows under 10 turns are trimmed, not compacted"
            )
        # the check runs after an append, before the trim back to short_term_window
        if self.compress_threshold > self.short_term_window + 1:
            logger.warning(
                f"compress_threshold={self.compress_threshold} exceeds short_term_window={self.short_term_window};"
                " the window is trimmed before it can be compacted"
            )


@dataclass
class LLMConfig:
    provider: str = "openai"
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None

    def merged(self, override: Optional[Dict[str, Any]]) -> "LLMConfig":
        """Return a copy with known keys from `override` applied (camelCase accepted)."""
        if not override:
            return self
        aliases = {"apiKey": "api_key", "baseUrl": "base_url", "maxTokens": "max_tokens"}
        known = {f.name for f in fields(self)}
        changes = {}
        for key, value in override.items():
            key = aliases.get(key, key)
            if key in known:
                changes[key] = value
            else:
                logger.warning(f"Ignoring unknown llm_override key: {key}")
        return replace(self, **changes)


@dataclass
class RemoteMemoryConfig:
    enabled: bool = False
    index_name: str = "chat-memories"
    namespace: Optional[str] = None


@dataclass
class EngineConfig:
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    group_chat: GroupChatConfig = field(default_factory=GroupChatConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    remote_memory: RemoteMemoryConfig = field(default_factory=RemoteMemoryConfig)
    agents: List[Agent] = field(default_factory=list)
    chain_delay: float = 1.0
    chain_timeout: Optional[float] = None


def load_agents(path: str | Path) -> List[Agent]:
    """Read a JSON list of agent objects (id, name, system_prompt, triggers, ...)."""
    p = Path(path)
    data = json.loads(p.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("agents") or data.get("list") or []
    if not isinstance(data, list):
        raise ValueError(f"Agents file must contain a JSON list: {p}")
    agents = [Agent.from_dict(obj) for obj in data]
    logger.info(f"agents_loaded | path={p} count={len(agents)}")
    return agents


def load_config(agents_file: Optional[str] = None) -> EngineConfig:
    """Build the engine configuration from environment variables.

    Env vars:
      - SHORT_TERM_WINDOW, COMPRESS_THRESHOLD
      - GROUP_CHAT_ENABLED, AGENT_INTERACTION, MAX_AGENT_CHAIN, CHAIN_THRESHOLD
      - LLM_PROVIDER, OPENAI_MODEL, OPENAI_API_KEY, OPENAI_BASE_URL,
        OPENAI_MAX_TOKENS, OPENAI_TEMPERATURE
      - PINECONE_API_KEY (enables remote memory), PINECONE_INDEX, PINECONE_NAMESPACE
      - CHAIN_DELAY_SECONDS, CHAIN_TIMEOUT_SECONDS, AGENTS_FILE
    """
    memory = MemoryConfig(
        short_term_window=env_int("SHORT_TERM_WINDOW", 20),
        compress_threshold=env_int("COMPRESS_THRESHOLD", 20),
    )
    group_chat = GroupChatConfig(
        enabled=env_bool("GROUP_CHAT_ENABLED", False),
        agent_interaction=env_bool("AGENT_INTERACTION", False),
        max_agent_chain=env_int("MAX_AGENT_CHAIN", 3),
        chain_threshold=env_float("CHAIN_THRESHOLD", 0.5),
    )
    llm = LLMConfig(
        provider=os.getenv("LLM_PROVIDER", "openai"),
        model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        api_key=os.getenv("OPENAI_API_KEY"),
        base_url=os.getenv("OPENAI_BASE_URL") or None,
        max_tokens=env_int("OPENAI_MAX_TOKENS", None),
        temperature=env_float("OPENAI_TEMPERATURE", None),
    )
    remote = RemoteMemoryConfig(
        enabled=bool(os.getenv("PINECONE_API_KEY")),
        index_name=os.getenv("PINECONE_INDEX", "chat-memories"),
        namespace=os.getenv("PINECONE_NAMESPACE") or None,
    )
    agents_path = agents_file or os.getenv("AGENTS_FILE")
    agents = load_agents(agents_path) if agents_path else []
    return EngineConfig(
        memory=memory,
        group_chat=group_chat,
        llm=llm,
        remote_memory=remote,
        agents=agents,
        chain_delay=env_float("CHAIN_DELAY_SECONDS", 1.0),
        chain_timeout=env_float("CHAIN_TIMEOUT_SECONDS", None),
    )
