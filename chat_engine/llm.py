from __future__ import annotations

import time
from functools import lru_cache
from typing import List, Optional, Protocol

from loguru import logger
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from .config import LLMConfig
from .models import Role, Turn


SUPPORTED_PROVIDERS = ("openai", "openai-compatible")


class LLMProviderError(RuntimeError):
    """Raised when the chat model call fails or returns nothing usable."""


class LLMProvider(Protocol):
    async def chat(
        self,
        turns: List[Turn],
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        ...


def to_langchain_messages(turns: List[Turn], system_prompt: Optional[str] = None) -> List[BaseMessage]:
    messages: List[BaseMessage] = []
    if system_prompt:
        messages.append(SystemMessage(content=system_prompt))
    for turn in turns:
        if turn.role == Role.ASSISTANT.value:
            messages.append(AIMessage(content=turn.content))
        elif turn.role == Role.SYSTEM.value:
            messages.append(SystemMessage(content=turn.content))
        else:
            messages.append(HumanMessage(content=turn.content))
    return messages


@lru_cache(maxsize=8)
def get_openai_chat(
    model: str,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
) -> ChatOpenAI:
    """Return a cached LangChain ChatOpenAI client for the given settings."""
    logger.debug(f"Initializing OpenAI chat model={model} base_url={base_url} temperature={temperature}")
    kwargs = {"model": model}
    if api_key:
        kwargs["api_key"] = api_key
    if base_url:
        kwargs["base_url"] = base_url
    if temperature is not None:
        kwargs["temperature"] = temperature
    if max_tokens:
        kwargs["max_tokens"] = max_tokens
    return ChatOpenAI(**kwargs)


class OpenAIChatProvider:
    """Chat provider backed by ChatOpenAI; also serves OpenAI-compatible APIs via base_url."""

    def __init__(self, config: LLMConfig) -> None:
        self.config = config

    @property
    def client(self) -> ChatOpenAI:
        c = self.config
        return get_openai_chat(c.model, c.api_key, c.base_url, c.temperature, c.max_tokens)

    async def chat(
        self,
        turns: List[Turn],
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        messages = to_langchain_messages(turns, system_prompt)
        overrides = {}
        if max_tokens:
            overrides["max_tokens"] = max_tokens
        if temperature is not None:
            overrides["temperature"] = temperature
        t0 = time.perf_counter()
        try:
            llm = self.client.bind(**overrides) if overrides else self.client
            result = await llm.ainvoke(messages)
        except Exception as e:
            raise LLMProviderError(f"{self.config.provider}/{self.config.model} call failed: {e}") from e
        dt = time.perf_counter() - t0
        content = result.content or ""
        text = (content if isinstance(content, str) else str(content)).strip()
        logger.info(f"llm_call | model={self.config.model} turns={len(turns)} dt={dt:.2f}s")
        if not text:
            raise LLMProviderError(f"{self.config.provider}/{self.config.model} returned an empty response")
        return text


def create_llm_provider(config: LLMConfig) -> LLMProvider:
    if config.provider not in SUPPORTED_PROVIDERS:
        raise ValueError(f"Unknown LLM provider: {config.provider}")
    if config.provider == "openai-compatible" and not config.base_url:
        raise ValueError("openai-compatible provider requires base_url")
    return OpenAIChatProvider(config)
