from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .models import Agent


class ChainState(Enum):
    ANSWERED = "answered"
    CHAINED = "chained"
    TERMINAL = "terminal"


@dataclass
class ChainDecision:
    should_chain: bool
    next_agent: Optional[Agent] = None


@dataclass
class ChainStep:
    agent_id: str
    response: str
    depth: int
    state: ChainState = ChainState.CHAINED


@dataclass
class ChainMetrics:
    hops: int = 0
    aborted: bool = False
    agents: List[str] = field(default_factory=list)
