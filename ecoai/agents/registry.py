"""Strategy registry keyed by ``AgentType``.

Personas store their agent type as a free string.  ``select_strategy``
maps it onto the closed enumeration and falls back to the scheduler, with
a warning, when the value is empty or unknown.
"""

from __future__ import annotations

import logging

from ecoai.agents.base import AgentStrategy
from ecoai.agents.sales import SalesAgent
from ecoai.agents.scheduler import SchedulerAgent
from ecoai.models import AgentType

logger = logging.getLogger(__name__)

DEFAULT_AGENT_TYPE = AgentType.SCHEDULER

_STRATEGIES: dict[AgentType, type[AgentStrategy]] = {
    AgentType.SCHEDULER: SchedulerAgent,
    AgentType.SALES: SalesAgent,
}


def register_strategy(agent_type: AgentType, strategy: type[AgentStrategy]) -> None:
    _STRATEGIES[agent_type] = strategy
    logger.debug("Strategy registered: %s -> %s", agent_type.value, strategy.__name__)


def resolve_agent_type(value: str | None) -> AgentType:
    try:
        return AgentType((value or "").strip().lower())
    except ValueError:
        logger.warning("Unknown agent type %r, falling back to %s", value, DEFAULT_AGENT_TYPE.value)
        return DEFAULT_AGENT_TYPE


def select_strategy(agent_type: str | None) -> AgentStrategy:
    return _STRATEGIES[resolve_agent_type(agent_type)]()
