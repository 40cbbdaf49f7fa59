"""Centralized LLM configuration - single source of truth.

Every agent resolves its model from environment variables with per-agent
overrides:
- {AGENT_NAME}_AGENT_MODEL: Model name for this agent
- {AGENT_NAME}_AGENT_API_BASE: API base URL for this agent
- {AGENT_NAME}_AGENT_TEMPERATURE: Sampling temperature for this agent
"""

import llm_auth_init  # noqa: F401

import logging
import os
from dataclasses import dataclass

from crewai import LLM

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")
DEFAULT_MODEL = os.getenv("OPENAI_MODEL_NAME", "gpt-4o-mini")
DEFAULT_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.7"))
# Each completion call carries its own timeout
MEAL_COMPLETION_TIMEOUT_SECONDS = float(os.getenv("MEAL_COMPLETION_TIMEOUT_SECONDS", "60"))
MEAL_COMPLETION_MAX_TOKENS = int(os.getenv("MEAL_COMPLETION_MAX_TOKENS", "2000"))


@dataclass(frozen=True)
class AgentLLMSettings:
    """Resolved model settings for one agent."""

    agent_name: str
    model: str
    base_url: str
    api_key: str
    temperature: float
    timeout: float
    max_tokens: int


def resolve_agent_settings(agent_name: str) -> AgentLLMSettings:
    """Read model settings for ``agent_name`` from the environment."""
    return AgentLLMSettings(
        agent_name=agent_name,
        model=os.getenv(f"{agent_name}_AGENT_MODEL", DEFAULT_MODEL),
        base_url=os.getenv(f"{agent_name}_AGENT_API_BASE", DEFAULT_BASE_URL),
        api_key=os.getenv("OPENAI_API_KEY", llm_auth_init.API_KEY),
        temperature=float(os.getenv(f"{agent_name}_AGENT_TEMPERATURE", str(DEFAULT_TEMPERATURE))),
        timeout=MEAL_COMPLETION_TIMEOUT_SECONDS,
        max_tokens=MEAL_COMPLETION_MAX_TOKENS,
    )


def create_agent_llm(agent_name: str) -> LLM:
    """Create the CrewAI LLM for one agent.

    Args:
        agent_name: Name prefix for env vars (e.g., "MEAL_GENERATION")

    Returns:
        Configured LLM instance
    """
    settings = resolve_agent_settings(agent_name)

    logger.info(
        "🤖 %s Agent: model=%s endpoint=%s timeout=%.0fs",
        agent_name,
        settings.model,
        settings.base_url,
        settings.timeout,
    )

    return LLM(
        model=settings.model,
        base_url=settings.base_url,
        api_key=settings.api_key,
        temperature=settings.temperature,
        timeout=settings.timeout,
        max_tokens=settings.max_tokens,
    )
