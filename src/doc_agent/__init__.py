"""Agentic retrieval over pre-indexed documents."""

from .config import AgentConfig, LLMConfig, TokenBudgetConfig, WorkerConfig

__all__ = ["AgentConfig", "LLMConfig", "TokenBudgetConfig", "WorkerConfig"]
