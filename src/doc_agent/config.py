"""Configuration models for the document agent."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TokenBudgetConfig(BaseModel):
    """Configures the token allowance of one conversation turn."""

    model_config = ConfigDict(populate_by_name=True)

    total_budget: int = Field(default=32000, ge=1, alias="totalBudget")
    context_tokens: int = Field(default=18000, ge=1, alias="contextTokens")

    @model_validator(mode="after")
    def _context_within_total(self) -> "TokenBudgetConfig":
        if self.context_tokens > self.total_budget:
            raise ValueError("context_tokens must not exceed total_budget")
        return self


class LLMConfig(BaseModel):
    """Transport parameters handed to the chat model factory."""

    model_config = ConfigDict(populate_by_name=True)

    model: str = "gpt-4o-mini"
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    timeout_seconds: float = Field(default=60.0, gt=0.0, alias="timeout")
    max_tokens: int | None = Field(default=None, ge=1, alias="maxTokens")


class WorkerConfig(BaseModel):
    """Configures the similarity search worker pool."""

    workers: int = Field(default=2, ge=1)
    use_processes: bool = False


class AgentConfig(BaseModel):
    """Configures the ReAct loop."""

    model_config = ConfigDict(populate_by_name=True)

    max_iterations: int = Field(default=5, ge=1, alias="maxIterations")
    token_budget: TokenBudgetConfig = Field(
        default_factory=TokenBudgetConfig, alias="tokenBudget"
    )
    llm: LLMConfig = Field(default_factory=LLMConfig, alias="llmConfig")
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    history_turns: int = Field(default=6, ge=0)
