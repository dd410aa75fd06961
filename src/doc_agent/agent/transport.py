"""Boundary to the language model: prompt pair in, completion text out."""

from __future__ import annotations

import os
from typing import Any, Protocol

from langchain_core.messages import HumanMessage, SystemMessage

from doc_agent.config import LLMConfig


class LLMTransport(Protocol):
    """Anything that turns a system/user prompt pair into completion text.

    Failures propagate to the caller; retry policy, if any, belongs to the
    transport implementation.
    """

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Return the model's raw text."""


class ChatModelTransport:
    """Adapts a LangChain chat model to `LLMTransport`."""

    def __init__(self, llm: Any) -> None:
        self.llm = llm

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        message = await self.llm.ainvoke(
            [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]
        )
        return message_text(message)


def message_text(message: Any) -> str:
    if isinstance(message, str):
        return message
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            elif isinstance(item, str):
                parts.append(item)
        return "".join(parts)
    return str(content)


def create_chat_model(config: LLMConfig | None = None) -> Any:
    """Build the OpenAI chat model, or None when no API key is configured."""

    if not os.getenv("OPENAI_API_KEY"):
        return None

    from langchain_openai import ChatOpenAI

    config = config or LLMConfig()
    kwargs: dict[str, Any] = {
        "model": os.getenv("OPENAI_MODEL", config.model),
        "temperature": config.temperature,
        "timeout": config.timeout_seconds,
    }
    if config.max_tokens is not None:
        kwargs["max_tokens"] = config.max_tokens
    return ChatOpenAI(**kwargs)
