"""ReAct loop: plan with the model, run retrieval tools, repeat until answered."""

from __future__ import annotations

import asyncio
import hashlib
import uuid
from collections.abc import AsyncIterator, Callable, Sequence
from enum import Enum
from typing import Any

import structlog

from doc_agent.agent.budget import TokenBudgetManager
from doc_agent.agent.context import ContextBuilder
from doc_agent.agent.decision import AnswerDecision, IterationRecord, ToolDecision
from doc_agent.agent.parser import DecisionParser
from doc_agent.agent.prompts import build_round_prompt, build_system_prompt
from doc_agent.agent.registry import ToolRegistry
from doc_agent.agent.transport import LLMTransport
from doc_agent.config import AgentConfig
from doc_agent.obs.tracing import Timer, TraceStore
from doc_agent.retrieval.index import SemanticIndex
from doc_agent.types import AgentEvent, DocumentOverview, EventType, ToolResult

logger = structlog.get_logger(__name__)

_EXHAUSTED_EXCERPT_CHARS = 2000


class RunState(str, Enum):
    INIT = "init"
    PLANNING = "planning"
    TOOL_EXECUTION = "tool_execution"
    DONE = "done"
    FAILED = "failed"


class ReActEngine:
    """Drives one question through bounded plan/act rounds.

    All collaborators are injected so that runs stay isolated: the engine
    keeps no per-run state itself, each `run()` gets its own budget, context
    and iteration log.
    """

    def __init__(
        self,
        *,
        transport: LLMTransport,
        tool_registry: ToolRegistry,
        index: SemanticIndex,
        config: AgentConfig | None = None,
        parser: DecisionParser | None = None,
        context_builder: ContextBuilder | None = None,
        trace_store: TraceStore | None = None,
        budget_factory: Callable[[], TokenBudgetManager] | None = None,
    ) -> None:
        self.transport = transport
        self.tool_registry = tool_registry
        self.index = index
        self.config = config or AgentConfig()
        self.parser = parser or DecisionParser()
        self.context_builder = context_builder or ContextBuilder(self.config.history_turns)
        self.trace_store = trace_store
        self.budget_factory = budget_factory or (
            lambda: TokenBudgetManager(self.config.token_budget)
        )

    def run(
        self,
        question: str,
        document_overview: DocumentOverview | None = None,
        system_prompt: str = "",
        conversation_history: Sequence[Any] | None = None,
    ) -> "AgentRun":
        return AgentRun(
            self,
            question=question,
            overview=document_overview or DocumentOverview(),
            system_prompt=system_prompt,
            conversation_history=list(conversation_history or []),
        )


class AgentRun:
    """A single, non-restartable run. Iterate it to receive `AgentEvent`s.

    `records` is the ordered iteration log, `budget` the run's token budget and
    `state` the current state machine position.
    """

    def __init__(
        self,
        engine: ReActEngine,
        *,
        question: str,
        overview: DocumentOverview,
        system_prompt: str,
        conversation_history: list[Any],
    ) -> None:
        self.engine = engine
        self.run_id = str(uuid.uuid4())
        self.question = question
        self.overview = overview
        self.system_prompt = system_prompt
        self.conversation_history = conversation_history

        self.state = RunState.INIT
        self.records: list[IterationRecord] = []
        self.budget = engine.budget_factory()
        self.answer: str | None = None
        self.error: str | None = None
        self.degraded = False
        self._started = False
        self._log = logger.bind(run_id=self.run_id)

    def __aiter__(self) -> AsyncIterator[AgentEvent]:
        if self._started:
            raise RuntimeError("AgentRun can only be iterated once; start a new run instead")
        self._started = True
        return self._drive()

    def _transition(self, state: RunState, **details: Any) -> None:
        self._log.debug("run_transition", from_state=self.state.value, to_state=state.value, **details)
        self.state = state

    async def _drive(self) -> AsyncIterator[AgentEvent]:
        engine = self.engine
        max_iterations = engine.config.max_iterations
        timer = Timer()

        with timer:
            context = engine.context_builder.build(
                self.overview, self.conversation_history, self.budget, engine.index
            )
            self.budget.consume(self.budget.estimate(context))
            retrieved: list[str] = []
            seen_blocks: set[str] = set()
            history: list[ToolResult] = []
            system_prompt = build_system_prompt(self.system_prompt)
            specs = engine.tool_registry.available(
                has_groups=engine.index.has_groups,
                has_chunks=engine.index.has_chunks,
                has_vectors=engine.index.has_vectors,
            )
            self._log.info(
                "run_started",
                question_chars=len(self.question),
                seed_tokens=self.budget.used_tokens,
                tools=[spec.name for spec in specs],
            )

            for round_index in range(1, max_iterations + 1):
                self._transition(RunState.PLANNING, round_index=round_index)
                prompt = build_round_prompt(
                    question=self.question,
                    context=context,
                    specs=specs,
                    history=history,
                    round_index=round_index,
                    max_iterations=max_iterations,
                )
                try:
                    raw = await engine.transport.complete(system_prompt, prompt)
                except Exception as exc:
                    self.error = f"{type(exc).__name__}: {exc}"
                    self._transition(RunState.FAILED, round_index=round_index)
                    self._log.error("transport_failed", round_index=round_index, error=self.error)
                    yield AgentEvent(EventType.ERROR, round_index, {"error": self.error})
                    break

                decision = engine.parser.parse(raw)
                if decision.thought:
                    yield AgentEvent(EventType.THOUGHT, round_index, {"thought": decision.thought})

                if isinstance(decision, AnswerDecision):
                    self.records.append(IterationRecord(round_index=round_index, decision=decision))
                    self.answer = decision.answer
                    self._transition(RunState.DONE, round_index=round_index)
                    yield AgentEvent(
                        EventType.ANSWER,
                        round_index,
                        {"answer": decision.answer, "degraded": False, "run_id": self.run_id},
                    )
                    break

                self._transition(RunState.TOOL_EXECUTION, calls=len(decision.calls))
                for call in decision.calls:
                    yield AgentEvent(
                        EventType.TOOL_CALL,
                        round_index,
                        {"tool": call.tool, "params": call.params, "parallel": decision.parallel},
                    )

                results = await self._execute(decision)
                for result in results:
                    yield AgentEvent(EventType.TOOL_RESULT, round_index, result.to_dict())

                consumed = 0
                for result in results:
                    block = self._fold(result, seen_blocks)
                    if not block:
                        continue
                    tokens = self.budget.estimate(block)
                    self.budget.consume(tokens)
                    consumed += tokens
                    context = f"{context}\n\n{block}"
                    retrieved.append(block)
                history.extend(results)
                self.records.append(
                    IterationRecord(
                        round_index=round_index,
                        decision=decision,
                        tool_results=tuple(results),
                        tokens_consumed=consumed,
                    )
                )
                self._log.info(
                    "round_completed",
                    round_index=round_index,
                    calls=len(results),
                    failed=sum(1 for result in results if not result.ok),
                    tokens_consumed=consumed,
                    remaining=self.budget.remaining(),
                )
            else:
                self.answer = self._exhausted_answer(retrieved, context)
                self.degraded = True
                self._transition(RunState.DONE, reason="max_iterations")
                self._log.warning("iterations_exhausted", max_iterations=max_iterations)
                yield AgentEvent(
                    EventType.ANSWER,
                    max_iterations,
                    {"answer": self.answer, "degraded": True, "run_id": self.run_id},
                )

            if self.state is RunState.FAILED:
                self._log.info("run_failed", rounds=len(self.records))
            else:
                self._log.info("run_finished", rounds=len(self.records), degraded=self.degraded)

        if engine.trace_store is not None:
            engine.trace_store.add(
                run_id=self.run_id,
                question=self.question,
                status=self.state.value,
                answer=self.answer,
                error=self.error,
                degraded=self.degraded,
                records=self.records,
                budget=self.budget.snapshot(),
                latency_ms=timer.elapsed_ms,
            )

    async def _execute(self, decision: ToolDecision) -> list[ToolResult]:
        # Fan-out/fan-in: every call settles before the round advances.
        # ToolRegistry.run never raises, so one failure cannot cancel the rest.
        return list(
            await asyncio.gather(*(self.engine.tool_registry.run(call) for call in decision.calls))
        )

    def _fold(self, result: ToolResult, seen_blocks: set[str]) -> str:
        block = self.engine.context_builder.format_tool_result(result)
        header, _, body = block.partition("\n")
        digest = hashlib.sha1(body.encode("utf-8")).hexdigest()
        if result.ok and body and digest in seen_blocks:
            block = f"{header}\n(same content as an earlier result; already in known information)"
        seen_blocks.add(digest)
        return self.budget.fit(block)

    def _exhausted_answer(self, retrieved: list[str], context: str) -> str:
        material = "\n\n".join(retrieved) if retrieved else context
        if len(material) > _EXHAUSTED_EXCERPT_CHARS:
            material = "..." + material[-_EXHAUSTED_EXCERPT_CHARS:]
        rounds = self.engine.config.max_iterations
        return (
            f"I could not reach a complete answer within {rounds} reasoning rounds. "
            "Here is the most relevant information gathered so far:\n\n"
            f"{material}\n\n"
            "A more specific question, or a higher round limit, may produce a complete answer."
        )
