"""Similarity scoring worker, driven by correlated request/response messages.

Scoring runs on an executor (threads by default, processes on request) so that
large candidate sets never block the event loop that drives the agent.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Sequence
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from math import sqrt
from typing import Any

import structlog

from doc_agent.config import WorkerConfig

logger = structlog.get_logger(__name__)

COSINE_SIMILARITY = "cosineSimilarity"
BATCH_SEARCH = "batchSearch"


class SimilarityWorkerError(RuntimeError):
    """Raised when the worker answers a request with `success: false`."""


def cosine_similarity(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    denominator = sqrt(norm_a * norm_b)
    if denominator == 0:
        return 0.0
    return dot / denominator


def batch_cosine_similarity(
    query_vector: Sequence[float],
    items: Sequence[dict[str, Any]],
    top_k: int = 10,
) -> list[dict[str, Any]]:
    """Score every item's `vector` against the query, best first.

    Returns at most `top_k` copies of the items, each with a `score` key.
    `sorted` is stable, so equal scores keep their input order.
    """

    scored = [
        {**item, "score": cosine_similarity(query_vector, item.get("vector"))}
        for item in items
    ]
    scored.sort(key=lambda item: item["score"], reverse=True)
    return scored[: max(0, top_k)]


def handle_message(message: dict[str, Any]) -> dict[str, Any]:
    """Process one `{type, payload, requestId}` request.

    Never raises; failures come back as `{success: False, error}`.
    """

    request_id = message.get("requestId")
    try:
        task_type = message.get("type")
        payload = message.get("payload") or {}
        if task_type == COSINE_SIMILARITY:
            result: Any = cosine_similarity(payload.get("vecA"), payload.get("vecB"))
        elif task_type == BATCH_SEARCH:
            result = batch_cosine_similarity(
                payload.get("queryVector") or [],
                payload.get("items") or [],
                int(payload.get("topK") or 10),
            )
        else:
            raise ValueError(f"Unknown task type: {task_type}")
    except Exception as exc:
        return {"success": False, "requestId": request_id, "error": str(exc)}
    return {"success": True, "requestId": request_id, "result": result}


class SimilarityWorkerPool:
    """Request queue, response futures keyed by request id, stateless workers.

    Usage::

        async with SimilarityWorkerPool() as pool:
            hits = await pool.batch_search(query_vector, items, top_k=5)
    """

    def __init__(
        self,
        config: WorkerConfig | None = None,
        *,
        executor: Executor | None = None,
    ) -> None:
        self.config = config or WorkerConfig()
        self._executor = executor
        self._owns_executor = executor is None
        self._queue: asyncio.Queue[dict[str, Any]] | None = None
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._tasks: list[asyncio.Task[None]] = []
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        if self._tasks and self._loop is loop:
            return
        # Workers are bound to the loop that started them.
        self._tasks = []
        self._pending.clear()
        self._loop = loop
        if self._executor is None:
            self._executor = (
                ProcessPoolExecutor(max_workers=self.config.workers)
                if self.config.use_processes
                else ThreadPoolExecutor(
                    max_workers=self.config.workers, thread_name_prefix="similarity"
                )
            )
        self._queue = asyncio.Queue()
        self._tasks = [
            asyncio.create_task(self._work(), name=f"similarity-worker-{idx}")
            for idx in range(self.config.workers)
        ]
        logger.debug("similarity_pool_started", workers=self.config.workers)

    async def close(self) -> None:
        if self._loop is asyncio.get_running_loop():
            for task in self._tasks:
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._loop = None
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    async def __aenter__(self) -> "SimilarityWorkerPool":
        await self.start()
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> None:
        await self.close()

    async def request(self, task_type: str, payload: dict[str, Any]) -> Any:
        """Send one request and wait for the correlated response."""

        await self.start()
        assert self._queue is not None
        request_id = uuid.uuid4().hex
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        await self._queue.put({"type": task_type, "payload": payload, "requestId": request_id})
        try:
            response = await future
        finally:
            self._pending.pop(request_id, None)

        if not response.get("success"):
            raise SimilarityWorkerError(str(response.get("error") or "similarity task failed"))
        return response.get("result")

    async def cosine_similarity(self, vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
        return float(
            await self.request(COSINE_SIMILARITY, {"vecA": list(vec_a), "vecB": list(vec_b)})
        )

    async def batch_search(
        self,
        query_vector: Sequence[float],
        items: Sequence[dict[str, Any]],
        top_k: int = 10,
    ) -> list[dict[str, Any]]:
        return list(
            await self.request(
                BATCH_SEARCH,
                {"queryVector": list(query_vector), "items": list(items), "topK": top_k},
            )
        )

    async def _work(self) -> None:
        assert self._queue is not None
        loop = asyncio.get_running_loop()
        while True:
            message = await self._queue.get()
            try:
                response = await loop.run_in_executor(self._executor, handle_message, message)
            except Exception as exc:
                response = {
                    "success": False,
                    "requestId": message.get("requestId"),
                    "error": str(exc),
                }
            finally:
                self._queue.task_done()
            future = self._pending.get(str(response.get("requestId")))
            if future is not None and not future.done():
                future.set_result(response)
