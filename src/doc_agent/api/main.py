"""FastAPI entrypoint for document index, streamed query and trace endpoints."""

from __future__ import annotations

import json
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from doc_agent.agent.engine import ReActEngine
from doc_agent.agent.registry import ToolRegistry
from doc_agent.agent.tools import register_builtin_tools
from doc_agent.agent.transport import ChatModelTransport, LLMTransport, create_chat_model
from doc_agent.config import AgentConfig
from doc_agent.obs.logging import setup_logging
from doc_agent.obs.tracing import TraceStore
from doc_agent.retrieval.embedder import Embedder, HashingEmbedder, LangChainEmbedder
from doc_agent.retrieval.index import EmbeddingGroupMatcher, SemanticIndex
from doc_agent.retrieval.vector_worker import SimilarityWorkerPool
from doc_agent.types import DocumentOverview


class OverviewPayload(BaseModel):
    name: str = "unknown"
    page_count: int | None = None
    language: str | None = None
    gist: str = ""


class DocumentIndexRequest(BaseModel):
    overview: OverviewPayload = Field(default_factory=OverviewPayload)
    semantic_groups: list[dict[str, Any]] = Field(default_factory=list)
    chunks: list[dict[str, Any]] = Field(default_factory=list)
    doc_gist: str = ""


class QueryRequest(BaseModel):
    doc_id: str = Field(min_length=1)
    question: str = Field(min_length=1)
    system_prompt: str = ""
    chat_history: list[Any] = Field(default_factory=list)


class _Document:
    def __init__(self, overview: DocumentOverview, index: SemanticIndex) -> None:
        self.overview = overview
        self.index = index


def _create_transport(config: AgentConfig) -> LLMTransport | None:
    llm = create_chat_model(config.llm)
    if llm is None:
        return None
    return ChatModelTransport(llm)


def _create_embedder() -> Embedder:
    # Must match the model that produced the uploaded chunk vectors.
    model = os.getenv("OPENAI_EMBEDDING_MODEL")
    if not model or not os.getenv("OPENAI_API_KEY"):
        return HashingEmbedder()

    from langchain_openai import OpenAIEmbeddings

    return LangChainEmbedder(OpenAIEmbeddings(model=model))


setup_logging(
    os.getenv("DOC_AGENT_LOG_LEVEL", "INFO"),
    os.getenv("DOC_AGENT_LOG_FORMAT", "json"),
)

_config = AgentConfig()
_embedder: Embedder = _create_embedder()
_worker = SimilarityWorkerPool(_config.worker)
_trace_store = TraceStore()
_documents: dict[str, _Document] = {}
_transport: LLMTransport | None = _create_transport(_config)


@asynccontextmanager
async def _lifespan(_: FastAPI) -> AsyncIterator[None]:
    yield
    await _worker.close()


app = FastAPI(title="Document Agent", version="0.1.0", lifespan=_lifespan)


def _build_engine(document: _Document) -> ReActEngine:
    if _transport is None:
        raise HTTPException(status_code=503, detail="LLM transport is not configured (OPENAI_API_KEY)")
    registry = ToolRegistry()
    register_builtin_tools(registry, document.index, worker=_worker, embedder=_embedder)
    return ReActEngine(
        transport=_transport,
        tool_registry=registry,
        index=document.index,
        config=_config,
        trace_store=_trace_store,
    )


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "llm_configured": _transport is not None,
        "similarity_worker_running": _worker.running,
        "documents": len(_documents),
        "trace_count": len(_trace_store.list_recent(limit=_trace_store.max_records)),
    }


@app.put("/documents/{doc_id}")
def register_document(doc_id: str, request: DocumentIndexRequest) -> dict[str, Any]:
    try:
        index = SemanticIndex.from_payload(
            {
                "semanticGroups": request.semantic_groups,
                "chunks": request.chunks,
                "semanticDocGist": request.doc_gist,
            },
            matcher=EmbeddingGroupMatcher(_embedder),
        )
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    overview = DocumentOverview(**request.overview.model_dump())
    _documents[doc_id] = _Document(overview, index)
    return {
        "doc_id": doc_id,
        "groups": len(index.groups),
        "chunks": len(index.chunks),
        "has_vectors": index.has_vectors,
    }


@app.post("/query")
async def query(request: QueryRequest) -> StreamingResponse:
    document = _documents.get(request.doc_id)
    if document is None:
        raise HTTPException(status_code=404, detail=f"Document not found: {request.doc_id}")
    engine = _build_engine(document)
    run = engine.run(
        request.question,
        document.overview,
        request.system_prompt,
        request.chat_history,
    )

    async def _stream() -> AsyncIterator[str]:
        async for event in run:
            yield json.dumps(event.to_dict(), ensure_ascii=False, default=str) + "\n"

    return StreamingResponse(
        _stream(),
        media_type="application/x-ndjson",
        headers={"X-Run-Id": run.run_id},
    )


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    return {"items": [trace.to_dict() for trace in _trace_store.list_recent(limit=limit)]}


@app.get("/traces/{run_id}")
def trace_detail(run_id: str) -> dict[str, Any]:
    try:
        trace = _trace_store.get(run_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return trace.to_dict()


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _trace_store.summary()
