"""Built-in retrieval tools available to the planner."""

from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator

from doc_agent.agent.registry import (
    REQUIRES_CHUNKS,
    REQUIRES_GROUPS,
    REQUIRES_VECTORS,
    ToolRegistry,
    ToolSpec,
)
from doc_agent.retrieval.embedder import Embedder
from doc_agent.retrieval.index import SemanticIndex
from doc_agent.retrieval.text_search import boolean_search, grep, parse_boolean_query, regex_search
from doc_agent.retrieval.vector_worker import SimilarityWorkerPool

_VECTOR_TEXT_CAP = 500


class ListGroupsInput(BaseModel):
    limit: int = Field(default=20, ge=1, le=200)
    include_digest: bool = Field(
        default=False, validation_alias=AliasChoices("include_digest", "includeDigest")
    )


class SearchGroupsInput(BaseModel):
    query: str = Field(min_length=1)
    limit: int = Field(default=8, ge=1, le=50)


class FetchGroupInput(BaseModel):
    group_id: str = Field(min_length=1, validation_alias=AliasChoices("group_id", "groupId"))
    granularity: Literal["summary", "digest", "full"] = "digest"

    @field_validator("granularity", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class FindInput(BaseModel):
    query: str = Field(min_length=1)
    scope: Literal["summary", "digest", "full"] = "digest"
    limit: int = Field(default=10, ge=1, le=50)

    @field_validator("scope", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class MapInput(BaseModel):
    limit: int = Field(default=50, ge=1, le=500)
    include_structure: bool = Field(
        default=True, validation_alias=AliasChoices("include_structure", "includeStructure")
    )


class VectorSearchInput(BaseModel):
    query: str = Field(min_length=1)
    limit: int = Field(default=10, ge=1, le=50)


class KeywordSearchInput(BaseModel):
    keywords: list[str] = Field(min_length=1)
    limit: int = Field(default=8, ge=1, le=50)

    @field_validator("keywords", mode="before")
    @classmethod
    def _split_string(cls, value: Any) -> Any:
        # Models often send "a|b" or "a, b" instead of a list.
        if isinstance(value, str):
            return [part for part in re.split(r"[|,\s]+", value) if part]
        return value


class GrepInput(BaseModel):
    query: str = Field(min_length=1)
    limit: int = Field(default=10, ge=1, le=50)
    context: int = Field(default=200, ge=0, le=1000)


class RegexSearchInput(BaseModel):
    pattern: str = Field(min_length=1)
    limit: int = Field(default=10, ge=1, le=50)
    context: int = Field(default=200, ge=0, le=1000)

    @field_validator("pattern")
    @classmethod
    def _compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"invalid regular expression: {exc}") from exc
        return value


class BooleanSearchInput(BaseModel):
    query: str = Field(min_length=1)
    limit: int = Field(default=10, ge=1, le=50)
    context: int = Field(default=200, ge=0, le=1000)

    @field_validator("query")
    @classmethod
    def _parses(cls, value: str) -> str:
        parse_boolean_query(value)
        return value


class FetchInput(BaseModel):
    group_id: str = Field(min_length=1, validation_alias=AliasChoices("group_id", "groupId"))


def register_builtin_tools(
    registry: ToolRegistry,
    index: SemanticIndex,
    *,
    worker: SimilarityWorkerPool,
    embedder: Embedder,
) -> None:
    """Register the default tool set used by the engine.

    Tools:
    - `list_groups`: overview of the semantic groups.
    - `search_groups`: rank groups by relevance to a query.
    - `fetch_group`: a group's text at summary, digest or full granularity.
    - `find`: token-overlap search returning snippets.
    - `map`: document outline with structure landmarks.
    - `vector_search`: semantic search over chunks via the similarity worker.
    - `keyword_search`: keyword matching over chunk text.
    - `grep`, `regex_search`, `boolean_search`: scans of raw chunk or group text.
    - `fetch`: every stored detail of one group.
    """

    def _list_groups(input_data: ListGroupsInput) -> dict[str, Any]:
        groups = index.list_groups(input_data.limit, input_data.include_digest)
        return {"count": len(groups), "groups": groups}

    def _search_groups(input_data: SearchGroupsInput) -> dict[str, Any]:
        results = index.search_groups(input_data.query, input_data.limit)
        return {"count": len(results), "results": results}

    def _fetch_group(input_data: FetchGroupInput) -> dict[str, Any]:
        return index.fetch_group(input_data.group_id, input_data.granularity)

    def _find(input_data: FindInput) -> dict[str, Any]:
        results = index.find(input_data.query, input_data.scope, input_data.limit)
        return {"count": len(results), "results": results}

    def _map(input_data: MapInput) -> dict[str, Any]:
        return index.document_map(input_data.limit, input_data.include_structure)

    async def _vector_search(input_data: VectorSearchInput) -> dict[str, Any]:
        query_vector = embedder.embed_query(input_data.query)
        items = [item for item in index.vector_items() if len(item["vector"]) == len(query_vector)]
        if not items and index.has_vectors:
            dimensions = sorted({len(item["vector"]) for item in index.vector_items()})
            raise ValueError(
                f"query embedding has {len(query_vector)} dimensions but chunk vectors have "
                f"{', '.join(str(value) for value in dimensions)}; the query embedder must match "
                "the model that built the index"
            )
        hits = await worker.batch_search(query_vector, items, input_data.limit)
        results = [
            {
                "chunk_id": hit["chunk_id"],
                "group_id": hit.get("group_id"),
                "score": hit["score"],
                "text": index.chunk_text(hit["chunk_id"])[:_VECTOR_TEXT_CAP],
            }
            for hit in hits
            if hit["score"] > 0
        ]
        return {"count": len(results), "results": results}

    def _keyword_search(input_data: KeywordSearchInput) -> dict[str, Any]:
        results = index.keyword_search(input_data.keywords, input_data.limit)
        return {"count": len(results), "results": results}

    def _grep(input_data: GrepInput) -> dict[str, Any]:
        matches = grep(
            index.text_units(), input_data.query, limit=input_data.limit, context=input_data.context
        )
        return {"count": len(matches), "matches": matches}

    def _regex_search(input_data: RegexSearchInput) -> dict[str, Any]:
        matches = regex_search(
            index.text_units(), input_data.pattern, limit=input_data.limit, context=input_data.context
        )
        return {"count": len(matches), "matches": matches}

    def _boolean_search(input_data: BooleanSearchInput) -> dict[str, Any]:
        matches = boolean_search(
            index.text_units(), input_data.query, limit=input_data.limit, context=input_data.context
        )
        return {"count": len(matches), "matches": matches}

    def _fetch(input_data: FetchInput) -> dict[str, Any]:
        return index.fetch_group_detail(input_data.group_id)

    registry.register(
        ToolSpec(
            name="list_groups",
            description="List the document's semantic groups (id, keywords, summary).",
            args_schema=ListGroupsInput,
            handler=_list_groups,
            tags=[REQUIRES_GROUPS],
        )
    )
    registry.register(
        ToolSpec(
            name="search_groups",
            description="Find the semantic groups most related to a query.",
            args_schema=SearchGroupsInput,
            handler=_search_groups,
            tags=[REQUIRES_GROUPS],
        )
    )
    registry.register(
        ToolSpec(
            name="fetch_group",
            description="Read one group's text. granularity: summary, digest or full.",
            args_schema=FetchGroupInput,
            handler=_fetch_group,
            tags=[REQUIRES_GROUPS],
        )
    )
    registry.register(
        ToolSpec(
            name="find",
            description="Literal token search over group text, returning short snippets.",
            args_schema=FindInput,
            handler=_find,
            tags=[REQUIRES_GROUPS],
        )
    )
    registry.register(
        ToolSpec(
            name="map",
            description="Document outline: groups with sections, figures, tables and formulas.",
            args_schema=MapInput,
            handler=_map,
            tags=[REQUIRES_GROUPS],
        )
    )
    registry.register(
        ToolSpec(
            name="vector_search",
            description="Semantic search over document chunks; handles synonyms and paraphrase.",
            args_schema=VectorSearchInput,
            handler=_vector_search,
            tags=[REQUIRES_CHUNKS, REQUIRES_VECTORS],
        )
    )
    registry.register(
        ToolSpec(
            name="keyword_search",
            description="Exact keyword matching over document chunks.",
            args_schema=KeywordSearchInput,
            handler=_keyword_search,
            tags=[REQUIRES_CHUNKS],
        )
    )
    registry.register(
        ToolSpec(
            name="grep",
            description="Case-insensitive literal search over raw text; separate alternatives with |.",
            args_schema=GrepInput,
            handler=_grep,
        )
    )
    registry.register(
        ToolSpec(
            name="regex_search",
            description="Regular expression search (case-insensitive, multiline) over raw text.",
            args_schema=RegexSearchInput,
            handler=_regex_search,
        )
    )
    registry.register(
        ToolSpec(
            name="boolean_search",
            description='Boolean search: AND, OR, NOT, parentheses and "quoted phrases".',
            args_schema=BooleanSearchInput,
            handler=_boolean_search,
        )
    )
    registry.register(
        ToolSpec(
            name="fetch",
            description="Full detail of one group: text, structure, keywords, summary and digest.",
            args_schema=FetchInput,
            handler=_fetch,
            tags=[REQUIRES_GROUPS],
        )
    )
