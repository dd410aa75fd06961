"""Read-only access to the pre-built semantic groups and chunks of a document."""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Sequence
from typing import Any, Protocol

import structlog

from doc_agent.retrieval.embedder import Embedder
from doc_agent.retrieval.text_search import TextUnit
from doc_agent.retrieval.vector_worker import cosine_similarity
from doc_agent.types import Chunk, SemanticGroup

logger = structlog.get_logger(__name__)

GRANULARITY_CAPS = {"summary": 800, "digest": 3000, "full": 8000}
LIST_DIGEST_CAP = 800
SNIPPET_WINDOW = 300
KEYWORD_PREVIEW_CAP = 400

_QUERY_SPLIT = re.compile(r"[\W_]+", flags=re.UNICODE)


class GroupMatcher(Protocol):
    """Pluggable semantic matcher used by `search_groups`."""

    def match(self, query: str, groups: Sequence[SemanticGroup]) -> list[SemanticGroup]:
        """Return matching groups, best first."""


class EmbeddingGroupMatcher:
    """Ranks groups by embedding similarity of their summary and keywords."""

    def __init__(self, embedder: Embedder, min_score: float = 0.05) -> None:
        self.embedder = embedder
        self.min_score = min_score
        self._cache: dict[str, list[float]] = {}

    def match(self, query: str, groups: Sequence[SemanticGroup]) -> list[SemanticGroup]:
        missing = [group for group in groups if group.group_id not in self._cache]
        if missing:
            profiles = [" ".join([*group.keywords, group.summary]) for group in missing]
            for group, vector in zip(missing, self.embedder.embed_documents(profiles)):
                self._cache[group.group_id] = vector

        query_vector = self.embedder.embed_query(query)
        scored: list[tuple[float, SemanticGroup]] = []
        for group in groups:
            score = cosine_similarity(query_vector, self._cache[group.group_id])
            if score >= self.min_score:
                scored.append((score, group))
        scored.sort(key=lambda item: item[0], reverse=True)
        return [group for _, group in scored]


def tokenize_query(query: str) -> list[str]:
    return [token for token in _QUERY_SPLIT.split(query.lower()) if token]


class SemanticIndex:
    """Immutable view over semantic groups and chunks.

    Every method is a pure read; the index is safe to share between
    concurrently running tool calls and between conversation turns.
    """

    def __init__(
        self,
        groups: Iterable[SemanticGroup] = (),
        chunks: Iterable[Chunk] = (),
        *,
        matcher: GroupMatcher | None = None,
        doc_gist: str = "",
    ) -> None:
        self._groups: tuple[SemanticGroup, ...] = tuple(groups)
        self._chunks: tuple[Chunk, ...] = tuple(chunks)
        self._by_id = {group.group_id: group for group in self._groups}
        if len(self._by_id) != len(self._groups):
            raise ValueError("semantic group ids must be unique")
        self.matcher = matcher
        self.doc_gist = doc_gist

    @classmethod
    def from_payload(
        cls,
        payload: dict[str, Any],
        *,
        matcher: GroupMatcher | None = None,
    ) -> "SemanticIndex":
        """Build an index from the JSON produced by the ingest stage."""

        groups = [
            SemanticGroup.from_dict(item)
            for item in payload.get("semanticGroups", payload.get("groups", []))
        ]
        chunks = [Chunk.from_dict(item) for item in payload.get("chunks", [])]
        gist = payload.get("semanticDocGist", payload.get("doc_gist", "")) or ""
        return cls(groups, chunks, matcher=matcher, doc_gist=str(gist))

    @property
    def groups(self) -> tuple[SemanticGroup, ...]:
        return self._groups

    @property
    def chunks(self) -> tuple[Chunk, ...]:
        return self._chunks

    @property
    def has_groups(self) -> bool:
        return bool(self._groups)

    @property
    def has_chunks(self) -> bool:
        return bool(self._chunks)

    @property
    def has_vectors(self) -> bool:
        return any(chunk.vector for chunk in self._chunks)

    def get_group(self, group_id: str) -> SemanticGroup | None:
        return self._by_id.get(group_id)

    def list_groups(self, limit: int = 20, include_digest: bool = False) -> list[dict[str, Any]]:
        entries: list[dict[str, Any]] = []
        for group in self._groups[: max(0, limit)]:
            entry: dict[str, Any] = {
                "group_id": group.group_id,
                "char_count": group.char_count,
                "keywords": list(group.keywords),
                "summary": group.summary,
            }
            if include_digest:
                entry["digest"] = group.digest[:LIST_DIGEST_CAP]
            entries.append(entry)
        return entries

    def search_groups(self, query: str, limit: int = 8) -> list[dict[str, Any]]:
        """Rank groups for `query`.

        The pluggable matcher is preferred. Without one, or when it fails, a
        naive scorer awards 3 for a keyword hit and 2 for a summary hit.
        """

        query = (query or "").strip()
        if not query or not self._groups:
            return []

        if self.matcher is not None:
            try:
                matched = self.matcher.match(query, self._groups)
                return [_group_brief(group) for group in matched[: max(0, limit)]]
            except Exception as exc:
                logger.warning("group_matcher_failed", error=str(exc))

        needle = query.lower()
        scored: list[tuple[int, SemanticGroup]] = []
        for group in self._groups:
            score = 0
            if any(_keyword_hit(needle, keyword) for keyword in group.keywords):
                score += 3
            if group.summary and needle in group.summary.lower():
                score += 2
            if score > 0:
                scored.append((score, group))
        scored.sort(key=lambda item: item[0], reverse=True)
        return [_group_brief(group) for _, group in scored[: max(0, limit)]]

    def fetch_group(self, group_id: str, granularity: str = "digest") -> dict[str, Any]:
        level = (granularity or "digest").lower()
        if level not in GRANULARITY_CAPS:
            level = "digest"
        group = self._by_id.get(group_id)
        if group is None:
            return {"group_id": group_id, "granularity": level, "text": "", "char_count": 0}

        text = _resolve_text(group, level)[: GRANULARITY_CAPS[level]]
        return {
            "group_id": group_id,
            "granularity": level,
            "text": text,
            "char_count": len(text),
        }

    def find(self, query: str, scope: str = "digest", limit: int = 10) -> list[dict[str, Any]]:
        """Token-overlap search with a length penalty favouring concise text."""

        tokens = tokenize_query(query or "")
        if not tokens or not self._groups:
            return []
        level = (scope or "digest").lower()
        if level not in GRANULARITY_CAPS:
            level = "digest"

        hits: list[tuple[float, SemanticGroup, str]] = []
        for group in self._groups:
            text = _resolve_text(group, level)
            lowered = text.lower()
            matched = sum(1 for token in tokens if token in lowered)
            if matched == 0:
                continue
            hits.append((matched / math.log10(len(text) + 10), group, text))
        hits.sort(key=lambda item: item[0], reverse=True)

        results: list[dict[str, Any]] = []
        for score, group, text in hits[: max(0, limit)]:
            results.append(
                {
                    "group_id": group.group_id,
                    "score": score,
                    "snippet": _snippet(text, tokens),
                    "scope": level,
                }
            )
        return results

    def document_map(self, limit: int = 50, include_structure: bool = True) -> dict[str, Any]:
        entries: list[dict[str, Any]] = []
        for group in self._groups[: max(0, limit)]:
            entry: dict[str, Any] = {
                "group_id": group.group_id,
                "char_count": group.char_count,
                "keywords": list(group.keywords),
                "summary": group.summary,
            }
            if include_structure:
                entry["structure"] = group.structure.as_dict()
            entries.append(entry)
        return {
            "total_groups": len(self._groups),
            "returned_groups": len(entries),
            "doc_gist": self.doc_gist,
            "map": entries,
        }

    def keyword_search(self, keywords: Sequence[str], limit: int = 8) -> list[dict[str, Any]]:
        """Exact/substring keyword matching across chunk text.

        Ranked by the number of distinct keywords found, then by total
        occurrences; ties keep chunk order.
        """

        needles = [str(keyword).strip().lower() for keyword in keywords if str(keyword).strip()]
        if not needles or not self._chunks:
            return []

        scored: list[tuple[int, int, Chunk, list[str]]] = []
        for chunk in self._chunks:
            lowered = chunk.text.lower()
            matched = [needle for needle in needles if needle in lowered]
            if not matched:
                continue
            occurrences = sum(lowered.count(needle) for needle in matched)
            scored.append((len(matched), occurrences, chunk, matched))
        scored.sort(key=lambda item: (item[0], item[1]), reverse=True)

        return [
            {
                "chunk_id": chunk.chunk_id,
                "group_id": chunk.belongs_to_group,
                "score": float(distinct),
                "matched_keywords": matched,
                "text": chunk.text[:KEYWORD_PREVIEW_CAP],
            }
            for distinct, _, chunk, matched in scored[: max(0, limit)]
        ]

    def vector_items(self) -> list[dict[str, Any]]:
        """Chunk payloads for the similarity worker (chunks without vectors are skipped)."""

        return [
            {
                "chunk_id": chunk.chunk_id,
                "group_id": chunk.belongs_to_group,
                "vector": list(chunk.vector),
            }
            for chunk in self._chunks
            if chunk.vector
        ]

    def chunk_text(self, chunk_id: str) -> str:
        for chunk in self._chunks:
            if chunk.chunk_id == chunk_id:
                return chunk.text
        return ""

    def text_units(self) -> list[TextUnit]:
        """Raw text to scan: chunks when present, else each group's fullest text."""

        if self._chunks:
            return [
                TextUnit(chunk.chunk_id, chunk.belongs_to_group, chunk.text)
                for chunk in self._chunks
                if chunk.text
            ]
        units: list[TextUnit] = []
        for group in self._groups:
            text = _resolve_text(group, "full")
            if text:
                units.append(TextUnit(group.group_id, group.group_id, text))
        return units

    def fetch_group_detail(self, group_id: str) -> dict[str, Any]:
        """Everything known about one group: text, structure, keywords, summary and digest."""

        group = self._by_id.get(group_id)
        if group is None:
            raise KeyError(f"Unknown group: {group_id}")
        text = _resolve_text(group, "full")[: GRANULARITY_CAPS["full"]]
        return {
            "group_id": group.group_id,
            "text": text,
            "structure": group.structure.as_dict(),
            "keywords": list(group.keywords),
            "summary": group.summary,
            "digest": group.digest[:LIST_DIGEST_CAP],
            "char_count": group.char_count,
        }


def _group_brief(group: SemanticGroup) -> dict[str, Any]:
    return {
        "group_id": group.group_id,
        "summary": group.summary,
        "keywords": list(group.keywords),
        "char_count": group.char_count,
    }


def _keyword_hit(needle: str, keyword: str) -> bool:
    lowered = str(keyword).lower()
    return bool(lowered) and (needle in lowered or lowered in needle)


def _resolve_text(group: SemanticGroup, level: str) -> str:
    # requested -> digest -> summary -> full text
    candidates = {
        "summary": group.summary,
        "digest": group.digest,
        "full": group.full_text or "",
    }
    for text in (candidates[level], group.digest, group.summary, group.full_text or ""):
        if text:
            return text
    return ""


def _snippet(text: str, tokens: Sequence[str]) -> str:
    lowered = text.lower()
    position = 0
    for token in tokens:
        found = lowered.find(token)
        if found >= 0:
            position = found
            break
    start = max(0, position - SNIPPET_WINDOW // 2)
    end = min(len(text), start + SNIPPET_WINDOW)
    start = max(0, end - SNIPPET_WINDOW)
    return text[start:end]
