"""Seed context for the first planning round and formatting of tool results."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from doc_agent.agent.budget import TokenBudgetManager
from doc_agent.retrieval.index import SemanticIndex
from doc_agent.types import DocumentOverview, ToolResult

_OUTLINE_GROUPS = 12
_HISTORY_CLIP = 300
_ITEM_TEXT_CAP = 200
_FETCH_TEXT_CAP = 1500
_MATCH_PREVIEW_CAP = 400


class ContextBuilder:
    """Builds the running context the planner sees.

    The seed is never blank: it carries a short overview of the document and
    the condensed conversation so far, so the first round does not have to
    spend tool calls rediscovering what the overview already says.
    """

    def __init__(self, history_turns: int = 6) -> None:
        self.history_turns = history_turns

    def build(
        self,
        overview: DocumentOverview,
        conversation_history: Sequence[Any] | None,
        budget: TokenBudgetManager,
        index: SemanticIndex | None = None,
    ) -> str:
        parts: list[str] = ["=== DOCUMENT ===", f"Name: {overview.name or 'unknown'}"]
        if overview.page_count:
            parts.append(f"Pages: {overview.page_count}")
        if overview.language:
            parts.append(f"Language: {overview.language}")
        gist = overview.gist or (index.doc_gist if index is not None else "")
        if gist:
            parts.append(f"Gist: {gist}")

        if index is not None:
            parts.extend(["", "=== RETRIEVAL STATE ==="])
            parts.append(
                f"Semantic groups: {len(index.groups)}"
                if index.has_groups
                else "Semantic groups: not available"
            )
            parts.append(
                f"Chunks: {len(index.chunks)} ({'with' if index.has_vectors else 'without'} vectors)"
                if index.has_chunks
                else "Chunks: not available"
            )
            if index.has_groups:
                parts.extend(["", "=== OUTLINE ==="])
                for group in index.groups[:_OUTLINE_GROUPS]:
                    keywords = ", ".join(group.keywords[:6])
                    parts.append(f"- [{group.group_id}] {keywords}")
                hidden = len(index.groups) - _OUTLINE_GROUPS
                if hidden > 0:
                    parts.append(f"- ... {hidden} more groups (use list_groups or map)")

        turns = self._condense_history(conversation_history)
        if turns:
            parts.extend(["", "=== EARLIER IN THIS CONVERSATION ==="])
            parts.extend(turns)

        parts.extend(
            [
                "",
                "=== BUDGET ===",
                f"About {budget.remaining()} of {budget.total_budget} tokens remain for retrieved content.",
                "No document text has been retrieved yet; use the tools to read it.",
            ]
        )
        seed = "\n".join(parts)
        limit = min(budget.context_tokens, budget.remaining())
        fitted = budget.truncate(seed, limit)
        if not fitted:
            # Too tight for the truncation marker: keep a bare name line.
            fitted = budget.prefix(f"Name: {overview.name or 'unknown'}", limit)
        return fitted

    def _condense_history(self, history: Sequence[Any] | None) -> list[str]:
        if not history or self.history_turns <= 0:
            return []
        lines: list[str] = []
        for message in list(history)[-self.history_turns :]:
            role, content = _message_parts(message)
            if not content:
                continue
            clipped = " ".join(content.split())
            if len(clipped) > _HISTORY_CLIP:
                clipped = clipped[: _HISTORY_CLIP - 3] + "..."
            lines.append(f"{role}: {clipped}")
        return lines

    def format_tool_result(self, result: ToolResult) -> str:
        """Render one tool result as a context block."""

        header = f"[tool: {result.tool}({json.dumps(result.params, ensure_ascii=False)})]"
        if not result.ok:
            return f"{header}\nError: {result.error}"

        output = result.output if isinstance(result.output, dict) else {}
        lines = [header]
        if result.tool in ("vector_search", "keyword_search"):
            items = output.get("results", [])
            lines.append(f"{len(items)} matching chunks:")
            for idx, item in enumerate(items, start=1):
                lines.append(
                    f"{idx}. [{item.get('chunk_id')} / {item.get('group_id')}] "
                    f"score={float(item.get('score', 0.0)):.2f}"
                )
                lines.append(f"   {_clip(item.get('text', ''), _ITEM_TEXT_CAP)}")
        elif result.tool == "find":
            items = output.get("results", [])
            lines.append(f"{len(items)} snippets:")
            for idx, item in enumerate(items, start=1):
                lines.append(f"{idx}. [{item.get('group_id')}] {item.get('snippet', '')}")
        elif result.tool == "search_groups":
            items = output.get("results", [])
            lines.append(f"{len(items)} related groups:")
            for idx, item in enumerate(items, start=1):
                keywords = ", ".join(item.get("keywords", []))
                lines.append(f"{idx}. [{item.get('group_id')}] {keywords}")
                lines.append(f"   {_clip(item.get('summary', ''), 150)}")
        elif result.tool == "list_groups":
            items = output.get("groups", [])
            lines.append(f"{len(items)} groups:")
            for idx, item in enumerate(items, start=1):
                keywords = ", ".join(item.get("keywords", []))
                lines.append(f"{idx}. [{item.get('group_id')}] {item.get('char_count', 0)} chars - {keywords}")
                lines.append(f"   {_clip(item.get('summary', ''), 150)}")
                if item.get("digest"):
                    lines.append(f"   digest: {item['digest']}")
        elif result.tool == "fetch_group":
            text = str(output.get("text", ""))
            lines.append(f"Group [{output.get('group_id')}] ({output.get('granularity')}, {len(text)} chars):")
            lines.append(text[:_FETCH_TEXT_CAP] if text else "(no text for this group)")
            if len(text) > _FETCH_TEXT_CAP:
                lines.append("...(long group text shortened)")
        elif result.tool in ("grep", "regex_search", "boolean_search"):
            items = output.get("matches", [])
            lines.append(f"{len(items)} text matches:")
            for idx, item in enumerate(items, start=1):
                terms = item.get("matched_terms") or [item.get("match", "")]
                lines.append(
                    f"{idx}. [{item.get('source_id')} / {item.get('group_id')}] "
                    f"@{item.get('position', 0)} {', '.join(str(term) for term in terms)}"
                )
                lines.append(f"   {_clip(item.get('preview', ''), _MATCH_PREVIEW_CAP)}")
        elif result.tool == "fetch":
            text = str(output.get("text", ""))
            lines.append(f"Group [{output.get('group_id')}] ({len(text)} chars):")
            lines.append(f"keywords: {', '.join(output.get('keywords', []))}")
            if output.get("summary"):
                lines.append(f"summary: {_clip(output['summary'], 300)}")
            for kind, entries in (output.get("structure") or {}).items():
                if entries:
                    lines.append(f"{kind}: {'; '.join(entries)}")
            lines.append(text[:_FETCH_TEXT_CAP] if text else "(no text for this group)")
            if len(text) > _FETCH_TEXT_CAP:
                lines.append("...(long group text shortened)")
        elif result.tool == "map":
            entries = output.get("map", [])
            lines.append(
                f"Document map ({output.get('returned_groups', len(entries))}/"
                f"{output.get('total_groups', len(entries))} groups):"
            )
            for idx, entry in enumerate(entries, start=1):
                keywords = ", ".join(entry.get("keywords", []))
                lines.append(f"{idx}. [{entry.get('group_id')}] {entry.get('char_count', 0)} chars - {keywords}")
                sections = (entry.get("structure") or {}).get("sections") or []
                if sections:
                    lines.append(f"   sections: {'; '.join(sections)}")
        else:
            lines.append(_clip(json.dumps(result.output, ensure_ascii=False, default=str), 500))
        return "\n".join(lines)


def is_empty_result(result: ToolResult) -> bool:
    """True when a successful call came back without any hits."""

    if not result.ok or not isinstance(result.output, dict):
        return False
    for key in ("results", "matches", "groups", "map"):
        if key in result.output:
            return not result.output[key]
    if "text" in result.output:
        return not result.output["text"]
    return False


def _message_parts(message: Any) -> tuple[str, str]:
    if isinstance(message, dict):
        return str(message.get("role", "user")), str(message.get("content", ""))
    if isinstance(message, (tuple, list)) and len(message) == 2:
        return str(message[0]), str(message[1])
    role = str(getattr(message, "type", getattr(message, "role", "user")))
    return role, str(getattr(message, "content", message))


def _clip(text: Any, limit: int) -> str:
    value = " ".join(str(text or "").split())
    if len(value) <= limit:
        return value
    return value[: limit - 3] + "..."
