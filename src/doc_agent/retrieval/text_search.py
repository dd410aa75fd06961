"""Literal, regex and boolean search over raw document text.

Text is searched unit by unit: chunks when the index has them, otherwise the
full text of each semantic group. Every hit carries a preview window around
the match.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Any, Union

_OPERATORS = {"AND", "OR", "NOT"}


@dataclass(frozen=True, slots=True)
class TextUnit:
    source_id: str
    group_id: str | None
    text: str


def split_alternatives(query: str) -> list[str]:
    """`"a|b| c"` -> `["a", "b", "c"]`."""

    return [part.strip() for part in query.split("|") if part.strip()]


def _hit(unit: TextUnit, start: int, end: int, context: int, **extra: Any) -> dict[str, Any]:
    return {
        "source_id": unit.source_id,
        "group_id": unit.group_id,
        "position": start,
        "match": unit.text[start:end],
        "preview": unit.text[max(0, start - context) : min(len(unit.text), end + context)],
        **extra,
    }


def grep(
    units: Sequence[TextUnit],
    query: str,
    *,
    limit: int = 10,
    context: int = 200,
    case_insensitive: bool = True,
) -> list[dict[str, Any]]:
    """Literal search; `|` separates alternatives that are searched in turn."""

    flags = re.IGNORECASE if case_insensitive else 0
    results: list[dict[str, Any]] = []
    for keyword in split_alternatives(query):
        pattern = re.compile(re.escape(keyword), flags)
        for unit in units:
            for match in pattern.finditer(unit.text):
                results.append(_hit(unit, match.start(), match.end(), context, keyword=keyword))
                if len(results) >= limit:
                    return results
    return results


def regex_search(
    units: Sequence[TextUnit],
    pattern: str | re.Pattern[str],
    *,
    limit: int = 10,
    context: int = 200,
) -> list[dict[str, Any]]:
    compiled = (
        pattern
        if isinstance(pattern, re.Pattern)
        else re.compile(pattern, re.IGNORECASE | re.MULTILINE)
    )
    results: list[dict[str, Any]] = []
    for unit in units:
        for match in compiled.finditer(unit.text):
            results.append(
                _hit(unit, match.start(), match.end(), context, groups=list(match.groups()))
            )
            if len(results) >= limit:
                return results
    return results


# Boolean queries: AND / OR / NOT (upper case), parentheses, "quoted phrases".
# Adjacent terms are joined with AND, so `a NOT b` means `a AND NOT b`.


@dataclass(frozen=True, slots=True)
class Term:
    value: str


@dataclass(frozen=True, slots=True)
class Not:
    operand: "BooleanNode"


@dataclass(frozen=True, slots=True)
class And:
    operands: tuple["BooleanNode", ...]


@dataclass(frozen=True, slots=True)
class Or:
    operands: tuple["BooleanNode", ...]


BooleanNode = Union[Term, Not, And, Or]


def _tokenize(query: str) -> Iterator[tuple[str, str]]:
    for match in re.finditer(r'"([^"]*)"|([()])|([^\s()"]+)', query):
        phrase, paren, word = match.groups()
        if phrase is not None:
            if phrase.strip():
                yield "term", phrase.strip()
        elif paren is not None:
            yield paren, paren
        elif word in _OPERATORS:
            yield "op", word
        else:
            yield "term", word


class _BooleanParser:
    def __init__(self, query: str) -> None:
        self.tokens = list(_tokenize(query))
        self.position = 0

    def parse(self) -> BooleanNode:
        if not self.tokens:
            raise ValueError("boolean query is empty")
        node = self._or()
        if self.position != len(self.tokens):
            raise ValueError(f"unexpected token {self.tokens[self.position][1]!r} in boolean query")
        return node

    def _peek(self) -> tuple[str, str] | None:
        return self.tokens[self.position] if self.position < len(self.tokens) else None

    def _or(self) -> BooleanNode:
        operands = [self._and()]
        while self._peek() == ("op", "OR"):
            self.position += 1
            operands.append(self._and())
        return operands[0] if len(operands) == 1 else Or(tuple(operands))

    def _and(self) -> BooleanNode:
        operands = [self._not()]
        while True:
            token = self._peek()
            if token == ("op", "AND"):
                self.position += 1
            elif token is None or token == ("op", "OR") or token[0] == ")":
                break
            operands.append(self._not())
        return operands[0] if len(operands) == 1 else And(tuple(operands))

    def _not(self) -> BooleanNode:
        if self._peek() == ("op", "NOT"):
            self.position += 1
            return Not(self._not())
        return self._primary()

    def _primary(self) -> BooleanNode:
        token = self._peek()
        if token is None:
            raise ValueError("boolean query ends with an operator")
        kind, value = token
        self.position += 1
        if kind == "term":
            return Term(value)
        if kind == "(":
            node = self._or()
            if self._peek() != (")", ")"):
                raise ValueError("unbalanced parenthesis in boolean query")
            self.position += 1
            return node
        raise ValueError(f"unexpected {value!r} in boolean query")


def parse_boolean_query(query: str) -> BooleanNode:
    return _BooleanParser(query).parse()


def _evaluate(node: BooleanNode, lowered: str) -> bool:
    if isinstance(node, Term):
        return node.value.lower() in lowered
    if isinstance(node, Not):
        return not _evaluate(node.operand, lowered)
    if isinstance(node, And):
        return all(_evaluate(operand, lowered) for operand in node.operands)
    return any(_evaluate(operand, lowered) for operand in node.operands)


def _positive_terms(node: BooleanNode) -> list[str]:
    if isinstance(node, Term):
        return [node.value]
    if isinstance(node, Not):
        return []
    terms: list[str] = []
    for operand in node.operands:
        terms.extend(term for term in _positive_terms(operand) if term not in terms)
    return terms


def boolean_search(
    units: Sequence[TextUnit],
    query: str | BooleanNode,
    *,
    limit: int = 10,
    context: int = 200,
) -> list[dict[str, Any]]:
    """Units satisfying the expression, ranked by how many positive terms they contain."""

    node = parse_boolean_query(query) if isinstance(query, str) else query
    terms = _positive_terms(node)
    scored: list[tuple[int, dict[str, Any]]] = []
    for unit in units:
        lowered = unit.text.lower()
        if not _evaluate(node, lowered):
            continue
        matched = [term for term in terms if term.lower() in lowered]
        if not matched:
            continue
        start = min(lowered.find(term.lower()) for term in matched)
        first = next(term for term in matched if lowered.find(term.lower()) == start)
        scored.append(
            (
                len(matched),
                _hit(unit, start, start + len(first), context, matched_terms=matched, score=float(len(matched))),
            )
        )
    scored.sort(key=lambda item: item[0], reverse=True)
    return [hit for _, hit in scored[: max(0, limit)]]
