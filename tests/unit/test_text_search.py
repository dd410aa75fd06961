import pytest
from pydantic import ValidationError

from doc_agent.agent.tools import BooleanSearchInput, FetchInput, GrepInput, RegexSearchInput
from doc_agent.retrieval.text_search import (
    And,
    Not,
    Or,
    Term,
    TextUnit,
    boolean_search,
    grep,
    parse_boolean_query,
    regex_search,
    split_alternatives,
)

UNITS = [
    TextUnit("c1", "g-train", "Dropout of 0.1 is applied. Label smoothing uses 0.1 as well."),
    TextUnit("c2", "g-train", "Training ran on 8 GPUs with the Adam optimizer."),
    TextUnit("c3", "g-results", "The big model reaches 28.4 BLEU.\nDropout was raised to 0.3 for it."),
]


def test_split_alternatives() -> None:
    assert split_alternatives("adam| dropout ||") == ["adam", "dropout"]


def test_grep_is_case_insensitive_and_searches_alternatives_in_turn() -> None:
    hits = grep(UNITS, "adam|DROPOUT", context=5)

    assert [(hit["source_id"], hit["keyword"]) for hit in hits] == [
        ("c2", "adam"),
        ("c1", "DROPOUT"),
        ("c3", "DROPOUT"),
    ]
    assert hits[0]["match"] == "Adam"
    assert hits[0]["preview"] == " the Adam opti"
    assert hits[1]["position"] == 0


def test_grep_stops_at_limit() -> None:
    assert len(grep(UNITS, "0.", limit=2)) == 2
    assert grep(UNITS, "transformer") == []


def test_regex_search_reports_groups_and_is_multiline() -> None:
    hits = regex_search(UNITS, r"^dropout \w+ (?:raised to )?(\d\.\d)")

    assert [hit["source_id"] for hit in hits] == ["c1", "c3"]
    assert hits[1]["groups"] == ["0.3"]
    assert hits[1]["group_id"] == "g-results"


def test_regex_search_survives_zero_width_patterns() -> None:
    hits = regex_search([TextUnit("u", None, "abc")], r"\b", limit=50)

    assert [hit["position"] for hit in hits] == [0, 3]
    assert all(hit["match"] == "" for hit in hits)


def test_boolean_query_grammar() -> None:
    assert parse_boolean_query("dropout") == Term("dropout")
    assert parse_boolean_query('dropout "label smoothing"') == And((Term("dropout"), Term("label smoothing")))
    assert parse_boolean_query("adam OR sgd NOT gpus") == Or((Term("adam"), And((Term("sgd"), Not(Term("gpus"))))))
    assert parse_boolean_query("(adam OR sgd) AND NOT gpus") == And(
        (Or((Term("adam"), Term("sgd"))), Not(Term("gpus")))
    )
    # lower-case words are plain terms
    assert parse_boolean_query("this or that") == And((Term("this"), Term("or"), Term("that")))


@pytest.mark.parametrize("query", ["", "dropout AND", "(adam OR sgd", "adam )", "NOT"])
def test_malformed_boolean_queries_are_rejected(query: str) -> None:
    with pytest.raises(ValueError):
        parse_boolean_query(query)


def test_boolean_search_ranks_by_positive_terms() -> None:
    hits = boolean_search(UNITS, 'dropout AND (0.1 OR "28.4 bleu") NOT gpus')

    assert [hit["source_id"] for hit in hits] == ["c1", "c3"]
    assert hits[0]["matched_terms"] == ["dropout", "0.1"]
    assert hits[1]["matched_terms"] == ["dropout", "28.4 bleu"]
    assert hits[1]["match"] == "28.4 BLEU"
    assert boolean_search(UNITS, "adam NOT gpus") == []
    assert boolean_search(UNITS, "NOT adam") == []


def test_tool_inputs_validate_patterns_and_queries() -> None:
    assert GrepInput(query="a|b").context == 200
    assert FetchInput.model_validate({"groupId": "g1"}).group_id == "g1"

    with pytest.raises(ValidationError, match="invalid regular expression"):
        RegexSearchInput(pattern="(unclosed")
    with pytest.raises(ValidationError, match="unbalanced parenthesis"):
        BooleanSearchInput(query="(adam OR sgd")
    with pytest.raises(ValidationError):
        GrepInput(query="x", context=5000)
