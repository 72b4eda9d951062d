"""Tests for response synthesis: citations, suggestions and rendering."""

import json

import pytest

from nlquery.core.errors import FormattingError
from nlquery.core.response_synthesizer import SOURCES_HEADER, SUGGESTIONS_HEADER, ResponseSynthesizer
from nlquery.lib.config import EngineConfig
from nlquery.models.conversation import Conversation
from nlquery.models.entity import Entity, EntityKind
from nlquery.models.intent import Intent, IntentType
from nlquery.models.knowledge import (
    FactDefinition,
    FunctionDefinition,
    QueryResult,
    ResponderDefinition,
    RuleDefinition,
)
from nlquery.models.response import (
    Citation,
    CitationKind,
    CoordinatedResponse,
    FormattedResponse,
    OutputFormat,
    ResponderAnswer,
)

NETWORK_AGENT = ResponderDefinition(
    id="4d-network-agent",
    name="4D-Network-Agent",
    dimension="4D",
    purpose="Manage network operations",
    source="AGENTS.md",
    line_number=107,
)


@pytest.fixture
def synthesizer():
    return ResponseSynthesizer(EngineConfig())


def test_citations_are_deduplicated(synthesizer):
    result = QueryResult(
        answer="a",
        results=[
            FactDefinition(id="f1", content="one", source="kernel.jsonl", line_number=3),
            FactDefinition(id="f2", content="two", source="kernel.jsonl", line_number=3),
            FactDefinition(id="f3", content="three", source="kernel.jsonl", line_number=4),
        ],
    )

    citations = synthesizer.citations(result)

    assert [c.key for c in citations] == [("kernel.jsonl", 3), ("kernel.jsonl", 4)]


def test_items_without_source_are_not_cited(synthesizer):
    result = QueryResult(answer="a", results=[FactDefinition(id="f1", content="orphan")])

    assert synthesizer.citations(result) == []


def test_citation_kinds_follow_record_types(synthesizer):
    result = QueryResult(
        answer="a",
        results=[
            NETWORK_AGENT,
            FunctionDefinition(
                id="r5rs:church-add",
                name="r5rs:church-add",
                signature="(church-add m n)",
                source="grammar.scm",
                line_number=27,
            ),
            RuleDefinition(id="r1", keyword="must", statement="x", source="AGENTS.md", line_number=12),
            FactDefinition(id="f1", content="x", source="notes.md", title="Notes"),
        ],
    )

    citations = synthesizer.citations(result)

    assert [c.kind for c in citations] == [
        CitationKind.RESPONDER,
        CitationKind.FUNCTION,
        CitationKind.RULE,
        CitationKind.DOCUMENT,
    ]
    assert citations[0].title == "4D-Network-Agent"
    assert citations[2].title == "MUST requirement"
    assert citations[3].title == "Notes"


def test_responder_answers_are_cited_once(synthesizer):
    """Test that a responder answer citing the same definition is not listed twice."""
    result = QueryResult(answer="a", results=[NETWORK_AGENT])
    coordinated = CoordinatedResponse(
        primary=ResponderAnswer(
            "4d-network-agent",
            "4D-Network-Agent",
            "text",
            0.9,
            {"source": "AGENTS.md", "line_number": 107},
        ),
        additional=[ResponderAnswer("remote", "Remote-Agent", "more", 0.6)],
    )

    citations = synthesizer.citations(result, coordinated)

    assert [c.source for c in citations] == ["AGENTS.md", "responder:remote"]
    assert citations[1].kind is CitationKind.RESPONDER


def test_format_appends_numbered_sources(synthesizer):
    citations = [
        Citation(source="AGENTS.md", kind=CitationKind.RESPONDER, title="4D-Network-Agent", line_number=107),
        Citation(source="church.md", title="Church encoding", url="https://example.org/church"),
    ]

    formatted = synthesizer.format("The answer.", citations)

    assert formatted == (
        "The answer."
        + SOURCES_HEADER
        + "1. **4D-Network-Agent** (AGENTS.md, line 107)\n"
        + "2. **Church encoding** (church.md) - https://example.org/church"
    )


def test_format_without_citations_is_unchanged(synthesizer):
    assert synthesizer.format("The answer.", []) == "The answer."


def test_responder_suggestions(synthesizer):
    intent = Intent(type=IntentType.RESPONDER, target="4D-Network-Agent", filters={"dimension": "4D"})

    suggestions = synthesizer.follow_up_suggestions(QueryResult(answer="a"), intent)

    assert suggestions[:3] == [
        "What are the dependencies of 4D-Network-Agent?",
        "What are the capabilities of 4D-Network-Agent?",
        "What other agents are in 4D?",
    ]


def test_suggestions_are_capped_and_unique(synthesizer):
    conversation = Conversation(current_topic="consensus")
    intent = Intent(
        type=IntentType.RESPONDER,
        target="4D-Network-Agent",
        filters={"dimension": "4D"},
        entities=[Entity.create(EntityKind.RESPONDER, "4D-Network-Agent")],
    )
    coordinated = CoordinatedResponse(
        primary=ResponderAnswer("a", "A", "x", 0.5),
        additional=[ResponderAnswer("b", "B", "y", 0.6), ResponderAnswer("c", "C", "z", 0.6)],
    )

    suggestions = synthesizer.follow_up_suggestions(QueryResult(answer="a"), intent, coordinated, conversation)

    assert len(suggestions) == 5
    assert len(set(suggestions)) == len(suggestions)


def test_related_entities_include_recent_conversation_entities(synthesizer):
    function = Entity.create(EntityKind.FUNCTION, "r5rs:church-add")
    conversation = Conversation(entities={function.entity_id: function})
    intent = Intent(entities=[Entity.create(EntityKind.RESPONDER, "4D-Network-Agent")])

    related = synthesizer.related_entities(intent, conversation)

    assert [e.name for e in related] == ["4D-Network-Agent", "r5rs:church-add"]


def test_synthesize_prefers_coordinated_answer(synthesizer):
    result = QueryResult(answer="direct", results=[NETWORK_AGENT], confidence=0.8)
    coordinated = CoordinatedResponse(
        primary=ResponderAnswer("4d-network-agent", "4D-Network-Agent", "coordinated", 0.9),
        merged_text="coordinated",
        confidence=1.4,
    )

    response = synthesizer.synthesize(result, Intent(type=IntentType.RESPONDER), coordinated)

    assert response.answer.startswith("coordinated" + SOURCES_HEADER)
    assert response.confidence == 1.0


def test_synthesize_direct_answer(synthesizer):
    result = QueryResult(answer="direct", results=[], confidence=0.6)

    response = synthesizer.synthesize(result, Intent(type=IntentType.FACT))

    assert response.answer == "direct"
    assert response.citations == []
    assert response.confidence == pytest.approx(0.6)


def test_plain_output_strips_markdown(synthesizer):
    response = FormattedResponse(
        answer="**4D-Network-Agent**\n\n*Source: AGENTS.md*" + SOURCES_HEADER + "1. **AGENTS.md** (AGENTS.md)",
        follow_up_suggestions=["What agents are available?"],
    )

    text = synthesizer.to_output(response, OutputFormat.PLAIN)

    assert "**" not in text
    assert "---" not in text
    assert "Source: AGENTS.md" in text
    assert "Related questions you might ask:" in text
    assert "1. What agents are available?" in text


def test_markdown_output_numbers_suggestions(synthesizer):
    response = FormattedResponse(answer="Answer", follow_up_suggestions=["Next?", "Then?"])

    text = synthesizer.to_output(response, "markdown")

    assert text == f"Answer\n\n{SUGGESTIONS_HEADER}\n1. Next?\n2. Then?"


def test_json_output(synthesizer):
    response = FormattedResponse(
        answer="Answer",
        citations=[Citation(source="AGENTS.md", line_number=1)],
        confidence=0.7,
        conversation_id="conv-1",
    )

    data = json.loads(synthesizer.to_output(response, OutputFormat.JSON))

    assert data["answer"] == "Answer"
    assert data["citations"][0]["source"] == "AGENTS.md"
    assert data["confidence"] == 0.7
    assert data["conversation_id"] == "conv-1"


def test_unsupported_output_format_raises(synthesizer):
    with pytest.raises(FormattingError):
        synthesizer.to_output(FormattedResponse(answer="x"), "html")
