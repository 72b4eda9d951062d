"""End-to-end conversations through the orchestrator."""

import asyncio

import pytest

from nlquery.core.errors import CollaboratorError, ConversationNotFoundError
from nlquery.core.intent_resolver import UNKNOWN_PROMPT
from nlquery.core.orchestrator import ConversationOrchestrator
from nlquery.core.responders import ResponderClient
from nlquery.models.response import ResponderAnswer
from nlquery.storage.knowledge_base import InMemoryKnowledgeBase

pytestmark = pytest.mark.integration


class FixedResponder(ResponderClient):
    def __init__(self, text: str, confidence: float):
        self.text = text
        self.confidence = confidence

    async def answer(self, route, intent):
        return ResponderAnswer(route.responder_id, route.responder_name, self.text, self.confidence)


class SlowKnowledgeBase(InMemoryKnowledgeBase):
    async def query(self, text):
        await asyncio.sleep(1.0)
        return await super().query(text)


@pytest.mark.asyncio
async def test_listing_question_uses_direct_answer(orchestrator):
    """Test that a question routed only to the default responder is answered directly."""
    response = await orchestrator.ask("What agents are available?")

    assert response.answer.startswith("Available agents:")
    assert response.confidence == pytest.approx(0.8)
    assert "automaton-kernel.jsonl" in [c.source for c in response.citations]
    assert response.conversation_id == orchestrator.active_conversation_id


@pytest.mark.asyncio
async def test_follow_up_about_named_agent(orchestrator):
    conversation_id = orchestrator.new_conversation()

    first = await orchestrator.ask("Tell me about 4D-Network-Agent", conversation_id)
    second = await orchestrator.ask("What are its dependencies?", conversation_id)

    assert first.answer.startswith("**4D-Network-Agent**")
    assert first.confidence == pytest.approx(0.9)
    assert "3D-Algebraic-Agent" in second.answer
    assert second.confidence == pytest.approx(0.9)

    history = orchestrator.history(conversation_id)
    assert [turn.user_text for turn in history] == [
        "Tell me about 4D-Network-Agent",
        "What are its dependencies?",
    ]
    assert history[1].intent.filters["query_type"] == "dependencies"


@pytest.mark.asyncio
async def test_unclear_question_asks_for_clarification(orchestrator):
    conversation_id = orchestrator.new_conversation()

    response = await orchestrator.ask("asdkjh random text", conversation_id)

    assert response.answer == UNKNOWN_PROMPT
    assert response.citations == []
    assert response.follow_up_suggestions == [UNKNOWN_PROMPT]
    assert response.confidence == pytest.approx(0.1)
    assert orchestrator.history(conversation_id) == []


@pytest.mark.asyncio
async def test_confident_responder_answer_is_used(knowledge_base):
    orchestrator = ConversationOrchestrator(
        knowledge_base, responder_clients={"4d-network-agent": FixedResponder("Custom answer", 0.9)}
    )

    response = await orchestrator.ask("Tell me about 4D-Network-Agent")

    assert response.answer.startswith("Custom answer")
    assert response.confidence == pytest.approx(0.9)
    conversation = orchestrator.store.get(response.conversation_id)
    assert conversation.responder_assignments["4d-network-agent"] == "4D-Network-Agent"
    turn = orchestrator.history(response.conversation_id)[-1]
    assert turn.merged_answer == "Custom answer"
    assert [a.responder_name for a in turn.responder_answers] == ["4D-Network-Agent"]


@pytest.mark.asyncio
async def test_weak_responder_answer_falls_back_to_direct(knowledge_base):
    orchestrator = ConversationOrchestrator(
        knowledge_base, responder_clients={"4d-network-agent": FixedResponder("Unsure", 0.3)}
    )

    response = await orchestrator.ask("Tell me about 4D-Network-Agent")

    assert "Unsure" not in response.answer
    assert response.answer.startswith("**4D-Network-Agent**")
    turn = orchestrator.history(response.conversation_id)[-1]
    assert turn.merged_answer.startswith("**4D-Network-Agent**")
    assert turn.responder_answers == []


@pytest.mark.asyncio
async def test_questions_without_id_share_the_active_conversation(orchestrator):
    first = await orchestrator.ask("Tell me about 4D-Network-Agent")
    second = await orchestrator.ask("What are its capabilities?")

    assert first.conversation_id == second.conversation_id
    assert len(orchestrator.history()) == 2


@pytest.mark.asyncio
async def test_unknown_conversation_raises(orchestrator):
    with pytest.raises(ConversationNotFoundError):
        await orchestrator.ask("What agents are available?", "conv-missing")


@pytest.mark.asyncio
async def test_deadline_raises_collaborator_error(sample_lines):
    knowledge_base = SlowKnowledgeBase()
    knowledge_base.load_lines(sample_lines)
    orchestrator = ConversationOrchestrator(knowledge_base)

    with pytest.raises(CollaboratorError):
        await orchestrator.ask("What agents are available?", timeout=0.05)


@pytest.mark.asyncio
async def test_snapshot_round_trip(orchestrator):
    conversation_id = orchestrator.new_conversation("alice")
    await orchestrator.ask("Tell me about 4D-Network-Agent", conversation_id)

    assert orchestrator.save_snapshot() == conversation_id
    orchestrator.delete_conversation(conversation_id)
    assert orchestrator.active_conversation_id is None

    assert orchestrator.restore_snapshot(conversation_id) is True
    assert orchestrator.active_conversation_id == conversation_id
    assert [turn.user_text for turn in orchestrator.history()] == ["Tell me about 4D-Network-Agent"]
    assert orchestrator.restore_snapshot("conv-none") is False


@pytest.mark.asyncio
async def test_clear_keeps_conversation(orchestrator):
    conversation_id = orchestrator.new_conversation()
    await orchestrator.ask("Tell me about 4D-Network-Agent", conversation_id)

    orchestrator.clear_history(conversation_id)

    assert orchestrator.history(conversation_id) == []
    assert orchestrator.store.get(conversation_id) is not None


def test_operations_without_active_conversation_raise(orchestrator):
    with pytest.raises(ConversationNotFoundError):
        orchestrator.history()


def test_switch_conversation(orchestrator):
    first = orchestrator.new_conversation()
    orchestrator.new_conversation()

    assert orchestrator.switch_conversation(first) is True
    assert orchestrator.active_conversation_id == first
    assert orchestrator.switch_conversation("conv-missing") is False


def test_stats_include_active_conversations(orchestrator):
    orchestrator.new_conversation()

    assert orchestrator.stats() == {
        "facts": 2,
        "rules": 2,
        "responders": 4,
        "functions": 1,
        "active_conversations": 1,
    }
