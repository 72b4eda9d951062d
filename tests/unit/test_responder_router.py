"""Tests for responder routing and answer coordination."""

import asyncio

import httpx
import pytest

from nlquery.core.errors import CollaboratorError, NoRoutesAvailableError
from nlquery.core.responder_router import ResponderIndex, ResponderRouter
from nlquery.core.responders import HttpResponder, KnowledgeBaseResponder, ResponderClient
from nlquery.lib.config import EngineConfig
from nlquery.models.intent import Intent, IntentType
from nlquery.models.knowledge import ResponderDefinition
from nlquery.models.response import ResponderAnswer, ResponderRoute


class StaticResponder(ResponderClient):
    """Answers with fixed text and confidence, optionally after a delay."""

    def __init__(self, text: str, confidence: float, delay: float = 0.0):
        self.text = text
        self.confidence = confidence
        self.delay = delay
        self.calls = 0

    async def answer(self, route, intent):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return ResponderAnswer(route.responder_id, route.responder_name, self.text, self.confidence)


class BrokenResponder(ResponderClient):
    async def answer(self, route, intent):
        raise CollaboratorError("connection refused", route.responder_id)


def route(responder_id: str, confidence: float, name: str | None = None) -> ResponderRoute:
    return ResponderRoute(responder_id, name or responder_id, confidence, "test")


@pytest.fixture
def router(knowledge_base):
    return ResponderRouter(knowledge_base, EngineConfig())


def test_index_lookups(knowledge_base):
    index = ResponderIndex(knowledge_base.list_responders())

    assert index.exact("4d-network-agent").name == "4D-Network-Agent"
    assert [r.name for r in index.in_dimension("5d")] == ["5D-Consensus-Agent"]
    assert [r.name for r in index.dimension_prefix("4D-Network")] == ["4D-Network-Agent"]
    assert index.dimension_prefix("Network") == []
    assert [r.name for r in index.mentioning("consensus")] == ["5D-Consensus-Agent"]


def test_exact_name_route(router):
    routes = router.route(Intent(type=IntentType.RESPONDER, target="4D-Network-Agent"))

    assert len(routes) == 1
    assert routes[0].responder_id == "4d-network-agent"
    assert routes[0].confidence == pytest.approx(0.9)
    assert routes[0].category == "4D"


def test_partial_name_route(router):
    routes = router.route(Intent(type=IntentType.RESPONDER, target="Consensus"))

    assert [r.responder_name for r in routes] == ["5D-Consensus-Agent"]
    assert routes[0].confidence == pytest.approx(0.9)


def test_dimension_route(router):
    routes = router.route(Intent(type=IntentType.RESPONDER, filters={"dimension": "3D"}))

    assert [r.responder_name for r in routes] == ["3D-Algebraic-Agent"]
    assert routes[0].confidence == pytest.approx(0.8)


def test_responder_query_without_match_uses_default(router):
    routes = router.route(Intent(type=IntentType.RESPONDER))

    assert len(routes) == 1
    assert routes[0].responder_id == "query-interface-agent"
    assert routes[0].responder_name == "Query-Interface-Agent"
    assert routes[0].confidence == pytest.approx(0.5)


def test_function_query_routes_to_low_dimensions(router):
    routes = router.route(Intent(type=IntentType.FUNCTION, target="r5rs:church-add"))

    assert [r.responder_name for r in routes] == ["3D-Algebraic-Agent"]
    assert routes[0].confidence == pytest.approx(0.7)


def test_rule_query_routes_by_context(router):
    routes = router.route(Intent(type=IntentType.RULE, filters={"context": "consensus"}))

    assert [r.responder_name for r in routes] == ["5D-Consensus-Agent"]
    assert routes[0].confidence == pytest.approx(0.7)


def test_fact_query_without_mention_uses_default(router):
    routes = router.route(Intent(type=IntentType.FACT, target="quantum foam"))

    assert [r.responder_id for r in routes] == ["query-interface-agent"]
    assert routes[0].confidence == pytest.approx(0.6)


@pytest.mark.parametrize("intent_type", [IntentType.EXAMPLE, IntentType.UNKNOWN])
def test_other_types_use_default_route(router, intent_type):
    routes = router.route(Intent(type=intent_type))

    assert [r.responder_id for r in routes] == ["query-interface-agent"]
    assert routes[0].confidence == pytest.approx(0.8)


def test_routes_sorted_by_confidence(router):
    routes = router.route(Intent(type=IntentType.RESPONDER, filters={"dimension": "4D"}))

    confidences = [r.confidence for r in routes]
    assert confidences == sorted(confidences, reverse=True)


@pytest.mark.asyncio
async def test_confident_primary_is_used_alone(knowledge_base):
    """Test that a primary answer at or above the threshold is not supplemented."""
    extra = StaticResponder("extra", 0.8)
    router = ResponderRouter(knowledge_base, clients={"other": extra})
    routes = router.route(Intent(type=IntentType.RESPONDER, target="4D-Network-Agent"))

    response = await router.coordinate(
        [*routes, route("other", 0.8)], Intent(type=IntentType.RESPONDER, target="4D-Network-Agent")
    )

    assert response.responders_used == ["4D-Network-Agent"]
    assert response.additional == []
    assert "Additional Information" not in response.merged_text
    assert response.merged_text.startswith("**4D-Network-Agent**")
    assert response.confidence == pytest.approx(0.9)
    assert extra.calls == 0


@pytest.mark.asyncio
async def test_weak_primary_is_merged_with_additional(knowledge_base):
    clients = {
        "default": StaticResponder("Primary answer", 0.5),
        "a": StaticResponder("Answer from A", 0.6),
        "b": StaticResponder("Answer from B", 0.6),
    }
    router = ResponderRouter(knowledge_base, clients=clients)
    routes = [route("default", 0.5, "Default"), route("a", 0.6, "A"), route("b", 0.6, "B")]

    response = await router.coordinate(routes, Intent(type=IntentType.FACT))

    assert response.merged_text == (
        "Primary answer\n\n**Additional Information:**\n\n"
        "**From A:**\nAnswer from A\n\n**From B:**\nAnswer from B"
    )
    assert response.responders_used == ["Default", "A", "B"]
    assert response.confidence == pytest.approx(0.55)


@pytest.mark.asyncio
async def test_additional_routes_are_bounded(knowledge_base):
    clients = {name: StaticResponder(name, 0.6) for name in ["a", "b", "c", "d"]}
    clients["primary"] = StaticResponder("primary", 0.4)
    router = ResponderRouter(knowledge_base, clients=clients)
    routes = [route("primary", 0.6)] + [route(name, 0.6) for name in ["a", "b", "c", "d"]]

    response = await router.coordinate(routes, Intent(type=IntentType.FACT))

    assert len(response.additional) == 2
    assert clients["c"].calls == 0
    assert clients["d"].calls == 0


@pytest.mark.asyncio
async def test_low_confidence_routes_are_not_consulted(knowledge_base):
    low = StaticResponder("low", 0.9)
    router = ResponderRouter(
        knowledge_base, clients={"primary": StaticResponder("primary", 0.4), "low": low}
    )

    response = await router.coordinate(
        [route("primary", 0.6), route("low", 0.5)], Intent(type=IntentType.FACT)
    )

    assert response.additional == []
    assert low.calls == 0


@pytest.mark.asyncio
async def test_slow_additional_responder_is_omitted(knowledge_base):
    """Test that an additional responder exceeding its timeout is left out."""
    config = EngineConfig(responder_timeout_seconds=0.05)
    clients = {
        "primary": StaticResponder("primary", 0.5),
        "fast": StaticResponder("fast answer", 0.6),
        "slow": StaticResponder("slow answer", 0.6, delay=1.0),
    }
    router = ResponderRouter(knowledge_base, config, clients=clients)

    response = await router.coordinate(
        [route("primary", 0.6), route("fast", 0.6), route("slow", 0.6)], Intent(type=IntentType.FACT)
    )

    assert response.responders_used == ["primary", "fast"]
    assert "slow answer" not in response.merged_text


@pytest.mark.asyncio
async def test_failing_additional_responder_is_omitted(knowledge_base):
    clients = {"primary": StaticResponder("primary", 0.5), "broken": BrokenResponder()}
    router = ResponderRouter(knowledge_base, clients=clients)

    response = await router.coordinate(
        [route("primary", 0.6), route("broken", 0.6)], Intent(type=IntentType.FACT)
    )

    assert response.responders_used == ["primary"]
    assert response.merged_text == "primary"


@pytest.mark.asyncio
async def test_primary_timeout_raises(knowledge_base):
    config = EngineConfig(responder_timeout_seconds=0.05)
    router = ResponderRouter(
        knowledge_base, config, clients={"slow": StaticResponder("late", 0.9, delay=1.0)}
    )

    with pytest.raises(CollaboratorError):
        await router.coordinate([route("slow", 0.9)], Intent(type=IntentType.FACT))


@pytest.mark.asyncio
async def test_empty_routes_raise(router):
    with pytest.raises(NoRoutesAvailableError):
        await router.coordinate([], Intent(type=IntentType.FACT))


@pytest.mark.asyncio
async def test_knowledge_base_responder_answers_facet(knowledge_base):
    responder = KnowledgeBaseResponder(knowledge_base)
    intent = Intent(
        type=IntentType.RESPONDER,
        resolved_text="What are 4D-Network-Agent's dependencies?",
        target="4D-Network-Agent",
        filters={"query_type": "dependencies"},
    )

    answer = await responder.answer(route("4d-network-agent", 0.9, "4D-Network-Agent"), intent)

    assert "**Dependencies:**" in answer.text
    assert "3D-Algebraic-Agent" in answer.text
    assert "**Capabilities:**" not in answer.text
    assert answer.confidence == pytest.approx(0.9)
    assert answer.data["source"] == "AGENTS.md"


@pytest.mark.asyncio
async def test_knowledge_base_responder_unknown_id(knowledge_base):
    responder = KnowledgeBaseResponder(knowledge_base)

    answer = await responder.answer(route("ghost", 0.6, "Ghost-Agent"), Intent())

    assert answer.confidence == pytest.approx(0.1)
    assert "Ghost-Agent" in answer.text


@pytest.mark.asyncio
async def test_http_responder_posts_question():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = request.content
        return httpx.Response(200, json={"answer": "remote answer", "confidence": 0.75})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        responder = HttpResponder("http://responder.test/ask", client=client)
        answer = await responder.answer(
            route("remote", 0.6, "Remote-Agent"),
            Intent(type=IntentType.FACT, resolved_text="What is consensus?"),
        )

    assert seen["url"] == "http://responder.test/ask"
    assert b"What is consensus?" in seen["body"]
    assert answer.text == "remote answer"
    assert answer.confidence == pytest.approx(0.75)
    assert answer.responder_name == "Remote-Agent"


@pytest.mark.asyncio
async def test_http_responder_error_raises_collaborator_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": "down"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        responder = HttpResponder("http://responder.test/ask", client=client)
        with pytest.raises(CollaboratorError) as exc_info:
            await responder.answer(route("remote", 0.6), Intent())

    assert exc_info.value.collaborator == "remote"


def test_configured_endpoints_get_http_clients(knowledge_base):
    config = EngineConfig(responder_endpoints={"5d-consensus-agent": "http://consensus.test/ask"})

    router = ResponderRouter(knowledge_base, config)

    assert isinstance(router.clients["5d-consensus-agent"], HttpResponder)
    assert isinstance(router.default_client, KnowledgeBaseResponder)


def test_refresh_index_picks_up_new_responders(knowledge_base, router):
    intent = Intent(type=IntentType.RESPONDER, filters={"dimension": "6D"})
    knowledge_base.add(
        ResponderDefinition(id="6d-intelligence-agent", name="6D-Intelligence-Agent", dimension="6D")
    )
    assert [r.responder_id for r in router.route(intent)] == ["query-interface-agent"]

    router.refresh_index()

    assert [r.responder_name for r in router.route(intent)] == ["6D-Intelligence-Agent"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [[1, 2], {"answer": "x", "confidence": "high"}, {"answer": "x", "confidence": None}],
)
async def test_http_responder_malformed_reply_raises_collaborator_error(body):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        responder = HttpResponder("http://responder.test/ask", client=client)
        with pytest.raises(CollaboratorError) as exc_info:
            await responder.answer(route("remote", 0.6), Intent())

    assert exc_info.value.collaborator == "remote"


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [[1, 2], {"answer": "x", "confidence": "high"}])
async def test_malformed_additional_http_answer_is_omitted(knowledge_base, body):
    """Test that a remote responder with an unreadable reply does not break coordination."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        clients = {
            "a": StaticResponder("Answer from A", 0.5),
            "b": HttpResponder("http://responder.test/ask", client=client),
        }
        router = ResponderRouter(knowledge_base, clients=clients)

        response = await router.coordinate(
            [route("a", 0.6, "A"), route("b", 0.6, "B")], Intent(type=IntentType.FACT)
        )

    assert response.responders_used == ["A"]
    assert response.merged_text == "Answer from A"
    assert response.confidence == pytest.approx(0.5)
