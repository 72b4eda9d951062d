"""Responder clients: how a routed question is actually answered."""

import logging
from abc import ABC, abstractmethod

import httpx

from nlquery.core.errors import CollaboratorError
from nlquery.models.intent import Intent
from nlquery.models.response import ResponderAnswer, ResponderRoute
from nlquery.storage.knowledge_base import KnowledgeBase, describe_responder, detect_query_type

logger = logging.getLogger(__name__)

UNKNOWN_RESPONDER_CONFIDENCE = 0.1
RESPONDER_FACETS = ("dependencies", "capabilities", "requirements")


class ResponderClient(ABC):
    """Answers a question on behalf of one responder."""

    @abstractmethod
    async def answer(self, route: ResponderRoute, intent: Intent) -> ResponderAnswer:
        """Answer intent as the responder named by route.

        Raises:
            CollaboratorError: If the responder cannot be reached or fails
        """


class KnowledgeBaseResponder(ResponderClient):
    """Answers from the responder's own definition in the knowledge base."""

    def __init__(self, knowledge_base: KnowledgeBase):
        self.knowledge_base = knowledge_base

    async def answer(self, route: ResponderRoute, intent: Intent) -> ResponderAnswer:
        responder = self.knowledge_base.get_responder(route.responder_id)
        if responder is None:
            return ResponderAnswer(
                responder_id=route.responder_id,
                responder_name=route.responder_name,
                text=f"I couldn't find information about {route.responder_name}.",
                confidence=UNKNOWN_RESPONDER_CONFIDENCE,
            )

        query_type = intent.query_type or detect_query_type(intent.resolved_text)
        if query_type not in RESPONDER_FACETS:
            query_type = None

        return ResponderAnswer(
            responder_id=responder.id,
            responder_name=responder.name,
            text=describe_responder(responder, query_type),
            confidence=route.confidence,
            data={
                "dimension": responder.dimension,
                "source": responder.source,
                "line_number": responder.line_number,
            },
        )


class HttpResponder(ResponderClient):
    """Remote responder reached over HTTP.

    Posts `{responder_id, question, intent, target, filters}` as JSON and
    expects `{answer, confidence?, data?}` back.
    """

    def __init__(self, endpoint: str, timeout: float = 2.0, client: httpx.AsyncClient | None = None):
        """Initialize HTTP responder.

        Args:
            endpoint: URL to POST questions to
            timeout: Request timeout in seconds
            client: Optional shared AsyncClient (one is created per call otherwise)
        """
        self.endpoint = endpoint
        self.timeout = timeout
        self.client = client

    async def answer(self, route: ResponderRoute, intent: Intent) -> ResponderAnswer:
        payload = {
            "responder_id": route.responder_id,
            "question": intent.resolved_text,
            "intent": intent.type.value,
            "target": intent.target,
            "filters": intent.filters,
        }

        try:
            if self.client is not None:
                response = await self.client.post(self.endpoint, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.endpoint, json=payload)
            response.raise_for_status()
            data = response.json()
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            confidence = float(data.get("confidence", route.confidence))
        except (httpx.HTTPError, TypeError, ValueError) as e:
            raise CollaboratorError(
                f"Responder {route.responder_name} failed: {e}", route.responder_id
            ) from e

        logger.debug(f"Remote responder {route.responder_id} answered ({confidence:.2f})")

        return ResponderAnswer(
            responder_id=route.responder_id,
            responder_name=route.responder_name,
            text=str(data.get("answer", "")),
            confidence=min(1.0, max(0.0, confidence)),
            data=data.get("data"),
        )
