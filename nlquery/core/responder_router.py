"""Responder router: ranks responders for an intent and coordinates their answers."""

import asyncio
import logging
import re
from collections import defaultdict
from collections.abc import Callable
from statistics import mean

from nlquery.core.errors import CollaboratorError, NoRoutesAvailableError
from nlquery.core.responders import HttpResponder, KnowledgeBaseResponder, ResponderClient
from nlquery.lib.config import EngineConfig
from nlquery.models.intent import Intent, IntentType
from nlquery.models.knowledge import ResponderDefinition
from nlquery.models.response import CoordinatedResponse, ResponderAnswer, ResponderRoute
from nlquery.storage.knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)

DIMENSION_PREFIX_PATTERN = re.compile(r"^(\d+D)(?:-(.+))?$", re.IGNORECASE)


class ResponderIndex:
    """Lookup tables over the responders of one knowledge-base load."""

    def __init__(self, responders: list[ResponderDefinition]):
        self.responders = list(responders)
        self.by_id = {r.id: r for r in self.responders}
        self.by_name = {r.name.lower(): r for r in self.responders}
        self.by_dimension: dict[str, list[ResponderDefinition]] = defaultdict(list)
        for responder in self.responders:
            if responder.dimension:
                self.by_dimension[responder.dimension].append(responder)

    def __len__(self) -> int:
        return len(self.responders)

    def exact(self, name: str) -> ResponderDefinition | None:
        return self.by_name.get(name.lower())

    def partial(self, name: str) -> list[ResponderDefinition]:
        lowered = name.lower()
        return [r for r in self.responders if lowered in r.name.lower()]

    def dimension_prefix(self, name: str) -> list[ResponderDefinition]:
        """Responders matching a "4D" or "4D-Network" style target."""
        match = DIMENSION_PREFIX_PATTERN.match(name)
        if not match:
            return []
        candidates = self.in_dimension(match.group(1))
        rest = (match.group(2) or "").lower().removesuffix("-agent")
        if not rest:
            return candidates
        return [r for r in candidates if rest in r.name.lower()]

    def in_dimension(self, dimension: str) -> list[ResponderDefinition]:
        return list(self.by_dimension.get(dimension.upper(), []))

    def function_capable(self, dimensions: list[str]) -> list[ResponderDefinition]:
        allowed = {d.upper() for d in dimensions}
        return [
            r
            for r in self.responders
            if r.dimension in allowed or any("function" in c.lower() for c in r.capabilities)
        ]

    def mentioning(self, token: str) -> list[ResponderDefinition]:
        """Responders whose purpose, capabilities or name mention token."""
        lowered = token.lower()
        return [
            r for r in self.responders if lowered in r.searchable_text() or lowered in r.name.lower()
        ]


class ResponderRouter:
    """Routes intents to responders and merges what they say."""

    def __init__(
        self,
        knowledge_base: KnowledgeBase,
        config: EngineConfig | None = None,
        clients: dict[str, ResponderClient] | None = None,
        default_client: ResponderClient | None = None,
    ):
        """Initialize responder router.

        Args:
            knowledge_base: Source of responder definitions
            config: Engine configuration (thresholds, timeouts, endpoints)
            clients: Per-responder clients keyed by responder id
            default_client: Client for responders without their own
                (default: answer from the knowledge base)
        """
        self.knowledge_base = knowledge_base
        self.config = config or EngineConfig()
        self.default_client = default_client or KnowledgeBaseResponder(knowledge_base)

        self.clients = dict(clients or {})
        for responder_id, endpoint in self.config.responder_endpoints.items():
            self.clients.setdefault(
                responder_id, HttpResponder(endpoint, timeout=self.config.responder_timeout_seconds)
            )

        self._strategies: dict[IntentType, Callable[[Intent], list[ResponderRoute]]] = {
            IntentType.RESPONDER: self._route_responder_query,
            IntentType.FUNCTION: self._route_function_query,
            IntentType.RULE: self._route_by_context,
            IntentType.FACT: self._route_by_context,
            IntentType.EXAMPLE: self._route_default,
            IntentType.UNKNOWN: self._route_default,
        }

        self.refresh_index()

    def refresh_index(self) -> None:
        """Rebuild responder lookups; call after the knowledge base is reloaded."""
        self.index = ResponderIndex(self.knowledge_base.list_responders())
        logger.info(f"Indexed {len(self.index)} responders")

    def route(self, intent: Intent, conversation_id: str | None = None) -> list[ResponderRoute]:
        """Rank candidate responders for an intent.

        Args:
            intent: Resolved intent
            conversation_id: Conversation id, for logging

        Returns:
            Routes sorted by confidence, highest first
        """
        routes = self._strategies[intent.type](intent)
        routes.sort(key=lambda r: r.confidence, reverse=True)

        logger.debug(
            f"Routed {intent.type.value} to "
            + ", ".join(f"{r.responder_name}({r.confidence:.1f})" for r in routes),
            extra={"conversation_id": conversation_id},
        )
        return routes

    def _make_route(self, responder: ResponderDefinition, confidence: float, reason: str) -> ResponderRoute:
        return ResponderRoute(
            responder_id=responder.id,
            responder_name=responder.name,
            confidence=confidence,
            reason=reason,
            category=responder.dimension,
        )

    def _default_route(self, confidence: float, reason: str) -> ResponderRoute:
        return ResponderRoute(
            responder_id=self.config.default_responder_id,
            responder_name=self.config.default_responder_name,
            confidence=confidence,
            reason=reason,
        )

    def _route_responder_query(self, intent: Intent) -> list[ResponderRoute]:
        if intent.target:
            exact = self.index.exact(intent.target)
            if exact is not None:
                return [self._make_route(exact, 0.9, "exact name match")]

            partial = self.index.partial(intent.target)
            if partial:
                return [self._make_route(r, 0.9, "partial name match") for r in partial]

            prefixed = self.index.dimension_prefix(intent.target)
            if prefixed:
                return [self._make_route(r, 0.9, "dimension prefix match") for r in prefixed]

        dimension = intent.filters.get("dimension")
        if dimension:
            in_dimension = self.index.in_dimension(dimension)
            if in_dimension:
                return [self._make_route(r, 0.8, f"in dimension {dimension}") for r in in_dimension]

        return [self._default_route(0.5, "no matching responder")]

    def _route_function_query(self, intent: Intent) -> list[ResponderRoute]:
        capable = self.index.function_capable(self.config.function_dimensions)
        if capable:
            return [self._make_route(r, 0.7, "function-capable") for r in capable]
        return [self._default_route(0.6, "no function-capable responder")]

    def _route_by_context(self, intent: Intent) -> list[ResponderRoute]:
        if intent.type is IntentType.RULE:
            token = intent.filters.get("context") or intent.target
        else:
            token = intent.target or intent.filters.get("context")

        if token:
            matching = self.index.mentioning(token)
            if matching:
                return [self._make_route(r, 0.7, f"mentions '{token}'") for r in matching]
        return [self._default_route(0.6, "no responder mentions the context")]

    def _route_default(self, intent: Intent) -> list[ResponderRoute]:
        return [self._default_route(0.8, f"default for {intent.type.value}")]

    async def coordinate(
        self,
        routes: list[ResponderRoute],
        intent: Intent,
        conversation_id: str | None = None,
    ) -> CoordinatedResponse:
        """Ask the top route, and more routes when its answer is weak.

        Additional routes are queried concurrently, each under its own
        timeout; any that time out or fail are left out of the merge.

        Args:
            routes: Ranked routes (first is primary)
            intent: Intent being answered
            conversation_id: Conversation id, for logging

        Returns:
            CoordinatedResponse with merged text and confidence

        Raises:
            NoRoutesAvailableError: If routes is empty
            CollaboratorError: If the primary responder fails
        """
        if not routes:
            raise NoRoutesAvailableError("No responders available for this question")

        primary_route = routes[0]
        try:
            primary = await self._ask(primary_route, intent)
        except asyncio.TimeoutError as e:
            raise CollaboratorError(
                f"Responder {primary_route.responder_name} timed out", primary_route.responder_id
            ) from e

        additional: list[ResponderAnswer] = []
        if primary.confidence < self.config.coordination_threshold and len(routes) > 1:
            candidates = [
                r for r in routes[1:] if r.confidence > self.config.additional_min_confidence
            ][: self.config.max_additional_responders]
            answers = await asyncio.gather(*(self._ask_optional(r, intent) for r in candidates))
            additional = [
                a
                for a in answers
                if a is not None and a.confidence > self.config.additional_min_confidence
            ]

        merged_text = primary.text
        if additional:
            sections = "".join(f"**From {a.responder_name}:**\n{a.text}\n\n" for a in additional)
            merged_text = f"{primary.text}\n\n**Additional Information:**\n\n{sections}".rstrip()
            confidence = (primary.confidence + mean(a.confidence for a in additional)) / 2
        else:
            confidence = primary.confidence

        responders_used = [primary.responder_name, *(a.responder_name for a in additional)]
        logger.info(
            f"Coordinated {len(responders_used)} responder(s): {', '.join(responders_used)}",
            extra={"conversation_id": conversation_id},
        )

        return CoordinatedResponse(
            primary=primary,
            additional=additional,
            merged_text=merged_text,
            confidence=min(1.0, max(0.0, confidence)),
            responders_used=responders_used,
        )

    async def _ask(self, route: ResponderRoute, intent: Intent) -> ResponderAnswer:
        client = self.clients.get(route.responder_id, self.default_client)
        return await asyncio.wait_for(
            client.answer(route, intent), timeout=self.config.responder_timeout_seconds
        )

    async def _ask_optional(self, route: ResponderRoute, intent: Intent) -> ResponderAnswer | None:
        """Ask an additional responder; failures and timeouts yield None."""
        try:
            return await self._ask(route, intent)
        except asyncio.TimeoutError:
            logger.warning(f"Responder {route.responder_name} timed out, omitting its answer")
        except CollaboratorError as e:
            logger.warning(f"Responder {route.responder_name} failed, omitting its answer: {e}")
        return None
