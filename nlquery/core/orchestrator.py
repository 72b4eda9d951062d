"""Conversation orchestrator: the single entry point for asking questions."""

import asyncio
import logging
from typing import Any

from nlquery.core.context_store import ConversationContextStore
from nlquery.core.dialogue_controller import DialogueController
from nlquery.core.errors import CollaboratorError, ConversationNotFoundError, NoRoutesAvailableError
from nlquery.core.intent_resolver import IntentResolver
from nlquery.core.responder_router import ResponderRouter
from nlquery.core.responders import ResponderClient
from nlquery.core.response_synthesizer import ResponseSynthesizer
from nlquery.lib.config import EngineConfig
from nlquery.models.conversation import Turn
from nlquery.models.intent import Intent
from nlquery.models.response import CoordinatedResponse, FormattedResponse
from nlquery.storage.knowledge_base import KnowledgeBase
from nlquery.storage.snapshot_store import InMemorySnapshotStore, SnapshotStore

logger = logging.getLogger(__name__)


class ConversationOrchestrator:
    """Wires the engine components together and answers questions.

    Every operation takes an explicit conversation id. For interactive use
    the orchestrator also remembers an active conversation, used when an
    id is omitted.
    """

    def __init__(
        self,
        knowledge_base: KnowledgeBase,
        config: EngineConfig | None = None,
        store: ConversationContextStore | None = None,
        snapshot_store: SnapshotStore | None = None,
        responder_clients: dict[str, ResponderClient] | None = None,
    ):
        """Initialize orchestrator.

        Args:
            knowledge_base: Knowledge base collaborator
            config: Engine configuration
            store: Context store (default: new in-memory store)
            snapshot_store: Snapshot persistence (default: in-memory)
            responder_clients: Per-responder clients keyed by responder id
        """
        self.config = config or EngineConfig()
        self.knowledge_base = knowledge_base
        self.store = store or ConversationContextStore(self.config)
        self.snapshot_store = snapshot_store or InMemorySnapshotStore()

        self.resolver = IntentResolver(self.store, knowledge_base, self.config)
        self.controller = DialogueController(self.store, self.resolver, knowledge_base, self.config)
        self.router = ResponderRouter(knowledge_base, self.config, clients=responder_clients)
        self.synthesizer = ResponseSynthesizer(self.config)

        self.active_conversation_id: str | None = None

        logger.info("Conversation orchestrator initialized")

    async def ask(
        self,
        text: str,
        conversation_id: str | None = None,
        timeout: float | None = None,
    ) -> FormattedResponse:
        """Answer a question within a conversation.

        Args:
            text: Question text
            conversation_id: Conversation to use (default: the active one,
                created on first use)
            timeout: Deadline in seconds for the whole request (default:
                `request_timeout_seconds` from config, none if unset)

        Returns:
            FormattedResponse

        Raises:
            ConversationNotFoundError: If conversation_id is unknown
            CollaboratorError: If the direct query fails or the deadline passes
        """
        if conversation_id is None:
            conversation_id = self.active_conversation_id or self.new_conversation()

        deadline = timeout if timeout is not None else self.config.request_timeout_seconds
        if deadline is None:
            return await self._answer(text, conversation_id)

        try:
            return await asyncio.wait_for(self._answer(text, conversation_id), timeout=deadline)
        except asyncio.TimeoutError as e:
            logger.warning(
                f"Request exceeded {deadline}s deadline", extra={"conversation_id": conversation_id}
            )
            raise CollaboratorError(f"Request exceeded {deadline}s deadline") from e

    async def _answer(self, text: str, conversation_id: str) -> FormattedResponse:
        result = await self.controller.handle_turn(conversation_id, text)
        conversation = self.store.require(conversation_id)

        if result.requires_clarification:
            return FormattedResponse(
                answer=result.answer,
                citations=[],
                follow_up_suggestions=result.clarification_prompts[: self.config.max_follow_up_suggestions],
                related_entities=list(result.entities),
                confidence=min(1.0, max(0.0, result.confidence)),
                conversation_id=conversation_id,
            )

        coordinated = await self._coordinate(result.intent, conversation_id)
        if coordinated is not None and result.turn_id is not None:
            self.store.record_answer(
                conversation_id, result.turn_id, coordinated.merged_text, coordinated.answers
            )

        return self.synthesizer.synthesize(result.query_result, result.intent, coordinated, conversation)

    async def _coordinate(self, intent: Intent, conversation_id: str) -> CoordinatedResponse | None:
        """Route and coordinate, or return None to fall back to the direct answer."""
        routes = self.router.route(intent, conversation_id)
        threshold = self.config.fallback_threshold

        try:
            if not routes or routes[0].confidence <= threshold:
                raise NoRoutesAvailableError(f"No responder route above {threshold}")
            coordinated = await self.router.coordinate(routes, intent, conversation_id)
        except (NoRoutesAvailableError, CollaboratorError) as e:
            logger.info(f"Using direct answer: {e}", extra={"conversation_id": conversation_id})
            return None

        if coordinated.confidence < threshold:
            logger.info(
                f"Coordinated confidence {coordinated.confidence:.2f} below {threshold}, using direct answer",
                extra={"conversation_id": conversation_id},
            )
            return None
        return coordinated

    def _resolve_id(self, conversation_id: str | None) -> str:
        resolved = conversation_id or self.active_conversation_id
        if resolved is None:
            raise ConversationNotFoundError("<no active conversation>")
        return resolved

    def new_conversation(self, owner_id: str | None = None) -> str:
        """Create a conversation and make it active.

        Returns:
            New conversation id
        """
        conversation = self.store.create(owner_id)
        self.active_conversation_id = conversation.conversation_id
        return conversation.conversation_id

    def switch_conversation(self, conversation_id: str) -> bool:
        """Make an existing conversation active. Returns False if it doesn't exist."""
        if self.store.get(conversation_id) is None:
            return False
        self.active_conversation_id = conversation_id
        return True

    def history(self, conversation_id: str | None = None, limit: int | None = None) -> list[Turn]:
        return self.store.history(self._resolve_id(conversation_id), limit)

    def clear_history(self, conversation_id: str | None = None) -> None:
        self.store.clear(self._resolve_id(conversation_id))

    def delete_conversation(self, conversation_id: str) -> bool:
        deleted = self.store.delete(conversation_id)
        if self.active_conversation_id == conversation_id:
            self.active_conversation_id = None
        return deleted

    def save_snapshot(self, conversation_id: str | None = None) -> str:
        """Export a conversation into the snapshot store.

        Returns:
            Id of the saved conversation
        """
        conversation_id = self._resolve_id(conversation_id)
        self.snapshot_store.save(self.store.export(conversation_id))
        logger.info(f"Saved snapshot of {conversation_id}")
        return conversation_id

    def restore_snapshot(self, conversation_id: str) -> bool:
        """Import a saved conversation and make it active.

        Returns:
            False if no snapshot exists for conversation_id
        """
        snapshot = self.snapshot_store.load(conversation_id)
        if snapshot is None:
            return False
        self.store.import_snapshot(snapshot)
        self.active_conversation_id = conversation_id
        return True

    def stats(self) -> dict[str, Any]:
        return {**self.knowledge_base.stats(), "active_conversations": self.store.count()}
