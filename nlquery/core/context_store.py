"""Conversation context store: the single owner of conversation state."""

import logging
import threading
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any

from nlquery.core.errors import ConversationNotFoundError
from nlquery.lib.config import EngineConfig
from nlquery.models.conversation import (
    ContextUpdate,
    ContextUpdateKind,
    Conversation,
    Turn,
)
from nlquery.models.entity import Entity, EntityKind
from nlquery.models.response import ResponderAnswer

logger = logging.getLogger(__name__)

PRONOUNS = frozenset({"it", "its", "this", "that", "them", "they", "their", "those", "these"})


def utc_now() -> datetime:
    return datetime.now(UTC)


class ConversationContextStore:
    """Holds conversations and applies every mutation to them.

    Writes to one conversation are serialized by a per-conversation lock;
    different conversations never block each other.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the store.

        Args:
            config: Engine configuration (history cap, entity expiry, turn window)
            clock: Source of the current time (default: UTC now)
        """
        self.config = config or EngineConfig()
        self._clock = clock or utc_now
        self._conversations: dict[str, Conversation] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, conversation_id: str) -> threading.RLock:
        with self._registry_lock:
            return self._locks.setdefault(conversation_id, threading.RLock())

    def create(self, owner_id: str | None = None) -> Conversation:
        """Create an empty conversation.

        Args:
            owner_id: Optional owning user id

        Returns:
            New conversation with a unique id
        """
        now = self._clock()
        conversation = Conversation(owner_id=owner_id, created_at=now, updated_at=now)
        with self._registry_lock:
            self._conversations[conversation.conversation_id] = conversation
        logger.info(
            f"Created conversation {conversation.conversation_id}"
            + (f" for owner {owner_id}" if owner_id else "")
        )
        return conversation

    def get(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    def require(self, conversation_id: str) -> Conversation:
        """Get a conversation or raise ConversationNotFoundError."""
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    def add_turn(self, conversation_id: str, turn: Turn) -> Turn:
        """Append a turn and fold its effects into conversation state.

        Args:
            conversation_id: Target conversation
            turn: Turn to record

        Returns:
            The turn as stored (re-stamped if its timestamp preceded the last turn)

        Raises:
            ConversationNotFoundError: If the conversation does not exist
        """
        with self._lock_for(conversation_id):
            conversation = self.require(conversation_id)
            now = self._clock()

            last = conversation.last_turn
            if last is not None and turn.timestamp < last.timestamp:
                turn = replace(turn, timestamp=last.timestamp)

            conversation.turns.append(turn)

            if conversation.current_intent is not None:
                conversation.previous_intents.append(conversation.current_intent)
            conversation.current_intent = turn.intent

            for entity in turn.entities:
                conversation.entities[entity.entity_id] = entity.seen_at(now)

            for answer in turn.responder_answers:
                conversation.responder_assignments[answer.responder_id] = answer.responder_name

            if turn.intent.target:
                conversation.current_topic = turn.intent.target

            for update in turn.context_updates:
                self._apply_update(conversation, update, now)

            cap = self.config.history_cap
            if len(conversation.turns) > cap:
                del conversation.turns[: len(conversation.turns) - cap]
            if len(conversation.previous_intents) > cap:
                del conversation.previous_intents[: len(conversation.previous_intents) - cap]

            self._sweep_expired(conversation, now)
            conversation.updated_at = now

        logger.debug(
            f"Recorded {turn.turn_id} ({turn.intent.type.value})",
            extra={"conversation_id": conversation_id},
        )
        return turn

    def update_context(self, conversation_id: str, updates: list[ContextUpdate]) -> None:
        """Apply context updates outside of a turn.

        Raises:
            ConversationNotFoundError: If the conversation does not exist
        """
        with self._lock_for(conversation_id):
            conversation = self.require(conversation_id)
            now = self._clock()
            for update in updates:
                self._apply_update(conversation, update, now)
            conversation.updated_at = now

    def record_answer(
        self,
        conversation_id: str,
        turn_id: str,
        merged_answer: str,
        responder_answers: list[ResponderAnswer],
    ) -> Turn | None:
        """Attach the final answer to a recorded turn.

        The stored turn is swapped for a copy; Turn objects themselves are
        never mutated.

        Returns:
            The updated turn, or None if it has already been evicted or cleared

        Raises:
            ConversationNotFoundError: If the conversation does not exist
        """
        with self._lock_for(conversation_id):
            conversation = self.require(conversation_id)
            for index in range(len(conversation.turns) - 1, -1, -1):
                if conversation.turns[index].turn_id == turn_id:
                    turn = replace(
                        conversation.turns[index],
                        merged_answer=merged_answer,
                        responder_answers=list(responder_answers),
                    )
                    conversation.turns[index] = turn
                    for answer in turn.responder_answers:
                        conversation.responder_assignments[answer.responder_id] = answer.responder_name
                    return turn
        logger.debug(f"Turn {turn_id} no longer in history", extra={"conversation_id": conversation_id})
        return None

    def _apply_update(self, conversation: Conversation, update: ContextUpdate, now: datetime) -> None:
        if update.kind is ContextUpdateKind.ENTITY:
            entity: Entity = update.value
            conversation.entities[entity.entity_id] = entity.seen_at(now)
        elif update.kind is ContextUpdateKind.INTENT:
            if conversation.current_intent is not None:
                conversation.previous_intents.append(conversation.current_intent)
            conversation.current_intent = update.value
        elif update.kind is ContextUpdateKind.TOPIC:
            conversation.current_topic = str(update.value) if update.value else None
        elif update.kind is ContextUpdateKind.RESPONDER:
            conversation.responder_assignments[update.key] = str(update.value)

    def _sweep_expired(self, conversation: Conversation, now: datetime) -> None:
        expiry = timedelta(minutes=self.config.entity_expiry_minutes)
        expired = [
            entity_id
            for entity_id, entity in conversation.entities.items()
            if entity.last_seen is not None and now - entity.last_seen > expiry
        ]
        for entity_id in expired:
            del conversation.entities[entity_id]
        if expired:
            logger.debug(
                f"Expired {len(expired)} entities",
                extra={"conversation_id": conversation.conversation_id},
            )

    def resolve_reference(self, reference: str, conversation: Conversation) -> Entity | None:
        """Resolve a pronoun or definite reference to a tracked entity.

        Recent turns are scanned newest first. An entity matches when its
        name or kind word appears in the reference; a bare pronoun resolves
        to the first entity of the newest turn that has any. A reference
        mentioning "topic" falls back to the current topic.

        Args:
            reference: Reference text such as "it" or "that agent"
            conversation: Conversation to resolve against

        Returns:
            Matching entity, or None
        """
        lowered = reference.lower().strip()
        words = set(lowered.split())
        bare_pronoun = bool(words) and words <= PRONOUNS

        for turn in conversation.recent_turns(self.config.recent_turn_window):
            if not turn.entities:
                continue
            if bare_pronoun:
                return self._current_version(conversation, turn.entities[0])
            for entity in turn.entities:
                if entity.matches_reference(lowered):
                    return self._current_version(conversation, entity)

        if "topic" in words and conversation.current_topic:
            return conversation.find_entity(conversation.current_topic) or Entity.create(
                EntityKind.CONCEPT, conversation.current_topic
            )

        return None

    @staticmethod
    def _current_version(conversation: Conversation, entity: Entity) -> Entity:
        return conversation.entities.get(entity.entity_id, entity)

    def history(self, conversation_id: str, limit: int | None = None) -> list[Turn]:
        """Ordered turns, optionally only the last `limit`.

        Raises:
            ConversationNotFoundError: If the conversation does not exist
        """
        with self._lock_for(conversation_id):
            turns = list(self.require(conversation_id).turns)
        if limit is not None:
            return turns[-limit:] if limit > 0 else []
        return turns

    def recent_entities(self, conversation_id: str, limit: int = 10) -> list[Entity]:
        """Tracked entities, most recently seen first."""
        with self._lock_for(conversation_id):
            entities = list(self.require(conversation_id).entities.values())
        entities.sort(key=lambda e: e.last_seen or datetime.min.replace(tzinfo=UTC), reverse=True)
        return entities[:limit]

    def clear(self, conversation_id: str) -> None:
        """Reset turns, entities, intents, assignments and topic.

        Raises:
            ConversationNotFoundError: If the conversation does not exist
        """
        with self._lock_for(conversation_id):
            conversation = self.require(conversation_id)
            conversation.turns.clear()
            conversation.entities.clear()
            conversation.current_intent = None
            conversation.previous_intents.clear()
            conversation.responder_assignments.clear()
            conversation.current_topic = None
            conversation.updated_at = self._clock()
        logger.info(f"Cleared conversation {conversation_id}")

    def delete(self, conversation_id: str) -> bool:
        """Remove a conversation. Returns True if it existed."""
        with self._registry_lock:
            removed = self._conversations.pop(conversation_id, None)
            self._locks.pop(conversation_id, None)
        if removed is not None:
            logger.info(f"Deleted conversation {conversation_id}")
        return removed is not None

    def export(self, conversation_id: str) -> dict[str, Any]:
        """Export a conversation as a JSON-safe snapshot.

        Raises:
            ConversationNotFoundError: If the conversation does not exist
        """
        with self._lock_for(conversation_id):
            return self.require(conversation_id).to_dict()

    def import_snapshot(self, snapshot: dict[str, Any]) -> Conversation:
        """Create or overwrite a conversation from a snapshot.

        Args:
            snapshot: Dict produced by `export`

        Returns:
            Restored conversation
        """
        conversation = Conversation.from_dict(snapshot)
        with self._lock_for(conversation.conversation_id):
            with self._registry_lock:
                self._conversations[conversation.conversation_id] = conversation
        logger.info(
            f"Imported conversation {conversation.conversation_id} "
            f"with {len(conversation.turns)} turns"
        )
        return conversation

    def list_for_owner(self, owner_id: str) -> list[Conversation]:
        """Conversations owned by owner_id, most recently updated first."""
        owned = [c for c in list(self._conversations.values()) if c.owner_id == owner_id]
        owned.sort(key=lambda c: c.updated_at, reverse=True)
        return owned

    def count(self) -> int:
        return len(self._conversations)
