"""Dialogue controller: follow-ups, clarification and turn recording."""

import logging
import re
from dataclasses import dataclass, field, replace
from enum import Enum

from nlquery.core.context_store import PRONOUNS, ConversationContextStore
from nlquery.core.errors import CollaboratorError
from nlquery.core.intent_resolver import IntentResolver
from nlquery.lib.config import EngineConfig
from nlquery.models.conversation import ContextUpdate, ContextUpdateKind, Conversation, Turn
from nlquery.models.entity import Entity
from nlquery.models.intent import Intent
from nlquery.models.knowledge import QueryResult
from nlquery.storage.knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)

FOLLOW_UP_PHRASES = re.compile(
    r"\b(tell me more|what about|how about|what else|and|also)\b", re.IGNORECASE
)
SHORT_FOLLOW_UP_WORDS = 5


class FollowUpKind(str, Enum):
    RELATED = "related"
    MORE_INFO = "more_info"
    ALTERNATIVES = "alternatives"
    ADDITIONAL = "additional"
    CARRY_FORWARD = "carry_forward"


@dataclass
class DialogueResult:
    """Outcome of one handled turn."""

    answer: str
    confidence: float
    intent: Intent
    requires_clarification: bool = False
    clarification_prompts: list[str] = field(default_factory=list)
    follow_up_suggestions: list[str] | None = None
    context_switched: bool = False
    entities: list[Entity] = field(default_factory=list)
    query_result: QueryResult | None = None
    turn_id: str | None = None


class DialogueController:
    """Decides how a question relates to the conversation so far and records turns."""

    # Ordered; the first template that matches decides the follow-up kind
    FOLLOW_UP_TEMPLATES = [
        (
            re.compile(
                r"\b(?:what are|what're|tell me about|explain|show me|list)\s+"
                r"(?:the\s+|its\s+|their\s+|[\w-]+'s\s+)?"
                r"(dependencies|capabilities|requirements|examples)\b",
                re.IGNORECASE,
            ),
            FollowUpKind.RELATED,
        ),
        (re.compile(r"\b(?:show|give|tell)\s+me\s+(?:more|another|additional)\b", re.IGNORECASE), FollowUpKind.MORE_INFO),
        (re.compile(r"\b(?:what|which|how)\s+(?:else|other|more)\b", re.IGNORECASE), FollowUpKind.ALTERNATIVES),
        (re.compile(r"\b(?:and|also|what about|how about)\s+(.+?)[?.!]*$", re.IGNORECASE), FollowUpKind.ADDITIONAL),
    ]

    def __init__(
        self,
        store: ConversationContextStore,
        resolver: IntentResolver,
        knowledge_base: KnowledgeBase,
        config: EngineConfig | None = None,
    ):
        """Initialize dialogue controller.

        Args:
            store: Context store (read, and written once per answered turn)
            resolver: Intent resolver
            knowledge_base: Knowledge base for the direct query
            config: Engine configuration
        """
        self.store = store
        self.resolver = resolver
        self.knowledge_base = knowledge_base
        self.config = config or EngineConfig()

    def is_follow_up(self, text: str, conversation: Conversation) -> bool:
        """Check whether text continues the previous exchange.

        Args:
            text: Question text
            conversation: Conversation so far

        Returns:
            True if there is a prior turn and the text uses a pronoun, a
            follow-up phrase, or is short while an intent is current
        """
        if not conversation.turns:
            return False

        words = re.findall(r"[\w'-]+", text.lower())
        if any(word in PRONOUNS for word in words):
            return True
        if FOLLOW_UP_PHRASES.search(text):
            return True
        return len(words) <= SHORT_FOLLOW_UP_WORDS and conversation.current_intent is not None

    def _follow_up_overrides(self, text: str) -> tuple[FollowUpKind, dict]:
        """Match follow-up templates in order and derive filter overrides."""
        for pattern, kind in self.FOLLOW_UP_TEMPLATES:
            match = pattern.search(text)
            if not match:
                continue
            if kind is FollowUpKind.RELATED:
                return kind, {"query_type": match.group(1).lower()}
            if kind is FollowUpKind.ALTERNATIVES:
                return kind, {"query_type": "related"}
            if kind is FollowUpKind.ADDITIONAL:
                return kind, {"subject": match.group(1).strip()}
            return kind, {}
        return FollowUpKind.CARRY_FORWARD, {}

    def merge_follow_up(self, previous_intent: Intent, text: str) -> Intent:
        """Carry the previous intent forward with overrides from follow-up text.

        Args:
            previous_intent: Intent of the previous turn
            text: Follow-up question text

        Returns:
            Previous intent with new text and layered filter overrides;
            unmatched follow-ups only change the text fields
        """
        _, overrides = self._follow_up_overrides(text)
        return replace(
            previous_intent,
            original_text=text,
            resolved_text=text,
            filters={**previous_intent.filters, **overrides},
        )

    def is_context_switch(self, new_intent: Intent, conversation: Conversation) -> bool:
        """Check whether new_intent moves the conversation to a different subject."""
        current = conversation.current_intent
        if current is None:
            return False
        if new_intent.type is not current.type:
            return True
        if new_intent.target and current.target and new_intent.target.lower() != current.target.lower():
            return True
        if new_intent.entities and conversation.current_topic:
            return new_intent.entities[0].name.lower() != conversation.current_topic.lower()
        return False

    def _layer_follow_up(self, intent: Intent, conversation: Conversation, text: str) -> Intent:
        """Combine a freshly resolved intent with the previous one.

        The previous type and target are adopted when the fresh intent could
        not be classified, or when a follow-up template matched but the fresh
        intent names no known target. Template overrides always apply.
        """
        kind, overrides = self._follow_up_overrides(text)
        adopt_previous = not intent.is_known or (
            kind is not FollowUpKind.CARRY_FORWARD
            and (not intent.target or not self.resolver.is_known_name(intent.target, conversation))
        )

        if not adopt_previous:
            if not overrides:
                return intent
            return replace(intent, filters={**intent.filters, **overrides})

        carried = self.merge_follow_up(conversation.current_intent, text)
        resolved_text = intent.resolved_text
        if carried.target and carried.target.lower() not in resolved_text.lower():
            resolved_text = f"{resolved_text.rstrip('?.! ')} for {carried.target}?"

        layered = replace(
            intent,
            type=carried.type,
            target=carried.target,
            resolved_text=resolved_text,
            filters={**carried.filters, **intent.filters, **overrides},
            entities=self._merge_entities(carried.entities[:1], intent.entities),
        )
        return self.resolver.rescore(layered, conversation)

    @staticmethod
    def _merge_entities(first: list[Entity], rest: list[Entity]) -> list[Entity]:
        unique: dict[str, Entity] = {}
        for entity in [*first, *rest]:
            unique.setdefault(entity.entity_id, entity)
        return list(unique.values())

    async def handle_turn(self, conversation_id: str, text: str) -> DialogueResult:
        """Resolve, answer directly and record one turn.

        Clarification short-circuits: nothing is queried or recorded.

        Args:
            conversation_id: Conversation id
            text: Question text

        Returns:
            DialogueResult for the turn

        Raises:
            ConversationNotFoundError: If the conversation does not exist
            CollaboratorError: If the knowledge-base query fails
        """
        conversation = self.store.require(conversation_id)
        follow_up = self.is_follow_up(text, conversation)

        intent = self.resolver.resolve(text, conversation_id)
        if follow_up and conversation.current_intent is not None:
            intent = self._layer_follow_up(intent, conversation, text)

        if intent.requires_clarification:
            logger.info(
                f"Asking for clarification ({intent.type.value}, confidence={intent.confidence:.2f})",
                extra={"conversation_id": conversation_id},
            )
            return DialogueResult(
                answer=intent.clarification_prompts[0],
                confidence=intent.confidence,
                intent=intent,
                requires_clarification=True,
                clarification_prompts=list(intent.clarification_prompts),
                entities=list(intent.entities),
            )

        query_result = await self._query_knowledge_base(intent.resolved_text)
        context_switched = self.is_context_switch(intent, conversation)

        updates = []
        if context_switched and intent.entities:
            updates.append(ContextUpdate(ContextUpdateKind.TOPIC, "topic", intent.entities[0].name))

        turn = self.store.add_turn(
            conversation_id,
            Turn(
                user_text=text,
                intent=intent,
                merged_answer=query_result.answer,
                context_updates=updates,
                entities=list(intent.entities),
            ),
        )

        if context_switched:
            logger.info(f"Context switched to {intent.type.value}", extra={"conversation_id": conversation_id})

        return DialogueResult(
            answer=query_result.answer,
            confidence=min(intent.confidence, query_result.confidence),
            intent=intent,
            context_switched=context_switched,
            entities=list(intent.entities),
            query_result=query_result,
            turn_id=turn.turn_id,
        )

    async def _query_knowledge_base(self, text: str) -> QueryResult:
        try:
            return await self.knowledge_base.query(text)
        except CollaboratorError:
            raise
        except Exception as e:
            logger.error(f"Knowledge base query failed: {e}", exc_info=True)
            raise CollaboratorError(f"Knowledge base query failed: {e}", "knowledge_base") from e
