"""Intent resolver: turns question text into a typed, scored Intent."""

import logging
import re
from dataclasses import replace

from nlquery.core.context_store import ConversationContextStore
from nlquery.lib.config import EngineConfig
from nlquery.models.conversation import Conversation
from nlquery.models.entity import Entity, EntityKind
from nlquery.models.intent import Intent, IntentType
from nlquery.storage.knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)

UNKNOWN_PROMPT = "Could you clarify what you're looking for? (agent, function, rule, example, or fact)"
DISAMBIGUATION_PROMPT = "I found multiple matches. Which one did you mean?"
LOW_CONFIDENCE_PROMPT = "Could you provide more details about what you're looking for?"

KIND_BY_TYPE = {
    IntentType.RESPONDER: EntityKind.RESPONDER,
    IntentType.FUNCTION: EntityKind.FUNCTION,
    IntentType.RULE: EntityKind.RULE,
    IntentType.FACT: EntityKind.CONCEPT,
    IntentType.EXAMPLE: EntityKind.FUNCTION,
    IntentType.UNKNOWN: EntityKind.CONCEPT,
}

# Filters that count towards confidence; `topic` is inherited context, not a match
SCORED_FILTERS = ("dimension", "query_type", "keyword", "context")


class IntentResolver:
    """Resolves references, classifies and scores user questions.

    Classification is an ordered list of lexical rules; the first rule that
    matches decides the intent type.
    """

    # Responder names: dimension-prefixed first, then any *-Agent suffix
    RESPONDER_NAME_PATTERNS = [
        re.compile(r"\b(\d+D-[A-Za-z][\w-]*?-Agent)\b", re.IGNORECASE),
        re.compile(r"\b([A-Za-z][\w-]*-Agent)\b", re.IGNORECASE),
    ]

    # Function names: namespaced identifiers and call syntax
    FUNCTION_NAME_PATTERNS = [
        re.compile(r"\b([A-Za-z][\w]*:[\w-]*\w)", re.IGNORECASE),
        re.compile(r"\b([A-Za-z_][\w-]*)\(\)"),
    ]

    DIMENSION_PATTERN = re.compile(r"\b([0-7])D\b", re.IGNORECASE)

    REQUIREMENT_PATTERN = re.compile(
        r"\b(MUST NOT|MUST|SHALL NOT|SHALL|SHOULD NOT|SHOULD|REQUIRED|RECOMMENDED|MAY|OPTIONAL)\b"
    )

    KEYWORD_CLASSIFIERS = [
        (re.compile(r"\b(agents?|responders?)\b", re.IGNORECASE), IntentType.RESPONDER),
        (re.compile(r"\b(functions?|procedures?)\b", re.IGNORECASE), IntentType.FUNCTION),
        (re.compile(r"\b(examples?|usage)\b", re.IGNORECASE), IntentType.EXAMPLE),
        (re.compile(r"\b(rules?|requirements?)\b", re.IGNORECASE), IntentType.RULE),
        (
            re.compile(
                r"\b(facts?|what is|what are|define|definition|explain|describe|tell me about)\b",
                re.IGNORECASE,
            ),
            IntentType.FACT,
        ),
    ]

    QUERY_TYPE_PATTERN = re.compile(
        r"\b(dependenc(?:y|ies)|capabilit(?:y|ies)|requirements?|examples?)\b", re.IGNORECASE
    )
    CONTEXT_PATTERN = re.compile(
        r"\b(?:for|to|about|of|on|regarding)\s+(?:the\s+|an?\s+)?([\w-]+)", re.IGNORECASE
    )
    FACT_TARGET_PATTERN = re.compile(
        r"\b(?:what is|what are|define|explain|describe|tell me about)\s+(?:an?\s+|the\s+)?(.+?)[?.!]*$",
        re.IGNORECASE,
    )
    EXAMPLE_TARGET_PATTERN = re.compile(
        r"\bexamples?\s+(?:of|for)\s+(?:using\s+)?(?:the\s+)?(.+?)[?.!]*$", re.IGNORECASE
    )

    # References: "that agent", "the function", ...; bare pronouns; sentence-final this/that
    DEFINITE_REFERENCE_PATTERN = re.compile(
        r"\b(?:the|that|this)\s+"
        r"(?:agent|responder|function|rule|fact|document|concept|dimension|topic)\b",
        re.IGNORECASE,
    )
    PRONOUN_PATTERN = re.compile(
        r"\b(its|their|it|them|they)\b|\b(that|this)(?=\s*[?.!]*\s*$)", re.IGNORECASE
    )
    POSSESSIVES = ("its", "their")

    MAX_TARGET_WORDS = 6

    def __init__(
        self,
        store: ConversationContextStore,
        knowledge_base: KnowledgeBase | None = None,
        config: EngineConfig | None = None,
    ):
        """Initialize intent resolver.

        Args:
            store: Context store used for reference resolution
            knowledge_base: Optional knowledge base for exact-name checks
            config: Engine configuration
        """
        self.store = store
        self.knowledge_base = knowledge_base
        self.config = config or EngineConfig()

    def resolve(self, text: str, conversation_id: str) -> Intent:
        """Resolve a question into an Intent.

        Never raises for odd input; anything unclassifiable becomes an
        `unknown` intent asking for clarification.

        Args:
            text: Raw question text
            conversation_id: Conversation the question belongs to

        Returns:
            Scored Intent

        Raises:
            ConversationNotFoundError: If the conversation does not exist
        """
        conversation = self.store.require(conversation_id)
        text = text or ""

        resolved_text, referenced = self._resolve_references(text, conversation)
        intent_type, candidates = self._classify(resolved_text)
        filters = self._extract_filters(resolved_text, intent_type)
        target, alternatives = self._extract_target(resolved_text, intent_type, candidates)

        inherited = False
        previous = conversation.current_intent
        if intent_type is IntentType.UNKNOWN and previous is not None and previous.is_known:
            intent_type = previous.type
            filters = {**previous.filters, **filters}
            target = target or previous.target or conversation.current_topic
            inherited = True

        if conversation.current_topic:
            filters.setdefault("topic", conversation.current_topic)

        entities = self._extract_entities(
            resolved_text, intent_type, target, alternatives, referenced, conversation
        )

        intent = Intent(
            type=intent_type,
            original_text=text,
            resolved_text=resolved_text,
            target=target,
            filters=filters,
            entities=entities,
            inherited=inherited,
        )
        intent = self.rescore(intent, conversation, alternatives)

        logger.debug(
            f"Resolved '{text}' as {intent.type.value} "
            f"(target={intent.target}, confidence={intent.confidence:.2f})",
            extra={"conversation_id": conversation_id, "intent_type": intent.type.value},
        )
        return intent

    def rescore(
        self,
        intent: Intent,
        conversation: Conversation,
        alternatives: list[str] | None = None,
    ) -> Intent:
        """Recompute confidence and clarification needs for an intent.

        Args:
            intent: Intent to score
            conversation: Conversation providing known entity names
            alternatives: Equally strong target candidates, if extraction found several

        Returns:
            Copy of intent with confidence and clarification fields set
        """
        alternatives = alternatives or []
        ambiguous = len(alternatives) > 1
        has_target = bool(intent.target)
        exact = has_target and self.is_known_name(intent.target, conversation)
        filter_match = any(key in intent.filters for key in SCORED_FILTERS)

        if intent.is_known:
            score = 0.5 + 0.2 * exact + 0.15 * filter_match + 0.15 * has_target
            if intent.inherited:
                score -= 0.1
            if ambiguous:
                score -= 0.2
        else:
            score = 0.1 + 0.1 * (exact + filter_match + has_target)
        score = round(min(1.0, max(0.0, score)), 4)

        prompts = []
        if not intent.is_known:
            prompts.append(UNKNOWN_PROMPT)
        elif ambiguous:
            options = "\n".join(f"{i}. {name}" for i, name in enumerate(alternatives, start=1))
            prompts.append(f"{DISAMBIGUATION_PROMPT}\n{options}")
        elif intent.type.requires_target and not has_target:
            prompts.append(f"Which {intent.type.noun} are you interested in?")
        elif score < self.config.clarification_threshold:
            prompts.append(LOW_CONFIDENCE_PROMPT)

        return replace(
            intent,
            confidence=score,
            requires_clarification=bool(prompts),
            clarification_prompts=prompts,
        )

    def _resolve_references(self, text: str, conversation: Conversation) -> tuple[str, list[Entity]]:
        """Substitute resolvable references with entity names.

        Returns:
            (working copy of text, entities that references resolved to)
        """
        if not conversation.turns:
            return text, []

        referenced: list[Entity] = []

        def substitute(match: re.Match) -> str:
            phrase = match.group(0)
            entity = self.store.resolve_reference(phrase, conversation)
            if entity is None:
                return phrase
            referenced.append(entity)
            if phrase.lower() in self.POSSESSIVES:
                return f"{entity.name}'s"
            return entity.name

        resolved = self.DEFINITE_REFERENCE_PATTERN.sub(substitute, text)
        resolved = self.PRONOUN_PATTERN.sub(substitute, resolved)
        return resolved, referenced

    def _classify(self, text: str) -> tuple[IntentType, list[str]]:
        """Apply classification rules in order.

        Returns:
            (intent type, names matched by the deciding rule)
        """
        names = self._match_names(self.RESPONDER_NAME_PATTERNS, text)
        if names:
            return IntentType.RESPONDER, names

        names = self._match_names(self.FUNCTION_NAME_PATTERNS, text)
        if names:
            return IntentType.FUNCTION, names

        if self.DIMENSION_PATTERN.search(text):
            return IntentType.RESPONDER, []

        if self.REQUIREMENT_PATTERN.search(text):
            return IntentType.RULE, []

        for pattern, intent_type in self.KEYWORD_CLASSIFIERS:
            if pattern.search(text):
                return intent_type, []

        return IntentType.UNKNOWN, []

    @staticmethod
    def _match_names(patterns: list[re.Pattern], text: str) -> list[str]:
        """Collect distinct names, skipping matches inside an earlier match."""
        spans: list[tuple[int, int]] = []
        names: list[str] = []
        for pattern in patterns:
            for match in pattern.finditer(text):
                start, end = match.span(1)
                if any(start < taken_end and end > taken_start for taken_start, taken_end in spans):
                    continue
                spans.append((start, end))
                name = match.group(1)
                if name.lower() not in (n.lower() for n in names):
                    names.append(name)
        return names

    def _extract_filters(self, text: str, intent_type: IntentType) -> dict:
        filters = {}

        dimension = self.DIMENSION_PATTERN.search(text)
        if dimension:
            filters["dimension"] = f"{dimension.group(1)}D"

        query_type = self.QUERY_TYPE_PATTERN.search(text)
        if query_type:
            filters["query_type"] = self._normalize_query_type(query_type.group(1))

        requirement = self.REQUIREMENT_PATTERN.search(text)
        if requirement:
            filters["keyword"] = requirement.group(1)

        if intent_type is IntentType.RULE:
            contexts = self.CONTEXT_PATTERN.findall(text)
            if contexts:
                filters["context"] = contexts[-1].lower()

        return filters

    @staticmethod
    def _normalize_query_type(word: str) -> str:
        lowered = word.lower()
        if lowered.startswith("dependenc"):
            return "dependencies"
        if lowered.startswith("capabilit"):
            return "capabilities"
        if lowered.startswith("requirement"):
            return "requirements"
        return "examples"

    def _extract_target(
        self, text: str, intent_type: IntentType, candidates: list[str]
    ) -> tuple[str | None, list[str]]:
        """Pick the target entity name.

        Returns:
            (target or None, alternatives when more than one equally strong match)
        """
        if candidates:
            canonical = [self._canonical_name(name) for name in candidates]
            if len(canonical) > 1:
                return canonical[0], canonical
            partial = self._partial_matches(canonical[0])
            if len(partial) > 1:
                return canonical[0], partial
            return canonical[0], []

        match = None
        if intent_type is IntentType.EXAMPLE:
            match = self.EXAMPLE_TARGET_PATTERN.search(text)
        elif intent_type is IntentType.FACT:
            match = self.FACT_TARGET_PATTERN.search(text)
        if match:
            words = match.group(1).strip().split()
            if 0 < len(words) <= self.MAX_TARGET_WORDS:
                return self._canonical_name(" ".join(words)), []

        return None, []

    def _known_names(self) -> dict[str, tuple[str, EntityKind]]:
        return self.knowledge_base.entity_names() if self.knowledge_base else {}

    def _canonical_name(self, name: str) -> str:
        known = self._known_names().get(name.lower())
        return known[0] if known else name

    def _partial_matches(self, name: str) -> list[str]:
        lowered = name.lower()
        known = self._known_names()
        if lowered in known:
            return []
        return [canonical for key, (canonical, _) in known.items() if lowered in key]

    def is_known_name(self, name: str, conversation: Conversation) -> bool:
        return name.lower() in self._known_names() or conversation.find_entity(name) is not None

    def _extract_entities(
        self,
        text: str,
        intent_type: IntentType,
        target: str | None,
        alternatives: list[str],
        referenced: list[Entity],
        conversation: Conversation,
    ) -> list[Entity]:
        """Build the entities mentioned by this question, target first."""
        known = self._known_names()
        entities: list[Entity] = []

        for name in [target, *alternatives] if target else alternatives:
            existing = conversation.find_entity(name)
            if existing is not None:
                entities.append(existing)
                continue
            kind = known[name.lower()][1] if name.lower() in known else KIND_BY_TYPE[intent_type]
            entities.append(Entity.create(kind, name))

        dimension = self.DIMENSION_PATTERN.search(text)
        if dimension:
            entities.append(Entity.create(EntityKind.CONCEPT, f"{dimension.group(1)}D"))

        entities.extend(referenced)

        unique: dict[str, Entity] = {}
        for entity in entities:
            unique.setdefault(entity.entity_id, entity)
        return list(unique.values())
