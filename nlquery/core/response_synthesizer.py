"""Response synthesizer: citations, follow-up suggestions and output rendering.

Pure functions of their inputs; nothing here touches conversation state.
"""

import json
import logging
import re

from nlquery.core.errors import FormattingError
from nlquery.lib.config import EngineConfig
from nlquery.models.conversation import Conversation
from nlquery.models.entity import Entity
from nlquery.models.intent import Intent, IntentType
from nlquery.models.knowledge import (
    FunctionDefinition,
    KnowledgeItem,
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
)

logger = logging.getLogger(__name__)

SOURCES_HEADER = "\n\n---\n\n**Sources:**\n\n"
SUGGESTIONS_HEADER = "**Related questions you might ask:**"


class ResponseSynthesizer:
    """Builds the final reply from query results and responder answers."""

    # Markdown constructs stripped for plain-text output, applied in order
    PLAIN_TEXT_RULES = [
        (re.compile(r"^\s*---\s*$", re.MULTILINE), ""),
        (re.compile(r"\[([^\]]+)\]\([^)]+\)"), r"\1"),
        (re.compile(r"\*\*(.+?)\*\*"), r"\1"),
        (re.compile(r"(?<!\w)\*(?!\s)(.+?)(?<!\s)\*(?!\w)"), r"\1"),
        (re.compile(r"`([^`]*)`"), r"\1"),
        (re.compile(r"^#{1,6}\s+", re.MULTILINE), ""),
        (re.compile(r"\n{3,}"), "\n\n"),
    ]

    def __init__(self, config: EngineConfig | None = None):
        self.config = config or EngineConfig()

    def citations(
        self, query_result: QueryResult, coordinated: CoordinatedResponse | None = None
    ) -> list[Citation]:
        """Collect citations, de-duplicated on (source, line number).

        Args:
            query_result: Direct knowledge-base result
            coordinated: Coordinated responder answers, if any

        Returns:
            Citations in first-seen order
        """
        candidates = [self._citation_for(item) for item in query_result.results]

        if coordinated is not None:
            for answer in coordinated.answers:
                data = answer.data or {}
                candidates.append(
                    Citation(
                        source=data.get("source") or f"responder:{answer.responder_id}",
                        kind=CitationKind.RESPONDER,
                        title=answer.responder_name,
                        line_number=data.get("line_number"),
                    )
                )

        unique: dict[tuple[str, int | None], Citation] = {}
        for citation in candidates:
            if citation is not None:
                unique.setdefault(citation.key, citation)
        return list(unique.values())

    @staticmethod
    def _citation_for(item: KnowledgeItem) -> Citation | None:
        if not item.source:
            return None

        if isinstance(item, ResponderDefinition) and item.dimension:
            kind, title = CitationKind.RESPONDER, item.title or item.name
        elif isinstance(item, FunctionDefinition) and item.signature:
            kind, title = CitationKind.FUNCTION, item.title or item.name
        elif isinstance(item, RuleDefinition):
            kind, title = CitationKind.RULE, item.title or f"{item.keyword} requirement"
        else:
            kind, title = CitationKind.DOCUMENT, item.title

        return Citation(
            source=item.source,
            kind=kind,
            title=title,
            line_number=item.line_number,
            url=item.url,
        )

    def follow_up_suggestions(
        self,
        query_result: QueryResult,
        intent: Intent,
        coordinated: CoordinatedResponse | None = None,
        conversation: Conversation | None = None,
    ) -> list[str]:
        """Suggest next questions based on intent type and conversation.

        Returns:
            At most `max_follow_up_suggestions` distinct suggestions
        """
        target = intent.target
        suggestions: list[str] = []

        if intent.type is IntentType.RESPONDER:
            if target:
                suggestions.append(f"What are the dependencies of {target}?")
                suggestions.append(f"What are the capabilities of {target}?")
            dimension = intent.filters.get("dimension") or self._first_dimension(query_result)
            if dimension:
                suggestions.append(f"What other agents are in {dimension}?")
            else:
                suggestions.append("What agents are available?")
        elif intent.type is IntentType.FUNCTION:
            if target:
                suggestions.append(f"What are the parameters of {target}?")
                suggestions.append(f"Show me examples of {target}")
            else:
                suggestions.append("What functions are available?")
        elif intent.type is IntentType.RULE:
            suggestions.append("What rules apply to agents?")
            if intent.filters.get("keyword") != "MUST":
                suggestions.append("What are the MUST requirements?")
        elif intent.type is IntentType.EXAMPLE and target:
            suggestions.append(f"What does {target} do?")
        elif intent.type is IntentType.FACT:
            suggestions.append("What documents discuss this?")

        if coordinated is not None:
            suggestions.extend(f"What else can {a.responder_name} tell me?" for a in coordinated.additional)

        topic = conversation.current_topic if conversation else None
        if topic and (not target or topic.lower() != target.lower()):
            suggestions.append(f"Tell me more about {topic}")

        if intent.entities:
            suggestions.append(f"How does {intent.entities[0].name} relate to other agents?")

        unique = list(dict.fromkeys(suggestions))
        return unique[: self.config.max_follow_up_suggestions]

    @staticmethod
    def _first_dimension(query_result: QueryResult) -> str | None:
        for item in query_result.results:
            if isinstance(item, ResponderDefinition) and item.dimension:
                return item.dimension
        return None

    def related_entities(self, intent: Intent, conversation: Conversation | None = None) -> list[Entity]:
        """Entities from the intent plus the most recent conversation entities."""
        entities = list(intent.entities)
        if conversation is not None:
            recent = sorted(
                conversation.entities.values(),
                key=lambda e: e.last_seen.timestamp() if e.last_seen else 0.0,
                reverse=True,
            )
            entities.extend(recent[: self.config.related_entity_window])

        unique: dict[str, Entity] = {}
        for entity in entities:
            unique.setdefault(entity.entity_id, entity)
        return list(unique.values())

    def format(self, answer: str, citations: list[Citation]) -> str:
        """Append a numbered Sources section to answer.

        Args:
            answer: Answer text
            citations: Citations to list

        Returns:
            Answer unchanged when there are no citations
        """
        if not citations:
            return answer
        lines = [f"{i}. {self._citation_line(c)}" for i, c in enumerate(citations, start=1)]
        return answer + SOURCES_HEADER + "\n".join(lines)

    @staticmethod
    def _citation_line(citation: Citation) -> str:
        location = citation.source
        if citation.line_number is not None:
            location += f", line {citation.line_number}"
        line = f"**{citation.title or citation.source}** ({location})"
        if citation.url:
            line += f" - {citation.url}"
        return line

    def synthesize(
        self,
        query_result: QueryResult,
        intent: Intent,
        coordinated: CoordinatedResponse | None = None,
        conversation: Conversation | None = None,
    ) -> FormattedResponse:
        """Build the final reply.

        Args:
            query_result: Direct knowledge-base result (always cited)
            intent: Resolved intent
            coordinated: Coordinated answer to use instead of the direct answer
            conversation: Conversation for topic and entity context

        Returns:
            FormattedResponse with confidence clamped to [0, 1]
        """
        answer = coordinated.merged_text if coordinated is not None else query_result.answer
        confidence = coordinated.confidence if coordinated is not None else query_result.confidence
        citations = self.citations(query_result, coordinated)

        return FormattedResponse(
            answer=self.format(answer, citations),
            citations=citations,
            follow_up_suggestions=self.follow_up_suggestions(
                query_result, intent, coordinated, conversation
            ),
            related_entities=self.related_entities(intent, conversation),
            confidence=min(1.0, max(0.0, confidence)),
            conversation_id=conversation.conversation_id if conversation else None,
        )

    def to_output(self, response: FormattedResponse, kind: OutputFormat | str = OutputFormat.MARKDOWN) -> str:
        """Render a response for display.

        Args:
            response: Response to render
            kind: markdown, plain or json

        Returns:
            Rendered text

        Raises:
            FormattingError: For an unsupported output kind
        """
        try:
            kind = OutputFormat(kind)
        except ValueError as e:
            raise FormattingError(f"Unsupported output format: {kind}") from e

        if kind is OutputFormat.JSON:
            return json.dumps(response.to_dict(), indent=2)

        text = response.answer
        if response.follow_up_suggestions:
            questions = "\n".join(
                f"{i}. {s}" for i, s in enumerate(response.follow_up_suggestions, start=1)
            )
            text = f"{text}\n\n{SUGGESTIONS_HEADER}\n{questions}"

        if kind is OutputFormat.PLAIN:
            return self._strip_markdown(text)
        return text

    def _strip_markdown(self, text: str) -> str:
        for pattern, replacement in self.PLAIN_TEXT_RULES:
            text = pattern.sub(replacement, text)
        return text.strip()
