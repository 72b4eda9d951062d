"""Response models: responder answers, citations and formatted replies."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from nlquery.models.entity import Entity


class OutputFormat(str, Enum):
    """Rendering targets for a formatted response."""

    MARKDOWN = "markdown"
    PLAIN = "plain"
    JSON = "json"


class CitationKind(str, Enum):
    DOCUMENT = "document"
    RESPONDER = "responder"
    FUNCTION = "function"
    RULE = "rule"


@dataclass(frozen=True)
class Citation:
    """Reference to where part of an answer came from."""

    source: str
    kind: CitationKind = CitationKind.DOCUMENT
    title: str | None = None
    line_number: int | None = None
    url: str | None = None

    @property
    def key(self) -> tuple[str, int | None]:
        """Identity used for de-duplication."""
        return (self.source, self.line_number)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "kind": self.kind.value,
            "title": self.title,
            "line_number": self.line_number,
            "url": self.url,
        }


@dataclass(frozen=True)
class ResponderRoute:
    """A candidate responder for an intent, with why it was picked."""

    responder_id: str
    responder_name: str
    confidence: float
    reason: str
    category: str | None = None


@dataclass(frozen=True)
class ResponderAnswer:
    """Answer produced by a single responder."""

    responder_id: str
    responder_name: str
    text: str
    confidence: float
    data: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "responder_id": self.responder_id,
            "responder_name": self.responder_name,
            "text": self.text,
            "confidence": self.confidence,
            "data": self.data,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResponderAnswer":
        return cls(
            responder_id=data["responder_id"],
            responder_name=data["responder_name"],
            text=data.get("text", ""),
            confidence=data.get("confidence", 0.0),
            data=data.get("data"),
        )


@dataclass
class CoordinatedResponse:
    """Primary responder answer merged with any additional answers."""

    primary: ResponderAnswer
    additional: list[ResponderAnswer] = field(default_factory=list)
    merged_text: str = ""
    confidence: float = 0.0
    responders_used: list[str] = field(default_factory=list)

    @property
    def answers(self) -> list[ResponderAnswer]:
        return [self.primary, *self.additional]


@dataclass
class FormattedResponse:
    """Final reply handed back to the caller."""

    answer: str
    citations: list[Citation] = field(default_factory=list)
    follow_up_suggestions: list[str] = field(default_factory=list)
    related_entities: list[Entity] = field(default_factory=list)
    confidence: float = 0.0
    conversation_id: str | None = None

    def has_citations(self) -> bool:
        return len(self.citations) > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "answer": self.answer,
            "citations": [citation.to_dict() for citation in self.citations],
            "follow_up_suggestions": list(self.follow_up_suggestions),
            "related_entities": [entity.to_dict() for entity in self.related_entities],
            "confidence": self.confidence,
            "conversation_id": self.conversation_id,
        }
