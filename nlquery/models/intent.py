"""Intent model: what the user is asking for on a given turn."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from nlquery.models.entity import Entity


class IntentType(str, Enum):
    """Closed set of question types the engine can answer."""

    RESPONDER = "responder-query"
    FUNCTION = "function-query"
    RULE = "rule-query"
    FACT = "fact-query"
    EXAMPLE = "example-query"
    UNKNOWN = "unknown"

    @property
    def requires_target(self) -> bool:
        """Whether a question of this type is unanswerable without a target."""
        return self is IntentType.EXAMPLE

    @property
    def noun(self) -> str:
        """User-facing word for the thing this type asks about."""
        return {
            IntentType.RESPONDER: "agent",
            IntentType.FUNCTION: "function",
            IntentType.RULE: "rule",
            IntentType.FACT: "fact",
            IntentType.EXAMPLE: "function or agent",
            IntentType.UNKNOWN: "item",
        }[self]


@dataclass(frozen=True)
class Intent:
    """Resolved interpretation of one user question.

    Intents are immutable once built; derive variants with
    `dataclasses.replace`.

    Well-known filter keys: `dimension`, `topic`, `query_type`, `context`,
    `keyword`, `subject`.
    """

    type: IntentType = IntentType.UNKNOWN
    original_text: str = ""
    resolved_text: str = ""
    target: str | None = None
    filters: dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.0
    requires_clarification: bool = False
    clarification_prompts: list[str] = field(default_factory=list)
    entities: list[Entity] = field(default_factory=list)
    inherited: bool = False

    @property
    def is_known(self) -> bool:
        return self.type is not IntentType.UNKNOWN

    @property
    def query_type(self) -> str | None:
        return self.filters.get("query_type")

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "original_text": self.original_text,
            "resolved_text": self.resolved_text,
            "target": self.target,
            "filters": dict(self.filters),
            "confidence": self.confidence,
            "requires_clarification": self.requires_clarification,
            "clarification_prompts": list(self.clarification_prompts),
            "entities": [entity.to_dict() for entity in self.entities],
            "inherited": self.inherited,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Intent":
        return cls(
            type=IntentType(data.get("type", IntentType.UNKNOWN.value)),
            original_text=data.get("original_text", ""),
            resolved_text=data.get("resolved_text", ""),
            target=data.get("target"),
            filters=dict(data.get("filters") or {}),
            confidence=data.get("confidence", 0.0),
            requires_clarification=data.get("requires_clarification", False),
            clarification_prompts=list(data.get("clarification_prompts") or []),
            entities=[Entity.from_dict(item) for item in data.get("entities") or []],
            inherited=data.get("inherited", False),
        )
