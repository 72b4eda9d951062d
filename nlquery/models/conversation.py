"""Conversation and turn models held by the context store."""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from nlquery.models.entity import Entity
from nlquery.models.intent import Intent
from nlquery.models.response import ResponderAnswer


def new_conversation_id() -> str:
    return f"conv-{uuid.uuid4().hex}"


def new_turn_id() -> str:
    return f"turn-{uuid.uuid4().hex[:16]}"


class ContextUpdateKind(str, Enum):
    """What part of the conversation a context update touches."""

    ENTITY = "entity"
    INTENT = "intent"
    TOPIC = "topic"
    RESPONDER = "responder"


@dataclass(frozen=True)
class ContextUpdate:
    """Out-of-band change to conversation state.

    `value` is an Entity for ENTITY, an Intent for INTENT, the topic string
    for TOPIC and the responder display name for RESPONDER (keyed by
    responder id).
    """

    kind: ContextUpdateKind
    key: str
    value: Any
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        value = self.value
        if isinstance(value, (Entity, Intent)):
            value = value.to_dict()
        return {
            "kind": self.kind.value,
            "key": self.key,
            "value": value,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContextUpdate":
        kind = ContextUpdateKind(data["kind"])
        value = data.get("value")
        if kind is ContextUpdateKind.ENTITY and isinstance(value, dict):
            value = Entity.from_dict(value)
        elif kind is ContextUpdateKind.INTENT and isinstance(value, dict):
            value = Intent.from_dict(value)
        return cls(
            kind=kind,
            key=data.get("key", ""),
            value=value,
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass(frozen=True)
class Turn:
    """One question/answer exchange.

    Instances are frozen. When responders answer, the store swaps in a copy
    carrying the coordinated answer and the responder answers; until then
    merged_answer holds the direct knowledge base answer.
    """

    user_text: str
    intent: Intent
    turn_id: str = field(default_factory=new_turn_id)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    responder_answers: list[ResponderAnswer] = field(default_factory=list)
    merged_answer: str | None = None
    context_updates: list[ContextUpdate] = field(default_factory=list)
    entities: list[Entity] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "turn_id": self.turn_id,
            "timestamp": self.timestamp.isoformat(),
            "user_text": self.user_text,
            "intent": self.intent.to_dict(),
            "responder_answers": [answer.to_dict() for answer in self.responder_answers],
            "merged_answer": self.merged_answer,
            "context_updates": [update.to_dict() for update in self.context_updates],
            "entities": [entity.to_dict() for entity in self.entities],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Turn":
        return cls(
            turn_id=data["turn_id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            user_text=data["user_text"],
            intent=Intent.from_dict(data["intent"]),
            responder_answers=[
                ResponderAnswer.from_dict(item) for item in data.get("responder_answers") or []
            ],
            merged_answer=data.get("merged_answer"),
            context_updates=[
                ContextUpdate.from_dict(item) for item in data.get("context_updates") or []
            ],
            entities=[Entity.from_dict(item) for item in data.get("entities") or []],
        )


@dataclass
class Conversation:
    """State of one multi-turn conversation.

    Only the context store mutates a Conversation; everything else reads it.
    """

    conversation_id: str = field(default_factory=new_conversation_id)
    owner_id: str | None = None
    turns: list[Turn] = field(default_factory=list)
    entities: dict[str, Entity] = field(default_factory=dict)
    current_intent: Intent | None = None
    previous_intents: list[Intent] = field(default_factory=list)
    responder_assignments: dict[str, str] = field(default_factory=dict)
    current_topic: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def last_turn(self) -> Turn | None:
        return self.turns[-1] if self.turns else None

    def recent_turns(self, window: int) -> list[Turn]:
        """Most recent turns, newest first."""
        return list(reversed(self.turns[-window:])) if window > 0 else []

    def find_entity(self, name: str) -> Entity | None:
        """Look up a tracked entity by case-insensitive name."""
        lowered = name.lower()
        for entity in self.entities.values():
            if entity.name.lower() == lowered:
                return entity
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-safe snapshot.

        Returns:
            Dict representation; `entities` and `responder_assignments`
            become lists of [key, value] entries
        """
        return {
            "conversation_id": self.conversation_id,
            "owner_id": self.owner_id,
            "turns": [turn.to_dict() for turn in self.turns],
            "entities": [[key, entity.to_dict()] for key, entity in self.entities.items()],
            "current_intent": self.current_intent.to_dict() if self.current_intent else None,
            "previous_intents": [intent.to_dict() for intent in self.previous_intents],
            "responder_assignments": [[key, name] for key, name in self.responder_assignments.items()],
            "current_topic": self.current_topic,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Conversation":
        current = data.get("current_intent")
        return cls(
            conversation_id=data["conversation_id"],
            owner_id=data.get("owner_id"),
            turns=[Turn.from_dict(item) for item in data.get("turns") or []],
            entities={key: Entity.from_dict(value) for key, value in data.get("entities") or []},
            current_intent=Intent.from_dict(current) if current else None,
            previous_intents=[Intent.from_dict(item) for item in data.get("previous_intents") or []],
            responder_assignments={key: name for key, name in data.get("responder_assignments") or []},
            current_topic=data.get("current_topic"),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )
