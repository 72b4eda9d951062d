"""Entity model for things mentioned during a conversation."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


class EntityKind(str, Enum):
    """Kinds of entities the engine tracks."""

    RESPONDER = "responder"
    FUNCTION = "function"
    RULE = "rule"
    FACT = "fact"
    DOCUMENT = "document"
    CONCEPT = "concept"


# Words a user may say to refer to an entity of a given kind ("that agent")
KIND_ALIASES: dict[EntityKind, tuple[str, ...]] = {
    EntityKind.RESPONDER: ("responder", "agent", "agents", "responders"),
    EntityKind.FUNCTION: ("function", "functions", "procedure"),
    EntityKind.RULE: ("rule", "rules", "requirement", "requirements"),
    EntityKind.FACT: ("fact", "facts"),
    EntityKind.DOCUMENT: ("document", "documents", "doc", "docs"),
    EntityKind.CONCEPT: ("concept", "dimension"),
}


@dataclass(frozen=True)
class Entity:
    """A named thing referenced in a turn.

    `metadata["last_seen"]` holds the datetime the entity was last mentioned;
    the context store refreshes it on every re-mention.
    """

    entity_id: str
    kind: EntityKind
    name: str
    value: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, kind: EntityKind, name: str, value: Any = None, **metadata: Any) -> "Entity":
        """Create an entity with a stable id derived from kind and name.

        Re-mentions of the same name produce the same id, so the context
        store refreshes a single table entry instead of accumulating copies.
        """
        return cls(
            entity_id=f"{kind.value}:{name.lower()}",
            kind=kind,
            name=name,
            value=value,
            metadata=dict(metadata),
        )

    @property
    def last_seen(self) -> datetime | None:
        return self.metadata.get("last_seen")

    def seen_at(self, timestamp: datetime) -> "Entity":
        """Return a copy with `last_seen` set to timestamp."""
        return replace(self, metadata={**self.metadata, "last_seen": timestamp})

    def matches_reference(self, reference: str) -> bool:
        """Check whether a reference phrase names this entity or its kind.

        Args:
            reference: Lowercased reference text (e.g. "that agent")

        Returns:
            True if the entity's name or one of its kind words appears in it
        """
        if self.name.lower() in reference:
            return True
        words = set(reference.split())
        return self.kind.value in words or any(alias in words for alias in KIND_ALIASES[self.kind])

    def to_dict(self) -> dict[str, Any]:
        metadata = dict(self.metadata)
        if isinstance(metadata.get("last_seen"), datetime):
            metadata["last_seen"] = metadata["last_seen"].isoformat()
        return {
            "entity_id": self.entity_id,
            "kind": self.kind.value,
            "name": self.name,
            "value": self.value,
            "metadata": metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Entity":
        metadata = dict(data.get("metadata") or {})
        if isinstance(metadata.get("last_seen"), str):
            metadata["last_seen"] = datetime.fromisoformat(metadata["last_seen"])
        return cls(
            entity_id=data["entity_id"],
            kind=EntityKind(data["kind"]),
            name=data["name"],
            value=data.get("value"),
            metadata=metadata,
        )
