"""Pluggable persistence for conversation snapshots."""

import json
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SAFE_ID_PATTERN = re.compile(r"^[\w.-]+$")


class SnapshotStore(ABC):
    """Saves and loads exported conversation snapshots.

    Snapshots are the JSON-safe dicts produced by the context store's
    export; stores never interpret their contents.
    """

    @abstractmethod
    def save(self, snapshot: dict[str, Any]) -> None:
        """Persist a snapshot under its conversation id."""

    @abstractmethod
    def load(self, conversation_id: str) -> dict[str, Any] | None:
        """Return the snapshot for conversation_id, or None."""

    @abstractmethod
    def delete(self, conversation_id: str) -> bool:
        """Remove a snapshot. Returns True if one existed."""

    @abstractmethod
    def list_ids(self) -> list[str]:
        """Conversation ids that have a saved snapshot."""


class InMemorySnapshotStore(SnapshotStore):
    def __init__(self):
        self._snapshots: dict[str, str] = {}

    def save(self, snapshot: dict[str, Any]) -> None:
        # Stored serialized so callers can't mutate a saved snapshot
        self._snapshots[snapshot["conversation_id"]] = json.dumps(snapshot)

    def load(self, conversation_id: str) -> dict[str, Any] | None:
        raw = self._snapshots.get(conversation_id)
        return json.loads(raw) if raw is not None else None

    def delete(self, conversation_id: str) -> bool:
        return self._snapshots.pop(conversation_id, None) is not None

    def list_ids(self) -> list[str]:
        return sorted(self._snapshots)


class JsonFileSnapshotStore(SnapshotStore):
    """One `<conversation_id>.json` file per conversation in a directory."""

    def __init__(self, directory: str | Path = "data/conversations"):
        """Initialize file-backed snapshot store.

        Args:
            directory: Directory for snapshot files (created if missing)
        """
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, conversation_id: str) -> Path:
        if not SAFE_ID_PATTERN.match(conversation_id):
            raise ValueError(f"Invalid conversation id for file storage: {conversation_id!r}")
        return self.directory / f"{conversation_id}.json"

    def save(self, snapshot: dict[str, Any]) -> None:
        path = self._path(snapshot["conversation_id"])
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(snapshot, f, indent=2)
        tmp_path.replace(path)
        logger.debug(f"Saved snapshot {path}")

    def load(self, conversation_id: str) -> dict[str, Any] | None:
        path = self._path(conversation_id)
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    def delete(self, conversation_id: str) -> bool:
        path = self._path(conversation_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def list_ids(self) -> list[str]:
        return sorted(path.stem for path in self.directory.glob("*.json"))
