"""
Flow store: the append-only, causally linked timeline of actions,
observations and human interventions for one goal.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

ENTRY_TYPES = ("action", "observation", "human_intervention")
SURFACES = ("editor", "terminal", "test", "lsp", "docs")


@dataclass(frozen=True)
class FlowEntry:
    id: str
    type: str
    surface: str
    content: Any
    timestamp: float = field(default_factory=time.time)
    caused_by: List[str] = field(default_factory=list)
    affects: List[str] = field(default_factory=list)
    confidence: Optional[float] = None
    status: Optional[str] = None  # "ok" | "error" for observations

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "type": self.type,
            "surface": self.surface,
            "content": self.content,
            "timestamp": self.timestamp,
            "causedBy": list(self.caused_by),
            "affects": list(self.affects),
        }
        if self.confidence is not None:
            data["confidence"] = self.confidence
        if self.status is not None:
            data["status"] = self.status
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FlowEntry":
        return cls(
            id=data["id"],
            type=data["type"],
            surface=data["surface"],
            content=data.get("content"),
            timestamp=data.get("timestamp", 0),
            caused_by=list(data.get("causedBy") or []),
            affects=list(data.get("affects") or []),
            confidence=data.get("confidence"),
            status=data.get("status"),
        )


class FlowStore:
    def __init__(self):
        self._entries: List[FlowEntry] = []
        self._by_id: Dict[str, FlowEntry] = {}

    def append(
        self,
        type: str,
        surface: str,
        content: Any,
        caused_by: Optional[List[str]] = None,
        affects: Optional[List[str]] = None,
        confidence: Optional[float] = None,
        status: Optional[str] = None,
    ) -> FlowEntry:
        if type not in ENTRY_TYPES:
            raise ValueError(f"Unknown flow entry type: {type}")
        if surface not in SURFACES:
            raise ValueError(f"Unknown flow surface: {surface}")
        entry = FlowEntry(
            id=f"flow_{uuid.uuid4().hex}",
            type=type,
            surface=surface,
            content=content,
            caused_by=list(caused_by or []),
            affects=list(affects or []),
            confidence=confidence,
            status=status,
        )
        self._entries.append(entry)
        self._by_id[entry.id] = entry
        return entry

    def get_by_id(self, entry_id: str) -> Optional[FlowEntry]:
        return self._by_id.get(entry_id)

    def get_window(
        self,
        predicate: Optional[Callable[[FlowEntry], bool]] = None,
        limit: Optional[int] = None,
    ) -> List[FlowEntry]:
        """Entries in append order, optionally filtered; `limit` keeps the newest."""
        entries = [e for e in self._entries if predicate(e)] if predicate else list(self._entries)
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def restore(self, entries: List[FlowEntry]) -> None:
        self.clear()
        for entry in entries:
            self._entries.append(entry)
            self._by_id[entry.id] = entry

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self._entries]

    def clear(self) -> None:
        self._entries = []
        self._by_id = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[FlowEntry]:
        return iter(list(self._entries))
