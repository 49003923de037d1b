"""
Conversational memory: the literal message sequence sent to the model.

Telemetry is a separate side-channel for isolated tool failures and
diagnostics; it is never folded back into the model-facing history.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

ROLES = ("user", "assistant", "system")


@dataclass
class MemoryEntry:
    role: str
    content: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class TelemetryEntry:
    kind: str  # tool_failure, generation_error, token_warning, ...
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class ConversationMemory:
    def __init__(self):
        self._entries: List[MemoryEntry] = []
        self._telemetry: List[TelemetryEntry] = []

    def add(self, role: str, content: str) -> MemoryEntry:
        if role not in ROLES:
            raise ValueError(f"Unknown memory role: {role}")
        entry = MemoryEntry(role=role, content=content)
        self._entries.append(entry)
        return entry

    def get_history(self) -> List[MemoryEntry]:
        return list(self._entries)

    def get_messages(self) -> List[Dict[str, str]]:
        """History in the {role, content} shape the generation capability takes."""
        return [{"role": e.role, "content": e.content} for e in self.get_history()]

    # ------------------------------------------------------------------
    # Telemetry side-channel
    # ------------------------------------------------------------------

    def record_telemetry(self, kind: str, content: str, metadata: Optional[Dict[str, Any]] = None) -> TelemetryEntry:
        entry = TelemetryEntry(kind=kind, content=content, metadata=dict(metadata or {}))
        self._telemetry.append(entry)
        return entry

    def record_failure(self, tool: str, error: str, call_id: str = "", **metadata: Any) -> TelemetryEntry:
        logger.warning(f"Tool {tool} failed: {error}")
        return self.record_telemetry(
            "tool_failure", error, {"tool": tool, "call_id": call_id, **metadata},
        )

    def get_telemetry(self, kind: Optional[str] = None) -> List[TelemetryEntry]:
        if kind is None:
            return list(self._telemetry)
        return [t for t in self._telemetry if t.kind == kind]
