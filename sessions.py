"""
Session persistence for Flowcode.
Stores flow snapshots as JSON files under the workspace so a long-running goal
can be resumed after the process restarts. One file per session id.
"""

import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)

SESSION_VERSION = "1.0.0"


@dataclass
class SessionSnapshot:
    """A persisted agent session."""
    session_id: str
    goal: str = ""
    flow: List[Dict[str, Any]] = field(default_factory=list)
    test_history: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    version: str = SESSION_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "sessionId": self.session_id,
            "timestamp": self.timestamp,
            "goal": self.goal,
            "flow": self.flow,
            "testHistory": self.test_history,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionSnapshot":
        return cls(
            session_id=data["sessionId"],
            goal=data.get("goal", ""),
            flow=data.get("flow", []),
            test_history=data.get("testHistory", []),
            metadata=data.get("metadata") or {},
            timestamp=data.get("timestamp", 0),
            version=data.get("version", SESSION_VERSION),
        )


@dataclass
class SessionSummary:
    session_id: str
    timestamp: float
    goal: str


def new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}"


class SessionStore:
    """
    Manages session files on disk.

    File layout:  {workspace}/.flowcode/sessions/{session_id}.json
    """

    def __init__(self, workspace: str, storage_dir_name: str = ".flowcode"):
        self.base_dir = os.path.join(os.path.abspath(workspace), storage_dir_name, "sessions")
        self._current_session_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def save_session(self, snapshot: SessionSnapshot) -> str:
        """Save a session to disk. Returns the file path."""
        os.makedirs(self.base_dir, exist_ok=True)
        path = self._path_for(snapshot.session_id)
        tmp_path = path + ".tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(snapshot.to_dict(), f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
            logger.info(f"Session saved: {path}")
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        self._current_session_id = snapshot.session_id
        return path

    def load_session(self, session_id: str) -> Optional[SessionSnapshot]:
        """Load a session by ID."""
        return self._read_file(self._path_for(session_id))

    def delete_session(self, session_id: str) -> bool:
        """Delete a session file. Returns True if deleted."""
        path = self._path_for(session_id)
        try:
            os.remove(path)
        except OSError as e:
            logger.warning(f"Failed to delete session {session_id}: {e}")
            return False
        logger.info(f"Session deleted: {path}")
        return True

    def list_sessions(self) -> List[SessionSummary]:
        """List readable sessions, newest first. Corrupt files are skipped."""
        if not os.path.isdir(self.base_dir):
            return []
        sessions: List[SessionSummary] = []
        for fname in os.listdir(self.base_dir):
            if not fname.endswith(".json"):
                continue
            snap = self._read_file(os.path.join(self.base_dir, fname))
            if snap:
                sessions.append(SessionSummary(snap.session_id, snap.timestamp, snap.goal))
        sessions.sort(key=lambda s: s.timestamp, reverse=True)
        return sessions

    def get_last_session(self) -> Optional[SessionSnapshot]:
        """Get the most recently timestamped session."""
        sessions = self.list_sessions()
        return self.load_session(sessions[0].session_id) if sessions else None

    # ------------------------------------------------------------------
    # Checkpointing
    # ------------------------------------------------------------------

    def create_snapshot(
        self,
        session_id: str,
        goal: str,
        flow: List[Dict[str, Any]],
        test_history: List[Dict[str, Any]],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        snapshot = SessionSnapshot(
            session_id=session_id,
            goal=goal,
            flow=flow,
            test_history=test_history,
            metadata=metadata or {},
        )
        return self.save_session(snapshot)

    def auto_save(
        self,
        session_id: str,
        goal: str,
        flow: List[Dict[str, Any]],
        test_history: List[Dict[str, Any]],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """Checkpoint without ever raising; failures are logged."""
        try:
            path = self.create_snapshot(session_id, goal, flow, test_history, metadata)
            logger.info(f"Auto-saved session {session_id}")
            return path
        except Exception as e:
            logger.error(f"Auto-save failed for {session_id}: {e}")
            return None

    def cleanup_old_sessions(self, keep: int = 10) -> int:
        """Keep the `keep` newest sessions, delete the rest. Returns deleted count."""
        sessions = self.list_sessions()
        deleted = 0
        for summary in sessions[keep:]:
            if self.delete_session(summary.session_id):
                deleted += 1
        return deleted

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_session(self, session_id: str, export_path: str) -> bool:
        snapshot = self.load_session(session_id)
        if not snapshot:
            return False
        try:
            with open(export_path, "w", encoding="utf-8") as f:
                json.dump(snapshot.to_dict(), f, indent=2, ensure_ascii=False)
            return True
        except OSError as e:
            logger.error(f"Failed to export session to {export_path}: {e}")
            return False

    def import_session(self, import_path: str) -> Optional[str]:
        """Import a session file under a fresh id. Returns the new id, or None if unusable."""
        try:
            with open(import_path, "r", encoding="utf-8") as f:
                snapshot = SessionSnapshot.from_dict(json.load(f))
            now = time.time()
            snapshot.session_id = f"{snapshot.session_id}_imported_{int(now * 1000)}"
            snapshot.timestamp = now
            self.save_session(snapshot)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Failed to import session from {import_path}: {e}")
            return None
        return snapshot.session_id

    @property
    def current_session_id(self) -> Optional[str]:
        return self._current_session_id

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _path_for(self, session_id: str) -> str:
        if os.sep in session_id or "/" in session_id or session_id in ("", ".", ".."):
            raise ValueError(f"Invalid session id: {session_id!r}")
        return os.path.join(self.base_dir, f"{session_id}.json")

    def _read_file(self, path: str) -> Optional[SessionSnapshot]:
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return SessionSnapshot.from_dict(data)
        except Exception as e:
            logger.warning(f"Failed to read session {path}: {e}")
            return None
