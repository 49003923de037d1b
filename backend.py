"""
Backend abstraction for the committed workspace: directory listings and
one-shot shell commands. Reads and writes of file content go through the
shadow store instead.
Every path is resolved against the working directory and rejected if it escapes it.
"""

import logging
import os
import signal
import subprocess
from abc import ABC, abstractmethod
from typing import List, Dict, Any, Tuple

logger = logging.getLogger(__name__)


class Backend(ABC):
    """Where committed files live and where commands run."""

    @property
    @abstractmethod
    def working_directory(self) -> str:
        """Return the working directory path."""

    @abstractmethod
    def list_dir(self, path: str) -> List[Dict[str, Any]]:
        """List entries in a directory. Returns list of {name, type, size?}."""

    @abstractmethod
    def run_command(self, command: str, cwd: str = ".", timeout: int = 120) -> Tuple[str, str, int]:
        """Run a shell command to completion. Returns (stdout, stderr, returncode)."""

    def resolve_path(self, path: str) -> str:
        """Absolute form of a workspace path; raises ValueError outside the workspace."""
        root = os.path.realpath(self.working_directory)
        candidate = path if os.path.isabs(path) else os.path.join(root, path)
        resolved = os.path.realpath(candidate)
        if resolved != root and not resolved.startswith(root + os.sep):
            raise ValueError(f"Path escapes working directory: {path!r}")
        return resolved


# ============================================================
# Local Backend
# ============================================================

class LocalBackend(Backend):
    """Backend over the local filesystem and a local shell."""

    def __init__(self, working_directory: str = "."):
        self._working_directory = os.path.abspath(working_directory)

    @property
    def working_directory(self) -> str:
        return self._working_directory

    def list_dir(self, path: str = ".") -> List[Dict[str, Any]]:
        full = self.resolve_path(path or ".")
        entries: List[Dict[str, Any]] = []
        with os.scandir(full) as it:
            for entry in sorted(it, key=lambda e: e.name):
                if entry.is_dir():
                    entries.append({"name": entry.name, "type": "directory"})
                elif entry.is_file():
                    entries.append({"name": entry.name, "type": "file", "size": entry.stat().st_size})
        return entries

    def run_command(self, command: str, cwd: str = ".", timeout: int = 120) -> Tuple[str, str, int]:
        """A timed-out command is killed with its process group and reports exit code -1."""
        full_cwd = self.resolve_path(cwd or ".")
        logger.debug(f"Running command in {full_cwd}: {command}")
        proc = subprocess.Popen(
            command, shell=True, cwd=full_cwd,
            stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True,
            start_new_session=True,
        )
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"Command timed out after {timeout}s: {command}")
            _kill_group(proc)
            stdout, stderr = proc.communicate(timeout=5)
            return stdout or "", f"Command timed out after {timeout}s\n{stderr or ''}", -1
        return stdout or "", stderr or "", proc.returncode


def _kill_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(os.getpgid(proc.pid), signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        proc.kill()
