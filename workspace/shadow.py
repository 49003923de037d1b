"""
Shadow store: copy-on-write staging for file edits.

Staged content lives under <workspace>/.flowcode/shadow/<relpath> and never
touches the real file until committed. Reads resolve shadow first, then the
committed file. Sub-agents share one store; concurrent commits to the same
path are last-writer-wins.
"""

import logging
import os
import shutil
from typing import List, Optional

logger = logging.getLogger(__name__)


class ShadowStore:
    def __init__(self, workspace: str, storage_dir_name: str = ".flowcode"):
        self.workspace = os.path.abspath(workspace)
        self.storage_dir_name = storage_dir_name
        self.shadow_root = os.path.join(self.workspace, storage_dir_name, "shadow")

    # ------------------------------------------------------------------
    # Path resolution
    # ------------------------------------------------------------------

    @staticmethod
    def _contained(root: str, rel_path: str) -> str:
        """Resolve rel_path under root, following symlinks, and refuse anything outside it."""
        if os.path.isabs(rel_path):
            raise ValueError(f"Path must be workspace-relative: {rel_path!r}")
        real_root = os.path.realpath(root)
        full = os.path.realpath(os.path.join(real_root, rel_path))
        if full == real_root or not full.startswith(real_root + os.sep):
            raise ValueError(f"Path escapes working directory: {rel_path!r}")
        return full

    def shadow_path(self, rel_path: str) -> str:
        return self._contained(self.shadow_root, rel_path)

    def real_path(self, rel_path: str) -> str:
        real = self._contained(self.workspace, rel_path)
        # Agent state (shadow tree, index, sessions) is not a valid target
        state_dir = os.path.realpath(os.path.join(self.workspace, self.storage_dir_name))
        if real == state_dir or real.startswith(state_dir + os.sep):
            raise ValueError(f"Path points into the agent state directory: {rel_path!r}")
        return real

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def stage(self, rel_path: str, content: str) -> None:
        """Write content to the shadow copy only."""
        self.real_path(rel_path)
        target = self.shadow_path(rel_path)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            f.write(content)
        logger.info(f"Staged changes for {rel_path}")

    def has_staged(self, rel_path: str) -> bool:
        return os.path.isfile(self.shadow_path(rel_path))

    def read(self, rel_path: str) -> Optional[str]:
        """Effective content: staged, else committed, else None."""
        for candidate in (self.shadow_path(rel_path), self.real_path(rel_path)):
            if os.path.isfile(candidate):
                with open(candidate, "r", encoding="utf-8", errors="replace") as f:
                    return f.read()
        return None

    def staged_paths(self) -> List[str]:
        """Workspace-relative posix paths of every staged file, sorted."""
        if not os.path.isdir(self.shadow_root):
            return []
        out = []
        for root, _dirs, files in os.walk(self.shadow_root):
            for name in files:
                rel = os.path.relpath(os.path.join(root, name), self.shadow_root)
                out.append(rel.replace(os.sep, "/"))
        return sorted(out)

    # ------------------------------------------------------------------
    # Commit / discard
    # ------------------------------------------------------------------

    def commit(self, rel_path: str) -> None:
        """Copy staged content over the real file, then drop the shadow copy.

        The copy is the atomicity boundary: a failed copy leaves both files
        untouched; a failed shadow delete after a good copy still counts as
        applied and leaves the stale shadow in place.
        """
        source = self.shadow_path(rel_path)
        target = self.real_path(rel_path)
        if not os.path.isfile(source):
            raise FileNotFoundError(f"No staged changes for {rel_path}")
        with open(source, "r", encoding="utf-8") as f:
            content = f.read()
        os.makedirs(os.path.dirname(target), exist_ok=True)
        tmp = target + ".flowcode-tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp, target)
        except OSError:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise
        try:
            os.remove(source)
        except OSError as e:
            logger.warning(f"Committed {rel_path} but could not remove shadow copy: {e}")
        logger.info(f"Committed changes to {rel_path}")

    def commit_all(self) -> List[str]:
        """Commit every staged file. Returns the committed relative paths."""
        committed = []
        for rel in self.staged_paths():
            self.commit(rel)
            committed.append(rel)
        return committed

    def discard(self, rel_path: str) -> bool:
        """Drop the staged copy of one file. Returns True if one existed."""
        source = self.shadow_path(rel_path)
        if not os.path.isfile(source):
            return False
        os.remove(source)
        return True

    def discard_all(self) -> List[str]:
        """Delete the whole shadow tree. Returns the discarded relative paths."""
        discarded = self.staged_paths()
        if os.path.isdir(self.shadow_root):
            shutil.rmtree(self.shadow_root)
            logger.info("Cleared shadow directory")
        return discarded
