"""File tools: reads resolve through the shadow store, writes are staged."""

import logging
from dataclasses import dataclass
from typing import List, Optional

from backend import Backend
from tools._common import ToolResult, require_text
from tools.router import Tool, PLANNING, ACTING
from workspace.shadow import ShadowStore

logger = logging.getLogger(__name__)

_MAX_FULL_READ_LINES = 500


@dataclass
class ReadFileParams:
    path: str
    offset: Optional[int] = None
    limit: Optional[int] = None

    def __post_init__(self):
        require_text(self.path, "path")
        for name in ("offset", "limit"):
            value = getattr(self, name)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 1):
                raise ValueError(f"{name} must be a positive integer")


@dataclass
class ListFilesParams:
    path: str = "."


@dataclass
class WriteFileParams:
    path: str
    content: str

    def __post_init__(self):
        require_text(self.path, "path")
        if not isinstance(self.content, str):
            raise ValueError("content must be a string")


@dataclass
class OptionalPathParams:
    path: Optional[str] = None


@dataclass
class NoParams:
    pass


class FileTools:
    def __init__(self, shadow: ShadowStore, backend: Backend):
        self.shadow = shadow
        self.backend = backend

    def read_file(self, params: ReadFileParams) -> ToolResult:
        """Effective (staged or committed) content, line-numbered."""
        content = self.shadow.read(params.path)
        if content is None:
            return ToolResult(success=False, output="", error=f"File not found: {params.path}")
        lines = content.splitlines()
        total = len(lines)
        staged = " (staged, not committed)" if self.shadow.has_staged(params.path) else ""
        start = (params.offset or 1) - 1
        end = start + params.limit if params.limit else total
        if params.offset is None and params.limit is None and total > _MAX_FULL_READ_LINES:
            end = _MAX_FULL_READ_LINES
        selected = lines[start:end]
        numbered = "\n".join(f"{start + i + 1:6}|{line}" for i, line in enumerate(selected))
        header = f"[{total} lines total]{staged}"
        if start > 0 or end < total:
            header += f" (showing lines {start + 1}-{start + len(selected)})"
        return ToolResult(success=True, output=f"{header}\n{numbered}")

    def list_files(self, params: ListFilesParams) -> ToolResult:
        entries = self.backend.list_dir(params.path or ".")
        prefix = "" if params.path in ("", ".", None) else params.path.rstrip("/") + "/"
        staged = set(self.shadow.staged_paths())
        lines = []
        for e in entries:
            if e["name"] == self.shadow.storage_dir_name:
                continue
            if e["type"] == "directory":
                lines.append(f"{e['name']}/")
            else:
                mark = " [staged]" if prefix + e["name"] in staged else ""
                lines.append(f"{e['name']} ({e.get('size', 0)} bytes){mark}")
        # Files that exist only in the shadow tree
        listed = {prefix + e["name"] for e in entries}
        for rel in sorted(staged):
            if rel.startswith(prefix) and "/" not in rel[len(prefix):] and rel not in listed:
                lines.append(f"{rel[len(prefix):]} [staged, new]")
        return ToolResult(success=True, output="\n".join(lines) or "(empty directory)")

    def write_file(self, params: WriteFileParams) -> ToolResult:
        self.shadow.stage(params.path, params.content)
        return ToolResult(
            success=True,
            output=f"Staged {len(params.content)} chars for {params.path}. "
                   f"Call commit_changes to apply or discard_changes to revert.",
        )

    def commit_changes(self, params: OptionalPathParams) -> ToolResult:
        if params.path:
            self.shadow.commit(params.path)
            committed = [params.path]
        else:
            committed = self.shadow.commit_all()
        if not committed:
            return ToolResult(success=True, output="No staged changes to commit.")
        return ToolResult(success=True, output="Committed: " + ", ".join(committed), data={"paths": committed})

    def discard_changes(self, params: OptionalPathParams) -> ToolResult:
        if params.path:
            discarded = [params.path] if self.shadow.discard(params.path) else []
        else:
            discarded = self.shadow.discard_all()
        if not discarded:
            return ToolResult(success=True, output="No staged changes to discard.")
        return ToolResult(success=True, output="Discarded: " + ", ".join(discarded), data={"paths": discarded})

    def list_staged_changes(self, params: NoParams) -> ToolResult:
        staged = self.shadow.staged_paths()
        return ToolResult(success=True, output="\n".join(staged) if staged else "No staged changes.")

    def get_tools(self) -> List[Tool]:
        path_prop = {"type": "string", "description": "Workspace-relative file path"}
        return [
            Tool(
                name="read_file",
                description="Read a file. Returns staged content if the file has uncommitted changes. "
                            "Output is line-numbered; use offset/limit for large files.",
                parameters={
                    "type": "object",
                    "properties": {
                        "path": path_prop,
                        "offset": {"type": "integer", "description": "1-based first line"},
                        "limit": {"type": "integer", "description": "Number of lines"},
                    },
                    "required": ["path"],
                },
                handler=self.read_file,
                params_type=ReadFileParams,
            ),
            Tool(
                name="list_files",
                description="List a directory of the workspace, marking files with staged changes.",
                parameters={
                    "type": "object",
                    "properties": {"path": {"type": "string", "description": "Directory (default: root)"}},
                },
                handler=self.list_files,
                params_type=ListFilesParams,
            ),
            Tool(
                name="write_file",
                description="Write full file content. Changes are staged in the shadow filesystem, not applied.",
                parameters={
                    "type": "object",
                    "properties": {
                        "path": path_prop,
                        "content": {"type": "string", "description": "Complete new file content"},
                    },
                    "required": ["path", "content"],
                },
                handler=self.write_file,
                groups=(ACTING,),
                params_type=WriteFileParams,
            ),
            Tool(
                name="commit_changes",
                description="Apply staged changes to the real workspace. Commits one path, or everything when path is omitted.",
                parameters={"type": "object", "properties": {"path": path_prop}},
                handler=self.commit_changes,
                groups=(ACTING,),
                params_type=OptionalPathParams,
            ),
            Tool(
                name="discard_changes",
                description="Drop staged changes. Discards one path, or everything when path is omitted.",
                parameters={"type": "object", "properties": {"path": path_prop}},
                handler=self.discard_changes,
                groups=(ACTING,),
                params_type=OptionalPathParams,
            ),
            Tool(
                name="list_staged_changes",
                description="List files with staged, uncommitted changes.",
                parameters={"type": "object", "properties": {}},
                handler=self.list_staged_changes,
                groups=(PLANNING, ACTING),
                params_type=NoParams,
            ),
        ]
