"""Language-intelligence tools backed by a LanguageSession."""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import unquote, urlparse

from tools._common import ToolResult, require_position, require_text
from tools.router import Tool
from workspace.lsp import LanguageSession
from workspace.shadow import ShadowStore

logger = logging.getLogger(__name__)

_SYMBOL_KINDS = {
    1: "file", 2: "module", 3: "namespace", 4: "package", 5: "class", 6: "method",
    7: "property", 8: "field", 9: "constructor", 10: "enum", 11: "interface",
    12: "function", 13: "variable", 14: "constant", 22: "enum member", 23: "struct",
}


@dataclass
class PositionParams:
    path: str
    line: int
    character: int

    def __post_init__(self):
        require_text(self.path, "path")
        require_position(self.line, "line")
        require_position(self.character, "character")


@dataclass
class SymbolParams:
    path: str

    def __post_init__(self):
        require_text(self.path, "path")


class LSPTools:
    def __init__(self, session: LanguageSession, shadow: Optional[ShadowStore] = None):
        self.session = session
        self.shadow = shadow
        self._opened: Dict[str, str] = {}

    async def _sync_document(self, path: str) -> None:
        """Open the effective (possibly staged) content so queries see pending edits."""
        if self.shadow is None:
            return
        content = self.shadow.read(path)
        if content is None:
            raise FileNotFoundError(f"File not found: {path}")
        if self._opened.get(path) == content:
            return
        await self.session.open_document(path, content)
        self._opened[path] = content

    def _relative(self, uri: str) -> str:
        parsed = urlparse(uri)
        full = unquote(parsed.path) if parsed.scheme == "file" else uri
        if full.startswith(self.session.workspace + os.sep):
            return os.path.relpath(full, self.session.workspace).replace(os.sep, "/")
        return full

    def _format_locations(self, result: Any) -> List[str]:
        if not result:
            return []
        items = result if isinstance(result, list) else [result]
        lines = []
        for loc in items:
            # Location or LocationLink
            uri = loc.get("uri") or loc.get("targetUri", "")
            rng = loc.get("range") or loc.get("targetSelectionRange") or loc.get("targetRange") or {}
            start = rng.get("start", {})
            lines.append(f"{self._relative(uri)}:{start.get('line', 0)}:{start.get('character', 0)}")
        return lines

    async def go_to_definition(self, params: PositionParams) -> ToolResult:
        await self._sync_document(params.path)
        locations = self._format_locations(
            await self.session.definition(params.path, params.line, params.character)
        )
        if not locations:
            return ToolResult(success=True, output="No definition found.")
        return ToolResult(success=True, output="\n".join(locations))

    async def find_references(self, params: PositionParams) -> ToolResult:
        await self._sync_document(params.path)
        locations = self._format_locations(
            await self.session.references(params.path, params.line, params.character)
        )
        if not locations:
            return ToolResult(success=True, output="No references found.")
        return ToolResult(success=True, output=f"{len(locations)} reference(s):\n" + "\n".join(locations))

    async def list_symbols(self, params: SymbolParams) -> ToolResult:
        await self._sync_document(params.path)
        result = await self.session.symbols(params.path) or []
        lines: List[str] = []

        def walk(symbols, depth):
            for sym in symbols:
                kind = _SYMBOL_KINDS.get(sym.get("kind"), "symbol")
                rng = sym.get("range") or sym.get("location", {}).get("range", {})
                line = rng.get("start", {}).get("line", 0)
                lines.append(f"{'  ' * depth}{kind} {sym.get('name', '?')} (line {line})")
                walk(sym.get("children") or [], depth + 1)

        walk(result, 0)
        return ToolResult(success=True, output="\n".join(lines) if lines else "No symbols found.")

    async def get_hover(self, params: PositionParams) -> ToolResult:
        await self._sync_document(params.path)
        result = await self.session.hover(params.path, params.line, params.character)
        if not result:
            return ToolResult(success=True, output="No hover information.")
        contents = result.get("contents")
        if isinstance(contents, dict):
            text = contents.get("value", "")
        elif isinstance(contents, list):
            text = "\n".join(c.get("value", "") if isinstance(c, dict) else str(c) for c in contents)
        else:
            text = str(contents or "")
        return ToolResult(success=True, output=text.strip() or "No hover information.")

    def get_tools(self) -> List[Tool]:
        position_schema = {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Workspace-relative file path"},
                "line": {"type": "integer", "description": "Zero-indexed line"},
                "character": {"type": "integer", "description": "Zero-indexed character offset"},
            },
            "required": ["path", "line", "character"],
        }
        return [
            Tool(
                name="go_to_definition",
                description="Find where the symbol at a position is defined. Results are path:line:character (zero-indexed).",
                parameters=position_schema,
                handler=self.go_to_definition,
                surface="lsp",
                params_type=PositionParams,
            ),
            Tool(
                name="find_references",
                description="Find every reference to the symbol at a position, including its declaration.",
                parameters=position_schema,
                handler=self.find_references,
                surface="lsp",
                params_type=PositionParams,
            ),
            Tool(
                name="list_symbols",
                description="List the classes, functions and other symbols declared in a file.",
                parameters={
                    "type": "object",
                    "properties": {"path": {"type": "string", "description": "Workspace-relative file path"}},
                    "required": ["path"],
                },
                handler=self.list_symbols,
                surface="lsp",
                params_type=SymbolParams,
            ),
            Tool(
                name="get_hover",
                description="Type and documentation for the symbol at a position.",
                parameters=position_schema,
                handler=self.get_hover,
                surface="lsp",
                params_type=PositionParams,
            ),
        ]
