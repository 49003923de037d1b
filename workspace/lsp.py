"""
Language-intelligence session: a language server spoken to over stdio with
JSON-RPC 2.0 and Content-Length framing.

The server is started lazily on the first query, after an initialize /
initialized handshake. Positions are zero-indexed (line, character).
"""

import asyncio
import json
import logging
import os
import shlex
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

_LANGUAGE_IDS = {
    ".py": "python", ".ts": "typescript", ".tsx": "typescriptreact", ".js": "javascript",
    ".jsx": "javascriptreact", ".go": "go", ".rs": "rust", ".java": "java", ".rb": "ruby",
    ".c": "c", ".h": "c", ".cpp": "cpp", ".hpp": "cpp", ".cs": "csharp",
}


class LanguageServerError(RuntimeError):
    """The language server could not be started or answered with an error."""


class LanguageSession:
    def __init__(self, workspace: str, command: Union[str, List[str]] = "pylsp"):
        self.workspace = os.path.abspath(workspace)
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        self._process: Optional[asyncio.subprocess.Process] = None
        self._reader: Optional[asyncio.Task] = None
        self._pending: Dict[int, asyncio.Future] = {}
        self._next_id = 0
        self._initialized = False
        self.server_capabilities: Dict[str, Any] = {}

    @property
    def is_running(self) -> bool:
        return self._initialized and self._process is not None and self._process.returncode is None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._initialized:
            return
        logger.info(f"Starting language server: {' '.join(self.command)}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                cwd=self.workspace,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            self._process = None
            raise LanguageServerError(f"Failed to start language server {self.command[0]!r}: {e}") from e
        self._reader = asyncio.create_task(self._read_loop())

        root_uri = Path(self.workspace).as_uri()
        params = {
            "processId": os.getpid(),
            "rootUri": root_uri,
            "capabilities": {
                "textDocument": {
                    "definition": {"dynamicRegistration": True},
                    "references": {"dynamicRegistration": True},
                    "documentSymbol": {"dynamicRegistration": True},
                    "hover": {"dynamicRegistration": True},
                },
            },
            "workspaceFolders": [{"uri": root_uri, "name": os.path.basename(self.workspace)}],
        }
        try:
            result = await self._send_request("initialize", params)
            self.server_capabilities = (result or {}).get("capabilities", {})
            await self._send_notification("initialized", {})
        except Exception as e:
            logger.error(f"Language server initialization failed: {e}")
            await self.stop()
            if isinstance(e, LanguageServerError):
                raise
            raise LanguageServerError(f"Language server initialization failed: {e}") from e
        self._initialized = True
        logger.info("Language server initialized")

    async def stop(self) -> None:
        """Dispose the channel and terminate the server. Safe when never started."""
        proc = self._process
        self._process = None
        self._initialized = False
        if proc is not None and proc.returncode is None:
            try:
                await self._send_raw(proc, {"jsonrpc": "2.0", "id": self._new_id(), "method": "shutdown"})
                await self._send_raw(proc, {"jsonrpc": "2.0", "method": "exit"})
            except (ConnectionError, RuntimeError):
                pass
            try:
                await asyncio.wait_for(proc.wait(), timeout=2)
            except asyncio.TimeoutError:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        self._fail_pending(LanguageServerError("Language server stopped"))

    # ------------------------------------------------------------------
    # Wire protocol
    # ------------------------------------------------------------------

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    @staticmethod
    async def _send_raw(proc: asyncio.subprocess.Process, message: Dict[str, Any]) -> None:
        body = json.dumps(message).encode("utf-8")
        proc.stdin.write(f"Content-Length: {len(body)}\r\n\r\n".encode("ascii") + body)
        await proc.stdin.drain()

    async def _send_request(self, method: str, params: Any) -> Any:
        if self._process is None:
            raise LanguageServerError("Language server is not running")
        request_id = self._new_id()
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send_raw(self._process, {
                "jsonrpc": "2.0", "id": request_id, "method": method, "params": params,
            })
        except (ConnectionError, RuntimeError) as e:
            self._pending.pop(request_id, None)
            raise LanguageServerError(f"Failed to send {method}: {e}") from e
        return await future

    async def _send_notification(self, method: str, params: Any) -> None:
        if self._process is None:
            raise LanguageServerError("Language server is not running")
        await self._send_raw(self._process, {"jsonrpc": "2.0", "method": method, "params": params})

    async def _read_message(self) -> Optional[Dict[str, Any]]:
        stdout = self._process.stdout if self._process else None
        if stdout is None:
            return None
        length = None
        while True:
            line = await stdout.readline()
            if not line:
                return None
            line = line.strip()
            if not line:
                break
            name, _, value = line.decode("ascii", errors="replace").partition(":")
            if name.strip().lower() == "content-length":
                length = int(value.strip())
        if length is None:
            raise LanguageServerError("Message without Content-Length header")
        body = await stdout.readexactly(length)
        return json.loads(body.decode("utf-8"))

    async def _read_loop(self) -> None:
        try:
            while True:
                message = await self._read_message()
                if message is None:
                    break
                await self._dispatch(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Language server reader failed: {e}")
            self._fail_pending(LanguageServerError(f"Language server connection lost: {e}"))
            return
        self._fail_pending(LanguageServerError("Language server closed the connection"))

    async def _dispatch(self, message: Dict[str, Any]) -> None:
        if "method" in message:
            if "id" in message and self._process is not None:
                # Server-initiated request; we support none of them
                await self._send_raw(self._process, {"jsonrpc": "2.0", "id": message["id"], "result": None})
            else:
                logger.debug(f"Language server notification: {message['method']}")
            return
        future = self._pending.pop(message.get("id"), None)
        if future is None or future.done():
            return
        if "error" in message:
            err = message["error"] or {}
            future.set_exception(LanguageServerError(f"{err.get('code')}: {err.get('message')}"))
        else:
            future.set_result(message.get("result"))

    def _fail_pending(self, error: Exception) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _uri(self, path: str) -> str:
        full = os.path.normpath(os.path.join(self.workspace, path))
        if full != self.workspace and not full.startswith(self.workspace + os.sep):
            raise ValueError(f"Path escapes working directory: {path!r}")
        return Path(full).as_uri()

    async def _query(self, method: str, params: Dict[str, Any]) -> Any:
        await self.start()
        return await self._send_request(method, params)

    async def open_document(self, path: str, content: str) -> None:
        await self.start()
        await self._send_notification("textDocument/didOpen", {
            "textDocument": {
                "uri": self._uri(path),
                "languageId": _LANGUAGE_IDS.get(os.path.splitext(path)[1].lower(), "plaintext"),
                "version": 1,
                "text": content,
            },
        })

    async def definition(self, path: str, line: int, character: int) -> Any:
        return await self._query("textDocument/definition", {
            "textDocument": {"uri": self._uri(path)},
            "position": {"line": line, "character": character},
        })

    async def references(self, path: str, line: int, character: int) -> Any:
        return await self._query("textDocument/references", {
            "textDocument": {"uri": self._uri(path)},
            "position": {"line": line, "character": character},
            "context": {"includeDeclaration": True},
        })

    async def symbols(self, path: str) -> Any:
        return await self._query("textDocument/documentSymbol", {
            "textDocument": {"uri": self._uri(path)},
        })

    async def hover(self, path: str, line: int, character: int) -> Any:
        return await self._query("textDocument/hover", {
            "textDocument": {"uri": self._uri(path)},
            "position": {"line": line, "character": character},
        })
