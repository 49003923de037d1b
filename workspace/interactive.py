"""
Interactive process session: at most one long-lived shell command per agent.

Output from the child is pumped by a reader task into an asyncio.Queue;
read() drains whatever has arrived so far (consume-once).
"""

import asyncio
import codecs
import logging
import os
import signal
from typing import List, Optional

logger = logging.getLogger(__name__)


class ProcessNotRunning(RuntimeError):
    """Raised when input is sent with no live process."""


class InteractiveSession:
    def __init__(self, workspace: str, settle_seconds: float = 0.5):
        self.workspace = os.path.abspath(workspace)
        self.settle_seconds = settle_seconds
        self._process: Optional[asyncio.subprocess.Process] = None
        self._reader: Optional[asyncio.Task] = None
        self._output: "asyncio.Queue[str]" = asyncio.Queue()
        # Killed processes still waiting to be reaped by close()
        self._reaping: List[asyncio.subprocess.Process] = []

    async def spawn(self, command: str) -> str:
        """Start `command` (killing any current one) and return output from the settle window."""
        if self._process is not None:
            self.kill()
        await self._reap()
        self._drain()
        logger.info(f"Spawning interactive command: {command}")
        self._process = await asyncio.create_subprocess_exec(
            "/bin/bash", "-c", command,
            cwd=self.workspace,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=True,
        )
        self._reader = asyncio.create_task(self._pump(self._process))
        await asyncio.sleep(self.settle_seconds)
        return self.read()

    async def _pump(self, proc: asyncio.subprocess.Process) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await proc.stdout.read(4096)
            if not data:
                break
            text = decoder.decode(data)
            if text:
                self._output.put_nowait(text)
        tail = decoder.decode(b"", final=True)
        if tail:
            self._output.put_nowait(tail)
        code = await proc.wait()
        logger.info(f"Interactive process exited with code {code}")

    async def write(self, data: str) -> None:
        if not self.is_alive():
            raise ProcessNotRunning("No active process to write to.")
        self._process.stdin.write(data.encode("utf-8"))
        await self._process.stdin.drain()

    def read(self) -> str:
        """Return and clear everything buffered since the last read."""
        return self._drain()

    def _drain(self) -> str:
        parts = []
        while True:
            try:
                parts.append(self._output.get_nowait())
            except asyncio.QueueEmpty:
                break
        return "".join(parts)

    def is_alive(self) -> bool:
        return self._process is not None and self._process.returncode is None

    def kill(self) -> None:
        """Terminate the live process, if any. Safe to call repeatedly."""
        proc = self._process
        if proc is None:
            return
        self._process = None
        if proc.returncode is None:
            logger.info("Killing active interactive process")
            try:
                os.killpg(proc.pid, signal.SIGTERM)
            except (ProcessLookupError, PermissionError):
                try:
                    proc.terminate()
                except ProcessLookupError:
                    pass
        self._reaping.append(proc)

    async def _reap(self) -> None:
        while self._reaping:
            proc = self._reaping.pop()
            try:
                await asyncio.wait_for(proc.wait(), timeout=5)
            except asyncio.TimeoutError:
                logger.warning(f"Process {proc.pid} ignored SIGTERM, sending SIGKILL")
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()
        if self._reader is not None and self._process is None:
            try:
                await asyncio.wait_for(self._reader, timeout=1)
            except asyncio.TimeoutError:
                self._reader.cancel()
            self._reader = None

    async def close(self) -> None:
        """Kill and reap the process so no transports outlive the event loop."""
        self.kill()
        await self._reap()
