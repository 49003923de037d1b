"""Shell tools: one-shot commands, the interactive terminal, and test runs."""

import asyncio
import logging
from dataclasses import dataclass
from typing import List

from backend import Backend
from tools._common import ToolResult, require_text
from tools.router import Tool, PLANNING, ACTING
from workspace.interactive import InteractiveSession
from workspace.testbench import TestSurface

logger = logging.getLogger(__name__)


@dataclass
class CommandParams:
    command: str
    timeout: int = 120

    def __post_init__(self):
        require_text(self.command, "command")
        if isinstance(self.timeout, bool) or not isinstance(self.timeout, int) or self.timeout < 1:
            raise ValueError("timeout must be a positive integer")


@dataclass
class SpawnParams:
    command: str

    def __post_init__(self):
        require_text(self.command, "command")


@dataclass
class TerminalInputParams:
    input: str

    def __post_init__(self):
        if not isinstance(self.input, str):
            raise ValueError("input must be a string")


@dataclass
class EmptyParams:
    pass


def _format_command_output(stdout: str, stderr: str, rc: int) -> str:
    parts = []
    if stdout:
        parts.append(stdout)
    if stderr:
        parts.append(f"[stderr]\n{stderr}")
    output = "\n".join(parts) if parts else "(no output)"
    if rc != 0:
        output = f"[exit code: {rc}]\n{output}"
    return output


class ShellTools:
    def __init__(
        self,
        backend: Backend,
        session: InteractiveSession,
        test_surface: TestSurface,
        recent_files=None,
    ):
        self.backend = backend
        self.session = session
        self.test_surface = test_surface
        # Callable returning recently edited paths, recorded on each test run
        self.recent_files = recent_files or (lambda: [])

    async def run_command(self, params: CommandParams) -> ToolResult:
        """Run to completion. A non-zero exit is still a completed observation."""
        stdout, stderr, rc = await asyncio.to_thread(
            self.backend.run_command, params.command, ".", params.timeout,
        )
        return ToolResult(
            success=True,
            output=_format_command_output(stdout, stderr, rc),
            data={"exit_code": rc},
        )

    async def spawn_command(self, params: SpawnParams) -> ToolResult:
        initial = await self.session.spawn(params.command)
        state = "running" if self.session.is_alive() else "exited"
        return ToolResult(success=True, output=f"[process {state}]\n{initial or '(no output yet)'}")

    async def send_terminal_input(self, params: TerminalInputParams) -> ToolResult:
        data = params.input if params.input.endswith("\n") else params.input + "\n"
        await self.session.write(data)
        await asyncio.sleep(self.session.settle_seconds)
        return ToolResult(success=True, output=self.session.read() or "(no new output)")

    def read_terminal(self, params: EmptyParams) -> ToolResult:
        output = self.session.read()
        state = "running" if self.session.is_alive() else "not running"
        return ToolResult(success=True, output=f"[process {state}]\n{output or '(no new output)'}")

    def kill_terminal(self, params: EmptyParams) -> ToolResult:
        was_alive = self.session.is_alive()
        self.session.kill()
        return ToolResult(success=True, output="Process terminated." if was_alive else "No process was running.")

    async def run_tests(self, params: CommandParams) -> ToolResult:
        self.test_surface.start_test(params.command, related_files=self.recent_files())
        try:
            stdout, stderr, rc = await asyncio.to_thread(
                self.backend.run_command, params.command, ".", params.timeout,
            )
        except Exception:
            self.test_surface.abandon_test()
            raise
        output = _format_command_output(stdout, stderr, rc)
        parsed = self.test_surface.parse_test_output(output)
        if rc != 0 and not parsed.get("failed_tests"):
            # Runner failed without a parsable summary (collection error, missing runner)
            parsed["status"] = "failed"
        result = self.test_surface.complete_test(**parsed)
        summary = (
            f"Tests {result.status}: {result.passed_tests} passed, {result.failed_tests} failed"
            + (f" in {result.duration}s" if result.duration is not None else "")
        )
        if result.failed_test_names:
            summary += "\nFailing: " + ", ".join(result.failed_test_names)
        return ToolResult(success=True, output=f"{summary}\n\n{output}", data=result.to_dict())

    def get_tools(self) -> List[Tool]:
        command_schema = {
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "Shell command to run in the workspace root"},
                "timeout": {"type": "integer", "description": "Seconds before the command is killed (default 120)"},
            },
            "required": ["command"],
        }
        return [
            Tool(
                name="run_command",
                description="Run a shell command to completion and return its output and exit code.",
                parameters=command_schema,
                handler=self.run_command,
                groups=(ACTING,),
                surface="terminal",
                params_type=CommandParams,
            ),
            Tool(
                name="spawn_command",
                description="Start a long-running or interactive command (replaces any running one). "
                            "Returns the first output.",
                parameters={
                    "type": "object",
                    "properties": {"command": {"type": "string", "description": "Command to start"}},
                    "required": ["command"],
                },
                handler=self.spawn_command,
                groups=(ACTING,),
                surface="terminal",
                params_type=SpawnParams,
            ),
            Tool(
                name="send_terminal_input",
                description="Send a line of input to the running interactive process.",
                parameters={
                    "type": "object",
                    "properties": {"input": {"type": "string", "description": "Text to send (newline appended)"}},
                    "required": ["input"],
                },
                handler=self.send_terminal_input,
                groups=(ACTING,),
                surface="terminal",
                params_type=TerminalInputParams,
            ),
            Tool(
                name="read_terminal",
                description="Read output produced by the interactive process since the last read.",
                parameters={"type": "object", "properties": {}},
                handler=self.read_terminal,
                groups=(PLANNING, ACTING),
                surface="terminal",
                params_type=EmptyParams,
            ),
            Tool(
                name="kill_terminal",
                description="Terminate the running interactive process.",
                parameters={"type": "object", "properties": {}},
                handler=self.kill_terminal,
                groups=(ACTING,),
                surface="terminal",
                params_type=EmptyParams,
            ),
            Tool(
                name="run_tests",
                description="Run the test suite command and record the results (pytest and vitest summaries are parsed).",
                parameters=command_schema,
                handler=self.run_tests,
                groups=(ACTING,),
                surface="test",
                params_type=CommandParams,
            ),
        ]
