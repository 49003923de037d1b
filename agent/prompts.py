"""
Prompt architecture for the agent loop.

System prompts are assembled from module-level fragments (identity, persona,
mode, workflow hints). User prompts combine the goal, engineering tension,
a pruned flow narrative, and retrieved workspace context.
"""

import json
from typing import Any, List, Optional

from agent.flow import FlowEntry
from agent.memory import TelemetryEntry


# ============================================================
# Prompt fragments
# ============================================================

_MOD_IDENTITY = """You are Flowcode, an autonomous software engineer working inside a real workspace.
You reach your goal by planning, acting through the tools you are given, and reflecting on what you observe.
Investigate before changing code and verify after changing it. Never guess when you can check."""

_MOD_COMPLETION = """When the goal is fully achieved, reply without calling any tool and state "Task complete" followed by a short summary."""

_MOD_WORKFLOW_LSP = """IMPORTANT WORKFLOW - CODE INTELLIGENCE (LSP):
1. Use 'go_to_definition', 'find_references', 'list_symbols', and 'get_hover' to explore code.
2. LSP tools use 0-indexed line and character positions."""

_MOD_WORKFLOW_SHADOW = """IMPORTANT WORKFLOW - SHADOW FILESYSTEM:
1. 'write_file' stages changes in a shadow filesystem; the real file is untouched.
2. Verify staged changes with 'read_file', then call 'commit_changes' to apply or 'discard_changes' to revert."""

_MOD_WORKFLOW_TERMINAL = """IMPORTANT WORKFLOW - INTERACTIVE TERMINAL:
1. Use 'run_command' for quick commands and 'run_tests' for test suites.
2. Use 'spawn_command' for long-running or interactive processes.
3. Poll with 'read_terminal' and answer prompts with 'send_terminal_input'."""

_MOD_WORKFLOW_DELEGATION = """IMPORTANT WORKFLOW - DELEGATION:
Use 'delegate_task' to hand a self-contained sub-goal to a researcher, reviewer, or coder expert."""

WORKFLOW_MODULES = [
    _MOD_WORKFLOW_LSP,
    _MOD_WORKFLOW_SHADOW,
    _MOD_WORKFLOW_TERMINAL,
    _MOD_WORKFLOW_DELEGATION,
]

PERSONAS = {
    "researcher": "Investigate the codebase and report findings with file and symbol references. Do not modify files.",
    "reviewer": "Review code for correctness, safety and maintainability. Report concrete issues ranked by severity.",
    "coder": "Implement the requested change with minimal, focused edits and verify it with tests.",
}

TRUNCATED_MARKER = "(Truncated)"


class PromptFactory:
    def __init__(self, observation_limit: int = 500, flow_window: int = 30):
        self.observation_limit = observation_limit
        self.flow_window = flow_window

    # ------------------------------------------------------------------
    # System prompt
    # ------------------------------------------------------------------

    def generate_system_prompt(
        self,
        persona: Optional[str] = None,
        include_workflows: bool = False,
        agent_status: Optional[str] = None,
    ) -> str:
        parts = [_MOD_IDENTITY]
        if persona:
            role = f"[ROLE: {persona.upper()}]"
            if persona.lower() in PERSONAS:
                role += f"\n{PERSONAS[persona.lower()]}"
            parts.append(role)
        if agent_status:
            parts.append(f"CURRENT MODE: {str(agent_status).upper()}")
        if include_workflows:
            parts.extend(WORKFLOW_MODULES)
        parts.append(_MOD_COMPLETION)
        return "\n\n".join(parts) + "\n"

    # ------------------------------------------------------------------
    # User prompts
    # ------------------------------------------------------------------

    def generate_user_prompt(self, goal: str, context: str = "") -> str:
        prompt = f"GOAL: {goal}\n\n"
        if context:
            prompt += f"CONTEXT:\n{context}\n\n"
        return prompt

    def generate_flow_aware_prompt(
        self,
        goal: str,
        context: str,
        flow: List[FlowEntry],
        test_surface: Any = None,
        telemetry: Optional[List[TelemetryEntry]] = None,
    ) -> str:
        sections = [f"GOAL: {goal}"]

        tension = self.detect_tension(flow, test_surface, telemetry)
        if tension:
            sections.append("CURRENT ENGINEERING TENSION:\n" + "\n".join(f"- {t}" for t in tension))

        narrative = self.build_narrative(flow)
        if narrative:
            sections.append(f"RECENT FLOW:\n{narrative}")

        if context:
            sections.append(f"CONTEXT:\n{context}")

        return "\n\n".join(sections) + "\n"

    # ------------------------------------------------------------------
    # Engineering tension
    # ------------------------------------------------------------------

    def detect_tension(
        self,
        flow: List[FlowEntry],
        test_surface: Any = None,
        telemetry: Optional[List[TelemetryEntry]] = None,
    ) -> List[str]:
        """Unresolved friction, most important first."""
        tension: List[str] = []

        corrections = [e for e in flow if e.type == "human_intervention"]
        if corrections:
            tension.append(f"User corrected approach mid-task: {_render_content(corrections[-1].content)}")

        summary = test_surface.get_tension_summary() if test_surface is not None else None
        if summary:
            line = f"Tests failing after recent changes: {summary}"
            files: List[str] = []
            for analysis in test_surface.analyze_failures(flow):
                files.extend(f for f in analysis.affected_files if f not in files)
            if files:
                line += f" (recently edited: {', '.join(files)})"
            tension.append(line)
        else:
            test_obs = [e for e in flow if e.type == "observation" and e.surface == "test"]
            if test_obs and "fail" in _render_content(test_obs[-1].content).lower():
                tension.append("Tests failing after recent changes")

        failures = [t for t in (telemetry or []) if t.kind == "tool_failure"]
        if failures:
            tools = sorted({t.metadata.get("tool", "?") for t in failures})
            tension.append(
                f"{len(failures)} tool call(s) failed so far ({', '.join(tools)}); try a different approach"
            )
        return tension

    # ------------------------------------------------------------------
    # Narrative
    # ------------------------------------------------------------------

    def prune(self, flow: List[FlowEntry]) -> List[FlowEntry]:
        """Last `flow_window` entries, plus every older human intervention."""
        if len(flow) <= self.flow_window:
            return list(flow)
        cutoff = len(flow) - self.flow_window
        return [e for i, e in enumerate(flow) if i >= cutoff or e.type == "human_intervention"]

    def build_narrative(self, flow: List[FlowEntry]) -> str:
        lines = []
        for entry in self.prune(flow):
            label = f"[{entry.type.upper()}/{entry.surface}]"
            if entry.type == "observation":
                if entry.status == "error":
                    # Raw error text stays in telemetry
                    lines.append(f"{label} Tool call failed; see engineering tension.")
                    continue
                text = _render_content(entry.content)
                if len(text) > self.observation_limit:
                    text = f"{text[:self.observation_limit]}... {TRUNCATED_MARKER}"
                lines.append(f"{label} {text}")
            else:
                lines.append(f"{label} {_render_content(entry.content)}")
        return "\n".join(lines)


def _render_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    try:
        return json.dumps(content, default=str)
    except (TypeError, ValueError):
        return str(content)
