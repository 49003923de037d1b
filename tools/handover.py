"""
Handover tool: delegate a sub-task to an expert sub-agent.

The sub-agent is a full agent instance built by an injected factory. It shares
the caller's workspace context (shadow store, vector index, sessions) but owns
its own terminal and language server. Delegation depth is passed explicitly;
at the ceiling the tool answers with a refusal instead of raising.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List

from tools._common import ToolResult, require_text
from tools.router import Tool

logger = logging.getLogger(__name__)

EXPERT_TYPES = ("researcher", "reviewer", "coder")
_EMPTY_REPORT = "The expert completed the task but provided no summary."


@dataclass
class DelegateParams:
    goal: str
    expert_type: str

    def __post_init__(self):
        require_text(self.goal, "goal")
        if self.expert_type not in EXPERT_TYPES:
            raise ValueError(f"expert_type must be one of: {', '.join(EXPERT_TYPES)}")


class HandoverTools:
    def __init__(self, agent_factory: Callable[[str, int], Any], depth: int, max_depth: int = 3):
        """
        Args:
            agent_factory: Called as ``agent_factory(persona, depth)``; returns an
                object with a coroutine ``execute(goal) -> str``.
            depth: Delegation depth of the calling agent (0 for the root).
            max_depth: Ceiling on the depth of a spawned expert; delegation that
                would reach it is refused.
        """
        self.agent_factory = agent_factory
        self.depth = depth
        self.max_depth = max_depth

    async def delegate_task(self, params: DelegateParams) -> ToolResult:
        child_depth = self.depth + 1
        if child_depth >= self.max_depth:
            logger.warning(f"Delegation refused at depth {self.depth}")
            return ToolResult(
                success=True,
                output=f"Error: Maximum delegation depth reached ({self.max_depth}). "
                       f"Please handle the task directly.",
                data={"refused": True},
            )
        logger.info(f"Delegating to {params.expert_type} at depth {child_depth}: {params.goal[:80]}")
        expert = self.agent_factory(params.expert_type, child_depth)
        report = await expert.execute(params.goal)
        return ToolResult(
            success=True,
            output=f"EXPERT ({params.expert_type}) REPORT:\n{report or _EMPTY_REPORT}",
            data={"expert_type": params.expert_type, "depth": child_depth},
        )

    def get_tools(self) -> List[Tool]:
        return [
            Tool(
                name="delegate_task",
                description="Hand a well-scoped sub-task to an expert sub-agent (researcher, reviewer or coder) "
                            "and receive its report. The expert shares staged file changes with you.",
                parameters={
                    "type": "object",
                    "properties": {
                        "goal": {"type": "string", "description": "What the expert should accomplish"},
                        "expert_type": {"type": "string", "enum": list(EXPERT_TYPES)},
                    },
                    "required": ["goal", "expert_type"],
                },
                handler=self.delegate_task,
                surface="docs",
                params_type=DelegateParams,
            ),
        ]
