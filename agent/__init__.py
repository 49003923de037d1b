"""
Agent package - the coding agent loop and its supporting state.

- events: AgentStatus and the status channel
- flow: the causally linked flow store
- memory: conversational memory and the telemetry side-channel
- context: token estimation, completion detection, graduated truncation
- prompts: system/user prompt assembly and engineering tension
- evaluation: SWE quality and safety evaluation over a flow
- core: CoreAgent orchestrator and the shared AgentContext
"""

from .core import AgentContext, CoreAgent
from .events import AgentStatus, StatusChannel
from .flow import FlowEntry, FlowStore
from .memory import ConversationMemory, MemoryEntry, TelemetryEntry
from .prompts import PromptFactory, PERSONAS
from .evaluation import SWEEvaluator

__all__ = [
    "AgentContext",
    "CoreAgent",
    "AgentStatus",
    "StatusChannel",
    "FlowEntry",
    "FlowStore",
    "ConversationMemory",
    "MemoryEntry",
    "TelemetryEntry",
    "PromptFactory",
    "PERSONAS",
    "SWEEvaluator",
]
