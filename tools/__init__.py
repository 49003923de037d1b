"""
Tool sets for the coding agent.

Every effect the agent has on its environment goes through a ToolRouter. Each
tool set class wraps one workspace resource and publishes its tools (JSON
schema, handler, capability groups, flow surface) via ``get_tools()``.
"""

from tools._common import ToolResult  # noqa: F401
from tools.router import (  # noqa: F401
    Tool,
    ToolRouter,
    ToolNotFound,
    ToolArgumentError,
    PLANNING,
    ACTING,
)
from tools.file_ops import FileTools  # noqa: F401
from tools.shell_ops import ShellTools  # noqa: F401
from tools.lsp_ops import LSPTools  # noqa: F401
from tools.handover import HandoverTools, EXPERT_TYPES  # noqa: F401
