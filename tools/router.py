"""
Tool router: the registry every agent effect goes through.

Each tool carries a JSON schema for the model and, optionally, a parameter
dataclass used to validate arguments before the handler runs. Handler
exceptions propagate to the caller untouched.
"""

import dataclasses
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

logger = logging.getLogger(__name__)

PLANNING = "planning"
ACTING = "acting"


class ToolNotFound(KeyError):
    """No tool is registered under the requested name."""

    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Tool not found: {self.name}"


class ToolArgumentError(ValueError):
    """Arguments do not match the tool's parameter type."""


@dataclass
class Tool:
    name: str
    description: str
    parameters: Dict[str, Any]
    handler: Callable[..., Any]
    groups: Tuple[str, ...] = (PLANNING, ACTING)
    surface: str = "editor"
    params_type: Optional[Type[Any]] = None

    def definition(self) -> Dict[str, Any]:
        """Schema published to the generation capability."""
        return {"name": self.name, "description": self.description, "parameters": self.parameters}


@dataclass
class ToolRouter:
    tools: Dict[str, Tool] = field(default_factory=dict)

    def register(self, tool: Tool) -> None:
        if tool.name in self.tools:
            logger.warning(f"Tool {tool.name} already registered; overwriting")
        self.tools[tool.name] = tool

    def register_all(self, tools: List[Tool]) -> None:
        for tool in tools:
            self.register(tool)

    def get(self, name: str) -> Optional[Tool]:
        return self.tools.get(name)

    def get_tools(self, group: Optional[str] = None) -> List[Tool]:
        if group is None:
            return list(self.tools.values())
        return [t for t in self.tools.values() if group in t.groups]

    def get_tool_definitions(self, group: Optional[str] = None) -> List[Dict[str, Any]]:
        return [t.definition() for t in self.get_tools(group)]

    def _bind(self, tool: Tool, args: Dict[str, Any]) -> Any:
        if tool.params_type is None:
            return None
        known = {f.name for f in dataclasses.fields(tool.params_type)}
        unknown = sorted(set(args) - known)
        if unknown:
            raise ToolArgumentError(f"{tool.name}: unexpected argument(s) {', '.join(unknown)}")
        try:
            return tool.params_type(**args)
        except (TypeError, ValueError) as e:
            raise ToolArgumentError(f"{tool.name}: {e}") from e

    async def execute_tool(self, name: str, args: Optional[Dict[str, Any]] = None) -> Any:
        tool = self.tools.get(name)
        if tool is None:
            raise ToolNotFound(name)
        args = dict(args or {})
        params = self._bind(tool, args)
        logger.info(f"Executing tool: {name}")
        result = tool.handler(params) if params is not None else tool.handler(**args)
        if inspect.isawaitable(result):
            result = await result
        return result

