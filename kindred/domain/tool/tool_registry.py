from typing import Dict, List, Optional
import structlog

from kindred.domain.models import ToolDefinition
from .base_tool import BaseTool

logger = structlog.get_logger(__name__)


class ToolRegistry:
    """Dispatch table from tool name to tool"""

    def __init__(self, tools: Optional[List[BaseTool]] = None):
        self.tools: Dict[str, BaseTool] = {}
        for tool in tools or []:
            self.register_tool(tool)

    def register_tool(self, tool: BaseTool) -> None:
        """Register a new tool, replacing any tool with the same name"""

        if tool.name in self.tools:
            logger.warning("Replacing registered tool", tool_name=tool.name)
        self.tools[tool.name] = tool

    def get_tool(self, name: str) -> Optional[BaseTool]:
        return self.tools.get(name)

    def get_available_tools(self) -> List[ToolDefinition]:
        """Definitions of all registered tools"""
        return [tool.definition() for tool in self.tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self.tools

    def __len__(self) -> int:
        return len(self.tools)
