import time
import structlog

from kindred.domain.exceptions import ToolDispatchError, UnknownToolError
from kindred.domain.models import ToolCall, ToolResult
from .tool_registry import ToolRegistry
from .tool_validator import ToolArgumentValidator

logger = structlog.get_logger(__name__)


class ToolExecutor:
    """Resolves a provider tool call to its handler and runs it"""

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def execute(self, call: ToolCall) -> ToolResult:
        tool = self.registry.get_tool(call.name)
        if tool is None:
            raise UnknownToolError(call.name)

        arguments = ToolArgumentValidator.validate(tool, call.arguments)

        start = time.perf_counter()
        try:
            content = await tool.run(arguments)
        except ToolDispatchError:
            raise
        except Exception as e:
            raise ToolDispatchError(f"tool {call.name} failed: {e}", tool_name=call.name) from e

        logger.info(
            "Tool executed",
            tool_name=call.name,
            call_id=call.id,
            duration_ms=round((time.perf_counter() - start) * 1000, 2)
        )

        return ToolResult(call_id=call.id, name=call.name, content=content)
