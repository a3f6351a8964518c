from typing import Any, Dict
from pydantic import BaseModel, ValidationError

from kindred.domain.exceptions import ToolArgumentsError
from .base_tool import BaseTool


class ToolArgumentValidator:
    """Validates provider-supplied tool arguments against the tool's schema"""

    @staticmethod
    def validate(tool: BaseTool, arguments: Dict[str, Any]) -> BaseModel:
        try:
            return tool.args_schema.model_validate(arguments or {})
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in e.errors()
            ]
            raise ToolArgumentsError(
                f"invalid arguments for {tool.name}: {'; '.join(errors)}",
                tool_name=tool.name,
                errors=errors
            ) from e
