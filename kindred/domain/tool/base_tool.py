from abc import ABC, abstractmethod
from typing import Type
from pydantic import BaseModel

from kindred.domain.models import ToolDefinition


class BaseTool(ABC):
    """Base class for tools the completion provider may call"""

    name: str
    description: str
    args_schema: Type[BaseModel]

    @abstractmethod
    async def run(self, arguments: BaseModel) -> str:
        """Run the tool with validated arguments and return the tool result text"""
        pass

    def definition(self) -> ToolDefinition:
        """Describe this tool for the completion provider"""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.args_schema.model_json_schema()
        )
