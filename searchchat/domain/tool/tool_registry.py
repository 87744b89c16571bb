from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Any
import json

from searchchat.domain.capability.base import SearchCapability, ToolDefinition
from searchchat.domain.errors import ToolArgumentError, UnknownToolError


@dataclass(frozen=True)
class ToolOutput:
    """Result of running a tool once"""
    query: str
    content: str  # Text handed back to the model as the tool message
    urls: List[str] = field(default_factory=list)


class RegisteredTool(ABC):
    """A tool the model may invoke"""

    name: str = ""
    description: str = ""

    @abstractmethod
    def parameters_schema(self) -> Dict[str, Any]:
        """JSON Schema for the tool arguments"""
        ...

    @abstractmethod
    def validate_args(self, args: Dict[str, Any]) -> None:
        """Raise ToolArgumentError when args are unusable"""
        ...

    @abstractmethod
    async def execute(self, args: Dict[str, Any]) -> ToolOutput:
        ...

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters_schema(),
        )


class WebSearchTool(RegisteredTool):
    """Web search backed by the search capability"""

    name = "search"
    description = (
        "Search the web for current information. Use it for recent events, "
        "facts you are unsure about, or anything that needs a source."
    )

    def __init__(self, search: SearchCapability):
        self.search = search

    def parameters_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "The search query",
                },
            },
            "required": ["query"],
        }

    def validate_args(self, args: Dict[str, Any]) -> None:
        query = args.get("query")
        if not isinstance(query, str) or not query.strip():
            raise ToolArgumentError(self.name, "query must be a non-empty string")

    async def execute(self, args: Dict[str, Any]) -> ToolOutput:
        query = args["query"]
        results = await self.search.search(query)

        return ToolOutput(
            query=query,
            content=json.dumps([result.model_dump() for result in results], ensure_ascii=False),
            urls=[result.url for result in results],
        )


class ToolRegistry:
    """Registry of the tools declared to the model"""

    def __init__(self):
        self.tools: Dict[str, RegisteredTool] = {}

    def register_tool(self, tool: RegisteredTool):
        """Register a new tool"""

        if tool.name in self.tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self.tools[tool.name] = tool

    def get(self, name: str) -> RegisteredTool:
        """Get a registered tool by name"""

        tool = self.tools.get(name)
        if tool is None:
            raise UnknownToolError(name)
        return tool

    def definitions(self) -> List[ToolDefinition]:
        """Get the declarations handed to the model"""

        return [tool.definition() for tool in self.tools.values()]


def build_default_registry(search: SearchCapability) -> ToolRegistry:
    """Registry with the web search tool"""
    registry = ToolRegistry()
    registry.register_tool(WebSearchTool(search))
    return registry
