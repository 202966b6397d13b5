"""Registry of the structured-output tools offered to the LLM.

The engine never lets the LLM act: every tool is a *pass-through* whose
handler only validates the call's arguments into a pydantic model.  A
collaborator forces one tool per request (``tool_choice``) and then hands
the response's tool calls to :meth:`ToolRegistry.invoke`, which picks the
call for that tool and returns the validated model.

Schemas are exported in OpenAI function-calling format, which every
:class:`~expensechat.agent.llm_client.LLMClient` backend accepts.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from expensechat.agent.llm_client import ToolCall

logger = logging.getLogger(__name__)

ToolHandler = Callable[..., Coroutine[Any, Any, Any]]


class ToolCallError(ValueError):
    """The LLM response did not contain a usable call for the forced tool."""

    def __init__(self, tool: str, detail: str) -> None:
        self.tool = tool
        super().__init__(f"{tool}: {detail}")


@dataclass
class ToolDef:
    """One tool the LLM may be asked to call."""

    name: str

    #: Shown to the LLM next to the schema.
    description: str

    #: JSON Schema of the call's arguments.
    parameters_schema: dict[str, Any]

    #: Validates the arguments; returns the structured result.
    handler: ToolHandler

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema,
            },
        }


class ToolRegistry:
    """Name -> :class:`ToolDef` map with schema export and dispatch.

    Usage::

        registry = ToolRegistry()

        @registry.tool(
            name="categorize_expense",
            description="Suggest a category for an expense.",
            parameters_schema={"type": "object", "properties": {...}},
        )
        async def categorize_expense(**arguments) -> CategorySuggestion:
            ...

        tools = registry.get_tools_for_llm(["categorize_expense"])
        response = await llm.chat(messages, tools=tools, tool_choice="categorize_expense")
        suggestion = await registry.invoke(response.tool_calls, "categorize_expense")
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDef] = {}

    def tool(
        self,
        *,
        name: str,
        description: str,
        parameters_schema: dict[str, Any],
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of :meth:`register`; returns the function unchanged."""

        def decorator(func: ToolHandler) -> ToolHandler:
            self.register(
                name=name,
                description=description,
                parameters_schema=parameters_schema,
                handler=func,
            )
            return func

        return decorator

    def register(
        self,
        *,
        name: str,
        description: str,
        parameters_schema: dict[str, Any],
        handler: ToolHandler,
    ) -> None:
        """Add a tool.

        Raises:
            ValueError: If *name* is already registered.
        """
        if name in self._tools:
            raise ValueError(f"Tool '{name}' is already registered")
        self._tools[name] = ToolDef(name, description, parameters_schema, handler)
        logger.debug("Registered tool: %s", name)

    def get_tool(self, name: str) -> ToolDef | None:
        return self._tools.get(name)

    def list_tools(self) -> list[ToolDef]:
        return list(self._tools.values())

    def get_tools_for_llm(self, names: Iterable[str] | None = None) -> list[dict[str, Any]]:
        """Export schemas in OpenAI function-calling format.

        Args:
            names: Only export these tools, in registration order (all tools
                when ``None``).
        """
        wanted = None if names is None else set(names)
        return [
            tool_def.to_openai()
            for tool_def in self._tools.values()
            if wanted is None or tool_def.name in wanted
        ]

    async def execute_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        """Run the handler of *name* with *arguments* as keyword arguments.

        Raises:
            KeyError: If the tool is not registered.
            TypeError: If required arguments are missing.
            pydantic.ValidationError: If the arguments have the wrong shape.
        """
        tool_def = self._tools.get(name)
        if tool_def is None:
            raise KeyError(f"Unknown tool: '{name}'")
        logger.debug("Executing tool %s with %s", name, arguments)
        return await tool_def.handler(**arguments)

    async def invoke(self, tool_calls: Iterable[ToolCall], name: str) -> Any:
        """Validate the first call to *name* among *tool_calls*.

        Other tool calls in the response are ignored.

        Raises:
            KeyError: If the tool is not registered.
            ToolCallError: If there is no call to *name*, or its arguments
                do not validate.
        """
        call = next((tc for tc in tool_calls if tc.name == name), None)
        if call is None:
            raise ToolCallError(name, "no tool call in response")
        try:
            return await self.execute_tool(name, call.arguments)
        except (TypeError, ValueError) as exc:
            raise ToolCallError(name, f"malformed tool arguments: {exc}") from exc


# Tool modules register themselves here on import.
default_registry = ToolRegistry()
