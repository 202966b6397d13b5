"""Tool implementations for the LLM agent.

Importing this package ensures all tools are registered with the
:data:`~expensechat.tools.registry.default_registry`.
"""

# Import tool modules so their @default_registry.tool decorators execute.
from expensechat.tools import classification, conversation  # noqa: F401
from expensechat.tools.registry import default_registry

__all__ = ["default_registry"]
