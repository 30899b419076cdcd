"""MCP tool implementations for streamrelay."""

from streamrelay.tools.principal import tool_principal
from streamrelay.tools.task_active import task_active
from streamrelay.tools.task_cancel import task_cancel
from streamrelay.tools.task_conversation import task_conversation
from streamrelay.tools.task_status import task_status

__all__ = [
    "tool_principal",
    "task_active",
    "task_cancel",
    "task_conversation",
    "task_status",
]
