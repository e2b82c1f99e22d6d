"""Exception hierarchy for HouseBot."""


class HouseBotError(Exception):
    """Base class for all HouseBot errors."""


class ConfigurationError(HouseBotError, ValueError):
    """Invalid or missing configuration. Fatal at startup."""


class ToolExecutionError(HouseBotError):
    """A tool invocation failed. Reported back to the model, never fatal."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(message)
        self.tool_name = tool_name


class UnknownToolError(ToolExecutionError):
    """No registered capability provider owns the requested tool."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(tool_name, f"No provider found for tool: {tool_name}")


class DuplicateToolError(ConfigurationError):
    """Two capability providers declare the same tool name."""

    def __init__(self, tool_name: str, existing: str, incoming: str) -> None:
        super().__init__(
            f"Tool '{tool_name}' from provider '{incoming}' is already registered by '{existing}'"
        )
        self.tool_name = tool_name


class PersistenceError(HouseBotError):
    """Conversation history could not be read or written."""
