"""Exception types raised by agent-memory."""


class AgentMemoryError(Exception):
    """Base exception for agent-memory errors."""

    pass


class NotInitializedError(AgentMemoryError):
    """Raised when a component is used before initialize()."""

    pass


class ConfigurationError(AgentMemoryError):
    """Raised when there's a configuration problem."""

    pass
