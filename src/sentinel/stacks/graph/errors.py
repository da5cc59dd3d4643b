"""Exceptions raised by the stack execution engine."""

from typing import Any, List, Optional, Sequence


class StackError(Exception):
    """Base exception for stack engine errors."""
    pass


class StackValidationError(StackError):
    """Raised when a stack specification is structurally invalid."""
    pass


class InvalidStackError(StackValidationError):
    """Raised for stacks with no agents or agents with an empty id."""
    pass


class DuplicateAgentIDError(StackValidationError):
    """Raised when two agents in a stack share an id."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Duplicate agent ID detected: '{agent_id}'")


class UnknownDependencyError(StackValidationError):
    """Raised when an agent takes input from an undeclared agent."""

    def __init__(self, agent_id: str, missing_id: str):
        self.agent_id = agent_id
        self.missing_id = missing_id
        super().__init__(
            f"Agent '{agent_id}' takes input from non-existent agent '{missing_id}'"
        )


class CycleDetectedError(StackValidationError):
    """Raised when agent dependencies form a cycle.

    ``path`` lists the ids along the cycle and ends with the id it started
    from, e.g. ``["agent2", "agent3", "agent2"]``.
    """

    def __init__(self, path: Sequence[str]):
        self.path: List[str] = list(path)
        super().__init__(f"Cycle detected in agent dependencies: {' -> '.join(self.path)}")


class AgentError(StackError):
    """Base class for per-agent runtime errors.

    These are recorded on the agent's state by the executor rather than
    raised to the caller.
    """

    def __init__(self, agent_id: str, message: str):
        self.agent_id = agent_id
        super().__init__(message)


class MissingInputError(AgentError):
    """A predecessor never produced an output; the agent becomes blocked."""

    def __init__(self, agent_id: str, missing_id: str, reason: str = "produced no output"):
        self.missing_id = missing_id
        super().__init__(
            agent_id,
            f"Agent '{agent_id}' is missing input from '{missing_id}' ({reason})"
        )


class AgentExecutionError(AgentError):
    """The runtime adapter raised or returned an unusable result."""

    def __init__(self, agent_id: str, cause: Any):
        self.cause = cause
        super().__init__(agent_id, f"Agent '{agent_id}' execution failed: {cause}")


class AgentTimeoutError(AgentError):
    """The runtime adapter exceeded the agent's deadline."""

    def __init__(self, agent_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(agent_id, f"Agent '{agent_id}' timed out after {timeout:.2f}s")


class StackCancelledError(StackError):
    """The whole execution was cancelled before every batch could start.

    The partial summary is attached so callers can inspect what ran.
    """

    def __init__(self, summary: Optional[Any] = None, message: str = "Stack execution cancelled"):
        self.summary = summary
        super().__init__(message)


class InternalSchedulingError(StackError):
    """Nodes remained unplaceable after scheduling a validated graph."""

    def __init__(self, remaining: Sequence[str]):
        self.remaining: List[str] = list(remaining)
        super().__init__(f"Unable to determine execution order for: {self.remaining}")


class InvalidTransitionError(StackError):
    """An agent status change would move backwards or repeat a state."""

    def __init__(self, agent_id: str, current: Any, requested: Any):
        self.agent_id = agent_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Invalid status transition for agent '{agent_id}': "
            f"{getattr(current, 'value', current)} -> {getattr(requested, 'value', requested)}"
        )


class AgentNotFoundError(StackError, KeyError):
    """No state is tracked for the requested agent."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Agent not found: '{agent_id}'")

    def __str__(self) -> str:
        return self.args[0]


class ContextNotFoundError(StackError, KeyError):
    """A context store lookup found no entry."""

    def __init__(self, namespace: Any, key: str):
        self.namespace = namespace
        self.key = key
        super().__init__(f"Key not found: '{key}' in namespace {namespace}")

    def __str__(self) -> str:
        return self.args[0]
