"""Execution state tracking for the agents of a stack run."""

import copy
import json
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional
from loguru import logger

from .errors import AgentNotFoundError, ContextNotFoundError, InvalidTransitionError


class ExecutionStatus(Enum):
    """Status of an agent in a stack execution."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.BLOCKED)


# Allowed forward moves; anything else is rejected.
_TRANSITIONS = {
    ExecutionStatus.PENDING: {ExecutionStatus.RUNNING, ExecutionStatus.BLOCKED},
    ExecutionStatus.RUNNING: {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED},
}


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class AgentState:
    """State of a single agent within one execution."""
    id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    inputs: Dict[str, Any] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    error_message: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.start_time is None or self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    def copy(self) -> "AgentState":
        """Deep copy, detached from the state manager."""
        return AgentState(
            id=self.id,
            status=self.status,
            inputs=copy.deepcopy(self.inputs),
            outputs=copy.deepcopy(self.outputs),
            start_time=self.start_time,
            end_time=self.end_time,
            error_message=self.error_message,
            error_type=self.error_type,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "status": self.status.value,
            "inputs": self.inputs,
            "outputs": self.outputs,
            "start_time": _isoformat(self.start_time),
            "end_time": _isoformat(self.end_time),
            "error_message": self.error_message,
            "error_type": self.error_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentState":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            status=ExecutionStatus(data.get("status", ExecutionStatus.PENDING.value)),
            inputs=data.get("inputs") or {},
            outputs=data.get("outputs") or {},
            start_time=_parse_time(data.get("start_time")),
            end_time=_parse_time(data.get("end_time")),
            error_message=data.get("error_message"),
            error_type=data.get("error_type"),
        )


@dataclass
class StackExecutionSummary:
    """Aggregate view of a stack execution, derived from the state manager."""
    stack_name: str
    execution_id: Optional[str]
    start_time: datetime
    end_time: Optional[datetime]
    total_agents: int
    completed_count: int
    failed_count: int
    blocked_count: int
    pending_count: int
    running_count: int
    agent_states: Dict[str, AgentState]

    @property
    def status(self) -> str:
        """Overall status: "success", "partial" or "failed"."""
        if self.failed_count > 0:
            return "failed"
        if self.completed_count < self.total_agents:
            return "partial"
        return "success"

    @property
    def execution_time_seconds(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        elapsed = self.execution_time_seconds
        return {
            "stack_name": self.stack_name,
            "execution_id": self.execution_id,
            "status": self.status,
            "start_time": _isoformat(self.start_time),
            "end_time": _isoformat(self.end_time),
            "execution_time_seconds": round(elapsed, 3) if elapsed is not None else None,
            "total_agents": self.total_agents,
            "completed_count": self.completed_count,
            "failed_count": self.failed_count,
            "blocked_count": self.blocked_count,
            "pending_count": self.pending_count,
            "running_count": self.running_count,
            "agent_states": {
                agent_id: state.to_dict() for agent_id, state in self.agent_states.items()
            },
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        """Serialize to JSON; non-JSON values are stringified."""
        return json.dumps(self.to_dict(), indent=indent, default=str)


class StateManager:
    """Authoritative per-agent status for one stack execution.

    A single lock guards the agent map. Public methods take the lock once and
    never call another locking method while holding it.
    """

    def __init__(self, stack_name: str, execution_id: Optional[str] = None):
        """Initialize state manager.

        Args:
            stack_name: Name of the stack being executed
            execution_id: Id of the execution this state belongs to
        """
        self.stack_name = stack_name
        self.execution_id = execution_id
        self._start_time = datetime.now()
        self._end_time: Optional[datetime] = None
        self._states: Dict[str, AgentState] = {}
        self._lock = threading.Lock()

    def _require(self, agent_id: str) -> AgentState:
        state = self._states.get(agent_id)
        if state is None:
            raise AgentNotFoundError(agent_id)
        return state

    def initialize_agents(self, agent_ids: Iterable[str]) -> None:
        """Create a pending state for every agent, discarding previous states.

        Args:
            agent_ids: Agent ids in declaration order
        """
        with self._lock:
            self._states = {agent_id: AgentState(id=agent_id) for agent_id in agent_ids}
            self._start_time = datetime.now()
            self._end_time = None
            count = len(self._states)

        logger.debug(f"[STATE] Initialized {count} agents for '{self.stack_name}'")

    def update_status(self, agent_id: str, status: ExecutionStatus) -> None:
        """Move an agent to a new status.

        Args:
            agent_id: Agent id
            status: Target status

        Raises:
            AgentNotFoundError: If the agent is unknown
            InvalidTransitionError: If the move is not a forward transition
        """
        with self._lock:
            state = self._require(agent_id)
            previous = state.status

            if status not in _TRANSITIONS.get(previous, set()):
                raise InvalidTransitionError(agent_id, previous, status)

            state.status = status
            now = datetime.now()
            if status == ExecutionStatus.RUNNING and state.start_time is None:
                state.start_time = now
            elif status.is_terminal and state.end_time is None:
                state.end_time = now

        logger.debug(f"[STATE] '{agent_id}': {previous.value} -> {status.value}")

    def get_status(self, agent_id: str) -> ExecutionStatus:
        """Get the current status of an agent."""
        with self._lock:
            return self._require(agent_id).status

    def set_error(self, agent_id: str, error: Any) -> None:
        """Record the error that failed or blocked an agent.

        Args:
            agent_id: Agent id
            error: Exception instance or message
        """
        with self._lock:
            state = self._require(agent_id)
            state.error_message = str(error)
            state.error_type = type(error).__name__ if isinstance(error, BaseException) else None

    def get(self, agent_id: str, key: str) -> Any:
        """Get a value from an agent's state.

        ``"input"`` and ``"output"`` return the whole inputs/outputs mapping;
        any other key is looked up in the outputs.

        Raises:
            AgentNotFoundError: If the agent is unknown
            ContextNotFoundError: If the key is not present
        """
        with self._lock:
            state = self._require(agent_id)
            if key == "input":
                return copy.deepcopy(state.inputs)
            if key == "output":
                return copy.deepcopy(state.outputs)
            if key not in state.outputs:
                raise ContextNotFoundError(agent_id, key)
            return copy.deepcopy(state.outputs[key])

    def set(self, agent_id: str, key: str, value: Any) -> None:
        """Store a value in an agent's state.

        ``"input"`` and ``"output"`` replace the whole mapping and require a
        mapping value; any other key is stored in the outputs. The value is
        deep-copied.
        """
        if key in ("input", "output") and not isinstance(value, Mapping):
            raise TypeError(f"{key} must be a mapping, got {type(value).__name__}")

        with self._lock:
            state = self._require(agent_id)
            if key == "input":
                state.inputs = copy.deepcopy(dict(value))
            elif key == "output":
                state.outputs = copy.deepcopy(dict(value))
            else:
                state.outputs[key] = copy.deepcopy(value)

        logger.debug(f"[STATE] Set '{agent_id}'.{key} = {str(value)[:100]}")

    def get_agent_state(self, agent_id: str) -> AgentState:
        """Get a detached copy of an agent's full state."""
        with self._lock:
            return self._require(agent_id).copy()

    def clear(self, agent_id: str) -> None:
        """Discard an agent's record and reset it to pending."""
        with self._lock:
            self._require(agent_id)
            self._states[agent_id] = AgentState(id=agent_id)

        logger.debug(f"[STATE] Cleared '{agent_id}'")

    def finish(self) -> None:
        """Stamp the end time of the execution (first call wins)."""
        with self._lock:
            if self._end_time is None:
                self._end_time = datetime.now()

    def get_summary(self) -> StackExecutionSummary:
        """Aggregate counts over all agents.

        Returns:
            Deep copy of the current execution summary
        """
        with self._lock:
            counts = {status: 0 for status in ExecutionStatus}
            states = {}
            for agent_id, state in self._states.items():
                counts[state.status] += 1
                states[agent_id] = state.copy()

            return StackExecutionSummary(
                stack_name=self.stack_name,
                execution_id=self.execution_id,
                start_time=self._start_time,
                end_time=self._end_time,
                total_agents=len(states),
                completed_count=counts[ExecutionStatus.COMPLETED],
                failed_count=counts[ExecutionStatus.FAILED],
                blocked_count=counts[ExecutionStatus.BLOCKED],
                pending_count=counts[ExecutionStatus.PENDING],
                running_count=counts[ExecutionStatus.RUNNING],
                agent_states=states,
            )

    def export_json(self, filepath: str) -> None:
        """Export state to JSON file.

        Args:
            filepath: Path to JSON file
        """
        with open(filepath, "w") as f:
            f.write(self.get_summary().to_json())
        logger.info(f"[STATE] Exported to {filepath}")

    def import_json(self, filepath: str) -> None:
        """Import state from a JSON file written by ``export_json``.

        Args:
            filepath: Path to JSON file
        """
        with open(filepath, "r") as f:
            data = json.load(f)

        states = {
            agent_id: AgentState.from_dict(entry)
            for agent_id, entry in data.get("agent_states", {}).items()
        }

        with self._lock:
            self.stack_name = data.get("stack_name", self.stack_name)
            self.execution_id = data.get("execution_id", self.execution_id)
            self._start_time = _parse_time(data.get("start_time")) or self._start_time
            self._end_time = _parse_time(data.get("end_time"))
            self._states = states

        logger.info(f"[STATE] Imported from {filepath}")

    def __repr__(self) -> str:
        return f"StateManager(stack={self.stack_name!r}, agents={len(self._states)})"
