"""Context store carrying agent inputs, outputs and scratch state across a run."""

import copy
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Tuple
from loguru import logger

from .errors import ContextNotFoundError

# (execution_id, scope, ...) - the first element is always the execution id.
Namespace = Tuple[str, ...]

INPUT_SLOT = "input"
OUTPUT_SLOT = "output"
STATE_SLOT = "state"


def agent_namespace(execution_id: str, agent_id: str) -> Namespace:
    """Private namespace of one agent within an execution."""
    return (execution_id, "agent", agent_id)


def stack_namespace(execution_id: str) -> Namespace:
    """Namespace shared by all agents of an execution."""
    return (execution_id, "stack")


def shared_output_key(agent_id: str) -> str:
    """Key under which an agent's output is visible to other agents."""
    return f"agent_{agent_id}_output"


class ContextBackend(ABC):
    """Abstract base class for context storage backends."""

    @abstractmethod
    def save(self, namespace: Namespace, key: str, value: Any) -> None:
        """Store a value."""
        pass

    @abstractmethod
    def load(self, namespace: Namespace, key: str) -> Any:
        """Load a value; raises ContextNotFoundError if absent."""
        pass

    @abstractmethod
    def delete(self, namespace: Namespace, key: str) -> None:
        """Remove a value if present."""
        pass

    @abstractmethod
    def keys(self, namespace: Namespace) -> List[str]:
        """Keys stored in a namespace."""
        pass

    @abstractmethod
    def namespaces(self) -> List[Namespace]:
        """All namespaces holding at least one entry."""
        pass

    @abstractmethod
    def clear_namespace(self, namespace: Namespace) -> None:
        """Remove every entry of a namespace."""
        pass


class InMemoryContextBackend(ContextBackend):
    """Dictionary-backed storage guarded by a lock.

    Values are deep-copied on the way in and out, so callers never share
    an object with the store.
    """

    def __init__(self):
        self._data: Dict[Namespace, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def save(self, namespace: Namespace, key: str, value: Any) -> None:
        with self._lock:
            self._data.setdefault(namespace, {})[key] = copy.deepcopy(value)

    def load(self, namespace: Namespace, key: str) -> Any:
        with self._lock:
            entries = self._data.get(namespace)
            if entries is None or key not in entries:
                raise ContextNotFoundError(namespace, key)
            return copy.deepcopy(entries[key])

    def delete(self, namespace: Namespace, key: str) -> None:
        with self._lock:
            entries = self._data.get(namespace)
            if entries is not None:
                entries.pop(key, None)
                if not entries:
                    del self._data[namespace]

    def keys(self, namespace: Namespace) -> List[str]:
        with self._lock:
            return list(self._data.get(namespace, {}))

    def namespaces(self) -> List[Namespace]:
        with self._lock:
            return list(self._data)

    def clear_namespace(self, namespace: Namespace) -> None:
        with self._lock:
            self._data.pop(namespace, None)

    def __repr__(self) -> str:
        return f"InMemoryContextBackend(namespaces={len(self._data)})"


class ContextStore:
    """Namespaced key/value storage scoped per agent and per execution.

    Outputs are written both to the producing agent's namespace and to the
    execution's shared namespace, so gathering a downstream agent's inputs is
    a plain lookup in the shared namespace. Values are opaque to the store.
    """

    def __init__(self, backend: Optional[ContextBackend] = None):
        """Initialize the context store.

        Args:
            backend: Storage backend (in-memory if None)
        """
        self.backend = backend or InMemoryContextBackend()

    def save_input(self, execution_id: str, agent_id: str, value: Any) -> None:
        """Save the inputs an agent was started with."""
        self.backend.save(agent_namespace(execution_id, agent_id), INPUT_SLOT, value)

    def load_input(self, execution_id: str, agent_id: str) -> Any:
        return self.backend.load(agent_namespace(execution_id, agent_id), INPUT_SLOT)

    def save_output(self, execution_id: str, agent_id: str, value: Any) -> None:
        """Save an agent's output privately and in the shared namespace.

        Args:
            execution_id: Execution id
            agent_id: Producing agent
            value: Output value
        """
        self.backend.save(agent_namespace(execution_id, agent_id), OUTPUT_SLOT, value)
        self.backend.save(stack_namespace(execution_id), shared_output_key(agent_id), value)
        logger.debug(f"[CONTEXT] Saved output of '{agent_id}' ({execution_id})")

    def load_output(self, execution_id: str, agent_id: str) -> Any:
        """Load an agent's output.

        Raises:
            ContextNotFoundError: If the agent produced no output
        """
        return self.backend.load(agent_namespace(execution_id, agent_id), OUTPUT_SLOT)

    def save_state(self, execution_id: str, agent_id: str, value: Any) -> None:
        """Save agent-private scratch data."""
        self.backend.save(agent_namespace(execution_id, agent_id), STATE_SLOT, value)

    def load_state(self, execution_id: str, agent_id: str) -> Any:
        return self.backend.load(agent_namespace(execution_id, agent_id), STATE_SLOT)

    def save_context_value(self, execution_id: str, key: str, value: Any) -> None:
        """Save a value in the execution's shared namespace."""
        self.backend.save(stack_namespace(execution_id), key, value)

    def load_context_value(self, execution_id: str, key: str) -> Any:
        return self.backend.load(stack_namespace(execution_id), key)

    def collect_outputs(self, execution_id: str, agent_ids: Iterable[str]) -> Dict[str, Any]:
        """Load the outputs of the given agents from the shared namespace.

        Agents without an output are omitted.

        Args:
            execution_id: Execution id
            agent_ids: Agents whose outputs to collect

        Returns:
            Outputs keyed by agent id
        """
        namespace = stack_namespace(execution_id)
        outputs = {}
        for agent_id in agent_ids:
            try:
                outputs[agent_id] = self.backend.load(namespace, shared_output_key(agent_id))
            except ContextNotFoundError:
                continue
        return outputs

    def clear_agent(self, execution_id: str, agent_id: str) -> None:
        """Remove one agent's private and shared entries."""
        self.backend.clear_namespace(agent_namespace(execution_id, agent_id))
        self.backend.delete(stack_namespace(execution_id), shared_output_key(agent_id))

    def clear(self, execution_id: str) -> None:
        """Remove all data for an execution."""
        cleared = 0
        for namespace in self.backend.namespaces():
            if namespace[0] == execution_id:
                self.backend.clear_namespace(namespace)
                cleared += 1
        logger.debug(f"[CONTEXT] Cleared {cleared} namespaces for execution {execution_id}")

    def __repr__(self) -> str:
        return f"ContextStore(backend={self.backend!r})"
