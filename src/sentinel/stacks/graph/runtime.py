"""Agent runtime adapter interface and reference runtimes."""

import asyncio
import functools
import inspect
import threading
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple
from loguru import logger

from .errors import StackCancelledError
from .models import AgentSpec


class ExecutionContext:
    """Identity and cancellation flag of one stack execution.

    This is the only engine object handed to adapters. Cancellation is
    cooperative: the executor stops starting agents and adapters may poll
    ``cancelled``.
    """

    def __init__(self, execution_id: Optional[str] = None, stack_name: str = ""):
        self.execution_id = execution_id or f"run-{uuid.uuid4().hex[:12]}"
        self.stack_name = stack_name
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Request cancellation; safe to call from any thread."""
        if not self._cancelled.is_set():
            logger.info(f"[EXECUTOR] Cancellation requested for {self.execution_id}")
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def wait_cancelled(self, timeout: Optional[float] = None) -> bool:
        """Block the calling thread until cancelled or the timeout passes."""
        return self._cancelled.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise StackCancelledError(message=f"Execution {self.execution_id} was cancelled")

    def __repr__(self) -> str:
        return f"ExecutionContext(execution_id={self.execution_id!r}, cancelled={self.cancelled})"


class AgentRuntimeAdapter(Protocol):
    """Runs one agent. Implementations provide ``execute`` and optionally
    ``aexecute``; the executor awaits ``aexecute`` when it exists and runs
    ``execute`` on a worker thread otherwise.
    """

    def execute(
        self,
        context: ExecutionContext,
        agent: AgentSpec,
        inputs: Dict[str, Any]
    ) -> Mapping[str, Any]:
        ...


class FunctionAdapter:
    """Adapter around a plain or async callable ``fn(agent, inputs)``."""

    def __init__(self, fn: Callable[[AgentSpec, Dict[str, Any]], Any]):
        self.fn = fn
        self.is_async = inspect.iscoroutinefunction(fn)

    def execute(self, context: ExecutionContext, agent: AgentSpec, inputs: Dict[str, Any]) -> Mapping[str, Any]:
        if self.is_async:
            raise TypeError("FunctionAdapter wraps a coroutine function; use aexecute")
        return self.fn(agent, inputs)

    async def aexecute(self, context: ExecutionContext, agent: AgentSpec, inputs: Dict[str, Any]) -> Mapping[str, Any]:
        if self.is_async:
            return await self.fn(agent, inputs)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self.fn, agent, inputs))


class SimulatedAgentRuntime:
    """Deterministic runtime for examples and tests.

    Produces canned outputs per agent id, can simulate latency (honouring
    cancellation) and can be told to fail specific agents. Every start and
    finish is recorded in ``events``.
    """

    def __init__(
        self,
        delay: float = 0.0,
        fail_ids: Iterable[str] = (),
        outputs: Optional[Dict[str, Dict[str, Any]]] = None,
        delays: Optional[Dict[str, float]] = None,
    ):
        """Initialize the simulated runtime.

        Args:
            delay: Default simulated processing time in seconds
            fail_ids: Agent ids whose execution raises
            outputs: Extra output fields per agent id
            delays: Per-agent processing time overriding ``delay``
        """
        self.delay = delay
        self.fail_ids = set(fail_ids)
        self.outputs = outputs or {}
        self.delays = delays or {}
        self.events: List[Tuple[str, str]] = []
        self.received_inputs: Dict[str, Dict[str, Any]] = {}
        self.max_in_flight = 0
        self._in_flight = 0
        self._lock = threading.Lock()

    @property
    def calls(self) -> List[str]:
        """Agent ids in the order their execution started."""
        with self._lock:
            return [agent_id for event, agent_id in self.events if event == "start"]

    def _begin(self, agent: AgentSpec, inputs: Dict[str, Any]) -> None:
        with self._lock:
            self.events.append(("start", agent.id))
            self.received_inputs[agent.id] = dict(inputs)
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)

    def _end(self, agent: AgentSpec) -> None:
        with self._lock:
            self._in_flight -= 1
            self.events.append(("end", agent.id))

    def _result(self, agent: AgentSpec, inputs: Dict[str, Any]) -> Dict[str, Any]:
        if agent.id in self.fail_ids:
            raise RuntimeError(f"simulated failure in '{agent.id}'")

        outputs: Dict[str, Any] = {
            "_agent_id": agent.id,
            "_agent_type": agent.uses,
            "_processed_at": datetime.now().isoformat(),
            "received": sorted(inputs),
            "result": f"{agent.id} completed",
            "status": "completed",
        }
        outputs.update(self.outputs.get(agent.id, {}))
        return outputs

    def execute(self, context: ExecutionContext, agent: AgentSpec, inputs: Dict[str, Any]) -> Dict[str, Any]:
        logger.debug(f"[RUNTIME] Executing agent {agent.id} (uses: {agent.uses})")
        self._begin(agent, inputs)
        try:
            delay = self.delays.get(agent.id, self.delay)
            if delay > 0:
                context.wait_cancelled(delay)
            context.raise_if_cancelled()
            return self._result(agent, inputs)
        finally:
            self._end(agent)

    async def aexecute(self, context: ExecutionContext, agent: AgentSpec, inputs: Dict[str, Any]) -> Dict[str, Any]:
        logger.debug(f"[RUNTIME] Executing agent {agent.id} (uses: {agent.uses}, async)")
        self._begin(agent, inputs)
        try:
            remaining = self.delays.get(agent.id, self.delay)
            while remaining > 0 and not context.cancelled:
                step = min(remaining, 0.01)
                await asyncio.sleep(step)
                remaining -= step
            context.raise_if_cancelled()
            return self._result(agent, inputs)
        finally:
            self._end(agent)
