"""Executor running a stack's agents batch by batch."""

import asyncio
import copy
import functools
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from loguru import logger

from ..telemetry import StackTracer
from .dag import DAGNode, build_dag
from .errors import (
    AgentError,
    AgentExecutionError,
    AgentTimeoutError,
    MissingInputError,
    StackCancelledError,
    StackError,
)
from .memory import ContextStore
from .models import AgentSpec, StackSpec
from .runtime import AgentRuntimeAdapter, ExecutionContext
from .scheduler import Batch, schedule
from .state import AgentState, ExecutionStatus, StackExecutionSummary, StateManager


class FailurePolicy(Enum):
    """What to do with later batches once an agent has failed."""
    CONTINUE = "continue"
    FAIL_FAST = "fail_fast"


@dataclass
class ExecutionConfig:
    """Options for one stack execution."""
    max_concurrency: int = 4
    agent_timeout_seconds: Optional[float] = None  # default deadline per agent
    failure_policy: FailurePolicy = FailurePolicy.CONTINUE
    initial_input: Dict[str, Any] = field(default_factory=dict)
    clear_context_on_completion: bool = True

    def __post_init__(self):
        self.failure_policy = FailurePolicy(self.failure_policy)
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {self.max_concurrency}")
        if self.agent_timeout_seconds is not None and self.agent_timeout_seconds <= 0:
            raise ValueError(f"agent_timeout_seconds must be positive, got {self.agent_timeout_seconds}")

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> "ExecutionConfig":
        """Build a config from application settings.

        Args:
            settings: ``Settings`` instance
            **overrides: Fields taking precedence over the settings

        Returns:
            Execution config
        """
        values = {
            "max_concurrency": settings.max_concurrency,
            "agent_timeout_seconds": settings.agent_timeout_seconds,
            "failure_policy": settings.failure_policy,
            "clear_context_on_completion": settings.clear_context_on_completion,
        }
        values.update(overrides)
        return cls(**values)


class StackExecutor:
    """Executor for running a stack of agents.

    Construction validates the stack and computes its batches, so structural
    errors surface immediately. Batches run strictly in order; agents within
    a batch run concurrently up to ``config.max_concurrency``.
    """

    def __init__(
        self,
        spec: StackSpec,
        adapter: AgentRuntimeAdapter,
        config: Optional[ExecutionConfig] = None,
        context_store: Optional[ContextStore] = None,
        tracer: Optional[StackTracer] = None
    ):
        """Initialize executor.

        Args:
            spec: Stack specification
            adapter: Runtime that executes individual agents
            config: Execution options (defaults if None)
            context_store: Store for agent inputs/outputs (creates new if None)
            tracer: Tracer for spans (tracing disabled if None)
        """
        self.spec = spec
        self.adapter = adapter
        self.config = config or ExecutionConfig()
        self.context_store = context_store or ContextStore()
        self.tracer = tracer or StackTracer()

        self.dag = build_dag(spec)
        self.batches: List[Batch] = schedule(self.dag)

        self.context: Optional[ExecutionContext] = None
        self.state: Optional[StateManager] = None
        self._running = False
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def execute(self, context: Optional[ExecutionContext] = None) -> StackExecutionSummary:
        """Execute the stack synchronously.

        Args:
            context: Execution context (creates new if None)

        Returns:
            Execution summary
        """
        return asyncio.run(self.aexecute(context))

    async def aexecute(self, context: Optional[ExecutionContext] = None) -> StackExecutionSummary:
        """Execute the stack.

        Args:
            context: Execution context (creates new if None)

        Returns:
            Execution summary, also when agents failed or were blocked

        Raises:
            StackError: If this executor is already running
            StackCancelledError: If the context was cancelled; carries the summary
        """
        with self._lock:
            if self._running:
                raise StackError(f"Stack '{self.spec.name}' is already running")
            self._running = True

        context = context or ExecutionContext(stack_name=self.spec.name)
        state = StateManager(self.spec.name, context.execution_id)
        state.initialize_agents(self.dag.agent_ids)
        self.context = context
        self.state = state

        start_time = time.time()
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        logger.info(
            f"[EXECUTOR] Starting stack execution: {self.spec.name} "
            f"(execution {context.execution_id}, {len(self.dag)} agents, {len(self.batches)} batches)"
        )

        try:
            with self.tracer.trace_stack_execution(self.spec.name, context.execution_id, len(self.dag)):
                for batch_index, batch in enumerate(self.batches):
                    if context.cancelled:
                        logger.warning(
                            f"[EXECUTOR] Cancelled before batch {batch_index + 1}; "
                            f"remaining agents stay pending"
                        )
                        break

                    logger.info(f"[EXECUTOR] Executing batch {batch_index + 1}/{len(self.batches)}: {list(batch)}")
                    await asyncio.gather(*[
                        self._execute_agent(self.dag.nodes[agent_id], batch_index, context, state, semaphore)
                        for agent_id in batch
                    ])

                    if (self.config.failure_policy == FailurePolicy.FAIL_FAST
                            and any(state.get_status(agent_id) == ExecutionStatus.FAILED for agent_id in batch)):
                        logger.warning(
                            f"[EXECUTOR] Fail-fast: stopping after batch {batch_index + 1}; "
                            f"remaining agents stay pending"
                        )
                        break

                state.finish()
                summary = state.get_summary()
                self.tracer.record_metrics({
                    "completed": summary.completed_count,
                    "failed": summary.failed_count,
                    "blocked": summary.blocked_count,
                    "pending": summary.pending_count,
                })
        finally:
            state.finish()
            if self.config.clear_context_on_completion:
                self.context_store.clear(context.execution_id)
            with self._lock:
                self._running = False

        execution_time = time.time() - start_time
        logger.info(
            f"[EXECUTOR] Completed: {summary.completed_count}/{summary.total_agents} agents, "
            f"failed={summary.failed_count}, blocked={summary.blocked_count}, "
            f"pending={summary.pending_count}, status={summary.status}, time={execution_time:.2f}s"
        )

        if context.cancelled:
            raise StackCancelledError(summary, f"Stack '{self.spec.name}' execution {context.execution_id} was cancelled")

        return summary

    async def _execute_agent(
        self,
        node: DAGNode,
        batch_index: int,
        context: ExecutionContext,
        state: StateManager,
        semaphore: asyncio.Semaphore
    ) -> None:
        """Run a single agent, recording its outcome in the state manager."""
        agent_id = node.id

        async with semaphore:
            if context.cancelled:
                logger.info(f"[NODE:{agent_id}] Not started: execution cancelled")
                return

            try:
                self._check_dependencies(node, state)
                inputs = self._collect_inputs(node, context.execution_id)
            except MissingInputError as e:
                logger.warning(f"[EXECUTOR] Blocking {agent_id}: {e}")
                state.update_status(agent_id, ExecutionStatus.BLOCKED)
                state.set_error(agent_id, e)
                return

            state.set(agent_id, "input", inputs)
            self.context_store.save_input(context.execution_id, agent_id, inputs)
            state.update_status(agent_id, ExecutionStatus.RUNNING)

            timeout = node.spec.timeout_seconds or self.config.agent_timeout_seconds
            logger.info(f"[NODE:{agent_id}] Starting execution (uses: {node.spec.uses or '-'})")

            with self.tracer.trace_agent(agent_id, node.spec.uses, batch_index):
                call = None
                try:
                    call = self._start_adapter(node.spec, inputs, context)
                    outputs = await self._invoke_adapter(node.spec, call, timeout)
                except asyncio.CancelledError:
                    error = StackCancelledError(message=f"Agent '{agent_id}' interrupted by task cancellation")
                    self._record_failure(state, agent_id, error)
                    raise
                except AgentError as e:
                    logger.error(f"[NODE:{agent_id}] {e}")
                    self._record_failure(state, agent_id, e)
                    if isinstance(call, asyncio.Future) and not call.done():
                        # Worker threads cannot be interrupted; keep the slot until this one returns.
                        logger.warning(f"[NODE:{agent_id}] Waiting for timed-out worker thread to return")
                        await asyncio.gather(call, return_exceptions=True)
                    return
                except Exception as e:
                    logger.exception(f"[NODE:{agent_id}] Error: {e}")
                    self._record_failure(state, agent_id, AgentExecutionError(agent_id, e))
                    return

                self.context_store.save_output(context.execution_id, agent_id, outputs)
                state.set(agent_id, "output", outputs)
                state.update_status(agent_id, ExecutionStatus.COMPLETED)

        logger.info(f"[NODE:{agent_id}] Completed")

    def _record_failure(self, state: StateManager, agent_id: str, error: BaseException) -> None:
        self.tracer.record_exception(error)
        state.update_status(agent_id, ExecutionStatus.FAILED)
        state.set_error(agent_id, error)

    def _check_dependencies(self, node: DAGNode, state: StateManager) -> None:
        """Raise MissingInputError if any predecessor did not complete."""
        for dep_id in node.predecessors:
            status = state.get_status(dep_id)
            if status != ExecutionStatus.COMPLETED:
                raise MissingInputError(node.id, dep_id, f"dependency {status.value}")

    def _collect_inputs(self, node: DAGNode, execution_id: str) -> Dict[str, Any]:
        """Build an agent's inputs: initial input, then params, then one
        entry per ``input_from`` agent holding that agent's output.
        """
        inputs: Dict[str, Any] = dict(self.config.initial_input)
        inputs.update(node.spec.params)

        sources = [source for source in node.spec.input_from if source]
        outputs = self.context_store.collect_outputs(execution_id, sources)
        input_key = node.spec.input_key

        for source in sources:
            if source not in outputs:
                raise MissingInputError(node.id, source)

            value = outputs[source]
            if input_key:
                if not isinstance(value, Mapping) or input_key not in value:
                    raise MissingInputError(node.id, source, f"output has no '{input_key}' key")
                value = value[input_key]

            inputs[source] = value

        # Adapters get their own copy of upstream outputs, params and initial input.
        return copy.deepcopy(inputs)

    def _start_adapter(self, agent: AgentSpec, inputs: Dict[str, Any], context: ExecutionContext) -> Any:
        """Async adapters (``aexecute``) give a coroutine; sync ones are
        submitted to the default thread pool and give a future.
        """
        if hasattr(self.adapter, "aexecute"):
            return self.adapter.aexecute(context, agent, inputs)

        loop = asyncio.get_running_loop()
        return loop.run_in_executor(
            None, functools.partial(self.adapter.execute, context, agent, inputs)
        )

    async def _invoke_adapter(self, agent: AgentSpec, call: Any, timeout: Optional[float]) -> Dict[str, Any]:
        """Await an adapter call under the agent's deadline.

        A thread-pool future is shielded, so on timeout it stays pending
        until its worker thread returns.
        """
        if timeout:
            awaitable = asyncio.shield(call) if isinstance(call, asyncio.Future) else call
            try:
                result = await asyncio.wait_for(awaitable, timeout)
            except asyncio.TimeoutError:
                raise AgentTimeoutError(agent.id, timeout) from None
        else:
            result = await call

        if result is None:
            return {}
        if not isinstance(result, Mapping):
            raise AgentExecutionError(
                agent.id, f"adapter returned {type(result).__name__}, expected a mapping"
            )
        return dict(result)

    def stop(self) -> None:
        """Cancel the current execution."""
        if self.context is not None:
            self.context.cancel()

    def get_state(self) -> StackExecutionSummary:
        """Get the summary of the current or last execution."""
        if self.state is None:
            raise StackError(f"Stack '{self.spec.name}' has not been executed")
        return self.state.get_summary()

    def get_agent_state(self, agent_id: str) -> AgentState:
        """Get the state of one agent in the current or last execution."""
        if self.state is None:
            raise StackError(f"Stack '{self.spec.name}' has not been executed")
        return self.state.get_agent_state(agent_id)

    def export_state(self) -> str:
        """Export the current execution summary as JSON."""
        return self.get_state().to_json()

    def visualize(self) -> str:
        """Text view of the stack graph with its batches."""
        return self.dag.visualize(self.batches)


async def execute_stack(
    spec: StackSpec,
    adapter: AgentRuntimeAdapter,
    config: Optional[ExecutionConfig] = None,
    context: Optional[ExecutionContext] = None,
    context_store: Optional[ContextStore] = None,
    tracer: Optional[StackTracer] = None
) -> StackExecutionSummary:
    """Build, schedule and execute a stack.

    Args:
        spec: Stack specification
        adapter: Runtime that executes individual agents
        config: Execution options
        context: Execution context, e.g. to cancel from elsewhere
        context_store: Shared context store
        tracer: Tracer for spans

    Returns:
        Execution summary
    """
    executor = StackExecutor(spec, adapter, config, context_store=context_store, tracer=tracer)
    return await executor.aexecute(context)


def run_stack(
    spec: StackSpec,
    adapter: AgentRuntimeAdapter,
    config: Optional[ExecutionConfig] = None,
    context: Optional[ExecutionContext] = None,
    context_store: Optional[ContextStore] = None,
    tracer: Optional[StackTracer] = None
) -> StackExecutionSummary:
    """Synchronous version of ``execute_stack``."""
    return asyncio.run(execute_stack(spec, adapter, config, context, context_store, tracer))
