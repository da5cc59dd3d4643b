"""Stack execution engine: dependency graph, scheduling, state and execution."""

from .models import AgentSpec, StackSpec, JSONValue
from .dag import DAGNode, StackDAG, build_dag
from .scheduler import Batch, schedule, topological_order
from .state import AgentState, ExecutionStatus, StackExecutionSummary, StateManager
from .memory import ContextBackend, ContextStore, InMemoryContextBackend
from .runtime import AgentRuntimeAdapter, ExecutionContext, FunctionAdapter, SimulatedAgentRuntime
from .executor import ExecutionConfig, FailurePolicy, StackExecutor, execute_stack, run_stack
from .errors import (
    StackError,
    StackValidationError,
    InvalidStackError,
    DuplicateAgentIDError,
    UnknownDependencyError,
    CycleDetectedError,
    AgentError,
    MissingInputError,
    AgentExecutionError,
    AgentTimeoutError,
    StackCancelledError,
    InternalSchedulingError,
    InvalidTransitionError,
    AgentNotFoundError,
    ContextNotFoundError,
)

__all__ = [
    "AgentSpec",
    "StackSpec",
    "JSONValue",
    "DAGNode",
    "StackDAG",
    "build_dag",
    "Batch",
    "schedule",
    "topological_order",
    "AgentState",
    "ExecutionStatus",
    "StackExecutionSummary",
    "StateManager",
    "ContextBackend",
    "ContextStore",
    "InMemoryContextBackend",
    "AgentRuntimeAdapter",
    "ExecutionContext",
    "FunctionAdapter",
    "SimulatedAgentRuntime",
    "ExecutionConfig",
    "FailurePolicy",
    "StackExecutor",
    "execute_stack",
    "run_stack",
    "StackError",
    "StackValidationError",
    "InvalidStackError",
    "DuplicateAgentIDError",
    "UnknownDependencyError",
    "CycleDetectedError",
    "AgentError",
    "MissingInputError",
    "AgentExecutionError",
    "AgentTimeoutError",
    "StackCancelledError",
    "InternalSchedulingError",
    "InvalidTransitionError",
    "AgentNotFoundError",
    "ContextNotFoundError",
]
