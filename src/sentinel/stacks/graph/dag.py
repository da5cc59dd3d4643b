"""DAG (Directed Acyclic Graph) built from a stack specification."""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Tuple
from loguru import logger

from .errors import (
    CycleDetectedError,
    DuplicateAgentIDError,
    InvalidStackError,
    UnknownDependencyError,
)
from .models import AgentSpec, StackSpec


@dataclass(frozen=True)
class DAGNode:
    """A node (agent) in the stack DAG.

    ``predecessors`` and ``successors`` hold ids in declaration order and are
    used as sets; nodes are never mutated after the graph is built.
    """
    id: str
    spec: AgentSpec
    predecessors: Tuple[str, ...] = ()
    successors: Tuple[str, ...] = ()


class StackDAG:
    """Immutable dependency graph of the agents in a stack."""

    def __init__(self, name: str, nodes: Dict[str, DAGNode]):
        """Initialize the DAG.

        Args:
            name: Stack name
            nodes: Nodes keyed by agent id, in declaration order
        """
        self.name = name
        self._nodes = MappingProxyType(dict(nodes))
        self._start_nodes = tuple(
            node_id for node_id, node in self._nodes.items() if not node.predecessors
        )

    @property
    def nodes(self) -> Mapping[str, DAGNode]:
        """Read-only view of the nodes keyed by id."""
        return self._nodes

    @property
    def start_nodes(self) -> Tuple[str, ...]:
        """Nodes with no predecessors, in declaration order."""
        return self._start_nodes

    @property
    def agent_ids(self) -> List[str]:
        """All agent ids in declaration order."""
        return list(self._nodes)

    def get_end_nodes(self) -> List[str]:
        """Get nodes with no dependents (exit points).

        Returns:
            List of end node ids
        """
        return [node_id for node_id, node in self._nodes.items() if not node.successors]

    def get_dependencies(self, node_id: str) -> List[str]:
        """Get the nodes that must complete before this node.

        Args:
            node_id: Target node id

        Returns:
            List of predecessor ids
        """
        return list(self._nodes[node_id].predecessors)

    def get_dependents(self, node_id: str) -> List[str]:
        """Get the nodes that depend on this node.

        Args:
            node_id: Source node id

        Returns:
            List of successor ids
        """
        return list(self._nodes[node_id].successors)

    def edges(self) -> List[Tuple[str, str]]:
        """All ``(dependency, dependent)`` pairs."""
        return [
            (node_id, successor)
            for node_id, node in self._nodes.items()
            for successor in node.successors
        ]

    def visualize(self, batches: Optional[List[Tuple[str, ...]]] = None) -> str:
        """Generate a text visualization of the DAG.

        Args:
            batches: Optional execution batches to append (see ``schedule``)

        Returns:
            String representation of the DAG
        """
        lines = [f"Stack: {self.name}", "=" * 50]

        lines.append("\nAgents:")
        for node_id, node in self._nodes.items():
            uses = f" ({node.spec.uses})" if node.spec.uses else ""
            lines.append(f"  {node_id}{uses}")

        lines.append("\nEdges:")
        for from_id, to_id in self.edges():
            lines.append(f"  {from_id} -> {to_id}")

        if batches is not None:
            lines.append("\nExecution Order:")
            for i, batch in enumerate(batches):
                lines.append(f"  Batch {i + 1}: {', '.join(batch)}")

        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __repr__(self) -> str:
        return f"StackDAG(name={self.name!r}, nodes={len(self._nodes)})"


def _find_cycle(order: List[str], successors: Dict[str, List[str]]) -> Optional[List[str]]:
    """Three-color DFS; returns the first cycle found as a closed id path.

    Iterative, with one successor iterator per node on the current path, so
    long chains do not hit the recursion limit.
    """
    white, gray, black = 0, 1, 2
    color = {node_id: white for node_id in order}

    for root in order:
        if color[root] != white:
            continue

        color[root] = gray
        path: List[str] = [root]
        pending: List[Iterator[str]] = [iter(successors[root])]

        while pending:
            for neighbor in pending[-1]:
                if color[neighbor] == gray:
                    return path[path.index(neighbor):] + [neighbor]
                if color[neighbor] == white:
                    color[neighbor] = gray
                    path.append(neighbor)
                    pending.append(iter(successors[neighbor]))
                    break
            else:
                pending.pop()
                color[path.pop()] = black

    return None


def build_dag(spec: StackSpec) -> StackDAG:
    """Validate a stack specification and build its dependency graph.

    Args:
        spec: Stack specification

    Returns:
        Immutable StackDAG

    Raises:
        InvalidStackError: If the stack has no agents or an agent has no id
        DuplicateAgentIDError: If two agents share an id
        UnknownDependencyError: If an agent references an undeclared id
        CycleDetectedError: If the dependencies form a cycle
    """
    if not spec.agents:
        raise InvalidStackError(f"Stack '{spec.name}' must contain at least one agent")

    specs: Dict[str, AgentSpec] = {}
    for agent in spec.agents:
        if not agent.id:
            raise InvalidStackError(f"Stack '{spec.name}' has an agent with an empty id")
        if agent.id in specs:
            raise DuplicateAgentIDError(agent.id)
        specs[agent.id] = agent

    predecessors: Dict[str, List[str]] = {}
    successors: Dict[str, List[str]] = {agent_id: [] for agent_id in specs}

    for agent_id, agent in specs.items():
        deps = agent.dependency_ids
        for dep_id in deps:
            if dep_id not in specs:
                raise UnknownDependencyError(agent_id, dep_id)
            successors[dep_id].append(agent_id)
        predecessors[agent_id] = deps

    order = list(specs)
    cycle = _find_cycle(order, successors)
    if cycle:
        logger.error(f"[DAG:{spec.name}] Cycle detected: {' -> '.join(cycle)}")
        raise CycleDetectedError(cycle)

    nodes = {
        agent_id: DAGNode(
            id=agent_id,
            spec=agent,
            predecessors=tuple(predecessors[agent_id]),
            successors=tuple(successors[agent_id]),
        )
        for agent_id, agent in specs.items()
    }

    dag = StackDAG(spec.name, nodes)
    logger.debug(
        f"[DAG:{spec.name}] Built graph with {len(dag)} agents, "
        f"{len(dag.edges())} edges, start nodes {list(dag.start_nodes)}"
    )
    return dag
