"""Batched topological scheduling of a stack DAG."""

from typing import Dict, List, Tuple
from loguru import logger

from .dag import StackDAG
from .errors import InternalSchedulingError

# Agents within a batch have no dependency on one another.
Batch = Tuple[str, ...]


def schedule(dag: StackDAG) -> List[Batch]:
    """Get the execution batches for a DAG (Kahn's algorithm, level by level).

    Nodes released while placing a batch become eligible for the next batch
    only, so no batch holds a node together with one of its dependencies.
    Ties are broken by declaration order.

    Args:
        dag: Validated stack DAG

    Returns:
        Ordered list of batches

    Raises:
        InternalSchedulingError: If some nodes can never be placed
    """
    in_degree: Dict[str, int] = {
        node_id: len(node.predecessors) for node_id, node in dag.nodes.items()
    }

    batches: List[Batch] = []
    placed = set()

    while len(placed) < len(in_degree):
        current = tuple(
            node_id for node_id, degree in in_degree.items()
            if degree == 0 and node_id not in placed
        )

        if not current:
            remaining = [node_id for node_id in in_degree if node_id not in placed]
            logger.error(f"[SCHEDULER] Unplaceable nodes in '{dag.name}': {remaining}")
            raise InternalSchedulingError(remaining)

        batches.append(current)
        placed.update(current)

        for node_id in current:
            for dependent in dag.nodes[node_id].successors:
                in_degree[dependent] -= 1

    logger.debug(f"[SCHEDULER] '{dag.name}' scheduled into {len(batches)} batches: {batches}")
    return batches


def topological_order(dag: StackDAG) -> List[str]:
    """A linear order in which every dependency precedes its dependents."""
    return [node_id for batch in schedule(dag) for node_id in batch]
