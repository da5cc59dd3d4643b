"""Test batched topological scheduling."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import pytest

from sentinel.stacks.graph import (
    AgentSpec,
    DAGNode,
    InternalSchedulingError,
    StackDAG,
    StackSpec,
    build_dag,
    schedule,
    topological_order,
)


def make_stack(*agents):
    return StackSpec(
        name="scheduling",
        agents=[AgentSpec(id=agent_id, input_from=deps) for agent_id, deps in agents],
    )


def assert_respects_edges(spec):
    dag = build_dag(spec)
    order = topological_order(dag)

    assert sorted(order) == sorted(dag.agent_ids)
    position = {agent_id: i for i, agent_id in enumerate(order)}
    for from_id, to_id in dag.edges():
        assert position[from_id] < position[to_id], f"{from_id} must precede {to_id}"


def test_linear_chain_is_deterministic():
    dag = build_dag(make_stack(("agent1", []), ("agent2", ["agent1"]), ("agent3", ["agent2"])))

    assert topological_order(dag) == ["agent1", "agent2", "agent3"]
    assert schedule(dag) == [("agent1",), ("agent2",), ("agent3",)]


def test_disjoint_chains_share_batches():
    dag = build_dag(make_stack(("A", []), ("B", ["A"]), ("C", []), ("D", ["C"])))

    assert schedule(dag) == [("A", "C"), ("B", "D")]


def test_ties_follow_declaration_order():
    dag = build_dag(make_stack(("late", ["root"]), ("root", []), ("early", ["root"])))

    assert schedule(dag) == [("root",), ("late", "early")]


def test_node_released_mid_batch_waits_for_next_batch():
    """b becomes ready while batch 1 is placed but must not join it."""
    dag = build_dag(make_stack(("a", []), ("b", ["a"]), ("c", [])))

    batches = schedule(dag)

    assert batches == [("a", "c"), ("b",)]
    for batch in batches:
        for agent_id in batch:
            assert not set(dag.get_dependencies(agent_id)) & set(batch)


@pytest.mark.parametrize("agents", [
    [("x", [])],
    [("a", []), ("b", []), ("c", ["a", "b"]), ("d", ["c"]), ("e", ["a"])],
    [("d", ["b", "c"]), ("b", ["a"]), ("c", ["a"]), ("a", [])],
    [("n1", []), ("n2", ["n1"]), ("n3", ["n1"]), ("n4", ["n2", "n3"]), ("n5", ["n3"]), ("n6", ["n4", "n5"])],
])
def test_order_respects_every_edge(agents):
    assert_respects_edges(make_stack(*agents))


def test_diamond_batches():
    dag = build_dag(make_stack(("calc1", []), ("calc2", []), ("calc3", []),
                               ("aggregator", ["calc1", "calc2", "calc3"])))

    assert schedule(dag) == [("calc1", "calc2", "calc3"), ("aggregator",)]


def test_unplaceable_nodes_raise_internal_error():
    """Only reachable with a hand-built graph that bypasses validation."""
    a = AgentSpec(id="a")
    b = AgentSpec(id="b")
    dag = StackDAG("broken", {
        "a": DAGNode(id="a", spec=a, predecessors=("b",), successors=("b",)),
        "b": DAGNode(id="b", spec=b, predecessors=("a",), successors=("a",)),
    })

    with pytest.raises(InternalSchedulingError) as exc_info:
        schedule(dag)

    assert exc_info.value.remaining == ["a", "b"]
