"""Test building stack DAGs from specifications."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import dataclasses

import pytest
from loguru import logger

from sentinel.stacks.graph import (
    AgentSpec,
    CycleDetectedError,
    DuplicateAgentIDError,
    InvalidStackError,
    StackSpec,
    StackValidationError,
    UnknownDependencyError,
    build_dag,
    schedule,
)

# Configure logging
logger.remove()
logger.add(sys.stdout, level="INFO")


def make_stack(*agents, name="test-stack"):
    """Build a StackSpec from (id, deps) pairs."""
    return StackSpec(
        name=name,
        agents=[AgentSpec(id=agent_id, uses=f"{agent_id}:latest", input_from=deps) for agent_id, deps in agents],
    )


def test_linear_dag():
    """A simple chain links predecessors and successors both ways."""
    dag = build_dag(make_stack(("agent1", []), ("agent2", ["agent1"]), ("agent3", ["agent2"])))

    assert dag.agent_ids == ["agent1", "agent2", "agent3"]
    assert dag.start_nodes == ("agent1",)
    assert dag.get_dependencies("agent2") == ["agent1"]
    assert dag.get_dependents("agent2") == ["agent3"]
    assert dag.get_end_nodes() == ["agent3"]
    assert dag.edges() == [("agent1", "agent2"), ("agent2", "agent3")]


def test_start_nodes_keep_declaration_order():
    dag = build_dag(make_stack(("zeta", []), ("alpha", []), ("mid", ["zeta", "alpha"]), ("beta", [])))

    assert dag.start_nodes == ("zeta", "alpha", "beta")


@pytest.mark.parametrize("agents", [
    [("agent1", []), ("agent1", [])],
    [("agent1", []), ("agent2", ["agent1"]), ("agent1", [])],
    [("agent0", []), ("agent1", []), ("agent2", []), ("agent1", ["agent0"])],
])
def test_duplicate_agent_id_rejected(agents):
    """A repeated id is rejected wherever the duplicate appears."""
    with pytest.raises(DuplicateAgentIDError) as exc_info:
        build_dag(make_stack(*agents))

    assert exc_info.value.agent_id == "agent1"
    assert isinstance(exc_info.value, StackValidationError)


def test_duplicate_without_back_edge_is_not_a_cycle():
    with pytest.raises(DuplicateAgentIDError):
        build_dag(make_stack(("agent1", []), ("agent1", [])))


def test_unknown_dependency_rejected():
    with pytest.raises(UnknownDependencyError) as exc_info:
        build_dag(make_stack(("agent1", []), ("agent2", ["agent1", "ghost"])))

    assert exc_info.value.agent_id == "agent2"
    assert exc_info.value.missing_id == "ghost"
    assert "ghost" in str(exc_info.value)


def test_unknown_depends_entry_rejected():
    spec = StackSpec(name="s", agents=[AgentSpec(id="a", depends=["nowhere"])])

    with pytest.raises(UnknownDependencyError):
        build_dag(spec)


def test_cycle_detected_with_path():
    """agent2 and agent3 feed each other."""
    spec = make_stack(("agent1", []), ("agent2", ["agent1", "agent3"]), ("agent3", ["agent2"]))

    with pytest.raises(CycleDetectedError) as exc_info:
        build_dag(spec)

    assert exc_info.value.path == ["agent2", "agent3", "agent2"]
    assert "agent2 -> agent3 -> agent2" in str(exc_info.value)


def test_self_dependency_is_a_cycle():
    with pytest.raises(CycleDetectedError) as exc_info:
        build_dag(make_stack(("solo", ["solo"])))

    assert exc_info.value.path == ["solo", "solo"]


def test_cycle_without_start_nodes():
    with pytest.raises(CycleDetectedError) as exc_info:
        build_dag(make_stack(("a", ["c"]), ("b", ["a"]), ("c", ["b"])))

    path = exc_info.value.path
    assert path[0] == path[-1]
    assert set(path) == {"a", "b", "c"}


def test_long_chain_builds():
    """Chains deeper than the interpreter recursion limit still validate."""
    length = sys.getrecursionlimit() + 500
    agents = [("step0", [])] + [(f"step{i}", [f"step{i - 1}"]) for i in range(1, length)]

    dag = build_dag(make_stack(*agents))

    assert len(dag) == length
    assert dag.start_nodes == ("step0",)
    assert dag.get_end_nodes() == [f"step{length - 1}"]


def test_cycle_at_the_end_of_a_long_chain():
    length = sys.getrecursionlimit() + 500
    agents = [("step0", [])] + [(f"step{i}", [f"step{i - 1}"]) for i in range(1, length)]
    agents[length - 2] = (f"step{length - 2}", [f"step{length - 3}", f"step{length - 1}"])

    with pytest.raises(CycleDetectedError) as exc_info:
        build_dag(make_stack(*agents))

    assert exc_info.value.path == [f"step{length - 2}", f"step{length - 1}", f"step{length - 2}"]


def test_empty_stack_rejected():
    with pytest.raises(InvalidStackError):
        build_dag(StackSpec(name="empty"))


def test_empty_agent_id_rejected():
    with pytest.raises(InvalidStackError):
        build_dag(StackSpec(name="s", agents=[AgentSpec(id="")]))


def test_depends_and_input_from_collapse_into_one_edge():
    spec = StackSpec(name="s", agents=[
        AgentSpec(id="a"),
        AgentSpec(id="b"),
        AgentSpec(id="c", input_from=["a", "a", ""], depends=["a", "b"]),
    ])

    dag = build_dag(spec)

    assert dag.get_dependencies("c") == ["a", "b"]
    assert dag.get_dependents("a") == ["c"]
    assert dag.start_nodes == ("a", "b")


def test_dag_is_immutable():
    dag = build_dag(make_stack(("agent1", []), ("agent2", ["agent1"])))

    with pytest.raises(TypeError):
        dag.nodes["agent3"] = dag.nodes["agent1"]

    with pytest.raises(dataclasses.FrozenInstanceError):
        dag.nodes["agent1"].successors = ()


def test_spec_from_camel_case_dict():
    """Specs loaded from YAML/JSON use camelCase keys."""
    spec = StackSpec.model_validate({
        "name": "data-pipeline",
        "version": "1.0.0",
        "agents": [
            {"id": "extractor", "uses": "data-extractor:latest", "params": {"source": "database"}},
            {"id": "transformer", "uses": "data-transformer:latest", "inputFrom": ["extractor"]},
            {"id": "reporter", "uses": "report-generator:latest", "inputFrom": ["transformer"],
             "inputKey": "rows", "timeout": 30},
        ],
    })

    dag = build_dag(spec)

    assert dag.get_dependencies("reporter") == ["transformer"]
    assert spec.agents[2].input_key == "rows"
    assert spec.agents[2].timeout_seconds == 30
    assert spec.agents[0].params == {"source": "database"}


def test_dag_visualization():
    """Visualization lists agents, edges and batches."""
    spec = make_stack(
        ("node_0", []),
        ("node_1", ["node_0"]),
        ("node_2", ["node_0"]),
        ("node_3", ["node_1", "node_2"]),
        ("node_4", ["node_2"]),
        ("node_5", ["node_3", "node_4"]),
        name="ComplexWorkflow",
    )
    dag = build_dag(spec)

    text = dag.visualize(schedule(dag))
    print("\n" + text)

    assert "Stack: ComplexWorkflow" in text
    assert "node_2 -> node_4" in text
    assert "Batch 2: node_1, node_2" in text
    assert "Batch 4: node_5" in text
