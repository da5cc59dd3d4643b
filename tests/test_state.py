"""Test the per-agent state machine and execution summaries."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import json
import threading

import pytest

from sentinel.stacks.graph import (
    AgentNotFoundError,
    AgentTimeoutError,
    ContextNotFoundError,
    ExecutionStatus,
    InvalidTransitionError,
    StateManager,
)


@pytest.fixture
def state():
    manager = StateManager("test-stack", "run-1")
    manager.initialize_agents(["agent1", "agent2", "agent3"])
    return manager


def test_agents_start_pending(state):
    summary = state.get_summary()

    assert summary.total_agents == 3
    assert summary.pending_count == 3
    assert list(summary.agent_states) == ["agent1", "agent2", "agent3"]
    assert all(s.status == ExecutionStatus.PENDING for s in summary.agent_states.values())


def test_forward_transitions(state):
    state.update_status("agent1", ExecutionStatus.RUNNING)
    state.update_status("agent1", ExecutionStatus.COMPLETED)
    state.update_status("agent2", ExecutionStatus.RUNNING)
    state.update_status("agent2", ExecutionStatus.FAILED)
    state.update_status("agent3", ExecutionStatus.BLOCKED)

    assert state.get_status("agent1") == ExecutionStatus.COMPLETED
    assert state.get_status("agent2") == ExecutionStatus.FAILED
    assert state.get_status("agent3") == ExecutionStatus.BLOCKED


@pytest.mark.parametrize("path", [
    [ExecutionStatus.COMPLETED],
    [ExecutionStatus.FAILED],
    [ExecutionStatus.PENDING],
    [ExecutionStatus.RUNNING, ExecutionStatus.RUNNING],
    [ExecutionStatus.RUNNING, ExecutionStatus.PENDING],
    [ExecutionStatus.RUNNING, ExecutionStatus.BLOCKED],
    [ExecutionStatus.RUNNING, ExecutionStatus.COMPLETED, ExecutionStatus.RUNNING],
    [ExecutionStatus.RUNNING, ExecutionStatus.FAILED, ExecutionStatus.COMPLETED],
    [ExecutionStatus.BLOCKED, ExecutionStatus.RUNNING],
])
def test_invalid_transitions_rejected(state, path):
    *allowed, rejected = path
    for status in allowed:
        state.update_status("agent1", status)
    before = state.get_status("agent1")

    with pytest.raises(InvalidTransitionError) as exc_info:
        state.update_status("agent1", rejected)

    assert exc_info.value.agent_id == "agent1"
    assert state.get_status("agent1") == before


def test_unknown_agent(state):
    with pytest.raises(AgentNotFoundError):
        state.update_status("ghost", ExecutionStatus.RUNNING)

    with pytest.raises(KeyError):
        state.get_status("ghost")


def test_timestamps(state):
    state.update_status("agent1", ExecutionStatus.RUNNING)
    started = state.get_agent_state("agent1")
    assert started.start_time is not None
    assert started.end_time is None
    assert started.duration_seconds is None

    state.update_status("agent1", ExecutionStatus.COMPLETED)
    finished = state.get_agent_state("agent1")
    assert finished.start_time == started.start_time
    assert finished.end_time >= finished.start_time
    assert finished.duration_seconds >= 0


def test_blocked_agent_has_end_time_only(state):
    state.update_status("agent3", ExecutionStatus.BLOCKED)
    blocked = state.get_agent_state("agent3")

    assert blocked.start_time is None
    assert blocked.end_time is not None


def test_set_error_records_type(state):
    state.update_status("agent1", ExecutionStatus.RUNNING)
    state.update_status("agent1", ExecutionStatus.FAILED)
    state.set_error("agent1", AgentTimeoutError("agent1", 0.5))

    failed = state.get_agent_state("agent1")
    assert failed.error_type == "AgentTimeoutError"
    assert "timed out" in failed.error_message


def test_get_and_set(state):
    state.set("agent1", "input", {"query": "hello"})
    state.set("agent1", "output", {"answer": 42})
    state.set("agent1", "tokens", 7)

    assert state.get("agent1", "input") == {"query": "hello"}
    assert state.get("agent1", "output") == {"answer": 42, "tokens": 7}
    assert state.get("agent1", "answer") == 42

    with pytest.raises(ContextNotFoundError):
        state.get("agent1", "missing")

    with pytest.raises(TypeError):
        state.set("agent1", "output", ["not", "a", "mapping"])


def test_set_keeps_its_own_copy(state):
    output = {"items": [1]}
    extra = ["a"]
    state.set("agent1", "output", output)
    state.set("agent1", "extra", extra)

    output["items"].append(2)
    extra.append("b")

    assert state.get("agent1", "items") == [1]
    assert state.get("agent1", "extra") == ["a"]


def test_summary_is_a_deep_copy(state):
    state.set("agent1", "output", {"items": [1, 2]})
    summary = state.get_summary()

    summary.agent_states["agent1"].outputs["items"].append(3)
    summary.agent_states["agent1"].status = ExecutionStatus.FAILED

    assert state.get("agent1", "items") == [1, 2]
    assert state.get_status("agent1") == ExecutionStatus.PENDING


def test_summary_counts_and_status(state):
    state.update_status("agent1", ExecutionStatus.RUNNING)
    state.update_status("agent1", ExecutionStatus.COMPLETED)
    state.update_status("agent2", ExecutionStatus.RUNNING)

    summary = state.get_summary()
    assert (summary.completed_count, summary.running_count, summary.pending_count) == (1, 1, 1)
    assert summary.status == "partial"

    state.update_status("agent2", ExecutionStatus.FAILED)
    state.update_status("agent3", ExecutionStatus.BLOCKED)
    summary = state.get_summary()
    counted = (summary.completed_count + summary.failed_count + summary.blocked_count
               + summary.pending_count + summary.running_count)
    assert counted == summary.total_agents
    assert summary.status == "failed"


def test_summary_success():
    manager = StateManager("single")
    manager.initialize_agents(["only"])
    manager.update_status("only", ExecutionStatus.RUNNING)
    manager.update_status("only", ExecutionStatus.COMPLETED)
    manager.finish()

    summary = manager.get_summary()
    assert summary.status == "success"
    assert summary.execution_time_seconds >= 0
    assert json.loads(summary.to_json())["status"] == "success"


def test_clear_resets_agent(state):
    state.update_status("agent1", ExecutionStatus.RUNNING)
    state.set("agent1", "output", {"x": 1})

    state.clear("agent1")

    cleared = state.get_agent_state("agent1")
    assert cleared.status == ExecutionStatus.PENDING
    assert cleared.outputs == {}
    assert cleared.start_time is None


def test_export_and_import_json(state, tmp_path):
    state.set("agent1", "input", {"query": "hello"})
    state.update_status("agent1", ExecutionStatus.RUNNING)
    state.set("agent1", "output", {"answer": "world"})
    state.update_status("agent1", ExecutionStatus.COMPLETED)
    state.update_status("agent2", ExecutionStatus.BLOCKED)
    state.finish()

    filepath = tmp_path / "state.json"
    state.export_json(str(filepath))

    restored = StateManager("other")
    restored.import_json(str(filepath))

    assert restored.stack_name == "test-stack"
    assert restored.execution_id == "run-1"
    assert restored.get_status("agent1") == ExecutionStatus.COMPLETED
    assert restored.get_status("agent2") == ExecutionStatus.BLOCKED
    assert restored.get("agent1", "answer") == "world"
    assert restored.get_agent_state("agent1").start_time == state.get_agent_state("agent1").start_time
    assert restored.get_summary().completed_count == 1


def test_concurrent_updates():
    """Many threads update distinct agents without losing writes."""
    agent_ids = [f"agent{i}" for i in range(50)]
    manager = StateManager("threaded")
    manager.initialize_agents(agent_ids)

    def work(agent_id):
        manager.update_status(agent_id, ExecutionStatus.RUNNING)
        manager.set(agent_id, "output", {"id": agent_id})
        manager.update_status(agent_id, ExecutionStatus.COMPLETED)
        manager.get_summary()

    threads = [threading.Thread(target=work, args=(agent_id,)) for agent_id in agent_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    summary = manager.get_summary()
    assert summary.completed_count == 50
    assert all(summary.agent_states[a].outputs == {"id": a} for a in agent_ids)


def test_concurrent_duplicate_start_rejected_once():
    """Only one of several racing RUNNING transitions succeeds."""
    manager = StateManager("race")
    manager.initialize_agents(["agent1"])
    errors = []
    barrier = threading.Barrier(8)

    def start():
        barrier.wait()
        try:
            manager.update_status("agent1", ExecutionStatus.RUNNING)
        except InvalidTransitionError as e:
            errors.append(e)

    threads = [threading.Thread(target=start) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(errors) == 7
    assert manager.get_status("agent1") == ExecutionStatus.RUNNING
