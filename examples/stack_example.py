"""Example: running multi-agent stacks with the simulated runtime."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import threading

from loguru import logger

from sentinel.settings.settings import Settings
from sentinel.stacks.graph import (
    AgentSpec,
    ExecutionConfig,
    ExecutionContext,
    FailurePolicy,
    SimulatedAgentRuntime,
    StackCancelledError,
    StackExecutor,
    StackSpec,
)
from sentinel.stacks.logging_config import log_summary, setup_logging_from_settings
from sentinel.stacks.telemetry import initialize_telemetry


def example_data_pipeline(console):
    """
    Example: Data processing pipeline.

    Pipeline:
    1. Extraction - Load data from the source
    2. Analysis - Two analyses of the extracted data (parallel)
    3. Report - Combine both analyses
    """

    print("="*80)
    print("DATA PROCESSING PIPELINE")
    print("="*80)

    spec = StackSpec.model_validate({
        "name": "data-pipeline",
        "description": "Extract, analyse and report",
        "agents": [
            {"id": "extractor", "uses": "data-extractor:latest", "params": {"source": "database"}},
            {"id": "stats", "uses": "stats-analyzer:latest", "inputFrom": ["extractor"]},
            {"id": "patterns", "uses": "pattern-detector:latest", "inputFrom": ["extractor"]},
            {"id": "reporter", "uses": "report-generator:latest", "inputFrom": ["stats", "patterns"]},
        ],
    })

    runtime = SimulatedAgentRuntime(delay=0.2)
    tracer = initialize_telemetry(service_name="stack-example", exporter_type="none")
    executor = StackExecutor(spec, runtime, ExecutionConfig(max_concurrency=2), tracer=tracer)

    print("\n" + executor.visualize())

    summary = executor.execute()
    log_summary(summary, console=console)
    print(f"Reporter received: {summary.agent_states['reporter'].outputs['received']}")


def example_failure_handling(console):
    """
    Example: A failing agent blocks its dependents but not independent branches.
    """

    print("\n\n" + "="*80)
    print("FAILURE HANDLING")
    print("="*80)

    spec = StackSpec(name="two-branches", agents=[
        AgentSpec(id="fetch_a", uses="fetcher"),
        AgentSpec(id="parse_a", uses="parser", input_from=["fetch_a"]),
        AgentSpec(id="fetch_b", uses="fetcher"),
        AgentSpec(id="parse_b", uses="parser", input_from=["fetch_b"]),
    ])
    runtime = SimulatedAgentRuntime(delay=0.1, fail_ids=["fetch_a"])

    summary = StackExecutor(spec, runtime).execute()
    log_summary(summary, console=console)

    # Fail-fast stops before batch 2
    config = ExecutionConfig(failure_policy=FailurePolicy.FAIL_FAST)
    summary = StackExecutor(spec, runtime, config).execute()
    log_summary(summary, console=console)


def example_cancellation(console):
    """
    Example: Cancelling a running stack from another thread.
    """

    print("\n\n" + "="*80)
    print("CANCELLATION")
    print("="*80)

    spec = StackSpec(name="long-running", agents=[
        AgentSpec(id="step1", uses="worker"),
        AgentSpec(id="step2", uses="worker", input_from=["step1"]),
        AgentSpec(id="step3", uses="worker", input_from=["step2"]),
    ])
    context = ExecutionContext(stack_name=spec.name)
    executor = StackExecutor(spec, SimulatedAgentRuntime(delay=1.0))

    threading.Timer(1.5, context.cancel).start()

    try:
        executor.execute(context)
    except StackCancelledError as e:
        logger.warning(f"Stack cancelled: {e}")
        log_summary(e.summary, console=console)


if __name__ == "__main__":
    settings = Settings()
    console = setup_logging_from_settings(settings)

    print("\n" + "="*80)
    print("MULTI-AGENT STACK EXAMPLES")
    print("="*80)

    try:
        example_data_pipeline(console)
    except Exception as e:
        logger.exception(f"Data pipeline example failed: {e}")

    try:
        example_failure_handling(console)
    except Exception as e:
        logger.exception(f"Failure handling example failed: {e}")

    try:
        example_cancellation(console)
    except Exception as e:
        logger.exception(f"Cancellation example failed: {e}")

    print("\n" + "="*80)
    print("EXAMPLES COMPLETE")
    print("="*80)
