"""OpenTelemetry tracing for stack executions.

Spans are produced for:
- Whole stack executions (``stack.execute``)
- Individual agent runs (``agent.execute``), nested under the stack span

Tracers are passed to executors explicitly; nothing is installed globally.
"""

from contextlib import contextmanager, nullcontext
from typing import Any, Dict, Iterator, Optional
from loguru import logger

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import SpanKind, Status, StatusCode


class StackTracer:
    """Tracer wrapper for stack engine operations."""

    def __init__(self, tracer: Optional[Any] = None, provider: Optional[TracerProvider] = None):
        """Initialize stack tracer.

        Args:
            tracer: OpenTelemetry tracer instance (tracing disabled if None)
            provider: Provider owning the tracer, shut down by ``shutdown``
        """
        self.tracer = tracer
        self.provider = provider
        self.enabled = tracer is not None

    def trace_stack_execution(self, stack_name: str, execution_id: str, total_agents: int) -> Any:
        """Create a span for a whole stack execution.

        Returns:
            Span context manager
        """
        if not self.enabled:
            return nullcontext()

        return self.tracer.start_as_current_span(
            "stack.execute",
            kind=SpanKind.INTERNAL,
            attributes={
                "stack.name": stack_name,
                "stack.execution_id": execution_id,
                "stack.total_agents": total_agents,
            },
        )

    @contextmanager
    def trace_agent(self, agent_id: str, uses: str, batch_index: int) -> Iterator[Any]:
        """Create a span for one agent run."""
        if not self.enabled:
            yield None
            return

        with self.tracer.start_as_current_span(
            "agent.execute",
            kind=SpanKind.INTERNAL,
            attributes={
                "agent.id": agent_id,
                "agent.uses": uses,
                "agent.batch": batch_index,
            },
        ) as span:
            yield span

    def set_attribute(self, key: str, value: Any) -> None:
        """Set an attribute on the current span."""
        if not self.enabled:
            return

        span = trace.get_current_span()
        if span:
            span.set_attribute(key, value)

    def record_exception(self, exception: BaseException) -> None:
        """Record an exception in the current span and mark it failed."""
        if not self.enabled:
            return

        span = trace.get_current_span()
        if span:
            span.record_exception(exception)
            span.set_status(Status(StatusCode.ERROR, str(exception)))

    def record_metrics(self, metrics: Dict[str, Any]) -> None:
        """Record metrics as span attributes."""
        if not self.enabled:
            return

        span = trace.get_current_span()
        if span:
            for key, value in metrics.items():
                if isinstance(value, (str, bool, int, float)):
                    span.set_attribute(f"stack.metrics.{key}", value)
                else:
                    span.set_attribute(f"stack.metrics.{key}", str(value))

    def shutdown(self) -> None:
        """Flush and shut down the owned provider, if any."""
        if self.provider is not None:
            self.provider.shutdown()


def initialize_telemetry(
    service_name: str = "sentinel-stacks",
    exporter_type: str = "console",
    otlp_endpoint: Optional[str] = None,
    enabled: bool = True
) -> StackTracer:
    """Create a tracer backed by its own TracerProvider.

    Args:
        service_name: Name of the service
        exporter_type: Type of exporter (console, otlp, none)
        otlp_endpoint: OTLP endpoint URL
        enabled: Whether to enable tracing

    Returns:
        StackTracer (disabled when tracing is off or misconfigured)
    """
    if not enabled or exporter_type == "none":
        return StackTracer()

    if exporter_type == "console":
        exporter = ConsoleSpanExporter()
        logger.info("[TELEMETRY] Using console exporter")
    elif exporter_type == "otlp":
        # Provided by the "otlp" extra
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        exporter = OTLPSpanExporter(endpoint=otlp_endpoint or "http://localhost:4317")
        logger.info(f"[TELEMETRY] Using OTLP exporter at {otlp_endpoint}")
    else:
        logger.error(f"[TELEMETRY] Unknown exporter type: {exporter_type}")
        return StackTracer()

    provider = TracerProvider(resource=Resource(attributes={SERVICE_NAME: service_name}))
    provider.add_span_processor(BatchSpanProcessor(exporter))

    logger.info(f"[TELEMETRY] Tracing initialized for service '{service_name}'")
    return StackTracer(provider.get_tracer("sentinel.stacks"), provider=provider)
