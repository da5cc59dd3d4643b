"""Rich logging configuration for the stack engine."""

from typing import Any, Dict, Optional

from loguru import logger
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from rich.traceback import install as install_rich_traceback

from .graph.state import ExecutionStatus, StackExecutionSummary


_STATUS_STYLES = {
    ExecutionStatus.PENDING: "dim",
    ExecutionStatus.RUNNING: "cyan",
    ExecutionStatus.COMPLETED: "green",
    ExecutionStatus.FAILED: "red",
    ExecutionStatus.BLOCKED: "yellow",
}


def setup_rich_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    show_path: bool = True,
    show_time: bool = True,
    rich_tracebacks: bool = True,
    console: Optional[Console] = None,
    use_stderr: bool = False,
    file_level: str = "DEBUG",
    rotation: str = "10 MB",
    retention: str = "7 days",
    compression: str = "zip"
) -> Console:
    """Setup rich logging with loguru.

    Args:
        level: Console logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file for detailed logs
        show_path: Show file path in console logs
        show_time: Show timestamp in console logs
        rich_tracebacks: Enable rich tracebacks with syntax highlighting
        console: Optional Rich Console instance (creates new if None)
        use_stderr: Force output to stderr instead of stdout
        file_level: Logging level of the file sink
        rotation: File rotation size
        retention: File retention period
        compression: Rotated file compression format

    Returns:
        Console instance used for logging
    """
    if console is None:
        console = Console(stderr=use_stderr)

    if rich_tracebacks:
        install_rich_traceback(
            show_locals=False,
            width=console.width,
            extra_lines=3,
            word_wrap=True,
            console=console
        )

    # Remove default loguru handlers
    logger.remove()

    logger.add(
        RichHandler(
            console=console,
            rich_tracebacks=rich_tracebacks,
            markup=False,
            show_time=show_time,
            show_level=True,
            show_path=show_path
        ),
        format="{message}",
        level=level
    )

    if log_file:
        logger.add(
            log_file,
            rotation=rotation,
            retention=retention,
            compression=compression,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            level=file_level
        )

    return console


def setup_logging_from_settings(settings: Any, console: Optional[Console] = None) -> Console:
    """Configure logging from a ``Settings`` instance."""
    return setup_rich_logging(
        level=settings.log_level,
        log_file=settings.log_file,
        show_path=settings.log_show_path,
        show_time=settings.log_show_time,
        rich_tracebacks=settings.log_rich_tracebacks,
        console=console,
        file_level=settings.log_file_level,
        rotation=settings.log_file_rotation,
        retention=settings.log_file_retention,
        compression=settings.log_file_compression
    )


def log_metrics(metrics: Dict[str, Any], title: str = "Metrics", console: Optional[Console] = None) -> None:
    """Log metrics in a formatted table.

    Args:
        metrics: Dictionary of metrics
        title: Title for the metrics display
        console: Console instance (creates new if None)
    """
    if console is None:
        console = Console()

    table = Table(title=title, show_header=True, header_style="bold green")
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", style="magenta")

    for key, value in metrics.items():
        formatted_key = key.replace("_", " ").title()
        table.add_row(formatted_key, str(value))

    console.print(table)


def log_summary(summary: StackExecutionSummary, console: Optional[Console] = None) -> Table:
    """Render a stack execution summary as a table of agent states.

    Args:
        summary: Summary returned by an executor
        console: Console instance (creates new if None)

    Returns:
        The rendered table
    """
    if console is None:
        console = Console()

    table = Table(
        title=f"{escape(summary.stack_name)} ({summary.status})",
        show_header=True,
        header_style="bold magenta"
    )
    table.add_column("Agent", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Duration")
    table.add_column("Error", overflow="fold")

    for agent_id, state in summary.agent_states.items():
        duration = state.duration_seconds
        table.add_row(
            escape(agent_id),
            f"[{_STATUS_STYLES[state.status]}]{state.status.value}[/]",
            f"{duration:.2f}s" if duration is not None else "-",
            escape(state.error_message or "")
        )

    console.print(table)
    log_metrics(
        {
            "total_agents": summary.total_agents,
            "completed": summary.completed_count,
            "failed": summary.failed_count,
            "blocked": summary.blocked_count,
            "pending": summary.pending_count,
        },
        title="Execution Counts",
        console=console
    )
    return table
