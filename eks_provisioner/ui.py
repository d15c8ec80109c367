"""Colorized console output for eks-provision.

Thin wrapper around :mod:`rich` that degrades gracefully when stdout is
not a TTY (piped, CI, cron).  All user-facing status messages flow through
this module; ``logger.*`` calls are kept for structured logging.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from eks_provisioner.client import RunState, RunSummary
from eks_provisioner.workflows.models import WorkflowProgress

# Shared console; force_terminal=None lets Rich decide.
console = Console(stderr=False, force_terminal=None)

# ── Symbols ────────────────────────────────────────────────────────────────

_PASS = "[bold green]✓[/]"
_FAIL = "[bold red]✗[/]"
_WARN = "[bold yellow]⚠[/]"
_ARROW = "[bold cyan]›[/]"
_DOT = "[dim]·[/]"

_STATE_STYLE = {
    RunState.RUNNING: "cyan",
    RunState.SUCCEEDED: "green",
    RunState.FAILED: "red",
    RunState.TIMED_OUT: "yellow",
    RunState.CANCELLED: "magenta",
}

# ── Phase headers ──────────────────────────────────────────────────────────


def phase(title: str) -> None:
    """Print a bold phase header (e.g. ``CREATE``, ``STATUS``)."""
    console.print()
    console.print(f"[bold blue]── {title} ──[/]")


# ── Status lines ───────────────────────────────────────────────────────────


def ok(msg: str) -> None:
    console.print(f"  {_PASS} {msg}")


def fail(msg: str) -> None:
    console.print(f"  {_FAIL} [red]{msg}[/]")


def warn(msg: str) -> None:
    console.print(f"  {_WARN} [yellow]{msg}[/]")


def step(msg: str) -> None:
    """Cyan arrow + action message (in-progress)."""
    console.print(f"  {_ARROW} {msg}")


def info(msg: str) -> None:
    console.print(f"  {_DOT} [dim]{msg}[/]")


def detail(key: str, value: str) -> None:
    """Key-value pair, indented."""
    console.print(f"    [bold]{key}[/]: {value}")


def error_msg(msg: str) -> None:
    """Bold red error message (not indented)."""
    console.print(f"[bold red]ERROR:[/] {msg}")


# ── Banners / panels ──────────────────────────────────────────────────────


def success_panel(title: str, body: str) -> None:
    console.print()
    console.print(
        Panel(
            body,
            title=f"[bold green]{title}[/]",
            border_style="green",
            padding=(1, 2),
        )
    )


def error_panel(title: str, body: str) -> None:
    console.print()
    console.print(
        Panel(
            body,
            title=f"[bold red]{title}[/]",
            border_style="red",
            padding=(1, 2),
        )
    )


# ── Runs ──────────────────────────────────────────────────────────────────


def state_label(state: RunState) -> str:
    style = _STATE_STYLE.get(state, "bold")
    return f"[{style}]{state.value}[/]"


def _identifiers(output: Dict[str, Any]) -> str:
    """Short ``key=value`` summary of the IDs/ARNs/names in a step output."""
    parts = []
    for key in sorted(output):
        value = output[key]
        if isinstance(value, str) and value and (
            key.endswith(("_id", "_arn", "_name", "_ids")) or key == "endpoint"
        ):
            parts.append(f"{key}={value}")
        elif isinstance(value, list) and key.endswith("_ids"):
            parts.append(f"{key}={','.join(str(v) for v in value)}")
    return " ".join(parts)


def steps_table(progress: WorkflowProgress) -> Table:
    """Completed steps with their status and created identifiers."""
    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Resources", overflow="fold")
    for index, key in enumerate(progress.completed_steps, start=1):
        output = progress.outputs.get(key) or {}
        status = output.get("status", "")
        table.add_row(str(index), key, str(status), _identifiers(output))
    for key in progress.running_steps:
        table.add_row("", key, "[cyan]Running[/]", "")
    return table


def run_summary(summary: RunSummary) -> None:
    """Render the state, steps and failure reason of *summary*."""
    detail("run", summary.run_id)
    detail("workflow", summary.workflow)
    detail("state", state_label(summary.state))
    if summary.last_completed_step:
        detail("last completed step", summary.last_completed_step)
    if summary.progress.completed_steps or summary.progress.running_steps:
        console.print()
        console.print(steps_table(summary.progress))

    failure = summary.failure
    if failure is not None:
        body = (
            f"step:   {failure.step or '-'}\n"
            f"kind:   {failure.kind.value}\n"
            f"reason: {failure.message or '-'}"
        )
        if failure.resource:
            body += f"\nresource: {failure.resource}"
        if failure.details:
            extras = ", ".join(f"{k}={failure.details[k]}" for k in sorted(failure.details))
            body += f"\ndetails: {extras}"
        error_panel(f"Run {summary.state.value}", body)


def runs_table(summaries: Iterable[RunSummary]) -> Table:
    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("Run")
    table.add_column("Workflow")
    table.add_column("State")
    table.add_column("Started", style="dim")
    table.add_column("Closed", style="dim")
    for summary in summaries:
        table.add_row(
            summary.run_id,
            summary.workflow,
            state_label(summary.state),
            _timestamp(summary.started_at),
            _timestamp(summary.closed_at),
        )
    return table


def _timestamp(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"


# ── Progress helpers ───────────────────────────────────────────────────────


def elapsed_str(seconds: float) -> str:
    """Format seconds as ``Xm Ys``."""
    m, s = divmod(int(seconds), 60)
    if m > 0:
        return f"{m}m {s}s"
    return f"{s}s"
