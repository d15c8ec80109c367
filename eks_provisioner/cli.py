"""CLI entry point for eks-provision, built on typer.

Provides ``create``, ``worker``, ``status``, ``cancel`` and ``templates``
commands for running and inspecting cluster provisioning workflows on a
Temporal server.

Usage::

    python -m eks_provisioner --help
    python -m eks_provisioner worker
    python -m eks_provisioner create --request cluster.yaml --run-id demo-1
    python -m eks_provisioner status --run-id demo-1
    python -m eks_provisioner cancel --run-id demo-1
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Optional

import typer
import yaml
from pydantic import ValidationError
from temporalio.service import RPCError

from eks_provisioner import __version__, ui
from eks_provisioner.client import (
    RunClient,
    RunConflictError,
    RunState,
    RunSummary,
    UnknownRunError,
)
from eks_provisioner.config import ProvisionerSettings, load_request, load_settings
from eks_provisioner.config.models import ProvisioningRequest
from eks_provisioner.errors import ProvisioningError
from eks_provisioner.registrar import build_worker
from eks_provisioner.runtime import connect
from eks_provisioner.templates import TemplateProvider
from eks_provisioner.workflows import CLUSTER_WORKFLOW, INFRASTRUCTURE_WORKFLOW

logger = logging.getLogger(__name__)

# ── Exit codes ───────────────────────────────────────────────────────────────

EXIT_SUCCESS = 0
EXIT_VALIDATION_FAILURE = 1
EXIT_AWS_FAILURE = 2
EXIT_TIMED_OUT = 3
EXIT_CANCELLED = 4

_STATE_EXIT = {
    RunState.SUCCEEDED: EXIT_SUCCESS,
    RunState.FAILED: EXIT_AWS_FAILURE,
    RunState.TIMED_OUT: EXIT_TIMED_OUT,
    RunState.CANCELLED: EXIT_CANCELLED,
}


def exit_code_for(summary: RunSummary) -> int:
    """Map a run's terminal state to a process exit code."""
    return _STATE_EXIT.get(summary.state, EXIT_AWS_FAILURE)


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not debug:
        logging.getLogger("botocore").setLevel(logging.WARNING)
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("temporalio").setLevel(logging.WARNING)


def _load_settings(path: Optional[Path]) -> ProvisionerSettings:
    try:
        return load_settings(path)
    except (ValueError, ValidationError, yaml.YAMLError) as exc:
        ui.error_msg(str(exc))
        raise typer.Exit(EXIT_VALIDATION_FAILURE) from exc


async def _run_client(cfg: ProvisionerSettings) -> RunClient:
    return RunClient(await connect(cfg.temporal), cfg)


# ── App ──────────────────────────────────────────────────────────────────────

app = typer.Typer(
    name="eks-provision",
    help="Provision managed Kubernetes clusters on AWS as Temporal workflows.",
    no_args_is_help=True,
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        ui.console.print(f"eks-provision {__version__}")
        raise typer.Exit(EXIT_SUCCESS)


@app.callback()
def _root_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """EKS cluster provisioner."""


# ── create command ───────────────────────────────────────────────────────────


async def _create(
    cfg: ProvisionerSettings,
    req: ProvisioningRequest,
    workflow: str,
    run_id: str,
    with_worker: bool,
) -> RunSummary:
    runs = await _run_client(cfg)
    handle = await runs.start(workflow, run_id, req)
    if not with_worker:
        return await runs.wait(handle)
    async with build_worker(runs.client, cfg):
        return await runs.wait(handle)


@app.command()
def create(
    request: Path = typer.Option(
        ...,
        "--request",
        help="Path to the provisioning request YAML.",
    ),
    run_id: str = typer.Option(
        ...,
        "--run-id",
        help="Run identifier (the workflow ID). Re-using it attaches to or resumes the run.",
    ),
    settings: Optional[Path] = typer.Option(
        None,
        "--settings",
        help="Path to a settings YAML. Defaults to $EKS_PROVISIONER_SETTINGS.",
    ),
    infrastructure_only: bool = typer.Option(
        False,
        "--infrastructure-only",
        help="Run only the infrastructure workflow (network through control plane).",
    ),
    with_worker: bool = typer.Option(
        True,
        "--worker/--no-worker",
        help="Serve the run from an in-process worker, or leave it to `eks-provision worker`.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug logging.",
    ),
) -> None:
    """Create (or resume) a cluster and wait for the run to finish.

    Exit codes: 0 = succeeded, 1 = invalid request or run conflict,
    2 = provider failure, 3 = timed out, 4 = cancelled.
    """
    _configure_logging(debug)
    workflow = INFRASTRUCTURE_WORKFLOW if infrastructure_only else CLUSTER_WORKFLOW

    ui.phase("VALIDATE")
    cfg = _load_settings(settings)
    try:
        req = load_request(request)
    except (FileNotFoundError, ValueError, ValidationError, yaml.YAMLError) as exc:
        ui.error_msg(str(exc))
        raise typer.Exit(EXIT_VALIDATION_FAILURE) from exc
    ui.ok(f"Request for cluster '{req.cluster_name}' in {req.region}")
    ui.detail("node pools", ", ".join(p.name for p in req.node_pools))
    ui.detail("temporal", f"{cfg.temporal.target} ({cfg.temporal.namespace})")
    ui.detail("task queue", cfg.temporal.task_queue)

    ui.phase("CREATE")
    ui.step(f"Running {workflow} as run '{run_id}' ...")
    started = time.monotonic()
    try:
        summary = asyncio.run(_create(cfg, req, workflow, run_id, with_worker))
    except RunConflictError as exc:
        ui.error_msg(str(exc))
        raise typer.Exit(EXIT_VALIDATION_FAILURE) from exc
    except ProvisioningError as exc:
        ui.error_msg(exc.message)
        raise typer.Exit(EXIT_AWS_FAILURE) from exc

    elapsed = ui.elapsed_str(time.monotonic() - started)
    ui.phase("RESULT")
    ui.run_summary(summary)
    if summary.state == RunState.SUCCEEDED:
        _print_success(summary, elapsed)
    raise typer.Exit(exit_code_for(summary))


def _print_success(summary: RunSummary, elapsed: str) -> None:
    result = summary.result or {}
    infra = result.get("infrastructure", result)
    control_plane = infra.get("control_plane", {})
    lines = [
        f"cluster:  {control_plane.get('cluster_name', '-')}",
        f"endpoint: {control_plane.get('endpoint', '-')}",
        f"elapsed:  {elapsed}",
    ]
    groups = result.get("capacity_groups", [])
    partial = [g["pool_name"] for g in groups if not g.get("fulfilled", True)]
    if partial:
        ui.warn(f"Partial capacity for node pool(s): {', '.join(partial)}")
    ui.success_panel(f"Run {summary.run_id} succeeded", "\n".join(lines))


# ── worker command ───────────────────────────────────────────────────────────


async def _serve(cfg: ProvisionerSettings) -> None:
    client = await connect(cfg.temporal)
    await build_worker(client, cfg).run()


@app.command()
def worker(
    settings: Optional[Path] = typer.Option(
        None,
        "--settings",
        help="Path to a settings YAML.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug logging.",
    ),
) -> None:
    """Serve both workflows and all activities until interrupted."""
    _configure_logging(debug)
    cfg = _load_settings(settings)
    ui.step(f"Worker polling '{cfg.temporal.task_queue}' on {cfg.temporal.target} ...")
    try:
        asyncio.run(_serve(cfg))
    except KeyboardInterrupt:
        ui.info("Worker interrupted, shutting down.")
    except ProvisioningError as exc:
        ui.error_msg(exc.message)
        raise typer.Exit(EXIT_AWS_FAILURE) from exc
    raise typer.Exit(EXIT_SUCCESS)


# ── status command ───────────────────────────────────────────────────────────


async def _status(cfg: ProvisionerSettings, run_id: Optional[str]):
    runs = await _run_client(cfg)
    if run_id is None:
        return await runs.list_runs()
    return await runs.summary(run_id)


@app.command()
def status(
    run_id: Optional[str] = typer.Option(
        None,
        "--run-id",
        help="Run to show. Lists all runs when omitted.",
    ),
    settings: Optional[Path] = typer.Option(
        None,
        "--settings",
        help="Path to a settings YAML.",
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the run summary as JSON.",
    ),
) -> None:
    """Show a run's state and its completed steps.

    The completed steps list every resource the run created, in order,
    which is what an operator needs to clean up after a failed run.
    """
    cfg = _load_settings(settings)
    try:
        found = asyncio.run(_status(cfg, run_id))
    except UnknownRunError as exc:
        ui.error_msg(str(exc))
        raise typer.Exit(EXIT_VALIDATION_FAILURE) from exc
    except (ProvisioningError, RPCError) as exc:
        ui.error_msg(str(exc))
        raise typer.Exit(EXIT_AWS_FAILURE) from exc

    if run_id is None:
        if not found:
            ui.info("No runs recorded.")
        else:
            ui.console.print(ui.runs_table(found))
        raise typer.Exit(EXIT_SUCCESS)

    if as_json:
        typer.echo(found.to_sorted_json())
    else:
        ui.phase("STATUS")
        ui.run_summary(found)
    raise typer.Exit(EXIT_SUCCESS)


# ── cancel command ───────────────────────────────────────────────────────────


async def _cancel(cfg: ProvisionerSettings, run_id: str) -> RunState:
    runs = await _run_client(cfg)
    return await runs.cancel(run_id)


@app.command()
def cancel(
    run_id: str = typer.Option(
        ...,
        "--run-id",
        help="Run to cancel.",
    ),
    settings: Optional[Path] = typer.Option(
        None,
        "--settings",
        help="Path to a settings YAML.",
    ),
) -> None:
    """Request cancellation of a running workflow.

    Running activities observe the request at their next heartbeat or poll
    tick and the run ends ``Cancelled``.
    """
    cfg = _load_settings(settings)
    try:
        state = asyncio.run(_cancel(cfg, run_id))
    except UnknownRunError as exc:
        ui.error_msg(str(exc))
        raise typer.Exit(EXIT_VALIDATION_FAILURE) from exc
    except (ProvisioningError, RPCError) as exc:
        ui.error_msg(str(exc))
        raise typer.Exit(EXIT_AWS_FAILURE) from exc

    if state != RunState.RUNNING:
        ui.error_msg(f"Run {run_id} is already {state.value}")
        raise typer.Exit(EXIT_VALIDATION_FAILURE)
    ui.ok(f"Cancellation requested for run {run_id}")
    raise typer.Exit(EXIT_SUCCESS)


# ── templates command ────────────────────────────────────────────────────────


@app.command()
def templates(
    override_dir: Optional[Path] = typer.Option(
        None,
        "--override-dir",
        help="Directory whose <kind>.yaml files replace the bundled templates.",
    ),
) -> None:
    """List and validate the infrastructure templates."""
    provider = TemplateProvider(override_dir)
    ui.phase("TEMPLATES")
    failures = 0
    for kind in provider.kinds():
        try:
            provider.get(kind)
        except ProvisioningError as exc:
            failures += 1
            ui.fail(f"{kind}: {exc.message}")
            continue
        ui.ok(f"{kind} [dim]({provider.source(kind)})[/]")

    if failures:
        raise typer.Exit(EXIT_VALIDATION_FAILURE)
    raise typer.Exit(EXIT_SUCCESS)


# ── Entry point ──────────────────────────────────────────────────────────────


def main() -> int:
    """Run the CLI and return an exit code."""
    try:
        app()
        return 0
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else 0


if __name__ == "__main__":
    sys.exit(main())
