"""
nodestrap — CLI entrypoint.

Usage:
    nodestrap --help
    nodestrap node [--init-cluster]
    nodestrap cluster
    nodestrap host [--hostname NAME]
    nodestrap haproxy
    nodestrap plan node
"""

from __future__ import annotations

import json
import os
import sys
import uuid
from datetime import UTC, datetime
from pathlib import Path

import click

from nodestrap import __version__
from nodestrap.core.observability.logging_config import setup_logging


def generate_run_id() -> str:
    """Unique id for one provisioning run."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    return f"run-{now}-{uuid.uuid4().hex[:6]}"


@click.group()
@click.version_option(version=__version__, prog_name="nodestrap")
@click.option("--verbose", "-v", is_flag=True, help="Log every step transition.")
@click.option("--quiet", "-q", is_flag=True, help="Only print failures.")
@click.option("--debug", is_flag=True, help="Enable debug logging (commands, context writes).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to nodestrap.yml (default: auto-detect, else built-in defaults).",
)
@click.option(
    "--root",
    "root",
    type=click.Path(file_okay=False),
    default="/",
    show_default=True,
    help=(
        "Root that host files are read and written under. "
        "Commands (apt, systemctl, modprobe) still act on this machine."
    ),
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
    root: str,
) -> None:
    """nodestrap — bootstrap this host into a Kubernetes node."""
    ctx.ensure_object(dict)
    ctx.obj["quiet"] = quiet
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["root"] = Path(root)
    ctx.obj["run_id"] = generate_run_id()

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("NODESTRAP_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("NODESTRAP_LOG_FILE"),
        log_file_level=os.environ.get("NODESTRAP_LOG_FILE_LEVEL"),
        quiet_third_party=not debug,
        run_id=ctx.obj["run_id"],
    )


def _load_config(ctx: click.Context):
    from nodestrap.core.config.loader import ConfigError, load_config

    try:
        return load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)


def _run(
    ctx: click.Context,
    name: str,
    *,
    as_json: bool,
    prompter=None,
    include_cluster: bool = False,
) -> None:
    from nodestrap.adapters.host import Host
    from nodestrap.core.models.step import StepState
    from nodestrap.core.pipeline import create_pipeline

    config = _load_config(ctx)
    root: Path = ctx.obj["root"]
    if root.resolve() == Path("/") and os.geteuid() != 0:
        click.secho("❌ Provisioning / needs root. Re-run with sudo, or use --root.", fg="red", err=True)
        sys.exit(1)

    pipeline = create_pipeline(
        name,
        host=Host(root),
        config=config,
        prompter=prompter,
        include_cluster=include_cluster,
    )

    quiet = ctx.obj.get("quiet", False) or as_json

    def progress(record) -> None:
        if quiet:
            return
        if record.state == StepState.PENDING:
            click.echo(f"→ {record.name}")
        elif record.state == StepState.SATISFIED:
            click.secho(f"  = {record.name}: already satisfied", fg="cyan")
        elif record.state == StepState.SUCCEEDED:
            click.secho(f"  ✓ {record.name}", fg="green")

    result = pipeline.execute(sink=progress)

    if as_json:
        data = result.to_dict()
        data["run_id"] = ctx.obj["run_id"]
        click.echo(json.dumps(data, indent=2))
    elif not ctx.obj.get("quiet", False):
        click.echo()
        for line in result.summary_lines():
            click.echo(f"   {line}")

    failed = result.failed_step
    if failed is not None:
        click.secho(
            f"❌ Step '{failed.name}' failed: {failed.error_kind}: {failed.error}",
            fg="red",
            err=True,
        )
        sys.exit(result.exit_code)


@cli.command()
@click.option("--init-cluster", is_flag=True, help="Also run kubeadm init and deploy the network add-on.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def node(ctx: click.Context, init_cluster: bool, as_json: bool) -> None:
    """Install the container runtime and Kubernetes tooling."""
    _run(ctx, "node", as_json=as_json, include_cluster=init_cluster)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def cluster(ctx: click.Context, as_json: bool) -> None:
    """Initialise the control plane and deploy the network add-on."""
    _run(ctx, "cluster", as_json=as_json)


@cli.command()
@click.option("--hostname", "hostname", default=None, help="Pick this hostname instead of asking.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def host(ctx: click.Context, hostname: str | None, as_json: bool) -> None:
    """Configure /etc/hosts, the hostname and a static netplan address."""
    from nodestrap.core.pipeline.prompter import ClickPrompter, ScriptedPrompter

    prompter = ScriptedPrompter([hostname]) if hostname else ClickPrompter()
    _run(ctx, "host", as_json=as_json, prompter=prompter)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def haproxy(ctx: click.Context, as_json: bool) -> None:
    """Install HAProxy and deploy ./haproxy.cfg."""
    _run(ctx, "haproxy", as_json=as_json)


@cli.command()
@click.argument("pipeline", type=click.Choice(["node", "cluster", "host", "haproxy"]))
@click.option("--init-cluster", is_flag=True, help="Include cluster steps after node steps.")
@click.pass_context
def plan(ctx: click.Context, pipeline: str, init_cluster: bool) -> None:
    """List a pipeline's steps in execution order, without touching the host."""
    from nodestrap.adapters.host import Host
    from nodestrap.core.pipeline import create_pipeline

    config = _load_config(ctx)
    built = create_pipeline(
        pipeline,
        host=Host(ctx.obj["root"]),
        config=config,
        include_cluster=init_cluster,
    )
    click.secho(f"\n📋 {pipeline}", fg="cyan", bold=True)
    for i, step in enumerate(built.build(), start=1):
        suffix = f" — {step.description}" if step.description else ""
        click.echo(f"  {i:2d}. {step.name}{suffix}")
    click.echo()


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
