# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ravenfleet/cli/app.py
from __future__ import annotations

import contextlib
import functools
from pathlib import Path
from typing import Optional

import typer
import yaml
from pydantic import ValidationError

from ravenfleet.cluster.client import RavenAdminClient
from ravenfleet.cluster.reconciler import ClusterReconciler
from ravenfleet.config.loader import load_config
from ravenfleet.config.models import ClusterSpec
from ravenfleet.errors import RavenFleetError
from ravenfleet.logging.log import init_logging
from ravenfleet.observers.dispatcher import EventBus
from ravenfleet.observers.jsonfile import JsonFileObserver
from ravenfleet.observers.logger import LoggerObserver
from ravenfleet.provision.deployer import NodeProvisioner
from ravenfleet.provision.settings import populate_urls
from ravenfleet.state.reader import StateReader

# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="RavenDB cluster provisioning CLI")

_state = {"verbose": False}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log DEBUG output (host transcripts) to the console"),
):
    _state["verbose"] = verbose


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

class Session:
    """Logger, run id and event bus shared by the steps of one command."""

    def __init__(self, title: str):
        self.logger, self.run_id, self.log_path = init_logging(verbose=_state["verbose"])
        self.bus = EventBus(observers=[
            LoggerObserver(self.logger),
            JsonFileObserver(Path.home() / ".ravenfleet/logs" / f"{self.run_id}.jsonl"),
        ])

        typer.echo("")
        typer.secho(title, bold=True)
        typer.echo(f"  Run ID   : {self.run_id}")
        typer.echo(f"  Logs     : {self.log_path}")
        typer.echo("")

    def reconciler(self, spec: ClusterSpec, client) -> ClusterReconciler:
        return ClusterReconciler(spec, client, bus=self.bus, run_id=self.run_id)


def handle_errors(fn):
    """Report project and validation errors and exit with status 1."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (RavenFleetError, ValidationError) as exc:
            typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1) from exc

    return wrapper


@contextlib.contextmanager
def admin_client(spec: ClusterSpec, session: Session):
    """Admin client authenticated with the identity installed on the first host."""
    reader = StateReader(spec, bus=session.bus, run_id=session.run_id)
    certificate = reader.convert_pfx()
    client = RavenAdminClient.for_spec(spec, certificate if not certificate.is_empty() else None)
    try:
        yield client
    finally:
        client.close()


def _ensure_urls(spec: ClusterSpec) -> None:
    if not spec.url.urls:
        populate_urls(spec)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
@handle_errors
def deploy(
    config: str = typer.Argument(..., help="Cluster definition YAML"),
    serial: bool = typer.Option(False, "--serial", help="Deploy hosts one after another"),
    skip_install: bool = typer.Option(
        False,
        "--skip-install",
        help="Only join nodes and reconcile databases on hosts that already run the server",
    ),
):
    session = Session("RavenDB Cluster Deployment Started")
    spec = load_config(config)

    if skip_install:
        _ensure_urls(spec)
    else:
        provisioner = NodeProvisioner(spec, bus=session.bus, run_id=session.run_id)
        typer.echo("[package] Verifying server package...")
        typer.echo(f"  {provisioner.check_package()}")

        typer.echo("\n[nodes] Installing RavenDB...")
        for url in provisioner.deploy_all(parallel=not serial):
            typer.echo(f"  {url}")

    with admin_client(spec, session) as client:
        reconciler = session.reconciler(spec, client)
        typer.echo("\n[cluster] Joining nodes...")
        reconciler.add_nodes_to_cluster()
        typer.echo("\n[cluster] Reconciling databases...")
        topology_id = reconciler.deploy()

    typer.secho(f"\nCluster {topology_id} is ready", fg=typer.colors.GREEN)


@app.command()
@handle_errors
def reconcile(config: str = typer.Argument(..., help="Cluster definition YAML")):
    session = Session("RavenDB Cluster Reconcile Started")
    spec = load_config(config)
    _ensure_urls(spec)
    with admin_client(spec, session) as client:
        topology_id = session.reconciler(spec, client).deploy()
    typer.secho(f"Cluster {topology_id} reconciled", fg=typer.colors.GREEN)


@app.command("join-nodes")
@handle_errors
def join_nodes(config: str = typer.Argument(..., help="Cluster definition YAML")):
    session = Session("RavenDB Cluster Membership Update")
    spec = load_config(config)
    _ensure_urls(spec)
    with admin_client(spec, session) as client:
        session.reconciler(spec, client).add_nodes_to_cluster()
    typer.secho("Cluster membership matches the config", fg=typer.colors.GREEN)


@app.command()
@handle_errors
def read(
    config: str = typer.Argument(..., help="Cluster definition YAML"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write node states to this YAML file"),
):
    session = Session("RavenDB Cluster State")
    spec = load_config(config)
    _ensure_urls(spec)
    states = StateReader(spec, bus=session.bus, run_id=session.run_id).read_all()
    text = yaml.safe_dump([s.to_dict() for s in states], sort_keys=False)
    if output is not None:
        output.write_text(text)
        typer.echo(f"Wrote {len(states)} node state(s) to {output}")
    else:
        typer.echo(text)


@app.command()
@handle_errors
def destroy(config: str = typer.Argument(..., help="Cluster definition YAML")):
    session = Session("RavenDB Cluster Teardown")
    spec = load_config(config)
    NodeProvisioner(spec, bus=session.bus, run_id=session.run_id).remove_all()
    typer.secho(f"Removed RavenDB from {len(spec.hosts)} host(s)", fg=typer.colors.GREEN)


@app.command("check-package")
@handle_errors
def check_package(config: str = typer.Argument(..., help="Cluster definition YAML")):
    spec = load_config(config)
    url = NodeProvisioner(spec).check_package()
    typer.echo(f"Package available: {url}")


if __name__ == "__main__":
    app()
