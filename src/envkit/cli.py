"""Typer CLI for envkit."""

from __future__ import annotations

from pathlib import Path
from typing import NoReturn

import structlog
import typer
from rich.console import Console
from rich.markup import escape

from envkit.catalog.models import ClusterRef
from envkit.catalog.naming import default_cluster_name, generate_run_id
from envkit.catalog.store import ResourceCatalog
from envkit.config.loader import load_environment_config, resolve_region
from envkit.config.models import EnvironmentConfig, validate_cluster_name
from envkit.context import EnvironmentContext
from envkit.errors import EnvkitError, InvalidConfiguration
from envkit.lifecycle.decommissioner import Decommissioner
from envkit.lifecycle.deploy import WorkloadCleaner, WorkloadDeployer
from envkit.lifecycle.provisioner import Provisioner
from envkit.lifecycle.reporting import RunReport, render_catalog, render_report
from envkit.logging import configure_logging
from envkit.providers.aws import AwsProvider
from envkit.providers.tools import check_prerequisites

logger = structlog.get_logger()
console = Console()
app = typer.Typer(name="envkit", help="EKS demo environment lifecycle CLI")

EXIT_INTERRUPTED = 130

ConfigOption = typer.Option(None, "--config", "-c", help="Environment YAML")


@app.callback()
def main(
    log_level: str = typer.Option("INFO", "--log-level", help="Log level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON logs"),
) -> None:
    """Provision, deploy to, and tear down an EKS demo environment."""
    try:
        configure_logging(log_level, json=json_logs)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--log-level") from exc


def _abort(exc: Exception, report: RunReport | None = None) -> NoReturn:
    if report is not None and report.steps:
        render_report(report, console)
    console.print(f"[red]Error:[/red] {escape(str(exc))}")
    raise typer.Exit(1) from exc


def _interrupted(report: RunReport | None = None) -> NoReturn:
    if report is not None:
        render_report(report, console)
    console.print("[yellow]Interrupted[/yellow]")
    raise typer.Exit(EXIT_INTERRUPTED)


def _load_config(config_path: str | None) -> EnvironmentConfig:
    try:
        return load_environment_config(Path(config_path) if config_path else None)
    except (FileNotFoundError, TypeError, ValueError) as exc:
        _abort(InvalidConfiguration(str(exc)))


def _load_catalog(
    config: EnvironmentConfig, region: str | None = None
) -> tuple[ResourceCatalog, EnvironmentContext]:
    workdir = Path.cwd()
    catalog = ResourceCatalog.load(
        workdir / config.paths.snapshot, config, workdir=workdir, region=region
    )
    return catalog, catalog.context(config, workdir)


def _check_same_environment(
    existing: ResourceCatalog, name: str | None, region: str | None
) -> None:
    cluster = existing.cluster
    if name and name != cluster.name:
        msg = (
            f"A snapshot for environment '{cluster.name}' already exists at "
            f"{existing.path}; decommission it first"
        )
        raise InvalidConfiguration(msg)
    if region and region != cluster.region:
        msg = (
            f"Environment '{cluster.name}' already exists in {cluster.region}; "
            f"decommission it before provisioning in {region}"
        )
        raise InvalidConfiguration(msg)


@app.command()
def provision(
    region: str | None = typer.Option(None, "--region", "-r", help="AWS region"),
    cluster_name: str | None = typer.Option(
        None, "--cluster-name", help="Environment (cluster) name"
    ),
    config_path: str | None = ConfigOption,
) -> None:
    """Create the cluster and every supporting resource."""
    config = _load_config(config_path)
    provisioner: Provisioner | None = None
    try:
        check_prerequisites(config.prerequisites.provision)
        workdir = Path.cwd()
        snapshot_path = workdir / config.paths.snapshot
        existing: ResourceCatalog | None = None
        if snapshot_path.exists():
            existing = ResourceCatalog.load(snapshot_path, config, workdir=workdir)
            _check_same_environment(
                existing, cluster_name or config.cluster_name, region
            )
            console.print(
                f"[yellow]Reusing run {existing.run_id}[/yellow] "
                f"for environment {existing.cluster.name}"
            )
            ctx = existing.context(config, workdir)
            provider = AwsProvider(ctx.cluster.region)
        else:
            resolved_region = resolve_region(config, region)
            run_id = generate_run_id()
            name = cluster_name or config.cluster_name
            if not name:
                name = typer.prompt(
                    "Environment name", default=default_cluster_name(run_id)
                )
            try:
                name = validate_cluster_name(name)
            except ValueError as exc:
                raise InvalidConfiguration(str(exc)) from exc
            provider = AwsProvider(resolved_region)
            cluster = ClusterRef(
                name=name,
                region=resolved_region,
                account_id=provider.caller_account(),
            )
            ctx = EnvironmentContext(
                config=config, run_id=run_id, cluster=cluster, workdir=workdir
            )

        console.print(
            f"[yellow]Provisioning[/yellow] {ctx.cluster.name} in {ctx.cluster.region}"
        )
        provisioner = Provisioner(ctx, provider, catalog=existing)
        report = provisioner.run()
    except KeyboardInterrupt:
        _interrupted(provisioner.report if provisioner else None)
    except EnvkitError as exc:
        _abort(exc, provisioner.report if provisioner else None)

    render_report(report, console)
    console.print(f"[green]Environment {ctx.cluster.name} is ready[/green]")


@app.command()
def decommission(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    config_path: str | None = ConfigOption,
) -> None:
    """Delete every resource of the environment, in reverse order."""
    config = _load_config(config_path)
    try:
        check_prerequisites(config.prerequisites.decommission)
        catalog, ctx = _load_catalog(config)
    except EnvkitError as exc:
        _abort(exc)

    decommissioner = Decommissioner(
        ctx,
        catalog,
        AwsProvider(ctx.cluster.region),
        confirm=None if yes else typer.confirm,
    )
    report = decommissioner.run()
    if report.cancelled:
        console.print("[yellow]Cancelled[/yellow]")
        raise typer.Exit(0)
    if report.interrupted:
        _interrupted(report)
    render_report(report, console)
    if not report.succeeded:
        console.print(
            f"[red]Decommission incomplete;[/red] snapshot kept at {catalog.path}"
        )
        raise typer.Exit(1)
    console.print(f"[green]Environment {ctx.cluster.name} removed[/green]")


@app.command("deploy-workloads")
def deploy_workloads(
    region: str | None = typer.Option(None, "--region", "-r", help="AWS region"),
    skip_build: bool = typer.Option(
        False, "--skip-build", help="Reuse images already in ECR"
    ),
    config_path: str | None = ConfigOption,
) -> None:
    """Build, push and deploy the cart and delivery workloads."""
    config = _load_config(config_path)
    deployer: WorkloadDeployer | None = None
    try:
        check_prerequisites(config.prerequisites.deploy)
        catalog, ctx = _load_catalog(config, region)
        deployer = WorkloadDeployer(
            ctx, catalog, AwsProvider(ctx.cluster.region), skip_build=skip_build
        )
        report = deployer.run()
    except KeyboardInterrupt:
        _interrupted(deployer.report if deployer else None)
    except EnvkitError as exc:
        _abort(exc, deployer.report if deployer else None)

    render_report(report, console)
    if report.url is None:
        console.print("[yellow]Ingress hostname not assigned yet[/yellow]")
    else:
        for w in ctx.config.workloads:
            console.print(f"  {w.key}: {report.url}{w.path}")


@app.command("cleanup-workloads")
def cleanup_workloads(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    config_path: str | None = ConfigOption,
) -> None:
    """Remove the workloads, their images and generated manifests."""
    config = _load_config(config_path)
    try:
        check_prerequisites(config.prerequisites.deploy)
        catalog, ctx = _load_catalog(config)
    except EnvkitError as exc:
        _abort(exc)

    cleaner = WorkloadCleaner(
        ctx,
        catalog,
        AwsProvider(ctx.cluster.region),
        confirm=None if yes else typer.confirm,
    )
    report = cleaner.run()
    if report.cancelled:
        console.print("[yellow]Cancelled[/yellow]")
        raise typer.Exit(0)
    if report.interrupted:
        _interrupted(report)
    render_report(report, console)
    if not report.succeeded:
        raise typer.Exit(1)


@app.command()
def status(config_path: str | None = ConfigOption) -> None:
    """Show the environment recorded in the snapshot."""
    config = _load_config(config_path)
    try:
        catalog, _ctx = _load_catalog(config)
    except EnvkitError as exc:
        _abort(exc)
    render_catalog(catalog, console)
