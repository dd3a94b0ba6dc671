"""Run reports and their rich console rendering."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from rich.console import Console
from rich.table import Table

from envkit.catalog.store import ResourceCatalog
from envkit.providers.base import Outcome

_OUTCOME_STYLES = {
    Outcome.CREATED: "green",
    Outcome.UPDATED: "green",
    Outcome.DELETED: "green",
    Outcome.EXISTS: "yellow",
    Outcome.ABSENT: "yellow",
}


@dataclass
class StepResult:
    """What happened to one resource during a run."""

    resource_id: str
    label: str
    outcome: Outcome | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.outcome is not None


@dataclass
class RunReport:
    command: str
    steps: list[StepResult] = field(default_factory=list)
    cancelled: bool = False
    interrupted: bool = False
    snapshot_path: Path | None = None
    snapshot_cleared: bool = False
    manifests: list[Path] = field(default_factory=list)
    url: str | None = None

    @property
    def failures(self) -> list[StepResult]:
        return [s for s in self.steps if not s.ok]

    @property
    def succeeded(self) -> bool:
        return not self.failures and not self.interrupted and not self.cancelled


def render_report(report: RunReport, console: Console) -> None:
    table = Table(title=f"envkit {report.command}")
    table.add_column("Resource", style="cyan")
    table.add_column("Result")
    table.add_column("Detail")

    for step in report.steps:
        if step.ok:
            assert step.outcome is not None
            style = _OUTCOME_STYLES[step.outcome]
            result = f"[{style}]{step.outcome}[/{style}]"
            detail = "no-op" if step.outcome.benign else ""
        else:
            result = "[red]failed[/red]"
            detail = step.error or ""
        table.add_row(step.label, result, detail)

    console.print(table)
    if report.interrupted:
        console.print("[yellow]Interrupted; remaining steps were not run[/yellow]")
    if report.snapshot_path is not None:
        console.print(f"Snapshot: {report.snapshot_path}")
    if report.snapshot_cleared:
        console.print("[green]Snapshot removed[/green]")
    for path in report.manifests:
        console.print(f"  wrote {path}")
    if report.url:
        console.print(f"[green]Application URL:[/green] {report.url}")
    if report.failures:
        console.print(f"[red]{len(report.failures)} step(s) failed[/red]")


def render_catalog(catalog: ResourceCatalog, console: Console) -> None:
    """Print the environment recorded in *catalog*."""
    cluster = catalog.cluster
    console.print(f"[green]Environment[/green] {cluster.name} (run {catalog.run_id})")
    console.print(f"  region:  {cluster.region}")
    console.print(f"  account: {cluster.account_id}")
    console.print(f"  created: {catalog.created_at.isoformat()}")

    table = Table(title="Resources")
    table.add_column("Id", style="cyan")
    table.add_column("Kind")
    table.add_column("Name")
    table.add_column("ARN")
    for resource in catalog:
        name = (
            f"{resource.namespace}/{resource.name}"
            if resource.namespace
            else resource.name
        )
        table.add_row(resource.id, resource.kind.value, name, resource.arn or "")
    console.print(table)

    for key, state in catalog.addons.items():
        style = "green" if state == "installed" else "dim"
        console.print(f"  {key}: [{style}]{state}[/{style}]")
