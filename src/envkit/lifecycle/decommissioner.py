"""Decommissioner: delete everything in reverse dependency order, fail-soft."""

from __future__ import annotations

import shutil
from collections.abc import Callable, Iterable
from pathlib import Path

import structlog

from envkit.catalog.models import LogicalResource, ResourceState
from envkit.catalog.store import ResourceCatalog
from envkit.context import EnvironmentContext
from envkit.errors import ProviderError
from envkit.lifecycle import plan
from envkit.lifecycle.reporting import RunReport, StepResult
from envkit.providers.base import Outcome, ResourceProvider

logger = structlog.get_logger()

Confirm = Callable[[str], bool]


class TeardownPass:
    """Deletes resources one by one; a failure never stops the pass."""

    def __init__(self, provider: ResourceProvider, report: RunReport) -> None:
        self._provider = provider
        self._report = report

    def delete(self, resource: LogicalResource, *, wait: bool = False) -> bool:
        """Delete *resource*; return False if the call failed."""
        resource.state = ResourceState.DELETING
        try:
            result = self._provider.delete(resource, wait=wait)
        except Exception as exc:
            resource.state = ResourceState.PRESENT
            logger.warning(
                "resource.delete_failed", resource=resource.id, error=str(exc)
            )
            self._report.steps.append(
                StepResult(resource.id, resource.describe(), error=str(exc))
            )
            return False

        resource.state = ResourceState.ABSENT
        if result.outcome == Outcome.ABSENT:
            logger.info(
                "resource.already_absent", resource=resource.id, name=resource.name
            )
        else:
            logger.info("resource.deleted", resource=resource.id, name=resource.name)
        self._report.steps.append(
            StepResult(resource.id, resource.describe(), outcome=result.outcome)
        )
        return True

    def run(
        self, resources: Iterable[LogicalResource], *, wait_for: str | None = None
    ) -> None:
        """Delete *resources* in order, waiting on the one with id *wait_for*.

        KeyboardInterrupt stops issuing calls and marks the report interrupted.
        """
        try:
            for resource in resources:
                self.delete(resource, wait=resource.id == wait_for)
        except KeyboardInterrupt:
            self._report.interrupted = True
            logger.warning("teardown.interrupted")

    def remove_local(self, paths: Iterable[Path]) -> None:
        for path in paths:
            if self._report.interrupted:
                return
            label = f"local file {path}"
            try:
                if path.is_dir():
                    shutil.rmtree(path)
                    outcome = Outcome.DELETED
                elif path.exists():
                    path.unlink()
                    outcome = Outcome.DELETED
                else:
                    outcome = Outcome.ABSENT
            except OSError as exc:
                logger.warning(
                    "local_file.delete_failed", path=str(path), error=str(exc)
                )
                self._report.steps.append(StepResult(str(path), label, error=str(exc)))
                continue
            self._report.steps.append(StepResult(str(path), label, outcome=outcome))


class Decommissioner:
    """Tears down the environment recorded in a catalog.

    The snapshot is removed only when every resource ends up absent;
    otherwise it is kept so a later run can find the names again.
    """

    def __init__(
        self,
        ctx: EnvironmentContext,
        catalog: ResourceCatalog,
        provider: ResourceProvider,
        *,
        confirm: Confirm | None = None,
    ) -> None:
        self._ctx = ctx
        self._catalog = catalog
        self._provider = provider
        self._confirm = confirm
        self.report = RunReport(command="decommission")

    def run(self) -> RunReport:
        cluster = self._ctx.cluster
        prompt = (
            f"Delete environment '{cluster.name}' in {cluster.region} "
            f"(run {self._catalog.run_id}) and all its resources?"
        )
        if self._confirm is not None and not self._confirm(prompt):
            logger.info("decommission.cancelled", cluster=cluster.name)
            self.report.cancelled = True
            return self.report

        logger.info(
            "decommission.started", cluster=cluster.name, run_id=self._catalog.run_id
        )
        try:
            self._provider.configure_kube_context(cluster)
        except ProviderError as exc:
            logger.warning(
                "kube_context.unavailable", cluster=cluster.name, error=str(exc)
            )

        sequence = plan.teardown_sequence(
            self._ctx, {r.id: r for r in self._catalog}
        )
        teardown = TeardownPass(self._provider, self.report)
        teardown.run(sequence, wait_for=plan.CLUSTER)
        teardown.remove_local(
            [self._ctx.manifests_dir, self._ctx.cluster_config_path]
        )

        if self.report.succeeded:
            self._catalog.clear()
            self.report.snapshot_cleared = True
            logger.info(
                "decommission.completed", status="success", cluster=cluster.name
            )
        elif not self.report.interrupted:
            logger.warning(
                "decommission.incomplete",
                failed=[s.resource_id for s in self.report.failures],
                snapshot=str(self._catalog.path),
            )
        return self.report
