"""Provisioner: bring every planned resource to Present, fail-fast."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

import structlog

from envkit.catalog.models import LogicalResource, ResourceKind, ResourceState
from envkit.catalog.store import ResourceCatalog
from envkit.config.models import PollConfig
from envkit.context import EnvironmentContext
from envkit.errors import (
    ProviderError,
    ResourceCreationFailed,
    ResourceVerificationFailed,
)
from envkit.lifecycle import plan
from envkit.lifecycle.reporting import RunReport, StepResult
from envkit.lifecycle.waiting import wait_for
from envkit.providers.base import Outcome, ProviderResult, ResourceProvider

logger = structlog.get_logger()

_READY_STATUSES = ("ACTIVE", "present")


class Provisioner:
    """Creates every planned resource and persists the catalog once at the end.

    Order: control plane, cluster add-ons, table, workload IAM, observability.

    Nothing is rolled back on failure and the snapshot is only written
    after every phase and the final verification succeed.
    """

    def __init__(
        self,
        ctx: EnvironmentContext,
        provider: ResourceProvider,
        *,
        catalog: ResourceCatalog | None = None,
        sleep: Callable[[float], None] = time.sleep,
        stop_event: threading.Event | None = None,
    ) -> None:
        self._ctx = ctx
        self._provider = provider
        if catalog is None:
            catalog = ResourceCatalog.create(
                ctx.run_id,
                ctx.cluster,
                path=ctx.snapshot_path,
                tags={
                    "environment": ctx.config.tags.environment,
                    "project": ctx.config.tags.project,
                    "cluster_name": ctx.cluster.name,
                },
            )
        self._catalog = catalog
        self._sleep = sleep
        self._stop_event = stop_event
        self.report = RunReport(command="provision")

    @property
    def catalog(self) -> ResourceCatalog:
        return self._catalog

    def run(self) -> RunReport:
        for phase in plan.provisioning_phases(self._ctx):
            logger.info("phase.started", phase=phase.name)
            for resource in phase.resources:
                self._ensure(resource)
            if phase.name == "control-plane":
                self._configure_kube_context()
            logger.info("phase.completed", phase=phase.name)

        self.verify()
        self.report.snapshot_path = self._catalog.persist()
        logger.info(
            "provision.completed",
            status="success",
            cluster=self._ctx.cluster.name,
            run_id=self._ctx.run_id,
        )
        return self.report

    def _configure_kube_context(self) -> None:
        try:
            self._provider.configure_kube_context(self._ctx.cluster)
        except ProviderError as exc:
            raise ResourceCreationFailed("kube-context", exc) from exc

    def _ensure(self, resource: LogicalResource) -> None:
        self._resolve_references(resource)
        resource.state = ResourceState.CREATING
        try:
            result = self._provider.create(resource)
            if result.outcome == Outcome.EXISTS:
                self._log_exists(resource)
                if resource.properties.get("update_existing"):
                    result = self._update(resource, result)
            resource.attributes.update(result.attributes)
            self._wait_until_ready(resource)
        except ProviderError as exc:
            resource.state = ResourceState.FAILED
            self.report.steps.append(
                StepResult(resource.id, resource.describe(), error=str(exc))
            )
            logger.error("resource.create_failed", resource=resource.id, error=str(exc))
            raise ResourceCreationFailed(resource.id, exc) from exc
        except ResourceVerificationFailed as exc:
            resource.state = ResourceState.FAILED
            self.report.steps.append(
                StepResult(resource.id, resource.describe(), error=str(exc))
            )
            raise

        resource.state = ResourceState.PRESENT
        self._catalog.record(resource)
        self.report.steps.append(
            StepResult(resource.id, resource.describe(), outcome=result.outcome)
        )
        if not result.outcome.benign:
            logger.info(
                f"{resource.kind.value}.{result.outcome.value}",
                resource=resource.id,
                name=resource.name,
            )

    def _update(
        self, resource: LogicalResource, existing: ProviderResult
    ) -> ProviderResult:
        # A new default version is published on every run, so repeated runs
        # are idempotent by name but not by policy version.
        result = self._provider.update(resource)
        return ProviderResult(
            result.outcome, {**existing.attributes, **result.attributes}
        )

    def _log_exists(self, resource: LogicalResource) -> None:
        if resource.kind == ResourceKind.CLUSTER:
            logger.warning("cluster.exists", cluster=resource.name)
        else:
            logger.info(
                f"{resource.kind.value}.exists",
                resource=resource.id,
                name=resource.name,
            )

    def _resolve_references(self, resource: LogicalResource) -> None:
        ref = resource.properties.get("policy_ref")
        if ref:
            policy = self._catalog.get(ref)
            resource.properties["policy_arn"] = policy.arn

    def _poll(self) -> dict[ResourceKind, PollConfig]:
        polling = self._ctx.config.polling
        return {
            ResourceKind.TABLE: polling.table,
            ResourceKind.SERVICE_ACCOUNT: polling.service_account,
            ResourceKind.ADDON: polling.addon,
        }

    def _wait_until_ready(self, resource: LogicalResource) -> None:
        poll = self._poll().get(resource.kind)
        if poll is None:
            return

        def _ready() -> bool:
            status = self._provider.describe(resource)
            if status is None:
                return False
            if resource.kind == ResourceKind.SERVICE_ACCOUNT:
                return True
            return status.status in _READY_STATUSES

        wait_for(
            _ready,
            poll=poll,
            description=resource.describe(),
            sleep=self._sleep,
            stop_event=self._stop_event,
        )

    def verify(self) -> None:
        """Confirm nodes, workload service accounts and the table are visible."""
        cluster = self._catalog.get(plan.CLUSTER)
        status = self._provider.describe(cluster)
        if status is None or status.attributes.get("nodes") == 0:
            msg = f"Cluster {cluster.name} has no ready nodes"
            raise ResourceVerificationFailed(msg)

        for workload in self._ctx.config.workloads:
            sa = self._catalog.get(plan.service_account_id(workload.key))
            if self._provider.describe(sa) is None:
                msg = f"Service account {sa.namespace}/{sa.name} is not visible"
                raise ResourceVerificationFailed(msg)

        table = self._catalog.get(plan.TABLE)
        if self._provider.describe(table) is None:
            msg = f"Table {table.name} is not describable"
            raise ResourceVerificationFailed(msg)
        logger.info("provision.verified", cluster=cluster.name)
