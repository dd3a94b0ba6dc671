"""Deploy the sample workloads onto a provisioned environment, and remove them."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any

import structlog

from envkit.catalog.models import LogicalResource, ResourceState
from envkit.catalog.store import ResourceCatalog
from envkit.context import EnvironmentContext
from envkit.errors import (
    DeploymentTimeout,
    ProviderError,
    ResourceVerificationFailed,
)
from envkit.lifecycle import plan
from envkit.lifecycle.decommissioner import TeardownPass
from envkit.lifecycle.manifests import build_manifest_set, write_manifest_set
from envkit.lifecycle.reporting import RunReport, StepResult
from envkit.lifecycle.waiting import wait_for
from envkit.providers.base import ResourceProvider

logger = structlog.get_logger()


def _service_accounts(
    ctx: EnvironmentContext, catalog: ResourceCatalog
) -> dict[str, str]:
    return {
        w.key: catalog.get(plan.service_account_id(w.key)).name
        for w in ctx.config.workloads
    }


def _rolled_out(attrs: dict[str, Any]) -> bool:
    """Same test as ``kubectl rollout status``: every replica is new and ready."""
    desired = attrs.get("replicas") or 0
    generation = attrs.get("generation")
    observed = attrs.get("observed_generation")
    if generation is not None and (observed is None or observed < generation):
        return False
    updated = attrs.get("updated_replicas") or 0
    total = attrs.get("total_replicas") or 0
    ready = attrs.get("ready_replicas") or 0
    return desired > 0 and updated >= desired and total <= updated and ready >= desired


class WorkloadDeployer:
    """Builds images, applies manifests and waits for the workloads."""

    def __init__(
        self,
        ctx: EnvironmentContext,
        catalog: ResourceCatalog,
        provider: ResourceProvider,
        *,
        skip_build: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        stop_event: threading.Event | None = None,
    ) -> None:
        self._ctx = ctx
        self._catalog = catalog
        self._provider = provider
        self._skip_build = skip_build
        self._sleep = sleep
        self._stop_event = stop_event
        self.report = RunReport(command="deploy-workloads")

    def run(self) -> RunReport:
        self._provider.configure_kube_context(self._ctx.cluster)
        self._check_service_accounts()

        if self._skip_build:
            logger.info("images.build_skipped")
        else:
            for resource in plan.image_resources(self._ctx):
                self._apply(resource)

        service_accounts = _service_accounts(self._ctx, self._catalog)
        manifests = build_manifest_set(self._ctx, service_accounts)
        self.report.manifests = write_manifest_set(
            manifests, self._ctx.manifests_dir
        )

        objects = plan.workload_resources(self._ctx, service_accounts)
        for resource in objects:
            self._apply(resource)

        deployments = [r for r in objects if r.properties["kind"] == "Deployment"]
        for resource in deployments:
            self._provider.update(resource)
            logger.info("deployment.restarted", deployment=resource.name)
        for resource in deployments:
            self._wait_for_rollout(resource)

        ingress = next(r for r in objects if r.properties["kind"] == "Ingress")
        hostname = self._wait_for_hostname(ingress)
        if hostname:
            self.report.url = f"http://{hostname}"
            for w in self._ctx.config.workloads:
                logger.info(
                    "workload.url", workload=w.key, url=f"http://{hostname}{w.path}"
                )
        logger.info(
            "deploy.completed", status="success", cluster=self._ctx.cluster.name
        )
        return self.report

    def _check_service_accounts(self) -> None:
        for w in self._ctx.config.workloads:
            sa = self._catalog.get(plan.service_account_id(w.key))
            if self._provider.describe(sa) is None:
                msg = (
                    f"Service account {sa.namespace}/{sa.name} for workload "
                    f"'{w.key}' does not exist; re-run 'envkit provision'"
                )
                raise ResourceVerificationFailed(msg)

    def _apply(self, resource: LogicalResource) -> None:
        result = self._provider.create(resource)
        resource.attributes.update(result.attributes)
        resource.state = ResourceState.PRESENT
        self.report.steps.append(
            StepResult(resource.id, resource.describe(), outcome=result.outcome)
        )
        logger.info(
            f"{resource.kind.value}.{result.outcome.value}",
            resource=resource.id,
            name=resource.name,
        )

    def _wait_for_rollout(self, resource: LogicalResource) -> None:
        def _ready() -> bool:
            status = self._provider.describe(resource)
            return status is not None and _rolled_out(status.attributes)

        wait_for(
            _ready,
            poll=self._ctx.config.polling.deployment,
            description=f"deployment {resource.name}",
            error_cls=DeploymentTimeout,
            sleep=self._sleep,
            stop_event=self._stop_event,
        )
        logger.info("deployment.ready", deployment=resource.name)

    def _wait_for_hostname(self, ingress: LogicalResource) -> str | None:
        def _hostname() -> str | None:
            status = self._provider.describe(ingress)
            return status.attributes.get("hostname") if status else None

        try:
            return wait_for(
                _hostname,
                poll=self._ctx.config.polling.ingress,
                description=f"ingress {ingress.name} hostname",
                sleep=self._sleep,
                stop_event=self._stop_event,
            )
        except ResourceVerificationFailed:
            logger.warning("ingress.hostname_pending", ingress=ingress.name)
            return None


class WorkloadCleaner:
    """Removes the workloads, their images and manifests; fail-soft."""

    def __init__(
        self,
        ctx: EnvironmentContext,
        catalog: ResourceCatalog,
        provider: ResourceProvider,
        *,
        confirm: Callable[[str], bool] | None = None,
    ) -> None:
        self._ctx = ctx
        self._catalog = catalog
        self._provider = provider
        self._confirm = confirm
        self.report = RunReport(command="cleanup-workloads")

    def run(self) -> RunReport:
        prompt = (
            f"Remove workloads, image repositories and local images from "
            f"'{self._ctx.cluster.name}'?"
        )
        if self._confirm is not None and not self._confirm(prompt):
            self.report.cancelled = True
            return self.report

        try:
            self._provider.configure_kube_context(self._ctx.cluster)
        except ProviderError as exc:
            logger.warning("kube_context.unavailable", error=str(exc))

        sequence = plan.workload_cleanup_sequence(
            self._ctx, _service_accounts(self._ctx, self._catalog)
        )
        teardown = TeardownPass(self._provider, self.report)
        teardown.run(sequence)
        teardown.remove_local([self._ctx.manifests_dir])
        if self.report.succeeded:
            logger.info("cleanup.completed", status="success")
        return self.report
