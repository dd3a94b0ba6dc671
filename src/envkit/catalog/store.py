"""ResourceCatalog: the durable record of one environment instance."""

from __future__ import annotations

import contextlib
import json
import os
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

import structlog
from pydantic import ValidationError

from envkit.catalog.models import (
    AddonState,
    ClusterRef,
    LogicalResource,
    ResourceKind,
    ResourceState,
)
from envkit.catalog.naming import validate_run_id
from envkit.catalog.snapshot import (
    AddonsSnapshot,
    AlbControllerSnapshot,
    CertManagerSnapshot,
    ClusterSnapshot,
    PolicySnapshot,
    ResourcesSnapshot,
    Snapshot,
    TagsSnapshot,
)
from envkit.config.models import EnvironmentConfig
from envkit.context import EnvironmentContext
from envkit.errors import (
    CatalogCorrupt,
    CatalogNotFound,
    DependencyUnsatisfied,
    PersistenceError,
)
from envkit.lifecycle import plan

logger = structlog.get_logger()

ADDON_KEYS = ("alb_controller", "cert_manager", "observability")

# Add-on flag -> resource whose presence means "installed".
_ADDON_RESOURCES = {
    "alb_controller": plan.ALB_RELEASE,
    "cert_manager": plan.CERT_MANAGER,
    "observability": plan.OBSERVABILITY_ADDON,
}


class ResourceCatalog:
    """Logical resources of one run, keyed by id in recorded order."""

    def __init__(
        self,
        run_id: str,
        cluster: ClusterRef,
        path: Path,
        *,
        created_at: datetime | None = None,
        tags: dict[str, str] | None = None,
    ) -> None:
        self.run_id = validate_run_id(run_id)
        self.cluster = cluster
        self.path = path
        self.created_at = created_at or datetime.now(UTC)
        self.tags: dict[str, str] = dict(tags or {})
        self.addons: dict[str, AddonState] = dict.fromkeys(
            ADDON_KEYS, AddonState.ABSENT
        )
        self._resources: dict[str, LogicalResource] = {}

    @classmethod
    def create(
        cls,
        run_id: str,
        cluster: ClusterRef,
        *,
        path: Path,
        tags: dict[str, str] | None = None,
    ) -> ResourceCatalog:
        """Start an empty catalog for a new run."""
        return cls(run_id, cluster, path, tags=tags)

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self._resources

    def __iter__(self) -> Iterator[LogicalResource]:
        return iter(list(self._resources.values()))

    def __len__(self) -> int:
        return len(self._resources)

    def get(self, resource_id: str) -> LogicalResource:
        try:
            return self._resources[resource_id]
        except KeyError:
            msg = f"Resource '{resource_id}' is not in the catalog"
            raise KeyError(msg) from None

    def find(self, resource_id: str) -> LogicalResource | None:
        return self._resources.get(resource_id)

    def by_kind(self, kind: ResourceKind) -> list[LogicalResource]:
        return [r for r in self._resources.values() if r.kind == kind]

    def resource_names(self) -> dict[str, str]:
        return {r.id: r.name for r in self._resources.values()}

    def record(self, resource: LogicalResource, *, strict: bool = False) -> list[str]:
        """Upsert *resource*; return the dependency ids not yet recorded.

        Missing dependencies are logged and tolerated unless *strict* is set,
        in which case ``DependencyUnsatisfied`` is raised and nothing is
        recorded.
        """
        missing = sorted(d for d in resource.depends_on if d not in self._resources)
        if missing:
            if strict:
                raise DependencyUnsatisfied(resource.id, missing)
            logger.warning(
                "catalog.dependency_unsatisfied", resource=resource.id, missing=missing
            )
        self._resources[resource.id] = resource
        for key, rid in _ADDON_RESOURCES.items():
            if rid == resource.id:
                self.addons[key] = (
                    AddonState.INSTALLED
                    if resource.state == ResourceState.PRESENT
                    else AddonState.ABSENT
                )
        return missing

    # -- persistence --------------------------------------------------------

    def to_snapshot(self) -> Snapshot:
        """Project the catalog onto the persisted snapshot shape.

        Raises KeyError or ValidationError when a required resource is
        missing or unnamed.
        """
        alb_policy = self.get(plan.ALB_POLICY)
        alb_sa = self.get(plan.ALB_SERVICE_ACCOUNT)
        cert_manager = self.get(plan.CERT_MANAGER)
        policies = {
            key: PolicySnapshot(
                name=self.get(plan.policy_id(key)).name,
                arn=self.get(plan.policy_id(key)).arn or "",
            )
            for key in ("cart", "delivery")
        }
        cluster = self.find(plan.CLUSTER)
        return Snapshot(
            run_id=self.run_id,
            created_at=self.created_at,
            cluster=ClusterSnapshot(
                name=self.cluster.name,
                region=self.cluster.region,
                account_id=self.cluster.account_id,
            ),
            resources=ResourcesSnapshot(
                dynamodb_table=self.get(plan.TABLE).name,
                cart_service_account=self.get(plan.service_account_id("cart")).name,
                delivery_service_account=self.get(
                    plan.service_account_id("delivery")
                ).name,
                iam_policies=policies,
                alb_controller=AlbControllerSnapshot(
                    policy_name=alb_policy.name,
                    policy_arn=alb_policy.arn or "",
                    service_account=alb_sa.name,
                    namespace=alb_sa.namespace or "",
                ),
                cert_manager=CertManagerSnapshot(
                    version=cert_manager.properties.get("version", ""),
                    namespace=cert_manager.namespace or "",
                ),
                cloudwatch_role=(
                    cluster.attributes.get("cloudwatch_role") if cluster else None
                ),
            ),
            tags=TagsSnapshot(
                environment=self.tags.get("environment", ""),
                project=self.tags.get("project", ""),
                cluster_name=self.tags.get("cluster_name", self.cluster.name),
            ),
            addons=AddonsSnapshot(**self.addons),
        )

    def persist(self) -> Path:
        """Write the snapshot atomically; any failure is a PersistenceError."""
        try:
            payload = self.to_snapshot().to_json()
        except (KeyError, ValidationError) as exc:
            msg = f"Catalog is incomplete and cannot be persisted: {exc}"
            raise PersistenceError(msg) from exc

        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(payload + "\n", encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as exc:
            with contextlib.suppress(OSError):
                tmp.unlink(missing_ok=True)
            msg = f"Failed to write snapshot {self.path}: {exc}"
            raise PersistenceError(msg) from exc
        logger.info("catalog.persisted", path=str(self.path), resources=len(self))
        return self.path

    @staticmethod
    def read_snapshot(path: Path) -> Snapshot:
        if not path.exists():
            msg = f"No environment snapshot at {path}; run 'envkit provision' first"
            raise CatalogNotFound(msg)
        try:
            raw = path.read_text(encoding="utf-8")
            return Snapshot.model_validate(json.loads(raw))
        except (OSError, ValueError, ValidationError) as exc:
            msg = f"Snapshot {path} is unreadable or incomplete: {exc}"
            raise CatalogCorrupt(msg) from exc

    @classmethod
    def load(
        cls,
        path: Path,
        config: EnvironmentConfig,
        *,
        workdir: Path | None = None,
        region: str | None = None,
    ) -> ResourceCatalog:
        """Load a snapshot and rebuild the full resource graph from it.

        Persisted names and ARNs override the freshly planned ones. *region*
        overrides the persisted cluster region.
        """
        snap = cls.read_snapshot(path)
        cluster = ClusterRef(
            name=snap.cluster.name,
            region=region or snap.cluster.region,
            account_id=snap.cluster.account_id,
        )
        catalog = cls(
            snap.run_id,
            cluster,
            path,
            created_at=snap.created_at,
            tags={
                "environment": snap.tags.environment,
                "project": snap.tags.project,
                "cluster_name": snap.tags.cluster_name,
            },
        )
        ctx = EnvironmentContext(
            config=config,
            run_id=snap.run_id,
            cluster=cluster,
            workdir=workdir or Path.cwd(),
        )
        _overlay_snapshot(catalog, ctx, snap)
        return catalog

    def clear(self) -> None:
        """Remove the snapshot file; a missing file is not an error."""
        self.path.unlink(missing_ok=True)
        logger.info("catalog.cleared", path=str(self.path))

    def context(
        self, config: EnvironmentConfig, workdir: Path | None = None
    ) -> EnvironmentContext:
        return EnvironmentContext(
            config=config,
            run_id=self.run_id,
            cluster=self.cluster,
            workdir=workdir or Path.cwd(),
        )


def _overlay_snapshot(
    catalog: ResourceCatalog, ctx: EnvironmentContext, snap: Snapshot
) -> None:
    res = snap.resources
    overrides: dict[str, dict[str, object]] = {
        plan.TABLE: {"name": res.dynamodb_table},
        plan.service_account_id("cart"): {"name": res.cart_service_account},
        plan.service_account_id("delivery"): {"name": res.delivery_service_account},
        plan.ALB_POLICY: {
            "name": res.alb_controller.policy_name,
            "arn": res.alb_controller.policy_arn,
        },
        plan.ALB_SERVICE_ACCOUNT: {
            "name": res.alb_controller.service_account,
            "namespace": res.alb_controller.namespace,
        },
        plan.CERT_MANAGER: {
            "namespace": res.cert_manager.namespace,
            "version": res.cert_manager.version,
        },
    }
    for key, policy in res.iam_policies.items():
        overrides[plan.policy_id(key)] = {"name": policy.name, "arn": policy.arn}

    absent = {
        rid
        for key, rid in _ADDON_RESOURCES.items()
        if getattr(snap.addons, key) == AddonState.ABSENT
    }
    for phase in [
        plan.control_plane_phase(ctx),
        plan.cluster_addons_phase(ctx),
        plan.data_phase(ctx),
        plan.workload_iam_phase(ctx),
        plan.observability_phase(ctx),
    ]:
        for resource in phase.resources:
            override = overrides.get(resource.id, {})
            if "name" in override:
                resource.name = str(override["name"])
            if "namespace" in override:
                resource.namespace = str(override["namespace"])
            if "arn" in override:
                resource.attributes["arn"] = override["arn"]
                resource.properties["arn"] = override["arn"]
            if "version" in override:
                resource.properties["version"] = override["version"]
            if resource.id == plan.CLUSTER and res.cloudwatch_role:
                resource.attributes["cloudwatch_role"] = res.cloudwatch_role
            resource.state = (
                ResourceState.ABSENT if resource.id in absent else ResourceState.PRESENT
            )
            catalog.record(resource)
