"""The environment's resource graph, in provisioning and teardown order.

The dependency graph is shallow and fixed, so a fixed phase order is used
instead of a general topological sort.
"""

from __future__ import annotations

from dataclasses import dataclass

from envkit.catalog import naming
from envkit.catalog.models import LogicalResource, ResourceKind
from envkit.context import EnvironmentContext
from envkit.lifecycle.manifests import (
    build_cluster_config,
    build_manifest_set,
    build_namespace,
)
from envkit.providers.documents import workload_policy_document

CLUSTER = "cluster"
OIDC_PROVIDER = "oidc-provider"
CERT_MANAGER = "cert-manager"
ALB_POLICY = "alb-controller.policy"
ALB_SERVICE_ACCOUNT = "alb-controller.service-account"
ALB_RELEASE = "alb-controller.release"
TABLE = "table"
OBSERVABILITY_NAMESPACE = "observability.namespace"
OBSERVABILITY_ADDON = "observability.addon"
SERVICE_LINKED_ROLE = "observability.service-linked-role"
BUILD_CACHE = "image.build-cache"


def policy_id(workload: str) -> str:
    return f"policy.{workload}"


def service_account_id(workload: str) -> str:
    return f"service-account.{workload}"


def repository_id(workload: str) -> str:
    return f"image-repository.{workload}"


def image_id(workload: str) -> str:
    return f"image.{workload}"


def log_group_id(index: int) -> str:
    return f"observability.log-group.{index}"


@dataclass
class Phase:
    """A named group of resources created in order."""

    name: str
    resources: list[LogicalResource]


def _cluster_scoped(ctx: EnvironmentContext, **extra: object) -> dict[str, object]:
    return {"cluster": ctx.cluster.name, "region": ctx.cluster.region, **extra}


def control_plane_phase(ctx: EnvironmentContext) -> Phase:
    cluster = LogicalResource(
        id=CLUSTER,
        kind=ResourceKind.CLUSTER,
        name=ctx.cluster.name,
        properties={
            "region": ctx.cluster.region,
            "config": build_cluster_config(ctx),
            "config_path": str(ctx.cluster_config_path),
        },
    )
    return Phase("control-plane", [cluster])


def cluster_addons_phase(ctx: EnvironmentContext) -> Phase:
    cfg = ctx.config
    alb = cfg.alb_controller
    alb_policy_name = naming.alb_policy_name(ctx.cluster.name)
    resources = [
        LogicalResource(
            id=OIDC_PROVIDER,
            kind=ResourceKind.IDENTITY_PROVIDER,
            name=ctx.cluster.name,
            depends_on=frozenset({CLUSTER}),
            properties=_cluster_scoped(ctx),
        ),
        LogicalResource(
            id=CERT_MANAGER,
            kind=ResourceKind.MANIFEST_BUNDLE,
            name="cert-manager",
            namespace=cfg.cert_manager.namespace,
            depends_on=frozenset({CLUSTER}),
            properties=_cluster_scoped(
                ctx,
                url=cfg.cert_manager.resolved_manifest_url,
                version=cfg.cert_manager.version,
            ),
        ),
        LogicalResource(
            id=ALB_POLICY,
            kind=ResourceKind.POLICY,
            name=alb_policy_name,
            properties={
                "arn": naming.policy_arn(ctx.cluster.account_id, alb_policy_name),
                "document_url": alb.policy_document_url,
                "download_timeout": alb.download_timeout_seconds,
                "update_existing": False,
                "tags": ctx.tags,
            },
        ),
        LogicalResource(
            id=ALB_SERVICE_ACCOUNT,
            kind=ResourceKind.SERVICE_ACCOUNT,
            name=alb.service_account,
            namespace=alb.namespace,
            depends_on=frozenset({CLUSTER, OIDC_PROVIDER, ALB_POLICY}),
            properties=_cluster_scoped(ctx, policy_ref=ALB_POLICY),
        ),
        LogicalResource(
            id=ALB_RELEASE,
            kind=ResourceKind.HELM_RELEASE,
            name=alb.release_name,
            namespace=alb.namespace,
            depends_on=frozenset({CLUSTER, CERT_MANAGER, ALB_SERVICE_ACCOUNT}),
            properties=_cluster_scoped(
                ctx,
                chart=alb.chart,
                repo_name=alb.repo_name,
                repo_url=alb.repo_url,
                values={
                    "clusterName": ctx.cluster.name,
                    "serviceAccount.create": "false",
                    "serviceAccount.name": alb.service_account,
                },
            ),
        ),
    ]
    return Phase("cluster-addons", resources)


def data_phase(ctx: EnvironmentContext) -> Phase:
    table = ctx.config.table
    resource = LogicalResource(
        id=TABLE,
        kind=ResourceKind.TABLE,
        name=table.name,
        properties={
            "region": ctx.cluster.region,
            "hash_key": table.hash_key,
            "read_capacity": table.read_capacity,
            "write_capacity": table.write_capacity,
            "tags": ctx.tags,
        },
    )
    return Phase("data", [resource])


def workload_iam_phase(ctx: EnvironmentContext) -> Phase:
    values = ctx.template_values()
    resources: list[LogicalResource] = []
    for workload in ctx.config.workloads:
        name = naming.policy_name(ctx.run_id, workload.key)
        policy_deps = {TABLE} if "{table}" in workload.policy_resource else set()
        resources.append(
            LogicalResource(
                id=policy_id(workload.key),
                kind=ResourceKind.POLICY,
                name=name,
                depends_on=frozenset(policy_deps),
                properties={
                    "arn": naming.policy_arn(ctx.cluster.account_id, name),
                    "document": workload_policy_document(workload, values),
                    "update_existing": True,
                    "tags": ctx.tags,
                },
            )
        )
        resources.append(
            LogicalResource(
                id=service_account_id(workload.key),
                kind=ResourceKind.SERVICE_ACCOUNT,
                name=naming.service_account_name(ctx.run_id, workload.key),
                namespace=ctx.config.namespace,
                depends_on=frozenset({CLUSTER, OIDC_PROVIDER, policy_id(workload.key)}),
                properties=_cluster_scoped(
                    ctx, policy_ref=policy_id(workload.key), replace_existing=True
                ),
            )
        )
    return Phase("workload-iam", resources)


def observability_phase(ctx: EnvironmentContext) -> Phase:
    obs = ctx.config.observability
    namespace = build_namespace(obs.namespace)
    resources = [
        LogicalResource(
            id=OBSERVABILITY_NAMESPACE,
            kind=ResourceKind.NAMESPACE,
            name=obs.namespace,
            depends_on=frozenset({CLUSTER}),
            properties=_cluster_scoped(ctx, manifest=namespace.to_dict()),
        ),
        LogicalResource(
            id=OBSERVABILITY_ADDON,
            kind=ResourceKind.ADDON,
            name=obs.addon_name,
            depends_on=frozenset({CLUSTER, OIDC_PROVIDER, OBSERVABILITY_NAMESPACE}),
            properties=_cluster_scoped(ctx),
        ),
    ]
    return Phase("observability", resources)


def provisioning_phases(ctx: EnvironmentContext) -> list[Phase]:
    """Phases in creation order; observability only when it is enabled."""
    phases = [
        control_plane_phase(ctx),
        cluster_addons_phase(ctx),
        data_phase(ctx),
        workload_iam_phase(ctx),
    ]
    if ctx.config.observability.enabled:
        phases.append(observability_phase(ctx))
    return phases


def observability_residue(ctx: EnvironmentContext) -> list[LogicalResource]:
    """Resources the add-on creates on its own; deleted after the add-on."""
    obs = ctx.config.observability
    residue = [
        LogicalResource(
            id=log_group_id(i),
            kind=ResourceKind.LOG_GROUP,
            name=prefix.format(cluster=ctx.cluster.name),
            properties={"region": ctx.cluster.region},
        )
        for i, prefix in enumerate(obs.log_group_prefixes)
    ]
    residue.append(
        LogicalResource(
            id=SERVICE_LINKED_ROLE,
            kind=ResourceKind.SERVICE_LINKED_ROLE,
            name=obs.service_linked_role,
        )
    )
    return residue


def image_resources(ctx: EnvironmentContext) -> list[LogicalResource]:
    """ECR repositories followed by the locally built images."""
    repos: list[LogicalResource] = []
    images: list[LogicalResource] = []
    for w in ctx.config.workloads:
        repos.append(
            LogicalResource(
                id=repository_id(w.key),
                kind=ResourceKind.IMAGE_REPOSITORY,
                name=w.repository,
                properties={"region": ctx.cluster.region, "tags": ctx.tags},
            )
        )
        images.append(
            LogicalResource(
                id=image_id(w.key),
                kind=ResourceKind.CONTAINER_IMAGE,
                name=naming.image_uri(
                    ctx.cluster.account_id, ctx.cluster.region, w.repository
                ),
                properties={
                    "region": ctx.cluster.region,
                    "registry": naming.registry_host(
                        ctx.cluster.account_id, ctx.cluster.region
                    ),
                    "local_tag": f"{w.repository}:latest",
                    "context": str(ctx.apps_root / w.app_dir),
                    "platform": "linux/amd64",
                },
            )
        )
    return [*repos, *images]


def build_cache_resource(ctx: EnvironmentContext) -> LogicalResource:
    """Local Docker build cache; only ever pruned."""
    return LogicalResource(
        id=BUILD_CACHE,
        kind=ResourceKind.CONTAINER_IMAGE,
        name="build-cache",
        properties={"build_cache": True},
    )


def workload_resources(
    ctx: EnvironmentContext, service_accounts: dict[str, str]
) -> list[LogicalResource]:
    """Workload objects in apply order: deployments, services, ingress."""
    manifests = build_manifest_set(ctx, service_accounts)
    by_deployment = {w.deployment: w.key for w in ctx.config.workloads}
    service_ids = [f"workload.service.{w.key}" for w in ctx.config.workloads]
    resources: list[LogicalResource] = []
    for manifest in manifests.deployments:
        key = by_deployment[manifest.name]
        resources.append(
            LogicalResource(
                id=f"workload.deployment.{key}",
                kind=ResourceKind.KUBERNETES_OBJECT,
                name=manifest.name,
                namespace=manifest.namespace,
                depends_on=frozenset(
                    {CLUSTER, service_account_id(key), repository_id(key)}
                ),
                properties=_cluster_scoped(
                    ctx, kind=manifest.kind, manifest=manifest.to_dict()
                ),
            )
        )
    for manifest, sid in zip(manifests.services, service_ids, strict=True):
        resources.append(
            LogicalResource(
                id=sid,
                kind=ResourceKind.KUBERNETES_OBJECT,
                name=manifest.name,
                namespace=manifest.namespace,
                depends_on=frozenset({CLUSTER}),
                properties=_cluster_scoped(
                    ctx, kind=manifest.kind, manifest=manifest.to_dict()
                ),
            )
        )
    ingress = manifests.ingress
    resources.append(
        LogicalResource(
            id="workload.ingress",
            kind=ResourceKind.KUBERNETES_OBJECT,
            name=ingress.name,
            namespace=ingress.namespace,
            depends_on=frozenset({CLUSTER, ALB_RELEASE, *service_ids}),
            properties=_cluster_scoped(
                ctx, kind=ingress.kind, manifest=ingress.to_dict()
            ),
        )
    )
    return resources


def teardown_sequence(
    ctx: EnvironmentContext, resources: dict[str, LogicalResource]
) -> list[LogicalResource]:
    """Every resource of the environment in strict reverse dependency order.

    *resources* are the catalog's entries; they take precedence over the
    freshly planned ones so persisted names and ARNs are used for deletion.
    """
    service_accounts = {
        w.key: resources[service_account_id(w.key)].name
        if service_account_id(w.key) in resources
        else naming.service_account_name(ctx.run_id, w.key)
        for w in ctx.config.workloads
    }
    planned: dict[str, LogicalResource] = {}
    for phase in [
        control_plane_phase(ctx),
        cluster_addons_phase(ctx),
        data_phase(ctx),
        workload_iam_phase(ctx),
        observability_phase(ctx),
    ]:
        for r in phase.resources:
            planned[r.id] = r
    for r in [
        *observability_residue(ctx),
        *image_resources(ctx),
        build_cache_resource(ctx),
        *workload_resources(ctx, service_accounts),
    ]:
        planned[r.id] = r
    planned.update(resources)

    workload_keys = [w.key for w in ctx.config.workloads]
    log_groups = len(ctx.config.observability.log_group_prefixes)
    order: list[str] = [
        "workload.ingress",
        *[f"workload.service.{k}" for k in workload_keys],
        *[f"workload.deployment.{k}" for k in workload_keys],
        ALB_RELEASE,
        ALB_SERVICE_ACCOUNT,
        ALB_POLICY,
        CERT_MANAGER,
        OBSERVABILITY_ADDON,
        OBSERVABILITY_NAMESPACE,
        *[log_group_id(i) for i in range(log_groups)],
        SERVICE_LINKED_ROLE,
        *[service_account_id(k) for k in workload_keys],
        *[policy_id(k) for k in workload_keys],
        TABLE,
        *[repository_id(k) for k in workload_keys],
        *[image_id(k) for k in workload_keys],
        BUILD_CACHE,
        OIDC_PROVIDER,
        CLUSTER,
    ]
    return [planned[rid] for rid in order if rid in planned]


def workload_cleanup_sequence(
    ctx: EnvironmentContext, service_accounts: dict[str, str]
) -> list[LogicalResource]:
    """Workload objects, image repositories and local images, in delete order."""
    objects = workload_resources(ctx, service_accounts)
    return [*reversed(objects), *image_resources(ctx), build_cache_resource(ctx)]
