"""Typed builders for Kubernetes objects and the eksctl cluster config.

Builders return plain structured objects; YAML is only produced when a
manifest is written to disk or handed to the provider.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from envkit.catalog import naming
from envkit.config.models import WorkloadConfig
from envkit.context import EnvironmentContext

OTEL_ANNOTATIONS = {
    "instrumentation.opentelemetry.io/inject-dotnet": "true",
    "instrumentation.opentelemetry.io/otel-dotnet-auto-runtime": "linux-musl-x64",
}


@dataclass
class Manifest:
    """One Kubernetes object."""

    api_version: str
    kind: str
    name: str
    namespace: str | None = None
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    spec: dict[str, Any] = field(default_factory=dict)

    @property
    def filename(self) -> str:
        return f"{self.name}-{self.kind.lower()}.yaml"

    def to_dict(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {"name": self.name}
        if self.namespace:
            metadata["namespace"] = self.namespace
        if self.labels:
            metadata["labels"] = dict(self.labels)
        if self.annotations:
            metadata["annotations"] = dict(self.annotations)
        body: dict[str, Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": metadata,
        }
        if self.spec:
            body["spec"] = self.spec
        return body

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False)


@dataclass
class DeploymentManifestSet:
    """Workload objects for one deploy run; regenerated every time."""

    deployments: list[Manifest]
    services: list[Manifest]
    ingress: Manifest

    def apply_order(self) -> list[Manifest]:
        return [*self.deployments, *self.services, self.ingress]


def _probe(port: int) -> dict[str, Any]:
    return {
        "httpGet": {"path": "/healthz", "port": port},
        "initialDelaySeconds": 30,
        "periodSeconds": 30,
    }


def build_deployment(
    workload: WorkloadConfig,
    *,
    image: str,
    service_account: str,
    namespace: str,
    env: dict[str, str],
) -> Manifest:
    container_env = [
        {"name": "ASPNETCORE_ENVIRONMENT", "value": "Development"},
        {"name": "ASPNETCORE_URLS", "value": f"http://+:{workload.port}"},
    ]
    container_env.extend({"name": k, "value": v} for k, v in env.items())
    labels = {"app": workload.deployment}
    return Manifest(
        api_version="apps/v1",
        kind="Deployment",
        name=workload.deployment,
        namespace=namespace,
        labels=labels,
        spec={
            "replicas": workload.replicas,
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {"labels": labels, "annotations": dict(OTEL_ANNOTATIONS)},
                "spec": {
                    "serviceAccountName": service_account,
                    "containers": [
                        {
                            "name": workload.deployment,
                            "image": image,
                            "ports": [{"containerPort": workload.port}],
                            "resources": {
                                "requests": {"cpu": "100m", "memory": "512Mi"},
                                "limits": {"cpu": "500m", "memory": "1024Mi"},
                            },
                            "env": container_env,
                            "livenessProbe": _probe(workload.port),
                            "readinessProbe": _probe(workload.port),
                        }
                    ],
                },
            },
        },
    )


def build_service(workload: WorkloadConfig, *, namespace: str) -> Manifest:
    return Manifest(
        api_version="v1",
        kind="Service",
        name=workload.service,
        namespace=namespace,
        spec={
            "selector": {"app": workload.deployment},
            "ports": [
                {
                    "name": f"http-{workload.port}",
                    "protocol": "TCP",
                    "port": workload.port,
                    "targetPort": workload.port,
                }
            ],
            "type": "ClusterIP",
        },
    )


def build_ingress(ctx: EnvironmentContext) -> Manifest:
    """One ALB ingress path-routing to every workload service."""
    cfg = ctx.config
    paths = [
        {
            "path": w.path,
            "pathType": "Prefix",
            "backend": {"service": {"name": w.service, "port": {"number": w.port}}},
        }
        for w in cfg.workloads
    ]
    return Manifest(
        api_version="networking.k8s.io/v1",
        kind="Ingress",
        name=cfg.ingress.name,
        namespace=cfg.namespace,
        annotations={
            "alb.ingress.kubernetes.io/scheme": cfg.ingress.scheme,
            "alb.ingress.kubernetes.io/target-type": cfg.ingress.target_type,
        },
        spec={"ingressClassName": "alb", "rules": [{"http": {"paths": paths}}]},
    )


def build_namespace(name: str) -> Manifest:
    return Manifest(api_version="v1", kind="Namespace", name=name)


def build_manifest_set(
    ctx: EnvironmentContext, service_accounts: dict[str, str]
) -> DeploymentManifestSet:
    """Build all workload objects from the catalog's references.

    *service_accounts* maps workload key to service account name.
    """
    cfg = ctx.config
    values = ctx.template_values()
    deployments = [
        build_deployment(
            w,
            image=naming.image_uri(
                ctx.cluster.account_id, ctx.cluster.region, w.repository
            ),
            service_account=service_accounts[w.key],
            namespace=cfg.namespace,
            env={k: v.format(**values) for k, v in w.env.items()},
        )
        for w in cfg.workloads
    ]
    services = [build_service(w, namespace=cfg.namespace) for w in cfg.workloads]
    return DeploymentManifestSet(
        deployments=deployments, services=services, ingress=build_ingress(ctx)
    )


def write_manifest_set(manifests: DeploymentManifestSet, directory: Path) -> list[Path]:
    """Write each object to ``<directory>/<name>-<kind>.yaml``, overwriting."""
    directory.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    for manifest in manifests.apply_order():
        path = directory / manifest.filename
        path.write_text(manifest.to_yaml())
        written.append(path)
    return written


def build_cluster_config(ctx: EnvironmentContext) -> dict[str, Any]:
    """eksctl ClusterConfig with OIDC, a managed node group and base add-ons."""
    cfg = ctx.config
    tags = ctx.tags
    addons = [
        {"name": name, "version": "latest"}
        for name in ("vpc-cni", "coredns", "kube-proxy")
    ]
    return {
        "apiVersion": "eksctl.io/v1alpha5",
        "kind": "ClusterConfig",
        "metadata": {
            "name": ctx.cluster.name,
            "region": ctx.cluster.region,
            "version": cfg.cluster.kubernetes_version,
            "tags": tags,
        },
        "iam": {
            "withOIDC": True,
            "serviceAccounts": [
                {
                    "metadata": {
                        "name": "cloudwatch-agent",
                        "namespace": cfg.observability.namespace,
                    },
                    "roleName": naming.cloudwatch_role_name(ctx.run_id),
                    "attachPolicyARNs": [
                        "arn:aws:iam::aws:policy/CloudWatchAgentServerPolicy"
                    ],
                    "tags": tags,
                }
            ],
        },
        "managedNodeGroups": [
            {
                "name": "ng-1",
                "instanceType": cfg.cluster.instance_type,
                "desiredCapacity": cfg.cluster.desired_capacity,
                "minSize": cfg.cluster.min_size,
                "maxSize": cfg.cluster.max_size,
                "tags": tags,
                "iam": {
                    "attachPolicyARNs": [
                        "arn:aws:iam::aws:policy/AmazonEKS_CNI_Policy",
                        "arn:aws:iam::aws:policy/AmazonEKSWorkerNodePolicy",
                        "arn:aws:iam::aws:policy/AmazonEC2ContainerRegistryReadOnly",
                        "arn:aws:iam::aws:policy/CloudWatchAgentServerPolicy",
                    ]
                },
            }
        ],
        "addons": addons,
    }
