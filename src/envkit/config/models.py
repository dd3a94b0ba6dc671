"""Pydantic configuration models for an environment."""

from __future__ import annotations

import re
from typing import Self

from pydantic import BaseModel, Field, field_validator, model_validator

CLUSTER_NAME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9-]*[a-zA-Z0-9]$")
CLUSTER_NAME_MAX_LENGTH = 100
REGION_PATTERN = re.compile(r"^[a-z]{2}(-[a-z]+)+-\d$")
REQUIRED_WORKLOADS = ("cart", "delivery")


def validate_cluster_name(name: str) -> str:
    """Return *name* if it is a valid cluster name, else raise ValueError."""
    if len(name) > CLUSTER_NAME_MAX_LENGTH or not CLUSTER_NAME_PATTERN.fullmatch(name):
        msg = (
            f"Invalid cluster name '{name}': must start with a letter, contain "
            f"only letters, digits and hyphens, not end with a hyphen, and be "
            f"at most {CLUSTER_NAME_MAX_LENGTH} characters"
        )
        raise ValueError(msg)
    return name


class PollConfig(BaseModel):
    """Bounded poll: a fixed number of attempts with a fixed sleep between."""

    attempts: int = Field(default=30, ge=1)
    interval_seconds: float = Field(default=10.0, ge=0.0)


class PollSettings(BaseModel):
    """Bounded poll parameters per resource type."""

    table: PollConfig = PollConfig(attempts=30, interval_seconds=5.0)
    service_account: PollConfig = PollConfig(attempts=10, interval_seconds=3.0)
    addon: PollConfig = PollConfig(attempts=60, interval_seconds=10.0)
    deployment: PollConfig = PollConfig(attempts=30, interval_seconds=10.0)
    ingress: PollConfig = PollConfig(attempts=30, interval_seconds=10.0)


class TagConfig(BaseModel):
    """Common tags applied to every taggable resource."""

    environment: str = "Development"
    project: str = "DotNetAppSignals"


class ClusterConfig(BaseModel):
    """Control plane and node group settings."""

    kubernetes_version: str = "1.31"
    instance_type: str = "t3.medium"
    desired_capacity: int = Field(default=2, ge=1)
    min_size: int = Field(default=1, ge=0)
    max_size: int = Field(default=3, ge=1)

    @model_validator(mode="after")
    def check_node_bounds(self) -> Self:
        """Ensure min <= desired <= max."""
        if not self.min_size <= self.desired_capacity <= self.max_size:
            msg = (
                "node group sizes must satisfy min_size <= desired_capacity "
                f"<= max_size (got {self.min_size}/{self.desired_capacity}/"
                f"{self.max_size})"
            )
            raise ValueError(msg)
        return self


class TableConfig(BaseModel):
    """DynamoDB table settings."""

    name: str = Field(default="simple-cart-catalog", min_length=3, max_length=255)
    hash_key: str = "Id"
    read_capacity: int = Field(default=1, ge=1)
    write_capacity: int = Field(default=1, ge=1)


class CertManagerConfig(BaseModel):
    """cert-manager release manifest coordinates."""

    version: str = "v1.13.0"
    namespace: str = "cert-manager"
    manifest_url: str = (
        "https://github.com/cert-manager/cert-manager/releases/download/"
        "{version}/cert-manager.yaml"
    )

    @property
    def resolved_manifest_url(self) -> str:
        return self.manifest_url.format(version=self.version)


class AlbControllerConfig(BaseModel):
    """AWS Load Balancer Controller Helm release settings."""

    release_name: str = "aws-load-balancer-controller"
    namespace: str = "kube-system"
    service_account: str = "aws-load-balancer-controller"
    chart: str = "eks/aws-load-balancer-controller"
    repo_name: str = "eks"
    repo_url: str = "https://aws.github.io/eks-charts"
    policy_document_url: str = (
        "https://raw.githubusercontent.com/kubernetes-sigs/"
        "aws-load-balancer-controller/main/docs/install/iam_policy.json"
    )
    download_timeout_seconds: float = Field(default=30.0, gt=0)


class ObservabilityConfig(BaseModel):
    """CloudWatch observability add-on, installed last."""

    enabled: bool = True
    namespace: str = "amazon-cloudwatch"
    addon_name: str = "amazon-cloudwatch-observability"
    service_linked_role: str = "AWSServiceRoleForCloudWatchApplicationSignals"
    log_group_prefixes: list[str] = Field(
        default_factory=lambda: [
            "/aws/containerinsights/{cluster}/",
            "/aws/application-signals/data",
        ]
    )


class WorkloadConfig(BaseModel):
    """One sample workload: image, deployment and ingress route."""

    key: str
    app_dir: str
    repository: str
    deployment: str
    service: str
    path: str
    replicas: int = Field(default=2, ge=1)
    port: int = Field(default=8080, ge=1, le=65535)
    policy_actions: list[str] = Field(default_factory=list)
    policy_resource: str = "*"
    env: dict[str, str] = Field(default_factory=dict)

    @field_validator("key")
    @classmethod
    def validate_key(cls, v: str) -> str:
        if not re.fullmatch(r"[a-z][a-z0-9-]*", v):
            msg = f"workload key '{v}' must be lowercase alphanumeric"
            raise ValueError(msg)
        return v

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v.startswith("/"):
            msg = f"ingress path '{v}' must start with '/'"
            raise ValueError(msg)
        return v


def default_workloads() -> list[WorkloadConfig]:
    return [
        WorkloadConfig(
            key="cart",
            app_dir="Simple.CartApi",
            repository="simple-cart-api",
            deployment="dotnet-cart-api",
            service="cart-api-service",
            path="/apps/cart",
            policy_actions=[
                "dynamodb:PutItem",
                "dynamodb:GetItem",
                "dynamodb:UpdateItem",
                "dynamodb:DeleteItem",
                "dynamodb:Scan",
                "dynamodb:Query",
                "dynamodb:DescribeTable",
            ],
            policy_resource="arn:aws:dynamodb:{region}:{account_id}:table/{table}",
            env={
                "BACKEND_URL": "http://delivery-api-service:8080",
                "AWS_REGION": "{region}",
                "DYNAMODB_TABLE_NAME": "{table}",
            },
        ),
        WorkloadConfig(
            key="delivery",
            app_dir="Simple.DeliveryApi",
            repository="simple-delivery-api",
            deployment="dotnet-delivery-api",
            service="delivery-api-service",
            path="/apps/delivery",
            policy_actions=[
                "sqs:SendMessage",
                "sqs:ReceiveMessage",
                "sqs:DeleteMessage",
                "sqs:GetQueueAttributes",
            ],
        ),
    ]


class IngressConfig(BaseModel):
    """Shared ALB ingress for all workloads."""

    name: str = "apps-ingress"
    scheme: str = "internet-facing"
    target_type: str = "ip"


class PrerequisiteConfig(BaseModel):
    """Command-line tools that must be on PATH for each command."""

    provision: list[str] = Field(
        default_factory=lambda: ["aws", "kubectl", "eksctl", "helm", "jq"]
    )
    deploy: list[str] = Field(
        default_factory=lambda: ["aws", "kubectl", "docker", "jq"]
    )
    decommission: list[str] = Field(
        default_factory=lambda: ["aws", "kubectl", "eksctl", "helm", "docker"]
    )


class PathsConfig(BaseModel):
    """Local files written and removed by the lifecycle commands."""

    snapshot: str = ".cluster-config/cluster-resources.json"
    manifests_dir: str = "kubernetes"
    cluster_config: str = "cluster.yaml"
    apps_root: str = "src/apps"


class EnvironmentConfig(BaseModel, extra="forbid"):
    """Top-level configuration for one environment."""

    region: str | None = None
    cluster_name: str | None = None
    namespace: str = "default"
    tags: TagConfig = TagConfig()
    cluster: ClusterConfig = ClusterConfig()
    table: TableConfig = TableConfig()
    cert_manager: CertManagerConfig = CertManagerConfig()
    alb_controller: AlbControllerConfig = AlbControllerConfig()
    observability: ObservabilityConfig = ObservabilityConfig()
    ingress: IngressConfig = IngressConfig()
    workloads: list[WorkloadConfig] = Field(default_factory=default_workloads)
    polling: PollSettings = PollSettings()
    prerequisites: PrerequisiteConfig = PrerequisiteConfig()
    paths: PathsConfig = PathsConfig()

    @field_validator("region")
    @classmethod
    def validate_region(cls, v: str | None) -> str | None:
        if v is not None and not REGION_PATTERN.fullmatch(v):
            msg = f"'{v}' is not a valid AWS region name"
            raise ValueError(msg)
        return v

    @field_validator("cluster_name")
    @classmethod
    def validate_cluster(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return validate_cluster_name(v)

    @model_validator(mode="after")
    def check_workloads(self) -> Self:
        """The cart and delivery workloads must exist, with unique keys and paths."""
        keys = [w.key for w in self.workloads]
        missing = [k for k in REQUIRED_WORKLOADS if k not in keys]
        if missing:
            msg = f"workloads must define {list(REQUIRED_WORKLOADS)}; missing {missing}"
            raise ValueError(msg)
        if len(keys) != len(set(keys)):
            msg = f"duplicate workload keys: {keys}"
            raise ValueError(msg)
        paths = [w.path for w in self.workloads]
        if len(paths) != len(set(paths)):
            msg = f"duplicate ingress paths: {paths}"
            raise ValueError(msg)
        return self

    def workload(self, key: str) -> WorkloadConfig:
        for w in self.workloads:
            if w.key == key:
                return w
        msg = f"Unknown workload '{key}'"
        raise KeyError(msg)
