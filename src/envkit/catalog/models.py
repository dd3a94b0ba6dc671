"""Logical resource model shared by provisioning, deploy and teardown."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class ResourceKind(StrEnum):
    """Kinds of logical resources tracked by the catalog."""

    CLUSTER = "cluster"
    IDENTITY_PROVIDER = "identity_provider"
    MANIFEST_BUNDLE = "manifest_bundle"
    POLICY = "policy"
    SERVICE_ACCOUNT = "service_account"
    HELM_RELEASE = "helm_release"
    TABLE = "table"
    NAMESPACE = "namespace"
    ADDON = "addon"
    LOG_GROUP = "log_group"
    SERVICE_LINKED_ROLE = "service_linked_role"
    IMAGE_REPOSITORY = "image_repository"
    CONTAINER_IMAGE = "container_image"
    KUBERNETES_OBJECT = "kubernetes_object"


class ResourceState(StrEnum):
    """Per-resource lifecycle state."""

    PLANNED = "planned"
    CREATING = "creating"
    PRESENT = "present"
    DELETING = "deleting"
    ABSENT = "absent"
    FAILED = "failed"


class AddonState(StrEnum):
    INSTALLED = "installed"
    ABSENT = "absent"


@dataclass(frozen=True)
class ClusterRef:
    """Identifies the target control plane."""

    name: str
    region: str
    account_id: str


@dataclass
class LogicalResource:
    """One named cloud or cluster object.

    ``properties`` carries provider inputs (policy document, chart
    coordinates, manifest body); ``attributes`` carries provider outputs
    such as a policy ARN.
    """

    id: str
    kind: ResourceKind
    name: str
    depends_on: frozenset[str] = frozenset()
    namespace: str | None = None
    state: ResourceState = ResourceState.PLANNED
    properties: dict[str, Any] = field(default_factory=dict)
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def arn(self) -> str | None:
        return self.attributes.get("arn")

    def describe(self) -> str:
        """Short human-readable label, e.g. ``policy abc123-cart-policy``."""
        label = self.kind.value.replace("_", " ")
        if self.namespace:
            return f"{label} {self.namespace}/{self.name}"
        return f"{label} {self.name}"
