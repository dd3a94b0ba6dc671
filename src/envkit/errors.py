"""Error kinds raised by envkit operations."""

from __future__ import annotations


class EnvkitError(Exception):
    """Base class for all fatal envkit errors."""


class MissingPrerequisite(EnvkitError):
    """One or more required command-line tools are not installed."""

    def __init__(self, tools: list[str]) -> None:
        self.tools = tools
        super().__init__(f"Missing required tools: {' '.join(tools)}")


class InvalidConfiguration(EnvkitError):
    """Bad or absent region, malformed environment name, invalid YAML."""


class InvalidRunId(EnvkitError):
    """A run id does not match the 6-character lowercase alphanumeric form."""


class DependencyUnsatisfied(EnvkitError):
    """A recorded resource references dependencies not in the catalog."""

    def __init__(self, resource_id: str, missing: list[str]) -> None:
        self.resource_id = resource_id
        self.missing = missing
        super().__init__(
            f"Resource '{resource_id}' depends on unrecorded resources: "
            f"{', '.join(missing)}"
        )


class CatalogNotFound(EnvkitError):
    """No persisted snapshot exists at the expected location."""


class CatalogCorrupt(EnvkitError):
    """The persisted snapshot is unreadable or missing required fields."""


class PersistenceError(EnvkitError):
    """Writing the snapshot failed."""


class ProviderError(EnvkitError):
    """A provider call failed for a reason other than exists/absent."""

    def __init__(self, operation: str, target: str, detail: str) -> None:
        self.operation = operation
        self.target = target
        self.detail = detail
        super().__init__(f"{operation} {target} failed: {detail}")


class ResourceCreationFailed(EnvkitError):
    """Non-idempotent failure while provisioning a resource."""

    def __init__(self, resource_id: str, cause: Exception) -> None:
        self.resource_id = resource_id
        self.cause = cause
        super().__init__(f"Failed to create '{resource_id}': {cause}")


class ResourceVerificationFailed(EnvkitError):
    """A created resource did not become visible or ready in time."""


class DeploymentTimeout(EnvkitError):
    """Workload deployments did not become ready in time."""
