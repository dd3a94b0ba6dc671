"""ResourceProvider protocol and per-call result classification."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from envkit.catalog.models import ClusterRef, LogicalResource


class Outcome(StrEnum):
    """What a provider call actually did."""

    CREATED = "created"
    UPDATED = "updated"
    EXISTS = "exists"
    DELETED = "deleted"
    ABSENT = "absent"

    @property
    def benign(self) -> bool:
        """True when the call was a no-op because the work was already done."""
        return self in (Outcome.EXISTS, Outcome.ABSENT)


@dataclass
class ProviderResult:
    outcome: Outcome
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass
class ResourceStatus:
    """Observed state of an existing resource.

    ``status`` is the provider's own status string (``ACTIVE``,
    ``CREATING``...) or ``"present"`` when the provider has none.
    """

    status: str = "present"
    attributes: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ResourceProvider(Protocol):
    """Creates, inspects and deletes logical resources.

    Implementations normalise "already exists" to ``Outcome.EXISTS`` and
    "not found" to ``Outcome.ABSENT``; any other failure raises
    ``ProviderError``.
    """

    def describe(self, resource: LogicalResource) -> ResourceStatus | None:
        """Return the resource's observed status, or None if it does not exist."""
        ...

    def create(self, resource: LogicalResource) -> ProviderResult:
        ...

    def update(self, resource: LogicalResource) -> ProviderResult:
        ...

    def delete(
        self, resource: LogicalResource, *, wait: bool = False
    ) -> ProviderResult:
        ...

    def caller_account(self) -> str:
        """Account id of the active credentials."""
        ...

    def configure_kube_context(self, cluster: ClusterRef) -> None:
        """Point the local kube context at *cluster*."""
        ...
