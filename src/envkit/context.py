"""Explicit per-run context threaded through every lifecycle operation."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from envkit.catalog.models import ClusterRef
from envkit.config.models import EnvironmentConfig


@dataclass(frozen=True)
class EnvironmentContext:
    """Configuration, run id and cluster identity for one environment."""

    config: EnvironmentConfig
    run_id: str
    cluster: ClusterRef
    workdir: Path = field(default_factory=Path.cwd)

    @property
    def snapshot_path(self) -> Path:
        return self.workdir / self.config.paths.snapshot

    @property
    def manifests_dir(self) -> Path:
        return self.workdir / self.config.paths.manifests_dir

    @property
    def cluster_config_path(self) -> Path:
        return self.workdir / self.config.paths.cluster_config

    @property
    def apps_root(self) -> Path:
        return self.workdir / self.config.paths.apps_root

    @property
    def tags(self) -> dict[str, str]:
        """Common tags in the provider's Key/Value casing."""
        return {
            "Environment": self.config.tags.environment,
            "Project": self.config.tags.project,
            "ClusterName": self.cluster.name,
        }

    def template_values(self) -> dict[str, str]:
        """Placeholders available in workload policy resources and env vars."""
        return {
            "region": self.cluster.region,
            "account_id": self.cluster.account_id,
            "cluster": self.cluster.name,
            "table": self.config.table.name,
            "run_id": self.run_id,
        }
