"""Shared fixtures: configuration, run context and a provisioned environment."""

from __future__ import annotations

from pathlib import Path

import pytest
from fakes import ACCOUNT_ID, CLUSTER_NAME, REGION, RUN_ID, FakeProvider, no_sleep

from envkit.catalog.models import ClusterRef
from envkit.catalog.store import ResourceCatalog
from envkit.config.models import EnvironmentConfig
from envkit.context import EnvironmentContext
from envkit.lifecycle.provisioner import Provisioner


@pytest.fixture
def config() -> EnvironmentConfig:
    return EnvironmentConfig(region=REGION)


@pytest.fixture
def ctx(config: EnvironmentConfig, tmp_path: Path) -> EnvironmentContext:
    return EnvironmentContext(
        config=config,
        run_id=RUN_ID,
        cluster=ClusterRef(name=CLUSTER_NAME, region=REGION, account_id=ACCOUNT_ID),
        workdir=tmp_path,
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def provisioned(
    ctx: EnvironmentContext, provider: FakeProvider, config: EnvironmentConfig
) -> ResourceCatalog:
    """Provision against the fake provider and return the reloaded catalog."""
    Provisioner(ctx, provider, sleep=no_sleep).run()
    provider.calls.clear()
    return ResourceCatalog.load(ctx.snapshot_path, config, workdir=ctx.workdir)
