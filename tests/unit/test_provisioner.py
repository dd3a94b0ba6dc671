"""Unit tests for the Provisioner against an in-memory provider."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
from fakes import FakeProvider, no_sleep
from structlog.testing import capture_logs

from envkit.catalog.store import ResourceCatalog
from envkit.config.models import EnvironmentConfig, ObservabilityConfig
from envkit.context import EnvironmentContext
from envkit.errors import (
    ProviderError,
    ResourceCreationFailed,
    ResourceVerificationFailed,
)
from envkit.lifecycle import plan
from envkit.lifecycle.provisioner import Provisioner
from envkit.providers.base import Outcome, ResourceStatus

CREATE_ORDER = [
    plan.CLUSTER,
    plan.OIDC_PROVIDER,
    plan.CERT_MANAGER,
    plan.ALB_POLICY,
    plan.ALB_SERVICE_ACCOUNT,
    plan.ALB_RELEASE,
    plan.TABLE,
    plan.policy_id("cart"),
    plan.service_account_id("cart"),
    plan.policy_id("delivery"),
    plan.service_account_id("delivery"),
    plan.OBSERVABILITY_NAMESPACE,
    plan.OBSERVABILITY_ADDON,
]


class TestProvision:
    def test_creates_everything_in_order(
        self, ctx: EnvironmentContext, provider: FakeProvider
    ):
        report = Provisioner(ctx, provider, sleep=no_sleep).run()

        assert provider.ids("create") == CREATE_ORDER
        assert report.succeeded
        assert report.snapshot_path == ctx.snapshot_path
        assert ctx.snapshot_path.exists()

    def test_kube_context_after_control_plane(
        self, ctx: EnvironmentContext, provider: FakeProvider
    ):
        Provisioner(ctx, provider, sleep=no_sleep).run()
        calls = provider.calls
        kube = calls.index(("kube-context", "eks-abc123"))
        assert calls.index(("create", plan.CLUSTER)) < kube
        assert kube < calls.index(("create", plan.OIDC_PROVIDER))

    def test_service_accounts_bound_to_policies(
        self, ctx: EnvironmentContext, provider: FakeProvider
    ):
        Provisioner(ctx, provider, sleep=no_sleep).run()
        sa = provider.present[plan.service_account_id("cart")]
        assert sa.properties["policy_arn"] == (
            "arn:aws:iam::123456789012:policy/abc123-cart-policy"
        )
        alb_sa = provider.present[plan.ALB_SERVICE_ACCOUNT]
        assert alb_sa.properties["policy_arn"] == (
            "arn:aws:iam::123456789012:policy/"
            "AWSLoadBalancerControllerIAMPolicy-eks-abc123"
        )

    def test_rerun_is_idempotent(
        self,
        ctx: EnvironmentContext,
        provider: FakeProvider,
        config: EnvironmentConfig,
    ):
        Provisioner(ctx, provider, sleep=no_sleep).run()
        first = ctx.snapshot_path.read_text()
        catalog = ResourceCatalog.load(ctx.snapshot_path, config, workdir=ctx.workdir)
        provider.calls.clear()

        report = Provisioner(
            catalog.context(config, ctx.workdir),
            provider,
            catalog=catalog,
            sleep=no_sleep,
        ).run()

        assert ctx.snapshot_path.read_text() == first
        outcomes = {s.resource_id: s.outcome for s in report.steps}
        assert outcomes[plan.CLUSTER] == Outcome.EXISTS
        assert outcomes[plan.ALB_POLICY] == Outcome.EXISTS
        assert outcomes[plan.policy_id("cart")] == Outcome.UPDATED
        assert provider.ids("update") == [
            plan.policy_id("cart"),
            plan.policy_id("delivery"),
        ]
        assert len(provider.present) == len(CREATE_ORDER)

    def test_uses_supplied_empty_catalog(
        self, ctx: EnvironmentContext, provider: FakeProvider
    ):
        path = ctx.workdir / "custom" / "snapshot.json"
        catalog = ResourceCatalog.create(
            ctx.run_id,
            ctx.cluster,
            path=path,
            tags={"environment": "Development", "project": "envkit-demo"},
        )
        provisioner = Provisioner(ctx, provider, catalog=catalog, sleep=no_sleep)

        report = provisioner.run()

        assert provisioner.catalog is catalog
        assert report.snapshot_path == path
        assert path.exists()
        assert not ctx.snapshot_path.exists()

    def test_existing_cluster_warns(
        self, ctx: EnvironmentContext, provider: FakeProvider
    ):
        cluster = plan.control_plane_phase(ctx).resources[0]
        provider.present[plan.CLUSTER] = cluster
        with capture_logs() as logs:
            report = Provisioner(ctx, provider, sleep=no_sleep).run()
        event = next(e for e in logs if e["event"] == "cluster.exists")
        assert event["log_level"] == "warning"
        assert report.steps[0].outcome == Outcome.EXISTS

    def test_snapshot_records_us_east_1_environment(
        self, ctx: EnvironmentContext, provider: FakeProvider
    ):
        Provisioner(ctx, provider, sleep=no_sleep).run()
        snapshot = json.loads(ctx.snapshot_path.read_text())
        assert snapshot["cluster"]["region"] == "us-east-1"
        assert snapshot["resources"]["iamPolicies"]["delivery"]["arn"] == (
            "arn:aws:iam::123456789012:policy/abc123-delivery-policy"
        )
        assert snapshot["tags"]["environment"] == "Development"

    def test_observability_disabled(
        self, ctx: EnvironmentContext, provider: FakeProvider
    ):
        config = EnvironmentConfig(
            region="us-east-1", observability=ObservabilityConfig(enabled=False)
        )
        quiet = EnvironmentContext(
            config=config, run_id=ctx.run_id, cluster=ctx.cluster, workdir=ctx.workdir
        )
        Provisioner(quiet, provider, sleep=no_sleep).run()

        assert plan.OBSERVABILITY_ADDON not in provider.ids("create")
        snapshot = json.loads(quiet.snapshot_path.read_text())
        assert snapshot["addons"]["observability"] == "absent"
        assert snapshot["addons"]["albController"] == "installed"


class TestProvisionFailures:
    def test_fail_fast_without_rollback(self, ctx: EnvironmentContext):
        provider = FakeProvider(fail_create={plan.policy_id("delivery")})
        provisioner = Provisioner(ctx, provider, sleep=no_sleep)

        with pytest.raises(ResourceCreationFailed, match="policy.delivery") as exc:
            provisioner.run()

        assert isinstance(exc.value.cause, ProviderError)
        created = provider.ids("create")
        assert created[-1] == plan.policy_id("delivery")
        assert plan.OBSERVABILITY_ADDON not in created
        assert provider.ids("delete") == []
        assert plan.CLUSTER in provider.present
        assert not ctx.snapshot_path.exists()
        failures = provisioner.report.failures
        assert [f.resource_id for f in failures] == [plan.policy_id("delivery")]

    def test_table_never_active(self, ctx: EnvironmentContext, provider: FakeProvider):
        provider.statuses[plan.TABLE] = ResourceStatus(status="CREATING")
        with pytest.raises(ResourceVerificationFailed, match="simple-cart-catalog"):
            Provisioner(ctx, provider, sleep=no_sleep).run()
        attempts = ctx.config.polling.table.attempts
        assert provider.ids("describe").count(plan.TABLE) == attempts
        assert plan.policy_id("cart") not in provider.ids("create")
        assert not ctx.snapshot_path.exists()

    def test_no_ready_nodes(self, ctx: EnvironmentContext, provider: FakeProvider):
        provider.statuses[plan.CLUSTER] = ResourceStatus(
            status="ACTIVE", attributes={"nodes": 0}
        )
        with pytest.raises(ResourceVerificationFailed, match="no ready nodes"):
            Provisioner(ctx, provider, sleep=no_sleep).run()
        assert not ctx.snapshot_path.exists()

    def test_kube_context_failure(
        self, ctx: EnvironmentContext, provider: FakeProvider
    ):
        provider.configure_kube_context = MagicMock(  # type: ignore[method-assign]
            side_effect=ProviderError("aws", "eks update-kubeconfig", "denied")
        )
        with pytest.raises(ResourceCreationFailed, match="kube-context"):
            Provisioner(ctx, provider, sleep=no_sleep).run()
        assert provider.ids("create") == [plan.CLUSTER]
