"""Unit tests for AwsProvider with mocked boto3 clients and tool runner."""

from __future__ import annotations

import base64
import json
import subprocess
from typing import Any
from unittest.mock import MagicMock

import httpx
import pytest
import respx
import yaml
from botocore.exceptions import ClientError

from envkit.catalog.models import LogicalResource, ResourceKind
from envkit.context import EnvironmentContext
from envkit.errors import ProviderError
from envkit.lifecycle import plan
from envkit.providers.aws import AwsProvider
from envkit.providers.base import Outcome, ResourceProvider
from envkit.providers.tools import ToolRunner

SERVICE_ACCOUNTS = {"cart": "abc123-cart-sa", "delivery": "abc123-delivery-sa"}
EXCEPTIONS = (
    "ResourceNotFoundException",
    "ResourceInUseException",
    "NoSuchEntityException",
    "EntityAlreadyExistsException",
    "RepositoryNotFoundException",
    "RepositoryAlreadyExistsException",
)


def _aws_client() -> MagicMock:
    client = MagicMock()
    for name in EXCEPTIONS:
        setattr(client.exceptions, name, type(name, (Exception,), {}))
    return client


def _completed(
    returncode: int = 0, stdout: str = "", stderr: str = ""
) -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess([], returncode, stdout, stderr)


def _commands(tools: MagicMock) -> list[str]:
    return [" ".join(c.args) for c in tools.run.call_args_list]


@pytest.fixture
def clients() -> dict[str, MagicMock]:
    return {
        service: _aws_client()
        for service in ("eks", "iam", "dynamodb", "ecr", "logs", "sts")
    }


@pytest.fixture
def tools() -> MagicMock:
    runner = MagicMock(spec=ToolRunner)
    runner.run.return_value = _completed()
    return runner


@pytest.fixture
def aws(clients: dict[str, MagicMock], tools: MagicMock) -> AwsProvider:
    session = MagicMock()

    def _client(service: str, region_name: str | None = None) -> Any:
        return clients[service]

    session.client.side_effect = _client
    return AwsProvider("us-east-1", session=session, tools=tools)


def _planned(ctx: EnvironmentContext, resource_id: str) -> LogicalResource:
    for phase in plan.provisioning_phases(ctx):
        for resource in phase.resources:
            if resource.id == resource_id:
                return resource
    for resource in [
        *plan.image_resources(ctx),
        *plan.observability_residue(ctx),
        *plan.workload_resources(ctx, SERVICE_ACCOUNTS),
        plan.build_cache_resource(ctx),
    ]:
        if resource.id == resource_id:
            return resource
    raise KeyError(resource_id)


def test_implements_protocol(aws: AwsProvider):
    assert isinstance(aws, ResourceProvider)


class TestAccount:
    def test_caller_account(self, aws: AwsProvider, clients: dict[str, MagicMock]):
        clients["sts"].get_caller_identity.return_value = {"Account": "123456789012"}
        assert aws.caller_account() == "123456789012"

    def test_caller_account_error(
        self, aws: AwsProvider, clients: dict[str, MagicMock]
    ):
        clients["sts"].get_caller_identity.side_effect = ClientError(
            {"Error": {"Code": "ExpiredToken", "Message": "expired"}},
            "GetCallerIdentity",
        )
        with pytest.raises(ProviderError, match="caller identity"):
            aws.caller_account()

    def test_configure_kube_context(
        self, aws: AwsProvider, tools: MagicMock, ctx: EnvironmentContext
    ):
        aws.configure_kube_context(ctx.cluster)
        assert _commands(tools) == [
            "aws eks update-kubeconfig --name eks-abc123 --region us-east-1"
        ]


class TestCluster:
    def test_create_writes_config(
        self,
        aws: AwsProvider,
        clients: dict[str, MagicMock],
        tools: MagicMock,
        ctx: EnvironmentContext,
    ):
        eks = clients["eks"]
        eks.describe_cluster.side_effect = eks.exceptions.ResourceNotFoundException()
        result = aws.create(_planned(ctx, plan.CLUSTER))

        assert result.outcome == Outcome.CREATED
        assert result.attributes["cloudwatch_role"] == "abc123-cw"
        written = yaml.safe_load(ctx.cluster_config_path.read_text())
        assert written["metadata"]["name"] == "eks-abc123"
        assert _commands(tools) == [
            f"eksctl create cluster -f {ctx.cluster_config_path}"
        ]

    def test_existing_cluster_reused(
        self,
        aws: AwsProvider,
        clients: dict[str, MagicMock],
        tools: MagicMock,
        ctx: EnvironmentContext,
    ):
        clients["eks"].describe_cluster.return_value = {
            "cluster": {"status": "ACTIVE", "arn": "arn:aws:eks:cluster/eks-abc123"}
        }
        result = aws.create(_planned(ctx, plan.CLUSTER))
        assert result.outcome == Outcome.EXISTS
        assert result.attributes["arn"] == "arn:aws:eks:cluster/eks-abc123"
        tools.run.assert_not_called()

    def test_describe_counts_nodes(
        self,
        aws: AwsProvider,
        clients: dict[str, MagicMock],
        tools: MagicMock,
        ctx: EnvironmentContext,
    ):
        clients["eks"].describe_cluster.return_value = {
            "cluster": {"status": "ACTIVE"}
        }
        tools.run.return_value = _completed(stdout="node/ip-1\nnode/ip-2\n")
        status = aws.describe(_planned(ctx, plan.CLUSTER))
        assert status is not None
        assert status.attributes["nodes"] == 2

    def test_delete_waits(
        self,
        aws: AwsProvider,
        clients: dict[str, MagicMock],
        tools: MagicMock,
        ctx: EnvironmentContext,
    ):
        clients["eks"].describe_cluster.return_value = {
            "cluster": {"status": "ACTIVE"}
        }
        result = aws.delete(_planned(ctx, plan.CLUSTER), wait=True)
        assert result.outcome == Outcome.DELETED
        assert _commands(tools) == [
            "eksctl delete cluster --name eks-abc123 --region us-east-1 --wait"
        ]

    def test_delete_absent(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        eks = clients["eks"]
        eks.describe_cluster.side_effect = eks.exceptions.ResourceNotFoundException()
        assert aws.delete(_planned(ctx, plan.CLUSTER)).outcome == Outcome.ABSENT


class TestInClusterResources:
    def test_absent_when_cluster_gone(
        self,
        aws: AwsProvider,
        clients: dict[str, MagicMock],
        tools: MagicMock,
        ctx: EnvironmentContext,
    ):
        eks = clients["eks"]
        eks.describe_cluster.side_effect = eks.exceptions.ResourceNotFoundException()
        for rid in (plan.ALB_RELEASE, plan.service_account_id("cart")):
            resource = _planned(ctx, rid)
            assert aws.describe(resource) is None
            assert aws.delete(resource).outcome == Outcome.ABSENT
        tools.run.assert_not_called()

    def test_service_account_create(
        self, aws: AwsProvider, tools: MagicMock, ctx: EnvironmentContext
    ):
        sa = _planned(ctx, plan.service_account_id("cart"))
        sa.properties["policy_arn"] = "arn:aws:iam::123456789012:policy/p"
        tools.run.side_effect = [
            _completed(returncode=1, stderr="NotFound"),
            _completed(),
        ]

        assert aws.create(sa).outcome == Outcome.CREATED
        command = _commands(tools)[1]
        assert command.startswith(
            "eksctl create iamserviceaccount --name abc123-cart-sa"
        )
        assert "--attach-policy-arn arn:aws:iam::123456789012:policy/p" in command
        assert command.endswith("--override-existing-serviceaccounts")

    def test_service_account_describe(
        self, aws: AwsProvider, tools: MagicMock, ctx: EnvironmentContext
    ):
        body = {
            "metadata": {
                "annotations": {"eks.amazonaws.com/role-arn": "arn:aws:iam::1:role/r"}
            }
        }
        tools.run.return_value = _completed(stdout=json.dumps(body))
        status = aws.describe(_planned(ctx, plan.service_account_id("cart")))
        assert status is not None
        assert status.attributes["role_arn"] == "arn:aws:iam::1:role/r"

    def test_helm_release_deployed_is_exists(
        self, aws: AwsProvider, tools: MagicMock, ctx: EnvironmentContext
    ):
        tools.run.return_value = _completed(stdout='{"info": {"status": "deployed"}}')
        assert aws.create(_planned(ctx, plan.ALB_RELEASE)).outcome == Outcome.EXISTS

    def test_unparseable_tool_output(
        self, aws: AwsProvider, tools: MagicMock, ctx: EnvironmentContext
    ):
        tools.run.return_value = _completed(stdout="Error: not json")
        with pytest.raises(ProviderError, match="aws-load-balancer-controller"):
            aws.describe(_planned(ctx, plan.ALB_RELEASE))

    def test_helm_release_install(
        self, aws: AwsProvider, tools: MagicMock, ctx: EnvironmentContext
    ):
        tools.run.side_effect = [
            _completed(returncode=1, stderr="release: not found"),
            _completed(returncode=1, stderr="repository name (eks) already exists"),
            _completed(),
            _completed(),
        ]
        assert aws.create(_planned(ctx, plan.ALB_RELEASE)).outcome == Outcome.CREATED
        install = _commands(tools)[-1]
        assert install.startswith(
            "helm upgrade --install aws-load-balancer-controller "
            "eks/aws-load-balancer-controller -n kube-system --wait"
        )
        assert "--set clusterName=eks-abc123" in install
        assert "--set serviceAccount.create=false" in install

    @pytest.mark.parametrize(
        ("stdout", "outcome"),
        [
            ("deployment.apps/dotnet-cart-api created\n", Outcome.CREATED),
            ("deployment.apps/dotnet-cart-api configured\n", Outcome.UPDATED),
            ("deployment.apps/dotnet-cart-api unchanged\n", Outcome.EXISTS),
        ],
    )
    def test_apply_outcomes(
        self,
        aws: AwsProvider,
        tools: MagicMock,
        ctx: EnvironmentContext,
        stdout: str,
        outcome: Outcome,
    ):
        tools.run.return_value = _completed(stdout=stdout)
        deployment = _planned(ctx, "workload.deployment.cart")
        assert aws.create(deployment).outcome == outcome
        assert "kind: Deployment" in tools.run.call_args.kwargs["input"]

    def test_object_delete_not_found(
        self, aws: AwsProvider, tools: MagicMock, ctx: EnvironmentContext
    ):
        tools.run.return_value = _completed(stdout="")
        result = aws.delete(_planned(ctx, "workload.ingress"))
        assert result.outcome == Outcome.ABSENT
        assert _commands(tools)[-1] == (
            "kubectl delete ingress apps-ingress -n default --ignore-not-found"
        )

    def test_restart_deployment(
        self, aws: AwsProvider, tools: MagicMock, ctx: EnvironmentContext
    ):
        result = aws.update(_planned(ctx, "workload.deployment.delivery"))
        assert result.outcome == Outcome.UPDATED
        assert _commands(tools) == [
            "kubectl rollout restart deployment/dotnet-delivery-api -n default"
        ]

    def test_oidc_provider_matched_by_issuer(
        self,
        aws: AwsProvider,
        clients: dict[str, MagicMock],
        tools: MagicMock,
        ctx: EnvironmentContext,
    ):
        clients["eks"].describe_cluster.return_value = {
            "cluster": {
                "identity": {"oidc": {"issuer": "https://oidc.eks/id/ABC"}}
            }
        }
        arn = "arn:aws:iam::123456789012:oidc-provider/oidc.eks/id/ABC"
        clients["iam"].list_open_id_connect_providers.return_value = {
            "OpenIDConnectProviderList": [{"Arn": "arn:other"}, {"Arn": arn}]
        }
        result = aws.create(_planned(ctx, plan.OIDC_PROVIDER))
        assert result.outcome == Outcome.EXISTS
        assert result.attributes["arn"] == arn
        tools.run.assert_not_called()


class TestPolicies:
    def test_existing_policy(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        policy = _planned(ctx, plan.policy_id("cart"))
        clients["iam"].get_policy.return_value = {
            "Policy": {"Arn": policy.properties["arn"], "DefaultVersionId": "v1"}
        }
        result = aws.create(policy)
        assert result.outcome == Outcome.EXISTS
        assert result.attributes["arn"] == policy.properties["arn"]
        clients["iam"].create_policy.assert_not_called()

    def test_create_policy(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        iam = clients["iam"]
        iam.get_policy.side_effect = iam.exceptions.NoSuchEntityException()
        iam.create_policy.return_value = {"Policy": {"Arn": "arn:new"}}
        result = aws.create(_planned(ctx, plan.policy_id("delivery")))

        assert result.outcome == Outcome.CREATED
        assert result.attributes == {"arn": "arn:new"}
        kwargs = iam.create_policy.call_args.kwargs
        assert kwargs["PolicyName"] == "abc123-delivery-policy"
        assert json.loads(kwargs["PolicyDocument"])["Statement"][0]["Resource"] == "*"
        assert {"Key": "ClusterName", "Value": "eks-abc123"} in kwargs["Tags"]

    @respx.mock
    def test_alb_policy_download_failure(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        iam = clients["iam"]
        iam.get_policy.side_effect = iam.exceptions.NoSuchEntityException()
        policy = _planned(ctx, plan.ALB_POLICY)
        respx.get(policy.properties["document_url"]).mock(
            return_value=httpx.Response(404)
        )

        with pytest.raises(ProviderError, match="404"):
            aws.create(policy)
        iam.create_policy.assert_not_called()

    def test_update_prunes_oldest_version(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        iam = clients["iam"]
        iam.list_policy_versions.return_value = {
            "Versions": [
                {"VersionId": "v5", "IsDefaultVersion": True, "CreateDate": 5},
                {"VersionId": "v3", "IsDefaultVersion": False, "CreateDate": 3},
                {"VersionId": "v2", "IsDefaultVersion": False, "CreateDate": 2},
                {"VersionId": "v4", "IsDefaultVersion": False, "CreateDate": 4},
                {"VersionId": "v1", "IsDefaultVersion": False, "CreateDate": 1},
            ]
        }
        iam.create_policy_version.return_value = {"PolicyVersion": {"VersionId": "v6"}}
        policy = _planned(ctx, plan.policy_id("cart"))

        result = aws.update(policy)

        assert result.outcome == Outcome.UPDATED
        assert result.attributes["version"] == "v6"
        iam.delete_policy_version.assert_called_once_with(
            PolicyArn=policy.properties["arn"], VersionId="v1"
        )
        assert iam.create_policy_version.call_args.kwargs["SetAsDefault"] is True

    def test_update_without_pruning(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        iam = clients["iam"]
        iam.list_policy_versions.return_value = {
            "Versions": [{"VersionId": "v1", "IsDefaultVersion": True, "CreateDate": 1}]
        }
        iam.create_policy_version.return_value = {"PolicyVersion": {"VersionId": "v2"}}
        aws.update(_planned(ctx, plan.policy_id("cart")))
        iam.delete_policy_version.assert_not_called()

    def test_delete_detaches_first(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        iam = clients["iam"]
        policy = _planned(ctx, plan.policy_id("cart"))
        arn = policy.properties["arn"]
        iam.list_entities_for_policy.return_value = {
            "PolicyRoles": [{"RoleName": "eksctl-cart-role"}]
        }
        iam.list_policy_versions.return_value = {
            "Versions": [
                {"VersionId": "v2", "IsDefaultVersion": True},
                {"VersionId": "v1", "IsDefaultVersion": False},
            ]
        }
        assert aws.delete(policy).outcome == Outcome.DELETED
        iam.detach_role_policy.assert_called_once_with(
            RoleName="eksctl-cart-role", PolicyArn=arn
        )
        iam.delete_policy_version.assert_called_once_with(PolicyArn=arn, VersionId="v1")
        iam.delete_policy.assert_called_once_with(PolicyArn=arn)

    def test_delete_absent(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        iam = clients["iam"]
        missing = iam.exceptions.NoSuchEntityException()
        iam.list_entities_for_policy.side_effect = missing
        result = aws.delete(_planned(ctx, plan.policy_id("cart")))
        assert result.outcome == Outcome.ABSENT

    def test_update_unsupported_kind(self, aws: AwsProvider, ctx: EnvironmentContext):
        with pytest.raises(ProviderError, match="not supported"):
            aws.update(_planned(ctx, plan.TABLE))


class TestTable:
    def test_create(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        dynamodb = clients["dynamodb"]
        dynamodb.create_table.return_value = {
            "TableDescription": {"TableArn": "arn:aws:dynamodb:table/t"}
        }
        result = aws.create(_planned(ctx, plan.TABLE))
        assert result.outcome == Outcome.CREATED
        assert result.attributes["arn"] == "arn:aws:dynamodb:table/t"
        kwargs = dynamodb.create_table.call_args.kwargs
        assert kwargs["TableName"] == "simple-cart-catalog"
        assert kwargs["KeySchema"] == [{"AttributeName": "Id", "KeyType": "HASH"}]
        assert kwargs["ProvisionedThroughput"]["ReadCapacityUnits"] == 1

    def test_create_existing(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        dynamodb = clients["dynamodb"]
        dynamodb.create_table.side_effect = dynamodb.exceptions.ResourceInUseException()
        assert aws.create(_planned(ctx, plan.TABLE)).outcome == Outcome.EXISTS

    def test_describe_status(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        clients["dynamodb"].describe_table.return_value = {
            "Table": {"TableStatus": "CREATING", "TableArn": "arn:t"}
        }
        status = aws.describe(_planned(ctx, plan.TABLE))
        assert status is not None
        assert status.status == "CREATING"

    def test_delete_waits(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        dynamodb = clients["dynamodb"]
        assert aws.delete(_planned(ctx, plan.TABLE), wait=True).outcome == (
            Outcome.DELETED
        )
        dynamodb.get_waiter.assert_called_once_with("table_not_exists")

    def test_delete_absent(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        dynamodb = clients["dynamodb"]
        dynamodb.delete_table.side_effect = (
            dynamodb.exceptions.ResourceNotFoundException()
        )
        assert aws.delete(_planned(ctx, plan.TABLE)).outcome == Outcome.ABSENT

    def test_client_error_wrapped(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        clients["dynamodb"].create_table.side_effect = ClientError(
            {"Error": {"Code": "AccessDeniedException", "Message": "denied"}},
            "CreateTable",
        )
        with pytest.raises(ProviderError, match="table simple-cart-catalog"):
            aws.create(_planned(ctx, plan.TABLE))


class TestObservability:
    def test_addon_exists(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        eks = clients["eks"]
        eks.create_addon.side_effect = eks.exceptions.ResourceInUseException()
        result = aws.create(_planned(ctx, plan.OBSERVABILITY_ADDON))
        assert result.outcome == Outcome.EXISTS

    def test_addon_describe(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        clients["eks"].describe_addon.return_value = {
            "addon": {"status": "ACTIVE", "addonArn": "arn:addon"}
        }
        status = aws.describe(_planned(ctx, plan.OBSERVABILITY_ADDON))
        assert status is not None
        assert status.status == "ACTIVE"

    def test_log_groups_deleted_by_prefix(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        logs = clients["logs"]
        logs.get_paginator.return_value.paginate.return_value = [
            {"logGroups": [{"logGroupName": "/aws/containerinsights/eks-abc123/a"}]},
            {"logGroups": [{"logGroupName": "/aws/containerinsights/eks-abc123/b"}]},
        ]
        result = aws.delete(_planned(ctx, plan.log_group_id(0)))
        assert result.outcome == Outcome.DELETED
        assert logs.delete_log_group.call_count == 2

    def test_log_groups_absent(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        clients["logs"].get_paginator.return_value.paginate.return_value = [
            {"logGroups": []}
        ]
        assert aws.delete(_planned(ctx, plan.log_group_id(1))).outcome == (
            Outcome.ABSENT
        )

    def test_log_groups_not_created(self, aws: AwsProvider, ctx: EnvironmentContext):
        with pytest.raises(ProviderError):
            aws.create(_planned(ctx, plan.log_group_id(0)))

    def test_service_linked_role_absent(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        iam = clients["iam"]
        iam.delete_service_linked_role.side_effect = (
            iam.exceptions.NoSuchEntityException()
        )
        result = aws.delete(_planned(ctx, plan.SERVICE_LINKED_ROLE))
        assert result.outcome == Outcome.ABSENT


class TestImages:
    def test_repository_exists(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        ecr = clients["ecr"]
        ecr.create_repository.side_effect = (
            ecr.exceptions.RepositoryAlreadyExistsException()
        )
        result = aws.create(_planned(ctx, plan.repository_id("cart")))
        assert result.outcome == Outcome.EXISTS

    def test_repository_delete_absent(
        self, aws: AwsProvider, clients: dict[str, MagicMock], ctx: EnvironmentContext
    ):
        ecr = clients["ecr"]
        ecr.delete_repository.side_effect = ecr.exceptions.RepositoryNotFoundException()
        result = aws.delete(_planned(ctx, plan.repository_id("delivery")))
        assert result.outcome == Outcome.ABSENT

    def test_build_and_push(
        self,
        aws: AwsProvider,
        clients: dict[str, MagicMock],
        tools: MagicMock,
        ctx: EnvironmentContext,
    ):
        token = base64.b64encode(b"AWS:s3cret").decode()
        clients["ecr"].get_authorization_token.return_value = {
            "authorizationData": [{"authorizationToken": token}]
        }
        image = _planned(ctx, plan.image_id("cart"))

        assert aws.create(image).outcome == Outcome.CREATED

        registry = "123456789012.dkr.ecr.us-east-1.amazonaws.com"
        commands = _commands(tools)
        assert commands[0] == (
            f"docker login --username AWS --password-stdin {registry}"
        )
        assert tools.run.call_args_list[0].kwargs["input"] == "s3cret"
        assert commands[1].startswith("docker build --platform linux/amd64")
        assert commands[2] == (
            f"docker tag simple-cart-api:latest {registry}/simple-cart-api:latest"
        )
        assert commands[3] == f"docker push {registry}/simple-cart-api:latest"

    def test_local_image_absent(
        self, aws: AwsProvider, tools: MagicMock, ctx: EnvironmentContext
    ):
        tools.run.return_value = _completed(
            returncode=1, stderr="Error: No such image: simple-cart-api:latest"
        )
        result = aws.delete(_planned(ctx, plan.image_id("cart")))
        assert result.outcome == Outcome.ABSENT

    def test_build_cache_pruned(
        self, aws: AwsProvider, tools: MagicMock, ctx: EnvironmentContext
    ):
        result = aws.delete(_planned(ctx, plan.BUILD_CACHE))
        assert result.outcome == Outcome.DELETED
        assert _commands(tools) == ["docker builder prune -f"]

