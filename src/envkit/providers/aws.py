"""AwsProvider: boto3 plus the eksctl/kubectl/helm/docker command-line tools."""

from __future__ import annotations

import base64
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import boto3
import httpx
import structlog
import yaml
from botocore.exceptions import BotoCoreError, ClientError

from envkit.catalog.models import ClusterRef, LogicalResource, ResourceKind
from envkit.errors import ProviderError
from envkit.providers.base import Outcome, ProviderResult, ResourceStatus
from envkit.providers.documents import fetch_policy_document
from envkit.providers.tools import ToolRunner

logger = structlog.get_logger()

# IAM keeps at most five versions per managed policy.
MAX_POLICY_VERSIONS = 5

_NOT_FOUND_MARKERS = ("not found", "notfound", "does not exist", "no such")

# Kinds that live inside the cluster; they are absent once the cluster is.
_IN_CLUSTER = frozenset(
    {
        ResourceKind.IDENTITY_PROVIDER,
        ResourceKind.MANIFEST_BUNDLE,
        ResourceKind.SERVICE_ACCOUNT,
        ResourceKind.HELM_RELEASE,
        ResourceKind.NAMESPACE,
        ResourceKind.KUBERNETES_OBJECT,
    }
)


def _is_not_found(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in _NOT_FOUND_MARKERS)


def _tag_list(tags: dict[str, str]) -> list[dict[str, str]]:
    return [{"Key": k, "Value": v} for k, v in tags.items()]


class AwsProvider:
    """ResourceProvider backed by one AWS region.

    Cloud APIs go through boto3 clients created lazily from *session*;
    cluster-side work shells out through *tools*.
    """

    def __init__(
        self,
        region: str,
        *,
        session: Any = None,
        tools: ToolRunner | None = None,
    ) -> None:
        self._region = region
        self._session = session or boto3.session.Session(region_name=region)
        self._tools = tools or ToolRunner()
        self._clients: dict[str, Any] = {}

    def _client(self, service: str) -> Any:
        if service not in self._clients:
            self._clients[service] = self._session.client(
                service, region_name=self._region
            )
        return self._clients[service]

    # -- protocol -----------------------------------------------------------

    def describe(self, resource: LogicalResource) -> ResourceStatus | None:
        handler: Callable[[LogicalResource], ResourceStatus | None] = getattr(
            self, f"_describe_{resource.kind.value}"
        )

        def _describe(r: LogicalResource) -> ResourceStatus | None:
            if r.kind in _IN_CLUSTER and not self._cluster_exists(r):
                return None
            status = handler(r)
            if r.kind == ResourceKind.CLUSTER and status and status.status == "ACTIVE":
                status.attributes["nodes"] = self._node_count()
            return status

        return self._guard("describe", resource, _describe)

    def create(self, resource: LogicalResource) -> ProviderResult:
        handler: Callable[[LogicalResource], ProviderResult] = getattr(
            self, f"_create_{resource.kind.value}"
        )
        return self._guard("create", resource, handler)

    def update(self, resource: LogicalResource) -> ProviderResult:
        if resource.kind == ResourceKind.POLICY:
            return self._guard("update", resource, self._update_policy)
        if resource.kind == ResourceKind.KUBERNETES_OBJECT:
            return self._guard("update", resource, self._restart_object)
        raise ProviderError("update", resource.describe(), "update is not supported")

    def delete(
        self, resource: LogicalResource, *, wait: bool = False
    ) -> ProviderResult:
        handler = getattr(self, f"_delete_{resource.kind.value}")

        def _delete(r: LogicalResource) -> ProviderResult:
            if r.kind in _IN_CLUSTER and not self._cluster_exists(r):
                logger.info("provider.cluster_absent", resource=r.id)
                return ProviderResult(Outcome.ABSENT)
            return handler(r, wait)  # type: ignore[no-any-return]

        return self._guard("delete", resource, _delete)  # type: ignore[no-any-return]

    def caller_account(self) -> str:
        try:
            return str(self._client("sts").get_caller_identity()["Account"])
        except (ClientError, BotoCoreError) as exc:
            raise ProviderError("get", "caller identity", str(exc)) from exc

    def configure_kube_context(self, cluster: ClusterRef) -> None:
        self._tools.run(
            "aws", "eks", "update-kubeconfig",
            "--name", cluster.name, "--region", cluster.region,
        )
        logger.info("kube_context.updated", cluster=cluster.name)

    def _guard(
        self,
        operation: str,
        resource: LogicalResource,
        handler: Callable[[LogicalResource], Any],
    ) -> Any:
        try:
            return handler(resource)
        except (ClientError, BotoCoreError, httpx.HTTPError, ValueError) as exc:
            # ValueError covers unparseable tool output and bad policy documents.
            raise ProviderError(operation, resource.describe(), str(exc)) from exc

    def _cluster_exists(self, resource: LogicalResource) -> bool:
        name = resource.properties.get("cluster")
        if not name:
            return True
        eks = self._client("eks")
        try:
            eks.describe_cluster(name=name)
        except eks.exceptions.ResourceNotFoundException:
            return False
        return True

    # -- cluster ------------------------------------------------------------

    def _node_count(self) -> int:
        proc = self._tools.run("kubectl", "get", "nodes", "-o", "name", check=False)
        return len(proc.stdout.split()) if proc.returncode == 0 else 0

    def _describe_cluster(self, resource: LogicalResource) -> ResourceStatus | None:
        eks = self._client("eks")
        try:
            cluster = eks.describe_cluster(name=resource.name)["cluster"]
        except eks.exceptions.ResourceNotFoundException:
            return None
        return ResourceStatus(
            status=cluster.get("status", "present"),
            attributes={"arn": cluster.get("arn"), "endpoint": cluster.get("endpoint")},
        )

    def _create_cluster(self, resource: LogicalResource) -> ProviderResult:
        config = resource.properties["config"]
        attributes = {}
        for sa in config.get("iam", {}).get("serviceAccounts", []):
            if sa.get("roleName"):
                attributes["cloudwatch_role"] = sa["roleName"]
        existing = self._describe_cluster(resource)
        if existing is not None:
            return ProviderResult(Outcome.EXISTS, {**attributes, **existing.attributes})

        path = Path(resource.properties["config_path"])
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(config, sort_keys=False))
        proc = self._tools.run(
            "eksctl", "create", "cluster", "-f", str(path), check=False
        )
        if proc.returncode != 0:
            if "already exists" in proc.stderr:
                return ProviderResult(Outcome.EXISTS, attributes)
            raise ProviderError("create", resource.describe(), proc.stderr.strip())
        return ProviderResult(Outcome.CREATED, attributes)

    def _delete_cluster(self, resource: LogicalResource, wait: bool) -> ProviderResult:
        if self._describe_cluster(resource) is None:
            return ProviderResult(Outcome.ABSENT)
        args = [
            "eksctl", "delete", "cluster",
            "--name", resource.name, "--region", self._region,
        ]
        if wait:
            args.append("--wait")
        self._tools.run(*args)
        return ProviderResult(Outcome.DELETED)

    # -- OIDC identity provider --------------------------------------------

    def _oidc_provider_arn(self, cluster_name: str) -> str | None:
        eks = self._client("eks")
        try:
            cluster = eks.describe_cluster(name=cluster_name)["cluster"]
        except eks.exceptions.ResourceNotFoundException:
            return None
        issuer = cluster.get("identity", {}).get("oidc", {}).get("issuer", "")
        issuer_path = issuer.removeprefix("https://")
        if not issuer_path:
            return None
        iam = self._client("iam")
        providers = iam.list_open_id_connect_providers()
        for entry in providers.get("OpenIDConnectProviderList", []):
            if entry["Arn"].endswith(issuer_path):
                return str(entry["Arn"])
        return None

    def _describe_identity_provider(
        self, resource: LogicalResource
    ) -> ResourceStatus | None:
        arn = self._oidc_provider_arn(resource.properties.get("cluster", resource.name))
        return ResourceStatus(attributes={"arn": arn}) if arn else None

    def _create_identity_provider(self, resource: LogicalResource) -> ProviderResult:
        existing = self._describe_identity_provider(resource)
        if existing is not None:
            return ProviderResult(Outcome.EXISTS, existing.attributes)
        self._tools.run(
            "eksctl", "utils", "associate-iam-oidc-provider",
            "--cluster", resource.properties["cluster"],
            "--region", self._region, "--approve",
        )
        created = self._describe_identity_provider(resource)
        return ProviderResult(Outcome.CREATED, created.attributes if created else {})

    def _delete_identity_provider(
        self, resource: LogicalResource, wait: bool
    ) -> ProviderResult:
        arn = self._oidc_provider_arn(resource.properties.get("cluster", resource.name))
        if arn is None:
            return ProviderResult(Outcome.ABSENT)
        iam = self._client("iam")
        try:
            iam.delete_open_id_connect_provider(OpenIDConnectProviderArn=arn)
        except iam.exceptions.NoSuchEntityException:
            return ProviderResult(Outcome.ABSENT)
        return ProviderResult(Outcome.DELETED)

    # -- cert-manager release manifest --------------------------------------

    def _describe_manifest_bundle(
        self, resource: LogicalResource
    ) -> ResourceStatus | None:
        proc = self._tools.run(
            "kubectl", "get", "deployments", "-n", resource.namespace or "default",
            "-o", "name", check=False,
        )
        if proc.returncode != 0 or not proc.stdout.strip():
            return None
        return ResourceStatus(attributes={"deployments": proc.stdout.split()})

    def _create_manifest_bundle(self, resource: LogicalResource) -> ProviderResult:
        if self._describe_manifest_bundle(resource) is not None:
            return ProviderResult(Outcome.EXISTS)
        self._tools.run("kubectl", "apply", "-f", resource.properties["url"])
        self._tools.run(
            "kubectl", "wait", "--for=condition=Available", "deployment", "--all",
            "-n", resource.namespace or "default", "--timeout=300s",
        )
        return ProviderResult(Outcome.CREATED)

    def _delete_manifest_bundle(
        self, resource: LogicalResource, wait: bool
    ) -> ProviderResult:
        if self._describe_manifest_bundle(resource) is None:
            return ProviderResult(Outcome.ABSENT)
        self._tools.run(
            "kubectl", "delete", "-f", resource.properties["url"], "--ignore-not-found"
        )
        return ProviderResult(Outcome.DELETED)

    # -- IAM policies -------------------------------------------------------

    def _policy_document(self, resource: LogicalResource) -> dict[str, Any]:
        if "document" in resource.properties:
            return resource.properties["document"]  # type: ignore[no-any-return]
        return fetch_policy_document(
            resource.properties["document_url"],
            timeout=resource.properties.get("download_timeout", 30.0),
        )

    def _describe_policy(self, resource: LogicalResource) -> ResourceStatus | None:
        iam = self._client("iam")
        try:
            policy = iam.get_policy(PolicyArn=resource.properties["arn"])["Policy"]
        except iam.exceptions.NoSuchEntityException:
            return None
        return ResourceStatus(
            attributes={
                "arn": policy["Arn"],
                "default_version": policy.get("DefaultVersionId"),
            }
        )

    def _create_policy(self, resource: LogicalResource) -> ProviderResult:
        existing = self._describe_policy(resource)
        if existing is not None:
            return ProviderResult(Outcome.EXISTS, {"arn": existing.attributes["arn"]})
        iam = self._client("iam")
        try:
            resp = iam.create_policy(
                PolicyName=resource.name,
                PolicyDocument=json.dumps(self._policy_document(resource)),
                Tags=_tag_list(resource.properties.get("tags", {})),
            )
        except iam.exceptions.EntityAlreadyExistsException:
            return ProviderResult(Outcome.EXISTS, {"arn": resource.properties["arn"]})
        return ProviderResult(Outcome.CREATED, {"arn": resp["Policy"]["Arn"]})

    def _update_policy(self, resource: LogicalResource) -> ProviderResult:
        """Publish the document as the new default version."""
        iam = self._client("iam")
        arn = resource.properties["arn"]
        versions = iam.list_policy_versions(PolicyArn=arn)["Versions"]
        if len(versions) >= MAX_POLICY_VERSIONS:
            oldest = min(
                (v for v in versions if not v["IsDefaultVersion"]),
                key=lambda v: v["CreateDate"],
            )
            iam.delete_policy_version(PolicyArn=arn, VersionId=oldest["VersionId"])
        resp = iam.create_policy_version(
            PolicyArn=arn,
            PolicyDocument=json.dumps(self._policy_document(resource)),
            SetAsDefault=True,
        )
        return ProviderResult(
            Outcome.UPDATED, {"arn": arn, "version": resp["PolicyVersion"]["VersionId"]}
        )

    def _delete_policy(self, resource: LogicalResource, wait: bool) -> ProviderResult:
        iam = self._client("iam")
        arn = resource.properties.get("arn") or resource.arn
        try:
            entities = iam.list_entities_for_policy(PolicyArn=arn)
            for entity in entities.get("PolicyRoles", []):
                iam.detach_role_policy(RoleName=entity["RoleName"], PolicyArn=arn)
            for version in iam.list_policy_versions(PolicyArn=arn)["Versions"]:
                if not version["IsDefaultVersion"]:
                    iam.delete_policy_version(
                        PolicyArn=arn, VersionId=version["VersionId"]
                    )
            iam.delete_policy(PolicyArn=arn)
        except iam.exceptions.NoSuchEntityException:
            return ProviderResult(Outcome.ABSENT)
        return ProviderResult(Outcome.DELETED)

    # -- IRSA service accounts ----------------------------------------------

    def _describe_service_account(
        self, resource: LogicalResource
    ) -> ResourceStatus | None:
        proc = self._tools.run(
            "kubectl", "get", "serviceaccount", resource.name,
            "-n", resource.namespace or "default", "-o", "json", check=False,
        )
        if proc.returncode != 0:
            return None
        body = json.loads(proc.stdout)
        annotations = body.get("metadata", {}).get("annotations", {})
        return ResourceStatus(
            attributes={"role_arn": annotations.get("eks.amazonaws.com/role-arn")}
        )

    def _create_service_account(self, resource: LogicalResource) -> ProviderResult:
        existing = self._describe_service_account(resource)
        if existing is not None:
            return ProviderResult(Outcome.EXISTS, existing.attributes)
        args = [
            "eksctl", "create", "iamserviceaccount",
            "--name", resource.name,
            "--namespace", resource.namespace or "default",
            "--cluster", resource.properties["cluster"],
            "--region", self._region,
            "--attach-policy-arn", resource.properties["policy_arn"],
            "--approve",
        ]
        if resource.properties.get("replace_existing"):
            args.append("--override-existing-serviceaccounts")
        self._tools.run(*args)
        return ProviderResult(Outcome.CREATED)

    def _delete_service_account(
        self, resource: LogicalResource, wait: bool
    ) -> ProviderResult:
        if self._describe_service_account(resource) is None:
            return ProviderResult(Outcome.ABSENT)
        self._tools.run(
            "eksctl", "delete", "iamserviceaccount",
            "--name", resource.name,
            "--namespace", resource.namespace or "default",
            "--cluster", resource.properties["cluster"],
            "--region", self._region,
        )
        return ProviderResult(Outcome.DELETED)

    # -- Helm releases ------------------------------------------------------

    def _describe_helm_release(
        self, resource: LogicalResource
    ) -> ResourceStatus | None:
        proc = self._tools.run(
            "helm", "status", resource.name, "-n", resource.namespace or "default",
            "-o", "json", check=False,
        )
        if proc.returncode != 0:
            return None
        info = json.loads(proc.stdout).get("info", {})
        return ResourceStatus(status=info.get("status", "present"))

    def _create_helm_release(self, resource: LogicalResource) -> ProviderResult:
        existing = self._describe_helm_release(resource)
        if existing is not None and existing.status == "deployed":
            return ProviderResult(Outcome.EXISTS)
        props = resource.properties
        proc = self._tools.run(
            "helm", "repo", "add", props["repo_name"], props["repo_url"], check=False
        )
        if proc.returncode != 0 and "already exists" not in proc.stderr:
            raise ProviderError(
                "helm repo add", props["repo_name"], proc.stderr.strip()
            )
        self._tools.run("helm", "repo", "update")
        args = [
            "helm", "upgrade", "--install", resource.name, props["chart"],
            "-n", resource.namespace or "default", "--wait",
        ]
        for key, value in props.get("values", {}).items():
            args.extend(["--set", f"{key}={value}"])
        self._tools.run(*args)
        return ProviderResult(Outcome.CREATED)

    def _delete_helm_release(
        self, resource: LogicalResource, wait: bool
    ) -> ProviderResult:
        if self._describe_helm_release(resource) is None:
            return ProviderResult(Outcome.ABSENT)
        self._tools.run(
            "helm", "uninstall", resource.name, "-n", resource.namespace or "default"
        )
        return ProviderResult(Outcome.DELETED)

    # -- DynamoDB -----------------------------------------------------------

    def _describe_table(self, resource: LogicalResource) -> ResourceStatus | None:
        dynamodb = self._client("dynamodb")
        try:
            table = dynamodb.describe_table(TableName=resource.name)["Table"]
        except dynamodb.exceptions.ResourceNotFoundException:
            return None
        return ResourceStatus(
            status=table["TableStatus"], attributes={"arn": table.get("TableArn")}
        )

    def _create_table(self, resource: LogicalResource) -> ProviderResult:
        props = resource.properties
        dynamodb = self._client("dynamodb")
        try:
            resp = dynamodb.create_table(
                TableName=resource.name,
                KeySchema=[{"AttributeName": props["hash_key"], "KeyType": "HASH"}],
                AttributeDefinitions=[
                    {"AttributeName": props["hash_key"], "AttributeType": "S"}
                ],
                ProvisionedThroughput={
                    "ReadCapacityUnits": props["read_capacity"],
                    "WriteCapacityUnits": props["write_capacity"],
                },
                Tags=_tag_list(props.get("tags", {})),
            )
        except dynamodb.exceptions.ResourceInUseException:
            return ProviderResult(Outcome.EXISTS)
        arn = resp["TableDescription"].get("TableArn")
        return ProviderResult(Outcome.CREATED, {"arn": arn})

    def _delete_table(self, resource: LogicalResource, wait: bool) -> ProviderResult:
        dynamodb = self._client("dynamodb")
        try:
            dynamodb.delete_table(TableName=resource.name)
        except dynamodb.exceptions.ResourceNotFoundException:
            return ProviderResult(Outcome.ABSENT)
        if wait:
            dynamodb.get_waiter("table_not_exists").wait(TableName=resource.name)
        return ProviderResult(Outcome.DELETED)

    # -- namespaces ---------------------------------------------------------

    def _describe_namespace(self, resource: LogicalResource) -> ResourceStatus | None:
        proc = self._tools.run(
            "kubectl", "get", "namespace", resource.name, check=False
        )
        return ResourceStatus() if proc.returncode == 0 else None

    def _create_namespace(self, resource: LogicalResource) -> ProviderResult:
        if self._describe_namespace(resource) is not None:
            return ProviderResult(Outcome.EXISTS)
        self._tools.run(
            "kubectl", "apply", "-f", "-",
            input=yaml.safe_dump(resource.properties["manifest"], sort_keys=False),
        )
        return ProviderResult(Outcome.CREATED)

    def _delete_namespace(
        self, resource: LogicalResource, wait: bool
    ) -> ProviderResult:
        if self._describe_namespace(resource) is None:
            return ProviderResult(Outcome.ABSENT)
        self._tools.run(
            "kubectl", "delete", "namespace", resource.name, "--ignore-not-found"
        )
        return ProviderResult(Outcome.DELETED)

    # -- EKS managed add-ons ------------------------------------------------

    def _describe_addon(self, resource: LogicalResource) -> ResourceStatus | None:
        eks = self._client("eks")
        try:
            addon = eks.describe_addon(
                clusterName=resource.properties["cluster"], addonName=resource.name
            )["addon"]
        except eks.exceptions.ResourceNotFoundException:
            return None
        return ResourceStatus(
            status=addon.get("status", "present"),
            attributes={"arn": addon.get("addonArn")},
        )

    def _create_addon(self, resource: LogicalResource) -> ProviderResult:
        eks = self._client("eks")
        try:
            resp = eks.create_addon(
                clusterName=resource.properties["cluster"],
                addonName=resource.name,
                resolveConflicts="OVERWRITE",
            )
        except eks.exceptions.ResourceInUseException:
            return ProviderResult(Outcome.EXISTS)
        return ProviderResult(Outcome.CREATED, {"arn": resp["addon"].get("addonArn")})

    def _delete_addon(self, resource: LogicalResource, wait: bool) -> ProviderResult:
        eks = self._client("eks")
        cluster = resource.properties["cluster"]
        try:
            eks.delete_addon(clusterName=cluster, addonName=resource.name)
        except eks.exceptions.ResourceNotFoundException:
            return ProviderResult(Outcome.ABSENT)
        if wait:
            eks.get_waiter("addon_deleted").wait(
                clusterName=cluster, addonName=resource.name
            )
        return ProviderResult(Outcome.DELETED)

    # -- CloudWatch log groups and the service-linked role ------------------

    def _log_groups(self, prefix: str) -> list[str]:
        paginator = self._client("logs").get_paginator("describe_log_groups")
        return [
            group["logGroupName"]
            for page in paginator.paginate(logGroupNamePrefix=prefix)
            for group in page.get("logGroups", [])
        ]

    def _describe_log_group(self, resource: LogicalResource) -> ResourceStatus | None:
        groups = self._log_groups(resource.name)
        return ResourceStatus(attributes={"log_groups": groups}) if groups else None

    def _create_log_group(self, resource: LogicalResource) -> ProviderResult:
        raise ProviderError(
            "create", resource.describe(), "log groups are created by the add-on"
        )

    def _delete_log_group(
        self, resource: LogicalResource, wait: bool
    ) -> ProviderResult:
        logs = self._client("logs")
        groups = self._log_groups(resource.name)
        if not groups:
            return ProviderResult(Outcome.ABSENT)
        for group in groups:
            try:
                logs.delete_log_group(logGroupName=group)
            except logs.exceptions.ResourceNotFoundException:
                continue
            logger.info("log_group.deleted", log_group=group)
        return ProviderResult(Outcome.DELETED, {"log_groups": groups})

    def _describe_service_linked_role(
        self, resource: LogicalResource
    ) -> ResourceStatus | None:
        iam = self._client("iam")
        try:
            role = iam.get_role(RoleName=resource.name)["Role"]
        except iam.exceptions.NoSuchEntityException:
            return None
        return ResourceStatus(attributes={"arn": role.get("Arn")})

    def _create_service_linked_role(self, resource: LogicalResource) -> ProviderResult:
        raise ProviderError(
            "create", resource.describe(), "created by the observability add-on"
        )

    def _delete_service_linked_role(
        self, resource: LogicalResource, wait: bool
    ) -> ProviderResult:
        iam = self._client("iam")
        try:
            resp = iam.delete_service_linked_role(RoleName=resource.name)
        except iam.exceptions.NoSuchEntityException:
            return ProviderResult(Outcome.ABSENT)
        return ProviderResult(
            Outcome.DELETED, {"deletion_task": resp.get("DeletionTaskId")}
        )

    # -- ECR repositories and images ----------------------------------------

    def _describe_image_repository(
        self, resource: LogicalResource
    ) -> ResourceStatus | None:
        ecr = self._client("ecr")
        try:
            resp = ecr.describe_repositories(repositoryNames=[resource.name])
            repos = resp["repositories"]
        except ecr.exceptions.RepositoryNotFoundException:
            return None
        return ResourceStatus(attributes={"uri": repos[0].get("repositoryUri")})

    def _create_image_repository(self, resource: LogicalResource) -> ProviderResult:
        ecr = self._client("ecr")
        try:
            resp = ecr.create_repository(
                repositoryName=resource.name,
                imageScanningConfiguration={"scanOnPush": True},
                tags=_tag_list(resource.properties.get("tags", {})),
            )
        except ecr.exceptions.RepositoryAlreadyExistsException:
            return ProviderResult(Outcome.EXISTS)
        uri = resp["repository"].get("repositoryUri")
        return ProviderResult(Outcome.CREATED, {"uri": uri})

    def _delete_image_repository(
        self, resource: LogicalResource, wait: bool
    ) -> ProviderResult:
        ecr = self._client("ecr")
        try:
            ecr.delete_repository(repositoryName=resource.name, force=True)
        except ecr.exceptions.RepositoryNotFoundException:
            return ProviderResult(Outcome.ABSENT)
        return ProviderResult(Outcome.DELETED)

    def _registry_login(self, registry: str) -> None:
        auth = self._client("ecr").get_authorization_token()["authorizationData"][0]
        token = base64.b64decode(auth["authorizationToken"]).decode()
        user, password = token.split(":", 1)
        self._tools.run(
            "docker", "login", "--username", user, "--password-stdin", registry,
            input=password,
        )

    def _describe_container_image(
        self, resource: LogicalResource
    ) -> ResourceStatus | None:
        if resource.properties.get("build_cache"):
            return None
        proc = self._tools.run("docker", "image", "inspect", resource.name, check=False)
        return ResourceStatus() if proc.returncode == 0 else None

    def _create_container_image(self, resource: LogicalResource) -> ProviderResult:
        """Build, tag and push; images are always rebuilt."""
        props = resource.properties
        self._registry_login(props["registry"])
        self._tools.run(
            "docker", "build", "--platform", props["platform"],
            "-t", props["local_tag"], props["context"],
        )
        self._tools.run("docker", "tag", props["local_tag"], resource.name)
        self._tools.run("docker", "push", resource.name)
        return ProviderResult(Outcome.CREATED, {"uri": resource.name})

    def _delete_container_image(
        self, resource: LogicalResource, wait: bool
    ) -> ProviderResult:
        if resource.properties.get("build_cache"):
            self._tools.run("docker", "builder", "prune", "-f")
            return ProviderResult(Outcome.DELETED)
        tags = [resource.name]
        if resource.properties.get("local_tag"):
            tags.append(resource.properties["local_tag"])
        proc = self._tools.run("docker", "image", "rm", "-f", *tags, check=False)
        if proc.returncode != 0:
            if _is_not_found(proc.stderr):
                return ProviderResult(Outcome.ABSENT)
            raise ProviderError("delete", resource.describe(), proc.stderr.strip())
        if not proc.stdout.strip():
            return ProviderResult(Outcome.ABSENT)
        return ProviderResult(Outcome.DELETED)

    # -- workload objects ---------------------------------------------------

    def _describe_kubernetes_object(
        self, resource: LogicalResource
    ) -> ResourceStatus | None:
        proc = self._tools.run(
            "kubectl", "get", resource.properties["kind"].lower(), resource.name,
            "-n", resource.namespace or "default", "-o", "json", check=False,
        )
        if proc.returncode != 0:
            return None
        body = json.loads(proc.stdout)
        status = body.get("status", {})
        attributes: dict[str, Any] = {
            "replicas": body.get("spec", {}).get("replicas"),
            "ready_replicas": status.get("readyReplicas", 0),
            "total_replicas": status.get("replicas", 0),
            "updated_replicas": status.get("updatedReplicas", 0),
            "generation": body.get("metadata", {}).get("generation"),
            "observed_generation": status.get("observedGeneration"),
        }
        ingress = status.get("loadBalancer", {}).get("ingress", [])
        if ingress:
            attributes["hostname"] = ingress[0].get("hostname")
        return ResourceStatus(attributes=attributes)

    def _create_kubernetes_object(self, resource: LogicalResource) -> ProviderResult:
        proc = self._tools.run(
            "kubectl", "apply", "-f", "-",
            input=yaml.safe_dump(resource.properties["manifest"], sort_keys=False),
        )
        output = proc.stdout.strip()
        if output.endswith("unchanged"):
            return ProviderResult(Outcome.EXISTS)
        if output.endswith("configured"):
            return ProviderResult(Outcome.UPDATED)
        return ProviderResult(Outcome.CREATED)

    def _restart_object(self, resource: LogicalResource) -> ProviderResult:
        self._tools.run(
            "kubectl", "rollout", "restart",
            f"{resource.properties['kind'].lower()}/{resource.name}",
            "-n", resource.namespace or "default",
        )
        return ProviderResult(Outcome.UPDATED)

    def _delete_kubernetes_object(
        self, resource: LogicalResource, wait: bool
    ) -> ProviderResult:
        proc = self._tools.run(
            "kubectl", "delete", resource.properties["kind"].lower(), resource.name,
            "-n", resource.namespace or "default", "--ignore-not-found",
        )
        if not proc.stdout.strip():
            return ProviderResult(Outcome.ABSENT)
        return ProviderResult(Outcome.DELETED)
