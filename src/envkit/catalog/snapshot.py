"""Persisted JSON snapshot of one environment instance.

Keys are camelCase on disk; every resource-name string must be non-empty.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Self

from pydantic import BaseModel, ConfigDict, StringConstraints, model_validator
from pydantic.alias_generators import to_camel

from envkit.catalog.models import AddonState
from envkit.catalog.naming import RUN_ID_PATTERN

Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
RunId = Annotated[str, StringConstraints(pattern=RUN_ID_PATTERN.pattern)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ClusterSnapshot(_CamelModel):
    name: Name
    region: Name
    account_id: Name


class PolicySnapshot(_CamelModel):
    name: Name
    arn: Name


class AlbControllerSnapshot(_CamelModel):
    policy_name: Name
    policy_arn: Name
    service_account: Name
    namespace: Name


class CertManagerSnapshot(_CamelModel):
    version: Name
    namespace: Name


class ResourcesSnapshot(_CamelModel):
    dynamodb_table: Name
    cart_service_account: Name
    delivery_service_account: Name
    iam_policies: dict[str, PolicySnapshot]
    alb_controller: AlbControllerSnapshot
    cert_manager: CertManagerSnapshot
    cloudwatch_role: Name | None = None

    @model_validator(mode="after")
    def check_policies(self) -> Self:
        missing = [k for k in ("cart", "delivery") if k not in self.iam_policies]
        if missing:
            msg = f"iamPolicies is missing {missing}"
            raise ValueError(msg)
        return self


class TagsSnapshot(_CamelModel):
    environment: Name
    project: Name
    cluster_name: Name


class AddonsSnapshot(_CamelModel):
    alb_controller: AddonState = AddonState.ABSENT
    cert_manager: AddonState = AddonState.ABSENT
    observability: AddonState = AddonState.ABSENT


class Snapshot(_CamelModel):
    """Root document written to ``cluster-resources.json``."""

    run_id: RunId
    created_at: datetime
    cluster: ClusterSnapshot
    resources: ResourcesSnapshot
    tags: TagsSnapshot
    addons: AddonsSnapshot = AddonsSnapshot()

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)
