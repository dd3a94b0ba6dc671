"""Run id generation and deterministic resource naming.

Every name below is a pure function of the run id, the cluster name, or a
fixed constant, so loading a snapshot always reconstructs identical names.
"""

from __future__ import annotations

import re
import secrets
import string

from envkit.errors import InvalidRunId

RUN_ID_LENGTH = 6
RUN_ID_ALPHABET = string.ascii_lowercase + string.digits
RUN_ID_PATTERN = re.compile(rf"^[a-z0-9]{{{RUN_ID_LENGTH}}}$")


def generate_run_id() -> str:
    """Return a fresh 6-character lowercase alphanumeric run id."""
    return "".join(secrets.choice(RUN_ID_ALPHABET) for _ in range(RUN_ID_LENGTH))


def validate_run_id(run_id: str) -> str:
    if not isinstance(run_id, str) or not RUN_ID_PATTERN.fullmatch(run_id):
        msg = (
            f"Invalid run id {run_id!r}: expected {RUN_ID_LENGTH} lowercase "
            f"alphanumeric characters"
        )
        raise InvalidRunId(msg)
    return run_id


def default_cluster_name(run_id: str) -> str:
    return f"eks-{validate_run_id(run_id)}"


def policy_name(run_id: str, workload: str) -> str:
    """IAM policy for a workload, e.g. ``abc123-cart-policy``."""
    return f"{validate_run_id(run_id)}-{workload}-policy"


def service_account_name(run_id: str, workload: str) -> str:
    """IRSA service account for a workload, e.g. ``abc123-cart-sa``."""
    return f"{validate_run_id(run_id)}-{workload}-sa"


def cloudwatch_role_name(run_id: str) -> str:
    return f"{validate_run_id(run_id)}-cw"


def alb_policy_name(cluster_name: str) -> str:
    return f"AWSLoadBalancerControllerIAMPolicy-{cluster_name}"


def policy_arn(account_id: str, name: str) -> str:
    return f"arn:aws:iam::{account_id}:policy/{name}"


def registry_host(account_id: str, region: str) -> str:
    return f"{account_id}.dkr.ecr.{region}.amazonaws.com"


def image_uri(
    account_id: str, region: str, repository: str, tag: str = "latest"
) -> str:
    return f"{registry_host(account_id, region)}/{repository}:{tag}"
