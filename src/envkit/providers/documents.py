"""IAM policy documents and the downloadable ALB controller policy."""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from envkit.config.models import WorkloadConfig

logger = structlog.get_logger()

POLICY_VERSION = "2012-10-17"


def workload_policy_document(
    workload: WorkloadConfig, values: dict[str, str]
) -> dict[str, Any]:
    """Build the least-privilege policy for one workload.

    ``policy_resource`` may reference ``{region}``, ``{account_id}``,
    ``{table}``, ``{cluster}`` and ``{run_id}``.
    """
    return {
        "Version": POLICY_VERSION,
        "Statement": [
            {
                "Effect": "Allow",
                "Action": list(workload.policy_actions),
                "Resource": workload.policy_resource.format(**values),
            }
        ],
    }


@retry(
    retry=retry_if_exception_type(httpx.TransportError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, max=10),
    reraise=True,
)
def fetch_policy_document(url: str, *, timeout: float = 30.0) -> dict[str, Any]:
    """Download a published IAM policy document (the ALB controller policy)."""
    resp = httpx.get(url, timeout=timeout, follow_redirects=True)
    resp.raise_for_status()
    document = resp.json()
    if not isinstance(document, dict) or "Statement" not in document:
        msg = f"Document at {url} is not an IAM policy"
        raise ValueError(msg)
    logger.info("policy_document.fetched", url=url)
    return document  # type: ignore[no-any-return]
