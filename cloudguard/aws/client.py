"""boto3 client factory."""

from __future__ import annotations

from typing import Any, Optional

import boto3
from botocore.config import Config as BotoConfig

# Retries are driven by the recovery coordinator, not by botocore
_CLIENT_CONFIG = BotoConfig(retries={"max_attempts": 1, "mode": "standard"})


def create_boto_client(
    service_name: str,
    region_name: Optional[str] = None,
    profile_name: Optional[str] = None,
) -> Any:
    """Create a boto3 client.

    Args:
        service_name: AWS service name (e.g., "ec2")
        region_name: AWS region (default: session default)
        profile_name: AWS profile name (default: default credential chain)

    Returns:
        boto3 client for the service
    """
    session = boto3.Session(profile_name=profile_name, region_name=region_name)
    return session.client(service_name, config=_CLIENT_CONFIG)
