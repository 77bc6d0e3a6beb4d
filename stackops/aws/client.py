"""boto3 client construction and error helpers."""

from __future__ import annotations

import logging
from typing import Any, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

# Error codes meaning the target does not exist
NOT_FOUND_CODES = frozenset(
    [
        "404",
        "NotFound",
        "NoSuchBucket",
        "NotFoundException",
        "ResourceNotFoundException",
    ]
)

_RETRY_CONFIG = BotoConfig(retries={"max_attempts": 10, "mode": "standard"})


def create_boto_client(
    service_name: str,
    region_name: Optional[str] = None,
    profile_name: Optional[str] = None,
) -> Any:
    """Create a boto3 client for a service.

    Args:
        service_name: AWS service name (e.g. "cloudformation")
        region_name: AWS region (optional, falls back to the profile's region)
        profile_name: AWS profile name (optional)

    Returns:
        boto3 client
    """
    session = boto3.Session(profile_name=profile_name, region_name=region_name)
    logger.debug(f"Creating {service_name} client (region={session.region_name}, profile={profile_name})")
    return session.client(service_name, config=_RETRY_CONFIG)


def error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", "Unknown"))


def error_message(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Message", str(error)))


def is_not_found(error: ClientError) -> bool:
    """Check whether a ClientError means the target is absent."""
    code = error_code(error)
    if code in NOT_FOUND_CODES:
        return True
    # CloudFormation reports missing stacks as ValidationError
    return code == "ValidationError" and "does not exist" in error_message(error)


class AWSClients:
    """Lazily created boto3 clients for one profile and region.

    Attributes:
        profile: AWS profile name (optional)
        region: AWS region (optional)
    """

    def __init__(self, profile: Optional[str] = None, region: Optional[str] = None) -> None:
        self.profile = profile
        self.region = region
        self._clients: dict[str, Any] = {}

    def get(self, service_name: str) -> Any:
        if service_name not in self._clients:
            self._clients[service_name] = create_boto_client(
                service_name=service_name,
                region_name=self.region,
                profile_name=self.profile,
            )
        return self._clients[service_name]

    @property
    def cloudformation(self) -> Any:
        return self.get("cloudformation")

    @property
    def s3(self) -> Any:
        return self.get("s3")

    @property
    def dynamodb(self) -> Any:
        return self.get("dynamodb")

    @property
    def kms(self) -> Any:
        return self.get("kms")

    @property
    def logs(self) -> Any:
        return self.get("logs")

    @property
    def apigateway(self) -> Any:
        return self.get("apigateway")

    @property
    def lambda_(self) -> Any:
        return self.get("lambda")
