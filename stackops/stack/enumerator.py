"""Resource Enumerator.

Lists the resources a stack exposes through its outputs and checks which of
them still exist. Outputs can point at resources that were already deleted.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from ..aws.apigateway import RestApiClient
from ..aws.client import AWSClients
from ..aws.dynamodb import TableClient
from ..aws.kms import KeyClient
from ..aws.logs import LogGroupClient
from ..aws.s3 import BucketClient
from ..errors import InvalidInput
from ..models.resource import CloudResource, ResourceType, classify_output_key
from ..models.stack import StackDescriptor
from ..utils.concurrency import run_all

logger = logging.getLogger(__name__)


def list_output_resources(stack: StackDescriptor) -> list[CloudResource]:
    """Classify each stack output by key suffix, skipping outputs that name no resource."""
    resources = []
    for output in stack.outputs:
        resource_type = classify_output_key(output.key)
        if resource_type is None:
            continue
        resources.append(CloudResource(type=resource_type, logical_name=output.key, physical_id=output.value))
    return resources


class ResourceEnumerator:
    """Existence checks dispatched by resource type.

    Attributes:
        buckets: S3 wrapper
        tables: DynamoDB wrapper
        keys: KMS wrapper
        log_groups: CloudWatch Logs wrapper
        rest_apis: API Gateway wrapper
    """

    def __init__(
        self,
        buckets: BucketClient,
        tables: TableClient,
        keys: KeyClient,
        log_groups: LogGroupClient,
        rest_apis: RestApiClient,
    ) -> None:
        self.buckets = buckets
        self.tables = tables
        self.keys = keys
        self.log_groups = log_groups
        self.rest_apis = rest_apis

    @classmethod
    def from_clients(cls, clients: AWSClients) -> "ResourceEnumerator":
        return cls(
            buckets=BucketClient(clients.s3),
            tables=TableClient(clients.dynamodb),
            keys=KeyClient(clients.kms),
            log_groups=LogGroupClient(clients.logs),
            rest_apis=RestApiClient(clients.apigateway),
        )

    def _existence_checks(self) -> dict[ResourceType, Callable[[str], bool]]:
        return {
            ResourceType.BUCKET: self.buckets.does_bucket_exist,
            ResourceType.TABLE: self.tables.does_table_exist,
            ResourceType.KEY: self.keys.does_key_exist,
            ResourceType.LOGGROUP: self.log_groups.does_log_group_exist,
            ResourceType.RESTAPI: self.rest_apis.does_rest_api_exist,
        }

    def does_resource_exist(self, resource: CloudResource) -> bool:
        """Check the resource's backing object exists.

        Raises:
            InvalidInput: If the resource type has no existence check
        """
        check = self._existence_checks().get(resource.type)
        if check is None:
            raise InvalidInput(f"unimplemented existence check for resource type: {resource.type.value}")
        return check(resource.physical_id)

    def filter_existing(
        self,
        resources: Iterable[CloudResource],
        max_workers: Optional[int] = None,
    ) -> list[CloudResource]:
        """Keep only resources that still exist, checked concurrently, preserving order."""
        resources = list(resources)
        exists = run_all(self.does_resource_exist, resources, max_workers=max_workers)
        for resource, found in zip(resources, exists):
            if not found:
                logger.debug(f"Skipping {resource.describe()}, it no longer exists")
        return [resource for resource, found in zip(resources, exists) if found]
