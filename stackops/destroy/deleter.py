"""Resource deletion strategies.

Maps resource types to their deletion methods. A resource that is already
gone counts as deleted.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from botocore.exceptions import ClientError

from ..aws.apigateway import RestApiClient
from ..aws.client import AWSClients, error_code, error_message
from ..aws.dynamodb import TableClient
from ..aws.kms import KeyClient
from ..aws.logs import LogGroupClient
from ..aws.s3 import BucketClient
from ..errors import NotFound
from ..models.resource import CloudResource, ResourceType

logger = logging.getLogger(__name__)

# Buckets assumed too large to empty synchronously
BIG_BUCKETS = ["LogsBucket", "ObjectsBucket"]

# Transient conditions worth retrying (eventual consistency, resource busy)
RETRYABLE_CODES = frozenset(["BucketNotEmpty", "ResourceInUseException", "TooManyRequestsException"])


def is_big_bucket(resource: CloudResource) -> bool:
    if not resource.is_bucket:
        return False
    if resource.logical_name in BIG_BUCKETS:
        return True
    return any(name.lower() in resource.physical_id for name in BIG_BUCKETS)


class ResourceDeleter:
    """Type-dispatched resource deletion.

    Every supported ResourceType must have an entry in deletion_methods;
    big buckets never go through it (see defer_bucket_deletion).

    Attributes:
        max_retries: Attempts for transient errors (default: 3)
    """

    def __init__(
        self,
        buckets: BucketClient,
        tables: TableClient,
        keys: KeyClient,
        log_groups: LogGroupClient,
        rest_apis: RestApiClient,
        max_retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.buckets = buckets
        self.tables = tables
        self.keys = keys
        self.log_groups = log_groups
        self.rest_apis = rest_apis
        self.max_retries = max_retries
        self._sleep = sleep

    @classmethod
    def from_clients(cls, clients: AWSClients, **kwargs) -> "ResourceDeleter":
        return cls(
            buckets=BucketClient(clients.s3),
            tables=TableClient(clients.dynamodb),
            keys=KeyClient(clients.kms),
            log_groups=LogGroupClient(clients.logs),
            rest_apis=RestApiClient(clients.apigateway),
            **kwargs,
        )

    @property
    def deletion_methods(self) -> dict[ResourceType, Callable[[str], None]]:
        return {
            ResourceType.BUCKET: self.buckets.destroy_bucket,
            ResourceType.TABLE: self.tables.delete_table,
            ResourceType.KEY: self.keys.delete_key,
            ResourceType.LOGGROUP: self.log_groups.delete_log_group,
            ResourceType.RESTAPI: self.rest_apis.delete_rest_api,
        }

    def delete_resource(self, resource: CloudResource) -> None:
        """Delete a resource, treating "not found" as success.

        Args:
            resource: Resource to delete; must not be a big bucket

        Raises:
            ValueError: If the resource is a big bucket or its type is unsupported
            ClientError: If deletion failed for any reason other than absence
        """
        if is_big_bucket(resource):
            raise ValueError(f"refusing to delete big bucket synchronously: {resource.physical_id}")

        method = self.deletion_methods.get(resource.type)
        if method is None:
            raise ValueError(f"Unsupported resource type: {resource.type.value}")

        for attempt in range(self.max_retries):
            try:
                method(resource.physical_id)
                logger.info(f"Deleted {resource.describe()}")
                return
            except NotFound:
                logger.info(f"{resource.describe()} already deleted")
                return
            except ClientError as e:
                if error_code(e) not in RETRYABLE_CODES or attempt == self.max_retries - 1:
                    logger.error(f"Failed to delete {resource.describe()}: {error_code(e)} - {error_message(e)}")
                    raise
                wait_time = 2**attempt
                logger.debug(
                    f"{error_code(e)} for {resource.physical_id}, "
                    f"retrying in {wait_time}s (attempt {attempt + 1}/{self.max_retries})"
                )
                self._sleep(wait_time)

    def defer_bucket_deletion(self, resource: CloudResource) -> Optional[str]:
        """Have S3 empty a big bucket via lifecycle expiry.

        Returns:
            The bucket name, or None if the bucket is already gone
        """
        try:
            self.buckets.mark_bucket_for_deletion(resource.physical_id)
        except NotFound:
            logger.info(f"{resource.describe()} already deleted")
            return None
        logger.info(f"Marked {resource.physical_id} for deletion by S3")
        return resource.physical_id
