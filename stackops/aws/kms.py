"""KMS key operations."""

from __future__ import annotations

import logging
from typing import Any

from botocore.exceptions import ClientError

from ..errors import NotFound
from .client import error_message, is_not_found

logger = logging.getLogger(__name__)

# Shortest waiting period KMS allows
PENDING_WINDOW_IN_DAYS = 7


class KeyClient:
    """KMS wrapper."""

    def __init__(self, client: Any) -> None:
        self.client = client

    def does_key_exist(self, key_id: str) -> bool:
        """Check a key exists and is not already scheduled for deletion."""
        try:
            metadata = self.client.describe_key(KeyId=key_id)["KeyMetadata"]
        except ClientError as e:
            if is_not_found(e):
                return False
            raise
        return not metadata.get("DeletionDate")

    def delete_key(self, key_id: str) -> None:
        """Disable a key and schedule it for deletion.

        Raises:
            NotFound: If the key does not exist or is already pending deletion
        """
        try:
            self.client.disable_key(KeyId=key_id)
            self.client.schedule_key_deletion(KeyId=key_id, PendingWindowInDays=PENDING_WINDOW_IN_DAYS)
        except ClientError as e:
            if is_not_found(e) or "pending deletion" in error_message(e):
                raise NotFound(f"key not found: {key_id}")
            raise
        logger.debug(f"Scheduled key {key_id} for deletion in {PENDING_WINDOW_IN_DAYS} days")
