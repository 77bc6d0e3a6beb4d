"""CloudWatch Logs operations."""

from __future__ import annotations

from typing import Any

from botocore.exceptions import ClientError

from ..errors import NotFound
from .client import is_not_found


class LogGroupClient:
    """CloudWatch Logs wrapper."""

    def __init__(self, client: Any) -> None:
        self.client = client

    def does_log_group_exist(self, log_group_name: str) -> bool:
        try:
            self.client.describe_log_streams(logGroupName=log_group_name, limit=1)
        except ClientError as e:
            if is_not_found(e):
                return False
            raise
        return True

    def delete_log_group(self, log_group_name: str) -> None:
        """Delete a log group.

        Raises:
            NotFound: If the log group does not exist
        """
        try:
            self.client.delete_log_group(logGroupName=log_group_name)
        except ClientError as e:
            if is_not_found(e):
                raise NotFound(f"log group not found: {log_group_name}")
            raise
