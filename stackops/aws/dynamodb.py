"""DynamoDB table operations."""

from __future__ import annotations

import logging
from typing import Any, Optional

from botocore.exceptions import ClientError, WaiterError

from ..errors import InvalidInput, NotFound, ServerError
from ..utils.dates import parse_iso_date
from .client import is_not_found

logger = logging.getLogger(__name__)

TTL_ENABLED_STATUSES = ("ENABLING", "ENABLED")


class TableClient:
    """DynamoDB wrapper.

    Attributes:
        client: boto3 dynamodb client
        max_wait_rounds: Times to re-arm the tableExists waiter before giving up
    """

    def __init__(self, client: Any, max_wait_rounds: int = 5) -> None:
        self.client = client
        self.max_wait_rounds = max_wait_rounds

    def describe_table(self, table_name: str) -> dict:
        try:
            return self.client.describe_table(TableName=table_name)["Table"]
        except ClientError as e:
            if is_not_found(e):
                raise NotFound(f"table not found: {table_name}")
            raise

    def does_table_exist(self, table_name: str) -> bool:
        try:
            self.describe_table(table_name)
        except NotFound:
            return False
        return True

    def assert_table_exists(self, table_name: str) -> None:
        if not self.does_table_exist(table_name):
            raise InvalidInput(f"table does not exist: {table_name}")

    def assert_table_does_not_exist(self, table_name: str) -> None:
        if self.does_table_exist(table_name):
            raise InvalidInput(f"table already exists: {table_name}")

    def assert_table_has_backup_for_date(self, table_name: str, date: str) -> None:
        """Check the point in time falls within the table's restorable window.

        Raises:
            InvalidInput: If continuous backups are off or the date is out of range
        """
        description = self.client.describe_continuous_backups(TableName=table_name)["ContinuousBackupsDescription"]
        if description.get("ContinuousBackupsStatus") != "ENABLED":
            raise InvalidInput(f"table {table_name} does not have continuous backups enabled")

        pitr = description.get("PointInTimeRecoveryDescription", {})
        earliest = pitr.get("EarliestRestorableDateTime")
        latest = pitr.get("LatestRestorableDateTime")
        if earliest is None or latest is None:
            raise InvalidInput(f"table {table_name} does not have point-in-time recovery enabled")

        target = parse_iso_date(date)
        if target < earliest or target > latest:
            raise InvalidInput(
                f"table {table_name} can be restored only to a point within the following range: "
                f"{earliest.isoformat()} - {latest.isoformat()}"
            )

    def assert_can_restore_table(self, source_name: str, dest_name: str, date: str) -> None:
        self.assert_table_exists(source_name)
        self.assert_table_does_not_exist(dest_name)
        self.assert_table_has_backup_for_date(source_name, date)

    def restore_table(self, source_name: str, dest_name: str, date: str) -> tuple[str, Optional[str]]:
        """Restore a table to a point in time under a new name.

        Settings are copied only after the new table exists.

        Returns:
            Tuple of (table_arn, stream_arn); stream_arn is None if streams are off
        """
        self.client.restore_table_to_point_in_time(
            SourceTableName=source_name,
            TargetTableName=dest_name,
            RestoreDateTime=parse_iso_date(date),
        )
        self.await_exists(dest_name)
        self.copy_table_settings(source_name, dest_name)
        table = self.describe_table(dest_name)
        return table["TableArn"], table.get("LatestStreamArn")

    def await_exists(self, table_name: str) -> None:
        """Wait for a table to exist.

        A restore can outlast one waiter cycle, so the waiter is re-armed a
        bounded number of times.

        Raises:
            ServerError: If the table never appears
        """
        waiter = self.client.get_waiter("table_exists")
        for attempt in range(self.max_wait_rounds):
            try:
                waiter.wait(TableName=table_name)
                return
            except WaiterError as e:
                logger.debug(
                    f"Still waiting for table {table_name} (round {attempt + 1}/{self.max_wait_rounds}): {e}"
                )

        raise ServerError(f"timed out waiting for table to exist: {table_name}")

    def copy_table_settings(self, source_name: str, dest_name: str) -> None:
        """Copy point-in-time recovery, TTL and stream settings, in series."""
        self.copy_point_in_time_recovery_settings(source_name, dest_name)
        self.copy_ttl_settings(source_name, dest_name)
        self.copy_stream_settings(source_name, dest_name)

    def is_point_in_time_recovery_enabled(self, table_name: str) -> bool:
        description = self.client.describe_continuous_backups(TableName=table_name)["ContinuousBackupsDescription"]
        pitr = description.get("PointInTimeRecoveryDescription", {})
        return pitr.get("PointInTimeRecoveryStatus") == "ENABLED"

    def copy_point_in_time_recovery_settings(self, source_name: str, dest_name: str) -> None:
        enabled = self.is_point_in_time_recovery_enabled(source_name)
        self.client.update_continuous_backups(
            TableName=dest_name,
            PointInTimeRecoverySpecification={"PointInTimeRecoveryEnabled": enabled},
        )

    def get_ttl_settings(self, table_name: str) -> dict:
        description = self.client.describe_time_to_live(TableName=table_name)["TimeToLiveDescription"]
        return {
            "Enabled": description.get("TimeToLiveStatus") in TTL_ENABLED_STATUSES,
            "AttributeName": description.get("AttributeName"),
        }

    def copy_ttl_settings(self, source_name: str, dest_name: str) -> None:
        ttl = self.get_ttl_settings(source_name)
        if ttl["Enabled"]:
            self.client.update_time_to_live(TableName=dest_name, TimeToLiveSpecification=ttl)

    def copy_stream_settings(self, source_name: str, dest_name: str) -> None:
        settings = self.describe_table(source_name).get("StreamSpecification")
        if settings and settings.get("StreamEnabled"):
            self.client.update_table(TableName=dest_name, StreamSpecification=settings)

    def ensure_stream_matches_table(self, table: str, stream_arn: str) -> None:
        latest = self.describe_table(table).get("LatestStreamArn")
        if latest != stream_arn:
            raise InvalidInput(f"stream {stream_arn} does not match table {table}")

    def delete_table(self, table_name: str) -> None:
        """Delete a table.

        Raises:
            NotFound: If the table does not exist
        """
        try:
            self.client.delete_table(TableName=table_name)
        except ClientError as e:
            if is_not_found(e):
                raise NotFound(f"table not found: {table_name}")
            raise
