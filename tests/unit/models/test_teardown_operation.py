"""Tests for teardown operation and deletion record models."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from stackops.models.resource import CloudResource, ResourceType
from stackops.models.teardown import DeletionRecord, DeletionStatus, TeardownOperation, TeardownStatus

NOW = datetime(2025, 11, 3, 12, 0, tzinfo=timezone.utc)
TABLE = CloudResource(ResourceType.TABLE, "EventsTable", "demo-ltd-dev-events")


def make_operation(*statuses: DeletionStatus) -> TeardownOperation:
    operation = TeardownOperation(operation_id="op_1", stack_name="demo-ltd-dev", timestamp=NOW)
    for status in statuses:
        error = "boom" if status == DeletionStatus.FAILED else None
        operation.records.append(DeletionRecord(TABLE, status, NOW, error))
    return operation


class TestDeletionRecord:
    def test_failed_requires_error_message(self) -> None:
        with pytest.raises(ValueError, match="requires error_message"):
            DeletionRecord(TABLE, DeletionStatus.FAILED, NOW).validate()

    def test_retained_cannot_have_error_message(self) -> None:
        with pytest.raises(ValueError, match="Retained status"):
            DeletionRecord(TABLE, DeletionStatus.RETAINED, NOW, "oops").validate()

    def test_succeeded_is_valid(self) -> None:
        assert DeletionRecord(TABLE, DeletionStatus.SUCCEEDED, NOW).validate() is True


class TestTeardownOperation:
    def test_starts_planned(self) -> None:
        assert make_operation().status == TeardownStatus.PLANNED

    def test_finish_completed_when_nothing_failed(self) -> None:
        operation = make_operation(DeletionStatus.SUCCEEDED, DeletionStatus.RETAINED)
        operation.finish(NOW)

        assert operation.status == TeardownStatus.COMPLETED
        assert operation.succeeded_count == 1
        assert operation.failed_count == 0

    def test_finish_partial_when_some_failed(self) -> None:
        operation = make_operation(DeletionStatus.SUCCEEDED, DeletionStatus.FAILED)
        operation.finish(NOW)

        assert operation.status == TeardownStatus.PARTIAL

    def test_finish_partial_when_stack_deleted_but_resources_failed(self) -> None:
        operation = make_operation(DeletionStatus.FAILED)
        operation.stack_deleted = True
        operation.finish(NOW)

        assert operation.status == TeardownStatus.PARTIAL

    def test_finish_failed_when_everything_failed(self) -> None:
        operation = make_operation(DeletionStatus.FAILED)
        operation.finish(NOW)

        assert operation.status == TeardownStatus.FAILED

    def test_validate_rejects_completion_before_start(self) -> None:
        operation = make_operation()
        operation.completed_at = NOW - timedelta(seconds=1)

        with pytest.raises(ValueError, match="Completion time"):
            operation.validate()

    def test_finish_validates_records(self) -> None:
        operation = make_operation()
        operation.records.append(DeletionRecord(TABLE, DeletionStatus.FAILED, NOW))

        with pytest.raises(ValueError, match="requires error_message"):
            operation.finish(NOW)
