"""Teardown operation and per-resource deletion records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from .resource import CloudResource


class TeardownStatus(Enum):
    """Teardown execution status.

    State transitions:
        planned -> executing -> completed (all chosen resources deleted)
        planned -> executing -> partial (some deletions failed)
        planned -> executing -> failed (stack deletion failed)
    """

    PLANNED = "planned"
    EXECUTING = "executing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class DeletionStatus(Enum):
    """Individual resource outcome."""

    SUCCEEDED = "succeeded"
    DEFERRED = "deferred"
    FAILED = "failed"
    RETAINED = "retained"


@dataclass(frozen=True)
class RetentionDecision:
    """Operator's choice for one enumerated resource."""

    resource: CloudResource
    keep: bool


@dataclass
class DeletionRecord:
    """Outcome for a single resource.

    Validation rules:
        - status=failed: requires error_message
        - status=retained: no error_message
    """

    resource: CloudResource
    status: DeletionStatus
    timestamp: datetime
    error_message: Optional[str] = None

    def validate(self) -> bool:
        if self.status == DeletionStatus.FAILED and not self.error_message:
            raise ValueError("Failed status requires error_message")
        if self.status == DeletionStatus.RETAINED and self.error_message:
            raise ValueError("Retained status cannot have error_message")
        return True


@dataclass
class TeardownOperation:
    """A complete teardown of one stack.

    Attributes:
        operation_id: Unique identifier
        stack_name: Stack being destroyed
        timestamp: When the operation was initiated (UTC)
        status: Current status
        retain_logical_names: Logical ids the provider is told to leave behind
        records: Per-resource outcomes
        stack_deleted: True if this operation deleted the primary stack
        stack_already_gone: True if the stack no longer existed
        cleanup_script: Path of the generated big-bucket cleanup script (optional)
        aws_profile: AWS profile (optional)
        completed_at: When the operation finished (optional)
    """

    operation_id: str
    stack_name: str
    timestamp: datetime
    status: TeardownStatus = TeardownStatus.PLANNED
    retain_logical_names: list[str] = field(default_factory=list)
    records: list[DeletionRecord] = field(default_factory=list)
    stack_deleted: bool = False
    stack_already_gone: bool = False
    cleanup_script: Optional[str] = None
    aws_profile: Optional[str] = None
    completed_at: Optional[datetime] = None

    def records_with_status(self, status: DeletionStatus) -> list[DeletionRecord]:
        return [r for r in self.records if r.status == status]

    @property
    def failed_count(self) -> int:
        return len(self.records_with_status(DeletionStatus.FAILED))

    @property
    def succeeded_count(self) -> int:
        return len(self.records_with_status(DeletionStatus.SUCCEEDED))

    def finish(self, completed_at: datetime) -> None:
        """Set the final status from the records.

        Raises:
            ValueError: If the finished operation breaks a validation rule
        """
        self.completed_at = completed_at
        if self.failed_count == 0:
            self.status = TeardownStatus.COMPLETED
        elif self.succeeded_count > 0 or self.stack_deleted:
            self.status = TeardownStatus.PARTIAL
        else:
            self.status = TeardownStatus.FAILED
        self.validate()

    def validate(self) -> bool:
        """Validate operation invariants.

        Raises:
            ValueError: If any validation rule fails
        """
        if self.completed_at and self.completed_at < self.timestamp:
            raise ValueError("Completion time before start time")
        for record in self.records:
            record.validate()
        return True
