"""Audit storage for teardown operations.

Stores and retrieves audit logs in YAML format for troubleshooting.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import yaml

from ..models.teardown import DeletionRecord, TeardownOperation


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class AuditStorage:
    """Audit log storage and retrieval.

    Stores teardown audit logs as YAML files organized by year/month.

    Storage structure:
        ~/.stackops/audit-logs/
            2025/
                11/
                    operation-op_123.yaml

    Attributes:
        storage_dir: Base directory for audit logs
    """

    def __init__(self, storage_dir: Optional[str] = None) -> None:
        """Initialize audit storage.

        Args:
            storage_dir: Base directory for audit logs (default: ~/.stackops/audit-logs)
        """
        if storage_dir is None:
            storage_dir = str(Path.home() / ".stackops" / "audit-logs")

        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _record_to_dict(record: DeletionRecord) -> dict[str, Any]:
        return {
            "resource_type": record.resource.type.value,
            "logical_name": record.resource.logical_name,
            "physical_id": record.resource.physical_id,
            "timestamp": _isoformat(record.timestamp),
            "status": record.status.value,
            "error_message": record.error_message,
        }

    def log_operation(self, operation: TeardownOperation) -> Path:
        """Write a teardown operation and its records to audit storage.

        Overwrites an existing log with the same operation ID.

        Returns:
            Path of the audit file
        """
        year_month_dir = self.storage_dir / str(operation.timestamp.year) / f"{operation.timestamp.month:02d}"
        year_month_dir.mkdir(parents=True, exist_ok=True)

        audit_data = {
            "metadata": {
                "version": "1.0",
                "log_type": "stack_teardown",
                "created_at": datetime.now(tz=operation.timestamp.tzinfo).isoformat(),
            },
            "operation": {
                "operation_id": operation.operation_id,
                "stack_name": operation.stack_name,
                "timestamp": _isoformat(operation.timestamp),
                "aws_profile": operation.aws_profile,
                "status": operation.status.value,
                "stack_deleted": operation.stack_deleted,
                "stack_already_gone": operation.stack_already_gone,
                "retained": list(operation.retain_logical_names),
                "cleanup_script": operation.cleanup_script,
                "succeeded_count": operation.succeeded_count,
                "failed_count": operation.failed_count,
                "completed_at": _isoformat(operation.completed_at),
            },
            "records": [self._record_to_dict(record) for record in operation.records],
        }

        audit_file = year_month_dir / f"operation-{operation.operation_id}.yaml"
        with open(audit_file, "w") as f:
            yaml.dump(audit_data, f, default_flow_style=False, sort_keys=False)
        return audit_file

    def get_operation(self, operation_id: str) -> Optional[dict]:
        """Retrieve operation audit log by ID.

        Returns:
            Audit log dictionary if found, None otherwise
        """
        for audit_file in self.storage_dir.glob(f"*/*/operation-{operation_id}.yaml"):
            with open(audit_file, "r") as f:
                return yaml.safe_load(f)
        return None

    def query_operations(self, stack_name: Optional[str] = None) -> list[dict]:
        """List audit logs, oldest month first, optionally for one stack."""
        results = []
        for audit_file in sorted(self.storage_dir.glob("*/*/operation-*.yaml")):
            with open(audit_file, "r") as f:
                audit_data = yaml.safe_load(f)
            if stack_name and audit_data["operation"]["stack_name"] != stack_name:
                continue
            results.append(audit_data)
        return results
