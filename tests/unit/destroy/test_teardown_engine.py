"""Tests for TeardownEngine."""

from __future__ import annotations

import io
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional
from unittest.mock import Mock

import pytest
from rich.console import Console

from stackops.destroy.audit import AuditStorage
from stackops.destroy.deleter import ResourceDeleter
from stackops.destroy.engine import TeardownEngine, get_services_stack_name, shorten_string
from stackops.errors import NotFound, ServerError, TeardownIncomplete, UserAborted
from stackops.models.options import DestroyOptions
from stackops.models.teardown import DeletionStatus, TeardownStatus
from stackops.prompts import Prompter
from tests.fixtures.stacks import client_error, create_stack

NOW = datetime(2025, 11, 3, 12, 0, tzinfo=timezone.utc)

OUTPUTS = {
    "ObjectsBucket": "demo-ltd-dev-objects",
    "LogsBucket": "demo-ltd-dev-logs",
    "EventsTable": "demo-ltd-dev-events",
    "EncryptionKey": "key-1",
    "SourceDeploymentBucket": "demo-ltd-dev-deploy",
    "ApiUrl": "https://api.example.com",
}


def make_prompter(answers: List[bool]) -> Prompter:
    return Prompter(console=Console(file=io.StringIO()), confirm_fn=Mock(side_effect=answers))


def completed_operation() -> Mock:
    operation = Mock()
    operation.wait.return_value = None
    return operation


def failing_operation(message: str = "stack DELETE_FAILED") -> Mock:
    operation = Mock()
    operation.wait.side_effect = ServerError(message)
    return operation


@pytest.fixture
def stacks() -> Mock:
    stacks = Mock()
    stacks.describe_stack.return_value = create_stack("demo-ltd-dev", outputs=OUTPUTS)
    stacks.find_stack_id.return_value = None
    stacks.delete_stack.return_value = completed_operation()
    return stacks


@pytest.fixture
def deleter() -> ResourceDeleter:
    return ResourceDeleter(
        buckets=Mock(),
        tables=Mock(),
        keys=Mock(),
        log_groups=Mock(),
        rest_apis=Mock(),
        sleep=Mock(),
    )


def make_engine(
    stacks: Mock,
    deleter: ResourceDeleter,
    prompter: Prompter,
    audit: Optional[AuditStorage] = None,
) -> TeardownEngine:
    enumerator = Mock()
    enumerator.filter_existing.side_effect = lambda resources: list(resources)
    return TeardownEngine(
        stacks=stacks,
        enumerator=enumerator,
        deleter=deleter,
        prompter=prompter,
        audit=audit,
        now=lambda: NOW,
    )


class TestServicesStackName:
    def test_short_name(self) -> None:
        assert get_services_stack_name("demo-ltd-dev") == "demo-srvcs"
        assert get_services_stack_name("tdl-demo-ltd-prod") == "demo-srvcs"

    def test_long_name_is_shortened_with_hash(self) -> None:
        name = get_services_stack_name("tdl-averyveryverylongname-ltd-dev")

        assert len(name) == 20
        assert name.startswith("averyver")
        assert name.endswith("-srvcs")

    def test_shorten_string_is_stable(self) -> None:
        assert shorten_string("abc", 14) == "abc"
        assert shorten_string("x" * 30, 14) == shorten_string("x" * 30, 14)


class TestConfirmationGates:
    def test_declining_first_gate_does_nothing(self, stacks: Mock, deleter: ResourceDeleter, tmp_path: Path) -> None:
        prompter = make_prompter([False])
        engine = make_engine(stacks, deleter, prompter)

        with pytest.raises(UserAborted):
            engine.destroy(DestroyOptions("demo-ltd-dev", script_dir=str(tmp_path)))

        assert prompter._confirm.call_count == 1
        stacks.disable_termination_protection.assert_not_called()
        stacks.delete_stack.assert_not_called()

    def test_declining_second_gate_does_nothing(self, stacks: Mock, deleter: ResourceDeleter, tmp_path: Path) -> None:
        prompter = make_prompter([True, False])
        engine = make_engine(stacks, deleter, prompter)

        with pytest.raises(UserAborted):
            engine.destroy(DestroyOptions("demo-ltd-dev", script_dir=str(tmp_path)))

        messages = [c.args[0] for c in prompter._confirm.call_args_list]
        assert "DESTROY REMOTE STACK demo-ltd-dev" in messages[0]
        assert "REALLY REALLY sure" in messages[1]
        stacks.delete_stack.assert_not_called()


class TestDestroy:
    def test_assume_yes_retains_everything(self, stacks: Mock, deleter: ResourceDeleter, tmp_path: Path) -> None:
        prompter = make_prompter([])
        engine = make_engine(stacks, deleter, prompter)

        operation = engine.destroy(DestroyOptions("demo-ltd-dev", assume_yes=True, script_dir=str(tmp_path)))

        prompter._confirm.assert_not_called()
        assert operation.retain_logical_names == ["LogsBucket", "ObjectsBucket", "EventsTable", "EncryptionKey"]
        assert {r.status for r in operation.records} == {DeletionStatus.RETAINED}
        assert "SourceDeploymentBucket" not in [r.resource.logical_name for r in operation.records]
        deleter.tables.delete_table.assert_not_called()
        deleter.buckets.mark_bucket_for_deletion.assert_not_called()
        stacks.disable_termination_protection.assert_called_once_with("demo-ltd-dev")
        stacks.delete_stack.assert_called_once_with("demo-ltd-dev")
        assert operation.stack_deleted
        assert operation.status == TeardownStatus.COMPLETED

    def test_interactive_choices(self, stacks: Mock, deleter: ResourceDeleter, tmp_path: Path) -> None:
        # gates, ask-each, then ObjectsBucket, LogsBucket, EventsTable, EncryptionKey
        prompter = make_prompter([True, True, True, True, False, True, False])
        audit = AuditStorage(str(tmp_path / "audit"))
        engine = make_engine(stacks, deleter, prompter, audit=audit)

        operation = engine.destroy(DestroyOptions("demo-ltd-dev", profile="prod", script_dir=str(tmp_path)))

        statuses = {r.resource.logical_name: r.status for r in operation.records}
        assert statuses == {
            "ObjectsBucket": DeletionStatus.DEFERRED,
            "LogsBucket": DeletionStatus.RETAINED,
            "EventsTable": DeletionStatus.SUCCEEDED,
            "EncryptionKey": DeletionStatus.RETAINED,
        }
        assert operation.retain_logical_names == ["LogsBucket", "ObjectsBucket", "EncryptionKey"]
        deleter.tables.delete_table.assert_called_once_with("demo-ltd-dev-events")
        deleter.buckets.mark_bucket_for_deletion.assert_called_once_with("demo-ltd-dev-objects")
        deleter.buckets.destroy_bucket.assert_not_called()
        deleter.keys.delete_key.assert_not_called()

        script = tmp_path / "cleanup-buckets.sh"
        assert operation.cleanup_script == str(script)
        assert 'aws --profile prod s3 rb "s3://demo-ltd-dev-objects" --force' in script.read_text()
        assert audit.get_operation(operation.operation_id)["operation"]["status"] == "completed"

    def test_stack_already_gone(self, stacks: Mock, deleter: ResourceDeleter, tmp_path: Path) -> None:
        stacks.describe_stack.side_effect = NotFound("stack demo-ltd-dev not found")
        stacks.disable_termination_protection.side_effect = NotFound("stack demo-ltd-dev not found")
        engine = make_engine(stacks, deleter, make_prompter([True, True]))

        operation = engine.destroy(DestroyOptions("demo-ltd-dev", script_dir=str(tmp_path)))

        assert operation.stack_already_gone
        assert not operation.stack_deleted
        assert operation.records == []
        assert operation.retain_logical_names == ["LogsBucket", "ObjectsBucket"]
        stacks.delete_stack.assert_not_called()

    def test_stack_gone_after_enumeration_still_deletes_chosen_resources(
        self, stacks: Mock, deleter: ResourceDeleter, tmp_path: Path
    ) -> None:
        stacks.disable_termination_protection.side_effect = NotFound("stack demo-ltd-dev not found")
        # gates, ask-each, keep both buckets, delete table and key
        engine = make_engine(stacks, deleter, make_prompter([True, True, True, False, False, True, True]))

        operation = engine.destroy(DestroyOptions("demo-ltd-dev", script_dir=str(tmp_path)))

        stacks.delete_stack.assert_not_called()
        assert operation.stack_already_gone
        assert not operation.stack_deleted
        deleter.tables.delete_table.assert_called_once_with("demo-ltd-dev-events")
        deleter.keys.delete_key.assert_called_once_with("key-1")
        statuses = {r.resource.logical_name: r.status for r in operation.records}
        assert statuses["EventsTable"] == DeletionStatus.SUCCEEDED
        assert statuses["EncryptionKey"] == DeletionStatus.SUCCEEDED
        assert operation.status == TeardownStatus.COMPLETED

    def test_failed_delete_is_retried_with_retained_resources(
        self, stacks: Mock, deleter: ResourceDeleter, tmp_path: Path
    ) -> None:
        stacks.delete_stack.side_effect = [failing_operation(), completed_operation()]
        engine = make_engine(stacks, deleter, make_prompter([]))

        operation = engine.destroy(DestroyOptions("demo-ltd-dev", assume_yes=True, script_dir=str(tmp_path)))

        assert stacks.delete_stack.call_count == 2
        assert stacks.delete_stack.call_args.kwargs["retain_resources"] == operation.retain_logical_names
        assert operation.stack_deleted

    def test_stack_failure_is_audited_then_raised(
        self, stacks: Mock, deleter: ResourceDeleter, tmp_path: Path
    ) -> None:
        stacks.delete_stack.side_effect = [failing_operation(), failing_operation("still DELETE_FAILED")]
        audit = AuditStorage(str(tmp_path / "audit"))
        engine = make_engine(stacks, deleter, make_prompter([]), audit=audit)

        with pytest.raises(ServerError, match="still DELETE_FAILED"):
            engine.destroy(DestroyOptions("demo-ltd-dev", assume_yes=True, script_dir=str(tmp_path)))

        logged = audit.query_operations("demo-ltd-dev")
        assert len(logged) == 1
        assert logged[0]["operation"]["status"] == "failed"

    def test_resource_failure_raises_teardown_incomplete(
        self, stacks: Mock, deleter: ResourceDeleter, tmp_path: Path
    ) -> None:
        deleter.tables.delete_table.side_effect = client_error("AccessDeniedException")
        audit = AuditStorage(str(tmp_path / "audit"))
        # gates, ask-each, keep both buckets, delete table, keep key
        engine = make_engine(stacks, deleter, make_prompter([True, True, True, False, False, True, False]), audit)

        with pytest.raises(TeardownIncomplete) as exc_info:
            engine.destroy(DestroyOptions("demo-ltd-dev", script_dir=str(tmp_path)))

        operation = exc_info.value.operation
        assert operation.failed_count == 1
        assert operation.status == TeardownStatus.PARTIAL
        assert "AccessDeniedException" in operation.records_with_status(DeletionStatus.FAILED)[0].error_message
        assert len(audit.query_operations()) == 1

    def test_failure_without_message_is_recorded_by_type(
        self, stacks: Mock, deleter: ResourceDeleter, tmp_path: Path
    ) -> None:
        deleter.tables.delete_table.side_effect = ServerError("")
        # gates, ask-each, keep both buckets, delete table, keep key
        engine = make_engine(stacks, deleter, make_prompter([True, True, True, False, False, True, False]))

        with pytest.raises(TeardownIncomplete) as exc_info:
            engine.destroy(DestroyOptions("demo-ltd-dev", script_dir=str(tmp_path)))

        record = exc_info.value.operation.records_with_status(DeletionStatus.FAILED)[0]
        assert record.error_message == "ServerError"


class TestServicesStack:
    def test_deletes_services_stack(self, stacks: Mock, deleter: ResourceDeleter, tmp_path: Path) -> None:
        stacks.find_stack_id.return_value = "arn:demo-srvcs"
        engine = make_engine(stacks, deleter, make_prompter([]))

        engine.destroy(DestroyOptions("demo-ltd-dev", assume_yes=True, script_dir=str(tmp_path)))

        stacks.find_stack_id.assert_called_once_with("demo-srvcs")
        deleted = [c.args[0] for c in stacks.delete_stack.call_args_list]
        assert sorted(deleted) == ["arn:demo-srvcs", "demo-ltd-dev"]

    def test_services_stack_failure_is_swallowed(
        self, stacks: Mock, deleter: ResourceDeleter, tmp_path: Path
    ) -> None:
        stacks.find_stack_id.return_value = "arn:demo-srvcs"

        def delete_stack(name: str, retain_resources: Optional[List[str]] = None) -> Mock:
            if name == "arn:demo-srvcs":
                return failing_operation()
            return completed_operation()

        stacks.delete_stack.side_effect = delete_stack
        engine = make_engine(stacks, deleter, make_prompter([]))

        operation = engine.destroy(DestroyOptions("demo-ltd-dev", assume_yes=True, script_dir=str(tmp_path)))

        assert operation.stack_deleted
        assert operation.status == TeardownStatus.COMPLETED

    def test_missing_services_stack_lookup(self, stacks: Mock, deleter: ResourceDeleter, tmp_path: Path) -> None:
        stacks.find_stack_id.side_effect = NotFound("no such stack")
        engine = make_engine(stacks, deleter, make_prompter([]))

        operation = engine.destroy(DestroyOptions("demo-ltd-dev", assume_yes=True, script_dir=str(tmp_path)))

        assert operation.stack_deleted
