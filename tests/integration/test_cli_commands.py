"""Integration tests for the stackops CLI commands."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock

import pytest
from rich.console import Console
from typer.testing import CliRunner

from stackops import __version__
from stackops.cli import main as cli
from stackops.cli.main import app
from stackops.destroy.audit import AuditStorage
from stackops.errors import NotFound, RestoreIncomplete, ServerError, TeardownIncomplete, UserAborted
from stackops.models.resource import CloudResource, ResourceType
from stackops.models.stack import StackParameter
from stackops.models.teardown import DeletionRecord, DeletionStatus, TeardownOperation
from stackops.models.version import UpdateResult
from tests.fixtures.stacks import stack_arn, version

STARTED = datetime(2025, 11, 3, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def runner() -> CliRunner:
    """Create CLI test runner."""
    return CliRunner()


@pytest.fixture
def audit_dir(tmp_path: Path) -> Path:
    return tmp_path / "audit"


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, audit_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Point the CLI at a throwaway config file and keep logging untouched."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(f"audit_dir: {audit_dir}\n")
    monkeypatch.setenv("STACKOPS_CONFIG", str(config_file))
    for name in ("STACKOPS_PROFILE", "AWS_PROFILE", "STACKOPS_REGION", "AWS_REGION", "STACKOPS_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(cli, "setup_logging", Mock())
    monkeypatch.setattr(cli, "get_clients", Mock())
    monkeypatch.setattr(cli, "console", Console(width=200))


@pytest.fixture
def update_engine(monkeypatch: pytest.MonkeyPatch) -> Mock:
    engine = Mock()
    monkeypatch.setattr(cli, "get_update_engine", Mock(return_value=engine))
    return engine


def make_operation(stack_name: str = "demo-ltd-dev") -> TeardownOperation:
    operation = TeardownOperation(operation_id="op_1", stack_name=stack_name, timestamp=STARTED)
    operation.records = [
        DeletionRecord(
            CloudResource(ResourceType.TABLE, "EventsTable", "demo-ltd-dev-events"),
            DeletionStatus.RETAINED,
            STARTED,
        )
    ]
    operation.stack_deleted = True
    operation.finish(STARTED)
    return operation


class TestVersionCommands:
    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert f"stackops version {__version__}" in result.stdout

    def test_current_version(self, runner: CliRunner, update_engine: Mock) -> None:
        update_engine.get_current_version.return_value = version("01.13.0")

        result = runner.invoke(app, ["current-version", "demo-ltd-dev"])

        assert result.exit_code == 0
        assert "demo-ltd-dev: 01.13.0" in result.stdout

    def test_list_updates(self, runner: CliRunner, update_engine: Mock) -> None:
        update_engine.list_updates.return_value = [version("01.14.0"), version("01.15.0")]

        result = runner.invoke(app, ["list-updates", "demo-ltd-dev", "--rc"])

        assert result.exit_code == 0
        assert "01.14.0" in result.stdout
        assert "01.15.0" in result.stdout
        update_engine.list_updates.assert_called_once_with(None, True)

    def test_no_previous_versions(self, runner: CliRunner, update_engine: Mock) -> None:
        update_engine.list_previous_versions.return_value = []

        result = runner.invoke(app, ["list-previous-versions", "demo-ltd-dev"])

        assert result.exit_code == 0
        assert "Previous Versions: none" in result.stdout


class TestUpdateCommand:
    def test_update_applied(self, runner: CliRunner, update_engine: Mock) -> None:
        update_engine.run.return_value = UpdateResult(from_version=version("01.13.0"), to_tag="01.14.0", applied=True)

        result = runner.invoke(app, ["update", "demo-ltd-dev", "--tag", "01.14.0"])

        assert result.exit_code == 0
        assert "Updated from 01.13.0 to 01.14.0" in result.stdout
        options = update_engine.run.call_args.args[0]
        assert options.tag == "01.14.0"
        assert not options.rollback

    def test_rollback_passes_rollback_option(self, runner: CliRunner, update_engine: Mock) -> None:
        update_engine.run.return_value = UpdateResult(from_version=version("01.14.0"), to_tag=None, applied=False)

        result = runner.invoke(app, ["rollback", "demo-ltd-dev"])

        assert result.exit_code == 0
        assert "Nothing to do." in result.stdout
        assert update_engine.run.call_args.args[0].rollback

    def test_aborted_exits_zero(self, runner: CliRunner, update_engine: Mock) -> None:
        update_engine.run.side_effect = UserAborted()

        result = runner.invoke(app, ["update", "demo-ltd-dev"])

        assert result.exit_code == 0
        assert "Aborted." in result.stdout

    def test_not_found_exits_one(self, runner: CliRunner, update_engine: Mock) -> None:
        update_engine.run.side_effect = NotFound("stack demo-ltd-dev not found")

        result = runner.invoke(app, ["update", "demo-ltd-dev"])

        assert result.exit_code == 1
        assert "Error updating stack" in result.stdout

    def test_server_error_exits_two(self, runner: CliRunner, update_engine: Mock) -> None:
        update_engine.run.side_effect = ServerError("update failed")

        result = runner.invoke(app, ["update", "demo-ltd-dev"])

        assert result.exit_code == 2
        assert "update failed" in result.stdout

    def test_stack_parameters_file_is_passed_as_overrides(
        self, runner: CliRunner, update_engine: Mock, tmp_path: Path
    ) -> None:
        params = tmp_path / "params.json"
        params.write_text('[{"ParameterKey": "AlarmEmail", "ParameterValue": "ops@example.com"}]')
        update_engine.run.return_value = UpdateResult(from_version=version("01.13.0"), to_tag="01.14.0", applied=True)

        result = runner.invoke(app, ["update", "demo-ltd-dev", "--tag", "01.14.0", "--stack-parameters", str(params)])

        assert result.exit_code == 0
        options = update_engine.run.call_args.args[0]
        assert options.parameter_overrides == [StackParameter("AlarmEmail", "ops@example.com")]

    def test_missing_stack_parameters_file_exits_one(
        self, runner: CliRunner, update_engine: Mock, tmp_path: Path
    ) -> None:
        result = runner.invoke(app, ["update", "demo-ltd-dev", "--stack-parameters", str(tmp_path / "nope.json")])

        assert result.exit_code == 1
        update_engine.run.assert_not_called()


class TestUpdateToLatestCommand:
    def test_minor_with_release_candidates(self, runner: CliRunner, update_engine: Mock) -> None:
        update_engine.update_to_latest.return_value = UpdateResult(
            from_version=version("01.13.0"), to_tag="01.15.0", applied=True
        )

        result = runner.invoke(app, ["update-to-latest", "demo-ltd-dev", "--minor", "-c"])

        assert result.exit_code == 0
        assert "Updated from 01.13.0 to 01.15.0" in result.stdout
        update_engine.update_to_latest.assert_called_once_with(
            "demo-ltd-dev", scope="minor", show_release_candidates=True, parameter_overrides=[]
        )

    def test_already_latest(self, runner: CliRunner, update_engine: Mock) -> None:
        update_engine.update_to_latest.return_value = UpdateResult(
            from_version=version("01.15.0"), to_tag=None, applied=False, up_to_date=True
        )

        result = runner.invoke(app, ["update-to-latest", "demo-ltd-dev", "--patch"])

        assert result.exit_code == 0
        assert "Already on the latest version (01.15.0)" in result.stdout
        assert update_engine.update_to_latest.call_args.kwargs["scope"] == "patch"

    def test_minor_and_patch_are_exclusive(self, runner: CliRunner, update_engine: Mock) -> None:
        result = runner.invoke(app, ["update-to-latest", "demo-ltd-dev", "--minor", "--patch"])

        assert result.exit_code == 1
        update_engine.update_to_latest.assert_not_called()


class TestUpdateManuallyCommand:
    def test_template_and_parameters(self, runner: CliRunner, update_engine: Mock, tmp_path: Path) -> None:
        params = tmp_path / "params.yaml"
        params.write_text("AlarmEmail: ops@example.com\n")
        update_engine.update_manually.return_value = True

        result = runner.invoke(
            app,
            [
                "update-manually",
                "demo-ltd-dev",
                "-t",
                "https://templates/custom.json",
                "--stack-parameters",
                str(params),
            ],
        )

        assert result.exit_code == 0
        assert "Updated demo-ltd-dev" in result.stdout
        update_engine.update_manually.assert_called_once_with(
            "demo-ltd-dev",
            template_url="https://templates/custom.json",
            parameter_overrides=[StackParameter("AlarmEmail", "ops@example.com")],
        )

    def test_nothing_to_change(self, runner: CliRunner, update_engine: Mock) -> None:
        update_engine.update_manually.return_value = False

        result = runner.invoke(app, ["update-manually", "demo-ltd-dev", "-t", "https://templates/custom.json"])

        assert result.exit_code == 0
        assert "no changes to apply" in result.stdout


class TestRestoreCommand:
    def test_invalid_arn_exits_one(self, runner: CliRunner) -> None:
        result = runner.invoke(
            app, ["restore", "--source-stack-arn", "not-an-arn", "--date", "2024-01-15T10:00:00.000Z"]
        )

        assert result.exit_code == 1

    def test_restores_resources(self, runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
        engine = Mock()
        engine.restore_resources.return_value = [StackParameter(key="ExistingEventsTable", value="events-restored")]
        monkeypatch.setattr(cli.RestoreEngine, "from_clients", Mock(return_value=engine))

        result = runner.invoke(
            app, ["restore", "-s", stack_arn("demo-ltd-dev", "eu-west-1"), "--date", "2024-01-15T10:00:00.000Z"]
        )

        assert result.exit_code == 0
        assert "Resources restored" in result.stdout
        assert "ExistingEventsTable" in result.stdout
        cli.get_clients.assert_called_once_with(region="eu-west-1")
        engine.restore_stack.assert_not_called()

    def test_incomplete_restore_lists_completed(self, runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
        engine = Mock()
        engine.restore_resources.side_effect = RestoreIncomplete(
            "restore failed", completed=["events-restored"], failed="objects"
        )
        monkeypatch.setattr(cli.RestoreEngine, "from_clients", Mock(return_value=engine))

        result = runner.invoke(app, ["restore", "-s", stack_arn("demo-ltd-dev"), "--date", "2024-01-15T10:00:00.000Z"])

        assert result.exit_code == 2
        assert "restored: events-restored" in result.stdout

    def test_stack_parameters_reach_new_stack(
        self, runner: CliRunner, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        params = tmp_path / "params.yaml"
        params.write_text("OrgName: Acme\n")
        engine = Mock()
        engine.restore_resources.return_value = [StackParameter(key="ExistingEventsTable", value="events-restored")]
        engine.restore_stack.return_value = "arn:new-stack"
        monkeypatch.setattr(cli.RestoreEngine, "from_clients", Mock(return_value=engine))

        result = runner.invoke(
            app,
            [
                "restore",
                "-s",
                stack_arn("demo-ltd-dev"),
                "--date",
                "2024-01-15T10:00:00.000Z",
                "--new-stack-name",
                "demo2-ltd-dev",
                "--stack-parameters",
                str(params),
            ],
        )

        assert result.exit_code == 0
        assert "Created stack" in result.stdout
        options, parameters = engine.restore_stack.call_args.args
        assert options.parameter_overrides == [StackParameter("OrgName", "Acme")]
        assert parameters == [StackParameter(key="ExistingEventsTable", value="events-restored")]

    def test_restore_table(self, runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
        engine = Mock()
        engine.restore_single_table.return_value = "arn:stream"
        monkeypatch.setattr(cli.RestoreEngine, "from_clients", Mock(return_value=engine))

        result = runner.invoke(
            app,
            ["restore-table", "--source-name", "events", "--dest-name", "events-r1", "-d", "2024-01-15T10:00:00.000Z"],
        )

        assert result.exit_code == 0
        assert "Restored events to events-r1" in result.stdout
        assert "Stream: arn:stream" in result.stdout
        engine.restore_single_table.assert_called_once_with("events", "events-r1", "2024-01-15T10:00:00.000Z")

    def test_restore_bucket_uses_profile(self, runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
        engine = Mock()
        monkeypatch.setattr(cli.RestoreEngine, "from_clients", Mock(return_value=engine))

        result = runner.invoke(
            app,
            [
                "--profile",
                "prod",
                "restore-bucket",
                "--source-name",
                "objects",
                "--dest-name",
                "objects-r1",
                "--date",
                "2024-01-15T10:00:00.000Z",
            ],
        )

        assert result.exit_code == 0
        engine.restore_single_bucket.assert_called_once_with(
            "objects", "objects-r1", "2024-01-15T10:00:00.000Z", profile="prod"
        )


class TestGenStackParametersCommand:
    PARAMETERS = [StackParameter("ExistingEventsTable", "demo-ltd-dev-events"), StackParameter("Stage", "dev")]

    def test_writes_cloudformation_entries(
        self, runner: CliRunner, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        derive = Mock(return_value=self.PARAMETERS)
        monkeypatch.setattr(cli, "derive_parameters_from_stack", derive)
        output = tmp_path / "params.json"

        result = runner.invoke(
            app, ["gen-stack-parameters", "-s", stack_arn("demo-ltd-dev", "eu-west-1"), "--output", str(output)]
        )

        assert result.exit_code == 0
        assert json.loads(output.read_text()) == [
            {"ParameterKey": "ExistingEventsTable", "ParameterValue": "demo-ltd-dev-events"},
            {"ParameterKey": "Stage", "ParameterValue": "dev"},
        ]
        cli.get_clients.assert_called_once_with(region="eu-west-1")
        assert derive.call_args.args[1] == stack_arn("demo-ltd-dev", "eu-west-1")

    def test_prints_mapping(self, runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(cli, "derive_parameters_from_stack", Mock(return_value=self.PARAMETERS))

        result = runner.invoke(app, ["gen-stack-parameters", "-s", stack_arn("demo-ltd-dev"), "--as-object"])

        assert result.exit_code == 0
        assert json.loads(result.stdout) == {"ExistingEventsTable": "demo-ltd-dev-events", "Stage": "dev"}

    def test_invalid_arn_exits_one(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["gen-stack-parameters", "-s", "not-an-arn"])

        assert result.exit_code == 1


class TestDestroyCommand:
    def test_destroy_with_yes(self, runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        engine = Mock()
        engine.destroy.return_value = make_operation()
        from_clients = Mock(return_value=engine)
        monkeypatch.setattr(cli.TeardownEngine, "from_clients", from_clients)

        result = runner.invoke(app, ["--yes", "destroy", "demo-ltd-dev", "--script-dir", str(tmp_path)])

        assert result.exit_code == 0
        assert "Destroyed demo-ltd-dev" in result.stdout
        options = engine.destroy.call_args.args[0]
        assert options.assume_yes
        assert options.script_dir == str(tmp_path)
        assert from_clients.call_args.args[1].assume_yes

    def test_incomplete_teardown_exits_two(
        self, runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        engine = Mock()
        engine.destroy.side_effect = TeardownIncomplete("1 resource(s) could not be deleted", make_operation())
        monkeypatch.setattr(cli.TeardownEngine, "from_clients", Mock(return_value=engine))

        result = runner.invoke(app, ["destroy", "demo-ltd-dev", "--script-dir", str(tmp_path)])

        assert result.exit_code == 2
        assert "Teardown incomplete" in result.stdout


class TestHistoryCommand:
    def test_empty_history(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["history"])

        assert result.exit_code == 0
        assert "No teardown operations recorded" in result.stdout

    def test_lists_recorded_operations(self, runner: CliRunner, audit_dir: Path) -> None:
        AuditStorage(str(audit_dir)).log_operation(make_operation())

        result = runner.invoke(app, ["history", "demo-ltd-dev"])

        assert result.exit_code == 0
        assert "op_1" in result.stdout
        assert "completed" in result.stdout
