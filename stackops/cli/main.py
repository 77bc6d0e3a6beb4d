"""Main CLI entry point using Typer."""

import json
import logging
import sys
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.table import Table

from ..aws.apigateway import RestApiClient
from ..aws.client import AWSClients
from ..aws.cloudformation import StackClient
from ..destroy.audit import AuditStorage
from ..destroy.engine import TeardownEngine
from ..errors import (
    InvalidInput,
    NotFound,
    RestoreIncomplete,
    StackOpsError,
    TeardownIncomplete,
    UserAborted,
)
from ..models.options import DestroyOptions, RestoreOptions, UpdateOptions
from ..models.stack import StackParameter, parse_stack_arn
from ..models.teardown import DeletionStatus, TeardownOperation
from ..models.version import UpdateResult, VersionInfo
from ..prompts import Prompter
from ..restore.engine import RestoreEngine
from ..stack.parameters import derive_parameters_from_stack, format_parameters, load_parameters_file
from ..update.catalog import LambdaReleaseCatalog
from ..update.engine import UpdateEngine
from ..utils.logging import setup_logging
from .config import Config

logger = logging.getLogger(__name__)

# Create Typer app
app = typer.Typer(
    name="stackops",
    help="StackOps - update, restore and destroy CloudFormation application stacks",
    add_completion=False,
)

# Create Rich console for output
console = Console()

# Global config
config: Optional[Config] = None


@app.callback()
def main(
    profile: Optional[str] = typer.Option(None, "--profile", "-p", help="AWS profile name"),
    region: Optional[str] = typer.Option(None, "--region", "-r", help="AWS region"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress output except errors"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Answer yes to confirmation prompts"),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colored output"),
):
    """StackOps - update, restore and destroy CloudFormation application stacks."""
    global config

    # Load configuration
    config = Config.load()

    # Override with CLI options
    if profile:
        config.aws_profile = profile
    if region:
        config.region = region
    if yes:
        config.assume_yes = True

    # Setup logging
    log_level = "ERROR" if quiet else ("DEBUG" if verbose else config.log_level)
    setup_logging(level=log_level, verbose=verbose)

    # Disable colors if requested
    if no_color:
        console.no_color = True


def get_clients(region: Optional[str] = None) -> AWSClients:
    return AWSClients(profile=config.aws_profile, region=region or config.region)


def get_prompter() -> Prompter:
    return Prompter(assume_yes=config.assume_yes, console=console)


def get_update_engine(stack_name: str) -> UpdateEngine:
    clients = get_clients()
    return UpdateEngine(
        catalog=LambdaReleaseCatalog(clients.lambda_, stack_name),
        stacks=StackClient(clients.cloudformation, region=clients.region),
        prompter=get_prompter(),
        rest_apis=RestApiClient(clients.apigateway),
        min_supported_sortable_tag=config.min_supported_sortable_tag,
        max_fetch_attempts=config.release_fetch_retries,
        fetch_min_wait=config.release_fetch_min_wait,
        fetch_max_wait=config.release_fetch_max_wait,
    )


def load_overrides(path: Optional[str]) -> list[StackParameter]:
    return load_parameters_file(path) if path else []


def exit_with_error(action: str, error: Exception) -> NoReturn:
    """Print an error and exit with the code matching its class.

    Exit codes: 0 aborted by the operator, 1 bad input or missing target,
    2 anything else.
    """
    if isinstance(error, UserAborted):
        console.print("Aborted.", style="yellow")
        raise typer.Exit(code=0)

    if isinstance(error, (InvalidInput, NotFound)):
        console.print(f"✗ Error {action}: {error}", style="bold red")
        raise typer.Exit(code=1)

    console.print(f"✗ Error {action}: {error}", style="bold red")
    if not isinstance(error, StackOpsError):
        logger.exception(f"Error {action}")
    raise typer.Exit(code=2)


def print_versions(versions: list[VersionInfo], title: str) -> None:
    if not versions:
        console.print(f"[yellow]{title}: none[/yellow]")
        return

    table = Table(show_header=True, title=title)
    table.add_column("Tag", style="cyan")
    table.add_column("Sortable Tag", style="green")
    table.add_column("Template")
    for v in versions:
        table.add_row(v.tag, v.sortable_tag, v.template_url or "")
    console.print(table)


def print_update_result(result: UpdateResult) -> None:
    for prerequisite in result.prerequisites:
        print_update_result(prerequisite)

    if result.to_tag is None:
        console.print("Nothing to do.")
    elif result.applied:
        console.print(f"✓ Updated from {result.from_version.tag} to [cyan]{result.to_tag}[/cyan]", style="green")
    elif result.up_to_date:
        console.print(f"Already up to date with [cyan]{result.to_tag}[/cyan]")


def print_parameters(parameters: list[StackParameter]) -> None:
    table = Table(show_header=True, title="Stack Parameters")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for p in parameters:
        table.add_row(p.key, "(previous value)" if p.use_previous_value else (p.value or ""))
    console.print(table)


def print_teardown(operation: TeardownOperation) -> None:
    if not operation.records:
        return

    table = Table(show_header=True, title=f"Teardown of {operation.stack_name}")
    table.add_column("Resource", style="cyan")
    table.add_column("Physical ID")
    table.add_column("Status", justify="center")
    table.add_column("Error")

    styles = {
        DeletionStatus.SUCCEEDED: "green",
        DeletionStatus.DEFERRED: "yellow",
        DeletionStatus.RETAINED: "blue",
        DeletionStatus.FAILED: "red",
    }
    for record in operation.records:
        style = styles[record.status]
        table.add_row(
            record.resource.logical_name,
            record.resource.physical_id,
            f"[{style}]{record.status.value}[/{style}]",
            record.error_message or "",
        )
    console.print(table)

    if operation.cleanup_script:
        console.print(f"Cleanup script: [cyan]{operation.cleanup_script}[/cyan]")


@app.command()
def version():
    """Show version information."""
    import boto3

    from .. import __version__

    console.print(f"stackops version {__version__}")
    console.print(f"Python {sys.version.split()[0]}")
    console.print(f"boto3 {boto3.__version__}")


@app.command("current-version")
def current_version(
    stack_name: str = typer.Argument(..., help="Stack name"),
):
    """Show the version the stack currently runs."""
    try:
        current = get_update_engine(stack_name).get_current_version()
        console.print(f"{stack_name}: [cyan]{current.tag}[/cyan] ({current.sortable_tag})")
    except typer.Exit:
        raise
    except Exception as e:
        exit_with_error("getting current version", e)


@app.command("list-updates")
def list_updates(
    stack_name: str = typer.Argument(..., help="Stack name"),
    provider: Optional[str] = typer.Option(None, "--provider", help="Release provider permalink"),
    show_release_candidates: bool = typer.Option(
        False, "--show-release-candidates", "--rc", help="Include release candidates"
    ),
):
    """List releases the stack can be updated to."""
    try:
        versions = get_update_engine(stack_name).list_updates(provider, show_release_candidates)
        print_versions(versions, "Available Updates")
    except typer.Exit:
        raise
    except Exception as e:
        exit_with_error("listing updates", e)


@app.command("list-previous-versions")
def list_previous_versions(
    stack_name: str = typer.Argument(..., help="Stack name"),
):
    """List versions the stack ran before."""
    try:
        print_versions(get_update_engine(stack_name).list_previous_versions(), "Previous Versions")
    except typer.Exit:
        raise
    except Exception as e:
        exit_with_error("listing previous versions", e)


@app.command()
def update(
    stack_name: str = typer.Argument(..., help="Stack name"),
    tag: Optional[str] = typer.Option(None, "--tag", "-t", help="Release tag (prompts when omitted)"),
    provider: Optional[str] = typer.Option(None, "--provider", help="Release provider permalink"),
    show_release_candidates: bool = typer.Option(
        False, "--show-release-candidates", "--rc", help="Offer release candidates"
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Apply even if up to date; skip transition releases"),
    stack_parameters: Optional[str] = typer.Option(
        None, "--stack-parameters", help="JSON or YAML file with parameter values to apply"
    ),
):
    """Update the stack to a newer release."""
    try:
        options = UpdateOptions(
            stack_name=stack_name,
            tag=tag,
            provider=provider,
            show_release_candidates=show_release_candidates,
            force=force,
            parameter_overrides=load_overrides(stack_parameters),
        )
        print_update_result(get_update_engine(stack_name).run(options))
    except typer.Exit:
        raise
    except Exception as e:
        exit_with_error("updating stack", e)


@app.command()
def rollback(
    stack_name: str = typer.Argument(..., help="Stack name"),
    tag: Optional[str] = typer.Option(None, "--tag", "-t", help="Version tag (prompts when omitted)"),
    show_release_candidates: bool = typer.Option(
        False, "--show-release-candidates", "--rc", help="Offer release candidates"
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Apply even if up to date"),
):
    """Roll the stack back to a previously deployed version."""
    try:
        options = UpdateOptions(
            stack_name=stack_name,
            tag=tag,
            show_release_candidates=show_release_candidates,
            force=force,
            rollback=True,
        )
        print_update_result(get_update_engine(stack_name).run(options))
    except typer.Exit:
        raise
    except Exception as e:
        exit_with_error("rolling back stack", e)


@app.command("update-to-latest")
def update_to_latest(
    stack_name: str = typer.Argument(..., help="Stack name"),
    minor: bool = typer.Option(False, "--minor", help="Stay on the current major version"),
    patch: bool = typer.Option(False, "--patch", help="Stay on the current minor version"),
    include_release_candidates: bool = typer.Option(
        False, "--include-release-candidates", "-c", help="Consider release candidates"
    ),
    stack_parameters: Optional[str] = typer.Option(
        None, "--stack-parameters", help="JSON or YAML file with parameter values to apply"
    ),
):
    """Update the stack to the newest release."""
    try:
        if minor and patch:
            raise InvalidInput("--minor and --patch cannot be combined")
        scope = "patch" if patch else ("minor" if minor else None)

        result = get_update_engine(stack_name).update_to_latest(
            stack_name,
            scope=scope,
            show_release_candidates=include_release_candidates,
            parameter_overrides=load_overrides(stack_parameters),
        )
        if result.to_tag is None and result.up_to_date:
            console.print(f"Already on the latest version ({result.from_version.tag})")
        else:
            print_update_result(result)
    except typer.Exit:
        raise
    except Exception as e:
        exit_with_error("updating stack", e)


@app.command("update-manually")
def update_manually(
    stack_name: str = typer.Argument(..., help="Stack name"),
    template_url: Optional[str] = typer.Option(
        None, "--template-url", "-t", help="Template to apply (default: keep the current template)"
    ),
    stack_parameters: Optional[str] = typer.Option(
        None, "--stack-parameters", help="JSON or YAML file with parameter values to apply"
    ),
):
    """Update the stack with a template or parameters outside the release catalog."""
    try:
        updated = get_update_engine(stack_name).update_manually(
            stack_name,
            template_url=template_url,
            parameter_overrides=load_overrides(stack_parameters),
        )
        if updated:
            console.print(f"✓ Updated {stack_name}", style="green")
        else:
            console.print(f"Stack {stack_name} has no changes to apply")
    except typer.Exit:
        raise
    except Exception as e:
        exit_with_error("updating stack", e)


@app.command()
def restore(
    source_stack_id: str = typer.Option(..., "--source-stack-arn", "-s", help="ARN of the stack to restore from"),
    date: str = typer.Option(..., "--date", "-d", help="Point in time, e.g. 2024-01-15T10:00:00.000Z"),
    new_stack_name: Optional[str] = typer.Option(
        None, "--new-stack-name", "-n", help="Create a stack on the restored resources (e.g. acme-ltd-dev)"
    ),
    template_url: Optional[str] = typer.Option(
        None, "--template-url", help="Template for the new stack (default: source stack's template)"
    ),
    stack_parameters: Optional[str] = typer.Option(
        None, "--stack-parameters", help="JSON or YAML file with parameter values for the new stack"
    ),
):
    """Restore a stack's tables and buckets to a point in time.

    The source stack is left untouched. Restored resources get new names; with
    --new-stack-name a new stack is created on top of them.
    """
    try:
        options = RestoreOptions(
            source_stack_id=source_stack_id,
            point_in_time=date,
            new_stack_name=new_stack_name,
            template_url=template_url,
            profile=config.aws_profile,
            parameter_overrides=load_overrides(stack_parameters),
        ).validate()

        # Restore where the source stack lives
        clients = get_clients(region=parse_stack_arn(source_stack_id).region)
        engine = RestoreEngine.from_clients(clients, get_prompter())

        parameters = engine.restore_resources(options)
        console.print("✓ Resources restored", style="green")
        print_parameters(parameters)

        if new_stack_name:
            stack_id = engine.restore_stack(options, parameters)
            console.print(f"✓ Created stack [cyan]{stack_id}[/cyan]", style="green")

    except typer.Exit:
        raise
    except RestoreIncomplete as e:
        console.print(f"✗ Restore incomplete: {e}", style="bold red")
        for name in e.completed:
            console.print(f"  • restored: {name}")
        raise typer.Exit(code=2)
    except Exception as e:
        exit_with_error("restoring stack", e)


@app.command("restore-table")
def restore_table(
    source_name: str = typer.Option(..., "--source-name", help="Table to restore from"),
    dest_name: str = typer.Option(..., "--dest-name", help="Name of the restored table"),
    date: str = typer.Option(..., "--date", "-d", help="Point in time, e.g. 2024-01-15T10:00:00.000Z"),
):
    """Restore one table to a point in time under a new name."""
    try:
        engine = RestoreEngine.from_clients(get_clients(), get_prompter())
        stream = engine.restore_single_table(source_name, dest_name, date)
        console.print(f"✓ Restored {source_name} to [cyan]{dest_name}[/cyan]", style="green")
        if stream:
            console.print(f"Stream: {stream}")
    except typer.Exit:
        raise
    except Exception as e:
        exit_with_error("restoring table", e)


@app.command("restore-bucket")
def restore_bucket(
    source_name: str = typer.Option(..., "--source-name", help="Bucket to restore from"),
    dest_name: str = typer.Option(..., "--dest-name", help="Bucket to restore into (created if missing)"),
    date: str = typer.Option(..., "--date", "-d", help="Point in time, e.g. 2024-01-15T10:00:00.000Z"),
):
    """Restore one bucket's objects as of a point in time into another bucket."""
    try:
        engine = RestoreEngine.from_clients(get_clients(), get_prompter())
        engine.restore_single_bucket(source_name, dest_name, date, profile=config.aws_profile)
        console.print(f"✓ Restored {source_name} to [cyan]{dest_name}[/cyan]", style="green")
    except typer.Exit:
        raise
    except Exception as e:
        exit_with_error("restoring bucket", e)


@app.command("gen-stack-parameters")
def gen_stack_parameters(
    source_stack_id: str = typer.Option(..., "--source-stack-arn", "-s", help="ARN of the stack to read"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Write to this file instead of stdout"),
    as_object: bool = typer.Option(False, "--as-object", help="Write a key/value mapping"),
):
    """Print the parameters a template needs to reuse a stack's resources."""
    try:
        clients = get_clients(region=parse_stack_arn(source_stack_id).region)
        parameters = derive_parameters_from_stack(
            StackClient(clients.cloudformation, region=clients.region),
            source_stack_id,
            rest_apis=RestApiClient(clients.apigateway),
        )
        rendered = json.dumps(format_parameters(parameters, as_object=as_object), indent=2)

        if output:
            with open(output, "w") as f:
                f.write(rendered + "\n")
            console.print(f"✓ Wrote {len(parameters)} parameter(s) to [cyan]{output}[/cyan]", style="green")
        else:
            console.print_json(rendered)
    except typer.Exit:
        raise
    except Exception as e:
        exit_with_error("generating stack parameters", e)


@app.command()
def destroy(
    stack_name: str = typer.Argument(..., help="Stack to destroy"),
    script_dir: str = typer.Option(".", "--script-dir", help="Where to write the bucket cleanup script"),
):
    """Destroy a stack, optionally deleting the resources it leaves behind.

    There is no undo. With --yes both confirmations pass and every resource is
    retained.
    """
    try:
        options = DestroyOptions(
            stack_name=stack_name,
            profile=config.aws_profile,
            assume_yes=config.assume_yes,
            script_dir=script_dir,
        )
        engine = TeardownEngine.from_clients(get_clients(), get_prompter(), audit=AuditStorage(config.audit_dir))
        operation = engine.destroy(options)

        print_teardown(operation)
        if operation.stack_already_gone:
            console.print(f"Stack {stack_name} was already gone")
        console.print(f"✓ Destroyed {stack_name}", style="green")

    except typer.Exit:
        raise
    except TeardownIncomplete as e:
        print_teardown(e.operation)
        console.print(f"✗ Teardown incomplete: {e}", style="bold red")
        raise typer.Exit(code=2)
    except Exception as e:
        exit_with_error("destroying stack", e)


@app.command()
def history(
    stack_name: Optional[str] = typer.Argument(None, help="Only show teardowns of this stack"),
):
    """Show recorded teardown operations."""
    try:
        operations = AuditStorage(config.audit_dir).query_operations(stack_name)
        if not operations:
            console.print("[yellow]No teardown operations recorded[/yellow]")
            return

        table = Table(show_header=True, title="Teardown History")
        table.add_column("Operation", style="cyan")
        table.add_column("Stack")
        table.add_column("Started", style="green")
        table.add_column("Status", justify="center")
        table.add_column("Deleted", justify="right")
        table.add_column("Failed", justify="right")
        for audit_data in operations:
            operation = audit_data["operation"]
            table.add_row(
                operation["operation_id"],
                operation["stack_name"],
                operation["timestamp"] or "",
                operation["status"],
                str(operation["succeeded_count"]),
                str(operation["failed_count"]),
            )
        console.print(table)

    except typer.Exit:
        raise
    except Exception as e:
        exit_with_error("reading teardown history", e)


def cli_main():
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    cli_main()
