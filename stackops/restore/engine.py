"""Disaster-recovery restore engine.

Restores a stack's tables and buckets to a point in time under new names and
derives the parameters for a new stack built on the restored copies. The
source stack is never modified.

Order of work:
    1. derive parameters and list output resources (concurrently)
    2. cross-validate outputs against parameters
    3. pre-flight every table and bucket (concurrently) before touching data
    4. restore all tables and buckets (concurrently)
    5. rewrite parameters to point at the restored copies
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from ..aws.apigateway import RestApiClient
from ..aws.client import AWSClients
from ..aws.cloudformation import StackClient, parse_template_body
from ..aws.dynamodb import TableClient
from ..aws.s3 import BucketClient, assert_restore_tool_installed, parse_s3_url, validate_bucket_name
from ..errors import InvalidInput, NotFound, RestoreIncomplete
from ..models.options import RestoreOptions, validate_new_stack_name
from ..models.resource import CloudResource, ResourceType
from ..models.restore_plan import ResourceRestore, RestorePlan
from ..models.stack import StackDescriptor, StackParameter, parse_stack_arn
from ..prompts import Prompter
from ..stack.enumerator import list_output_resources
from ..stack.parameters import (
    DEPLOYMENT_BUCKET_PARAMETER,
    derive_parameters,
    derive_parameters_from_stack,
    get_missing_parameters,
    get_parameter_description,
    lock_single_value_parameters,
    merge_parameters,
    sort_parameters,
    validate_parameter_value,
)
from ..utils.concurrency import collect_all, run_all
from ..utils.dates import validate_iso_date
from ..utils.logging import get_silent_logger
from .naming import derive_restored_resource_name, random_alphanumeric_string

module_logger = logging.getLogger(__name__)

RESTORABLE_TYPES = (ResourceType.BUCKET, ResourceType.TABLE)

# Logical names of buckets that are never restored
UNRESTORABLE_BUCKETS = ("LogsBucket", DEPLOYMENT_BUCKET_PARAMETER)

TEMPLATE_BUCKET_PARAMETER = "ExistingDeploymentBucket"


def should_restore_bucket(resource: CloudResource) -> bool:
    return resource.logical_name not in UNRESTORABLE_BUCKETS


def cross_validate(parameters: list[StackParameter], resources: list[CloudResource]) -> None:
    """Every restorable resource must be passed in through exactly one parameter.

    Raises:
        NotFound: If a resource has no matching parameter
        InvalidInput: If a resource matches more than one parameter
    """
    for resource in resources:
        matches = [p for p in parameters if p.value == resource.physical_id]
        if not matches:
            raise NotFound(f"expected parameter corresponding to output {resource.logical_name}")
        if len(matches) > 1:
            keys = ", ".join(p.key for p in matches)
            raise InvalidInput(f"output {resource.logical_name} matches more than one parameter: {keys}")


def get_stream_marker(table_name: str) -> str:
    return f"table/{table_name}/stream"


def rewrite_parameters(
    parameters: list[StackParameter],
    plan: RestorePlan,
    logger: logging.Logger = module_logger,
) -> list[StackParameter]:
    """Point parameters at the restored resources.

    Every value equal to an old physical id is replaced with the new one,
    except the deployment bucket parameter, which keeps its previous value.
    Stream ARNs of restored tables are replaced with the new stream ARNs.
    """
    irreplaceable = [p for p in parameters if p.key == DEPLOYMENT_BUCKET_PARAMETER]
    replaceable = [p for p in parameters if p.key != DEPLOYMENT_BUCKET_PARAMETER]

    old_to_new = plan.old_to_new
    rewritten = [p.with_value(old_to_new[p.value]) if p.value in old_to_new else p for p in replaceable]

    for restore in plan.tables:
        stream = plan.streams.get(restore.dest_name)
        if not stream:
            continue

        marker = get_stream_marker(restore.source_name)
        matched = False
        for i, parameter in enumerate(rewritten):
            if parameter.value and marker in parameter.value:
                rewritten[i] = parameter.with_value(stream)
                matched = True

        if not matched:
            logger.warning(f"No parameter found for stream {stream} (table {restore.dest_name})")

    return [p.keep_previous() for p in irreplaceable] + rewritten


def resolve_previous_values(parameters: list[StackParameter], source: StackDescriptor) -> list[StackParameter]:
    resolved = []
    for parameter in parameters:
        if parameter.use_previous_value:
            previous = source.get_parameter(parameter.key)
            if previous is None or previous.value is None:
                raise NotFound(f"no previous value for parameter {parameter.key} on {source.name}")
            parameter = parameter.with_value(previous.value)
        resolved.append(parameter)
    return resolved


class RestoreEngine:
    """Point-in-time restore of a stack's data into new resources.

    Attributes:
        stacks: CloudFormation wrapper (in the source stack's region)
        buckets: S3 wrapper
        tables: DynamoDB wrapper
        prompter: Used to ask for template parameters with no value
        rest_apis: API Gateway wrapper used while deriving parameters (optional)
        wait_timeout: Seconds to wait for the new stack (optional)
    """

    def __init__(
        self,
        stacks: StackClient,
        buckets: BucketClient,
        tables: TableClient,
        prompter: Prompter,
        rest_apis: Optional[RestApiClient] = None,
        random_token: Callable[[int], str] = random_alphanumeric_string,
        wait_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
        silent: bool = False,
    ) -> None:
        self.stacks = stacks
        self.buckets = buckets
        self.tables = tables
        self.prompter = prompter
        self.rest_apis = rest_apis
        self.random_token = random_token
        self.wait_timeout = wait_timeout
        self._clock = clock
        if silent:
            self.logger = get_silent_logger(__name__)
        else:
            self.logger = logger or module_logger

    @classmethod
    def from_clients(cls, clients: AWSClients, prompter: Prompter, **kwargs) -> "RestoreEngine":
        return cls(
            stacks=StackClient(clients.cloudformation, region=clients.region),
            buckets=BucketClient(clients.s3),
            tables=TableClient(clients.dynamodb),
            prompter=prompter,
            rest_apis=RestApiClient(clients.apigateway),
            **kwargs,
        )

    # Resources

    def plan(self, options: RestoreOptions) -> tuple[RestorePlan, list[StackParameter]]:
        """Read the source stack and name every resource to restore.

        Returns:
            Tuple of (plan, source parameters)
        """
        stack_name = parse_stack_arn(options.source_stack_id).stack_name

        with ThreadPoolExecutor(max_workers=2) as executor:
            params_future = executor.submit(
                derive_parameters_from_stack, self.stacks, options.source_stack_id, self.rest_apis
            )
            stack_future = executor.submit(self.stacks.describe_stack, options.source_stack_id)
            parameters = params_future.result()
            resources = [r for r in list_output_resources(stack_future.result()) if r.type in RESTORABLE_TYPES]

        cross_validate(parameters, resources)

        def to_restore(resource: CloudResource) -> ResourceRestore:
            dest_name = derive_restored_resource_name(
                stack_name,
                resource.type,
                resource.logical_name,
                resource.physical_id,
                random_token=self.random_token,
            )
            return ResourceRestore(source=resource, dest_name=dest_name)

        plan = RestorePlan(
            source_stack_name=stack_name,
            point_in_time=options.point_in_time,
            buckets=[to_restore(r) for r in resources if r.is_bucket and should_restore_bucket(r)],
            tables=[to_restore(r) for r in resources if r.type is ResourceType.TABLE],
        )
        return plan, parameters

    def preflight(self, plan: RestorePlan) -> None:
        """Check every source and target before any data is restored.

        Target buckets are created (or checked empty) and given the source
        bucket's settings here.
        """
        if plan.buckets:
            assert_restore_tool_installed()

        def check_table(restore: ResourceRestore) -> None:
            self.tables.assert_can_restore_table(restore.source_name, restore.dest_name, plan.point_in_time)

        def prepare_bucket(restore: ResourceRestore) -> None:
            self.prepare_bucket(restore.source_name, restore.dest_name)

        with ThreadPoolExecutor(max_workers=2) as executor:
            tables = executor.submit(run_all, check_table, plan.tables)
            buckets = executor.submit(run_all, prepare_bucket, plan.buckets)
            tables.result()
            buckets.result()

    def prepare_bucket(self, source: str, dest: str) -> None:
        self.buckets.assert_bucket_exists(source)
        self.buckets.create_bucket_or_assert_empty(dest)
        self.buckets.copy_bucket_settings(source, dest)

    def restore(self, plan: RestorePlan, profile: Optional[str] = None) -> None:
        """Restore all tables and buckets concurrently.

        Raises:
            RestoreIncomplete: If any restore failed; names what completed
        """

        def restore_one(restore: ResourceRestore) -> Optional[str]:
            self.logger.info(f"{restore.source_name} -> {restore.dest_name}")
            if restore.source.type is ResourceType.TABLE:
                _, stream = self.tables.restore_table(restore.source_name, restore.dest_name, plan.point_in_time)
                return stream
            self.buckets.restore_bucket(restore.source_name, restore.dest_name, plan.point_in_time, profile=profile)
            return None

        outcomes = collect_all(restore_one, plan.all_restores)

        completed = []
        failures = []
        for restore, stream, error in outcomes:
            if error is None:
                completed.append(restore.dest_name)
                if restore.source.type is ResourceType.TABLE:
                    plan.streams[restore.dest_name] = stream
            else:
                self.logger.error(f"Failed to restore {restore.source_name} -> {restore.dest_name}: {error}")
                failures.append((restore, error))

        if failures:
            restore, error = failures[0]
            raise RestoreIncomplete(
                f"restore failed at {restore.dest_name} ({error}). "
                f"Already restored: {', '.join(completed) or 'nothing'}",
                completed=completed,
                failed=restore.dest_name,
            ) from error

    def restore_resources(self, options: RestoreOptions) -> list[StackParameter]:
        """Restore the source stack's tables and buckets to options.point_in_time.

        Returns:
            Parameters for a new stack backed by the restored resources
        """
        options.validate()
        plan, parameters = self.plan(options)
        self.preflight(plan)

        self.logger.warning("This will take a while. Do NOT interrupt!")
        self.restore(plan, profile=options.profile)
        return rewrite_parameters(parameters, plan, logger=self.logger)

    def restore_single_table(self, source_name: str, dest_name: str, point_in_time: str) -> Optional[str]:
        """Restore one table to a point in time under a new name.

        Returns:
            The restored table's stream ARN, if it has a stream
        """
        validate_iso_date(point_in_time)
        self.tables.assert_can_restore_table(source_name, dest_name, point_in_time)

        self.logger.info(f"{source_name} -> {dest_name}")
        _, stream = self.tables.restore_table(source_name, dest_name, point_in_time)
        return stream

    def restore_single_bucket(
        self,
        source_name: str,
        dest_name: str,
        point_in_time: str,
        profile: Optional[str] = None,
    ) -> None:
        """Restore one bucket's objects as of a point in time into another bucket."""
        validate_iso_date(point_in_time)
        validate_bucket_name(dest_name)
        assert_restore_tool_installed()
        self.prepare_bucket(source_name, dest_name)

        self.logger.info(f"{source_name} -> {dest_name}")
        self.buckets.restore_bucket(source_name, dest_name, point_in_time, profile=profile)

    # Stack

    def load_template(self, url: str) -> dict:
        bucket, key = parse_s3_url(url)
        return parse_template_body(self.buckets.get_object_body(bucket, key))

    def prompt_missing_parameters(self, template: dict, parameters: list[StackParameter]) -> list[StackParameter]:
        prompted = []
        for definition in get_missing_parameters(template, parameters):
            message = get_parameter_description(definition)
            allowed = definition.get("AllowedValues")
            while True:
                if allowed:
                    value = self.prompter.choose(message, [str(v) for v in allowed])
                else:
                    value = self.prompter.ask(message)
                error = validate_parameter_value(definition, value)
                if error is None:
                    break
                self.logger.warning(error)
            prompted.append(StackParameter(key=definition["Name"], value=value))
        return prompted

    def upload_template(self, template: dict, parameters: list[StackParameter]) -> str:
        bucket = next((p.value for p in parameters if p.key == TEMPLATE_BUCKET_PARAMETER and p.value), None)
        if not bucket:
            raise InvalidInput(f'expected parameter "{TEMPLATE_BUCKET_PARAMETER}" to upload the template to')

        key = f"tmp/recovery-template-{int(self._clock() * 1000)}.json"
        self.logger.info(f"Uploading template to s3://{bucket}/{key}")
        return self.buckets.put_json(bucket, key, template)

    def validate_parameters(self, parameters: list[StackParameter]) -> None:
        """Check each Existing*StreamArn parameter belongs to its Existing*Table."""
        tables = [p for p in parameters if p.key.startswith("Existing") and p.key.endswith("Table")]
        streams = [p for p in parameters if p.key.startswith("Existing") and p.key.endswith("StreamArn")]

        pairs = []
        for table in tables:
            stream = next((s for s in streams if s.key.startswith(table.key)), None)
            if stream and table.value and stream.value:
                pairs.append((table.value, stream.value))

        run_all(lambda pair: self.tables.ensure_stream_matches_table(*pair), pairs)

    def restore_stack(
        self,
        options: RestoreOptions,
        parameters: Optional[list[StackParameter]] = None,
    ) -> Optional[str]:
        """Create a new stack from the source stack's template.

        Args:
            options: Restore options; new_stack_name is required
            parameters: Parameters for the new stack (default: derived from the source stack).
                options.parameter_overrides are applied on top either way

        Returns:
            The new stack's id
        """
        options.validate()
        if not options.new_stack_name:
            raise InvalidInput('expected "new_stack_name"')
        validate_new_stack_name(options.new_stack_name)

        if options.template_url:
            template = self.load_template(options.template_url)
        else:
            template = self.stacks.get_template(options.source_stack_id)

        source = self.stacks.describe_stack(options.source_stack_id)
        if parameters is None:
            parameters = derive_parameters(source, self.rest_apis)
        if options.parameter_overrides:
            parameters = merge_parameters(parameters, options.parameter_overrides)

        # A new stack has no previous values; carry over the source stack's
        parameters = resolve_previous_values(parameters, source)
        parameters = sort_parameters(list(parameters) + self.prompt_missing_parameters(template, parameters))
        parameters = lock_single_value_parameters(template, parameters)

        template_url = options.template_url or self.upload_template(template, parameters)
        self.validate_parameters(parameters)

        self.logger.info("Grab some patience, this will take a while (5-20 minutes)")
        operation = self.stacks.create_stack(
            options.new_stack_name,
            template_url,
            parameters,
            disable_rollback=True,
        )
        stack_id = operation.wait(self.wait_timeout)
        self.logger.info(f"Created stack {options.new_stack_name}")
        return stack_id
