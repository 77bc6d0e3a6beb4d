"""Stack teardown engine.

Deletes a stack and, if the operator chooses, the resources it would leave
behind. Irreversible, so it asks twice before doing anything.
"""

from __future__ import annotations

import hashlib
import logging
import re
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Optional

from botocore.exceptions import ClientError

from ..aws.client import AWSClients
from ..aws.cloudformation import StackClient
from ..errors import NotFound, ServerError, StackOpsError, TeardownIncomplete
from ..models.options import DestroyOptions
from ..models.resource import CloudResource, sort_by_type
from ..models.teardown import (
    DeletionRecord,
    DeletionStatus,
    RetentionDecision,
    TeardownOperation,
    TeardownStatus,
)
from ..prompts import Prompter
from ..stack.enumerator import ResourceEnumerator, list_output_resources
from ..stack.parameters import DEPLOYMENT_BUCKET_PARAMETER
from ..utils.concurrency import collect_all
from .audit import AuditStorage
from .cleanup_script import create_cleanup_buckets_script
from .deleter import BIG_BUCKETS, ResourceDeleter, is_big_bucket

module_logger = logging.getLogger(__name__)

STACK_NAME_REGEX = re.compile(r"^(?:tdl-)?([a-zA-Z0-9-]*?)-ltd-([a-z]+)$")
SERVICES_STACK_SUFFIX = "-srvcs"
SERVICES_SHORT_NAME_LENGTH = 14


def shorten_string(value: str, max_length: int) -> str:
    """Fit value into max_length by replacing its tail with a 6-char hash."""
    if len(value) <= max_length:
        return value
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()
    return value[: max_length - 6] + digest[:6]


def get_services_stack_name(stack_name: str) -> str:
    """Name of the companion services stack (at most 20 characters)."""
    match = STACK_NAME_REGEX.match(stack_name)
    short_name = match.group(1) if match else stack_name
    return shorten_string(short_name, SERVICES_SHORT_NAME_LENGTH) + SERVICES_STACK_SUFFIX


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TeardownEngine:
    """Destroys a stack with retain-vs-delete choices for its resources.

    Attributes:
        stacks: CloudFormation wrapper
        enumerator: Lists and checks the stack's output resources
        deleter: Type-dispatched resource deletion
        prompter: Confirmation channel
        audit: Where teardown operations are recorded (optional)
        wait_timeout: Seconds to wait for each stack deletion (optional)
    """

    def __init__(
        self,
        stacks: StackClient,
        enumerator: ResourceEnumerator,
        deleter: ResourceDeleter,
        prompter: Prompter,
        audit: Optional[AuditStorage] = None,
        wait_timeout: Optional[float] = None,
        now: Callable[[], datetime] = _utcnow,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.stacks = stacks
        self.enumerator = enumerator
        self.deleter = deleter
        self.prompter = prompter
        self.audit = audit
        self.wait_timeout = wait_timeout
        self._now = now
        self.logger = logger or module_logger

    @classmethod
    def from_clients(
        cls,
        clients: AWSClients,
        prompter: Prompter,
        audit: Optional[AuditStorage] = None,
        **kwargs,
    ) -> "TeardownEngine":
        return cls(
            stacks=StackClient(clients.cloudformation, region=clients.region),
            enumerator=ResourceEnumerator.from_clients(clients),
            deleter=ResourceDeleter.from_clients(clients),
            prompter=prompter,
            audit=audit,
            **kwargs,
        )

    def list_resources(self, stack_name: str) -> list[CloudResource]:
        """Output resources that still exist, buckets first, minus the deployment-source bucket."""
        try:
            stack = self.stacks.describe_stack(stack_name)
        except NotFound:
            self.logger.info(f"Stack {stack_name} not found, nothing to enumerate")
            return []

        resources = [r for r in list_output_resources(stack) if r.logical_name != DEPLOYMENT_BUCKET_PARAMETER]
        return self.enumerator.filter_existing(sort_by_type(resources))

    def choose_resources(
        self,
        resources: list[CloudResource],
        prompter: Optional[Prompter] = None,
    ) -> tuple[list[RetentionDecision], list[str]]:
        """Ask the operator which resources to delete.

        Returns:
            Tuple of (one decision per resource, logical names to retain)
        """
        prompter = prompter or self.prompter
        retain = list(BIG_BUCKETS)
        if not resources:
            return [], retain

        self.logger.info("The following resources will be left behind when the stack is deleted:")
        for resource in resources:
            self.logger.info(f"  {resource.describe()}")

        ask_each = prompter.choose_yes_no("Would you like to be asked about deleting each of them?", default=False)

        decisions = []
        for resource in resources:
            keep = not ask_each or not prompter.confirm(f"Delete {resource.describe()}?", default=False)
            decisions.append(RetentionDecision(resource=resource, keep=keep))
            if keep and resource.logical_name not in retain:
                retain.append(resource.logical_name)

        return decisions, retain

    def delete_services_stack(self, stack_name: str) -> None:
        """Best-effort deletion of the companion services stack."""
        services_stack_name = get_services_stack_name(stack_name)
        try:
            stack_id = self.stacks.find_stack_id(services_stack_name)
            if not stack_id:
                self.logger.debug(f"No services stack {services_stack_name}")
                return

            self.logger.info(f"Services stack: deleting {stack_id}, ETA: 5-10 minutes")
            self.stacks.delete_stack(stack_id).wait(self.wait_timeout)
            self.logger.info(f"Services stack: deleted {stack_id}")
        except NotFound:
            self.logger.debug(f"Services stack {services_stack_name} already gone")
        except (ServerError, ClientError) as e:
            self.logger.warning(f"Failed to delete services stack {services_stack_name}: {e}")

    def delete_primary_stack(self, operation: TeardownOperation) -> None:
        stack_name = operation.stack_name
        try:
            self.stacks.disable_termination_protection(stack_name)
        except NotFound:
            self.logger.info(f"Stack {stack_name} is already gone")
            operation.stack_already_gone = True
            return

        try:
            self.stacks.delete_stack(stack_name).wait(self.wait_timeout)
        except NotFound:
            operation.stack_already_gone = True
            return
        except (ServerError, ClientError) as e:
            self.logger.warning(
                f"Deleting {stack_name} failed ({e}), retrying and retaining: "
                f"{', '.join(operation.retain_logical_names)}"
            )
            try:
                self.stacks.delete_stack(stack_name, retain_resources=operation.retain_logical_names).wait(
                    self.wait_timeout
                )
            except NotFound:
                operation.stack_already_gone = True
                return

        operation.stack_deleted = True
        self.logger.info(f"Deleted stack {stack_name}")

    def delete_chosen_resources(
        self,
        operation: TeardownOperation,
        resources: list[CloudResource],
        options: DestroyOptions,
    ) -> None:
        """Delete small resources in parallel and defer big buckets to S3 lifecycle expiry."""
        small = [r for r in resources if not is_big_bucket(r)]
        big = [r for r in resources if is_big_bucket(r)]

        for resource, _, error in collect_all(self.deleter.delete_resource, small):
            if error is None:
                operation.records.append(DeletionRecord(resource, DeletionStatus.SUCCEEDED, self._now()))
            else:
                operation.records.append(self._failed_record(resource, error))

        deferred = []
        for resource, bucket, error in collect_all(self.deleter.defer_bucket_deletion, big):
            if error is not None:
                operation.records.append(self._failed_record(resource, error))
            elif bucket is None:
                operation.records.append(DeletionRecord(resource, DeletionStatus.SUCCEEDED, self._now()))
            else:
                operation.records.append(DeletionRecord(resource, DeletionStatus.DEFERRED, self._now()))
                deferred.append(bucket)

        if not deferred:
            return

        script = create_cleanup_buckets_script(deferred, options.script_dir, profile=options.profile)
        operation.cleanup_script = str(script)
        listing = "\n".join(deferred)
        self.logger.info(
            f"The following buckets are too large to delete directly:\n{listing}\n\n"
            f"Instead, they are marked for deletion by S3 and should be emptied within a day or so. "
            f"After that, delete them from the console or with this script: {script}"
        )

    def destroy(self, options: DestroyOptions) -> TeardownOperation:
        """Destroy a stack.

        Returns:
            TeardownOperation with per-resource records

        Raises:
            UserAborted: If the operator declines either confirmation
            TeardownIncomplete: If any chosen resource could not be deleted
            ServerError: If the stack could not be deleted
        """
        options.validate()
        stack_name = options.stack_name
        prompter = self.prompter
        if options.assume_yes and not prompter.assume_yes:
            prompter = Prompter(assume_yes=True, console=prompter.console)

        prompter.confirm_or_abort(f"DESTROY REMOTE STACK {stack_name}?? There's no undo for this one!")
        prompter.confirm_or_abort(f"Are you REALLY REALLY sure you want to destroy {stack_name}?")

        operation = TeardownOperation(
            operation_id=f"op_{uuid.uuid4()}",
            stack_name=stack_name,
            timestamp=self._now(),
            aws_profile=options.profile,
        )

        resources = self.list_resources(stack_name)
        decisions, operation.retain_logical_names = self.choose_resources(resources, prompter)
        to_delete = [d.resource for d in decisions if not d.keep]
        for decision in decisions:
            if decision.keep:
                operation.records.append(DeletionRecord(decision.resource, DeletionStatus.RETAINED, self._now()))

        operation.status = TeardownStatus.EXECUTING
        self.logger.info("OK, here we go! Deleting a few things in parallel...")

        try:
            with ThreadPoolExecutor(max_workers=1) as executor:
                services = executor.submit(self.delete_services_stack, stack_name)
                self.delete_primary_stack(operation)
                if to_delete:
                    self.delete_chosen_resources(operation, to_delete, options)
                services.result()
        except (StackOpsError, ClientError) as e:
            operation.finish(self._now())
            operation.status = TeardownStatus.FAILED
            self._log_operation(operation)
            self.logger.error(f"Teardown of {stack_name} failed: {e}")
            raise

        operation.finish(self._now())
        self._log_operation(operation)

        if operation.failed_count:
            raise TeardownIncomplete(
                f"{operation.failed_count} resource(s) of {stack_name} could not be deleted",
                operation,
            )
        return operation

    def _failed_record(self, resource: CloudResource, error: Exception) -> DeletionRecord:
        return DeletionRecord(resource, DeletionStatus.FAILED, self._now(), str(error) or type(error).__name__)

    def _log_operation(self, operation: TeardownOperation) -> None:
        if self.audit is None:
            return
        path = self.audit.log_operation(operation)
        self.logger.debug(f"Audit log written to {path}")
