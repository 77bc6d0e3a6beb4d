"""CloudFormation stack operations.

Create/update/delete return a StackOperation handle. Waiting on it polls until
the stack reaches a terminal state and raises ServerError (with a console link)
on failure or timeout, never hangs.
"""

from __future__ import annotations

import json
import logging
import time
from concurrent.futures import Executor, Future
from typing import Any, Callable, Optional

import yaml
from botocore.exceptions import ClientError, WaiterError

from ..errors import InvalidInput, NotFound, ServerError, StackBusy
from ..models.stack import StackDescriptor, StackParameter
from .client import error_code, error_message, is_not_found

logger = logging.getLogger(__name__)

CLEANUP_IN_PROGRESS = "UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS"
UPDATEABLE_STATUSES = ["CREATE_COMPLETE", "UPDATE_COMPLETE", "UPDATE_ROLLBACK_COMPLETE"]
NAMED_IAM = ["CAPABILITY_NAMED_IAM"]

WAITER_DELAY_SECONDS = 15
DEFAULT_WAIT_TIMEOUT_SECONDS = 3600


class _TemplateLoader(yaml.SafeLoader):
    """SafeLoader that tolerates CloudFormation short-form tags (!Ref, !GetAtt, ...)."""


def _construct_cfn_tag(loader: yaml.SafeLoader, tag_suffix: str, node: yaml.Node) -> Any:
    name = "Ref" if tag_suffix == "Ref" else f"Fn::{tag_suffix}"
    if isinstance(node, yaml.ScalarNode):
        value: Any = loader.construct_scalar(node)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)
    return {name: value}


_TemplateLoader.add_multi_constructor("!", _construct_cfn_tag)


def parse_template_body(body: Any) -> dict:
    """Parse a template body returned by get_template (dict, JSON or YAML)."""
    if isinstance(body, dict):
        return body
    if body.strip().startswith("{"):
        return json.loads(body)
    return yaml.load(body, Loader=_TemplateLoader)


def get_console_link(region: Optional[str], status: str = "active") -> str:
    return (
        f"https://{region}.console.aws.amazon.com/cloudformation/home"
        f"?region={region}#/stacks?filter={status}"
    )


class StackOperation:
    """Handle for an in-flight stack create/update/delete.

    Attributes:
        stack_name: Stack name or id
        waiter_name: boto3 waiter that detects the terminal state
        stack_id: Stack id returned by the provider (optional)
    """

    def __init__(
        self,
        client: Any,
        stack_name: str,
        waiter_name: str,
        region: Optional[str] = None,
        stack_id: Optional[str] = None,
    ) -> None:
        self.client = client
        self.stack_name = stack_name
        self.waiter_name = waiter_name
        self.region = region
        self.stack_id = stack_id

    def wait(self, timeout: Optional[float] = None) -> Optional[str]:
        """Block until the stack reaches a terminal state.

        Args:
            timeout: Seconds to wait (default: one hour)

        Returns:
            The stack id, if known

        Raises:
            ServerError: If the operation failed or timed out
        """
        timeout = timeout or DEFAULT_WAIT_TIMEOUT_SECONDS
        max_attempts = max(1, int(timeout // WAITER_DELAY_SECONDS))
        waiter = self.client.get_waiter(self.waiter_name)
        try:
            waiter.wait(
                StackName=self.stack_id or self.stack_name,
                WaiterConfig={"Delay": WAITER_DELAY_SECONDS, "MaxAttempts": max_attempts},
            )
        except WaiterError as e:
            logger.debug(f"Waiter {self.waiter_name} failed for {self.stack_name}: {e}")
            raise ServerError(
                f"stack operation on {self.stack_name} may have failed",
                link=get_console_link(self.region, status="failed"),
            )
        return self.stack_id

    def submit(self, executor: Executor, timeout: Optional[float] = None) -> "Future[Optional[str]]":
        """Wait in the background. Cancel or time out via the returned future."""
        return executor.submit(self.wait, timeout)


class StackClient:
    """CloudFormation wrapper.

    Attributes:
        client: boto3 cloudformation client
        region: Region the client targets (used for console links)
        max_delete_attempts: Attempts while the stack is still cleaning up
        retry_wait: Seconds between delete attempts
    """

    def __init__(
        self,
        client: Any,
        region: Optional[str] = None,
        max_delete_attempts: int = 60,
        retry_wait: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.region = region or getattr(getattr(client, "meta", None), "region_name", None)
        self.max_delete_attempts = max_delete_attempts
        self.retry_wait = retry_wait
        self._sleep = sleep

    def describe_stack(self, stack_id: str) -> StackDescriptor:
        """Read a stack that has not been deleted.

        Raises:
            NotFound: If the stack does not exist or is DELETE_COMPLETE
        """
        try:
            response = self.client.describe_stacks(StackName=stack_id)
        except ClientError as e:
            if is_not_found(e):
                raise NotFound(f"stack not found: {stack_id}")
            raise

        live = [s for s in response.get("Stacks", []) if s.get("StackStatus") != "DELETE_COMPLETE"]
        if not live:
            raise NotFound(f"stack not found: {stack_id}")
        return StackDescriptor.from_cfn(live[0])

    def get_template(self, stack_id: str) -> dict:
        try:
            response = self.client.get_template(StackName=stack_id, TemplateStage="Original")
        except ClientError as e:
            if is_not_found(e):
                raise NotFound(f"stack not found: {stack_id}")
            raise
        return parse_template_body(response["TemplateBody"])

    def create_stack(
        self,
        stack_name: str,
        template_url: str,
        parameters: list[StackParameter],
        disable_rollback: bool = True,
        notification_arns: Optional[list[str]] = None,
    ) -> StackOperation:
        response = self.client.create_stack(
            StackName=stack_name,
            TemplateURL=template_url,
            Parameters=[p.to_cfn() for p in parameters],
            Capabilities=NAMED_IAM,
            DisableRollback=disable_rollback,
            NotificationARNs=notification_arns or [],
        )
        logger.info(f"Creating stack {stack_name}")
        return StackOperation(
            self.client,
            stack_name,
            "stack_create_complete",
            region=self.region,
            stack_id=response.get("StackId"),
        )

    def update_stack(
        self,
        stack_name: str,
        template_url: Optional[str],
        parameters: list[StackParameter],
    ) -> Optional[StackOperation]:
        """Submit a stack update.

        With no template_url the stack keeps its current template and only
        the parameters change.

        Returns:
            StackOperation, or None if the provider reports nothing to update

        Raises:
            StackBusy: If the stack is already being updated
            InvalidInput: If the provider rejects the template or parameters
        """
        try:
            template = {"TemplateURL": template_url} if template_url else {"UsePreviousTemplate": True}
            response = self.client.update_stack(
                StackName=stack_name,
                Parameters=[p.to_cfn() for p in parameters],
                Capabilities=NAMED_IAM,
                **template,
            )
        except ClientError as e:
            message = error_message(e)
            if "No updates are to be performed" in message:
                logger.info(f"Stack {stack_name} has no changes to apply")
                return None
            if "_IN_PROGRESS state" in message:
                raise StackBusy(
                    f"stack {stack_name} is currently being updated, try again when it finishes",
                    link=get_console_link(self.region),
                )
            if error_code(e) == "ValidationError":
                raise InvalidInput(f"update rejected for {stack_name}: {message}")
            raise

        return StackOperation(
            self.client,
            stack_name,
            "stack_update_complete",
            region=self.region,
            stack_id=response.get("StackId"),
        )

    def delete_stack(self, stack_name: str, retain_resources: Optional[list[str]] = None) -> StackOperation:
        """Start deleting a stack.

        Retries while the stack is still cleaning up after a rollback.

        Raises:
            NotFound: If the stack is already gone
            ServerError: If the stack stays in cleanup for every attempt
        """
        self.describe_stack(stack_name)

        params: dict[str, Any] = {"StackName": stack_name}
        if retain_resources:
            params["RetainResources"] = list(retain_resources)

        for attempt in range(self.max_delete_attempts):
            try:
                self.client.delete_stack(**params)
                break
            except ClientError as e:
                if is_not_found(e):
                    raise NotFound(f"stack not found: {stack_name}")
                if CLEANUP_IN_PROGRESS not in error_message(e):
                    raise
                logger.debug(
                    f"Stack {stack_name} still cleaning up, retrying delete in {self.retry_wait}s "
                    f"(attempt {attempt + 1}/{self.max_delete_attempts})"
                )
                self._sleep(self.retry_wait)
        else:
            raise ServerError(
                f"stack {stack_name} stayed in {CLEANUP_IN_PROGRESS}",
                link=get_console_link(self.region),
            )

        logger.info(f"Deleting stack {stack_name}")
        return StackOperation(self.client, stack_name, "stack_delete_complete", region=self.region)

    def disable_termination_protection(self, stack_name: str) -> None:
        """Turn off termination protection.

        Raises:
            NotFound: If the stack is already gone
        """
        self.describe_stack(stack_name)
        try:
            self.client.update_termination_protection(
                StackName=stack_name,
                EnableTerminationProtection=False,
            )
        except ClientError as e:
            if is_not_found(e):
                raise NotFound(f"stack not found: {stack_name}")
            raise

    def find_stack_id(self, stack_name: str) -> Optional[str]:
        """Find the id of a live, updateable stack by name."""
        paginator = self.client.get_paginator("list_stacks")
        for page in paginator.paginate(StackStatusFilter=UPDATEABLE_STATUSES):
            for summary in page.get("StackSummaries", []):
                if summary.get("StackName") == stack_name:
                    return summary["StackId"]
        return None
