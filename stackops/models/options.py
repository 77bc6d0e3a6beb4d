"""Per-operation option structs, validated at the CLI/API boundary."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Optional

from ..errors import InvalidInput
from ..utils.dates import validate_iso_date
from .stack import StackParameter, is_stack_arn

NEW_STACK_NAME_REGEX = re.compile(r"^[a-z0-9][a-z0-9-]*-ltd-[a-z]+$")


@dataclass
class UpdateOptions:
    """Options for update and rollback.

    Attributes:
        stack_name: Stack to update
        tag: Explicit target tag (optional, prompts when omitted)
        provider: Release provider permalink (optional, updates only)
        show_release_candidates: Include -rc.N tags in the candidate list
        force: Skip prerequisite resolution and apply even if up to date
        rollback: Move backward to a previously deployed version
        parameter_overrides: Values applied on top of the derived parameters
    """

    stack_name: str
    tag: Optional[str] = None
    provider: Optional[str] = None
    show_release_candidates: bool = False
    force: bool = False
    rollback: bool = False
    parameter_overrides: list[StackParameter] = field(default_factory=list)

    def validate(self) -> "UpdateOptions":
        if not self.stack_name:
            raise InvalidInput('expected "stack_name"')
        if self.tag is not None and not self.tag.strip():
            raise InvalidInput('"tag" must not be empty')
        if self.rollback and self.provider:
            raise InvalidInput('"provider" is not supported for rollback')
        return self


@dataclass
class RestoreOptions:
    """Options for disaster-recovery restore.

    Attributes:
        source_stack_id: ARN of the stack to restore from
        point_in_time: ISO-8601 UTC timestamp to restore to
        new_stack_name: Name for the stack built on the restored resources
        template_url: Template for the new stack (default: source stack's template)
        profile: AWS profile passed to external tools
        parameter_overrides: Values for the new stack that win over derived ones
    """

    source_stack_id: str
    point_in_time: str
    new_stack_name: Optional[str] = None
    template_url: Optional[str] = None
    profile: Optional[str] = None
    parameter_overrides: list[StackParameter] = field(default_factory=list)

    def validate(self) -> "RestoreOptions":
        if not self.source_stack_id or not is_stack_arn(self.source_stack_id):
            raise InvalidInput('expected "source_stack_id" to be a stack ARN')
        validate_iso_date(self.point_in_time)
        if self.new_stack_name is not None:
            validate_new_stack_name(self.new_stack_name)
        return self


@dataclass
class DestroyOptions:
    """Options for teardown.

    Attributes:
        stack_name: Stack to destroy
        profile: AWS profile written into the generated cleanup script (optional)
        assume_yes: Pass both confirmation gates; every resource is retained
        script_dir: Directory for the generated cleanup script
    """

    stack_name: str
    profile: Optional[str] = None
    assume_yes: bool = False
    script_dir: str = field(default_factory=os.getcwd)

    def validate(self) -> "DestroyOptions":
        if not self.stack_name:
            raise InvalidInput('expected "stack_name"')
        if not os.path.isdir(self.script_dir):
            raise InvalidInput(f"script directory does not exist: {self.script_dir}")
        return self


def validate_new_stack_name(name: str) -> None:
    if not NEW_STACK_NAME_REGEX.match(name):
        raise InvalidInput(f'"new_stack_name" must adhere to regex: {NEW_STACK_NAME_REGEX.pattern}')
