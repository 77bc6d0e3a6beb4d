"""Stack Parameter Deriver.

Reads a stack's parameters and outputs and maps the outputs onto the
"bring your own resource" parameter names the template expects, so the same
resources can be handed to an update or to a new stack.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Any, Iterable, Optional

import yaml

from ..aws.apigateway import RestApiClient
from ..aws.cloudformation import StackClient
from ..errors import InvalidInput
from ..models.stack import StackDescriptor, StackParameter

logger = logging.getLogger(__name__)

OUTPUT_NAME_TO_PARAM = {
    # buckets
    "ObjectsBucket": "ExistingObjectsBucket",
    "SecretsBucket": "ExistingSecretsBucket",
    "PrivateConfBucket": "ExistingPrivateConfBucket",
    "FileUploadBucket": "ExistingFileUploadBucket",
    "LogsBucket": "ExistingLogsBucket",
    "DeploymentBucket": "ExistingDeploymentBucket",
    # tables
    "EventsTable": "ExistingEventsTable",
    "Bucket0Table": "ExistingBucket0Table",
    # streams
    "Bucket0TableStream": "ExistingBucket0TableStreamArn",
    # keys
    "EncryptionKey": "ExistingEncryptionKey",
    "BucketEncryptionKey": "ExistingBucketEncryptionKey",
    # api gateway
    "ApiGatewayRestApi": "ExistingApiGatewayRestApi",
    "ApiGatewayRestApiRootResourceId": "ExistingApiGatewayRestApiRootResourceId",
}

IMMUTABLE_STACK_PARAMETERS = ["Stage", "BlockchainNetwork", "OrgName", "OrgDomain", "OrgLogo"]

# Where templates are staged; never renamed or restored
DEPLOYMENT_BUCKET_PARAMETER = "SourceDeploymentBucket"

REST_API_PARAMETER = "ExistingApiGatewayRestApi"
REST_API_ROOT_OUTPUT = "ApiGatewayRestApiRootResourceId"
REST_API_ROOT_PARAMETER = "ExistingApiGateway"


def is_overwrite(old_parameters: Iterable[StackParameter], new_param: StackParameter) -> bool:
    """Check whether new_param would replace a non-empty value already on the stack."""
    for old in old_parameters:
        if old.key == new_param.key:
            return bool(old.value)
    return False


def sort_parameters(parameters: Iterable[StackParameter]) -> list[StackParameter]:
    return sorted(parameters, key=lambda p: p.key)


def merge_parameters(
    base: Iterable[StackParameter],
    overrides: Iterable[StackParameter],
) -> list[StackParameter]:
    """Merge two parameter lists by key. Non-empty overrides win."""
    merged: dict[str, StackParameter] = {p.key: p for p in base}
    for parameter in overrides:
        if parameter.use_previous_value or parameter.value:
            merged[parameter.key] = parameter
    return list(merged.values())


def lock_immutable_parameters(
    parameters: Iterable[StackParameter],
    immutable: Iterable[str] = IMMUTABLE_STACK_PARAMETERS,
) -> list[StackParameter]:
    """Pin immutable parameters to their current values with UsePreviousValue.

    Immutable parameters missing from the list are added.
    """
    immutable = list(immutable)
    locked = [p.keep_previous() if p.key in immutable else p for p in parameters]
    present = {p.key for p in locked}
    for key in immutable:
        if key not in present:
            locked.append(StackParameter(key=key, use_previous_value=True))
    return locked


def get_locked_parameter_values(template: dict[str, Any]) -> dict[str, str]:
    """Return values for template parameters that allow exactly one value."""
    locked = {}
    for key, definition in (template.get("Parameters") or {}).items():
        allowed = definition.get("AllowedValues") or []
        if len(allowed) == 1:
            locked[key] = str(allowed[0])
    return locked


def lock_single_value_parameters(
    template: dict[str, Any],
    parameters: Iterable[StackParameter],
) -> list[StackParameter]:
    locked = get_locked_parameter_values(template)
    result = []
    for parameter in parameters:
        if parameter.key in locked and parameter.value != locked[parameter.key]:
            logger.debug(f"Locking parameter: {parameter.key}")
            parameter = parameter.with_value(locked[parameter.key])
        result.append(parameter)
    return result


def get_missing_parameters(template: dict[str, Any], parameters: Iterable[StackParameter]) -> list[dict[str, Any]]:
    """Template parameters that have no default and no supplied value.

    Returns:
        Parameter definitions, each with an added "Name" key
    """
    supplied = {p.key for p in parameters}
    missing = []
    for key, definition in (template.get("Parameters") or {}).items():
        if "Default" not in definition and key not in supplied:
            missing.append({**definition, "Name": key})
    return missing


def get_parameter_description(definition: dict[str, Any]) -> str:
    return definition.get("Description") or definition.get("Label") or definition["Name"]


def derive_parameters(
    stack: StackDescriptor,
    rest_apis: Optional[RestApiClient] = None,
) -> list[StackParameter]:
    """Derive the parameters a template needs to reuse the stack's resources.

    Outputs listed in OUTPUT_NAME_TO_PARAM become "Existing*" parameters,
    unless the stack already has a non-empty value for that parameter. The
    rest of the stack's parameters are kept as they are.

    Args:
        stack: Stack snapshot
        rest_apis: Used to look up the REST API root resource when the stack
            does not export it

    Returns:
        Parameters sorted by key
    """
    old_parameters = list(stack.parameters)
    derived = [
        StackParameter(key=OUTPUT_NAME_TO_PARAM[output.key], value=output.value)
        for output in stack.outputs
        if output.key in OUTPUT_NAME_TO_PARAM
    ]
    derived = [p for p in derived if not is_overwrite(old_parameters, p)]

    derived_keys = {p.key for p in derived}
    parameters = derived + [p for p in old_parameters if p.key not in derived_keys]

    rest_api = next((p for p in derived if p.key == REST_API_PARAMETER), None)
    if rest_api and rest_api.value and stack.get_output(REST_API_ROOT_OUTPUT) is None and rest_apis:
        root = rest_apis.get_root_resource_id(rest_api.value)
        if root:
            parameters.append(StackParameter(key=REST_API_ROOT_PARAMETER, value=root))

    return sort_parameters(parameters)


def derive_parameters_from_stack(
    stacks: StackClient,
    stack_id: str,
    rest_apis: Optional[RestApiClient] = None,
) -> list[StackParameter]:
    """Re-read the stack and derive its parameters."""
    return derive_parameters(stacks.describe_stack(stack_id), rest_apis=rest_apis)


def validate_parameter_value(definition: dict[str, Any], value: str) -> Optional[str]:
    """Check a value against a template parameter's constraints.

    Returns:
        An error message, or None if the value is acceptable
    """
    constraint = definition.get("ConstraintDescription")

    allowed = definition.get("AllowedValues")
    if allowed and value not in [str(v) for v in allowed]:
        return constraint or f"value must be one of: {', '.join(str(v) for v in allowed)}"

    pattern = definition.get("AllowedPattern")
    if pattern:
        if not re.fullmatch(pattern, value):
            return constraint or f"must match pattern: {pattern}"
        return None

    if definition.get("Type") == "Number":
        try:
            number = float(value)
        except ValueError:
            return constraint or "value must be a number"
        min_value = float(definition.get("MinValue", float("-inf")))
        max_value = float(definition.get("MaxValue", float("inf")))
        if not min_value <= number <= max_value:
            return constraint or f"value must be between {min_value:g} and {max_value:g}"
        return None

    min_length = int(definition.get("MinLength", 0))
    max_length = definition.get("MaxLength")
    if len(value) < min_length or (max_length is not None and len(value) > int(max_length)):
        return constraint or f"value length must be between {min_length} and {max_length}"
    return None


def parse_parameters(raw: Any) -> list[StackParameter]:
    """Read parameters in either of the two accepted shapes.

    A list of CloudFormation entries ({"ParameterKey": ..., "ParameterValue": ...})
    or a mapping of key to value.

    Raises:
        InvalidInput: If raw is neither shape
    """
    if isinstance(raw, dict):
        return [StackParameter(key=str(key), value=None if value is None else str(value)) for key, value in raw.items()]

    if isinstance(raw, list):
        parameters = []
        for entry in raw:
            if not isinstance(entry, dict) or "ParameterKey" not in entry:
                raise InvalidInput(f"expected a ParameterKey in every parameter entry, got: {entry!r}")
            parameter = StackParameter.from_cfn(entry)
            if parameter.value is not None:
                parameter = parameter.with_value(str(parameter.value))
            parameters.append(parameter)
        return parameters

    raise InvalidInput("expected stack parameters as a list of ParameterKey/ParameterValue entries or a mapping")


def load_parameters_file(path: str) -> list[StackParameter]:
    """Load stack parameters from a JSON or YAML file.

    Raises:
        InvalidInput: If the file is missing or malformed
    """
    if not os.path.isfile(path):
        raise InvalidInput(f"stack parameters file not found: {path}")

    with open(path) as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise InvalidInput(f"failed to parse stack parameters file {path}: {e}") from e

    parameters = parse_parameters(raw or [])
    logger.debug(f"Loaded {len(parameters)} parameter(s) from {path}")
    return parameters


def format_parameters(parameters: Iterable[StackParameter], as_object: bool = False) -> Any:
    """Render parameters for output.

    Args:
        parameters: Parameters to render
        as_object: Render as a key to value mapping instead of CloudFormation entries
    """
    if as_object:
        return {p.key: p.value for p in parameters}
    return [p.to_cfn() for p in parameters]
