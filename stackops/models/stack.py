"""Stack descriptor model.

Immutable snapshot of a CloudFormation stack taken at read time. Re-read the
stack before each dependent operation; the live stack may change in between.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Optional

from ..errors import InvalidInput


@dataclass(frozen=True)
class StackParameter:
    """A single stack parameter.

    When use_previous_value is True the value is omitted from the request and
    the provider keeps whatever the stack currently has.
    """

    key: str
    value: Optional[str] = None
    use_previous_value: bool = False

    def with_value(self, value: str) -> "StackParameter":
        return replace(self, value=value, use_previous_value=False)

    def keep_previous(self) -> "StackParameter":
        return StackParameter(key=self.key, value=None, use_previous_value=True)

    def to_cfn(self) -> dict[str, Any]:
        """Convert to the boto3 Parameters entry format."""
        if self.use_previous_value:
            return {"ParameterKey": self.key, "UsePreviousValue": True}
        return {"ParameterKey": self.key, "ParameterValue": self.value if self.value is not None else ""}

    @classmethod
    def from_cfn(cls, raw: dict[str, Any]) -> "StackParameter":
        return cls(
            key=raw["ParameterKey"],
            value=raw.get("ParameterValue"),
            use_previous_value=bool(raw.get("UsePreviousValue", False)),
        )


@dataclass(frozen=True)
class StackOutput:
    key: str
    value: str


@dataclass(frozen=True)
class StackDescriptor:
    """Stack snapshot.

    Attributes:
        id: Provider stack id (ARN); encodes the region
        name: Stack name
        status: Provider status string (e.g. UPDATE_COMPLETE)
        parameters: Ordered stack parameters
        outputs: Stack outputs
        termination_protection: Whether termination protection is enabled
    """

    id: str
    name: str
    status: str = ""
    parameters: tuple[StackParameter, ...] = field(default_factory=tuple)
    outputs: tuple[StackOutput, ...] = field(default_factory=tuple)
    termination_protection: bool = False

    @property
    def region(self) -> str:
        return parse_stack_arn(self.id).region

    def get_output(self, key: str) -> Optional[str]:
        for output in self.outputs:
            if output.key == key:
                return output.value
        return None

    def get_parameter(self, key: str) -> Optional[StackParameter]:
        for parameter in self.parameters:
            if parameter.key == key:
                return parameter
        return None

    @classmethod
    def from_cfn(cls, raw: dict[str, Any]) -> "StackDescriptor":
        """Build from a describe_stacks Stacks[] entry."""
        return cls(
            id=raw["StackId"],
            name=raw["StackName"],
            status=raw.get("StackStatus", ""),
            parameters=tuple(StackParameter.from_cfn(p) for p in raw.get("Parameters", [])),
            outputs=tuple(
                StackOutput(key=o["OutputKey"], value=o.get("OutputValue", "")) for o in raw.get("Outputs", [])
            ),
            termination_protection=bool(raw.get("EnableTerminationProtection", False)),
        )


@dataclass(frozen=True)
class StackArn:
    region: str
    account_id: str
    stack_name: str


def parse_stack_arn(arn: str) -> StackArn:
    """Parse a stack ARN.

    Format: arn:aws:cloudformation:<region>:<account>:stack/<name>/<uuid>

    Raises:
        InvalidInput: If the ARN is malformed
    """
    parts = arn.split(":")
    if len(parts) < 6 or parts[2] != "cloudformation":
        raise InvalidInput(f"expected a stack ARN, got: {arn}")

    region, account_id, resource = parts[3], parts[4], ":".join(parts[5:])
    resource_parts = resource.split("/")
    if len(resource_parts) < 2 or resource_parts[0] != "stack" or not resource_parts[1]:
        raise InvalidInput(f"expected a stack ARN, got: {arn}")

    return StackArn(region=region, account_id=account_id, stack_name=resource_parts[1])


def is_stack_arn(value: str) -> bool:
    return value.startswith("arn:") and ":cloudformation:" in value
