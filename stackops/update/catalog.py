"""Release catalog.

The catalog is reached through the stack's own management function: the
"<stack>-cli" Lambda accepts a command string and answers with an
{"error": ..., "result": ...} envelope.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Protocol

from botocore.exceptions import ClientError

from ..aws.client import is_not_found
from ..errors import InvalidInput, NotFound, ServerError
from ..models.version import UpdateInfo, VersionInfo

logger = logging.getLogger(__name__)

CLI_FUNCTION_NAME = "cli"

ERROR_TYPES = {
    "NotFound": NotFound,
    "InvalidInput": InvalidInput,
}


class ReleaseCatalog(Protocol):
    def get_current_version(self) -> VersionInfo: ...

    def list_available_updates(self, provider: Optional[str] = None) -> list[VersionInfo]: ...

    def list_previous_versions(self) -> list[VersionInfo]: ...

    def get_update_info(self, tag: str) -> UpdateInfo: ...

    def request_update(self, tag: str, provider: Optional[str] = None) -> None: ...


def get_long_function_name(stack_name: str, function_name: str) -> str:
    if function_name.startswith(stack_name):
        return function_name
    return f"{stack_name}-{function_name}"


def raise_envelope_error(error: Any) -> None:
    """Raise the typed error described by an error envelope."""
    if isinstance(error, dict):
        name = error.get("name") or error.get("type")
        message = error.get("message") or json.dumps(error)
    else:
        name, message = None, str(error)

    error_type = ERROR_TYPES.get(name or "")
    if error_type is not None:
        raise error_type(message)
    raise ServerError(message)


class LambdaReleaseCatalog:
    """ReleaseCatalog backed by the stack's management Lambda.

    Attributes:
        client: boto3 lambda client
        stack_name: Name of the stack whose management function to call
    """

    def __init__(self, client: Any, stack_name: str) -> None:
        self.client = client
        self.stack_name = stack_name

    @property
    def function_name(self) -> str:
        return get_long_function_name(self.stack_name, CLI_FUNCTION_NAME)

    def exec(self, command: str) -> Any:
        """Run a management command and unwrap its result.

        Raises:
            NotFound: If the function or the requested item does not exist
            InvalidInput: If the command was rejected
            ServerError: For any other failure
        """
        logger.debug(f"Invoking {self.function_name}: {command}")
        try:
            response = self.client.invoke(
                FunctionName=self.function_name,
                InvocationType="RequestResponse",
                Payload=json.dumps(command).encode("utf-8"),
            )
        except ClientError as e:
            if is_not_found(e):
                raise NotFound(f"management function not found: {self.function_name}")
            raise

        payload = response["Payload"].read()
        if response.get("FunctionError") or response.get("StatusCode", 200) >= 300:
            raise ServerError(payload.decode("utf-8") if payload else response.get("FunctionError", "unknown error"))

        envelope = json.loads(payload) if payload else {}
        if envelope.get("error"):
            raise_envelope_error(envelope["error"])
        return envelope.get("result")

    def get_current_version(self) -> VersionInfo:
        result = self.exec("getcurrentversion")
        if not result:
            raise NotFound(f"current version of stack {self.stack_name}")
        return VersionInfo.from_dict(result)

    def list_available_updates(self, provider: Optional[str] = None) -> list[VersionInfo]:
        command = "listupdates"
        if provider:
            command += f" --provider {provider}"
        return [VersionInfo.from_dict(v) for v in self.exec(command) or []]

    def list_previous_versions(self) -> list[VersionInfo]:
        return [VersionInfo.from_dict(v) for v in self.exec("listpreviousversions") or []]

    def get_update_info(self, tag: str) -> UpdateInfo:
        result = self.exec(f"getupdateinfo --tag {tag}") or {}
        return UpdateInfo(update=result.get("update") or {}, up_to_date=bool(result.get("upToDate")))

    def request_update(self, tag: str, provider: Optional[str] = None) -> None:
        command = f"requestupdate --tag {tag}"
        if provider:
            command += f" --provider {provider}"
        self.exec(command)
