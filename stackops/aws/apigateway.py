"""API Gateway REST API operations."""

from __future__ import annotations

from typing import Any, Optional

from botocore.exceptions import ClientError

from ..errors import NotFound
from .client import is_not_found


class RestApiClient:
    """API Gateway wrapper."""

    def __init__(self, client: Any) -> None:
        self.client = client

    def does_rest_api_exist(self, rest_api_id: str) -> bool:
        try:
            self.client.get_rest_api(restApiId=rest_api_id)
        except ClientError as e:
            if is_not_found(e):
                return False
            raise
        return True

    def delete_rest_api(self, rest_api_id: str) -> None:
        """Delete a REST API.

        Raises:
            NotFound: If the API does not exist
        """
        try:
            self.client.delete_rest_api(restApiId=rest_api_id)
        except ClientError as e:
            if is_not_found(e):
                raise NotFound(f"rest api not found: {rest_api_id}")
            raise

    def get_root_resource_id(self, rest_api_id: str) -> Optional[str]:
        """Return the id of the API's "/" resource, or None if it has none."""
        paginator = self.client.get_paginator("get_resources")
        for page in paginator.paginate(restApiId=rest_api_id):
            for resource in page.get("items", []):
                if resource.get("path") == "/":
                    return resource["id"]
        return None
