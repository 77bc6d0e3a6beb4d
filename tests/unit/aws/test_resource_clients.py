"""Tests for the KMS, CloudWatch Logs and API Gateway wrappers and client helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest

from stackops.aws.apigateway import RestApiClient
from stackops.aws.client import AWSClients, error_code, is_not_found
from stackops.aws.kms import KeyClient
from stackops.aws.logs import LogGroupClient
from stackops.errors import NotFound
from tests.fixtures.stacks import client_error


class TestClientHelpers:
    @pytest.mark.parametrize("code", ["404", "NoSuchBucket", "ResourceNotFoundException", "NotFoundException"])
    def test_not_found_codes(self, code: str) -> None:
        assert is_not_found(client_error(code))

    def test_cloudformation_missing_stack(self) -> None:
        assert is_not_found(client_error("ValidationError", "Stack with id demo does not exist"))
        assert not is_not_found(client_error("ValidationError", "Template format error"))

    def test_error_code(self) -> None:
        assert error_code(client_error("Throttling")) == "Throttling"

    @patch("stackops.aws.client.create_boto_client")
    def test_clients_are_cached(self, create: Mock) -> None:
        clients = AWSClients(profile="prod", region="us-east-1")

        assert clients.s3 is clients.s3
        create.assert_called_once_with(service_name="s3", region_name="us-east-1", profile_name="prod")


class TestKeyClient:
    def test_pending_deletion_counts_as_gone(self) -> None:
        kms = Mock()
        kms.describe_key.return_value = {"KeyMetadata": {"DeletionDate": datetime(2025, 1, 1, tzinfo=timezone.utc)}}

        assert KeyClient(kms).does_key_exist("key-1") is False

    def test_exists(self) -> None:
        kms = Mock()
        kms.describe_key.return_value = {"KeyMetadata": {"KeyState": "Enabled"}}

        assert KeyClient(kms).does_key_exist("key-1") is True

    def test_delete_disables_and_schedules(self) -> None:
        kms = Mock()

        KeyClient(kms).delete_key("key-1")

        kms.disable_key.assert_called_once_with(KeyId="key-1")
        kms.schedule_key_deletion.assert_called_once_with(KeyId="key-1", PendingWindowInDays=7)

    def test_delete_pending_key_raises_not_found(self) -> None:
        kms = Mock()
        kms.disable_key.side_effect = client_error("KMSInvalidStateException", "key-1 is pending deletion.")

        with pytest.raises(NotFound):
            KeyClient(kms).delete_key("key-1")


class TestLogGroupClient:
    def test_missing(self) -> None:
        logs = Mock()
        logs.describe_log_streams.side_effect = client_error("ResourceNotFoundException")

        assert LogGroupClient(logs).does_log_group_exist("/aws/lambda/x") is False

    def test_delete(self) -> None:
        logs = Mock()

        LogGroupClient(logs).delete_log_group("/aws/lambda/x")

        logs.delete_log_group.assert_called_once_with(logGroupName="/aws/lambda/x")


class TestRestApiClient:
    def test_root_resource_id(self) -> None:
        apigateway = Mock()
        apigateway.get_paginator.return_value.paginate.return_value = [
            {"items": [{"id": "abc", "path": "/users"}, {"id": "root1", "path": "/"}]}
        ]

        assert RestApiClient(apigateway).get_root_resource_id("api-1") == "root1"

    def test_delete_missing_api(self) -> None:
        apigateway = Mock()
        apigateway.delete_rest_api.side_effect = client_error("NotFoundException")

        with pytest.raises(NotFound):
            RestApiClient(apigateway).delete_rest_api("api-1")
