"""Tests for the resource enumerator."""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from stackops.errors import InvalidInput
from stackops.models.resource import CloudResource, ResourceType
from stackops.stack.enumerator import ResourceEnumerator, list_output_resources
from tests.fixtures.stacks import create_stack


@pytest.fixture
def enumerator() -> ResourceEnumerator:
    return ResourceEnumerator(
        buckets=Mock(),
        tables=Mock(),
        keys=Mock(),
        log_groups=Mock(),
        rest_apis=Mock(),
    )


def test_list_output_resources_skips_non_resources() -> None:
    stack = create_stack(
        outputs={
            "ObjectsBucket": "objects",
            "ServiceEndpoint": "https://api",
            "EventsTable": "events",
            "EncryptionKey": "key-1",
        }
    )

    assert list_output_resources(stack) == [
        CloudResource(ResourceType.BUCKET, "ObjectsBucket", "objects"),
        CloudResource(ResourceType.TABLE, "EventsTable", "events"),
        CloudResource(ResourceType.KEY, "EncryptionKey", "key-1"),
    ]


def test_dispatches_by_type(enumerator: ResourceEnumerator) -> None:
    enumerator.tables.does_table_exist.return_value = True

    assert enumerator.does_resource_exist(CloudResource(ResourceType.TABLE, "EventsTable", "events")) is True
    enumerator.tables.does_table_exist.assert_called_once_with("events")
    enumerator.buckets.does_bucket_exist.assert_not_called()


def test_unknown_type_raises_invalid_input(enumerator: ResourceEnumerator) -> None:
    with pytest.raises(InvalidInput, match="unimplemented"):
        enumerator.does_resource_exist(CloudResource(ResourceType.OTHER, "Thing", "x"))


def test_filter_existing_preserves_order(enumerator: ResourceEnumerator) -> None:
    enumerator.buckets.does_bucket_exist.side_effect = lambda name: name != "gone"
    enumerator.keys.does_key_exist.return_value = True
    resources = [
        CloudResource(ResourceType.BUCKET, "ObjectsBucket", "objects"),
        CloudResource(ResourceType.BUCKET, "FileUploadBucket", "gone"),
        CloudResource(ResourceType.KEY, "EncryptionKey", "key-1"),
    ]

    assert enumerator.filter_existing(resources) == [resources[0], resources[2]]
