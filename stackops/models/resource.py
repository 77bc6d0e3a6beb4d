"""Cloud resource model derived from stack outputs."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ResourceType(Enum):
    """Resource kinds recognized by output-key suffix."""

    BUCKET = "bucket"
    TABLE = "table"
    KEY = "key"
    LOGGROUP = "loggroup"
    RESTAPI = "restapi"
    OTHER = "other"


# Output keys are classified by suffix, e.g. ObjectsBucket, EventsTable, EncryptionKey
OUTPUT_KEY_SUFFIX_REGEX = re.compile(r"(Bucket|Table|Key|LogGroup|RestApi)$")

# Deletion/display order: buckets first
TYPE_ORDER = {
    ResourceType.BUCKET: 0,
    ResourceType.TABLE: 1,
    ResourceType.KEY: 2,
    ResourceType.LOGGROUP: 3,
    ResourceType.RESTAPI: 4,
    ResourceType.OTHER: 5,
}


@dataclass(frozen=True)
class CloudResource:
    """A resource exposed through a stack output.

    Attributes:
        type: Resource kind
        logical_name: Output key (e.g. "ObjectsBucket")
        physical_id: Provider identifier (bucket name, table name, key id, ...)
    """

    type: ResourceType
    logical_name: str
    physical_id: str

    @property
    def is_bucket(self) -> bool:
        return self.type is ResourceType.BUCKET

    def describe(self) -> str:
        return f"{self.type.value} {self.logical_name}: {self.physical_id}"


def classify_output_key(output_key: str) -> Optional[ResourceType]:
    """Map an output key to a resource type by naming convention.

    Returns:
        ResourceType, or None if the output does not name a resource
    """
    match = OUTPUT_KEY_SUFFIX_REGEX.search(output_key)
    if not match:
        return None
    return ResourceType(match.group(1).lower())


def sort_by_type(resources: list[CloudResource]) -> list[CloudResource]:
    """Stable sort by resource type, buckets first."""
    return sorted(resources, key=lambda r: TYPE_ORDER[r.type])
