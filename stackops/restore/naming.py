"""Deterministic names for restored resources."""

from __future__ import annotations

import re
import secrets
import string
from typing import Callable

from ..models.resource import ResourceType

# Restoration generation suffix; absent means generation 0
RESTORED_RESOURCE_NAME_REGEX = re.compile(r"-r(\d+)$")

ALPHANUMERIC = string.ascii_lowercase + string.digits
RANDOM_TOKEN_LENGTH = 6


def random_alphanumeric_string(length: int) -> str:
    return "".join(secrets.choice(ALPHANUMERIC) for _ in range(length))


def get_restoration_generation(physical_id: str) -> int:
    match = RESTORED_RESOURCE_NAME_REGEX.search(physical_id)
    return int(match.group(1)) if match else 0


def derive_restored_resource_name(
    stack_name: str,
    resource_type: ResourceType,
    logical_name: str,
    physical_id: str,
    random_token: Callable[[int], str] = random_alphanumeric_string,
) -> str:
    """Name the restored copy of a resource.

    The name is "<stack>-<logical name minus type suffix>", lower-cased, with
    the restoration generation bumped: "-r1" for a first restore, "-r{N+1}" when
    the old id already ends in "-r{N}". Bucket names are globally unique, so
    buckets also get a random token before the generation suffix.

    Examples:
        tdl-blah1-ltd-dev, TABLE, EventsTable, tdl-blah1-ltd-dev-events-r1
            -> tdl-blah1-ltd-dev-events-r2
        tdl-blah1-ltd-dev, BUCKET, ObjectsBucket, tdl-blah1-ltd-dev-objects-x1y2z3
            -> tdl-blah1-ltd-dev-objects-<token>-r1
    """
    generation = get_restoration_generation(physical_id) + 1

    base_name = f"{stack_name}-{logical_name}".lower()
    if base_name.endswith(resource_type.value):
        base_name = base_name[: -len(resource_type.value)]
    base_name = base_name.rstrip("-")

    if resource_type is ResourceType.BUCKET:
        base_name = f"{base_name}-{random_token(RANDOM_TOKEN_LENGTH)}"

    return f"{base_name}-r{generation}"
