"""Restore plan model."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .resource import CloudResource


@dataclass(frozen=True)
class ResourceRestore:
    """One resource to restore: source physical id -> new physical id."""

    source: CloudResource
    dest_name: str

    @property
    def source_name(self) -> str:
        return self.source.physical_id


@dataclass
class RestorePlan:
    """Per-invocation restore state.

    old_to_new maps every old physical id to its restored name. Every derived
    parameter equal to an old id must be rewritten through this mapping.

    Attributes:
        source_stack_name: Name of the stack being restored
        point_in_time: ISO-8601 timestamp
        buckets: Bucket restores
        tables: Table restores
        streams: New stream ARN per restored table name (write-once per table)
    """

    source_stack_name: str
    point_in_time: str
    buckets: list[ResourceRestore] = field(default_factory=list)
    tables: list[ResourceRestore] = field(default_factory=list)
    streams: dict[str, Optional[str]] = field(default_factory=dict)

    @property
    def old_to_new(self) -> dict[str, str]:
        return {r.source_name: r.dest_name for r in self.tables + self.buckets}

    @property
    def all_restores(self) -> list[ResourceRestore]:
        return self.tables + self.buckets
