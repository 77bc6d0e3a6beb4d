"""Release version models."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Optional

RELEASE_CANDIDATE_REGEX = re.compile(r"-rc\.\d+$")
TRANSITION_REGEX = re.compile(r"-trans")


@dataclass(frozen=True)
class VersionInfo:
    """A release as reported by the release catalog.

    Versions are totally ordered by sortable_tag (lexicographic). Ties keep
    the catalog's arrival order, so always sort with a stable sort.
    """

    tag: str
    sortable_tag: str
    template_url: Optional[str] = None

    @property
    def is_release_candidate(self) -> bool:
        return is_release_candidate(self.tag)

    @property
    def is_transition(self) -> bool:
        return is_transition(self.tag)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "VersionInfo":
        return cls(
            tag=raw["tag"],
            sortable_tag=raw.get("sortableTag") or raw.get("sortable_tag") or "",
            template_url=raw.get("templateUrl") or raw.get("template_url"),
        )


@dataclass(frozen=True)
class UpdateInfo:
    """Release metadata returned for a specific tag.

    Attributes:
        update: Raw release payload (contains templateUrl, tag, ...)
        up_to_date: True if the stack already runs this release
    """

    update: dict[str, Any]
    up_to_date: bool

    @property
    def template_url(self) -> Optional[str]:
        return self.update.get("templateUrl") or self.update.get("template_url")

    @property
    def tag(self) -> Optional[str]:
        return self.update.get("tag")


@dataclass
class UpdatePlan:
    """Per-invocation update state. Discarded when the invocation ends.

    Attributes:
        current_version: Version the stack runs now
        candidates: Versions offered to the operator, in display order
        target_tag: Chosen target (None when there was nothing to choose)
        requires_transition: Transition release to apply before the target
    """

    current_version: VersionInfo
    candidates: list[VersionInfo]
    target_tag: Optional[str] = None
    requires_transition: Optional[VersionInfo] = None


@dataclass
class UpdateResult:
    """Outcome of an update or rollback.

    Attributes:
        from_version: Version the stack ran before the invocation
        to_tag: Target tag (None when there was nothing to update to)
        applied: True if the stack was advanced
        up_to_date: True if the catalog reported the stack already on to_tag
        prerequisites: Results of transition releases applied first
    """

    from_version: VersionInfo
    to_tag: Optional[str]
    applied: bool
    up_to_date: bool = False
    prerequisites: list["UpdateResult"] = field(default_factory=list)


def is_release_candidate(tag: str) -> bool:
    return bool(RELEASE_CANDIDATE_REGEX.search(tag))


def is_transition(tag: str) -> bool:
    return bool(TRANSITION_REGEX.search(tag))


def sort_versions(versions: list[VersionInfo]) -> list[VersionInfo]:
    """Sort ascending by sortable_tag, keeping arrival order for ties."""
    return sorted(versions, key=lambda v: v.sortable_tag)
