"""Version update/rollback engine.

One control loop drives the stack through these states:

    ResolveCurrentVersion -> LoadCandidates -> SelectTarget
        -> ResolvePrerequisite -> FetchRelease -> Validate -> Apply -> Done

ResolvePrerequisite re-enters the loop for a transition release before the
original target is applied.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from ..aws.apigateway import RestApiClient
from ..aws.cloudformation import StackClient
from ..errors import InvalidInput, NotFound, ServerError
from ..models.options import UpdateOptions
from ..models.stack import StackParameter
from ..models.version import UpdateInfo, UpdatePlan, UpdateResult, VersionInfo, sort_versions
from ..prompts import Prompter
from ..stack.parameters import derive_parameters_from_stack, lock_immutable_parameters, merge_parameters
from .catalog import ReleaseCatalog

module_logger = logging.getLogger(__name__)

# The update protocol changed at this release; older stacks must be updated manually once
MIN_SUPPORTED_SORTABLE_TAG = "01.13.0a"

MAX_PREREQUISITE_DEPTH = 8

DEFAULT_FETCH_ATTEMPTS = 10
DEFAULT_FETCH_MIN_WAIT = 5.0
DEFAULT_FETCH_MAX_WAIT = 10.0


def filter_update_candidates(
    candidates: list[VersionInfo],
    show_release_candidates: bool = False,
) -> list[VersionInfo]:
    """Sort ascending and drop release candidates unless asked for."""
    ordered = sort_versions(candidates)
    if show_release_candidates:
        return ordered
    return [v for v in ordered if not v.is_release_candidate]


def filter_rollback_candidates(
    previous: list[VersionInfo],
    current: VersionInfo,
    show_release_candidates: bool = False,
) -> list[VersionInfo]:
    """Versions strictly older than current, newest first."""
    candidates = filter_update_candidates(previous, show_release_candidates)
    older = [v for v in candidates if v.sortable_tag < current.sortable_tag]
    return list(reversed(older))


def find_transition(
    candidates: list[VersionInfo],
    current: VersionInfo,
    target: VersionInfo,
) -> Optional[VersionInfo]:
    """Find the newest transition release between current and target (both exclusive).

    Transition releases are searched regardless of the release-candidate filter.
    """
    transitions = [
        v
        for v in sort_versions(candidates)
        if v.is_transition and current.sortable_tag < v.sortable_tag < target.sortable_tag
    ]
    return transitions[-1] if transitions else None

UPDATE_SCOPES = ("minor", "patch")


def get_release_line(version: VersionInfo, scope: str) -> list[str]:
    """Leading sortable_tag segments a scoped update must keep (major, or major.minor)."""
    segments = version.sortable_tag.split(".")
    return segments[:1] if scope == "minor" else segments[:2]


def select_latest(
    candidates: list[VersionInfo],
    current: VersionInfo,
    scope: Optional[str] = None,
) -> Optional[VersionInfo]:
    """Pick the newest candidate newer than current.

    Args:
        candidates: Update candidates
        current: The stack's current version
        scope: None, "minor" (same major version) or "patch" (same minor version)

    Raises:
        InvalidInput: For an unknown scope
    """
    if scope is not None and scope not in UPDATE_SCOPES:
        raise InvalidInput(f"unknown update scope {scope!r}, expected one of: {', '.join(UPDATE_SCOPES)}")

    newer = [v for v in sort_versions(candidates) if v.sortable_tag > current.sortable_tag]
    if scope is not None:
        line = get_release_line(current, scope)
        newer = [v for v in newer if get_release_line(v, scope) == line]
    return newer[-1] if newer else None


class UpdateEngine:
    """Moves a stack to a newer release, or rolls it back to an older one.

    Attributes:
        catalog: Release catalog for the stack
        stacks: CloudFormation wrapper
        prompter: Confirmation channel
        rest_apis: API Gateway wrapper used while deriving parameters (optional)
        min_supported_sortable_tag: Oldest version this engine can update from
        max_fetch_attempts: Release fetch attempts before giving up
        fetch_min_wait: First backoff interval in seconds
        fetch_max_wait: Backoff cap in seconds
        wait_timeout: Seconds to wait for the stack update (optional)
    """

    def __init__(
        self,
        catalog: ReleaseCatalog,
        stacks: StackClient,
        prompter: Prompter,
        rest_apis: Optional[RestApiClient] = None,
        min_supported_sortable_tag: str = MIN_SUPPORTED_SORTABLE_TAG,
        max_fetch_attempts: int = DEFAULT_FETCH_ATTEMPTS,
        fetch_min_wait: float = DEFAULT_FETCH_MIN_WAIT,
        fetch_max_wait: float = DEFAULT_FETCH_MAX_WAIT,
        wait_timeout: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.catalog = catalog
        self.stacks = stacks
        self.prompter = prompter
        self.rest_apis = rest_apis
        self.min_supported_sortable_tag = min_supported_sortable_tag
        self.max_fetch_attempts = max_fetch_attempts
        self.fetch_min_wait = fetch_min_wait
        self.fetch_max_wait = fetch_max_wait
        self.wait_timeout = wait_timeout
        self._sleep = sleep
        self.logger = logger or module_logger

    # Read-only catalog queries

    def get_current_version(self) -> VersionInfo:
        """Resolve the stack's current version.

        Raises:
            NotFound: If the stack reports no version
            InvalidInput: If the version predates the supported update protocol
        """
        current = self.catalog.get_current_version()
        if not current.sortable_tag:
            raise NotFound("current version of stack")
        if current.sortable_tag < self.min_supported_sortable_tag:
            raise InvalidInput(
                f"your stack runs {current.tag}, which is too old to update this way. "
                f"Update it manually to {self.min_supported_sortable_tag} or later first"
            )
        return current

    def list_updates(self, provider: Optional[str] = None, show_release_candidates: bool = False) -> list[VersionInfo]:
        return filter_update_candidates(self.catalog.list_available_updates(provider), show_release_candidates)

    def list_previous_versions(self) -> list[VersionInfo]:
        return sort_versions(self.catalog.list_previous_versions())

    # State machine

    def run(self, options: UpdateOptions) -> UpdateResult:
        """Update or roll back the stack.

        Returns:
            UpdateResult describing what happened

        Raises:
            UserAborted: If the operator declines a confirmation
            InvalidInput: For bad options or a malformed prerequisite chain
            StackBusy: If the stack is already being updated
            ServerError: If the update fails or times out
        """
        options.validate()
        return self._run(options, depth=0)

    def plan_update(self, options: UpdateOptions) -> UpdatePlan:
        """Resolve the current version and pick the target.

        The operator is asked to choose or confirm a target when options.tag
        is not set. Nothing is applied.
        """
        current = self.get_current_version()
        all_candidates, candidates = self._load_candidates(options, current)

        plan = UpdatePlan(current_version=current, candidates=candidates)
        plan.target_tag = self._select_target(options, candidates)
        if plan.target_tag and not options.rollback and not options.force:
            plan.requires_transition = self._find_prerequisite(all_candidates, current, plan.target_tag)
        return plan

    def _run(self, options: UpdateOptions, depth: int) -> UpdateResult:
        plan = self.plan_update(options)
        current = plan.current_version
        target_tag = plan.target_tag
        if target_tag is None:
            return UpdateResult(from_version=current, to_tag=None, applied=False)

        prerequisites = []
        if plan.requires_transition is not None:
            prerequisites.append(self._apply_prerequisite(options, plan, depth))

        info = self.fetch_release(target_tag, provider=options.provider)
        will_update = options.force or not info.up_to_date
        if not will_update:
            self.logger.info(f"Stack {options.stack_name} is already up to date with {target_tag}")
            return UpdateResult(
                from_version=current,
                to_tag=target_tag,
                applied=False,
                up_to_date=True,
                prerequisites=prerequisites,
            )

        applied = self.apply(options.stack_name, info, overrides=options.parameter_overrides)
        return UpdateResult(
            from_version=current,
            to_tag=target_tag,
            applied=applied,
            up_to_date=not applied,
            prerequisites=prerequisites,
        )

    def _load_candidates(
        self,
        options: UpdateOptions,
        current: VersionInfo,
    ) -> tuple[list[VersionInfo], list[VersionInfo]]:
        """Return (all candidates, candidates offered to the operator)."""
        if options.rollback:
            previous = self.catalog.list_previous_versions()
            return sort_versions(previous), filter_rollback_candidates(
                previous, current, options.show_release_candidates
            )

        updates = self.catalog.list_available_updates(options.provider)
        return sort_versions(updates), filter_update_candidates(updates, options.show_release_candidates)

    def _select_target(self, options: UpdateOptions, candidates: list[VersionInfo]) -> Optional[str]:
        if options.tag:
            return options.tag

        if not candidates:
            self.logger.info("No previous versions to roll back to" if options.rollback else "No updates available")
            return None

        verb = "Roll back" if options.rollback else "Update"
        if len(candidates) == 1:
            tag = candidates[0].tag
            self.prompter.confirm_or_abort(f"{verb} to version {tag}?")
            return tag

        return self.prompter.choose(
            f"Choose a version to {verb.lower()} to",
            [v.tag for v in candidates],
        )

    def _find_prerequisite(
        self,
        all_candidates: list[VersionInfo],
        current: VersionInfo,
        target_tag: str,
    ) -> Optional[VersionInfo]:
        target = next((v for v in all_candidates if v.tag == target_tag), None)
        if target is None:
            self.logger.debug(f"{target_tag} is not in the update list, skipping transition check")
            return None
        return find_transition(all_candidates, current, target)

    def _apply_prerequisite(self, options: UpdateOptions, plan: UpdatePlan, depth: int) -> UpdateResult:
        transition = plan.requires_transition
        # Nested runs target strictly older transitions; depth bounds the chain
        if depth + 1 > MAX_PREREQUISITE_DEPTH:
            raise InvalidInput(f"too many chained transition releases before {plan.target_tag}")

        self.logger.warning(
            f"Version {plan.target_tag} requires transition release {transition.tag} to be applied first"
        )
        self.prompter.confirm_or_abort(f"Update to transition release {transition.tag} first?")

        nested = UpdateOptions(
            stack_name=options.stack_name,
            tag=transition.tag,
            provider=options.provider,
            show_release_candidates=options.show_release_candidates,
            parameter_overrides=options.parameter_overrides,
        )
        result = self._run(nested, depth=depth + 1)
        self.logger.info(f"Transition release {transition.tag} applied, continuing to {plan.target_tag}")
        return result

    # Shortcuts

    def update_to_latest(
        self,
        stack_name: str,
        scope: Optional[str] = None,
        show_release_candidates: bool = False,
        parameter_overrides: Optional[list[StackParameter]] = None,
    ) -> UpdateResult:
        """Update straight to the newest release within scope.

        Args:
            stack_name: Stack to update
            scope: None for any newer release, "minor" to stay on the current
                major version, "patch" to stay on the current minor version
            show_release_candidates: Consider -rc.N releases too
            parameter_overrides: Values applied on top of the derived parameters
        """
        current = self.get_current_version()
        candidates = self.list_updates(show_release_candidates=show_release_candidates)
        latest = select_latest(candidates, current, scope)
        if latest is None:
            self.logger.info(f"Stack {stack_name} is on the latest {scope or 'major'} version ({current.tag})")
            return UpdateResult(from_version=current, to_tag=None, applied=False, up_to_date=True)

        self.prompter.confirm_or_abort(f"Update from {current.tag} to latest version {latest.tag}?")
        return self.run(
            UpdateOptions(
                stack_name=stack_name,
                tag=latest.tag,
                show_release_candidates=show_release_candidates,
                parameter_overrides=list(parameter_overrides or []),
            )
        )

    def update_manually(
        self,
        stack_name: str,
        template_url: Optional[str] = None,
        parameter_overrides: Optional[list[StackParameter]] = None,
    ) -> bool:
        """Apply a template (or just new parameters) outside the release catalog.

        Args:
            stack_name: Stack to update
            template_url: Template to apply (default: keep the current template)
            parameter_overrides: Values applied on top of the derived parameters

        Returns:
            True if the stack was updated, False if there was nothing to change
        """
        if not stack_name:
            raise InvalidInput('expected "stack_name"')
        if not template_url and not parameter_overrides:
            raise InvalidInput("expected a template URL, stack parameters, or both")

        target = template_url or "its current template"
        self.prompter.confirm_or_abort(f"Update {stack_name} to {target}?")
        return self.apply_template(stack_name, template_url, overrides=parameter_overrides)

    def fetch_release(self, tag: str, provider: Optional[str] = None) -> UpdateInfo:
        """Fetch release metadata, requesting the release once if it is not found.

        Retries with exponential backoff between fetch_min_wait and
        fetch_max_wait, at most max_fetch_attempts times.

        Raises:
            InvalidInput: Immediately, if the catalog rejects the tag
            NotFound or ServerError: If every attempt failed
        """
        requested = False
        wait = self.fetch_min_wait
        last_error: Exception = NotFound(f"release {tag}")

        for attempt in range(1, self.max_fetch_attempts + 1):
            try:
                return self.catalog.get_update_info(tag)
            except InvalidInput:
                raise
            except NotFound as e:
                last_error = e
                if not requested:
                    requested = True
                    self.logger.info(f"Release {tag} is not available yet, requesting it")
                    self.catalog.request_update(tag, provider=provider)
            except ServerError as e:
                last_error = e

            if attempt == self.max_fetch_attempts:
                break

            self.logger.debug(
                f"Release {tag} not ready, retrying in {wait}s (attempt {attempt}/{self.max_fetch_attempts})"
            )
            self._sleep(wait)
            wait = min(wait * 2, self.fetch_max_wait)

        raise last_error

    def apply(
        self,
        stack_name: str,
        info: UpdateInfo,
        overrides: Optional[list[StackParameter]] = None,
    ) -> bool:
        """Submit the release's template and wait for the update to finish.

        Returns:
            True if the stack was updated, False if there was nothing to change

        Raises:
            ServerError: If the release has no template, or the update failed
        """
        template_url = info.template_url
        if not template_url:
            raise ServerError(f"release {info.tag} has no template URL")
        return self.apply_template(stack_name, template_url, overrides=overrides)

    def apply_template(
        self,
        stack_name: str,
        template_url: Optional[str],
        overrides: Optional[list[StackParameter]] = None,
    ) -> bool:
        """Update the stack with re-derived parameters.

        Overrides win over derived values; immutable parameters stay pinned
        to what the stack already has.
        """
        parameters = derive_parameters_from_stack(self.stacks, stack_name, rest_apis=self.rest_apis)
        if overrides:
            parameters = merge_parameters(parameters, overrides)
        parameters = lock_immutable_parameters(parameters)

        operation = self.stacks.update_stack(stack_name, template_url, parameters)
        if operation is None:
            return False

        self.logger.info(f"Applying update to {stack_name}, this can take a while")
        with ThreadPoolExecutor(max_workers=1) as executor:
            operation.submit(executor, timeout=self.wait_timeout).result()

        self.logger.info(f"Stack {stack_name} updated")
        return True
