"""Resolve a sync target to the set of Ilios user ids that qualify.

Cohorts are flat: their ``users`` list is the answer.  Learner groups
are walked depth-first through ``children``.  What a visited group
contributes depends on the role mode:

* **learners** -- the group's own ``users``, plus the ``learners`` of
  its offerings and ILM sessions; learner groups referenced by those
  offerings and sessions are expanded the same way.
* **instructors** -- the group's ``instructors`` and
  ``instructorGroups``, plus the instructors and instructor groups of
  its offerings and ILM sessions.  Instructor groups are resolved to
  their ``users``.

Every record fetched during one ``expand()`` call is memoised in a
``NodeCache`` keyed by ``(kind, id)``, so a record referenced from
several places is read once.  Offerings, ILM sessions and instructor
groups are read with one batch request per kind per visited group;
learner groups are read one at a time.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from typing import Protocol

from ..errors import NotFound
from .models import (
    LearnerGroup,
    RemoteRecord,
    ResourceKind,
    RoleMode,
    SyncTarget,
    SyncType,
    TeachingEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 32


class DirectoryClient(Protocol):
    """The subset of ``IliosClient`` the engine reads through."""

    def fetch(
        self, kind: ResourceKind, record_id: int
    ) -> RemoteRecord: ...  # pragma: no cover

    def fetch_batch(
        self, kind: ResourceKind, ids: Iterable[int]
    ) -> dict[int, RemoteRecord]: ...  # pragma: no cover


class NodeCache:
    """Memo of Ilios records fetched during one expansion.

    A record that does not exist is cached as ``None`` so it is not
    requested again.  The lock makes lookup-then-fetch atomic, so
    callers expanding siblings from several threads never fetch the
    same record twice.

    Args:
        client: Directory client used for cache misses.
    """

    def __init__(self, client: DirectoryClient) -> None:
        self._client = client
        self._records: dict[tuple[ResourceKind, int], RemoteRecord | None] = {}
        self._lock = threading.RLock()

    def __contains__(self, key: tuple[ResourceKind, int]) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)

    def get(
        self,
        kind: ResourceKind,
        record_id: int,
        *,
        entry_point: bool = False,
    ) -> RemoteRecord | None:
        """Return one record, fetching it on a miss.

        Args:
            kind: Resource kind.
            record_id: Ilios id.
            entry_point: Re-raise ``NotFound`` instead of returning
                ``None`` (the configured group itself is missing).

        Raises:
            NotFound: Only when *entry_point* is set.
            RemoteUnavailable: If the request fails.
        """
        key = (kind, record_id)
        with self._lock:
            if key in self._records:
                record = self._records[key]
                if record is None and entry_point:
                    raise NotFound(kind.value, record_id)
                return record
            try:
                record = self._client.fetch(kind, record_id)
            except NotFound:
                self._records[key] = None
                if entry_point:
                    raise
                logger.info(
                    "Ilios %s %s no longer exists, ignoring",
                    kind.value,
                    record_id,
                )
                return None
            self._records[key] = record
            return record

    def get_many(
        self, kind: ResourceKind, ids: Iterable[int]
    ) -> list[RemoteRecord]:
        """Return the existing records among *ids*, in id order.

        All cache misses are fetched with a single batch call.
        """
        wanted = sorted(set(ids))
        with self._lock:
            missing = [i for i in wanted if (kind, i) not in self._records]
            if missing:
                found = self._client.fetch_batch(kind, missing)
                for record_id in missing:
                    record = found.get(record_id)
                    if record is None:
                        logger.info(
                            "Ilios %s %s no longer exists, ignoring",
                            kind.value,
                            record_id,
                        )
                    self._records[(kind, record_id)] = record
            records = [self._records[(kind, i)] for i in wanted]
        return [r for r in records if r is not None]


class GroupExpander:
    """Compute the Ilios user ids that should hold a sync target's role.

    Args:
        client: Directory client (``IliosClient`` or a test double).
        max_depth: Levels of child groups followed below the entry
            group (the entry group is level 0); deeper groups are ignored.
    """

    def __init__(
        self,
        client: DirectoryClient,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self.client = client
        self.max_depth = max_depth

    def expand(self, target: SyncTarget) -> set[int]:
        """Return the deduplicated Ilios user ids for *target*.

        An empty set is a valid result.

        Raises:
            NotFound: If the target's cohort or learner group is gone.
            RemoteUnavailable: If the Ilios API cannot be read.
        """
        cache = NodeCache(self.client)
        root = cache.get(
            target.sync_type.resource_kind,
            target.remote_id,
            entry_point=True,
        )

        if target.sync_type is SyncType.COHORT:
            return set(root.users)

        users: set[int] = set()
        visited: set[int] = set()
        if target.role_mode is RoleMode.INSTRUCTORS:
            self._visit_instructors(cache, root, 0, visited, users)
        else:
            self._visit_learners(cache, root, 0, visited, users)
        logger.debug(
            "Expanded %s %s (%s): %d users from %d learner groups, "
            "%d records fetched",
            target.sync_type.value,
            target.remote_id,
            target.role_mode.value,
            len(users),
            len(visited),
            len(cache),
        )
        return users

    # ------------------------------------------------------------------
    # Learners
    # ------------------------------------------------------------------

    def _visit_learners(
        self,
        cache: NodeCache,
        group: LearnerGroup,
        depth: int,
        visited: set[int],
        users: set[int],
    ) -> None:
        if not self._enter(group, depth, visited):
            return

        users.update(group.users)

        linked: set[int] = set()
        for event in self._events(cache, group):
            users.update(event.learners)
            linked.update(event.learner_groups)

        for group_id in [*group.children, *sorted(linked)]:
            child = self._child(cache, group_id, visited)
            if child is not None:
                self._visit_learners(cache, child, depth + 1, visited, users)

    # ------------------------------------------------------------------
    # Instructors
    # ------------------------------------------------------------------

    def _visit_instructors(
        self,
        cache: NodeCache,
        group: LearnerGroup,
        depth: int,
        visited: set[int],
        users: set[int],
    ) -> None:
        if not self._enter(group, depth, visited):
            return

        users.update(group.instructors)
        instructor_groups = set(group.instructor_groups)
        for event in self._events(cache, group):
            users.update(event.instructors)
            instructor_groups.update(event.instructor_groups)

        for group_id in group.children:
            child = self._child(cache, group_id, visited)
            if child is not None:
                self._visit_instructors(
                    cache, child, depth + 1, visited, users
                )

        for instructor_group in cache.get_many(
            ResourceKind.INSTRUCTOR_GROUP, instructor_groups
        ):
            users.update(instructor_group.users)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _enter(
        self, group: LearnerGroup, depth: int, visited: set[int]
    ) -> bool:
        """Mark *group* visited; False if it was already or is too deep."""
        if group.id in visited:
            return False
        if depth > self.max_depth:
            logger.warning(
                "Learner group %s is more than %d levels below the entry "
                "group, ignoring",
                group.id,
                self.max_depth,
            )
            return False
        visited.add(group.id)
        return True

    @staticmethod
    def _events(
        cache: NodeCache, group: LearnerGroup
    ) -> list[TeachingEvent]:
        """Offerings then ILM sessions linked to *group*."""
        return [
            *cache.get_many(ResourceKind.OFFERING, group.offerings),
            *cache.get_many(ResourceKind.ILM_SESSION, group.ilm_sessions),
        ]

    @staticmethod
    def _child(
        cache: NodeCache, group_id: int, visited: set[int]
    ) -> LearnerGroup | None:
        if group_id in visited:
            return None
        return cache.get(ResourceKind.LEARNER_GROUP, group_id)
