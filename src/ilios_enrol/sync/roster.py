"""Roster collaborator contract.

The engine never touches enrolment storage directly: it reads roster
state and requests mutations through a ``RosterGateway``.
``InMemoryRoster`` is a complete implementation backed by dicts, used
for previews and tests.
"""

from __future__ import annotations

from typing import Protocol

from .models import (
    EnrolmentRef,
    EnrolmentStatus,
    RoleAssignment,
    RosterEntry,
)


class RosterGateway(Protocol):
    """Operations the sync driver needs from the local roster."""

    def get_enrolments(self, instance_id: int) -> list[RosterEntry]:
        """Enrolments created through sync instance *instance_id*."""
        ...  # pragma: no cover

    def get_role_assignments(
        self, instance_id: int
    ) -> list[RoleAssignment]:
        """Role assignments owned by sync instance *instance_id*."""
        ...  # pragma: no cover

    def role_shortname(self, role_id: int) -> str:
        ...  # pragma: no cover

    def enrol(
        self,
        roster_id: int,
        account_id: int,
        role_id: int,
        *,
        instance_id: int,
    ) -> None:
        """Create an active enrolment and assign *role_id*."""
        ...  # pragma: no cover

    def set_status(
        self, ref: EnrolmentRef, status: EnrolmentStatus
    ) -> None: ...  # pragma: no cover

    def unenrol(self, ref: EnrolmentRef) -> None:
        """Remove the enrolment and every role assignment it owns."""
        ...  # pragma: no cover

    def assign_role(
        self,
        account_id: int,
        role_id: int,
        context_id: int,
        *,
        instance_id: int,
    ) -> None: ...  # pragma: no cover

    def unassign_role(
        self,
        account_id: int,
        role_id: int,
        context_id: int,
        *,
        instance_id: int,
    ) -> None: ...  # pragma: no cover


class InMemoryRoster:
    """Dict-backed ``RosterGateway``.

    Args:
        roles: Optional ``{role_id: shortname}`` lookup.
    """

    def __init__(self, roles: dict[int, str] | None = None) -> None:
        self.roles: dict[int, str] = dict(roles or {})
        self.enrolments: dict[EnrolmentRef, RosterEntry] = {}
        self.role_assignments: set[RoleAssignment] = set()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_enrolments(self, instance_id: int) -> list[RosterEntry]:
        return sorted(
            (
                e
                for e in self.enrolments.values()
                if e.instance_id == instance_id
            ),
            key=lambda e: e.account_id,
        )

    def get_role_assignments(
        self, instance_id: int
    ) -> list[RoleAssignment]:
        return sorted(
            (
                ra
                for ra in self.role_assignments
                if ra.instance_id == instance_id
            ),
            key=lambda ra: (ra.account_id, ra.role_id),
        )

    def role_shortname(self, role_id: int) -> str:
        return self.roles.get(role_id, str(role_id))

    def get_entry(
        self, instance_id: int, account_id: int
    ) -> RosterEntry | None:
        return self.enrolments.get(
            EnrolmentRef(instance_id=instance_id, account_id=account_id)
        )

    def has_role(
        self, account_id: int, role_id: int, instance_id: int
    ) -> bool:
        return any(
            ra.account_id == account_id
            and ra.role_id == role_id
            and ra.instance_id == instance_id
            for ra in self.role_assignments
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def enrol(
        self,
        roster_id: int,
        account_id: int,
        role_id: int,
        *,
        instance_id: int,
        status: EnrolmentStatus = EnrolmentStatus.ACTIVE,
    ) -> None:
        entry = RosterEntry(
            account_id=account_id,
            roster_id=roster_id,
            instance_id=instance_id,
            status=status,
        )
        self.enrolments[entry.ref] = entry
        self.assign_role(
            account_id, role_id, roster_id, instance_id=instance_id
        )

    def set_status(
        self, ref: EnrolmentRef, status: EnrolmentStatus
    ) -> None:
        entry = self._require(ref)
        self.enrolments[ref] = entry.model_copy(update={"status": status})

    def unenrol(self, ref: EnrolmentRef) -> None:
        self._require(ref)
        del self.enrolments[ref]
        self.role_assignments = {
            ra
            for ra in self.role_assignments
            if not (
                ra.account_id == ref.account_id
                and ra.instance_id == ref.instance_id
            )
        }

    def assign_role(
        self,
        account_id: int,
        role_id: int,
        context_id: int,
        *,
        instance_id: int,
    ) -> None:
        self.role_assignments.add(
            RoleAssignment(
                account_id=account_id,
                role_id=role_id,
                context_id=context_id,
                instance_id=instance_id,
            )
        )

    def unassign_role(
        self,
        account_id: int,
        role_id: int,
        context_id: int,
        *,
        instance_id: int,
    ) -> None:
        self.role_assignments.discard(
            RoleAssignment(
                account_id=account_id,
                role_id=role_id,
                context_id=context_id,
                instance_id=instance_id,
            )
        )

    def _require(self, ref: EnrolmentRef) -> RosterEntry:
        entry = self.enrolments.get(ref)
        if entry is None:
            raise KeyError(
                f"No enrolment for userid {ref.account_id} "
                f"through sync instance {ref.instance_id}"
            )
        return entry
