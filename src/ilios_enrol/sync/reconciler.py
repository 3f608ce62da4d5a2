"""Three-way reconciliation of desired membership against a roster.

Every local account that is desired, disabled in Ilios, enrolled
through the sync instance, or holding a role from it is classified
into an ``AccountState``.  ``transition()`` maps one state to the
mutations that bring the roster in line:

====================  ===========================  =========================
membership            roster state                 mutations
====================  ===========================  =========================
DESIRED               not enrolled                 enrol (role included)
DESIRED               suspended                    reactivate, assign role*
DESIRED               active, no role              assign role
DESIRED               active, has role             --
DISABLED              active / suspended           suspend*, unassign role*
ABSENT                enrolled                     unassign role*, unenrol
ABSENT                not enrolled, has role       unassign role
====================  ===========================  =========================

``*`` only when needed.  Roles held through the instance at any role id
other than the target's are stale (the target's role was changed) and
are unassigned in every state.  A plan lists all enrol-phase mutations
before any removal.  Applying a plan and planning again yields an empty
plan.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from .models import (
    EnrolmentStatus,
    Mutation,
    MutationOp,
    MutationPlan,
    RoleAssignment,
    RosterEntry,
    SyncTarget,
)

logger = logging.getLogger(__name__)


class MemberState(str, Enum):
    """Where an account stands with respect to the Ilios data."""

    DESIRED = "desired"
    DISABLED = "disabled"
    ABSENT = "absent"


@dataclass(frozen=True)
class AccountState:
    """Everything the transition table needs about one account.

    Attributes:
        account_id: Local account id.
        membership: Classification against the Ilios data.
        status: Enrolment status, ``None`` when not enrolled.
        has_role: Holds the target role from this instance.
        stale_roles: Other role ids held from this instance, ascending.
    """

    account_id: int
    membership: MemberState
    status: EnrolmentStatus | None = None
    has_role: bool = False
    stale_roles: tuple[int, ...] = ()

    @property
    def enrolled(self) -> bool:
        return self.status is not None


def transition(state: AccountState) -> list[Mutation]:
    """Return the mutations for one account, in application order."""
    account_id = state.account_id

    def mutation(
        op: MutationOp, bundled: bool = False, role_id: int | None = None
    ) -> Mutation:
        return Mutation(
            op=op, account_id=account_id, bundled=bundled, role_id=role_id
        )

    def unassign_stale(bundled: bool = False) -> list[Mutation]:
        return [
            mutation(MutationOp.UNASSIGN_ROLE, bundled, role_id)
            for role_id in state.stale_roles
        ]

    match state.membership:
        case MemberState.DESIRED:
            if not state.enrolled:
                return [mutation(MutationOp.ENROL), *unassign_stale()]
            ops = []
            if state.status is EnrolmentStatus.SUSPENDED:
                ops.append(mutation(MutationOp.REACTIVATE))
            if not state.has_role:
                ops.append(mutation(MutationOp.ASSIGN_ROLE))
            return ops + unassign_stale()

        case MemberState.DISABLED:
            ops = []
            if state.status is EnrolmentStatus.ACTIVE:
                ops.append(mutation(MutationOp.SUSPEND))
            if state.has_role:
                ops.append(mutation(MutationOp.UNASSIGN_ROLE))
            return ops + unassign_stale()

        case MemberState.ABSENT:
            if not state.enrolled:
                ops = []
                if state.has_role:
                    ops.append(mutation(MutationOp.UNASSIGN_ROLE))
                return ops + unassign_stale()
            ops = []
            if state.has_role:
                ops.append(mutation(MutationOp.UNASSIGN_ROLE, bundled=True))
            ops.extend(unassign_stale(bundled=True))
            ops.append(mutation(MutationOp.UNENROL))
            return ops

    raise ValueError(f"Unhandled membership: {state.membership}")


class Reconciler:
    """Build the mutation plan for one sync target."""

    def classify(
        self,
        target: SyncTarget,
        desired: set[int],
        disabled: set[int],
        enrolments: Iterable[RosterEntry],
        role_assignments: Iterable[RoleAssignment],
    ) -> list[AccountState]:
        """Build one ``AccountState`` per relevant account, sorted by id.

        Only enrolments and role assignments belonging to the target's
        sync instance are considered.  An account in both *desired* and
        *disabled* is treated as desired.
        """
        status_by_account = {
            e.account_id: e.status
            for e in enrolments
            if e.instance_id == target.instance_id
        }
        with_role: set[int] = set()
        stale: dict[int, set[int]] = {}
        for ra in role_assignments:
            if ra.instance_id != target.instance_id:
                continue
            if ra.role_id == target.role_id:
                with_role.add(ra.account_id)
            else:
                stale.setdefault(ra.account_id, set()).add(ra.role_id)

        accounts = desired | disabled | with_role | set(stale)
        accounts |= set(status_by_account)
        states = []
        for account_id in sorted(accounts):
            if account_id in desired:
                membership = MemberState.DESIRED
            elif account_id in disabled:
                membership = MemberState.DISABLED
            else:
                membership = MemberState.ABSENT
            states.append(
                AccountState(
                    account_id=account_id,
                    membership=membership,
                    status=status_by_account.get(account_id),
                    has_role=account_id in with_role,
                    stale_roles=tuple(sorted(stale.get(account_id, ()))),
                )
            )
        return states

    def plan(
        self,
        target: SyncTarget,
        desired: set[int],
        disabled: set[int],
        enrolments: Iterable[RosterEntry],
        role_assignments: Iterable[RoleAssignment],
    ) -> MutationPlan:
        """Compute the ordered mutations for *target*.

        Order: enrol-phase mutations of desired accounts, then removals
        of desired, disabled and absent accounts in that order; accounts
        ascend by id within each group.
        """
        states = self.classify(
            target, desired, disabled, enrolments, role_assignments
        )
        groups: dict[MemberState, list[Mutation]] = {
            MemberState.DESIRED: [],
            MemberState.DISABLED: [],
            MemberState.ABSENT: [],
        }
        for state in states:
            groups[state.membership].extend(transition(state))

        ordered = [
            *groups[MemberState.DESIRED],
            *groups[MemberState.DISABLED],
            *groups[MemberState.ABSENT],
        ]
        mutations = [m for m in ordered if not m.op.is_removal] + [
            m for m in ordered if m.op.is_removal
        ]
        logger.debug(
            "Plan for Ilios Sync ID %s: %d mutations over %d accounts",
            target.instance_id,
            len(mutations),
            len(states),
        )
        return MutationPlan(
            instance_id=target.instance_id, mutations=mutations
        )
