"""Tests for the reconciler transition table and plan ordering."""

from __future__ import annotations

import pytest

from ilios_enrol.sync.models import (
    EnrolmentStatus,
    MutationOp,
    RoleAssignment,
    RosterEntry,
    SyncTarget,
)
from ilios_enrol.sync.reconciler import (
    AccountState,
    MemberState,
    Reconciler,
    transition,
)

ACTIVE = EnrolmentStatus.ACTIVE
SUSPENDED = EnrolmentStatus.SUSPENDED

TARGET = SyncTarget(
    instance_id=1,
    roster_id=10,
    sync_type="cohort",
    remote_id=1,
    role_id=5,
)


def _entry(account_id, status=ACTIVE, instance_id=1):
    return RosterEntry(
        account_id=account_id,
        roster_id=10,
        instance_id=instance_id,
        status=status,
    )


def _role(account_id, role_id=5, instance_id=1):
    return RoleAssignment(
        account_id=account_id,
        role_id=role_id,
        context_id=10,
        instance_id=instance_id,
    )


def _ops(mutations):
    return [(m.op, m.bundled) for m in mutations]


# ---------------------------------------------------------------------------
# transition()
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "state, expected",
    [
        (
            AccountState(1, MemberState.DESIRED),
            [(MutationOp.ENROL, False)],
        ),
        (
            AccountState(1, MemberState.DESIRED, SUSPENDED),
            [(MutationOp.REACTIVATE, False), (MutationOp.ASSIGN_ROLE, False)],
        ),
        (
            AccountState(1, MemberState.DESIRED, SUSPENDED, has_role=True),
            [(MutationOp.REACTIVATE, False)],
        ),
        (
            AccountState(1, MemberState.DESIRED, ACTIVE),
            [(MutationOp.ASSIGN_ROLE, False)],
        ),
        (
            AccountState(1, MemberState.DESIRED, ACTIVE, has_role=True),
            [],
        ),
        (
            AccountState(1, MemberState.DISABLED, ACTIVE, has_role=True),
            [(MutationOp.SUSPEND, False), (MutationOp.UNASSIGN_ROLE, False)],
        ),
        (
            AccountState(1, MemberState.DISABLED, SUSPENDED, has_role=True),
            [(MutationOp.UNASSIGN_ROLE, False)],
        ),
        (
            AccountState(1, MemberState.DISABLED, SUSPENDED),
            [],
        ),
        (
            AccountState(1, MemberState.DISABLED),
            [],
        ),
        (
            AccountState(1, MemberState.ABSENT, ACTIVE, has_role=True),
            [(MutationOp.UNASSIGN_ROLE, True), (MutationOp.UNENROL, False)],
        ),
        (
            AccountState(1, MemberState.ABSENT, SUSPENDED),
            [(MutationOp.UNENROL, False)],
        ),
        (
            AccountState(
                1,
                MemberState.ABSENT,
                ACTIVE,
                has_role=True,
                stale_roles=(3,),
            ),
            [
                (MutationOp.UNASSIGN_ROLE, True),
                (MutationOp.UNASSIGN_ROLE, True),
                (MutationOp.UNENROL, False),
            ],
        ),
        (
            AccountState(1, MemberState.ABSENT, ACTIVE, stale_roles=(3,)),
            [(MutationOp.UNASSIGN_ROLE, True), (MutationOp.UNENROL, False)],
        ),
        (
            AccountState(1, MemberState.ABSENT, stale_roles=(3,)),
            [(MutationOp.UNASSIGN_ROLE, False)],
        ),
        (
            AccountState(
                1, MemberState.DESIRED, ACTIVE, has_role=True, stale_roles=(3,)
            ),
            [(MutationOp.UNASSIGN_ROLE, False)],
        ),
        (
            AccountState(1, MemberState.DISABLED, SUSPENDED, stale_roles=(3,)),
            [(MutationOp.UNASSIGN_ROLE, False)],
        ),
        (
            AccountState(1, MemberState.ABSENT, has_role=True),
            [(MutationOp.UNASSIGN_ROLE, False)],
        ),
    ],
)
def test_transition_table(state, expected):
    assert _ops(transition(state)) == expected


# ---------------------------------------------------------------------------
# Reconciler.plan()
# ---------------------------------------------------------------------------


class TestPlan:
    def test_cohort_scenario(self):
        """Enrolled 1-4, desired 2, 3, 5, disabled 4."""
        plan = Reconciler().plan(
            TARGET,
            desired={2, 3, 5},
            disabled={4},
            enrolments=[_entry(a) for a in (1, 2, 3, 4)],
            role_assignments=[_role(a) for a in (1, 2, 3, 4)],
        )

        assert [(m.op, m.account_id) for m in plan.mutations] == [
            (MutationOp.ENROL, 5),
            (MutationOp.SUSPEND, 4),
            (MutationOp.UNASSIGN_ROLE, 4),
            (MutationOp.UNASSIGN_ROLE, 1),
            (MutationOp.UNENROL, 1),
        ]
        assert plan.for_account(2) == []
        assert plan.for_account(3) == []

    def test_enrol_phase_precedes_removals(self):
        plan = Reconciler().plan(
            TARGET,
            desired={9},
            disabled={2},
            enrolments=[_entry(1), _entry(2), _entry(9, SUSPENDED)],
            role_assignments=[_role(1), _role(2)],
        )

        ops = [m.op for m in plan.mutations]
        first_removal = min(
            i for i, op in enumerate(ops) if op.is_removal
        )
        assert all(not op.is_removal for op in ops[:first_removal])
        assert all(op.is_removal for op in ops[first_removal:])

    def test_idempotent_after_apply(self):
        reconciler = Reconciler()
        first = reconciler.plan(
            TARGET,
            desired={2, 3, 5},
            disabled={4},
            enrolments=[_entry(a) for a in (1, 2, 3, 4)],
            role_assignments=[_role(a) for a in (1, 2, 3, 4)],
        )
        assert not first.is_empty

        second = reconciler.plan(
            TARGET,
            desired={2, 3, 5},
            disabled={4},
            enrolments=[
                _entry(2),
                _entry(3),
                _entry(4, SUSPENDED),
                _entry(5),
            ],
            role_assignments=[_role(2), _role(3), _role(5)],
        )
        assert second.is_empty

    def test_other_instances_ignored(self):
        plan = Reconciler().plan(
            TARGET,
            desired=set(),
            disabled=set(),
            enrolments=[_entry(1, instance_id=2)],
            role_assignments=[_role(1, instance_id=2)],
        )
        assert plan.is_empty

    def test_changed_role_unassigns_old_role(self):
        """Target role moved from 3 to 5; 1 is gone, 2 stays."""
        plan = Reconciler().plan(
            TARGET,
            desired={2},
            disabled=set(),
            enrolments=[_entry(1), _entry(2)],
            role_assignments=[_role(1, role_id=3), _role(2, role_id=3)],
        )

        assert [
            (m.op, m.account_id, m.role_id, m.bundled)
            for m in plan.mutations
        ] == [
            (MutationOp.ASSIGN_ROLE, 2, None, False),
            (MutationOp.UNASSIGN_ROLE, 2, 3, False),
            (MutationOp.UNASSIGN_ROLE, 1, 3, True),
            (MutationOp.UNENROL, 1, None, False),
        ]


class TestClassify:
    def test_states(self):
        states = Reconciler().classify(
            TARGET,
            desired={3, 7},
            disabled={3, 4},
            enrolments=[_entry(1), _entry(4, SUSPENDED)],
            role_assignments=[_role(1), _role(6)],
        )

        assert [s.account_id for s in states] == [1, 3, 4, 6, 7]
        by_id = {s.account_id: s for s in states}
        assert by_id[3].membership is MemberState.DESIRED
        assert by_id[4].membership is MemberState.DISABLED
        assert by_id[4].status is SUSPENDED
        assert by_id[1].membership is MemberState.ABSENT
        assert by_id[1].has_role
        assert by_id[6].enrolled is False
        assert by_id[7].enrolled is False
