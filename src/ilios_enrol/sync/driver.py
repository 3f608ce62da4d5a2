"""Sync driver: run the full reconciliation cycle for configured targets.

For every sync target the ``SyncDriver``:

1. Expands the Ilios cohort or learner group to a set of Ilios user ids.
2. Maps those ids to local accounts (enabled and disabled separately).
3. Reads the roster state owned by the sync instance.
4. Plans the mutations with the ``Reconciler``.
5. Applies the enrol phase, then the removal phase, writing one trace
   line per mutation and per phase boundary.

Error handling is per target and per account: an unreadable or missing
Ilios group aborts only its own target and leaves the roster untouched,
and a mutation rejected by the roster skips only the remaining
mutations of that account in the same phase.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from functools import partial

from ..errors import IliosEnrolError, MutationFailure
from .expander import DirectoryClient, GroupExpander
from .identity import AccountDirectory, DirectoryIdentityMapper, IdentityMapper
from .models import (
    EnrolmentRef,
    EnrolmentStatus,
    Mutation,
    MutationOp,
    MutationPlan,
    MutationResult,
    RoleMode,
    SyncReport,
    SyncTarget,
    TargetReport,
)
from .reconciler import Reconciler
from .roster import RosterGateway
from .trace import ProgressTrace

logger = logging.getLogger(__name__)

# One lock per roster, shared by every driver in the process.
_roster_locks: dict[int, threading.Lock] = {}
_roster_locks_guard = threading.Lock()


def roster_lock(roster_id: int) -> threading.Lock:
    """Return the process-wide lock serialising mutations of *roster_id*."""
    with _roster_locks_guard:
        lock = _roster_locks.get(roster_id)
        if lock is None:
            lock = _roster_locks[roster_id] = threading.Lock()
        return lock


class SyncDriver:
    """Reconcile course rosters against Ilios group membership.

    Args:
        client: Directory client (``IliosClient`` or a test double).
        roster: Roster collaborator that owns enrolments and roles.
        accounts: Local account lookup by campus id.
        trace: Progress trace receiving the operator-facing lines.
        expander: Group expander; defaults to one over *client*.
        mapper: Identity mapper; defaults to a
            ``DirectoryIdentityMapper`` over *client* and *accounts*.
        reconciler: Plan builder.
    """

    def __init__(
        self,
        client: DirectoryClient,
        roster: RosterGateway,
        accounts: AccountDirectory,
        *,
        trace: ProgressTrace | None = None,
        expander: GroupExpander | None = None,
        mapper: IdentityMapper | None = None,
        reconciler: Reconciler | None = None,
    ) -> None:
        self.client = client
        self.roster = roster
        self.trace = trace or ProgressTrace()
        self.expander = expander or GroupExpander(client)
        self.mapper = mapper or DirectoryIdentityMapper(client, accounts)
        self.reconciler = reconciler or Reconciler()

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def run(
        self,
        targets: Iterable[SyncTarget],
        roster_id: int | None = None,
        target_id: int | None = None,
        dry_run: bool = False,
    ) -> SyncReport:
        """Sync every selected target.

        Args:
            targets: Configured sync instances.
            roster_id: Only sync the targets of this course.
            target_id: Only sync this sync instance.
            dry_run: Plan and report without changing the roster.

        Returns:
            A ``SyncReport`` with one ``TargetReport`` per selected target.
        """
        started_at = datetime.now(timezone.utc).isoformat()
        reports: list[TargetReport] = []

        for target in targets:
            if roster_id is not None and target.roster_id != roster_id:
                continue
            if target_id is not None and target.instance_id != target_id:
                continue
            if not target.enabled:
                logger.debug(
                    "Skipping disabled Ilios Sync ID %s", target.instance_id
                )
                reports.append(
                    self._target_report(target, dry_run, skipped=True)
                )
                continue
            try:
                reports.append(self.sync_target(target, dry_run=dry_run))
            except Exception as exc:
                logger.error(
                    "Error syncing Ilios Sync ID %s: %s",
                    target.instance_id,
                    exc,
                )
                reports.append(
                    self._target_report(target, dry_run, error=str(exc))
                )

        report = SyncReport(
            dry_run=dry_run,
            targets=reports,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
        )
        logger.info(
            "Ilios sync finished: %d targets, %d errors",
            len(reports),
            report.error_count,
        )
        return report

    # ------------------------------------------------------------------
    # Per-target sync
    # ------------------------------------------------------------------

    def sync_target(
        self, target: SyncTarget, dry_run: bool = False
    ) -> TargetReport:
        """Reconcile the roster of one sync target.

        ``NotFound`` for the configured group and ``RemoteUnavailable``
        are recorded on the returned report; the roster is not touched.
        """
        members = (
            "instructors"
            if target.role_mode is RoleMode.INSTRUCTORS
            else "students"
        )
        self.trace.output(
            f"Enrolling {members} to Course ID {target.roster_id} "
            f"with Role ID {target.role_id} "
            f"through Ilios Sync ID {target.instance_id}."
        )

        try:
            remote_ids = self.expander.expand(target)
            mapping = self.mapper.map(remote_ids)
        except IliosEnrolError as exc:
            logger.error(
                "Ilios Sync ID %s aborted: %s", target.instance_id, exc
            )
            self.trace.output(
                f"Skipping Ilios Sync ID {target.instance_id}: {exc}"
            )
            return self._target_report(target, dry_run, error=str(exc))

        self.trace.output(f"{mapping.remote_users_found} Ilios users found.")
        for unmapped in mapping.unmapped:
            logger.info(
                "Ilios user %s (campus id %s) not synced: %s",
                unmapped.remote_id,
                unmapped.campus_id,
                unmapped.reason,
            )

        with roster_lock(target.roster_id):
            plan = self.reconciler.plan(
                target,
                mapping.desired,
                mapping.disabled,
                self.roster.get_enrolments(target.instance_id),
                self.roster.get_role_assignments(target.instance_id),
            )
            results = self._apply_plan(target, plan, dry_run)

        return self._target_report(
            target,
            dry_run,
            remote_users_found=mapping.remote_users_found,
            unmapped=mapping.unmapped,
            results=results,
            plan=plan,
        )

    def _apply_plan(
        self, target: SyncTarget, plan: MutationPlan, dry_run: bool
    ) -> list[MutationResult]:
        if dry_run:
            logger.info(
                "Dry run for Ilios Sync ID %s: roster left unchanged",
                target.instance_id,
            )

        enrolled = self._apply_phase(target, plan.enrol_phase, dry_run)
        self._phase_end("enrolling", target, enrolled)

        self.trace.output(
            f"Unenrolling users from Course ID {target.roster_id} "
            f"with Role ID {target.role_id} that no longer associate "
            f"with Ilios Sync ID {target.instance_id}."
        )
        removed = self._apply_phase(target, plan.removal_phase, dry_run)
        self._phase_end("unenrolling", target, removed)
        return [*enrolled, *removed]

    def _phase_end(
        self,
        phase: str,
        target: SyncTarget,
        results: list[MutationResult],
    ) -> None:
        failed = sum(1 for r in results if not r.success)
        self.trace.output(
            f"Finished {phase} for Ilios Sync ID {target.instance_id}: "
            f"{len(results) - failed} applied, {failed} failed."
        )

    def _apply_phase(
        self,
        target: SyncTarget,
        mutations: list[Mutation],
        dry_run: bool,
    ) -> list[MutationResult]:
        """Apply *mutations* in order, best effort per account."""
        results: list[MutationResult] = []
        failed_account: int | None = None

        for mutation in mutations:
            if mutation.account_id == failed_account:
                logger.debug(
                    "Skipping %s for userid %s after earlier failure",
                    mutation.op.value,
                    mutation.account_id,
                )
                continue
            try:
                self._apply(target, mutation, dry_run)
            except MutationFailure as exc:
                failed_account = mutation.account_id
                logger.error("%s", exc)
                self.trace.output(
                    f"failed to {exc.op.replace('_', ' ')}: "
                    f"userid {exc.account_id} ==> "
                    f"courseid {target.roster_id}: {exc.cause}"
                )
                results.append(
                    MutationResult(
                        op=mutation.op,
                        account_id=mutation.account_id,
                        success=False,
                        error=str(exc.cause),
                    )
                )
                continue
            results.append(
                MutationResult(
                    op=mutation.op,
                    account_id=mutation.account_id,
                    success=True,
                )
            )
        return results

    # ------------------------------------------------------------------
    # Single mutation
    # ------------------------------------------------------------------

    def _apply(
        self, target: SyncTarget, mutation: Mutation, dry_run: bool
    ) -> None:
        """Apply one mutation and write its trace line.

        Raises:
            MutationFailure: If the roster rejects the mutation.
        """
        account_id = mutation.account_id
        roster_id = target.roster_id
        ref = EnrolmentRef(
            instance_id=target.instance_id, account_id=account_id
        )
        roster = self.roster
        role_id = (
            target.role_id if mutation.role_id is None else mutation.role_id
        )

        match mutation.op:
            case MutationOp.ENROL:
                line = (
                    f"enrolling with {EnrolmentStatus.ACTIVE.value} status: "
                    f"userid {account_id} ==> courseid {roster_id}"
                )
                action = partial(
                    roster.enrol,
                    roster_id,
                    account_id,
                    target.role_id,
                    instance_id=target.instance_id,
                )
            case MutationOp.REACTIVATE:
                line = (
                    f"changing enrollment status to "
                    f"'{EnrolmentStatus.ACTIVE.value}' from 'suspended': "
                    f"userid {account_id} ==> courseid {roster_id}"
                )
                action = partial(
                    roster.set_status, ref, EnrolmentStatus.ACTIVE
                )
            case MutationOp.SUSPEND:
                line = (
                    f"Suspending enrollment for disabled Ilios user: "
                    f"userid  {account_id} ==> courseid {roster_id}."
                )
                action = partial(
                    roster.set_status, ref, EnrolmentStatus.SUSPENDED
                )
            case MutationOp.UNENROL:
                line = (
                    f"unenrolling: {account_id} ==> {roster_id} via Ilios "
                    f"{target.sync_type.value} {target.remote_id}"
                )
                action = partial(roster.unenrol, ref)
            case MutationOp.ASSIGN_ROLE:
                line = (
                    f"assigning role: {account_id} ==> {roster_id} as "
                    f"{roster.role_shortname(role_id)}"
                )
                action = partial(
                    roster.assign_role,
                    account_id,
                    role_id,
                    roster_id,
                    instance_id=target.instance_id,
                )
            case MutationOp.UNASSIGN_ROLE:
                line = (
                    f"unassigning role: {account_id} ==> {roster_id} as "
                    f"{roster.role_shortname(role_id)}"
                )
                action = partial(
                    roster.unassign_role,
                    account_id,
                    role_id,
                    roster_id,
                    instance_id=target.instance_id,
                )

        if not dry_run:
            try:
                action()
            except Exception as exc:
                raise MutationFailure(
                    mutation.op.value, account_id, exc
                ) from exc

        if mutation.bundled:
            logger.debug("%s: %s (bundled)", mutation.op.value, line)
        else:
            self.trace.output(line)

    @staticmethod
    def _target_report(
        target: SyncTarget, dry_run: bool, **fields
    ) -> TargetReport:
        return TargetReport(
            instance_id=target.instance_id,
            roster_id=target.roster_id,
            sync_type=target.sync_type,
            remote_id=target.remote_id,
            dry_run=dry_run,
            **fields,
        )
