"""Pydantic models for the enrolment sync engine.

Defines the data contracts shared across the sync modules:

- Sync configuration: ``SyncType``, ``RoleMode``, ``SyncTarget``.
- Ilios records: ``RemoteUser``, ``Cohort``, ``LearnerGroup``,
  ``Offering``, ``IlmSession``, ``InstructorGroup``.
- Roster state: ``EnrolmentStatus``, ``EnrolmentRef``, ``RosterEntry``,
  ``RoleAssignment``.
- Planning and results: ``MutationOp``, ``Mutation``, ``MutationPlan``,
  ``UnmappedIdentity``, ``MutationResult``, ``TargetReport``,
  ``SyncReport``.

Ilios returns id references as JSON strings (``"users": ["2", "3"]``);
they are coerced to ``int`` on validation.  Unknown fields are ignored.
"""

from __future__ import annotations

from enum import Enum, IntEnum

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Sync targets
# ---------------------------------------------------------------------------


class ResourceKind(str, Enum):
    """Ilios resource kinds read by the engine.

    The value is the JSON envelope key of API responses.
    """

    COHORT = "cohorts"
    LEARNER_GROUP = "learnerGroups"
    OFFERING = "offerings"
    ILM_SESSION = "ilmSessions"
    INSTRUCTOR_GROUP = "instructorGroups"
    USER = "users"

    @property
    def endpoint(self) -> str:
        """URL path segment, e.g. ``learnergroups``."""
        return self.value.lower()


class SyncType(str, Enum):
    """Kind of Ilios group a sync instance points at."""

    COHORT = "cohort"
    LEARNER_GROUP = "learnerGroup"

    @property
    def resource_kind(self) -> ResourceKind:
        if self is SyncType.COHORT:
            return ResourceKind.COHORT
        return ResourceKind.LEARNER_GROUP


class RoleMode(str, Enum):
    """Which members of a learner group are synced."""

    LEARNERS = "learners"
    INSTRUCTORS = "instructors"


class SyncTarget(BaseModel):
    """One configured sync instance.

    Attributes:
        instance_id: Id of the sync instance ("Ilios Sync ID").
        roster_id: Course whose roster is reconciled.
        sync_type: Cohort or learner group.
        remote_id: Id of the Ilios cohort or learner group.
        role_mode: Learners or instructors (learner groups only).
        role_id: Role assigned to synced users.
        enabled: Disabled instances are skipped by the driver.
    """

    instance_id: int
    roster_id: int
    sync_type: SyncType
    remote_id: int
    role_mode: RoleMode = RoleMode.LEARNERS
    role_id: int
    enabled: bool = True

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Ilios records
# ---------------------------------------------------------------------------


class RemoteRecord(BaseModel):
    """Common base for Ilios API records."""

    id: int

    model_config = {
        "frozen": True,
        "populate_by_name": True,
        "extra": "ignore",
    }


class RemoteUser(RemoteRecord):
    campus_id: str | None = Field(default=None, alias="campusId")
    enabled: bool = True


class Cohort(RemoteRecord):
    users: list[int] = []


class LearnerGroup(RemoteRecord):
    """Learner group with its nested and linked references."""

    users: list[int] = []
    children: list[int] = []
    instructors: list[int] = []
    instructor_groups: list[int] = Field(
        default=[], alias="instructorGroups"
    )
    offerings: list[int] = []
    ilm_sessions: list[int] = Field(default=[], alias="ilmSessions")


class TeachingEvent(RemoteRecord):
    """Shared shape of offerings and independent-learning sessions."""

    instructors: list[int] = []
    instructor_groups: list[int] = Field(
        default=[], alias="instructorGroups"
    )
    learners: list[int] = []
    learner_groups: list[int] = Field(default=[], alias="learnerGroups")


class Offering(TeachingEvent):
    pass


class IlmSession(TeachingEvent):
    pass


class InstructorGroup(RemoteRecord):
    users: list[int] = []


RECORD_TYPES: dict[ResourceKind, type[RemoteRecord]] = {
    ResourceKind.COHORT: Cohort,
    ResourceKind.LEARNER_GROUP: LearnerGroup,
    ResourceKind.OFFERING: Offering,
    ResourceKind.ILM_SESSION: IlmSession,
    ResourceKind.INSTRUCTOR_GROUP: InstructorGroup,
    ResourceKind.USER: RemoteUser,
}


# ---------------------------------------------------------------------------
# Roster state
# ---------------------------------------------------------------------------


class EnrolmentStatus(IntEnum):
    """Enrolment status; the numeric value shows up in trace lines."""

    ACTIVE = 0
    SUSPENDED = 1


class EnrolmentRef(BaseModel):
    """Handle of one enrolment row owned by the roster."""

    instance_id: int
    account_id: int

    model_config = {"frozen": True}


class RosterEntry(BaseModel):
    """Enrolment of a local account through one sync instance."""

    account_id: int
    roster_id: int
    instance_id: int
    status: EnrolmentStatus = EnrolmentStatus.ACTIVE

    model_config = {"frozen": True}

    @property
    def ref(self) -> EnrolmentRef:
        return EnrolmentRef(
            instance_id=self.instance_id, account_id=self.account_id
        )


class RoleAssignment(BaseModel):
    """Role held by a local account, owned by a sync instance."""

    account_id: int
    role_id: int
    context_id: int
    instance_id: int
    component: str = "enrol_ilios"

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


class MutationOp(str, Enum):
    """Roster mutations the reconciler can request."""

    ENROL = "enrol"
    REACTIVATE = "reactivate"
    SUSPEND = "suspend"
    UNENROL = "unenrol"
    ASSIGN_ROLE = "assign_role"
    UNASSIGN_ROLE = "unassign_role"

    @property
    def is_removal(self) -> bool:
        return self in (
            MutationOp.SUSPEND,
            MutationOp.UNENROL,
            MutationOp.UNASSIGN_ROLE,
        )


class Mutation(BaseModel):
    """A single roster mutation for one local account.

    Attributes:
        op: The mutation to apply.
        account_id: Local account id.
        bundled: The mutation is reported as part of the account's next
            mutation (a role removal ahead of a full unenrolment).
        role_id: Role to assign or unassign when it is not the target's
            role (a role left over from an earlier target setting).
    """

    op: MutationOp
    account_id: int
    bundled: bool = False
    role_id: int | None = None

    model_config = {"frozen": True}


class MutationPlan(BaseModel):
    """Ordered mutations for one sync target.

    Enrol-phase mutations always precede removal-phase mutations.
    """

    instance_id: int
    mutations: list[Mutation] = []

    model_config = {"frozen": True}

    @property
    def enrol_phase(self) -> list[Mutation]:
        return [m for m in self.mutations if not m.op.is_removal]

    @property
    def removal_phase(self) -> list[Mutation]:
        return [m for m in self.mutations if m.op.is_removal]

    @property
    def is_empty(self) -> bool:
        return not self.mutations

    def for_account(self, account_id: int) -> list[Mutation]:
        """Mutations planned for *account_id*, in plan order."""
        return [m for m in self.mutations if m.account_id == account_id]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class UnmappedIdentity(BaseModel):
    """Ilios user that could not be matched to a local account."""

    remote_id: int
    campus_id: str | None = None
    reason: str

    model_config = {"frozen": True}


class MutationResult(BaseModel):
    """Outcome of applying (or previewing) one mutation."""

    op: MutationOp
    account_id: int
    success: bool
    error: str | None = None

    model_config = {"frozen": True}


class TargetReport(BaseModel):
    """Outcome of syncing one target.

    Attributes:
        instance_id: Sync instance id.
        roster_id: Course id.
        dry_run: Whether mutations were only previewed.
        remote_users_found: Ilios user records returned for the target.
        unmapped: Ilios users without a matching local account.
        results: Per-mutation outcomes, in application order.
        error: Fatal error that aborted the target, if any.
        skipped: Target was not processed (disabled instance).
        plan: Mutations planned for the target, applied or previewed.
    """

    instance_id: int
    roster_id: int
    sync_type: SyncType
    remote_id: int
    dry_run: bool = False
    remote_users_found: int = 0
    unmapped: list[UnmappedIdentity] = []
    results: list[MutationResult] = []
    error: str | None = None
    skipped: bool = False
    plan: MutationPlan | None = None

    model_config = {"frozen": True}

    @property
    def failures(self) -> list[MutationResult]:
        return [r for r in self.results if not r.success]

    @property
    def applied(self) -> list[MutationResult]:
        return [r for r in self.results if r.success]

    def count(self, op: MutationOp) -> int:
        """Number of successful results for *op*."""
        return sum(1 for r in self.applied if r.op == op)


class SyncReport(BaseModel):
    """Aggregate report for a full sync run."""

    dry_run: bool = False
    targets: list[TargetReport] = []
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def failed_targets(self) -> list[TargetReport]:
        return [t for t in self.targets if t.error is not None]

    @property
    def error_count(self) -> int:
        """Failed mutations plus targets aborted by a fatal error."""
        return len(self.failed_targets) + sum(
            len(t.failures) for t in self.targets
        )
