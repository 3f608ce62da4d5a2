"""Ilios enrolment reconciliation engine.

Public API for keeping course rosters in line with Ilios cohort and
learner-group membership.

Architecture
------------
Each sync target is handled in three steps.  The ``GroupExpander``
walks the Ilios group graph (lazily, one batch request per kind per
visited group, every record memoised per expansion) to the set of
qualifying Ilios user ids.  The identity mapper joins those users to
local accounts by campus id.  The ``Reconciler`` classifies every
relevant account as desired, disabled or absent and derives the
mutations from a fixed transition table; the ``SyncDriver`` applies
them, enrolments first and removals second.

Modules:

- ``driver``     -- ``SyncDriver``: orchestrates a full sync run.
- ``expander``   -- ``GroupExpander``, ``NodeCache``: group expansion.
- ``identity``   -- ``DirectoryIdentityMapper``: Ilios user to account.
- ``reconciler`` -- ``Reconciler``, ``transition``: mutation planning.
- ``roster``     -- ``RosterGateway`` contract and ``InMemoryRoster``.
- ``trace``      -- ``ProgressTrace``: operator-facing progress lines.
- ``models``     -- Data contracts (targets, records, plans, reports).
- ``reporter``   -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from ilios_enrol.config import load_config
    from ilios_enrol.core import IliosClient
    from ilios_enrol.sync import SyncDriver, format_sync_report

    client = IliosClient(load_config())
    driver = SyncDriver(client, roster, accounts)

    # Preview first
    preview = driver.run(targets, dry_run=True)
    print(format_sync_report(preview))

    report = driver.run(targets)
    print(driver.trace.get_buffer())
"""

from .driver import SyncDriver
from .expander import GroupExpander, NodeCache
from .identity import (
    DirectoryIdentityMapper,
    IdentityMapping,
    InMemoryAccountDirectory,
)
from .models import (
    EnrolmentStatus,
    Mutation,
    MutationOp,
    MutationPlan,
    RoleMode,
    SyncReport,
    SyncTarget,
    SyncType,
    TargetReport,
)
from .reconciler import Reconciler
from .reporter import format_plan_preview, format_sync_report, report_to_json
from .roster import InMemoryRoster, RosterGateway
from .trace import ProgressTrace

__all__ = [
    "DirectoryIdentityMapper",
    "EnrolmentStatus",
    "GroupExpander",
    "IdentityMapping",
    "InMemoryAccountDirectory",
    "InMemoryRoster",
    "Mutation",
    "MutationOp",
    "MutationPlan",
    "NodeCache",
    "ProgressTrace",
    "Reconciler",
    "RoleMode",
    "RosterGateway",
    "SyncDriver",
    "SyncReport",
    "SyncTarget",
    "SyncType",
    "TargetReport",
    "format_plan_preview",
    "format_sync_report",
    "report_to_json",
]
