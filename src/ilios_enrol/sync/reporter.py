"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync runs:

- ``format_sync_report`` -- full post-sync summary.
- ``format_plan_preview`` -- one target's mutation plan, grouped by
  operation.
- ``report_to_json`` -- structured dict for JSON output.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import MutationPlan, SyncReport, SyncTarget, TargetReport

from .models import MutationOp

# Display order of operations in previews and counts.
OP_ORDER = [
    MutationOp.ENROL,
    MutationOp.REACTIVATE,
    MutationOp.ASSIGN_ROLE,
    MutationOp.SUSPEND,
    MutationOp.UNASSIGN_ROLE,
    MutationOp.UNENROL,
]

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def _target_label(target: TargetReport | SyncTarget) -> str:
    return (
        f"Ilios Sync ID {target.instance_id} "
        f"(course {target.roster_id}, "
        f"{target.sync_type.value} {target.remote_id})"
    )


def format_sync_report(report: SyncReport) -> str:
    """Format a complete sync report as human-readable text.

    Targets are listed in run order.  Unmapped users and failures are
    only included when present.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = "Ilios enrolment sync report"
    if report.dry_run:
        header += " (DRY RUN)"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    synced = [t for t in report.targets if not t.skipped]
    lines.append(
        f"Synced {len(synced)} targets: "
        f"{len(report.failed_targets)} failed, "
        f"{report.error_count} errors"
    )
    lines.append("")

    for target in report.targets:
        lines.append(_target_label(target))
        if target.skipped:
            lines.append("  skipped (disabled)")
            lines.append("")
            continue
        if target.error:
            lines.append(f"  error: {target.error}")
            lines.append("")
            continue

        counts = ", ".join(
            f"{target.count(op)} {op.value.replace('_', ' ')}"
            for op in OP_ORDER
        )
        lines.append(f"  {target.remote_users_found} Ilios users found")
        lines.append(f"  {counts}")

        if target.unmapped:
            lines.append(f"  Unmapped ({len(target.unmapped)}):")
            for u in target.unmapped:
                campus = f" [{u.campus_id}]" if u.campus_id else ""
                lines.append(f"    {u.remote_id}{campus}: {u.reason}")

        if target.failures:
            lines.append("  Failures:")
            for r in target.failures:
                lines.append(
                    f"    {r.op.value} userid {r.account_id}: {r.error}"
                )
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Plan preview
# ------------------------------------------------------------------


def format_plan_preview(plan: MutationPlan, target: SyncTarget) -> str:
    """Format a mutation plan grouped by operation.

    Each operation is shown as ``[OP]`` followed by the affected
    local account ids.

    Args:
        plan: The plan computed for *target*.
        target: The sync target the plan belongs to.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append("DRY RUN -- No changes will be made")
    lines.append(_target_label(target))
    lines.append("")

    groups: dict[MutationOp, list[int]] = defaultdict(list)
    for m in plan.mutations:
        groups[m.op].append(m.account_id)

    for op in OP_ORDER:
        if op not in groups:
            continue
        label = op.value.upper().replace("_", " ")
        ids = ", ".join(str(a) for a in groups[op])
        lines.append(f"[{label}]")
        lines.append(f"  userids {ids}")
        lines.append("")

    if plan.is_empty:
        lines.append("No changes needed.")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Args:
        report: The sync report.

    Returns:
        Dict with run info, error count and per-target details.
    """
    targets_list = []
    for t in report.targets:
        entry: dict = {
            "instance_id": t.instance_id,
            "roster_id": t.roster_id,
            "sync_type": t.sync_type.value,
            "remote_id": t.remote_id,
            "skipped": t.skipped,
            "remote_users_found": t.remote_users_found,
            "counts": {op.value: t.count(op) for op in OP_ORDER},
            "unmapped": [u.model_dump() for u in t.unmapped],
            "failures": [
                {
                    "op": r.op.value,
                    "account_id": r.account_id,
                    "error": r.error,
                }
                for r in t.failures
            ],
        }
        if t.error:
            entry["error"] = t.error
        targets_list.append(entry)

    return {
        "dry_run": report.dry_run,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "error_count": report.error_count,
        "targets": targets_list,
    }
