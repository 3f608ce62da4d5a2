#!/usr/bin/env python3
"""
Live Ilios Sync Preview

Reads the sync targets from the hierarchical config, expands each one
against a live Ilios instance and prints what a sync would do to an
empty roster.  Nothing is written anywhere.

Features:
- Uses the same config discovery as scheduled runs (.ilios_enrol/config.yml)
- Shows remote user counts, unmapped users and the planned mutations
- Optional JSON output of the full dry-run report
- Exit code 1 when any target fails to expand
"""

import argparse
import json
import logging
import sys

from dotenv import load_dotenv

from ilios_enrol import __version__ as PACKAGE_VERSION
from ilios_enrol.config import load_config
from ilios_enrol.config_loader import load_hierarchical_config
from ilios_enrol.config_schema import build_config
from ilios_enrol.core.client import IliosClient
from ilios_enrol.logger import setup_logging
from ilios_enrol.sync import (
    InMemoryAccountDirectory,
    InMemoryRoster,
    SyncDriver,
    format_plan_preview,
    format_sync_report,
    report_to_json,
)

logger = logging.getLogger("preview_sync")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Preview Ilios enrolment sync against a live instance"
    )
    parser.add_argument("--course", type=int, help="Only this course id")
    parser.add_argument("--instance", type=int, help="Only this sync id")
    parser.add_argument(
        "--accounts",
        help="JSON file mapping campus ids to local account ids",
    )
    parser.add_argument(
        "--json", action="store_true", help="Print the report as JSON"
    )
    parser.add_argument("--debug", action="store_true")
    return parser.parse_args(argv)


def load_accounts(path):
    if not path:
        return InMemoryAccountDirectory()
    with open(path, "r", encoding="utf-8") as fh:
        return InMemoryAccountDirectory(
            {str(k): int(v) for k, v in json.load(fh).items()}
        )


def main(argv=None) -> int:
    args = parse_args(argv)
    load_dotenv()

    unified = build_config(load_hierarchical_config())
    setup_logging(
        mode="cli",
        debug=args.debug,
        log_file=unified.logging.file,
        log_format=unified.logging.format,
    )
    logger.info("ilios-enrol %s sync preview", PACKAGE_VERSION)

    config = load_config(
        debug=args.debug,
        yaml_fallbacks=unified.ilios.model_dump(exclude_none=True),
    )
    client = IliosClient(config)
    accounts = load_accounts(args.accounts)
    roster = InMemoryRoster()
    driver = SyncDriver(client, roster, accounts)

    report = driver.run(
        unified.targets,
        roster_id=args.course,
        target_id=args.instance,
        dry_run=True,
    )

    if args.json:
        print(json.dumps(report_to_json(report), indent=2))
    else:
        print(driver.trace.get_buffer())
        print()
        print(format_sync_report(report))
        targets = {t.instance_id: t for t in unified.targets}
        for target_report in report.targets:
            if target_report.plan is None:
                continue
            print()
            print(
                format_plan_preview(
                    target_report.plan, targets[target_report.instance_id]
                )
            )

    return 1 if report.failed_targets else 0


if __name__ == "__main__":
    sys.exit(main())
