"""Tests for InMemoryRoster and ProgressTrace."""

from __future__ import annotations

import logging

import pytest

from ilios_enrol.sync.models import EnrolmentRef, EnrolmentStatus
from ilios_enrol.sync.trace import ProgressTrace

REF = EnrolmentRef(instance_id=1, account_id=101)


class TestInMemoryRoster:
    def test_enrol_assigns_role(self, roster):
        roster.enrol(10, 101, 5, instance_id=1)

        entry = roster.get_entry(1, 101)
        assert entry.status is EnrolmentStatus.ACTIVE
        assert entry.roster_id == 10
        assert roster.has_role(101, 5, 1)

    def test_reads_filtered_by_instance(self, roster):
        roster.enrol(10, 102, 5, instance_id=1)
        roster.enrol(10, 101, 5, instance_id=1)
        roster.enrol(10, 103, 5, instance_id=2)

        assert [e.account_id for e in roster.get_enrolments(1)] == [101, 102]
        assert [
            ra.account_id for ra in roster.get_role_assignments(2)
        ] == [103]

    def test_set_status(self, roster):
        roster.enrol(10, 101, 5, instance_id=1)
        roster.set_status(REF, EnrolmentStatus.SUSPENDED)
        assert roster.get_entry(1, 101).status is EnrolmentStatus.SUSPENDED

    def test_set_status_unknown_enrolment(self, roster):
        with pytest.raises(KeyError):
            roster.set_status(REF, EnrolmentStatus.ACTIVE)

    def test_unenrol_removes_instance_roles(self, roster):
        roster.enrol(10, 101, 5, instance_id=1)
        roster.assign_role(101, 3, 10, instance_id=1)
        roster.enrol(10, 101, 5, instance_id=2)

        roster.unenrol(REF)

        assert roster.get_entry(1, 101) is None
        assert roster.get_role_assignments(1) == []
        assert roster.has_role(101, 5, 2)

    def test_unenrol_unknown_enrolment(self, roster):
        with pytest.raises(KeyError):
            roster.unenrol(REF)

    def test_unassign_role(self, roster):
        roster.enrol(10, 101, 5, instance_id=1)
        roster.unassign_role(101, 5, 10, instance_id=1)
        roster.unassign_role(101, 5, 10, instance_id=1)

        assert not roster.has_role(101, 5, 1)
        assert roster.get_entry(1, 101) is not None

    def test_role_shortname(self, roster):
        assert roster.role_shortname(5) == "student"
        assert roster.role_shortname(9) == "9"


class TestProgressTrace:
    def test_buffer_keeps_order(self):
        trace = ProgressTrace()
        trace.output("Enrolling students to Course ID 10.")
        trace.output("4 Ilios users found.")

        assert trace.lines == [
            "Enrolling students to Course ID 10.",
            "4 Ilios users found.",
        ]
        assert trace.get_buffer() == (
            "Enrolling students to Course ID 10.\n4 Ilios users found."
        )

    def test_reset(self):
        trace = ProgressTrace()
        trace.output("line")
        trace.reset()
        assert trace.get_buffer() == ""

    def test_lines_logged(self, caplog):
        trace = ProgressTrace()
        with caplog.at_level(logging.INFO, logger="ilios_enrol.trace"):
            trace.output("4 Ilios users found.")

        assert caplog.records[-1].name == "ilios_enrol.trace"
        assert caplog.records[-1].getMessage() == "4 Ilios users found."
