"""Shared pytest fixtures for ilios-enrol tests."""

from __future__ import annotations

from collections.abc import Iterable

import pytest
from dotenv import load_dotenv

from ilios_enrol.config import Config
from ilios_enrol.errors import NotFound, RemoteUnavailable
from ilios_enrol.sync.identity import InMemoryAccountDirectory
from ilios_enrol.sync.models import RECORD_TYPES, RemoteRecord, ResourceKind
from ilios_enrol.sync.roster import InMemoryRoster

load_dotenv()

STUDENT_ROLE_ID = 5


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live Ilios instance",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live Ilios instance"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# In-memory fake Ilios directory
# ---------------------------------------------------------------------------


class FakeDirectory:
    """In-memory Ilios directory for engine tests.

    Records are given in the API's JSON shape and parsed with the same
    models ``IliosClient`` uses.  Every request is recorded in ``calls``
    as ``(method, kind, ids)``.
    """

    def __init__(self, records: dict[ResourceKind, list[dict]]) -> None:
        self.records: dict[ResourceKind, dict[int, RemoteRecord]] = {}
        for kind, raws in records.items():
            parsed = [RECORD_TYPES[kind].model_validate(r) for r in raws]
            self.records[kind] = {r.id: r for r in parsed}
        self.calls: list[tuple[str, ResourceKind, tuple[int, ...]]] = []
        self.unavailable: set[ResourceKind] = set()

    def fetch(self, kind: ResourceKind, record_id: int) -> RemoteRecord:
        self.calls.append(("fetch", kind, (record_id,)))
        if kind in self.unavailable:
            raise RemoteUnavailable("Ilios request failed: connection refused")
        record = self.records.get(kind, {}).get(record_id)
        if record is None:
            raise NotFound(kind.value, record_id)
        return record

    def fetch_batch(
        self, kind: ResourceKind, ids: Iterable[int]
    ) -> dict[int, RemoteRecord]:
        wanted = tuple(sorted(set(ids)))
        self.calls.append(("fetch_batch", kind, wanted))
        if kind in self.unavailable:
            raise RemoteUnavailable("Ilios request failed: connection refused")
        known = self.records.get(kind, {})
        return {i: known[i] for i in wanted if i in known}

    def calls_for(self, kind: ResourceKind) -> list[tuple[int, ...]]:
        return [ids for _, k, ids in self.calls if k is kind]


def ilios_user(user_id: int, enabled: bool = True) -> dict:
    """Ilios user record whose campus id matches ``campus_accounts``."""
    return {"id": str(user_id), "campusId": f"c{user_id}", "enabled": enabled}


def campus_accounts(*user_ids: int) -> dict[str, int]:
    """Local accounts ``100 + n`` for Ilios users ``n``."""
    return {f"c{n}": 100 + n for n in user_ids}


@pytest.fixture
def mock_config():
    """Create a Config instance for testing."""
    return Config(
        host_url="https://ilios.example.com",
        api_key="test-api-key",
        insecure=False,
    )


@pytest.fixture
def fake_directory():
    """Factory fixture for ``FakeDirectory`` instances."""

    def _create(records: dict[ResourceKind, list[dict]]) -> FakeDirectory:
        return FakeDirectory(records)

    return _create


@pytest.fixture
def roster():
    """Empty roster that knows the student role."""
    return InMemoryRoster({STUDENT_ROLE_ID: "student"})


@pytest.fixture
def accounts():
    """Local accounts 101..109 for Ilios users 1..9."""
    return InMemoryAccountDirectory(campus_accounts(*range(1, 10)))


def nested_instructor_records() -> dict[ResourceKind, list[dict]]:
    """Root group 1 with children 2 and 3; instructors 1..9 overall.

    - group 1: offerings 1, 2 (both instructor group 1 -> users 4, 5),
      ILM sessions 1, 2 (instructors 1 and 2)
    - group 2: offering 3 (instructor group 2 -> users 6, 7)
    - group 3: instructor 3, ILM session 3 (instructor group 3 -> 8, 9)
    """
    return {
        ResourceKind.LEARNER_GROUP: [
            {
                "id": "1",
                "children": ["2", "3"],
                "offerings": ["1", "2"],
                "ilmSessions": ["1", "2"],
            },
            {"id": "2", "parent": "1", "offerings": ["3"]},
            {
                "id": "3",
                "parent": "1",
                "instructors": ["3"],
                "ilmSessions": ["3"],
            },
        ],
        ResourceKind.OFFERING: [
            {"id": "1", "instructorGroups": ["1"]},
            {"id": "2", "instructorGroups": ["1"]},
            {"id": "3", "instructorGroups": ["2"]},
        ],
        ResourceKind.ILM_SESSION: [
            {"id": "1", "instructors": ["1"]},
            {"id": "2", "instructors": ["2"]},
            {"id": "3", "instructorGroups": ["3"]},
        ],
        ResourceKind.INSTRUCTOR_GROUP: [
            {"id": "1", "users": ["4", "5"]},
            {"id": "2", "users": ["6", "7"]},
            {"id": "3", "users": ["8", "9"]},
        ],
    }
