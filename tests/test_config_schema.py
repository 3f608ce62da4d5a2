"""Tests for ilios_enrol.config_schema -- Pydantic config models."""

import pytest
from pydantic import ValidationError

from ilios_enrol.config_schema import (
    IliosConfig,
    LoggingConfig,
    UnifiedConfig,
    build_config,
)
from ilios_enrol.sync.models import RoleMode, SyncType


class TestIliosConfig:
    def test_defaults(self):
        cfg = IliosConfig()
        assert cfg.host_url is None
        assert cfg.api_key is None
        assert cfg.api_version == "v3"
        assert cfg.timeout == 60
        assert cfg.max_batch_size == 100

    @pytest.mark.parametrize("value", [0, 601])
    def test_timeout_bounds(self, value):
        with pytest.raises(ValidationError):
            IliosConfig(timeout=value)

    @pytest.mark.parametrize("value", [0, 1001])
    def test_batch_size_bounds(self, value):
        with pytest.raises(ValidationError):
            IliosConfig(max_batch_size=value)

    def test_frozen(self):
        cfg = IliosConfig()
        with pytest.raises(ValidationError):
            cfg.timeout = 5


class TestLoggingConfig:
    def test_defaults(self):
        cfg = LoggingConfig()
        assert cfg.level == "INFO"
        assert cfg.file is None
        assert cfg.format == "text"

    def test_rejects_unknown_format(self):
        with pytest.raises(ValidationError):
            LoggingConfig(format="xml")


class TestBuildConfig:
    def test_empty_dict_gives_defaults(self):
        assert build_config({}) == UnifiedConfig()

    def test_full_config(self):
        unified = build_config(
            {
                "ilios": {
                    "host_url": "https://ilios.example.com",
                    "api_key": "k",
                    "max_batch_size": 50,
                },
                "logging": {"level": "DEBUG", "format": "json"},
                "targets": [
                    {
                        "instance_id": 1,
                        "roster_id": 10,
                        "sync_type": "cohort",
                        "remote_id": 3,
                        "role_id": 5,
                    },
                    {
                        "instance_id": 2,
                        "roster_id": 10,
                        "sync_type": "learnerGroup",
                        "remote_id": 7,
                        "role_mode": "instructors",
                        "role_id": 3,
                        "enabled": False,
                    },
                ],
            }
        )

        assert unified.ilios.max_batch_size == 50
        assert unified.logging.format == "json"
        assert len(unified.targets) == 2
        cohort, group = unified.targets
        assert cohort.sync_type is SyncType.COHORT
        assert cohort.role_mode is RoleMode.LEARNERS
        assert group.sync_type is SyncType.LEARNER_GROUP
        assert group.role_mode is RoleMode.INSTRUCTORS
        assert group.enabled is False

    def test_invalid_sync_type(self):
        with pytest.raises(ValidationError):
            build_config(
                {
                    "targets": [
                        {
                            "instance_id": 1,
                            "roster_id": 10,
                            "sync_type": "school",
                            "remote_id": 3,
                            "role_id": 5,
                        }
                    ]
                }
            )
