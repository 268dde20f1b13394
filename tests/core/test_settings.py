"""Tests for memsync.core.settings."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from memsync.core.settings import SyncSettings


class TestDefaults:
    def test_defaults(self):
        s = SyncSettings(_env_file=None)
        assert s.host == "0.0.0.0"
        assert s.port == 18791
        assert s.heartbeat_interval == 30.0
        assert s.send_timeout == 10.0
        assert s.outbound_queue_size == 256
        assert s.fast_poll_interval == 5.0
        assert s.slow_poll_interval == 10.0
        assert s.write_through is True
        assert s.watch_documents is True
        assert s.watch_debounce == 0.3
        assert s.memory_dir is None
        assert s.cors_origins == ["*"]


class TestEnvironment:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("MEMSYNC_PORT", "9000")
        monkeypatch.setenv("MEMSYNC_MEMORY_DIR", "/tmp/memory")
        monkeypatch.setenv("MEMSYNC_HEARTBEAT_INTERVAL", "2.5")
        s = SyncSettings(_env_file=None)
        assert s.port == 9000
        assert s.memory_dir == Path("/tmp/memory")
        assert s.heartbeat_interval == 2.5

    def test_unknown_vars_ignored(self, monkeypatch):
        monkeypatch.setenv("MEMSYNC_NOT_A_SETTING", "x")
        SyncSettings(_env_file=None)

    def test_init_overrides_env(self, monkeypatch):
        monkeypatch.setenv("MEMSYNC_PORT", "9000")
        assert SyncSettings(_env_file=None, port=1234).port == 1234


class TestValidation:
    @pytest.mark.parametrize(
        "field", ["heartbeat_interval", "send_timeout", "fast_poll_interval", "slow_poll_interval", "watch_debounce"]
    )
    def test_intervals_must_be_positive(self, field):
        with pytest.raises(ValidationError):
            SyncSettings(_env_file=None, **{field: 0})

    def test_queue_size_at_least_one(self):
        with pytest.raises(ValidationError):
            SyncSettings(_env_file=None, outbound_queue_size=0)
