"""Tests for fingerprints and id helpers."""

import re

from memsync.core.hashing import compute_hash, fingerprint_keys, fingerprint_versions
from memsync.core.timestamps import generate_client_id, now_ms


class TestHashing:
    def test_deterministic(self):
        assert compute_hash("a", 1) == compute_hash("a", 1)
        assert len(compute_hash("a")) == 32

    def test_keys_order_independent(self):
        assert fingerprint_keys(["b", "a"]) == fingerprint_keys(["a", "b"])
        assert fingerprint_keys(["a"]) != fingerprint_keys(["a", "b"])

    def test_versions_detect_version_change(self):
        before = fingerprint_versions({"2026-01-01": 1, "2026-01-02": 5})
        same = fingerprint_versions({"2026-01-02": 5, "2026-01-01": 1})
        after = fingerprint_versions({"2026-01-01": 2, "2026-01-02": 5})
        assert before == same
        assert before != after


class TestTimestamps:
    def test_client_id_format(self):
        assert re.fullmatch(r"client-\d+-[a-z0-9]{9}", generate_client_id())

    def test_client_ids_unique(self):
        assert len({generate_client_id() for _ in range(200)}) == 200

    def test_now_ms_is_millis(self):
        assert now_ms() > 1_600_000_000_000
