"""Unit tests for key-value stores (pure filesystem, no browser)."""

from __future__ import annotations

import json
import os
import tempfile

import pytest

from autoflow.capture.store import JSONFileStore, MemoryStore
from autoflow.errors import StorageError


class TestMemoryStore:
    def setup_method(self):
        self.store = MemoryStore()

    def test_get_default(self):
        assert self.store.get("missing") is None
        assert self.store.get("missing", []) == []

    def test_set_get_returns_copy(self):
        value = {"a": [1, 2]}
        self.store.set("k", value)
        loaded = self.store.get("k")
        assert loaded == value
        loaded["a"].append(3)
        assert self.store.get("k") == {"a": [1, 2]}

    def test_unserializable_raises_storage_error(self):
        with pytest.raises(StorageError):
            self.store.set("k", {"bad": object()})

    def test_delete_and_keys(self):
        self.store.set("a", 1)
        self.store.set("b", 2)
        assert self.store.delete("a") is True
        assert self.store.delete("a") is False
        assert self.store.keys() == ["b"]


class TestJSONFileStore:
    def setup_method(self):
        self.tmpdir = tempfile.mkdtemp()
        self.store = JSONFileStore(self.tmpdir)

    def test_set_writes_json_file(self):
        self.store.set("session", {"active": True})
        path = os.path.join(self.tmpdir, "session.json")
        with open(path) as f:
            assert json.load(f) == {"active": True}

    def test_no_tmp_file_left(self):
        self.store.set("session", [1])
        assert not any(name.endswith(".tmp") for name in os.listdir(self.tmpdir))

    def test_key_sanitized(self):
        self.store.set("a/b c", 1)
        assert os.path.isfile(os.path.join(self.tmpdir, "a_b_c.json"))

    def test_corrupt_file_returns_default(self):
        with open(os.path.join(self.tmpdir, "broken.json"), "w") as f:
            f.write("{not json")
        assert self.store.get("broken", "fallback") == "fallback"

    def test_keys_sorted(self):
        self.store.set("b", 1)
        self.store.set("a", 2)
        assert self.store.keys() == ["a", "b"]

    def test_delete(self):
        self.store.set("x", 1)
        assert self.store.delete("x") is True
        assert self.store.get("x") is None
        assert self.store.delete("x") is False

    def test_new_instance_reads_existing_data(self):
        self.store.set("schedules", [{"id": "s1"}])
        other = JSONFileStore(self.tmpdir)
        assert other.get("schedules") == [{"id": "s1"}]
