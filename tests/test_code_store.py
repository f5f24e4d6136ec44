"""Unit tests for code_store.py - reconciliation source storage."""

import os
import threading
from unittest.mock import MagicMock, patch

import pytest

from code_store import CodeStore, CodeStoreError, default_template

NEW_SOURCE = "def reconcile(resource, ctx):\n    ctx.info('v2')\n"


class TestDefaultTemplate:
    """Tests for the built-in reconciliation source."""

    def test_defines_reconcile(self):
        template = default_template()
        assert "def reconcile(resource, ctx):" in template

    def test_compiles(self):
        compile(default_template(), "<template>", "exec")


class TestCodeStore:
    """Tests for CodeStore."""

    def test_read_falls_back_to_template(self):
        store = CodeStore()
        assert store.read() == default_template()

    def test_write_then_read(self):
        store = CodeStore()
        store.write(NEW_SOURCE)
        assert store.read() == NEW_SOURCE

    def test_write_replaces_whole_value(self):
        store = CodeStore()
        store.write("a = 1\n" * 100)
        store.write("b = 2\n")
        assert store.read() == "b = 2\n"

    def test_write_persists_to_file(self, tmp_path):
        path = tmp_path / "reconciler.py"
        store = CodeStore(path=path)
        store.write(NEW_SOURCE)

        assert path.read_text(encoding="utf-8") == NEW_SOURCE
        # No temporary files left behind
        assert os.listdir(tmp_path) == ["reconciler.py"]

    def test_write_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "reconciler.py"
        CodeStore(path=path).write(NEW_SOURCE)
        assert path.read_text(encoding="utf-8") == NEW_SOURCE

    def test_persists_bytes_verbatim(self, tmp_path):
        path = tmp_path / "reconciler.py"
        source = "# ünïcode ✨\r\ndef reconcile(r):\r\n    pass\r\n"
        CodeStore(path=path).write(source)
        assert path.read_bytes() == source.encode("utf-8")

    def test_load_reads_persisted_source(self, tmp_path):
        path = tmp_path / "reconciler.py"
        path.write_text(NEW_SOURCE, encoding="utf-8")
        store = CodeStore(path=path)
        assert store.load() == NEW_SOURCE
        assert store.read() == NEW_SOURCE

    def test_load_missing_file_uses_template(self, tmp_path):
        store = CodeStore(path=tmp_path / "missing.py")
        assert store.load() == default_template()

    def test_load_undecodable_file_uses_template(self, tmp_path):
        path = tmp_path / "reconciler.py"
        path.write_bytes(b"\xff\xfe\x00broken")
        store = CodeStore(path=path)
        assert store.load() == default_template()

    def test_survives_restart(self, tmp_path):
        path = tmp_path / "reconciler.py"
        CodeStore(path=path).write(NEW_SOURCE)
        assert CodeStore(path=path).load() == NEW_SOURCE

    def test_persist_failure_keeps_previous_value(self, tmp_path):
        path = tmp_path / "reconciler.py"
        store = CodeStore(path=path)
        store.write("old = True\n")

        with patch("code_store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(CodeStoreError, match="Failed to save code"):
                store.write(NEW_SOURCE)

        assert store.read() == "old = True\n"
        assert path.read_text(encoding="utf-8") == "old = True\n"
        assert os.listdir(tmp_path) == ["reconciler.py"]

    def test_write_announces_update(self):
        broadcaster = MagicMock()
        CodeStore(broadcaster=broadcaster).write(NEW_SOURCE)
        broadcaster.info.assert_called_once_with("Code updated successfully")

    def test_announce_failure_does_not_fail_write(self):
        broadcaster = MagicMock()
        broadcaster.info.side_effect = RuntimeError("no loop")
        store = CodeStore(broadcaster=broadcaster)
        store.write(NEW_SOURCE)
        assert store.read() == NEW_SOURCE

    def test_failed_write_is_not_announced(self, tmp_path):
        broadcaster = MagicMock()
        store = CodeStore(path=tmp_path / "reconciler.py", broadcaster=broadcaster)
        with patch("code_store.os.replace", side_effect=OSError("read-only")):
            with pytest.raises(CodeStoreError):
                store.write(NEW_SOURCE)
        broadcaster.info.assert_not_called()

    def test_unencodable_text_keeps_previous_value(self, tmp_path):
        path = tmp_path / "reconciler.py"
        store = CodeStore(path=path)
        store.write("old = True\n")

        with pytest.raises(CodeStoreError):
            store.write("x = '\ud800'\n")

        assert store.read() == "old = True\n"
        assert os.listdir(tmp_path) == ["reconciler.py"]


class TestConcurrentAccess:
    """Readers racing writers see whole values only."""

    def test_reads_see_old_or_new_value(self, tmp_path):
        old = "old = True\n" * 500
        new = "new = True\n" * 500
        store = CodeStore(path=tmp_path / "reconciler.py")
        store.write(old)

        seen = set()
        stop = threading.Event()

        def writer():
            for i in range(50):
                store.write(new if i % 2 == 0 else old)
            stop.set()

        def reader():
            while not stop.is_set():
                seen.add(store.read())

        readers = [threading.Thread(target=reader) for _ in range(4)]
        for thread in readers:
            thread.start()
        writer_thread = threading.Thread(target=writer)
        writer_thread.start()
        writer_thread.join(timeout=30)
        stop.set()
        for thread in readers:
            thread.join(timeout=5)

        assert seen <= {old, new}
        assert store.read() == old
        assert (tmp_path / "reconciler.py").read_text(encoding="utf-8") == old
