"""
Tests for the HyperPipe engine: push, pull and record ordering.
"""

import contextlib
import os
import tempfile
import threading
import time
from pathlib import Path

import pytest

from hyperpipe import engine
from hyperpipe import manifest as mf


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def pipe_dir():
    """A fresh, not yet created, pipe directory."""
    with tempfile.TemporaryDirectory() as td:
        yield Path(td) / "pipe"


def record_files(root):
    return sorted(p.name for p in root.iterdir() if p.name != mf.kMANIFEST)


# =============================================================================
# HANDLE
# =============================================================================

class TestMakePipe:

    def test_creates_directory_and_manifest(self, pipe_dir):
        pipe = engine.make_pipe(pipe_dir)

        assert pipe["type"] == "HYPERPIPE-HANDLE"
        assert pipe_dir.is_dir()
        assert mf.manifest_path(pipe_dir).exists()

    def test_fresh_handle_ignores_on_disk_cursor(self, pipe_dir):
        """A new handle starts at None whatever the manifest says."""
        pipe_dir.mkdir()
        mf.manifest_path(pipe_dir).write_text('{"latest": 999}')

        pipe = engine.make_pipe(pipe_dir)

        assert pipe["manifest"] == {"latest": None}
        assert mf.load_manifest(pipe_dir) == {"latest": 999}

    def test_unusable_path_raises(self, pipe_dir):
        pipe_dir.parent.joinpath("file").write_text("x")

        with pytest.raises(OSError):
            engine.make_pipe(pipe_dir.parent / "file" / "pipe")


# =============================================================================
# PUSH
# =============================================================================

class TestPush:

    def test_push_writes_record_verbatim(self, pipe_dir):
        pipe = engine.make_pipe(pipe_dir)

        engine.push(pipe, b"\x00\x01raw bytes\xff")

        names = record_files(pipe_dir)
        assert len(names) == 1
        assert names[0].endswith(".bin")
        assert (pipe_dir / names[0]).read_bytes() == b"\x00\x01raw bytes\xff"

    def test_push_advances_manifest(self, pipe_dir):
        pipe = engine.make_pipe(pipe_dir)
        before = time.time_ns()

        engine.push(pipe, b"x")

        latest = mf.load_manifest(pipe_dir)["latest"]
        assert latest >= before
        assert pipe["manifest"]["latest"] == latest

    def test_push_unique_names(self, pipe_dir):
        pipe = engine.make_pipe(pipe_dir)

        for _ in range(20):
            engine.push(pipe, b"same")

        assert len(record_files(pipe_dir)) == 20

    @pytest.mark.parametrize("payload", [3, "text", None])
    def test_push_rejects_non_bytes_before_writing(self, pipe_dir, payload):
        """A rejected payload leaves neither a record nor a manifest update."""
        pipe = engine.make_pipe(pipe_dir)

        with pytest.raises(TypeError):
            engine.push(pipe, payload)

        assert record_files(pipe_dir) == []
        assert mf.load_manifest(pipe_dir) == {"latest": None}
        assert pipe["manifest"] == {"latest": None}

    def test_push_accepts_bytes_like(self, pipe_dir):
        pipe = engine.make_pipe(pipe_dir)

        engine.push(pipe, bytearray(b"ba"))
        time.sleep(0.02)
        engine.push(pipe, memoryview(b"mv"))

        consumer = engine.make_pipe(pipe_dir)
        assert engine.pull(consumer) == b"ba"
        assert engine.pull(consumer) == b"mv"

    def test_push_failure_raises_and_cleans_up(self, pipe_dir, monkeypatch):
        pipe = engine.make_pipe(pipe_dir)

        def crash(self, target):
            raise OSError("disk gone")

        monkeypatch.setattr(Path, "replace", crash)
        with pytest.raises(OSError):
            engine.push(pipe, b"lost")
        monkeypatch.undo()

        assert record_files(pipe_dir) == []
        assert mf.load_manifest(pipe_dir) == {"latest": None}


# =============================================================================
# PULL
# =============================================================================

class TestPull:

    def test_round_trip(self, pipe_dir):
        """push(P) then a fresh consumer's pull() yields P exactly once."""
        producer = engine.make_pipe(pipe_dir)
        engine.push(producer, b"hello")

        consumer = engine.make_pipe(pipe_dir)

        assert engine.pull(consumer) == b"hello"
        assert engine.pull(consumer) is None
        assert record_files(pipe_dir) == []

    def test_empty_pipe_returns_none(self, pipe_dir):
        consumer = engine.make_pipe(pipe_dir)

        assert engine.pull(consumer) is None
        assert engine.pull(consumer) is None

    def test_empty_payload(self, pipe_dir):
        producer = engine.make_pipe(pipe_dir)
        engine.push(producer, b"")

        assert engine.pull(engine.make_pipe(pipe_dir)) == b""

    def test_ordering(self, pipe_dir):
        """Records come out in the order they were pushed."""
        producer = engine.make_pipe(pipe_dir)
        consumer = engine.make_pipe(pipe_dir)
        payloads = [f"msg-{i}".encode() for i in range(5)]

        for p in payloads:
            engine.push(producer, p)
            time.sleep(0.02)

        assert [engine.pull(consumer) for _ in payloads] == payloads
        assert engine.pull(consumer) is None

    def test_interleaved_push_pull(self, pipe_dir):
        producer = engine.make_pipe(pipe_dir)
        consumer = engine.make_pipe(pipe_dir)

        for i in range(3):
            engine.push(producer, bytes([i]))
            assert engine.pull(consumer) == bytes([i])
            assert engine.pull(consumer) is None

    def test_backlog_redelivery(self, pipe_dir):
        """A fresh consumer reads everything still present."""
        producer = engine.make_pipe(pipe_dir)
        for p in (b"a", b"b", b"c"):
            engine.push(producer, p)
            time.sleep(0.02)

        first = engine.make_pipe(pipe_dir)
        assert engine.pull(first) == b"a"

        # The on-disk cursor says everything is old; a fresh handle scans anyway
        mf.update_manifest(pipe_dir, mf.make_manifest(), time.time_ns() + 10**12)

        second = engine.make_pipe(pipe_dir)
        assert engine.pull(second) == b"b"
        assert engine.pull(second) == b"c"
        assert engine.pull(second) is None

    def test_skips_scan_when_manifest_unchanged(self, pipe_dir, monkeypatch):
        producer = engine.make_pipe(pipe_dir)
        consumer = engine.make_pipe(pipe_dir)
        engine.push(producer, b"x")
        consumer["manifest"]["latest"] = mf.load_manifest(pipe_dir)["latest"]

        def no_scan(*args, **kwargs):
            raise AssertionError("directory was scanned")

        monkeypatch.setattr(engine, "scan_records", no_scan)
        assert engine.pull(consumer) is None

    def test_skips_scan_when_manifest_empty(self, pipe_dir, monkeypatch):
        consumer = engine.make_pipe(pipe_dir)
        consumer["manifest"]["latest"] = 1

        def no_scan(*args, **kwargs):
            raise AssertionError("directory was scanned")

        monkeypatch.setattr(engine, "scan_records", no_scan)
        assert engine.pull(consumer) is None

    def test_equal_timestamps_all_delivered(self, pipe_dir, monkeypatch):
        """A coarse clock giving two records one timestamp loses neither."""
        producer = engine.make_pipe(pipe_dir)
        consumer = engine.make_pipe(pipe_dir)
        engine.push(producer, b"one")
        engine.push(producer, b"two")

        monkeypatch.setattr(engine, "creation_time_ns", lambda st: 1)

        got = {engine.pull(consumer), engine.pull(consumer)}
        assert got == {b"one", b"two"}

    def test_file_vanishing_mid_scan_is_skipped(self, pipe_dir, monkeypatch):
        """A listed file removed before its stat does not fail the pull."""
        producer = engine.make_pipe(pipe_dir)
        consumer = engine.make_pipe(pipe_dir)
        engine.push(producer, b"survivor")

        class VanishedEntry:
            name = "gone.bin"
            path = str(pipe_dir / "gone.bin")

            def is_file(self, follow_symlinks=True):
                return True

            def stat(self, follow_symlinks=True):
                raise FileNotFoundError(self.path)

        real_scandir = os.scandir

        @contextlib.contextmanager
        def scandir_with_vanished(root):
            with real_scandir(root) as it:
                yield [VanishedEntry()] + list(it)

        monkeypatch.setattr(os, "scandir", scandir_with_vanished)

        assert engine.pull(consumer) == b"survivor"
        assert engine.pull(engine.make_pipe(pipe_dir)) is None

    def test_ignores_temp_files(self, pipe_dir):
        consumer = engine.make_pipe(pipe_dir)
        (pipe_dir / "tmpabc.tmp").write_bytes(b"half")

        assert engine.pull(consumer) is None
        assert (pipe_dir / "tmpabc.tmp").exists()

    def test_ignores_directories(self, pipe_dir):
        consumer = engine.make_pipe(pipe_dir)
        (pipe_dir / "sub").mkdir()

        assert engine.pull(consumer) is None

    def test_foreign_file_is_a_record(self, pipe_dir):
        """Any non-manifest file is a record candidate."""
        consumer = engine.make_pipe(pipe_dir)
        (pipe_dir / "dropped-in").write_bytes(b"by hand")

        assert engine.pull(consumer) == b"by hand"

    def test_failed_delete_keeps_cursor(self, pipe_dir, monkeypatch):
        """No cursor advance when the record cannot be removed."""
        producer = engine.make_pipe(pipe_dir)
        consumer = engine.make_pipe(pipe_dir)
        engine.push(producer, b"sticky")

        def refuse(self, missing_ok=False):
            raise PermissionError("read-only")

        monkeypatch.setattr(Path, "unlink", refuse)
        with pytest.raises(OSError):
            engine.pull(consumer)
        monkeypatch.undo()

        assert consumer["manifest"]["latest"] is None
        assert engine.pull(consumer) == b"sticky"

    def test_in_flight_write_is_invisible(self, pipe_dir):
        """A record is not seen until its write is complete."""
        producer = engine.make_pipe(pipe_dir, write_latency=0.3)
        consumer = engine.make_pipe(pipe_dir)
        payload = b"z" * 100_000

        t = threading.Thread(target=engine.push, args=(producer, payload))
        t.start()
        time.sleep(0.1)
        assert engine.pull(consumer) is None
        t.join()

        assert engine.pull(consumer) == payload


# =============================================================================
# HELPERS
# =============================================================================

class TestHelpers:

    def test_pending_count(self, pipe_dir):
        pipe = engine.make_pipe(pipe_dir)
        assert engine.pending_count(pipe) == 0

        engine.push(pipe, b"1")
        engine.push(pipe, b"2")

        assert engine.pending_count(pipe) == 2

    def test_scan_records_sorted_oldest_first(self, pipe_dir):
        pipe = engine.make_pipe(pipe_dir)
        engine.push(pipe, b"old")
        time.sleep(0.02)
        engine.push(pipe, b"new")

        records = engine.scan_records(pipe_dir)

        assert [r[2].read_bytes() for r in records] == [b"old", b"new"]

    def test_creation_time_falls_back_to_ctime(self):
        class Stat:
            st_ctime_ns = 123

        assert engine.creation_time_ns(Stat()) == 123

    def test_creation_time_prefers_birthtime(self):
        class Stat:
            st_birthtime = 2.5
            st_ctime_ns = 123

        assert engine.creation_time_ns(Stat()) == 2_500_000_000
