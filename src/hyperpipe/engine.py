"""
Pipe Engine - a single producer, single consumer filesystem pipe.

A pipe is a directory. Each message is one file holding the raw payload;
the file's creation timestamp orders delivery. The producer bumps the
manifest after every write, and the consumer uses it to skip directory
scans when nothing has changed.

A pipe handle is a plain dict:

    {
        "type": "HYPERPIPE-HANDLE",
        "root": Path,                  # the pipe directory
        "manifest": {"latest": ...},   # local cursor (ns since epoch)
        "write-latency": float,        # seconds, between write and publish
    }

A fresh handle always starts with a local cursor of None, so its first
pull() sees every record currently present (backlog redelivery).
"""

import os
import tempfile
import time
import uuid
from pathlib import Path

from .diagnostics import log_event
from .manifest import (
    kTMP_SUFFIX,
    is_manifest_name, load_manifest, make_manifest, update_manifest,
)


# =============================================================================
# CONSTANTS
# =============================================================================

kHANDLE_TYPE = "HYPERPIPE-HANDLE"
kDATA_SUFFIX = ".bin"


# =============================================================================
# HANDLE
# =============================================================================

def make_pipe(path, write_latency=0.0):
    """Attach to the pipe at path, creating the directory if needed.

    Raises OSError if the directory cannot be created.
    """
    root = Path(path)
    root.mkdir(parents=True, exist_ok=True)

    # Creates the manifest on first attachment; the value itself is
    # discarded, a fresh handle reads the whole backlog.
    load_manifest(root)

    return {
        "type": kHANDLE_TYPE,
        "root": root,
        "manifest": make_manifest(),
        "write-latency": float(write_latency),
    }


# =============================================================================
# RECORD HELPERS
# =============================================================================

def generate_data_id():
    return f"{uuid.uuid4().hex}{kDATA_SUFFIX}"


def creation_time_ns(st):
    """Creation timestamp of a stat result, in ns since the epoch.

    Uses the birth time where the platform reports it. Elsewhere st_ctime
    stands in; records are published by rename, which sets it.
    """
    birth_ns = getattr(st, "st_birthtime_ns", None)
    if birth_ns is not None:
        return birth_ns
    birth = getattr(st, "st_birthtime", None)
    if birth is not None:
        return int(birth * 1_000_000_000)
    return st.st_ctime_ns


def is_record_name(name):
    """True for names that may hold a record: not the manifest, not in flight."""
    return not is_manifest_name(name) and not name.endswith(kTMP_SUFFIX)


def scan_records(root, cursor=None):
    """List pending records as sorted (timestamp, name, path) tuples.

    Keeps records created at or after cursor (everything when cursor is
    None). Delivered records are deleted, so a record still present at the
    cursor's own timestamp has not been delivered yet.
    """
    floor = 0 if cursor is None else cursor
    records = []

    with os.scandir(root) as it:
        for entry in it:
            if not is_record_name(entry.name):
                continue
            try:
                if not entry.is_file(follow_symlinks=False):
                    continue
                st = entry.stat(follow_symlinks=False)
            except FileNotFoundError:
                continue  # removed between listing and stat
            ts = creation_time_ns(st)
            if ts >= floor:
                records.append((ts, entry.name, Path(entry.path)))

    records.sort(key=lambda r: (r[0], r[1]))
    return records


def write_bytes_atomic(path, data, latency=0.0):
    """Write data to a temp sibling, wait latency seconds, then rename to path."""
    path = Path(path)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=kTMP_SUFFIX)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        if latency > 0:
            time.sleep(latency)
        Path(tmp_path).replace(path)
    except BaseException:
        Path(tmp_path).unlink(missing_ok=True)
        raise


# =============================================================================
# PUSH / PULL
# =============================================================================

def push(pipe, payload):
    """Push one message into the pipe.

    payload must be bytes-like; anything else raises TypeError and nothing
    is written. Raises OSError if the record or the manifest cannot be
    written. There is no retry.
    """
    # Reject ints and str before anything touches the disk
    data = memoryview(payload).tobytes()

    # Lower bound on the record's creation timestamp
    ts = time.time_ns()

    data_id = generate_data_id()
    write_bytes_atomic(pipe["root"] / data_id, data, pipe["write-latency"])

    update_manifest(pipe["root"], pipe["manifest"], ts)
    log_event("push", {"root": str(pipe["root"]), "id": data_id,
                       "size": len(data)})


def pull(pipe):
    """Take the oldest pending message out of the pipe.

    Returns the payload bytes, or None when nothing is pending. Raises
    OSError if the directory cannot be scanned or the record cannot be read
    or deleted; the local cursor is then left unchanged.
    """
    cursor = pipe["manifest"]["latest"]
    on_disk = load_manifest(pipe["root"])

    # Nothing was pushed since our last delivery: skip the scan
    if cursor is not None:
        latest = on_disk["latest"]
        if latest is None or latest <= cursor:
            return None

    records = scan_records(pipe["root"], cursor)
    if not records:
        return None

    ts, name, path = records[0]
    data = path.read_bytes()
    path.unlink()

    pipe["manifest"]["latest"] = ts
    log_event("pull", {"root": str(pipe["root"]), "id": name,
                       "size": len(data)})
    return data


def pending_count(pipe):
    """Number of records currently waiting in the pipe directory."""
    return len(scan_records(pipe["root"]))
