"""
Manifest Store - the per-pipe cursor file.

The manifest is a single JSON object, {"latest": <ns-since-epoch or null>},
stored in a file named "manifest" at the root of the pipe directory.
Updates are atomic (temp file + rename), so a reader never observes a
partially written manifest, and every update is visible as a move event in
the pipe directory.
"""

import json
import os
import tempfile
from pathlib import Path

from .diagnostics import log_event


# =============================================================================
# CONSTANTS
# =============================================================================

kMANIFEST = "manifest"
kTMP_SUFFIX = ".tmp"


# =============================================================================
# PATHS
# =============================================================================

def manifest_path(root):
    return Path(root) / kMANIFEST


def is_manifest_name(name):
    return name == kMANIFEST


def make_manifest(latest=None):
    return {"latest": latest}


# =============================================================================
# FILE I/O UTILITIES
# =============================================================================

def write_json_atomic(path, obj):
    """Write compact JSON to path atomically (temp file + rename)."""
    path = Path(path)
    content = json.dumps(obj, ensure_ascii=False)

    # Write to temp file in same directory, then rename
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=kTMP_SUFFIX)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        Path(tmp_path).replace(path)
    except BaseException:
        Path(tmp_path).unlink(missing_ok=True)
        raise


def _parse_manifest(text):
    """Return a manifest dict from text, or None if it is not one."""
    try:
        obj = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(obj, dict) or "latest" not in obj:
        return None
    latest = obj["latest"]
    if latest is None:
        return make_manifest()
    # bool is an int subclass; a stray true/false is still corruption
    if isinstance(latest, bool) or not isinstance(latest, int):
        return None
    return make_manifest(latest)


# =============================================================================
# LOAD / UPDATE
# =============================================================================

def load_manifest(root):
    """Load the manifest of the pipe at root.

    Never raises. An absent, unreadable or corrupt manifest is replaced on
    disk by a fresh {"latest": None}, which is returned.
    """
    path = manifest_path(root)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        text = None
    except (OSError, UnicodeDecodeError) as e:
        log_event("manifest_unreadable", {"path": str(path), "error": str(e)})
        text = None

    if text is not None:
        manifest = _parse_manifest(text)
        if manifest is not None:
            return manifest
        log_event("manifest_reset", {"path": str(path)})

    manifest = make_manifest()
    try:
        write_json_atomic(path, manifest)
    except OSError as e:
        log_event("manifest_write_failed", {"path": str(path), "error": str(e)})
    return manifest


def update_manifest(root, manifest, latest):
    """Set manifest["latest"] and atomically replace the on-disk manifest.

    Raises OSError if the manifest cannot be written; the previous manifest
    on disk is then left intact.
    """
    write_json_atomic(manifest_path(root), make_manifest(latest))
    manifest["latest"] = latest
