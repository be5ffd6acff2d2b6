"""
Watcher Bridge - wake a waiting consumer on filesystem move events.

A watchdog Observer watches one pipe directory. Its emitter thread does the
blocking OS wait (inotify, kqueue, FSEvents or ReadDirectoryChangesW), so
nothing blocks the event loop. Every manifest update ends in an atomic
rename, which the OS reports as a move; on each move event the bridge fires
the Waker Cell. Event payloads are not inspected.

The watcher is a plain dict:

    {
        "type": "HYPERPIPE-WATCHER",
        "root": Path,
        "cell": waker cell,
        "observer": watchdog observer,
        "stats": {"events": int, "woken": int, "dropped": int},
    }
"""

from pathlib import Path

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from hyperpipe.diagnostics import log_event

from . import waker


kPOLL_INTERVAL = 0.1  # seconds, for the "p" fallback


class WatchSetupFailed(RuntimeError):
    """The OS-level watch on a pipe directory could not be established."""


class _MoveEventHandler(FileSystemEventHandler):
    """Runs in the observer thread; fires the cell on every move event."""

    def __init__(self, watcher):
        super().__init__()
        self._watcher = watcher

    def _wake(self):
        stats = self._watcher["stats"]
        stats["events"] += 1
        if waker.fire(self._watcher["cell"]):
            stats["woken"] += 1
        else:
            # Nobody waiting; the adapter rechecks after registering
            stats["dropped"] += 1

    def on_moved(self, event):
        self._wake()


class _PollingEventHandler(_MoveEventHandler):
    """Snapshot diffs report a rename over an existing file as a new file,
    so the polling fallback wakes on any event."""

    def on_moved(self, event):
        pass

    def on_any_event(self, event):
        self._wake()


def make_watcher(root, cell, flags=""):
    """Start watching root for move events, firing cell on each.

    Flags:
        'p' - use the portable polling observer instead of native OS events

    Raises WatchSetupFailed if the watch cannot be established.
    """
    root = Path(root)
    if not root.is_dir():
        raise WatchSetupFailed(f"failed to watch directory {root}: not a directory")

    watcher = {
        "type": "HYPERPIPE-WATCHER",
        "root": root,
        "cell": cell,
        "observer": None,
        "stats": {"events": 0, "woken": 0, "dropped": 0},
    }

    if "p" in flags:
        observer = PollingObserver(timeout=kPOLL_INTERVAL)
        handler = _PollingEventHandler(watcher)
    else:
        observer = Observer()
        handler = _MoveEventHandler(watcher)
    observer.daemon = True

    try:
        observer.schedule(handler, str(root), recursive=False)
        observer.start()
    except OSError as e:
        raise WatchSetupFailed(f"failed to watch directory {root}: {e}") from e

    watcher["observer"] = observer
    log_event("watch_started", {"root": str(root), "polling": "p" in flags})
    return watcher


def stop_watcher(watcher, timeout=2.0):
    """Stop the observer thread and wait for it to exit. Safe to call twice."""
    observer = watcher["observer"]
    if observer is None:
        return
    watcher["observer"] = None
    observer.stop()
    observer.join(timeout=timeout)
    log_event("watch_stopped", {"root": str(watcher["root"]),
                                **watcher["stats"]})
