"""
HyperPipe CLI - push stdin into a pipe directory, pull messages to stdout.

Commands:
    push    read all of stdin and push it as one message
    pull    poll the pipe, writing each message to stdout
    watch   like pull, but sleeps until the directory watcher wakes it
    status  print the manifest and the number of pending messages
"""

import asyncio
import json
import sys
import time
from pathlib import Path

import lionscliapp as app

from hyperpipe import diagnostics, engine
from hyperpipe.manifest import load_manifest
from async_hyperpipe import adapter
from async_hyperpipe.watcher import WatchSetupFailed


# =============================================================================
# CONSTANTS
# =============================================================================

kPROJECT_DIR = ".hyperpipe"
kEVENTS_LOG = "events.jsonl"
kDEFAULT_PIPE = "./test-pipe-data"


# =============================================================================
# OPERATIONS
# =============================================================================

def push_from_stream(root, stream, write_latency=0.0):
    """Push the whole content of a binary stream. Returns True on success."""
    data = stream.read()
    try:
        pipe = engine.make_pipe(root, write_latency)
        engine.push(pipe, data)
    except OSError as e:
        diagnostics.log_event("push_failed", {"root": str(root), "error": str(e)})
        return False
    return True


def pull_to_stream(root, out, delay_seconds=0.2, count=0):
    """Poll the pipe, writing messages to a binary stream.

    Stops after count messages (never, when count is 0). Returns the number
    of messages written. Raises OSError when a pull fails.
    """
    pipe = engine.make_pipe(root)
    written = 0
    while count == 0 or written < count:
        data = engine.pull(pipe)
        if data is None:
            time.sleep(delay_seconds)
            continue
        out.write(data)
        out.flush()
        written += 1
    return written


async def watch_to_stream(root, out, count=0, flags=""):
    """Like pull_to_stream, but waits on the directory watcher between messages."""
    with adapter.closing_async_pipe(root, flags) as ap:
        written = 0
        while count == 0 or written < count:
            data = await adapter.pull_async(ap)
            out.write(data)
            out.flush()
            written += 1
        return written


def status_report(root):
    """Return the on-disk manifest and the pending message count."""
    pipe = engine.make_pipe(root)
    return {
        "pipe": str(pipe["root"].resolve()),
        "manifest": load_manifest(pipe["root"]),
        "pending": engine.pending_count(pipe),
    }


# =============================================================================
# LIFECYCLE
# =============================================================================

def initialize_events_log():
    """Point the diagnostics events log at the project directory."""
    from lionscliapp import paths
    project_dir = Path(paths.get_project_root())
    project_dir.mkdir(parents=True, exist_ok=True)
    diagnostics.g["events_path"] = project_dir / kEVENTS_LOG


def _pipe_root():
    return Path(app.ctx["path.pipe"])


# =============================================================================
# CLI COMMANDS
# =============================================================================

def cmd_push():
    """Push stdin as one message."""
    initialize_events_log()
    ok = push_from_stream(_pipe_root(), sys.stdin.buffer,
                          float(app.ctx["push.write_latency_seconds"]))
    print(f"Push element: {'OK' if ok else 'FAILED'}", file=sys.stderr)
    if not ok:
        sys.exit(1)


def cmd_pull():
    """Poll the pipe, writing messages to stdout."""
    initialize_events_log()
    print("Press Ctrl-C to exit this pull loop!", file=sys.stderr)
    try:
        pull_to_stream(_pipe_root(), sys.stdout.buffer,
                       float(app.ctx["pull.delay_seconds"]),
                       int(app.ctx["pull.count"]))
    except KeyboardInterrupt:
        pass
    except OSError as e:
        diagnostics.log_event("pull_failed", {"error": str(e)})
        print(f"Pull element: FAILED ({e})", file=sys.stderr)
        sys.exit(1)


def cmd_watch():
    """Wait on the directory watcher, writing messages to stdout."""
    initialize_events_log()
    print("Press Ctrl-C to exit this watch loop!", file=sys.stderr)
    try:
        asyncio.run(watch_to_stream(_pipe_root(), sys.stdout.buffer,
                                    int(app.ctx["pull.count"])))
    except KeyboardInterrupt:
        pass
    except (OSError, WatchSetupFailed) as e:
        diagnostics.log_event("watch_failed", {"error": str(e)})
        print(f"Watch: FAILED ({e})", file=sys.stderr)
        sys.exit(1)


def cmd_status():
    """Print the manifest and pending message count."""
    print(json.dumps(status_report(_pipe_root()), indent=2))


# =============================================================================
# ENTRY POINT
# =============================================================================

def main():
    """Entry point via lionscliapp."""
    app.declare_app("hyperpipe", "0.1")
    app.describe_app("Single producer, single consumer filesystem pipe")
    app.declare_projectdir(kPROJECT_DIR)

    # Configuration keys
    app.declare_key("path.pipe", kDEFAULT_PIPE)
    app.describe_key("path.pipe", "Pipe directory")

    app.declare_key("pull.delay_seconds", 0.2)
    app.describe_key("pull.delay_seconds", "Seconds between polls when the pipe is empty")

    app.declare_key("pull.count", 0)
    app.describe_key("pull.count", "Stop after this many messages (0 = never)")

    app.declare_key("push.write_latency_seconds", 0.0)
    app.describe_key("push.write_latency_seconds", "Artificial delay before a message is published")

    # Commands
    app.declare_cmd("push", cmd_push)
    app.describe_cmd("push", "Push stdin as one message")

    app.declare_cmd("pull", cmd_pull)
    app.describe_cmd("pull", "Poll the pipe, writing messages to stdout")

    app.declare_cmd("watch", cmd_watch)
    app.describe_cmd("watch", "Wait for messages via the directory watcher")

    app.declare_cmd("status", cmd_status)
    app.describe_cmd("status", "Show manifest and pending message count")

    app.main()


if __name__ == "__main__":
    main()
