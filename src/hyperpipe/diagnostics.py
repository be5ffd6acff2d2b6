"""
Diagnostics - JSONL events log for HyperPipe.

Nothing is logged until a sink is configured: set g["events_path"] to append
events to a JSONL file, and/or g["stderr"] to echo them on standard error.
"""

import json
import sys
import time


g = {
    "events_path": None,   # Path of events.jsonl, or None
    "stderr": False,       # echo events to stderr
}


def append_jsonl(path, obj):
    """Append a JSON object as a line to a JSONL file."""
    line = json.dumps(obj, ensure_ascii=False) + "\n"
    with open(path, "a", encoding="utf-8") as f:
        f.write(line)


def log_event(event_type, data=None):
    """Record an event in every configured sink."""
    if g["events_path"] is None and not g["stderr"]:
        return

    event = {
        "event": event_type,
        "ts_utc": f"{time.time():.6f}",
    }
    if data:
        event.update(data)

    if g["stderr"]:
        print(f"[hyperpipe] {json.dumps(event)}", file=sys.stderr, flush=True)

    if g["events_path"] is not None:
        try:
            append_jsonl(g["events_path"], event)
        except OSError as e:
            print(f"[hyperpipe] events log unwritable: {e}", file=sys.stderr)
