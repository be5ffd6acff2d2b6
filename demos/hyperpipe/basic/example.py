"""demos/hyperpipe/basic/example.py

A producer thread pushes a few messages into a pipe directory while an
asyncio consumer awaits them through the directory watcher.
"""

import asyncio
import sys
import tempfile
import threading
import time
from pathlib import Path

from hyperpipe import diagnostics, engine
from async_hyperpipe import adapter


kMESSAGES = [b"one", b"two", b"three", b"four"]


def producer(root):
    pipe = engine.make_pipe(root)
    for msg in kMESSAGES:
        time.sleep(0.25)
        engine.push(pipe, msg)


async def consume(ap):
    received = []
    for _ in kMESSAGES:
        received.append(await adapter.pull_async(ap))
    return received


def main():
    diagnostics.g["stderr"] = "-v" in sys.argv

    with tempfile.TemporaryDirectory() as td:
        root = Path(td) / "pipe"
        with adapter.closing_async_pipe(root) as ap:
            t = threading.Thread(target=producer, args=(root,))
            t.start()
            received = asyncio.run(asyncio.wait_for(consume(ap), 5.0))
            t.join()

    if received == kMESSAGES:
        print("PASS: consumer received every message in order.")
    else:
        print("FAIL: unexpected messages.")
    print(f"  received: {received}")


if __name__ == "__main__":
    main()
