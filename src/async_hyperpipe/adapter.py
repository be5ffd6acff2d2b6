"""
Async Adapter - await messages from a HyperPipe instead of busy-looping.

poll() is the scheduler-neutral core: it either returns (READY, payload) or
registers a wake continuation in the Waker Cell and returns (PENDING, None).
pull_async() drives poll() from asyncio, suspending on a future that the
watcher thread resolves through loop.call_soon_threadsafe.

An adapter is a plain dict:

    {
        "type": "HYPERPIPE-ASYNC",
        "pipe": pipe handle,
        "cell": waker cell,
        "watcher": watcher or None,
        "future": asyncio future of the current suspension, or None,
    }

Idle and Awaiting are not stored separately: the adapter is Awaiting exactly
while a continuation sits in its cell.
"""

import asyncio
import contextlib
import functools

from hyperpipe import engine
from hyperpipe.diagnostics import log_event

from . import waker
from .watcher import make_watcher, stop_watcher


READY = "ready"
PENDING = "pending"


# =============================================================================
# CONSTRUCTION / TEARDOWN
# =============================================================================

def make_async_pipe(path, flags="", write_latency=0.0):
    """Attach an async handle to the pipe at path.

    Flags:
        'n' - no watcher (producer side only; pull_async would never wake)
        'p' - watch with the polling observer instead of native OS events

    Raises WatchSetupFailed if the directory cannot be watched.
    """
    pipe = engine.make_pipe(path, write_latency)
    cell = waker.make_cell()

    watcher = None
    if "n" not in flags:
        watcher = make_watcher(pipe["root"], cell, "p" if "p" in flags else "")

    return {
        "type": "HYPERPIPE-ASYNC",
        "pipe": pipe,
        "cell": cell,
        "watcher": watcher,
        "future": None,
    }


def close_async_pipe(ap):
    """Drop any pending continuation and stop the watcher.

    A pull_async() still suspended on this adapter is cancelled.
    """
    waker.take(ap["cell"])
    if ap["watcher"] is not None:
        stop_watcher(ap["watcher"])
        ap["watcher"] = None

    fut = ap["future"]
    ap["future"] = None
    if fut is not None and not fut.done():
        try:
            fut.get_loop().call_soon_threadsafe(fut.cancel)
        except RuntimeError:
            # Loop already closed; nothing can be awaiting it
            log_event("close_after_loop_closed")


@contextlib.contextmanager
def closing_async_pipe(path, flags="", write_latency=0.0):
    ap = make_async_pipe(path, flags, write_latency)
    try:
        yield ap
    finally:
        close_async_pipe(ap)


def is_awaiting(ap):
    return waker.peek(ap["cell"]) is not None


# =============================================================================
# POLL
# =============================================================================

def poll(ap, wake):
    """Try to take one message; register wake if there is none.

    Returns (READY, payload) or (PENDING, None). wake is installed only when
    the cell is empty; an already installed continuation is left in place.
    Raises OSError from the underlying pull.
    """
    data = engine.pull(ap["pipe"])
    if data is not None:
        waker.take(ap["cell"])
        return READY, data

    if is_awaiting(ap):
        return PENDING, None

    # A push landing between the pull above and this install fires a
    # watcher event nobody receives; pull again once registered.
    waker.install(ap["cell"], wake)
    data = engine.pull(ap["pipe"])
    if data is not None:
        waker.take(ap["cell"])
        return READY, data

    log_event("await", {"root": str(ap["pipe"]["root"])})
    return PENDING, None


# =============================================================================
# ASYNCIO
# =============================================================================

def _resolve(fut):
    if not fut.done():
        fut.set_result(None)


def _wake_soon(loop, fut):
    """Continuation run by the watcher thread: resolve fut on its loop."""
    try:
        loop.call_soon_threadsafe(_resolve, fut)
    except RuntimeError:
        # Loop already closed; nobody is waiting any more
        log_event("wake_after_close")


async def pull_async(ap):
    """Return the next message, suspending until the watcher signals one."""
    loop = asyncio.get_running_loop()
    while True:
        fut = ap["future"]
        if fut is None or fut.done() or fut.get_loop() is not loop:
            fut = loop.create_future()
            ap["future"] = fut
            # A continuation left over for an older future would never
            # resolve this one
            waker.take(ap["cell"])

        status, data = poll(ap, functools.partial(_wake_soon, loop, fut))
        if status == READY:
            ap["future"] = None
            return data
        await fut


async def push_async(ap, payload):
    """Push without blocking the event loop."""
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, engine.push, ap["pipe"], payload)
