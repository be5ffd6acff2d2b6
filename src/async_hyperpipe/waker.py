"""
Waker Cell - a single-slot mailbox shared by one async pipe and its watcher.

The slot holds at most one continuation (a zero-argument callable). Both
sides only ever swap the whole value under the lock; nothing is mutated in
place.
"""

import threading


def make_cell():
    return {
        "type": "HYPERPIPE-WAKER-CELL",
        "lock": threading.Lock(),
        "slot": None,
    }


def swap(cell, value):
    """Replace the slot with value and return what was there."""
    with cell["lock"]:
        old = cell["slot"]
        cell["slot"] = value
    return old


def install(cell, wake):
    """Put wake in the slot, returning any continuation it displaced."""
    return swap(cell, wake)


def take(cell):
    """Empty the slot and return what was there."""
    return swap(cell, None)


def peek(cell):
    with cell["lock"]:
        return cell["slot"]


def fire(cell):
    """Invoke and clear the installed continuation.

    Returns True if one was invoked, False if the slot was empty.
    """
    wake = take(cell)
    if wake is None:
        return False
    wake()
    return True
