from .waker import make_cell, swap, install, take, peek, fire
from .watcher import WatchSetupFailed, make_watcher, stop_watcher
from .adapter import (
    READY, PENDING,
    make_async_pipe, close_async_pipe, closing_async_pipe, is_awaiting,
    poll, pull_async, push_async,
)
