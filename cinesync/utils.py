"""Utility functions for CineSync."""

from __future__ import annotations

import asyncio
import logging
import socket
import sys
from collections.abc import Coroutine
from typing import TypeVar

_T = TypeVar("_T")

logger = logging.getLogger(__name__)

# Check if eager_start is supported (Python 3.12+)
_SUPPORTS_EAGER_START = sys.version_info >= (3, 12)


def create_task(
    coro: Coroutine[None, None, _T],
    *,
    loop: asyncio.AbstractEventLoop | None = None,
    name: str | None = None,
    eager_start: bool = False,
) -> asyncio.Task[_T]:
    """Create an asyncio task, optionally starting it eagerly.

    Tasks created from protocol handlers must not run inline, otherwise a
    handler could observe its own side effects before it returns. Eager start
    is therefore opt-in here.

    Args:
        coro: The coroutine to run as a task.
        loop: Optional event loop to use. If None, uses the running loop.
        name: Optional name for the task (for debugging).
        eager_start: Whether to start the task eagerly. Only honoured if the
            Python version supports it.

    Returns:
        The created asyncio Task.
    """
    if loop is None:
        loop = asyncio.get_running_loop()

    if _SUPPORTS_EAGER_START and eager_start:
        task = asyncio.Task(coro, loop=loop, name=name, eager_start=True)
    else:
        task = loop.create_task(coro, name=name)
    task.add_done_callback(_log_task_failure)
    return task


def _log_task_failure(task: asyncio.Task[object]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Task %s failed", task.get_name(), exc_info=exc)


def get_local_ip() -> str:
    """Get the local IP address of this machine on the LAN."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
    except OSError:
        return "localhost"


def default_peer_name() -> str:
    """Return a display name derived from the hostname."""
    hostname = socket.gethostname()
    return hostname or "cinesync-peer"
