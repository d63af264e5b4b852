"""Remote-echo guard, sync lock check and debounce for local media events."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class DebounceGate:
    """Filter locally observed media events before they become protocol traffic.

    An event first meets the remote-echo guard: if the engine flagged that it
    is about to mutate the surface on behalf of a remote command, the event
    consumes the flag and is dropped. It then meets the lock guard. Survivors
    are debounced; a newer event supersedes the pending one, and the lock is
    checked again when the quiet window ends.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        delay: float,
        is_locked: Callable[[], bool],
    ) -> None:
        self._loop = loop
        self._delay = delay
        self._is_locked = is_locked
        self._remote_echo = False
        self._handle: asyncio.TimerHandle | None = None
        self._pending_label: str | None = None

    @property
    def remote_echo_pending(self) -> bool:
        return self._remote_echo

    @property
    def pending(self) -> str | None:
        """Label of the debounced action waiting to fire, if any."""
        return self._pending_label

    def mark_remote_echo(self) -> None:
        """Flag the next local media event as caused by a remote command."""
        self._remote_echo = True

    def clear_remote_echo(self) -> None:
        """Drop the flag when the guarded mutation did not emit an event."""
        self._remote_echo = False

    def submit(self, label: str, action: Callable[[], None]) -> bool:
        """Pass a local event through the guards.

        Returns:
            True if the action was scheduled, False if it was filtered.
        """
        if self._remote_echo:
            self._remote_echo = False
            logger.debug("Suppressed remote echo of local %s", label)
            return False
        if self._is_locked():
            logger.debug("Sync in progress, dropping local %s", label)
            return False

        self.cancel()
        self._pending_label = label
        self._handle = self._loop.call_later(self._delay, self._fire, label, action)
        return True

    def _fire(self, label: str, action: Callable[[], None]) -> None:
        self._handle = None
        self._pending_label = None
        if self._is_locked():
            logger.debug("Sync started during debounce, dropping local %s", label)
            return
        action()

    def cancel(self) -> None:
        """Cancel the pending debounced action."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._pending_label = None
