"""Blocking until a shared-cache lock held by another connection is released."""

import logging
import threading
import time

from .errors import ConfigurationError
from .native import load_library, SQLITE_OK, UNLOCK_NOTIFY_CALLBACK

logger = logging.getLogger(__name__)


class UnlockNotifyHandler:
    """Wakes statements that hit ``SQLITE_LOCKED`` in shared-cache mode.

    In native mode the engine's ``sqlite3_unlock_notify`` signals the
    handler. In emulated mode (for engines built without it) the handler is
    shared between the connections involved: their ``commit()`` and
    ``rollback()`` call ``emit()``, and waiters also wake every
    ``poll_interval`` seconds to retry.

    ``timeout`` bounds the total wait of one step (``None`` waits forever).
    """

    def __init__(self, emulated=None, timeout=5.0, poll_interval=0.05):
        native = hasattr(load_library(), "sqlite3_unlock_notify")
        if emulated is None:
            emulated = not native
        if not emulated and not native:
            raise ConfigurationError("the SQLite library was built without SQLITE_ENABLE_UNLOCK_NOTIFY")
        self.emulated = emulated
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.state = None
        self._fired = False
        self._cond = threading.Condition()
        self._trampoline = UNLOCK_NOTIFY_CALLBACK(self._on_unlock)

    def __repr__(self):
        mode = "emulated" if self.emulated else "native"
        return f"<UnlockNotifyHandler {mode}>"

    def _on_unlock(self, args, count):
        self.emit(SQLITE_OK)

    def emit(self, state=SQLITE_OK):
        """Signal that a lock may have been released."""
        with self._cond:
            self.state = state
            self._fired = True
            self._cond.notify_all()

    def wait(self, timeout=None):
        """Block until ``emit()`` or ``timeout``; return whether it fired."""
        with self._cond:
            fired = self._cond.wait_for(lambda: self._fired, timeout)
            self._fired = False
            return fired

    def _remaining(self, deadline):
        if deadline is None:
            return None
        return max(0.0, deadline - time.monotonic())

    def wait_for_unlock(self, conn, deadline):
        """Wait before a locked statement is retried.

        Returns ``False`` when the statement should give up: timeout, or the
        engine reports that waiting would deadlock.
        """
        remaining = self._remaining(deadline)
        if remaining is not None and remaining <= 0:
            return False

        if self.emulated:
            interval = self.poll_interval if remaining is None else min(self.poll_interval, remaining)
            self.wait(interval)
            return True

        with self._cond:
            self._fired = False
        lib = load_library()
        status = lib.sqlite3_unlock_notify(conn.db, self._trampoline, None)
        if status != SQLITE_OK:
            logger.debug("unlock notification refused with status %s", status)
            return False
        if self.wait(remaining):
            return True
        # Timed out: cancel the pending registration.
        lib.sqlite3_unlock_notify(conn.db, None, None)
        return False
