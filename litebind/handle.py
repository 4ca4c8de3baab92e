"""Reference-counted ownership of opaque engine handles.

Wrapper objects (``Connection``, ``Statement``) have value semantics: copying
one shares the native pointer. ``NativeHandle`` guarantees the engine's
finalizer runs exactly once for that pointer, whichever copy goes last.
"""

import logging
import threading

from .errors import InterfaceError
from .native import SQLITE_OK

logger = logging.getLogger(__name__)


class NativeHandle:
    def __init__(self, ptr, finalizer, kind="handle"):
        if not ptr:
            raise InterfaceError(f"cannot wrap a NULL {kind}")
        self._ptr = ptr
        self._finalizer = finalizer
        self._kind = kind
        self._count = 1
        self._lock = threading.Lock()
        # Status returned by the finalizer, kept for inspection only.
        self.finalize_status = None

    def __repr__(self):
        state = f"refcount={self._count}" if self._ptr else "finalized"
        return f"<NativeHandle {self._kind} {state}>"

    @property
    def ptr(self):
        ptr = self._ptr
        if ptr is None:
            raise InterfaceError(f"{self._kind} has been finalized")
        return ptr

    @property
    def alive(self):
        return self._ptr is not None

    @property
    def refcount(self):
        return self._count

    def acquire(self):
        with self._lock:
            if self._ptr is None:
                raise InterfaceError(f"{self._kind} has been finalized")
            self._count += 1
        return self

    def release(self):
        with self._lock:
            if self._count == 0:
                return
            self._count -= 1
            if self._count:
                return
            ptr, self._ptr = self._ptr, None
        if ptr is not None:
            self._run_finalizer(ptr)

    def finalize(self):
        """Finalize now, whatever the number of outstanding references."""
        with self._lock:
            ptr, self._ptr = self._ptr, None
            self._count = 0
        if ptr is not None:
            self._run_finalizer(ptr)

    def _run_finalizer(self, ptr):
        status = self._finalizer(ptr)
        self.finalize_status = status
        if status not in (None, SQLITE_OK):
            # Finalizing a healthy handle should not fail; nothing the caller
            # can do about it either.
            logger.warning("finalizing %s returned status %s", self._kind, status)
