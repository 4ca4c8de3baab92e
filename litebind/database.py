"""Database connections."""

from __future__ import annotations

import ctypes
import dataclasses
import itertools
import logging
import os
from typing import Any, Callable, Optional

from . import callbacks
from .errors import (
    ConfigurationError, ExecutionError, InterfaceError, OpenError, StepError, engine_error, raise_for_status,
)
from .handle import NativeHandle
from .native import (
    load_library,
    SQLITE_OK, SQLITE_OPEN_READWRITE, SQLITE_OPEN_CREATE, SQLITE_UTF8, SQLITE_DETERMINISTIC,
    SQLITE_TRACE_STMT, SQLITE_TRACE_PROFILE,
)
from .results import ResultRange
from .statement import Statement, StatementCore, compile_sql, prepare
from .unlock import UnlockNotifyHandler

logger = logging.getLogger(__name__)

DEFAULT_FLAGS = SQLITE_OPEN_READWRITE | SQLITE_OPEN_CREATE


@dataclasses.dataclass(frozen=True)
class ColumnMetadata:
    declared_type: Optional[str]
    collation: Optional[str]
    not_null: bool
    primary_key: bool
    autoincrement: bool


class ConnectionCore:
    """Engine state shared by every copy of a ``Connection``.

    Owns the native handle, tracks the statements compiled on it and pins the
    callback trampolines registered with the engine.
    """

    def __init__(self, ptr, path):
        self.path = path
        self.statements = set()
        self.callbacks = {}
        self.aggregates = {}
        self.aggregate_keys = itertools.count(1)
        self.tracers = {"statement": None, "profile": None}
        self.unlock_handler = None
        self._pending_error = None
        self.handle = NativeHandle(ptr, self._close_native, "connection")

    @property
    def db(self):
        return self.handle.ptr

    def record_callback_error(self, exc):
        # The first failure wins; later ones are usually consequences.
        if self._pending_error is None:
            self._pending_error = exc

    def take_callback_error(self):
        exc, self._pending_error = self._pending_error, None
        return exc

    def notify_unlocked(self):
        handler = self.unlock_handler
        if handler is not None and handler.emulated:
            handler.emit()

    def _close_native(self, ptr):
        # The engine refuses to close with live statements: finalize them first.
        for handle in list(self.statements):
            handle.finalize()
        self.statements.clear()
        status = load_library().sqlite3_close(ptr)
        if status == SQLITE_OK:
            self.callbacks.clear()
            self.aggregates.clear()
        if self._pending_error is not None:
            logger.debug("dropping unreported callback error %r", self._pending_error)
            self._pending_error = None
        self.notify_unlocked()
        logger.debug("closed connection to %s", self.path)
        return status


class Connection:
    """A connection to an SQLite database.

    Copies made with ``copy.copy`` share the native connection, which is
    closed when the last copy is closed or garbage collected. Statements
    still alive at that point are finalized first and become unusable.

    Callbacks registered on a connection must not use that same connection.
    """

    def __init__(self, path=":memory:", flags=DEFAULT_FLAGS, vfs=None):
        lib = load_library()
        path = os.fspath(path)
        db = ctypes.c_void_p()
        status = lib.sqlite3_open_v2(
            path.encode("utf-8"),
            ctypes.byref(db),
            flags,
            vfs.encode("utf-8") if vfs else None,
        )
        if status != SQLITE_OK:
            error = engine_error(OpenError, db.value, status)
            if db.value:
                lib.sqlite3_close(db.value)
            raise error
        self._core = ConnectionCore(db.value, path)
        self._released = False
        logger.debug("opened connection to %s", path)

    @classmethod
    def open(cls, path, flags=DEFAULT_FLAGS, vfs=None) -> Connection:
        return cls(path, flags, vfs)

    @classmethod
    def _from_core(cls, core):
        conn = cls.__new__(cls)
        conn._core = core
        conn._released = False
        return conn

    def __copy__(self):
        self._core.handle.acquire()
        return Connection._from_core(self._core)

    def __del__(self):
        if getattr(self, "_core", None) is not None:
            self.close()

    def __repr__(self):
        state = "closed" if self._released or not self._core.handle.alive else "open"
        return f"<Connection {self._core.path!r} {state}>"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if not self._released and self._core.handle.alive and not self.is_autocommit:
                if exc_type:
                    self.rollback()
                else:
                    self.commit()
        finally:
            self.close()

    def close(self):
        """Drop this wrapper's reference to the native connection."""
        if self._released:
            return
        self._released = True
        self._core.handle.release()

    @property
    def handle(self) -> NativeHandle:
        return self._core.handle

    @property
    def path(self) -> str:
        return self._core.path

    def _live_core(self):
        if self._released:
            raise InterfaceError("connection is closed")
        # Raises once the native handle has been finalized.
        self._core.db
        return self._core

    @property
    def _db(self):
        return self._live_core().db

    # Statements

    def prepare(self, sql: str) -> Statement:
        return prepare(self._live_core(), sql)

    def run(self, script: str, callback: Optional[Callable[[ResultRange], Any]] = None) -> None:
        """Execute every statement of ``script`` in order.

        With ``callback``, each statement's ``ResultRange`` is handed to it;
        returning ``False`` stops the script.
        """
        core = self._live_core()
        data = script.encode("utf-8")
        buf = ctypes.create_string_buffer(data)
        offset, end = 0, len(data)
        while offset < end:
            status, ptr, tail = compile_sql(core, buf, offset, end)
            segment = data[offset:tail if tail > offset else end].decode("utf-8", errors="replace").strip()
            if status != SQLITE_OK:
                raise engine_error(ExecutionError, core.db, status, sql=segment)
            if ptr is None:
                break
            offset = tail

            statement = Statement(StatementCore(core, ptr, segment))
            try:
                if callback is None:
                    statement.execute()
                elif callback(ResultRange(statement)) is False:
                    break
            except StepError as exc:
                context = {"native_code": exc.extended_code, "sql": segment}
                raise ExecutionError(
                    exc.message, code=exc.code, extended_code=exc.extended_code, sql=segment, context=context
                ) from exc
            finally:
                statement.close()

    def execute(self, sql: str, *args) -> Any:
        """Prepare, bind ``args``, and run ``sql`` to completion.

        Returns the first column of the first row, or ``None`` when the
        statement produced no row.
        """
        with self.prepare(sql) as statement:
            statement.bind_arguments(args)
            row = statement.step()
            value = row.peek(0) if row is not None else None
            while row is not None:
                row = statement.step()
            return value

    def query(self, sql: str, *args) -> ResultRange:
        """Prepare and bind ``sql``; return its rows lazily."""
        statement = self.prepare(sql)
        try:
            statement.bind_arguments(args)
        except Exception:
            statement.close()
            raise
        return ResultRange(statement, owns_statement=True)

    # Transactions

    def begin(self, mode: Optional[str] = None) -> None:
        self.run(f"BEGIN {mode} TRANSACTION" if mode else "BEGIN TRANSACTION")

    def commit(self) -> None:
        self.run("COMMIT")
        self._core.notify_unlocked()

    def rollback(self) -> None:
        self.run("ROLLBACK")
        self._core.notify_unlocked()

    # State

    @property
    def changes(self) -> int:
        return load_library().sqlite3_changes(self._db)

    @property
    def total_changes(self) -> int:
        return load_library().sqlite3_total_changes(self._db)

    @property
    def last_insert_rowid(self) -> int:
        return load_library().sqlite3_last_insert_rowid(self._db)

    @property
    def is_autocommit(self) -> bool:
        return bool(load_library().sqlite3_get_autocommit(self._db))

    @property
    def error_code(self) -> int:
        return load_library().sqlite3_errcode(self._db)

    @property
    def error_message(self) -> str:
        msg = load_library().sqlite3_errmsg(self._db)
        return msg.decode("utf-8", errors="replace") if msg else ""

    def is_read_only(self, database: str = "main") -> bool:
        result = load_library().sqlite3_db_readonly(self._db, database.encode("utf-8"))
        if result < 0:
            raise ExecutionError(f"no database named {database!r}")
        return bool(result)

    def attached_file_path(self, database: str = "main") -> Optional[str]:
        """File of an attached database; empty for temporary or in-memory ones."""
        raw = load_library().sqlite3_db_filename(self._db, database.encode("utf-8"))
        return raw.decode("utf-8") if raw is not None else None

    def table_column_metadata(self, table: str, column: str, database: Optional[str] = None) -> ColumnMetadata:
        lib = load_library()
        if not hasattr(lib, "sqlite3_table_column_metadata"):
            raise ConfigurationError("the SQLite library was built without SQLITE_ENABLE_COLUMN_METADATA")
        db = self._db
        decltype = ctypes.c_char_p()
        collation = ctypes.c_char_p()
        not_null = ctypes.c_int()
        primary_key = ctypes.c_int()
        autoincrement = ctypes.c_int()
        status = lib.sqlite3_table_column_metadata(
            db,
            database.encode("utf-8") if database else None,
            table.encode("utf-8"),
            column.encode("utf-8"),
            ctypes.byref(decltype),
            ctypes.byref(collation),
            ctypes.byref(not_null),
            ctypes.byref(primary_key),
            ctypes.byref(autoincrement),
        )
        raise_for_status(ExecutionError, db, status)
        return ColumnMetadata(
            declared_type=decltype.value.decode("utf-8") if decltype.value else None,
            collation=collation.value.decode("utf-8") if collation.value else None,
            not_null=bool(not_null.value),
            primary_key=bool(primary_key.value),
            autoincrement=bool(autoincrement.value),
        )

    # Configuration pass-throughs

    def set_db_config(self, option: int, value) -> bool:
        """Set an on/off ``sqlite3_db_config`` option; return its new state."""
        db = self._db
        out = ctypes.c_int()
        status = load_library().sqlite3_db_config(
            ctypes.c_void_p(db), ctypes.c_int(option), ctypes.c_int(int(value)), ctypes.byref(out)
        )
        raise_for_status(ConfigurationError, db, status)
        return bool(out.value)

    def set_busy_timeout(self, milliseconds: int) -> None:
        core = self._live_core()
        status = load_library().sqlite3_busy_timeout(core.db, milliseconds)
        raise_for_status(ConfigurationError, core.db, status)
        # Replaces any busy handler.
        core.callbacks.pop("busy", None)

    def set_busy_handler(self, callback: Optional[Callable[[int], bool]]) -> None:
        core = self._live_core()
        trampoline = None if callback is None else callbacks.make_busy_handler(core, callback)
        status = load_library().sqlite3_busy_handler(core.db, trampoline, None)
        raise_for_status(ConfigurationError, core.db, status)
        self._pin(core, "busy", trampoline)

    def set_progress_handler(self, callback: Optional[Callable[[], bool]], instructions: int = 1000) -> None:
        core = self._live_core()
        if callback is None:
            load_library().sqlite3_progress_handler(core.db, 0, None, None)
            self._pin(core, "progress", None)
            return
        trampoline = callbacks.make_progress_handler(core, callback)
        load_library().sqlite3_progress_handler(core.db, instructions, trampoline, None)
        self._pin(core, "progress", trampoline)

    def set_trace_callback(self, callback: Optional[Callable[[str], None]]) -> None:
        self._set_tracer("statement", callback)

    def set_profile_callback(self, callback: Optional[Callable[[str, int], None]]) -> None:
        """``callback(sql, nanoseconds)`` after each statement finishes."""
        self._set_tracer("profile", callback)

    def _set_tracer(self, kind, callback):
        core = self._live_core()
        core.tracers[kind] = callback
        on_statement = core.tracers["statement"]
        on_profile = core.tracers["profile"]
        mask = (SQLITE_TRACE_STMT if on_statement else 0) | (SQLITE_TRACE_PROFILE if on_profile else 0)
        trampoline = callbacks.make_tracer(core, on_statement, on_profile) if mask else None
        status = load_library().sqlite3_trace_v2(core.db, mask, trampoline, None)
        raise_for_status(ConfigurationError, core.db, status)
        self._pin(core, "trace", trampoline)

    def interrupt(self) -> None:
        load_library().sqlite3_interrupt(self._db)

    def enable_load_extensions(self, enable: bool = True) -> None:
        lib = load_library()
        if not hasattr(lib, "sqlite3_enable_load_extension"):
            raise ConfigurationError("the SQLite library was built without extension loading")
        db = self._db
        raise_for_status(ConfigurationError, db, lib.sqlite3_enable_load_extension(db, 1 if enable else 0))

    def load_extension(self, path: str, entry_point: Optional[str] = None) -> None:
        lib = load_library()
        if not hasattr(lib, "sqlite3_load_extension"):
            raise ConfigurationError("the SQLite library was built without extension loading")
        db = self._db
        err = ctypes.c_void_p()
        status = lib.sqlite3_load_extension(
            db,
            os.fsencode(path),
            entry_point.encode("utf-8") if entry_point else None,
            ctypes.byref(err),
        )
        if status == SQLITE_OK:
            return
        if err.value:
            msg = ctypes.string_at(err.value).decode("utf-8", errors="replace")
            lib.sqlite3_free(err.value)
        else:
            msg = lib.sqlite3_errstr(status).decode("utf-8", errors="replace")
        raise ExecutionError(msg, code=status & 0xFF, extended_code=status)

    def set_unlock_notify_handler(self, handler: Optional[UnlockNotifyHandler]) -> None:
        self._live_core().unlock_handler = handler

    # Hooks

    def _pin(self, core, key, trampoline):
        if trampoline is None:
            core.callbacks.pop(key, None)
        else:
            core.callbacks[key] = trampoline

    def set_update_hook(self, callback: Optional[Callable[[int, str, str, int], None]]) -> None:
        """``callback(operation, database, table, rowid)`` for every row
        inserted, updated or deleted; ``operation`` is one of
        ``SQLITE_INSERT``, ``SQLITE_UPDATE``, ``SQLITE_DELETE``."""
        core = self._live_core()
        trampoline = None if callback is None else callbacks.make_update_hook(core, callback)
        load_library().sqlite3_update_hook(core.db, trampoline, None)
        self._pin(core, "update_hook", trampoline)

    def set_commit_hook(self, callback: Optional[Callable[[], bool]]) -> None:
        """``callback()`` before each commit; a truthy result turns the commit
        into a rollback."""
        core = self._live_core()
        trampoline = None if callback is None else callbacks.make_commit_hook(core, callback)
        load_library().sqlite3_commit_hook(core.db, trampoline, None)
        self._pin(core, "commit_hook", trampoline)

    def set_rollback_hook(self, callback: Optional[Callable[[], None]]) -> None:
        core = self._live_core()
        trampoline = None if callback is None else callbacks.make_rollback_hook(core, callback)
        load_library().sqlite3_rollback_hook(core.db, trampoline, None)
        self._pin(core, "rollback_hook", trampoline)

    # User-defined functions

    def create_function(self, name: str, func: Optional[Callable], nargs: Optional[int] = None, deterministic: bool = False) -> None:
        """Make ``func`` callable from SQL as ``name``.

        Arguments are converted to the types ``func`` annotates its
        parameters with; ``nargs`` defaults to its positional arity (-1 with
        ``*args``). Passing ``func=None`` removes the function.
        """
        core = self._live_core()
        if func is None:
            self._remove_function(core, name, nargs)
            return
        marshaller = callbacks.Marshaller(func)
        if nargs is None:
            nargs = marshaller.nargs
        trampoline = callbacks.make_function(core, name, func, marshaller)
        flags = SQLITE_UTF8 | (SQLITE_DETERMINISTIC if deterministic else 0)
        status = load_library().sqlite3_create_function_v2(
            core.db, name.encode("utf-8"), nargs, flags, None, trampoline, None, None, None)
        raise_for_status(ConfigurationError, core.db, status)
        self._pin(core, ("function", name.lower(), nargs), trampoline)

    def create_aggregate(self, name: str, factory: Optional[Callable], nargs: Optional[int] = None) -> None:
        """Register an aggregate; ``factory()`` returns an object with
        ``step(*args)`` and ``finalize()``, one per aggregation."""
        core = self._live_core()
        if factory is None:
            self._remove_function(core, name, nargs)
            return
        if nargs is None:
            nargs = callbacks.Marshaller(factory.step, skip_first=True).nargs if isinstance(factory, type) else -1
        pair = callbacks.make_aggregate(core, name, factory)
        step, final = pair
        status = load_library().sqlite3_create_function_v2(
            core.db, name.encode("utf-8"), nargs, SQLITE_UTF8, None, None, step, final, None)
        raise_for_status(ConfigurationError, core.db, status)
        self._pin(core, ("function", name.lower(), nargs), pair)

    def _remove_function(self, core, name, nargs):
        # The engine only drops the registration whose arity matches, so
        # without an explicit ``nargs`` every arity registered here goes.
        if nargs is None:
            arities = sorted(key[2] for key in core.callbacks
                             if isinstance(key, tuple) and key[:2] == ("function", name.lower()))
            arities = arities or [-1]
        else:
            arities = [nargs]
        lib = load_library()
        for n in arities:
            status = lib.sqlite3_create_function_v2(
                core.db, name.encode("utf-8"), n, SQLITE_UTF8, None, None, None, None, None)
            raise_for_status(ConfigurationError, core.db, status)
            self._pin(core, ("function", name.lower(), n), None)

    def create_collation(self, name: str, func: Optional[Callable[[str, str], int]]) -> None:
        """Register ``func(a, b)`` (negative, zero or positive) as a collation."""
        core = self._live_core()
        trampoline = None if func is None else callbacks.make_collation(core, name, func)
        status = load_library().sqlite3_create_collation_v2(core.db, name.encode("utf-8"), SQLITE_UTF8, None, trampoline, None)
        raise_for_status(ConfigurationError, core.db, status)
        self._pin(core, ("collation", name.lower()), trampoline)


def connect(path=":memory:", flags=DEFAULT_FLAGS, vfs=None) -> Connection:
    return Connection(path, flags, vfs)
