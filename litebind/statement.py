"""Prepared statements: compilation, parameter binding and stepping."""

from __future__ import annotations

import collections.abc
import ctypes
import dataclasses
import enum
import time
from typing import Any

from .errors import BindError, InterfaceError, PrepareError, StepError, engine_error
from .handle import NativeHandle
from .native import (
    load_library,
    SQLITE_OK, SQLITE_ERROR, SQLITE_MISUSE, SQLITE_RANGE, SQLITE_ROW, SQLITE_DONE, SQLITE_LOCKED,
    SQLITE_TRANSIENT,
)
from .results import ResultRange, Row
from .values import ColumnData, ColumnType

_PARAMETER_PREFIXES = (":", "@", "$")


class StatementState(enum.Enum):
    PREPARED = "prepared"
    BOUND = "bound"
    STEPPING = "stepping"
    DONE = "done"
    ERROR = "error"


def compile_sql(conn, buf, start, end):
    """Compile the first statement of ``buf[start:end]``.

    Returns ``(status, stmt_ptr, tail_offset)``; ``stmt_ptr`` is ``None`` when
    the range holds only whitespace or comments.
    """
    lib = load_library()
    base = ctypes.addressof(buf)
    stmt = ctypes.c_void_p()
    tail = ctypes.c_void_p()
    status = lib.sqlite3_prepare_v2(conn.db, base + start, end - start, ctypes.byref(stmt), ctypes.byref(tail))
    tail_offset = tail.value - base if tail.value else end
    return status, stmt.value, tail_offset


def error_offset(conn):
    lib = load_library()
    if not hasattr(lib, "sqlite3_error_offset"):
        return None
    offset = lib.sqlite3_error_offset(conn.db)
    return offset if offset >= 0 else None


def prepare(conn, sql):
    """Compile exactly one statement of ``sql`` into a ``Statement``."""
    lib = load_library()
    data = sql.encode("utf-8")
    buf = ctypes.create_string_buffer(data)
    start = 0
    status, ptr, tail = compile_sql(conn, buf, start, len(data))
    # Skip leading empty statements such as a stray ";".
    while status == SQLITE_OK and ptr is None and tail > start and data[tail:].strip():
        start = tail
        status, ptr, tail = compile_sql(conn, buf, start, len(data))
    if status != SQLITE_OK:
        offset = error_offset(conn)
        raise engine_error(PrepareError, conn.db, status, sql=sql, offset=offset)
    if ptr is None:
        raise PrepareError("no SQL statement to prepare", code=SQLITE_MISUSE, sql=sql)

    if data[tail:].strip():
        # Anything left must be whitespace or comments.
        extra_status, extra, _ = compile_sql(conn, buf, tail, len(data))
        if extra is not None:
            lib.sqlite3_finalize(extra)
        if extra is not None or extra_status != SQLITE_OK:
            lib.sqlite3_finalize(ptr)
            raise PrepareError("only one statement can be prepared at a time", code=SQLITE_MISUSE, sql=sql)

    return Statement(StatementCore(conn, ptr, sql))


class StatementCore:
    """Engine state shared by every copy of a ``Statement``."""

    def __init__(self, conn, ptr, sql):
        lib = load_library()
        self.conn = conn
        self.sql = sql
        self.state = StatementState.PREPARED
        self.generation = 0
        self.last_status = SQLITE_OK

        # Compiled metadata never changes across resets: read it once.
        count = lib.sqlite3_bind_parameter_count(ptr)
        names = []
        for i in range(1, count + 1):
            raw = lib.sqlite3_bind_parameter_name(ptr, i)
            names.append(raw.decode("utf-8") if raw else None)
        self.parameter_names = tuple(names)
        self.parameter_lookup = {name: i for i, name in enumerate(names, 1) if name}

        count = lib.sqlite3_column_count(ptr)
        columns = []
        for i in range(count):
            raw = lib.sqlite3_column_name(ptr, i)
            columns.append(raw.decode("utf-8") if raw else "")
        self.column_names = tuple(columns)
        self.column_lookup = {}
        for i, name in enumerate(columns):
            self.column_lookup.setdefault(name, i)

        self.handle = NativeHandle(ptr, self._finalize_native, "statement")
        conn.statements.add(self.handle)

    @property
    def ptr(self):
        return self.handle.ptr

    def _finalize_native(self, ptr):
        self.conn.statements.discard(self.handle)
        status = load_library().sqlite3_finalize(ptr)
        if self.state is StatementState.ERROR and status == self.last_status:
            # Finalize repeats the last step error, which was already raised.
            return SQLITE_OK
        return status

    def invalidate_rows(self):
        self.generation += 1

    def resolve_parameter(self, key):
        count = len(self.parameter_names)
        if isinstance(key, int) and not isinstance(key, bool):
            if 1 <= key <= count:
                return key
            raise BindError(
                f"parameter index {key} out of range: statement has {count} parameter(s)",
                code=SQLITE_RANGE,
                sql=self.sql,
            )
        if isinstance(key, str):
            index = self.parameter_lookup.get(key)
            if index is None and key and key[0] not in _PARAMETER_PREFIXES:
                for prefix in _PARAMETER_PREFIXES:
                    index = self.parameter_lookup.get(prefix + key)
                    if index is not None:
                        break
            if index is not None:
                return index
            raise BindError(f"no parameter named {key!r}", code=SQLITE_RANGE, sql=self.sql)
        raise BindError(f"parameter key must be an int or str, not {type(key).__name__}", code=SQLITE_MISUSE, sql=self.sql)


def _bind_native(lib, ptr, index, data):
    t = data.type
    if t is ColumnType.NULL:
        return lib.sqlite3_bind_null(ptr, index)
    if t is ColumnType.INTEGER:
        return lib.sqlite3_bind_int64(ptr, index, data.value)
    if t is ColumnType.FLOAT:
        return lib.sqlite3_bind_double(ptr, index, data.value)
    if t is ColumnType.TEXT:
        b = data.value.encode("utf-8")
        return lib.sqlite3_bind_text(ptr, index, b, len(b), SQLITE_TRANSIENT)
    b = data.value
    return lib.sqlite3_bind_blob(ptr, index, b, len(b), SQLITE_TRANSIENT)


class Statement:
    """A compiled SQL statement.

    Obtained from ``Connection.prepare``. Copies made with ``copy.copy``
    share the compiled statement, which is finalized when the last copy is
    closed (or garbage collected), or when its connection is torn down.
    """

    def __init__(self, core):
        self._core = core
        self._released = False

    def __copy__(self):
        self._core.handle.acquire()
        return Statement(self._core)

    def __del__(self):
        if getattr(self, "_core", None) is not None:
            self.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __iter__(self):
        return self.results()

    def __repr__(self):
        return f"<Statement {self._core.sql!r} state={self._core.state.value}>"

    def close(self):
        if self._released:
            return
        self._released = True
        self._core.handle.release()

    # Metadata

    @property
    def sql(self) -> str:
        return self._core.sql

    @property
    def expanded_sql(self):
        lib = load_library()
        p = lib.sqlite3_expanded_sql(self._live_ptr())
        if not p:
            return None
        try:
            return ctypes.string_at(p).decode("utf-8", errors="replace")
        finally:
            lib.sqlite3_free(p)

    @property
    def state(self) -> StatementState:
        return self._core.state

    @property
    def parameter_count(self) -> int:
        return len(self._core.parameter_names)

    @property
    def parameter_names(self) -> tuple:
        return self._core.parameter_names

    def parameter_name(self, index: int):
        """Name of the 1-based parameter ``index`` (``None`` for anonymous ``?``)."""
        return self._core.parameter_names[self._core.resolve_parameter(index) - 1]

    def parameter_index(self, name: str) -> int:
        return self._core.resolve_parameter(name)

    @property
    def column_count(self) -> int:
        return len(self._core.column_names)

    @property
    def column_names(self) -> tuple:
        return self._core.column_names

    def _live_ptr(self):
        if self._released:
            raise InterfaceError("statement is closed")
        return self._core.ptr

    # Binding

    def bind(self, key, value: Any) -> None:
        core = self._core
        ptr = self._live_ptr()
        index = core.resolve_parameter(key)
        if core.state in (StatementState.STEPPING, StatementState.DONE, StatementState.ERROR):
            raise BindError("statement must be reset before binding", code=SQLITE_MISUSE, sql=core.sql)
        data = ColumnData.of(value)
        status = _bind_native(load_library(), ptr, index, data)
        if status != SQLITE_OK:
            raise engine_error(BindError, core.conn.db, status, sql=core.sql, params={str(key): value})
        core.state = StatementState.BOUND

    def bind_all(self, *values) -> None:
        if len(values) > self.parameter_count:
            raise BindError(
                f"{len(values)} values given but statement has {self.parameter_count} parameter(s)",
                code=SQLITE_RANGE,
                sql=self._core.sql,
            )
        for i, value in enumerate(values, 1):
            self.bind(i, value)

    def bind_named(self, values) -> None:
        """Bind a mapping or a dataclass instance by parameter name."""
        if dataclasses.is_dataclass(values) and not isinstance(values, type):
            values = {f.name: getattr(values, f.name) for f in dataclasses.fields(values)}
        for name, value in values.items():
            self.bind(name, value)

    def bind_arguments(self, args) -> None:
        if len(args) == 1 and (
            isinstance(args[0], collections.abc.Mapping)
            or (dataclasses.is_dataclass(args[0]) and not isinstance(args[0], type))
        ):
            self.bind_named(args[0])
        else:
            self.bind_all(*args)

    def clear_bindings(self) -> None:
        core = self._core
        load_library().sqlite3_clear_bindings(self._live_ptr())
        if core.state is StatementState.BOUND:
            core.state = StatementState.PREPARED

    def inject(self, *values) -> None:
        """Bind ``values``, execute, then reset, in one call."""
        self.bind_arguments(values)
        try:
            self.execute()
        finally:
            self.reset()

    # Execution

    def step(self):
        """Advance one row: return a ``Row``, or ``None`` once done."""
        core = self._core
        ptr = self._live_ptr()
        if core.state is StatementState.ERROR:
            raise StepError(
                "statement must be reset after a failed step",
                code=core.last_status & 0xFF,
                extended_code=core.last_status,
                sql=core.sql,
            )
        if core.state is StatementState.DONE:
            return None

        lib = load_library()
        conn = core.conn
        status = lib.sqlite3_step(ptr)
        if status & 0xFF == SQLITE_LOCKED and core.state is not StatementState.STEPPING:
            status = self._wait_for_unlock(status)
        core.invalidate_rows()

        pending = conn.take_callback_error()
        if status not in (SQLITE_ROW, SQLITE_DONE):
            core.state = StatementState.ERROR
            core.last_status = status
            error = engine_error(StepError, conn.db, status, sql=core.sql)
            if pending is not None:
                raise error from pending
            raise error
        if pending is not None:
            # A callback failed even though the engine carried on.
            core.state = StatementState.ERROR
            core.last_status = SQLITE_ERROR
            raise StepError(
                f"callback raised {type(pending).__name__}: {pending}",
                code=SQLITE_ERROR,
                sql=core.sql,
            ) from pending

        if status == SQLITE_ROW:
            core.state = StatementState.STEPPING
            return Row(core, core.generation)
        core.state = StatementState.DONE
        return None

    def _wait_for_unlock(self, status):
        handler = self._core.conn.unlock_handler
        if handler is None:
            return status
        lib = load_library()
        ptr = self._core.ptr
        deadline = None if handler.timeout is None else time.monotonic() + handler.timeout
        while status & 0xFF == SQLITE_LOCKED:
            if not handler.wait_for_unlock(self._core.conn, deadline):
                break
            lib.sqlite3_reset(ptr)
            status = lib.sqlite3_step(ptr)
        return status

    def execute(self) -> None:
        """Step to completion, discarding any rows."""
        while self.step() is not None:
            pass

    def results(self) -> ResultRange:
        return ResultRange(self)

    def reset(self) -> None:
        core = self._core
        # The status mirrors the last step error, which was already raised.
        load_library().sqlite3_reset(self._live_ptr())
        core.invalidate_rows()
        core.state = StatementState.PREPARED
        core.last_status = SQLITE_OK
