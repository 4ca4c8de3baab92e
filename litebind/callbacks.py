"""Bridge between engine callbacks and Python callables.

Every trampoline built here is a ``ctypes`` function pointer that must stay
referenced while the engine can call it; ``Connection`` pins them in its
shared state. Trampolines never let an exception unwind into the engine:
the exception is reported through the engine's per-call error slot where
one exists, and always recorded on the connection so the statement being
stepped raises it.
"""

import ctypes
import inspect
import logging
import os
import typing

from .native import (
    load_library,
    FUNC_CALLBACK, FINAL_CALLBACK, COLLATION_CALLBACK, UPDATE_HOOK_CALLBACK, COMMIT_HOOK_CALLBACK,
    ROLLBACK_HOOK_CALLBACK, BUSY_CALLBACK, PROGRESS_CALLBACK, TRACE_CALLBACK,
    SQLITE_INTEGER, SQLITE_FLOAT, SQLITE_TEXT, SQLITE_BLOB, SQLITE_TRACE_STMT, SQLITE_TRACE_PROFILE,
    SQLITE_TRANSIENT,
)
from .values import ColumnData, ColumnType, NULL, convert

logger = logging.getLogger(__name__)

_tracebacks = [os.environ.get("LITEBIND_CALLBACK_TRACEBACKS", "0").strip().lower() in {"1", "true", "yes", "on"}]


def enable_callback_tracebacks(flag):
    """Log exceptions raised by callbacks at WARNING, with traceback."""
    _tracebacks[0] = bool(flag)


def _report(exc, what):
    if _tracebacks[0]:
        logger.warning("exception in %s", what, exc_info=exc)
    else:
        logger.debug("exception in %s: %r", what, exc)


def read_values(argc, argv):
    lib = load_library()
    values = []
    for i in range(argc):
        v = argv[i]
        t = lib.sqlite3_value_type(v)
        if t == SQLITE_INTEGER:
            values.append(ColumnData(ColumnType.INTEGER, lib.sqlite3_value_int64(v)))
        elif t == SQLITE_FLOAT:
            values.append(ColumnData(ColumnType.FLOAT, lib.sqlite3_value_double(v)))
        elif t == SQLITE_TEXT:
            addr = lib.sqlite3_value_text(v)
            n = lib.sqlite3_value_bytes(v)
            text = ctypes.string_at(addr, n).decode("utf-8", errors="replace") if addr else ""
            values.append(ColumnData(ColumnType.TEXT, text))
        elif t == SQLITE_BLOB:
            addr = lib.sqlite3_value_blob(v)
            n = lib.sqlite3_value_bytes(v)
            values.append(ColumnData(ColumnType.BLOB, ctypes.string_at(addr, n) if addr else b""))
        else:
            values.append(NULL)
    return values


def set_result(ctx, data):
    lib = load_library()
    t = data.type
    if t is ColumnType.NULL:
        lib.sqlite3_result_null(ctx)
    elif t is ColumnType.INTEGER:
        lib.sqlite3_result_int64(ctx, data.value)
    elif t is ColumnType.FLOAT:
        lib.sqlite3_result_double(ctx, data.value)
    elif t is ColumnType.TEXT:
        b = data.value.encode("utf-8")
        lib.sqlite3_result_text(ctx, b, len(b), SQLITE_TRANSIENT)
    else:
        b = data.value
        lib.sqlite3_result_blob(ctx, b, len(b), SQLITE_TRANSIENT)


def set_error(ctx, exc, what):
    lib = load_library()
    if isinstance(exc, MemoryError):
        lib.sqlite3_result_error_nomem(ctx)
    elif isinstance(exc, OverflowError):
        lib.sqlite3_result_error_toobig(ctx)
    else:
        msg = f"{what} raised {type(exc).__name__}: {exc}".encode("utf-8", errors="replace")
        lib.sqlite3_result_error(ctx, msg, len(msg))


class Marshaller:
    """Converts engine arguments to a callable's annotated parameter types.

    Unannotated parameters receive plain Python values; parameters annotated
    with ``ColumnData`` receive the tagged value itself.
    """

    def __init__(self, func, skip_first=False):
        try:
            signature = inspect.signature(func)
        except (TypeError, ValueError):
            signature = None
        try:
            hints = typing.get_type_hints(func)
        except (NameError, TypeError):
            hints = {}

        self.param_types = []
        self.rest_type = None
        self.nargs = -1
        if signature is None:
            return

        params = list(signature.parameters.values())
        if skip_first and params:
            params = params[1:]
        variadic = False
        for p in params:
            if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD):
                self.param_types.append(hints.get(p.name))
            elif p.kind is p.VAR_POSITIONAL:
                variadic = True
                self.rest_type = hints.get(p.name)
        if not variadic:
            self.nargs = len(self.param_types)

    def arguments(self, values):
        out = []
        for i, data in enumerate(values):
            target = self.param_types[i] if i < len(self.param_types) else self.rest_type
            out.append(convert(data, target))
        return out


def make_function(conn, name, func, marshaller):
    what = f"user-defined function {name!r}"

    def trampoline(ctx, argc, argv):
        try:
            args = marshaller.arguments(read_values(argc, argv))
            set_result(ctx, ColumnData.of(func(*args)))
        except Exception as exc:
            set_error(ctx, exc, what)
            conn.record_callback_error(exc)
            _report(exc, what)

    return FUNC_CALLBACK(trampoline)


class _AggregateEntry:
    __slots__ = ("instance", "marshaller", "failed")

    def __init__(self):
        self.instance = None
        self.marshaller = None
        self.failed = False

    def start(self, factory):
        self.instance = factory()
        self.marshaller = Marshaller(self.instance.step)


def make_aggregate(conn, name, factory):
    """Return ``(step, final)`` trampolines for an aggregate.

    ``factory()`` builds one accumulator per aggregation; it must provide
    ``step(*args)`` and ``finalize()``. Once ``step`` raised, ``finalize`` is
    not called for that aggregation: the step error is what surfaces.
    """
    lib = load_library()
    what = f"user-defined aggregate {name!r}"
    slot_size = ctypes.sizeof(ctypes.c_size_t)

    def _slot(ctx):
        addr = lib.sqlite3_aggregate_context(ctx, slot_size)
        if not addr:
            raise MemoryError("aggregate context allocation failed")
        return ctypes.c_size_t.from_address(addr)

    def step(ctx, argc, argv):
        entry = None
        try:
            slot = _slot(ctx)
            if slot.value == 0:
                key = next(conn.aggregate_keys)
                slot.value = key
                entry = conn.aggregates[key] = _AggregateEntry()
                entry.start(factory)
            else:
                entry = conn.aggregates[slot.value]
            if entry.failed:
                return
            entry.instance.step(*entry.marshaller.arguments(read_values(argc, argv)))
        except Exception as exc:
            if entry is not None:
                entry.failed = True
            set_error(ctx, exc, what)
            conn.record_callback_error(exc)
            _report(exc, what)

    def final(ctx):
        try:
            slot = _slot(ctx)
            entry = conn.aggregates.pop(slot.value, None) if slot.value else None
            if entry is None:
                # No row was aggregated.
                instance = factory()
            elif entry.failed:
                return
            else:
                instance = entry.instance
            set_result(ctx, ColumnData.of(instance.finalize()))
        except Exception as exc:
            set_error(ctx, exc, what)
            conn.record_callback_error(exc)
            _report(exc, what)

    return FUNC_CALLBACK(step), FINAL_CALLBACK(final)


def make_collation(conn, name, func):
    what = f"collation {name!r}"

    def trampoline(_, len1, str1, len2, str2):
        try:
            a = ctypes.string_at(str1, len1).decode("utf-8", errors="replace") if len1 else ""
            b = ctypes.string_at(str2, len2).decode("utf-8", errors="replace") if len2 else ""
            result = func(a, b)
            return (result > 0) - (result < 0)
        except Exception as exc:
            conn.record_callback_error(exc)
            _report(exc, what)
            return 0

    return COLLATION_CALLBACK(trampoline)


def make_update_hook(conn, func):
    def trampoline(_, operation, database, table, rowid):
        try:
            func(operation, database.decode("utf-8"), table.decode("utf-8"), rowid)
        except Exception as exc:
            conn.record_callback_error(exc)
            _report(exc, "update hook")

    return UPDATE_HOOK_CALLBACK(trampoline)


def make_commit_hook(conn, func):
    # A non-zero return turns the commit into a rollback.
    def trampoline(_):
        try:
            return 1 if func() else 0
        except Exception as exc:
            conn.record_callback_error(exc)
            _report(exc, "commit hook")
            return 1

    return COMMIT_HOOK_CALLBACK(trampoline)


def make_rollback_hook(conn, func):
    def trampoline(_):
        try:
            func()
        except Exception as exc:
            conn.record_callback_error(exc)
            _report(exc, "rollback hook")

    return ROLLBACK_HOOK_CALLBACK(trampoline)


def make_busy_handler(conn, func):
    def trampoline(_, count):
        try:
            return 1 if func(count) else 0
        except Exception as exc:
            conn.record_callback_error(exc)
            _report(exc, "busy handler")
            return 0

    return BUSY_CALLBACK(trampoline)


def make_progress_handler(conn, func):
    # A non-zero return interrupts the running statement.
    def trampoline(_):
        try:
            return 1 if func() else 0
        except Exception as exc:
            conn.record_callback_error(exc)
            _report(exc, "progress handler")
            return 1

    return PROGRESS_CALLBACK(trampoline)


def make_tracer(conn, on_statement, on_profile):
    lib = load_library()

    def trampoline(event, _, stmt, extra):
        try:
            if event == SQLITE_TRACE_STMT and on_statement is not None:
                sql = ctypes.string_at(extra).decode("utf-8", errors="replace") if extra else ""
                on_statement(sql)
            elif event == SQLITE_TRACE_PROFILE and on_profile is not None:
                raw = lib.sqlite3_sql(stmt)
                nanoseconds = ctypes.c_int64.from_address(extra).value
                on_profile(raw.decode("utf-8", errors="replace") if raw else "", nanoseconds)
        except Exception as exc:
            conn.record_callback_error(exc)
            _report(exc, "trace callback")
        return 0

    return TRACE_CALLBACK(trampoline)
