"""Result rows, lazy result ranges and cached (detached) results."""

from __future__ import annotations

import collections.abc
import ctypes
import dataclasses
import typing
from typing import Any

from .errors import ConversionError, InterfaceError
from .native import load_library, SQLITE_INTEGER, SQLITE_FLOAT, SQLITE_TEXT, SQLITE_BLOB
from .values import ColumnData, ColumnType, NULL, convert


def _read_column(ptr, index) -> ColumnData:
    lib = load_library()
    t = lib.sqlite3_column_type(ptr, index)
    if t == SQLITE_INTEGER:
        return ColumnData(ColumnType.INTEGER, lib.sqlite3_column_int64(ptr, index))
    if t == SQLITE_FLOAT:
        return ColumnData(ColumnType.FLOAT, lib.sqlite3_column_double(ptr, index))
    if t == SQLITE_TEXT:
        # Fetch the pointer before the length, as the engine requires.
        addr = lib.sqlite3_column_text(ptr, index)
        n = lib.sqlite3_column_bytes(ptr, index)
        text = ctypes.string_at(addr, n).decode("utf-8", errors="replace") if addr else ""
        return ColumnData(ColumnType.TEXT, text)
    if t == SQLITE_BLOB:
        addr = lib.sqlite3_column_blob(ptr, index)
        n = lib.sqlite3_column_bytes(ptr, index)
        return ColumnData(ColumnType.BLOB, ctypes.string_at(addr, n) if addr else b"")
    return NULL


class _RowAccess:
    """Indexed and name-keyed access shared by live and cached rows."""

    column_names: tuple
    _lookup: dict

    def _column(self, index) -> ColumnData:
        raise NotImplementedError

    def _index(self, key) -> int:
        if isinstance(key, str):
            try:
                return self._lookup[key]
            except KeyError:
                raise KeyError(f"no column named {key!r}") from None
        n = len(self.column_names)
        if not 0 <= key < n:
            raise IndexError(f"column index {key} out of range: row has {n} column(s)")
        return key

    def __len__(self):
        return len(self.column_names)

    def __getitem__(self, key) -> ColumnData:
        return self._column(self._index(key))

    def __iter__(self):
        for i in range(len(self.column_names)):
            yield self._column(i)

    def peek(self, key, type_: Any = None) -> Any:
        """Value of a column by index or name, converted to ``type_`` if given."""
        return convert(self[key], type_)

    def column_name(self, index: int) -> str:
        return self.column_names[index]

    def column_type(self, key) -> ColumnType:
        return self[key].type

    def as_dict(self) -> dict:
        return {name: self._column(i).value for name, i in self._lookup.items()}

    def as_type(self, cls, case_sensitive: bool = True):
        """Build a dataclass instance by matching column names to its fields.

        A field's column name can be overridden with
        ``dataclasses.field(metadata={"column": "..."})``.
        """
        if not (dataclasses.is_dataclass(cls) and isinstance(cls, type)):
            raise ConversionError(f"{cls!r} is not a dataclass")
        try:
            hints = typing.get_type_hints(cls)
        except (NameError, TypeError) as exc:
            raise ConversionError(f"cannot resolve field types of {cls.__name__}: {exc}") from exc

        if case_sensitive:
            lookup = self._lookup
        else:
            lookup = {}
            for name, i in self._lookup.items():
                lookup.setdefault(name.casefold(), i)

        kwargs = {}
        for field in dataclasses.fields(cls):
            if not field.init:
                continue
            column = field.metadata.get("column", field.name)
            index = lookup.get(column if case_sensitive else column.casefold())
            if index is None:
                if field.default is dataclasses.MISSING and field.default_factory is dataclasses.MISSING:
                    raise ConversionError(f"no column {column!r} for field {cls.__name__}.{field.name}")
                continue
            try:
                kwargs[field.name] = convert(self._column(index), hints.get(field.name))
            except ConversionError as exc:
                raise ConversionError(f"field {cls.__name__}.{field.name}: {exc.message}") from exc
        return cls(**kwargs)


class Row(_RowAccess):
    """View over the current result row of a statement.

    Valid only until the statement is stepped again or reset; after that any
    access raises ``InterfaceError``. Use ``detach()`` (or ``cached()``) to
    keep the values.
    """

    def __init__(self, core, generation):
        self._core = core
        self._generation = generation
        self.column_names = core.column_names
        self._lookup = core.column_lookup

    def __repr__(self):
        state = "valid" if self.valid else "stale"
        return f"<Row {len(self.column_names)} columns, {state}>"

    @property
    def valid(self) -> bool:
        return self._generation == self._core.generation and self._core.handle.alive

    def _ptr(self):
        if self._generation != self._core.generation:
            raise InterfaceError("row is no longer valid: its statement was stepped or reset")
        return self._core.ptr

    def _column(self, index) -> ColumnData:
        return _read_column(self._ptr(), index)

    def peek(self, key, type_: Any = None) -> Any:
        if type_ is memoryview:
            return self._peek_buffer(self._index(key))
        return super().peek(key, type_)

    def _peek_buffer(self, index):
        # Borrowed view into the engine's row buffer, no copy.
        lib = load_library()
        ptr = self._ptr()
        t = lib.sqlite3_column_type(ptr, index)
        if t == SQLITE_TEXT:
            addr = lib.sqlite3_column_text(ptr, index)
        elif t == SQLITE_BLOB:
            addr = lib.sqlite3_column_blob(ptr, index)
        else:
            raise ConversionError(f"cannot view a {ColumnType(t).name} column as a buffer")
        n = lib.sqlite3_column_bytes(ptr, index)
        if not addr or not n:
            return memoryview(b"")
        return memoryview((ctypes.c_char * n).from_address(addr))

    def column_decltype(self, index: int):
        raw = load_library().sqlite3_column_decltype(self._ptr(), index)
        return raw.decode("utf-8") if raw else None

    def column_origin(self, index: int):
        """``(database, table, column)`` a result column comes from, when the
        engine was built with column metadata; ``None`` otherwise."""
        lib = load_library()
        if not hasattr(lib, "sqlite3_column_origin_name"):
            return None
        ptr = self._ptr()
        parts = (
            lib.sqlite3_column_database_name(ptr, index),
            lib.sqlite3_column_table_name(ptr, index),
            lib.sqlite3_column_origin_name(ptr, index),
        )
        return tuple(p.decode("utf-8") if p else None for p in parts)

    def detach(self) -> CachedRow:
        ptr = self._ptr()
        values = tuple(_read_column(ptr, i) for i in range(len(self.column_names)))
        return CachedRow(self.column_names, self._lookup, values)


class CachedRow(_RowAccess):
    """A row whose values were copied out of the engine."""

    def __init__(self, column_names, lookup, values):
        self.column_names = column_names
        self._lookup = lookup
        self._values = values

    def __repr__(self):
        return f"CachedRow({self.as_dict()!r})"

    def __eq__(self, other):
        if not isinstance(other, CachedRow):
            return NotImplemented
        return self.column_names == other.column_names and self._values == other._values

    def __hash__(self):
        return hash((self.column_names, self._values))

    def _column(self, index) -> ColumnData:
        return self._values[index]


class ResultRange:
    """Lazy, single-pass sequence of the rows produced by a statement.

    Each ``Row`` it yields is invalidated by the next one.
    """

    def __init__(self, statement, owns_statement=False):
        self._statement = statement
        self._owns_statement = owns_statement
        self.column_names = statement.column_names

    def __iter__(self):
        return self

    def __next__(self) -> Row:
        row = self._statement.step()
        if row is None:
            if self._owns_statement:
                self._statement.close()
            raise StopIteration
        return row

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        if self._owns_statement:
            self._statement.close()

    def one_value(self, type_: Any = None) -> Any:
        """First column of the next row, converted to ``type_`` if given."""
        try:
            row = next(self, None)
            if row is None:
                raise ConversionError("query returned no rows")
            return row.peek(0, type_)
        finally:
            self.close()


class CachedResults(collections.abc.Sequence):
    """Rows copied out of the engine; can be iterated any number of times."""

    def __init__(self, column_names, rows):
        self.column_names = tuple(column_names)
        self._rows = list(rows)

    def __len__(self):
        return len(self._rows)

    def __getitem__(self, index):
        return self._rows[index]

    def __repr__(self):
        return f"<CachedResults {len(self._rows)} rows>"


def cached(rows) -> CachedResults:
    """Eagerly copy every row of ``rows`` (a ``ResultRange`` or any iterable
    of rows) into owned storage."""
    out = []
    for row in rows:
        out.append(row.detach() if isinstance(row, Row) else row)
    column_names = getattr(rows, "column_names", None)
    if column_names is None:
        column_names = out[0].column_names if out else ()
    return CachedResults(column_names, out)
