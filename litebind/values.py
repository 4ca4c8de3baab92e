"""The ``ColumnData`` tagged union and explicit conversions to Python types."""

from __future__ import annotations

import enum
import math
import types
import typing
from typing import Any

from .errors import ConversionError
from .native import SQLITE_INTEGER, SQLITE_FLOAT, SQLITE_TEXT, SQLITE_BLOB, SQLITE_NULL

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


class ColumnType(enum.IntEnum):
    INTEGER = SQLITE_INTEGER
    FLOAT = SQLITE_FLOAT
    TEXT = SQLITE_TEXT
    BLOB = SQLITE_BLOB
    NULL = SQLITE_NULL


_NATIVE_TYPES = {
    ColumnType.INTEGER: int,
    ColumnType.FLOAT: float,
    ColumnType.TEXT: str,
    ColumnType.BLOB: bytes,
}


class ColumnData:
    """A single cell value, typed the way the engine types it.

    Instances are immutable. Text is held as ``str`` and blobs as ``bytes``;
    both are always owned copies, never views into engine memory.
    """

    __slots__ = ("_type", "_value")

    def __init__(self, type_: ColumnType, value: Any = None):
        type_ = ColumnType(type_)
        if type_ is ColumnType.NULL:
            value = None
        else:
            if type_ is ColumnType.INTEGER and isinstance(value, bool):
                value = int(value)
            if not isinstance(value, _NATIVE_TYPES[type_]):
                raise ConversionError(f"{type(value).__name__} is not a valid {type_.name} payload")
            if type_ is ColumnType.INTEGER and not INT64_MIN <= value <= INT64_MAX:
                raise ConversionError(f"integer {value} does not fit in 64 bits")
        object.__setattr__(self, "_type", type_)
        object.__setattr__(self, "_value", value)

    def __setattr__(self, name, value):
        raise AttributeError("ColumnData is immutable")

    @classmethod
    def of(cls, value: Any) -> ColumnData:
        """Wrap a Python value, picking the matching engine type."""
        if isinstance(value, ColumnData):
            return value
        if value is None:
            return NULL
        if isinstance(value, (bool, int)):
            return cls(ColumnType.INTEGER, int(value))
        if isinstance(value, float):
            return cls(ColumnType.FLOAT, value)
        if isinstance(value, str):
            return cls(ColumnType.TEXT, value)
        if isinstance(value, (bytes, bytearray, memoryview)):
            return cls(ColumnType.BLOB, bytes(value))
        raise ConversionError(f"cannot store a value of type {type(value).__name__}")

    @property
    def type(self) -> ColumnType:
        return self._type

    @property
    def value(self) -> Any:
        return self._value

    @property
    def is_null(self) -> bool:
        return self._type is ColumnType.NULL

    def as_type(self, target: Any = None) -> Any:
        return convert(self, target)

    def __eq__(self, other):
        if not isinstance(other, ColumnData):
            return NotImplemented
        return self._type is other._type and self._value == other._value

    def __hash__(self):
        return hash((self._type, self._value))

    def __repr__(self):
        if self._type is ColumnType.NULL:
            return "ColumnData(NULL)"
        return f"ColumnData({self._type.name}, {self._value!r})"

    def __str__(self):
        if self._type is ColumnType.NULL:
            return "NULL"
        if self._type is ColumnType.BLOB:
            return self._value.hex()
        return str(self._value)


NULL = ColumnData(ColumnType.NULL)


def _optional_inner(target):
    """Return ``X`` for ``Optional[X]``/``X | None``, else ``None``."""
    origin = typing.get_origin(target)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(target) if a is not type(None)]
        if len(args) == 1 and len(typing.get_args(target)) == 2:
            return args[0]
    return None


def _fail(data, target, reason=None):
    name = getattr(target, "__name__", repr(target))
    text = f"cannot convert {data!r} to {name}"
    if reason:
        text += f": {reason}"
    raise ConversionError(text)


def _numeric_text(data, target):
    text = data.value.strip()
    # Python literal extras the engine does not accept.
    if "_" in text:
        _fail(data, target, "not a numeric literal")
    return text


def _to_int(data):
    t, v = data.type, data.value
    if t is ColumnType.INTEGER:
        return v
    if t is ColumnType.FLOAT:
        if math.isfinite(v) and v.is_integer() and INT64_MIN <= v <= INT64_MAX:
            return int(v)
        _fail(data, int, "lossy conversion")
    if t is ColumnType.TEXT:
        try:
            result = int(_numeric_text(data, int))
        except ValueError:
            _fail(data, int, "not an integer literal")
        if not INT64_MIN <= result <= INT64_MAX:
            _fail(data, int, "does not fit in 64 bits")
        return result
    _fail(data, int)


def _to_float(data):
    t, v = data.type, data.value
    if t in (ColumnType.INTEGER, ColumnType.FLOAT):
        return float(v)
    if t is ColumnType.TEXT:
        try:
            result = float(_numeric_text(data, float))
        except ValueError:
            _fail(data, float, "not a numeric literal")
        if not math.isfinite(result):
            _fail(data, float, "not a finite number")
        return result
    _fail(data, float)


def _to_str(data):
    t, v = data.type, data.value
    if t is ColumnType.TEXT:
        return v
    if t in (ColumnType.INTEGER, ColumnType.FLOAT):
        return str(v)
    if t is ColumnType.BLOB:
        try:
            return v.decode("utf-8")
        except UnicodeDecodeError:
            _fail(data, str, "blob is not valid UTF-8")
    _fail(data, str)


def _to_bytes(data):
    t, v = data.type, data.value
    if t is ColumnType.BLOB:
        return v
    if t is ColumnType.TEXT:
        return v.encode("utf-8")
    if t in (ColumnType.INTEGER, ColumnType.FLOAT):
        return str(v).encode("ascii")
    _fail(data, bytes)


def _to_bool(data):
    if data.type is ColumnType.INTEGER:
        return data.value != 0
    if data.type is ColumnType.FLOAT:
        return data.value != 0.0
    _fail(data, bool)


_CONVERTERS = {
    int: _to_int,
    float: _to_float,
    str: _to_str,
    bytes: _to_bytes,
    bool: _to_bool,
}


def convert(data: ColumnData, target: Any = None) -> Any:
    """Convert ``data`` to ``target``.

    ``None``, ``object`` and ``typing.Any`` return the plain Python value;
    ``ColumnData`` returns ``data`` itself. NULL only converts to an optional
    target.
    """
    if target is None or target is object or target is Any:
        return data.value
    if target is ColumnData:
        return data
    inner = _optional_inner(target)
    if inner is not None:
        if data.is_null:
            return None
        return convert(data, inner)
    if target is type(None):
        if data.is_null:
            return None
        _fail(data, target)
    converter = _CONVERTERS.get(target)
    if converter is None:
        raise ConversionError(f"unsupported conversion target {target!r}")
    if data.is_null:
        _fail(data, target, "value is NULL")
    return converter(data)
