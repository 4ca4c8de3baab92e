"""Exception taxonomy and translation of engine status codes."""

import collections.abc
import json

from .native import load_library, SQLITE_OK


class Error(Exception):
    """Base class for every failure raised by litebind.

    ``code`` is the engine's primary result code, ``extended_code`` the
    extended one when known and ``message`` the engine's own text.
    """

    def __init__(self, message, code=None, extended_code=None, sql=None, context=None):
        self.message = message
        self.code = code
        self.extended_code = extended_code if extended_code is not None else code
        self.sql = sql
        text = message
        if context is not None:
            text = text + "\nContext: " + json.dumps(context, ensure_ascii=False)
        super().__init__(text)


class InterfaceError(Error):
    """The wrapper was misused: closed handle, stale row view, ..."""


class OpenError(Error):
    pass


class PrepareError(Error):
    def __init__(self, message, code=None, extended_code=None, sql=None, context=None, offset=None):
        super().__init__(message, code, extended_code, sql, context)
        self.offset = offset


class BindError(Error):
    pass


class StepError(Error):
    pass


class ExecutionError(Error):
    pass


class ConversionError(Error):
    pass


class ConfigurationError(Error):
    pass


def _format_value_for_error(v, *, max_str=200, max_bytes=64):
    if v is None:
        return None
    if isinstance(v, (bool, int, float)):
        return v
    if isinstance(v, (bytes, bytearray, memoryview)):
        b = bytes(v)
        if len(b) <= max_bytes:
            return {"_type": "bytes", "hex": b.hex(), "len": len(b)}
        head = b[:max_bytes]
        return {"_type": "bytes", "hex_prefix": head.hex(), "len": len(b)}
    if isinstance(v, str):
        if len(v) <= max_str:
            return v
        return v[:max_str] + "…"
    # Fall back to capped repr
    s = repr(v)
    if len(s) <= max_str:
        return s
    return s[:max_str] + "…"


def _format_params_for_error(params, *, max_items=50):
    if params is None:
        return None
    if isinstance(params, collections.abc.Mapping):
        out = {}
        for i, (k, v) in enumerate(params.items()):
            if i >= max_items:
                out["_truncated"] = True
                break
            out[str(k)] = _format_value_for_error(v)
        return out
    # Sequence-like
    try:
        seq = list(params)
    except TypeError:
        return _format_value_for_error(params)
    if len(seq) > max_items:
        seq = seq[:max_items] + ["<truncated>"]
    return [_format_value_for_error(v) for v in seq]


def engine_error(error_cls, db_handle, status, *, sql=None, params=None, **extra):
    """Build ``error_cls`` from the connection's current error state.

    Must be called right after the failing engine call: the message is only
    valid until the next call on that connection.
    """
    lib = load_library()
    if db_handle:
        extended = lib.sqlite3_extended_errcode(db_handle)
        msg = lib.sqlite3_errmsg(db_handle)
    else:
        extended = status
        msg = lib.sqlite3_errstr(status)
    # Native messages should be UTF-8, but don't crash if not.
    msg_str = msg.decode("utf-8", errors="replace") if msg else f"Unknown error {status}"
    if extended & 0xFF != status & 0xFF:
        # The connection's error slot was overwritten; trust the status we got.
        extended = status

    context = None
    if sql is not None:
        context = {
            "native_code": int(extended),
            "sql": sql,
            "params": _format_params_for_error(params),
        }
    return error_cls(msg_str, code=status & 0xFF, extended_code=extended, sql=sql, context=context, **extra)


def raise_for_status(error_cls, db_handle, status, *, sql=None, params=None):
    if status != SQLITE_OK:
        raise engine_error(error_cls, db_handle, status, sql=sql, params=params)
