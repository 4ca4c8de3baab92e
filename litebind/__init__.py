from .native import (
    load_library,
    SQLITE_OK, SQLITE_ERROR, SQLITE_BUSY, SQLITE_LOCKED, SQLITE_NOMEM, SQLITE_READONLY, SQLITE_INTERRUPT,
    SQLITE_CANTOPEN,
    SQLITE_CONSTRAINT, SQLITE_MISUSE, SQLITE_RANGE, SQLITE_ROW, SQLITE_DONE,
    SQLITE_LOCKED_SHAREDCACHE, SQLITE_CONSTRAINT_COMMITHOOK,
    SQLITE_OPEN_READONLY, SQLITE_OPEN_READWRITE, SQLITE_OPEN_CREATE, SQLITE_OPEN_URI, SQLITE_OPEN_MEMORY,
    SQLITE_OPEN_NOMUTEX, SQLITE_OPEN_FULLMUTEX, SQLITE_OPEN_SHAREDCACHE, SQLITE_OPEN_PRIVATECACHE,
    SQLITE_INSERT, SQLITE_UPDATE, SQLITE_DELETE,
    SQLITE_CONFIG_SINGLETHREAD, SQLITE_CONFIG_MULTITHREAD, SQLITE_CONFIG_SERIALIZED, SQLITE_CONFIG_MEMSTATUS,
    SQLITE_DBCONFIG_ENABLE_FKEY, SQLITE_DBCONFIG_ENABLE_TRIGGER, SQLITE_DBCONFIG_ENABLE_LOAD_EXTENSION,
    SQLITE_DBCONFIG_DEFENSIVE,
)
from .errors import (
    Error, InterfaceError, OpenError, PrepareError, BindError, StepError, ExecutionError, ConversionError,
    ConfigurationError,
)
from .handle import NativeHandle
from .values import ColumnType, ColumnData, NULL, convert
from .results import Row, CachedRow, ResultRange, CachedResults, cached
from .statement import Statement, StatementState
from .database import Connection, ColumnMetadata, DEFAULT_FLAGS, connect
from .unlock import UnlockNotifyHandler
from .callbacks import enable_callback_tracebacks
import ctypes
import logging

logger = logging.getLogger(__name__)

# Open flag aliases
OPEN_READONLY = SQLITE_OPEN_READONLY
OPEN_READWRITE = SQLITE_OPEN_READWRITE
OPEN_CREATE = SQLITE_OPEN_CREATE
OPEN_URI = SQLITE_OPEN_URI
OPEN_MEMORY = SQLITE_OPEN_MEMORY
OPEN_NOMUTEX = SQLITE_OPEN_NOMUTEX
OPEN_FULLMUTEX = SQLITE_OPEN_FULLMUTEX
OPEN_SHAREDCACHE = SQLITE_OPEN_SHAREDCACHE
OPEN_PRIVATECACHE = SQLITE_OPEN_PRIVATECACHE


def version_string() -> str:
    return load_library().sqlite3_libversion().decode("utf-8")


def version_number() -> int:
    return load_library().sqlite3_libversion_number()


def source_id() -> str:
    return load_library().sqlite3_sourceid().decode("utf-8")


def thread_safe() -> bool:
    """Whether the engine was compiled with its mutexes enabled."""
    return bool(load_library().sqlite3_threadsafe())


def is_compiled_with(option: str) -> bool:
    """Whether ``option`` (with or without the ``SQLITE_`` prefix) was set at build time."""
    return bool(load_library().sqlite3_compileoption_used(option.encode("utf-8")))


def initialize() -> None:
    status = load_library().sqlite3_initialize()
    if status != SQLITE_OK:
        raise ConfigurationError("sqlite3_initialize failed", code=status & 0xFF, extended_code=status)


def shutdown() -> None:
    """Release the engine's global resources.

    Every connection must be closed first.
    """
    status = load_library().sqlite3_shutdown()
    if status != SQLITE_OK:
        raise ConfigurationError("sqlite3_shutdown failed", code=status & 0xFF, extended_code=status)


def config(option: int, *args) -> None:
    """Call ``sqlite3_config`` with integer arguments.

    Only legal before the engine is initialized or after ``shutdown()``;
    the engine answers ``SQLITE_MISUSE`` otherwise.
    """
    status = load_library().sqlite3_config(ctypes.c_int(option), *(ctypes.c_int(int(a)) for a in args))
    if status != SQLITE_OK:
        logger.debug("sqlite3_config(%s) returned %s", option, status)
        raise ConfigurationError(
            f"sqlite3_config({option}) failed",
            code=status & 0xFF,
            extended_code=status,
            context={"option": option, "args": list(args)},
        )
