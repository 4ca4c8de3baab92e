import ctypes
import ctypes.util
import importlib.util
import logging
import os
from ctypes import c_int, c_uint, c_int64, c_double, c_char_p, c_void_p, POINTER, CFUNCTYPE

logger = logging.getLogger(__name__)

# Result codes (must match sqlite3.h).
SQLITE_OK = 0
SQLITE_ERROR = 1
SQLITE_INTERNAL = 2
SQLITE_PERM = 3
SQLITE_ABORT = 4
SQLITE_BUSY = 5
SQLITE_LOCKED = 6
SQLITE_NOMEM = 7
SQLITE_READONLY = 8
SQLITE_INTERRUPT = 9
SQLITE_IOERR = 10
SQLITE_CORRUPT = 11
SQLITE_NOTFOUND = 12
SQLITE_FULL = 13
SQLITE_CANTOPEN = 14
SQLITE_PROTOCOL = 15
SQLITE_EMPTY = 16
SQLITE_SCHEMA = 17
SQLITE_TOOBIG = 18
SQLITE_CONSTRAINT = 19
SQLITE_MISMATCH = 20
SQLITE_MISUSE = 21
SQLITE_NOLFS = 22
SQLITE_AUTH = 23
SQLITE_FORMAT = 24
SQLITE_RANGE = 25
SQLITE_NOTADB = 26
SQLITE_NOTICE = 27
SQLITE_WARNING = 28
SQLITE_ROW = 100
SQLITE_DONE = 101

# Extended result codes the binding reacts to.
SQLITE_LOCKED_SHAREDCACHE = SQLITE_LOCKED | (1 << 8)
SQLITE_CONSTRAINT_COMMITHOOK = SQLITE_CONSTRAINT | (2 << 8)

# Fundamental datatypes, as returned by sqlite3_column_type / sqlite3_value_type.
SQLITE_INTEGER = 1
SQLITE_FLOAT = 2
SQLITE_TEXT = 3
SQLITE_BLOB = 4
SQLITE_NULL = 5

# sqlite3_open_v2 flags
SQLITE_OPEN_READONLY = 0x00000001
SQLITE_OPEN_READWRITE = 0x00000002
SQLITE_OPEN_CREATE = 0x00000004
SQLITE_OPEN_URI = 0x00000040
SQLITE_OPEN_MEMORY = 0x00000080
SQLITE_OPEN_NOMUTEX = 0x00008000
SQLITE_OPEN_FULLMUTEX = 0x00010000
SQLITE_OPEN_SHAREDCACHE = 0x00020000
SQLITE_OPEN_PRIVATECACHE = 0x00040000

# Function / collation text encodings and flags
SQLITE_UTF8 = 1
SQLITE_DETERMINISTIC = 0x000000800

# Update hook operation codes (same values as the authorizer action codes).
SQLITE_DELETE = 9
SQLITE_INSERT = 18
SQLITE_UPDATE = 23

# sqlite3_config options
SQLITE_CONFIG_SINGLETHREAD = 1
SQLITE_CONFIG_MULTITHREAD = 2
SQLITE_CONFIG_SERIALIZED = 3
SQLITE_CONFIG_MEMSTATUS = 9

# sqlite3_db_config options taking (int, int*)
SQLITE_DBCONFIG_ENABLE_FKEY = 1002
SQLITE_DBCONFIG_ENABLE_TRIGGER = 1003
SQLITE_DBCONFIG_ENABLE_LOAD_EXTENSION = 1005
SQLITE_DBCONFIG_DEFENSIVE = 1010

# sqlite3_trace_v2 event masks
SQLITE_TRACE_STMT = 0x01
SQLITE_TRACE_PROFILE = 0x02

# Destructor sentinel telling the engine to copy bound/result buffers.
SQLITE_TRANSIENT = c_void_p(-1)

# Callback prototypes. Trampolines built from these must be kept referenced
# for as long as the engine may call them. Registration functions take them
# as c_void_p so that None unregisters.
FUNC_CALLBACK = CFUNCTYPE(None, c_void_p, c_int, POINTER(c_void_p))
FINAL_CALLBACK = CFUNCTYPE(None, c_void_p)
DESTROY_CALLBACK = CFUNCTYPE(None, c_void_p)
COLLATION_CALLBACK = CFUNCTYPE(c_int, c_void_p, c_int, c_void_p, c_int, c_void_p)
UPDATE_HOOK_CALLBACK = CFUNCTYPE(None, c_void_p, c_int, c_char_p, c_char_p, c_int64)
COMMIT_HOOK_CALLBACK = CFUNCTYPE(c_int, c_void_p)
ROLLBACK_HOOK_CALLBACK = CFUNCTYPE(None, c_void_p)
BUSY_CALLBACK = CFUNCTYPE(c_int, c_void_p, c_int)
PROGRESS_CALLBACK = CFUNCTYPE(c_int, c_void_p)
TRACE_CALLBACK = CFUNCTYPE(c_int, c_uint, c_void_p, c_void_p, c_void_p)
UNLOCK_NOTIFY_CALLBACK = CFUNCTYPE(None, POINTER(c_void_p), c_int)

_lib = None


def _candidate_paths():
    found = ctypes.util.find_library("sqlite3")
    if found:
        yield found

    # Common shared library names across platforms
    for name in ("libsqlite3.so.0", "libsqlite3.so", "libsqlite3.dylib", "sqlite3.dll"):
        yield name

    # The interpreter's own _sqlite3 extension links the engine, and dlsym on
    # its handle also resolves symbols from its dependencies.
    spec = importlib.util.find_spec("_sqlite3")
    if spec is not None and spec.origin and os.path.exists(spec.origin):
        yield spec.origin


def _open_library():
    lib_path = os.environ.get("LITEBIND_SQLITE_LIB")
    if lib_path:
        try:
            return ctypes.CDLL(lib_path), lib_path
        except OSError as e:
            raise RuntimeError(f"Failed to load SQLite library at {lib_path}: {e}")

    for candidate in _candidate_paths():
        try:
            lib = ctypes.CDLL(candidate)
        except OSError:
            continue
        if hasattr(lib, "sqlite3_libversion"):
            return lib, candidate

    raise RuntimeError("Could not find the SQLite shared library. Set LITEBIND_SQLITE_LIB env var.")


def load_library():
    global _lib
    if _lib is not None:
        return _lib

    lib, lib_path = _open_library()
    logger.debug("loaded SQLite library from %s", lib_path)

    # Define signatures

    # Library-wide
    lib.sqlite3_libversion.argtypes = []
    lib.sqlite3_libversion.restype = c_char_p
    lib.sqlite3_libversion_number.argtypes = []
    lib.sqlite3_libversion_number.restype = c_int
    lib.sqlite3_sourceid.argtypes = []
    lib.sqlite3_sourceid.restype = c_char_p
    lib.sqlite3_threadsafe.argtypes = []
    lib.sqlite3_threadsafe.restype = c_int
    lib.sqlite3_initialize.argtypes = []
    lib.sqlite3_initialize.restype = c_int
    lib.sqlite3_shutdown.argtypes = []
    lib.sqlite3_shutdown.restype = c_int
    lib.sqlite3_compileoption_used.argtypes = [c_char_p]
    lib.sqlite3_compileoption_used.restype = c_int
    # sqlite3_config and sqlite3_db_config are variadic: no argtypes.
    lib.sqlite3_config.restype = c_int
    lib.sqlite3_db_config.restype = c_int

    # Memory management for engine-allocated buffers
    lib.sqlite3_free.argtypes = [c_void_p]
    lib.sqlite3_free.restype = None

    # Connections
    lib.sqlite3_open_v2.argtypes = [c_char_p, POINTER(c_void_p), c_int, c_char_p]
    lib.sqlite3_open_v2.restype = c_int
    lib.sqlite3_close.argtypes = [c_void_p]
    lib.sqlite3_close.restype = c_int

    lib.sqlite3_errcode.argtypes = [c_void_p]
    lib.sqlite3_errcode.restype = c_int
    lib.sqlite3_extended_errcode.argtypes = [c_void_p]
    lib.sqlite3_extended_errcode.restype = c_int
    lib.sqlite3_errmsg.argtypes = [c_void_p]
    lib.sqlite3_errmsg.restype = c_char_p
    lib.sqlite3_errstr.argtypes = [c_int]
    lib.sqlite3_errstr.restype = c_char_p

    # Byte offset of the last error (newer libs only)
    if hasattr(lib, "sqlite3_error_offset"):
        lib.sqlite3_error_offset.argtypes = [c_void_p]
        lib.sqlite3_error_offset.restype = c_int

    lib.sqlite3_changes.argtypes = [c_void_p]
    lib.sqlite3_changes.restype = c_int
    lib.sqlite3_total_changes.argtypes = [c_void_p]
    lib.sqlite3_total_changes.restype = c_int
    lib.sqlite3_last_insert_rowid.argtypes = [c_void_p]
    lib.sqlite3_last_insert_rowid.restype = c_int64
    lib.sqlite3_get_autocommit.argtypes = [c_void_p]
    lib.sqlite3_get_autocommit.restype = c_int
    lib.sqlite3_db_readonly.argtypes = [c_void_p, c_char_p]
    lib.sqlite3_db_readonly.restype = c_int
    lib.sqlite3_db_filename.argtypes = [c_void_p, c_char_p]
    lib.sqlite3_db_filename.restype = c_char_p
    lib.sqlite3_busy_timeout.argtypes = [c_void_p, c_int]
    lib.sqlite3_busy_timeout.restype = c_int
    lib.sqlite3_busy_handler.argtypes = [c_void_p, c_void_p, c_void_p]
    lib.sqlite3_busy_handler.restype = c_int
    lib.sqlite3_progress_handler.argtypes = [c_void_p, c_int, c_void_p, c_void_p]
    lib.sqlite3_progress_handler.restype = None
    lib.sqlite3_trace_v2.argtypes = [c_void_p, c_uint, c_void_p, c_void_p]
    lib.sqlite3_trace_v2.restype = c_int
    lib.sqlite3_interrupt.argtypes = [c_void_p]
    lib.sqlite3_interrupt.restype = None

    # Extensions may be compiled out (SQLITE_OMIT_LOAD_EXTENSION)
    if hasattr(lib, "sqlite3_enable_load_extension"):
        lib.sqlite3_enable_load_extension.argtypes = [c_void_p, c_int]
        lib.sqlite3_enable_load_extension.restype = c_int
        lib.sqlite3_load_extension.argtypes = [c_void_p, c_char_p, c_char_p, POINTER(c_void_p)]
        lib.sqlite3_load_extension.restype = c_int

    # Statements
    lib.sqlite3_prepare_v2.argtypes = [c_void_p, c_void_p, c_int, POINTER(c_void_p), POINTER(c_void_p)]
    lib.sqlite3_prepare_v2.restype = c_int
    lib.sqlite3_finalize.argtypes = [c_void_p]
    lib.sqlite3_finalize.restype = c_int
    lib.sqlite3_reset.argtypes = [c_void_p]
    lib.sqlite3_reset.restype = c_int
    lib.sqlite3_clear_bindings.argtypes = [c_void_p]
    lib.sqlite3_clear_bindings.restype = c_int
    lib.sqlite3_step.argtypes = [c_void_p]
    lib.sqlite3_step.restype = c_int
    lib.sqlite3_sql.argtypes = [c_void_p]
    lib.sqlite3_sql.restype = c_char_p
    # Returned buffer must be released with sqlite3_free
    lib.sqlite3_expanded_sql.argtypes = [c_void_p]
    lib.sqlite3_expanded_sql.restype = c_void_p

    # Parameters
    lib.sqlite3_bind_parameter_count.argtypes = [c_void_p]
    lib.sqlite3_bind_parameter_count.restype = c_int
    lib.sqlite3_bind_parameter_name.argtypes = [c_void_p, c_int]
    lib.sqlite3_bind_parameter_name.restype = c_char_p
    lib.sqlite3_bind_parameter_index.argtypes = [c_void_p, c_char_p]
    lib.sqlite3_bind_parameter_index.restype = c_int

    # Bindings
    lib.sqlite3_bind_null.argtypes = [c_void_p, c_int]
    lib.sqlite3_bind_null.restype = c_int
    lib.sqlite3_bind_int64.argtypes = [c_void_p, c_int, c_int64]
    lib.sqlite3_bind_int64.restype = c_int
    lib.sqlite3_bind_double.argtypes = [c_void_p, c_int, c_double]
    lib.sqlite3_bind_double.restype = c_int
    lib.sqlite3_bind_text.argtypes = [c_void_p, c_int, c_char_p, c_int, c_void_p]
    lib.sqlite3_bind_text.restype = c_int
    lib.sqlite3_bind_blob.argtypes = [c_void_p, c_int, c_void_p, c_int, c_void_p]
    lib.sqlite3_bind_blob.restype = c_int

    # Columns
    lib.sqlite3_column_count.argtypes = [c_void_p]
    lib.sqlite3_column_count.restype = c_int
    lib.sqlite3_column_name.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_name.restype = c_char_p
    lib.sqlite3_column_decltype.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_decltype.restype = c_char_p
    lib.sqlite3_column_type.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_type.restype = c_int
    lib.sqlite3_column_int64.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_int64.restype = c_int64
    lib.sqlite3_column_double.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_double.restype = c_double
    # Text and blob accessors return raw addresses into the current row buffer
    lib.sqlite3_column_text.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_text.restype = c_void_p
    lib.sqlite3_column_blob.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_blob.restype = c_void_p
    lib.sqlite3_column_bytes.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_bytes.restype = c_int

    # Column origin metadata (SQLITE_ENABLE_COLUMN_METADATA builds only)
    for name in ("sqlite3_column_database_name", "sqlite3_column_table_name", "sqlite3_column_origin_name"):
        if hasattr(lib, name):
            func = getattr(lib, name)
            func.argtypes = [c_void_p, c_int]
            func.restype = c_char_p
    if hasattr(lib, "sqlite3_table_column_metadata"):
        lib.sqlite3_table_column_metadata.argtypes = [
            c_void_p,
            c_char_p,
            c_char_p,
            c_char_p,
            POINTER(c_char_p),
            POINTER(c_char_p),
            POINTER(c_int),
            POINTER(c_int),
            POINTER(c_int),
        ]
        lib.sqlite3_table_column_metadata.restype = c_int

    # Hooks
    lib.sqlite3_update_hook.argtypes = [c_void_p, c_void_p, c_void_p]
    lib.sqlite3_update_hook.restype = c_void_p
    lib.sqlite3_commit_hook.argtypes = [c_void_p, c_void_p, c_void_p]
    lib.sqlite3_commit_hook.restype = c_void_p
    lib.sqlite3_rollback_hook.argtypes = [c_void_p, c_void_p, c_void_p]
    lib.sqlite3_rollback_hook.restype = c_void_p

    # Unlock notification (SQLITE_ENABLE_UNLOCK_NOTIFY builds only)
    if hasattr(lib, "sqlite3_unlock_notify"):
        lib.sqlite3_unlock_notify.argtypes = [c_void_p, c_void_p, c_void_p]
        lib.sqlite3_unlock_notify.restype = c_int

    # User-defined functions, aggregates and collations
    lib.sqlite3_create_function_v2.argtypes = [
        c_void_p,
        c_char_p,
        c_int,
        c_int,
        c_void_p,
        c_void_p,
        c_void_p,
        c_void_p,
        c_void_p,
    ]
    lib.sqlite3_create_function_v2.restype = c_int
    lib.sqlite3_create_collation_v2.argtypes = [c_void_p, c_char_p, c_int, c_void_p, c_void_p, c_void_p]
    lib.sqlite3_create_collation_v2.restype = c_int
    lib.sqlite3_aggregate_context.argtypes = [c_void_p, c_int]
    lib.sqlite3_aggregate_context.restype = c_void_p

    # Function arguments
    lib.sqlite3_value_type.argtypes = [c_void_p]
    lib.sqlite3_value_type.restype = c_int
    lib.sqlite3_value_int64.argtypes = [c_void_p]
    lib.sqlite3_value_int64.restype = c_int64
    lib.sqlite3_value_double.argtypes = [c_void_p]
    lib.sqlite3_value_double.restype = c_double
    lib.sqlite3_value_text.argtypes = [c_void_p]
    lib.sqlite3_value_text.restype = c_void_p
    lib.sqlite3_value_blob.argtypes = [c_void_p]
    lib.sqlite3_value_blob.restype = c_void_p
    lib.sqlite3_value_bytes.argtypes = [c_void_p]
    lib.sqlite3_value_bytes.restype = c_int

    # Function results
    lib.sqlite3_result_null.argtypes = [c_void_p]
    lib.sqlite3_result_null.restype = None
    lib.sqlite3_result_int64.argtypes = [c_void_p, c_int64]
    lib.sqlite3_result_int64.restype = None
    lib.sqlite3_result_double.argtypes = [c_void_p, c_double]
    lib.sqlite3_result_double.restype = None
    lib.sqlite3_result_text.argtypes = [c_void_p, c_char_p, c_int, c_void_p]
    lib.sqlite3_result_text.restype = None
    lib.sqlite3_result_blob.argtypes = [c_void_p, c_void_p, c_int, c_void_p]
    lib.sqlite3_result_blob.restype = None
    lib.sqlite3_result_error.argtypes = [c_void_p, c_char_p, c_int]
    lib.sqlite3_result_error.restype = None
    lib.sqlite3_result_error_nomem.argtypes = [c_void_p]
    lib.sqlite3_result_error_nomem.restype = None
    lib.sqlite3_result_error_toobig.argtypes = [c_void_p]
    lib.sqlite3_result_error_toobig.restype = None

    _lib = lib
    return _lib
