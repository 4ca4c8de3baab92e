import re

import pytest
import litebind
from litebind import ConfigurationError, ExecutionError


def test_version_information():
    version = litebind.version_string()
    assert re.match(r"^\d+\.\d+\.\d+", version)
    major, minor, patch = (int(part) for part in version.split(".")[:3])
    assert litebind.version_number() == major * 1000000 + minor * 1000 + patch
    assert litebind.source_id()
    assert isinstance(litebind.thread_safe(), bool)


def test_compile_options():
    assert litebind.is_compiled_with("THREADSAFE")
    assert litebind.is_compiled_with("SQLITE_THREADSAFE")
    assert not litebind.is_compiled_with("NOT_A_REAL_OPTION")


def test_config_after_initialize_is_misuse():
    litebind.initialize()
    with pytest.raises(ConfigurationError) as exc_info:
        litebind.config(litebind.SQLITE_CONFIG_MEMSTATUS, 0)
    assert exc_info.value.code == litebind.SQLITE_MISUSE


def test_db_config(db):
    db.run("""
        CREATE TABLE parent (id INTEGER PRIMARY KEY);
        CREATE TABLE child (parent_id INTEGER REFERENCES parent(id));
    """)
    assert db.set_db_config(litebind.SQLITE_DBCONFIG_ENABLE_FKEY, True) is True
    with pytest.raises(litebind.StepError) as exc_info:
        db.execute("INSERT INTO child VALUES (1)")
    assert exc_info.value.code == litebind.SQLITE_CONSTRAINT

    assert db.set_db_config(litebind.SQLITE_DBCONFIG_ENABLE_FKEY, False) is False
    db.execute("INSERT INTO child VALUES (1)")


def test_table_column_metadata(db):
    if not hasattr(litebind.load_library(), "sqlite3_table_column_metadata"):
        pytest.skip("SQLite built without column metadata")
    db.run("CREATE TABLE t (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL COLLATE NOCASE)")

    meta = db.table_column_metadata("t", "id")
    assert meta.declared_type == "INTEGER"
    assert meta.primary_key
    assert meta.autoincrement

    meta = db.table_column_metadata("t", "name", "main")
    assert meta == litebind.ColumnMetadata("TEXT", "NOCASE", True, False, False)

    with pytest.raises(ExecutionError):
        db.table_column_metadata("t", "missing")


def test_load_extension_failure(db, tmp_path):
    if not hasattr(litebind.load_library(), "sqlite3_load_extension"):
        with pytest.raises(ConfigurationError):
            db.enable_load_extensions(True)
        return
    db.enable_load_extensions(True)
    with pytest.raises(ExecutionError):
        db.load_extension(str(tmp_path / "no_such_extension"))
    db.enable_load_extensions(False)
