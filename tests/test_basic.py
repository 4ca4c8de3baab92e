import copy
import os

import pytest
import litebind
from litebind import ExecutionError, InterfaceError, OpenError, PrepareError, StepError


def test_connect(db_path):
    conn = litebind.connect(db_path)
    assert conn is not None
    assert os.path.basename(conn.attached_file_path()) == "test.db"
    conn.close()


def test_open_failure(tmp_path):
    missing = str(tmp_path / "missing" / "test.db")
    with pytest.raises(OpenError) as exc_info:
        litebind.Connection.open(missing, litebind.OPEN_READWRITE)
    assert exc_info.value.code == litebind.SQLITE_CANTOPEN


def test_ddl_and_insert(db_path):
    conn = litebind.connect(db_path)
    conn.run("""
        CREATE TABLE foo (id INTEGER PRIMARY KEY, name TEXT);
        INSERT INTO foo VALUES (1, 'alice');
        INSERT INTO foo VALUES (2, 'bob');
    """)
    conn.close()

    # Reopen and verify
    conn = litebind.connect(db_path)
    rows = [(row.peek(0), row.peek(1)) for row in conn.query("SELECT * FROM foo ORDER BY id")]
    assert rows == [(1, "alice"), (2, "bob")]
    conn.close()


def test_prepare_bind_step(db):
    db.run("CREATE TABLE person (name TEXT, score FLOAT)")
    insert = db.prepare("INSERT INTO person VALUES (:name, :score)")
    insert.inject("John", 77.5)
    insert.inject({"name": "Jane", "score": 85.0})
    insert.close()

    stmt = db.prepare("SELECT name, score FROM person WHERE score > ? ORDER BY score")
    stmt.bind(1, 50)
    seen = [(row.peek("name"), row.peek("score", float)) for row in stmt]
    assert seen == [("John", 77.5), ("Jane", 85.0)]
    stmt.close()


def test_run_stops_at_first_failure(db):
    with pytest.raises(ExecutionError) as exc_info:
        db.run("CREATE TABLE t (x); INSERT INTO nope VALUES (1); INSERT INTO t VALUES (1);")
    error = exc_info.value
    assert error.code == litebind.SQLITE_ERROR
    assert "nope" in error.sql
    assert "no such table" in error.message
    assert db.execute("SELECT count(*) FROM t") == 0


def test_run_reports_step_failures(db):
    with pytest.raises(ExecutionError) as exc_info:
        db.run("CREATE TABLE u (x UNIQUE); INSERT INTO u VALUES (1); INSERT INTO u VALUES (1)")
    error = exc_info.value
    assert error.code == litebind.SQLITE_CONSTRAINT
    assert error.sql == "INSERT INTO u VALUES (1)"
    assert isinstance(error.__cause__, StepError)
    assert "Context:" in str(error)


def test_run_callback(db):
    seen = []
    db.run("SELECT 1 AS a; SELECT 2 AS b;", lambda rows: seen.append([r.peek(0) for r in rows]))
    assert seen == [[1], [2]]

    seen.clear()

    def first_only(rows):
        seen.append(rows.column_names)
        return False

    db.run("SELECT 1 AS a; SELECT 2 AS b;", first_only)
    assert seen == [("a",)]


def test_run_ignores_trailing_comments(db):
    db.run("CREATE TABLE t (x); -- done\n")
    assert db.execute("SELECT count(*) FROM t") == 0


def test_execute(db):
    assert db.execute("SELECT 42") == 42
    assert db.execute("CREATE TABLE t (x)") is None
    assert db.execute("SELECT ? + ?", 1, 2) == 3
    assert db.execute("SELECT :a || :b", {"a": "x", "b": "y"}) == "xy"
    assert db.execute("SELECT x FROM t") is None


def test_prepare_errors(db):
    with pytest.raises(PrepareError) as exc_info:
        db.prepare("SELEC 1")
    assert exc_info.value.code == litebind.SQLITE_ERROR
    assert "syntax error" in exc_info.value.message

    with pytest.raises(PrepareError) as exc_info:
        db.prepare("   ")
    assert exc_info.value.code == litebind.SQLITE_MISUSE

    with pytest.raises(PrepareError):
        db.prepare("SELECT 1; SELECT 2")

    stmt = db.prepare("SELECT 1; -- trailing comment")
    assert stmt.step().peek(0) == 1
    stmt.close()


def test_prepare_skips_leading_empty_statements(db):
    stmt = db.prepare("; ;SELECT 1")
    assert stmt.step().peek(0) == 1
    stmt.close()

    with pytest.raises(PrepareError) as exc_info:
        db.prepare("; -- nothing else")
    assert exc_info.value.code == litebind.SQLITE_MISUSE


def test_prepare_error_offset(db):
    if litebind.version_number() < 3038000:
        pytest.skip("sqlite3_error_offset needs SQLite 3.38")
    with pytest.raises(PrepareError) as exc_info:
        db.prepare("SELECT nope FROM sqlite_master")
    assert exc_info.value.offset in (None, 7)


def test_transactions(db):
    db.run("CREATE TABLE t (x)")
    assert db.is_autocommit

    db.begin()
    assert not db.is_autocommit
    db.execute("INSERT INTO t VALUES (1)")
    db.rollback()
    assert db.is_autocommit
    assert db.execute("SELECT count(*) FROM t") == 0

    db.begin("IMMEDIATE")
    db.execute("INSERT INTO t VALUES (1)")
    db.commit()
    assert db.execute("SELECT count(*) FROM t") == 1


def test_context_manager_commits_or_rolls_back(db_path):
    with litebind.connect(db_path) as conn:
        conn.run("CREATE TABLE t (x)")
        conn.begin()
        conn.execute("INSERT INTO t VALUES (1)")
    assert not conn.handle.alive

    with pytest.raises(RuntimeError):
        with litebind.connect(db_path) as conn:
            conn.begin()
            conn.execute("INSERT INTO t VALUES (2)")
            raise RuntimeError("boom")

    conn = litebind.connect(db_path)
    assert conn.query("SELECT x FROM t").one_value() == 1
    assert conn.execute("SELECT count(*) FROM t") == 1
    conn.close()


def test_context_manager_after_close_with_live_copy(db):
    other = copy.copy(db)
    with other:
        other.close()
    assert db.handle.alive
    assert db.execute("SELECT 1") == 1


def test_change_counters(db):
    db.run("CREATE TABLE t (id INTEGER PRIMARY KEY, x)")
    db.execute("INSERT INTO t (x) VALUES (?)", "a")
    db.execute("INSERT INTO t (x) VALUES (?)", "b")
    assert db.last_insert_rowid == 2
    db.execute("UPDATE t SET x = 'c'")
    assert db.changes == 2
    assert db.total_changes == 4


def test_read_only_and_file_path(db_path):
    conn = litebind.connect(db_path)
    conn.run("CREATE TABLE t (x)")
    conn.close()

    conn = litebind.connect(db_path, litebind.OPEN_READONLY)
    assert conn.is_read_only()
    with pytest.raises(ExecutionError):
        conn.is_read_only("nope")
    with pytest.raises(StepError) as exc_info:
        conn.execute("INSERT INTO t VALUES (1)")
    assert exc_info.value.code == litebind.SQLITE_READONLY
    assert conn.attached_file_path("nope") is None
    conn.close()


def test_memory_database_has_no_file(db):
    assert not db.is_read_only()
    assert db.attached_file_path() == ""


def test_error_state(db):
    with pytest.raises(PrepareError):
        db.prepare("SELEC 1")
    assert db.error_code == litebind.SQLITE_ERROR
    assert "syntax error" in db.error_message


def test_closed_connection(db_path):
    conn = litebind.connect(db_path)
    conn.close()
    with pytest.raises(InterfaceError):
        conn.prepare("SELECT 1")
    with pytest.raises(InterfaceError):
        conn.changes
    assert "closed" in repr(conn)


def test_insert_scenario():
    conn = litebind.connect(":memory:")
    conn.run("CREATE TABLE t(a INTEGER, b TEXT)")
    stmt = conn.prepare("INSERT INTO t VALUES (?,?)")
    stmt.bind_all(1, "x")
    stmt.execute()
    stmt.reset()
    stmt.bind_all(2, "y")
    stmt.execute()
    stmt.close()
    assert conn.execute("SELECT count(*) FROM t") == 2
    conn.close()


def test_prepare_missing_table(db):
    with pytest.raises(PrepareError) as exc_info:
        db.prepare("SELECT a FROM missing_table")
    assert "missing_table" in exc_info.value.message


def test_bind_index_out_of_range(db):
    stmt = db.prepare("SELECT ?, ?")
    with pytest.raises(litebind.BindError):
        stmt.bind(5, 1)
    stmt.close()


def test_reset_replays_rows(db):
    db.run("CREATE TABLE t (x); INSERT INTO t VALUES (1), (2), (3);")
    stmt = db.prepare("SELECT x FROM t WHERE x >= ? ORDER BY x")
    stmt.bind(1, 2)
    first = [row.peek(0) for row in stmt]
    stmt.reset()
    assert [row.peek(0) for row in stmt] == first == [2, 3]
    stmt.close()


def test_cached_results_survive_statement_reuse(db):
    db.run("CREATE TABLE t (x); INSERT INTO t VALUES (1), (2), (3);")
    stmt = db.prepare("SELECT x FROM t WHERE x >= ? ORDER BY x")
    stmt.bind(1, 1)
    snapshot = litebind.cached(stmt.results())

    stmt.reset()
    stmt.bind(1, 3)
    assert [row.peek(0) for row in stmt] == [3]

    assert [row.peek(0) for row in snapshot] == [1, 2, 3]
    assert [row.peek(0) for row in snapshot] == [1, 2, 3]
    stmt.close()
