import copy
import logging

import pytest
import litebind
from litebind import InterfaceError, NativeHandle


def _kinds(calls):
    return [kind for kind, _ in calls]


def test_handle_finalizes_once():
    seen = []
    handle = NativeHandle(1234, lambda ptr: seen.append(ptr) or litebind.SQLITE_OK, "statement")
    handle.acquire()
    assert handle.refcount == 2

    handle.release()
    assert seen == []
    assert handle.alive

    handle.release()
    assert seen == [1234]
    assert not handle.alive

    # Extra releases are ignored
    handle.release()
    assert seen == [1234]

    with pytest.raises(InterfaceError):
        handle.ptr
    with pytest.raises(InterfaceError):
        handle.acquire()


def test_handle_rejects_null():
    with pytest.raises(InterfaceError):
        NativeHandle(None, lambda ptr: 0)


def test_forced_finalize_is_idempotent():
    seen = []
    handle = NativeHandle(7, lambda ptr: seen.append(ptr) or 0)
    handle.acquire()
    handle.finalize()
    handle.finalize()
    handle.release()
    assert seen == [7]
    assert handle.refcount == 0


def test_finalize_status_is_logged_not_raised(caplog):
    handle = NativeHandle(1, lambda ptr: litebind.SQLITE_BUSY, "connection")
    with caplog.at_level(logging.WARNING, logger="litebind.handle"):
        handle.release()
    assert handle.finalize_status == litebind.SQLITE_BUSY
    assert "returned status 5" in caplog.text


def test_connection_copy_shares_handle(db_path):
    conn = litebind.connect(db_path)
    other = copy.copy(conn)
    assert other.handle is conn.handle
    assert conn.handle.refcount == 2

    conn.close()
    conn.close()
    assert conn.handle.refcount == 1
    assert other.execute("SELECT 1") == 1

    with pytest.raises(InterfaceError):
        conn.execute("SELECT 1")

    other.close()
    assert not other.handle.alive


def test_last_statement_copy_finalizes(finalize_calls):
    conn = litebind.connect()
    stmt = conn.prepare("SELECT 1")
    copied = copy.copy(stmt)

    stmt.close()
    assert _kinds(finalize_calls) == []
    assert copied.step().peek(0) == 1

    copied.close()
    assert _kinds(finalize_calls) == ["finalize"]

    conn.close()
    assert _kinds(finalize_calls) == ["finalize", "close"]


def test_garbage_collected_wrapper_releases(finalize_calls):
    conn = litebind.connect()
    stmt = conn.prepare("SELECT 1")
    del stmt
    assert _kinds(finalize_calls) == ["finalize"]
    del conn
    assert _kinds(finalize_calls) == ["finalize", "close"]


def test_teardown_finalizes_live_statements(finalize_calls):
    conn = litebind.connect()
    first = conn.prepare("SELECT 1")
    second = conn.prepare("SELECT 2")
    row = first.step()

    conn.close()
    assert sorted(_kinds(finalize_calls)) == ["close", "finalize", "finalize"]
    assert _kinds(finalize_calls)[-1] == "close"
    assert conn.handle.finalize_status == litebind.SQLITE_OK

    with pytest.raises(InterfaceError):
        first.step()
    with pytest.raises(InterfaceError):
        second.clear_bindings()
    with pytest.raises(InterfaceError):
        row.peek(0)
    assert not row.valid

    # Closing the orphaned wrappers does not finalize again.
    first.close()
    second.close()
    assert len(finalize_calls) == 3
