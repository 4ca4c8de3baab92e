import pytest
import litebind


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "test.db")


@pytest.fixture
def db():
    conn = litebind.connect(":memory:")
    yield conn
    conn.close()


@pytest.fixture
def finalize_calls(monkeypatch):
    """Record every native finalize/close, in order, as ``(kind, ptr)``."""
    lib = litebind.load_library()
    calls = []
    real_finalize = lib.sqlite3_finalize
    real_close = lib.sqlite3_close

    def finalize(ptr):
        calls.append(("finalize", ptr))
        return real_finalize(ptr)

    def close(ptr):
        calls.append(("close", ptr))
        return real_close(ptr)

    monkeypatch.setattr(lib, "sqlite3_finalize", finalize)
    monkeypatch.setattr(lib, "sqlite3_close", close)
    return calls
