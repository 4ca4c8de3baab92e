import dataclasses
from typing import Optional

import pytest
import litebind
from litebind import CachedRow, ColumnData, ColumnType, ConversionError, InterfaceError


@dataclasses.dataclass
class User:
    id: int
    name: str
    email: Optional[str] = None


@dataclasses.dataclass
class Renamed:
    key: int = dataclasses.field(metadata={"column": "id"})
    label: str = dataclasses.field(metadata={"column": "name"})


@dataclasses.dataclass
class NeedsAge:
    id: int
    age: int


@dataclasses.dataclass
class WrongType:
    id: int
    name: int


@pytest.fixture
def users(db):
    db.run("""
        CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT NOT NULL, email TEXT, avatar BLOB);
        INSERT INTO users VALUES (1, 'ann', 'ann@example.com', x'616263');
        INSERT INTO users VALUES (2, 'bob', NULL, NULL);
    """)
    return db


def test_row_access(users):
    stmt = users.prepare("SELECT id, name, email FROM users ORDER BY id")
    row = stmt.step()
    assert len(row) == 3
    assert row[0] == ColumnData.of(1)
    assert row["name"].value == "ann"
    assert row.peek("email") == "ann@example.com"
    assert row.column_name(1) == "name"
    assert row.column_type(0) is ColumnType.INTEGER
    assert [data.value for data in row] == [1, "ann", "ann@example.com"]
    assert row.as_dict() == {"id": 1, "name": "ann", "email": "ann@example.com"}

    with pytest.raises(KeyError):
        row["missing"]
    with pytest.raises(IndexError):
        row[3]
    stmt.close()


def test_stale_row_raises(users):
    stmt = users.prepare("SELECT id FROM users ORDER BY id")
    first = stmt.step()
    assert first.valid
    second = stmt.step()
    assert not first.valid
    with pytest.raises(InterfaceError):
        first.peek(0)
    assert second.peek(0) == 2

    stmt.reset()
    with pytest.raises(InterfaceError):
        second[0]
    stmt.close()


def test_detach_outlives_step(users):
    stmt = users.prepare("SELECT id, name FROM users ORDER BY id")
    kept = stmt.step().detach()
    stmt.step()
    stmt.close()
    assert isinstance(kept, CachedRow)
    assert kept.peek("name") == "ann"
    assert kept.as_dict() == {"id": 1, "name": "ann"}


def test_peek_buffer_view(users):
    stmt = users.prepare("SELECT avatar, name, id FROM users WHERE id = 1")
    row = stmt.step()
    assert bytes(row.peek("avatar", memoryview)) == b"abc"
    assert bytes(row.peek(1, memoryview)) == b"ann"
    with pytest.raises(ConversionError):
        row.peek("id", memoryview)
    stmt.close()


def test_as_type(users):
    rows = [row.as_type(User) for row in users.query("SELECT id, name, email FROM users ORDER BY id")]
    assert rows == [User(1, "ann", "ann@example.com"), User(2, "bob", None)]

    # Fields with defaults may be missing from the result.
    for row in users.query("SELECT id, name FROM users WHERE id = 2"):
        assert row.as_type(User) == User(2, "bob")


def test_as_type_options(users):
    for row in users.query("SELECT id AS ID, name AS Name FROM users WHERE id = 1"):
        with pytest.raises(ConversionError):
            row.as_type(User)
        assert row.as_type(User, case_sensitive=False) == User(1, "ann")

    for row in users.query("SELECT id, name FROM users WHERE id = 2"):
        assert row.as_type(Renamed) == Renamed(2, "bob")
        with pytest.raises(ConversionError):
            row.as_type(NeedsAge)
        with pytest.raises(ConversionError):
            row.as_type(WrongType)
        with pytest.raises(ConversionError):
            row.as_type(dict)


def test_column_decltype(users):
    stmt = users.prepare("SELECT name, 1 + 1 FROM users")
    row = stmt.step()
    assert row.column_decltype(0) == "TEXT"
    assert row.column_decltype(1) is None
    stmt.close()


def test_column_origin(users):
    if not hasattr(litebind.load_library(), "sqlite3_column_origin_name"):
        pytest.skip("SQLite built without column metadata")
    stmt = users.prepare("SELECT name AS n FROM users")
    row = stmt.step()
    assert row.column_origin(0) == ("main", "users", "name")
    stmt.close()


def test_one_value(users):
    assert users.query("SELECT count(*) FROM users").one_value(int) == 2
    assert users.query("SELECT count(*) FROM users").one_value(str) == "2"
    with pytest.raises(ConversionError):
        users.query("SELECT id FROM users WHERE id > 10").one_value()


def test_query_closes_its_statement(users, finalize_calls):
    ids = [row.peek(0) for row in users.query("SELECT id FROM users ORDER BY id")]
    assert ids == [1, 2]
    assert [kind for kind, _ in finalize_calls] == ["finalize"]

    with users.query("SELECT id FROM users") as rows:
        next(rows)
    assert len(finalize_calls) == 2


def test_cached_results(users):
    results = litebind.cached(users.query("SELECT id, name FROM users ORDER BY id"))
    assert len(results) == 2
    assert results.column_names == ("id", "name")
    assert results[0]["name"].value == "ann"
    assert [r.peek(0) for r in results] == [1, 2]
    assert [r.peek(0) for r in results] == [1, 2]
    assert results[1].as_dict() == {"id": 2, "name": "bob"}
    assert results[1].as_type(User) == User(2, "bob")

    again = litebind.cached(users.query("SELECT id, name FROM users ORDER BY id"))
    assert list(again) == list(results)


def test_collected_rows_are_stale(users):
    stmt = users.prepare("SELECT id FROM users")
    rows = list(stmt)
    assert len(rows) == 2
    with pytest.raises(InterfaceError):
        rows[0].peek(0)
    stmt.close()
