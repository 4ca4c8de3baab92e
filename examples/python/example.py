"""Example: basic litebind usage.

Uses the system SQLite library; point at another build with:
    LITEBIND_SQLITE_LIB=/path/to/libsqlite3.so python example.py
"""

import dataclasses
import os
import tempfile
from typing import Optional

import litebind


@dataclasses.dataclass
class User:
    id: int
    name: str
    email: Optional[str] = None


class Longest:
    """Aggregate returning the longest string seen."""

    def __init__(self):
        self.best = None

    def step(self, value: str):
        if self.best is None or len(value) > len(self.best):
            self.best = value

    def finalize(self):
        return self.best


def main(db_path=None):
    # Create a temporary database file for this example.
    if db_path is None:
        db_path = os.path.join(tempfile.gettempdir(), "litebind_example.db")

    print(f"SQLite {litebind.version_string()}")
    conn = litebind.connect(db_path)

    # Create a table.
    conn.run("""
        DROP TABLE IF EXISTS users;
        CREATE TABLE users (
            id    INTEGER PRIMARY KEY,
            name  TEXT NOT NULL,
            email TEXT UNIQUE
        );
    """)

    # Insert rows with one prepared statement, rebound for each row.
    users = [
        ("Alice", "alice@example.com"),
        ("Bob", "bob@example.com"),
        ("Carol", "carol@example.com"),
    ]
    with conn.prepare("INSERT INTO users (name, email) VALUES (?, ?)") as insert:
        for name, email in users:
            insert.inject(name, email)

    # Query all users.
    print("All users:")
    for row in conn.query("SELECT id, name, email FROM users ORDER BY id"):
        user = row.as_type(User)
        print(f"  id={user.id}  name={user.name}  email={user.email}")

    # Parameterised lookup with a named parameter.
    name = conn.execute("SELECT name FROM users WHERE email = :email", {"email": "bob@example.com"})
    print(f"\nLookup by email: {name}")

    # Transaction example.
    conn.begin()
    conn.execute("INSERT INTO users (name, email) VALUES (?, ?)", "Dave", "dave@example.com")
    conn.commit()

    count = conn.query("SELECT count(*) FROM users").one_value(int)
    print(f"\nTotal users after transaction: {count}")

    # User-defined function and aggregate.
    conn.create_function("initial", lambda s: s[:1].upper())
    conn.create_aggregate("longest", Longest)
    initials = "".join(row.peek(0) for row in conn.query("SELECT initial(name) FROM users ORDER BY id"))
    print(f"\nInitials: {initials}")
    print(f"Longest name: {conn.execute('SELECT longest(name) FROM users')}")

    # Detached results outlive their statement.
    snapshot = litebind.cached(conn.query("SELECT id, name FROM users ORDER BY id"))
    print(f"\nSnapshot of {len(snapshot)} rows: {[r.as_dict() for r in snapshot]}")

    conn.close()

    # Clean up.
    for suffix in ("", "-journal", "-wal"):
        try:
            os.unlink(db_path + suffix)
        except FileNotFoundError:
            pass

    print("\nDone.")
    return count


if __name__ == "__main__":
    main()
