"""
Migration V1 -> V2
- Adds 'expires_at' and 'used_at' columns to reset_tokens if missing
- Backfills expires_at as created_at + TTL for tokens that are still active
- Marks inactive tokens as used so they can never redeem a password change

Usage:
  python -m migration.migration_v1_to_v2 --db path/to/expense_tracker.db [--ttl-minutes 60]
"""
import argparse
import os
import sqlite3
from contextlib import closing


def has_column(conn: sqlite3.Connection, table: str, column: str) -> bool:
    cur = conn.execute(f"PRAGMA table_info({table})")
    return any(row[1] == column for row in cur.fetchall())


def migrate(db_path: str, ttl_minutes: int = 60):
    if db_path == ":memory:":
        raise ValueError("Use a file-backed DB for migration script")

    if not os.path.exists(db_path):
        raise FileNotFoundError(db_path)

    if ttl_minutes <= 0:
        raise ValueError("ttl_minutes must be positive")

    with closing(sqlite3.connect(db_path)) as conn:
        conn.execute("PRAGMA foreign_keys=ON")

        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        if "reset_tokens" not in tables:
            raise RuntimeError("reset_tokens table missing; cannot migrate")

        if not has_column(conn, "reset_tokens", "expires_at"):
            conn.execute("ALTER TABLE reset_tokens ADD COLUMN expires_at DATETIME")
        if not has_column(conn, "reset_tokens", "used_at"):
            conn.execute("ALTER TABLE reset_tokens ADD COLUMN used_at DATETIME")

        conn.execute(
            "UPDATE reset_tokens SET expires_at = datetime(created_at, ?) "
            "WHERE expires_at IS NULL AND active = 1",
            (f"+{int(ttl_minutes)} minutes",),
        )
        # V1 could not tell consumed-and-spent from consumed-only
        conn.execute("UPDATE reset_tokens SET used_at = created_at WHERE used_at IS NULL AND active = 0")
        conn.commit()


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", required=True, help="Path to SQLite database file")
    parser.add_argument("--ttl-minutes", type=int, default=60, help="Lifetime given to still-active tokens")
    args = parser.parse_args()
    migrate(args.db, ttl_minutes=args.ttl_minutes)

if __name__ == "__main__":
    main()
