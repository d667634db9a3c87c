"""
SQLite database integration and simple migration system.

This module provides functions for obtaining a database connection
(``get_connection``), a transactional unit of work
(``unit_of_work``), and applying migrations on application start
(``init_db``).  SQLite is used as a lightweight embedded database;
to switch to another DBMS you would replace connection logic and
adapt SQL syntax accordingly.

The migration mechanism stores applied migration versions in the
``migrations`` table and executes new migrations in order.
"""

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from .config import settings


logger = logging.getLogger(__name__)

# Same layout as SQLite's CURRENT_TIMESTAMP so that values written by
# Python and by column defaults compare correctly as text.
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_timestamp(moment: Optional[datetime] = None) -> str:
    """Format ``moment`` (default: now) as a UTC timestamp string."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(TIMESTAMP_FORMAT)


def get_database_path() -> str:
    """Compute the path to the SQLite database file.

    If ``settings.database_url`` is an absolute path, use it directly.
    Otherwise resolve it relative to the project root.
    """
    db_url = settings.database_url
    if os.path.isabs(db_url):
        return db_url
    base_dir = Path(__file__).resolve().parent.parent.parent  # directory_api/
    return str((base_dir / db_url).resolve())


def get_connection() -> sqlite3.Connection:
    """Create and return a new SQLite connection.

    Rows are returned as ``sqlite3.Row`` so columns can be accessed by
    name, and foreign key enforcement is switched on (SQLite disables
    it per connection by default).  Deleting a review relies on it to
    cascade to its votes and flags.
    """
    conn = sqlite3.connect(get_database_path(), timeout=settings.sqlite_timeout)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_cursor() -> Iterator[sqlite3.Cursor]:
    """Context manager that yields a cursor and closes the connection on exit."""
    conn = get_connection()
    try:
        yield conn.cursor()
        conn.commit()
    finally:
        conn.close()


@contextmanager
def unit_of_work() -> Iterator[sqlite3.Cursor]:
    """Run a block of statements as one all-or-nothing transaction.

    The transaction is opened with ``BEGIN IMMEDIATE`` so the write
    lock is taken before the first read.  Two requests recomputing the
    same review's vote counts therefore cannot interleave their
    read-recompute-write sequences.  The transaction commits when the
    block exits normally and rolls back on any exception, which is then
    re-raised.

    Example::

        with unit_of_work() as cursor:
            cursor.execute("INSERT INTO review_flags ...")
            cursor.execute("UPDATE reviews SET flag_count = ...")
    """
    conn = get_connection()
    conn.isolation_level = None
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn.cursor()
        except BaseException:
            conn.rollback()
            raise
        conn.commit()
    finally:
        conn.close()


def init_db() -> None:
    """Initialise the database and apply pending migrations.

    Creates the ``migrations`` table if it does not exist, checks the
    current schema version, and applies any new migrations defined in
    the ``migrations`` list.  If you add a new migration, append it
    with an incremented version number.
    """
    migrations: list[tuple[int, str]] = [
        # Migration 1: listings and reviews
        (
            1,
            """
            CREATE TABLE IF NOT EXISTS listings (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                source TEXT NOT NULL DEFAULT 'user',
                owner_id TEXT,
                avg_trustworthiness REAL NOT NULL DEFAULT 0,
                avg_usefulness REAL NOT NULL DEFAULT 0,
                total_ratings INTEGER NOT NULL DEFAULT 0,
                combined_score REAL NOT NULL DEFAULT 0,
                recent_ratings_count INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                CHECK (source IN ('official', 'user', 'registry'))
            );

            CREATE TABLE IF NOT EXISTS reviews (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                listing_id TEXT NOT NULL,
                author_id TEXT NOT NULL,
                trustworthiness INTEGER NOT NULL,
                usefulness INTEGER NOT NULL,
                text TEXT,
                status TEXT NOT NULL DEFAULT 'approved',
                helpful_count INTEGER NOT NULL DEFAULT 0,
                not_helpful_count INTEGER NOT NULL DEFAULT 0,
                flag_count INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (listing_id, author_id),
                CHECK (trustworthiness BETWEEN 1 AND 5),
                CHECK (usefulness BETWEEN 1 AND 5),
                CHECK (status IN ('approved', 'flagged')),
                FOREIGN KEY(listing_id) REFERENCES listings(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_reviews_author_id ON reviews(author_id);
            CREATE INDEX IF NOT EXISTS idx_reviews_listing_created ON reviews(listing_id, created_at);
            """,
        ),
        # Migration 2: helpful votes and abuse flags on reviews
        (
            2,
            """
            -- One row per (review, voter); a changed vote updates the row.
            CREATE TABLE IF NOT EXISTS review_votes (
                review_id INTEGER NOT NULL,
                voter_id TEXT NOT NULL,
                helpful INTEGER NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (review_id, voter_id),
                FOREIGN KEY(review_id) REFERENCES reviews(id) ON DELETE CASCADE
            );

            -- Existence-only record; never updated.
            CREATE TABLE IF NOT EXISTS review_flags (
                review_id INTEGER NOT NULL,
                flagger_id TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (review_id, flagger_id),
                FOREIGN KEY(review_id) REFERENCES reviews(id) ON DELETE CASCADE
            );
            """,
        ),
    ]

    with get_cursor() as cursor:
        cursor.execute(
            "CREATE TABLE IF NOT EXISTS migrations (version INTEGER PRIMARY KEY)"
        )
        cursor.execute("SELECT MAX(version) as version FROM migrations")
        row = cursor.fetchone()
        current_version = row["version"] if row and row["version"] is not None else 0

        for version, sql in migrations:
            if version > current_version:
                cursor.executescript(sql)
                cursor.execute(
                    "INSERT INTO migrations (version) VALUES (?)", (version,)
                )
                current_version = version
                logger.info("Applied database migration %s", version)
