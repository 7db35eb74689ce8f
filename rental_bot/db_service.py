"""
Database Service (DAL - Data Access Layer)
==========================================

Connection pool, transactions and schema for the rental store.

Every sqlite3 failure leaving this module is converted into a StoreError
tagged with an ErrorKind, so the retry policy never looks at driver classes.
"""

import sqlite3
import threading
import logging
from typing import Optional, List, Dict, Any
from contextlib import contextmanager

from .exceptions import StoreError, ErrorKind

logger = logging.getLogger("DB_SERVICE")

# Car statuses the booking logic relies on
STATUS_AVAILABLE = 1
STATUS_BOOKED = 2
STATUS_FORCED_UNAVAILABLE = 4

TRANSIENT_MARKERS = (
    "database is locked",
    "database table is locked",
    "busy",
    "disk i/o error",
    "unable to open database",
    "closed",
)


def classify_error(exc: sqlite3.Error) -> ErrorKind:
    """Map a driver error onto TRANSIENT (retry unchanged) or FATAL."""
    if isinstance(exc, (sqlite3.OperationalError, sqlite3.ProgrammingError, sqlite3.InterfaceError)):
        text = str(exc).lower()
        if any(marker in text for marker in TRANSIENT_MARKERS):
            return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


def to_store_error(exc: sqlite3.Error) -> StoreError:
    kind = classify_error(exc)
    return StoreError(str(exc), kind=kind, context={"driver_error": exc.__class__.__name__})


class ConnectionPool:
    """Bounded pool of sqlite connections, validated before reuse"""

    def __init__(self, db_path: str = "rental_bot.db", pool_size: int = 5, timeout: float = 10.0):
        self.db_path = db_path
        self.pool_size = pool_size
        self.timeout = timeout
        self._idle: List[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self._slots = threading.BoundedSemaphore(pool_size)
        self._created = 0
        self._reconnects = 0

    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None: autocommit, transactions are opened explicitly
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.timeout,
            check_same_thread=False,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute("PRAGMA journal_mode=WAL")
        with self._lock:
            self._created += 1
        return conn

    @staticmethod
    def is_valid(conn: sqlite3.Connection) -> bool:
        """Cheap liveness probe"""
        try:
            conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            return False

    def acquire(self) -> sqlite3.Connection:
        """Take a live connection, reconnecting transparently if the pooled one is dead"""
        if not self._slots.acquire(timeout=self.timeout):
            raise sqlite3.OperationalError("database is busy: connection pool exhausted")

        with self._lock:
            conn = self._idle.pop() if self._idle else None

        try:
            if conn is not None and not self.is_valid(conn):
                logger.warning("🔄 Pooled connection is no longer valid, reconnecting")
                self._close_quietly(conn)
                conn = None
                with self._lock:
                    self._reconnects += 1
            if conn is None:
                conn = self._connect()
        except BaseException:
            self._slots.release()
            raise
        return conn

    def release(self, conn: sqlite3.Connection) -> None:
        """Return connection to the pool"""
        try:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.debug(f"Could not rollback on release: {e}")
            self._close_quietly(conn)
            conn = None

        with self._lock:
            if conn is not None:
                self._idle.append(conn)
        self._slots.release()

    @staticmethod
    def _close_quietly(conn: sqlite3.Connection) -> None:
        try:
            conn.close()
        except sqlite3.Error as e:
            logger.debug(f"Could not close connection: {e}")

    def close_all(self):
        """Close all idle connections"""
        with self._lock:
            idle, self._idle = self._idle, []
        for conn in idle:
            self._close_quietly(conn)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "pool_size": self.pool_size,
                "idle": len(self._idle),
                "created": self._created,
                "reconnects": self._reconnects,
            }


class Store:
    """
    Transactional relational store.

    `connection()` gives an autocommit connection for single statements,
    `transaction()` wraps a block in BEGIN IMMEDIATE ... COMMIT.
    """

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    @contextmanager
    def connection(self):
        """Context manager for a pooled connection"""
        try:
            conn = self.pool.acquire()
        except sqlite3.Error as e:
            logger.error(f"Database connect error: {e}")
            raise to_store_error(e) from e

        try:
            yield conn
        except sqlite3.Error as e:
            logger.warning(f"Database error: {e.__class__.__name__}: {e}")
            raise to_store_error(e) from e
        except (OverflowError, ValueError) as e:
            # parameters sqlite cannot bind, or rows the schemas reject
            logger.warning(f"Database error: {e.__class__.__name__}: {e}")
            raise StoreError(str(e), kind=ErrorKind.FATAL) from e
        finally:
            self.pool.release(conn)

    @contextmanager
    def transaction(self):
        """
        Run a block inside one transaction.

        BEGIN IMMEDIATE takes the database write lock up front and holds it
        until commit, so rows read inside the block cannot change underneath.
        Any exception rolls the whole block back.
        """
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    try:
                        conn.execute("ROLLBACK")
                    except sqlite3.Error as rollback_err:
                        logger.debug(f"Could not rollback: {rollback_err}")
                raise
            conn.execute("COMMIT")

    def fetch_one(self, query: str, params: tuple = ()) -> Optional[Dict[str, Any]]:
        with self.connection() as conn:
            row = conn.execute(query, params).fetchone()
            return dict(row) if row else None

    def fetch_all(self, query: str, params: tuple = ()) -> List[Dict[str, Any]]:
        with self.connection() as conn:
            return [dict(row) for row in conn.execute(query, params).fetchall()]

    def execute(self, query: str, params: tuple = ()) -> int:
        """Execute a single write statement, return affected rows"""
        with self.connection() as conn:
            return conn.execute(query, params).rowcount

    def init_schema(self) -> None:
        """Create tables, the RentalDetails view and reference statuses"""
        with self.connection() as conn:
            conn.executescript(SCHEMA_SQL)
            conn.executemany(
                "INSERT OR IGNORE INTO CarStatus (id, status_name) VALUES (?, ?)",
                DEFAULT_CAR_STATUSES,
            )
        logger.info("✅ Database schema ready")

    def close(self) -> None:
        self.pool.close_all()


DEFAULT_CAR_STATUSES = [
    (STATUS_AVAILABLE, "available"),
    (STATUS_BOOKED, "booked"),
    (3, "maintenance"),
    (STATUS_FORCED_UNAVAILABLE, "unavailable"),
]

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS Users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    login TEXT NOT NULL UNIQUE,
    password TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    phone_number TEXT NOT NULL UNIQUE,
    license_id TEXT NOT NULL UNIQUE,
    isAdmin INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS Branch (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    city TEXT NOT NULL,
    street TEXT NOT NULL,
    building_number INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS CarType (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type_name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS CarStatus (
    id INTEGER PRIMARY KEY,
    status_name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS Cars (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    release_year INTEGER,
    type_id INTEGER NOT NULL REFERENCES CarType(id),
    branch_id INTEGER NOT NULL REFERENCES Branch(id),
    status_id INTEGER NOT NULL DEFAULT 1 REFERENCES CarStatus(id)
);

CREATE TABLE IF NOT EXISTS Rentals (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    car_id INTEGER NOT NULL REFERENCES Cars(id),
    user_id INTEGER NOT NULL REFERENCES Users(id),
    start_branch_id INTEGER NOT NULL REFERENCES Branch(id),
    end_branch_id INTEGER NOT NULL REFERENCES Branch(id),
    start_date DATE NOT NULL,
    end_date DATE NOT NULL
);

CREATE VIEW IF NOT EXISTS RentalDetails AS
SELECT
    r.id AS RentalID,
    u.login AS Login,
    c.name AS "Car Name",
    r.start_date AS "Start Date",
    r.end_date AS "End Date",
    b1.city || ', ' || b1.street || ', ' || b1.building_number AS "Start Branch",
    b2.city || ', ' || b2.street || ', ' || b2.building_number AS "End Branch"
FROM Rentals r
INNER JOIN Users u ON u.id = r.user_id
INNER JOIN Cars c ON c.id = r.car_id
INNER JOIN Branch b1 ON b1.id = r.start_branch_id
INNER JOIN Branch b2 ON b2.id = r.end_branch_id;
"""


def create_store(db_path: str, pool_size: int = 5, timeout: float = 10.0) -> Store:
    """Build a store over a fresh connection pool"""
    pool = ConnectionPool(db_path, pool_size=pool_size, timeout=timeout)
    logger.info(f"Database pool initialized: {pool.get_stats()}")
    return Store(pool)
