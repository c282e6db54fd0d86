"""DuckDB session management and table initialization."""

from __future__ import annotations

import threading

import duckdb

from constraint_desk.config import settings
from constraint_desk.utils.logger import logger

_connection: duckdb.DuckDBPyConnection | None = None
_connect_lock = threading.Lock()


def get_db() -> duckdb.DuckDBPyConnection:
    """Return the singleton DuckDB connection, creating tables on first call.

    Safe to call from worker threads: only one of them opens the file.
    """
    global _connection  # noqa: PLW0603
    if _connection is not None:
        return _connection
    with _connect_lock:
        if _connection is None:
            db_path = str(settings.DB_PATH)
            logger.info("Opening DuckDB at %s", db_path)
            conn = duckdb.connect(db_path)
            _init_tables(conn)
            _connection = conn
    return _connection


def close_db() -> None:
    """Close the singleton connection (next get_db() reopens it)."""
    global _connection  # noqa: PLW0603
    with _connect_lock:
        if _connection is not None:
            _connection.close()
            _connection = None


def query_dicts(sql: str, params: list | None = None) -> list[dict]:
    """Run a read query on its own cursor and return rows as dicts.

    A cursor per call lets worker threads read concurrently off the
    shared connection.
    """
    cur = get_db().cursor()
    try:
        rows = cur.execute(sql, params or []).fetchall()
        cols = [desc[0] for desc in cur.description]
        return [dict(zip(cols, row)) for row in rows]
    finally:
        cur.close()


def _init_tables(conn: duckdb.DuckDBPyConnection) -> None:
    """Create tables if they don't exist."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS constraints (
            id                      VARCHAR PRIMARY KEY,
            user_id                 VARCHAR NOT NULL,
            stock_symbol            VARCHAR NOT NULL,
            buy_trigger_percent     DOUBLE NOT NULL,
            sell_trigger_percent    DOUBLE NOT NULL,
            profit_trigger_percent  DOUBLE,
            buy_amount              DOUBLE NOT NULL,
            sell_amount             DOUBLE NOT NULL,
            is_active               BOOLEAN DEFAULT TRUE,
            created_at              TIMESTAMP,
            updated_at              TIMESTAMP,
            UNIQUE (user_id, stock_symbol)
        );
    """)

    # stocks / stock_groups / stock_overrides are JSON text
    conn.execute("""
        CREATE TABLE IF NOT EXISTS constraint_groups (
            id                      VARCHAR PRIMARY KEY,
            user_id                 VARCHAR NOT NULL,
            name                    VARCHAR NOT NULL,
            description             VARCHAR,
            buy_trigger_percent     DOUBLE NOT NULL,
            sell_trigger_percent    DOUBLE NOT NULL,
            profit_trigger_percent  DOUBLE,
            buy_amount              DOUBLE NOT NULL,
            sell_amount             DOUBLE NOT NULL,
            is_active               BOOLEAN DEFAULT TRUE,
            stocks                  VARCHAR DEFAULT '[]',
            stock_groups            VARCHAR DEFAULT '[]',
            stock_overrides         VARCHAR DEFAULT '{}',
            created_at              TIMESTAMP,
            updated_at              TIMESTAMP
        );
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS stock_groups (
            id           VARCHAR PRIMARY KEY,
            user_id      VARCHAR NOT NULL,
            name         VARCHAR NOT NULL,
            description  VARCHAR,
            color        VARCHAR,
            stocks       VARCHAR DEFAULT '[]',
            created_at   TIMESTAMP,
            updated_at   TIMESTAMP
        );
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS positions (
            user_id        VARCHAR NOT NULL,
            stock_symbol   VARCHAR NOT NULL,
            quantity       DOUBLE NOT NULL,
            average_cost   DOUBLE NOT NULL,
            current_price  DOUBLE,
            last_updated   TIMESTAMP,
            PRIMARY KEY (user_id, stock_symbol)
        );
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS trade_history (
            id             VARCHAR PRIMARY KEY,
            user_id        VARCHAR NOT NULL,
            constraint_id  VARCHAR,
            stock_symbol   VARCHAR NOT NULL,
            trade_type     VARCHAR NOT NULL,
            trigger_type   VARCHAR NOT NULL,
            quantity       DOUBLE NOT NULL,
            price          DOUBLE NOT NULL,
            trigger_price  DOUBLE,
            executed_at    TIMESTAMP NOT NULL
        );
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS scheduler_runs (
            id            VARCHAR PRIMARY KEY,
            job_name      VARCHAR NOT NULL,
            started_at    TIMESTAMP NOT NULL,
            completed_at  TIMESTAMP,
            status        VARCHAR DEFAULT 'running',
            summary       VARCHAR,
            error         VARCHAR
        );
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS portfolio_history (
            id                       VARCHAR PRIMARY KEY,
            user_id                  VARCHAR NOT NULL,
            total_value              DOUBLE NOT NULL,
            total_gain_loss          DOUBLE NOT NULL,
            total_gain_loss_percent  DOUBLE NOT NULL,
            position_count           INTEGER NOT NULL,
            timestamp                TIMESTAMP NOT NULL
        );
    """)
