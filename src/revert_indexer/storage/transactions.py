"""
Postgres access for the ``transactions`` table.

Only two statements are issued:

- select a bounded batch of hashes still waiting for classification
  (``status = 0 AND error IS NULL``, optionally inside a block range)
- update ``error`` / ``revert_reason`` of a single row by hash

Hashes are read as the server renders them (``hash::varchar``) and handed
back verbatim as the update key, so the same code works whether the column is
``bytea`` or text.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, List, Mapping

import psycopg2
from psycopg2.pool import ThreadedConnectionPool

from revert_indexer.variables import BATCH_SIZE, BLOCK_COLUMN, STATUS_PENDING, TRANSACTIONS_TABLE

logger = logging.getLogger(__name__)

SELECT_PENDING = f"SELECT hash::varchar FROM {TRANSACTIONS_TABLE} WHERE status = %s AND error IS NULL"
BLOCK_RANGE = f" AND {BLOCK_COLUMN} BETWEEN %s AND %s"
UPDATABLE_COLUMNS = ("error", "revert_reason")


class StorageError(RuntimeError):
    """Raised when the database cannot serve a read or a write."""


def sanitize_text(text: str) -> str:
    """Drop every non-printable character; error text comes from untrusted contract code."""
    return "".join(ch for ch in text if ch.isprintable())


def connect_pool(database_url: str, max_connections: int) -> ThreadedConnectionPool:
    try:
        return ThreadedConnectionPool(1, max_connections, dsn=database_url)
    except psycopg2.Error as e:
        raise StorageError(f"Unable to connect to database: {e}") from e


class TransactionStore:
    """Work source and classification writer over one connection pool."""

    def __init__(self, pool):
        self.pool = pool

    @contextmanager
    def _connection(self) -> Iterator["psycopg2.extensions.connection"]:
        conn = self.pool.getconn()
        broken = False
        try:
            # commits on success, rolls back on error
            with conn:
                yield conn
        except (psycopg2.OperationalError, psycopg2.InterfaceError):
            broken = True
            raise
        finally:
            self.pool.putconn(conn, close=broken)

    def select_batch(self, limit: int = BATCH_SIZE, from_block: int = 0, to_block: int = 0) -> List[str]:
        """Hashes of rows still waiting for classification; empty when there is no work."""
        query = SELECT_PENDING
        params: list = [STATUS_PENDING]
        if from_block and to_block:
            query += BLOCK_RANGE
            params += [from_block, to_block]
        query += " LIMIT %s"
        params.append(limit)

        try:
            with self._connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    rows = cur.fetchall()
        except psycopg2.Error as e:
            raise StorageError(f"Unable to select pending transactions: {e}") from e
        return [row[0] for row in rows]

    def apply(self, tx_hash: str, record: Mapping[str, str]) -> None:
        """Write a classification record to the row identified by ``tx_hash``.

        Safe to repeat: the same record always produces the same row state.
        """
        columns = [c for c in UPDATABLE_COLUMNS if c in record]
        unexpected = set(record) - set(UPDATABLE_COLUMNS)
        if not columns or unexpected:
            raise ValueError(f"invalid classification record: {dict(record)!r}")

        assignments = ", ".join(f"{c} = %s" for c in columns)
        query = f"UPDATE {TRANSACTIONS_TABLE} SET {assignments} WHERE hash = %s"
        params = [sanitize_text(record[c]) for c in columns] + [tx_hash]

        try:
            with self._connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    if cur.rowcount == 0:
                        logger.debug("No row updated for %s", tx_hash)
        except psycopg2.Error as e:
            raise StorageError(f"Unable to update {tx_hash}: {e}") from e

    def close(self) -> None:
        self.pool.closeall()
