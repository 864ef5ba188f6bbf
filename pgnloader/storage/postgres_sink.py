"""PostgreSQL sink: one table per dataset, deduplicated on external_id."""
import threading
from contextlib import contextmanager
from typing import Callable, Iterator

import psycopg2
from psycopg2 import sql
from psycopg2.extensions import connection as PgConnection  # noqa: N812
from psycopg2.extras import Json
from psycopg2.pool import ThreadedConnectionPool

from pgnloader.ingestion.game_record import GameRecord
from pgnloader.ingestion.pgn_parser import normalize_moves
from pgnloader.logging_utils import get_logger
from pgnloader.storage.base import (
    FatalStorageError,
    GameSink,
    PersistenceError,
    ProvisioningError,
)

logger = get_logger(__name__)

CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS {table} (
        id SERIAL PRIMARY KEY,
        external_id TEXT UNIQUE,
        event TEXT,
        site TEXT,
        opening TEXT,
        eco TEXT,
        result TEXT,
        white TEXT,
        black TEXT,
        white_elo INTEGER,
        black_elo INTEGER,
        time_control TEXT,
        termination TEXT,
        date DATE,
        time TIME,
        moves TEXT,
        moves_count INTEGER,
        positions JSONB,
        created_at TIMESTAMPTZ DEFAULT now(),
        updated_at TIMESTAMPTZ DEFAULT now()
    )
"""

INSERT_SQL = """
    INSERT INTO {table} (
        external_id, event, site, opening, eco, result, white, black,
        white_elo, black_elo, time_control, termination, date, time,
        moves, moves_count, positions
    )
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT (external_id) DO NOTHING
"""

_DISCONNECT_ERRORS = (psycopg2.OperationalError, psycopg2.InterfaceError)


def _insert_params(record: GameRecord) -> tuple:
    return (
        record.external_id or None,  # NULLs never collide on the unique index
        record.event,
        record.site,
        record.opening,
        record.eco,
        record.result,
        record.white,
        record.black,
        record.white_elo,
        record.black_elo,
        record.time_control,
        record.termination,
        record.date,
        record.time,
        record.moves,
        record.move_count,
        Json(list(record.positions)),
    )


class PostgresSink(GameSink):
    name = 'postgres'

    def __init__(
        self,
        connection_uri: str,
        schema: str = 'public',
        max_connections: int = 24,
        pool_factory: Callable = ThreadedConnectionPool,
    ):
        self.schema = schema
        self._schema_lock = threading.Lock()
        self._schema_ready = False
        try:
            self._pool = pool_factory(1, max(max_connections, 1), dsn=connection_uri)
        except psycopg2.Error as exc:
            raise FatalStorageError(f"Failed to connect to PostgreSQL: {exc}") from exc

    @contextmanager
    def _connection(self) -> Iterator[PgConnection]:
        try:
            conn = self._pool.getconn()
        except psycopg2.Error as exc:
            raise FatalStorageError(f"No PostgreSQL connection available: {exc}") from exc
        broken = False
        try:
            conn.autocommit = True
            yield conn
        except _DISCONNECT_ERRORS:
            broken = True
            raise
        finally:
            self._pool.putconn(conn, close=broken)

    def _table(self, table: str) -> sql.Identifier:
        return sql.Identifier(self.schema, table)

    def _ensure_schema(self, cur) -> None:
        # Concurrent CREATE SCHEMA IF NOT EXISTS can still collide in Postgres
        with self._schema_lock:
            if self._schema_ready:
                return
            cur.execute(sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(self.schema)))
            self._schema_ready = True

    def ensure_table(self, table: str) -> None:
        try:
            with self._connection() as conn, conn.cursor() as cur:
                self._ensure_schema(cur)
                cur.execute(sql.SQL(CREATE_TABLE_SQL).format(table=self._table(table)))
        except psycopg2.Error as exc:
            raise ProvisioningError(f"Failed to create table {self.schema}.{table}: {exc}") from exc

    def save(self, record: GameRecord, table: str) -> bool:
        try:
            with self._connection() as conn, conn.cursor() as cur:
                cur.execute(sql.SQL(INSERT_SQL).format(table=self._table(table)), _insert_params(record))
                return cur.rowcount == 1
        except _DISCONNECT_ERRORS as exc:
            raise FatalStorageError(f"Lost PostgreSQL connection: {exc}") from exc
        except (psycopg2.Error, ValueError) as exc:
            raise PersistenceError(f"Failed to insert game into {table}: {exc}") from exc

    def reclean_moves(self, table: str, batch_size: int = 1000) -> int:
        """
        Re-apply move normalization to every stored row of ``table``.

        Returns the number of rows whose moves column changed.
        """
        select = sql.SQL("SELECT id, moves FROM {} WHERE id > %s ORDER BY id LIMIT %s").format(self._table(table))
        update = sql.SQL("UPDATE {} SET moves = %s, updated_at = now() WHERE id = %s").format(self._table(table))
        updated = 0
        last_id = 0
        try:
            with self._connection() as conn, conn.cursor() as cur:
                while True:
                    cur.execute(select, (last_id, batch_size))
                    rows = cur.fetchall()
                    if not rows:
                        break
                    for row_id, moves in rows:
                        cleaned = normalize_moves(moves or '')
                        if cleaned != moves:
                            cur.execute(update, (cleaned, row_id))
                            updated += 1
                    last_id = rows[-1][0]
                    logger.info("[%s] Re-cleaned moves up to id %s (%s updated)", table, last_id, updated)
        except psycopg2.Error as exc:
            raise PersistenceError(f"Failed to re-clean moves in {table}: {exc}") from exc
        return updated

    def close(self) -> None:
        self._pool.closeall()
