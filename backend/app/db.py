from contextlib import contextmanager
from typing import Optional

from psycopg.rows import dict_row

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool

from .config import Settings


class Database:
    """
    Explicit persistence handle.

    Built once by the application factory and handed to request handlers via
    `request.app.state.db` (see `deps.get_db`); nothing in the app reaches for a
    process-wide pool.
    """

    def __init__(self, settings: Settings, pool: Optional[ConnectionPool] = None) -> None:
        self.settings = settings
        # Keep row_factory=dict_row: every query site reads rows by column name.
        self._pool = pool or ConnectionPool(
            conninfo=settings.db_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            kwargs={"row_factory": dict_row},
            open=False,
        )

    def open(self) -> None:
        self._pool.open()

    def close(self) -> None:
        self._pool.close()

    @contextmanager
    def connection(self):
        # Semantics of `with db.connection() as conn:`
        # - commit on success
        # - rollback on exception
        # - return connection to pool (the pool does all three)
        with self._pool.connection() as conn:
            yield conn

    def ping(self) -> None:
        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()
