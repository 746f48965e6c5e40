"""Connection pool for the DuckDB backing store.

Provides thread-safe connection pooling so concurrent store calls do not
serialize on a single DuckDB connection.

Design:
- One root connection owns the database (file or ':memory:')
- Pooled connections are cursors of the root, so they share one database
- Semaphore-based acquisition with timeout
- Context manager for guaranteed connection release

Usage:
    pool = DuckDBConnectionPool(database="facts.duckdb", pool_size=5)

    with pool.acquire(timeout=30) as conn:
        rows = conn.execute("SELECT count(*) FROM facts").fetchall()

    pool.close_all()
"""

import threading
import time
from contextlib import contextmanager
from typing import Any

import duckdb

from notably.common.logging import get_logger
from notably.common.metrics import create_component_metrics

logger = get_logger(__name__, component="storage")
metrics = create_component_metrics("connection_pool")


class DuckDBConnectionPool:
    """Thread-safe pool of DuckDB cursors over one database.

    Pool Management:
    - Cursors are created lazily on first acquisition
    - Semaphore bounds concurrent access
    - Stats track utilization and wait times
    """

    def __init__(
        self,
        database: str = ":memory:",
        pool_size: int = 5,
        memory_limit: str | None = None,
    ):
        """Initialize connection pool.

        Args:
            database: DuckDB database path (':memory:' for in-process)
            pool_size: Number of cursors in pool (default: 5)
            memory_limit: Optional DuckDB memory limit (e.g., "1GB")
        """
        self.database = database
        self.pool_size = pool_size
        self.memory_limit = memory_limit

        self._root = duckdb.connect(database)
        if memory_limit:
            self._root.execute(f"SET memory_limit = '{memory_limit}'")

        self._connections: list[Any] = []
        self._all_connections: list[Any] = []

        self._semaphore = threading.Semaphore(pool_size)
        self._lock = threading.Lock()
        self._active_connections: set[int] = set()
        self._closed = False

        self._total_acquisitions = 0
        self._total_wait_time = 0.0
        self._peak_utilization = 0

        logger.info("Connection pool initialized", database=database, pool_size=pool_size)
        metrics.gauge("connection_pool_size", pool_size)

    def _create_connection(self) -> Any:
        """Create a new cursor sharing the root database."""
        try:
            conn = self._root.cursor()
            logger.debug("Created new connection in pool", connection_id=id(conn))
            return conn
        except Exception as e:
            logger.error("Failed to create connection", error=str(e))
            raise

    @contextmanager
    def acquire(self, timeout: float = 30.0):
        """Acquire a connection from the pool.

        Releases the connection when the context exits, even on exceptions.

        Args:
            timeout: Maximum seconds to wait for a connection (default: 30s)

        Yields:
            DuckDB connection from pool

        Raises:
            TimeoutError: If no connection available within timeout
            RuntimeError: If the pool has been closed
        """
        if self._closed:
            raise RuntimeError("Connection pool is closed")

        start_time = time.time()
        acquired = self._semaphore.acquire(timeout=timeout)

        if not acquired:
            wait_time = time.time() - start_time
            logger.error(
                "Connection acquisition timeout",
                timeout_seconds=timeout,
                wait_time_seconds=wait_time,
                pool_size=self.pool_size,
                active_count=len(self._active_connections),
            )
            metrics.increment("connection_pool_acquisition_timeouts_total")
            raise TimeoutError(
                f"Could not acquire connection within {timeout}s. "
                f"Pool size: {self.pool_size}, active: {len(self._active_connections)}"
            )

        wait_time = time.time() - start_time
        metrics.histogram("connection_pool_wait_time_seconds", wait_time)

        try:
            with self._lock:
                self._total_acquisitions += 1
                self._total_wait_time += wait_time

                if self._connections:
                    conn = self._connections.pop()
                else:
                    conn = self._create_connection()
                    self._all_connections.append(conn)

                conn_id = id(conn)
                self._active_connections.add(conn_id)

                active_count = len(self._active_connections)
                if active_count > self._peak_utilization:
                    self._peak_utilization = active_count

                metrics.gauge("connection_pool_active_connections", active_count)
        except Exception:
            self._semaphore.release()
            raise

        try:
            yield conn

        finally:
            with self._lock:
                self._active_connections.discard(conn_id)
                self._connections.append(conn)
                metrics.gauge("connection_pool_active_connections", len(self._active_connections))

            self._semaphore.release()

    def get_stats(self) -> dict[str, Any]:
        """Get connection pool statistics.

        Returns:
            Dictionary with pool_size, active_connections, available_connections,
            total_connections, total_acquisitions, average_wait_time_seconds
            and peak_utilization
        """
        with self._lock:
            active = len(self._active_connections)
            available = len(self._connections)
            total = len(self._all_connections)
            acquisitions = self._total_acquisitions
            avg_wait = self._total_wait_time / max(acquisitions, 1)

        return {
            "pool_size": self.pool_size,
            "active_connections": active,
            "available_connections": available,
            "total_connections": total,
            "total_acquisitions": acquisitions,
            "average_wait_time_seconds": avg_wait,
            "peak_utilization": self._peak_utilization,
        }

    def close_all(self) -> None:
        """Close every pooled cursor and the root connection."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

            for conn in self._all_connections:
                try:
                    conn.close()
                except Exception as e:
                    logger.error("Error closing connection", error=str(e), connection_id=id(conn))

            self._connections.clear()
            self._all_connections.clear()
            self._active_connections.clear()
            self._root.close()

        logger.info(
            "Connection pool closed",
            total_acquisitions=self._total_acquisitions,
            peak_utilization=self._peak_utilization,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close_all()
        return False
