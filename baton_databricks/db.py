"""Database helpers: connection pool, upsert batches, run tracking and synced-object storage."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Any, Generator, Optional, Sequence

import psycopg2
import psycopg2.extras
import psycopg2.pool

from baton_databricks.config import DatabaseConfig

logger = logging.getLogger("baton_databricks.db")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS ingestion_runs (
    id               UUID PRIMARY KEY,
    tenant_id        TEXT NOT NULL,
    provider         TEXT NOT NULL,
    entity_type      TEXT,
    status           TEXT NOT NULL,
    run_metadata     JSONB NOT NULL DEFAULT '{}'::jsonb,
    started_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    finished_at      TIMESTAMPTZ,
    records_upserted INTEGER NOT NULL DEFAULT 0,
    records_deleted  INTEGER NOT NULL DEFAULT 0,
    error_message    TEXT,
    error_detail     JSONB
);

CREATE TABLE IF NOT EXISTS connector_resources (
    tenant_id      TEXT NOT NULL,
    resource_type  TEXT NOT NULL,
    resource_id    TEXT NOT NULL,
    display_name   TEXT NOT NULL,
    parent_type    TEXT,
    parent_id      TEXT,
    payload        JSONB NOT NULL,
    created_at     TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at     TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    last_synced_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (tenant_id, resource_type, resource_id)
);

CREATE TABLE IF NOT EXISTS connector_entitlements (
    tenant_id      TEXT NOT NULL,
    entitlement_id TEXT NOT NULL,
    resource_type  TEXT NOT NULL,
    resource_id    TEXT NOT NULL,
    slug           TEXT NOT NULL,
    purpose        TEXT NOT NULL,
    payload        JSONB NOT NULL,
    created_at     TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at     TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    last_synced_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (tenant_id, entitlement_id)
);

CREATE TABLE IF NOT EXISTS connector_grants (
    tenant_id      TEXT NOT NULL,
    grant_id       TEXT NOT NULL,
    entitlement_id TEXT NOT NULL,
    principal_type TEXT NOT NULL,
    principal_id   TEXT NOT NULL,
    payload        JSONB NOT NULL,
    created_at     TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at     TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    last_synced_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (tenant_id, grant_id)
);
"""


class Database:
    """Thin wrapper around a ThreadedConnectionPool with upsert helpers."""

    def __init__(self, config: DatabaseConfig) -> None:
        self._pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=config.min_connections,
            maxconn=config.max_connections,
            dsn=config.url,
        )

    def close(self) -> None:
        self._pool.closeall()

    @contextmanager
    def connection(self) -> Generator:
        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Generator:
        """Yield a cursor inside an auto-commit/rollback transaction."""
        with self.connection() as conn:
            try:
                with conn.cursor() as cur:
                    yield cur
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def init_schema(self) -> None:
        with self.transaction() as cur:
            cur.execute(SCHEMA_SQL)
        logger.info("Schema ready")

    def upsert_batch(
        self,
        cur,
        table: str,
        columns: list[str],
        rows: Sequence[tuple],
        conflict_columns: list[str],
        update_columns: list[str],
    ) -> int:
        """Bulk upsert using execute_values with ON CONFLICT DO UPDATE.

        Returns the number of rows affected.
        """
        if not rows:
            return 0

        set_clauses = ", ".join(f"{c} = EXCLUDED.{c}" for c in update_columns)
        # Timestamps always move on update.
        set_clauses += ", updated_at = NOW(), last_synced_at = NOW()"

        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES %s "
            f"ON CONFLICT ({', '.join(conflict_columns)}) DO UPDATE SET {set_clauses}"
        )
        psycopg2.extras.execute_values(cur, sql, rows, page_size=500)
        return cur.rowcount

    # ------------------------------------------------------------------
    # Synced connector objects
    # ------------------------------------------------------------------

    def _load_payload(self, sql: str, params: tuple) -> Optional[dict[str, Any]]:
        with self.transaction() as cur:
            cur.execute(sql, params)
            row = cur.fetchone()
        return row[0] if row else None

    def load_resource(self, tenant_id: str, resource_type: str, resource_id: str) -> Optional[dict[str, Any]]:
        return self._load_payload(
            """SELECT payload FROM connector_resources
               WHERE tenant_id = %s AND resource_type = %s AND resource_id = %s""",
            (tenant_id, resource_type, resource_id),
        )

    def load_entitlement(self, tenant_id: str, entitlement_id: str) -> Optional[dict[str, Any]]:
        return self._load_payload(
            """SELECT payload FROM connector_entitlements
               WHERE tenant_id = %s AND entitlement_id = %s""",
            (tenant_id, entitlement_id),
        )

    def load_grant(self, tenant_id: str, grant_id: str) -> Optional[dict[str, Any]]:
        return self._load_payload(
            """SELECT payload FROM connector_grants
               WHERE tenant_id = %s AND grant_id = %s""",
            (tenant_id, grant_id),
        )

    def delete_grant(self, tenant_id: str, grant_id: str) -> int:
        with self.transaction() as cur:
            cur.execute(
                "DELETE FROM connector_grants WHERE tenant_id = %s AND grant_id = %s",
                (tenant_id, grant_id),
            )
            return cur.rowcount

    def delete_principal(self, tenant_id: str, resource_type: str, resource_id: str) -> None:
        """Drop a principal resource and every grant it holds."""
        with self.transaction() as cur:
            cur.execute(
                "DELETE FROM connector_grants"
                " WHERE tenant_id = %s AND principal_type = %s AND principal_id = %s",
                (tenant_id, resource_type, resource_id),
            )
            cur.execute(
                "DELETE FROM connector_resources"
                " WHERE tenant_id = %s AND resource_type = %s AND resource_id = %s",
                (tenant_id, resource_type, resource_id),
            )

    # ------------------------------------------------------------------
    # Ingestion run tracking
    # ------------------------------------------------------------------

    def record_run_start(
        self,
        tenant_id: str,
        provider: str,
        entity_type: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> str:
        """Insert a RUNNING ingestion_runs row and return its id."""
        run_id = str(uuid.uuid4())
        with self.transaction() as cur:
            cur.execute(
                """INSERT INTO ingestion_runs
                   (id, tenant_id, provider, entity_type, status, run_metadata)
                   VALUES (%s, %s, %s, %s, 'RUNNING', %s)""",
                (run_id, tenant_id, provider, entity_type, psycopg2.extras.Json(metadata or {})),
            )
        return run_id

    def record_run_end(
        self,
        run_id: str,
        tenant_id: str,
        status: str,
        records_upserted: int = 0,
        records_deleted: int = 0,
        error_message: Optional[str] = None,
        error_detail: Optional[dict] = None,
    ) -> None:
        with self.transaction() as cur:
            cur.execute(
                """UPDATE ingestion_runs
                   SET status = %s,
                       finished_at = NOW(),
                       records_upserted = %s,
                       records_deleted = %s,
                       error_message = %s,
                       error_detail = %s
                   WHERE id = %s AND tenant_id = %s""",
                (
                    status,
                    records_upserted,
                    records_deleted,
                    error_message,
                    psycopg2.extras.Json(error_detail) if error_detail else None,
                    run_id,
                    tenant_id,
                ),
            )

    def get_recent_runs(
        self,
        tenant_id: str,
        provider: Optional[str] = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        where = "tenant_id = %s"
        params: list[Any] = [tenant_id]
        if provider:
            where += " AND provider = %s"
            params.append(provider)
        params.append(limit)

        with self.transaction() as cur:
            cur.execute(
                f"""SELECT id, provider, entity_type, status, started_at,
                           finished_at, records_upserted, records_deleted,
                           error_message
                    FROM ingestion_runs
                    WHERE {where}
                    ORDER BY started_at DESC LIMIT %s""",
                tuple(params),
            )
            cols = [d[0] for d in cur.description]
            return [dict(zip(cols, row)) for row in cur.fetchall()]
