"""Base class for sync providers: run tracking, batching and backoff."""

from __future__ import annotations

import logging
import time
import traceback
from abc import ABC, abstractmethod
from typing import Any

from baton_databricks.config import ConnectorConfig
from baton_databricks.db import Database

logger = logging.getLogger("baton_databricks.provider")


class BaseProvider(ABC):
    """Subclasses implement sync() and set PROVIDER_NAME."""

    PROVIDER_NAME: str = ""

    def __init__(self, config: ConnectorConfig, db: Database) -> None:
        self.config = config
        self.db = db
        self.tenant_id = config.tenant_id
        self.batch_size = config.batch_size

    @abstractmethod
    def sync(self) -> dict[str, int]:
        """Run one full sync. Returns {entity_type: records_upserted}."""

    def sync_with_tracking(self) -> dict[str, int]:
        """Run sync() inside an ingestion_runs row."""
        run_id = self.db.record_run_start(tenant_id=self.tenant_id, provider=self.PROVIDER_NAME)
        started = time.monotonic()
        try:
            results = self.sync()
        except Exception as exc:
            self.db.record_run_end(
                run_id=run_id,
                tenant_id=self.tenant_id,
                status="FAILED",
                error_message=str(exc)[:1000],
                error_detail={"traceback": traceback.format_exc()},
            )
            logger.error(
                "Sync failed: %s",
                exc,
                extra={"provider": self.PROVIDER_NAME, "run_id": run_id},
            )
            raise

        total = sum(results.values())
        self.db.record_run_end(
            run_id=run_id,
            tenant_id=self.tenant_id,
            status="SUCCESS",
            records_upserted=total,
        )
        logger.info(
            "Sync complete",
            extra={
                "provider": self.PROVIDER_NAME,
                "records": total,
                "run_id": run_id,
                "duration_s": round(time.monotonic() - started, 3),
            },
        )
        return results

    @staticmethod
    def _rate_limit_sleep(attempt: int, base_seconds: float = 1.0, retry_after: float | None = None) -> None:
        """Sleep for ``retry_after`` when the platform gave one, else exponential backoff."""
        delay = retry_after if retry_after is not None else base_seconds * (2 ** attempt)
        delay = min(delay, 60.0)
        logger.warning("Rate limited, sleeping %.1fs (attempt %d)", delay, attempt)
        time.sleep(delay)

    def _batch_rows(self, rows: list[Any], size: int | None = None) -> list[list[Any]]:
        size = size or self.batch_size
        return [rows[i : i + size] for i in range(0, len(rows), size)]
