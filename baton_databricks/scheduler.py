"""APScheduler-based interval scheduling for the Databricks sync."""

from __future__ import annotations

import logging
import time

from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.blocking import BlockingScheduler

from baton_databricks.config import ConnectorConfig
from baton_databricks.db import Database

logger = logging.getLogger("baton_databricks.scheduler")

BACKOFF_BASE_SECONDS = 30


def _sync_provider(provider_name: str, config: ConnectorConfig, db: Database) -> None:
    """One scheduled sync, retried with exponential backoff."""
    from baton_databricks.cli import _get_provider

    max_retries = config.scheduler.max_retries
    for attempt in range(max_retries + 1):
        provider = _get_provider(provider_name, config, db)
        try:
            provider.sync_with_tracking()
            return
        except Exception as exc:
            if attempt >= max_retries:
                logger.error(
                    "Sync %s failed after %d retries: %s",
                    provider_name, max_retries, exc,
                    extra={"provider": provider_name},
                )
                return
            delay = BACKOFF_BASE_SECONDS * (2 ** attempt)
            logger.warning(
                "Sync %s failed (attempt %d/%d), retrying in %ds: %s",
                provider_name, attempt + 1, max_retries, delay, exc,
                extra={"provider": provider_name},
            )
            time.sleep(delay)
        finally:
            provider.connector.close()


def _on_job_error(event) -> None:
    logger.error("Job %s raised an exception: %s", event.job_id, event.exception)


def build_scheduler(config: ConnectorConfig, db: Database) -> BlockingScheduler:
    scheduler = BlockingScheduler()
    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    scheduler.add_job(
        _sync_provider,
        "interval",
        minutes=config.scheduler.databricks_interval_min,
        args=["databricks", config, db],
        id="databricks",
        max_instances=1,
        misfire_grace_time=config.scheduler.misfire_grace_time,
    )
    return scheduler


def start_scheduler(config: ConnectorConfig, db: Database) -> None:
    scheduler = build_scheduler(config, db)
    logger.info("Starting scheduler with jobs: %s", [j.id for j in scheduler.get_jobs()])
    scheduler.start()
