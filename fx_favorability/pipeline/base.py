"""
Pipeline stage contract.

A stage is built from ``AppConfig`` and driven through ``run(**kwargs)``,
which wraps the stage-specific ``_execute()`` in a ``RunMetadata`` audit
record:

    started ──_execute() ok──▶ success (rows_processed = return value)
            └─_execute() raises─▶ failed (error_message; exception re-raised)

The finished record is written to ``run_metadata`` unless the stage was
built with ``persist_runs=False`` (dry runs, tests).

Usage::

    class EchoStage(PipelineStage):
        stage_name = "record"

        def _execute(self, run: RunMetadata, **kwargs) -> int:
            return 0

    run = EchoStage(config).run()
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod

from fx_favorability.config import AppConfig
from fx_favorability.models.meta import RunMetadata

logger = logging.getLogger(__name__)


class PipelineStage(ABC):
    """Base class for audited pipeline stages.

    Attributes:
        stage_name: ``RunMetadata.pipeline_stage`` value for this stage.
        config: Application config; snapshotted into every run record.
        db_path: SQLite path for run records (and stage data, if any).
        persist_runs: Write run records to ``run_metadata``.
    """

    stage_name: str

    def __init__(
        self,
        config: AppConfig,
        db_path: str | None = None,
        persist_runs: bool = True,
    ) -> None:
        self.config = config
        self.db_path = db_path or config.database.db_path
        self.persist_runs = persist_runs

    def run(self, **kwargs) -> RunMetadata:
        """Run the stage and return its finished ``RunMetadata``.

        Raises:
            Exception: Whatever ``_execute()`` raised, after the failed run
                has been recorded.
        """
        run = RunMetadata(
            pipeline_stage=self.stage_name,
            config_snapshot=self.config.model_dump(mode="json"),
        )
        extra = {"run_slug": run.run_slug, "stage": self.stage_name}
        logger.info("Stage [%s] starting | run_slug=%s", self.stage_name, run.run_slug, extra=extra)

        try:
            rows = self._execute(run=run, **kwargs)
        except Exception as exc:
            run.mark_failed(exc)
            logger.error(
                "Stage [%s] failed after %.2fs: %s",
                self.stage_name, run.duration_seconds, exc, extra=extra,
            )
            self._persist_run(run)
            raise

        run.mark_success(rows)
        logger.info(
            "Stage [%s] done: %d row(s) in %.2fs",
            self.stage_name, rows, run.duration_seconds, extra=extra,
        )
        self._persist_run(run)
        return run

    @abstractmethod
    def _execute(self, run: RunMetadata, **kwargs) -> int:
        """Do the stage's work; return the number of rows processed."""

    def _persist_run(self, run: RunMetadata) -> None:
        """Save ``run``; storage errors are logged so the stage outcome stands."""
        if not self.persist_runs:
            logger.debug("Run %s kept in memory only", run.run_slug)
            return

        from fx_favorability.db.connection import get_connection
        from fx_favorability.db.repositories.run_repo import RunMetadataRepository

        try:
            with get_connection(
                self.db_path,
                wal_mode=self.config.database.wal_mode,
                busy_timeout_ms=self.config.database.busy_timeout_ms,
            ) as conn:
                RunMetadataRepository(conn).save(run)
        except (sqlite3.Error, OSError) as exc:
            logger.error("Could not save run %s: %s", run.run_slug, exc)
