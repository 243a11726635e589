"""
Recording-run audit model.

Every ``record`` run leaves one ``run_metadata`` row. The row carries the full
config as ``config_snapshot`` so a stored score can be traced back to the
lookback, momentum weight and z cap that produced it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from fx_favorability.utils.time_utils import utcnow

RunStage = Literal["record"]
RunStatus = Literal["started", "success", "failed"]


class RunMetadata(BaseModel):
    """One pipeline run, updated in place as the stage progresses.

    Attributes:
        run_id: Row id; ``None`` until first persisted.
        run_slug: UUID4 string; unique per run.
        pipeline_stage: Stage that produced the run.
        status: ``started`` → ``success`` | ``failed``.
        config_snapshot: ``AppConfig.model_dump(mode="json")`` at start.
        rows_processed: Pairs recorded.
        error_message: ``str(exc)`` of the failure, if any.
        started_at: UTC start time.
        finished_at: UTC end time; ``None`` while running.
    """

    model_config = ConfigDict(frozen=False)

    run_id: Optional[int] = None
    run_slug: str = Field(default_factory=lambda: str(uuid4()))
    pipeline_stage: RunStage
    status: RunStatus = "started"
    config_snapshot: dict[str, Any] = Field(default_factory=dict)
    rows_processed: int = 0
    error_message: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    def mark_success(self, rows: int) -> None:
        self.status = "success"
        self.rows_processed = rows
        self.finished_at = utcnow()

    def mark_failed(self, exc: BaseException) -> None:
        self.status = "failed"
        self.error_message = str(exc)
        self.finished_at = utcnow()

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()
