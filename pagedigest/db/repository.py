from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import desc, select

from pagedigest.pipeline import Pipeline, Run

from .models import Base, WorkflowRun, WorkflowStepOutput
from .session import get_engine, get_session

logger = logging.getLogger(__name__)


def _ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _naive_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; runs created in-process are aware
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class RunConflictError(ValueError):
    """A different run is already stored under this run id."""

    def __init__(self, run_id: str):
        super().__init__(f"Run id {run_id!r} is already used by another run")
        self.run_id = run_id


class RunRepository:
    """Durable run records.

    Stores ``Run.to_dict()`` across two tables and rebuilds Run objects for
    the pipelines it knows about, so settled runs can be inspected and
    suspended ones resumed after a restart.
    """

    def __init__(self, database_url: str, *, pipelines: Iterable[Pipeline] = ()):
        self.database_url = database_url
        self._pipelines: Dict[str, Pipeline] = {p.pipeline_id: p for p in pipelines}

    def register(self, pipeline: Pipeline) -> None:
        self._pipelines[pipeline.pipeline_id] = pipeline

    def init_schema(self) -> None:
        Base.metadata.create_all(get_engine(self.database_url))

    def save(self, run: Run) -> None:
        """Insert or update the stored run.

        An existing row is only updated by the same run (or a resumed copy
        of it, which keeps ``created_at``).

        Raises:
            RunConflictError: another run already owns ``run.run_id``
        """
        data = run.to_dict()
        with get_session(self.database_url) as session:
            row = (
                session.execute(select(WorkflowRun).where(WorkflowRun.run_id == run.run_id))
                .scalars()
                .first()
            )
            if row is None:
                row = WorkflowRun(
                    run_id=run.run_id,
                    pipeline_id=run.pipeline_id,
                    initial_input=data["initial_input"],
                    created_at=run.created_at,
                )
                session.add(row)
            elif _naive_utc(row.created_at) != _naive_utc(run.created_at):
                raise RunConflictError(run.run_id)

            row.status = data["status"]
            row.failure = data["failure"]
            row.suspended_reason = data["suspended_reason"]
            row.started_at = run.started_at
            row.finished_at = run.finished_at
            last = run.last_output
            row.terminal_output = (
                last.model_dump(mode="json") if last is not None and data["status"] == "succeeded" else None
            )

            # The run log is append-only: only add records not stored yet
            stored = {step.stage_name for step in row.steps}
            for position, record in enumerate(data["records"]):
                if record["stage_name"] in stored:
                    continue
                row.steps.append(
                    WorkflowStepOutput(
                        position=position,
                        stage_name=record["stage_name"],
                        output=record["output"],
                        completed_at=_ts(record["completed_at"]),
                    )
                )
        logger.debug(
            f"Saved run {run.run_id} ({data['status']})",
            extra={"run_id": run.run_id, "status": data["status"]},
        )

    def _row_to_dict(self, row: WorkflowRun) -> Dict[str, Any]:
        return {
            "run_id": row.run_id,
            "pipeline_id": row.pipeline_id,
            "status": row.status,
            "initial_input": row.initial_input,
            "records": [
                {
                    "stage_name": step.stage_name,
                    "output": step.output,
                    "completed_at": _iso(step.completed_at),
                }
                for step in row.steps
            ],
            "failure": row.failure,
            "terminal_output": row.terminal_output,
            "suspended_reason": row.suspended_reason,
            "created_at": _iso(row.created_at),
            "started_at": _iso(row.started_at),
            "finished_at": _iso(row.finished_at),
        }

    def exists(self, run_id: str) -> bool:
        with get_session(self.database_url) as session:
            found = session.execute(
                select(WorkflowRun.id).where(WorkflowRun.run_id == run_id)
            ).first()
            return found is not None

    def get_record(self, run_id: str) -> Optional[Dict[str, Any]]:
        """Stored run as a plain dict (``Run.to_dict`` shape plus terminal output)."""
        with get_session(self.database_url) as session:
            row = (
                session.execute(select(WorkflowRun).where(WorkflowRun.run_id == run_id))
                .scalars()
                .first()
            )
            if row is None:
                return None
            return self._row_to_dict(row)

    def get(self, run_id: str, pipeline: Optional[Pipeline] = None) -> Optional[Run]:
        """Rebuild a Run.

        Raises:
            LookupError: the run's pipeline is neither given nor registered
        """
        data = self.get_record(run_id)
        if data is None:
            return None
        target = pipeline or self._pipelines.get(data["pipeline_id"])
        if target is None:
            raise LookupError(f"No pipeline registered for id {data['pipeline_id']!r}")
        return Run.from_dict(data, target)

    def list_recent(self, limit: int = 20, *, status: Optional[str] = None) -> List[Dict[str, Any]]:
        with get_session(self.database_url) as session:
            stmt = select(WorkflowRun).order_by(desc(WorkflowRun.created_at), desc(WorkflowRun.id))
            if status:
                stmt = stmt.where(WorkflowRun.status == status)
            rows = session.execute(stmt.limit(limit)).scalars().all()
            return [
                {
                    "run_id": row.run_id,
                    "pipeline_id": row.pipeline_id,
                    "status": row.status,
                    "created_at": _iso(row.created_at),
                    "finished_at": _iso(row.finished_at),
                }
                for row in rows
            ]
