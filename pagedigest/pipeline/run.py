"""
Run state for pipeline executions.

A Run is the append-only record of one execution: the initial input, each
stage's output in the order it completed, the status, and the failure (if
any). Only the orchestrator mutates a Run, and only while it is running;
once settled the Run is frozen and serves as an audit record.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError

from .context import MissingStageOutput, RunContext
from .errors import CancellationError, MappingError, StageError

if TYPE_CHECKING:
    from .pipeline import Pipeline


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class RawInput(BaseModel):
    """Initial input kept verbatim when it does not fit the first stage."""

    model_config = ConfigDict(extra="allow")


class RunStatus(str, Enum):
    """Run lifecycle status."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"

    def is_terminal(self) -> bool:
        """Check if the run is finished for good."""
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELLED)

    def is_settled(self) -> bool:
        """Check if the orchestrator is done with the run (terminal or parked)."""
        return self.is_terminal() or self is RunStatus.SUSPENDED

    def is_resumable(self) -> bool:
        return self in (RunStatus.FAILED, RunStatus.CANCELLED, RunStatus.SUSPENDED)


class FailureKind(str, Enum):
    STAGE = "stage"
    MAPPING = "mapping"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StageRecord:
    """One entry in a run's output log."""

    stage_name: str
    output: BaseModel
    completed_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage_name": self.stage_name,
            "output": self.output.model_dump(mode="json"),
            "completed_at": self.completed_at.isoformat(),
        }


@dataclass(frozen=True)
class RunFailure:
    """Where and why a run stopped.

    ``name`` is the stage name for stage failures and cancellations, and
    ``"<from>-><to>"`` for mapping failures.
    """

    name: str
    kind: FailureKind
    message: str
    cause_type: Optional[str] = None
    cause: Optional[BaseException] = field(default=None, compare=False, repr=False)

    @classmethod
    def from_error(cls, error: StageError | MappingError | CancellationError) -> "RunFailure":
        if isinstance(error, StageError):
            kind = FailureKind.STAGE
            message = str(error.cause)
            cause_type = type(error.cause).__name__
        elif isinstance(error, MappingError):
            kind = FailureKind.MAPPING
            message = str(error.cause)
            cause_type = type(error.cause).__name__
        else:
            kind = FailureKind.CANCELLED
            message = str(error)
            cause_type = type(error).__name__
        return cls(
            name=error.name,
            kind=kind,
            message=message,
            cause_type=cause_type,
            cause=error,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "message": self.message,
            "cause_type": self.cause_type,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RunFailure":
        return cls(
            name=data["name"],
            kind=FailureKind(data["kind"]),
            message=data.get("message", ""),
            cause_type=data.get("cause_type"),
        )


class Run:
    """One execution instance of a Pipeline."""

    def __init__(
        self,
        pipeline_id: str,
        initial_input: BaseModel,
        *,
        run_id: Optional[str] = None,
    ) -> None:
        self._run_id = run_id or uuid.uuid4().hex
        self._pipeline_id = pipeline_id
        self._initial_input = initial_input
        self._records: list[StageRecord] = []
        self._index: Dict[str, StageRecord] = {}
        self._status = RunStatus.PENDING
        self._failure: Optional[RunFailure] = None
        self._suspended_reason: Optional[str] = None
        self._created_at = _utcnow()
        self._started_at: Optional[datetime] = None
        self._finished_at: Optional[datetime] = None
        self._frozen = False

    def __repr__(self) -> str:
        return (
            f"Run(run_id={self._run_id!r}, pipeline_id={self._pipeline_id!r}, "
            f"status={self._status.value!r}, stages={len(self._records)})"
        )

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------
    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def pipeline_id(self) -> str:
        return self._pipeline_id

    @property
    def initial_input(self) -> BaseModel:
        return self._initial_input

    @property
    def status(self) -> RunStatus:
        return self._status

    @property
    def failure(self) -> Optional[RunFailure]:
        return self._failure

    @property
    def suspended_reason(self) -> Optional[str]:
        return self._suspended_reason

    @property
    def records(self) -> Tuple[StageRecord, ...]:
        return tuple(self._records)

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def started_at(self) -> Optional[datetime]:
        return self._started_at

    @property
    def finished_at(self) -> Optional[datetime]:
        return self._finished_at

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    @property
    def last_output(self) -> Optional[BaseModel]:
        return self._records[-1].output if self._records else None

    def output_of(self, stage_name: str) -> BaseModel:
        try:
            return self._index[stage_name].output
        except KeyError:
            raise MissingStageOutput(stage_name) from None

    def outputs(self) -> Dict[str, BaseModel]:
        """Recorded outputs keyed by stage name, in completion order."""
        return {record.stage_name: record.output for record in self._records}

    def context_for(
        self,
        stage_name: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        resume_payload: Optional[Any] = None,
    ) -> RunContext:
        return RunContext(
            run_id=self._run_id,
            pipeline_id=self._pipeline_id,
            initial_input=self._initial_input,
            records=tuple(self._records),
            stage_name=stage_name,
            timeout=timeout,
            resume_payload=resume_payload,
        )

    # ------------------------------------------------------------------
    # Orchestrator-only transitions
    # ------------------------------------------------------------------
    def _ensure_mutable(self) -> None:
        if self._frozen:
            raise RuntimeError(f"Run {self._run_id} is {self._status.value} and frozen")

    def _start(self) -> None:
        self._ensure_mutable()
        self._status = RunStatus.RUNNING
        if self._started_at is None:
            self._started_at = _utcnow()

    def _record(self, stage_name: str, output: BaseModel) -> StageRecord:
        self._ensure_mutable()
        if self._status is not RunStatus.RUNNING:
            raise RuntimeError(f"Run {self._run_id} is not running")
        if stage_name in self._index:
            raise RuntimeError(f"Stage '{stage_name}' already recorded for run {self._run_id}")
        record = StageRecord(stage_name=stage_name, output=output)
        self._records.append(record)
        self._index[stage_name] = record
        return record

    def _settle(self, status: RunStatus) -> None:
        self._ensure_mutable()
        self._status = status
        self._finished_at = _utcnow()
        self._frozen = True

    def _succeed(self) -> None:
        self._settle(RunStatus.SUCCEEDED)

    def _fail(self, failure: RunFailure) -> None:
        self._failure = failure
        self._settle(RunStatus.FAILED)

    def _cancel(self, failure: RunFailure) -> None:
        self._failure = failure
        self._settle(RunStatus.CANCELLED)

    def _suspend(self, reason: str) -> None:
        self._suspended_reason = reason
        self._settle(RunStatus.SUSPENDED)

    def reopen(self) -> "Run":
        """Return a running copy of a settled run, keeping its output log.

        The settled run itself stays frozen.
        """
        if not self._status.is_resumable():
            raise ValueError(f"Run {self._run_id} is {self._status.value}; cannot resume")
        clone = Run(self._pipeline_id, self._initial_input, run_id=self._run_id)
        clone._records = list(self._records)
        clone._index = dict(self._index)
        clone._created_at = self._created_at
        clone._started_at = self._started_at
        return clone

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------
    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "run_id": self._run_id,
            "pipeline_id": self._pipeline_id,
            "status": self._status.value,
            "initial_input": self._initial_input.model_dump(mode="json"),
            "records": [record.to_dict() for record in self._records],
            "failure": self._failure.to_dict() if self._failure else None,
            "suspended_reason": self._suspended_reason,
            "created_at": self._created_at.isoformat(),
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "finished_at": self._finished_at.isoformat() if self._finished_at else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], pipeline: "Pipeline") -> "Run":
        """Rebuild a run from ``to_dict`` output.

        The pipeline supplies the models used to re-validate the stored
        input and outputs.
        """
        if data["pipeline_id"] != pipeline.pipeline_id:
            raise ValueError(
                f"Run {data['run_id']} belongs to pipeline {data['pipeline_id']!r}, "
                f"not {pipeline.pipeline_id!r}"
            )
        try:
            initial = pipeline.input_model.model_validate(data["initial_input"])
        except ValidationError:
            initial = RawInput.model_validate(data["initial_input"])
        run = cls(pipeline.pipeline_id, initial, run_id=data["run_id"])
        for raw in data.get("records", []):
            name = raw["stage_name"]
            output = pipeline.stage(name).output_model.model_validate(raw["output"])
            record = StageRecord(
                stage_name=name,
                output=output,
                completed_at=_parse_ts(raw.get("completed_at")) or _utcnow(),
            )
            run._records.append(record)
            run._index[name] = record

        run._status = RunStatus(data["status"])
        run._failure = RunFailure.from_dict(data["failure"]) if data.get("failure") else None
        run._suspended_reason = data.get("suspended_reason")
        run._created_at = _parse_ts(data.get("created_at")) or run._created_at
        run._started_at = _parse_ts(data.get("started_at"))
        run._finished_at = _parse_ts(data.get("finished_at"))
        run._frozen = run._status.is_settled()
        return run


@dataclass(frozen=True)
class RunResult:
    """What a caller gets back from a run."""

    run_id: str
    pipeline_id: str
    status: RunStatus
    terminal_output: Optional[BaseModel] = None
    failure: Optional[RunFailure] = None
    outputs: Mapping[str, BaseModel] = field(default_factory=dict)

    @classmethod
    def from_run(cls, run: Run) -> "RunResult":
        terminal = run.last_output if run.status is RunStatus.SUCCEEDED else None
        return cls(
            run_id=run.run_id,
            pipeline_id=run.pipeline_id,
            status=run.status,
            terminal_output=terminal,
            failure=run.failure,
            outputs=run.outputs(),
        )

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "run_id": self.run_id,
            "pipeline_id": self.pipeline_id,
            "status": self.status.value,
            "terminal_output": (
                self.terminal_output.model_dump(mode="json")
                if self.terminal_output is not None
                else None
            ),
            "failure": self.failure.to_dict() if self.failure else None,
            "outputs": {
                name: output.model_dump(mode="json") for name, output in self.outputs.items()
            },
        }
