"""Events emitted by PipelineOrchestrator.stream()."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Optional, Union

from pydantic import BaseModel

from .run import RunFailure, RunResult


@dataclass(frozen=True)
class StageCompleted:
    type: ClassVar[str] = "stage_completed"

    run_id: str
    name: str
    output: BaseModel

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "run_id": self.run_id,
            "name": self.name,
            "output": self.output.model_dump(mode="json"),
        }


@dataclass(frozen=True)
class RunCompleted:
    type: ClassVar[str] = "run_completed"

    result: RunResult

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "result": self.result.to_dict()}


@dataclass(frozen=True)
class RunFailed:
    type: ClassVar[str] = "run_failed"

    failure: RunFailure
    result: RunResult

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "failure": self.failure.to_dict(),
            "result": self.result.to_dict(),
        }


@dataclass(frozen=True)
class RunCancelled:
    type: ClassVar[str] = "run_cancelled"

    failure: RunFailure
    result: RunResult

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "failure": self.failure.to_dict(),
            "result": self.result.to_dict(),
        }


@dataclass(frozen=True)
class RunSuspended:
    type: ClassVar[str] = "run_suspended"

    result: RunResult
    reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "reason": self.reason, "result": self.result.to_dict()}


TerminalEvent = Union[RunCompleted, RunFailed, RunCancelled, RunSuspended]
RunEvent = Union[StageCompleted, TerminalEvent]
TERMINAL_EVENTS = (RunCompleted, RunFailed, RunCancelled, RunSuspended)
