"""Error taxonomy for pipeline definition and execution."""

from __future__ import annotations

from typing import Any, Optional


class PipelineError(Exception):
    """Base class for orchestrator errors."""


class PipelineDefinitionError(PipelineError):
    """Raised at commit time when stages or shapes do not line up."""


class StageError(PipelineError):
    """A named stage failed while executing.

    Wraps whatever the stage (or the collaborator it called) raised so the
    caller can tell which stage broke and why.
    """

    def __init__(self, stage_name: str, cause: BaseException):
        super().__init__(f"Stage '{stage_name}' failed: {cause}")
        self.stage_name = stage_name
        self.cause = cause

    @property
    def name(self) -> str:
        return self.stage_name


class MappingError(PipelineError):
    """The data handed between two adjacent stages violated a shape contract."""

    def __init__(self, from_stage: str, to_stage: str, cause: BaseException):
        super().__init__(f"Mapping '{from_stage}' -> '{to_stage}' failed: {cause}")
        self.from_stage = from_stage
        self.to_stage = to_stage
        self.cause = cause

    @property
    def name(self) -> str:
        return f"{self.from_stage}->{self.to_stage}"


class CancellationError(PipelineError):
    """The caller asked the run to stop before the named stage started."""

    def __init__(self, stage_name: str):
        super().__init__(f"Run cancelled before stage '{stage_name}'")
        self.stage_name = stage_name

    @property
    def name(self) -> str:
        return self.stage_name


class SuspendRun(Exception):
    """Raised by a stage to park the run until someone resumes it.

    Not a failure: the run ends up ``suspended`` with every output recorded so
    far, and the suspending stage runs again on resume.
    """

    def __init__(self, reason: str = "", payload: Optional[Any] = None):
        super().__init__(reason or "run suspended")
        self.reason = reason
        self.payload = payload
