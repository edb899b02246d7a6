from __future__ import annotations

from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional, Sequence, TYPE_CHECKING

from pydantic import BaseModel

if TYPE_CHECKING:
    from .run import StageRecord


class MissingStageOutput(KeyError):
    """Lookup of a stage that has not recorded an output in this run."""

    def __init__(self, stage_name: str):
        super().__init__(stage_name)
        self.stage_name = stage_name

    def __str__(self) -> str:
        return f"no recorded output for stage '{self.stage_name}'"


class RunContext:
    """Read-only snapshot of a run, handed to stages and mappings.

    Outputs are addressed by stage name. Every lookup returns a deep copy, so
    nothing a stage or mapping does to the value can leak back into the run's
    log.
    """

    def __init__(
        self,
        *,
        run_id: str,
        pipeline_id: str,
        initial_input: BaseModel,
        records: Sequence["StageRecord"],
        stage_name: Optional[str] = None,
        timeout: Optional[float] = None,
        resume_payload: Optional[Any] = None,
    ) -> None:
        self._run_id = run_id
        self._pipeline_id = pipeline_id
        self._initial_input = initial_input
        self._outputs: Mapping[str, BaseModel] = MappingProxyType(
            {record.stage_name: record.output for record in records}
        )
        self._stage_name = stage_name
        self._timeout = timeout
        self._resume_payload = resume_payload

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def pipeline_id(self) -> str:
        return self._pipeline_id

    @property
    def stage_name(self) -> Optional[str]:
        """Name of the stage this context was built for."""
        return self._stage_name

    @property
    def timeout(self) -> Optional[float]:
        """Configured timeout (seconds) for the current stage, if any."""
        return self._timeout

    @property
    def resume_payload(self) -> Optional[Any]:
        """Data supplied by whoever resumed a suspended run."""
        return self._resume_payload

    @property
    def initial_input(self) -> BaseModel:
        return self._initial_input.model_copy(deep=True)

    @property
    def stage_names(self) -> tuple[str, ...]:
        return tuple(self._outputs)

    def has_output(self, stage_name: str) -> bool:
        return stage_name in self._outputs

    def get_output(self, stage_name: str) -> BaseModel:
        try:
            output = self._outputs[stage_name]
        except KeyError:
            raise MissingStageOutput(stage_name) from None
        return output.model_copy(deep=True)

    def __contains__(self, stage_name: object) -> bool:
        return stage_name in self._outputs

    def __iter__(self) -> Iterator[str]:
        return iter(self._outputs)

    def __len__(self) -> int:
        return len(self._outputs)
