"""
Pipeline orchestrator.

Drives one Run through a committed Pipeline: builds each stage's input
(initial input, mapping result or pass-through), awaits the stage, validates
and records its output, and stops at the first failure. Every run ends in
exactly one terminal event.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, AsyncIterator, Iterable, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ValidationError

from .context import RunContext
from .errors import CancellationError, MappingError, StageError, SuspendRun
from .events import (
    RunCancelled,
    RunCompleted,
    RunEvent,
    RunFailed,
    RunSuspended,
    StageCompleted,
    TERMINAL_EVENTS,
)
from .pipeline import Pipeline
from .run import RawInput, Run, RunFailure, RunResult, RunStatus, StageRecord
from .stage import Stage

logger = logging.getLogger(__name__)

# Name used for the source side of the initial-input "mapping" in failure records
INPUT = "input"

InitialInput = Union[BaseModel, Mapping[str, Any]]


class RunObserver:
    """Hooks called as a run progresses. Override what you need.

    Observer failures are logged and never change the run's outcome.
    """

    async def on_run_started(self, run: Run, pipeline: Pipeline) -> None:
        pass

    async def on_stage_started(self, run: Run, stage_name: str) -> None:
        pass

    async def on_stage_completed(self, run: Run, record: StageRecord) -> None:
        pass

    async def on_run_finished(self, run: Run, result: RunResult) -> None:
        pass


class LoggingObserver(RunObserver):
    async def on_run_started(self, run: Run, pipeline: Pipeline) -> None:
        logger.info(
            f"Run {run.run_id} started ({pipeline.pipeline_id})",
            extra={"run_id": run.run_id, "pipeline_id": pipeline.pipeline_id},
        )

    async def on_stage_started(self, run: Run, stage_name: str) -> None:
        logger.debug(
            f"Run {run.run_id}: starting stage {stage_name}",
            extra={"run_id": run.run_id, "stage": stage_name},
        )

    async def on_stage_completed(self, run: Run, record: StageRecord) -> None:
        logger.info(
            f"Run {run.run_id}: stage {record.stage_name} completed",
            extra={"run_id": run.run_id, "stage": record.stage_name},
        )

    async def on_run_finished(self, run: Run, result: RunResult) -> None:
        extra = {"run_id": run.run_id, "status": result.status.value}
        if result.status is RunStatus.SUCCEEDED:
            logger.info(f"Run {run.run_id} succeeded", extra=extra)
        elif result.status is RunStatus.SUSPENDED:
            logger.info(f"Run {run.run_id} suspended: {run.suspended_reason}", extra=extra)
        else:
            failure = result.failure
            extra["failed_at"] = failure.name if failure else None
            logger.warning(
                f"Run {run.run_id} {result.status.value} at "
                f"{failure.name if failure else '?'}: {failure.message if failure else ''}",
                extra=extra,
            )


def _coerce(value: Any, model: type[BaseModel]) -> BaseModel:
    """Validate ``value`` into ``model``; always returns a fresh instance."""
    if isinstance(value, model):
        return value.model_copy(deep=True)
    if isinstance(value, BaseModel):
        return model.model_validate(value.model_dump())
    if isinstance(value, Mapping):
        return model.model_validate(dict(value))
    raise TypeError(
        f"expected {model.__name__} or a mapping, got {type(value).__name__}"
    )


class PipelineOrchestrator:
    """Runs committed pipelines.

    Holds no per-run state, so one orchestrator can drive any number of
    concurrent runs of the same (immutable) pipeline.

    Usage:
        orchestrator = PipelineOrchestrator()
        result = await orchestrator.run(pipeline, {"url": "https://example.com"})
    """

    def __init__(
        self,
        observers: Optional[Sequence[RunObserver]] = None,
        *,
        stage_timeouts: Optional[Mapping[str, float]] = None,
    ) -> None:
        self._observers: tuple[RunObserver, ...] = (
            tuple(observers) if observers is not None else (LoggingObserver(),)
        )
        self._stage_timeouts = dict(stage_timeouts or {})

    @property
    def observers(self) -> tuple[RunObserver, ...]:
        return self._observers

    def with_observers(self, *observers: RunObserver) -> "PipelineOrchestrator":
        """Copy of this orchestrator with extra observers appended."""
        return PipelineOrchestrator(
            self._observers + tuple(observers), stage_timeouts=self._stage_timeouts
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def new_run(
        self,
        pipeline: Pipeline,
        initial_input: InitialInput,
        *,
        run_id: Optional[str] = None,
    ) -> Run:
        """Create a pending Run for ``pipeline``.

        Input that does not fit the first stage is kept as-is; the run then
        fails at its first step with a MappingError instead of raising here.
        """
        if isinstance(initial_input, BaseModel):
            stored: BaseModel = initial_input.model_copy(deep=True)
        elif isinstance(initial_input, Mapping):
            try:
                stored = pipeline.input_model.model_validate(dict(initial_input))
            except ValidationError:
                stored = RawInput.model_validate(dict(initial_input))
        else:
            raise TypeError(
                f"initial_input must be a pydantic model or a mapping, "
                f"got {type(initial_input).__name__}"
            )
        return Run(pipeline.pipeline_id, stored, run_id=run_id)

    async def run(
        self,
        pipeline: Pipeline,
        initial_input: InitialInput,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        run_id: Optional[str] = None,
    ) -> RunResult:
        run = self.new_run(pipeline, initial_input, run_id=run_id)
        return await self.execute(pipeline, run, cancel_event=cancel_event)

    async def execute(
        self,
        pipeline: Pipeline,
        run: Run,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunResult:
        """Drive a pending Run to a settled state and return its result."""
        return await self._last_result(self.stream_run(pipeline, run, cancel_event=cancel_event))

    def stream(
        self,
        pipeline: Pipeline,
        initial_input: InitialInput,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        run_id: Optional[str] = None,
    ) -> AsyncIterator[RunEvent]:
        """Yield one StageCompleted per stage, then exactly one terminal event."""
        run = self.new_run(pipeline, initial_input, run_id=run_id)
        return self.stream_run(pipeline, run, cancel_event=cancel_event)

    def stream_run(
        self,
        pipeline: Pipeline,
        run: Run,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[RunEvent]:
        if run.pipeline_id != pipeline.pipeline_id:
            raise ValueError(
                f"Run {run.run_id} belongs to pipeline {run.pipeline_id!r}, "
                f"not {pipeline.pipeline_id!r}"
            )
        if run.status is not RunStatus.PENDING:
            raise ValueError(f"Run {run.run_id} is {run.status.value}; expected pending")
        return self._drive(pipeline, run, start=0, cancel_event=cancel_event, resume_payload=None)

    async def resume(
        self,
        pipeline: Pipeline,
        run: Run,
        *,
        resume_payload: Optional[Any] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunResult:
        """Continue a suspended, failed or cancelled run.

        Execution restarts at the first stage without a recorded output. The
        settled ``run`` is left untouched; a reopened copy with the same run
        id carries the continuation.
        """
        return await self._last_result(
            self.stream_resume(
                pipeline, run, resume_payload=resume_payload, cancel_event=cancel_event
            )
        )

    def stream_resume(
        self,
        pipeline: Pipeline,
        run: Run,
        *,
        resume_payload: Optional[Any] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[RunEvent]:
        if run.pipeline_id != pipeline.pipeline_id:
            raise ValueError(
                f"Run {run.run_id} belongs to pipeline {run.pipeline_id!r}, "
                f"not {pipeline.pipeline_id!r}"
            )
        recorded = [record.stage_name for record in run.records]
        if tuple(recorded) != pipeline.stage_names[: len(recorded)]:
            raise ValueError(
                f"Run {run.run_id} log {recorded} does not match pipeline stages "
                f"{list(pipeline.stage_names)}"
            )
        reopened = run.reopen()
        return self._drive(
            pipeline,
            reopened,
            start=len(recorded),
            cancel_event=cancel_event,
            resume_payload=resume_payload,
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    async def _last_result(self, events: AsyncIterator[RunEvent]) -> RunResult:
        result: Optional[RunResult] = None
        async for event in events:
            if isinstance(event, TERMINAL_EVENTS):
                result = event.result
        if result is None:
            raise RuntimeError("run ended without a terminal event")
        return result

    async def _drive(
        self,
        pipeline: Pipeline,
        run: Run,
        *,
        start: int,
        cancel_event: Optional[asyncio.Event],
        resume_payload: Optional[Any],
    ) -> AsyncIterator[RunEvent]:
        run._start()
        pending = start
        try:
            await self._notify("on_run_started", run, pipeline)

            for index in range(start, len(pipeline)):
                step = pipeline.steps[index]
                pending = index

                if cancel_event is not None and cancel_event.is_set():
                    failure = RunFailure.from_error(CancellationError(step.name))
                    run._cancel(failure)
                    result = await self._finish(run)
                    yield RunCancelled(failure=failure, result=result)
                    return

                context = run.context_for(
                    step.name,
                    timeout=step.timeout or self._stage_timeouts.get(step.name),
                    resume_payload=resume_payload if index == start else None,
                )

                try:
                    stage_input = self._prepare_input(pipeline, run, index, context)
                except MappingError as exc:
                    failure = RunFailure.from_error(exc)
                    run._fail(failure)
                    result = await self._finish(run)
                    yield RunFailed(failure=failure, result=result)
                    return

                await self._notify("on_stage_started", run, step.name)
                try:
                    output = await step.stage.execute(stage_input, context)
                    output = self._check_output(step.stage, output)
                except SuspendRun as signal:
                    run._suspend(signal.reason)
                    result = await self._finish(run)
                    yield RunSuspended(result=result, reason=signal.reason)
                    return
                except Exception as exc:
                    failure = RunFailure.from_error(StageError(step.name, exc))
                    run._fail(failure)
                    result = await self._finish(run)
                    yield RunFailed(failure=failure, result=result)
                    return

                record = run._record(step.name, output)
                pending = index + 1
                await self._notify("on_stage_completed", run, record)
                yield StageCompleted(
                    run_id=run.run_id, name=step.name, output=output.model_copy(deep=True)
                )

            run._succeed()
            result = await self._finish(run)
            yield RunCompleted(result=result)
        except (GeneratorExit, asyncio.CancelledError):
            # The consumer closed the stream or the task was cancelled mid-run
            if not run.status.is_settled():
                await self._abandon(pipeline, run, pending)
            raise

    async def _abandon(self, pipeline: Pipeline, run: Run, pending: int) -> None:
        """Settle a run whose event stream was dropped before its terminal event."""
        if pending >= len(pipeline):
            run._succeed()
        else:
            run._cancel(RunFailure.from_error(CancellationError(pipeline.steps[pending].name)))
        logger.warning(
            f"Run {run.run_id} abandoned by its consumer; settled as {run.status.value}",
            extra={"run_id": run.run_id, "status": run.status.value},
        )
        await self._finish(run)

    def _prepare_input(
        self, pipeline: Pipeline, run: Run, index: int, context: RunContext
    ) -> BaseModel:
        step = pipeline.steps[index]
        target = step.stage.input_model

        if index == 0:
            try:
                return _coerce(run.initial_input, target)
            except (ValidationError, TypeError, ValueError) as exc:
                raise MappingError(INPUT, step.name, exc) from exc

        previous = pipeline.steps[index - 1]
        try:
            value: Any = run.output_of(previous.name).model_copy(deep=True)
            if step.mapping is not None:
                value = step.mapping.apply(value, context)
                if inspect.isawaitable(value):
                    if inspect.iscoroutine(value):
                        value.close()
                    raise TypeError("mapping functions must be synchronous")
                if step.mapping.output_model is not None:
                    value = _coerce(value, step.mapping.output_model)
            return _coerce(value, target)
        except Exception as exc:
            raise MappingError(previous.name, step.name, exc) from exc

    def _check_output(self, stage: Stage, output: Any) -> BaseModel:
        if output is None:
            raise TypeError(f"stage returned None, expected {stage.output_model.__name__}")
        return _coerce(output, stage.output_model)

    async def _finish(self, run: Run) -> RunResult:
        result = RunResult.from_run(run)
        await self._notify("on_run_finished", run, result)
        return result

    async def _notify(self, hook: str, *args: Any) -> None:
        for observer in self._observers:
            try:
                await getattr(observer, hook)(*args)
            except Exception:
                logger.error(
                    f"Observer {type(observer).__name__}.{hook} failed",
                    exc_info=True,
                    extra={"hook": hook},
                )


async def run_all(
    orchestrator: PipelineOrchestrator,
    pipeline: Pipeline,
    inputs: Iterable[InitialInput],
) -> list[RunResult]:
    """Run independent inputs through the same pipeline concurrently."""
    return list(await asyncio.gather(*(orchestrator.run(pipeline, item) for item in inputs)))
