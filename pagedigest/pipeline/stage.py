"""
Stage contract plus the reusable stage shapes.

``Stage`` is what every pipeline step implements. ``FunctionStage`` adapts a
plain callable, ``ModelGradedStage`` parses free-form model text with a
fallback, and ``RetryStage`` re-runs another stage a bounded number of times.
"""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Generic, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel

from .context import RunContext
from .errors import SuspendRun

logger = logging.getLogger(__name__)

InputT = TypeVar("InputT", bound=BaseModel)
OutputT = TypeVar("OutputT", bound=BaseModel)


class Stage(ABC, Generic[InputT, OutputT]):
    """A named, typed unit of pipeline work.

    Subclasses declare ``name``, ``input_model`` and ``output_model`` and
    implement ``execute``. Stages hold no per-run state: everything they
    need arrives as the input or through the run context.

    Must:
    - raise on failure (the orchestrator wraps it in a StageError)
    - NEVER call other stages of the same pipeline
    """

    name: str
    input_model: Type[BaseModel]
    output_model: Type[BaseModel]

    @abstractmethod
    async def execute(self, input: InputT, context: RunContext) -> OutputT:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={getattr(self, 'name', None)!r})"


StageFn = Callable[[Any, RunContext], Union[Any, Awaitable[Any]]]


class FunctionStage(Stage[BaseModel, BaseModel]):
    """Stage built from a plain (sync or async) callable."""

    def __init__(
        self,
        name: str,
        fn: StageFn,
        *,
        input_model: Type[BaseModel],
        output_model: Type[BaseModel],
    ) -> None:
        self.name = name
        self.input_model = input_model
        self.output_model = output_model
        self._fn = fn

    async def execute(self, input: BaseModel, context: RunContext) -> BaseModel:
        result = self._fn(input, context)
        if inspect.isawaitable(result):
            result = await result
        return result


class ModelGradedStage(Stage[InputT, OutputT]):
    """Stage whose output is parsed from free-form model text.

    Generation errors propagate and fail the stage. Parse errors do not:
    they route to ``fallback``, which every subclass has to supply, so the
    degraded path is an explicit, testable branch.
    """

    @abstractmethod
    async def generate(self, input: InputT, context: RunContext) -> str:
        """Ask the model and return its raw text."""

    @abstractmethod
    def parse(self, raw: str) -> OutputT:
        """Turn raw model text into the output model; raise ValueError if it can't."""

    @abstractmethod
    def fallback(self, raw: str, error: Exception) -> OutputT:
        """Output to record when ``parse`` rejects the model text."""

    async def execute(self, input: InputT, context: RunContext) -> OutputT:
        raw = await self.generate(input, context)
        try:
            return self.parse(raw)
        except ValueError as exc:
            logger.warning(
                "Model output could not be parsed; using fallback",
                extra={"stage": self.name, "run_id": context.run_id, "error": str(exc)},
            )
            return self.fallback(raw, exc)


class RetryExhaustedError(RuntimeError):
    def __init__(self, stage_name: str, attempts: int, last_error: Optional[BaseException] = None):
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(f"Stage '{stage_name}' gave up after {attempts} attempts{detail}")
        self.attempts = attempts
        self.last_error = last_error


class RetryStage(Stage[BaseModel, BaseModel]):
    """Bounded loop around another stage.

    Re-runs ``inner`` until it succeeds (and, when ``until`` is given, until
    the predicate accepts its output), at most ``max_attempts`` times. Only
    exceptions listed in ``retry_on`` are retried.
    """

    def __init__(
        self,
        inner: Stage,
        *,
        max_attempts: int = 3,
        until: Optional[Callable[[BaseModel], bool]] = None,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        name: Optional[str] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.inner = inner
        self.name = name or inner.name
        self.input_model = inner.input_model
        self.output_model = inner.output_model
        self.max_attempts = max_attempts
        self._until = until
        self._retry_on = retry_on

    async def execute(self, input: BaseModel, context: RunContext) -> BaseModel:
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                output = await self.inner.execute(input, context)
            except SuspendRun:
                raise
            except self._retry_on as exc:
                last_error = exc
                logger.warning(
                    f"Stage {self.name} attempt {attempt} failed: {exc}",
                    extra={"stage": self.name, "attempt": attempt, "run_id": context.run_id},
                )
                continue

            if self._until is None or self._until(output):
                return output
            last_error = None
            logger.info(
                f"Stage {self.name} attempt {attempt} did not satisfy its predicate",
                extra={"stage": self.name, "attempt": attempt, "run_id": context.run_id},
            )

        raise RetryExhaustedError(self.name, self.max_attempts, last_error)
