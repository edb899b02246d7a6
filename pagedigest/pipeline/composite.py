"""
Composite stages: branch to one of several sub-pipelines, or fan out to
independent stages and join.

Both are ordinary stages from the outer pipeline's point of view, so the
outer run log gets one entry for the composite no matter what ran inside.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Type

from pydantic import BaseModel

from .context import RunContext
from .errors import PipelineDefinitionError, SuspendRun
from .orchestrator import PipelineOrchestrator
from .pipeline import Pipeline
from .stage import Stage

logger = logging.getLogger(__name__)

Discriminant = Callable[[BaseModel, RunContext], str]
JoinFn = Callable[[Dict[str, BaseModel], RunContext], BaseModel]


class BranchFailed(RuntimeError):
    """The sub-pipeline chosen by a BranchStage did not succeed."""

    def __init__(self, branch: str, result):
        failure = result.failure
        detail = f"{failure.name}: {failure.message}" if failure else result.status.value
        super().__init__(f"Branch '{branch}' ended {result.status.value} ({detail})")
        self.branch = branch
        self.result = result


class BranchStage(Stage[BaseModel, BaseModel]):
    """Route the input to one of several named sub-pipelines.

    ``discriminant(input, context)`` returns a route key; the matching
    sub-pipeline runs with the input as its initial input and its terminal
    output becomes this stage's output. An unknown key fails the stage
    unless a ``default`` route is configured.
    """

    def __init__(
        self,
        name: str,
        *,
        input_model: Type[BaseModel],
        output_model: Type[BaseModel],
        discriminant: Discriminant,
        routes: Mapping[str, Pipeline],
        default: Optional[str] = None,
    ) -> None:
        if not routes:
            raise PipelineDefinitionError(f"BranchStage '{name}' needs at least one route")
        if default is not None and default not in routes:
            raise PipelineDefinitionError(
                f"BranchStage '{name}' default route '{default}' is not defined"
            )
        for key, route in routes.items():
            if not issubclass(route.output_model, output_model):
                missing = set(output_model.model_fields) - set(route.output_model.model_fields)
                if missing:
                    raise PipelineDefinitionError(
                        f"BranchStage '{name}' route '{key}' output lacks {sorted(missing)}"
                    )
        self.name = name
        self.input_model = input_model
        self.output_model = output_model
        self._discriminant = discriminant
        self._routes = dict(routes)
        self._default = default

    @property
    def routes(self) -> Dict[str, Pipeline]:
        return dict(self._routes)

    async def execute(self, input: BaseModel, context: RunContext) -> BaseModel:
        key = self._discriminant(input, context)
        if key not in self._routes:
            if self._default is None:
                raise KeyError(f"BranchStage '{self.name}' has no route '{key}'")
            logger.debug(
                f"Branch {self.name}: unknown route {key!r}, using {self._default!r}",
                extra={"stage": self.name, "run_id": context.run_id},
            )
            key = self._default

        route = self._routes[key]
        logger.info(
            f"Branch {self.name} -> {key}",
            extra={"stage": self.name, "route": key, "run_id": context.run_id},
        )
        result = await PipelineOrchestrator(observers=()).run(
            route, input, run_id=f"{context.run_id}:{self.name}:{key}"
        )
        if not result.succeeded:
            raise BranchFailed(key, result)
        return result.terminal_output


class ParallelOutputs(BaseModel):
    outputs: Dict[str, Any]


class ParallelStage(Stage[BaseModel, BaseModel]):
    """Run independent stages concurrently on the same input, then join.

    Without a ``join`` the output is ``ParallelOutputs`` keyed by inner stage
    name. The first failing inner stage (in declaration order) fails this
    stage, after every inner stage has settled.
    """

    def __init__(
        self,
        name: str,
        stages: Sequence[Stage],
        *,
        input_model: Type[BaseModel],
        join: Optional[JoinFn] = None,
        output_model: Optional[Type[BaseModel]] = None,
    ) -> None:
        if not stages:
            raise PipelineDefinitionError(f"ParallelStage '{name}' needs at least one stage")
        names = [stage.name for stage in stages]
        if len(set(names)) != len(names):
            raise PipelineDefinitionError(f"ParallelStage '{name}' has duplicate inner stages")
        if join is not None and output_model is None:
            raise PipelineDefinitionError(
                f"ParallelStage '{name}' with a join must declare its output_model"
            )
        self.name = name
        self.stages = tuple(stages)
        self.input_model = input_model
        self.output_model = output_model or ParallelOutputs
        self._join = join

    async def execute(self, input: BaseModel, context: RunContext) -> BaseModel:
        results = await asyncio.gather(
            *(self._run_inner(stage, input, context) for stage in self.stages),
            return_exceptions=True,
        )

        outputs: Dict[str, BaseModel] = {}
        for stage, result in zip(self.stages, results):
            if isinstance(result, SuspendRun):
                raise result
            if isinstance(result, BaseException):
                raise RuntimeError(f"Parallel stage '{stage.name}' failed: {result}") from result
            outputs[stage.name] = result

        if self._join is not None:
            return self._join(outputs, context)
        return ParallelOutputs(outputs=outputs)

    async def _run_inner(self, stage: Stage, input: BaseModel, context: RunContext) -> BaseModel:
        stage_input = stage.input_model.model_validate(input.model_dump())
        output = await stage.execute(stage_input, context)
        if not isinstance(output, stage.output_model):
            output = stage.output_model.model_validate(output)
        return output
