"""
Pipeline definition: ordered stages with optional mappings between them.

A Pipeline is validated once, when it is committed, and is immutable after
that so a single definition can back any number of concurrent runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
    Union,
)

from pydantic import BaseModel

from .context import RunContext
from .errors import PipelineDefinitionError
from .stage import Stage

MappingFn = Callable[[BaseModel, RunContext], Union[BaseModel, Mapping[str, Any]]]


@dataclass(frozen=True)
class StageMapping:
    """Pure reshaping of one stage's output into the next stage's input.

    ``fn`` receives the previous stage's recorded output and the run context
    (for non-adjacent outputs). It must not perform I/O or keep state.
    ``output_model`` is optional; when declared it is checked against the
    next stage's input model at commit time.
    """

    fn: MappingFn
    output_model: Optional[Type[BaseModel]] = None

    def apply(self, previous: BaseModel, context: RunContext) -> Any:
        return self.fn(previous, context)


@dataclass(frozen=True)
class Step:
    stage: Stage
    mapping: Optional[StageMapping] = None
    timeout: Optional[float] = None

    @property
    def name(self) -> str:
        return self.stage.name


def _missing_fields(source: Type[BaseModel], target: Type[BaseModel]) -> List[str]:
    """Required fields of ``target`` that ``source`` cannot provide."""
    if issubclass(source, target):
        return []
    available = set(source.model_fields)
    for info in source.model_fields.values():
        if info.alias:
            available.add(info.alias)
    missing = []
    for field_name, info in target.model_fields.items():
        if not info.is_required():
            continue
        if field_name in available or (info.alias and info.alias in available):
            continue
        missing.append(field_name)
    return missing


@dataclass(frozen=True)
class Pipeline:
    pipeline_id: str
    steps: Tuple[Step, ...]
    declared_input: Optional[Type[BaseModel]] = None
    declared_output: Optional[Type[BaseModel]] = None
    _by_name: Dict[str, int] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._validate()
        object.__setattr__(
            self, "_by_name", {step.name: index for index, step in enumerate(self.steps)}
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def _validate(self) -> None:
        if not self.pipeline_id:
            raise PipelineDefinitionError("pipeline_id must be a non-empty string")
        if not self.steps:
            raise PipelineDefinitionError(f"Pipeline '{self.pipeline_id}' has no stages")

        seen: set[str] = set()
        for position, step in enumerate(self.steps):
            stage = step.stage
            name = getattr(stage, "name", None)
            if not isinstance(name, str) or not name:
                raise PipelineDefinitionError(f"Stage at position {position} has no name")
            if name in seen:
                raise PipelineDefinitionError(
                    f"Duplicate stage name '{name}' in pipeline '{self.pipeline_id}'"
                )
            seen.add(name)
            for attr in ("input_model", "output_model"):
                model = getattr(stage, attr, None)
                if not (isinstance(model, type) and issubclass(model, BaseModel)):
                    raise PipelineDefinitionError(
                        f"Stage '{name}' must declare {attr} as a pydantic model"
                    )
            if step.timeout is not None and step.timeout <= 0:
                raise PipelineDefinitionError(f"Stage '{name}' timeout must be positive")

        if self.steps[0].mapping is not None:
            raise PipelineDefinitionError(
                f"Stage '{self.steps[0].name}' is first and cannot have a preceding mapping"
            )

        if self.declared_input is not None:
            self._check_shapes(self.declared_input, self.steps[0].stage.input_model, "input", self.steps[0].name)

        for previous, current in zip(self.steps, self.steps[1:]):
            mapping = current.mapping
            if mapping is None:
                source: Optional[Type[BaseModel]] = previous.stage.output_model
            else:
                source = mapping.output_model
            if source is not None:
                self._check_shapes(source, current.stage.input_model, previous.name, current.name)

        if self.declared_output is not None:
            self._check_shapes(
                self.steps[-1].stage.output_model, self.declared_output, self.steps[-1].name, "output"
            )

    def _check_shapes(
        self,
        source: Type[BaseModel],
        target: Type[BaseModel],
        from_name: str,
        to_name: str,
    ) -> None:
        missing = _missing_fields(source, target)
        if missing:
            raise PipelineDefinitionError(
                f"'{from_name}' -> '{to_name}': {source.__name__} does not provide "
                f"required field(s) {', '.join(missing)} of {target.__name__}"
            )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def input_model(self) -> Type[BaseModel]:
        return self.steps[0].stage.input_model

    @property
    def output_model(self) -> Type[BaseModel]:
        return self.declared_output or self.steps[-1].stage.output_model

    @property
    def stage_names(self) -> Tuple[str, ...]:
        return tuple(step.name for step in self.steps)

    def index_of(self, stage_name: str) -> int:
        try:
            return self._by_name[stage_name]
        except KeyError:
            raise KeyError(f"Pipeline '{self.pipeline_id}' has no stage '{stage_name}'") from None

    def stage(self, stage_name: str) -> Stage:
        return self.steps[self.index_of(stage_name)].stage

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self) -> Iterator[Step]:
        return iter(self.steps)


class PipelineBuilder:
    """Fluent pipeline definition.

    Usage:
        pipeline = (
            PipelineBuilder("summarize-workflow")
            .then(fetch_stage)
            .map(to_prompt)
            .then(summarize_stage)
            .commit()
        )
    """

    def __init__(
        self,
        pipeline_id: str,
        *,
        input_model: Optional[Type[BaseModel]] = None,
        output_model: Optional[Type[BaseModel]] = None,
    ) -> None:
        self._pipeline_id = pipeline_id
        self._input_model = input_model
        self._output_model = output_model
        self._steps: List[Step] = []
        self._pending_mapping: Optional[StageMapping] = None
        self._committed = False

    def _ensure_open(self) -> None:
        if self._committed:
            raise PipelineDefinitionError(f"Pipeline '{self._pipeline_id}' is already committed")

    def then(self, stage: Stage, *, timeout: Optional[float] = None) -> "PipelineBuilder":
        self._ensure_open()
        self._steps.append(Step(stage=stage, mapping=self._pending_mapping, timeout=timeout))
        self._pending_mapping = None
        return self

    def map(
        self,
        fn: MappingFn | StageMapping,
        *,
        output_model: Optional[Type[BaseModel]] = None,
    ) -> "PipelineBuilder":
        self._ensure_open()
        if not self._steps:
            raise PipelineDefinitionError("A mapping needs a preceding stage")
        if self._pending_mapping is not None:
            raise PipelineDefinitionError(
                f"Two mappings in a row after stage '{self._steps[-1].name}'"
            )
        self._pending_mapping = _as_mapping(fn, output_model)
        return self

    def commit(self) -> Pipeline:
        self._ensure_open()
        if self._pending_mapping is not None:
            raise PipelineDefinitionError(
                f"Mapping after stage '{self._steps[-1].name}' is not followed by a stage"
            )
        pipeline = Pipeline(
            pipeline_id=self._pipeline_id,
            steps=tuple(self._steps),
            declared_input=self._input_model,
            declared_output=self._output_model,
        )
        self._committed = True
        return pipeline


def _as_mapping(fn: MappingFn | StageMapping, output_model: Optional[Type[BaseModel]]) -> StageMapping:
    if isinstance(fn, StageMapping):
        if output_model is not None and fn.output_model is None:
            return StageMapping(fn=fn.fn, output_model=output_model)
        return fn
    if not callable(fn):
        raise PipelineDefinitionError(f"Mapping {fn!r} is not callable")
    return StageMapping(fn=fn, output_model=output_model)


def define_pipeline(
    pipeline_id: str,
    stages: Sequence[Stage],
    mappings: Optional[Mapping[str, MappingFn | StageMapping]] = None,
    *,
    timeouts: Optional[Mapping[str, float]] = None,
    input_model: Optional[Type[BaseModel]] = None,
    output_model: Optional[Type[BaseModel]] = None,
) -> Pipeline:
    """Build and validate a pipeline from an ordered list of stages.

    Args:
        pipeline_id: Identifier recorded on every run
        stages: Stages in execution order
        mappings: Mapping functions keyed by the name of the stage they feed
        timeouts: Per-stage timeout (seconds) passed through to the stage
        input_model: Optional declared pipeline input, checked against the first stage
        output_model: Optional declared pipeline output, checked against the last stage

    Returns:
        The committed Pipeline

    Raises:
        PipelineDefinitionError: names collide, a mapping targets an unknown or
            first stage, or declared shapes are inconsistent
    """
    mappings = dict(mappings or {})
    timeouts = dict(timeouts or {})
    names = [getattr(stage, "name", None) for stage in stages]

    for target in mappings:
        if target not in names:
            raise PipelineDefinitionError(f"Mapping targets unknown stage '{target}'")
    for target in timeouts:
        if target not in names:
            raise PipelineDefinitionError(f"Timeout configured for unknown stage '{target}'")

    builder = PipelineBuilder(pipeline_id, input_model=input_model, output_model=output_model)
    for index, stage in enumerate(stages):
        mapping = mappings.get(stage.name)
        if mapping is not None:
            if index == 0:
                raise PipelineDefinitionError(
                    f"Stage '{stage.name}' is first and cannot have a preceding mapping"
                )
            builder.map(mapping)
        builder.then(stage, timeout=timeouts.get(stage.name))
    return builder.commit()
