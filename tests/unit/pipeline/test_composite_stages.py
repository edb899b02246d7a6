"""
Tests for the generalized stages: retry loops, model-graded fallback,
branching to sub-pipelines and parallel fan-out.
"""

import pytest
from pydantic import BaseModel

from fakes import ApprovalStage, CountingStage, Number, Text, ToTextStage
from pagedigest.pipeline import (
    BranchStage,
    FunctionStage,
    ModelGradedStage,
    ParallelOutputs,
    ParallelStage,
    PipelineDefinitionError,
    RetryExhaustedError,
    RetryStage,
    RunStatus,
    define_pipeline,
)
from pagedigest.pipeline import stage as stage_module


class FlakyStage(CountingStage):
    """Fails the first ``failures`` calls."""

    def __init__(self, name, failures):
        super().__init__(name)
        self.failures = failures

    async def execute(self, input, context):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"attempt {self.calls}")
        return Number(value=input.value + 1)


class Grade(BaseModel):
    score: int


class GradingStage(ModelGradedStage[Text, Grade]):
    name = "grade"
    input_model = Text
    output_model = Grade

    def __init__(self, raw):
        self.raw = raw

    async def generate(self, input, context):
        return self.raw

    def parse(self, raw):
        return Grade.model_validate_json(raw)

    def fallback(self, raw, error):
        return Grade(score=-1)


class TestRetryStage:
    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self, orchestrator):
        flaky = FlakyStage("flaky", failures=2)
        pipeline = define_pipeline("retry", [RetryStage(flaky, max_attempts=3)])

        result = await orchestrator.run(pipeline, {"value": 1})

        assert result.succeeded
        assert flaky.calls == 3
        assert list(result.outputs) == ["flaky"]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, orchestrator):
        flaky = FlakyStage("flaky", failures=5)
        pipeline = define_pipeline("retry", [RetryStage(flaky, max_attempts=2)])

        result = await orchestrator.run(pipeline, {"value": 1})

        assert result.status is RunStatus.FAILED
        assert result.failure.name == "flaky"
        assert result.failure.cause_type == "RetryExhaustedError"
        assert flaky.calls == 2

    @pytest.mark.asyncio
    async def test_until_predicate_loops(self, orchestrator):
        """Test the loop repeats until the output satisfies the predicate."""
        counter = CountingStage("count")
        loop = RetryStage(counter, max_attempts=5, until=lambda output: counter.calls >= 3)
        pipeline = define_pipeline("loop", [loop])

        result = await orchestrator.run(pipeline, {"value": 0})

        assert result.succeeded
        assert counter.calls == 3

    @pytest.mark.asyncio
    async def test_non_retryable_errors_propagate_immediately(self, orchestrator):
        flaky = FlakyStage("flaky", failures=1)
        loop = RetryStage(flaky, max_attempts=3, retry_on=(TimeoutError,))
        pipeline = define_pipeline("retry", [loop])

        result = await orchestrator.run(pipeline, {"value": 0})

        assert result.failure.cause_type == "ConnectionError"
        assert flaky.calls == 1

    @pytest.mark.asyncio
    async def test_suspend_is_not_retried(self, orchestrator):
        approval = ApprovalStage()
        pipeline = define_pipeline("retry", [RetryStage(approval, max_attempts=3)])

        result = await orchestrator.run(pipeline, {"value": 0})

        assert result.status is RunStatus.SUSPENDED
        assert approval.calls == 1

    def test_invalid_attempts(self):
        with pytest.raises(ValueError):
            RetryStage(CountingStage("a"), max_attempts=0)

    def test_exhausted_error_message(self):
        error = RetryExhaustedError("s", 3, ValueError("x"))

        assert "gave up after 3 attempts: x" in str(error)


class TestModelGradedStage:
    @pytest.mark.asyncio
    async def test_parsed_output(self, orchestrator):
        pipeline = define_pipeline("grade", [GradingStage('{"score": 9}')])

        result = await orchestrator.run(pipeline, {"text": "hi"})

        assert result.terminal_output == Grade(score=9)

    @pytest.mark.asyncio
    async def test_unparseable_output_uses_fallback(self, orchestrator):
        """Test parse errors route to the fallback and the run continues."""
        pipeline = define_pipeline("grade", [GradingStage("definitely not json")])

        result = await orchestrator.run(pipeline, {"text": "hi"})

        assert result.succeeded
        assert result.terminal_output == Grade(score=-1)


class TestFunctionStage:
    @pytest.mark.asyncio
    async def test_sync_and_async_callables(self, orchestrator):
        def increment(input, context):
            return Number(value=input.value + 1)

        async def double(input, context):
            return Number(value=input.value * 2)

        pipeline = define_pipeline(
            "fn",
            [
                FunctionStage("inc", increment, input_model=Number, output_model=Number),
                FunctionStage("double", double, input_model=Number, output_model=Number),
            ],
        )

        result = await orchestrator.run(pipeline, {"value": 2})

        assert result.terminal_output == Number(value=6)


class TestBranchStage:
    def _branch(self, **kwargs):
        small = define_pipeline("small", [CountingStage("small-inc", 1)])
        large = define_pipeline("large", [CountingStage("large-inc", 1000)])
        return BranchStage(
            "route",
            input_model=Number,
            output_model=Number,
            discriminant=lambda input, ctx: "large" if input.value >= 10 else "small",
            routes={"small": small, "large": large},
            **kwargs,
        )

    @pytest.mark.asyncio
    async def test_routes_by_discriminant(self, orchestrator):
        pipeline = define_pipeline("branchy", [self._branch()])

        small = await orchestrator.run(pipeline, {"value": 1})
        large = await orchestrator.run(pipeline, {"value": 10})

        assert small.terminal_output == Number(value=2)
        assert large.terminal_output == Number(value=1010)
        assert list(large.outputs) == ["route"]

    @pytest.mark.asyncio
    async def test_unknown_route_uses_default(self, orchestrator):
        small = define_pipeline("small", [CountingStage("small-inc", 1)])
        branch = BranchStage(
            "route",
            input_model=Number,
            output_model=Number,
            discriminant=lambda input, ctx: "nowhere",
            routes={"small": small},
            default="small",
        )

        result = await orchestrator.run(define_pipeline("p", [branch]), {"value": 1})

        assert result.terminal_output == Number(value=2)

    @pytest.mark.asyncio
    async def test_unknown_route_without_default_fails(self, orchestrator):
        small = define_pipeline("small", [CountingStage("small-inc", 1)])
        branch = BranchStage(
            "route",
            input_model=Number,
            output_model=Number,
            discriminant=lambda input, ctx: "nowhere",
            routes={"small": small},
        )

        result = await orchestrator.run(define_pipeline("p", [branch]), {"value": 1})

        assert result.failure.name == "route"
        assert result.failure.cause_type == "KeyError"

    @pytest.mark.asyncio
    async def test_failed_branch_fails_stage(self, orchestrator):
        broken = define_pipeline("broken", [CountingStage("boom", error=RuntimeError("x"))])
        branch = BranchStage(
            "route",
            input_model=Number,
            output_model=Number,
            discriminant=lambda input, ctx: "broken",
            routes={"broken": broken},
        )

        result = await orchestrator.run(define_pipeline("p", [branch]), {"value": 1})

        assert result.failure.name == "route"
        assert result.failure.cause_type == "BranchFailed"
        assert "boom" in result.failure.message

    def test_incompatible_route_output_rejected(self):
        texty = define_pipeline("texty", [ToTextStage()])

        with pytest.raises(PipelineDefinitionError, match="output lacks"):
            BranchStage(
                "route",
                input_model=Number,
                output_model=Number,
                discriminant=lambda input, ctx: "texty",
                routes={"texty": texty},
            )

    def test_undefined_default_rejected(self):
        with pytest.raises(PipelineDefinitionError, match="default route"):
            self._branch(default="missing")


class TestParallelStage:
    @pytest.mark.asyncio
    async def test_default_join_keys_by_stage_name(self, orchestrator):
        fan = ParallelStage(
            "fan",
            [CountingStage("plus-one", 1), ToTextStage("as-text")],
            input_model=Number,
        )
        pipeline = define_pipeline("parallel", [fan])

        result = await orchestrator.run(pipeline, {"value": 4})

        output = result.terminal_output
        assert isinstance(output, ParallelOutputs)
        assert output.outputs["plus-one"] == Number(value=5)
        assert output.outputs["as-text"] == Text(text="4")

    @pytest.mark.asyncio
    async def test_custom_join(self, orchestrator):
        fan = ParallelStage(
            "sum",
            [CountingStage("a", 1), CountingStage("b", 2)],
            input_model=Number,
            join=lambda outputs, ctx: Number(value=sum(o.value for o in outputs.values())),
            output_model=Number,
        )
        pipeline = define_pipeline("parallel", [fan, CountingStage("after", 0)])

        result = await orchestrator.run(pipeline, {"value": 10})

        assert result.terminal_output == Number(value=23)

    @pytest.mark.asyncio
    async def test_inner_failure_fails_stage_after_all_settle(self, orchestrator):
        ok = CountingStage("ok")
        bad = CountingStage("bad", error=ValueError("nope"))
        fan = ParallelStage("fan", [ok, bad], input_model=Number)

        result = await orchestrator.run(define_pipeline("p", [fan]), {"value": 0})

        assert result.failure.name == "fan"
        assert "bad" in result.failure.message
        assert ok.calls == 1
        assert bad.calls == 1

    def test_join_requires_output_model(self):
        with pytest.raises(PipelineDefinitionError, match="output_model"):
            ParallelStage(
                "fan",
                [CountingStage("a")],
                input_model=Number,
                join=lambda outputs, ctx: outputs,
            )

    def test_duplicate_inner_names_rejected(self):
        with pytest.raises(PipelineDefinitionError, match="duplicate"):
            ParallelStage("fan", [CountingStage("a"), CountingStage("a")], input_model=Number)


def test_stage_module_names_its_stage_shapes():
    for name in ("Stage", "FunctionStage", "ModelGradedStage", "RetryStage"):
        assert f"``{name}``" in stage_module.__doc__
