"""
Pipeline core: typed stages, mappings between them, and the orchestrator
that drives one run at a time through a committed pipeline.
"""

from pagedigest.pipeline.composite import BranchFailed, BranchStage, ParallelOutputs, ParallelStage
from pagedigest.pipeline.context import MissingStageOutput, RunContext
from pagedigest.pipeline.errors import (
    CancellationError,
    MappingError,
    PipelineDefinitionError,
    PipelineError,
    StageError,
    SuspendRun,
)
from pagedigest.pipeline.events import (
    RunCancelled,
    RunCompleted,
    RunEvent,
    RunFailed,
    RunSuspended,
    StageCompleted,
)
from pagedigest.pipeline.orchestrator import (
    LoggingObserver,
    PipelineOrchestrator,
    RunObserver,
    run_all,
)
from pagedigest.pipeline.pipeline import (
    Pipeline,
    PipelineBuilder,
    StageMapping,
    Step,
    define_pipeline,
)
from pagedigest.pipeline.run import (
    FailureKind,
    RawInput,
    Run,
    RunFailure,
    RunResult,
    RunStatus,
    StageRecord,
)
from pagedigest.pipeline.stage import (
    FunctionStage,
    ModelGradedStage,
    RetryExhaustedError,
    RetryStage,
    Stage,
)

__all__ = [
    "BranchFailed",
    "BranchStage",
    "CancellationError",
    "FailureKind",
    "FunctionStage",
    "LoggingObserver",
    "MappingError",
    "MissingStageOutput",
    "ModelGradedStage",
    "ParallelOutputs",
    "ParallelStage",
    "Pipeline",
    "PipelineBuilder",
    "PipelineDefinitionError",
    "PipelineError",
    "PipelineOrchestrator",
    "RawInput",
    "RetryExhaustedError",
    "RetryStage",
    "Run",
    "RunCancelled",
    "RunCompleted",
    "RunContext",
    "RunEvent",
    "RunFailed",
    "RunFailure",
    "RunObserver",
    "RunResult",
    "RunStatus",
    "RunSuspended",
    "Stage",
    "StageCompleted",
    "StageError",
    "StageMapping",
    "StageRecord",
    "Step",
    "SuspendRun",
    "define_pipeline",
    "run_all",
]
