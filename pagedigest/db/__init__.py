from pagedigest.db.models import Base, WorkflowRun, WorkflowStepOutput
from pagedigest.db.recorder import RunRecorder
from pagedigest.db.repository import RunConflictError, RunRepository
from pagedigest.db.session import get_engine, get_session

__all__ = [
    "Base",
    "RunConflictError",
    "RunRecorder",
    "RunRepository",
    "WorkflowRun",
    "WorkflowStepOutput",
    "get_engine",
    "get_session",
]
