from __future__ import annotations

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()


class WorkflowRun(Base):
    __tablename__ = "workflow_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String, nullable=False, unique=True)
    pipeline_id = Column(String, nullable=False)
    # pending | running | succeeded | failed | cancelled | suspended
    status = Column(String, nullable=False)
    initial_input = Column(JSON, nullable=False)
    failure = Column(JSON, nullable=True)
    terminal_output = Column(JSON, nullable=True)
    suspended_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    steps = relationship(
        "WorkflowStepOutput",
        back_populates="run",
        order_by="WorkflowStepOutput.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_workflow_runs_pipeline_status", "pipeline_id", "status"),
        Index("idx_workflow_runs_created_at", "created_at"),
    )


class WorkflowStepOutput(Base):
    __tablename__ = "workflow_step_outputs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workflow_run_id = Column(Integer, ForeignKey("workflow_runs.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)
    stage_name = Column(String, nullable=False)
    output = Column(JSON, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=False)

    run = relationship("WorkflowRun", back_populates="steps")

    __table_args__ = (
        UniqueConstraint("workflow_run_id", "stage_name", name="uq_step_output_run_stage"),
        Index("idx_step_outputs_run_position", "workflow_run_id", "position"),
    )
