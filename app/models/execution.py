from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from app.core.ids import gen_id
from app.models.base import Base, JSONType, utcnow


EXEC_RUNNING = "RUNNING"
EXEC_SUCCEEDED = "SUCCEEDED"
EXEC_FAILED = "FAILED"


class WorkflowExecution(Base):
    __tablename__ = "workflow_executions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("exe"))

    # deterministic: "{workflow}-{entity_id}-{timestamp}"; unique so redelivery cannot start twice
    name: Mapped[str] = mapped_column(String(300), nullable=False, unique=True)
    workflow: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(200), nullable=False, index=True)

    # workflow-specific state label, e.g. "RENDERING"
    state: Mapped[str] = mapped_column(String(40), nullable=False)
    # RUNNING / SUCCEEDED / FAILED
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=EXEC_RUNNING, index=True)

    stage_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    input: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    # accumulated stage outputs
    output: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    error: Mapped[str | None] = mapped_column(String(200), nullable=True)
    error_detail: Mapped[str | None] = mapped_column(Text, nullable=True)

    lease_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ExecutionEvent(Base):
    __tablename__ = "workflow_execution_events"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("exv"))
    execution_id: Mapped[str] = mapped_column(String, ForeignKey("workflow_executions.id", ondelete="CASCADE"), nullable=False, index=True)

    stage: Mapped[str] = mapped_column(String(80), nullable=False)
    from_state: Mapped[str] = mapped_column(String(40), nullable=False)
    to_state: Mapped[str] = mapped_column(String(40), nullable=False)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # "started" | "succeeded" | "retry_scheduled" | "rejected" | "failed"
    outcome: Mapped[str] = mapped_column(String(30), nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
