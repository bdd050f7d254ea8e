from datetime import datetime

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from app.models.base import Base, JSONType, utcnow


class ReportRequest(Base):
    """
    One AI analysis job. Created by the request surface, filled in only by
    report-generation stages; users never mutate it.
    """
    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(String(40), primary_key=True)

    # internal user id, or "anonymous"
    requester_id: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    requester_external_id: Mapped[str | None] = mapped_column(String(200), nullable=True)

    property_snapshot: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    report_type: Mapped[str] = mapped_column(String(60), nullable=False)

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    generated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    executive_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    market_insights: Mapped[str | None] = mapped_column(Text, nullable=True)
    recommendations: Mapped[str | None] = mapped_column(Text, nullable=True)
    model_used: Mapped[str | None] = mapped_column(String(120), nullable=True)
    generation_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    artifact_key: Mapped[str | None] = mapped_column(String(500), nullable=True)
    artifact_uri: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    email_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    execution_name: Mapped[str] = mapped_column(String(300), nullable=False, unique=True)
