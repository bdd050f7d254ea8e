from app.models.base import Base  # noqa: F401

from app.models.listing import Listing  # noqa: F401
from app.models.user_account import UserAccount  # noqa: F401
from app.models.report import ReportRequest  # noqa: F401
from app.models.execution import WorkflowExecution, ExecutionEvent  # noqa: F401
from app.models.outbox import OutboxEvent  # noqa: F401
from app.models.idempotency import IdempotencyKey  # noqa: F401
from app.models.audit_log import ListingAuditEntry  # noqa: F401
