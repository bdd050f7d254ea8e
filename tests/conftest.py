import os
import tempfile

from cryptography.fernet import Fernet

# Settings are read at import time, so the environment must be in place first
_TMP = tempfile.mkdtemp(prefix="listings-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TMP}/app.db")
os.environ["TELEMETRY_ENABLED"] = "false"
os.environ["URL_SIGNING_KEY"] = Fernet.generate_key().decode()
os.environ["STORAGE_DIR"] = f"{_TMP}/storage"
os.environ["INTERNAL_ADMIN_KEY"] = "test-internal-key"
os.environ["STAGE_MAX_ATTEMPTS"] = "3"
os.environ["STAGE_BACKOFF_BASE_SECONDS"] = "0"

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

# Import Base + all models so metadata is complete
import app.models  # noqa: E402,F401
from app.models.base import Base  # noqa: E402

from app.main import app  # noqa: E402
from app.core.db import get_db  # noqa: E402
from app.notifications.email import EmailMessage, EmailSendError  # noqa: E402
from app.reports.ai_content import GeneratedText  # noqa: E402
from app.services.handles import ServiceHandles, get_services  # noqa: E402
from app.services.http_client import HubHttpClient  # noqa: E402
from app.services.outbox_dispatcher import claim_outbox_event_ids  # noqa: E402
from app.services.rate_limit import RateLimitResult, get_rate_limiter  # noqa: E402
from app.services.storage import LocalObjectStore  # noqa: E402
from app.workflows.engine import drive_execution  # noqa: E402
from app.workflows.registry import WORKFLOWS  # noqa: E402
from worker.tasks import _process_outbox_event  # noqa: E402
from tests.fixtures_seed import SAMPLE_REPORT  # noqa: E402


class RecordingEmailSender:
    def __init__(self) -> None:
        self.sent: list[EmailMessage] = []
        self.attempts: list[EmailMessage] = []
        self.fail = False

    async def send(self, message: EmailMessage) -> None:
        self.attempts.append(message)
        if self.fail:
            raise EmailSendError("provider unavailable")
        self.sent.append(message)


class ScriptedContentGenerator:
    """Returns SAMPLE_REPORT, raising queued errors first."""

    def __init__(self) -> None:
        self.content = SAMPLE_REPORT
        self.errors: list[Exception] = []
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> GeneratedText:
        self.prompts.append(prompt)
        if self.errors:
            raise self.errors.pop(0)
        return GeneratedText(content=self.content, model="test-model")


class AllowAllRateLimiter:
    def __init__(self) -> None:
        self.limit_reached = False

    async def allow(self, *, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        if self.limit_reached:
            return RateLimitResult(allowed=False, remaining=0, reset_seconds=60)
        return RateLimitResult(allowed=True, remaining=limit - 1, reset_seconds=window_seconds)


@pytest.fixture
async def async_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
async def db_session(async_engine):
    session_factory = async_sessionmaker(bind=async_engine, expire_on_commit=False, class_=AsyncSession)
    async with session_factory() as session:
        yield session


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def ai_generator() -> ScriptedContentGenerator:
    return ScriptedContentGenerator()


@pytest.fixture
def remote_images() -> dict:
    """url -> (status, body, content type) or an exception to raise."""
    return {}


@pytest.fixture
async def services(tmp_path, remote_images, email_sender, ai_generator):
    def handler(request: httpx.Request) -> httpx.Response:
        hit = remote_images.get(str(request.url))
        if hit is None:
            return httpx.Response(404)
        if isinstance(hit, Exception):
            raise hit
        status, body, content_type = hit
        return httpx.Response(status, content=body, headers={"content-type": content_type})

    handles = ServiceHandles(
        store=LocalObjectStore(str(tmp_path / "storage")),
        http=HubHttpClient(transport=httpx.MockTransport(handler)),
        email=email_sender,
        ai=ai_generator,
    )
    yield handles
    await handles.aclose()


@pytest.fixture
def rate_limiter() -> AllowAllRateLimiter:
    return AllowAllRateLimiter()


@pytest.fixture
async def client(db_session: AsyncSession, services: ServiceHandles, rate_limiter):
    """
    HTTP client that uses the test DB session and service handles via dependency override.
    """
    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_services] = lambda: services
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def drain(db_session: AsyncSession, services: ServiceHandles):
    """
    Run the worker side in-process: consume every pending outbox event and
    drive each execution it starts until terminal. Returns the execution ids.
    """
    async def _drain() -> list[str]:
        execution_ids: list[str] = []
        while True:
            lease_id, claimed = await claim_outbox_event_ids(db_session, batch_size=100)
            await db_session.commit()
            if not claimed:
                return execution_ids
            for outbox_id in claimed:
                execution_id = await _process_outbox_event(db_session, services, outbox_id, lease_id)
                if execution_id:
                    await drive_execution(db_session, services, execution_id, workflows=WORKFLOWS)
                    execution_ids.append(execution_id)

    return _drain

