from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from app.core.config import settings
from app.notifications.email import EmailSender, SendGridEmailSender
from app.reports.ai_content import ContentGenerator, OpenAIContentGenerator
from app.services.http_client import HubHttpClient
from app.services.storage import LocalObjectStore


@dataclass(frozen=True)
class ServiceHandles:
    """Process-wide clients handed to workflow stages and request handlers."""
    store: LocalObjectStore
    http: HubHttpClient
    email: EmailSender
    ai: ContentGenerator

    async def aclose(self) -> None:
        await self.http.aclose()


def build_services() -> ServiceHandles:
    http = HubHttpClient(timeout_seconds=settings.media_fetch_timeout_seconds)
    api_key = settings.ai_api_key.get_secret_value() if settings.ai_api_key else None
    sendgrid_key = settings.sendgrid_api_key.get_secret_value() if settings.sendgrid_api_key else None
    return ServiceHandles(
        store=LocalObjectStore(settings.storage_dir),
        http=http,
        email=SendGridEmailSender(api_key=sendgrid_key, from_email=settings.email_from),
        ai=OpenAIContentGenerator(
            http=http,
            api_url=settings.ai_api_url,
            api_key=api_key,
            model=settings.ai_model,
            max_tokens=settings.ai_max_tokens,
            temperature=settings.ai_temperature,
            top_p=settings.ai_top_p,
            timeout_seconds=settings.ai_timeout_seconds,
        ),
    )


@lru_cache(maxsize=1)
def get_services() -> ServiceHandles:
    return build_services()
