from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

from app.models.base import iso_utc
from app.services.retrieval import issue_retrieval_url
from app.services.storage import LocalObjectStore


_UNSAFE = re.compile(r"[^a-zA-Z0-9\-_]")


@dataclass(frozen=True)
class StoredArtifact:
    key: str
    uri: str
    filename: str
    signed_url: str


def report_filename(*, title: str, report_type: str, report_id: str, generated_at: datetime) -> str:
    # 2026-10-18_market_Sunny_Condo_<id>.pdf
    kind = report_type.split("_")[0].lower()
    safe_title = _UNSAFE.sub("_", title)[:50]
    return f"{generated_at.strftime('%Y-%m-%d')}_{kind}_{safe_title}_{report_id}.pdf"


def store_report_pdf(
    store: LocalObjectStore,
    *,
    owner: str,
    report_id: str,
    report_type: str,
    title: str,
    pdf: bytes,
    generated_at: datetime,
    generation_time_ms: int | None,
) -> StoredArtifact:
    filename = report_filename(title=title, report_type=report_type, report_id=report_id, generated_at=generated_at)
    key = f"{owner}/reports/{filename}"
    uri = store.put_bytes(
        key=key,
        data=pdf,
        content_type="application/pdf",
        metadata={
            "reportId": report_id,
            "reportType": report_type,
            "propertyTitle": title,
            "generatedAt": iso_utc(generated_at),
            "generationTimeMs": str(generation_time_ms or 0),
        },
    )
    return StoredArtifact(key=key, uri=uri, filename=filename, signed_url=issue_retrieval_url(key))
