import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from app.core.config import settings
from app.core.crypto import RetrievalTokenError
from app.models.base import iso_utc, utcnow
from app.schemas.upload import UploadRequestIn, UploadStoredOut, UploadTargetOut
from app.services.handles import ServiceHandles, get_services
from app.services.uploads import UploadNotAllowed, issue_upload_target, resolve_upload_token

log = logging.getLogger(__name__)

router = APIRouter()


@router.post("/uploads", response_model=UploadTargetOut, status_code=201)
async def create_upload_target(payload: UploadRequestIn) -> UploadTargetOut:
    try:
        target = issue_upload_target(file_name=payload.file_name, content_type=payload.content_type)
    except UploadNotAllowed as e:
        raise HTTPException(status_code=422, detail=str(e))
    return UploadTargetOut.model_validate(target)


@router.put("/uploads", response_model=UploadStoredOut)
async def put_upload(
    request: Request,
    token: str = Query(min_length=1),
    services: ServiceHandles = Depends(get_services),
) -> UploadStoredOut:
    try:
        grant = resolve_upload_token(token)
    except RetrievalTokenError:
        raise HTTPException(status_code=403, detail="Invalid or expired upload link")

    sent_type = (request.headers.get("content-type") or "").split(";")[0].strip().lower()
    if sent_type != grant.content_type:
        raise HTTPException(status_code=403, detail="Content type does not match the upload link")

    limit = settings.media_max_bytes
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise HTTPException(status_code=413, detail="Upload too large")

    chunks: list[bytes] = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            raise HTTPException(status_code=413, detail="Upload too large")
        chunks.append(chunk)
    if size == 0:
        raise HTTPException(status_code=422, detail="Upload is empty")

    services.store.put_bytes(
        key=grant.file_key,
        data=b"".join(chunks),
        content_type=grant.content_type,
        metadata={"originalFileName": grant.file_name, "uploadedAt": iso_utc(utcnow())},
    )
    log.info("uploads: stored %s (%d bytes)", grant.file_key, size)
    return UploadStoredOut(file_key=grant.file_key)
