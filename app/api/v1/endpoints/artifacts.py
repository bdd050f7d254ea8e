import logging
import os

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from app.services.handles import ServiceHandles, get_services
from app.services.retrieval import resolve_retrieval_token
from app.core.crypto import RetrievalTokenError
from app.services.storage import ObjectNotFound

log = logging.getLogger(__name__)

router = APIRouter()


@router.get("/artifacts")
async def fetch_artifact(
    token: str = Query(min_length=1),
    services: ServiceHandles = Depends(get_services),
) -> Response:
    try:
        key = resolve_retrieval_token(token)
    except RetrievalTokenError:
        raise HTTPException(status_code=403, detail="Invalid or expired link")

    try:
        data = services.store.get_bytes(key)
    except (ObjectNotFound, ValueError):
        raise HTTPException(status_code=404, detail="Artifact not found")

    filename = os.path.basename(key)
    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )
