"""Presigned upload/download URLs and the local blob endpoint they point at."""

import logging
import mimetypes
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from services.api.src.safesnap.adapters.blob_store import LocalBlobStore
from services.api.src.safesnap.container import Container
from services.api.src.safesnap.domains.safety.schemas import Caller
from services.api.src.safesnap.routes.deps import current_caller, get_container
from services.api.src.safesnap.schemas.responses import PresignRequest, PresignResponse

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 20 * 1024 * 1024  # 20 MB

router = APIRouter()
blob_router = APIRouter()


# ---------------------------------------------------------------------------
# Presigned URLs
# ---------------------------------------------------------------------------

@router.post("/uploads/presign", response_model=PresignResponse)
def presign_upload(
    body: PresignRequest,
    caller: Caller = Depends(current_caller),
    container: Container = Depends(get_container),
) -> PresignResponse:
    upload = container.blob_store.presigned_upload_url(body.kind, body.extension, caller.user_id)
    return PresignResponse(**asdict(upload))


@router.get("/uploads/download-url")
def presign_download(
    url: str = Query(..., min_length=1),
    _: Caller = Depends(current_caller),
    container: Container = Depends(get_container),
) -> dict[str, str]:
    return {"url": container.blob_store.presigned_download_url(url)}


# ---------------------------------------------------------------------------
# Local blob storage
# ---------------------------------------------------------------------------

def _local_store(container: Container) -> LocalBlobStore:
    store = container.blob_store
    if not isinstance(store, LocalBlobStore):
        raise HTTPException(404, "Blob storage is not served by this API")
    return store


def _check_signature(store: LocalBlobStore, method: str, key: str, expires: int, signature: str) -> None:
    if not store.verify(method, key, expires, signature):
        logger.warning("blob_signature_rejected", extra={"key": key, "method": method})
        raise HTTPException(403, "Invalid or expired signature")


@blob_router.put("/blobs/{key:path}", status_code=201)
async def put_blob(
    key: str,
    request: Request,
    expires: int = Query(...),
    signature: str = Query(...),
    container: Container = Depends(get_container),
) -> dict[str, str]:
    store = _local_store(container)
    _check_signature(store, "PUT", key, expires, signature)

    data = await request.body()
    if not data:
        raise HTTPException(400, "Empty upload")
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(413, f"Upload exceeds {MAX_UPLOAD_BYTES // (1024 * 1024)} MB")

    url = store.put_bytes(key, data)
    logger.info("blob_stored", extra={"key": key, "bytes": len(data)})
    return {"url": url}


@blob_router.get("/blobs/{key:path}")
def get_blob(
    key: str,
    expires: int = Query(...),
    signature: str = Query(...),
    container: Container = Depends(get_container),
) -> Response:
    store = _local_store(container)
    _check_signature(store, "GET", key, expires, signature)

    data = store.download_bytes(store.url_for(key))
    if not data:
        raise HTTPException(404, "Object not found")
    media_type = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return Response(content=data, media_type=media_type)
