from fastapi import APIRouter, HTTPException, status, File, Form, UploadFile, Header, Response
from typing import Any, Dict, List, Optional
import logging
from urllib.parse import quote

from geolayers.api.endpoints.layers import remote_http_error
from geolayers.api.services import document_service
from geolayers.api.services.remote_service import (
    IdentityClient, RecordsClient, StorageClient, RemoteError,
)

router = APIRouter(tags=["documents"])

logger = logging.getLogger(__name__)


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Usuário não autenticado")
    return authorization.split(" ", 1)[1].strip()


def _current_user(authorization: Optional[str]):
    """Returns (user id, access token) of the caller or raises 401"""
    token = _bearer_token(authorization)
    try:
        user = IdentityClient().get_user(token)
    except RemoteError as e:
        raise remote_http_error(e)
    if not user or not user.get("id"):
        raise HTTPException(status_code=401, detail="Usuário não autenticado")
    return user["id"], token


@router.get("/processes/{process_id}/documents", response_model=List[Dict[str, Any]])
async def read_process_documents(process_id: str, authorization: Optional[str] = Header(None)):
    """Documents attached to a licensing process, newest first"""
    _, token = _current_user(authorization)
    try:
        return document_service.list_documents(RecordsClient(access_token=token), process_id)
    except RemoteError as e:
        raise remote_http_error(e)


@router.post("/documents", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
async def upload_document(process_id: str = Form(...), file: UploadFile = File(...),
                          authorization: Optional[str] = Header(None)):
    """Attaches a file to a licensing process"""
    user_id, token = _current_user(authorization)
    content = await file.read()
    try:
        return document_service.upload_document(
            RecordsClient(access_token=token),
            StorageClient(access_token=token),
            user_id, process_id, file.filename or "documento", content, file.content_type,
        )
    except RemoteError as e:
        raise remote_http_error(e)


@router.get("/documents/{document_id}/download")
async def download_document(document_id: str, authorization: Optional[str] = Header(None)):
    _, token = _current_user(authorization)
    try:
        document, content = document_service.download_document(
            RecordsClient(access_token=token), StorageClient(access_token=token), document_id,
        )
    except RemoteError as e:
        raise remote_http_error(e)

    return Response(
        content=content,
        media_type=document.get("file_type") or "application/octet-stream",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(document.get('name') or 'documento')}"},
    )


@router.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(document_id: str, authorization: Optional[str] = Header(None)):
    user_id, token = _current_user(authorization)
    try:
        document_service.delete_document(
            RecordsClient(access_token=token), StorageClient(access_token=token), document_id, user_id,
        )
    except RemoteError as e:
        raise remote_http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
