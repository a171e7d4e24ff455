import logging
import time
from typing import Any, Dict, List, Optional

from geolayers.api.services.remote_service import (
    RecordsClient, StorageClient, RemoteError, RecordNotFoundError, PermissionDeniedError,
)

logger = logging.getLogger(__name__)

DOCUMENTS_COLLECTION = "process_documents"


def document_path(user_id: str, process_id: str, filename: str, timestamp: Optional[int] = None) -> str:
    """Storage path of an uploaded document: <user>/<process>/<millis>_<filename>"""
    timestamp = timestamp if timestamp is not None else int(time.time() * 1000)
    safe_name = filename.replace("/", "_").replace("\\", "_")
    return f"{user_id}/{process_id}/{timestamp}_{safe_name}"


def list_documents(records: RecordsClient, process_id: str) -> List[Dict[str, Any]]:
    return records.select(
        DOCUMENTS_COLLECTION, "*", {"process_id": process_id}, order=[("uploaded_at", False)],
    )


def upload_document(records: RecordsClient, storage: StorageClient, user_id: str, process_id: str,
                    filename: str, content: bytes, content_type: Optional[str] = None) -> Dict[str, Any]:
    """Stores the file, then its metadata row; the file is removed again if the row fails"""
    path = storage.upload(
        document_path(user_id, process_id, filename),
        content,
        content_type or "application/octet-stream",
    )

    try:
        document = records.insert(DOCUMENTS_COLLECTION, {
            "user_id": user_id,
            "process_id": process_id,
            "name": filename,
            "file_size": len(content),
            "file_type": content_type or "application/octet-stream",
            "file_path": path,
        })
    except RemoteError:
        logger.error(f"Document metadata not saved, removing stored file {path}")
        try:
            storage.remove([path])
        except RemoteError as e:
            # The insert failure is what the caller gets back
            logger.error(f"Stored file {path} not removed: {e.message}")
        raise

    logger.info(f"Document uploaded: {filename} for process {process_id}")
    return document


def get_document(records: RecordsClient, document_id: str) -> Dict[str, Any]:
    rows = records.select(DOCUMENTS_COLLECTION, "*", {"id": document_id})
    if not rows:
        raise RecordNotFoundError("Documento não encontrado", 404)
    return rows[0]


def download_document(records: RecordsClient, storage: StorageClient, document_id: str):
    document = get_document(records, document_id)
    return document, storage.download(document["file_path"])


def delete_document(records: RecordsClient, storage: StorageClient, document_id: str, user_id: str) -> None:
    """Deletes a document owned by the user: stored file first, then the row"""
    document = get_document(records, document_id)
    if document.get("user_id") != user_id:
        raise PermissionDeniedError("Você não tem permissão para excluir este documento", 403)

    if document.get("file_path"):
        try:
            storage.remove([document["file_path"]])
        except RemoteError as e:
            # The row is deleted even when the stored file is not
            logger.error(f"Stored file of document {document_id} not removed: {e.message}")

    records.delete(DOCUMENTS_COLLECTION, {"id": document_id})
    logger.info(f"Document deleted: {document_id}")
