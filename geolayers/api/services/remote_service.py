"""
Clients for the managed backend: records (REST over named collections),
object storage and identity.

Requests are made once; failures are surfaced as typed errors to the
caller, which decides what to show the user.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import quote

import requests

from geolayers.config import settings

logger = logging.getLogger(__name__)

# PostgreSQL unique_violation
UNIQUE_VIOLATION = "23505"

# Connection pool shared by every client; headers are passed per request
http_session = requests.Session()


class RemoteError(Exception):
    """Error returned by the remote backend"""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class RemoteNotConfigured(RemoteError):
    pass


class RemoteUnavailableError(RemoteError):
    pass


class DuplicateRecordError(RemoteError):
    pass


class RecordNotFoundError(RemoteError):
    pass


class PermissionDeniedError(RemoteError):
    pass


def _error_from_response(response: requests.Response) -> RemoteError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    code = body.get("code")
    message = body.get("message") or body.get("error") or response.text or response.reason
    status = response.status_code

    if str(code) == UNIQUE_VIOLATION:
        return DuplicateRecordError(message, status, UNIQUE_VIOLATION)
    if status == 404:
        return RecordNotFoundError(message, status, code)
    if status in (401, 403):
        return PermissionDeniedError(message, status, code)
    return RemoteError(message, status, code)


class RemoteClient:
    """Shared request plumbing: base URL, API key, bearer token, timeout"""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 access_token: Optional[str] = None, timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = (base_url if base_url is not None else settings.remote_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.remote_key
        self.access_token = access_token
        self.timeout = timeout or settings.remote_timeout
        self.http = session or http_session

    def headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
            "Accept": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    def request(self, method: str, path: str, **kwargs) -> requests.Response:
        if not self.base_url or not self.api_key:
            raise RemoteNotConfigured("Serviço remoto não configurado")

        url = f"{self.base_url}{path}"
        headers = self.headers(kwargs.pop("headers", None))
        logger.debug(f"{method} {url} params={kwargs.get('params')}")

        try:
            response = self.http.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            logger.error(f"Timeout calling {url}: {e}")
            raise RemoteUnavailableError("Tempo de resposta do servidor esgotado")
        except requests.exceptions.RequestException as e:
            logger.error(f"Connection error calling {url}: {e}")
            raise RemoteUnavailableError("Falha de conexão com o servidor")

        if not response.ok:
            error = _error_from_response(response)
            logger.error(f"{method} {url} failed: {error.status_code} {error.code} {error.message}")
            raise error
        return response


class RecordsClient(RemoteClient):
    """CRUD over named collections, PostgREST style"""

    def _params(self, filters: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
        return {column: f"eq.{value}" for column, value in (filters or {}).items()}

    def select(self, collection: str, columns: str = "*", filters: Optional[Dict[str, Any]] = None,
               order: Optional[Iterable[Tuple[str, bool]]] = None) -> List[Dict[str, Any]]:
        """
        Reads rows of a collection.

        columns may nest related collections, e.g. "*,companies(*)".
        filters are equality predicates; order is a list of (column, ascending).
        """
        params = {"select": columns, **self._params(filters)}
        if order:
            params["order"] = ",".join(f"{col}.{'asc' if asc else 'desc'}" for col, asc in order)
        return self.request("GET", f"/rest/v1/{collection}", params=params).json()

    def insert(self, collection: str, values: Dict[str, Any]) -> Dict[str, Any]:
        response = self.request(
            "POST", f"/rest/v1/{collection}",
            json=values,
            headers={"Prefer": "return=representation"},
        )
        rows = response.json()
        return rows[0] if isinstance(rows, list) and rows else rows

    def update(self, collection: str, filters: Dict[str, Any], values: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self.request(
            "PATCH", f"/rest/v1/{collection}",
            params=self._params(filters),
            json=values,
            headers={"Prefer": "return=representation"},
        ).json()

    def delete(self, collection: str, filters: Dict[str, Any]) -> None:
        if not filters:
            raise ValueError("Refusing to delete a whole collection")
        self.request("DELETE", f"/rest/v1/{collection}", params=self._params(filters))


class StorageClient(RemoteClient):
    """Binary objects in a bucket, addressed by caller-chosen paths"""

    def __init__(self, bucket: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.bucket = bucket or settings.storage_bucket

    def _object_path(self, path: str) -> str:
        return f"/storage/v1/object/{self.bucket}/{quote(path)}"

    def upload(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        self.request("POST", self._object_path(path), data=data, headers={"Content-Type": content_type})
        logger.info(f"Stored object {self.bucket}/{path} ({len(data)} bytes)")
        return path

    def download(self, path: str) -> bytes:
        return self.request("GET", self._object_path(path)).content

    def remove(self, paths: List[str]) -> None:
        self.request("DELETE", f"/storage/v1/object/{self.bucket}", json={"prefixes": list(paths)})


class IdentityClient(RemoteClient):
    def get_user(self, access_token: str) -> Optional[Dict[str, Any]]:
        """User behind an access token, or None when the session is not valid"""
        self.access_token = access_token
        try:
            return self.request("GET", "/auth/v1/user").json()
        except PermissionDeniedError:
            return None
