"""Google Drive v3 storage adapter.

All vault objects live in one app folder. Each object's remote id, kind,
card id and fingerprint are kept in the file's ``appProperties`` so that a
listing needs no content download.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any, Optional

import httpx

from cardvault.adapters.storage import (
    PROP_KIND,
    ObjectInfo,
    SessionProvider,
    StorageAdapter,
    StorageQuota,
)
from cardvault.config import DriveConfig
from cardvault.crypto.engine import CryptoEngine
from cardvault.models.crypto.exceptions import NetworkFailure, NotFound, NotSignedIn
from cardvault.models.records import RecordKind
from cardvault.utils.logger import get_child_logger

logger = get_child_logger("drive")

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
APP_TAG = "cardvault"
PROP_APP = "app"
PROP_REMOTE_ID = "remote_id"
FILE_FIELDS = "id,name,size,modifiedTime,appProperties"

# Retried with backoff; every other 4xx fails immediately
RETRY_STATUS = {403, 429, 500, 502, 503, 504}


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _file_name(remote_id: str, kind: str) -> str:
    if kind == RecordKind.ASSET.value:
        card_id, _, image = remote_id.partition("/")
        return f"card_{card_id}_image_{image}.enc"
    return f"card_{remote_id}.json"


def _parse_time(value: str | None) -> datetime:
    if not value:
        return datetime.now(UTC)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _multipart(metadata: dict[str, Any], data: bytes) -> tuple[bytes, str]:
    """Build a multipart/related body: JSON metadata followed by the media."""
    boundary = f"cardvault-{uuid.uuid4().hex}"
    body = b"".join(
        [
            f"--{boundary}\r\n".encode(),
            b"Content-Type: application/json; charset=UTF-8\r\n\r\n",
            json.dumps(metadata).encode("utf-8"),
            f"\r\n--{boundary}\r\n".encode(),
            b"Content-Type: application/octet-stream\r\n\r\n",
            data,
            f"\r\n--{boundary}--".encode(),
        ]
    )
    return body, f"multipart/related; boundary={boundary}"


class DriveStorageAdapter(StorageAdapter):
    """Storage adapter for the Google Drive REST API."""

    def __init__(
        self,
        sessions: SessionProvider,
        engine: CryptoEngine,
        config: Optional[DriveConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        backoff: float = 1.0,
    ):
        super().__init__(sessions, engine)
        self.config = config or DriveConfig()
        self.base_url = self.config.endpoint.rstrip("/")
        self.upload_url = self.config.upload_endpoint.rstrip("/")
        self.timeout = self.config.timeout
        self.backoff = backoff
        self._client = client
        self._folder_id: Optional[str] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
        content: Optional[bytes] = None,
        headers: Optional[dict[str, str]] = None,
        retry: Optional[int] = None,
    ) -> httpx.Response:
        """Make an authenticated request, retrying transient failures.

        Raises:
            NotSignedIn: HTTP 401.
            NotFound: HTTP 404.
            NetworkFailure: Transport errors and server errors after all
                retries, or any other client error.
        """
        if retry is None:
            retry = self.config.retry

        token = await self.sessions.access_token()
        request_headers = {"Authorization": f"Bearer {token}", **(headers or {})}
        client = await self._get_client()

        last_error = "Request failed after all retries"
        for attempt in range(retry + 1):
            try:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    content=content,
                    headers=request_headers,
                )
            except httpx.RequestError as e:
                last_error = f"{type(e).__name__} talking to Drive"
            else:
                status = response.status_code
                if status < 400:
                    return response
                if status == 401:
                    raise NotSignedIn("Drive session expired. Please sign in again.")
                if status == 404:
                    raise NotFound(url)
                if status not in RETRY_STATUS:
                    raise NetworkFailure(f"Drive request failed: HTTP {status}")
                last_error = f"Drive request failed: HTTP {status}"

            if attempt < retry:
                logger.info(
                    "Retrying %s %s (attempt %d/%d): %s",
                    method,
                    url,
                    attempt + 1,
                    retry,
                    last_error,
                )
                await asyncio.sleep(self.backoff * 2**attempt)

        raise NetworkFailure(last_error)

    async def folder_id(self) -> str:
        """Find the app folder, creating it on first use."""
        if self._folder_id is not None:
            return self._folder_id

        name = _quote(self.config.folder_name)
        response = await self.request(
            "GET",
            f"{self.base_url}/files",
            params={
                "q": f"name='{name}' and mimeType='{FOLDER_MIME_TYPE}' and trashed=false",
                "fields": "files(id,name)",
                "spaces": "drive",
            },
        )
        files = response.json().get("files", [])
        if files:
            self._folder_id = files[0]["id"]
        else:
            response = await self.request(
                "POST",
                f"{self.base_url}/files",
                json={"name": self.config.folder_name, "mimeType": FOLDER_MIME_TYPE},
                params={"fields": "id"},
            )
            self._folder_id = response.json()["id"]
            logger.info("Created Drive folder %s", self.config.folder_name)
        return self._folder_id

    async def _query(self, extra: str = "") -> AsyncIterator[dict[str, Any]]:
        folder = await self.folder_id()
        q = (
            f"'{folder}' in parents and trashed=false and "
            f"appProperties has {{ key='{PROP_APP}' and value='{APP_TAG}' }}"
        )
        if extra:
            q = f"{q} and {extra}"

        page_token: Optional[str] = None
        while True:
            params: dict[str, Any] = {
                "q": q,
                "fields": f"nextPageToken,files({FILE_FIELDS})",
                "pageSize": 1000,
                "spaces": "drive",
            }
            if page_token:
                params["pageToken"] = page_token
            response = await self.request("GET", f"{self.base_url}/files", params=params)
            body = response.json()
            for item in body.get("files", []):
                yield item
            page_token = body.get("nextPageToken")
            if not page_token:
                break

    async def _find(self, remote_id: str) -> Optional[dict[str, Any]]:
        extra = (
            f"appProperties has {{ key='{PROP_REMOTE_ID}' "
            f"and value='{_quote(remote_id)}' }}"
        )
        async for item in self._query(extra):
            return item
        return None

    @staticmethod
    def _to_info(item: dict[str, Any]) -> ObjectInfo:
        properties = dict(item.get("appProperties") or {})
        remote_id = properties.pop(PROP_REMOTE_ID, item.get("name", ""))
        properties.pop(PROP_APP, None)
        return ObjectInfo(
            remote_id=remote_id,
            size=int(item.get("size") or 0),
            modified=_parse_time(item.get("modifiedTime")),
            properties=properties,
        )

    async def _list_objects(self) -> AsyncIterator[ObjectInfo]:
        async for item in self._query():
            yield self._to_info(item)

    async def _read_object(self, remote_id: str) -> tuple[bytes, ObjectInfo]:
        item = await self._find(remote_id)
        if item is None:
            raise NotFound(remote_id)
        try:
            response = await self.request(
                "GET", f"{self.base_url}/files/{item['id']}", params={"alt": "media"}
            )
        except NotFound:
            raise NotFound(remote_id) from None
        return response.content, self._to_info(item)

    async def _write_object(
        self, remote_id: str, data: bytes, properties: dict[str, str]
    ) -> ObjectInfo:
        app_properties = {**properties, PROP_APP: APP_TAG, PROP_REMOTE_ID: remote_id}
        existing = await self._find(remote_id)

        if existing is None:
            metadata: dict[str, Any] = {
                "name": _file_name(remote_id, properties.get(PROP_KIND, "")),
                "parents": [await self.folder_id()],
                "appProperties": app_properties,
            }
            method, url = "POST", f"{self.upload_url}/files"
        else:
            metadata = {"appProperties": app_properties}
            method, url = "PATCH", f"{self.upload_url}/files/{existing['id']}"

        body, content_type = _multipart(metadata, data)
        response = await self.request(
            method,
            url,
            params={"uploadType": "multipart", "fields": FILE_FIELDS},
            content=body,
            headers={"Content-Type": content_type},
        )
        return self._to_info(response.json())

    async def _delete_object(self, remote_id: str) -> None:
        item = await self._find(remote_id)
        if item is None:
            raise NotFound(remote_id)
        try:
            await self.request("DELETE", f"{self.base_url}/files/{item['id']}")
        except NotFound:
            raise NotFound(remote_id) from None

    async def quota(self) -> StorageQuota:
        response = await self.request(
            "GET", f"{self.base_url}/about", params={"fields": "storageQuota"}
        )
        quota = response.json().get("storageQuota", {})
        limit = quota.get("limit")
        return StorageQuota(
            usage=int(quota.get("usage") or 0),
            limit=int(limit) if limit else None,
        )
