"""
Blob storage client for compressed lyric bodies (storages.augmenter.pro API).

  POST /api/upload.php  - upload raw binary (X-File-Path header, Bearer auth)
  POST /api/delete.php  - delete by path (JSON body)
  GET  /files/{path}    - public read

Lyric blobs are small, so a single persistent connection pool is shared by
every cache read and write.
"""
import asyncio
import hashlib
import logging

import httpx

from lyrics_api.config import settings

logger = logging.getLogger(__name__)

_UPLOAD_TIMEOUT = 15.0
_DELETE_TIMEOUT = 10.0
_DOWNLOAD_TIMEOUT = 10.0
_UPLOAD_ATTEMPTS = 3
_UPLOAD_RETRYABLE_STATUS = {429, 500, 502, 503, 504}

_MAX_CONNECTIONS = 20
_MAX_KEEPALIVE = 10


class StorageClient:
    """Async HTTP client for the lyrics bucket.

    Uses a persistent connection pool to reuse TCP connections across requests.
    """

    def __init__(self, client: httpx.AsyncClient | None = None):
        self.base_url = self._normalize_base_url(settings.storage_url)
        self.api_key = settings.storage_api_key
        self.bucket = settings.storage_bucket
        self._client = client
        key_fp = hashlib.sha256(self.api_key.encode("utf-8")).hexdigest()[:10] if self.api_key else "missing"
        logger.info(
            "Storage client configured: base_url=%s bucket=%s api_key_fp=%s",
            self.base_url,
            self.bucket,
            key_fp,
        )

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the persistent HTTP client with connection pooling."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                limits=httpx.Limits(
                    max_connections=_MAX_CONNECTIONS,
                    max_keepalive_connections=_MAX_KEEPALIVE,
                ),
            )
        return self._client

    async def close(self):
        """Close the persistent HTTP client (call on app shutdown)."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
            logger.info("Storage client connection pool closed")

    @staticmethod
    def _normalize_base_url(raw_url: str) -> str:
        url = raw_url.rstrip("/")
        if url.endswith("/api"):
            url = url[:-4]
        return url

    def _auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_key}"}

    def storage_path(self, key: str) -> str:
        """Return full bucket/key path."""
        return f"{self.bucket}/{key}"

    def public_url(self, key: str) -> str:
        return f"{self.base_url}/files/{self.storage_path(key)}"

    async def upload(self, data: bytes, key: str, content_type: str = "application/gzip") -> None:
        """Upload raw bytes under key, retrying transient failures."""
        full_path = self.storage_path(key)
        headers = {
            **self._auth_headers(),
            "Content-Type": content_type,
            "X-File-Path": full_path,
        }
        client = self._get_client()
        for attempt in range(1, _UPLOAD_ATTEMPTS + 1):
            try:
                response = await client.post(
                    f"{self.base_url}/api/upload.php",
                    content=data,
                    headers=headers,
                    timeout=_UPLOAD_TIMEOUT,
                )
                response.raise_for_status()
                logger.debug("Storage upload OK: %s (%d bytes)", full_path, len(data))
                return
            except (httpx.TimeoutException, httpx.NetworkError, httpx.HTTPStatusError) as e:
                retryable = not isinstance(e, httpx.HTTPStatusError) or (
                    e.response.status_code in _UPLOAD_RETRYABLE_STATUS
                )
                if not retryable or attempt == _UPLOAD_ATTEMPTS:
                    logger.error("Storage upload failed for %s: %s", full_path, e)
                    raise
                backoff = 0.5 * (2 ** (attempt - 1))
                logger.warning(
                    "Storage upload retry %d/%d for %s after %.1fs (%s)",
                    attempt + 1, _UPLOAD_ATTEMPTS, full_path, backoff, e,
                )
                await asyncio.sleep(backoff)

    async def download(self, key: str) -> bytes | None:
        """Download blob content, None when the object does not exist."""
        client = self._get_client()
        response = await client.get(self.public_url(key), timeout=_DOWNLOAD_TIMEOUT)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.content

    async def delete(self, key: str) -> None:
        """Delete a blob (non-fatal on error)."""
        full_path = self.storage_path(key)
        headers = {**self._auth_headers(), "Content-Type": "application/json"}
        client = self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}/api/delete.php",
                json={"path": full_path},
                headers=headers,
                timeout=_DELETE_TIMEOUT,
            )
            if response.status_code not in (200, 204, 404):
                logger.warning("Storage delete returned %d for %s", response.status_code, full_path)
            else:
                logger.debug("Storage delete OK: %s", full_path)
        except Exception as e:
            logger.warning("Storage delete failed for %s (non-fatal): %s", full_path, e)


# Singleton instance
storage = StorageClient()
