"""httpx clients for the storage bucket and the analyze/save edge functions.

These clients only translate HTTP: non-2xx answers raise ``RemoteServiceError``
with the status attached and transport failures propagate as httpx errors.
Retry and classification happen in the orchestrator.
"""

from __future__ import annotations

import logging
import mimetypes
from typing import Any, AsyncIterator, Callable, Dict, Mapping, Optional
from urllib.parse import quote, unquote

import httpx

from skinscan.config import PipelineConfig, ServiceConfig
from skinscan.errors import RemoteServiceError
from skinscan.types import AnalysisContext, SkinAnalysisResult

LOGGER = logging.getLogger("skinscan.clients.edge")


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return default
    if isinstance(data, Mapping):
        return str(data.get("error") or data.get("message") or default)
    return default


def _raise_for_status(response: httpx.Response, what: str) -> None:
    if response.is_success:
        return
    payload: Any
    try:
        payload = response.json()
    except ValueError:
        payload = response.text
    message = _error_message(response, f"{what} error! status: {response.status_code}")
    LOGGER.warning("%s failed with status %d: %s", what, response.status_code, message)
    raise RemoteServiceError(message, status=response.status_code, payload=payload)


class _ServiceClient:
    """Shared base URL, auth headers and httpx client lifecycle."""

    def __init__(
        self,
        config: ServiceConfig,
        access_token: str = "",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        if not config.base_url:
            raise ValueError("service.base_url must be configured")
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.access_token = access_token
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        access_token: str = "",
        client: Optional[httpx.AsyncClient] = None,
    ):
        return cls(config.service, access_token, client, timeout=config.orchestrator.request_timeout)

    def _headers(self, access_token: str = "") -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.config.api_key:
            headers["apikey"] = self.config.api_key
        token = access_token or self.access_token or self.config.api_key
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class SupabaseStorageUploader(_ServiceClient):
    """Streams image bytes into the storage bucket and reports upload progress."""

    def __init__(
        self,
        config: ServiceConfig,
        access_token: str = "",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        chunk_size: int = 64 * 1024,
    ) -> None:
        super().__init__(config, access_token, client, timeout)
        self.chunk_size = max(1, int(chunk_size))

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig,
        access_token: str = "",
        client: Optional[httpx.AsyncClient] = None,
    ) -> "SupabaseStorageUploader":
        return cls(
            config.service,
            access_token,
            client,
            timeout=config.orchestrator.request_timeout,
            chunk_size=config.orchestrator.upload_chunk_size,
        )

    def object_url(self, key: str) -> str:
        return f"{self.base_url}/storage/v1/object/{self.config.bucket}/{quote(key)}"

    def public_url(self, key: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.config.bucket}/{quote(key)}"

    def key_from_url(self, url: str) -> str:
        prefix = f"{self.base_url}/storage/v1/object/public/{self.config.bucket}/"
        if not url.startswith(prefix):
            raise ValueError(f"{url} is not an object in bucket {self.config.bucket}")
        return unquote(url[len(prefix):])

    async def _chunks(self, data: bytes, on_progress: Callable[[float], None]) -> AsyncIterator[bytes]:
        total = len(data)
        sent = 0
        on_progress(0.0)
        for start in range(0, total, self.chunk_size):
            chunk = data[start:start + self.chunk_size]
            yield chunk
            sent += len(chunk)
            on_progress(sent / total)

    async def put(self, data: bytes, on_progress: Callable[[float], None], *, key: str) -> str:
        content_type = mimetypes.guess_type(key)[0] or "application/octet-stream"
        headers = self._headers()
        headers.update(
            {
                "Content-Type": content_type,
                "Content-Length": str(len(data)),
                "x-upsert": "true",
                "cache-control": "max-age=3600",
            }
        )
        LOGGER.debug("Uploading %d bytes to %s/%s", len(data), self.config.bucket, key)
        response = await self._client.post(
            self.object_url(key),
            content=self._chunks(bytes(data), on_progress),
            headers=headers,
        )
        _raise_for_status(response, "Upload")
        url = self.public_url(key)
        LOGGER.info("Stored %s (%d bytes)", key, len(data))
        return url

    async def delete(self, url: str) -> None:
        key = self.key_from_url(url)
        response = await self._client.delete(self.object_url(key), headers=self._headers())
        _raise_for_status(response, "Delete")
        LOGGER.info("Deleted %s", key)


class EdgeFunctionClient(_ServiceClient):
    """Calls the ``analyze`` and ``analyze/save`` edge functions."""

    def function_url(self, name: str) -> str:
        return f"{self.base_url}/functions/v1/{name}"

    async def _call(self, name: str, body: Mapping[str, Any], access_token: str) -> Dict[str, Any]:
        response = await self._client.post(
            self.function_url(name),
            json=dict(body),
            headers=self._headers(access_token),
        )
        _raise_for_status(response, "Edge Function")
        try:
            data = response.json()
        except ValueError as exc:
            raise RemoteServiceError(
                f"Edge Function {name} returned invalid JSON", status=response.status_code
            ) from exc
        if not isinstance(data, dict):
            raise RemoteServiceError(
                f"Edge Function {name} returned {type(data).__name__}", status=response.status_code, payload=data
            )
        return data

    async def analyze(self, url: str, context: AnalysisContext) -> Dict[str, Any]:
        body = {
            "image_urls": list(context.image_urls) or [url],
            "image_angles": list(context.image_angles) or ["front"],
            "user_id": context.user_id,
            "access_token": context.access_token,
            "user_profile": dict(context.user_profile),
            "meta": dict(context.meta),
        }
        LOGGER.info("Requesting analysis for %s (%d views)", context.user_id, len(body["image_urls"]))
        return await self._call(self.config.analyze_function, body, context.access_token)

    async def save(self, result: SkinAnalysisResult, url: str, context: AnalysisContext) -> str:
        body = {
            "user_id": context.user_id,
            "image_urls": list(context.image_urls) or [url],
            "image_angles": list(context.image_angles) or ["front"],
            "result": result.to_dict(),
            "access_token": context.access_token,
        }
        data = await self._call(self.config.save_function, body, context.access_token)
        if data.get("status") == "error":
            raise RemoteServiceError(str(data.get("error") or "Save failed"), payload=data)
        record_id = data.get("id")
        if record_id is None:
            raise RemoteServiceError("Save response has no record id", payload=data)
        LOGGER.info("Saved analysis %s for %s", record_id, context.user_id)
        return str(record_id)
