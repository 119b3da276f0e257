"""HTTP client for the storage, finalize and profile status endpoints."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import Settings
from ..state import parse_status
from .interfaces import BackendError, StatusSnapshot

logger = logging.getLogger(__name__)


class BackendHttpClient:
    """Thin wrapper around the PostgREST-style backend API."""

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        headers = {}
        if settings.backend_api_key:
            headers = {
                "apikey": settings.backend_api_key,
                "Authorization": f"Bearer {settings.backend_api_key}",
            }
        self._client = httpx.AsyncClient(
            base_url=self.settings.backend_api_url.rstrip("/"),
            timeout=self.settings.request_timeout_seconds,
            headers=headers,
            transport=transport,
        )

    async def _request(self, label: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.TimeoutException as e:
            logger.error("backend.%s: request timeout", label)
            raise BackendError(f"{label}: request timed out") from e
        except httpx.NetworkError as e:
            logger.error("backend.%s: network error - %s", label, e)
            raise BackendError(f"{label}: network error") from e
        except httpx.HTTPStatusError as e:
            logger.error("backend.%s: HTTP %d - %s", label, e.response.status_code, e.response.text)
            raise BackendError(
                f"{label}: HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.exception("backend.%s: unexpected error - %s", label, e)
            raise BackendError(f"{label}: {e}") from e

    def _object_url(self, path: str = "") -> str:
        base = f"/storage/v1/object/{self.settings.storage_bucket}"
        return f"{base}/{path.lstrip('/')}" if path else base

    async def put(self, path: str, data: bytes) -> None:
        """Upload one asset; existing objects are never overwritten."""
        logger.info("backend.put: uploading %s (%d bytes)", path, len(data))
        await self._request(
            "put",
            "POST",
            self._object_url(path),
            content=data,
            headers={"Content-Type": "image/jpeg", "x-upsert": "false"},
        )

    async def delete(self, paths: List[str]) -> None:
        if not paths:
            return
        logger.info("backend.delete: removing %s", ", ".join(paths))
        await self._request("delete", "DELETE", self._object_url(), json={"prefixes": list(paths)})

    async def finalize(
        self,
        document_type: str,
        document_path: str,
        selfie_path: str,
        country: str,
        legal_name: str,
    ) -> None:
        payload = {
            "doc_type": document_type,
            "doc_path": document_path,
            "selfie_path": selfie_path,
            "country": country,
            "legal_name": legal_name,
        }
        logger.info("backend.finalize: %s %s + %s", document_type, document_path, selfie_path)
        await self._request("finalize", "POST", f"/rest/v1/rpc/{self.settings.finalize_rpc}", json=payload)

    async def get_status(self, subject_id: str) -> StatusSnapshot:
        response = await self._request(
            "get_status",
            "GET",
            "/rest/v1/profiles",
            params={
                "id": f"eq.{subject_id}",
                "select": "verification_status,verification_comment,is_verified",
            },
        )
        rows = response.json()
        row: Dict[str, Any] = rows[0] if isinstance(rows, list) and rows else (rows if isinstance(rows, dict) else {})
        status = parse_status(row.get("verification_status"), is_verified=bool(row.get("is_verified")))
        comment = row.get("verification_comment") or None
        logger.info("backend.get_status: subject=%s status=%s comment=%s", subject_id, status.value, bool(comment))
        return StatusSnapshot(status=status, comment=comment)

    async def request_resubmission(self, subject_id: str) -> None:
        logger.info("backend.request_resubmission: subject=%s", subject_id)
        await self._request(
            "request_resubmission",
            "POST",
            f"/rest/v1/rpc/{self.settings.resubmit_rpc}",
            json={"target_user_id": subject_id},
        )

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing HTTP client: %s", e)


__all__ = ["BackendHttpClient"]
