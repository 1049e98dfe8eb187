from __future__ import annotations

import json
import time
from typing import Any, Protocol

import httpx

from receipt_reconciler.core.config import settings
from receipt_reconciler.core.errors import LedgerAuthError, LedgerError
from receipt_reconciler.core.logging import get_logger, log_event, monotonic_ms

logger = get_logger(__name__)


class LedgerProvider(Protocol):
    def query(
        self, entity_type: str, where: str | None = None, *, max_results: int = 1000
    ) -> list[dict[str, Any]]: ...

    def create(self, entity_type: str, payload: dict[str, Any]) -> dict[str, Any]: ...

    def update(
        self, entity_type: str, entity_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]: ...

    def upload_attachment(
        self,
        *,
        entity_type: str,
        entity_id: str,
        filename: str,
        content_type: str,
        body: bytes,
    ) -> dict[str, Any]: ...


def quote(value: str) -> str:
    """Literal for a ledger query string ("Lowe's" -> 'Lowe\\'s')."""
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


class QuickBooksLedger:
    """QuickBooks Online accounting API over httpx.

    Token acquisition and refresh happen elsewhere; this client only carries the
    current bearer token.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        realm_id: str | None = None,
        access_token: str | None = None,
        minor_version: int | None = None,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = (base_url or settings.ledger_base_url).rstrip("/")
        self.realm_id = realm_id or settings.ledger_realm_id
        self.access_token = access_token or settings.ledger_access_token
        self.minor_version = minor_version or settings.ledger_minor_version
        self._client = client or httpx.Client(
            timeout=timeout or settings.http_timeout_seconds, follow_redirects=True
        )

    def close(self) -> None:
        self._client.close()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/v3/company/{self.realm_id}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        if not self.realm_id or not self.access_token:
            raise LedgerAuthError("Ledger credentials are not configured")

        headers = {"Authorization": f"Bearer {self.access_token}", "Accept": "application/json"}
        params = {"minorversion": str(self.minor_version), **(kwargs.pop("params", None) or {})}
        start = time.monotonic()
        try:
            resp = self._client.request(
                method, self._url(path), headers=headers, params=params, **kwargs
            )
        except httpx.HTTPError as e:
            log_event(
                logger,
                "ledger.request.failure",
                method=method,
                path=path,
                error_type=type(e).__name__,
                duration_ms=monotonic_ms(start),
            )
            raise LedgerError(f"Ledger request failed: {e}") from e

        log_event(
            logger,
            "ledger.request",
            method=method,
            path=path,
            status_code=resp.status_code,
            duration_ms=monotonic_ms(start),
        )
        if resp.status_code in (401, 403):
            raise LedgerAuthError(
                f"Ledger rejected credentials ({resp.status_code})", status_code=resp.status_code
            )
        if resp.is_error:
            raise LedgerError(
                f"Ledger {method} {path} failed ({resp.status_code}): {_fault_message(resp)}",
                status_code=resp.status_code,
            )
        return resp.json()

    def query(
        self, entity_type: str, where: str | None = None, *, max_results: int = 1000
    ) -> list[dict[str, Any]]:
        statement = f"SELECT * FROM {entity_type}"
        if where:
            statement += f" WHERE {where}"
        statement += f" MAXRESULTS {max_results}"
        data = self._request("GET", "query", params={"query": statement})
        return list((data.get("QueryResponse") or {}).get(entity_type) or [])

    def read(self, entity_type: str, entity_id: str) -> dict[str, Any]:
        data = self._request("GET", f"{entity_type.lower()}/{entity_id}")
        return data.get(entity_type) or {}

    def create(self, entity_type: str, payload: dict[str, Any]) -> dict[str, Any]:
        data = self._request("POST", entity_type.lower(), json=payload)
        return data.get(entity_type) or {}

    def update(
        self, entity_type: str, entity_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        body = {**payload, "Id": entity_id, "sparse": True}
        if "SyncToken" not in body:
            body["SyncToken"] = self.read(entity_type, entity_id).get("SyncToken", "0")
        data = self._request("POST", entity_type.lower(), json=body)
        return data.get(entity_type) or {}

    def upload_attachment(
        self,
        *,
        entity_type: str,
        entity_id: str,
        filename: str,
        content_type: str,
        body: bytes,
    ) -> dict[str, Any]:
        metadata = {
            "AttachableRef": [{"EntityRef": {"type": entity_type, "value": entity_id}}],
            "FileName": filename,
            "ContentType": content_type,
        }
        files = {
            "file_metadata_01": (None, json.dumps(metadata), "application/json"),
            "file_content_01": (filename, body, content_type),
        }
        data = self._request("POST", "upload", files=files)
        responses = data.get("AttachableResponse") or [{}]
        return responses[0].get("Attachable") or {}


def _fault_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200]
    errors = ((data.get("Fault") or {}).get("Error")) or []
    if errors:
        first = errors[0]
        return str(first.get("Detail") or first.get("Message") or first)
    return json.dumps(data)[:200]
