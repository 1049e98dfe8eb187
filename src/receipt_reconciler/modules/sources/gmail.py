from __future__ import annotations

import base64
import time
from dataclasses import replace
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from receipt_reconciler.core.config import settings
from receipt_reconciler.core.errors import SourceAuthError, SourceError
from receipt_reconciler.core.logging import get_logger, log_event, monotonic_ms
from receipt_reconciler.modules.sources.base import DocumentRef, SourceAttachment, SourceDocument
from receipt_reconciler.modules.vendors.registry import search_keywords

logger = get_logger(__name__)


def decode_base64url(data: str | None) -> bytes:
    if not data:
        return b""
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def build_search_query(label: str, keywords: list[str] | tuple[str, ...]) -> str:
    terms = " OR ".join(f'"{k}"' for k in keywords)
    return f"is:unread -label:{label} ({terms})"


def _headers(payload: dict[str, Any]) -> dict[str, str]:
    wanted = {"from": "from", "to": "to", "subject": "subject", "date": "date"}
    out: dict[str, str] = {}
    for header in payload.get("headers") or []:
        key = wanted.get(str(header.get("name") or "").lower())
        if key:
            out[key] = header.get("value") or ""
    return out


def _received_at(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def walk_bodies(payload: dict[str, Any]) -> tuple[str | None, str | None]:
    """Plain-text and HTML bodies from a MIME tree; later parts win."""
    text: str | None = None
    html: str | None = None
    stack = [payload]
    while stack:
        part = stack.pop(0)
        data = (part.get("body") or {}).get("data")
        mime = part.get("mimeType")
        if data and not part.get("filename"):
            content = decode_base64url(data).decode("utf-8", errors="replace")
            if mime == "text/plain":
                text = content
            elif mime == "text/html":
                html = content
        stack.extend(part.get("parts") or [])
    return text, html


def walk_attachment_parts(payload: dict[str, Any]) -> list[dict[str, Any]]:
    found: list[dict[str, Any]] = []
    stack = list(payload.get("parts") or [])
    while stack:
        part = stack.pop(0)
        if part.get("filename") and (part.get("body") or {}).get("attachmentId"):
            found.append(part)
        stack.extend(part.get("parts") or [])
    return found


class GmailSource:
    """Gmail REST mailbox as a source of receipt documents.

    The processed label is resolved (or created) on first use and cached on the
    instance.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        access_token: str | None = None,
        user_id: str | None = None,
        processed_label: str | None = None,
        max_results: int | None = None,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = (base_url or settings.gmail_base_url).rstrip("/")
        self.access_token = access_token or settings.gmail_access_token
        self.user_id = user_id or settings.gmail_user_id
        self.processed_label = processed_label or settings.gmail_processed_label
        self.max_results = max_results or settings.gmail_max_results
        self._client = client or httpx.Client(
            timeout=timeout or settings.http_timeout_seconds, follow_redirects=True
        )
        self._label_id: str | None = None

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        if not self.access_token:
            raise SourceAuthError("Gmail access token is not configured")

        url = f"{self.base_url}/users/{self.user_id}/{path.lstrip('/')}"
        headers = {"Authorization": f"Bearer {self.access_token}"}
        start = time.monotonic()
        try:
            resp = self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            log_event(
                logger,
                "gmail.request.failure",
                method=method,
                path=path,
                error_type=type(e).__name__,
                duration_ms=monotonic_ms(start),
            )
            raise SourceError(f"Gmail request failed: {e}") from e

        log_event(
            logger,
            "gmail.request",
            method=method,
            path=path,
            status_code=resp.status_code,
            duration_ms=monotonic_ms(start),
        )
        if resp.status_code in (401, 403):
            raise SourceAuthError(
                f"Gmail rejected credentials ({resp.status_code})", status_code=resp.status_code
            )
        if resp.is_error:
            raise SourceError(
                f"Gmail {method} {path} failed ({resp.status_code})", status_code=resp.status_code
            )
        return resp.json() if resp.content else {}

    def search_query(self) -> str:
        return build_search_query(self.processed_label, search_keywords())

    def list_unprocessed(self) -> list[DocumentRef]:
        data = self._request(
            "GET", "messages", params={"q": self.search_query(), "maxResults": self.max_results}
        )
        refs = [
            DocumentRef(document_id=m["id"], thread_id=m.get("threadId"))
            for m in data.get("messages") or []
        ]
        log_event(logger, "gmail.list.finish", count=len(refs))
        return refs

    def fetch(self, ref: DocumentRef) -> SourceDocument:
        message = self._request("GET", f"messages/{ref.document_id}", params={"format": "full"})
        payload = message.get("payload") or {}
        headers = _headers(payload)
        text, html = walk_bodies(payload)

        attachments: list[SourceAttachment] = []
        for part in walk_attachment_parts(payload):
            attachment = SourceAttachment(
                filename=part["filename"],
                mime_type=part.get("mimeType") or "application/octet-stream",
                body=b"",
            )
            if attachment.kind is None:
                continue
            body = self._download(ref.document_id, part["body"]["attachmentId"])
            attachments.append(replace(attachment, body=body))

        return SourceDocument(
            ref=ref,
            sender=headers.get("from"),
            recipient=headers.get("to"),
            subject=headers.get("subject"),
            snippet=message.get("snippet"),
            received_at=_received_at(headers.get("date")),
            text=text,
            html=html,
            attachments=tuple(attachments),
        )

    def _download(self, message_id: str, attachment_id: str) -> bytes:
        data = self._request("GET", f"messages/{message_id}/attachments/{attachment_id}")
        return decode_base64url(data.get("data"))

    def ensure_processed_label(self) -> str:
        if self._label_id:
            return self._label_id

        labels = self._request("GET", "labels").get("labels") or []
        existing = next((lb for lb in labels if lb.get("name") == self.processed_label), None)
        if existing:
            self._label_id = existing["id"]
            return self._label_id

        created = self._request(
            "POST",
            "labels",
            json={
                "name": self.processed_label,
                "labelListVisibility": "labelShow",
                "messageListVisibility": "show",
            },
        )
        self._label_id = created["id"]
        log_event(logger, "gmail.label.created", label=self.processed_label)
        return self._label_id

    def mark_processed(self, ref: DocumentRef) -> None:
        label_id = self.ensure_processed_label()
        self._request(
            "POST",
            f"messages/{ref.document_id}/modify",
            json={"addLabelIds": [label_id], "removeLabelIds": ["UNREAD"]},
        )
        log_event(logger, "gmail.message.processed", document_id=ref.document_id)
