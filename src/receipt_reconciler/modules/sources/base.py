from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Protocol

AttachmentKind = Literal["pdf", "image"]


@dataclass(frozen=True)
class DocumentRef:
    document_id: str
    thread_id: str | None = None


@dataclass(frozen=True)
class SourceAttachment:
    filename: str
    mime_type: str
    body: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.body)

    @property
    def kind(self) -> AttachmentKind | None:
        mime = (self.mime_type or "").lower()
        if mime == "application/pdf" or self.filename.lower().endswith(".pdf"):
            return "pdf"
        if mime.startswith("image/"):
            return "image"
        return None


@dataclass(frozen=True)
class SourceDocument:
    ref: DocumentRef
    sender: str | None = None
    recipient: str | None = None
    subject: str | None = None
    snippet: str | None = None
    received_at: datetime | None = None
    text: str | None = None
    html: str | None = None
    attachments: tuple[SourceAttachment, ...] = ()
    source_type: str = "email"

    @property
    def document_id(self) -> str:
        return self.ref.document_id


class SourceProvider(Protocol):
    def list_unprocessed(self) -> list[DocumentRef]: ...

    def fetch(self, ref: DocumentRef) -> SourceDocument: ...

    def mark_processed(self, ref: DocumentRef) -> None: ...
