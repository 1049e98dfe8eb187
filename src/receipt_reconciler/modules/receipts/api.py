from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from receipt_reconciler.api.deps import require_api_token
from receipt_reconciler.core.db import db_session
from receipt_reconciler.modules.receipts.models import SyncStatus
from receipt_reconciler.modules.receipts.schemas import ReceiptOut
from receipt_reconciler.modules.receipts.service import get_receipt, list_receipts

router = APIRouter(tags=["receipts"], dependencies=[Depends(require_api_token)])


@router.get("/receipts", response_model=list[ReceiptOut])
def list_receipts_endpoint(
    sync_status: SyncStatus | None = None,
    limit: int = 100,
    session: Session = Depends(db_session),
) -> list[ReceiptOut]:
    receipts = list_receipts(session, sync_status=sync_status, limit=min(max(limit, 1), 500))
    return [ReceiptOut.model_validate(r, from_attributes=True) for r in receipts]


@router.get("/receipts/{receipt_id}", response_model=ReceiptOut)
def get_receipt_endpoint(
    receipt_id: uuid.UUID,
    session: Session = Depends(db_session),
) -> ReceiptOut:
    receipt = get_receipt(session, receipt_id=receipt_id)
    return ReceiptOut.model_validate(receipt, from_attributes=True)


@router.post("/receipts/{receipt_id}/redrive", response_model=ReceiptOut)
def redrive_receipt_endpoint(
    receipt_id: uuid.UUID,
    session: Session = Depends(db_session),
) -> ReceiptOut:
    from receipt_reconciler.modules.pipeline.service import get_pipeline
    from receipt_reconciler.modules.sync.service import build_sync_orchestrator

    receipt = get_receipt(session, receipt_id=receipt_id)
    if receipt.sync_status != SyncStatus.ERROR:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Only receipts in error can be re-driven"
        )

    pipeline = get_pipeline()
    sync = build_sync_orchestrator(pipeline.ledger, storage=pipeline.storage)
    try:
        sync.sync_receipt(session, receipt, redrive=True)
    except Exception as e:  # noqa: BLE001
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Sync failed: {e}"
        ) from e
    return ReceiptOut.model_validate(receipt, from_attributes=True)
