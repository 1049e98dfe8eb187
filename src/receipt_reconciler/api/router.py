from __future__ import annotations

from fastapi import APIRouter

from receipt_reconciler.modules.pipeline.api import router as pipeline_router
from receipt_reconciler.modules.receipts.api import router as receipts_router

router = APIRouter()

router.include_router(pipeline_router, prefix="/api")
router.include_router(receipts_router, prefix="/api")


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}
