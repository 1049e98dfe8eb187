from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from receipt_reconciler.api.deps import require_api_token
from receipt_reconciler.modules.pipeline.service import get_pipeline

router = APIRouter(tags=["pipeline"], dependencies=[Depends(require_api_token)])


@router.get("/pipeline/status")
def pipeline_status_endpoint() -> dict[str, Any]:
    return get_pipeline().status()


@router.post("/pipeline/run")
async def run_pipeline_endpoint() -> dict[str, Any]:
    result = await run_in_threadpool(get_pipeline().run_cycle)
    if result is None:
        return {"status": "skipped"}
    return {"status": "completed", **result.to_dict()}
