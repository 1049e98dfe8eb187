from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from receipt_reconciler.api.router import router as api_router
from receipt_reconciler.bootstrap import bootstrap
from receipt_reconciler.core.logging import RequestContextMiddleware
from receipt_reconciler.modules.pipeline.service import shutdown_pipeline


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI):
        bootstrap()
        yield
        shutdown_pipeline()

    app = FastAPI(title="Receipt Reconciler", version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestContextMiddleware)
    app.include_router(api_router)
    return app


app = create_app()
