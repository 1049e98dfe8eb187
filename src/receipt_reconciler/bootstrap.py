from __future__ import annotations

import receipt_reconciler.models  # noqa: F401
from receipt_reconciler.core.config import settings
from receipt_reconciler.core.db import engine
from receipt_reconciler.core.logging import get_logger, log_event
from receipt_reconciler.core.models import Base

logger = get_logger(__name__)


def bootstrap() -> None:
    if settings.environment == "dev" and str(settings.database_url).startswith("sqlite"):
        Base.metadata.create_all(engine)
    log_event(logger, "app.bootstrap", environment=settings.environment)
