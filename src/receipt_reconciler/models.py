"""
Alembic model import hook.

Importing this module ensures all SQLAlchemy models are registered on Base.metadata.
"""

from __future__ import annotations

from receipt_reconciler.modules.receipts.models import Receipt  # noqa: F401
