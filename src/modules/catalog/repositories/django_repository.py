"""Django ORM implementation of the inventory ledger.

Each mutation is one conditional ``UPDATE``; the guard lives in the
``WHERE`` clause so concurrent debits against the same gem serialise in
the database and stock can never go negative.
"""

from __future__ import annotations

from typing import Any, Optional

import structlog
from django.core.exceptions import ValidationError
from django.db.models import F, PositiveIntegerField
from django.db.models.functions import Greatest

from modules.catalog.exceptions import InsufficientStock
from modules.catalog.models import Gem
from modules.catalog.repositories.interfaces import IGemLedger

logger = structlog.get_logger(__name__)


class GemLedgerRepository(IGemLedger):
    """Concrete inventory ledger backed by the ``gems`` table."""

    def get_item(self, gem_id: Any) -> Optional[Gem]:
        try:
            return Gem.objects.select_related("seller").filter(id=gem_id).first()
        except (ValueError, ValidationError):
            return None

    def reserve_and_debit(self, gem_id: Any, quantity: int) -> None:
        if quantity < 1:
            raise ValueError("quantity must be at least 1")

        updated = Gem.objects.filter(id=gem_id, stock__gte=quantity).update(
            stock=F("stock") - quantity,
            sales=F("sales") + quantity,
        )
        log = logger.bind(gem_id=str(gem_id), quantity=quantity)
        if updated == 0:
            log.warning("ledger.debit_rejected")
            raise InsufficientStock(gem_id, quantity)
        log.info("ledger.debited")

    def restore(self, gem_id: Any, quantity: int) -> None:
        updated = Gem.objects.filter(id=gem_id).update(
            stock=F("stock") + quantity,
            sales=Greatest(
                F("sales") - quantity, 0, output_field=PositiveIntegerField()
            ),
        )
        log = logger.bind(gem_id=str(gem_id), quantity=quantity)
        if updated == 0:
            log.error("ledger.restore_missing_gem")
            return
        log.info("ledger.restored")
