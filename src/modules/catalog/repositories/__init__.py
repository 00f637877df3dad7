"""Inventory ledger package."""

from modules.catalog.repositories.django_repository import GemLedgerRepository
from modules.catalog.repositories.interfaces import IGemLedger

__all__ = ["GemLedgerRepository", "IGemLedger"]
