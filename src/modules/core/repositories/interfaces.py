"""Generic repository interface (Dependency Inversion Principle).

Provides ``IRepository[T]``, the base abstract class the order record
store extends.  Service-layer code depends on these abstractions, never
on the Django ORM directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, Iterable, Optional, TypeVar

T = TypeVar("T")


class IRepository(ABC, Generic[T]):
    """Base generic repository contract.

    Type parameter ``T`` is the aggregate managed by the repository
    (e.g. ``Order``).
    """

    @abstractmethod
    def get_by_id(self, id: Any) -> Optional[T]:
        """Retrieve an aggregate by its primary key, ``None`` if absent."""

    @abstractmethod
    def list(self, filters: Optional[Dict[str, Any]] = None) -> Iterable[T]:
        """List aggregates with optional filters."""

    @abstractmethod
    def save(self, entity: T) -> T:
        """Persist an aggregate and any domain events it collected."""
