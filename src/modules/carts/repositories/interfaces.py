from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class ICartRepository(ABC):
    @abstractmethod
    def clear(self, user_id: Any) -> int:
        """Remove every item from the user's cart; returns the count removed."""
