from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from kindle_bot.schemas.book import Book


class FeatureUnavailableError(Exception):
    """The collaborator has no implementation behind it yet."""


@dataclass
class DeliveryResult:
    ok: bool
    reason: Optional[str] = None


class BookSearcher(ABC):
    """Catalog lookup collaborator."""

    @abstractmethod
    async def search(self, query: str) -> List[Book]:
        """Return candidates in display order, possibly empty."""
        pass


class BookDeliverer(ABC):
    """Download-and-forward collaborator."""

    @abstractmethod
    async def deliver(self, email: str, book: Book) -> DeliveryResult:
        pass
