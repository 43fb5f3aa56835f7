from typing import List

from kindle_bot.schemas.book import Book
from kindle_bot.services.catalog.base import BookDeliverer, BookSearcher, DeliveryResult, FeatureUnavailableError


class UnavailableBookSearcher(BookSearcher):
    """Placeholder until a catalog backend is wired in."""

    async def search(self, query: str) -> List[Book]:
        raise FeatureUnavailableError("book search is not implemented")


class UnavailableBookDeliverer(BookDeliverer):
    async def deliver(self, email: str, book: Book) -> DeliveryResult:
        raise FeatureUnavailableError("book delivery is not implemented")
