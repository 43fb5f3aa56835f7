from kindle_bot.services.catalog.base import BookDeliverer, BookSearcher, DeliveryResult, FeatureUnavailableError
from kindle_bot.services.catalog.unavailable import UnavailableBookDeliverer, UnavailableBookSearcher

__all__ = [
    "BookDeliverer",
    "BookSearcher",
    "DeliveryResult",
    "FeatureUnavailableError",
    "UnavailableBookDeliverer",
    "UnavailableBookSearcher",
]
