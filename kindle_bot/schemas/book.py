from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

KINDLE_FORMATS = {"mobi", "epub", "pdf", "azw3", "txt", "doc", "docx"}
SIZE_UNITS = "KMGTPE"


class Book(BaseModel):
    """A search candidate returned by the catalog collaborator."""

    id: str
    title: str
    author: str = ""
    format: str = ""
    size: int = 0
    url: str = ""
    description: Optional[str] = None
    year: Optional[int] = None
    language: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def format_size(self) -> str:
        unit = 1024
        if self.size < unit:
            return f"{self.size} B"
        div, exp = unit, 0
        n = self.size // unit
        while n >= unit:
            div *= unit
            exp += 1
            n //= unit
        return f"{self.size / div:.2f} {SIZE_UNITS[exp]}B"

    def is_valid_format(self) -> bool:
        return self.format.lower() in KINDLE_FORMATS

    @property
    def download_url(self) -> str:
        return self.url

    def __str__(self) -> str:
        return f"{self.title} by {self.author} ({self.format}, {self.format_size()})"
