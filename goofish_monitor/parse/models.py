"""Data models for search results."""
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field

from goofish_monitor.fetch.endpoints import get_item_url

UNKNOWN_AGE_MINUTES = 99999


class SearchItem(BaseModel):
    """One listing returned by the search API."""

    item_id: str = Field(..., description="Listing id")
    title: str = Field(default="", description="Listing title")
    price: float = Field(default=0.0, description="Price in yuan")
    url: str = Field(default="", description="Listing page")
    location: str = Field(default="")
    seller: Optional[str] = None
    category: Optional[str] = None
    age_minutes: int = Field(default=UNKNOWN_AGE_MINUTES, description="Minutes since publication")
    image_url: Optional[str] = None
    query: str = Field(default="", description="Query that found the listing")
    found_at: datetime = Field(default_factory=datetime.now)

    def model_post_init(self, __context: Any) -> None:
        if not self.url:
            self.url = get_item_url(self.item_id)

    @property
    def price_display(self) -> str:
        return f"¥{self.price:,.2f}"

    @property
    def age_display(self) -> str:
        if self.age_minutes >= UNKNOWN_AGE_MINUTES:
            return "unknown"
        if self.age_minutes < 60:
            return f"{self.age_minutes} min"
        if self.age_minutes < 1440:
            return f"{self.age_minutes // 60} h {self.age_minutes % 60} min"
        return f"{self.age_minutes // 1440} d"

    def summary(self) -> dict[str, Any]:
        """Compact form kept in a session's recent history."""
        return {
            "id": self.item_id,
            "title": self.title[:80],
            "price": self.price,
            "url": self.url,
            "query": self.query,
            "found_at": self.found_at.isoformat(timespec="seconds"),
        }
