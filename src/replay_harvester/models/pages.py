"""Pydantic models for replay index pages."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt


class ItemReference(BaseModel):
    """One replay entry in an index page's ``list``."""

    model_config = ConfigDict(extra='allow')

    link: Optional[str] = None

    @property
    def download_url(self) -> Optional[str]:
        """The replay link, or None when it is missing or blank."""
        if isinstance(self.link, str) and self.link.strip():
            return self.link.strip()
        return None


class Page(BaseModel):
    """A paginated replay listing as returned by the upstream API.

    ``items`` keeps the raw list entries so that a malformed entry only
    affects its own slot.
    """

    model_config = ConfigDict(extra='allow', populate_by_name=True)

    count: NonNegativeInt
    items: List[object] = Field(alias='list')
    next: Optional[str] = None

    def item_at(self, offset: int) -> Optional[ItemReference]:
        """Return the item reference at ``offset``, or None if unusable."""
        if offset < 0 or offset >= len(self.items):
            return None
        raw = self.items[offset]
        if not isinstance(raw, dict):
            return None
        link = raw.get('link')
        return ItemReference(**{**raw, 'link': link if isinstance(link, str) else None})
