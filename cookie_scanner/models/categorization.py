"""Models for cookie categories, categorization results and their cache entries."""

from __future__ import annotations

from datetime import UTC, datetime

import pydantic

from cookie_scanner.models.base import CamelModel

# Seeded into every category registry as non-removable defaults.
KNOWN_CATEGORIES: tuple[str, ...] = (
    "Necessary",
    "Functional",
    "Analytics",
    "Advertisement",
    "Performance",
    "Others",
)

UNCATEGORIZED = "uncategorized"


class CookieCategory(CamelModel):
    """Purpose information for one cookie name, as returned upstream."""

    model_config = pydantic.ConfigDict(extra="ignore")

    name: str
    category: str | None = None
    description: str | None = None
    provider: str | None = None


class CategorizationCacheEntry(pydantic.BaseModel):
    """A cached :class:`CookieCategory` with its expiry on the cache clock."""

    value: CookieCategory
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CategoryDefinition(CamelModel):
    """A category that cookies may be assigned to."""

    category_id: str
    category: str
    description: str
    is_default: bool = False
    created_at: datetime = pydantic.Field(default_factory=_utcnow)
    updated_at: datetime = pydantic.Field(default_factory=_utcnow)


class CategoryCreateRequest(CamelModel):
    """Body of ``POST /api/category``."""

    category: str = pydantic.Field(min_length=2, max_length=100)
    description: str = pydantic.Field(min_length=5, max_length=500)


class CategoryUpdateRequest(CamelModel):
    """Body of ``PUT /api/category``: the named category gets a new description."""

    category: str = pydantic.Field(min_length=1, max_length=100)
    description: str = pydantic.Field(min_length=5, max_length=500)
