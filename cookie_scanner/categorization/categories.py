"""Registry of the categories cookies may be assigned to.

Starts with the built-in defaults (``Necessary`` ... ``Others``) and
accepts additional categories at runtime.  Category names are unique
case-insensitively; lookups return the registered spelling.  One
instance is shared by the categorization client, the orchestrator and
the category routes.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime

from cookie_scanner.models import categorization
from cookie_scanner.utils import errors, logger

log = logger.create_logger("Categories")


class CategoryRegistry:
    """Thread-safe, case-insensitive category store."""

    def __init__(self, defaults: Iterable[str] = categorization.KNOWN_CATEGORIES) -> None:
        self._lock = threading.Lock()
        self._categories: dict[str, categorization.CategoryDefinition] = {}
        for name in defaults:
            self._categories[name.lower()] = categorization.CategoryDefinition(
                category_id=str(uuid.uuid4()),
                category=name,
                description=f"{name} cookies",
                is_default=True,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._categories)

    def list_categories(self) -> list[categorization.CategoryDefinition]:
        """Defaults first in their seeded order, then added categories by creation."""
        with self._lock:
            return [c.model_copy() for c in self._categories.values()]

    def names(self) -> list[str]:
        with self._lock:
            return [c.category for c in self._categories.values()]

    def match(self, value: str | None) -> str | None:
        """Return the registered spelling of *value*, or ``None`` if unknown."""
        if not value or not value.strip():
            return None
        with self._lock:
            found = self._categories.get(value.strip().lower())
            return found.category if found else None

    def add(self, category: str, description: str) -> categorization.CategoryDefinition:
        """Register a new category.

        Raises:
            UrlValidationError: If *category* is blank.
            CategoryExistsError: If the name is already registered.
        """
        name = category.strip()
        if not name:
            raise errors.UrlValidationError("Category name is blank", "Category is required")
        definition = categorization.CategoryDefinition(
            category_id=str(uuid.uuid4()),
            category=name,
            description=description.strip(),
        )
        with self._lock:
            if name.lower() in self._categories:
                raise errors.CategoryExistsError(name)
            self._categories[name.lower()] = definition
        log.info("Category added", {"category": name})
        return definition.model_copy()

    def update(self, category: str, description: str) -> categorization.CategoryDefinition:
        """Replace the description of an existing category.

        Raises:
            CategoryNotFoundError: If no category has this name.
        """
        key = category.strip().lower()
        with self._lock:
            existing = self._categories.get(key)
            if existing is None:
                raise errors.CategoryNotFoundError(category.strip())
            updated = existing.model_copy(update={"description": description.strip(), "updated_at": datetime.now(UTC)})
            self._categories[key] = updated
        log.info("Category updated", {"category": updated.category})
        return updated.model_copy()
