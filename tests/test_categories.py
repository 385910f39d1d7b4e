"""Tests for cookie_scanner.categorization.categories: the category registry."""

from __future__ import annotations

import pytest

from cookie_scanner.categorization import categories
from cookie_scanner.models import categorization
from cookie_scanner.utils import errors


@pytest.fixture()
def registry() -> categories.CategoryRegistry:
    return categories.CategoryRegistry()


class TestCategoryRegistry:
    def test_seeded_with_defaults(self, registry: categories.CategoryRegistry) -> None:
        assert registry.names() == list(categorization.KNOWN_CATEGORIES)
        assert all(c.is_default for c in registry.list_categories())

    @pytest.mark.parametrize(("value", "expected"), [("analytics", "Analytics"), (" OTHERS ", "Others")])
    def test_match_is_case_insensitive(self, registry: categories.CategoryRegistry, value: str, expected: str) -> None:
        assert registry.match(value) == expected

    @pytest.mark.parametrize("value", [None, "", "  ", "Marketing"])
    def test_match_unknown(self, registry: categories.CategoryRegistry, value: str | None) -> None:
        assert registry.match(value) is None

    def test_add(self, registry: categories.CategoryRegistry) -> None:
        added = registry.add(" Social Media ", "Sharing widgets and embeds")

        assert added.category == "Social Media"
        assert added.is_default is False
        assert registry.match("social media") == "Social Media"
        assert registry.names()[-1] == "Social Media"
        assert len(registry) == len(categorization.KNOWN_CATEGORIES) + 1

    def test_add_duplicate_ignores_case(self, registry: categories.CategoryRegistry) -> None:
        with pytest.raises(errors.CategoryExistsError):
            registry.add("ANALYTICS", "Another analytics")

    def test_add_blank(self, registry: categories.CategoryRegistry) -> None:
        with pytest.raises(errors.UrlValidationError):
            registry.add("   ", "Nothing here")

    def test_update_description(self, registry: categories.CategoryRegistry) -> None:
        before = next(c for c in registry.list_categories() if c.category == "Analytics")
        updated = registry.update("analytics", "Measures site usage")

        assert updated.category == "Analytics"
        assert updated.description == "Measures site usage"
        assert updated.category_id == before.category_id
        assert updated.updated_at >= before.updated_at

    def test_update_unknown(self, registry: categories.CategoryRegistry) -> None:
        with pytest.raises(errors.CategoryNotFoundError):
            registry.update("Marketing", "Does not exist")

    def test_list_returns_copies(self, registry: categories.CategoryRegistry) -> None:
        registry.list_categories()[0].description = "changed"
        assert registry.list_categories()[0].description != "changed"
