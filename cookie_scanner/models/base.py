"""Shared Pydantic base for models serialized with camelCase keys."""

from __future__ import annotations

import pydantic


def snake_to_camel(name: str) -> str:
    """Convert a snake_case string to camelCase.

    Args:
        name: A snake_case identifier such as ``"cookies_by_subdomain"``.

    Returns:
        The camelCase equivalent, e.g. ``"cookiesBySubdomain"``.
    """
    parts = name.split("_")
    return parts[0] + "".join(w.capitalize() for w in parts[1:])


class CamelModel(pydantic.BaseModel):
    """Base model that accepts snake_case or camelCase input and dumps camelCase."""

    model_config = pydantic.ConfigDict(alias_generator=snake_to_camel, populate_by_name=True)
