from __future__ import annotations

from typing import Any, Iterable, List, Optional, Protocol

from .models import Identity, Recipe, RecipeInput


class RecipeRepository(Protocol):
    """Protocol describing the behaviour required by the web layer."""

    def list_recipes(self) -> Iterable[Recipe]:
        """Return an iterable of stored recipes ordered newest first."""

    def get_recipe(self, recipe_id: str) -> Optional[Recipe]:
        """Return a single recipe or ``None`` if it does not exist."""

    def add_recipe(self, recipe: RecipeInput) -> Recipe:
        """Persist a new recipe and return the stored instance."""

    def update_recipe(self, recipe_id: str, **changes: Any) -> Optional[Recipe]:
        """Apply a partial update and return the new representation.

        Only supplied fields change. Implementations return ``None`` or raise
        :class:`~recipebook.errors.RecipeNotFoundError` when nothing matches.
        """

    def delete_recipe(self, recipe_id: str) -> bool:
        """Remove a recipe and any associated assets."""

    def search_recipes(self, term: str) -> List[Recipe]:
        """Return recipes whose title matches ``term``."""


class RecipeBackend(Protocol):
    """A deployment configuration able to serve a given caller."""

    def for_identity(self, identity: Optional[Identity]) -> RecipeRepository:
        """Return the repository visible to ``identity``."""


def title_matches(title: str, terms: List[str]) -> int:
    """Count the search terms found in ``title``.

    Every term but the last must match a whole word; the last one matches as a
    prefix so results follow the user while typing.
    """

    words = title.lower().split()
    matched = 0
    for index, term in enumerate(terms):
        if index == len(terms) - 1:
            hit = any(word.startswith(term) for word in words)
        else:
            hit = term in words
        if hit:
            matched += 1
    return matched


def search_terms(term: str) -> List[str]:
    return [part for part in term.lower().split() if part]


__all__ = ["RecipeBackend", "RecipeRepository", "search_terms", "title_matches"]
