from __future__ import annotations

from typing import Dict, Optional


class RecipeBookError(Exception):
    """Base class for recipe book failures."""


class NotAuthenticatedError(RecipeBookError):
    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class RecipeNotFoundError(RecipeBookError, KeyError):
    """Raised when a recipe is missing or owned by someone else.

    Both causes share one message so callers cannot learn about the existence of
    other users' recipes.
    """

    MESSAGE = "Recipe not found or access denied"

    def __init__(self, recipe_id: Optional[str] = None) -> None:
        super().__init__(self.MESSAGE)
        self.recipe_id = recipe_id

    def __str__(self) -> str:
        return self.MESSAGE


class StorageNotConfiguredError(RecipeBookError):
    def __init__(self) -> None:
        super().__init__("A Cloud Storage bucket must be configured to store images.")


class UnsupportedOperationError(RecipeBookError):
    """The configured backend does not offer the requested operation."""


class UploadError(RecipeBookError):
    """The storage transfer step answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str = "Failed to upload image") -> None:
        super().__init__(f"{message} (HTTP {status_code})")
        self.status_code = status_code


class ValidationError(RecipeBookError):
    def __init__(self, errors: Dict[str, str]) -> None:
        super().__init__("; ".join(f"{field}: {msg}" for field, msg in errors.items()))
        self.errors = dict(errors)


__all__ = [
    "NotAuthenticatedError",
    "RecipeBookError",
    "RecipeNotFoundError",
    "StorageNotConfiguredError",
    "UnsupportedOperationError",
    "UploadError",
    "ValidationError",
]
