from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

# Fields a caller may supply on create or change through a partial update.
RECIPE_FIELDS = (
    "title",
    "description",
    "author",
    "date_published",
    "image",
    "ingredients",
    "steps",
    "prep_time_minutes",
)

# JSON (camelCase) names used by the HTTP API.
JSON_FIELD_NAMES = {
    "title": "title",
    "description": "description",
    "author": "author",
    "datePublished": "date_published",
    "image": "image",
    "ingredients": "ingredients",
    "steps": "steps",
    "prepTimeMinutes": "prep_time_minutes",
}


@dataclass
class Recipe:
    """Domain object representing a stored recipe."""

    id: str
    title: str
    author: str
    date_published: str
    steps: List[str]
    description: str = ""
    ingredients: List[str] = field(default_factory=list)
    prep_time_minutes: int = 0
    image: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    owner_id: Optional[str] = None
    image_storage_id: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "author": self.author,
            "datePublished": self.date_published,
            "image": self.image,
            "ingredients": list(self.ingredients),
            "steps": list(self.steps),
            "prepTimeMinutes": self.prep_time_minutes,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
        if self.owner_id is not None:
            data["userId"] = self.owner_id
        if self.image_storage_id is not None:
            data["imageStorageId"] = self.image_storage_id
        return data


@dataclass
class RecipeInput:
    """Caller supplied fields of a new recipe."""

    title: str
    author: str
    date_published: str
    steps: List[str]
    description: str = ""
    ingredients: List[str] = field(default_factory=list)
    prep_time_minutes: int = 0
    image: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RecipeInput":
        """Build an input from camelCase JSON or snake_case keyword names."""

        values = normalize_fields(data)
        return cls(
            title=values.get("title", ""),
            author=values.get("author", ""),
            date_published=values.get("date_published", ""),
            steps=list(values.get("steps") or []),
            description=values.get("description") or "",
            ingredients=list(values.get("ingredients") or []),
            prep_time_minutes=int(values.get("prep_time_minutes") or 0),
            image=values.get("image"),
        )

    def as_fields(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in RECIPE_FIELDS}

    def as_json(self) -> Dict[str, Any]:
        """Return the camelCase body the HTTP API accepts."""

        return {key: getattr(self, name) for key, name in JSON_FIELD_NAMES.items()}


@dataclass(frozen=True)
class Identity:
    """Authenticated caller, as supplied by the fronting auth layer."""

    subject: str
    name: Optional[str] = None
    email: Optional[str] = None


@dataclass
class UploadTarget:
    """Single-use destination for a client side image upload."""

    url: str
    storage_id: str

    def as_dict(self) -> Dict[str, str]:
        return {"uploadUrl": self.url, "storageId": self.storage_id}


def normalize_fields(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Map camelCase or snake_case keys onto recipe field names.

    Unknown keys raise :class:`ValueError`.
    """

    values: Dict[str, Any] = {}
    for key, value in data.items():
        if key in RECIPE_FIELDS:
            name = key
        elif key in JSON_FIELD_NAMES:
            name = JSON_FIELD_NAMES[key]
        else:
            raise ValueError(f"Unknown recipe field '{key}'.")
        values[name] = value
    return values


def defined_changes(changes: Mapping[str, Any]) -> Dict[str, Any]:
    """Return the supplied partial update without unset (``None``) values."""

    unknown = [name for name in changes if name not in RECIPE_FIELDS]
    if unknown:
        raise ValueError(f"Unknown recipe field(s): {', '.join(sorted(unknown))}.")
    return {name: value for name, value in changes.items() if value is not None}


__all__ = [
    "Identity",
    "RECIPE_FIELDS",
    "Recipe",
    "RecipeInput",
    "UploadTarget",
    "defined_changes",
    "normalize_fields",
]
