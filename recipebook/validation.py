from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Mapping

from .errors import ValidationError
from .models import RecipeInput, normalize_fields


def validate_recipe(data: Mapping[str, Any]) -> Dict[str, str]:
    """Check a submitted recipe form and return ``{field: message}`` errors.

    Validation is advisory. The storage backends accept whatever they are
    given, so this runs before create and update.
    """

    values = normalize_fields(data)
    errors: Dict[str, str] = {}

    if not _text(values.get("title")):
        errors["title"] = "Title is required"

    if not _text(values.get("author")):
        errors["author"] = "Author is required"

    published = _text(values.get("date_published"))
    if not published:
        errors["date_published"] = "Date published is required"
    elif not _is_iso_date(published):
        errors["date_published"] = "Date published must be an ISO-8601 date"

    steps = values.get("steps") or []
    if not isinstance(steps, list) or not [step for step in steps if _text(step)]:
        errors["steps"] = "At least one step is required"

    ingredients = values.get("ingredients") or []
    if not isinstance(ingredients, list) or not [item for item in ingredients if _text(item)]:
        errors["ingredients"] = "At least one ingredient is required"

    prep_time = values.get("prep_time_minutes")
    if isinstance(prep_time, bool) or not isinstance(prep_time, int) or prep_time <= 0:
        errors["prep_time_minutes"] = "Preparation time must be a positive number of minutes"

    return errors


def clean_recipe(data: Mapping[str, Any]) -> RecipeInput:
    """Validate and normalise a submitted recipe form."""

    errors = validate_recipe(data)
    if errors:
        raise ValidationError(errors)

    values = normalize_fields(data)
    return RecipeInput.from_mapping(
        {
            "title": _text(values["title"]),
            "description": _text(values.get("description")),
            "author": _text(values["author"]),
            "date_published": _text(values["date_published"]),
            "image": values.get("image") or None,
            "ingredients": [_text(item) for item in values["ingredients"] if _text(item)],
            "steps": [_text(step) for step in values["steps"] if _text(step)],
            "prep_time_minutes": values["prep_time_minutes"],
        }
    )


def clean_changes(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate the fields of a partial update and return them normalised.

    Only supplied fields are checked; ``None`` values are left out.
    """

    values = {name: value for name, value in normalize_fields(data).items() if value is not None}
    errors = {name: msg for name, msg in validate_recipe(values).items() if name in values}
    if errors:
        raise ValidationError(errors)

    changes: Dict[str, Any] = {}
    for name, value in values.items():
        if name in ("ingredients", "steps"):
            changes[name] = [_text(item) for item in value if _text(item)]
        elif isinstance(value, str):
            changes[name] = value.strip()
        else:
            changes[name] = value
    return changes


def format_prep_time(minutes: int) -> str:
    """Render a preparation time: ``"25min"`` or ``"01:30"`` from an hour up."""

    if minutes >= 60:
        hours, remaining = divmod(minutes, 60)
        return f"{hours:02d}:{remaining:02d}"
    return f"{minutes}min"


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _is_iso_date(value: str) -> bool:
    candidate = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        datetime.fromisoformat(candidate)
    except ValueError:
        try:
            date.fromisoformat(value)
        except ValueError:
            return False
    return True


__all__ = ["clean_changes", "clean_recipe", "format_prep_time", "validate_recipe"]
