from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, List, Optional

from sqlalchemy import delete, insert, select, update

from .database import RecipeDatabase, recipes_table
from .models import Identity, Recipe, RecipeInput, defined_changes
from .storage import RecipeRepository, search_terms, title_matches

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_timestamp(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _decode_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    decoded = json.loads(value)
    return list(decoded) if isinstance(decoded, list) else []


class SqlRecipeStorage(RecipeRepository):
    """Single-user recipe storage backed by the embedded relational store."""

    def __init__(
        self,
        database: RecipeDatabase,
        *,
        clock: Callable[[], datetime] = _utcnow,
        search_limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> None:
        self._database = database
        self._clock = clock
        self._search_limit = search_limit
        self._last_timestamp: Optional[datetime] = None

    def for_identity(self, identity: Optional[Identity]) -> "SqlRecipeStorage":
        # The local store has a single implicit user.
        return self

    def list_recipes(self) -> Iterable[Recipe]:
        query = select(recipes_table).order_by(recipes_table.c.created_at.desc())
        with self._database.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [self._row_to_recipe(row) for row in rows]

    def get_recipe(self, recipe_id: str) -> Optional[Recipe]:
        query = select(recipes_table).where(recipes_table.c.id == recipe_id)
        with self._database.connect() as conn:
            row = conn.execute(query).mappings().first()
        if row is None:
            return None
        return self._row_to_recipe(row)

    def add_recipe(self, recipe: RecipeInput) -> Recipe:
        recipe_id = uuid.uuid4().hex
        now = self._next_timestamp()

        row = self._fields_to_row(recipe.as_fields())
        row.update(
            id=recipe_id,
            created_at=_format_timestamp(now),
            updated_at=_format_timestamp(now),
        )

        with self._database.connect() as conn:
            conn.execute(insert(recipes_table).values(**row))
            conn.commit()

        logger.info("Created recipe %s (%s)", recipe_id, recipe.title)
        return Recipe(
            id=recipe_id,
            created_at=now,
            updated_at=now,
            **recipe.as_fields(),
        )

    def update_recipe(self, recipe_id: str, **changes: Any) -> Optional[Recipe]:
        supplied = defined_changes(changes)

        existing = self.get_recipe(recipe_id)
        if existing is None:
            return None

        for name, value in supplied.items():
            setattr(existing, name, value)
        existing.updated_at = self._next_timestamp(after=existing.updated_at)

        row = self._fields_to_row(supplied)
        row["updated_at"] = _format_timestamp(existing.updated_at)

        with self._database.connect() as conn:
            conn.execute(
                update(recipes_table).where(recipes_table.c.id == recipe_id).values(**row)
            )
            conn.commit()

        logger.info("Updated recipe %s (%s)", recipe_id, ", ".join(sorted(supplied)) or "no fields")
        return existing

    def delete_recipe(self, recipe_id: str) -> bool:
        with self._database.connect() as conn:
            result = conn.execute(delete(recipes_table).where(recipes_table.c.id == recipe_id))
            conn.commit()

        removed = result.rowcount > 0
        if removed:
            logger.info("Deleted recipe %s", recipe_id)
        return removed

    def search_recipes(self, term: str) -> List[Recipe]:
        terms = search_terms(term)
        if not terms:
            return []

        ranked = []
        for recipe in self.list_recipes():
            score = title_matches(recipe.title, terms)
            if score:
                ranked.append((score, recipe))

        # list_recipes is newest first and sorted() is stable.
        ranked = sorted(ranked, key=lambda item: item[0], reverse=True)
        return [recipe for _, recipe in ranked[: self._search_limit]]

    def _next_timestamp(self, after: Optional[datetime] = None) -> datetime:
        now = self._clock()
        for floor in (self._last_timestamp, after):
            if floor is not None and now <= floor:
                now = floor + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    @staticmethod
    def _fields_to_row(fields: dict) -> dict:
        row = dict(fields)
        for name in ("ingredients", "steps"):
            if name in row:
                row[name] = json.dumps(list(row[name]))
        return row

    @staticmethod
    def _row_to_recipe(row) -> Recipe:
        return Recipe(
            id=row["id"],
            title=row["title"],
            description=row["description"] or "",
            author=row["author"],
            date_published=row["date_published"],
            image=row["image"] or None,
            ingredients=_decode_list(row["ingredients"]),
            steps=_decode_list(row["steps"]),
            prep_time_minutes=row["prep_time_minutes"] or 0,
            created_at=_parse_timestamp(row["created_at"]),
            updated_at=_parse_timestamp(row["updated_at"]),
        )


__all__ = ["SqlRecipeStorage"]
