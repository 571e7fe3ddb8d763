"""Embedded relational store used by the offline, single-user configuration.

The handle is constructed explicitly and passed to
:class:`~recipebook.sql_storage.SqlRecipeStorage`; call :meth:`RecipeDatabase.init`
once after construction and :meth:`RecipeDatabase.close` on teardown.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Optional

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    func,
    insert,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///recipes.db"

metadata = MetaData()

recipes_table = Table(
    "recipes",
    metadata,
    Column("id", String, primary_key=True),
    Column("title", Text, nullable=False),
    Column("description", Text),
    Column("author", Text, nullable=False),
    Column("date_published", Text, nullable=False),
    Column("image", Text),
    Column("ingredients", Text, nullable=False, server_default="[]"),
    Column("steps", Text, nullable=False),
    Column("prep_time_minutes", Integer, nullable=False, server_default="0"),
    Column("created_at", Text, nullable=False),
    Column("updated_at", Text, nullable=False),
)

# Columns added after the first release. Older databases are upgraded in place.
ADDITIVE_COLUMNS = (
    "ALTER TABLE recipes ADD COLUMN image TEXT",
    "ALTER TABLE recipes ADD COLUMN ingredients TEXT NOT NULL DEFAULT '[]'",
    "ALTER TABLE recipes ADD COLUMN prep_time_minutes INTEGER NOT NULL DEFAULT 0",
)

SAMPLE_RECIPES = (
    {
        "id": "1",
        "title": "Classic Spaghetti Carbonara",
        "description": "A traditional Italian pasta dish with eggs, cheese, and pancetta.",
        "author": "Chef Mario",
        "date_published": "2024-01-15T10:00:00.000Z",
        "image": None,
        "ingredients": [
            "400g spaghetti",
            "200g pancetta or guanciale",
            "3 large eggs",
            "100g Pecorino Romano cheese, grated",
            "Black pepper to taste",
            "Salt for pasta water",
        ],
        "steps": [
            "Boil water in a large pot and add salt",
            "Cook spaghetti according to package instructions",
            "Meanwhile, cook pancetta in a large skillet until crispy",
            "Whisk eggs and cheese in a bowl",
            "Drain pasta and add to skillet with pancetta",
            "Remove from heat and quickly stir in egg mixture",
            "Serve immediately with black pepper",
        ],
        "prep_time_minutes": 25,
        "created_at": "2024-01-15T10:00:00.000000+00:00",
        "updated_at": "2024-01-15T10:00:00.000000+00:00",
    },
    {
        "id": "2",
        "title": "Chocolate Chip Cookies",
        "description": "Soft and chewy homemade chocolate chip cookies.",
        "author": "Baker Jane",
        "date_published": "2024-01-20T14:30:00.000Z",
        "image": None,
        "ingredients": [
            "2 1/4 cups all-purpose flour",
            "1 tsp baking soda",
            "1 tsp salt",
            "1 cup butter, softened",
            "3/4 cup granulated sugar",
            "3/4 cup brown sugar",
            "2 large eggs",
            "2 tsp vanilla extract",
            "2 cups chocolate chips",
        ],
        "steps": [
            "Preheat oven to 375°F (190°C)",
            "Mix butter and sugars until creamy",
            "Beat in eggs and vanilla",
            "Gradually blend in flour, baking soda, and salt",
            "Stir in chocolate chips",
            "Drop rounded tablespoons onto ungreased cookie sheets",
            "Bake 9-11 minutes until golden brown",
            "Cool on baking sheet for 2 minutes before removing",
        ],
        "prep_time_minutes": 45,
        "created_at": "2024-01-20T14:30:00.000000+00:00",
        "updated_at": "2024-01-20T14:30:00.000000+00:00",
    },
)


class RecipeDatabase:
    """Owns the SQLAlchemy engine for the local recipe store."""

    def __init__(self, url: str = DEFAULT_DATABASE_URL) -> None:
        if not url:
            raise ValueError("A database URL is required.")
        self.url = url
        self.engine: Optional[Engine] = _build_engine(url)

    @classmethod
    def from_env(cls) -> "RecipeDatabase":
        """Build a database handle from environment variables."""

        return cls(os.environ.get("RECIPES_DATABASE_URL", DEFAULT_DATABASE_URL))

    def __enter__(self) -> "RecipeDatabase":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    def connect(self):
        if self.engine is None:
            raise RuntimeError("The recipe database has been closed.")
        return self.engine.connect()

    def init(self, *, seed: bool = True) -> None:
        """Create the schema, upgrade older tables and seed sample rows."""

        if self.engine is None:
            raise RuntimeError("The recipe database has been closed.")

        metadata.create_all(self.engine)
        for statement in ADDITIVE_COLUMNS:
            self._add_column(statement)

        if seed:
            self._seed_if_empty()
        logger.info("Recipe database ready at %s", self.engine.url.render_as_string())

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

    def _add_column(self, statement: str) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(text(statement))
        except OperationalError as exc:
            if "duplicate column" not in str(exc.orig).lower():
                raise
            logger.debug("Skipping migration, column exists: %s", statement)

    def _seed_if_empty(self) -> None:
        with self.engine.begin() as conn:
            count = conn.execute(select(func.count()).select_from(recipes_table)).scalar_one()
            if count:
                return

            for sample in SAMPLE_RECIPES:
                row = dict(sample)
                row["ingredients"] = json.dumps(sample["ingredients"])
                row["steps"] = json.dumps(sample["steps"])
                conn.execute(insert(recipes_table).values(**row))
        logger.info("Seeded %d sample recipes", len(SAMPLE_RECIPES))


def _build_engine(url: str) -> Engine:
    # In-memory SQLite lives inside one connection; share it across the pool.
    if url in ("sqlite://", "sqlite:///:memory:", "sqlite+pysqlite:///:memory:"):
        return create_engine(
            url,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, future=True, pool_pre_ping=True)


__all__ = ["RecipeDatabase", "SAMPLE_RECIPES", "recipes_table"]
