import atexit
import logging
import os
from typing import Any, Dict, Optional, Tuple

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException

from .errors import (
    NotAuthenticatedError,
    RecipeNotFoundError,
    StorageNotConfiguredError,
    UnsupportedOperationError,
    ValidationError,
)
from .models import Identity, Recipe
from .storage import RecipeBackend, RecipeRepository
from .validation import clean_changes, clean_recipe, format_prep_time

try:
    from .gcp_storage import FirestoreRecipeStorage
except ImportError:  # pragma: no cover - allows running tests without optional deps
    FirestoreRecipeStorage = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"
USER_NAME_HEADER = "X-User-Name"
USER_EMAIL_HEADER = "X-User-Email"


def create_app(backend: Optional[RecipeBackend] = None) -> Flask:
    """Create and configure the Flask application.

    Parameters
    ----------
    backend:
        Optional recipe backend. When ``None`` the ``RECIPES_BACKEND``
        environment variable selects ``local`` (the embedded SQLite store) or
        ``gcp`` (:class:`FirestoreRecipeStorage` configured through environment
        variables).
    """

    app = Flask(__name__)
    app.config.setdefault("MAX_CONTENT_LENGTH", 16 * 1024 * 1024)
    app.secret_key = os.environ.get("FLASK_SECRET_KEY", "development-secret-change-me")

    if backend is None:
        backend = _backend_from_env()
    app.config["RECIPE_BACKEND"] = backend

    def repository() -> RecipeRepository:
        return app.config["RECIPE_BACKEND"].for_identity(_current_identity())

    @app.get("/api/recipes")
    def list_recipes() -> Response:
        term = request.args.get("q", "").strip()
        if term:
            recipes = repository().search_recipes(term)
        else:
            recipes = list(repository().list_recipes())
        return jsonify([_recipe_json(recipe) for recipe in recipes])

    @app.get("/api/recipes/<recipe_id>")
    def get_recipe(recipe_id: str) -> Response:
        recipe = repository().get_recipe(recipe_id)
        if recipe is None:
            raise RecipeNotFoundError(recipe_id)
        return jsonify(_recipe_json(recipe))

    @app.post("/api/recipes")
    def create_recipe() -> Tuple[Response, int]:
        payload = _json_payload()
        storage_id = payload.pop("imageStorageId", None)

        recipe_input = clean_recipe(payload)
        repo = repository()

        if storage_id:
            _require_uploads(repo)
            new_recipe = repo.add_recipe(recipe_input, image_storage_id=storage_id)
        else:
            new_recipe = repo.add_recipe(recipe_input)

        return jsonify(_recipe_json(new_recipe)), 201

    @app.patch("/api/recipes/<recipe_id>")
    def update_recipe(recipe_id: str) -> Response:
        payload = _json_payload()
        image_options: Dict[str, Any] = {}
        storage_id = payload.pop("imageStorageId", None)
        remove_image = payload.pop("removeImage", False)
        if not isinstance(remove_image, bool):
            raise ValueError("removeImage must be a boolean.")

        changes = clean_changes(payload)
        repo = repository()

        if storage_id or remove_image:
            _require_uploads(repo)
            image_options = {"image_storage_id": storage_id, "remove_image": remove_image}

        updated: Optional[Recipe] = repo.update_recipe(recipe_id, **image_options, **changes)
        if updated is None:
            raise RecipeNotFoundError(recipe_id)
        return jsonify(_recipe_json(updated))

    @app.delete("/api/recipes/<recipe_id>")
    def delete_recipe(recipe_id: str) -> Tuple[str, int]:
        if not repository().delete_recipe(recipe_id):
            raise RecipeNotFoundError(recipe_id)
        return "", 204

    @app.post("/api/uploads")
    def generate_upload_url() -> Tuple[Response, int]:
        repo = repository()
        _require_uploads(repo)
        target = repo.generate_upload_url()
        return jsonify(target.as_dict()), 201

    @app.get("/api/images/<path:storage_id>")
    def get_image_url(storage_id: str) -> Response:
        repo = repository()
        _require_uploads(repo)
        return jsonify({"url": repo.get_image_url(storage_id)})

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc: ValidationError):
        return jsonify({"error": "Invalid recipe", "fields": exc.errors}), 400

    @app.errorhandler(NotAuthenticatedError)
    def handle_not_authenticated(exc: NotAuthenticatedError):
        return jsonify({"error": str(exc)}), 401

    @app.errorhandler(RecipeNotFoundError)
    def handle_not_found(exc: RecipeNotFoundError):
        return jsonify({"error": str(exc)}), 404

    @app.errorhandler(UnsupportedOperationError)
    def handle_unsupported(exc: UnsupportedOperationError):
        return jsonify({"error": str(exc)}), 501

    @app.errorhandler(StorageNotConfiguredError)
    def handle_storage_error(exc: StorageNotConfiguredError):
        logger.error("Image storage failure: %s", exc)
        return jsonify({"error": str(exc)}), 502

    @app.errorhandler(ValueError)
    def handle_bad_request(exc: ValueError):
        return jsonify({"error": str(exc)}), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return jsonify({"error": exc.description}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):  # pragma: no cover - defensive programming
        logger.exception("Unhandled error while serving %s %s", request.method, request.path)
        return jsonify({"error": "Internal server error"}), 500

    return app


def _backend_from_env() -> RecipeBackend:
    kind = os.environ.get("RECIPES_BACKEND", "gcp").lower()

    if kind == "local":
        from .database import RecipeDatabase
        from .sql_storage import SqlRecipeStorage

        database = RecipeDatabase.from_env()
        database.init()
        atexit.register(database.close)
        return SqlRecipeStorage(database)

    if kind == "gcp":
        if FirestoreRecipeStorage is None:
            raise RuntimeError(
                "google-cloud-firestore is not installed. Install optional dependencies "
                "or pass an explicit backend to create_app."
            )
        return FirestoreRecipeStorage.from_env()

    raise RuntimeError(f"Unknown RECIPES_BACKEND '{kind}'. Use 'local' or 'gcp'.")


def _recipe_json(recipe: Recipe) -> Dict[str, Any]:
    data = recipe.as_dict()
    data["prepTimeLabel"] = format_prep_time(recipe.prep_time_minutes)
    return data


def _current_identity() -> Optional[Identity]:
    subject = request.headers.get(USER_ID_HEADER, "").strip()
    if not subject:
        return None
    return Identity(
        subject=subject,
        name=request.headers.get(USER_NAME_HEADER),
        email=request.headers.get(USER_EMAIL_HEADER),
    )


def _json_payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValueError("Expected a JSON object in the request body.")
    return payload


def _require_uploads(repo: RecipeRepository) -> None:
    if not hasattr(repo, "generate_upload_url"):
        raise UnsupportedOperationError("Image uploads are not supported by this backend.")


__all__ = ["create_app", "Recipe"]
