from __future__ import annotations

import logging
import os
import re
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from google.api_core import exceptions as gcloud_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import firestore, storage
from google.cloud.firestore_v1.base_query import FieldFilter

from .errors import NotAuthenticatedError, RecipeNotFoundError, StorageNotConfiguredError
from .models import Identity, Recipe, RecipeInput, UploadTarget, defined_changes
from .storage import RecipeRepository, search_terms, title_matches

logger = logging.getLogger(__name__)

SIGNED_URL_EXPIRATION = timedelta(days=7)
UPLOAD_URL_EXPIRATION = timedelta(minutes=15)
UPLOAD_PREFIX = "recipes/"
DEFAULT_SEARCH_LIMIT = 50

# Only references issued by generate_upload_url are accepted.
STORAGE_ID_PATTERN = re.compile(re.escape(UPLOAD_PREFIX) + r"[0-9a-f]{32}")


class FirestoreRecipeStorage:
    """GCP backed, per-user recipe storage using Firestore and Cloud Storage.

    Every operation takes the caller :class:`Identity`. Reads without an
    identity return nothing, writes without one raise
    :class:`NotAuthenticatedError`. Recipes owned by someone else are
    indistinguishable from missing ones.
    """

    def __init__(
        self,
        *,
        project: Optional[str] = None,
        collection_name: str = "recipes",
        bucket_name: Optional[str] = None,
        search_limit: int = DEFAULT_SEARCH_LIMIT,
        firestore_client: Any = None,
        bucket: Any = None,
    ) -> None:
        self._project = project
        self._collection_name = collection_name
        self._bucket_name = bucket_name
        self._search_limit = search_limit

        self._firestore_client = firestore_client or firestore.Client(project=project)
        self._collection = self._firestore_client.collection(collection_name)

        if bucket is not None:
            self._storage_client = None
            self._bucket = bucket
        elif bucket_name:
            self._storage_client = storage.Client(project=project)
            self._bucket = self._storage_client.bucket(bucket_name)
        else:
            self._storage_client = None
            self._bucket = None

    @classmethod
    def from_env(cls) -> "FirestoreRecipeStorage":
        """Build a storage instance from environment variables."""

        project = os.environ.get("GCP_PROJECT")
        collection_name = os.environ.get("RECIPES_COLLECTION", "recipes")
        bucket_name = os.environ.get("GCS_BUCKET")
        search_limit = int(os.environ.get("RECIPES_SEARCH_LIMIT", DEFAULT_SEARCH_LIMIT))
        return cls(
            project=project,
            collection_name=collection_name,
            bucket_name=bucket_name,
            search_limit=search_limit,
        )

    def for_identity(self, identity: Optional[Identity]) -> "OwnerScopedRecipes":
        return OwnerScopedRecipes(self, identity)

    def list_recipes(self, identity: Optional[Identity]) -> List[Recipe]:
        if identity is None:
            return []

        return [self._doc_to_recipe(doc.id, doc.to_dict() or {}) for doc in self._owned_docs(identity)]

    def get_recipe(self, identity: Optional[Identity], recipe_id: str) -> Optional[Recipe]:
        if identity is None:
            return None

        snapshot = self._owned_snapshot(identity, recipe_id)
        if snapshot is None:
            return None
        return self._doc_to_recipe(snapshot.id, snapshot.to_dict() or {})

    def add_recipe(
        self,
        identity: Optional[Identity],
        recipe: RecipeInput,
        *,
        image_storage_id: Optional[str] = None,
    ) -> Recipe:
        if identity is None:
            raise NotAuthenticatedError()

        image = recipe.image
        if image_storage_id:
            check_storage_id(image_storage_id)
            image = self._resolve_image(image_storage_id)

        doc = recipe.as_fields()
        doc.update(
            {
                "owner_id": identity.subject,
                "image": image,
                "image_storage_id": image_storage_id,
                "created_at": firestore.SERVER_TIMESTAMP,
                "updated_at": firestore.SERVER_TIMESTAMP,
            }
        )

        doc_ref = self._collection.document()
        doc_ref.set(doc)
        logger.info("Created recipe %s for %s", doc_ref.id, identity.subject)

        snapshot = doc_ref.get()
        data = snapshot.to_dict() or {}
        return self._doc_to_recipe(snapshot.id, data)

    def update_recipe(
        self,
        identity: Optional[Identity],
        recipe_id: str,
        *,
        image_storage_id: Optional[str] = None,
        remove_image: bool = False,
        **changes: Any,
    ) -> Recipe:
        if identity is None:
            raise NotAuthenticatedError()

        supplied = defined_changes(changes)
        if image_storage_id:
            check_storage_id(image_storage_id)

        snapshot = self._owned_snapshot(identity, recipe_id)
        if snapshot is None:
            raise RecipeNotFoundError(recipe_id)

        current_data = snapshot.to_dict() or {}
        current_storage_id = current_data.get("image_storage_id")

        update_doc: Dict[str, Any] = dict(supplied)

        if image_storage_id:
            if current_storage_id and current_storage_id != image_storage_id:
                self._delete_blob_if_exists(current_storage_id)
            update_doc["image_storage_id"] = image_storage_id
            update_doc["image"] = self._resolve_image(image_storage_id)
        elif remove_image:
            self._delete_blob_if_exists(current_storage_id)
            update_doc["image_storage_id"] = None
            update_doc["image"] = None

        update_doc["updated_at"] = firestore.SERVER_TIMESTAMP

        doc_ref = self._collection.document(recipe_id)
        doc_ref.update(update_doc)
        logger.info("Updated recipe %s for %s", recipe_id, identity.subject)

        snapshot = doc_ref.get()
        data = snapshot.to_dict() or {}
        return self._doc_to_recipe(snapshot.id, data)

    def delete_recipe(self, identity: Optional[Identity], recipe_id: str) -> bool:
        if identity is None:
            raise NotAuthenticatedError()

        snapshot = self._owned_snapshot(identity, recipe_id)
        if snapshot is None:
            raise RecipeNotFoundError(recipe_id)

        data = snapshot.to_dict() or {}
        self._delete_blob_if_exists(data.get("image_storage_id"))

        self._collection.document(recipe_id).delete()
        logger.info("Deleted recipe %s for %s", recipe_id, identity.subject)
        return True

    def search_recipes(self, identity: Optional[Identity], term: str) -> List[Recipe]:
        if identity is None:
            return []

        terms = search_terms(term)
        if not terms:
            return []

        ranked = []
        for doc in self._owned_docs(identity):
            data = doc.to_dict() or {}
            score = title_matches(data.get("title", ""), terms)
            if score:
                ranked.append((score, doc.id, data))

        # Documents arrive newest first; sorted() keeps that order within a score.
        ranked = sorted(ranked, key=lambda item: item[0], reverse=True)
        return [self._doc_to_recipe(doc_id, data) for _, doc_id, data in ranked[: self._search_limit]]

    def generate_upload_url(self, identity: Optional[Identity]) -> UploadTarget:
        """Issue a single-use signed URL the client PUTs the image bytes to."""

        if identity is None:
            raise NotAuthenticatedError()
        if not self._bucket:
            raise StorageNotConfiguredError()

        storage_id = f"{UPLOAD_PREFIX}{uuid.uuid4().hex}"
        blob = self._bucket.blob(storage_id)
        # The generation-match precondition makes the URL useless once the
        # object exists.
        url = blob.generate_signed_url(
            version="v4",
            method="PUT",
            expiration=UPLOAD_URL_EXPIRATION,
            headers={"x-goog-if-generation-match": "0"},
        )
        return UploadTarget(url=url, storage_id=storage_id)

    def get_image_url(self, identity: Optional[Identity], storage_id: Optional[str]) -> Optional[str]:
        """Resolve an upload reference to a readable URL.

        Returns ``None`` without an identity, for an empty reference and when
        nothing has been uploaded under the reference yet.
        """

        if identity is None or not storage_id:
            return None
        check_storage_id(storage_id)
        return self._resolve_image(storage_id)

    def _resolve_image(self, storage_id: str) -> Optional[str]:
        if not self._bucket:
            raise StorageNotConfiguredError()

        blob = self._bucket.blob(storage_id)
        if not blob.exists():
            return None
        return self._get_image_url(blob)

    def _owned_docs(self, identity: Identity) -> Iterable[Any]:
        query = self._collection.where(
            filter=FieldFilter("owner_id", "==", identity.subject)
        ).order_by("created_at", direction=firestore.Query.DESCENDING)
        return query.stream()

    def _owned_snapshot(self, identity: Identity, recipe_id: str) -> Any:
        if not recipe_id:
            return None

        snapshot = self._collection.document(recipe_id).get()
        if not snapshot.exists:
            return None

        data = snapshot.to_dict() or {}
        if data.get("owner_id") != identity.subject:
            return None
        return snapshot

    def _doc_to_recipe(self, doc_id: str, data: dict) -> Recipe:
        ingredients = data.get("ingredients")
        steps = data.get("steps")

        image_storage_id = data.get("image_storage_id")
        image = data.get("image") or None

        if image_storage_id and self._bucket and STORAGE_ID_PATTERN.fullmatch(image_storage_id):
            image = self._resolve_image(image_storage_id)

        return Recipe(
            id=doc_id,
            title=data.get("title", ""),
            description=data.get("description") or "",
            author=data.get("author", ""),
            date_published=data.get("date_published", ""),
            image=image,
            ingredients=list(ingredients) if isinstance(ingredients, list) else [],
            steps=list(steps) if isinstance(steps, list) else [],
            prep_time_minutes=int(data.get("prep_time_minutes") or 0),
            created_at=_as_datetime(data.get("created_at")),
            updated_at=_as_datetime(data.get("updated_at")),
            owner_id=data.get("owner_id"),
            image_storage_id=image_storage_id,
        )

    def _delete_blob_if_exists(self, blob_name: str | None) -> None:
        if not blob_name or not self._bucket:
            return
        if not STORAGE_ID_PATTERN.fullmatch(blob_name):
            logger.warning("Refusing to delete object outside the upload area: %s", blob_name)
            return

        blob = self._bucket.blob(blob_name)

        try:
            blob.delete()
        except gcloud_exceptions.NotFound:
            # The blob may already have been removed manually; ignore.
            pass

    def _get_image_url(self, blob: storage.Blob) -> str:
        try:
            return blob.generate_signed_url(
                version="v4", method="GET", expiration=SIGNED_URL_EXPIRATION
            )
        except (ValueError, TypeError, AttributeError, auth_exceptions.GoogleAuthError):
            # Signing needs credentials with a private key. Without them fall
            # back to the object's public URL, leaving bucket permissions alone.
            logger.warning("Could not sign URL for %s; using public URL", blob.name)
            return blob.public_url


class OwnerScopedRecipes(RecipeRepository):
    """The recipes visible to one caller, exposed through the shared protocol."""

    def __init__(self, storage_backend: FirestoreRecipeStorage, identity: Optional[Identity]) -> None:
        self._storage = storage_backend
        self.identity = identity

    def list_recipes(self) -> List[Recipe]:
        return self._storage.list_recipes(self.identity)

    def get_recipe(self, recipe_id: str) -> Optional[Recipe]:
        return self._storage.get_recipe(self.identity, recipe_id)

    def add_recipe(self, recipe: RecipeInput, *, image_storage_id: Optional[str] = None) -> Recipe:
        return self._storage.add_recipe(self.identity, recipe, image_storage_id=image_storage_id)

    def update_recipe(self, recipe_id: str, **changes: Any) -> Recipe:
        return self._storage.update_recipe(self.identity, recipe_id, **changes)

    def delete_recipe(self, recipe_id: str) -> bool:
        return self._storage.delete_recipe(self.identity, recipe_id)

    def search_recipes(self, term: str) -> List[Recipe]:
        return self._storage.search_recipes(self.identity, term)

    def generate_upload_url(self) -> UploadTarget:
        return self._storage.generate_upload_url(self.identity)

    def get_image_url(self, storage_id: str) -> Optional[str]:
        return self._storage.get_image_url(self.identity, storage_id)


def check_storage_id(storage_id: Any) -> str:
    """Raise ``ValueError`` unless ``storage_id`` is an upload reference."""

    if not isinstance(storage_id, str) or not STORAGE_ID_PATTERN.fullmatch(storage_id):
        raise ValueError("Invalid image storage reference.")
    return storage_id


def _as_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    return None


__all__ = ["FirestoreRecipeStorage", "OwnerScopedRecipes", "check_storage_id"]
