"""HTTP client for the recipe API served by :func:`recipebook.create_app`.

Images never pass through the API: :meth:`RecipeBookClient.upload_image` asks
for an upload target, transfers the bytes straight to storage with
:func:`~recipebook.uploads.upload_image` and hands back the storage id that is
sent along with the recipe.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

import requests

from .models import RecipeInput, UploadTarget
from .uploads import REQUEST_TIMEOUT, upload_image

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"


class RecipeBookClient:
    """Thin wrapper around the JSON routes.

    HTTP errors surface as :class:`requests.HTTPError`; a failed image transfer
    raises :class:`~recipebook.errors.UploadError` before the recipe is sent.
    """

    def __init__(
        self,
        base_url: str,
        *,
        user_id: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._headers: Dict[str, str] = {}
        if user_id:
            self._headers[USER_ID_HEADER] = user_id

    def list_recipes(self, term: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"q": term} if term else None
        return self._request("GET", "/api/recipes", params=params).json()

    def get_recipe(self, recipe_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self._request("GET", f"/api/recipes/{recipe_id}").json()
        except requests.HTTPError as exc:
            if exc.response is not None and exc.response.status_code == 404:
                return None
            raise

    def create_recipe(
        self,
        recipe: RecipeInput,
        *,
        image: Optional[bytes] = None,
        content_type: str = "image/jpeg",
    ) -> Dict[str, Any]:
        payload = recipe.as_json()
        if image is not None:
            payload["imageStorageId"] = self.upload_image(image, content_type)
        return self._request("POST", "/api/recipes", json=payload).json()

    def update_recipe(
        self,
        recipe_id: str,
        changes: Mapping[str, Any],
        *,
        image: Optional[bytes] = None,
        content_type: str = "image/jpeg",
        remove_image: bool = False,
    ) -> Dict[str, Any]:
        payload = dict(changes)
        if image is not None:
            payload["imageStorageId"] = self.upload_image(image, content_type)
        elif remove_image:
            payload["removeImage"] = True
        return self._request("PATCH", f"/api/recipes/{recipe_id}", json=payload).json()

    def delete_recipe(self, recipe_id: str) -> None:
        self._request("DELETE", f"/api/recipes/{recipe_id}")

    def upload_image(self, data: bytes, content_type: str = "image/jpeg") -> str:
        body = self._request("POST", "/api/uploads").json()
        target = UploadTarget(url=body["uploadUrl"], storage_id=body["storageId"])
        storage_id = upload_image(target, data, content_type=content_type, session=self._session)
        logger.info("Uploaded image %s", storage_id)
        return storage_id

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        response = self._session.request(
            method,
            f"{self.base_url}{path}",
            headers=self._headers,
            timeout=REQUEST_TIMEOUT,
            **kwargs,
        )
        response.raise_for_status()
        return response


__all__ = ["RecipeBookClient"]
