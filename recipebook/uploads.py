"""Client side half of the two-step image upload.

The client first asks the backend for an :class:`~recipebook.models.UploadTarget`
and then transfers the bytes straight to storage with :func:`upload_image`. The
returned storage id is passed along with the recipe on create or update.
"""

from __future__ import annotations

import logging
from typing import Optional

import requests

from .errors import UploadError
from .models import UploadTarget

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 60  # seconds


def upload_image(
    target: UploadTarget,
    data: bytes,
    content_type: str = "image/jpeg",
    session: Optional[requests.Session] = None,
) -> str:
    """PUT ``data`` to the signed upload URL and return its storage id.

    Raises :class:`UploadError` when storage answers with a non-2xx status; the
    caller should abort the create or update it was preparing.
    """

    http = session or requests
    response = http.put(
        target.url,
        data=data,
        headers={
            "Content-Type": content_type,
            "x-goog-if-generation-match": "0",
        },
        timeout=REQUEST_TIMEOUT,
    )

    if not 200 <= response.status_code < 300:
        logger.error(
            "Image upload to %s failed with HTTP %s", target.storage_id, response.status_code
        )
        raise UploadError(response.status_code)

    return target.storage_id


__all__ = ["upload_image"]
