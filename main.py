"""WSGI entrypoint for the recipe book API.

The Flask development server is intentionally not started from this module so
that deployments rely on Gunicorn. Local development can still use
``flask --app main run`` which imports the ``app`` object defined below.
Set ``RECIPES_BACKEND=local`` to serve the embedded SQLite store instead of
Firestore.
"""

import logging
import os

from recipebook import create_app

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()


__all__ = ["app"]
