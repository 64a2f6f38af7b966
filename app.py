"""WSGI entry point: ``flask --app app run`` or ``gunicorn app:app``."""
from __future__ import annotations

import logging
import os

from degrade_app import create_app


logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()


if __name__ == "__main__":
    app.run(debug=os.environ.get("FLASK_DEBUG") == "1")
