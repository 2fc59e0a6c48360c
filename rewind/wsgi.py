"""WSGI entrypoint: ``gunicorn -c rewind/gunicorn.conf.py rewind.wsgi:app``."""

from __future__ import annotations

import os

from rewind import create_app

app = create_app(os.environ.get("APP_ENV"))

if __name__ == "__main__":
    app.run(host=os.environ.get("FLASK_RUN_HOST", "127.0.0.1"), port=app.config["PORT"])
