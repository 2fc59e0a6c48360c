"""Flask extensions shared across Rewind."""

from pathlib import Path

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

# Token sets, in-flight authorizations and revoked session ids
db = SQLAlchemy(session_options={"expire_on_commit": False})
migrate = Migrate()
# Limits, storage and on/off come from the RATELIMIT_* config keys at init_app
limiter = Limiter(key_func=get_remote_address)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


def init_extensions(app) -> None:
    db.init_app(app)
    migrate.init_app(app, db, directory=str(MIGRATIONS_DIR))
    limiter.init_app(app)
