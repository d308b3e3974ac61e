# Overview: Flask extension instances for database and migrations.

from __future__ import annotations

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy.orm import Session

db = SQLAlchemy()
migrate = Migrate()


def get_session(session: Session | None = None) -> Session:
    """Return the injected session, or the app-scoped one when none was given."""
    if session is not None:
        return session
    return db.session
