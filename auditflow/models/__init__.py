"""
Audit Engagement Workflow — SQLAlchemy models.

``db`` is the shared Flask-SQLAlchemy handle; model modules import it from
here and are themselves imported by the app factory so Alembic sees them.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
