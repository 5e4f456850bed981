"""
Flask-Migrate / Alembic / WSGI entry point.

Usage:
    flask --app wsgi db upgrade
    gunicorn wsgi:app
"""

from auditflow import create_app

app = create_app()
