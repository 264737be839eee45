"""
WSGI entry point (gunicorn wsgi:app) and Flask-Migrate target.

Usage:
    gunicorn wsgi:app
    FLASK_APP=wsgi flask adapt-schema
    FLASK_APP=wsgi flask db upgrade
"""

from docflow import create_app

app = create_app()
