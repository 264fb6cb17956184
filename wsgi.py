"""
WSGI entry point for the Dossier Workflow Platform.

Usage:
    flask --app wsgi run
    FLASK_APP=wsgi flask db upgrade       # apply migrations/
    FLASK_APP=wsgi flask db migrate -m "description"
"""

from app import create_app

app = create_app()
