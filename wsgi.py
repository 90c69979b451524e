"""
WSGI entry point; also used by Flask-Migrate / Alembic.

Usage:
    flask --app wsgi run
    flask --app wsgi db upgrade
    flask --app wsgi create-superadmin admin <password>
"""

from formcapture import create_app

app = create_app()
