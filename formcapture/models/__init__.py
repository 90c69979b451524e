"""
Form Capture Platform
SQLAlchemy database handle shared by all models.

Usage:
    from formcapture.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
