"""
Railway Coach Inspection Service
SQLAlchemy extension instance shared by every model module.

Usage:
    from railinspect.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

MODULE_TYPES = ("WSP", "SICKLINE", "COMMISSIONARY", "CAI", "PITLINE")
