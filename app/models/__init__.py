"""
Solution Approval Tracker
SQLAlchemy extension instance shared by all model modules.

Usage:
    from app.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
