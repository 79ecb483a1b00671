"""
Database initialization script for deployment
Run with: python init_db.py
"""

import os

from app import app as default_app, db
from models import User


def initialize_database(app=None):
    """Create tables and the first organizer account from the environment"""
    app = app or default_app
    with app.app_context():
        app.logger.info("Creating database tables...")
        db.create_all()

        username = os.environ.get('ORGANIZER_USERNAME')
        email = os.environ.get('ORGANIZER_EMAIL')
        password = os.environ.get('ORGANIZER_PASSWORD')
        if not (username and email and password):
            app.logger.info("No ORGANIZER_* variables set; skipping organizer bootstrap")
            return None

        existing = User.query.filter_by(username=username).first()
        if existing:
            app.logger.info("Organizer %s already exists", username)
            return existing

        errors = User.validate_format(username, email, password, 'organizer')
        if errors:
            raise SystemExit("; ".join(errors))

        organizer = User(username=username, email=email, role='organizer')
        organizer.set_password(password)
        db.session.add(organizer)
        db.session.commit()
        app.logger.info("Organizer %s created", username)
        return organizer


if __name__ == "__main__":
    initialize_database()
