import logging

from flask_sqlalchemy import SQLAlchemy

logger = logging.getLogger(__name__)

db = SQLAlchemy()


def init_db(app):
    """Create missing tables for in-memory/test databases. Real databases use migrations."""
    if app.config.get('TESTING') or app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite'):
        with app.app_context():
            from app.models import flow  # noqa: F401  registers tables
            db.create_all()
            logger.info("Database tables created")
