import logging
import os

from flask import Flask
from flask_caching import Cache
from flask_sqlalchemy import SQLAlchemy

from config import config

logger = logging.getLogger(__name__)

db = SQLAlchemy()
cache = Cache()


def create_app(config_name=None, start_scheduler=False):
    """
    Build the application.

    The background scheduler only runs in the worker process
    (start_scheduler=True); CLI invocations and tests never start it.
    """
    app = Flask(__name__)

    # Determine configuration
    if config_name is None:
        config_name = os.environ.get("FLASK_CONFIG", "default")

    app.config.from_object(config[config_name]())

    # Initialize extensions
    db.init_app(app)
    cache.init_app(app)

    # Setup logging
    from ats_pickem.utils.logging_config import setup_logging

    setup_logging(app)

    # Show configuration warnings
    show_config_warnings(app, config_name)

    # Create database tables
    with app.app_context():
        db.create_all()

    # Initialize and start background scheduler
    if start_scheduler and not app.config.get("TESTING", False):
        from ats_pickem.services.scheduler_service import scheduler_service

        scheduler_service.init_app(app)

    return app


def show_config_warnings(app, config_name):
    """Log configuration status"""
    import warnings

    logger.info(f"ATS Pick'em starting with '{config_name}' configuration")

    if config_name == "production" and app.config.get("DEBUG"):
        warnings.warn("DEBUG mode is enabled in production!", UserWarning)

    db_url = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if "sqlite" in db_url:
        if "memory" in db_url:
            logger.info("Using SQLite database (in-memory)")
        else:
            logger.info("Using SQLite database file")
    elif "postgresql" in db_url:
        # Extract host and database name for display (hide password)
        import re

        match = re.search(r"postgresql.*?://.*?@([^:/]+):?(\d+)?/([^?]+)", db_url)
        if match:
            host, port, dbname = match.groups()
            logger.info(f"Using PostgreSQL database {dbname} at {host}:{port or '5432'}")
        else:
            logger.info("Using PostgreSQL database")
    else:
        logger.info(
            f"Using database: {db_url.split('://')[0] if '://' in db_url else 'Unknown'}"
        )


from ats_pickem import models  # noqa: F401, E402 - imported for model registration
