# backend/repairdesk/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    level = app.config.get("LOG_LEVEL", "INFO")
    logging.getLogger("repairdesk").setLevel(level)
    app.logger.setLevel(level)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
