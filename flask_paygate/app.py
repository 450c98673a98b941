"""Application factory for running flask-paygate as a standalone site.

Run with::

    export FLASK_SECRET_KEY=change-me
    export FLASK_STRIPE_SECRET_KEY=sk_test_...
    export FLASK_PAYPAL_CLIENT_ID=... FLASK_PAYPAL_CLIENT_SECRET=...
    flask --app flask_paygate.app paygate init-db
    flask --app flask_paygate.app run
"""

from __future__ import annotations

import logging
import secrets
from typing import Any

from flask import Flask
from flask_admin import Admin
from flask_sqlalchemy import SQLAlchemy

from flask_paygate import Paygate
from flask_paygate.contrib.sqla import PaygateAdminIndexView
from flask_paygate.models import Base

db = SQLAlchemy(model_class=Base)

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    package_logger = logging.getLogger("flask_paygate")
    package_logger.setLevel(level.upper())
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
        package_logger.addHandler(handler)


def create_app(config: dict[str, Any] | None = None) -> Flask:
    """Build the site.

    Settings come from ``FLASK_``-prefixed environment variables (e.g.
    ``FLASK_STRIPE_SECRET_KEY``); *config* overrides them. ``SECRET_KEY`` is
    required unless ``TESTING`` or ``DEBUG`` is on, where a random per-process
    key is used instead.
    """
    app = Flask(__name__)
    app.config["SQLALCHEMY_DATABASE_URI"] = "sqlite:///paygate.db"
    app.config["PAYGATE_LOG_LEVEL"] = "INFO"
    app.config.from_prefixed_env()
    if config:
        app.config.update(config)

    _configure_logging(app.config["PAYGATE_LOG_LEVEL"])

    if not app.config.get("SECRET_KEY"):
        if not (app.testing or app.debug):
            raise RuntimeError("SECRET_KEY is not set; export FLASK_SECRET_KEY before starting the site.")
        logger.warning("SECRET_KEY is not set; sessions will not survive a restart")
        app.config["SECRET_KEY"] = secrets.token_hex(32)

    db.init_app(app)
    admin = Admin(name="Paygate Admin", index_view=PaygateAdminIndexView())
    admin.init_app(app)
    Paygate(app, db=db, admin=admin)
    return app
