import os

from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager

try:
    from flask_wtf.csrf import CSRFProtect
except ImportError as exc:  # pragma: no cover - startup dependency guard
    raise ImportError(
        "Flask-WTF is required to run this application. Activate your virtual "
        "environment and install dependencies with `pip install -e .` "
        "(or install Flask-WTF directly with `pip install Flask-WTF`) before "
        "launching the server."
    ) from exc


BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))

db = SQLAlchemy()
login_manager = LoginManager()
csrf = CSRFProtect()


def _env_flag(name, default):
    raw_value = os.environ.get(name)
    if raw_value is None:
        return default
    return str(raw_value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_positive_int(name, default):
    raw_value = os.environ.get(name)
    if not raw_value:
        return default
    try:
        parsed = int(raw_value)
        if parsed > 0:
            return parsed
    except ValueError:
        pass
    return default


def create_app(config_overrides=None):
    from fitout_app.documents import DisabledDocumentStore, DocumentStore

    app = Flask(__name__, instance_relative_config=True)

    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-fitout-secret")
    app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get(
        "SQLALCHEMY_DATABASE_URI",
        "sqlite:///" + os.path.join(BASE_DIR, "instance", "fitout.db"),
    )
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["DOCUMENT_STORE_ENABLED"] = _env_flag("DOCUMENT_STORE_ENABLED", True)
    app.config["TIMESHEET_PAGE_SIZE"] = _env_positive_int("TIMESHEET_PAGE_SIZE", 200)
    app.config["PORTAL_STREAM_HEARTBEAT_SECONDS"] = _env_positive_int(
        "PORTAL_STREAM_HEARTBEAT_SECONDS", 15
    )
    app.config["FITOUT_SEED_DEMO"] = _env_flag("FITOUT_SEED_DEMO", False)

    if config_overrides:
        app.config.update(config_overrides)

    db.init_app(app)
    login_manager.init_app(app)
    csrf.init_app(app)

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///"):
        os.makedirs(os.path.join(BASE_DIR, "instance"), exist_ok=True)

    if app.config["DOCUMENT_STORE_ENABLED"]:
        app.extensions["document_store"] = DocumentStore(db)
    else:
        app.extensions["document_store"] = DisabledDocumentStore()

    from fitout_app import models  # noqa: F401
    from fitout_app.portal_routes import portal_bp
    from fitout_app.staff_routes import staff_bp

    app.register_blueprint(portal_bp)
    app.register_blueprint(staff_bp)

    return app
