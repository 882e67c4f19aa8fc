import datetime
import uuid

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from fitout_app import db, login_manager


CLIENT_ROLE = "client"
STAFF_ROLES = (
    "super_admin",
    "admin",
    "manager",
    "sales",
    "execution",
    "accounts",
    "drawing",
)
TIMESHEET_REPORT_ROLES = ("super_admin", "admin", "manager")


def _is_password_hashed(value):
    if not value:
        return False
    return value.startswith(("pbkdf2:", "scrypt:"))


class User(UserMixin, db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    uid = db.Column(
        db.String(36),
        unique=True,
        nullable=False,
        default=lambda: str(uuid.uuid4()),
    )
    username = db.Column(db.String(80), unique=True, nullable=False)
    password = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(160), nullable=True)
    email = db.Column(db.String(120), nullable=True)
    role = db.Column(db.String(40), nullable=False, default=CLIENT_ROLE)
    organization_id = db.Column(db.String(80), nullable=True)
    active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.datetime.utcnow)

    @property
    def display_name(self):
        return self.name or self.username

    @property
    def is_active(self):
        return bool(self.active)

    @property
    def normalized_role(self):
        return (self.role or "").strip().lower()

    @property
    def is_client(self):
        return self.normalized_role == CLIENT_ROLE

    @property
    def can_export_timesheets(self):
        return self.normalized_role in TIMESHEET_REPORT_ROLES

    def set_password(self, raw_password: str):
        if raw_password is None:
            return
        self.password = generate_password_hash(raw_password)

    def verify_password(self, raw_password: str) -> bool:
        if not raw_password:
            return False
        if _is_password_hashed(self.password):
            try:
                return check_password_hash(self.password, raw_password)
            except ValueError:
                return False
        return self.password == raw_password


class StoredDocument(db.Model):
    """One JSON document of a collection; the body lives in ``data_json``."""

    __tablename__ = "stored_document"
    __table_args__ = (
        db.UniqueConstraint("collection", "doc_id", name="uq_stored_document_path"),
    )

    id = db.Column(db.Integer, primary_key=True)
    collection = db.Column(db.String(120), nullable=False, index=True)
    doc_id = db.Column(db.String(120), nullable=False)
    data_json = db.Column(db.Text, nullable=False, default="{}")
    revision = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=datetime.datetime.utcnow)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.datetime.utcnow,
        onupdate=datetime.datetime.utcnow,
    )

    @property
    def path(self):
        return f"{self.collection}/{self.doc_id}"


@login_manager.user_loader
def load_user(user_id):
    try:
        return db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None
