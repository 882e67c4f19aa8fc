import threading

from fitout_app import create_app, db
from fitout_app.demo_data import seed_demo_data
from fitout_app.documents import get_document_store

app = create_app()


def bootstrap_db():
    db.create_all()
    if app.config["FITOUT_SEED_DEMO"] and app.config["DOCUMENT_STORE_ENABLED"]:
        if seed_demo_data(get_document_store()):
            app.logger.info("Seeded demo case and users")


@app.cli.command("initdb")
def initdb():
    """Create tables and, when FITOUT_SEED_DEMO is set, the demo case."""
    bootstrap_db()
    print("Database initialized.")


_bootstrap_lock = threading.Lock()
_bootstrapped = False


def ensure_bootstrap():
    global _bootstrapped
    if _bootstrapped:
        return
    with _bootstrap_lock:
        if _bootstrapped:
            return
        try:
            bootstrap_db()
            _bootstrapped = True
        except Exception as exc:
            app.logger.exception("Database bootstrap failed: %s", exc)


@app.before_request
def _ensure_db_ready():
    ensure_bootstrap()


if __name__ == "__main__":
    with app.app_context():
        bootstrap_db()
    app.run(debug=True, threaded=True)
