import sys

from fitout_app import create_app, db
from fitout_app.demo_data import DEMO_CASE_ID, seed_demo_data
from fitout_app.documents import get_document_store


def main():
    app = create_app({"DOCUMENT_STORE_ENABLED": True})
    with app.app_context():
        db.create_all()
        if seed_demo_data(get_document_store()):
            print(f"Seeded case '{DEMO_CASE_ID}' into {app.config['SQLALCHEMY_DATABASE_URI']}.")
            print("Logins: admin/admin, site/site, client/client")
        else:
            print(f"Case '{DEMO_CASE_ID}' already exists; nothing to do.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
