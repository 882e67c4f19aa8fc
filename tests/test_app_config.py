import datetime
import os
import unittest
from unittest import mock

from fitout_app import create_app
from fitout_app.client_project import RawCase, raw_case_to_client_project
from fitout_app.demo_data import DEMO_CASE_ID, seed_demo_data
from fitout_app.documents import DisabledDocumentStore, DocumentStore
from fitout_app.models import User
from fitout_app.timesheets import export_raw_time_entries
from tests.case_fixtures import TEST_CONFIG, AppTestCase


class CreateAppConfigTests(unittest.TestCase):
    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            app = create_app(TEST_CONFIG)

        self.assertTrue(app.config["DOCUMENT_STORE_ENABLED"])
        self.assertEqual(app.config["TIMESHEET_PAGE_SIZE"], 200)
        self.assertEqual(app.config["PORTAL_STREAM_HEARTBEAT_SECONDS"], 15)
        self.assertFalse(app.config["FITOUT_SEED_DEMO"])
        self.assertIsInstance(app.extensions["document_store"], DocumentStore)

    def test_environment(self):
        env = {
            "DOCUMENT_STORE_ENABLED": "no",
            "TIMESHEET_PAGE_SIZE": "-4",
            "PORTAL_STREAM_HEARTBEAT_SECONDS": "5",
            "FITOUT_SEED_DEMO": "yes",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            app = create_app(TEST_CONFIG)

        self.assertIsInstance(app.extensions["document_store"], DisabledDocumentStore)
        self.assertEqual(app.config["TIMESHEET_PAGE_SIZE"], 200)
        self.assertEqual(app.config["PORTAL_STREAM_HEARTBEAT_SECONDS"], 5)
        self.assertTrue(app.config["FITOUT_SEED_DEMO"])

    def test_overrides_win(self):
        with mock.patch.dict(os.environ, {"TIMESHEET_PAGE_SIZE": "50"}, clear=True):
            app = create_app(dict(TEST_CONFIG, TIMESHEET_PAGE_SIZE=25))
        self.assertEqual(app.config["TIMESHEET_PAGE_SIZE"], 25)


class DemoSeedTests(AppTestCase):
    def test_seed_is_idempotent_and_readable(self):
        today = datetime.date(2024, 3, 10)

        self.assertTrue(seed_demo_data(self.store, today=today))
        self.assertFalse(seed_demo_data(self.store, today=today))
        self.assertEqual(User.query.count(), 3)

        snapshot = self.store.get("cases", DEMO_CASE_ID)
        project = raw_case_to_client_project(RawCase.from_document(DEMO_CASE_ID, snapshot.data))
        self.assertEqual(project.current_stage_id, 2)
        self.assertEqual(project.total_paid, 250000)

        export = export_raw_time_entries(self.store, "2024-03-08", "2024-03-09")
        self.assertGreater(export.row_count, 2)


if __name__ == "__main__":
    unittest.main()
