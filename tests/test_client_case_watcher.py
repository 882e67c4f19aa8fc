import unittest

from fitout_app.case_writes import send_chat_message
from fitout_app.client_case import NOT_FOUND_MESSAGE, ClientCaseState, ClientCaseWatcher
from fitout_app.documents import (
    DISABLED_MESSAGE,
    DisabledDocumentStore,
    DocumentSnapshot,
    DocumentStoreError,
)
from tests.case_fixtures import NOW, AppTestCase, sample_case


class ScriptedStore:
    """Hands the test the callbacks of the last subscription."""

    def __init__(self):
        self.on_snapshot = None
        self.on_error = None
        self.unsubscribed = 0

    def subscribe(self, collection, doc_id, on_snapshot, on_error=None):
        self.on_snapshot = on_snapshot
        self.on_error = on_error

        def unsubscribe():
            self.unsubscribed += 1

        return unsubscribe


class ClientCaseWatcherTests(AppTestCase):
    def make_watcher(self, store=None):
        watcher = ClientCaseWatcher(store or self.store, clock=lambda: NOW)
        self.states = []
        watcher.add_listener(self.states.append)
        return watcher

    def test_empty_id_stays_loading_without_subscribing(self):
        watcher = self.make_watcher()
        watcher.watch("")

        self.assertEqual(watcher.state, ClientCaseState(project=None, loading=True, error=None))
        self.assertFalse(watcher.is_subscribed)

    def test_existing_case_is_projected(self):
        self.store.set("cases", "c1", sample_case())
        watcher = self.make_watcher()
        watcher.watch("c1")

        state = watcher.state
        self.assertFalse(state.loading)
        self.assertIsNone(state.error)
        self.assertEqual(state.project.project_id, "c1")
        self.assertEqual(state.project.total_paid, 100000)
        self.assertTrue(watcher.is_subscribed)
        self.assertEqual(self.store.listener_count("cases", "c1"), 1)

    def test_missing_case_reports_not_found_and_unsubscribes(self):
        watcher = self.make_watcher()
        watcher.watch("ghost")

        self.assertEqual(
            watcher.state, ClientCaseState(project=None, loading=False, error=NOT_FOUND_MESSAGE)
        )
        self.assertFalse(watcher.is_subscribed)
        self.assertEqual(self.store.listener_count("cases", "ghost"), 0)

    def test_deleted_case_reports_not_found(self):
        self.store.set("cases", "c1", sample_case())
        watcher = self.make_watcher()
        watcher.watch("c1")

        self.store.delete("cases", "c1")

        self.assertEqual(watcher.state.error, NOT_FOUND_MESSAGE)
        self.assertIsNone(watcher.state.project)
        self.assertEqual(self.store.listener_count("cases", "c1"), 0)

    def test_write_through_helper_republishes(self):
        self.store.set("cases", "c1", sample_case())
        watcher = self.make_watcher()
        watcher.watch("c1")
        published = len(self.states)

        send_chat_message(
            self.store, "c1", sender_id="u1", sender_name="Asha", role="client", message="Hello"
        )

        self.assertEqual(len(self.states), published + 1)
        self.assertEqual([m.message for m in watcher.state.project.chat], ["Hello"])

    def test_switching_cases_drops_the_old_subscription(self):
        self.store.set("cases", "c1", sample_case())
        self.store.set("cases", "c2", sample_case(title="Second"))
        watcher = self.make_watcher()

        watcher.watch("c1")
        watcher.watch("c2")

        self.assertEqual(self.store.listener_count("cases", "c1"), 0)
        self.assertEqual(self.store.listener_count("cases", "c2"), 1)
        self.assertEqual(watcher.state.project.project_name, "Second")

    def test_close_unsubscribes(self):
        self.store.set("cases", "c1", sample_case())
        watcher = self.make_watcher()
        watcher.watch("c1")
        watcher.close()

        self.assertEqual(self.store.listener_count("cases", "c1"), 0)
        self.assertFalse(watcher.is_subscribed)

    def test_transport_error_keeps_previous_project(self):
        store = ScriptedStore()
        watcher = self.make_watcher(store)
        watcher.watch("c1")
        store.on_snapshot(DocumentSnapshot("cases", "c1", sample_case()))
        previous = watcher.state.project

        with self.assertLogs(self.app.logger, level="WARNING"):
            store.on_error(DocumentStoreError("connection reset"))

        self.assertIs(watcher.state.project, previous)
        self.assertFalse(watcher.state.loading)
        self.assertEqual(watcher.state.error, "connection reset")
        self.assertEqual(store.unsubscribed, 0)

    def test_stale_callbacks_are_ignored(self):
        store = ScriptedStore()
        watcher = self.make_watcher(store)
        watcher.watch("c1")
        stale = store.on_snapshot
        watcher.watch("c2")
        store.on_snapshot(DocumentSnapshot("cases", "c2", sample_case(title="Current")))

        stale(DocumentSnapshot("cases", "c1", sample_case(title="Old")))

        self.assertEqual(watcher.state.project.project_name, "Current")
        self.assertEqual(store.unsubscribed, 1)

    def test_newer_schema_surfaces_as_error(self):
        self.store.set("cases", "c1", sample_case(schemaVersion=5))
        watcher = self.make_watcher()

        with self.assertLogs(self.app.logger, level="WARNING"):
            watcher.watch("c1")

        self.assertIsNone(watcher.state.project)
        self.assertFalse(watcher.state.loading)
        self.assertIn("schema version 5", watcher.state.error)

    def test_disabled_store(self):
        watcher = self.make_watcher(DisabledDocumentStore())
        watcher.watch("c1")

        self.assertEqual(
            watcher.state, ClientCaseState(project=None, loading=False, error=DISABLED_MESSAGE)
        )
        self.assertFalse(watcher.is_subscribed)


if __name__ == "__main__":
    unittest.main()
