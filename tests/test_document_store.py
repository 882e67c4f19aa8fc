import unittest

from fitout_app.documents import (
    SERVER_TIMESTAMP,
    DisabledDocumentStore,
    DocumentNotFoundError,
    DocumentStoreDisabledError,
)
from fitout_app.timestamps import RawTimestamp
from tests.case_fixtures import AppTestCase, utc


class DocumentStoreTests(AppTestCase):
    def test_missing_document(self):
        snapshot = self.store.get("cases", "nope")

        self.assertFalse(snapshot.exists)
        self.assertIsNone(snapshot.get("title"))

    def test_set_and_merge(self):
        self.store.set("cases", "c1", {"title": "A", "financial": {"totalBudget": 10}})
        self.store.set("cases", "c1", {"area": "100 sq ft"}, merge=True)

        snapshot = self.store.get("cases", "c1")
        self.assertEqual(snapshot.get("title"), "A")
        self.assertEqual(snapshot.get("area"), "100 sq ft")
        self.assertEqual(snapshot.get("financial.totalBudget"), 10)

    def test_set_without_merge_replaces(self):
        self.store.set("cases", "c1", {"title": "A"})
        self.store.set("cases", "c1", {"area": "x"})

        self.assertIsNone(self.store.get("cases", "c1").get("title"))

    def test_update_uses_field_paths(self):
        self.store.set("cases", "c1", {"health": {"status": "On Track", "riskLevel": "Low"}})
        self.store.update("cases", "c1", {"health.status": "At Risk"})

        snapshot = self.store.get("cases", "c1")
        self.assertEqual(snapshot.get("health"), {"status": "At Risk", "riskLevel": "Low"})
        self.assertEqual(snapshot.revision, 2)

    def test_update_missing_document_raises(self):
        with self.assertRaises(DocumentNotFoundError):
            self.store.update("cases", "ghost", {"title": "x"})

    def test_array_append(self):
        self.store.set("cases", "c1", {"chat": [{"id": "m1"}]})
        self.store.array_append("cases", "c1", "chat", {"id": "m2"}, {"id": "m3"})

        chat = self.store.get("cases", "c1").get("chat")
        self.assertEqual([m["id"] for m in chat], ["m1", "m2", "m3"])

    def test_array_append_creates_missing_array(self):
        self.store.set("cases", "c1", {})
        self.store.array_append("cases", "c1", "payments", {"id": "p1"})

        self.assertEqual(self.store.get("cases", "c1").get("payments"), [{"id": "p1"}])

    def test_timestamps_survive_storage(self):
        moment = utc(2024, 3, 1, 9, 30)
        self.store.set("cases", "c1", {"startDate": moment, "updatedAt": SERVER_TIMESTAMP})

        snapshot = self.store.get("cases", "c1")
        self.assertEqual(snapshot.get("startDate"), RawTimestamp.from_datetime(moment))
        self.assertIsInstance(snapshot.get("updatedAt"), RawTimestamp)

    def test_add_and_delete(self):
        doc_id = self.store.add("organizations", {"name": "Acme"})
        self.assertTrue(self.store.get("organizations", doc_id).exists)

        self.store.delete("organizations", doc_id)
        self.assertFalse(self.store.get("organizations", doc_id).exists)

    def test_query_filters_order_and_limit(self):
        for day, user in (("2024-03-03", "u1"), ("2024-03-01", "u2"), ("2024-03-02", "u1")):
            self.store.set("timeEntries", f"{user}_{day}", {"userId": user, "date": day, "tags": [user]})

        results = self.store.query(
            "timeEntries", [("userId", "==", "u1")], order_by="date"
        )
        self.assertEqual([s.get("date") for s in results], ["2024-03-02", "2024-03-03"])

        results = self.store.query(
            "timeEntries",
            [("date", ">=", "2024-03-01"), ("date", "<=", "2024-03-02")],
            order_by="date",
            descending=True,
            limit=1,
        )
        self.assertEqual([s.doc_id for s in results], ["u1_2024-03-02"])

        results = self.store.query("timeEntries", [("tags", "array-contains", "u2")])
        self.assertEqual([s.doc_id for s in results], ["u2_2024-03-01"])

    def test_iter_collection_pages(self):
        for idx in range(5):
            self.store.set("staffUsers", f"s{idx}", {"name": f"Staff {idx}"})

        ids = [s.doc_id for s in self.store.iter_collection("staffUsers", page_size=2)]
        self.assertEqual(ids, ["s0", "s1", "s2", "s3", "s4"])


class SubscriptionTests(AppTestCase):
    def test_current_snapshot_then_every_write(self):
        self.store.set("cases", "c1", {"title": "A"})
        seen = []

        unsubscribe = self.store.subscribe("cases", "c1", lambda s: seen.append(s.get("title")))
        self.store.update("cases", "c1", {"title": "B"})
        unsubscribe()
        self.store.update("cases", "c1", {"title": "C"})

        self.assertEqual(seen, ["A", "B"])
        self.assertEqual(self.store.listener_count("cases", "c1"), 0)

    def test_missing_document_is_delivered(self):
        seen = []
        unsubscribe = self.store.subscribe("cases", "ghost", seen.append)

        self.assertEqual(len(seen), 1)
        self.assertFalse(seen[0].exists)
        unsubscribe()
        unsubscribe()

    def test_failing_listener_does_not_block_others(self):
        self.store.set("cases", "c1", {"title": "A"})
        seen = []

        def broken(snapshot):
            raise RuntimeError("boom")

        with self.assertLogs(self.app.logger, level="ERROR"):
            self.store.subscribe("cases", "c1", broken)
        self.store.subscribe("cases", "c1", lambda s: seen.append(s.get("title")))

        with self.assertLogs(self.app.logger, level="ERROR"):
            self.store.update("cases", "c1", {"title": "B"})
        self.assertEqual(seen, ["A", "B"])


class DisabledStoreTests(unittest.TestCase):
    def test_every_operation_refuses(self):
        store = DisabledDocumentStore()
        calls = [
            lambda: store.get("cases", "c1"),
            lambda: store.query("cases"),
            lambda: store.set("cases", "c1", {}),
            lambda: store.update("cases", "c1", {}),
            lambda: store.array_append("cases", "c1", "chat", {}),
            lambda: store.subscribe("cases", "c1", print),
        ]
        for call in calls:
            with self.assertRaises(DocumentStoreDisabledError):
                call()
        self.assertFalse(store.enabled)


if __name__ == "__main__":
    unittest.main()
