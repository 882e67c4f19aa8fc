import datetime
import unittest

from fitout_app.case_writes import (
    CaseWriteError,
    append_daily_log,
    respond_to_approval,
    send_chat_message,
    submit_payment,
    update_installment_schedule,
    update_project_health,
)
from fitout_app.documents import DocumentNotFoundError
from fitout_app.timestamps import RawTimestamp
from tests.case_fixtures import AppTestCase, sample_case, utc


class CaseWriteTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.store.set("cases", "c1", sample_case())

    def case(self):
        return self.store.get("cases", "c1")

    def test_chat_message_is_appended(self):
        entry = send_chat_message(
            self.store, "c1", sender_id="u1", sender_name="Asha", role="client", message="  Hi  "
        )

        chat = self.case().get("chat")
        self.assertEqual(len(chat), 1)
        self.assertEqual(chat[0]["message"], "Hi")
        self.assertEqual(chat[0]["id"], entry["id"])
        self.assertIsInstance(chat[0]["timestamp"], RawTimestamp)

    def test_empty_chat_message_is_rejected(self):
        with self.assertRaises(CaseWriteError):
            send_chat_message(self.store, "c1", sender_id="u1", sender_name="A", role="client", message=" ")
        self.assertIsNone(self.case().get("chat"))

    def test_attachment_only_message_is_allowed(self):
        send_chat_message(
            self.store, "c1", sender_id="u1", sender_name="A", role="client", message="",
            message_type="image", attachments=["/uploads/a.png"],
        )
        self.assertEqual(self.case().get("chat")[0]["attachments"], ["/uploads/a.png"])

    def test_single_attachment_string_is_kept_whole(self):
        send_chat_message(
            self.store, "c1", sender_id="u1", sender_name="A", role="client", message="",
            message_type="image", attachments="https://x/a.png",
        )
        self.assertEqual(self.case().get("chat")[0]["attachments"], ["https://x/a.png"])

    def test_attachments_must_be_a_list(self):
        with self.assertRaises(CaseWriteError) as ctx:
            send_chat_message(
                self.store, "c1", sender_id="u1", sender_name="A", role="client", message="see",
                attachments={"url": "/uploads/a.png"},
            )
        self.assertEqual(ctx.exception.errors, ["Attachments must be a list."])
        self.assertIsNone(self.case().get("chat"))

    def test_chat_to_missing_case(self):
        with self.assertRaises(DocumentNotFoundError):
            send_chat_message(self.store, "ghost", sender_id="u", sender_name="A", role="client", message="x")

    def test_daily_log(self):
        append_daily_log(
            self.store, "c1", date="2024-03-09", work_description="Gypsum ceiling",
            completion_percent="55", manpower_count="7", added_by="eng-1",
        )

        log = self.case().get("dailyLogs")[0]
        self.assertEqual(log["date"], RawTimestamp.from_datetime(utc(2024, 3, 9)))
        self.assertEqual(log["completionPercent"], 55.0)
        self.assertEqual(log["manpowerCount"], 7)
        self.assertNotIn("blocker", log)

    def test_daily_log_validation(self):
        with self.assertRaises(CaseWriteError) as ctx:
            append_daily_log(
                self.store, "c1", date="", work_description="", completion_percent=120,
                manpower_count=-1,
            )
        self.assertEqual(len(ctx.exception.errors), 4)

    def test_daily_log_single_photo_string(self):
        append_daily_log(
            self.store, "c1", date="2024-03-09", work_description="Tiling", photos="/p/1.jpg"
        )
        self.assertEqual(self.case().get("dailyLogs")[0]["photos"], ["/p/1.jpg"])

    def test_daily_log_photos_must_be_a_list(self):
        with self.assertRaises(CaseWriteError) as ctx:
            append_daily_log(
                self.store, "c1", date="2024-03-09", work_description="Tiling", photos=42
            )
        self.assertEqual(ctx.exception.errors, ["Photos must be a list."])

    def test_daily_log_accepts_date_objects(self):
        append_daily_log(self.store, "c1", date=datetime.date(2024, 3, 1), work_description="Paint")
        self.assertEqual(
            self.case().get("dailyLogs")[0]["date"], RawTimestamp.from_datetime(utc(2024, 3, 1))
        )

    def test_installment_schedule_replaced_and_pending_total(self):
        cleaned = update_installment_schedule(
            self.store,
            "c1",
            [
                {"id": "i1", "milestoneName": "Booking", "amount": "50000", "percentage": 20,
                 "status": "Paid", "dueDate": "2024-02-01"},
                {"milestoneName": "Civil", "amount": 80000, "percentage": 30, "status": "Pending"},
                {"milestoneName": "Handover", "amount": 120000, "percentage": 50, "status": "Overdue",
                 "dueDate": "2024-04-01"},
            ],
        )

        financial = self.case().get("financial")
        self.assertEqual(len(financial["installmentSchedule"]), 3)
        self.assertEqual(financial["totalPending"], 200000)
        self.assertEqual(financial["totalBudget"], 250000)
        self.assertIsInstance(financial["installmentSchedule"][0]["paidAt"], RawTimestamp)
        self.assertIsNone(financial["installmentSchedule"][1]["dueDate"])
        self.assertTrue(cleaned[1]["id"])

    def test_installment_schedule_rejects_unknown_status(self):
        with self.assertRaises(CaseWriteError):
            update_installment_schedule(
                self.store, "c1", [{"milestoneName": "Booking", "amount": 1, "status": "Settled"}]
            )
        self.assertEqual(len(self.case().get("financial.installmentSchedule")), 2)

    def test_approve(self):
        approval = respond_to_approval(
            self.store, "c1", "a1", actor_id="client-uid-1", approve=True, notes="Looks good"
        )

        stored = self.case().get("approvals")[0]
        self.assertEqual(approval["status"], "approved")
        self.assertEqual(stored["status"], "approved")
        self.assertEqual(stored["payload"]["notes"], "Looks good")
        self.assertEqual(stored["resolvedBy"], "client-uid-1")
        self.assertEqual(stored["clientAction"]["action"], "APPROVE")

    def test_reject_requires_reason(self):
        with self.assertRaises(CaseWriteError):
            respond_to_approval(self.store, "c1", "a1", actor_id="u", approve=False)

        respond_to_approval(self.store, "c1", "a1", actor_id="u", approve=False, reason="Wrong colour")
        stored = self.case().get("approvals")[0]
        self.assertEqual(stored["status"], "rejected")
        self.assertEqual(stored["rejectionReason"], "Wrong colour")

    def test_unknown_approval(self):
        with self.assertRaises(LookupError):
            respond_to_approval(self.store, "c1", "zzz", actor_id="u", approve=True)

    def test_payment_submission(self):
        entry = submit_payment(
            self.store, "c1", amount="150000", method="UTR", value="UTR123", submitted_by="client-uid-1"
        )

        stored = self.case().get("payments")[0]
        self.assertEqual(entry["status"], "pending_verification")
        self.assertEqual(stored["utr"], "UTR123")
        self.assertEqual(stored["receiptUrl"], "")
        self.assertFalse(stored["verified"])

    def test_payment_validation(self):
        with self.assertRaises(CaseWriteError) as ctx:
            submit_payment(self.store, "c1", amount="0", method="Cash", value="", submitted_by="u")
        self.assertEqual(len(ctx.exception.errors), 3)

    def test_project_health(self):
        update_project_health(
            self.store, "c1", status="Minor Delay", risk_level="Medium",
            completion_percentage=62, total_budget="300000",
        )

        snapshot = self.case()
        self.assertEqual(snapshot.get("health.status"), "Minor Delay")
        self.assertEqual(snapshot.get("health.riskLevel"), "Medium")
        self.assertEqual(snapshot.get("health.completionPercentage"), 62)
        self.assertIsInstance(snapshot.get("health.lastUpdated"), RawTimestamp)
        self.assertEqual(snapshot.get("financial.totalBudget"), 300000)
        self.assertEqual(len(snapshot.get("financial.installmentSchedule")), 2)

    def test_project_health_validation(self):
        with self.assertRaises(CaseWriteError):
            update_project_health(self.store, "c1", status="Fine", risk_level="Low")


if __name__ == "__main__":
    unittest.main()
