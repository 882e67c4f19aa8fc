import copy
import datetime
import unittest

from fitout_app import create_app, db


TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "WTF_CSRF_ENABLED": False,
    "SECRET_KEY": "test-secret",
}


def utc(year, month, day, hour=0, minute=0, second=0):
    return datetime.datetime(year, month, day, hour, minute, second, tzinfo=datetime.timezone.utc)


NOW = utc(2024, 3, 10, 12)

BASE_CASE = {
    "schemaVersion": 1,
    "title": "Skyline Office",
    "clientName": "Asha Rao",
    "clientEmail": "asha@example.com",
    "clientUid": "client-uid-1",
    "projectType": "Office Interior",
    "area": "2,000 sq ft",
    "financial": {
        "totalBudget": 250000,
        "installmentSchedule": [
            {"id": "i1", "milestoneName": "Booking", "percentage": 40, "amount": 100000,
             "status": "Paid", "dueDate": "2024-02-01T00:00:00Z"},
            {"id": "i2", "milestoneName": "Handover", "percentage": 60, "amount": 150000,
             "status": "Pending", "dueDate": "2024-03-20T00:00:00Z"},
        ],
    },
    "executionPlan": {
        "startDate": "2024-02-01T00:00:00Z",
        "endDate": "2024-04-01T00:00:00Z",
        "phases": [
            {"name": "Civil", "status": "completed",
             "startDate": "2024-02-01T00:00:00Z", "endDate": "2024-02-20T00:00:00Z"},
            {"name": "Carpentry", "status": "in_progress",
             "startDate": "2024-02-20T00:00:00Z", "endDate": "2024-03-15T00:00:00Z"},
            {"name": "Finishing", "status": "pending",
             "startDate": "2024-03-15T00:00:00Z", "endDate": "2024-04-01T00:00:00Z"},
        ],
    },
    "approvals": [
        {"id": "a1", "type": "design_change", "status": "pending",
         "createdAt": "2024-03-01T09:00:00Z"},
    ],
    "health": {"status": "On Track", "riskLevel": "Low", "completionPercentage": 40},
}


def sample_case(**overrides):
    data = copy.deepcopy(BASE_CASE)
    data.update(overrides)
    return data


class AppTestCase(unittest.TestCase):
    config_overrides = {}

    def setUp(self):
        config = dict(TEST_CONFIG)
        config.update(self.config_overrides)
        self.app = create_app(config)
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.create_all()
        self.store = self.app.extensions["document_store"]

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.ctx.pop()
