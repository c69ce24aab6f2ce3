import unittest

import mongomock
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db
from main import app


class ApiTestCase(unittest.TestCase):
    """Runs the app against a fresh in-memory Mongo database per test."""

    def setUp(self):
        self.db = mongomock.MongoClient()["health_test"]
        ensure_indexes(self.db)
        app.dependency_overrides[get_db] = lambda: self.db
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()

    def register(self, email="jane@example.com", password="s3cret", full_name="Jane Doe"):
        return self.client.post(
            "/api/register",
            json={"fullName": full_name, "email": email, "password": password},
        )

    def login(self, email="jane@example.com", password="s3cret"):
        return self.client.post("/api/login", json={"email": email, "password": password})

    def auth_headers(self, email="jane@example.com", password="s3cret"):
        self.register(email=email, password=password)
        token = self.login(email=email, password=password).json()["token"]
        return {"Authorization": f"Bearer {token}"}
