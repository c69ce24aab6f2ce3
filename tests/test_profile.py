import os
import tempfile
import unittest
from unittest.mock import patch

from tests.helpers import ApiTestCase


class ProfileTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.headers = self.auth_headers()

    def test_profile_excludes_password(self):
        response = self.client.get("/api/user-profile", headers=self.headers)
        self.assertEqual(response.status_code, 200)
        profile = response.json()
        self.assertEqual(profile["fullName"], "Jane Doe")
        self.assertEqual(profile["name"], "Jane Doe")
        self.assertEqual(profile["bloodType"], "")
        self.assertNotIn("password", profile)
        self.assertNotIn("password_hash", profile)

    def test_partial_update_keeps_omitted_fields(self):
        response = self.client.put(
            "/api/update-profile",
            data={"phone": "555", "bloodType": "O+"},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["message"], "Profile updated successfully!")

        profile = self.client.get("/api/user-profile", headers=self.headers).json()
        self.assertEqual(profile["phone"], "555")
        self.assertEqual(profile["bloodType"], "O+")
        self.assertEqual(profile["fullName"], "Jane Doe")
        self.assertEqual(profile["email"], "jane@example.com")

    def test_empty_string_clears_field(self):
        self.client.put("/api/update-profile", data={"address": "1 Main St"}, headers=self.headers)
        response = self.client.put("/api/update-profile", data={"address": ""}, headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["user"]["address"], "")

    def test_update_without_fields_returns_profile(self):
        response = self.client.put("/api/update-profile", headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["user"]["fullName"], "Jane Doe")

    def test_email_taken_by_another_user_conflicts(self):
        self.register(email="other@example.com")
        response = self.client.put(
            "/api/update-profile", data={"email": "other@example.com"}, headers=self.headers
        )
        self.assertEqual(response.status_code, 400)

    def test_invalid_email_is_rejected(self):
        response = self.client.put(
            "/api/update-profile", data={"email": "not-an-email"}, headers=self.headers
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"][0]["loc"], ["body", "email"])

    def test_image_upload_sets_profile_img(self):
        with tempfile.TemporaryDirectory() as upload_dir, patch("main.UPLOAD_DIR", upload_dir):
            response = self.client.put(
                "/api/update-profile",
                data={"weight": "70"},
                files={"profileImage": ("me.png", b"\x89PNG fake", "image/png")},
                headers=self.headers,
            )
            self.assertEqual(response.status_code, 200)
            profile_img = response.json()["user"]["profileImg"]
            self.assertRegex(profile_img, r"^/uploads/profile-\d+\.png$")
            stored = os.path.join(upload_dir, os.path.basename(profile_img))
            with open(stored, "rb") as f:
                self.assertEqual(f.read(), b"\x89PNG fake")

        # A later update without a file leaves the image alone
        response = self.client.put("/api/update-profile", data={"height": "180"}, headers=self.headers)
        self.assertEqual(response.json()["user"]["profileImg"], profile_img)

    def test_update_requires_token(self):
        response = self.client.put("/api/update-profile", data={"phone": "1"})
        self.assertEqual(response.status_code, 401)


if __name__ == "__main__":
    unittest.main()
