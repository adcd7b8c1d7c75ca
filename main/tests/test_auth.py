from django.test import Client, TestCase

from main.models import AppUser, AuditLog, Session
from stock.tests.factories import TestDataFactory, JsonClientMixin, authenticated_client


class LoginTests(JsonClientMixin, TestCase):

    def setUp(self):
        self.user = TestDataFactory.create_user(AppUser.RoleChoices.PROCURER, email="buyer@caterflow.test")

    def test_login_returns_token_and_user(self):
        response = self.post_json(self.client, "/api/auth/login", {
            "email": "Buyer@Caterflow.test",
            "password": TestDataFactory.PASSWORD,
        })

        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertTrue(data["token"])
        self.assertEqual(data["user"]["id"], str(self.user.id))
        self.assertEqual(data["user"]["role"], "procurer")
        self.assertNotIn("password", data["user"])
        self.assertEqual(Session.objects.filter(user=self.user).count(), 1)

        self.user.refresh_from_db()
        self.assertIsNotNone(self.user.last_login_at)

    def test_wrong_password(self):
        response = self.post_json(self.client, "/api/auth/login", {
            "email": "buyer@caterflow.test",
            "password": "nope-nope",
        })
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "unauthorized")
        self.assertTrue(AuditLog.objects.filter(action="login", success=False).exists())

    def test_inactive_account(self):
        AppUser.objects.filter(id=self.user.id).update(is_active=False)
        response = self.post_json(self.client, "/api/auth/login", {
            "email": "buyer@caterflow.test",
            "password": TestDataFactory.PASSWORD,
        })
        self.assertEqual(response.status_code, 401)

    def test_missing_fields(self):
        response = self.post_json(self.client, "/api/auth/login", {"email": "buyer@caterflow.test"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("password", response.json()["error"]["details"]["errors"])


class SessionTests(JsonClientMixin, TestCase):

    def setUp(self):
        self.user = TestDataFactory.create_user(AppUser.RoleChoices.STOCK_CONTROLLER)
        self.client = authenticated_client(self.user)

    def test_me(self):
        response = self.client.get("/api/auth/me")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["email"], self.user.email)

    def test_me_requires_token(self):
        self.assertEqual(Client().get("/api/auth/me").status_code, 401)

    def test_logout_ends_session(self):
        response = self.post_json(self.client, "/api/auth/logout")
        self.assertEqual(response.status_code, 200)
        self.assertFalse(Session.objects.filter(user=self.user).exists())
        self.assertEqual(self.client.get("/api/auth/me").status_code, 401)

    def test_change_password_keeps_current_session(self):
        other = authenticated_client(self.user)

        response = self.post_json(self.client, "/api/auth/change-password", {
            "current_password": TestDataFactory.PASSWORD,
            "new_password": "fresh-secret",
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get("/api/auth/me").status_code, 200)
        self.assertEqual(other.get("/api/auth/me").status_code, 401)

    def test_change_password_checks_current(self):
        response = self.post_json(self.client, "/api/auth/change-password", {
            "current_password": "wrong",
            "new_password": "fresh-secret",
        })
        self.assertEqual(response.status_code, 400)

    def test_change_password_minimum_length(self):
        response = self.post_json(self.client, "/api/auth/change-password", {
            "current_password": TestDataFactory.PASSWORD,
            "new_password": "abc",
        })
        self.assertEqual(response.status_code, 400)
