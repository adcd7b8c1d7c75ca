from unittest.mock import patch

import requests
from django.conf import settings
from django.db import DatabaseError
from django.test import TestCase, SimpleTestCase, override_settings

from main.models import AppUser, AuditLog
from main.services.audit_service import AuditService
from stock.models import StockItem
from stock.tests.factories import TestDataFactory, JsonClientMixin, authenticated_client

Roles = AppUser.RoleChoices


class AuthenticationTests(JsonClientMixin, TestCase):

    def test_token_required(self):
        response = self.client.get("/api/purchase-orders/")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "unauthorized")

    def test_garbage_token(self):
        response = self.client.get("/api/stock-items/", HTTP_AUTHORIZATION="Bearer not-a-token")
        self.assertEqual(response.status_code, 401)

    def test_deactivated_user_token_stops_working(self):
        user = TestDataFactory.create_user()
        client = authenticated_client(user)
        self.assertEqual(client.get("/api/stock-items/").status_code, 200)

        AppUser.objects.filter(id=user.id).update(is_active=False)
        self.assertEqual(client.get("/api/stock-items/").status_code, 401)


class SiteScopingTests(JsonClientMixin, TestCase):

    def setUp(self):
        self.home = TestDataFactory.create_site()
        self.away = TestDataFactory.create_site()
        self.home_bin = TestDataFactory.create_bin(self.home)
        self.away_bin = TestDataFactory.create_bin(self.away)
        self.item = TestDataFactory.create_item()

        admin = authenticated_client(TestDataFactory.create_user(Roles.ADMIN))
        self.home_count = self.post_json(admin, "/api/bin-counts/", {"bin": str(self.home_bin.id)}).json()["document"]
        self.away_count = self.post_json(admin, "/api/bin-counts/", {"bin": str(self.away_bin.id)}).json()["document"]

        self.manager = TestDataFactory.create_user(Roles.SITE_MANAGER, site=self.home)
        self.client = authenticated_client(self.manager)

    def test_other_sites_document_is_forbidden(self):
        response = self.client.get(f"/api/bin-counts/{self.away_count['id']}/")
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "forbidden")

        response = self.patch_json(self.client, f"/api/bin-counts/{self.away_count['id']}/", {"notes": "x"})
        self.assertEqual(response.status_code, 403)

    def test_list_is_scoped_to_own_site(self):
        response = self.client.get("/api/bin-counts/")
        self.assertEqual(response.status_code, 200)
        ids = [doc["id"] for doc in response.json()["documents"]]
        self.assertEqual(ids, [self.home_count["id"]])
        self.assertEqual(response.json()["pagination"]["total_items"], 1)

    def test_cannot_create_for_another_site(self):
        response = self.post_json(self.client, "/api/bin-counts/", {"bin": str(self.away_bin.id)})
        self.assertEqual(response.status_code, 403)

    def test_auditor_sees_everything(self):
        auditor = authenticated_client(TestDataFactory.create_user(Roles.AUDITOR))
        response = auditor.get("/api/bin-counts/")
        self.assertEqual(response.json()["pagination"]["total_items"], 2)

    def test_site_list_is_scoped(self):
        response = self.client.get("/api/sites/")
        self.assertEqual([site["id"] for site in response.json()["sites"]], [str(self.home.id)])

    def test_dispatch_staff_cannot_manage_catalogue(self):
        staff = authenticated_client(TestDataFactory.create_user(Roles.DISPATCH_STAFF, site=self.home))
        response = self.post_json(staff, "/api/stock-items/", {"name": "Oats", "sku": "OAT-1"})
        self.assertEqual(response.status_code, 403)
        self.assertFalse(StockItem.objects.filter(sku="OAT-1").exists())


class ErrorMappingTests(JsonClientMixin, TestCase):

    def setUp(self):
        self.admin = TestDataFactory.create_user(Roles.ADMIN)
        self.client = authenticated_client(self.admin)

    def test_duplicate_sku_is_a_conflict(self):
        TestDataFactory.create_item(sku="RICE-1")
        response = self.post_json(self.client, "/api/stock-items/", {"name": "More rice", "sku": "RICE-1"})

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"]["code"], "conflict")
        self.assertEqual(response.json()["error"]["details"]["field"], "sku")

    def test_sku_reusable_after_delete(self):
        item = TestDataFactory.create_item(sku="RICE-2")
        self.assertEqual(self.client.delete(f"/api/stock-items/{item.id}/").status_code, 200)

        response = self.post_json(self.client, "/api/stock-items/", {"name": "Rice", "sku": "RICE-2"})
        self.assertEqual(response.status_code, 201)

    def test_data_store_failure_is_upstream(self):
        with patch("stock.services.workflow_service.DocumentWorkflowService.list",
                   side_effect=DatabaseError("connection reset")):
            response = self.client.get("/api/transfers/")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["error"]["code"], "upstream_failure")


class AuditTrailTests(JsonClientMixin, TestCase):

    def setUp(self):
        self.admin = TestDataFactory.create_user(Roles.ADMIN)
        self.client = authenticated_client(self.admin)
        self.site = TestDataFactory.create_site()

    def test_successful_write_is_recorded(self):
        response = self.post_json(self.client, "/api/purchase-orders/", {"site": str(self.site.id)})
        document_id = response.json()["document"]["id"]

        entry = AuditLog.objects.get(document_type="PurchaseOrder", action="create")
        self.assertTrue(entry.success)
        self.assertEqual(entry.document_id, document_id)
        self.assertEqual(entry.actor_id, str(self.admin.id))

    def test_failed_write_is_recorded(self):
        response = self.post_json(self.client, "/api/purchase-orders/", {"site": str(self.site.id)})
        document_id = response.json()["document"]["id"]
        self.post_json(self.client, f"/api/purchase-orders/{document_id}/process/")

        entry = AuditLog.objects.get(action="process")
        self.assertFalse(entry.success)
        self.assertEqual(entry.document_id, document_id)
        self.assertEqual(entry.details, {"error": "invalid_transition"})

    def test_master_data_writes_are_recorded(self):
        site = self.post_json(self.client, "/api/sites/", {"name": "Harbour Kitchen", "code": "HK1"})
        supplier = self.post_json(self.client, "/api/suppliers/", {"name": "Dairy Direct"})
        dispatch_type = self.post_json(self.client, "/api/dispatch-types/", {"name": "Banquet"})
        for response in (site, supplier, dispatch_type):
            self.assertEqual(response.status_code, 201, response.content)

        expected = {
            "Site": site.json()["site"]["id"],
            "Supplier": supplier.json()["supplier"]["id"],
            "DispatchType": dispatch_type.json()["dispatch_type"]["id"],
        }
        for document_type, document_id in expected.items():
            entry = AuditLog.objects.get(document_type=document_type, action="create")
            self.assertTrue(entry.success)
            self.assertEqual(entry.document_id, str(document_id))
            self.assertEqual(entry.actor_id, str(self.admin.id))

        supplier_id = expected["Supplier"]
        self.patch_json(self.client, f"/api/suppliers/{supplier_id}/", {"phone": "555-0100"})
        self.client.delete(f"/api/suppliers/{supplier_id}/")
        self.assertEqual(
            sorted(AuditLog.objects.filter(document_type="Supplier").values_list("action", flat=True)),
            ["create", "delete", "update"],
        )

    def test_refused_site_write_is_recorded_as_failure(self):
        self.post_json(self.client, "/api/sites/", {"name": "No code"})

        entry = AuditLog.objects.get(document_type="Site")
        self.assertFalse(entry.success)
        self.assertEqual(entry.details, {"error": "validation_failed"})

    def test_audit_store_failure_does_not_fail_the_request(self):
        with patch.object(AuditLog.objects, "create", side_effect=DatabaseError("audit table gone")):
            response = self.post_json(self.client, "/api/purchase-orders/", {"site": str(self.site.id)})

        self.assertEqual(response.status_code, 201)
        self.assertFalse(AuditLog.objects.filter(document_type="PurchaseOrder").exists())

    def test_activity_feed(self):
        self.post_json(self.client, "/api/purchase-orders/", {"site": str(self.site.id)})
        response = self.client.get("/api/activity/?document_type=PurchaseOrder")

        self.assertEqual(response.status_code, 200)
        items = response.json()["data"]["items"]
        self.assertEqual(len(items), 1)
        self.assertEqual(items[0]["action"], "create")

    def test_activity_feed_needs_admin_or_auditor(self):
        staff = authenticated_client(TestDataFactory.create_user(Roles.DISPATCH_STAFF))
        self.assertEqual(staff.get("/api/activity/").status_code, 403)


class AuditSinkTests(SimpleTestCase):

    def test_sink_failure_is_swallowed(self):
        with patch("main.services.audit_service.requests.post",
                   side_effect=requests.exceptions.ConnectionError("refused")) as post:
            AuditService._send_to_sink("http://audit.invalid/entries", {"action": "create"})
        post.assert_called_once()

    def test_sink_receives_json_entry(self):
        with patch("main.services.audit_service.requests.post") as post:
            post.return_value.status_code = 202
            AuditService._send_to_sink("http://audit.invalid/entries", {"action": "approve", "success": True})

        args, kwargs = post.call_args
        self.assertEqual(args[0], "http://audit.invalid/entries")
        self.assertEqual(kwargs["headers"]["Content-Type"], "application/json")
        self.assertIn('"action": "approve"', kwargs["data"])
        self.assertEqual(kwargs["timeout"], settings.CATERFLOW["AUDIT_SINK_TIMEOUT"])


class AuditSinkDispatchTests(TestCase):

    def test_record_hands_entry_to_sink_thread(self):
        sink = {**settings.CATERFLOW, "AUDIT_SINK_URL": "http://audit.invalid/entries"}
        with override_settings(CATERFLOW=sink), patch("main.services.audit_service.Thread") as thread:
            entry = AuditService.record("approve", document_type="PurchaseOrder", document_id="abc")

        thread.assert_called_once()
        self.assertEqual(thread.call_args.kwargs["args"], ("http://audit.invalid/entries", entry))
        thread.return_value.start.assert_called_once()
