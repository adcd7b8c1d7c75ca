import uuid
from decimal import Decimal

from django.test import TestCase

from main.models import AppUser
from stock.models import PurchaseOrder, StockItem
from stock.tests.factories import TestDataFactory, JsonClientMixin, authenticated_client

Roles = AppUser.RoleChoices

URL = "/api/purchase-orders/"


class PurchaseOrderTestCase(JsonClientMixin, TestCase):

    def setUp(self):
        self.site = TestDataFactory.create_site()
        self.bin = TestDataFactory.create_bin(self.site)
        self.supplier = TestDataFactory.create_supplier("Fresh Foods")
        self.item = TestDataFactory.create_item(
            name="Rice", unit_price="10", primary_supplier=self.supplier,
        )
        self.admin = TestDataFactory.create_user(Roles.ADMIN)
        self.client = authenticated_client(self.admin)

    def create_order(self, **overrides):
        payload = {
            "site": str(self.site.id),
            "ordered_items": [{"stock_item": str(self.item.id), "ordered_quantity": "3"}],
        }
        payload.update(overrides)
        response = self.post_json(self.client, URL, payload)
        self.assertEqual(response.status_code, 201, response.content)
        return response.json()["document"]

    def action(self, document, name, body=None, client=None):
        return self.post_json(client or self.client, f"{URL}{document['id']}/{name}/", body)


class PurchaseOrderCreateTests(PurchaseOrderTestCase):

    def test_create_assigns_number_and_defaults(self):
        document = self.create_order()

        self.assertEqual(document["po_number"], "PO-00001")
        self.assertEqual(document["status"], "draft")
        self.assertEqual(document["ordered_by"], str(self.admin.id))
        self.assertEqual(document["site"]["id"], str(self.site.id))

        line = document["ordered_items"][0]
        self.assertEqual(line["unit_price"], "10")
        self.assertEqual(line["line_total"], "30")
        self.assertEqual(line["supplier"], str(self.supplier.id))
        self.assertEqual(document["total_amount"], "30")
        self.assertEqual(document["supplier"]["id"], str(self.supplier.id))

    def test_second_order_takes_next_number(self):
        self.create_order()
        self.assertEqual(self.create_order()["po_number"], "PO-00002")

    def test_total_rebuilt_from_all_lines(self):
        other = TestDataFactory.create_item(unit_price="2.5", primary_supplier=self.supplier)
        document = self.create_order(ordered_items=[
            {"stock_item": {"_ref": str(self.item.id)}, "ordered_quantity": "2", "unit_price": "5.5"},
            {"stock_item": {"_id": str(other.id)}, "quantity": "4"},
        ])
        self.assertEqual([l["line_total"] for l in document["ordered_items"]], ["11", "10"])
        self.assertEqual(document["total_amount"], "21")

        response = self.patch_json(self.client, f"{URL}{document['id']}/", {
            "ordered_items": [{"stock_item": str(self.item.id), "ordered_quantity": "1", "unit_price": "5.5"}],
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["document"]["total_amount"], "5.5")

    def test_status_in_create_payload_is_ignored(self):
        document = self.create_order(status="approved")
        self.assertEqual(document["status"], "draft")

    def test_unknown_stock_item(self):
        response = self.post_json(self.client, URL, {
            "site": str(self.site.id),
            "ordered_items": [{"stock_item": str(uuid.uuid4()), "ordered_quantity": "1"}],
        })
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "not_found")
        self.assertFalse(PurchaseOrder.objects.exists())

    def test_negative_quantity_rejected(self):
        response = self.post_json(self.client, URL, {
            "site": str(self.site.id),
            "ordered_items": [{"stock_item": str(self.item.id), "ordered_quantity": "-1"}],
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["details"]["field"], "ordered_items[0].ordered_quantity")

    def test_oversized_quantity_is_a_validation_error(self):
        response = self.post_json(self.client, URL, {
            "site": str(self.site.id),
            "ordered_items": [{"stock_item": str(self.item.id), "ordered_quantity": "1e13"}],
        })
        self.assertEqual(response.status_code, 400)
        error = response.json()["error"]
        self.assertEqual(error["code"], "validation_failed")
        self.assertEqual(error["details"]["field"], "ordered_items[0].ordered_quantity")
        self.assertFalse(PurchaseOrder.objects.exists())

    def test_oversized_price_is_a_validation_error(self):
        response = self.post_json(self.client, URL, {
            "site": str(self.site.id),
            "ordered_items": [{"stock_item": str(self.item.id), "ordered_quantity": "1", "unit_price": "999999999999"}],
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["details"]["field"], "ordered_items[0].unit_price")

    def test_extra_decimal_places_are_rounded(self):
        document = self.create_order(ordered_items=[
            {"stock_item": str(self.item.id), "ordered_quantity": "1.23456", "unit_price": "2"},
        ])
        self.assertEqual(document["ordered_items"][0]["ordered_quantity"], "1.2346")
        self.assertEqual(document["total_amount"], "2.4692")

    def test_invalid_json_body(self):
        response = self.client.post(URL, "{not json", content_type="application/json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "validation_failed")

    def test_next_number_preview(self):
        self.create_order()
        response = self.client.get(f"{URL}next-number/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["next_number"], "PO-00002")


class PurchaseOrderWorkflowTests(PurchaseOrderTestCase):

    def test_submit_without_items_lists_missing_fields(self):
        document = self.create_order(ordered_items=[])
        response = self.action(document, "submit")

        self.assertEqual(response.status_code, 400)
        error = response.json()["error"]
        self.assertEqual(error["code"], "validation_failed")
        self.assertEqual(error["details"]["missing_fields"], ["ordered_items"])

    def test_submit_with_line_missing_supplier(self):
        loose = TestDataFactory.create_item(name="Salt")
        document = self.create_order(ordered_items=[{"stock_item": str(loose.id), "ordered_quantity": "2"}])
        response = self.action(document, "submit")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["details"]["missing_fields"], ["ordered_items[0].supplier"])
        self.assertEqual(PurchaseOrder.objects.get(id=document["id"]).status, "draft")

    def test_full_chain_receives_goods(self):
        document = self.create_order(ordered_items=[
            {"stock_item": str(self.item.id), "ordered_quantity": "3", "unit_price": "12"},
        ])
        self.assertEqual(self.action(document, "submit").status_code, 200)

        impostor = TestDataFactory.create_user(Roles.AUDITOR)
        response = self.action(document, "approve", {"approved_by": str(impostor.id)})
        self.assertEqual(response.status_code, 200)
        approved = response.json()["document"]
        self.assertEqual(approved["status"], "approved")
        self.assertEqual(approved["approved_by"], str(self.admin.id))
        self.assertIsNotNone(approved["approved_at"])
        self.assertEqual(response.json()["previous_status"], "pending-approval")

        response = self.action(document, "process")
        self.assertEqual(response.status_code, 200)
        processed = response.json()["document"]
        self.assertEqual(processed["status"], "processed")
        self.assertEqual(processed["processed_by"], str(self.admin.id))
        self.assertEqual(processed["receiving_bin"], str(self.bin.id))

        self.assertEqual(TestDataFactory.quantity(self.item, self.bin), Decimal("3"))
        self.assertEqual(StockItem.objects.get(id=self.item.id).unit_price, Decimal("12"))

    def test_process_from_draft_is_invalid(self):
        document = self.create_order()
        response = self.action(document, "process")

        self.assertEqual(response.status_code, 403)
        error = response.json()["error"]
        self.assertEqual(error["code"], "invalid_transition")
        self.assertEqual(error["details"]["current_status"], "draft")
        self.assertEqual(error["details"]["requested_status"], "processed")

    def test_status_change_through_patch(self):
        document = self.create_order()
        response = self.patch_json(self.client, f"{URL}{document['id']}/", {"status": "pending-approval"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["document"]["status"], "pending-approval")

    def test_approved_order_cannot_be_edited(self):
        document = self.create_order()
        self.action(document, "submit")
        self.action(document, "approve")

        response = self.patch_json(self.client, f"{URL}{document['id']}/", {"notes": "late change"})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "precondition_failed")

    def test_processed_order_is_locked(self):
        document = self.create_order()
        for name in ("submit", "approve", "process"):
            self.action(document, name)

        response = self.action(document, "cancel")
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "precondition_failed")

    def test_client_supplied_approval_stamp_is_ignored_on_edit(self):
        other = TestDataFactory.create_user(Roles.AUDITOR)
        document = self.create_order()
        response = self.patch_json(self.client, f"{URL}{document['id']}/", {
            "approved_by": str(other.id), "notes": "checked",
        })
        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.json()["document"]["approved_by"])
        self.assertEqual(response.json()["document"]["notes"], "checked")

    def test_stock_controller_cannot_approve(self):
        document = self.create_order()
        self.action(document, "submit")

        controller = TestDataFactory.create_user(Roles.STOCK_CONTROLLER, site=self.site)
        response = self.action(document, "approve", client=authenticated_client(controller))
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "forbidden")

    def test_site_manager_rejects(self):
        document = self.create_order()
        self.action(document, "submit")

        manager = TestDataFactory.create_user(Roles.SITE_MANAGER, site=self.site)
        response = self.action(document, "reject", client=authenticated_client(manager))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["document"]["status"], "rejected")

    def test_unknown_action(self):
        document = self.create_order()
        response = self.action(document, "teleport")
        self.assertEqual(response.status_code, 400)
        self.assertIn("submit", response.json()["error"]["details"]["valid_actions"])

    def test_unknown_document(self):
        response = self.client.get(f"{URL}{uuid.uuid4()}/")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "not_found")


class PurchaseOrderDeleteTests(PurchaseOrderTestCase):

    def test_delete_draft(self):
        document = self.create_order()
        response = self.client.delete(f"{URL}{document['id']}/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["number"], "PO-00001")
        self.assertFalse(PurchaseOrder.objects.filter(id=document["id"]).exists())

    def test_delete_by_query_parameter(self):
        document = self.create_order()
        response = self.client.delete(f"{URL}?id={document['id']}")
        self.assertEqual(response.status_code, 200)
        self.assertFalse(PurchaseOrder.objects.exists())

    def test_delete_requires_id(self):
        response = self.client.delete(URL)
        self.assertEqual(response.status_code, 400)

    def test_submitted_order_cannot_be_deleted(self):
        document = self.create_order()
        self.action(document, "submit")

        response = self.client.delete(f"{URL}{document['id']}/")
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "precondition_failed")
        self.assertTrue(PurchaseOrder.objects.filter(id=document["id"]).exists())
