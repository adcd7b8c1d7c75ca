from decimal import Decimal

from django.test import TestCase

from main.models import AppUser
from stock.models import GoodsReceipt, PurchaseOrder, StockMovement
from stock.tests.factories import TestDataFactory, JsonClientMixin, authenticated_client

Roles = AppUser.RoleChoices

URL = "/api/goods-receipts/"
PO_URL = "/api/purchase-orders/"


class GoodsReceiptTestCase(JsonClientMixin, TestCase):

    def setUp(self):
        self.site = TestDataFactory.create_site()
        self.bin = TestDataFactory.create_bin(self.site)
        self.supplier = TestDataFactory.create_supplier("Fresh Foods")
        self.rice = TestDataFactory.create_item(name="Rice", unit_price="10", primary_supplier=self.supplier)
        self.oil = TestDataFactory.create_item(name="Oil", unit_price="10", primary_supplier=self.supplier)
        self.admin = TestDataFactory.create_user(Roles.ADMIN)
        self.client = authenticated_client(self.admin)

    def approved_order(self, approve=True):
        response = self.post_json(self.client, PO_URL, {
            "site": str(self.site.id),
            "ordered_items": [
                {"stock_item": str(self.rice.id), "ordered_quantity": "10", "unit_price": "12"},
                {"stock_item": str(self.oil.id), "ordered_quantity": "4"},
            ],
        })
        self.assertEqual(response.status_code, 201, response.content)
        order = response.json()["document"]
        if approve:
            for name in ("submit", "approve"):
                self.assertEqual(self.post_json(self.client, f"{PO_URL}{order['id']}/{name}/").status_code, 200)
        return order

    def create_receipt(self, **payload):
        payload.setdefault("receiving_bin", str(self.bin.id))
        response = self.post_json(self.client, URL, payload)
        self.assertEqual(response.status_code, 201, response.content)
        return response.json()["document"]

    def action(self, document, name, body=None):
        return self.post_json(self.client, f"{URL}{document['id']}/{name}/", body)


class GoodsReceiptCreateTests(GoodsReceiptTestCase):

    def test_lines_prefilled_from_outstanding_order(self):
        order = self.approved_order()
        receipt = self.create_receipt(purchase_order=order["id"])

        self.assertEqual(receipt["receipt_number"], "GR-00001")
        self.assertEqual(receipt["status"], "draft")
        self.assertEqual(receipt["received_by"], str(self.admin.id))
        self.assertEqual(receipt["purchase_order"]["po_number"], order["po_number"])

        lines = {line["stock_item"]["id"]: line for line in receipt["received_items"]}
        self.assertEqual(lines[str(self.rice.id)]["ordered_quantity"], "10")
        self.assertEqual(lines[str(self.rice.id)]["received_quantity"], "10")
        self.assertEqual(lines[str(self.rice.id)]["unit_price"], "12")
        self.assertEqual(lines[str(self.oil.id)]["received_quantity"], "4")
        self.assertEqual(receipt["total_amount"], "160")

    def test_unapproved_order_cannot_be_received(self):
        order = self.approved_order(approve=False)
        response = self.post_json(self.client, URL, {
            "purchase_order": order["id"], "receiving_bin": str(self.bin.id),
        })

        self.assertEqual(response.status_code, 403)
        error = response.json()["error"]
        self.assertEqual(error["code"], "precondition_failed")
        self.assertEqual(error["details"]["current_status"], "draft")
        self.assertFalse(GoodsReceipt.objects.exists())

    def test_item_not_on_order_rejected(self):
        order = self.approved_order()
        flour = TestDataFactory.create_item(name="Flour")
        response = self.post_json(self.client, URL, {
            "purchase_order": order["id"],
            "receiving_bin": str(self.bin.id),
            "received_items": [{"stock_item": str(flour.id), "received_quantity": "1"}],
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["details"]["field"], "received_items[0].stock_item")

    def test_bin_from_another_site_rejected(self):
        order = self.approved_order()
        elsewhere = TestDataFactory.create_bin(TestDataFactory.create_site())
        response = self.post_json(self.client, URL, {
            "purchase_order": order["id"], "receiving_bin": str(elsewhere.id),
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["details"]["field"], "receiving_bin")

    def test_invalid_condition_rejected(self):
        response = self.post_json(self.client, URL, {
            "receiving_bin": str(self.bin.id),
            "received_items": [{"stock_item": str(self.rice.id), "received_quantity": "1", "condition": "soggy"}],
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["details"]["field"], "received_items[0].condition")

    def test_oversized_quantity_rejected(self):
        response = self.post_json(self.client, URL, {
            "receiving_bin": str(self.bin.id),
            "received_items": [{"stock_item": str(self.rice.id), "received_quantity": "1e13"}],
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["details"]["field"], "received_items[0].received_quantity")


class GoodsReceiptCompletionTests(GoodsReceiptTestCase):

    def test_partial_receipt_keeps_order_approved(self):
        order = self.approved_order()
        receipt = self.create_receipt(purchase_order=order["id"], received_items=[
            {"stock_item": str(self.rice.id), "received_quantity": "6", "condition": "short-shipped"},
        ])
        self.assertEqual(receipt["received_items"][0]["ordered_quantity"], "10")

        response = self.action(receipt, "complete")
        self.assertEqual(response.status_code, 200, response.content)
        completed = response.json()["document"]
        self.assertEqual(completed["status"], "completed")
        self.assertIsNotNone(completed["completed_at"])
        self.assertEqual(completed["purchase_order"]["status"], "approved")

        self.assertEqual(TestDataFactory.quantity(self.rice, self.bin), Decimal("6"))
        self.assertEqual(TestDataFactory.quantity(self.oil, self.bin), Decimal("0"))
        self.assertEqual(PurchaseOrder.objects.get(id=order["id"]).status, "approved")
        self.assertTrue(StockMovement.objects.filter(
            reference_type="GoodsReceipt", reference_id=completed["id"],
        ).exists())

    def test_last_receipt_processes_order_without_booking_twice(self):
        order = self.approved_order()
        first = self.create_receipt(purchase_order=order["id"], received_items=[
            {"stock_item": str(self.rice.id), "received_quantity": "6"},
            {"stock_item": str(self.oil.id), "received_quantity": "4"},
        ])
        self.assertEqual(self.action(first, "complete").status_code, 200)

        second = self.create_receipt(purchase_order=order["id"])
        self.assertEqual(
            [(line["stock_item"]["id"], line["received_quantity"]) for line in second["received_items"]],
            [(str(self.rice.id), "4")],
        )

        response = self.action(second, "complete")
        self.assertEqual(response.status_code, 200, response.content)
        self.assertEqual(response.json()["document"]["purchase_order"]["status"], "processed")

        po = PurchaseOrder.objects.get(id=order["id"])
        self.assertEqual(po.status, "processed")
        self.assertEqual(po.receiving_bin_id, self.bin.id)
        self.assertEqual(TestDataFactory.quantity(self.rice, self.bin), Decimal("10"))
        self.assertEqual(TestDataFactory.quantity(self.oil, self.bin), Decimal("4"))

    def test_processing_order_after_partial_receipt_books_remainder(self):
        order = self.approved_order()
        receipt = self.create_receipt(purchase_order=order["id"], received_items=[
            {"stock_item": str(self.rice.id), "received_quantity": "6"},
        ])
        self.action(receipt, "complete")

        response = self.post_json(self.client, f"{PO_URL}{order['id']}/process/")
        self.assertEqual(response.status_code, 200, response.content)
        self.assertEqual(TestDataFactory.quantity(self.rice, self.bin), Decimal("10"))
        self.assertEqual(TestDataFactory.quantity(self.oil, self.bin), Decimal("4"))

    def test_receipt_without_order(self):
        receipt = self.create_receipt(received_items=[{
            "stock_item": str(self.rice.id),
            "received_quantity": "5",
            "batch_number": "B-17",
            "expiry_date": "2027-01-31",
            "condition": "damaged",
        }])
        line = receipt["received_items"][0]
        self.assertEqual(line["unit_price"], "10")
        self.assertEqual(line["expiry_date"], "2027-01-31")
        self.assertEqual(line["condition"], "damaged")

        self.assertEqual(self.action(receipt, "complete").status_code, 200)
        self.assertEqual(TestDataFactory.quantity(self.rice, self.bin), Decimal("5"))

    def test_complete_requires_receiving_bin(self):
        response = self.post_json(self.client, URL, {
            "received_items": [{"stock_item": str(self.rice.id), "received_quantity": "5"}],
        })
        self.assertEqual(response.status_code, 201)
        receipt = response.json()["document"]
        self.assertIsNone(receipt["receiving_bin"])

        response = self.action(receipt, "complete")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["details"]["missing_fields"], ["receiving_bin"])
        self.assertEqual(GoodsReceipt.objects.get(id=receipt["id"]).status, "draft")

    def test_completed_receipt_is_locked(self):
        receipt = self.create_receipt(received_items=[
            {"stock_item": str(self.rice.id), "received_quantity": "2"},
        ])
        self.action(receipt, "complete")

        response = self.action(receipt, "cancel")
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "precondition_failed")

        response = self.client.delete(f"{URL}{receipt['id']}/")
        self.assertEqual(response.status_code, 403)
        self.assertEqual(TestDataFactory.quantity(self.rice, self.bin), Decimal("2"))

    def test_cancelled_receipt_books_nothing(self):
        order = self.approved_order()
        receipt = self.create_receipt(purchase_order=order["id"])

        response = self.action(receipt, "cancel")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["document"]["status"], "cancelled")
        self.assertEqual(TestDataFactory.quantity(self.rice, self.bin), Decimal("0"))

        # Cancelled receipts do not count towards the order
        again = self.create_receipt(purchase_order=order["id"])
        self.assertEqual(len(again["received_items"]), 2)

    def test_draft_receipt_can_be_deleted(self):
        receipt = self.create_receipt()
        response = self.client.delete(f"{URL}{receipt['id']}/")
        self.assertEqual(response.status_code, 200)
        self.assertFalse(GoodsReceipt.objects.exists())

    def test_other_site_manager_cannot_complete(self):
        receipt = self.create_receipt(received_items=[
            {"stock_item": str(self.rice.id), "received_quantity": "2"},
        ])
        outsider = TestDataFactory.create_user(Roles.SITE_MANAGER, site=TestDataFactory.create_site())

        response = self.post_json(authenticated_client(outsider), f"{URL}{receipt['id']}/complete/")
        self.assertEqual(response.status_code, 403)
        self.assertEqual(TestDataFactory.quantity(self.rice, self.bin), Decimal("0"))
