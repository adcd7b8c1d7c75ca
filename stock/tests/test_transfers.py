from decimal import Decimal

from django.test import TestCase

from main.models import AppUser
from stock.models import InternalTransfer
from stock.tests.factories import TestDataFactory, JsonClientMixin, authenticated_client

Roles = AppUser.RoleChoices

URL = "/api/transfers/"


class TransferTestCase(JsonClientMixin, TestCase):

    def setUp(self):
        self.site = TestDataFactory.create_site()
        self.store = TestDataFactory.create_bin(self.site, "Store")
        self.fridge = TestDataFactory.create_bin(self.site, "Fridge", "refrigerator")
        self.item = TestDataFactory.create_item(name="Milk")
        TestDataFactory.put_stock(self.item, self.store, 10)

        self.manager = TestDataFactory.create_user(Roles.SITE_MANAGER, site=self.site)
        self.client = authenticated_client(self.manager)

    def create_transfer(self, quantity="4", **overrides):
        payload = {
            "from_bin": str(self.store.id),
            "to_bin": str(self.fridge.id),
            "transferred_items": [{"stock_item": str(self.item.id), "transferred_quantity": quantity}],
        }
        payload.update(overrides)
        response = self.post_json(self.client, URL, payload)
        self.assertEqual(response.status_code, 201, response.content)
        return response.json()["document"]

    def action(self, document, name, client=None):
        return self.post_json(client or self.client, f"{URL}{document['id']}/{name}/")


class TransferWorkflowTests(TransferTestCase):

    def test_completed_transfer_moves_stock(self):
        document = self.create_transfer()
        self.assertEqual(document["transfer_number"], "TRF-00001")
        self.assertEqual(TestDataFactory.quantity(self.item, self.store), Decimal("10"))

        for name in ("submit", "approve"):
            self.assertEqual(self.action(document, name).status_code, 200)

        response = self.action(document, "complete")
        self.assertEqual(response.status_code, 200)
        completed = response.json()["document"]
        self.assertEqual(completed["status"], "completed")
        self.assertEqual(completed["completed_by"], str(self.manager.id))
        self.assertEqual(completed["approved_by"], str(self.manager.id))
        self.assertIsNotNone(completed["completed_at"])

        self.assertEqual(TestDataFactory.quantity(self.item, self.store), Decimal("6"))
        self.assertEqual(TestDataFactory.quantity(self.item, self.fridge), Decimal("4"))

    def test_complete_from_draft_is_invalid(self):
        document = self.create_transfer()
        response = self.action(document, "complete")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "invalid_transition")
        self.assertEqual(TestDataFactory.quantity(self.item, self.fridge), Decimal("0"))

    def test_submit_without_items(self):
        document = self.create_transfer(transferred_items=[])
        response = self.action(document, "submit")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["details"]["missing_fields"], ["transferred_items"])

    def test_short_stock_keeps_transfer_approved(self):
        document = self.create_transfer(quantity="12")
        self.action(document, "submit")
        self.action(document, "approve")

        response = self.action(document, "complete")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "insufficient_stock")

        transfer = InternalTransfer.objects.get(id=document["id"])
        self.assertEqual(transfer.status, "approved")
        self.assertIsNone(transfer.completed_at)
        self.assertEqual(TestDataFactory.quantity(self.item, self.store), Decimal("10"))

    def test_same_bin_rejected(self):
        response = self.post_json(self.client, URL, {
            "from_bin": str(self.store.id),
            "to_bin": str(self.store.id),
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["details"]["field"], "to_bin")

    def test_zero_quantity_line_rejected(self):
        response = self.post_json(self.client, URL, {
            "from_bin": str(self.store.id),
            "to_bin": str(self.fridge.id),
            "transferred_items": [{"stock_item": str(self.item.id), "transferred_quantity": "0"}],
        })
        self.assertEqual(response.status_code, 400)

    def test_stock_controller_cannot_approve(self):
        document = self.create_transfer()
        self.action(document, "submit")

        controller = TestDataFactory.create_user(Roles.STOCK_CONTROLLER, site=self.site)
        response = self.action(document, "approve", client=authenticated_client(controller))
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "forbidden")
        self.assertEqual(InternalTransfer.objects.get(id=document["id"]).status, "pending-approval")

    def test_cross_site_transfer_visible_from_destination_site(self):
        other_site = TestDataFactory.create_site()
        other_bin = TestDataFactory.create_bin(other_site)
        document = self.create_transfer(to_bin=str(other_bin.id))

        receiver = TestDataFactory.create_user(Roles.SITE_MANAGER, site=other_site)
        response = authenticated_client(receiver).get(f"{URL}{document['id']}/")
        self.assertEqual(response.status_code, 200)

        outsider = TestDataFactory.create_user(Roles.SITE_MANAGER, site=TestDataFactory.create_site())
        response = authenticated_client(outsider).get(f"{URL}{document['id']}/")
        self.assertEqual(response.status_code, 403)
