from decimal import Decimal

from django.test import TestCase

from main.models import AppUser
from stock.models import StockLevel
from stock.services.adjustment_service import AdjustmentService
from stock.tests.factories import TestDataFactory, JsonClientMixin, authenticated_client

ADJUSTMENTS = "/api/adjustments/"
COUNTS = "/api/bin-counts/"


class StockDocumentTestCase(JsonClientMixin, TestCase):

    def setUp(self):
        self.site = TestDataFactory.create_site()
        self.bin = TestDataFactory.create_bin(self.site)
        self.item = TestDataFactory.create_item(name="Flour")
        TestDataFactory.put_stock(self.item, self.bin, 10)

        self.auditor = TestDataFactory.create_user(AppUser.RoleChoices.AUDITOR)
        self.client = authenticated_client(self.auditor)

    def run_actions(self, url, document, *names):
        response = None
        for name in names:
            response = self.post_json(self.client, f"{url}{document['id']}/{name}/")
            self.assertEqual(response.status_code, 200, response.content)
        return response.json()["document"]

    def stock(self):
        return TestDataFactory.quantity(self.item, self.bin)


class AdjustmentTests(StockDocumentTestCase):

    def create_adjustment(self, adjustment_type, quantity):
        payload = {
            "bin": str(self.bin.id),
            "adjusted_items": [{"stock_item": str(self.item.id), "adjusted_quantity": quantity, "reason": "spill"}],
        }
        if adjustment_type:
            payload["adjustment_type"] = adjustment_type
        response = self.post_json(self.client, ADJUSTMENTS, payload)
        self.assertEqual(response.status_code, 201, response.content)
        return response.json()["document"]

    def test_wastage_removes_stock(self):
        document = self.create_adjustment("wastage", "3")
        self.assertEqual(document["adjustment_number"], "ADJ-00001")

        completed = self.run_actions(ADJUSTMENTS, document, "submit", "approve", "complete")
        self.assertEqual(completed["status"], "completed")
        self.assertIsNotNone(completed["completed_at"])
        self.assertEqual(self.stock(), Decimal("7"))

    def test_found_stock_adds(self):
        document = self.create_adjustment("positive-adjustment", "2")
        self.run_actions(ADJUSTMENTS, document, "submit", "approve", "complete")
        self.assertEqual(self.stock(), Decimal("12"))

    def test_missing_type_blocks_submission(self):
        document = self.create_adjustment(None, "1")
        response = self.post_json(self.client, f"{ADJUSTMENTS}{document['id']}/submit/")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["details"]["missing_fields"], ["adjustment_type"])

    def test_unknown_type_rejected(self):
        response = self.post_json(self.client, ADJUSTMENTS, {"bin": str(self.bin.id), "adjustment_type": "gift"})
        self.assertEqual(response.status_code, 400)

    def test_signed_change(self):
        self.assertEqual(AdjustmentService.signed_change("loss", "4"), Decimal("-4"))
        self.assertEqual(AdjustmentService.signed_change("theft", "-4"), Decimal("-4"))
        self.assertEqual(AdjustmentService.signed_change("positive-adjustment", "-4"), Decimal("4"))
        self.assertEqual(AdjustmentService.signed_change("inventory-correction", "-4"), Decimal("-4"))


class InventoryCountTests(StockDocumentTestCase):

    def create_count(self, counted="7", **line_extra):
        line = {"stock_item": str(self.item.id), "counted_quantity": counted}
        line.update(line_extra)
        response = self.post_json(self.client, COUNTS, {"bin": str(self.bin.id), "counted_items": [line]})
        self.assertEqual(response.status_code, 201, response.content)
        return response.json()["document"]

    def test_variance_computed_from_current_stock(self):
        document = self.create_count("7", system_quantity_at_count_time="99", variance="0")

        self.assertEqual(document["count_number"], "CNT-00001")
        line = document["counted_items"][0]
        self.assertEqual(line["system_quantity_at_count_time"], "10")
        self.assertEqual(line["variance"], "-3")
        self.assertEqual(document["summary"]["items_with_variance"], 1)

    def test_completed_count_corrects_level(self):
        document = self.create_count("7")
        self.run_actions(COUNTS, document, "submit", "approve", "complete")

        level = StockLevel.objects.get(stock_item=self.item, bin=self.bin)
        self.assertEqual(level.quantity, Decimal("7"))
        self.assertIsNotNone(level.last_counted_at)

    def test_matching_count_changes_nothing(self):
        document = self.create_count("10")
        self.run_actions(COUNTS, document, "submit", "approve", "complete")
        self.assertEqual(self.stock(), Decimal("10"))

    def test_count_lines_need_a_bin(self):
        response = self.post_json(self.client, COUNTS, {
            "counted_items": [{"stock_item": str(self.item.id), "counted_quantity": "1"}],
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["details"]["field"], "bin")
