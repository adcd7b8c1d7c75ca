"""
Test utilities and factories for creating test data
"""
import random
import string
from decimal import Decimal

from django.contrib.auth.hashers import make_password
from django.test import Client

from main.models import AppUser
from main.services.auth_service import AuthService
from stock.models import Site, Bin, Supplier, StockItem, StockMovement
from stock.services.level_service import StockLevelService


class TestDataFactory:
    """Factory class for creating test data"""

    __test__ = False
    PASSWORD = "testpass123"

    @staticmethod
    def random_string(length=6):
        return ''.join(random.choices(string.ascii_uppercase + string.digits, k=length))

    @staticmethod
    def create_site(name=None, code=None):
        code = code or f"S{TestDataFactory.random_string(5)}"
        return Site.objects.create(name=name or f"Site {code}", code=code)

    @staticmethod
    def create_bin(site, name=None, bin_type=Bin.BinType.MAIN_STORAGE):
        return Bin.objects.create(
            name=name or f"Bin {TestDataFactory.random_string(4)}",
            site=site,
            bin_type=bin_type,
        )

    @staticmethod
    def create_supplier(name=None):
        return Supplier.objects.create(name=name or f"Supplier {TestDataFactory.random_string(4)}")

    @staticmethod
    def create_item(name=None, sku=None, unit_price="10", minimum_stock_level="0",
                    reorder_quantity="0", primary_supplier=None):
        sku = sku or f"SKU-{TestDataFactory.random_string(6)}"
        item = StockItem.objects.create(
            name=name or f"Item {sku}",
            sku=sku,
            unit_price=Decimal(unit_price),
            minimum_stock_level=Decimal(minimum_stock_level),
            reorder_quantity=Decimal(reorder_quantity),
            primary_supplier=primary_supplier,
        )
        if primary_supplier:
            item.suppliers.add(primary_supplier)
        return item

    @staticmethod
    def create_user(role=AppUser.RoleChoices.ADMIN, site=None, email=None):
        email = email or f"{TestDataFactory.random_string(8).lower()}@caterflow.test"
        return AppUser.objects.create(
            name=f"{role} user",
            email=email,
            password=make_password(TestDataFactory.PASSWORD),
            role=role,
            associated_site=site,
        )

    @staticmethod
    def put_stock(item, bin, quantity):
        return StockLevelService.adjust(
            stock_item=item,
            bin=bin,
            quantity=Decimal(str(quantity)),
            movement_type=StockMovement.MovementType.RECEIPT_IN,
        )

    @staticmethod
    def quantity(item, bin):
        return StockLevelService.get_quantity(item.id, bin.id)


def authenticated_client(user):
    """Django test client carrying a bearer token for ``user``."""
    result = AuthService.login(user.email, TestDataFactory.PASSWORD)
    return Client(HTTP_AUTHORIZATION=f"Bearer {result['token']}")


class JsonClientMixin:
    """Shortcuts for JSON requests against the API."""

    def post_json(self, client, path, data=None):
        return client.post(path, data or {}, content_type="application/json")

    def patch_json(self, client, path, data=None):
        return client.patch(path, data or {}, content_type="application/json")

    def put_json(self, client, path, data=None):
        return client.put(path, data or {}, content_type="application/json")
