import factory
from factory.django import DjangoModelFactory
from inventory.models import StockItem


class StockItemFactory(DjangoModelFactory):
    """Stock record with no ledger history; use services.create_stock_item for a balanced opening."""

    class Meta:
        model = StockItem

    product = factory.SubFactory("catalog.tests.factories.ProductFactory")
    quantity = 0
    low_stock_threshold = 10
