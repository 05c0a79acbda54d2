"""
Shared fixtures for the order ledger tests.
"""
import pytest

from orderledger.common.config import get_settings
from orderledger.ledger.derived import rederive
from orderledger.models.orders import (
    DiscountSpec, DiscountType, LineItem, MembershipBenefit, Order, PricingInputs
)
from orderledger.pricing.engine import reprice_order


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    """Every test starts from default settings in a local (strict) environment."""
    monkeypatch.setenv("ENVIRONMENT", "local")
    monkeypatch.delenv("STRICT_INVARIANTS", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def elite_items():
    return [LineItem(product_id="chicken-breast", name="Chicken Breast", variant="500g",
                     quantity=2, unit_price=250.0)]


@pytest.fixture
def elite_pricing():
    return PricingInputs(
        discount=DiscountSpec(type=DiscountType.PERCENTAGE, value=10),
        membership=MembershipBenefit(free_delivery_threshold=349),
        delivery_charges=50,
    )


@pytest.fixture
def order_1000():
    """Summary order with a 1000 total and nothing paid"""
    return rederive(Order(id="ORD-1000", customer_name="Asha", total_amount=1000.0))


@pytest.fixture
def priced_order(elite_items, elite_pricing):
    return rederive(reprice_order(Order(id="ORD-ELITE", customer_name="Ravi",
                                        items=elite_items, pricing=elite_pricing)))
