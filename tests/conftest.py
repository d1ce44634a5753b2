"""Shared pytest fixtures for storefront tests."""

import pytest
from fastapi.testclient import TestClient

from storefront.cart_slots import MemoryCartSlot
from storefront.cart_store import CartStore
from storefront.catalog import FixtureCatalogService
from storefront.checkout import CheckoutSession
from storefront.config import Settings
from storefront.main import create_app
from storefront.payment_gateway import HostedGateway
from storefront.reconciler import OrderReconciler
from storefront.records import BuyerInfo
from storefront.visitors import Storefront

from tests.doubles import SUPPORT_EMAIL, ScriptedGateway


@pytest.fixture
def slot_store():
    return {}


@pytest.fixture
def slot(slot_store):
    return MemoryCartSlot("visitor-1", store=slot_store)


@pytest.fixture
def cart(slot):
    return CartStore(slot)


@pytest.fixture
def catalog():
    return FixtureCatalogService()


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture
def reconciler(catalog, cart):
    return OrderReconciler(catalog, cart, support_email=SUPPORT_EMAIL)


@pytest.fixture
def session(cart, gateway, reconciler):
    return CheckoutSession(cart, gateway, reconciler)


@pytest.fixture
def buyer():
    return BuyerInfo(name="Ada Lovelace", email="ada@example.com", phone="555-0100")


@pytest.fixture
def settings():
    return Settings(
        catalog_backend="fixture",
        payment_gateway="hosted",
        gateway_checkout_url="https://pay.test/checkout",
        merchant_id="255781290131",
        redis_url="",
        support_email=SUPPORT_EMAIL,
    )


@pytest.fixture
def storefront(settings):
    return Storefront(
        settings,
        FixtureCatalogService(),
        HostedGateway(settings.gateway_checkout_url, settings.merchant_id),
    )


@pytest.fixture
def client(storefront):
    with TestClient(create_app(storefront)) as test_client:
        yield test_client
