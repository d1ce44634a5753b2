from decimal import Decimal

import pytest

from shared.database import init_db, make_engine, make_session_factory
from storefront import pricing
from storefront.cart_store import LineItem
from storefront.catalog import (
    FixtureCatalogService,
    SqlCatalogService,
    UnavailableCatalogService,
    build_catalog,
)
from storefront.errors import CatalogError, CatalogUnavailable, ProductNotFound, ProductValidationError
from storefront.models import Download
from storefront.reconciler import build_order_record
from storefront.records import CheckoutIntent, PaymentResult, PaymentStatus, ProductFilter, ProductInput

from tests.doubles import unit


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def sql_catalog(session_factory):
    return SqlCatalogService(session_factory)


def product_input(**overrides):
    data = {
        "name": "Weather Dashboard",
        "description": "Forecast dashboard",
        "main_category": "html-css-js",
        "subcategory": "Web Apps",
        "images": ["https://cdn.test/weather.jpg", "  "],
        "download_url": "https://cdn.test/weather.zip",
        "price": Decimal("15.50"),
    }
    data.update(overrides)
    return ProductInput(**data)


def order_for(cart_items, reference="TXN-1"):
    intent = CheckoutIntent(
        buyer_name="Ada Lovelace",
        buyer_email="ada@example.com",
        buyer_phone="555-0100",
        items=cart_items,
        total=pricing.total(cart_items),
    )
    return intent, build_order_record(intent, PaymentResult(order_id=intent.order_id, transaction_reference=reference))


class TestProductFilter:
    @pytest.mark.parametrize("wildcard", [None, "all", "All", "  "])
    def test_wildcards_mean_no_filter(self, wildcard):
        product_filter = ProductFilter(category=wildcard, subcategory=wildcard)
        assert product_filter.category_value is None
        assert product_filter.subcategory_value is None

    def test_filter_is_immutable(self):
        product_filter = ProductFilter(category="python")
        with pytest.raises(Exception):
            product_filter.category = "opensource"


class TestProductInput:
    def test_missing_fields_reported(self):
        with pytest.raises(ProductValidationError) as exc:
            ProductInput(name=" ", main_category="python").cleaned()
        assert exc.value.missing == ["name", "subcategory"]

    def test_opensource_is_always_free(self):
        values = product_input(is_opensource=True, main_category="opensource", price=Decimal("9.99")).cleaned()
        assert values["price"] == Decimal("0")

    def test_blank_image_urls_dropped(self):
        assert product_input().cleaned()["images"] == ["https://cdn.test/weather.jpg"]


class TestFixtureCatalog:
    def test_lists_active_products_by_category(self, catalog):
        products = catalog.list_products(ProductFilter(category="python", subcategory="All"))

        assert products
        assert all(product.main_category == "python" for product in products)

    def test_subcategory_filter(self, catalog):
        products = catalog.list_products(ProductFilter(category="html-css-js", subcategory="Portfolio"))
        assert [product.id for product in products] == ["p-portfolio"]

    def test_inactive_products_hidden(self, catalog):
        catalog.update_product("p-portfolio", product_input(name="Developer Portfolio Kit", status="inactive"))

        ids = [product.id for product in catalog.list_products(ProductFilter())]

        assert "p-portfolio" not in ids
        assert "p-portfolio" in [product.id for product in catalog.list_all_products()]

    def test_product_to_cart_unit(self, catalog):
        product_unit = catalog.get_product("p-portfolio").to_unit()

        assert product_unit.unit_price == Decimal("29.99")
        assert product_unit.thumbnail_ref == "https://cdn.example.com/p-portfolio/cover.jpg"
        assert product_unit.download_ref == "https://cdn.example.com/p-portfolio/source.zip"

    def test_unknown_product(self, catalog):
        with pytest.raises(ProductNotFound):
            catalog.get_product("p-404")

    def test_crud(self, catalog):
        created = catalog.create_product(product_input())
        assert catalog.get_product(created.id).price == Decimal("15.50")

        updated = catalog.update_product(created.id, product_input(price=Decimal("12.00")))
        assert updated.price == Decimal("12.00")

        catalog.delete_product(created.id)
        with pytest.raises(ProductNotFound):
            catalog.delete_product(created.id)

    def test_duplicate_order_rejected(self):
        catalog = FixtureCatalogService(products=[])
        _, record = order_for((_line(),))
        catalog.insert_order(record)

        with pytest.raises(CatalogError):
            catalog.insert_order(record)

    def test_record_download(self, catalog):
        catalog.record_download(catalog.get_product("p-landing"))
        assert catalog.downloads == ["p-landing"]


class TestUnavailableCatalog:
    @pytest.mark.parametrize(
        "call",
        [
            lambda c: c.list_products(ProductFilter()),
            lambda c: c.get_product("p-portfolio"),
            lambda c: c.get_order("ORD-1"),
            lambda c: c.delete_product("p-portfolio"),
        ],
    )
    def test_every_call_raises(self, call):
        with pytest.raises(CatalogUnavailable):
            call(UnavailableCatalogService())


class TestSqlCatalog:
    def test_create_and_filter(self, sql_catalog):
        created = sql_catalog.create_product(product_input())
        sql_catalog.create_product(product_input(name="Chat Bot", main_category="python", subcategory="AI/ML"))

        web_apps = sql_catalog.list_products(ProductFilter(category="html-css-js", subcategory="Web Apps"))
        everything = sql_catalog.list_products(ProductFilter(category="all", subcategory="all"))

        assert [product.id for product in web_apps] == [created.id]
        assert len(everything) == 2
        assert created.price == Decimal("15.50")
        assert created.images == ["https://cdn.test/weather.jpg"]
        assert created.created_at is not None

    def test_update_and_delete(self, sql_catalog):
        created = sql_catalog.create_product(product_input())

        updated = sql_catalog.update_product(created.id, product_input(status="inactive"))
        assert updated.status == "inactive"
        assert sql_catalog.list_products(ProductFilter()) == []
        assert len(sql_catalog.list_all_products()) == 1

        sql_catalog.delete_product(created.id)
        with pytest.raises(ProductNotFound):
            sql_catalog.get_product(created.id)
        with pytest.raises(ProductNotFound):
            sql_catalog.update_product(created.id, product_input())
        with pytest.raises(ProductNotFound):
            sql_catalog.delete_product(created.id)

    def test_order_round_trip(self, sql_catalog):
        intent, record = order_for((_line(quantity=2),), reference="TXN-SQL")

        sql_catalog.insert_order(record)
        stored = sql_catalog.get_order(intent.order_id)

        assert stored.order_id == intent.order_id
        assert stored.payment_status == PaymentStatus.COMPLETED
        assert stored.payment_reference == "TXN-SQL"
        assert stored.total == Decimal("59.98")
        assert stored.items[0].quantity == 2
        assert stored.items[0].unit_price == Decimal("29.99")
        assert stored.buyer_phone == "555-0100"

    def test_missing_order(self, sql_catalog):
        assert sql_catalog.get_order("ORD-NOPE") is None

    def test_duplicate_order_rejected(self, sql_catalog):
        _, record = order_for((_line(),))
        sql_catalog.insert_order(record)

        with pytest.raises(CatalogError) as exc:
            sql_catalog.insert_order(record)
        assert "already exists" in str(exc.value)

    def test_record_download(self, sql_catalog, session_factory):
        product = sql_catalog.create_product(product_input(is_opensource=True, main_category="opensource"))
        sql_catalog.record_download(product)

        db = session_factory()
        try:
            rows = db.query(Download).all()
        finally:
            db.close()
        assert [(row.product_id, row.type) for row in rows] == [(product.id, "free_download")]


class TestBuildCatalog:
    def test_variants(self, session_factory):
        assert isinstance(build_catalog("fixture"), FixtureCatalogService)
        assert isinstance(build_catalog("unavailable"), UnavailableCatalogService)
        assert isinstance(build_catalog("sql", session_factory), SqlCatalogService)

    def test_sql_needs_session_factory(self):
        with pytest.raises(ValueError):
            build_catalog("sql")

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_catalog("mongo")


def _line(quantity=1):
    product_unit = unit()
    return LineItem(
        product_id="p-portfolio",
        name=product_unit.name,
        unit_price=product_unit.unit_price,
        quantity=quantity,
    )
