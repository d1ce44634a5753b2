"""
Catalog Service

Record-oriented access to the `products` and `orders` collections (plus the
free-download log). The checkout core only needs "insert one order record"
and "read one product by id"; listing, filtering and admin CRUD serve the
browsing and admin endpoints.

Variants, selected by the CATALOG_BACKEND setting:
    - sql: SqlCatalogService over SQLAlchemy (PostgreSQL in deployment, sqlite in tests)
    - fixture: FixtureCatalogService, in-memory and seeded with sample products
    - unavailable: UnavailableCatalogService, every call raises CatalogUnavailable

Error translation:
    SQLAlchemy connection failures become CatalogUnavailable, every other
    SQLAlchemyError becomes CatalogError. Nothing from the driver leaks out.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from shared.database import session_scope
from storefront.errors import CatalogError, CatalogUnavailable, ProductNotFound
from storefront.models import Download, Order, Product
from storefront.records import (
    OrderRecord,
    ProductFilter,
    ProductInput,
    ProductRecord,
    utcnow,
)
from storefront.seed_data import sample_products

logger = logging.getLogger(__name__)


class CatalogService:
    """Read/write access to products and orders."""

    def list_products(self, product_filter: ProductFilter) -> List[ProductRecord]:
        raise NotImplementedError

    def list_all_products(self) -> List[ProductRecord]:
        raise NotImplementedError

    def get_product(self, product_id: str) -> ProductRecord:
        raise NotImplementedError

    def create_product(self, data: ProductInput) -> ProductRecord:
        raise NotImplementedError

    def update_product(self, product_id: str, data: ProductInput) -> ProductRecord:
        raise NotImplementedError

    def delete_product(self, product_id: str) -> None:
        raise NotImplementedError

    def insert_order(self, record: OrderRecord) -> None:
        raise NotImplementedError

    def get_order(self, order_id: str) -> Optional[OrderRecord]:
        raise NotImplementedError

    def record_download(self, product: ProductRecord) -> None:
        raise NotImplementedError


class SqlCatalogService(CatalogService):
    """Catalog backed by SQL tables."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        try:
            with session_scope(self.session_factory) as db:
                yield db
        except OperationalError as e:
            logger.error(f"Catalog unreachable during {action}: {e}")
            raise CatalogUnavailable(f"Catalog unreachable during {action}") from e
        except SQLAlchemyError as e:
            logger.error(f"Catalog error during {action}: {e}")
            raise CatalogError(f"Catalog error during {action}: {e.__class__.__name__}") from e

    def list_products(self, product_filter: ProductFilter) -> List[ProductRecord]:
        with self._session("list_products") as db:
            query = db.query(Product).filter(Product.status == product_filter.status)
            if product_filter.category_value is not None:
                query = query.filter(Product.main_category == product_filter.category_value)
            if product_filter.subcategory_value is not None:
                query = query.filter(Product.subcategory == product_filter.subcategory_value)
            rows = query.order_by(Product.created_at.desc(), Product.name).all()
            return [ProductRecord.model_validate(row) for row in rows]

    def list_all_products(self) -> List[ProductRecord]:
        with self._session("list_all_products") as db:
            rows = db.query(Product).order_by(Product.created_at.desc(), Product.name).all()
            return [ProductRecord.model_validate(row) for row in rows]

    def get_product(self, product_id: str) -> ProductRecord:
        with self._session("get_product") as db:
            row = db.query(Product).filter(Product.id == product_id).first()
            if row is None:
                raise ProductNotFound(product_id)
            return ProductRecord.model_validate(row)

    def create_product(self, data: ProductInput) -> ProductRecord:
        with self._session("create_product") as db:
            row = Product(**data.cleaned())
            db.add(row)
            db.flush()
            db.refresh(row)
            logger.info(f"Created product {row.id}: {row.name}")
            return ProductRecord.model_validate(row)

    def update_product(self, product_id: str, data: ProductInput) -> ProductRecord:
        values = data.cleaned()
        with self._session("update_product") as db:
            row = db.query(Product).filter(Product.id == product_id).first()
            if row is None:
                raise ProductNotFound(product_id)
            for column, value in values.items():
                setattr(row, column, value)
            row.updated_at = utcnow()
            db.flush()
            db.refresh(row)
            logger.info(f"Updated product {product_id}")
            return ProductRecord.model_validate(row)

    def delete_product(self, product_id: str) -> None:
        with self._session("delete_product") as db:
            deleted = db.query(Product).filter(Product.id == product_id).delete()
            if not deleted:
                raise ProductNotFound(product_id)
            logger.info(f"Deleted product {product_id}")

    def insert_order(self, record: OrderRecord) -> None:
        try:
            with self._session("insert_order") as db:
                db.add(
                    Order(
                        order_id=record.order_id,
                        customer_name=record.buyer_name,
                        customer_email=record.buyer_email,
                        customer_phone=record.buyer_phone,
                        total_amount=record.total,
                        currency=record.currency,
                        payment_status=record.payment_status.value,
                        payment_reference=record.payment_reference,
                        items=[item.model_dump(mode="json") for item in record.items],
                        created_at=record.created_at,
                        updated_at=record.updated_at,
                    )
                )
        except CatalogError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise CatalogError(f"Order {record.order_id} already exists") from e.__cause__
            raise
        logger.info(f"Inserted order {record.order_id}", extra={"order_id": record.order_id})

    def get_order(self, order_id: str) -> Optional[OrderRecord]:
        with self._session("get_order") as db:
            row = db.query(Order).filter(Order.order_id == order_id).first()
            if row is None:
                return None
            return OrderRecord(
                order_id=row.order_id,
                buyer_name=row.customer_name,
                buyer_email=row.customer_email,
                buyer_phone=row.customer_phone,
                total=row.total_amount,
                currency=row.currency,
                payment_status=row.payment_status,
                payment_reference=row.payment_reference,
                items=row.items,
                created_at=row.created_at,
                updated_at=row.updated_at,
            )

    def record_download(self, product: ProductRecord) -> None:
        with self._session("record_download") as db:
            db.add(Download(product_id=product.id, product_name=product.name, type="free_download"))
        logger.info(f"Recorded free download of {product.id}")


class FixtureCatalogService(CatalogService):
    """In-memory catalog for offline demos and tests."""

    def __init__(self, products: Optional[List[ProductRecord]] = None):
        seed = sample_products() if products is None else products
        self._products: Dict[str, ProductRecord] = {product.id: product for product in seed}
        self._orders: Dict[str, OrderRecord] = {}
        self.downloads: List[str] = []
        self._lock = threading.Lock()

    def list_products(self, product_filter: ProductFilter) -> List[ProductRecord]:
        with self._lock:
            return [product for product in self._products.values() if product_filter.matches(product)]

    def list_all_products(self) -> List[ProductRecord]:
        with self._lock:
            return list(self._products.values())

    def get_product(self, product_id: str) -> ProductRecord:
        with self._lock:
            product = self._products.get(product_id)
        if product is None:
            raise ProductNotFound(product_id)
        return product

    def create_product(self, data: ProductInput) -> ProductRecord:
        now = utcnow()
        product = ProductRecord(id=str(uuid4()), created_at=now, updated_at=now, **data.cleaned())
        with self._lock:
            self._products[product.id] = product
        logger.info(f"Created product {product.id}: {product.name}")
        return product

    def update_product(self, product_id: str, data: ProductInput) -> ProductRecord:
        values = data.cleaned()
        with self._lock:
            current = self._products.get(product_id)
            if current is None:
                raise ProductNotFound(product_id)
            updated = current.model_copy(update={**values, "updated_at": utcnow()})
            self._products[product_id] = updated
        return updated

    def delete_product(self, product_id: str) -> None:
        with self._lock:
            if self._products.pop(product_id, None) is None:
                raise ProductNotFound(product_id)

    def insert_order(self, record: OrderRecord) -> None:
        with self._lock:
            if record.order_id in self._orders:
                raise CatalogError(f"Order {record.order_id} already exists")
            self._orders[record.order_id] = record
        logger.info(f"Inserted order {record.order_id}", extra={"order_id": record.order_id})

    def get_order(self, order_id: str) -> Optional[OrderRecord]:
        with self._lock:
            return self._orders.get(order_id)

    def record_download(self, product: ProductRecord) -> None:
        with self._lock:
            self.downloads.append(product.id)


class UnavailableCatalogService(CatalogService):
    """Catalog that is down. Every operation raises CatalogUnavailable."""

    def __init__(self, reason: str = "Catalog backend is unavailable"):
        self.reason = reason

    def _fail(self, *args, **kwargs):
        raise CatalogUnavailable(self.reason)

    list_products = _fail
    list_all_products = _fail
    get_product = _fail
    create_product = _fail
    update_product = _fail
    delete_product = _fail
    insert_order = _fail
    get_order = _fail
    record_download = _fail


def build_catalog(backend: str, session_factory: Optional[sessionmaker] = None) -> CatalogService:
    """Pick the catalog variant named by configuration."""
    if backend == "sql":
        if session_factory is None:
            raise ValueError("sql catalog backend needs a session factory")
        return SqlCatalogService(session_factory)
    if backend == "fixture":
        return FixtureCatalogService()
    if backend == "unavailable":
        return UnavailableCatalogService()
    raise ValueError(f"Unknown catalog backend: {backend}")
