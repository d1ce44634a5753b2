from uuid import uuid4

from sqlalchemy import JSON, Boolean, Column, DateTime, Numeric, String, Text, func

from shared.database import Base


def _new_id() -> str:
    return str(uuid4())


class Product(Base):
    """Product listed in the storefront."""

    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    main_category = Column(String(100), nullable=False, index=True)
    subcategory = Column(String(100), nullable=False, index=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    images = Column(JSON, nullable=False, default=list)
    download_url = Column(String(1000), nullable=True)
    live_demo_url = Column(String(1000), nullable=True)
    is_opensource = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default="active", index=True)  # active, inactive
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class Order(Base):
    """Order recorded after a confirmed payment."""

    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_new_id)
    order_id = Column(String(64), unique=True, nullable=False, index=True)
    customer_name = Column(String(255), nullable=False)
    customer_email = Column(String(255), nullable=False)
    customer_phone = Column(String(50), nullable=True)
    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="USD", nullable=False)
    payment_status = Column(String(20), nullable=False)  # completed, failed, cancelled
    payment_reference = Column(String(255), nullable=False)
    items = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class Download(Base):
    """Free-download log for open source products."""

    __tablename__ = "downloads"

    id = Column(String(36), primary_key=True, default=_new_id)
    product_id = Column(String(36), nullable=False, index=True)
    product_name = Column(String(255), nullable=False)
    type = Column(String(50), nullable=False, default="free_download")
    downloaded_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
