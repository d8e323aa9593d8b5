"""
Catalog models -- producers, products and purchasable variants.

Responsibility:
    Hold the data that order creation resolves cart lines against: the
    variant price (never trusted from the client), the owning product's
    producer (never user-supplied) and the descriptive fields snapshotted
    onto order items for producer payloads.

Architecture position:
    Kernel > Models.  Read by OrderService and ProducerRegistry; maintained
    outside the core.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from order_kernel.db.base import TimestampedBase
from order_kernel.db.types import UUIDString, enum_column_type


class ProducerMode(str, Enum):
    """How orders reach a producer."""

    API = "api"
    EMAIL = "email"


class Producer(TimestampedBase):
    """
    Table-configured producer.

    Contract:
        Producers not shipped with the kernel's built-in configuration are
        registered here; the ProducerRegistry builds one client per active
        row.  ``slug`` is the producer key stored on order items and tasks.

    Non-goals:
        The API key is stored as provided; key encryption is handled by the
        operator surface that maintains this table.
    """

    __tablename__ = "producers"

    __table_args__ = (
        Index("idx_producer_active", "is_active"),
    )

    slug: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    mode: Mapped[ProducerMode] = mapped_column(
        enum_column_type(ProducerMode, 10), default=ProducerMode.EMAIL, nullable=False
    )
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    api_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    api_key: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Producer {self.slug} mode={self.mode} active={self.is_active}>"


class Product(TimestampedBase):
    """A sellable product, owned by exactly one producer."""

    __tablename__ = "products"

    slug: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    producer: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    variants: Mapped[list["ProductVariant"]] = relationship(
        back_populates="product",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Product {self.slug} producer={self.producer}>"


class ProductVariant(TimestampedBase):
    """
    A purchasable variant (bottle size, jar weight) of a product.

    Guarantees:
        - ``sku`` is unique and keys the producer cost table.
        - ``price_cents`` is the authoritative unit price at checkout.
    """

    __tablename__ = "product_variants"

    __table_args__ = (
        Index("idx_variant_product", "product_id"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False
    )
    sku: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    size_ml: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weight_grams: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    product: Mapped[Product] = relationship(back_populates="variants", lazy="joined")

    @property
    def is_purchasable(self) -> bool:
        return self.is_active and self.product.is_active

    def __repr__(self) -> str:
        return f"<ProductVariant {self.sku} {self.price_cents}c>"
