"""
Pytest fixtures for the order kernel test suite.

Provides:
- An in-memory SQLite database per test (schema created from the models)
- A seeded catalog of two built-in producers and one table-configured producer
- Deterministic clock, settings, mailer, registry and dispatcher
- Factories for checkout inputs and committed orders

The kernel targets PostgreSQL in production.  SQLite runs the same ORM
listeners and constraints; the PostgreSQL triggers are covered by the
``postgres`` marker and skipped here.
"""

import hashlib
import hmac
import json
import logging
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID

import pytest
from sqlalchemy.orm import Session

from order_kernel.db.engine import (
    create_engine_from_url,
    create_session_factory,
    create_tables,
    session_scope,
)
from order_kernel.domain.clock import DeterministicClock
from order_kernel.domain.dtos import Address, CartLine, OrderInput
from order_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from order_kernel.models.catalog import Producer, ProducerMode, Product, ProductVariant
from order_kernel.models.commission import PartnerConfig
from order_kernel.producers.email import DryRunMailer
from order_kernel.producers.registry import ProducerRegistry
from order_kernel.services.fulfillment_dispatcher import FulfillmentDispatcher
from order_kernel.services.order_service import create_order_once
from order_kernel.settings import KernelSettings, ProducerSettings

# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture order_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, processor):
            processor.process(event)
            logs = captured_logs()
            assert any(r["message"] == "webhook_processed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("order_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    """Fresh in-memory database with the full schema."""
    engine = create_engine_from_url("sqlite://")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """
    A plain session for flush-only service tests.

    Do not combine with services that own their transactions in the same
    test: the in-memory database has a single shared connection.
    """
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# Kernel collaborators
# =============================================================================

PRODUCER_COSTS = {
    "KOL-250": 540,
    "KOL-500": 930,
    "KRN-100": 190,
    "KRN-200": 290,
    "KRN-500": 590,
    "STH-200": 310,
}

KIENDLER_EMAIL = "bestellung@kiendler.example"
HERNACH_EMAIL = "office@hernach.example"


@pytest.fixture
def clock():
    """Fixed at 2026-01-15 12:00 UTC."""
    return DeterministicClock()


@pytest.fixture
def settings() -> KernelSettings:
    return KernelSettings(
        technology_take_percent=Decimal("10"),
        producer_costs=PRODUCER_COSTS,
        builtin_producers=(
            ProducerSettings(slug="kiendler", display_name="Kiendler", contact_email=KIENDLER_EMAIL),
            ProducerSettings(slug="hernach", display_name="Hernach", contact_email=HERNACH_EMAIL),
        ),
        stuck_pending_after_minutes=60,
        registry_cache_ttl_seconds=300,
    )


@pytest.fixture
def mailer() -> DryRunMailer:
    return DryRunMailer()


@pytest.fixture
def registry(settings, mailer, clock) -> ProducerRegistry:
    return ProducerRegistry(settings, mailer, clock=clock)


@pytest.fixture
def dispatcher(session_factory, settings, registry, clock) -> FulfillmentDispatcher:
    return FulfillmentDispatcher(session_factory, settings, registry, clock)


# =============================================================================
# Catalog
# =============================================================================


@pytest.fixture
def catalog(session_factory) -> dict[str, UUID]:
    """
    Seed products and variants; returns SKU -> variant id.

    kiendler:   KOL-250 (1790c), KOL-500 (2990c), KOL-OLD (inactive)
    hernach:    KRN-100 (490c), KRN-200 (790c), KRN-999 (no producer cost)
    steirerhof: STH-200 (1290c), table-configured e-mail producer
    """
    rows = [
        ("kiendler", "kuerbiskernoel", "Steirisches Kürbiskernöl g.g.A.", [
            ("KOL-250", "250 ml Flasche", 1790, 250, None, True),
            ("KOL-500", "500 ml Flasche", 2990, 500, None, True),
            ("KOL-OLD", "1 l Kanister", 4990, 1000, None, False),
        ]),
        ("hernach", "steirischer-kren", "Steirischer Kren g.g.A.", [
            ("KRN-100", "100 g Glas", 490, None, 100, True),
            ("KRN-200", "200 g Glas", 790, None, 200, True),
            ("KRN-999", "Probierglas", 190, None, 40, True),
        ]),
        ("steirerhof", "kuerbiskerne", "Geröstete Kürbiskerne", [
            ("STH-200", "200 g Beutel", 1290, None, 200, True),
        ]),
    ]
    variant_ids: dict[str, UUID] = {}
    with session_scope(session_factory) as session:
        session.add(Producer(
            slug="steirerhof",
            display_name="Steirerhof",
            mode=ProducerMode.EMAIL,
            contact_email="hof@steirerhof.example",
            is_active=True,
        ))
        for producer, slug, name, variants in rows:
            product = Product(slug=slug, name=name, producer=producer, is_active=True)
            session.add(product)
            session.flush()
            for sku, variant_name, price, size_ml, weight, active in variants:
                variant = ProductVariant(
                    product_id=product.id,
                    sku=sku,
                    name=variant_name,
                    price_cents=price,
                    size_ml=size_ml,
                    weight_grams=weight,
                    is_active=active,
                )
                session.add(variant)
                session.flush()
                variant_ids[sku] = variant.id
    return variant_ids


@pytest.fixture
def partner(session_factory) -> None:
    """Attribution partner ``aigg`` at 5 %."""
    with session_scope(session_factory) as session:
        session.add(PartnerConfig(
            code="aigg",
            name="Austria Imperial Green Gold Partner",
            commission_percent=Decimal("5.00"),
            is_active=True,
        ))


# =============================================================================
# Order factories
# =============================================================================

SHIPPING_ADDRESS = Address(
    name="Maria Huber",
    street="Hauptplatz 1",
    city="Graz",
    postal_code="8010",
    country="AT",
)


@pytest.fixture
def make_order_input(catalog):
    """
    Build an OrderInput; defaults to the reference order:
    2x KOL-250 + 1x KRN-100, shipping 500c, payment fee 120c (total 4570c).
    """
    counter = {"n": 0}

    def _make(
        lines: list[tuple[str, int]] | None = None,
        payment_session_id: str | None = None,
        shipping_cents: int = 500,
        payment_fee_cents: int = 120,
        **overrides,
    ) -> OrderInput:
        counter["n"] += 1
        lines = lines if lines is not None else [("KOL-250", 2), ("KRN-100", 1)]
        values = dict(
            payment_session_id=payment_session_id or f"cs_test_{counter['n']:04d}",
            payment_intent_id=f"pi_test_{counter['n']:04d}",
            lines=tuple(CartLine(variant_id=catalog[sku], quantity=qty) for sku, qty in lines),
            shipping_address=SHIPPING_ADDRESS,
            shipping_cents=shipping_cents,
            payment_fee_cents=payment_fee_cents,
            guest_email="maria.huber@example.at",
        )
        values.update(overrides)
        return OrderInput(**values)

    return _make


@pytest.fixture
def create_order(session_factory, settings, clock, make_order_input):
    """Create and commit an order; keyword arguments go to ``make_order_input``."""

    def _create(**kwargs):
        return create_order_once(session_factory, settings, make_order_input(**kwargs), clock=clock)

    return _create


# =============================================================================
# Webhook signing
# =============================================================================


@pytest.fixture
def sign_webhook():
    """
    Build the signature header a payment provider attaches to a delivery:
    ``t=<timestamp>,v1=<HMAC-SHA256 of "<timestamp>.<body>">``.
    """

    def _sign(secret: str, timestamp: int, body: bytes) -> str:
        message = f"{timestamp}.".encode("utf-8") + body
        digest = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    return _sign
