"""
ProducerRegistry and StandardProducerClient tests.

Tests cover:
- Built-in producers from settings, in e-mail and API mode
- Table-configured producers, inactive rows and the TTL cache
- Client behaviour without contact details and status mapping
"""

from uuid import uuid4

import httpx
import pytest

from order_kernel.db.engine import session_scope
from order_kernel.exceptions import ProducerStatusError, UnknownProducerError
from order_kernel.models.catalog import Producer, ProducerMode
from order_kernel.models.fulfillment import DispatchMethod, FulfillmentStatus
from order_kernel.producers.base import ProducerOrderItem, ProducerOrderPayload
from order_kernel.producers.clients import StandardProducerClient, map_producer_status
from order_kernel.producers.email import Mailer
from order_kernel.settings import ProducerSettings


def _add_producer(session_factory, **values):
    with session_scope(session_factory) as s:
        s.add(Producer(**values))


class TestBuiltin:
    def test_builtin_resolved_without_session(self, registry):
        client = registry.resolve("kiendler")
        assert client.name == "kiendler"
        assert client.mode == DispatchMethod.EMAIL
        assert registry.builtin_names == ["hernach", "kiendler"]

    def test_register_replaces_builtin(self, registry, mailer):
        replacement = StandardProducerClient(
            ProducerSettings(slug="kiendler", display_name="Kiendler", api_url="https://k", api_key="x"),
            mailer,
        )
        registry.register(replacement)
        assert registry.resolve("kiendler") is replacement
        assert registry.resolve("kiendler").is_api_mode


class TestTableProducers:
    def test_loaded_from_table(self, registry, session_factory):
        _add_producer(
            session_factory,
            slug="bergbauer",
            display_name="Bergbauer",
            mode=ProducerMode.API,
            api_url="https://api.bergbauer.example",
            api_key="bb-key",
            is_active=True,
        )
        with session_factory() as s:
            client = registry.resolve("bergbauer", s)
        assert client.mode == DispatchMethod.API

    def test_email_row_ignores_api_credentials(self, registry, session_factory):
        _add_producer(
            session_factory,
            slug="almhof",
            display_name="Almhof",
            mode=ProducerMode.EMAIL,
            api_url="https://api.almhof.example",
            api_key="ignored",
            contact_email="hof@almhof.example",
            is_active=True,
        )
        with session_factory() as s:
            assert registry.resolve("almhof", s).mode == DispatchMethod.EMAIL

    def test_inactive_row_is_unknown(self, registry, session_factory):
        _add_producer(session_factory, slug="zu", display_name="Zu", mode=ProducerMode.EMAIL, is_active=False)
        with session_factory() as s:
            with pytest.raises(UnknownProducerError):
                registry.resolve("zu", s)

    def test_unknown_without_session(self, registry):
        with pytest.raises(UnknownProducerError) as exc_info:
            registry.resolve("nobody")
        assert exc_info.value.code == "UNKNOWN_PRODUCER"

    def test_cache_expires_after_ttl(self, registry, session_factory, clock, catalog):
        with session_factory() as s:
            first = registry.resolve("steirerhof", s)
        assert registry.resolve("steirerhof") is first

        clock.advance(301)
        with pytest.raises(UnknownProducerError):
            registry.resolve("steirerhof")
        with session_factory() as s:
            assert registry.resolve("steirerhof", s) is not first

    def test_invalidate(self, registry, session_factory, catalog):
        with session_factory() as s:
            registry.resolve("steirerhof", s)
        registry.invalidate("steirerhof")
        with pytest.raises(UnknownProducerError):
            registry.resolve("steirerhof")


class TestClient:
    def test_email_mode_without_address_fails(self, mailer, payload_factory):
        client = StandardProducerClient(ProducerSettings(slug="x", display_name="X"), mailer)

        result = client.send_order(payload_factory())

        assert not result.success
        assert result.error == "No contact email configured for x"
        assert mailer.sent == []

    def test_failed_delivery(self, payload_factory):
        class RefusingMailer(Mailer):
            def send(self, email):
                return False

        client = StandardProducerClient(
            ProducerSettings(slug="x", display_name="X", contact_email="x@example.at"), RefusingMailer()
        )
        result = client.send_order(payload_factory())
        assert result.error == "Email delivery failed"

    def test_status_of_email_producer(self, mailer):
        client = StandardProducerClient(ProducerSettings(slug="x", display_name="X"), mailer)
        assert client.get_status("anything").status == FulfillmentStatus.SENT_TO_PRODUCER

    def test_status_non_json(self, mailer):
        http = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200, text="ok")))
        client = StandardProducerClient(
            ProducerSettings(slug="x", display_name="X", api_url="https://x", api_key="k"),
            mailer,
            http_client=http,
        )
        with pytest.raises(ProducerStatusError):
            client.get_status("X-1")

    @pytest.mark.parametrize("raw, expected", [
        ("received", FulfillmentStatus.CONFIRMED),
        (" Shipped ", FulfillmentStatus.SHIPPED),
        ("delivered", FulfillmentStatus.DELIVERED),
        ("cancelled", FulfillmentStatus.CANCELLED),
        ("on_hold", FulfillmentStatus.SENT_TO_PRODUCER),
        (None, FulfillmentStatus.SENT_TO_PRODUCER),
    ])
    def test_status_mapping(self, raw, expected):
        assert map_producer_status(raw) == expected


@pytest.fixture
def payload_factory():
    def _make():
        return ProducerOrderPayload(
            task_id=uuid4(),
            external_reference="AIGG-FO-1",
            order_number="AIGG-20260115-AAAA",
            items=(ProducerOrderItem(sku="KOL-250", product_name="Öl", variant_name="250 ml", quantity=1),),
            shipping_address={"name": "A", "street": "B", "city": "C", "postal_code": "1", "country": "AT"},
        )

    return _make
