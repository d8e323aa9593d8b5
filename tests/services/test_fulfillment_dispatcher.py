"""
FulfillmentDispatcher tests.

Tests cover:
- E-mail dispatch of each producer's own items
- API dispatch with bearer auth, external reference and producer order id
- Persisted retries: failed after MAX_DISPATCH_ATTEMPTS, never retried automatically
- One producer failing does not affect the other
- Table-configured producers resolved through the registry
- Reconciliation of API-dispatched tasks
"""

import json

import httpx
import pytest
from sqlalchemy import select

from order_kernel.exceptions import ProducerStatusError
from order_kernel.models.audit_log import AuditAction, AuditLogEntry
from order_kernel.models.fulfillment import (
    DispatchMethod,
    FulfillmentEventType,
    FulfillmentStatus,
    FulfillmentTask,
)
from order_kernel.models.order import Order, OrderStatus
from order_kernel.producers.registry import ProducerRegistry
from order_kernel.selectors.fulfillment_selector import FulfillmentSelector
from order_kernel.services.fulfillment_dispatcher import FulfillmentDispatcher
from order_kernel.settings import KernelSettings, ProducerSettings


def _api_settings(settings: KernelSettings) -> KernelSettings:
    """Kiendler in API mode, Hernach stays on e-mail."""
    return KernelSettings(
        technology_take_percent=settings.technology_take_percent,
        producer_costs=dict(settings.producer_costs),
        builtin_producers=(
            ProducerSettings(
                slug="kiendler",
                display_name="Kiendler",
                api_url="https://api.kiendler.example/v1",
                api_key="kd-secret",
            ),
            ProducerSettings(
                slug="hernach",
                display_name="Hernach",
                contact_email="office@hernach.example",
            ),
        ),
    )


@pytest.fixture
def producer_api():
    """Records requests; ``responses`` maps (method, path) to a callable or response."""
    state = {"requests": [], "responses": {}}

    def handler(request: httpx.Request) -> httpx.Response:
        state["requests"].append(request)
        key = (request.method, request.url.path)
        response = state["responses"].get(key)
        if response is None:
            return httpx.Response(404, text="not found")
        return response(request) if callable(response) else response

    state["client"] = httpx.Client(transport=httpx.MockTransport(handler))
    yield state
    state["client"].close()


@pytest.fixture
def api_dispatcher(session_factory, settings, mailer, clock, producer_api):
    api_settings = _api_settings(settings)
    registry = ProducerRegistry(api_settings, mailer, clock=clock, http_client=producer_api["client"])
    return FulfillmentDispatcher(session_factory, api_settings, registry, clock)


def _task_for(session_factory, order_id, producer):
    with session_factory() as s:
        return s.execute(
            select(FulfillmentTask).where(
                FulfillmentTask.order_id == order_id,
                FulfillmentTask.producer == producer,
            )
        ).scalar_one()


class TestEmailDispatch:
    def test_each_producer_gets_only_its_items(self, create_order, dispatcher, mailer):
        created = create_order()

        summary = dispatcher.dispatch_pending_tasks(created.order_id)

        assert summary.all_sent
        assert summary.sent_count == 2
        by_recipient = {email.to: email for email in mailer.sent}
        assert set(by_recipient) == {"bestellung@kiendler.example", "office@hernach.example"}
        kiendler_mail = by_recipient["bestellung@kiendler.example"]
        assert "KOL-250" in kiendler_mail.body
        assert "KRN-100" not in kiendler_mail.body
        assert created.order_number in kiendler_mail.subject

    def test_tasks_marked_sent(self, create_order, dispatcher, session_factory):
        created = create_order()
        dispatcher.dispatch_pending_tasks(created.order_id)

        with session_factory() as s:
            tasks = FulfillmentSelector(s).tasks_for_order(created.order_id)
            assert {t.status for t in tasks} == {FulfillmentStatus.SENT_TO_PRODUCER}
            assert {t.dispatch_method for t in tasks} == {DispatchMethod.EMAIL}
            assert all(t.sent_at is not None for t in tasks)
            assert s.get(Order, created.order_id).status == OrderStatus.PROCESSING

    def test_dispatch_is_idempotent(self, create_order, dispatcher, mailer):
        created = create_order()
        dispatcher.dispatch_pending_tasks(created.order_id)

        again = dispatcher.dispatch_pending_tasks(created.order_id)

        assert again.outcomes == ()
        assert len(mailer.sent) == 2

    def test_table_configured_producer(self, create_order, dispatcher, mailer, session_factory):
        created = create_order(lines=[("STH-200", 3)])

        summary = dispatcher.dispatch_pending_tasks(created.order_id)

        assert summary.all_sent
        assert [email.to for email in mailer.sent] == ["hof@steirerhof.example"]
        assert "3x  Geröstete Kürbiskerne" in mailer.sent[0].body

    def test_dispatch_audited(self, create_order, dispatcher, session_factory):
        created = create_order()
        dispatcher.dispatch_pending_tasks(created.order_id)

        with session_factory() as s:
            actions = s.execute(
                select(AuditLogEntry.action).where(AuditLogEntry.entity_type == "fulfillment_task")
            ).scalars().all()
            assert actions.count(AuditAction.FULFILLMENT_DISPATCHED) == 2


class TestApiDispatch:
    def test_api_order_posted(self, create_order, api_dispatcher, producer_api, mailer, session_factory):
        producer_api["responses"][("POST", "/v1/orders")] = httpx.Response(
            201, json={"order_id": "KD-1001"}
        )
        created = create_order()

        summary = api_dispatcher.dispatch_pending_tasks(created.order_id)

        assert summary.all_sent
        request = producer_api["requests"][0]
        assert request.headers["Authorization"] == "Bearer kd-secret"
        body = json.loads(request.content)
        task = _task_for(session_factory, created.order_id, "kiendler")
        assert body["external_reference"] == task.external_reference
        assert body["order_number"] == created.order_number
        assert body["items"] == [
            {"sku": "KOL-250", "quantity": 2, "product_name": "Steirisches Kürbiskernöl g.g.A."}
        ]
        assert body["shipping_address"]["city"] == "Graz"
        assert task.status == FulfillmentStatus.SENT_TO_PRODUCER
        assert task.external_order_id == "KD-1001"
        assert task.dispatch_method == DispatchMethod.API
        # Hernach went by e-mail
        assert [email.to for email in mailer.sent] == ["office@hernach.example"]

    def test_success_without_json_body(self, create_order, api_dispatcher, producer_api, session_factory):
        producer_api["responses"][("POST", "/v1/orders")] = httpx.Response(202, text="accepted")
        created = create_order(lines=[("KOL-250", 1)])

        summary = api_dispatcher.dispatch_pending_tasks(created.order_id)

        assert summary.all_sent
        assert summary.outcomes[0].external_order_id is None


class TestRetries:
    def test_failed_after_five_attempts(self, create_order, api_dispatcher, producer_api, session_factory):
        producer_api["responses"][("POST", "/v1/orders")] = httpx.Response(500, text="boom")
        created = create_order(lines=[("KOL-250", 1)])
        task_id = created.fulfillment_task_ids[0]

        outcomes = [api_dispatcher.dispatch_single_task(task_id) for _ in range(5)]

        assert [o.retry_count for o in outcomes] == [1, 2, 3, 4, 5]
        assert [o.status for o in outcomes[:4]] == [FulfillmentStatus.PENDING] * 4
        assert outcomes[-1].status == FulfillmentStatus.FAILED
        assert outcomes[-1].error == "kiendler API 500: boom"

        task = _task_for(session_factory, created.order_id, "kiendler")
        assert task.status == FulfillmentStatus.FAILED
        assert task.retry_count == 5
        assert task.last_error == "kiendler API 500: boom"

    def test_failed_task_not_retried_automatically(self, create_order, api_dispatcher, producer_api):
        producer_api["responses"][("POST", "/v1/orders")] = httpx.Response(500, text="boom")
        created = create_order(lines=[("KOL-250", 1)])
        task_id = created.fulfillment_task_ids[0]
        for _ in range(5):
            api_dispatcher.dispatch_single_task(task_id)

        skipped = api_dispatcher.dispatch_single_task(task_id)
        summary = api_dispatcher.dispatch_pending_tasks(created.order_id)

        assert not skipped.success
        assert skipped.retry_count == 5
        assert summary.outcomes == ()
        assert len(producer_api["requests"]) == 5

    def test_one_producer_failure_isolated(self, create_order, api_dispatcher, producer_api, session_factory):
        producer_api["responses"][("POST", "/v1/orders")] = httpx.Response(503, text="")
        created = create_order()

        summary = api_dispatcher.dispatch_pending_tasks(created.order_id)

        assert summary.sent_count == 1
        assert summary.failed_count == 1
        failed = next(o for o in summary.outcomes if not o.success)
        assert failed.producer == "kiendler"
        assert failed.error == "kiendler API 503: No body"
        assert _task_for(session_factory, created.order_id, "hernach").status == (
            FulfillmentStatus.SENT_TO_PRODUCER
        )

    def test_unreachable_producer(self, create_order, api_dispatcher, producer_api):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        producer_api["responses"][("POST", "/v1/orders")] = refuse
        created = create_order(lines=[("KOL-250", 1)])

        outcome = api_dispatcher.dispatch_single_task(created.fulfillment_task_ids[0])

        assert not outcome.success
        assert outcome.retry_count == 1
        assert "unreachable" in outcome.error

    def test_failure_events_recorded(self, create_order, api_dispatcher, producer_api, session_factory, clock):
        producer_api["responses"][("POST", "/v1/orders")] = httpx.Response(500, text="boom")
        created = create_order(lines=[("KOL-250", 1)])
        task_id = created.fulfillment_task_ids[0]
        for _ in range(2):
            clock.advance(30)
            api_dispatcher.dispatch_single_task(task_id)

        with session_factory() as s:
            task = FulfillmentSelector(s).get(task_id)
            assert [e.event_type for e in task.events] == [FulfillmentEventType.DISPATCH_FAILED] * 2
            assert [e.payload["retry_count"] for e in task.events] == [1, 2]


class TestReconcile:
    def _sent_api_task(self, create_order, api_dispatcher, producer_api):
        producer_api["responses"][("POST", "/v1/orders")] = httpx.Response(
            201, json={"id": "KD-7"}
        )
        created = create_order(lines=[("KOL-250", 1)])
        api_dispatcher.dispatch_pending_tasks(created.order_id)
        return created

    def test_shipped_status_applied(self, create_order, api_dispatcher, producer_api, session_factory):
        created = self._sent_api_task(create_order, api_dispatcher, producer_api)
        producer_api["responses"][("GET", "/v1/orders/KD-7/status")] = httpx.Response(
            200,
            json={"status": "shipped", "tracking_number": "AT123", "tracking_url": "https://t.example/AT123"},
        )

        status = api_dispatcher.reconcile_task_status(created.fulfillment_task_ids[0])

        assert status == FulfillmentStatus.SHIPPED
        task = _task_for(session_factory, created.order_id, "kiendler")
        assert task.tracking_number == "AT123"
        assert task.shipped_at is not None
        with session_factory() as s:
            assert s.get(Order, created.order_id).status == OrderStatus.SHIPPED

    def test_unknown_producer_status_ignored(self, create_order, api_dispatcher, producer_api):
        created = self._sent_api_task(create_order, api_dispatcher, producer_api)
        producer_api["responses"][("GET", "/v1/orders/KD-7/status")] = httpx.Response(
            200, json={"status": "mystery"}
        )

        status = api_dispatcher.reconcile_task_status(created.fulfillment_task_ids[0])

        assert status == FulfillmentStatus.SENT_TO_PRODUCER

    def test_status_api_error_raises(self, create_order, api_dispatcher, producer_api):
        created = self._sent_api_task(create_order, api_dispatcher, producer_api)
        producer_api["responses"][("GET", "/v1/orders/KD-7/status")] = httpx.Response(502)

        with pytest.raises(ProducerStatusError):
            api_dispatcher.reconcile_task_status(created.fulfillment_task_ids[0])

    def test_email_task_not_polled(self, create_order, dispatcher):
        created = create_order(lines=[("KRN-100", 1)])
        dispatcher.dispatch_pending_tasks(created.order_id)

        status = dispatcher.reconcile_task_status(created.fulfillment_task_ids[0])

        assert status == FulfillmentStatus.SENT_TO_PRODUCER
