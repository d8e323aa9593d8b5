"""
OrderService tests.

Tests cover:
- Reference order: totals, sale ledger entry and split
- Bundle split: one fulfillment task per distinct producer
- Prices from the catalog, items snapshotted
- Validation before any write
- Idempotent creation per payment session
- Audit entry for every order
"""

from dataclasses import replace
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from order_kernel.domain.dtos import CartLine
from order_kernel.exceptions import (
    EmptyCartError,
    InvalidQuantityError,
    MissingCustomerError,
    NonIntegerAmountError,
    OrderAlreadyExistsError,
    UnknownSkuCostError,
    UnknownVariantError,
)
from order_kernel.models.audit_log import AuditAction, AuditLogEntry
from order_kernel.models.fulfillment import FulfillmentStatus, FulfillmentTask
from order_kernel.models.ledger import LedgerEntry, LedgerEntryType
from order_kernel.models.order import Order, OrderItem, OrderStatus
from order_kernel.services import order_service
from order_kernel.services.order_service import OrderService, create_order_once


def _count(session, model) -> int:
    return session.execute(select(func.count()).select_from(model)).scalar_one()


class TestCreateOrder:
    def test_reference_order_totals(self, create_order, session_factory):
        created = create_order()

        with session_factory() as s:
            order = s.get(Order, created.order_id)
            assert order.subtotal_cents == 4070
            assert order.shipping_cents == 500
            assert order.total_cents == 4570
            assert order.payment_fee_cents == 120
            assert order.status == OrderStatus.PAID
            assert order.currency == "EUR"
            assert order.order_number == created.order_number

    def test_sale_entry_carries_costs_and_split(self, create_order, session_factory):
        created = create_order()

        with session_factory() as s:
            sale = s.get(LedgerEntry, created.ledger_entry_id)
            assert sale.entry_type == LedgerEntryType.SALE
            assert sale.revenue_cents == 4570
            assert sale.producer_cost_cents == 1270
            assert sale.shipping_cents == 500
            assert sale.payment_fee_cents == 120
            assert sale.packaging_cents == 0
            assert sale.customs_cents == 0
            assert sale.gross_profit_cents == 2680
            assert sale.technology_share_cents == 445
            assert sale.partner_share_cents == 1117
            assert sale.company_share_cents == 1118
            assert sale.notes == f"Sale {created.order_number}"

    def test_one_task_per_producer(self, create_order, session_factory):
        created = create_order(lines=[("KOL-250", 1), ("KRN-100", 2), ("KOL-500", 1)])

        assert len(created.fulfillment_task_ids) == 2
        with session_factory() as s:
            tasks = s.execute(
                select(FulfillmentTask).where(FulfillmentTask.order_id == created.order_id)
            ).scalars().all()
            assert sorted(t.producer for t in tasks) == ["hernach", "kiendler"]
            for task in tasks:
                assert task.status == FulfillmentStatus.PENDING
                assert task.retry_count == 0
                assert task.external_reference == f"AIGG-FO-{task.id}"

    def test_single_producer_order_has_one_task(self, create_order):
        created = create_order(lines=[("KOL-250", 1), ("KOL-500", 1)])
        assert len(created.fulfillment_task_ids) == 1

    def test_items_snapshot_catalog_data(self, create_order, session_factory):
        created = create_order()

        with session_factory() as s:
            items = s.execute(
                select(OrderItem)
                .where(OrderItem.order_id == created.order_id)
                .order_by(OrderItem.position)
            ).scalars().all()
            assert [(i.sku, i.quantity, i.unit_price_cents, i.line_total_cents, i.producer)
                    for i in items] == [
                ("KOL-250", 2, 1790, 3580, "kiendler"),
                ("KRN-100", 1, 490, 490, "hernach"),
            ]
            assert items[0].size_ml == 250
            assert items[1].weight_grams == 100

    def test_guest_identity(self, create_order, session_factory):
        created = create_order()
        with session_factory() as s:
            order = s.get(Order, created.order_id)
            assert order.customer_id is None
            assert order.guest_email == "maria.huber@example.at"
            assert order.contact_email == "maria.huber@example.at"

    def test_customer_identity_wins_over_guest_email(self, create_order, session_factory):
        created = create_order(customer_id="cus_42", guest_email="ignored@example.at")
        with session_factory() as s:
            order = s.get(Order, created.order_id)
            assert order.customer_id == "cus_42"
            assert order.guest_email is None

    def test_audit_entry_written(self, create_order, session_factory):
        created = create_order()
        with session_factory() as s:
            entry = s.execute(
                select(AuditLogEntry).where(AuditLogEntry.action == AuditAction.ORDER_CREATED)
            ).scalar_one()
            assert entry.entity_id == str(created.order_id)
            assert entry.new_values["total_cents"] == 4570
            assert entry.new_values["producers"] == ["kiendler", "hernach"]

    def test_order_created_log(self, create_order, captured_logs):
        created = create_order()
        records = [r for r in captured_logs() if r["message"] == "order_created"]
        assert len(records) == 1
        assert records[0]["order_number"] == created.order_number
        assert records[0]["total_cents"] == 4570


class TestIdempotentCreation:
    def test_same_payment_session_returns_existing_order(
        self, create_order, session_factory
    ):
        first = create_order(payment_session_id="cs_same")
        second = create_order(payment_session_id="cs_same")

        assert second.already_existed
        assert second.order_id == first.order_id
        assert second.ledger_entry_id == first.ledger_entry_id
        assert second.fulfillment_task_ids == first.fulfillment_task_ids
        with session_factory() as s:
            assert _count(s, Order) == 1
            assert _count(s, LedgerEntry) == 1

    @pytest.mark.parametrize("lines", [
        [("KOL-250", 1), ("KRN-100", 1)],
        [("KRN-100", 1), ("KOL-250", 1)],
    ])
    def test_existing_task_ids_keep_first_seen_producer_order(self, create_order, lines):
        first = create_order(lines=lines, payment_session_id="cs_order_of_tasks")
        second = create_order(lines=lines, payment_session_id="cs_order_of_tasks")

        assert second.already_existed
        assert second.fulfillment_task_ids == first.fulfillment_task_ids

    def test_order_number_collision_retried(
        self, monkeypatch, session_factory, settings, clock, make_order_input
    ):
        numbers = iter(["AIGG-20260115-AAAA", "AIGG-20260115-AAAA", "AIGG-20260115-BBBB"])
        monkeypatch.setattr(order_service, "generate_order_number", lambda *args: next(numbers))

        first = create_order_once(session_factory, settings, make_order_input(), clock=clock)
        second = create_order_once(session_factory, settings, make_order_input(), clock=clock)

        assert first.order_number == "AIGG-20260115-AAAA"
        assert second.order_number == "AIGG-20260115-BBBB"
        assert not second.already_existed

    def test_order_number_collision_gives_up(
        self, monkeypatch, session_factory, settings, clock, make_order_input, captured_logs
    ):
        monkeypatch.setattr(order_service, "generate_order_number", lambda *args: "AIGG-20260115-AAAA")
        create_order_once(session_factory, settings, make_order_input(), clock=clock)

        with pytest.raises(OrderAlreadyExistsError):
            create_order_once(session_factory, settings, make_order_input(), clock=clock)

        collisions = [r for r in captured_logs() if r["message"] == "order_number_collision"]
        assert [r["attempt"] for r in collisions] == [1, 2, 3]
        with session_factory() as s:
            assert _count(s, Order) == 1

    def test_order_number_collision_raises(self, session, settings, clock, make_order_input):
        service = OrderService(session, settings, clock, order_number_factory=lambda: "AIGG-20260115-AAAA")
        service.create_order(make_order_input())

        with pytest.raises(OrderAlreadyExistsError):
            service.create_order(make_order_input())


class TestValidation:
    def test_missing_customer(self, session, settings, clock, make_order_input):
        with pytest.raises(MissingCustomerError):
            OrderService(session, settings, clock).create_order(
                make_order_input(guest_email=None)
            )

    def test_empty_cart(self, session, settings, clock, make_order_input):
        with pytest.raises(EmptyCartError):
            OrderService(session, settings, clock).create_order(make_order_input(lines=[]))

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, True])
    def test_invalid_quantity(self, session, settings, clock, make_order_input, catalog, quantity):
        order_input = replace(
            make_order_input(),
            lines=(CartLine(variant_id=catalog["KOL-250"], quantity=quantity),),
        )
        with pytest.raises(InvalidQuantityError):
            OrderService(session, settings, clock).create_order(order_input)

    def test_float_shipping_rejected(self, session, settings, clock, make_order_input):
        with pytest.raises(NonIntegerAmountError):
            OrderService(session, settings, clock).create_order(
                make_order_input(shipping_cents=4.5)
            )

    def test_unknown_variant(self, session, settings, clock, make_order_input):
        order_input = replace(
            make_order_input(), lines=(CartLine(variant_id=uuid4(), quantity=1),)
        )
        with pytest.raises(UnknownVariantError):
            OrderService(session, settings, clock).create_order(order_input)

    def test_inactive_variant(self, session, settings, clock, make_order_input):
        with pytest.raises(UnknownVariantError):
            OrderService(session, settings, clock).create_order(
                make_order_input(lines=[("KOL-OLD", 1)])
            )

    def test_sku_without_producer_cost(self, session, settings, clock, make_order_input):
        with pytest.raises(UnknownSkuCostError) as exc_info:
            OrderService(session, settings, clock).create_order(
                make_order_input(lines=[("KRN-999", 1)])
            )
        assert exc_info.value.sku == "KRN-999"

    def test_nothing_written_on_rejection(self, session, settings, clock, make_order_input):
        with pytest.raises(UnknownSkuCostError):
            OrderService(session, settings, clock).create_order(
                make_order_input(lines=[("KOL-250", 1), ("KRN-999", 1)])
            )
        assert _count(session, Order) == 0
        assert _count(session, FulfillmentTask) == 0
