# Overview: Pytest coverage for the order lifecycle engine.

"""
Order Lifecycle Tests

Verifies:
- The state graph has no back-edges and rejects illegal moves
- Checkout writes the creation entry and PaymentPending atomically
- Each applied event appends exactly one history entry
- Same-state events are AlreadyInState and write nothing
- Redelivered events (same dedupe key) are answered from the inbox
- Concurrent reports of the same event record one transition
- Cancellation refunds captured payments first, even when payment lands mid-cancel
- A transition that loses every CAS round is retryable, not recorded
"""

import threading
from datetime import timedelta

import pytest

from giftsity.errors import (
    AlreadyInState, ConcurrentUpdate, Forbidden, GiftsityError, IllegalTransition, NotFound,
    PaymentCollaboratorError, ValidationError,
)
from giftsity.extensions import db
from giftsity.models import Order, OrderEvent, OrderTransition, Product, Shipment
from giftsity.services import lifecycle_service, order_service, payment_service, shipment_service
from giftsity.services.lifecycle_service import (
    CANCELLED, DELIVERED, FULFILLING, LEGAL_EDGES, PAYMENT_CONFIRMED, PAYMENT_PENDING, PLACED,
    SHIPPED,
)
from giftsity.time_utils import utcnow

from conftest import fresh


CANONICAL_ORDER = ["Placed", "PaymentPending", "PaymentConfirmed", "Fulfilling", "Shipped", "Delivered"]


def _place(customer, *products, quantity=1):
    items = [{"product_id": p.id, "quantity": quantity} for p in products]
    return order_service.place_order(customer, items)


def _confirm_payment(order, event_id="evt-1"):
    return payment_service.handle_payment_callback({
        "event_id": event_id,
        "order_number": order.order_number,
        "status": "succeeded",
        "payment_reference": f"pay_{order.order_number}",
    })


def _history_states(order_id):
    return [(entry.from_state, entry.to_state) for entry in lifecycle_service.history(order_id)]


def assert_history_well_formed(order_id):
    entries = lifecycle_service.history(order_id)
    assert [entry.sequence for entry in entries] == list(range(1, len(entries) + 1))
    assert entries[0].from_state is None
    for previous, entry in zip(entries, entries[1:]):
        assert entry.from_state == previous.to_state
        assert lifecycle_service.can_transition(entry.from_state, entry.to_state)
        assert entry.occurred_at >= previous.occurred_at
    assert fresh(Order, order_id).version == len(entries)


class TestStateGraph:
    def test_no_back_edges(self):
        for source, targets in LEGAL_EDGES.items():
            if source not in CANONICAL_ORDER:
                continue
            for target in targets:
                if target in CANONICAL_ORDER:
                    assert CANONICAL_ORDER.index(target) > CANONICAL_ORDER.index(source), (source, target)

    @pytest.mark.parametrize("source,target,allowed", [
        (None, PLACED, True),
        (PLACED, PAYMENT_PENDING, True),
        (PAYMENT_PENDING, PAYMENT_CONFIRMED, True),
        (PAYMENT_CONFIRMED, SHIPPED, True),
        (PAYMENT_CONFIRMED, FULFILLING, True),
        (SHIPPED, DELIVERED, True),
        (PAYMENT_PENDING, SHIPPED, False),
        (SHIPPED, CANCELLED, False),
        (DELIVERED, SHIPPED, False),
        (CANCELLED, PLACED, False),
        (SHIPPED, SHIPPED, False),
    ])
    def test_can_transition(self, source, target, allowed):
        assert lifecycle_service.can_transition(source, target) is allowed

    def test_unknown_state(self):
        with pytest.raises(ValidationError):
            lifecycle_service.can_transition(PLACED, "Teleported")
        with pytest.raises(ValidationError):
            lifecycle_service.target_for("order_teleported")

    def test_every_event_targets_a_state(self):
        for event_type, target in lifecycle_service.EVENT_TARGETS.items():
            assert target in lifecycle_service.STATES
            assert event_type in lifecycle_service.EVENT_ACTORS


class TestCheckout:
    def test_place_order(self, app, customer, product, second_product, payments):
        order = order_service.place_order(customer, [
            {"product_id": product.id, "quantity": 2},
            {"product_id": second_product.id, "quantity": 1},
        ])

        order = fresh(Order, order.id)
        assert order.state == PAYMENT_PENDING
        assert order.total_cents == 2 * 2500 + 400
        assert order.order_number.startswith("GS-")
        assert order.payment_reference == f"pay_{order.order_number}"
        assert payments.payments == [order.order_number]
        assert [(line.quantity, line.unit_price_cents) for line in order.lines] == [(2, 2500), (1, 400)]

        assert _history_states(order.id) == [(None, PLACED), (PLACED, PAYMENT_PENDING)]
        assert_history_well_formed(order.id)

    def test_price_snapshot_survives_price_change(self, app, customer, product):
        order = _place(customer, product)
        row = fresh(Product, product.id)
        row.price_cents = 9999
        db.session.commit()

        assert fresh(Order, order.id).lines[0].unit_price_cents == 2500

    def test_payment_initiation_failure_leaves_order_pending(self, app, customer, product, payments):
        payments.fail_payments = True
        order = _place(customer, product)

        order = fresh(Order, order.id)
        assert order.state == PAYMENT_PENDING
        assert order.payment_reference is None

    def test_single_seller_per_order(self, app, customer, product, other_seller):
        foreign = Product(seller_id=other_seller.id, title="Other", price_cents=100)
        db.session.add(foreign)
        db.session.commit()

        with pytest.raises(ValidationError):
            _place(customer, product, foreign)
        assert db.session.query(Order).count() == 0

    @pytest.mark.parametrize("items", [None, [], [{"product_id": 999, "quantity": 1}],
                                       [{"product_id": "abc"}], [{"product_id": 1, "quantity": 0}]])
    def test_invalid_items(self, app, customer, product, items):
        with pytest.raises(ValidationError):
            order_service.place_order(customer, items)

    def test_inactive_product(self, app, customer, product):
        row = fresh(Product, product.id)
        row.is_active = False
        db.session.commit()

        with pytest.raises(ValidationError):
            _place(customer, product)


class TestApplyTransition:
    def test_payment_confirmation(self, app, customer, product):
        order = _confirm_payment(_place(customer, product))

        assert order.state == PAYMENT_CONFIRMED
        assert len(lifecycle_service.history(order.id)) == 3
        assert_history_well_formed(order.id)

    def test_actor_must_be_allowed(self, app, customer, product):
        order = _place(customer, product)

        with pytest.raises(Forbidden):
            lifecycle_service.submit_event(
                order.id, lifecycle_service.PAYMENT_CONFIRMED_EVENT, actor_role="customer", actor_id=customer.id,
            )
        assert fresh(Order, order.id).state == PAYMENT_PENDING

    def test_illegal_transition_writes_no_history(self, app, customer, product, seller):
        order = _place(customer, product)

        with pytest.raises(IllegalTransition):
            shipment_service.dispatch(order.id, "seller", seller.id, tracking_number="TRK123")

        assert len(lifecycle_service.history(order.id)) == 2
        assert db.session.query(Shipment).count() == 0
        events = lifecycle_service.events_for(order.id)
        assert [e.outcome for e in events] == [lifecycle_service.OUTCOME_REJECTED]

    def test_same_state_is_already_in_state(self, app, customer, product):
        order = _place(customer, product)
        _confirm_payment(order, "evt-1")

        with pytest.raises(AlreadyInState):
            _confirm_payment(order, "evt-2")

        assert len(lifecycle_service.history(order.id)) == 3
        outcomes = [e.outcome for e in lifecycle_service.events_for(order.id)]
        assert outcomes == [lifecycle_service.OUTCOME_APPLIED, lifecycle_service.OUTCOME_ALREADY_IN_STATE]

    def test_redelivered_event_is_replayed(self, app, customer, product):
        order = _place(customer, product)
        first = _confirm_payment(order, "evt-1")
        second = _confirm_payment(order, "evt-1")

        assert first.id == second.id
        assert second.state == PAYMENT_CONFIRMED
        assert len(lifecycle_service.history(order.id)) == 3
        assert db.session.query(OrderEvent).filter_by(order_id=order.id).count() == 1

    def test_dedupe_key_bound_to_order(self, app, customer, product):
        first = _place(customer, product)
        second = _place(customer, product)
        _confirm_payment(first, "evt-1")

        with pytest.raises(ValidationError):
            lifecycle_service.submit_event(
                second.id, lifecycle_service.PAYMENT_CONFIRMED_EVENT,
                actor_role="payment", dedupe_key="payment:evt-1",
            )

    def test_timestamps_never_go_backwards(self, app, customer, product):
        order = _place(customer, product)
        last = lifecycle_service.history(order.id)[-1].occurred_at

        lifecycle_service.submit_event(
            order.id, lifecycle_service.PAYMENT_CONFIRMED_EVENT,
            actor_role="payment", now=last - timedelta(hours=1),
        )

        entries = lifecycle_service.history(order.id)
        assert entries[-1].occurred_at == last
        assert_history_well_formed(order.id)

    def test_failed_side_effect_rolls_back_transition(self, app, customer, product):
        order = _confirm_payment(_place(customer, product))

        def explode(_order):
            raise ValidationError("side record rejected")

        with pytest.raises(ValidationError):
            lifecycle_service.submit_event(
                order.id, lifecycle_service.FULFILMENT_STARTED, actor_role="admin", on_applied=explode,
            )

        assert fresh(Order, order.id).state == PAYMENT_CONFIRMED
        assert len(lifecycle_service.history(order.id)) == 3

    def test_unknown_order(self, app):
        with pytest.raises(NotFound):
            lifecycle_service.apply_transition(999, lifecycle_service.CANCEL, actor_role="admin")


class TestDispatch:
    def test_dispatch_records_shipment(self, app, customer, product, seller):
        order = _confirm_payment(_place(customer, product))
        shipped = shipment_service.dispatch(order.id, "seller", seller.id, tracking_number="TRK123", courier="Bluedart")

        assert shipped.state == SHIPPED
        assert shipped.shipment_reference == "TRK123"
        shipment = shipment_service.shipment_for(order.id)
        assert shipment.tracking_number == "TRK123"
        assert shipment.courier == "Bluedart"

    def test_tracking_number_required(self, app, customer, product, seller):
        order = _confirm_payment(_place(customer, product))
        with pytest.raises(ValidationError):
            shipment_service.dispatch(order.id, "seller", seller.id, tracking_number="  ")

    def test_double_dispatch(self, app, customer, product, seller):
        order = _confirm_payment(_place(customer, product))
        shipment_service.dispatch(order.id, "seller", seller.id, tracking_number="TRK123")

        with pytest.raises(AlreadyInState):
            shipment_service.dispatch(order.id, "seller", seller.id, tracking_number="TRK123")

        assert db.session.query(Shipment).filter_by(order_id=order.id).count() == 1
        shipped = [e for e in lifecycle_service.history(order.id) if e.to_state == SHIPPED]
        assert len(shipped) == 1

    def test_other_seller_cannot_dispatch(self, app, customer, product, other_seller):
        order = _confirm_payment(_place(customer, product))
        with pytest.raises(NotFound):
            shipment_service.dispatch(order.id, "seller", other_seller.id, tracking_number="TRK123")

    def test_fulfilment_then_dispatch(self, app, customer, product, seller):
        order = _confirm_payment(_place(customer, product))
        shipment_service.start_fulfilment(order.id, "seller", seller.id)
        shipped = shipment_service.dispatch(order.id, "seller", seller.id, tracking_number="TRK123")

        assert [to for _, to in _history_states(shipped.id)][-2:] == [FULFILLING, SHIPPED]

    def test_concurrent_dispatch_records_one_transition(self, app, customer, product, seller):
        order = _confirm_payment(_place(customer, product))
        order_id, seller_id = order.id, seller.id
        db.session.commit()

        workers = 4
        barrier = threading.Barrier(workers)
        outcomes = []
        lock = threading.Lock()

        def attempt(index):
            with app.app_context():
                barrier.wait()
                try:
                    shipment_service.dispatch(order_id, "seller", seller_id, tracking_number=f"TRK{index}")
                    outcome = "ok"
                except GiftsityError as e:
                    outcome = e.kind
                with lock:
                    outcomes.append(outcome)

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert len(outcomes) == workers
        assert outcomes.count("ok") == 1
        assert outcomes.count("AlreadyInState") == workers - 1

        shipped = [e for e in lifecycle_service.history(order_id) if e.to_state == SHIPPED]
        assert len(shipped) == 1
        assert db.session.query(Shipment).filter_by(order_id=order_id).count() == 1
        assert_history_well_formed(order_id)


class TestCancel:
    def test_cancel_before_payment(self, app, customer, product, payments):
        order = _place(customer, product)
        cancelled = order_service.cancel_order(order.id, "customer", customer.id, reason="Changed my mind")

        assert cancelled.state == CANCELLED
        assert cancelled.cancel_reason == "Changed my mind"
        assert cancelled.cancelled_at is not None
        assert payments.refunds == []

    def test_cancel_after_payment_refunds_first(self, app, customer, product, payments):
        order = _confirm_payment(_place(customer, product))
        cancelled = order_service.cancel_order(order.id, "customer", customer.id)

        assert cancelled.state == CANCELLED
        assert payments.refunds == [(order.order_number, 2500)]
        assert cancelled.refund_reference is not None

    def test_failed_refund_keeps_order(self, app, customer, product, payments):
        order = _confirm_payment(_place(customer, product))
        payments.fail_refunds = True

        with pytest.raises(PaymentCollaboratorError):
            order_service.cancel_order(order.id, "customer", customer.id)

        assert fresh(Order, order.id).state == PAYMENT_CONFIRMED
        assert len(lifecycle_service.history(order.id)) == 3

    def test_cannot_cancel_after_shipping(self, app, customer, product, seller, payments):
        order = _confirm_payment(_place(customer, product))
        shipment_service.dispatch(order.id, "seller", seller.id, tracking_number="TRK123")

        with pytest.raises(IllegalTransition):
            order_service.cancel_order(order.id, "customer", customer.id)
        assert payments.refunds == []

    def test_cancel_twice(self, app, customer, product):
        order = _place(customer, product)
        order_service.cancel_order(order.id, "customer", customer.id)

        with pytest.raises(AlreadyInState):
            order_service.cancel_order(order.id, "customer", customer.id)

    def test_other_customer_cannot_cancel(self, app, customer, other_customer, product):
        order = _place(customer, product)
        with pytest.raises(NotFound):
            order_service.cancel_order(order.id, "customer", other_customer.id)

    def test_failed_payment_callback_cancels(self, app, customer, product):
        order = _place(customer, product)
        cancelled = payment_service.handle_payment_callback({
            "event_id": "evt-fail", "order_number": order.order_number, "status": "failed",
        })
        assert cancelled.state == CANCELLED
        assert cancelled.cancel_reason == "Payment failed"

    def test_failed_callback_after_capture_is_refused(self, app, customer, product):
        order = _confirm_payment(_place(customer, product))
        with pytest.raises(IllegalTransition):
            payment_service.handle_payment_callback({
                "event_id": "evt-late", "order_number": order.order_number, "status": "failed",
            })
        assert fresh(Order, order.id).state == PAYMENT_CONFIRMED

    def test_payment_landing_mid_cancel_is_not_cancelled_without_refund(self, app, customer, product,
                                                                       payments, monkeypatch):
        order = _place(customer, product)
        lookup = order_service.get_order_for

        def payment_lands_after_lookup(*args, **kwargs):
            found = lookup(*args, **kwargs)
            # Another gateway process confirms payment while this one holds the stale row
            with app.app_context():
                _confirm_payment(found)
            return found

        monkeypatch.setattr(order_service, "get_order_for", payment_lands_after_lookup)
        with pytest.raises(IllegalTransition):
            order_service.cancel_order(order.id, "customer", customer.id)
        monkeypatch.undo()

        assert fresh(Order, order.id).state == PAYMENT_CONFIRMED
        assert payments.refunds == []
        assert_history_well_formed(order.id)

        cancelled = order_service.cancel_order(order.id, "customer", customer.id)
        assert cancelled.state == CANCELLED
        assert payments.refunds == [(order.order_number, 2500)]
        assert cancelled.refund_reference is not None

    def test_expected_from_refuses_moved_order(self, app, customer, product):
        order = _confirm_payment(_place(customer, product))

        with pytest.raises(IllegalTransition):
            lifecycle_service.submit_event(
                order.id, lifecycle_service.CANCEL, actor_role="system",
                expected_from=lifecycle_service.UNPAID_STATES,
            )
        assert fresh(Order, order.id).state == PAYMENT_CONFIRMED
        assert len(lifecycle_service.history(order.id)) == 3


class TestVisibility:
    def test_list_orders_by_role(self, app, customer, other_customer, product, seller, other_seller, admin):
        mine = _place(customer, product)
        theirs = _place(other_customer, product)

        assert [o.id for o in order_service.list_orders("customer", customer.id)] == [mine.id]
        assert {o.id for o in order_service.list_orders("seller", seller.id)} == {mine.id, theirs.id}
        assert order_service.list_orders("seller", other_seller.id) == []
        assert len(order_service.list_orders("admin", admin.id)) == 2

    def test_state_filter(self, app, customer, product):
        order = _place(customer, product)
        assert [o.id for o in order_service.list_orders("customer", customer.id, state=PAYMENT_PENDING)] == [order.id]
        assert order_service.list_orders("customer", customer.id, state=SHIPPED) == []
        with pytest.raises(ValidationError):
            order_service.list_orders("customer", customer.id, state="Lost")

    def test_seller_open_queue(self, app, customer, product, seller):
        pending = _place(customer, product)
        paid = _confirm_payment(_place(customer, product), "evt-2")

        queue = shipment_service.seller_queue(seller.id, open_only=True)
        assert [o.id for o in queue] == [paid.id]
        assert pending.id not in [o.id for o in queue]

    def test_delivery_sets_delivered_at(self, app, customer, product, seller, admin):
        order = _confirm_payment(_place(customer, product))
        shipment_service.dispatch(order.id, "seller", seller.id, tracking_number="TRK123")

        now = utcnow()
        delivered = order_service.confirm_delivery(order.id, actor_role="admin", actor_id=admin.id, now=now)
        assert delivered.state == DELIVERED
        assert delivered.delivered_at == now


class TestConcurrentUpdate:
    @pytest.fixture
    def losing_cas(self, monkeypatch):
        """Make compare_and_swap lose a given number of rounds before behaving normally."""
        real = lifecycle_service.compare_and_swap
        state = {"losses": 0}

        def flaky(*args, **kwargs):
            if state["losses"] > 0:
                state["losses"] -= 1
                return False
            return real(*args, **kwargs)

        monkeypatch.setattr(lifecycle_service, "compare_and_swap", flaky)
        return state

    def test_exhausted_rounds_are_retryable(self, app, customer, product, losing_cas):
        order = _place(customer, product)
        losing_cas["losses"] = lifecycle_service.MAX_CAS_ROUNDS

        with pytest.raises(ConcurrentUpdate):
            _confirm_payment(order, "evt-1")

        assert fresh(Order, order.id).state == PAYMENT_PENDING
        assert lifecycle_service.events_for(order.id) == []

        confirmed = _confirm_payment(order, "evt-1")
        assert confirmed.state == PAYMENT_CONFIRMED
        assert [e.outcome for e in lifecycle_service.events_for(order.id)] == [lifecycle_service.OUTCOME_APPLIED]
        assert_history_well_formed(order.id)

    def test_lost_round_is_retried_within_the_call(self, app, customer, product, losing_cas):
        order = _place(customer, product)
        losing_cas["losses"] = lifecycle_service.MAX_CAS_ROUNDS - 1

        assert _confirm_payment(order, "evt-1").state == PAYMENT_CONFIRMED
        assert len(lifecycle_service.history(order.id)) == 3

    def test_webhook_answers_conflict(self, client, customer, product, losing_cas):
        order = _place(customer, product)
        losing_cas["losses"] = lifecycle_service.MAX_CAS_ROUNDS

        resp = client.post("/api/webhooks/payment", json={
            "event_id": "evt-1", "order_number": order.order_number, "status": "succeeded",
        }, headers={"X-Webhook-Secret": "dev-payment-webhook-secret"})

        assert resp.status_code == 409
        assert resp.json["error"] == "ConcurrentUpdate"
