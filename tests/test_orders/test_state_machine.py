"""
Test suite for order transition planning.

Covers the transition table, per-edge guards, history sequencing, side
effect commands, planned domain events and snapshot application.
"""

from datetime import datetime, timezone
from uuid import UUID, uuid4

import pytest

from deliveryhub.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    ValidationError,
)
from deliveryhub.services.orders.enums import (
    OrderStatus,
    Role,
    get_allowed_order_transitions,
    validate_order_status_transition,
)
from deliveryhub.services.orders.events import OrderAssigned, OrderStatusChanged
from deliveryhub.services.orders.state_machine import (
    Assignee,
    IncrementDeliveryCounters,
    OrderSnapshot,
    apply_plan,
    plan_transition,
)

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def customer_id() -> UUID:
    return uuid4()


@pytest.fixture
def courier() -> Assignee:
    return Assignee(
        id=uuid4(),
        name="Dana Driver",
        role=Role.DELIVERY,
        is_active=True,
        is_available=True,
    )


@pytest.fixture
def pending(customer_id: UUID) -> OrderSnapshot:
    return OrderSnapshot(
        id=uuid4(),
        order_number="DLV-20261018120000-ABC123",
        customer_id=customer_id,
        status=OrderStatus.PENDING,
        pickup_address="1 Depot Road",
        drop_address="9 Harbour Street",
        item_description="Box of books",
    )


def advance(snapshot, target, actor_id, **kwargs) -> OrderSnapshot:
    return apply_plan(snapshot, plan_transition(snapshot, target, actor_id, now=NOW, **kwargs))


@pytest.fixture
def assigned(pending: OrderSnapshot, courier: Assignee) -> OrderSnapshot:
    return advance(pending, OrderStatus.ASSIGNED, uuid4(), assignee=courier)


@pytest.fixture
def picked_up(assigned: OrderSnapshot, courier: Assignee) -> OrderSnapshot:
    return advance(assigned, OrderStatus.PICKED_UP, courier.id)


# ============================================================================
# Transition Table Tests
# ============================================================================


class TestTransitionTable:
    """Tests for the allowed edge set."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (OrderStatus.PENDING, OrderStatus.ASSIGNED),
            (OrderStatus.PENDING, OrderStatus.CANCELLED),
            (OrderStatus.ASSIGNED, OrderStatus.PICKED_UP),
            (OrderStatus.PICKED_UP, OrderStatus.DELIVERED),
        ],
    )
    def test_allowed_edges(self, current, target):
        assert validate_order_status_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (OrderStatus.PENDING, OrderStatus.PICKED_UP),
            (OrderStatus.PENDING, OrderStatus.DELIVERED),
            (OrderStatus.ASSIGNED, OrderStatus.CANCELLED),
            (OrderStatus.ASSIGNED, OrderStatus.DELIVERED),
            (OrderStatus.PICKED_UP, OrderStatus.CANCELLED),
            (OrderStatus.DELIVERED, OrderStatus.PENDING),
            (OrderStatus.CANCELLED, OrderStatus.PENDING),
        ],
    )
    def test_rejected_edges(self, current, target):
        assert not validate_order_status_transition(current, target)

    def test_terminal_statuses_have_no_exits(self):
        assert get_allowed_order_transitions(OrderStatus.DELIVERED) == set()
        assert get_allowed_order_transitions(OrderStatus.CANCELLED) == set()
        assert OrderStatus.DELIVERED.is_terminal()
        assert not OrderStatus.PICKED_UP.is_terminal()

    def test_allowed_transitions_returns_copy(self):
        allowed = get_allowed_order_transitions(OrderStatus.PENDING)
        allowed.clear()
        assert get_allowed_order_transitions(OrderStatus.PENDING)

    def test_from_string_accepts_wire_values(self):
        assert OrderStatus.from_string("Picked-Up") == OrderStatus.PICKED_UP
        with pytest.raises(ValueError, match="Invalid order status"):
            OrderStatus.from_string("shipped")


# ============================================================================
# Planning Tests
# ============================================================================


class TestPlanAssign:
    """Tests for pending -> assigned."""

    def test_assign_plan(self, pending, courier):
        admin_id = uuid4()
        plan = plan_transition(pending, OrderStatus.ASSIGNED, admin_id, assignee=courier, now=NOW)

        assert plan.expected_status == OrderStatus.PENDING
        assert plan.target_status == OrderStatus.ASSIGNED
        assert plan.changes["delivery_person_id"] == courier.id
        assert plan.changes["status"] == OrderStatus.ASSIGNED
        assert plan.history_entry.sequence == 1
        assert plan.history_entry.updated_by == admin_id
        assert plan.history_entry.notes == "Assigned to Dana Driver"
        assert plan.commands == ()

    def test_assign_emits_assignment_then_status_change(self, pending, courier):
        plan = plan_transition(pending, OrderStatus.ASSIGNED, uuid4(), assignee=courier, now=NOW)

        assigned_event, status_event = plan.events
        assert isinstance(assigned_event, OrderAssigned)
        assert assigned_event.delivery_person_name == "Dana Driver"
        assert isinstance(status_event, OrderStatusChanged)
        assert status_event.old_status == OrderStatus.PENDING
        assert status_event.new_status == OrderStatus.ASSIGNED
        assert status_event.delivery_person_id == courier.id

    def test_explicit_notes_are_kept(self, pending, courier):
        plan = plan_transition(
            pending, OrderStatus.ASSIGNED, uuid4(), assignee=courier, notes="Rush", now=NOW
        )
        assert plan.history_entry.notes == "Rush"

    def test_missing_assignee_is_rejected(self, pending):
        with pytest.raises(ValidationError, match="Invalid delivery person"):
            plan_transition(pending, OrderStatus.ASSIGNED, uuid4())

    def test_non_delivery_assignee_is_rejected(self, pending):
        customer = Assignee(uuid4(), "Casey", Role.CUSTOMER, True, True)
        with pytest.raises(ValidationError, match="Invalid delivery person"):
            plan_transition(pending, OrderStatus.ASSIGNED, uuid4(), assignee=customer)

    @pytest.mark.parametrize("is_active,is_available", [(False, True), (True, False)])
    def test_unavailable_assignee_is_rejected(self, pending, is_active, is_available):
        courier = Assignee(uuid4(), "Dana", Role.DELIVERY, is_active, is_available)
        with pytest.raises(ValidationError, match="not available"):
            plan_transition(pending, OrderStatus.ASSIGNED, uuid4(), assignee=courier)

    def test_assign_twice_is_invalid(self, assigned):
        courier = Assignee(uuid4(), "Riley", Role.DELIVERY, True, True)
        with pytest.raises(InvalidTransitionError, match="not in pending status"):
            plan_transition(assigned, OrderStatus.ASSIGNED, uuid4(), assignee=courier)


class TestPlanCourierTransitions:
    """Tests for assigned -> picked-up -> delivered."""

    def test_pickup_sets_pickup_time(self, assigned, courier):
        plan = plan_transition(assigned, OrderStatus.PICKED_UP, courier.id, now=NOW)

        assert plan.changes["actual_pickup_time"] == NOW
        assert plan.history_entry.sequence == 2
        assert plan.history_entry.notes is None
        assert len(plan.events) == 1

    def test_deliver_credits_courier(self, picked_up, courier):
        plan = plan_transition(picked_up, OrderStatus.DELIVERED, courier.id, now=NOW)

        assert plan.changes["actual_delivery_time"] == NOW
        assert plan.commands == (IncrementDeliveryCounters(user_id=courier.id),)
        assert plan.history_entry.sequence == 3

    def test_other_courier_cannot_pick_up(self, assigned):
        with pytest.raises(ForbiddenError):
            plan_transition(assigned, OrderStatus.PICKED_UP, uuid4())

    def test_deliver_before_pickup_is_invalid(self, assigned, courier):
        with pytest.raises(InvalidTransitionError, match="must be picked up"):
            plan_transition(assigned, OrderStatus.DELIVERED, courier.id)

    def test_pickup_before_assignment_is_invalid(self, pending):
        with pytest.raises(InvalidTransitionError, match="must be assigned"):
            plan_transition(pending, OrderStatus.PICKED_UP, uuid4())


class TestPlanCancel:
    """Tests for pending -> cancelled."""

    def test_owner_cancels_pending(self, pending, customer_id):
        plan = plan_transition(pending, OrderStatus.CANCELLED, customer_id, now=NOW)

        assert plan.history_entry.notes == "Cancelled by customer"
        assert plan.changes == {"status": OrderStatus.CANCELLED, "updated_at": NOW}

    def test_non_owner_cannot_cancel(self, pending):
        with pytest.raises(ForbiddenError):
            plan_transition(pending, OrderStatus.CANCELLED, uuid4())

    def test_cancel_after_assignment_is_invalid(self, assigned, customer_id):
        with pytest.raises(InvalidTransitionError) as exc_info:
            plan_transition(assigned, OrderStatus.CANCELLED, customer_id)

        assert exc_info.value.message == "Only pending orders can be cancelled"
        assert exc_info.value.context["current_status"] == "assigned"

    def test_cancelled_is_terminal(self, pending, customer_id):
        cancelled = advance(pending, OrderStatus.CANCELLED, customer_id)
        with pytest.raises(InvalidTransitionError):
            plan_transition(cancelled, OrderStatus.CANCELLED, customer_id)


# ============================================================================
# Snapshot Application Tests
# ============================================================================


class TestApplyPlan:
    """Tests for applying plans to snapshots."""

    def test_full_lifecycle_history(self, picked_up, courier):
        delivered = advance(picked_up, OrderStatus.DELIVERED, courier.id)

        assert delivered.status == OrderStatus.DELIVERED
        assert delivered.delivery_person_id == courier.id
        assert [entry.sequence for entry in delivered.history] == [1, 2, 3]
        assert [entry.status for entry in delivered.history] == [
            OrderStatus.ASSIGNED,
            OrderStatus.PICKED_UP,
            OrderStatus.DELIVERED,
        ]

    def test_snapshot_is_not_mutated(self, pending, courier):
        plan = plan_transition(pending, OrderStatus.ASSIGNED, uuid4(), assignee=courier)
        apply_plan(pending, plan)

        assert pending.status == OrderStatus.PENDING
        assert pending.history == ()

    def test_stale_plan_conflicts(self, pending, courier, customer_id):
        assign_plan = plan_transition(pending, OrderStatus.ASSIGNED, uuid4(), assignee=courier)
        cancelled = advance(pending, OrderStatus.CANCELLED, customer_id)

        with pytest.raises(ConflictError) as exc_info:
            apply_plan(cancelled, assign_plan)

        assert exc_info.value.retryable
