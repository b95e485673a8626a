from datetime import datetime
from storefront.errors import ServiceError
from storefront.models import OrderStatus
import logging

logger = logging.getLogger(__name__)

ORDER_TRANSITIONS = {
    OrderStatus.PENDING: (
        OrderStatus.PAYMENT_CONFIRMED,
        OrderStatus.CANCELLED,
    ),
    OrderStatus.PAYMENT_CONFIRMED: (
        OrderStatus.CONFIRMED,
        OrderStatus.CANCELLATION_REQUESTED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    ),
    OrderStatus.CONFIRMED: (
        OrderStatus.PRINTING,
        OrderStatus.CANCELLATION_REQUESTED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    ),
    OrderStatus.PRINTING: (
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    ),
    OrderStatus.SHIPPED: (
        OrderStatus.DELIVERED,
        OrderStatus.REFUNDED,
    ),
    OrderStatus.DELIVERED: (
        OrderStatus.REFUNDED,
    ),
    # Admin either grants the cancellation or puts the order back
    OrderStatus.CANCELLATION_REQUESTED: (
        OrderStatus.CANCELLED,
        OrderStatus.CONFIRMED,
        OrderStatus.PAYMENT_CONFIRMED,
        OrderStatus.PENDING,
        OrderStatus.REFUNDED,
    ),
    OrderStatus.CANCELLED: (),
    OrderStatus.REFUNDED: (),
}

ORDER_STATUS_LABELS = {
    OrderStatus.PENDING: 'Pending Payment',
    OrderStatus.PAYMENT_CONFIRMED: 'Payment Confirmed',
    OrderStatus.CONFIRMED: 'Confirmed',
    OrderStatus.PRINTING: 'Printing',
    OrderStatus.SHIPPED: 'Shipped',
    OrderStatus.DELIVERED: 'Delivered',
    OrderStatus.CANCELLATION_REQUESTED: 'Cancellation Requested',
    OrderStatus.CANCELLED: 'Cancelled',
    OrderStatus.REFUNDED: 'Refunded',
}

ACTIVE_ORDER_STATUSES = frozenset({
    OrderStatus.PENDING,
    OrderStatus.PAYMENT_CONFIRMED,
    OrderStatus.CONFIRMED,
    OrderStatus.PRINTING,
    OrderStatus.SHIPPED,
    OrderStatus.CANCELLATION_REQUESTED,
})

TERMINAL_ORDER_STATUSES = frozenset({
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
    OrderStatus.REFUNDED,
})

# Customers may ask to cancel until printing starts
CANCELLABLE_ORDER_STATUSES = frozenset({
    OrderStatus.PENDING,
    OrderStatus.PAYMENT_CONFIRMED,
    OrderStatus.CONFIRMED,
})

# Orders that may carry a per-item issue or order-level resolution
ISSUE_REPORTABLE_ORDER_STATUSES = frozenset({
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
})


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in ORDER_TRANSITIONS.get(current, ())


def get_valid_next_statuses(current: OrderStatus):
    return list(ORDER_TRANSITIONS.get(current, ()))


def get_status_label(status: OrderStatus) -> str:
    return ORDER_STATUS_LABELS.get(status, status.value)


def transition_order(order, new_status: OrderStatus, now=None):
    """Move ``order`` to ``new_status`` or raise ServiceError.

    Shipping and delivery timestamps are stamped on the way through; the
    caller owns the commit.
    """
    current = order.status
    if not can_transition(current, new_status):
        raise ServiceError(
            f'Invalid status transition from {current.value} '
            f'to {new_status.value}'
        )

    now = now or datetime.utcnow()
    order.status = new_status
    if new_status == OrderStatus.SHIPPED and not order.shipped_at:
        order.shipped_at = now
    if new_status == OrderStatus.DELIVERED and not order.delivered_at:
        order.delivered_at = now
    order.updated_at = now

    logger.info(
        "Order %s moved %s -> %s",
        order.id,
        current.value,
        new_status.value,
    )
    return order
