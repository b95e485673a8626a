"""Order-level resolutions.

This predates per-item issues and is still used by the admin order screen.
A resolution covers the whole order: a reprint copies every item, a refund
returns the full payment.
"""
from datetime import datetime
from storefront.extensions import db
from storefront.errors import ServiceError, NotFoundError, PermissionDeniedError
from storefront.models import (
    IssueReason,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentStatus,
    Resolution,
    ResolutionStatus,
    ResolutionType,
    clean_image_urls,
)
from storefront.services import payment_gateway
from storefront.services.order_state_machine import (
    ISSUE_REPORTABLE_ORDER_STATUSES,
    can_transition,
)
from storefront.utils import clean_text, iso, money_float, parse_enum, to_money
from decimal import Decimal
import logging

logger = logging.getLogger(__name__)

OPEN_RESOLUTION_STATUSES = (
    ResolutionStatus.PENDING,
    ResolutionStatus.PROCESSING,
)


def format_resolution(resolution):
    return {
        'id': resolution.id,
        'order_id': resolution.order_id,
        'type': resolution.type.value,
        'reason': resolution.reason,
        'notes': resolution.notes,
        'image_urls': resolution.get_image_urls(),
        'status': resolution.status.value,
        'reprint_order_id': resolution.reprint_order_id,
        'refund_amount': money_float(resolution.refund_amount),
        'refund_reference': resolution.refund_reference,
        'created_by': resolution.created_by,
        'processed_at': iso(resolution.processed_at),
        'created_at': iso(resolution.created_at),
    }


def report_order_issue(order_id, customer, reason, notes=None,
                       image_urls=None):
    if not reason:
        raise ServiceError('Please select a reason for your issue')
    reason_enum = parse_enum(IssueReason, reason)
    if reason_enum is None:
        raise ServiceError('Invalid reason selected')

    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError('Order not found')
    if order.customer_id != customer.id:
        raise PermissionDeniedError(
            'You can only report issues for your own orders')
    if order.status not in ISSUE_REPORTABLE_ORDER_STATUSES:
        raise ServiceError(
            'You can only report issues for orders that have been '
            'shipped or delivered')

    existing = Resolution.query.filter(
        Resolution.order_id == order.id,
        Resolution.status.in_(OPEN_RESOLUTION_STATUSES),
    ).first()
    if existing:
        raise ServiceError(
            'There is already a pending issue report for this order. '
            'Our team is reviewing it.')

    # Admin decides between reprint and refund when processing
    resolution = Resolution(
        order_id=order.id,
        type=ResolutionType.REPRINT,
        reason=reason_enum.value,
        notes=clean_text(notes),
        status=ResolutionStatus.PENDING,
        created_by=customer.id,
    )
    images = clean_image_urls(image_urls)
    if images:
        resolution.set_image_urls(images)

    db.session.add(resolution)
    db.session.commit()
    logger.info("Resolution %s reported on order %s", resolution.id, order.id)
    return resolution


def _reprint_order(resolution, notes, now):
    order = resolution.order
    reprint = Order(
        customer_id=order.customer_id,
        status=OrderStatus.CONFIRMED,
        subtotal=Decimal('0.00'),
        shipping_cost=Decimal('0.00'),
        total_price=Decimal('0.00'),
        shipping_address_json=order.shipping_address_json,
        notes=f'Reprint for resolution #{resolution.id}',
    )
    db.session.add(reprint)
    db.session.flush()

    for item in order.items:
        metadata = dict(item.get_metadata())
        metadata.update({
            'original_order_id': order.id,
            'original_item_id': item.id,
        })
        copy = OrderItem(
            order_id=reprint.id,
            product_id=item.product_id,
            variant_id=item.variant_id,
            design_ref=item.design_ref,
            quantity=item.quantity,
            unit_price=Decimal('0.00'),
            total_price=Decimal('0.00'),
            customization_json=item.customization_json,
        )
        copy.set_metadata(metadata)
        db.session.add(copy)

    resolution.type = ResolutionType.REPRINT
    resolution.reprint_order_id = reprint.id
    resolution.status = ResolutionStatus.COMPLETED
    resolution.notes = notes or resolution.notes
    resolution.processed_at = now
    db.session.commit()

    logger.info(
        "Resolution %s completed with reprint order %s",
        resolution.id,
        reprint.id,
    )
    return {
        'message': 'Reprint order created successfully',
        'reprint_order_id': reprint.id,
    }


def _refund_order(resolution, notes, now):
    order = resolution.order
    payment = Payment.query.filter_by(
        order_id=order.id,
        status=PaymentStatus.COMPLETED,
    ).first()
    if not payment or not payment.provider_payment_id:
        raise ServiceError('No completed payment found for this order')
    if payment.refunded_at:
        raise ServiceError('This order has already been refunded')

    resolution.type = ResolutionType.REFUND
    resolution.status = ResolutionStatus.PROCESSING
    resolution.notes = notes or resolution.notes
    db.session.commit()

    amount = to_money(payment.amount or order.total_price)
    try:
        result = payment_gateway.create_refund(
            payment.provider_payment_id,
            amount,
            f'resolution_{resolution.id}',
        )
    except Exception as e:
        logger.error(
            f"Refund gateway error for resolution {resolution.id}: {e}",
            exc_info=True)
        result = {'success': False, 'error': str(e)}

    if not result.get('success'):
        error = result.get('error') or 'Refund processing failed'
        resolution.status = ResolutionStatus.FAILED
        resolution.notes = (
            f"{resolution.notes or ''}\nRefund failed: {error}".strip())
        db.session.commit()
        logger.warning(
            "Refund failed for resolution %s: %s", resolution.id, error)
        raise ServiceError(error)

    refunded = to_money(result.get('amount') or amount)
    resolution.refund_amount = refunded
    resolution.refund_reference = result.get('refund_id')
    resolution.status = ResolutionStatus.COMPLETED
    resolution.processed_at = now
    payment.refunded_at = now
    payment.status = PaymentStatus.REFUNDED
    if can_transition(order.status, OrderStatus.REFUNDED):
        order.status = OrderStatus.REFUNDED
    db.session.commit()

    logger.info(
        "Resolution %s refunded %s on order %s",
        resolution.id,
        refunded,
        order.id,
    )
    return {
        'message': 'Refund processed successfully',
        'amount': refunded,
    }


def process_resolution(resolution_id, admin, action, notes=None, now=None):
    action_enum = parse_enum(ResolutionType, action)
    if action_enum is None:
        raise ServiceError('Invalid action. Must be REPRINT or REFUND')

    resolution = db.session.get(Resolution, resolution_id)
    if not resolution:
        raise NotFoundError('Resolution not found')
    if resolution.status != ResolutionStatus.PENDING:
        raise ServiceError('This issue has already been processed')

    now = now or datetime.utcnow()
    notes = clean_text(notes)
    logger.info(
        "Admin %s processing resolution %s as %s",
        admin.id,
        resolution.id,
        action_enum.value,
    )
    if action_enum == ResolutionType.REPRINT:
        return _reprint_order(resolution, notes, now)
    return _refund_order(resolution, notes, now)


def list_order_resolutions(order_id):
    return Resolution.query.filter_by(order_id=order_id).order_by(
        Resolution.created_at.desc(), Resolution.id.desc()).all()
