"""Admin decisions on issues: review, processing, conclusion.

Every status change here appends an admin message to the issue thread in
the same commit, so the customer always sees why the issue moved.
"""
from datetime import datetime
from storefront.extensions import db
from storefront.errors import ServiceError
from storefront.models import (
    IssueResolvedType,
    IssueStatus,
    MessageSender,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
)
from storefront.services import payment_gateway
from storefront.services.accounting_service import create_reprint_expense
from storefront.services.issue_message_service import (
    add_message,
    get_issue_or_404,
)
from storefront.services.issue_status import (
    DEFAULT_REVIEW_MESSAGES,
    REVIEW_ACTIONS,
    REVIEW_TRANSITIONS,
    can_process,
    can_review,
)
from storefront.services.order_state_machine import can_transition
from storefront.utils import clean_text, to_money
from decimal import Decimal
import logging

logger = logging.getLogger(__name__)

REVIEW_RESULT_MESSAGES = {
    'APPROVE_REPRINT': 'Issue approved for reprint. Ready for processing.',
    'APPROVE_REFUND': 'Issue approved for refund. Ready for processing.',
    'REQUEST_INFO': 'Information requested from customer.',
}

REPRINT_CREATED_MESSAGE = (
    'Your reprint order has been created and will be processed shortly.'
)
CONCLUDED_REASON = 'Manually concluded by admin'
CONCLUDED_MESSAGE = (
    'This issue has been concluded. No further action is required.'
)
REOPENED_MESSAGE = 'This issue has been reopened for further review.'


def _ensure_open(issue):
    if issue.is_concluded:
        raise ServiceError(
            'This issue has been concluded. Reopen it before making changes.')


def _conclude(issue, admin_id, now, reason=None):
    issue.is_concluded = True
    issue.concluded_at = now
    issue.concluded_by = admin_id
    if reason is not None:
        issue.concluded_reason = reason


def review_issue(issue_id, action, admin, message=None,
                 is_final_rejection=False, now=None):
    """Apply an admin review decision; returns (issue, summary text)."""
    action = (clean_text(action) or '').upper()
    if action not in REVIEW_ACTIONS:
        raise ServiceError('Invalid action')

    issue = get_issue_or_404(issue_id)
    _ensure_open(issue)

    if not can_review(issue.status):
        raise ServiceError(
            'This issue cannot be reviewed in its current status: '
            f'{issue.status.value}')

    message = clean_text(message) or ''
    if action == 'REQUEST_INFO' and not message:
        raise ServiceError(
            'A message is required when requesting more information')
    if action == 'REJECT' and not message:
        raise ServiceError('A reason is required when rejecting an issue')

    new_status, resolved_type = REVIEW_TRANSITIONS[action]
    content = message or DEFAULT_REVIEW_MESSAGES[action]
    now = now or datetime.utcnow()

    issue.status = new_status
    issue.resolved_type = resolved_type
    issue.reviewed_at = now
    if action == 'REJECT':
        issue.rejection_reason = message
        if is_final_rejection:
            issue.rejection_final = True
            _conclude(issue, admin.id, now)

    add_message(issue, MessageSender.ADMIN, admin.id, content)
    db.session.commit()

    if action == 'REJECT':
        summary = (
            'Issue rejected (final).' if is_final_rejection
            else 'Issue rejected. Customer may appeal.'
        )
    else:
        summary = REVIEW_RESULT_MESSAGES[action]

    logger.info(
        "Issue %s reviewed action=%s -> %s",
        issue.id,
        action,
        new_status.value,
    )
    return issue, summary


def _create_reprint(issue, admin, notes, now):
    order = issue.order
    item = issue.order_item

    reprint_order = Order(
        customer_id=order.customer_id,
        status=OrderStatus.CONFIRMED,
        subtotal=Decimal('0.00'),
        shipping_cost=Decimal('0.00'),
        total_price=Decimal('0.00'),
        shipping_address_json=order.shipping_address_json,
        notes=f'Reprint for issue #{issue.id}',
    )
    db.session.add(reprint_order)
    db.session.flush()

    metadata = dict(item.get_metadata())
    metadata.update({
        'is_reprint': True,
        'original_order_id': order.id,
        'original_item_id': item.id,
        'issue_id': issue.id,
    })
    reprint_item = OrderItem(
        order_id=reprint_order.id,
        product_id=item.product_id,
        variant_id=item.variant_id,
        design_ref=item.design_ref,
        quantity=item.quantity,
        unit_price=Decimal('0.00'),
        total_price=Decimal('0.00'),
        customization_json=item.customization_json,
    )
    reprint_item.set_metadata(metadata)
    db.session.add(reprint_item)
    db.session.flush()

    issue.status = IssueStatus.COMPLETED
    issue.resolved_type = IssueResolvedType.REPRINT
    issue.reprint_order_id = reprint_order.id
    issue.reprint_item_id = reprint_item.id
    issue.processed_at = now
    _conclude(issue, admin.id, now)

    add_message(
        issue,
        MessageSender.ADMIN,
        admin.id,
        notes or REPRINT_CREATED_MESSAGE,
    )
    db.session.commit()

    try:
        create_reprint_expense(order.id, reprint_order.id, issue.reason)
    except Exception as e:
        logger.error(
            f"Failed to create reprint expense for issue {issue.id}: {e}",
            exc_info=True)
        db.session.rollback()

    logger.info(
        "Issue %s resolved by reprint order %s",
        issue.id,
        reprint_order.id,
    )
    return {
        'message': 'Reprint order created successfully',
        'reprint_order_id': reprint_order.id,
        'issue': issue,
    }


def _find_refundable_payment(issue):
    """Return (payment, original order total) for a refund.

    A reprint has no payment of its own, so the original order pays back.
    """
    order = issue.order
    if order.payment:
        return order.payment, None

    item = issue.order_item
    if item.is_reprint and item.original_order_id:
        original = db.session.get(Order, item.original_order_id)
        if original and original.payment:
            return original.payment, to_money(original.total_price)
    return None, None


def _process_refund(issue, admin, refund_type, notes, now):
    resolved_type = IssueResolvedType.FULL_REFUND
    if refund_type:
        try:
            resolved_type = IssueResolvedType(str(refund_type).upper())
        except ValueError:
            resolved_type = None
        if resolved_type not in (IssueResolvedType.FULL_REFUND,
                                 IssueResolvedType.PARTIAL_REFUND):
            raise ServiceError('Invalid refund type')

    payment, original_total = _find_refundable_payment(issue)
    if not payment or not payment.provider_payment_id:
        raise ServiceError('No payment found for this order')
    if payment.status != PaymentStatus.COMPLETED:
        raise ServiceError(
            f'Payment status is "{payment.status.value}". Refunds can only '
            'be processed for completed payments.')
    if payment.refunded_at:
        raise ServiceError('This order has already been refunded')

    if resolved_type == IssueResolvedType.PARTIAL_REFUND:
        amount = to_money(issue.order_item.total_price)
        if amount <= 0 and original_total:
            amount = original_total
    else:
        amount = original_total or to_money(issue.order.total_price)

    if amount <= 0:
        raise ServiceError('Cannot process refund: refund amount is 0')

    issue.status = IssueStatus.PROCESSING
    issue.resolved_type = resolved_type
    db.session.commit()

    try:
        result = payment_gateway.create_refund(
            payment.provider_payment_id,
            amount,
            f'issue_{issue.id}',
        )
    except Exception as e:
        logger.error(
            f"Refund gateway error for issue {issue.id}: {e}", exc_info=True)
        result = {'success': False, 'error': str(e)}

    if not result.get('success'):
        error = result.get('error') or 'Unknown error'
        issue.status = IssueStatus.APPROVED_REFUND
        add_message(
            issue,
            MessageSender.ADMIN,
            admin.id,
            f'Refund processing failed: {error}. Please try again.',
        )
        db.session.commit()
        logger.warning("Refund failed for issue %s: %s", issue.id, error)
        raise ServiceError(result.get('error') or 'Refund processing failed')

    refunded = to_money(result.get('amount') or amount)
    issue.status = IssueStatus.COMPLETED
    issue.refund_amount = refunded
    issue.refund_reference = result.get('refund_id')
    issue.processed_at = now
    _conclude(issue, admin.id, now)

    payment.refunded_at = now
    if resolved_type == IssueResolvedType.FULL_REFUND:
        payment.status = PaymentStatus.REFUNDED
        paid_order = payment.order
        if can_transition(paid_order.status, OrderStatus.REFUNDED):
            paid_order.status = OrderStatus.REFUNDED
        else:
            logger.warning(
                "Order %s left in %s after full refund",
                paid_order.id,
                paid_order.status.value,
            )

    add_message(
        issue,
        MessageSender.ADMIN,
        admin.id,
        notes or f'Your refund of £{refunded:.2f} has been processed.',
    )
    db.session.commit()

    logger.info(
        "Issue %s refunded %s (%s)",
        issue.id,
        refunded,
        resolved_type.value,
    )
    return {
        'message': 'Refund processed successfully',
        'refund_amount': refunded,
        'issue': issue,
    }


def process_issue(issue_id, admin, refund_type=None, notes=None, now=None):
    issue = get_issue_or_404(issue_id)
    _ensure_open(issue)

    if not can_process(issue.status):
        raise ServiceError('Issue must be approved before processing')

    now = now or datetime.utcnow()
    notes = clean_text(notes)
    if issue.status == IssueStatus.APPROVED_REPRINT:
        return _create_reprint(issue, admin, notes, now)
    return _process_refund(issue, admin, refund_type, notes, now)


def conclude_issue(issue_id, admin, reason=None, now=None):
    issue = get_issue_or_404(issue_id)
    if issue.is_concluded:
        raise ServiceError('Issue is already concluded')

    reason = clean_text(reason)
    _conclude(
        issue,
        admin.id,
        now or datetime.utcnow(),
        reason or CONCLUDED_REASON,
    )
    add_message(
        issue,
        MessageSender.ADMIN,
        admin.id,
        reason or CONCLUDED_MESSAGE,
    )
    db.session.commit()
    logger.info("Issue %s concluded by admin %s", issue.id, admin.id)
    return issue


def reopen_issue(issue_id, admin):
    issue = get_issue_or_404(issue_id)
    if not issue.is_concluded:
        raise ServiceError('Issue is not concluded')

    issue.is_concluded = False
    issue.concluded_at = None
    issue.concluded_by = None
    issue.concluded_reason = None
    add_message(issue, MessageSender.ADMIN, admin.id, REOPENED_MESSAGE)
    db.session.commit()
    logger.info("Issue %s reopened by admin %s", issue.id, admin.id)
    return issue
