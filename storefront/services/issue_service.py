"""Customer side of the per-item issue workflow."""
from datetime import datetime, timedelta
from flask import current_app
from storefront.extensions import db
from storefront.errors import ServiceError, NotFoundError, PermissionDeniedError
from storefront.models import (
    CarrierFault,
    Issue,
    IssueMessage,
    IssueReason,
    IssueStatus,
    MessageSender,
    Order,
    OrderItem,
    clean_image_urls,
)
from storefront.services.issue_status import (
    can_withdraw,
    get_status_label,
    is_pending,
    is_resolved,
)
from storefront.services.issue_message_service import (
    add_message,
    count_unread,
    ensure_owner,
    format_message,
    get_issue_messages,
    get_issue_or_404,
    get_latest_message,
    mark_messages_read,
)
from storefront.services.order_state_machine import (
    ISSUE_REPORTABLE_ORDER_STATUSES,
)
from storefront.utils import clean_text, iso, money_float, parse_enum
import logging

logger = logging.getLogger(__name__)

REPORTED_MESSAGE = (
    'Your issue has been reported. Our team will review it and respond '
    'within 1-2 business days.'
)


def format_item(item):
    if item is None:
        return None
    return {
        'id': item.id,
        'order_id': item.order_id,
        'product': {
            'id': item.product.id,
            'name': item.product.name,
            'slug': item.product.slug,
        } if item.product else None,
        'variant': {
            'id': item.variant.id,
            'name': item.variant.name,
            'size': item.variant.size,
            'color': item.variant.color,
        } if item.variant else None,
        'design_ref': item.design_ref,
        'quantity': item.quantity,
        'unit_price': money_float(item.unit_price),
        'total_price': money_float(item.total_price),
        'customization': item.get_customization(),
        'is_reprint': item.is_reprint,
    }


def _issue_ref(issue):
    if issue is None:
        return None
    return {
        'id': issue.id,
        'reason': issue.reason.value,
        'status': issue.status.value,
        'resolved_type': (
            issue.resolved_type.value if issue.resolved_type else None),
        'created_at': iso(issue.created_at),
    }


def format_issue(issue, include_messages=False):
    data = {
        'id': issue.id,
        'order_id': issue.order_id,
        'order_item_id': issue.order_item_id,
        'reason': issue.reason.value,
        'status': issue.status.value,
        'status_label': get_status_label(issue.status),
        'initial_notes': issue.initial_notes,
        'image_urls': issue.get_image_urls(),
        'carrier_fault': issue.carrier_fault.value,
        'claim_status': issue.claim_status.value,
        'claim_reference': issue.claim_reference,
        'claim_payout_amount': money_float(issue.claim_payout_amount),
        'resolved_type': (
            issue.resolved_type.value if issue.resolved_type else None),
        'reprint_order_id': issue.reprint_order_id,
        'refund_amount': money_float(issue.refund_amount),
        'rejection_reason': issue.rejection_reason,
        'rejection_final': issue.rejection_final,
        'reviewed_at': iso(issue.reviewed_at),
        'processed_at': iso(issue.processed_at),
        'closed_at': iso(issue.closed_at),
        'is_concluded': issue.is_concluded,
        'concluded_at': iso(issue.concluded_at),
        'concluded_reason': issue.concluded_reason,
        'original_issue': _issue_ref(issue.original_issue),
        'child_issues': [_issue_ref(c) for c in issue.child_issues],
        'order_item': format_item(issue.order_item),
        'created_at': iso(issue.created_at),
        'updated_at': iso(issue.updated_at),
    }
    if include_messages:
        data['messages'] = [
            format_message(m) for m in get_issue_messages(issue.id)
        ]
    return data


def _reporting_anchor(order):
    return order.delivered_at or order.shipped_at or order.updated_at


def report_issue(order_id, item_id, customer, reason, notes=None,
                 image_urls=None, now=None):
    if not reason:
        raise ServiceError('Please select a reason for your issue')
    reason_enum = parse_enum(IssueReason, reason)
    if reason_enum is None:
        raise ServiceError('Invalid reason selected')

    item = db.session.get(OrderItem, item_id)
    if not item:
        raise NotFoundError('Order item not found')

    order = item.order
    if order.customer_id != customer.id:
        raise PermissionDeniedError(
            'You can only report issues for your own orders')
    if order.id != order_id:
        raise ServiceError('Order item does not belong to this order')

    if order.status not in ISSUE_REPORTABLE_ORDER_STATUSES:
        raise ServiceError(
            'You can only report issues for orders that have been '
            'shipped or delivered')

    now = now or datetime.utcnow()
    window = current_app.config.get('ISSUE_REPORTING_WINDOW_DAYS', 30)
    anchor = _reporting_anchor(order)
    if anchor and now - anchor > timedelta(days=window):
        raise ServiceError(
            f'Issues must be reported within {window} days of delivery')

    if item.issue is not None:
        raise ServiceError(
            'This item already has a reported issue. '
            'Please view the existing issue instead.')

    carrier_fault = (
        CarrierFault.CARRIER_FAULT
        if reason_enum == IssueReason.DAMAGED_IN_TRANSIT
        else CarrierFault.UNKNOWN
    )

    # A reprint links back to the issue that produced it
    original_issue_id = None
    if item.is_reprint and item.original_item_id:
        original_item = db.session.get(OrderItem, item.original_item_id)
        if original_item and original_item.issue:
            original_issue_id = original_item.issue.id

    issue = Issue(
        order_id=order.id,
        order_item_id=item.id,
        created_by=customer.id,
        reason=reason_enum,
        status=IssueStatus.AWAITING_REVIEW,
        carrier_fault=carrier_fault,
        initial_notes=clean_text(notes),
        original_issue_id=original_issue_id,
    )
    images = clean_image_urls(image_urls)
    if images:
        issue.set_image_urls(images)

    db.session.add(issue)
    db.session.commit()

    logger.info(
        "Issue %s reported on item %s (order %s) reason=%s",
        issue.id,
        item.id,
        order.id,
        reason_enum.value,
    )
    return issue


def get_item_issue(order_id, item_id, customer):
    item = db.session.get(OrderItem, item_id)
    if not item:
        raise NotFoundError('Order item not found')
    if item.order.customer_id != customer.id:
        raise PermissionDeniedError('Access denied')
    if item.order_id != order_id:
        raise ServiceError('Order item does not belong to this order')
    if item.issue is None:
        raise NotFoundError('No issue found for this item')
    return item.issue


def get_customer_issue(issue_id, customer):
    issue = get_issue_or_404(issue_id)
    ensure_owner(issue, customer)
    mark_messages_read(issue.id, MessageSender.ADMIN)
    return issue


def withdraw_issue(issue_id, customer):
    issue = get_issue_or_404(issue_id)
    ensure_owner(issue, customer)

    if issue.is_concluded or not can_withdraw(issue.status):
        raise ServiceError(
            'This issue can no longer be withdrawn as it is already '
            'being processed')

    db.session.delete(issue)
    db.session.commit()
    logger.info("Issue %s withdrawn by customer %s", issue_id, customer.id)


def list_customer_issues(customer):
    issues = Issue.query.join(Order, Issue.order_id == Order.id).filter(
        Order.customer_id == customer.id
    ).order_by(Issue.created_at.desc(), Issue.id.desc()).all()

    payload = []
    total_unread = 0
    for issue in issues:
        unread = count_unread(issue.id, MessageSender.ADMIN)
        total_unread += unread
        latest = get_latest_message(issue.id)
        entry = format_issue(issue)
        entry['unread_count'] = unread
        entry['latest_message'] = format_message(latest) if latest else None
        payload.append(entry)

    stats = {
        'total': len(issues),
        'pending': sum(1 for i in issues if is_pending(i.status)),
        'resolved': sum(1 for i in issues if is_resolved(i.status)),
        'unread_messages': total_unread,
    }
    return payload, stats


def customer_unread_count(customer) -> int:
    return IssueMessage.query.join(
        Issue, IssueMessage.issue_id == Issue.id
    ).join(
        Order, Issue.order_id == Order.id
    ).filter(
        Order.customer_id == customer.id,
        IssueMessage.sender == MessageSender.ADMIN,
        IssueMessage.read_at.is_(None),
    ).count()


def appeal_issue(issue_id, customer, reason, image_urls=None):
    reason = clean_text(reason)
    if not reason:
        raise ServiceError('Please provide a reason for your appeal')

    issue = get_issue_or_404(issue_id)
    ensure_owner(issue, customer)

    if issue.is_concluded:
        raise ServiceError(
            'This issue has been concluded and cannot be appealed')
    if issue.status != IssueStatus.REJECTED:
        raise ServiceError('Only rejected issues can be appealed')
    if issue.rejection_final:
        raise ServiceError(
            'This issue has already been appealed and the rejection is final')

    add_message(
        issue,
        MessageSender.CUSTOMER,
        customer.id,
        f'**Appeal:** {reason}',
        image_urls,
    )
    issue.status = IssueStatus.AWAITING_REVIEW
    issue.reviewed_at = None
    db.session.commit()

    logger.info("Issue %s appealed by customer %s", issue.id, customer.id)
    return issue
