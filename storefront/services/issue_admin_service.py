from datetime import datetime, timedelta
from flask import current_app
from sqlalchemy import func
from storefront.extensions import db
from storefront.models import (
    CarrierFault,
    Issue,
    IssueMessage,
    IssueStatus,
    MessageSender,
)
from storefront.services.issue_message_service import (
    add_message,
    count_unread,
    format_message,
    get_issue_or_404,
    get_latest_message,
    mark_messages_read,
)
from storefront.services.issue_service import format_issue
from storefront.services.issue_status import (
    ATTENTION_STATUSES,
    status_sort_key,
)
from storefront.utils import iso, money_float, paginate_query
import logging

logger = logging.getLogger(__name__)

AUTO_CLOSE_MESSAGE = (
    'This issue has been automatically closed due to no response within '
    '{days} days. If you still need assistance, please report a new issue '
    'or contact support.'
)


def _stale_days():
    return current_app.config.get('STALE_ISSUE_DAYS', 14)


def format_issue_admin(issue, include_messages=False):
    data = format_issue(issue, include_messages=include_messages)
    order = issue.order
    customer = order.customer
    payment = order.payment
    data.update({
        'customer': {
            'id': customer.id,
            'name': customer.name,
            'email': customer.email,
        },
        'order': {
            'id': order.id,
            'status': order.status.value,
            'total_price': money_float(order.total_price),
            'carrier': order.carrier,
            'tracking_number': order.tracking_number,
            'shipped_at': iso(order.shipped_at),
            'delivered_at': iso(order.delivered_at),
            'items': [
                {
                    'id': item.id,
                    'product_name': (
                        item.product.name if item.product else None),
                    'issue': {
                        'id': item.issue.id,
                        'status': item.issue.status.value,
                    } if item.issue else None,
                }
                for item in order.items
            ],
        },
        'payment': {
            'id': payment.id,
            'amount': money_float(payment.amount),
            'status': payment.status.value,
            'provider_payment_id': payment.provider_payment_id,
            'refunded_at': iso(payment.refunded_at),
        } if payment else None,
        'claim_submitted_at': iso(issue.claim_submitted_at),
        'claim_paid_at': iso(issue.claim_paid_at),
        'claim_notes': issue.claim_notes,
        'refund_reference': issue.refund_reference,
        'concluded_by': issue.concluded_by,
    })
    return data


def get_issue_admin(issue_id):
    issue = get_issue_or_404(issue_id)
    mark_messages_read(issue.id, MessageSender.CUSTOMER)
    return issue


def _status_counts():
    rows = db.session.query(
        Issue.status, func.count(Issue.id)
    ).group_by(Issue.status).all()
    return {status.value: count for status, count in rows}


def admin_dashboard_stats():
    carrier_fault = Issue.query.filter_by(
        carrier_fault=CarrierFault.CARRIER_FAULT).count()
    return {
        'by_status': _status_counts(),
        'carrier_fault': carrier_fault,
    }


def list_issues_admin(status=None, carrier_fault=None, page=1, per_page=50):
    query = Issue.query
    if status is not None:
        query = query.filter(Issue.status == status)
    if carrier_fault is not None:
        query = query.filter(Issue.carrier_fault == carrier_fault)

    # Priority order of the workflow, not alphabetical
    priority = db.case(
        {s: status_sort_key(s) for s in IssueStatus},
        value=Issue.status,
    )
    query = query.order_by(priority, Issue.created_at.desc(), Issue.id.desc())

    result = paginate_query(query, page=page, per_page=per_page)
    issues = []
    for issue in result['items']:
        entry = format_issue_admin(issue)
        latest = get_latest_message(issue.id)
        entry['unread_count'] = count_unread(
            issue.id, MessageSender.CUSTOMER)
        entry['latest_message'] = format_message(latest) if latest else None
        issues.append(entry)

    result['items'] = issues
    result['stats'] = admin_dashboard_stats()
    return result


def issues_needing_attention() -> int:
    return Issue.query.filter(
        Issue.status.in_(list(ATTENTION_STATUSES)),
        Issue.is_concluded.is_(False),
    ).count()


def admin_unread_count() -> int:
    return IssueMessage.query.filter(
        IssueMessage.sender == MessageSender.CUSTOMER,
        IssueMessage.read_at.is_(None),
    ).count()


def find_stale_issues(now=None):
    """INFO_REQUESTED issues the customer has left unanswered.

    Stale means reviewed more than ``STALE_ISSUE_DAYS`` ago and either no
    messages at all, or a latest message from an admin at least that old.
    """
    now = now or datetime.utcnow()
    days = _stale_days()
    cutoff = now - timedelta(days=days)

    candidates = Issue.query.filter(
        Issue.status == IssueStatus.INFO_REQUESTED,
        Issue.is_concluded.is_(False),
        Issue.reviewed_at < cutoff,
    ).order_by(Issue.id.asc()).all()

    stale = []
    for issue in candidates:
        latest = get_latest_message(issue.id)
        if latest is None:
            stale.append((issue, None))
            continue
        if (latest.sender == MessageSender.ADMIN
                and (now - latest.created_at).days >= days):
            stale.append((issue, latest))
    return stale


def preview_auto_close(now=None):
    now = now or datetime.utcnow()
    stale = find_stale_issues(now)

    summaries = []
    for issue, latest in stale:
        last_activity = latest.created_at if latest else issue.reviewed_at
        item = issue.order_item
        summaries.append({
            'id': issue.id,
            'order_id': issue.order_id,
            'product_name': (
                item.product.name if item and item.product else 'Unknown'),
            'reviewed_at': iso(issue.reviewed_at),
            'last_message_at': iso(latest.created_at) if latest else None,
            'days_since_last_activity': (
                (now - last_activity).days if last_activity else None),
        })

    return {
        'stale_days': _stale_days(),
        'issues_would_close': len(summaries),
        'issues': summaries,
    }


def auto_close_stale_issues(now=None):
    """Close stale issues and return their ids."""
    now = now or datetime.utcnow()
    content = AUTO_CLOSE_MESSAGE.format(days=_stale_days())

    closed_ids = []
    for issue, _ in find_stale_issues(now):
        issue.status = IssueStatus.CLOSED
        issue.closed_at = now
        # System message: admin side, no author
        add_message(issue, MessageSender.ADMIN, None, content)
        db.session.commit()
        closed_ids.append(issue.id)

    if closed_ids:
        logger.info("Auto-closed %s stale issue(s): %s",
                    len(closed_ids), closed_ids)
    return closed_ids
