from datetime import datetime
from storefront.extensions import db
from storefront.errors import ServiceError
from storefront.models import CarrierFault, ClaimStatus, Issue
from storefront.services.issue_message_service import (
    format_message,
    get_issue_messages,
    get_issue_or_404,
)
from storefront.services.issue_status import RESOLVED_STATUSES
from storefront.utils import clean_text, iso, money_float, parse_enum, to_money
from decimal import Decimal, InvalidOperation
import logging

logger = logging.getLogger(__name__)

NOT_CARRIER_FAULT_ERROR = (
    'This issue is not marked as carrier fault. '
    'Update carrier fault status first.'
)

# Sentinel for "field not sent" in partial updates
UNSET = object()


def set_carrier_fault(issue_id, admin, value):
    carrier_fault = parse_enum(CarrierFault, value)
    if carrier_fault is None:
        raise ServiceError('Invalid carrier fault status')

    issue = get_issue_or_404(issue_id)
    if issue.is_concluded:
        raise ServiceError(
            'This issue has been concluded. Reopen it before making changes.')

    previous = issue.carrier_fault
    issue.carrier_fault = carrier_fault
    db.session.commit()

    logger.info(
        "Issue %s carrier fault %s -> %s by admin %s",
        issue.id,
        previous.value,
        carrier_fault.value,
        admin.id,
    )
    return issue, previous


def format_claim(issue):
    item = issue.order_item
    order = issue.order
    return {
        'issue_id': issue.id,
        'carrier_fault': issue.carrier_fault.value,
        'tracking_number': order.tracking_number,
        'carrier': order.carrier,
        'item_value': money_float(item.total_price) if item else None,
        'claim_reference': issue.claim_reference,
        'claim_status': issue.claim_status.value,
        'claim_submitted_at': iso(issue.claim_submitted_at),
        'claim_payout_amount': money_float(issue.claim_payout_amount),
        'claim_paid_at': iso(issue.claim_paid_at),
        'claim_notes': issue.claim_notes,
    }


def get_claim(issue_id):
    return get_issue_or_404(issue_id)


def _parse_payout(value):
    if value is None or value == '':
        return None
    try:
        payout = to_money(value)
    except (InvalidOperation, ValueError):
        raise ServiceError('Invalid payout amount')
    return payout if payout > 0 else None


def update_claim(issue_id, admin, reference=UNSET, status=UNSET,
                 payout=UNSET, notes=UNSET, now=None):
    """Partial update of the claim fields; unsent fields are left alone."""
    status_enum = None
    if status is not UNSET and status is not None:
        status_enum = parse_enum(ClaimStatus, status)
        if status_enum is None:
            raise ServiceError('Invalid claim status')

    issue = get_issue_or_404(issue_id)
    if issue.carrier_fault != CarrierFault.CARRIER_FAULT:
        raise ServiceError(NOT_CARRIER_FAULT_ERROR)

    now = now or datetime.utcnow()
    if reference is not UNSET:
        issue.claim_reference = clean_text(reference)
    if status_enum is not None:
        issue.claim_status = status_enum
        if (status_enum == ClaimStatus.SUBMITTED
                and not issue.claim_submitted_at):
            issue.claim_submitted_at = now
        if status_enum == ClaimStatus.PAID:
            issue.claim_paid_at = now
    if payout is not UNSET:
        issue.claim_payout_amount = _parse_payout(payout)
    if notes is not UNSET:
        issue.claim_notes = clean_text(notes)

    db.session.commit()
    logger.info(
        "Claim on issue %s updated by admin %s status=%s",
        issue.id,
        admin.id,
        issue.claim_status.value,
    )
    return issue


def submit_claim(issue_id, admin, reference=None, now=None):
    issue = get_issue_or_404(issue_id)
    if issue.carrier_fault != CarrierFault.CARRIER_FAULT:
        raise ServiceError(NOT_CARRIER_FAULT_ERROR)
    if issue.claim_status != ClaimStatus.NOT_FILED:
        raise ServiceError('Claim has already been filed')

    issue.claim_status = ClaimStatus.SUBMITTED
    issue.claim_submitted_at = now or datetime.utcnow()
    reference = clean_text(reference)
    if reference:
        issue.claim_reference = reference
    db.session.commit()

    logger.info("Claim submitted for issue %s by admin %s",
                issue.id, admin.id)
    return issue


def list_carrier_claims(include_resolved=False):
    query = Issue.query.filter(
        Issue.carrier_fault == CarrierFault.CARRIER_FAULT)
    if not include_resolved:
        query = query.filter(Issue.status.notin_(list(RESOLVED_STATUSES)))
    issues = query.order_by(Issue.created_at.desc(), Issue.id.desc()).all()

    claims = []
    total_value = Decimal('0.00')
    refunded = Decimal('0.00')
    payouts = Decimal('0.00')
    pending = 0
    for issue in issues:
        order = issue.order
        item = issue.order_item
        customer = order.customer
        claims.append({
            'issue_id': issue.id,
            'order_id': order.id,
            'order_date': iso(order.created_at),
            'tracking_number': order.tracking_number,
            'carrier': order.carrier or 'Unknown',
            'customer_name': customer.name,
            'customer_email': customer.email,
            'shipping_address': order.get_shipping_address(),
            'product_name': (
                item.product.name if item.product else 'Unknown Product'),
            'variant_name': item.variant.name if item.variant else None,
            'item_price': money_float(item.total_price),
            'issue_reason': issue.reason.value,
            'issue_notes': issue.initial_notes,
            'issue_images': issue.get_image_urls(),
            'issue_date': iso(issue.created_at),
            'status': issue.status.value,
            'resolution_type': (
                issue.resolved_type.value if issue.resolved_type else None),
            'refund_amount': money_float(issue.refund_amount),
            'claim_status': issue.claim_status.value,
            'claim_reference': issue.claim_reference,
            'claim_payout_amount': money_float(issue.claim_payout_amount),
        })
        total_value += to_money(item.total_price)
        if issue.refund_amount:
            refunded += to_money(issue.refund_amount)
        if issue.claim_payout_amount:
            payouts += to_money(issue.claim_payout_amount)
        if issue.status not in RESOLVED_STATUSES:
            pending += 1

    summary = {
        'total_claims': len(claims),
        'pending_claims': pending,
        'resolved_claims': len(claims) - pending,
        'total_claims_value': f'{total_value:.2f}',
        'refunded_amount': f'{refunded:.2f}',
        'total_payouts': f'{payouts:.2f}',
    }
    return claims, summary


def build_claim_report(issue_id, now=None):
    """Everything a carrier insurance claim needs, as plain data."""
    issue = get_issue_or_404(issue_id)
    order = issue.order
    item = issue.order_item
    customer = order.customer

    return {
        'generated_at': iso(now or datetime.utcnow()),
        'order': {
            'id': order.id,
            'status': order.status.value,
            'created_at': iso(order.created_at),
            'carrier': order.carrier,
            'tracking_number': order.tracking_number,
            'shipped_at': iso(order.shipped_at),
            'delivered_at': iso(order.delivered_at),
            'total_price': money_float(order.total_price),
        },
        'customer': {
            'id': customer.id,
            'name': customer.name,
            'email': customer.email,
        },
        'shipping_address': order.get_shipping_address(),
        'item': {
            'id': item.id,
            'product_name': item.product.name if item.product else None,
            'variant_name': item.variant.name if item.variant else None,
            'quantity': item.quantity,
            'unit_price': money_float(item.unit_price),
            'total_price': money_float(item.total_price),
        },
        'issue': {
            'id': issue.id,
            'reason': issue.reason.value,
            'status': issue.status.value,
            'carrier_fault': issue.carrier_fault.value,
            'initial_notes': issue.initial_notes,
            'created_at': iso(issue.created_at),
        },
        'evidence': issue.get_image_urls(),
        'resolution': {
            'resolved_type': (
                issue.resolved_type.value if issue.resolved_type else None),
            'reprint_order_id': issue.reprint_order_id,
            'refund_amount': money_float(issue.refund_amount),
            'processed_at': iso(issue.processed_at),
        },
        'claim': format_claim(issue),
        'messages': [
            format_message(m) for m in get_issue_messages(issue.id)
        ],
    }
