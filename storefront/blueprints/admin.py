from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from storefront.extensions import db
from storefront.models import (
    Issue,
    Order,
    OrderStatus,
    PaymentStatus,
    Product,
    User,
    UserRole,
)
from storefront.middleware import role_required
from storefront.services.audit_service import log_audit
from storefront.services.issue_admin_service import (
    admin_unread_count,
    issues_needing_attention,
)
from storefront.services.issue_service import format_item
from storefront.services.order_state_machine import (
    ACTIVE_ORDER_STATUSES,
    get_status_label,
    get_valid_next_statuses,
    transition_order,
)
from storefront.services.resolution_service import (
    format_resolution,
    list_order_resolutions,
    process_resolution,
)
from storefront.utils import (
    clean_text,
    get_json_body,
    get_page_args,
    iso,
    money_float,
    paginate_query,
    parse_enum,
)
from sqlalchemy import func
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('admin', __name__)


def _order_summary(order, customer_email=None):
    return {
        'id': order.id,
        'status': order.status.value,
        'status_label': get_status_label(order.status),
        'total_price': money_float(order.total_price),
        'customer_id': order.customer_id,
        'customer_email': customer_email,
        'carrier': order.carrier,
        'tracking_number': order.tracking_number,
        'created_at': iso(order.created_at),
        'updated_at': iso(order.updated_at),
    }


@bp.route('/api/admin/dashboard', methods=['GET'])
@login_required
@role_required('ADMIN')
def dashboard():
    revenue = db.session.query(
        func.coalesce(func.sum(Order.total_price), 0)
    ).filter(
        Order.payment.has(status=PaymentStatus.COMPLETED)
    ).scalar()

    stats = {
        'total_customers': User.query.filter_by(
            role=UserRole.CUSTOMER).count(),
        'total_products': Product.query.count(),
        'total_orders': Order.query.count(),
        'active_orders': Order.query.filter(
            Order.status.in_(list(ACTIVE_ORDER_STATUSES))).count(),
        'revenue': money_float(revenue),
        'total_issues': Issue.query.count(),
        'issues_needing_attention': issues_needing_attention(),
        'unread_issue_messages': admin_unread_count(),
    }
    return jsonify(stats)


@bp.route('/api/admin/orders', methods=['GET'])
@login_required
@role_required('ADMIN')
def admin_orders():
    page, per_page = get_page_args()

    query = db.session.query(Order, User.email).join(
        User, User.id == Order.customer_id)
    raw_status = (request.args.get('status') or '').strip()
    if raw_status:
        status = parse_enum(OrderStatus, raw_status)
        if status is None:
            return jsonify({'error': 'Invalid status filter'}), 400
        query = query.filter(Order.status == status)

    result = paginate_query(
        query.order_by(Order.created_at.desc(), Order.id.desc()),
        page=page,
        per_page=per_page,
    )
    result['items'] = [
        _order_summary(order, email) for order, email in result['items']
    ]
    return jsonify(result)


@bp.route('/api/admin/orders/<int:order_id>', methods=['GET'])
@login_required
@role_required('ADMIN')
def admin_order_detail(order_id):
    order = db.get_or_404(Order, order_id)
    customer = order.customer

    data = _order_summary(order, customer.email if customer else None)
    items = []
    for item in order.items:
        entry = format_item(item)
        issue = item.issue
        entry['issue'] = {
            'id': issue.id,
            'status': issue.status.value,
            'reason': issue.reason.value,
            'carrier_fault': issue.carrier_fault.value,
            'is_concluded': issue.is_concluded,
            'created_at': iso(issue.created_at),
        } if issue else None
        items.append(entry)

    payment = order.payment
    data.update({
        'subtotal': money_float(order.subtotal),
        'shipping_cost': money_float(order.shipping_cost),
        'shipping_address': order.get_shipping_address(),
        'notes': order.notes,
        'shipped_at': iso(order.shipped_at),
        'delivered_at': iso(order.delivered_at),
        'items': items,
        'payment': {
            'id': payment.id,
            'amount': money_float(payment.amount),
            'status': payment.status.value,
            'method': payment.method.value,
            'provider_payment_id': payment.provider_payment_id,
            'paid_at': iso(payment.paid_at),
            'refunded_at': iso(payment.refunded_at),
        } if payment else None,
        'resolutions': [
            format_resolution(r) for r in list_order_resolutions(order.id)
        ],
        'valid_next_statuses': [
            s.value for s in get_valid_next_statuses(order.status)
        ],
    })
    return jsonify({'order': data})


@bp.route('/api/admin/orders/<int:order_id>/status', methods=['PATCH'])
@login_required
@role_required('ADMIN')
def update_order_status(order_id):
    order = db.get_or_404(Order, order_id)
    data = get_json_body()

    new_status = parse_enum(OrderStatus, data.get('status'))
    if new_status is None:
        return jsonify({'error': 'Invalid order status'}), 400

    if new_status == OrderStatus.SHIPPED:
        carrier = clean_text(data.get('carrier'))
        tracking = clean_text(data.get('tracking_number'))
        if carrier:
            order.carrier = carrier
        if tracking:
            order.tracking_number = tracking

    previous = order.status
    transition_order(order, new_status)
    db.session.commit()

    log_audit(
        actor=current_user,
        action='ORDER_STATUS_CHANGE',
        target_type='ORDER',
        target_id=order.id,
        payload={
            'from': previous.value,
            'to': new_status.value,
            'tracking_number': order.tracking_number,
        })

    return jsonify({
        'ok': True,
        'order': _order_summary(order),
        'valid_next_statuses': [
            s.value for s in get_valid_next_statuses(order.status)
        ],
    })


@bp.route('/api/admin/resolutions/<int:resolution_id>/process',
          methods=['POST'])
@login_required
@role_required('ADMIN')
def admin_process_resolution(resolution_id):
    data = get_json_body()
    action = (clean_text(data.get('action')) or '').upper()
    result = process_resolution(
        resolution_id,
        current_user,
        action,
        notes=data.get('notes'),
    )

    payload = {'action': action}
    if 'reprint_order_id' in result:
        payload['reprint_order_id'] = result['reprint_order_id']
    if 'amount' in result:
        payload['amount'] = money_float(result['amount'])
    log_audit(
        actor=current_user,
        action='RESOLUTION_PROCESS',
        target_type='RESOLUTION',
        target_id=resolution_id,
        payload=payload)

    response = {'ok': True, 'message': result['message']}
    if 'reprint_order_id' in payload:
        response['reprint_order_id'] = payload['reprint_order_id']
    if 'amount' in payload:
        response['amount'] = payload['amount']
    return jsonify(response)
