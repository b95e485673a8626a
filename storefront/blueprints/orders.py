from flask import Blueprint, current_app, jsonify
from flask_login import login_required, current_user
from storefront.extensions import db
from storefront.models import (
    Cart,
    CartItem,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
)
from storefront.middleware import role_required
from storefront.services import payment_gateway
from storefront.services.audit_service import log_audit
from storefront.services.issue_service import (
    REPORTED_MESSAGE,
    format_issue,
    format_item,
    get_item_issue,
    report_issue,
)
from storefront.services.order_state_machine import (
    CANCELLABLE_ORDER_STATUSES,
    get_status_label,
    transition_order,
)
from storefront.services.resolution_service import (
    format_resolution,
    report_order_issue,
)
from storefront.utils import (
    get_json_body,
    get_page_args,
    iso,
    money_float,
    paginate_query,
    to_money,
)
from datetime import datetime
from decimal import Decimal
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('orders', __name__)

ADDRESS_REQUIRED_FIELDS = [
    'recipient_name',
    'line1',
    'city',
    'postcode',
    'country',
]


def format_order(order, include_items=True):
    data = {
        'id': order.id,
        'status': order.status.value,
        'status_label': get_status_label(order.status),
        'subtotal': money_float(order.subtotal),
        'shipping_cost': money_float(order.shipping_cost),
        'total_price': money_float(order.total_price),
        'shipping_address': order.get_shipping_address(),
        'carrier': order.carrier,
        'tracking_number': order.tracking_number,
        'notes': order.notes,
        'shipped_at': iso(order.shipped_at),
        'delivered_at': iso(order.delivered_at),
        'created_at': iso(order.created_at),
        'updated_at': iso(order.updated_at),
        'payment': {
            'status': order.payment.status.value,
            'amount': money_float(order.payment.amount),
            'paid_at': iso(order.payment.paid_at),
            'refunded_at': iso(order.payment.refunded_at),
        } if order.payment else None,
    }
    if include_items:
        items = []
        for item in order.items:
            entry = format_item(item)
            entry['issue'] = {
                'id': item.issue.id,
                'status': item.issue.status.value,
            } if item.issue else None
            items.append(entry)
        data['items'] = items
    return data


def _get_own_order(order_id) -> Order:
    return Order.query.filter_by(
        id=order_id,
        customer_id=current_user.id,
    ).first_or_404()


@bp.route('/api/checkout', methods=['POST'])
@login_required
@role_required('CUSTOMER')
def checkout():
    data = get_json_body()
    address_data = data.get('address') or {}

    if not address_data:
        return jsonify({'error': 'Address information cannot be empty'}), 400

    # Validate required fields
    for field in ADDRESS_REQUIRED_FIELDS:
        if not str(address_data.get(field) or '').strip():
            return jsonify({'error': f'{field} cannot be empty'}), 400

    cart = Cart.query.filter_by(user_id=current_user.id).first()
    if not cart or not cart.items.count():
        return jsonify({'error': 'Cart is empty'}), 400

    # Optional subset of cart lines; all lines otherwise
    selected_ids = data.get('item_ids')
    lines = cart.items.order_by(CartItem.added_at.asc()).all()
    if selected_ids:
        wanted = {int(i) for i in selected_ids if str(i).isdigit()}
        lines = [line for line in lines if line.id in wanted]
        if not lines:
            return jsonify({'error': 'No selected items in cart'}), 400

    for line in lines:
        if not line.product or line.product.status.value != 'ACTIVE':
            return jsonify({
                'error': f'Product #{line.product_id} is no longer available'
            }), 400

    subtotal = sum(
        (to_money(line.unit_price) * line.quantity for line in lines),
        Decimal('0.00'),
    )
    shipping = to_money(current_app.config.get('SHIPPING_FLAT_RATE', 0))

    order = Order(
        customer_id=current_user.id,
        status=OrderStatus.PENDING,
        subtotal=subtotal,
        shipping_cost=shipping,
        total_price=subtotal + shipping,
    )
    order.set_shipping_address({
        k: str(v).strip() for k, v in address_data.items() if v is not None
    })
    db.session.add(order)
    db.session.flush()

    for line in lines:
        item = OrderItem(
            order_id=order.id,
            product_id=line.product_id,
            variant_id=line.variant_id,
            design_ref=data.get('design_ref'),
            quantity=line.quantity,
            unit_price=line.unit_price,
            total_price=to_money(line.unit_price) * line.quantity,
            customization_json=line.customization_json,
        )
        db.session.add(item)
        db.session.delete(line)

    db.session.commit()

    log_audit(
        actor=current_user,
        action='ORDER_CREATE',
        target_type='ORDER',
        target_id=order.id,
        payload={
            'total_price': float(order.total_price),
            'item_count': len(lines),
        })

    return jsonify({'ok': True, 'order': format_order(order)}), 201


@bp.route('/api/orders', methods=['GET'])
@login_required
@role_required('CUSTOMER')
def order_list():
    page, per_page = get_page_args(
        current_app.config.get('ITEMS_PER_PAGE', 20))
    query = Order.query.filter_by(customer_id=current_user.id).order_by(
        Order.created_at.desc(), Order.id.desc())
    result = paginate_query(query, page=page, per_page=per_page)
    result['items'] = [format_order(o) for o in result['items']]
    return jsonify(result)


@bp.route('/api/orders/<int:order_id>', methods=['GET'])
@login_required
@role_required('CUSTOMER')
def order_detail(order_id):
    order = _get_own_order(order_id)
    data = format_order(order)
    data['resolutions'] = [
        format_resolution(r) for r in order.resolutions.all()
    ]
    return jsonify({'order': data})


@bp.route('/api/orders/<int:order_id>/pay', methods=['POST'])
@login_required
@role_required('CUSTOMER')
def pay_order(order_id):
    order = _get_own_order(order_id)
    if order.status != OrderStatus.PENDING:
        return jsonify({'error': 'Order is not awaiting payment'}), 400
    if order.payment and order.payment.status == PaymentStatus.COMPLETED:
        return jsonify({'error': 'Order has already been paid'}), 400

    result = payment_gateway.create_payment(order.id, order.total_price)
    if not result.get('success'):
        return jsonify({'error': result.get('error') or 'Payment failed'}), 400

    payment = order.payment or Payment(order_id=order.id)
    payment.amount = order.total_price
    payment.method = PaymentMethod.MOCK
    payment.status = PaymentStatus.COMPLETED
    payment.provider_payment_id = result['payment_id']
    payment.paid_at = datetime.utcnow()
    db.session.add(payment)
    transition_order(order, OrderStatus.PAYMENT_CONFIRMED)
    db.session.commit()

    log_audit(
        actor=current_user,
        action='PAYMENT_COMPLETED',
        target_type='ORDER',
        target_id=order.id,
        payload={
            'amount': float(payment.amount),
            'provider_payment_id': payment.provider_payment_id,
        })

    return jsonify({'ok': True, 'order': format_order(order)})


@bp.route('/api/orders/<int:order_id>/cancel', methods=['POST'])
@login_required
@role_required('CUSTOMER')
def cancel_order(order_id):
    order = _get_own_order(order_id)
    if order.status not in CANCELLABLE_ORDER_STATUSES:
        return jsonify({
            'error': 'This order can no longer be cancelled'
        }), 400

    # Unpaid orders cancel outright; paid ones wait for an admin
    if order.status == OrderStatus.PENDING:
        new_status = OrderStatus.CANCELLED
    else:
        new_status = OrderStatus.CANCELLATION_REQUESTED
    previous = order.status
    transition_order(order, new_status)
    db.session.commit()

    log_audit(
        actor=current_user,
        action='ORDER_CANCEL_REQUEST',
        target_type='ORDER',
        target_id=order.id,
        payload={'from': previous.value, 'to': new_status.value})

    return jsonify({'ok': True, 'order': format_order(order)})


@bp.route('/api/orders/<int:order_id>/items/<int:item_id>/issue',
          methods=['POST'])
@login_required
@role_required('CUSTOMER')
def report_item_issue(order_id, item_id):
    data = get_json_body()
    issue = report_issue(
        order_id,
        item_id,
        current_user,
        reason=data.get('reason'),
        notes=data.get('notes'),
        image_urls=data.get('image_urls'),
    )

    log_audit(
        actor=current_user,
        action='ISSUE_REPORT',
        target_type='ISSUE',
        target_id=issue.id,
        payload={
            'order_id': order_id,
            'order_item_id': item_id,
            'reason': issue.reason.value,
            'carrier_fault': issue.carrier_fault.value,
        })

    return jsonify({
        'ok': True,
        'message': REPORTED_MESSAGE,
        'issue': format_issue(issue),
    }), 201


@bp.route('/api/orders/<int:order_id>/items/<int:item_id>/issue',
          methods=['GET'])
@login_required
@role_required('CUSTOMER')
def item_issue(order_id, item_id):
    issue = get_item_issue(order_id, item_id, current_user)
    return jsonify({'issue': format_issue(issue, include_messages=True)})


@bp.route('/api/orders/<int:order_id>/report-issue', methods=['POST'])
@login_required
@role_required('CUSTOMER')
def report_order_level_issue(order_id):
    data = get_json_body()
    resolution = report_order_issue(
        order_id,
        current_user,
        reason=data.get('reason'),
        notes=data.get('notes'),
        image_urls=data.get('image_urls'),
    )

    log_audit(
        actor=current_user,
        action='RESOLUTION_REPORT',
        target_type='RESOLUTION',
        target_id=resolution.id,
        payload={'order_id': order_id, 'reason': resolution.reason})

    return jsonify({
        'ok': True,
        'message': REPORTED_MESSAGE,
        'resolution': format_resolution(resolution),
    }), 201


