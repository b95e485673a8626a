from flask import Blueprint, jsonify
from flask_login import login_required, current_user
from storefront.middleware import role_required
from storefront.services.cart_service import (
    add_cart_item,
    clear_cart,
    delete_cart_item,
    format_cart_item,
    get_cart_items,
    sync_cart,
    update_cart_item,
)
from storefront.utils import get_json_body
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('cart', __name__)


@bp.route('/api/cart', methods=['GET'])
@login_required
@role_required('CUSTOMER')
def get_cart():
    items = get_cart_items(current_user)
    return jsonify({
        'items': [format_cart_item(item) for item in items],
        'total_items': sum(item.quantity for item in items),
    })


@bp.route('/api/cart', methods=['POST'])
@login_required
@role_required('CUSTOMER')
def add_item():
    data = get_json_body()
    item, is_new = add_cart_item(
        current_user,
        product_id=data.get('product_id'),
        variant_id=data.get('variant_id'),
        quantity=data.get('quantity', 1),
        unit_price=data.get('unit_price'),
        customization=data.get('customization'),
    )
    return jsonify({
        'ok': True,
        'item': format_cart_item(item),
        'is_new': is_new,
    }), 201 if is_new else 200


@bp.route('/api/cart', methods=['DELETE'])
@login_required
@role_required('CUSTOMER')
def clear():
    removed = clear_cart(current_user)
    return jsonify({'ok': True, 'removed': removed})


@bp.route('/api/cart/<int:item_id>', methods=['PUT'])
@login_required
@role_required('CUSTOMER')
def update_item(item_id):
    data = get_json_body()
    if 'quantity' not in data:
        return jsonify({'error': 'Quantity cannot be empty'}), 400

    item = update_cart_item(current_user, item_id, data.get('quantity'))
    if item is None:
        return jsonify({'ok': True, 'removed': True, 'item': None})
    return jsonify({
        'ok': True,
        'removed': False,
        'item': format_cart_item(item),
    })


@bp.route('/api/cart/<int:item_id>', methods=['DELETE'])
@login_required
@role_required('CUSTOMER')
def delete_item(item_id):
    delete_cart_item(current_user, item_id)
    return jsonify({'ok': True})


@bp.route('/api/cart/sync', methods=['POST'])
@login_required
@role_required('CUSTOMER')
def sync():
    data = get_json_body()
    items = sync_cart(current_user, data.get('items') or [])
    return jsonify({
        'ok': True,
        'items': [format_cart_item(item) for item in items],
    })
