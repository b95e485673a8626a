from datetime import datetime
from storefront.extensions import db
from storefront.errors import ServiceError, NotFoundError
from storefront.models import (
    Cart,
    CartItem,
    Product,
    ProductStatus,
    ProductVariant,
)
from storefront.utils import iso, money_float, to_money
from decimal import InvalidOperation
import logging

logger = logging.getLogger(__name__)


def format_cart_item(item):
    product = item.product
    variant = item.variant
    return {
        'id': item.id,
        'product_id': item.product_id,
        'variant_id': item.variant_id,
        'quantity': item.quantity,
        'unit_price': money_float(item.unit_price),
        'customization': item.get_customization(),
        'added_at': iso(item.added_at),
        'product': {
            'id': product.id,
            'name': product.name,
            'slug': product.slug,
            'status': product.status.value,
        } if product else None,
        'variant': {
            'id': variant.id,
            'name': variant.name,
            'size': variant.size,
            'color': variant.color,
            'material': variant.material,
            'finish': variant.finish,
        } if variant else None,
    }


def get_or_create_cart(user) -> Cart:
    cart = Cart.query.filter_by(user_id=user.id).first()
    if not cart:
        cart = Cart(user_id=user.id)
        db.session.add(cart)
        db.session.flush()
    return cart


def get_cart_items(user):
    cart = Cart.query.filter_by(user_id=user.id).first()
    if not cart:
        return []
    return cart.items.order_by(
        CartItem.added_at.desc(), CartItem.id.desc()).all()


def _find_line(cart, product_id, variant_id):
    return cart.items.filter(
        CartItem.product_id == product_id,
        CartItem.variant_id.is_(None) if variant_id is None
        else CartItem.variant_id == variant_id,
    ).first()


def _coerce_int(value, field):
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ServiceError(f'Invalid {field}')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ServiceError(f'Invalid {field}')


def _check_product(product_id, variant_id):
    product = db.session.get(Product, product_id)
    if not product or product.status != ProductStatus.ACTIVE:
        raise NotFoundError('Product not found or unavailable')
    if variant_id is not None:
        variant = ProductVariant.query.filter_by(
            id=variant_id, product_id=product.id).first()
        if not variant:
            raise NotFoundError('Product variant not found')
    return product


def add_cart_item(user, product_id, variant_id=None, quantity=1,
                  unit_price=None, customization=None):
    """Add or merge a cart line; returns (item, is_new)."""
    product_id = _coerce_int(product_id, 'product id')
    variant_id = _coerce_int(variant_id, 'variant id')
    quantity = _coerce_int(quantity, 'quantity')
    if product_id is None:
        raise ServiceError('Product ID is required')
    if quantity is None:
        quantity = 1
    if quantity < 1:
        raise ServiceError('Quantity must be at least 1')
    if unit_price is None:
        raise ServiceError('Unit price is required')
    try:
        price = to_money(unit_price)
    except (InvalidOperation, ValueError):
        raise ServiceError('Invalid unit price')
    if price < 0:
        raise ServiceError('Unit price cannot be negative')

    _check_product(product_id, variant_id)

    cart = get_or_create_cart(user)
    line = _find_line(cart, product_id, variant_id)
    if line:
        line.quantity += quantity
        line.unit_price = price
        if customization is not None:
            line.set_customization(customization)
        db.session.commit()
        return line, False

    line = CartItem(
        cart_id=cart.id,
        product_id=product_id,
        variant_id=variant_id,
        quantity=quantity,
        unit_price=price,
    )
    if customization is not None:
        line.set_customization(customization)
    db.session.add(line)
    cart.updated_at = datetime.utcnow()
    db.session.commit()
    return line, True


def _get_own_item(user, item_id) -> CartItem:
    item = CartItem.query.join(Cart).filter(
        CartItem.id == item_id,
        Cart.user_id == user.id,
    ).first()
    if not item:
        raise NotFoundError('Cart item not found')
    return item


def update_cart_item(user, item_id, quantity):
    """Set a line quantity; 0 removes the line and returns None."""
    quantity = _coerce_int(quantity, 'quantity')
    if quantity is None or quantity < 0:
        raise ServiceError('Quantity must be 0 or greater')

    item = _get_own_item(user, item_id)
    if quantity == 0:
        db.session.delete(item)
        db.session.commit()
        return None

    item.quantity = quantity
    db.session.commit()
    return item


def delete_cart_item(user, item_id):
    item = _get_own_item(user, item_id)
    db.session.delete(item)
    db.session.commit()


def clear_cart(user) -> int:
    cart = Cart.query.filter_by(user_id=user.id).first()
    if not cart:
        return 0
    count = CartItem.query.filter_by(cart_id=cart.id).delete(
        synchronize_session=False)
    db.session.commit()
    return count


def sync_cart(user, items):
    """Merge a guest cart into the user's server cart.

    Rows that fail validation are skipped. A product+variant already in
    the cart keeps the larger of the two quantities.
    """
    if not isinstance(items, list):
        raise ServiceError('Items must be a list')

    cart = get_or_create_cart(user)
    merged = 0
    skipped = 0
    for raw in items:
        if not isinstance(raw, dict):
            skipped += 1
            continue
        try:
            product_id = _coerce_int(raw.get('product_id'), 'product id')
            variant_id = _coerce_int(raw.get('variant_id'), 'variant id')
            quantity = _coerce_int(raw.get('quantity', 1), 'quantity')
            price = to_money(raw.get('unit_price'))
        except (ServiceError, InvalidOperation, ValueError):
            skipped += 1
            continue
        if (product_id is None or quantity is None or quantity < 1
                or raw.get('unit_price') is None or price < 0):
            skipped += 1
            continue
        try:
            _check_product(product_id, variant_id)
        except NotFoundError:
            skipped += 1
            continue

        line = _find_line(cart, product_id, variant_id)
        if line:
            line.quantity = max(line.quantity, quantity)
        else:
            line = CartItem(
                cart_id=cart.id,
                product_id=product_id,
                variant_id=variant_id,
                quantity=quantity,
                unit_price=price,
            )
            if raw.get('customization') is not None:
                line.set_customization(raw.get('customization'))
            db.session.add(line)
            db.session.flush()
        merged += 1

    db.session.commit()
    logger.info(
        "Cart sync for user %s: %s merged, %s skipped",
        user.id,
        merged,
        skipped,
    )
    return get_cart_items(user)
