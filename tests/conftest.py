from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest
from flask import has_app_context

from storefront import create_app
from storefront.config import Config
from storefront.extensions import db
from storefront.models import (
    OrderItem,
    Order,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Product,
    ProductStatus,
    ProductVariant,
    User,
    UserRole,
)
from storefront.services import payment_gateway

PASSWORD = 'password123'
CRON_SECRET = 'test-cron-secret'


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    LOG_FILE = None
    MAJOR_EVENTS_LOG = None
    CRON_SECRET = CRON_SECRET
    ISSUE_REPORTING_WINDOW_DAYS = 30
    STALE_ISSUE_DAYS = 14
    SHIPPING_FLAT_RATE = 3.99


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
    payment_gateway.reset()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
    payment_gateway.reset()


def _in_context(app, fn, *args, **kwargs):
    if has_app_context():
        return fn(*args, **kwargs)
    with app.app_context():
        return fn(*args, **kwargs)


def _seed():
    def user(email, role, name):
        u = User(email=email, name=name, role=role)
        u.set_password(PASSWORD)
        db.session.add(u)
        return u

    customer = user('customer@example.com', UserRole.CUSTOMER, 'Casey')
    other = user('other@example.com', UserRole.CUSTOMER, 'Robin')
    admin = user('admin@example.com', UserRole.ADMIN, 'Admin')

    product = Product(
        name='Art Print',
        slug='art-print',
        base_price=Decimal('20.00'),
        status=ProductStatus.ACTIVE,
    )
    archived = Product(
        name='Old Poster',
        slug='old-poster',
        base_price=Decimal('5.00'),
        status=ProductStatus.ARCHIVED,
    )
    db.session.add_all([product, archived])
    db.session.flush()

    variant = ProductVariant(
        product_id=product.id,
        name='A3 Matte',
        size='A3',
        finish='Matte',
        price=Decimal('25.00'),
    )
    db.session.add(variant)
    db.session.commit()

    return SimpleNamespace(
        customer_id=customer.id,
        customer_email=customer.email,
        other_id=other.id,
        other_email=other.email,
        admin_id=admin.id,
        admin_email=admin.email,
        product_id=product.id,
        archived_product_id=archived.id,
        variant_id=variant.id,
    )


@pytest.fixture
def seed(app):
    return _in_context(app, _seed)


@pytest.fixture
def ctx(app, seed):
    """Application context for tests that call services directly."""
    with app.app_context():
        yield app


def _create_order(customer_id, product_id, variant_id=None,
                  status=OrderStatus.DELIVERED, lines=((1, '25.00'),),
                  paid=True, delivered_at=None, shipped_at=None,
                  tracking_number='TRK123', carrier='Royal Mail'):
    now = datetime.utcnow()
    subtotal = sum(
        (Decimal(price) * qty for qty, price in lines), Decimal('0.00'))
    order = Order(
        customer_id=customer_id,
        status=status,
        subtotal=subtotal,
        shipping_cost=Decimal('0.00'),
        total_price=subtotal,
        carrier=carrier,
        tracking_number=tracking_number,
        shipped_at=shipped_at or (now - timedelta(days=3)),
        delivered_at=(
            delivered_at if delivered_at is not None
            else (now - timedelta(days=1)
                  if status == OrderStatus.DELIVERED else None)),
    )
    order.set_shipping_address({
        'recipient_name': 'Casey',
        'line1': '1 High Street',
        'city': 'London',
        'postcode': 'N1 1AA',
        'country': 'GB',
    })
    db.session.add(order)
    db.session.flush()

    item_ids = []
    for qty, price in lines:
        item = OrderItem(
            order_id=order.id,
            product_id=product_id,
            variant_id=variant_id,
            design_ref='design-1',
            quantity=qty,
            unit_price=Decimal(price),
            total_price=Decimal(price) * qty,
        )
        db.session.add(item)
        db.session.flush()
        item_ids.append(item.id)

    if paid:
        db.session.add(Payment(
            order_id=order.id,
            amount=subtotal,
            status=PaymentStatus.COMPLETED,
            method=PaymentMethod.MOCK,
            provider_payment_id=f'pay_test_{order.id}',
            paid_at=now,
        ))
    db.session.commit()
    return order.id, item_ids


@pytest.fixture
def order_factory(app, seed):
    """Create an order for the seeded customer; returns (order_id, item_ids).

    Defaults to a paid, delivered order with one 25.00 line.
    """
    def create(**kwargs):
        kwargs.setdefault('customer_id', seed.customer_id)
        kwargs.setdefault('product_id', seed.product_id)
        kwargs.setdefault('variant_id', seed.variant_id)
        return _in_context(app, _create_order, **kwargs)
    return create


def login(client, email, password=PASSWORD):
    return client.post(
        '/api/auth/login', json={'email': email, 'password': password})


@pytest.fixture
def customer_client(app, seed):
    client = app.test_client()
    assert login(client, seed.customer_email).status_code == 200
    return client


@pytest.fixture
def other_client(app, seed):
    client = app.test_client()
    assert login(client, seed.other_email).status_code == 200
    return client


@pytest.fixture
def admin_client(app, seed):
    client = app.test_client()
    assert login(client, seed.admin_email).status_code == 200
    return client
