from storefront.extensions import db
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime
from sqlalchemy import CheckConstraint, UniqueConstraint
import enum
import json


def _dump_json(data):
    if data is None:
        return None
    return json.dumps(data, ensure_ascii=False)


def _load_json(raw, default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return default


def clean_image_urls(urls):
    """Keep only non-empty string entries of an image URL list."""
    if not isinstance(urls, (list, tuple)):
        return []
    return [u.strip() for u in urls if isinstance(u, str) and u.strip()]


class UserRole(enum.Enum):
    CUSTOMER = 'CUSTOMER'
    ADMIN = 'ADMIN'


class ProductStatus(enum.Enum):
    DRAFT = 'DRAFT'
    ACTIVE = 'ACTIVE'
    ARCHIVED = 'ARCHIVED'


class OrderStatus(enum.Enum):
    PENDING = 'PENDING'
    PAYMENT_CONFIRMED = 'PAYMENT_CONFIRMED'
    CONFIRMED = 'CONFIRMED'
    PRINTING = 'PRINTING'
    SHIPPED = 'SHIPPED'
    DELIVERED = 'DELIVERED'
    CANCELLATION_REQUESTED = 'CANCELLATION_REQUESTED'
    CANCELLED = 'CANCELLED'
    REFUNDED = 'REFUNDED'


class PaymentStatus(enum.Enum):
    PENDING = 'PENDING'
    COMPLETED = 'COMPLETED'
    FAILED = 'FAILED'
    REFUNDED = 'REFUNDED'


class PaymentMethod(enum.Enum):
    MOCK = 'MOCK'
    CARD = 'CARD'


class IssueStatus(enum.Enum):
    SUBMITTED = 'SUBMITTED'
    AWAITING_REVIEW = 'AWAITING_REVIEW'
    INFO_REQUESTED = 'INFO_REQUESTED'
    APPROVED_REPRINT = 'APPROVED_REPRINT'
    APPROVED_REFUND = 'APPROVED_REFUND'
    PROCESSING = 'PROCESSING'
    COMPLETED = 'COMPLETED'
    REJECTED = 'REJECTED'
    CLOSED = 'CLOSED'


class IssueReason(enum.Enum):
    DAMAGED_IN_TRANSIT = 'DAMAGED_IN_TRANSIT'
    QUALITY_ISSUE = 'QUALITY_ISSUE'
    WRONG_ITEM = 'WRONG_ITEM'
    PRINTING_ERROR = 'PRINTING_ERROR'
    NEVER_ARRIVED = 'NEVER_ARRIVED'
    OTHER = 'OTHER'


class CarrierFault(enum.Enum):
    UNKNOWN = 'UNKNOWN'
    CARRIER_FAULT = 'CARRIER_FAULT'
    NOT_CARRIER_FAULT = 'NOT_CARRIER_FAULT'


class ClaimStatus(enum.Enum):
    NOT_FILED = 'NOT_FILED'
    SUBMITTED = 'SUBMITTED'
    UNDER_REVIEW = 'UNDER_REVIEW'
    APPROVED = 'APPROVED'
    REJECTED = 'REJECTED'
    PAID = 'PAID'


class IssueResolvedType(enum.Enum):
    REPRINT = 'REPRINT'
    FULL_REFUND = 'FULL_REFUND'
    PARTIAL_REFUND = 'PARTIAL_REFUND'


class MessageSender(enum.Enum):
    CUSTOMER = 'CUSTOMER'
    ADMIN = 'ADMIN'


class ResolutionType(enum.Enum):
    REPRINT = 'REPRINT'
    REFUND = 'REFUND'


class ResolutionStatus(enum.Enum):
    PENDING = 'PENDING'
    PROCESSING = 'PROCESSING'
    COMPLETED = 'COMPLETED'
    FAILED = 'FAILED'


class ExpenseCategory(enum.Enum):
    MATERIALS = 'MATERIALS'
    PACKAGING = 'PACKAGING'
    SHIPPING_SUPPLIES = 'SHIPPING_SUPPLIES'
    EQUIPMENT = 'EQUIPMENT'
    SOFTWARE = 'SOFTWARE'
    UTILITIES = 'UTILITIES'
    MARKETING = 'MARKETING'
    OTHER = 'OTHER'


class ImportSource(enum.Enum):
    MANUAL = 'MANUAL'
    CSV_IMPORT = 'CSV_IMPORT'
    REPRINT = 'REPRINT'


class ImportBatchStatus(enum.Enum):
    PROCESSING = 'PROCESSING'
    COMPLETED = 'COMPLETED'
    FAILED = 'FAILED'


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    name = db.Column(db.String(100), nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(
        db.Enum(UserRole),
        nullable=False,
        default=UserRole.CUSTOMER)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    last_login_at = db.Column(db.DateTime, nullable=True)

    # Relationships
    cart = db.relationship(
        'Cart',
        backref='user',
        uselist=False,
        cascade='all, delete-orphan')
    orders = db.relationship('Order', backref='customer', lazy='dynamic')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN

    def __repr__(self):
        return f'<User {self.email}>'


class Product(db.Model):
    __tablename__ = 'products'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(200), unique=True, nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    base_price = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(
        db.Enum(ProductStatus),
        nullable=False,
        default=ProductStatus.DRAFT,
        index=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    variants = db.relationship(
        'ProductVariant',
        backref='product',
        lazy='dynamic',
        cascade='all, delete-orphan')

    __table_args__ = (
        CheckConstraint('base_price >= 0', name='check_base_price_non_negative'),
    )

    def __repr__(self):
        return f'<Product {self.name}>'


class ProductVariant(db.Model):
    __tablename__ = 'product_variants'

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'products.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    name = db.Column(db.String(100), nullable=False)
    size = db.Column(db.String(50), nullable=True)
    color = db.Column(db.String(50), nullable=True)
    material = db.Column(db.String(50), nullable=True)
    finish = db.Column(db.String(50), nullable=True)
    # Falls back to the product base price when null
    price = db.Column(db.Numeric(10, 2), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    def __repr__(self):
        return f'<ProductVariant {self.id} product={self.product_id}>'


class Order(db.Model):
    __tablename__ = 'orders'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    status = db.Column(
        db.Enum(OrderStatus),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True)
    subtotal = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    shipping_cost = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total_price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    # JSON snapshot of the delivery address
    shipping_address_json = db.Column(db.Text, nullable=True)
    carrier = db.Column(db.String(50), nullable=True)
    tracking_number = db.Column(db.String(100), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    shipped_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    items = db.relationship(
        'OrderItem',
        backref='order',
        order_by='OrderItem.id',
        cascade='all, delete-orphan')
    payment = db.relationship(
        'Payment',
        backref='order',
        uselist=False,
        cascade='all, delete-orphan')
    resolutions = db.relationship(
        'Resolution',
        backref='order',
        lazy='dynamic',
        foreign_keys='Resolution.order_id',
        cascade='all, delete-orphan')

    def set_shipping_address(self, data):
        self.shipping_address_json = _dump_json(data)

    def get_shipping_address(self):
        return _load_json(self.shipping_address_json, {})

    def __repr__(self):
        return f'<Order {self.id} status={self.status}>'


class OrderItem(db.Model):
    __tablename__ = 'order_items'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'orders.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'products.id',
            ondelete='SET NULL'),
        nullable=True)
    variant_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'product_variants.id',
            ondelete='SET NULL'),
        nullable=True)
    # Reference to the customer's uploaded design
    design_ref = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    total_price = db.Column(db.Numeric(10, 2), nullable=False)
    customization_json = db.Column(db.Text, nullable=True)
    # is_reprint, original_order_id, original_item_id, issue_id
    metadata_json = db.Column(db.Text, nullable=True)

    product = db.relationship('Product')
    variant = db.relationship('ProductVariant')

    __table_args__ = (
        CheckConstraint('quantity > 0', name='check_order_quantity_positive'),
    )

    def set_customization(self, data):
        self.customization_json = _dump_json(data)

    def get_customization(self):
        return _load_json(self.customization_json, None)

    def set_metadata(self, data):
        self.metadata_json = _dump_json(data)

    def get_metadata(self):
        return _load_json(self.metadata_json, {})

    @property
    def is_reprint(self):
        return bool(self.get_metadata().get('is_reprint'))

    @property
    def original_item_id(self):
        return self.get_metadata().get('original_item_id')

    @property
    def original_order_id(self):
        return self.get_metadata().get('original_order_id')

    def __repr__(self):
        return (
            f'<OrderItem {self.id} order={self.order_id} '
            f'product={self.product_id}>'
        )


class Payment(db.Model):
    __tablename__ = 'payments'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'orders.id',
            ondelete='CASCADE'),
        unique=True,
        nullable=False)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(
        db.Enum(PaymentStatus),
        nullable=False,
        default=PaymentStatus.PENDING)
    method = db.Column(
        db.Enum(PaymentMethod),
        nullable=False,
        default=PaymentMethod.MOCK)
    provider_payment_id = db.Column(db.String(100), nullable=True, index=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    refunded_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    def __repr__(self):
        return f'<Payment {self.id} order={self.order_id} status={self.status}>'


class Issue(db.Model):
    __tablename__ = 'issues'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'orders.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    order_item_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'order_items.id',
            ondelete='CASCADE'),
        nullable=False)
    created_by = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)

    reason = db.Column(db.Enum(IssueReason), nullable=False)
    status = db.Column(
        db.Enum(IssueStatus),
        nullable=False,
        default=IssueStatus.AWAITING_REVIEW,
        index=True)
    initial_notes = db.Column(db.Text, nullable=True)
    image_urls_json = db.Column(db.Text, nullable=True)

    # Carrier fault / insurance claim bookkeeping
    carrier_fault = db.Column(
        db.Enum(CarrierFault),
        nullable=False,
        default=CarrierFault.UNKNOWN,
        index=True)
    claim_status = db.Column(
        db.Enum(ClaimStatus),
        nullable=False,
        default=ClaimStatus.NOT_FILED)
    claim_reference = db.Column(db.String(100), nullable=True)
    claim_submitted_at = db.Column(db.DateTime, nullable=True)
    claim_payout_amount = db.Column(db.Numeric(10, 2), nullable=True)
    claim_paid_at = db.Column(db.DateTime, nullable=True)
    claim_notes = db.Column(db.Text, nullable=True)

    # Outcome
    resolved_type = db.Column(db.Enum(IssueResolvedType), nullable=True)
    reprint_order_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'orders.id',
            ondelete='SET NULL'),
        nullable=True)
    reprint_item_id = db.Column(db.Integer, nullable=True)
    refund_amount = db.Column(db.Numeric(10, 2), nullable=True)
    refund_reference = db.Column(db.String(100), nullable=True)

    # Review
    reviewed_at = db.Column(db.DateTime, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    rejection_final = db.Column(db.Boolean, default=False, nullable=False)
    processed_at = db.Column(db.DateTime, nullable=True)
    closed_at = db.Column(db.DateTime, nullable=True)

    # Once concluded only an admin reopen unlocks the issue
    is_concluded = db.Column(db.Boolean, default=False, nullable=False)
    concluded_at = db.Column(db.DateTime, nullable=True)
    concluded_by = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True)
    concluded_reason = db.Column(db.Text, nullable=True)

    # Issue on the original item when this item is a reprint
    original_issue_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'issues.id',
            ondelete='SET NULL'),
        nullable=True,
        index=True)

    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    order = db.relationship('Order', foreign_keys=[order_id])
    order_item = db.relationship(
        'OrderItem',
        backref=db.backref('issue', uselist=False))
    customer = db.relationship('User', foreign_keys=[created_by])
    reprint_order = db.relationship('Order', foreign_keys=[reprint_order_id])
    original_issue = db.relationship(
        'Issue',
        remote_side=[id],
        backref='child_issues')
    messages = db.relationship(
        'IssueMessage',
        backref='issue',
        lazy='dynamic',
        order_by='IssueMessage.created_at',
        cascade='all, delete-orphan')

    __table_args__ = (
        UniqueConstraint('order_item_id', name='uq_issue_order_item'),
    )

    def set_image_urls(self, urls):
        self.image_urls_json = _dump_json(clean_image_urls(urls))

    def get_image_urls(self):
        return _load_json(self.image_urls_json, [])

    def __repr__(self):
        return f'<Issue {self.id} status={self.status}>'


class IssueMessage(db.Model):
    __tablename__ = 'issue_messages'

    id = db.Column(db.Integer, primary_key=True)
    issue_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'issues.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    sender = db.Column(db.Enum(MessageSender), nullable=False)
    # Null for system-generated messages
    sender_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True)
    content = db.Column(db.Text, nullable=False)
    image_urls_json = db.Column(db.Text, nullable=True)
    read_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True)

    author = db.relationship('User', foreign_keys=[sender_id])

    def set_image_urls(self, urls):
        self.image_urls_json = _dump_json(clean_image_urls(urls))

    def get_image_urls(self):
        return _load_json(self.image_urls_json, [])

    def __repr__(self):
        return f'<IssueMessage {self.id} issue={self.issue_id}>'


class Resolution(db.Model):
    __tablename__ = 'resolutions'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'orders.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    type = db.Column(
        db.Enum(ResolutionType),
        nullable=False,
        default=ResolutionType.REPRINT)
    reason = db.Column(db.String(50), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    image_urls_json = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.Enum(ResolutionStatus),
        nullable=False,
        default=ResolutionStatus.PENDING,
        index=True)
    reprint_order_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'orders.id',
            ondelete='SET NULL'),
        nullable=True)
    refund_amount = db.Column(db.Numeric(10, 2), nullable=True)
    refund_reference = db.Column(db.String(100), nullable=True)
    created_by = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True)
    processed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    reprint_order = db.relationship('Order', foreign_keys=[reprint_order_id])

    def set_image_urls(self, urls):
        self.image_urls_json = _dump_json(clean_image_urls(urls))

    def get_image_urls(self):
        return _load_json(self.image_urls_json, [])

    def __repr__(self):
        return f'<Resolution {self.id} type={self.type} status={self.status}>'


class Cart(db.Model):
    __tablename__ = 'carts'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        unique=True,
        nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    items = db.relationship(
        'CartItem',
        backref='cart',
        lazy='dynamic',
        cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Cart {self.id} user={self.user_id}>'


class CartItem(db.Model):
    __tablename__ = 'cart_items'

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'carts.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'products.id',
            ondelete='CASCADE'),
        nullable=False)
    variant_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'product_variants.id',
            ondelete='CASCADE'),
        nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    customization_json = db.Column(db.Text, nullable=True)
    added_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    product = db.relationship('Product')
    variant = db.relationship('ProductVariant')

    __table_args__ = (
        CheckConstraint('quantity > 0', name='check_quantity_positive'),
    )

    def set_customization(self, data):
        self.customization_json = _dump_json(data)

    def get_customization(self):
        return _load_json(self.customization_json, None)

    def __repr__(self):
        return f'<CartItem {self.id} product={self.product_id}>'


class Supplier(db.Model):
    __tablename__ = 'suppliers'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    email = db.Column(db.String(120), nullable=True)
    website = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    def __repr__(self):
        return f'<Supplier {self.name}>'


class ExpenseImportBatch(db.Model):
    __tablename__ = 'expense_import_batches'

    id = db.Column(db.Integer, primary_key=True)
    source = db.Column(
        db.Enum(ImportSource),
        nullable=False,
        default=ImportSource.CSV_IMPORT)
    file_name = db.Column(db.String(255), nullable=True)
    record_count = db.Column(db.Integer, nullable=False, default=0)
    success_count = db.Column(db.Integer, nullable=False, default=0)
    error_count = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(
        db.Enum(ImportBatchStatus),
        nullable=False,
        default=ImportBatchStatus.PROCESSING)
    # [{"row": 3, "error": "..."}]
    errors_json = db.Column(db.Text, nullable=True)
    imported_by = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True)

    expenses = db.relationship('Expense', backref='import_batch', lazy='dynamic')

    def set_errors(self, errors):
        self.errors_json = _dump_json(errors) if errors else None

    def get_errors(self):
        return _load_json(self.errors_json, [])

    def __repr__(self):
        return f'<ExpenseImportBatch {self.id} status={self.status}>'


class Expense(db.Model):
    __tablename__ = 'expenses'

    id = db.Column(db.Integer, primary_key=True)
    # EXP-YYYYMM-NNNN
    expense_number = db.Column(
        db.String(20),
        unique=True,
        nullable=False,
        index=True)
    description = db.Column(db.String(500), nullable=False)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    category = db.Column(
        db.Enum(ExpenseCategory),
        nullable=False,
        default=ExpenseCategory.OTHER,
        index=True)
    purchase_date = db.Column(db.Date, nullable=False, index=True)
    supplier_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'suppliers.id',
            ondelete='SET NULL'),
        nullable=True)
    external_reference = db.Column(db.String(100), nullable=True)
    vat_amount = db.Column(db.Numeric(10, 2), nullable=True)
    vat_rate = db.Column(db.Numeric(5, 2), nullable=True)
    is_vat_reclaimable = db.Column(db.Boolean, default=False, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    # UK tax year, e.g. "2024-2025"
    tax_year = db.Column(db.String(9), nullable=False, index=True)
    import_source = db.Column(
        db.Enum(ImportSource),
        nullable=False,
        default=ImportSource.MANUAL)
    import_batch_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'expense_import_batches.id',
            ondelete='SET NULL'),
        nullable=True,
        index=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    supplier = db.relationship('Supplier', backref='expenses')

    __table_args__ = (
        CheckConstraint('amount > 0', name='check_expense_amount_positive'),
    )

    def __repr__(self):
        return f'<Expense {self.expense_number}>'


class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True)
    actor_role = db.Column(db.String(20), nullable=False)
    # e.g., ISSUE_REVIEW, ORDER_STATUS_CHANGE
    action = db.Column(db.String(100), nullable=False)
    # ISSUE, ORDER, RESOLUTION, etc.
    target_type = db.Column(db.String(50), nullable=True)
    target_id = db.Column(db.Integer, nullable=True)
    ip = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    # JSON format key field snapshot
    payload_json = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True)

    actor = db.relationship('User', foreign_keys=[actor_id])

    def set_payload(self, data):
        self.payload_json = json.dumps(data, ensure_ascii=False)

    def get_payload(self):
        if self.payload_json:
            return json.loads(self.payload_json)
        return {}

    def __repr__(self):
        return f'<AuditLog {self.id} action={self.action}>'
