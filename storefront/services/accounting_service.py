from datetime import date, datetime
from storefront.extensions import db
from storefront.errors import ServiceError, NotFoundError
from storefront.models import (
    Expense,
    ExpenseCategory,
    ImportSource,
    Order,
    OrderItem,
    Supplier,
)
from storefront.utils import to_money, money_float, iso, enum_value, parse_enum
from decimal import Decimal, InvalidOperation
import logging
import re

logger = logging.getLogger(__name__)

EXPENSE_CATEGORY_LABELS = {
    ExpenseCategory.MATERIALS: 'Materials',
    ExpenseCategory.PACKAGING: 'Packaging',
    ExpenseCategory.SHIPPING_SUPPLIES: 'Shipping Supplies',
    ExpenseCategory.EQUIPMENT: 'Equipment',
    ExpenseCategory.SOFTWARE: 'Software',
    ExpenseCategory.UTILITIES: 'Utilities',
    ExpenseCategory.MARKETING: 'Marketing',
    ExpenseCategory.OTHER: 'Other',
}

_EXPENSE_SEQ_RE = re.compile(r'-(\d+)$')


def get_tax_year_for_date(value) -> str:
    """UK tax year label; the year turns over on 6 April."""
    if isinstance(value, datetime):
        value = value.date()
    year = value.year
    if value.month < 4 or (value.month == 4 and value.day < 6):
        return f'{year - 1}-{year}'
    return f'{year}-{year + 1}'


def generate_expense_number(now=None) -> str:
    now = now or datetime.utcnow()
    prefix = f'EXP-{now.year}{now.month:02d}'

    latest = Expense.query.filter(
        Expense.expense_number.like(f'{prefix}-%')
    ).order_by(Expense.expense_number.desc()).first()

    next_number = 1
    if latest:
        match = _EXPENSE_SEQ_RE.search(latest.expense_number)
        if match:
            next_number = int(match.group(1)) + 1

    return f'{prefix}-{next_number:04d}'


def find_supplier_by_name(name):
    if not name:
        return None
    return Supplier.query.filter(
        db.func.lower(Supplier.name) == name.strip().lower()
    ).first()


def create_expense(
        description,
        amount,
        category,
        purchase_date,
        supplier_id=None,
        external_reference=None,
        vat_amount=None,
        vat_rate=None,
        is_vat_reclaimable=False,
        notes=None,
        import_source=ImportSource.MANUAL,
        import_batch_id=None):
    """Add an expense to the session with its number and tax year.

    The caller commits.
    """
    if not description or not str(description).strip():
        raise ServiceError('Description is required')
    try:
        amount = to_money(amount)
    except InvalidOperation:
        raise ServiceError('Valid amount is required')
    if amount <= 0:
        raise ServiceError('Amount must be positive')
    if isinstance(purchase_date, datetime):
        purchase_date = purchase_date.date()
    if not isinstance(purchase_date, date):
        raise ServiceError('Valid purchase date is required')
    category = parse_enum(ExpenseCategory, category) or ExpenseCategory.OTHER
    if vat_amount is not None:
        try:
            vat_amount = to_money(vat_amount)
        except InvalidOperation:
            raise ServiceError('Invalid VAT amount')
        if vat_amount > amount:
            raise ServiceError('VAT amount cannot exceed total amount')

    expense = Expense(
        expense_number=generate_expense_number(),
        description=str(description).strip(),
        amount=amount,
        category=category,
        purchase_date=purchase_date,
        supplier_id=supplier_id,
        external_reference=external_reference or None,
        vat_amount=vat_amount,
        vat_rate=to_money(vat_rate) if vat_rate is not None else None,
        is_vat_reclaimable=bool(is_vat_reclaimable),
        notes=notes or None,
        tax_year=get_tax_year_for_date(purchase_date),
        import_source=import_source,
        import_batch_id=import_batch_id,
    )
    db.session.add(expense)
    db.session.flush()
    return expense


def create_reprint_expense(order_id, reprint_order_id, reason):
    """Record what a reprint cost, valued at the original item prices."""
    order = db.session.get(Order, order_id)
    reprint = db.session.get(Order, reprint_order_id)
    if not order or not reprint:
        raise NotFoundError('Order not found')

    original_ids = [
        item.original_item_id for item in reprint.items
        if item.original_item_id
    ]
    amount = Decimal('0.00')
    if original_ids:
        originals = OrderItem.query.filter(
            OrderItem.id.in_(original_ids)).all()
        amount = sum(
            (to_money(item.total_price) for item in originals),
            Decimal('0.00'))
    else:
        amount = to_money(order.total_price)

    if amount <= 0:
        logger.info(
            "Skipping reprint expense for order %s: nothing to book",
            order_id,
        )
        return None

    reason_text = enum_value(reason) or 'issue'
    expense = create_expense(
        description=f'Reprint for order #{order_id} ({reason_text})',
        amount=amount,
        category=ExpenseCategory.MATERIALS,
        purchase_date=datetime.utcnow().date(),
        external_reference=f'REPRINT-{reprint_order_id}',
        notes=f'Reprint order #{reprint_order_id}',
        import_source=ImportSource.REPRINT,
    )
    db.session.commit()
    logger.info(
        "Reprint expense %s booked for order %s amount=%s",
        expense.expense_number,
        order_id,
        amount,
    )
    return expense


def list_expenses(category=None, tax_year=None):
    query = Expense.query
    if category:
        query = query.filter(Expense.category == category)
    if tax_year:
        query = query.filter(Expense.tax_year == tax_year)
    return query.order_by(
        Expense.purchase_date.desc(), Expense.id.desc())


def delete_expense(expense_id):
    expense = db.session.get(Expense, expense_id)
    if not expense:
        raise NotFoundError('Expense not found')
    db.session.delete(expense)
    db.session.commit()


def format_expense(expense):
    return {
        'id': expense.id,
        'expense_number': expense.expense_number,
        'description': expense.description,
        'amount': money_float(expense.amount),
        'category': expense.category.value,
        'category_label': EXPENSE_CATEGORY_LABELS.get(expense.category),
        'purchase_date': iso(expense.purchase_date),
        'supplier': {
            'id': expense.supplier.id,
            'name': expense.supplier.name,
        } if expense.supplier else None,
        'external_reference': expense.external_reference,
        'vat_amount': money_float(expense.vat_amount),
        'vat_rate': money_float(expense.vat_rate),
        'is_vat_reclaimable': expense.is_vat_reclaimable,
        'notes': expense.notes,
        'tax_year': expense.tax_year,
        'import_source': expense.import_source.value,
        'import_batch_id': expense.import_batch_id,
        'created_at': iso(expense.created_at),
    }
