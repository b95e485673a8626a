"""Expense CSV import: parsing, validation and batch bookkeeping.

The import runs in two steps. ``parse_csv`` + ``map_headers`` +
``validate_expense_rows`` produce a preview with per-row errors and
warnings; ``import_expenses_batch`` then books the rows that passed.
"""
from datetime import date, datetime
from storefront.extensions import db
from storefront.errors import ServiceError, NotFoundError
from storefront.models import (
    Expense,
    ExpenseCategory,
    ExpenseImportBatch,
    ImportBatchStatus,
    ImportSource,
)
from storefront.services.accounting_service import (
    EXPENSE_CATEGORY_LABELS,
    create_expense,
    find_supplier_by_name,
    format_expense,
)
from storefront.utils import iso
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
import csv
import io
import logging
import re

logger = logging.getLogger(__name__)

HEADER_ALIASES = {
    'description': ['description', 'desc', 'name', 'item', 'expense',
                    'title'],
    'amount': ['amount', 'total', 'price', 'cost', 'value', 'sum'],
    'category': ['category', 'cat', 'type', 'expense_type',
                 'expense_category'],
    'purchase_date': ['purchase_date', 'date', 'purchased',
                      'transaction_date', 'expense_date'],
    'supplier': ['supplier', 'vendor', 'merchant', 'shop', 'store', 'from',
                 'company'],
    'external_reference': ['invoice_number', 'invoice', 'inv', 'reference',
                           'ref', 'receipt', 'external_reference'],
    'vat_amount': ['vat_amount', 'vat', 'tax', 'tax_amount'],
    'vat_rate': ['vat_rate', 'tax_rate', 'rate'],
    'is_vat_reclaimable': ['is_vat_reclaimable', 'vat_reclaimable',
                           'reclaimable', 'can_reclaim'],
    'notes': ['notes', 'note', 'comments', 'comment', 'memo', 'details'],
}

# Checked in order; the first key contained in the value wins.
CATEGORY_ALIASES = [
    ('materials', ExpenseCategory.MATERIALS),
    ('packaging', ExpenseCategory.PACKAGING),
    ('shipping_supplies', ExpenseCategory.SHIPPING_SUPPLIES),
    ('equipment', ExpenseCategory.EQUIPMENT),
    ('software', ExpenseCategory.SOFTWARE),
    ('utilities', ExpenseCategory.UTILITIES),
    ('marketing', ExpenseCategory.MARKETING),
    ('other', ExpenseCategory.OTHER),
    ('printing', ExpenseCategory.MATERIALS),
    ('print', ExpenseCategory.MATERIALS),
    ('ink', ExpenseCategory.MATERIALS),
    ('paper', ExpenseCategory.MATERIALS),
    ('supplies', ExpenseCategory.MATERIALS),
    ('package', ExpenseCategory.PACKAGING),
    ('boxes', ExpenseCategory.PACKAGING),
    ('ship', ExpenseCategory.SHIPPING_SUPPLIES),
    ('shipping', ExpenseCategory.SHIPPING_SUPPLIES),
    ('postage', ExpenseCategory.SHIPPING_SUPPLIES),
    ('delivery', ExpenseCategory.SHIPPING_SUPPLIES),
    ('courier', ExpenseCategory.SHIPPING_SUPPLIES),
    ('equip', ExpenseCategory.EQUIPMENT),
    ('hardware', ExpenseCategory.EQUIPMENT),
    ('machinery', ExpenseCategory.EQUIPMENT),
    ('printer', ExpenseCategory.EQUIPMENT),
    ('soft', ExpenseCategory.SOFTWARE),
    ('subscription', ExpenseCategory.SOFTWARE),
    ('saas', ExpenseCategory.SOFTWARE),
    ('app', ExpenseCategory.SOFTWARE),
    ('ads', ExpenseCategory.MARKETING),
    ('advertising', ExpenseCategory.MARKETING),
    ('promotion', ExpenseCategory.MARKETING),
    ('electric', ExpenseCategory.UTILITIES),
    ('gas', ExpenseCategory.UTILITIES),
    ('water', ExpenseCategory.UTILITIES),
    ('internet', ExpenseCategory.UTILITIES),
    ('phone', ExpenseCategory.UTILITIES),
    ('rent', ExpenseCategory.UTILITIES),
    ('office', ExpenseCategory.UTILITIES),
    ('misc', ExpenseCategory.OTHER),
    ('miscellaneous', ExpenseCategory.OTHER),
    ('bank', ExpenseCategory.OTHER),
    ('fees', ExpenseCategory.OTHER),
    ('insurance', ExpenseCategory.OTHER),
    ('travel', ExpenseCategory.OTHER),
    ('fuel', ExpenseCategory.OTHER),
]

TRUTHY_VALUES = ('true', 'yes', '1', 'y')

_SLASH_DATE_RE = re.compile(r'^(\d{1,2})/(\d{1,2})/(\d{4})$')
_ISO_DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')
_AMOUNT_STRIP_RE = re.compile(r'[£$€,\s]')
_FALLBACK_DATE_FORMATS = ('%d-%m-%Y', '%Y/%m/%d', '%d %b %Y', '%d %B %Y',
                          '%b %d %Y', '%B %d %Y')

CSV_TEMPLATE_ROWS = [
    'description,amount,category,purchase_date,supplier,invoice_number,'
    'vat_amount,vat_rate,is_vat_reclaimable,notes',
    'Printer ink cartridges,£45.99,MATERIALS,15/01/2025,Amazon,INV-12345,'
    '7.67,20,yes,Black and color cartridges',
    'Shipping boxes (50 pack),£32.00,PACKAGING,16/01/2025,Packaging Direct,'
    'PD-9876,5.33,20,yes,Medium boxes',
    'Monthly software subscription,£19.99,SOFTWARE,01/01/2025,Adobe,'
    'SUB-2025-01,3.33,20,yes,Creative Cloud',
]


def _normalize_header(header: str) -> str:
    return re.sub(r'\s+', '_', header.strip().lower())


def parse_csv(content: str):
    """Split CSV text into normalized headers and stripped rows.

    Blank lines are skipped; headers are lower-cased with whitespace runs
    replaced by underscores.
    """
    if content.startswith('\ufeff'):
        content = content[1:]
    reader = csv.reader(io.StringIO(content))
    lines = [
        [cell.strip() for cell in row]
        for row in reader
        if any(cell.strip() for cell in row)
    ]
    if not lines:
        return [], []
    headers = [_normalize_header(h) for h in lines[0]]
    return headers, lines[1:]


def map_headers(headers):
    """Guess which expense field each header holds.

    Exact alias matches win; otherwise the field with the longest alias
    contained in the header is used.
    """
    mapping = {}
    for header in headers:
        normalized = re.sub(r'[^a-z0-9]', '_', header.lower())

        field = None
        for candidate, aliases in HEADER_ALIASES.items():
            if normalized in aliases:
                field = candidate
                break

        if field is None:
            best = 0
            for candidate, aliases in HEADER_ALIASES.items():
                for alias in aliases:
                    if alias in normalized and len(alias) > best:
                        best = len(alias)
                        field = candidate

        if field:
            mapping[header] = field
    return mapping


def parse_amount(value):
    if not value:
        return None
    cleaned = _AMOUNT_STRIP_RE.sub('', str(value).strip())
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def parse_date(value):
    """Parse DD/MM/YYYY, then ISO, then MM/DD/YYYY and a few long forms."""
    if not value:
        return None
    text = str(value).strip()

    match = _SLASH_DATE_RE.match(text)
    if match:
        first, second, year = (int(part) for part in match.groups())
        try:
            return date(year, second, first)
        except ValueError:
            pass
        try:
            return date(year, first, second)
        except ValueError:
            return None

    if _ISO_DATE_RE.match(text):
        try:
            return date.fromisoformat(text)
        except ValueError:
            return None

    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass

    for fmt in _FALLBACK_DATE_FORMATS:
        try:
            return datetime.strptime(text.replace(',', ''), fmt).date()
        except ValueError:
            continue
    return None


def parse_category(value):
    if not value:
        return None
    upper = re.sub(r'\s+', '_', value.strip().upper())
    try:
        return ExpenseCategory(upper)
    except ValueError:
        pass

    normalized = value.strip().lower()
    for key, category in CATEGORY_ALIASES:
        if key in normalized:
            return category
    return None


def parse_boolean(value) -> bool:
    if not value:
        return False
    return str(value).strip().lower() in TRUTHY_VALUES


def validate_expense_rows(rows, headers, column_mapping, today=None):
    """Check each row and return ``(parsed_rows, validated_expenses)``.

    Row numbers are 1-based and count the header line, so they match what
    a spreadsheet shows.
    """
    today = today or date.today()
    parsed_rows = []
    validated = []

    for index, row in enumerate(rows):
        row_number = index + 2

        data = {}
        for position, header in enumerate(headers):
            field = column_mapping.get(header)
            if field and position < len(row) and row[position]:
                data[field] = row[position]

        errors = []
        warnings = []

        if not data.get('description'):
            errors.append('Description is required')

        amount = parse_amount(data.get('amount'))
        if amount is None:
            errors.append('Valid amount is required')
        elif amount <= 0:
            errors.append('Amount must be positive')

        category = parse_category(data.get('category'))
        if category is None:
            if data.get('category'):
                warnings.append(
                    f'Unknown category "{data["category"]}", '
                    'defaulting to OTHER')
            else:
                warnings.append('No category specified, defaulting to OTHER')

        purchase_date = parse_date(data.get('purchase_date'))
        if purchase_date is None:
            errors.append('Valid purchase date is required')
        elif purchase_date > today:
            warnings.append('Purchase date is in the future')

        vat_amount = parse_amount(data.get('vat_amount'))
        if vat_amount and amount and vat_amount > amount:
            errors.append('VAT amount cannot exceed total amount')

        parsed_rows.append({
            'row_number': row_number,
            'data': data,
            'errors': errors,
            'warnings': warnings,
        })

        if errors:
            continue

        validated.append({
            'row_number': row_number,
            'description': data['description'].strip(),
            'amount': amount,
            'category': category or ExpenseCategory.OTHER,
            'purchase_date': purchase_date,
            'supplier_name': (data.get('supplier') or '').strip() or None,
            'external_reference': (
                (data.get('external_reference') or '').strip() or None),
            'vat_amount': vat_amount,
            'vat_rate': parse_amount(data.get('vat_rate')),
            'is_vat_reclaimable': parse_boolean(
                data.get('is_vat_reclaimable')),
            'notes': (data.get('notes') or '').strip() or None,
        })

    return parsed_rows, validated


def preview_import(content):
    headers, rows = parse_csv(content)
    if not headers:
        raise ServiceError('CSV file is empty')
    mapping = map_headers(headers)
    parsed_rows, validated = validate_expense_rows(rows, headers, mapping)
    return {
        'headers': headers,
        'column_mapping': mapping,
        'parsed_rows': parsed_rows,
        'validated': validated,
        'total_rows': len(parsed_rows),
        'valid_rows': len(validated),
        'invalid_rows': len(parsed_rows) - len(validated),
    }


def import_expenses_batch(expenses, admin, file_name, parsed_rows):
    if not expenses:
        raise ServiceError('No valid expenses to import')

    batch = ExpenseImportBatch(
        source=ImportSource.CSV_IMPORT,
        file_name=file_name,
        record_count=len(parsed_rows),
        status=ImportBatchStatus.PROCESSING,
        imported_by=getattr(admin, 'id', None),
    )
    db.session.add(batch)
    db.session.commit()

    success_count = 0
    import_errors = []

    for expense in expenses:
        supplier = find_supplier_by_name(expense.get('supplier_name'))
        try:
            create_expense(
                description=expense['description'],
                amount=expense['amount'],
                category=expense['category'],
                purchase_date=expense['purchase_date'],
                supplier_id=supplier.id if supplier else None,
                external_reference=expense.get('external_reference'),
                vat_amount=expense.get('vat_amount'),
                vat_rate=expense.get('vat_rate'),
                is_vat_reclaimable=expense.get('is_vat_reclaimable', False),
                notes=expense.get('notes'),
                import_source=ImportSource.CSV_IMPORT,
                import_batch_id=batch.id,
            )
            success_count += 1
        except ServiceError as e:
            import_errors.append({
                'row': expense.get('row_number'),
                'error': e.message,
            })

    batch.status = ImportBatchStatus.COMPLETED
    batch.success_count = success_count
    batch.error_count = len(import_errors)
    batch.set_errors(import_errors)
    batch.completed_at = datetime.utcnow()
    db.session.commit()

    logger.info(
        "Expense import batch %s: %s imported, %s failed",
        batch.id,
        success_count,
        len(import_errors),
    )

    return {
        'batch_id': batch.id,
        'total_rows': len(parsed_rows),
        'imported': success_count,
        'failed': len(import_errors),
        'errors': import_errors,
    }


def format_batch(batch):
    return {
        'id': batch.id,
        'source': batch.source.value,
        'file_name': batch.file_name,
        'record_count': batch.record_count,
        'success_count': batch.success_count,
        'error_count': batch.error_count,
        'status': batch.status.value,
        'imported_by': batch.imported_by,
        'completed_at': iso(batch.completed_at),
        'created_at': iso(batch.created_at),
        'errors': batch.get_errors(),
    }


def get_import_history(limit=20):
    batches = ExpenseImportBatch.query.order_by(
        ExpenseImportBatch.created_at.desc(),
        ExpenseImportBatch.id.desc(),
    ).limit(limit).all()
    return {
        'batches': [format_batch(b) for b in batches],
        'categories': [
            {'value': category.value, 'label': label}
            for category, label in EXPENSE_CATEGORY_LABELS.items()
        ],
    }


def get_import_batch(batch_id):
    batch = db.session.get(ExpenseImportBatch, batch_id)
    if not batch:
        raise NotFoundError('Import batch not found')

    expenses = Expense.query.filter_by(import_batch_id=batch.id).order_by(
        Expense.created_at.asc(), Expense.id.asc()).all()
    return {
        'batch': format_batch(batch),
        'expenses': [format_expense(e) for e in expenses],
    }


def delete_import_batch(batch_id, delete_expenses=False):
    batch = db.session.get(ExpenseImportBatch, batch_id)
    if not batch:
        raise NotFoundError('Import batch not found')

    if delete_expenses:
        Expense.query.filter_by(import_batch_id=batch.id).delete(
            synchronize_session=False)
    else:
        Expense.query.filter_by(import_batch_id=batch.id).update(
            {'import_batch_id': None}, synchronize_session=False)

    db.session.delete(batch)
    db.session.commit()

    if delete_expenses:
        return 'Import batch and expenses deleted successfully'
    return 'Import batch deleted, expenses preserved'


def get_csv_template() -> str:
    return '\n'.join(CSV_TEMPLATE_ROWS)
