from flask import Blueprint, Response, request, jsonify
from flask_login import login_required, current_user
from storefront.extensions import db
from storefront.models import ExpenseCategory
from storefront.middleware import role_required
from storefront.services.accounting_service import (
    EXPENSE_CATEGORY_LABELS,
    create_expense,
    delete_expense,
    find_supplier_by_name,
    format_expense,
    list_expenses,
)
from storefront.services.audit_service import log_audit
from storefront.services.csv_import_service import (
    delete_import_batch,
    get_csv_template,
    get_import_batch,
    get_import_history,
    import_expenses_batch,
    preview_import,
)
from storefront.utils import (
    get_json_body,
    get_page_args,
    iso,
    money_float,
    paginate_query,
    parse_enum,
)
from datetime import date
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('accounting', __name__)

MAX_IMPORT_BYTES = 2 * 1024 * 1024


def _preview_row(expense):
    return {
        'row_number': expense['row_number'],
        'description': expense['description'],
        'amount': money_float(expense['amount']),
        'category': expense['category'].value,
        'purchase_date': iso(expense['purchase_date']),
        'supplier_name': expense['supplier_name'],
        'external_reference': expense['external_reference'],
        'vat_amount': money_float(expense['vat_amount']),
        'vat_rate': money_float(expense['vat_rate']),
        'is_vat_reclaimable': expense['is_vat_reclaimable'],
        'notes': expense['notes'],
    }


def _read_import_content():
    """CSV text from a multipart upload or a JSON ``content`` field."""
    upload = request.files.get('file')
    if upload is not None:
        raw = upload.read(MAX_IMPORT_BYTES + 1)
        if len(raw) > MAX_IMPORT_BYTES:
            return None, upload.filename, 'File is too large'
        try:
            return raw.decode('utf-8-sig'), upload.filename, None
        except UnicodeDecodeError:
            return None, upload.filename, 'File must be UTF-8 encoded CSV'

    data = get_json_body()
    return data.get('content'), data.get('file_name'), None


@bp.route('/api/admin/accounting/expenses', methods=['GET'])
@login_required
@role_required('ADMIN')
def expense_list():
    category = None
    raw_category = request.args.get('category')
    if raw_category:
        category = parse_enum(ExpenseCategory, raw_category)
        if category is None:
            return jsonify({'error': 'Invalid category'}), 400

    page, per_page = get_page_args(default_per_page=50)
    result = paginate_query(
        list_expenses(category, request.args.get('tax_year')),
        page=page,
        per_page=per_page,
    )
    result['items'] = [format_expense(e) for e in result['items']]
    result['categories'] = [
        {'value': c.value, 'label': label}
        for c, label in EXPENSE_CATEGORY_LABELS.items()
    ]
    return jsonify(result)


@bp.route('/api/admin/accounting/expenses', methods=['POST'])
@login_required
@role_required('ADMIN')
def expense_create():
    data = get_json_body()

    try:
        purchase_date = date.fromisoformat(
            str(data.get('purchase_date') or ''))
    except ValueError:
        return jsonify({'error': 'Valid purchase date is required'}), 400

    supplier_id = data.get('supplier_id')
    if not supplier_id and data.get('supplier_name'):
        supplier = find_supplier_by_name(data.get('supplier_name'))
        supplier_id = supplier.id if supplier else None

    expense = create_expense(
        description=data.get('description'),
        amount=data.get('amount'),
        category=data.get('category'),
        purchase_date=purchase_date,
        supplier_id=supplier_id,
        external_reference=data.get('external_reference'),
        vat_amount=data.get('vat_amount'),
        vat_rate=data.get('vat_rate'),
        is_vat_reclaimable=bool(data.get('is_vat_reclaimable')),
        notes=data.get('notes'),
    )
    db.session.commit()

    log_audit(
        actor=current_user,
        action='EXPENSE_CREATE',
        target_type='EXPENSE',
        target_id=expense.id,
        payload={
            'expense_number': expense.expense_number,
            'amount': float(expense.amount),
        })

    return jsonify({'ok': True, 'expense': format_expense(expense)}), 201


@bp.route('/api/admin/accounting/expenses/<int:expense_id>',
          methods=['DELETE'])
@login_required
@role_required('ADMIN')
def expense_delete(expense_id):
    delete_expense(expense_id)

    log_audit(
        actor=current_user,
        action='EXPENSE_DELETE',
        target_type='EXPENSE',
        target_id=expense_id)

    return jsonify({'ok': True})


@bp.route('/api/admin/accounting/expenses/import', methods=['POST'])
@login_required
@role_required('ADMIN')
def expense_import():
    content, file_name, error = _read_import_content()
    if error:
        return jsonify({'error': error}), 400
    if not content or not str(content).strip():
        return jsonify({'error': 'CSV content is required'}), 400

    preview = preview_import(str(content))

    mode = (request.args.get('mode') or request.form.get('mode')
            or get_json_body().get('mode') or 'import').lower()
    if mode == 'preview':
        return jsonify({
            'headers': preview['headers'],
            'column_mapping': preview['column_mapping'],
            'rows': preview['parsed_rows'],
            'expenses': [_preview_row(e) for e in preview['validated']],
            'summary': {
                'total_rows': preview['total_rows'],
                'valid_rows': preview['valid_rows'],
                'invalid_rows': preview['invalid_rows'],
            },
        })

    result = import_expenses_batch(
        preview['validated'],
        current_user,
        file_name or 'upload.csv',
        preview['parsed_rows'],
    )

    log_audit(
        actor=current_user,
        action='EXPENSE_IMPORT',
        target_type='EXPENSE_IMPORT_BATCH',
        target_id=result['batch_id'],
        payload={
            'file_name': file_name,
            'imported': result['imported'],
            'failed': result['failed'],
        })

    return jsonify({'ok': True, **result}), 201


@bp.route('/api/admin/accounting/expenses/import', methods=['GET'])
@login_required
@role_required('ADMIN')
def import_history():
    limit = request.args.get('limit', 20, type=int) or 20
    return jsonify(get_import_history(limit=min(max(limit, 1), 100)))


@bp.route('/api/admin/accounting/expenses/import/template', methods=['GET'])
@login_required
@role_required('ADMIN')
def import_template():
    return Response(
        get_csv_template(),
        mimetype='text/csv',
        headers={
            'Content-Disposition':
                'attachment; filename="expense-import-template.csv"',
        },
    )


@bp.route('/api/admin/accounting/expenses/import/<int:batch_id>',
          methods=['GET'])
@login_required
@role_required('ADMIN')
def import_batch_detail(batch_id):
    return jsonify(get_import_batch(batch_id))


@bp.route('/api/admin/accounting/expenses/import/<int:batch_id>',
          methods=['DELETE'])
@login_required
@role_required('ADMIN')
def import_batch_delete(batch_id):
    delete_expenses = request.args.get(
        'delete_expenses', '').lower() in ('1', 'true', 'yes')
    message = delete_import_batch(batch_id, delete_expenses=delete_expenses)

    log_audit(
        actor=current_user,
        action='EXPENSE_IMPORT_DELETE',
        target_type='EXPENSE_IMPORT_BATCH',
        target_id=batch_id,
        payload={'delete_expenses': delete_expenses})

    return jsonify({'ok': True, 'message': message})
