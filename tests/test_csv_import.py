import io
from datetime import date, datetime
from decimal import Decimal

import pytest

from storefront.models import Expense, ExpenseCategory, Supplier
from storefront.extensions import db
from storefront.services.accounting_service import (
    generate_expense_number,
    get_tax_year_for_date,
)
from storefront.services.csv_import_service import (
    get_csv_template,
    map_headers,
    parse_amount,
    parse_boolean,
    parse_category,
    parse_csv,
    parse_date,
    validate_expense_rows,
)

CSV = (
    'Description,Amount,Category,Date,Vendor,Invoice Number,VAT,Notes\n'
    'Printer ink,£45.99,MATERIALS,15/01/2025,Paper Co,INV-1,7.67,Black\n'
    'Bubble wrap,"1,200.00",boxes,2025-01-16,,,,\n'
    ',10.00,OTHER,16/01/2025,,,,\n'
    'Stamps,abc,postage,16/01/2025,,,,\n'
)


@pytest.mark.parametrize('value,expected', [
    ('15/01/2025', date(2025, 1, 15)),
    ('01/02/2025', date(2025, 2, 1)),
    ('12/31/2024', date(2024, 12, 31)),
    ('2025-03-04', date(2025, 3, 4)),
    ('2025-03-04T10:30:00', date(2025, 3, 4)),
    ('4 March 2025', date(2025, 3, 4)),
    ('Mar 4, 2025', date(2025, 3, 4)),
    ('31/31/2025', None),
    ('2025-02-30', None),
    ('yesterday', None),
    ('', None),
])
def test_parse_date(value, expected):
    assert parse_date(value) == expected


@pytest.mark.parametrize('value,expected', [
    ('£45.99', Decimal('45.99')),
    ('1,200', Decimal('1200.00')),
    (' $ 3.456 ', Decimal('3.46')),
    ('-5', Decimal('-5.00')),
    ('abc', None),
    ('NaN', None),
    ('', None),
])
def test_parse_amount(value, expected):
    assert parse_amount(value) == expected


@pytest.mark.parametrize('value,expected', [
    ('MATERIALS', ExpenseCategory.MATERIALS),
    ('shipping supplies', ExpenseCategory.SHIPPING_SUPPLIES),
    ('Royal Mail postage', ExpenseCategory.SHIPPING_SUPPLIES),
    ('Printer paper', ExpenseCategory.MATERIALS),
    ('Facebook ads', ExpenseCategory.MARKETING),
    ('Bank fees', ExpenseCategory.OTHER),
    ('gibberish', None),
    (None, None),
])
def test_parse_category(value, expected):
    assert parse_category(value) == expected


def test_parse_boolean():
    assert parse_boolean('Yes')
    assert parse_boolean('1')
    assert not parse_boolean('no')
    assert not parse_boolean(None)


def test_parse_csv_normalizes_headers_and_skips_blank_lines():
    headers, rows = parse_csv(
        '\ufeffInvoice Number , Amount\n\n INV-1 , 5.00 \n,\n')
    assert headers == ['invoice_number', 'amount']
    assert rows == [['INV-1', '5.00']]
    assert parse_csv('') == ([], [])


def test_map_headers_prefers_exact_alias():
    mapping = map_headers([
        'description', 'total', 'vat_rate', 'vat', 'invoice_number',
        'supplier_name', 'transaction_date', 'colour',
    ])
    assert mapping == {
        'description': 'description',
        'total': 'amount',
        'vat_rate': 'vat_rate',
        'vat': 'vat_amount',
        'invoice_number': 'external_reference',
        'supplier_name': 'supplier',
        'transaction_date': 'purchase_date',
    }


def test_validate_rows_reports_errors_and_warnings():
    headers, rows = parse_csv(CSV)
    mapping = map_headers(headers)
    parsed, valid = validate_expense_rows(
        rows, headers, mapping, today=date(2025, 1, 15))

    assert [p['row_number'] for p in parsed] == [2, 3, 4, 5]
    assert [v['row_number'] for v in valid] == [2, 3]

    ink = valid[0]
    assert ink['amount'] == Decimal('45.99')
    assert ink['supplier_name'] == 'Paper Co'
    assert ink['external_reference'] == 'INV-1'
    assert ink['vat_amount'] == Decimal('7.67')

    wrap = valid[1]
    assert wrap['amount'] == Decimal('1200.00')
    assert wrap['category'] == ExpenseCategory.PACKAGING
    assert parsed[1]['warnings'] == ['Purchase date is in the future']

    assert parsed[2]['errors'] == ['Description is required']
    assert parsed[3]['errors'] == ['Valid amount is required']


def test_vat_above_amount_is_an_error():
    headers = ['description', 'amount', 'date', 'vat']
    parsed, valid = validate_expense_rows(
        [['Ink', '5.00', '01/01/2025', '6.00']], headers,
        map_headers(headers))
    assert valid == []
    assert parsed[0]['errors'] == ['VAT amount cannot exceed total amount']
    assert parsed[0]['warnings'] == [
        'No category specified, defaulting to OTHER']


def test_template_parses_cleanly():
    headers, rows = parse_csv(get_csv_template())
    _, valid = validate_expense_rows(rows, headers, map_headers(headers))
    assert len(valid) == len(rows) == 3


@pytest.mark.parametrize('value,expected', [
    (date(2025, 4, 5), '2024-2025'),
    (date(2025, 4, 6), '2025-2026'),
    (datetime(2025, 1, 1, 12), '2024-2025'),
])
def test_tax_year(value, expected):
    assert get_tax_year_for_date(value) == expected


def test_expense_numbers_increment(ctx):
    now = datetime(2025, 1, 20)
    assert generate_expense_number(now) == 'EXP-202501-0001'
    db.session.add(Expense(
        expense_number='EXP-202501-0007',
        description='Ink',
        amount=Decimal('5.00'),
        category=ExpenseCategory.MATERIALS,
        purchase_date=date(2025, 1, 20),
        tax_year='2024-2025',
    ))
    db.session.commit()
    assert generate_expense_number(now) == 'EXP-202501-0008'


def test_preview_then_import(app, admin_client):
    with app.app_context():
        db.session.add(Supplier(name='Paper Co'))
        db.session.commit()

    resp = admin_client.post(
        '/api/admin/accounting/expenses/import?mode=preview',
        json={'content': CSV, 'file_name': 'jan.csv'})
    assert resp.status_code == 200
    preview = resp.get_json()
    assert preview['summary'] == {
        'total_rows': 4, 'valid_rows': 2, 'invalid_rows': 2}
    assert preview['column_mapping']['vendor'] == 'supplier'
    assert preview['expenses'][0]['amount'] == 45.99
    with app.app_context():
        assert Expense.query.count() == 0

    resp = admin_client.post(
        '/api/admin/accounting/expenses/import',
        json={'content': CSV, 'file_name': 'jan.csv'})
    assert resp.status_code == 201
    result = resp.get_json()
    assert result['imported'] == 2
    assert result['failed'] == 0
    assert result['total_rows'] == 4
    batch_id = result['batch_id']

    detail = admin_client.get(
        f'/api/admin/accounting/expenses/import/{batch_id}').get_json()
    assert detail['batch']['file_name'] == 'jan.csv'
    assert detail['batch']['status'] == 'COMPLETED'
    ink = detail['expenses'][0]
    assert ink['supplier']['name'] == 'Paper Co'
    assert ink['tax_year'] == '2024-2025'
    assert ink['expense_number'].startswith('EXP-')

    history = admin_client.get(
        '/api/admin/accounting/expenses/import?limit=5').get_json()
    assert [b['id'] for b in history['batches']] == [batch_id]


def test_delete_batch_keeps_or_removes_expenses(app, admin_client):
    def import_csv():
        resp = admin_client.post(
            '/api/admin/accounting/expenses/import', json={'content': CSV})
        return resp.get_json()['batch_id']

    first = import_csv()
    resp = admin_client.delete(
        f'/api/admin/accounting/expenses/import/{first}')
    assert resp.get_json()['message'] == (
        'Import batch deleted, expenses preserved')
    with app.app_context():
        assert Expense.query.count() == 2
        assert Expense.query.filter(
            Expense.import_batch_id.isnot(None)).count() == 0

    second = import_csv()
    resp = admin_client.delete(
        f'/api/admin/accounting/expenses/import/{second}'
        '?delete_expenses=true')
    assert resp.get_json()['message'] == (
        'Import batch and expenses deleted successfully')
    with app.app_context():
        assert Expense.query.count() == 2

    resp = admin_client.get(
        f'/api/admin/accounting/expenses/import/{second}')
    assert resp.status_code == 404


def test_import_rejects_empty_and_invalid_files(admin_client):
    resp = admin_client.post(
        '/api/admin/accounting/expenses/import', json={'content': '  '})
    assert resp.get_json()['error'] == 'CSV content is required'

    resp = admin_client.post(
        '/api/admin/accounting/expenses/import',
        json={'content': 'description,amount\n,0\n'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'No valid expenses to import'


def test_multipart_upload(admin_client):
    data = {
        'file': (io.BytesIO(CSV.encode('utf-8-sig')), 'bank.csv'),
        'mode': 'import',
    }
    resp = admin_client.post(
        '/api/admin/accounting/expenses/import',
        data=data, content_type='multipart/form-data')
    assert resp.status_code == 201
    assert resp.get_json()['imported'] == 2

    data = {'file': (io.BytesIO(b'\xff\xfe\x00bad'), 'bad.csv')}
    resp = admin_client.post(
        '/api/admin/accounting/expenses/import',
        data=data, content_type='multipart/form-data')
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'File must be UTF-8 encoded CSV'


def test_template_download(admin_client):
    resp = admin_client.get('/api/admin/accounting/expenses/import/template')
    assert resp.status_code == 200
    assert resp.mimetype == 'text/csv'
    assert 'attachment' in resp.headers['Content-Disposition']
    assert resp.data.decode().startswith('description,amount,category')


def test_manual_expense_crud(admin_client):
    resp = admin_client.post('/api/admin/accounting/expenses', json={
        'description': 'Laminator',
        'amount': '120.00',
        'category': 'equipment',
        'purchase_date': '2025-05-01',
        'vat_amount': '20.00',
    })
    assert resp.status_code == 201
    expense = resp.get_json()['expense']
    assert expense['category'] == 'EQUIPMENT'
    assert expense['tax_year'] == '2025-2026'

    listing = admin_client.get(
        '/api/admin/accounting/expenses?category=EQUIPMENT').get_json()
    assert listing['total'] == 1
    assert admin_client.get(
        '/api/admin/accounting/expenses?category=FOOD').status_code == 400

    resp = admin_client.post('/api/admin/accounting/expenses', json={
        'description': 'Laminator', 'amount': 'lots',
        'purchase_date': '2025-05-01'})
    assert resp.get_json()['error'] == 'Valid amount is required'

    resp = admin_client.post('/api/admin/accounting/expenses', json={
        'description': 'Laminator', 'amount': '5', 'purchase_date': 'May'})
    assert resp.get_json()['error'] == 'Valid purchase date is required'

    resp = admin_client.delete(
        f"/api/admin/accounting/expenses/{expense['id']}")
    assert resp.status_code == 200
    assert admin_client.delete(
        f"/api/admin/accounting/expenses/{expense['id']}").status_code == 404


def test_accounting_is_admin_only(customer_client):
    resp = customer_client.get('/api/admin/accounting/expenses')
    assert resp.status_code == 403
