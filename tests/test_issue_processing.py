from decimal import Decimal

import pytest

from storefront.errors import ServiceError
from storefront.extensions import db
from storefront.models import (
    Expense,
    ImportSource,
    Issue,
    IssueStatus,
    Order,
    OrderStatus,
    Payment,
    PaymentStatus,
    User,
)
from storefront.services import payment_gateway
from storefront.services.issue_resolution_service import (
    conclude_issue,
    process_issue,
    review_issue,
)
from storefront.services.issue_service import report_issue


def _reported_issue(client, order_id, item_id, reason='PRINTING_ERROR'):
    resp = client.post(
        f'/api/orders/{order_id}/items/{item_id}/issue',
        json={'reason': reason})
    assert resp.status_code == 201
    return resp.get_json()['issue']['id']


def _approve(client, issue_id, action):
    resp = client.post(
        f'/api/admin/issues/{issue_id}/review', json={'action': action})
    assert resp.status_code == 200
    return resp.get_json()


def test_process_requires_approval(customer_client, admin_client,
                                   order_factory):
    order_id, (item_id,) = order_factory()
    issue_id = _reported_issue(customer_client, order_id, item_id)

    resp = admin_client.post(f'/api/admin/issues/{issue_id}/process')
    assert resp.status_code == 400
    assert resp.get_json()['error'] == (
        'Issue must be approved before processing')


def test_reprint_creates_free_order_and_expense(app, customer_client,
                                                admin_client, order_factory):
    order_id, (item_id,) = order_factory(lines=((2, '12.50'),))
    issue_id = _reported_issue(customer_client, order_id, item_id)

    data = _approve(admin_client, issue_id, 'APPROVE_REPRINT')
    assert data['issue']['status'] == 'APPROVED_REPRINT'
    assert data['issue']['resolved_type'] == 'REPRINT'

    resp = admin_client.post(
        f'/api/admin/issues/{issue_id}/process', json={'notes': ''})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['message'] == 'Reprint order created successfully'
    reprint_id = data['reprint_order_id']
    assert data['issue']['status'] == 'COMPLETED'
    assert data['issue']['is_concluded'] is True
    assert data['issue']['reprint_order_id'] == reprint_id

    order = customer_client.get(f'/api/orders/{reprint_id}').get_json()[
        'order']
    assert order['status'] == 'CONFIRMED'
    assert order['total_price'] == 0.0
    assert order['items'][0]['quantity'] == 2
    assert order['items'][0]['is_reprint'] is True

    with app.app_context():
        expense = Expense.query.filter_by(
            import_source=ImportSource.REPRINT).one()
        assert expense.amount == Decimal('25.00')
        assert expense.external_reference == f'REPRINT-{reprint_id}'


def test_issue_on_reprint_links_original(customer_client, admin_client,
                                         order_factory):
    order_id, (item_id,) = order_factory()
    issue_id = _reported_issue(customer_client, order_id, item_id)
    _approve(admin_client, issue_id, 'APPROVE_REPRINT')
    reprint_id = admin_client.post(
        f'/api/admin/issues/{issue_id}/process').get_json()['reprint_order_id']

    for status in ('PRINTING', 'SHIPPED'):
        resp = admin_client.patch(
            f'/api/admin/orders/{reprint_id}/status',
            json={'status': status, 'carrier': 'DPD',
                  'tracking_number': 'DPD999'})
        assert resp.status_code == 200

    reprint = customer_client.get(f'/api/orders/{reprint_id}').get_json()[
        'order']
    assert reprint['carrier'] == 'DPD'
    reprint_item_id = reprint['items'][0]['id']

    resp = customer_client.post(
        f'/api/orders/{reprint_id}/items/{reprint_item_id}/issue',
        json={'reason': 'DAMAGED_IN_TRANSIT'})
    assert resp.status_code == 201
    assert resp.get_json()['issue']['original_issue']['id'] == issue_id


def test_full_refund_marks_order_refunded(app, customer_client,
                                          admin_client, order_factory):
    order_id, (item_id,) = order_factory(lines=((1, '25.00'), (1, '5.00')))
    issue_id = _reported_issue(customer_client, order_id, item_id)
    _approve(admin_client, issue_id, 'APPROVE_REFUND')

    resp = admin_client.post(
        f'/api/admin/issues/{issue_id}/process',
        json={'refund_type': 'FULL_REFUND'})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['message'] == 'Refund processed successfully'
    assert data['refund_amount'] == 30.0
    assert data['issue']['status'] == 'COMPLETED'
    assert data['issue']['refund_amount'] == 30.0

    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.status == OrderStatus.REFUNDED
        assert order.payment.status == PaymentStatus.REFUNDED
        assert order.payment.refunded_at is not None

    messages = customer_client.get(
        f'/api/issues/{issue_id}/messages').get_json()['messages']
    assert messages[-1]['content'] == (
        'Your refund of £30.00 has been processed.')


def test_partial_refund_pays_item_total(app, customer_client, admin_client,
                                        order_factory):
    order_id, (item_id, _) = order_factory(
        lines=((2, '10.00'), (1, '5.00')))
    issue_id = _reported_issue(customer_client, order_id, item_id)
    _approve(admin_client, issue_id, 'APPROVE_REFUND')

    resp = admin_client.post(
        f'/api/admin/issues/{issue_id}/process',
        json={'refund_type': 'PARTIAL_REFUND'})
    assert resp.status_code == 200
    assert resp.get_json()['refund_amount'] == 20.0

    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.status == OrderStatus.DELIVERED
        assert order.payment.status == PaymentStatus.COMPLETED
        assert order.payment.refunded_at is not None


def test_second_refund_on_same_order_is_rejected(customer_client,
                                                 admin_client,
                                                 order_factory):
    order_id, item_ids = order_factory(lines=((1, '10.00'), (1, '10.00')))
    first = _reported_issue(customer_client, order_id, item_ids[0])
    second = _reported_issue(customer_client, order_id, item_ids[1])
    _approve(admin_client, first, 'APPROVE_REFUND')
    _approve(admin_client, second, 'APPROVE_REFUND')

    resp = admin_client.post(
        f'/api/admin/issues/{first}/process',
        json={'refund_type': 'PARTIAL_REFUND'})
    assert resp.status_code == 200

    resp = admin_client.post(
        f'/api/admin/issues/{second}/process',
        json={'refund_type': 'PARTIAL_REFUND'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'This order has already been refunded'


def test_refund_without_payment(customer_client, admin_client,
                                order_factory):
    order_id, (item_id,) = order_factory(paid=False)
    issue_id = _reported_issue(customer_client, order_id, item_id)
    _approve(admin_client, issue_id, 'APPROVE_REFUND')

    resp = admin_client.post(f'/api/admin/issues/{issue_id}/process')
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'No payment found for this order'


def test_invalid_refund_type(customer_client, admin_client, order_factory):
    order_id, (item_id,) = order_factory()
    issue_id = _reported_issue(customer_client, order_id, item_id)
    _approve(admin_client, issue_id, 'APPROVE_REFUND')

    resp = admin_client.post(
        f'/api/admin/issues/{issue_id}/process',
        json={'refund_type': 'REPRINT'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Invalid refund type'


def test_gateway_failure_returns_issue_to_approved(app, monkeypatch,
                                                   customer_client,
                                                   admin_client,
                                                   order_factory):
    order_id, (item_id,) = order_factory()
    issue_id = _reported_issue(customer_client, order_id, item_id)
    _approve(admin_client, issue_id, 'APPROVE_REFUND')

    monkeypatch.setattr(
        payment_gateway, 'create_refund',
        lambda *args, **kwargs: {'success': False, 'error': 'Card expired'})

    resp = admin_client.post(f'/api/admin/issues/{issue_id}/process')
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Card expired'

    with app.app_context():
        issue = db.session.get(Issue, issue_id)
        assert issue.status == IssueStatus.APPROVED_REFUND
        assert not issue.is_concluded
        payment = Payment.query.filter_by(order_id=order_id).one()
        assert payment.refunded_at is None

    messages = customer_client.get(
        f'/api/issues/{issue_id}/messages').get_json()['messages']
    assert 'Card expired' in messages[-1]['content']


def test_gateway_exception_is_reported(monkeypatch, customer_client,
                                       admin_client, order_factory):
    order_id, (item_id,) = order_factory()
    issue_id = _reported_issue(customer_client, order_id, item_id)
    _approve(admin_client, issue_id, 'APPROVE_REFUND')

    def boom(*args, **kwargs):
        raise RuntimeError('gateway timeout')

    monkeypatch.setattr(payment_gateway, 'create_refund', boom)
    resp = admin_client.post(f'/api/admin/issues/{issue_id}/process')
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'gateway timeout'


def test_conclude_blocks_changes_until_reopened(customer_client,
                                                admin_client, order_factory):
    order_id, (item_id,) = order_factory()
    issue_id = _reported_issue(customer_client, order_id, item_id)

    resp = admin_client.post(
        f'/api/admin/issues/{issue_id}/conclude', json={'reason': ''})
    assert resp.status_code == 200
    assert resp.get_json()['issue']['concluded_reason'] == (
        'Manually concluded by admin')

    resp = admin_client.post(f'/api/admin/issues/{issue_id}/conclude')
    assert resp.get_json()['error'] == 'Issue is already concluded'

    resp = admin_client.post(
        f'/api/admin/issues/{issue_id}/review',
        json={'action': 'APPROVE_REFUND'})
    assert resp.status_code == 400
    assert 'Reopen it' in resp.get_json()['error']

    resp = customer_client.post(
        f'/api/issues/{issue_id}/messages', json={'content': 'Hello?'})
    assert resp.status_code == 400
    assert 'no longer accepts messages' in resp.get_json()['error']

    resp = admin_client.post(f'/api/admin/issues/{issue_id}/reopen')
    assert resp.status_code == 200
    assert resp.get_json()['issue']['is_concluded'] is False

    resp = admin_client.post(f'/api/admin/issues/{issue_id}/reopen')
    assert resp.get_json()['error'] == 'Issue is not concluded'

    _approve(admin_client, issue_id, 'APPROVE_REFUND')


def test_admin_message_blocked_on_completed_issue(customer_client,
                                                  admin_client,
                                                  order_factory):
    order_id, (item_id,) = order_factory()
    issue_id = _reported_issue(customer_client, order_id, item_id)

    resp = admin_client.post(
        f'/api/admin/issues/{issue_id}/messages',
        json={'content': 'Looking into it'})
    assert resp.status_code == 201
    assert resp.get_json()['message']['sender'] == 'ADMIN'

    _approve(admin_client, issue_id, 'APPROVE_REPRINT')
    admin_client.post(f'/api/admin/issues/{issue_id}/process')

    resp = admin_client.post(
        f'/api/admin/issues/{issue_id}/messages',
        json={'content': 'One more thing'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == (
        'This issue has been closed and no longer accepts messages')


def test_admin_detail_marks_customer_messages_read(customer_client,
                                                   admin_client,
                                                   order_factory):
    order_id, (item_id,) = order_factory()
    issue_id = _reported_issue(customer_client, order_id, item_id)
    admin_client.post(
        f'/api/admin/issues/{issue_id}/review',
        json={'action': 'REQUEST_INFO', 'message': 'Photo please'})
    customer_client.post(
        f'/api/issues/{issue_id}/messages', json={'content': 'Sent'})

    stats = admin_client.get('/api/admin/issues/stats').get_json()
    assert stats['unread_messages'] == 1

    resp = admin_client.get(f'/api/admin/issues/{issue_id}')
    assert resp.status_code == 200
    assert resp.get_json()['issue']['customer']['email'] == (
        'customer@example.com')

    stats = admin_client.get('/api/admin/issues/stats').get_json()
    assert stats['unread_messages'] == 0


def test_admin_issue_list_filters(customer_client, admin_client,
                                  order_factory):
    order_id, item_ids = order_factory(lines=((1, '10.00'), (1, '10.00')))
    _reported_issue(customer_client, order_id, item_ids[0],
                    'DAMAGED_IN_TRANSIT')
    _reported_issue(customer_client, order_id, item_ids[1], 'WRONG_ITEM')

    data = admin_client.get('/api/admin/issues').get_json()
    assert data['total'] == 2

    data = admin_client.get(
        '/api/admin/issues?carrier_fault=CARRIER_FAULT').get_json()
    assert data['total'] == 1
    assert data['items'][0]['reason'] == 'DAMAGED_IN_TRANSIT'

    data = admin_client.get('/api/admin/issues?status=all').get_json()
    assert data['total'] == 2

    resp = admin_client.get('/api/admin/issues?status=NOPE')
    assert resp.status_code == 400


def test_customer_cannot_reach_admin_endpoints(customer_client,
                                               order_factory):
    order_id, (item_id,) = order_factory()
    issue_id = _reported_issue(customer_client, order_id, item_id)
    resp = customer_client.post(
        f'/api/admin/issues/{issue_id}/review',
        json={'action': 'APPROVE_REFUND'})
    assert resp.status_code == 403


def test_services_process_reprint(ctx, seed, order_factory):
    order_id, (item_id,) = order_factory()
    customer = db.session.get(User, seed.customer_id)
    admin = db.session.get(User, seed.admin_id)

    issue = report_issue(order_id, item_id, customer, 'QUALITY_ISSUE')
    issue, summary = review_issue(issue.id, 'approve_reprint', admin)
    assert summary == 'Issue approved for reprint. Ready for processing.'

    result = process_issue(issue.id, admin, notes='On its way')
    assert result['issue'].status == IssueStatus.COMPLETED
    assert result['issue'].messages.all()[-1].content == 'On its way'

    with pytest.raises(ServiceError) as exc:
        conclude_issue(issue.id, admin)
    assert exc.value.message == 'Issue is already concluded'


def test_review_rejects_unknown_action(ctx, seed, order_factory):
    admin = db.session.get(User, seed.admin_id)
    with pytest.raises(ServiceError) as exc:
        review_issue(1, 'ESCALATE', admin)
    assert exc.value.message == 'Invalid action'
