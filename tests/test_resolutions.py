from storefront.extensions import db
from storefront.models import (
    Order,
    OrderStatus,
    Resolution,
    ResolutionStatus,
)
from storefront.services import payment_gateway


def _report(client, order_id, reason='PRINTING_ERROR'):
    return client.post(
        f'/api/orders/{order_id}/report-issue',
        json={'reason': reason, 'notes': 'Whole batch smudged'})


def test_report_order_issue(customer_client, order_factory):
    order_id, _ = order_factory()

    resp = _report(customer_client, order_id)
    assert resp.status_code == 201
    resolution = resp.get_json()['resolution']
    assert resolution['status'] == 'PENDING'
    assert resolution['reason'] == 'PRINTING_ERROR'
    assert resolution['notes'] == 'Whole batch smudged'

    resp = _report(customer_client, order_id)
    assert resp.status_code == 400
    assert 'already a pending issue report' in resp.get_json()['error']

    detail = customer_client.get(f'/api/orders/{order_id}').get_json()
    assert len(detail['order']['resolutions']) == 1


def test_report_order_issue_validation(customer_client, other_client,
                                       order_factory):
    order_id, _ = order_factory(status=OrderStatus.CONFIRMED)
    resp = _report(customer_client, order_id)
    assert resp.status_code == 400
    assert 'shipped or delivered' in resp.get_json()['error']

    delivered_id, _ = order_factory()
    assert _report(other_client, delivered_id).status_code == 403
    assert _report(customer_client, 9999).status_code == 404
    assert _report(customer_client, delivered_id, 'NOPE').status_code == 400


def test_process_resolution_reprint(app, customer_client, admin_client,
                                    order_factory):
    order_id, _ = order_factory(lines=((1, '10.00'), (3, '2.00')))
    resolution_id = _report(customer_client, order_id).get_json()[
        'resolution']['id']

    resp = admin_client.post(
        f'/api/admin/resolutions/{resolution_id}/process',
        json={'action': 'reprint'})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['message'] == 'Reprint order created successfully'

    reprint = admin_client.get(
        f"/api/admin/orders/{data['reprint_order_id']}").get_json()['order']
    assert reprint['status'] == 'CONFIRMED'
    assert [i['quantity'] for i in reprint['items']] == [1, 3]
    assert all(i['total_price'] == 0.0 for i in reprint['items'])

    original = admin_client.get(
        f'/api/admin/orders/{order_id}').get_json()['order']
    assert original['resolutions'][0]['status'] == 'COMPLETED'

    resp = admin_client.post(
        f'/api/admin/resolutions/{resolution_id}/process',
        json={'action': 'REFUND'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'This issue has already been processed'


def test_process_resolution_refund(app, customer_client, admin_client,
                                   order_factory):
    order_id, _ = order_factory(lines=((2, '15.00'),))
    resolution_id = _report(customer_client, order_id).get_json()[
        'resolution']['id']

    resp = admin_client.post(
        f'/api/admin/resolutions/{resolution_id}/process',
        json={'action': 'REFUND', 'notes': 'Goodwill'})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['amount'] == 30.0
    assert data['message'] == 'Refund processed successfully'

    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.status == OrderStatus.REFUNDED
        resolution = db.session.get(Resolution, resolution_id)
        assert resolution.refund_reference.startswith('re_')
        assert resolution.notes == 'Goodwill'


def test_failed_refund_leaves_resolution_failed(app, monkeypatch,
                                                customer_client,
                                                admin_client, order_factory):
    order_id, _ = order_factory()
    resolution_id = _report(customer_client, order_id).get_json()[
        'resolution']['id']
    monkeypatch.setattr(
        payment_gateway, 'create_refund',
        lambda *args, **kwargs: {'success': False, 'error': 'Declined'})

    resp = admin_client.post(
        f'/api/admin/resolutions/{resolution_id}/process',
        json={'action': 'REFUND'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Declined'

    with app.app_context():
        resolution = db.session.get(Resolution, resolution_id)
        assert resolution.status == ResolutionStatus.FAILED
        assert 'Refund failed: Declined' in resolution.notes

    # A failed resolution no longer blocks a new report
    assert _report(customer_client, order_id).status_code == 201


def test_invalid_resolution_action(customer_client, admin_client,
                                   order_factory):
    order_id, _ = order_factory()
    resolution_id = _report(customer_client, order_id).get_json()[
        'resolution']['id']
    resp = admin_client.post(
        f'/api/admin/resolutions/{resolution_id}/process',
        json={'action': 'IGNORE'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == (
        'Invalid action. Must be REPRINT or REFUND')


def test_refund_idempotency_key_replays(app, customer_client, admin_client,
                                        order_factory):
    order_id, _ = order_factory()
    resolution_id = _report(customer_client, order_id).get_json()[
        'resolution']['id']
    admin_client.post(
        f'/api/admin/resolutions/{resolution_id}/process',
        json={'action': 'REFUND'})

    with app.app_context():
        reference = db.session.get(Resolution, resolution_id).refund_reference
    replay = payment_gateway.create_refund(
        f'pay_test_{order_id}', 25, f'resolution_{resolution_id}')
    assert replay['refund_id'] == reference


def test_admin_order_status_flow(admin_client, order_factory):
    order_id, _ = order_factory(status=OrderStatus.PRINTING, paid=True)

    resp = admin_client.patch(
        f'/api/admin/orders/{order_id}/status',
        json={'status': 'SHIPPED', 'carrier': 'DPD',
              'tracking_number': 'DPD-42'})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['order']['status'] == 'SHIPPED'
    assert data['valid_next_statuses'] == ['DELIVERED', 'REFUNDED']

    resp = admin_client.patch(
        f'/api/admin/orders/{order_id}/status', json={'status': 'PENDING'})
    assert resp.status_code == 400
    assert 'Invalid status transition' in resp.get_json()['error']

    resp = admin_client.patch(
        f'/api/admin/orders/{order_id}/status', json={'status': 'LOST'})
    assert resp.get_json()['error'] == 'Invalid order status'

    detail = admin_client.get(f'/api/admin/orders/{order_id}').get_json()
    assert detail['order']['tracking_number'] == 'DPD-42'


def test_admin_dashboard_and_order_list(admin_client, order_factory):
    order_factory()
    order_factory(status=OrderStatus.PENDING, paid=False)

    dashboard = admin_client.get('/api/admin/dashboard').get_json()
    assert dashboard['total_orders'] == 2
    assert dashboard['total_customers'] == 2
    assert dashboard['revenue'] == 25.0

    data = admin_client.get('/api/admin/orders?status=PENDING').get_json()
    assert data['total'] == 1
    assert admin_client.get(
        '/api/admin/orders?status=BOGUS').status_code == 400


def test_order_refund_after_item_refund_is_rejected(app, customer_client,
                                                    admin_client,
                                                    order_factory):
    order_id, (item_id, _) = order_factory(
        lines=((2, '10.00'), (1, '5.00')))
    resp = customer_client.post(
        f'/api/orders/{order_id}/items/{item_id}/issue',
        json={'reason': 'PRINTING_ERROR'})
    issue_id = resp.get_json()['issue']['id']
    admin_client.post(f'/api/admin/issues/{issue_id}/review',
                      json={'action': 'APPROVE_REFUND'})
    resp = admin_client.post(f'/api/admin/issues/{issue_id}/process',
                             json={'refund_type': 'PARTIAL_REFUND'})
    assert resp.status_code == 200

    resolution_id = _report(customer_client, order_id).get_json()[
        'resolution']['id']
    resp = admin_client.post(
        f'/api/admin/resolutions/{resolution_id}/process',
        json={'action': 'REFUND'})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'This order has already been refunded'
    assert len(payment_gateway._processed_refunds) == 1

    with app.app_context():
        resolution = db.session.get(Resolution, resolution_id)
        assert resolution.status == ResolutionStatus.PENDING
