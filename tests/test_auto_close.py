from datetime import datetime, timedelta

from storefront.extensions import db
from storefront.models import (
    AuditLog,
    Issue,
    IssueMessage,
    IssueStatus,
    MessageSender,
    User,
)
from storefront.services.issue_admin_service import (
    auto_close_stale_issues,
    find_stale_issues,
    preview_auto_close,
)
from storefront.services.issue_message_service import add_message
from storefront.services.issue_resolution_service import review_issue
from storefront.services.issue_service import report_issue

from conftest import CRON_SECRET


def _info_requested_issue(seed, order_factory, days_ago=20,
                          customer_replied=False):
    """Create an INFO_REQUESTED issue whose activity is ``days_ago`` old."""
    order_id, (item_id,) = order_factory()
    customer = db.session.get(User, seed.customer_id)
    admin = db.session.get(User, seed.admin_id)

    issue = report_issue(order_id, item_id, customer, 'QUALITY_ISSUE')
    review_issue(issue.id, 'REQUEST_INFO', admin, message='Photo please')
    if customer_replied:
        add_message(issue, MessageSender.CUSTOMER, customer.id, 'Here it is')
        db.session.commit()

    past = datetime.utcnow() - timedelta(days=days_ago)
    issue.reviewed_at = past
    for message in issue.messages:
        message.created_at = past
    db.session.commit()
    return issue.id


def test_stale_issue_is_found(ctx, seed, order_factory):
    stale_id = _info_requested_issue(seed, order_factory, days_ago=20)
    _info_requested_issue(seed, order_factory, days_ago=5)

    assert [i.id for i, _ in find_stale_issues()] == [stale_id]


def test_customer_reply_keeps_issue_open(ctx, seed, order_factory):
    _info_requested_issue(seed, order_factory, days_ago=20,
                          customer_replied=True)
    assert find_stale_issues() == []


def test_issue_without_messages_is_stale(ctx, seed, order_factory):
    issue_id = _info_requested_issue(seed, order_factory, days_ago=20)
    IssueMessage.query.filter_by(issue_id=issue_id).delete()
    db.session.commit()

    stale = find_stale_issues()
    assert [(i.id, latest) for i, latest in stale] == [(issue_id, None)]


def test_concluded_issue_is_not_closed(ctx, seed, order_factory):
    issue_id = _info_requested_issue(seed, order_factory, days_ago=20)
    db.session.get(Issue, issue_id).is_concluded = True
    db.session.commit()
    assert find_stale_issues() == []


def test_auto_close_appends_system_message(ctx, seed, order_factory):
    issue_id = _info_requested_issue(seed, order_factory, days_ago=20)

    preview = preview_auto_close()
    assert preview['stale_days'] == 14
    assert preview['issues_would_close'] == 1
    assert preview['issues'][0]['days_since_last_activity'] >= 19

    assert auto_close_stale_issues() == [issue_id]

    issue = db.session.get(Issue, issue_id)
    assert issue.status == IssueStatus.CLOSED
    assert issue.closed_at is not None
    latest = issue.messages.all()[-1]
    assert latest.sender == MessageSender.ADMIN
    assert latest.sender_id is None
    assert 'automatically closed' in latest.content
    assert '14 days' in latest.content

    # Closed issues are not picked up again
    assert auto_close_stale_issues() == []


def test_now_controls_staleness(ctx, seed, order_factory):
    _info_requested_issue(seed, order_factory, days_ago=5)
    assert find_stale_issues() == []
    later = datetime.utcnow() + timedelta(days=10)
    assert len(find_stale_issues(now=later)) == 1


def _stale_issue_id(app, seed, order_factory):
    with app.app_context():
        return _info_requested_issue(seed, order_factory, days_ago=20)


def test_cron_endpoint_with_secret(app, seed, order_factory):
    issue_id = _stale_issue_id(app, seed, order_factory)
    client = app.test_client()
    headers = {'Authorization': f'Bearer {CRON_SECRET}'}

    resp = client.get('/api/admin/issues/auto-close', headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()['issues_would_close'] == 1

    resp = client.post('/api/admin/issues/auto-close', headers=headers)
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['closed_count'] == 1
    assert data['closed_issue_ids'] == [issue_id]

    with app.app_context():
        audit = AuditLog.query.filter_by(action='ISSUE_AUTO_CLOSE').one()
        assert audit.actor_role == 'SYSTEM'
        assert audit.actor_id is None
        assert audit.target_id == issue_id


def test_cron_endpoint_rejects_bad_secret(app, seed):
    client = app.test_client()
    resp = client.post(
        '/api/admin/issues/auto-close',
        headers={'Authorization': 'Bearer wrong'})
    assert resp.status_code == 401


def test_cron_endpoint_rejects_customer(customer_client):
    resp = customer_client.post('/api/admin/issues/auto-close')
    assert resp.status_code == 401


def test_admin_can_run_auto_close(app, seed, order_factory, admin_client):
    _stale_issue_id(app, seed, order_factory)

    resp = admin_client.post('/api/admin/issues/auto-close')
    assert resp.status_code == 200
    assert resp.get_json()['closed_count'] == 1

    with app.app_context():
        audit = AuditLog.query.filter_by(action='ISSUE_AUTO_CLOSE').one()
        assert audit.actor_role == 'ADMIN'
        assert audit.actor_id == seed.admin_id


def test_cli_dry_run_and_close(app, seed, order_factory):
    issue_id = _stale_issue_id(app, seed, order_factory)
    runner = app.test_cli_runner()

    result = runner.invoke(args=['issues', 'auto-close', '--dry-run'])
    assert result.exit_code == 0
    assert '1 issue(s) would be closed' in result.output
    assert f'#{issue_id}' in result.output

    result = runner.invoke(args=['issues', 'auto-close'])
    assert result.exit_code == 0
    assert 'Closed 1 issue(s)' in result.output

    with app.app_context():
        assert db.session.get(Issue, issue_id).status == IssueStatus.CLOSED
        audit = AuditLog.query.filter_by(action='ISSUE_AUTO_CLOSE').one()
        assert audit.actor_role == 'SYSTEM'
