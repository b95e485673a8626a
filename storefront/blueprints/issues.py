from flask import Blueprint, jsonify
from flask_login import login_required, current_user
from storefront.middleware import role_required
from storefront.services.audit_service import log_audit
from storefront.services.issue_message_service import (
    ensure_owner,
    format_message,
    get_issue_messages,
    get_issue_or_404,
    mark_messages_read,
    send_customer_message,
)
from storefront.services.issue_service import (
    appeal_issue,
    customer_unread_count,
    format_issue,
    get_customer_issue,
    list_customer_issues,
    withdraw_issue,
)
from storefront.models import MessageSender
from storefront.utils import get_json_body
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('issues', __name__)


@bp.route('/api/issues', methods=['GET'])
@login_required
@role_required('CUSTOMER')
def issue_list():
    issues, stats = list_customer_issues(current_user)
    return jsonify({'issues': issues, 'stats': stats})


@bp.route('/api/issues/unread-count', methods=['GET'])
@login_required
@role_required('CUSTOMER')
def unread_count():
    return jsonify({'unread_count': customer_unread_count(current_user)})


@bp.route('/api/issues/<int:issue_id>', methods=['GET'])
@login_required
@role_required('CUSTOMER')
def issue_detail(issue_id):
    issue = get_customer_issue(issue_id, current_user)
    return jsonify({'issue': format_issue(issue, include_messages=True)})


@bp.route('/api/issues/<int:issue_id>', methods=['DELETE'])
@login_required
@role_required('CUSTOMER')
def withdraw(issue_id):
    withdraw_issue(issue_id, current_user)

    log_audit(
        actor=current_user,
        action='ISSUE_WITHDRAW',
        target_type='ISSUE',
        target_id=issue_id)

    return jsonify({'ok': True, 'message': 'Issue withdrawn successfully'})


@bp.route('/api/issues/<int:issue_id>/messages', methods=['GET'])
@login_required
@role_required('CUSTOMER')
def messages(issue_id):
    issue = get_issue_or_404(issue_id)
    ensure_owner(issue, current_user)
    mark_messages_read(issue.id, MessageSender.ADMIN)
    return jsonify({
        'messages': [format_message(m) for m in get_issue_messages(issue.id)],
    })


@bp.route('/api/issues/<int:issue_id>/messages', methods=['POST'])
@login_required
@role_required('CUSTOMER')
def send_message(issue_id):
    data = get_json_body()
    message, status_changed = send_customer_message(
        issue_id,
        current_user,
        data.get('content'),
        data.get('image_urls'),
    )

    log_audit(
        actor=current_user,
        action='ISSUE_MESSAGE',
        target_type='ISSUE',
        target_id=issue_id,
        payload={
            'message_id': message.id,
            'status_changed': status_changed,
        })

    return jsonify({
        'ok': True,
        'message': format_message(message),
        'status_changed': status_changed,
    }), 201


@bp.route('/api/issues/<int:issue_id>/appeal', methods=['POST'])
@login_required
@role_required('CUSTOMER')
def appeal(issue_id):
    data = get_json_body()
    issue = appeal_issue(
        issue_id,
        current_user,
        data.get('reason'),
        data.get('image_urls'),
    )

    log_audit(
        actor=current_user,
        action='ISSUE_APPEAL',
        target_type='ISSUE',
        target_id=issue.id)

    return jsonify({
        'ok': True,
        'message': 'Your appeal has been submitted. Our team will review it.',
        'issue': format_issue(issue),
    })
