from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user
from storefront.middleware import (
    cron_or_admin_required,
    has_cron_secret,
    role_required,
)
from storefront.models import CarrierFault, IssueStatus
from storefront.services.audit_service import log_audit
from storefront.services.claim_service import (
    UNSET,
    build_claim_report,
    format_claim,
    get_claim,
    list_carrier_claims,
    set_carrier_fault,
    submit_claim,
    update_claim,
)
from storefront.services.issue_admin_service import (
    admin_dashboard_stats,
    admin_unread_count,
    auto_close_stale_issues,
    format_issue_admin,
    get_issue_admin,
    issues_needing_attention,
    list_issues_admin,
    preview_auto_close,
)
from storefront.services.issue_message_service import (
    format_message,
    send_admin_message,
)
from storefront.services.issue_resolution_service import (
    conclude_issue,
    process_issue,
    reopen_issue,
    review_issue,
)
from storefront.utils import (
    clean_text,
    get_json_body,
    get_page_args,
    money_float,
    parse_enum,
)
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('admin_issues', __name__)


@bp.route('/api/admin/issues', methods=['GET'])
@login_required
@role_required('ADMIN')
def issue_list():
    status = None
    raw_status = request.args.get('status')
    if raw_status and raw_status.lower() != 'all':
        status = parse_enum(IssueStatus, raw_status)
        if status is None:
            return jsonify({'error': 'Invalid status filter'}), 400

    carrier_fault = None
    raw_fault = request.args.get('carrier_fault')
    if raw_fault and raw_fault.lower() != 'all':
        carrier_fault = parse_enum(CarrierFault, raw_fault)
        if carrier_fault is None:
            return jsonify({'error': 'Invalid carrier fault filter'}), 400

    page, per_page = get_page_args(default_per_page=50)
    return jsonify(list_issues_admin(
        status=status,
        carrier_fault=carrier_fault,
        page=page,
        per_page=per_page,
    ))


@bp.route('/api/admin/issues/stats', methods=['GET'])
@login_required
@role_required('ADMIN')
def issue_stats():
    stats = admin_dashboard_stats()
    stats['needs_attention'] = issues_needing_attention()
    stats['unread_messages'] = admin_unread_count()
    return jsonify(stats)


@bp.route('/api/admin/issues/<int:issue_id>', methods=['GET'])
@login_required
@role_required('ADMIN')
def issue_detail(issue_id):
    issue = get_issue_admin(issue_id)
    return jsonify({
        'issue': format_issue_admin(issue, include_messages=True),
    })


@bp.route('/api/admin/issues/<int:issue_id>/review', methods=['POST'])
@login_required
@role_required('ADMIN')
def review(issue_id):
    data = get_json_body()
    action = (clean_text(data.get('action')) or '').upper()
    issue, summary = review_issue(
        issue_id,
        action,
        current_user,
        message=data.get('message'),
        is_final_rejection=bool(data.get('is_final_rejection')),
    )

    log_audit(
        actor=current_user,
        action=f'ISSUE_REVIEW_{action}',
        target_type='ISSUE',
        target_id=issue.id,
        payload={
            'status': issue.status.value,
            'is_final_rejection': bool(issue.rejection_final),
        })

    return jsonify({
        'ok': True,
        'message': summary,
        'issue': format_issue_admin(issue),
    })


@bp.route('/api/admin/issues/<int:issue_id>/process', methods=['POST'])
@login_required
@role_required('ADMIN')
def process(issue_id):
    data = get_json_body()
    result = process_issue(
        issue_id,
        current_user,
        refund_type=data.get('refund_type'),
        notes=data.get('notes'),
    )
    issue = result['issue']

    payload = {'resolved_type': issue.resolved_type.value}
    if 'reprint_order_id' in result:
        payload['reprint_order_id'] = result['reprint_order_id']
    if 'refund_amount' in result:
        payload['refund_amount'] = money_float(result['refund_amount'])
    log_audit(
        actor=current_user,
        action='ISSUE_PROCESS',
        target_type='ISSUE',
        target_id=issue.id,
        payload=payload)

    response = {
        'ok': True,
        'message': result['message'],
        'issue': format_issue_admin(issue),
    }
    if 'reprint_order_id' in result:
        response['reprint_order_id'] = result['reprint_order_id']
    if 'refund_amount' in result:
        response['refund_amount'] = money_float(result['refund_amount'])
    return jsonify(response)


@bp.route('/api/admin/issues/<int:issue_id>/conclude', methods=['POST'])
@login_required
@role_required('ADMIN')
def conclude(issue_id):
    data = get_json_body()
    issue = conclude_issue(issue_id, current_user, data.get('reason'))

    log_audit(
        actor=current_user,
        action='ISSUE_CONCLUDE',
        target_type='ISSUE',
        target_id=issue.id,
        payload={'reason': issue.concluded_reason})

    return jsonify({
        'ok': True,
        'message': 'Issue concluded',
        'issue': format_issue_admin(issue),
    })


@bp.route('/api/admin/issues/<int:issue_id>/reopen', methods=['POST'])
@login_required
@role_required('ADMIN')
def reopen(issue_id):
    issue = reopen_issue(issue_id, current_user)

    log_audit(
        actor=current_user,
        action='ISSUE_REOPEN',
        target_type='ISSUE',
        target_id=issue.id)

    return jsonify({
        'ok': True,
        'message': 'Issue reopened',
        'issue': format_issue_admin(issue),
    })


@bp.route('/api/admin/issues/<int:issue_id>/messages', methods=['POST'])
@login_required
@role_required('ADMIN')
def send_message(issue_id):
    data = get_json_body()
    message = send_admin_message(
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
        payload={'message_id': message.id})

    return jsonify({'ok': True, 'message': format_message(message)}), 201


@bp.route('/api/admin/issues/<int:issue_id>/carrier-fault', methods=['PUT'])
@login_required
@role_required('ADMIN')
def carrier_fault(issue_id):
    data = get_json_body()
    issue, previous = set_carrier_fault(
        issue_id, current_user, data.get('carrier_fault'))

    log_audit(
        actor=current_user,
        action='CLAIM_CARRIER_FAULT',
        target_type='ISSUE',
        target_id=issue.id,
        payload={
            'from': previous.value,
            'to': issue.carrier_fault.value,
        })

    return jsonify({'ok': True, 'issue': format_issue_admin(issue)})


@bp.route('/api/admin/issues/<int:issue_id>/claim', methods=['GET'])
@login_required
@role_required('ADMIN')
def claim_detail(issue_id):
    return jsonify({'claim': format_claim(get_claim(issue_id))})


@bp.route('/api/admin/issues/<int:issue_id>/claim', methods=['PUT'])
@login_required
@role_required('ADMIN')
def claim_update(issue_id):
    data = get_json_body()
    issue = update_claim(
        issue_id,
        current_user,
        reference=data.get('claim_reference', UNSET),
        status=data.get('claim_status', UNSET),
        payout=data.get('claim_payout_amount', UNSET),
        notes=data.get('claim_notes', UNSET),
    )

    log_audit(
        actor=current_user,
        action='CLAIM_UPDATE',
        target_type='ISSUE',
        target_id=issue.id,
        payload={
            'claim_status': issue.claim_status.value,
            'claim_reference': issue.claim_reference,
        })

    return jsonify({'ok': True, 'claim': format_claim(issue)})


@bp.route('/api/admin/issues/<int:issue_id>/claim', methods=['POST'])
@login_required
@role_required('ADMIN')
def claim_submit(issue_id):
    data = get_json_body()
    issue = submit_claim(issue_id, current_user, data.get('claim_reference'))

    log_audit(
        actor=current_user,
        action='CLAIM_SUBMIT',
        target_type='ISSUE',
        target_id=issue.id,
        payload={'claim_reference': issue.claim_reference})

    return jsonify({
        'ok': True,
        'message': 'Claim marked as submitted',
        'claim': format_claim(issue),
    })


@bp.route('/api/admin/issues/<int:issue_id>/claim-report', methods=['GET'])
@login_required
@role_required('ADMIN')
def claim_report(issue_id):
    return jsonify({'report': build_claim_report(issue_id)})


@bp.route('/api/admin/carrier-claims', methods=['GET'])
@login_required
@role_required('ADMIN')
def carrier_claims():
    include_resolved = request.args.get(
        'include_resolved', '').lower() in ('1', 'true', 'yes')
    claims, summary = list_carrier_claims(include_resolved=include_resolved)
    return jsonify({'claims': claims, 'summary': summary})


@bp.route('/api/admin/issues/auto-close', methods=['GET'])
@cron_or_admin_required
def auto_close_preview():
    return jsonify(preview_auto_close())


@bp.route('/api/admin/issues/auto-close', methods=['POST'])
@cron_or_admin_required
def auto_close():
    closed_ids = auto_close_stale_issues()

    # Cron calls have no user and are audited as SYSTEM
    actor = None if has_cron_secret() else current_user
    for issue_id in closed_ids:
        log_audit(
            actor=actor,
            action='ISSUE_AUTO_CLOSE',
            target_type='ISSUE',
            target_id=issue_id)

    logger.info("Auto-close run closed %s issue(s)", len(closed_ids))
    return jsonify({
        'ok': True,
        'closed_count': len(closed_ids),
        'closed_issue_ids': closed_ids,
    })


