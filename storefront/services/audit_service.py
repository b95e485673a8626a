from storefront.extensions import db
from storefront.models import AuditLog
from flask import has_request_context, request
import logging
import json

logger = logging.getLogger(__name__)
major_logger = logging.getLogger('major_events')

# Workflow actions that also land in the major events log.
MAJOR_ACTION_PREFIXES = (
    'LOGIN',
    'LOGOUT',
    'REGISTER',
    'ORDER_',
    'PAYMENT_',
    'ISSUE_',
    'RESOLUTION_',
    'CLAIM_',
)

SYSTEM_ROLE = 'SYSTEM'


def setup_major_events_log(path='major_events.log'):
    if major_logger.handlers:
        return
    handler = logging.FileHandler(path)
    handler.setFormatter(
        logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
    major_logger.addHandler(handler)
    major_logger.setLevel(logging.INFO)
    major_logger.propagate = False


def _should_log_major(action: str) -> bool:
    if not action:
        return False
    return action.startswith(MAJOR_ACTION_PREFIXES)


def _brief(payload):
    if payload is None:
        return None
    try:
        text = json.dumps(
            payload, ensure_ascii=False, default=str, separators=(',', ':'))
    except (TypeError, ValueError):
        return None
    if len(text) > 600:
        text = text[:600] + '...'
    return text


def log_audit(
        actor=None,
        action='',
        target_type=None,
        target_id=None,
        payload=None,
        actor_role=None):
    """Persist an audit row for a workflow step.

    ``actor`` is the acting user; when it is None the entry is recorded
    under the SYSTEM role (scheduled jobs, CLI). Audit failures are logged
    and rolled back, never raised into the workflow that triggered them.
    """
    actor_id = getattr(actor, 'id', None)
    if actor_role is None:
        role = getattr(actor, 'role', None)
        actor_role = getattr(role, 'value', role) or SYSTEM_ROLE

    ip = None
    user_agent = None
    method = None
    path = None
    if has_request_context():
        ip = request.remote_addr
        user_agent = request.headers.get('User-Agent')
        method = request.method
        path = request.path

    try:
        audit = AuditLog(
            actor_id=actor_id,
            actor_role=actor_role,
            action=action,
            target_type=target_type,
            target_id=target_id,
            ip=ip,
            user_agent=user_agent
        )
        if payload:
            audit.set_payload(json.loads(json.dumps(payload, default=str)))

        db.session.add(audit)
        db.session.commit()
    except Exception as e:
        logger.error(f"Failed to log audit: {e}", exc_info=True)
        db.session.rollback()
        return

    payload_brief = _brief(payload)
    logger.info(
        "AUDIT action=%s actor_role=%s actor_id=%s target_type=%s "
        "target_id=%s method=%s path=%s payload=%s",
        action,
        actor_role,
        actor_id,
        target_type,
        target_id,
        method,
        path,
        payload_brief,
    )

    if _should_log_major(action):
        major_logger.info(
            "action=%s actor_role=%s actor_id=%s target_type=%s "
            "target_id=%s payload=%s",
            action,
            actor_role,
            actor_id,
            target_type,
            target_id,
            payload_brief,
        )
