from datetime import datetime
from storefront.extensions import db
from storefront.errors import ServiceError, NotFoundError, PermissionDeniedError
from storefront.models import Issue, IssueMessage, IssueStatus, MessageSender
from storefront.services.issue_status import is_closed
from storefront.utils import clean_text, iso
import logging

logger = logging.getLogger(__name__)


def get_issue_or_404(issue_id) -> Issue:
    issue = db.session.get(Issue, issue_id)
    if not issue:
        raise NotFoundError('Issue not found')
    return issue


def ensure_owner(issue, customer):
    if issue.order.customer_id != customer.id:
        logger.warning(
            "User %s attempted to access issue %s",
            customer.id,
            issue.id,
        )
        raise PermissionDeniedError('Access denied')


def add_message(issue, sender, sender_id, content, image_urls=None):
    """Append a message to the thread; the caller commits."""
    message = IssueMessage(
        issue=issue,
        sender=sender,
        sender_id=sender_id,
        content=content,
    )
    if image_urls:
        message.set_image_urls(image_urls)
    db.session.add(message)
    return message


def format_message(message):
    author = message.author
    return {
        'id': message.id,
        'issue_id': message.issue_id,
        'sender': message.sender.value,
        'sender_id': message.sender_id,
        'sender_name': (author.name or author.email) if author else None,
        'is_system': message.sender_id is None,
        'content': message.content,
        'image_urls': message.get_image_urls(),
        'read_at': iso(message.read_at),
        'created_at': iso(message.created_at),
    }


def get_issue_messages(issue_id):
    return IssueMessage.query.filter_by(issue_id=issue_id).order_by(
        IssueMessage.created_at.asc(), IssueMessage.id.asc()).all()


def get_latest_message(issue_id):
    return IssueMessage.query.filter_by(issue_id=issue_id).order_by(
        IssueMessage.created_at.desc(), IssueMessage.id.desc()).first()


def count_unread(issue_id, sender: MessageSender) -> int:
    return IssueMessage.query.filter(
        IssueMessage.issue_id == issue_id,
        IssueMessage.sender == sender,
        IssueMessage.read_at.is_(None),
    ).count()


def mark_messages_read(issue_id, sender: MessageSender, now=None) -> int:
    """Mark unread messages from ``sender`` as read, return how many."""
    count = IssueMessage.query.filter(
        IssueMessage.issue_id == issue_id,
        IssueMessage.sender == sender,
        IssueMessage.read_at.is_(None),
    ).update(
        {'read_at': now or datetime.utcnow()},
        synchronize_session=False,
    )
    db.session.commit()
    return count


def send_customer_message(issue_id, customer, content, image_urls=None):
    content = clean_text(content)
    if not content:
        raise ServiceError('Message content is required')

    issue = get_issue_or_404(issue_id)
    ensure_owner(issue, customer)

    if issue.is_concluded:
        raise ServiceError(
            'This issue has been concluded and no longer accepts messages')

    message = add_message(
        issue,
        MessageSender.CUSTOMER,
        customer.id,
        content,
        image_urls,
    )

    # A reply to an info request puts the issue back in the review queue
    status_changed = False
    if issue.status == IssueStatus.INFO_REQUESTED:
        issue.status = IssueStatus.AWAITING_REVIEW
        status_changed = True

    db.session.commit()

    if status_changed:
        logger.info(
            "Issue %s back to AWAITING_REVIEW after customer reply",
            issue.id,
        )
    return message, status_changed


def send_admin_message(issue_id, admin, content, image_urls=None):
    content = clean_text(content)
    if not content:
        raise ServiceError('Message content is required')

    issue = get_issue_or_404(issue_id)

    if is_closed(issue.status):
        raise ServiceError(
            'This issue has been closed and no longer accepts messages')

    message = add_message(
        issue,
        MessageSender.ADMIN,
        admin.id,
        content,
        image_urls,
    )
    db.session.commit()
    return message
