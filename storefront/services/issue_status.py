from storefront.models import IssueStatus, IssueResolvedType

WITHDRAWABLE_STATUSES = frozenset({
    IssueStatus.SUBMITTED,
    IssueStatus.AWAITING_REVIEW,
})

REVIEWABLE_STATUSES = frozenset({
    IssueStatus.AWAITING_REVIEW,
    IssueStatus.INFO_REQUESTED,
})

PENDING_STATUSES = REVIEWABLE_STATUSES

RESOLVED_STATUSES = frozenset({
    IssueStatus.COMPLETED,
    IssueStatus.CLOSED,
})

PROCESSABLE_STATUSES = frozenset({
    IssueStatus.APPROVED_REPRINT,
    IssueStatus.APPROVED_REFUND,
})

# Admin messaging stops here
CLOSED_STATUSES = RESOLVED_STATUSES

ATTENTION_STATUSES = frozenset({
    IssueStatus.AWAITING_REVIEW,
    IssueStatus.APPROVED_REPRINT,
    IssueStatus.APPROVED_REFUND,
})

# Sort order for admin listings
STATUS_PRIORITY = [
    IssueStatus.AWAITING_REVIEW,
    IssueStatus.SUBMITTED,
    IssueStatus.INFO_REQUESTED,
    IssueStatus.APPROVED_REPRINT,
    IssueStatus.APPROVED_REFUND,
    IssueStatus.PROCESSING,
    IssueStatus.REJECTED,
    IssueStatus.COMPLETED,
    IssueStatus.CLOSED,
]

REVIEW_ACTIONS = ('APPROVE_REPRINT', 'APPROVE_REFUND', 'REQUEST_INFO', 'REJECT')

# action -> (new status, resolved type)
REVIEW_TRANSITIONS = {
    'APPROVE_REPRINT': (IssueStatus.APPROVED_REPRINT, IssueResolvedType.REPRINT),
    'APPROVE_REFUND': (IssueStatus.APPROVED_REFUND,
                       IssueResolvedType.FULL_REFUND),
    'REQUEST_INFO': (IssueStatus.INFO_REQUESTED, None),
    'REJECT': (IssueStatus.REJECTED, None),
}

DEFAULT_REVIEW_MESSAGES = {
    'APPROVE_REPRINT': (
        'Your issue has been approved for a free reprint. '
        'We will process this shortly.'
    ),
    'APPROVE_REFUND': (
        'Your issue has been approved for a refund. '
        'We will process this shortly.'
    ),
}

STATUS_LABELS = {
    IssueStatus.SUBMITTED: 'Submitted',
    IssueStatus.AWAITING_REVIEW: 'Awaiting Review',
    IssueStatus.INFO_REQUESTED: 'Info Requested',
    IssueStatus.APPROVED_REPRINT: 'Approved - Reprint',
    IssueStatus.APPROVED_REFUND: 'Approved - Refund',
    IssueStatus.PROCESSING: 'Processing',
    IssueStatus.COMPLETED: 'Completed',
    IssueStatus.REJECTED: 'Rejected',
    IssueStatus.CLOSED: 'Closed',
}


def can_withdraw(status: IssueStatus) -> bool:
    return status in WITHDRAWABLE_STATUSES


def can_review(status: IssueStatus) -> bool:
    return status in REVIEWABLE_STATUSES


def is_pending(status: IssueStatus) -> bool:
    return status in PENDING_STATUSES


def is_resolved(status: IssueStatus) -> bool:
    return status in RESOLVED_STATUSES


def can_process(status: IssueStatus) -> bool:
    return status in PROCESSABLE_STATUSES


def is_closed(status: IssueStatus) -> bool:
    return status in CLOSED_STATUSES


def needs_attention(issue) -> bool:
    return issue.status in ATTENTION_STATUSES and not issue.is_concluded


def status_sort_key(status: IssueStatus) -> int:
    try:
        return STATUS_PRIORITY.index(status)
    except ValueError:
        return len(STATUS_PRIORITY)


def get_status_label(status: IssueStatus) -> str:
    return STATUS_LABELS.get(status, status.value)
