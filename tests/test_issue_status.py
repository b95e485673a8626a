from types import SimpleNamespace

import pytest

from storefront.models import IssueStatus, IssueResolvedType
from storefront.services.issue_status import (
    REVIEW_TRANSITIONS,
    STATUS_PRIORITY,
    can_process,
    can_review,
    can_withdraw,
    get_status_label,
    is_closed,
    is_pending,
    needs_attention,
    status_sort_key,
)


@pytest.mark.parametrize('status,expected', [
    (IssueStatus.SUBMITTED, True),
    (IssueStatus.AWAITING_REVIEW, True),
    (IssueStatus.INFO_REQUESTED, False),
    (IssueStatus.APPROVED_REFUND, False),
    (IssueStatus.COMPLETED, False),
])
def test_can_withdraw(status, expected):
    assert can_withdraw(status) is expected


def test_review_and_process_sets():
    assert can_review(IssueStatus.INFO_REQUESTED)
    assert not can_review(IssueStatus.REJECTED)
    assert can_process(IssueStatus.APPROVED_REPRINT)
    assert not can_process(IssueStatus.AWAITING_REVIEW)
    assert is_pending(IssueStatus.AWAITING_REVIEW)
    assert is_closed(IssueStatus.CLOSED)
    assert not is_closed(IssueStatus.REJECTED)


def test_review_transitions():
    assert REVIEW_TRANSITIONS['APPROVE_REPRINT'] == (
        IssueStatus.APPROVED_REPRINT, IssueResolvedType.REPRINT)
    assert REVIEW_TRANSITIONS['REJECT'][0] == IssueStatus.REJECTED


def test_needs_attention_ignores_concluded():
    issue = SimpleNamespace(status=IssueStatus.AWAITING_REVIEW,
                            is_concluded=False)
    assert needs_attention(issue)
    issue.is_concluded = True
    assert not needs_attention(issue)


def test_sort_key_follows_priority():
    assert status_sort_key(IssueStatus.AWAITING_REVIEW) == 0
    assert status_sort_key(IssueStatus.CLOSED) == len(STATUS_PRIORITY) - 1


def test_every_status_has_label():
    for status in IssueStatus:
        assert get_status_label(status)
    assert get_status_label(IssueStatus.APPROVED_REPRINT) == (
        'Approved - Reprint')
