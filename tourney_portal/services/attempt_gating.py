"""Read-time attempt policy for club tests and ES tests.

Nothing here is persisted. The entitlement feed calls these checks as an
advisory hint, the attempt-start route calls them as the authoritative gate.
"""
from datetime import timedelta

from flask import current_app
from sqlalchemy import func

from tourney_portal.app import db
from tourney_portal.models import (
    ESTestAttempt, TestAttempt, TEST_PUBLISHED, COMPLETED_ATTEMPT_STATUSES,
    TEST_KIND_ES,
)
from tourney_portal.time_utils import utcnow_naive


def attempt_model_for(test_kind):
    return ESTestAttempt if test_kind == TEST_KIND_ES else TestAttempt


def check_availability(test, now=None):
    """Return ``(available, reason)`` for the test's status and time window."""
    now = now or utcnow_naive()
    if test.status != TEST_PUBLISHED:
        return False, 'Test is not published'
    if test.start_at and now < test.start_at:
        return False, 'Test has not started yet'
    if test.end_at:
        deadline = test.allow_late_until or test.end_at
        if now > deadline:
            return False, 'Test deadline has passed'
    return True, None


def completed_attempt_counts(test_kind, test_ids, membership_ids):
    """Completed (submitted or graded) attempts keyed by ``(membership_id, test_id)``."""
    ids = sorted({test_id for test_id in test_ids or [] if test_id is not None})
    members = sorted({member_id for member_id in membership_ids or [] if member_id is not None})
    if not ids or not members:
        return {}
    model = attempt_model_for(test_kind)
    rows = db.session.query(model.membership_id, model.test_id, func.count(model.id)).filter(
        model.test_id.in_(ids),
        model.membership_id.in_(members),
        model.status.in_(COMPLETED_ATTEMPT_STATUSES),
    ).group_by(model.membership_id, model.test_id).all()
    return {(member_id, test_id): int(count) for member_id, test_id, count in rows}


def attempts_exhausted(max_attempts, completed_count):
    if max_attempts is None:
        return False
    return completed_count >= max_attempts


def can_start_attempt(test, completed_count, now=None):
    available, reason = check_availability(test, now)
    if not available:
        return False, reason
    if attempts_exhausted(test.max_attempts, completed_count):
        return False, 'Maximum attempts reached'
    return True, None


def scores_released(test_kind, test, now=None):
    now = now or utcnow_naive()
    if test_kind == TEST_KIND_ES:
        if test.scores_released:
            return True
        return bool(test.release_scores_at and now >= test.release_scores_at)

    if not test.release_scores_at:
        return False
    grace = timedelta(seconds=current_app.config.get('SCORE_RELEASE_GRACE_SECONDS', 1))
    return now >= test.release_scores_at - grace


def can_view_results(has_completed_attempt, released):
    return bool(has_completed_attempt and released)
