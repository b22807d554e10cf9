"""Starting and submitting attempts, the authoritative side of attempt gating."""
import logging

from tourney_portal.app import db
from tourney_portal.errors import AuthorizationError, ConflictError, NotFoundError
from tourney_portal.models import (
    ESTest, Membership, Test, ATTEMPT_IN_PROGRESS, ATTEMPT_SUBMITTED, TEST_KIND_ES,
)
from tourney_portal.services.attempt_gating import (
    attempt_model_for, can_start_attempt, completed_attempt_counts,
)
from tourney_portal.services.entitlements import find_member_test
from tourney_portal.time_utils import utcnow_naive

logger = logging.getLogger(__name__)


def _load_test(test_kind, test_id):
    model = ESTest if test_kind == TEST_KIND_ES else Test
    test = db.session.get(model, test_id)
    if not test:
        raise NotFoundError('Test not found')
    return test


def start_attempt(user, test_kind, test_id):
    """Return ``(attempt, created)``; an attempt already in progress is resumed."""
    test = _load_test(test_kind, test_id)

    found = find_member_test(user, test_kind, test_id)
    if not found:
        raise AuthorizationError('You are not registered for an event that includes this test')
    item, _ = found
    membership_id = item['registration']['membershipId']

    model = attempt_model_for(test_kind)
    in_progress = model.query.filter_by(
        test_id=test.id, membership_id=membership_id, status=ATTEMPT_IN_PROGRESS,
    ).order_by(model.started_at.desc()).first()
    if in_progress:
        return in_progress, False

    # Count and insert are not serialized; concurrent starts can overshoot max_attempts.
    completed = completed_attempt_counts(test_kind, [test.id], [membership_id]).get(
        (membership_id, test.id), 0,
    )
    allowed, reason = can_start_attempt(test, completed)
    if not allowed:
        raise AuthorizationError(reason)

    attempt = model(test_id=test.id, membership_id=membership_id, status=ATTEMPT_IN_PROGRESS)
    try:
        db.session.add(attempt)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info('Membership %s started %s attempt %s on test %s',
                membership_id, test_kind, attempt.id, test.id)
    return attempt, True


def submit_attempt(user, test_kind, attempt_id):
    model = attempt_model_for(test_kind)
    attempt = model.query.join(Membership, model.membership_id == Membership.id).filter(
        model.id == attempt_id,
        Membership.user_id == user.id,
    ).first()
    if not attempt:
        raise NotFoundError('Attempt not found')
    if attempt.status != ATTEMPT_IN_PROGRESS:
        raise ConflictError('Attempt has already been submitted')

    attempt.status = ATTEMPT_SUBMITTED
    attempt.submitted_at = utcnow_naive()
    db.session.commit()
    return attempt
