"""Append-only audit entries for test create/update/delete.

For tests written against a trial event there is no event id to store, so the
``eventName`` in the CREATE entry is the only record of which trial event the
test belongs to.
"""
import json

from tourney_portal.app import db
from tourney_portal.models import TestAuditLog

ACTION_CREATE = 'CREATE'
ACTION_UPDATE = 'UPDATE'
ACTION_DELETE = 'DELETE'


def record_test_audit(test_kind, test_id, action, actor_user_id=None, details=None):
    """Stage an audit row on the session; the caller owns the commit."""
    entry = TestAuditLog(
        test_kind=test_kind,
        test_id=test_id,
        action=action,
        actor_user_id=actor_user_id,
        details=json.dumps(details or {}),
    )
    db.session.add(entry)
    return entry


def latest_create_event_names(test_kind, test_ids):
    """Map test id -> trial event name from its most recent CREATE entry.

    Tests without a CREATE entry, or whose entry carries no name, are absent
    from the result and count as general tests.
    """
    ids = sorted({int(test_id) for test_id in test_ids or [] if test_id is not None})
    if not ids:
        return {}

    rows = TestAuditLog.query.filter(
        TestAuditLog.test_kind == test_kind,
        TestAuditLog.action == ACTION_CREATE,
        TestAuditLog.test_id.in_(ids),
    ).order_by(TestAuditLog.created_at.desc(), TestAuditLog.id.desc()).all()

    names = {}
    for row in rows:
        if row.test_id in names:
            continue
        name = str(row.details_data.get('eventName') or '').strip()
        names[row.test_id] = name or None
    return {test_id: name for test_id, name in names.items() if name}
