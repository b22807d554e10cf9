"""Member-facing test feed and attempt lifecycle."""
from flask import Blueprint, request, jsonify
from tourney_portal.auth_utils import login_required
from tourney_portal.errors import NotFoundError
from tourney_portal.models import TEST_KIND_CLUB, TEST_KIND_ES
from tourney_portal.services.attempts import start_attempt, submit_attempt
from tourney_portal.services.entitlements import build_member_test_feed

testing_bp = Blueprint('testing', __name__)

# URL segment -> stored test kind
_KINDS = {'club': TEST_KIND_CLUB, 'es': TEST_KIND_ES}


def _test_kind(raw_kind):
    kind = _KINDS.get(str(raw_kind or '').strip().lower())
    if not kind:
        raise NotFoundError('Unknown test kind')
    return kind


@testing_bp.route('/tournaments', methods=['GET'])
@login_required
def get_testing_tournaments():
    return jsonify({'tournaments': build_member_test_feed(request.current_user)})


@testing_bp.route('/tests/<kind>/<int:test_id>/attempts/start', methods=['POST'])
@login_required
def start_test_attempt(kind, test_id):
    attempt, created = start_attempt(request.current_user, _test_kind(kind), test_id)
    return jsonify({'attempt': attempt.to_dict(), 'resumed': not created}), 201 if created else 200


@testing_bp.route('/attempts/<kind>/<int:attempt_id>/submit', methods=['POST'])
@login_required
def submit_test_attempt(kind, attempt_id):
    attempt = submit_attempt(request.current_user, _test_kind(kind), attempt_id)
    return jsonify({'attempt': attempt.to_dict()})
