"""Tournament team registration."""
from flask import Blueprint, request, jsonify
from tourney_portal.app import db
from tourney_portal.auth_utils import login_required
from tourney_portal.errors import NotFoundError
from tourney_portal.models import Tournament
from tourney_portal.services.registration import normalize_registration_payload, register_teams

registrations_bp = Blueprint('registrations', __name__)


@registrations_bp.route('/<int:tournament_id>/register', methods=['POST'])
@login_required
def register_for_tournament(tournament_id):
    """Register one or more of a club's teams, all or nothing."""
    tournament = db.session.get(Tournament, tournament_id)
    if not tournament:
        raise NotFoundError('Tournament not found')

    payloads = normalize_registration_payload(request.get_json(silent=True))
    registrations = register_teams(tournament, request.current_user, payloads)
    return jsonify({
        'registrations': [registration.to_dict() for registration in registrations],
    }), 201
