"""Team registration intake for tournaments.

Two request shapes are accepted and normalized to a list of per-team payloads:

    {"clubId": 1, "teamIds": [3, 4], "teamSelections": {"3": {...}, "4": {...}}}
    {"registrations": [{"clubId": 1, "teamId": 3, ...}, ...]}

Every payload is validated before anything is written. The first failure
aborts the whole request, and all registrations are committed together.
"""
import logging

from tourney_portal.app import db
from tourney_portal.errors import AuthorizationError, ValidationError
from tourney_portal.models import (
    Club, Event, Membership, Team, TournamentEventSelection, TournamentMemberEventAssignment,
    TournamentMemberTrialEventAssignment, TournamentRegistration, TournamentTrialEventSelection,
    ROLE_ADMIN,
)
from tourney_portal.services.catalog import divisions_for, effective_division
from tourney_portal.services.trial_events import (
    dedupe_requested_selections, parse_trial_events, resolve_requested_trial_events,
)

logger = logging.getLogger(__name__)


def _coerce_id(value, label):
    if isinstance(value, bool):
        raise ValidationError(f'Invalid {label}')
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f'Invalid {label}')


def _coerce_id_list(values, label):
    if values is None:
        return []
    if not isinstance(values, list):
        raise ValidationError(f'{label} must be a list')
    ids = []
    for value in values:
        if value is None or str(value).strip() == '':
            continue
        coerced = _coerce_id(value, label)
        if coerced not in ids:
            ids.append(coerced)
    return ids


def _trial_selection_list(values):
    if values is None:
        return []
    if not isinstance(values, list):
        raise ValidationError('trialEventSelections must be a list')
    return dedupe_requested_selections(values)


def merge_member_assignments(assignments):
    """Collapse repeated entries for the same membership into one assignment."""
    if assignments is None:
        return []
    if not isinstance(assignments, list):
        raise ValidationError('memberAssignments must be a list')

    merged = {}
    for assignment in assignments:
        if not isinstance(assignment, dict) or assignment.get('membershipId') in (None, ''):
            continue
        membership_id = _coerce_id(assignment['membershipId'], 'membershipId')
        entry = merged.setdefault(membership_id, {
            'membershipId': membership_id, 'eventIds': [], 'trialEventSelections': [],
        })
        for event_id in _coerce_id_list(assignment.get('eventIds'), 'eventIds'):
            if event_id not in entry['eventIds']:
                entry['eventIds'].append(event_id)
        entry['trialEventSelections'] = dedupe_requested_selections(
            entry['trialEventSelections'] + _trial_selection_list(assignment.get('trialEventSelections'))
        )
    return list(merged.values())


def _team_payload(club_id, team_id, selection):
    selection = selection or {}
    if not isinstance(selection, dict):
        raise ValidationError('Invalid input')
    return {
        'clubId': club_id,
        'teamId': team_id,
        'eventIds': _coerce_id_list(selection.get('eventIds'), 'eventIds'),
        'trialEventSelections': _trial_selection_list(selection.get('trialEventSelections')),
        'memberAssignments': merge_member_assignments(selection.get('memberAssignments')),
    }


def normalize_registration_payload(body):
    """Turn either request shape into a list of per-team payload dicts."""
    if not isinstance(body, dict):
        raise ValidationError('Invalid input')

    if body.get('clubId') not in (None, '') and isinstance(body.get('teamIds'), list):
        club_id = _coerce_id(body['clubId'], 'clubId')
        team_ids = _coerce_id_list(body['teamIds'], 'teamIds')
        if not team_ids:
            raise ValidationError('At least one team must be selected')
        selections = body.get('teamSelections') or {}
        if not isinstance(selections, dict):
            raise ValidationError('Invalid input')
        by_team = {}
        for key, selection in selections.items():
            by_team[_coerce_id(key, 'teamSelections key')] = selection
        return [_team_payload(club_id, team_id, by_team.get(team_id)) for team_id in team_ids]

    registrations = body.get('registrations')
    if isinstance(registrations, list):
        if not registrations:
            raise ValidationError('At least one team must be registered')
        payloads = []
        for registration in registrations:
            if not isinstance(registration, dict) or registration.get('clubId') in (None, ''):
                raise ValidationError('Invalid input')
            raw_team = registration.get('teamId')
            if raw_team in (None, ''):
                raw_team = registration.get('subclubId')
            team_id = None if raw_team in (None, '') else _coerce_id(raw_team, 'teamId')
            payloads.append(_team_payload(
                _coerce_id(registration['clubId'], 'clubId'), team_id, registration,
            ))
        return payloads

    raise ValidationError('Invalid input')


def _require_club_admin(user, club_id):
    membership = Membership.query.filter_by(user_id=user.id, club_id=club_id).first()
    if not membership:
        raise AuthorizationError(f'You must be a member of club {club_id}')
    if membership.role != ROLE_ADMIN:
        raise AuthorizationError(
            f'You must be an admin of {membership.club.name} to register for tournaments'
        )


def _team_member_ids(club_id, team_id):
    team = Team.query.filter_by(id=team_id, club_id=club_id).first()
    if not team:
        raise ValidationError('Team does not belong to the specified club')
    rows = Membership.query.filter_by(club_id=club_id, team_id=team_id).with_entities(Membership.id).all()
    return {row.id for row in rows}


def _registration_label(club_id, team_id):
    club = db.session.get(Club, club_id)
    team = db.session.get(Team, team_id) if team_id else None
    if team:
        return f'{club.name if club else "Club"} - {team.name}'
    return club.name if club else 'This club'


def _validate_payload(tournament, user, payload, allowed_divisions, available_trial_events):
    club_id = payload['clubId']
    team_id = payload['teamId']

    _require_club_admin(user, club_id)

    team_member_ids = set()
    if team_id is not None:
        team_member_ids = _team_member_ids(club_id, team_id)
    elif payload['memberAssignments']:
        raise ValidationError('Member assignments require a specific team registration')

    existing = TournamentRegistration.query.filter_by(
        tournament_id=tournament.id, club_id=club_id, team_id=team_id,
    ).first()
    if existing:
        raise ValidationError(
            f'{_registration_label(club_id, team_id)} is already registered for this tournament'
        )

    event_ids = list(payload['eventIds'])
    requested_trials = list(payload['trialEventSelections'])
    for assignment in payload['memberAssignments']:
        for event_id in assignment['eventIds']:
            if event_id not in event_ids:
                event_ids.append(event_id)
        requested_trials.extend(assignment['trialEventSelections'])
    requested_trials = dedupe_requested_selections(requested_trials)

    if event_ids:
        matched = Event.query.filter(
            Event.id.in_(event_ids), Event.division.in_(allowed_divisions),
        ).count()
        if matched != len(event_ids):
            raise ValidationError('Some events are invalid or do not match tournament division')

    trial_events = []
    if requested_trials:
        if not available_trial_events:
            raise ValidationError('This tournament does not have trial events enabled')
        trial_events = resolve_requested_trial_events(
            requested_trials, available_trial_events, tournament.division,
        )

    if not event_ids and not trial_events:
        raise ValidationError(
            'Each team registration must include at least one event or trial event selection'
        )

    allowed_event_ids = set(event_ids)
    allowed_trial_keys = {trial_event.key for trial_event in trial_events}
    assignments = []
    for assignment in payload['memberAssignments']:
        if team_id is not None and assignment['membershipId'] not in team_member_ids:
            raise ValidationError('One or more assigned members are not on the selected team')

        if any(event_id not in allowed_event_ids for event_id in assignment['eventIds']):
            raise ValidationError('Assigned member includes an event not selected for the team')

        member_trials = resolve_requested_trial_events(
            assignment['trialEventSelections'], available_trial_events, tournament.division,
        )
        if any(trial_event.key not in allowed_trial_keys for trial_event in member_trials):
            raise ValidationError('Assigned member includes a trial event not selected for the team')

        if not assignment['eventIds'] and not member_trials:
            continue
        assignments.append({
            'membershipId': assignment['membershipId'],
            'eventIds': list(assignment['eventIds']),
            'trialEvents': member_trials,
        })

    if team_id is not None and not assignments:
        raise ValidationError('Assign at least one team member to at least one event before registering')

    return {
        'clubId': club_id,
        'teamId': team_id,
        'eventIds': event_ids,
        'trialEvents': trial_events,
        'memberAssignments': assignments,
    }


def _build_registration(tournament, user, validated):
    registration = TournamentRegistration(
        tournament_id=tournament.id,
        club_id=validated['clubId'],
        team_id=validated['teamId'],
        registered_by_id=user.id,
        status='CONFIRMED',
    )
    for event_id in validated['eventIds']:
        registration.event_selections.append(TournamentEventSelection(event_id=event_id))
    for trial_event in validated['trialEvents']:
        registration.trial_event_selections.append(TournamentTrialEventSelection(
            event_name=trial_event.name, event_division=trial_event.division,
        ))
    for assignment in validated['memberAssignments']:
        for event_id in assignment['eventIds']:
            registration.member_event_assignments.append(TournamentMemberEventAssignment(
                membership_id=assignment['membershipId'], event_id=event_id,
            ))
        for trial_event in assignment['trialEvents']:
            registration.member_trial_event_assignments.append(TournamentMemberTrialEventAssignment(
                membership_id=assignment['membershipId'],
                event_name=trial_event.name,
                event_division=trial_event.division,
            ))
    return registration


def register_teams(tournament, user, payloads):
    """Validate every payload, then persist all registrations in one commit."""
    hosting_division = tournament.hosting_request.division if tournament.hosting_request else None
    allowed_divisions = divisions_for(effective_division(tournament.division, hosting_division))
    available_trial_events = parse_trial_events(
        tournament.trial_events, tournament.division, source=f'tournament {tournament.id}',
    )

    validated = []
    seen_targets = set()
    for payload in payloads:
        target = (payload['clubId'], payload['teamId'])
        if target in seen_targets:
            raise ValidationError('The same team appears more than once in this registration')
        seen_targets.add(target)
        validated.append(_validate_payload(
            tournament, user, payload, allowed_divisions, available_trial_events,
        ))

    registrations = [_build_registration(tournament, user, item) for item in validated]
    try:
        db.session.add_all(registrations)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        'User %s registered %d team(s) for tournament %s',
        user.id, len(registrations), tournament.id,
    )
    return registrations
