"""Tournament authority for a user, folded from four independent grant sources.

Sources in priority order:

1. accepted staff invitations (by user id or case-insensitive email)
2. tournament admin grants
3. tournaments the user created
4. approved hosting requests naming the user's email as director

Only a staff invitation can narrow authority to specific events; the other
three always grant director-level authority over the whole tournament. When
several sources name the same tournament, the first one in priority order
wins and the rest are discarded.
"""
from sqlalchemy import func, or_
from sqlalchemy.orm import joinedload

from tourney_portal.models import (
    Tournament, TournamentAdmin, TournamentHostingRequest, TournamentStaff,
    STAFF_EVENT_SUPERVISOR, STAFF_TOURNAMENT_DIRECTOR,
)
from tourney_portal.services.fanout import gather
from tourney_portal.services.trial_events import parse_trial_event_names
from tourney_portal.time_utils import to_iso

SOURCE_STAFF_INVITATION = 'STAFF_INVITATION'
SOURCE_ADMIN_GRANT = 'ADMIN_GRANT'
SOURCE_CREATOR_GRANT = 'CREATOR_GRANT'
SOURCE_HOSTING_DIRECTOR_GRANT = 'HOSTING_DIRECTOR_GRANT'

SOURCE_PRIORITY = (
    SOURCE_STAFF_INVITATION,
    SOURCE_ADMIN_GRANT,
    SOURCE_CREATOR_GRANT,
    SOURCE_HOSTING_DIRECTOR_GRANT,
)


class Authority:
    """One user's authority over one tournament.

    ``source`` plus ``source_id`` identify the grant row it came from (staff
    invitation id, admin grant id, tournament id, hosting request id).
    Empty scopes on a director-level authority mean "everything".
    """

    def __init__(self, source, source_id, tournament, role,
                 scoped_events=None, scoped_trial_event_names=None, staff=None):
        self.source = source
        self.source_id = source_id
        self.tournament = tournament
        self.role = role
        self.scoped_events = list(scoped_events or [])
        self.scoped_trial_event_names = list(scoped_trial_event_names or [])
        self.staff = staff

    @property
    def tournament_id(self):
        return self.tournament['id']

    @property
    def is_director(self):
        return self.role == STAFF_TOURNAMENT_DIRECTOR

    def to_dict(self):
        staff = self.staff or {}
        return {
            'source': self.source,
            'sourceId': self.source_id,
            'role': self.role,
            'email': staff.get('email'),
            'name': staff.get('name'),
            'status': staff.get('status', 'ACCEPTED'),
            'invitedAt': staff.get('invited_at'),
            'acceptedAt': staff.get('accepted_at'),
        }


def _tournament_snapshot(tournament):
    return {
        'id': tournament.id,
        'name': tournament.name,
        'slug': tournament.slug,
        'division': tournament.division,
        'start_date': to_iso(tournament.start_date),
        'trial_events': tournament.trial_events,
        'created_by_id': tournament.created_by_id,
        'hosting_request_id': tournament.hosting_request_id,
    }


def _email_matches(column, email):
    return func.lower(column) == str(email or '').strip().lower()


def _staff_invitations(user_id, email):
    staff_rows = TournamentStaff.query.options(joinedload(TournamentStaff.tournament)).filter(
        TournamentStaff.status == 'ACCEPTED',
        or_(TournamentStaff.user_id == user_id, _email_matches(TournamentStaff.email, email)),
    ).order_by(TournamentStaff.invited_at.asc(), TournamentStaff.id.asc()).all()

    authorities = []
    for staff in staff_rows:
        role = staff.role if staff.role == STAFF_TOURNAMENT_DIRECTOR else STAFF_EVENT_SUPERVISOR
        scoped_events = []
        scoped_trial_event_names = []
        if role == STAFF_EVENT_SUPERVISOR:
            scoped_events = sorted(
                (link.event.to_dict() for link in staff.events if link.event),
                key=lambda event: (event['name'], event['id']),
            )
            scoped_trial_event_names = parse_trial_event_names(
                staff.trial_events, source=f'staff invitation {staff.id}',
            )
        authorities.append(Authority(
            SOURCE_STAFF_INVITATION, staff.id, _tournament_snapshot(staff.tournament), role,
            scoped_events=scoped_events,
            scoped_trial_event_names=scoped_trial_event_names,
            staff=staff.to_dict(),
        ))
    return authorities


def _admin_grants(user_id, email):
    grants = TournamentAdmin.query.options(joinedload(TournamentAdmin.tournament)).filter_by(
        user_id=user_id,
    ).order_by(TournamentAdmin.id.asc()).all()
    return [
        Authority(SOURCE_ADMIN_GRANT, grant.id, _tournament_snapshot(grant.tournament),
                  STAFF_TOURNAMENT_DIRECTOR)
        for grant in grants if grant.tournament
    ]


def _creator_grants(user_id, email):
    tournaments = Tournament.query.filter_by(created_by_id=user_id).order_by(Tournament.id.asc()).all()
    return [
        Authority(SOURCE_CREATOR_GRANT, tournament.id, _tournament_snapshot(tournament),
                  STAFF_TOURNAMENT_DIRECTOR)
        for tournament in tournaments
    ]


def _hosting_director_grants(user_id, email):
    requests = TournamentHostingRequest.query.options(
        joinedload(TournamentHostingRequest.tournament),
    ).filter(
        TournamentHostingRequest.status == 'APPROVED',
        _email_matches(TournamentHostingRequest.director_email, email),
    ).order_by(TournamentHostingRequest.id.asc()).all()
    return [
        Authority(SOURCE_HOSTING_DIRECTOR_GRANT, hosting_request.id,
                  _tournament_snapshot(hosting_request.tournament), STAFF_TOURNAMENT_DIRECTOR)
        for hosting_request in requests if hosting_request.tournament
    ]


_SOURCE_QUERIES = {
    SOURCE_STAFF_INVITATION: _staff_invitations,
    SOURCE_ADMIN_GRANT: _admin_grants,
    SOURCE_CREATOR_GRANT: _creator_grants,
    SOURCE_HOSTING_DIRECTOR_GRANT: _hosting_director_grants,
}


def merge_authorities(*sources):
    """Fold authority lists, given in priority order, into one per tournament."""
    merged = {}
    for authorities in sources:
        for authority in authorities:
            merged.setdefault(authority.tournament_id, authority)
    return list(merged.values())


def collect_authorities(user_id, email):
    results = gather(*((_SOURCE_QUERIES[source], user_id, email) for source in SOURCE_PRIORITY))
    return merge_authorities(*results)


def authority_for_tournament(user_id, email, tournament_id):
    for authority in collect_authorities(user_id, email):
        if authority.tournament_id == tournament_id:
            return authority
    return None
