"""Which catalog events and trial events an authority may manage.

Directors see every catalog event in the tournament's effective division and
every declared trial event. Event supervisors see only the events on their
invitation and the declared trial events whose names their invitation lists.
Catalog events for all authorities are fetched in one query.
"""
from tourney_portal.models import Tournament, TournamentHostingRequest
from tourney_portal.services.catalog import divisions_for, effective_division, fetch_events_by_division
from tourney_portal.services.trial_events import name_key, parse_trial_events


class EventAccess:
    def __init__(self, authority, division, events, trial_events):
        self.authority = authority
        self.division = division
        self.events = events
        self.trial_events = trial_events
        self.event_ids = {event['id'] for event in events}
        self.trial_event_names = {name_key(trial_event.name) for trial_event in trial_events}

    def allows_event(self, event_id):
        return event_id in self.event_ids

    def allows_trial_event(self, name):
        return name_key(name) in self.trial_event_names

    def trial_event_named(self, name):
        for trial_event in self.trial_events:
            if name_key(trial_event.name) == name_key(name):
                return trial_event
        return None


def hosting_divisions(tournament_ids):
    """Hosting-request division per tournament id, for tournaments that have one."""
    ids = sorted(set(tournament_ids or []))
    if not ids:
        return {}
    rows = TournamentHostingRequest.query.join(
        Tournament, Tournament.hosting_request_id == TournamentHostingRequest.id,
    ).filter(Tournament.id.in_(ids)).with_entities(
        Tournament.id, TournamentHostingRequest.division,
    ).all()
    return {tournament_id: division for tournament_id, division in rows if division}


def resolve_event_access(authorities, hosting_division_map=None):
    """Return one ``EventAccess`` per authority, in the same order."""
    if hosting_division_map is None:
        hosting_division_map = hosting_divisions(
            [authority.tournament_id for authority in authorities]
        )

    divisions_by_tournament = {}
    for authority in authorities:
        tournament = authority.tournament
        divisions_by_tournament[authority.tournament_id] = effective_division(
            tournament['division'], hosting_division_map.get(authority.tournament_id),
        )

    needed = set()
    for authority in authorities:
        if authority.is_director:
            needed.update(divisions_for(divisions_by_tournament[authority.tournament_id]))
    catalog = fetch_events_by_division(needed)

    accesses = []
    for authority in authorities:
        tournament = authority.tournament
        division = divisions_by_tournament[authority.tournament_id]
        declared = parse_trial_events(
            tournament['trial_events'], tournament['division'],
            source=f'tournament {tournament["id"]}',
        )

        if authority.is_director:
            events = []
            for catalog_division in divisions_for(division):
                events.extend(catalog.get(catalog_division, []))
            events.sort(key=lambda event: (event['name'], event['id']))
            trial_events = declared
        else:
            events = list(authority.scoped_events)
            scoped_names = {name_key(name) for name in authority.scoped_trial_event_names}
            trial_events = [
                trial_event for trial_event in declared
                if name_key(trial_event.name) in scoped_names
            ]

        accesses.append(EventAccess(authority, division, events, trial_events))
    return accesses
