"""Test entitlement feeds.

A test is entitled to an actor when its event is one the actor may access,
or when it has no event and is either a general test or was written for a
trial event the actor may access. The trial event of an event-less test is
the name recorded in its most recent CREATE audit entry.

``build_member_test_feed`` serves team members (what they can take),
``build_staff_test_feed`` serves staff and directors (what they can manage).
Independent queries in both feeds run through ``gather``.
"""
from sqlalchemy import and_, or_
from sqlalchemy.orm import joinedload

from tourney_portal.auth_utils import verified_email
from tourney_portal.models import (
    Membership, TournamentMemberEventAssignment, TournamentMemberTrialEventAssignment,
    TournamentRegistration, TEST_KIND_CLUB, TEST_KIND_ES,
)
from tourney_portal.services.attempt_gating import (
    attempts_exhausted, can_start_attempt, can_view_results, completed_attempt_counts,
    scores_released,
)
from tourney_portal.services.audit import latest_create_event_names
from tourney_portal.services.authority import collect_authorities
from tourney_portal.services.event_access import hosting_divisions, resolve_event_access
from tourney_portal.services.fanout import gather
from tourney_portal.services.test_payloads import (
    es_tests_for_tournaments, member_test_payload, published_tournament_tests, staff_test_payload,
)
from tourney_portal.services.trial_events import name_key
from tourney_portal.time_utils import combine_date_and_time, utcnow_naive


def tournament_ended(tournament, now=None):
    now = now or utcnow_naive()
    ends_at = combine_date_and_time(tournament.end_date, tournament.end_time)
    return bool(ends_at and now > ends_at)


# ── Member feed ───────────────────────────────────────────────────────

def _member_memberships(user_id):
    return [
        membership.to_dict()
        for membership in Membership.query.filter_by(user_id=user_id).order_by(Membership.id.asc()).all()
    ]


def _confirmed_registrations(memberships):
    team_ids = sorted({m['team_id'] for m in memberships if m['team_id'] is not None})
    club_ids = sorted({m['club_id'] for m in memberships})
    if not club_ids:
        return []

    conditions = [and_(TournamentRegistration.team_id.is_(None),
                       TournamentRegistration.club_id.in_(club_ids))]
    if team_ids:
        conditions.append(TournamentRegistration.team_id.in_(team_ids))

    registrations = TournamentRegistration.query.options(
        joinedload(TournamentRegistration.tournament),
        joinedload(TournamentRegistration.club),
        joinedload(TournamentRegistration.team),
    ).filter(
        TournamentRegistration.status == 'CONFIRMED',
        or_(*conditions),
    ).order_by(TournamentRegistration.id.asc()).all()

    rows = []
    for registration in registrations:
        tournament = registration.tournament
        rows.append({
            'id': registration.id,
            'club_id': registration.club_id,
            'team_id': registration.team_id,
            'club': {'id': registration.club.id, 'name': registration.club.name},
            'team': {'id': registration.team.id, 'name': registration.team.name}
            if registration.team else None,
            'tournament': tournament.to_dict(),
            'tournament_ended': tournament_ended(tournament),
        })
    return rows


def _match_membership(registration, memberships):
    for membership in memberships:
        if membership['club_id'] != registration['club_id']:
            continue
        if registration['team_id'] is None or membership['team_id'] == registration['team_id']:
            return membership
    return None


def _assigned_events(registration_ids, membership_ids):
    if not registration_ids:
        return []
    rows = TournamentMemberEventAssignment.query.filter(
        TournamentMemberEventAssignment.registration_id.in_(registration_ids),
        TournamentMemberEventAssignment.membership_id.in_(membership_ids),
    ).order_by(TournamentMemberEventAssignment.id.asc()).all()
    return [
        {'registration_id': row.registration_id, 'membership_id': row.membership_id,
         'event': row.event.to_dict()}
        for row in rows if row.event
    ]


def _assigned_trial_events(registration_ids, membership_ids):
    if not registration_ids:
        return []
    rows = TournamentMemberTrialEventAssignment.query.filter(
        TournamentMemberTrialEventAssignment.registration_id.in_(registration_ids),
        TournamentMemberTrialEventAssignment.membership_id.in_(membership_ids),
    ).order_by(TournamentMemberTrialEventAssignment.id.asc()).all()
    return [
        {'registration_id': row.registration_id, 'membership_id': row.membership_id,
         'name': row.event_name, 'division': row.event_division}
        for row in rows
    ]


def _null_event_names(club_test_ids, es_test_ids):
    return {
        TEST_KIND_CLUB: latest_create_event_names(TEST_KIND_CLUB, club_test_ids),
        TEST_KIND_ES: latest_create_event_names(TEST_KIND_ES, es_test_ids),
    }


def _attempt_counts(club_test_ids, es_test_ids, membership_ids):
    return {
        TEST_KIND_CLUB: completed_attempt_counts(TEST_KIND_CLUB, club_test_ids, membership_ids),
        TEST_KIND_ES: completed_attempt_counts(TEST_KIND_ES, es_test_ids, membership_ids),
    }


def _member_test_entry(snapshot, membership_id, completed_count, ended, now):
    has_completed = completed_count > 0
    released = scores_released(snapshot.kind, snapshot, now)
    startable, reason = can_start_attempt(snapshot, completed_count, now)
    payload = member_test_payload(snapshot)
    payload.update({
        'completedAttempts': completed_count,
        'hasCompletedAttempt': has_completed,
        'scoresReleased': released,
        'canViewResults': can_view_results(has_completed, released),
        'tournamentEnded': ended,
        'canStartAttempt': startable,
        'availabilityReason': reason,
    })
    return payload


def build_member_test_feed(user, include_exhausted=False):
    """Per registered tournament: the member's events, trial events and general tests.

    Tests the member has used up every attempt on are left out unless
    ``include_exhausted`` is set.
    """
    now = utcnow_naive()
    memberships = _member_memberships(user.id)
    if not memberships:
        return []

    # One registration per tournament, bound to the membership it covers.
    selected = []
    seen_tournaments = set()
    for registration in _confirmed_registrations(memberships):
        tournament_id = registration['tournament']['id']
        if tournament_id in seen_tournaments:
            continue
        membership = _match_membership(registration, memberships)
        if not membership:
            continue
        seen_tournaments.add(tournament_id)
        selected.append((registration, membership))
    if not selected:
        return []

    registration_ids = [registration['id'] for registration, _ in selected]
    membership_ids = sorted({membership['id'] for _, membership in selected})
    tournament_ids = [registration['tournament']['id'] for registration, _ in selected]

    event_rows, trial_rows, club_tests, es_tests = gather(
        (_assigned_events, registration_ids, membership_ids),
        (_assigned_trial_events, registration_ids, membership_ids),
        (published_tournament_tests, tournament_ids),
        (es_tests_for_tournaments, tournament_ids, True),
    )

    all_tests = club_tests + es_tests
    club_ids = [t.id for t in club_tests]
    es_ids = [t.id for t in es_tests]
    names_by_kind, counts_by_kind = gather(
        (_null_event_names,
         [t.id for t in club_tests if t.event_id is None],
         [t.id for t in es_tests if t.event_id is None]),
        (_attempt_counts, club_ids, es_ids, membership_ids),
    )

    tests_by_tournament = {}
    for snapshot in all_tests:
        tests_by_tournament.setdefault(snapshot.tournament_id, []).append(snapshot)

    feed = []
    for registration, membership in selected:
        registration_id = registration['id']
        membership_id = membership['id']
        tournament_id = registration['tournament']['id']
        ended = registration['tournament_ended']

        assigned_events = []
        seen_event_ids = set()
        for row in event_rows:
            if row['registration_id'] != registration_id or row['membership_id'] != membership_id:
                continue
            if row['event']['id'] in seen_event_ids:
                continue
            seen_event_ids.add(row['event']['id'])
            assigned_events.append(row['event'])

        assigned_trials = {}
        for row in trial_rows:
            if row['registration_id'] != registration_id or row['membership_id'] != membership_id:
                continue
            assigned_trials.setdefault(name_key(row['name']), {
                'id': None, 'name': row['name'], 'division': row['division'],
            })

        event_buckets = {event['id']: [] for event in assigned_events}
        trial_buckets = {key: [] for key in assigned_trials}
        general_tests = []

        for snapshot in tests_by_tournament.get(tournament_id, []):
            completed = counts_by_kind[snapshot.kind].get((membership_id, snapshot.id), 0)
            if not include_exhausted and attempts_exhausted(snapshot.max_attempts, completed):
                continue

            if snapshot.event_id is not None:
                bucket = event_buckets.get(snapshot.event_id)
            else:
                trial_name = names_by_kind[snapshot.kind].get(snapshot.id)
                if trial_name is None:
                    bucket = general_tests
                else:
                    bucket = trial_buckets.get(name_key(trial_name))
            if bucket is None:
                continue
            bucket.append(_member_test_entry(snapshot, membership_id, completed, ended, now))

        feed.append({
            'tournament': dict(registration['tournament'], ended=ended),
            'registration': {
                'id': registration_id,
                'club': registration['club'],
                'team': registration['team'],
                'membershipId': membership_id,
            },
            'events': [
                {'event': event, 'tests': event_buckets[event['id']]}
                for event in assigned_events
            ],
            'trialEvents': [
                {'event': trial_event, 'tests': trial_buckets[key]}
                for key, trial_event in assigned_trials.items()
            ],
            'generalTests': general_tests,
        })
    return feed


# ── Staff management feed ─────────────────────────────────────────────

def _event_key(event_id=None, trial_name=None):
    if event_id is not None:
        return ('event', event_id)
    return ('trial', name_key(trial_name))


def build_staff_test_feed(user, include_questions=True):
    """Per authority: manageable events and trial events, each with its ES tests.

    Tests are partitioned by their own ``tournament_id`` and looked up by the
    authority's tournament id, so a test can never surface under another tournament.
    """
    authorities = collect_authorities(user.id, verified_email(user))
    if not authorities:
        return []

    tournament_ids = [authority.tournament_id for authority in authorities]
    hosting_map, es_tests = gather(
        (hosting_divisions, tournament_ids),
        (es_tests_for_tournaments, tournament_ids, False, include_questions),
    )
    accesses = resolve_event_access(authorities, hosting_map)
    trial_names = latest_create_event_names(
        TEST_KIND_ES, [test.id for test in es_tests if test.event_id is None],
    )

    tests_by_tournament = {}
    for test in es_tests:
        if test.event_id is not None:
            key = _event_key(event_id=test.event_id)
        elif test.id in trial_names:
            key = _event_key(trial_name=trial_names[test.id])
        else:
            continue
        tests_by_tournament.setdefault(test.tournament_id, {}).setdefault(key, []).append(test)

    feed = []
    for access in accesses:
        authority = access.authority
        tournament = authority.tournament
        tournament_tests = tests_by_tournament.get(authority.tournament_id, {})

        entries = [
            (_event_key(event_id=event['id']),
             {'id': event['id'], 'name': event['name'], 'division': event['division']})
            for event in access.events
        ]
        seen_trials = set()
        for trial_event in access.trial_events:
            key = _event_key(trial_name=trial_event.name)
            if key in seen_trials:
                continue
            seen_trials.add(key)
            entries.append((key, {'id': None, 'name': trial_event.name, 'division': trial_event.division}))
        entries.sort(key=lambda entry: (entry[1]['name'].lower(), entry[1]['id'] is None))

        events = []
        for key, event in entries:
            tests = [
                staff_test_payload(test, include_questions)
                for test in tournament_tests.get(key, [])
            ]
            events.append({'event': event, 'tests': tests})

        entry = authority.to_dict()
        entry.update({
            'tournament': {
                'id': tournament['id'],
                'name': tournament['name'],
                'division': access.division,
                'startDate': tournament['start_date'],
                'slug': tournament['slug'],
            },
            'events': events,
        })
        feed.append(entry)
    return feed


def find_member_test(user, test_kind, test_id):
    """Locate one test in the member's feed as ``(feed_item, test_entry)``, or ``None``."""
    for item in build_member_test_feed(user, include_exhausted=True):
        buckets = [bucket['tests'] for bucket in item['events']]
        buckets.extend(bucket['tests'] for bucket in item['trialEvents'])
        buckets.append(item['generalTests'])
        for tests in buckets:
            for entry in tests:
                if entry['kind'] == test_kind and entry['id'] == test_id:
                    return item, entry
    return None
