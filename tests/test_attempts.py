"""Tests for starting and submitting test attempts."""
import json
from datetime import timedelta

from tourney_portal.app import db
from tourney_portal.models import (
    ESTest, ESTestAttempt, TournamentMemberEventAssignment, TournamentRegistration,
    ATTEMPT_SUBMITTED, TEST_KIND_ES, TEST_PUBLISHED,
)
from tourney_portal.services.audit import ACTION_CREATE, record_test_audit
from tourney_portal.time_utils import utcnow_naive


def _setup(build, **test_settings):
    anatomy = build.event('Anatomy and Physiology')
    tournament = build.tournament()
    coach = build.user('coach')
    club = build.club()
    team = build.team(club)
    build.admin(coach, club)
    student = build.user('student')
    seat = build.member(student, club, team=team)

    registration = TournamentRegistration(
        tournament_id=tournament.id, club_id=club.id, team_id=team.id, registered_by_id=coach.id,
    )
    registration.member_event_assignments.append(
        TournamentMemberEventAssignment(membership_id=seat.id, event_id=anatomy.id)
    )
    test_settings.setdefault('status', TEST_PUBLISHED)
    test = ESTest(tournament_id=tournament.id, event_id=anatomy.id, name='Anatomy', **test_settings)
    db.session.add_all([registration, test])
    db.session.flush()
    record_test_audit(TEST_KIND_ES, test.id, ACTION_CREATE, details={'eventName': anatomy.name})
    db.session.commit()
    return student, seat, test


def _start(client, build, user, test_id, kind='es'):
    return client.post(f'/api/testing/tests/{kind}/{test_id}/attempts/start', headers=build.headers(user))


def test_start_resume_and_submit(client, build):
    student, seat, test = _setup(build)

    res = _start(client, build, student, test.id)
    assert res.status_code == 201
    data = json.loads(res.data)
    attempt = data['attempt']
    assert data['resumed'] is False
    assert attempt['status'] == 'IN_PROGRESS'
    assert attempt['membership_id'] == seat.id
    assert attempt['kind'] == TEST_KIND_ES

    res = _start(client, build, student, test.id)
    assert res.status_code == 200
    data = json.loads(res.data)
    assert data['resumed'] is True
    assert data['attempt']['id'] == attempt['id']

    res = client.post(f'/api/testing/attempts/es/{attempt["id"]}/submit', headers=build.headers(student))
    assert res.status_code == 200
    submitted = json.loads(res.data)['attempt']
    assert submitted['status'] == ATTEMPT_SUBMITTED
    assert submitted['submitted_at'] is not None

    res = client.post(f'/api/testing/attempts/es/{attempt["id"]}/submit', headers=build.headers(student))
    assert res.status_code == 409


def test_start_blocked_after_max_attempts(client, build):
    student, seat, test = _setup(build, max_attempts=1)
    db.session.add(ESTestAttempt(test_id=test.id, membership_id=seat.id, status=ATTEMPT_SUBMITTED))
    db.session.commit()

    res = _start(client, build, student, test.id)
    assert res.status_code == 403
    assert json.loads(res.data)['error'] == 'Maximum attempts reached'


def test_start_blocked_before_window_opens(client, build):
    student, seat, test = _setup(build, start_at=utcnow_naive() + timedelta(hours=1))
    res = _start(client, build, student, test.id)
    assert res.status_code == 403
    assert json.loads(res.data)['error'] == 'Test has not started yet'


def test_start_requires_entitlement(client, build):
    student, seat, test = _setup(build)
    outsider = build.user('outsider')
    res = _start(client, build, outsider, test.id)
    assert res.status_code == 403
    assert 'not registered for an event' in json.loads(res.data)['error']


def test_start_unknown_test_or_kind(client, build):
    student, seat, test = _setup(build)
    assert _start(client, build, student, 999).status_code == 404
    assert _start(client, build, student, test.id, kind='quiz').status_code == 404


def test_submit_someone_elses_attempt(client, build):
    student, seat, test = _setup(build)
    attempt_id = json.loads(_start(client, build, student, test.id).data)['attempt']['id']
    outsider = build.user('outsider')

    res = client.post(f'/api/testing/attempts/es/{attempt_id}/submit', headers=build.headers(outsider))
    assert res.status_code == 404
