import json
from datetime import timedelta

import pytest
from werkzeug.security import generate_password_hash

from tourney_portal.app import create_app, db
from tourney_portal.auth_utils import generate_token
from tourney_portal.models import (
    Club, Event, Membership, Team, Tournament, User, TournamentHostingRequest, TournamentStaff,
    TournamentStaffEvent, ROLE_ADMIN, ROLE_MEMBER, STAFF_EVENT_SUPERVISOR,
)
from tourney_portal.time_utils import utcnow_naive


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(client):
    """Register a user and return auth headers."""
    res = client.post('/api/auth/register', json={
        'username': 'testuser', 'email': 'test@example.com',
        'password': 'password123', 'name': 'Test User',
    })
    token = res.get_json()['token']
    return {'Authorization': f'Bearer {token}', 'Content-Type': 'application/json'}


class PortalBuilder:
    """Creates rows directly through the session for service and route tests."""

    def user(self, username, email=None):
        user = User(
            username=username,
            email=email or f'{username}@example.com',
            password_hash=generate_password_hash('password123'),
            name=username.title(),
        )
        db.session.add(user)
        db.session.commit()
        return user

    def headers(self, user):
        return {'Authorization': f'Bearer {generate_token(user.id)}'}

    def club(self, name='Springfield High', division='C'):
        club = Club(name=name, division=division)
        db.session.add(club)
        db.session.commit()
        return club

    def team(self, club, name='Team A'):
        team = Team(club_id=club.id, name=name)
        db.session.add(team)
        db.session.commit()
        return team

    def member(self, user, club, team=None, role=ROLE_MEMBER):
        membership = Membership(
            user_id=user.id, club_id=club.id,
            team_id=team.id if team else None, role=role,
        )
        db.session.add(membership)
        db.session.commit()
        return membership

    def admin(self, user, club, team=None):
        return self.member(user, club, team=team, role=ROLE_ADMIN)

    def event(self, name, division='C'):
        event = Event(name=name, slug=name.lower().replace(' ', '-'), division=division)
        db.session.add(event)
        db.session.commit()
        return event

    def tournament(self, name='Regional Invitational', division='C', trial_events=None,
                   created_by=None, hosting_division=None, hosting_email='director@example.com',
                   hosting_status='APPROVED', ends_in=timedelta(days=2), end_time=None):
        hosting_request = None
        if hosting_division:
            hosting_request = TournamentHostingRequest(
                tournament_name=name, director_name='Dana Director',
                director_email=hosting_email, division=hosting_division,
                status=hosting_status,
            )
            db.session.add(hosting_request)
            db.session.flush()

        now = utcnow_naive()
        tournament = Tournament(
            name=name,
            slug=name.lower().replace(' ', '-'),
            division=division,
            start_date=now + ends_in - timedelta(days=1),
            end_date=now + ends_in,
            end_time=end_time,
            trial_events=json.dumps(trial_events) if isinstance(trial_events, list) else trial_events,
            created_by_id=created_by.id if created_by else None,
            hosting_request_id=hosting_request.id if hosting_request else None,
        )
        db.session.add(tournament)
        db.session.commit()
        return tournament

    def staff(self, tournament, email, user=None, role=STAFF_EVENT_SUPERVISOR, status='ACCEPTED',
              events=(), trial_events=None):
        staff = TournamentStaff(
            tournament_id=tournament.id,
            user_id=user.id if user else None,
            email=email,
            name='Staff Member',
            role=role,
            status=status,
            trial_events=json.dumps(trial_events) if trial_events is not None else None,
        )
        for event in events:
            staff.events.append(TournamentStaffEvent(event_id=event.id))
        db.session.add(staff)
        db.session.commit()
        return staff


@pytest.fixture
def build(app):
    return PortalBuilder()
