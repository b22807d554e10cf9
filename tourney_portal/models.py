import json
from tourney_portal.app import db
from tourney_portal.time_utils import utcnow_naive, to_iso


def _safe_json(raw_value, fallback=None):
    if fallback is None:
        fallback = {}
    if not raw_value:
        return fallback
    try:
        return json.loads(raw_value)
    except (TypeError, ValueError):
        return fallback


DIVISION_B = 'B'
DIVISION_C = 'C'
DIVISION_BOTH = 'B&C'

ROLE_ADMIN = 'ADMIN'
ROLE_MEMBER = 'MEMBER'

STAFF_EVENT_SUPERVISOR = 'EVENT_SUPERVISOR'
STAFF_TOURNAMENT_DIRECTOR = 'TOURNAMENT_DIRECTOR'

TEST_DRAFT = 'DRAFT'
TEST_PUBLISHED = 'PUBLISHED'
TEST_CLOSED = 'CLOSED'

ATTEMPT_IN_PROGRESS = 'IN_PROGRESS'
ATTEMPT_SUBMITTED = 'SUBMITTED'
ATTEMPT_GRADED = 'GRADED'
COMPLETED_ATTEMPT_STATUSES = (ATTEMPT_SUBMITTED, ATTEMPT_GRADED)

TEST_KIND_CLUB = 'TEST'
TEST_KIND_ES = 'ES_TEST'


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    name = db.Column(db.String(120), default='')
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    def to_dict(self):
        return {
            'id': self.id, 'username': self.username, 'email': self.email,
            'name': self.name, 'created_at': to_iso(self.created_at),
        }


# ── Clubs & teams ─────────────────────────────────────────────────────

class Club(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    division = db.Column(db.String(3), default=DIVISION_C, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    def to_dict(self):
        return {'id': self.id, 'name': self.name, 'division': self.division}


class Team(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    club_id = db.Column(db.Integer, db.ForeignKey('club.id'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    club = db.relationship('Club', backref='teams')

    def to_dict(self):
        return {'id': self.id, 'club_id': self.club_id, 'name': self.name}


class Membership(db.Model):
    """A user's seat in a club, optionally rostered onto one of its teams."""
    __table_args__ = (
        db.UniqueConstraint('user_id', 'club_id', name='uq_membership_user_club'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    club_id = db.Column(db.Integer, db.ForeignKey('club.id'), nullable=False, index=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=True, index=True)
    role = db.Column(db.String(20), default=ROLE_MEMBER, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    user = db.relationship('User', backref='memberships')
    club = db.relationship('Club', backref='memberships')
    team = db.relationship('Team', backref='memberships')

    def to_dict(self):
        return {
            'id': self.id, 'user_id': self.user_id, 'club_id': self.club_id,
            'team_id': self.team_id, 'role': self.role,
        }


# ── Event catalog ─────────────────────────────────────────────────────

class Event(db.Model):
    __table_args__ = (
        db.UniqueConstraint('slug', 'division', name='uq_event_slug_division'),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(200), nullable=False)
    division = db.Column(db.String(1), nullable=False, index=True)

    def to_dict(self):
        return {
            'id': self.id, 'name': self.name, 'slug': self.slug,
            'division': self.division,
        }


# ── Tournaments ───────────────────────────────────────────────────────

class TournamentHostingRequest(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tournament_name = db.Column(db.String(200), nullable=False)
    director_name = db.Column(db.String(200), default='')
    director_email = db.Column(db.String(200), nullable=False, index=True)
    # Registration division; 'B&C' widens eligibility beyond the tournament's own division.
    division = db.Column(db.String(3), nullable=False)
    status = db.Column(db.String(20), default='PENDING', nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    def to_dict(self):
        return {
            'id': self.id, 'tournament_name': self.tournament_name,
            'director_name': self.director_name,
            'director_email': self.director_email,
            'division': self.division, 'status': self.status,
        }


class Tournament(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(200), default='')
    division = db.Column(db.String(3), default=DIVISION_C, nullable=False)
    location = db.Column(db.String(300), default='')
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.Time, nullable=True)
    trial_events = db.Column(db.Text, nullable=True)  # JSON: ["name", ...] or [{"name", "division"}, ...]
    created_by_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True, index=True)
    hosting_request_id = db.Column(
        db.Integer, db.ForeignKey('tournament_hosting_request.id'), nullable=True, unique=True,
    )
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    created_by = db.relationship('User', backref='created_tournaments')
    hosting_request = db.relationship(
        'TournamentHostingRequest',
        backref=db.backref('tournament', uselist=False),
    )

    def to_dict(self):
        return {
            'id': self.id, 'name': self.name, 'slug': self.slug,
            'division': self.division, 'location': self.location,
            'start_date': to_iso(self.start_date),
            'end_date': to_iso(self.end_date),
            'end_time': self.end_time.isoformat() if self.end_time else None,
        }


class TournamentAdmin(db.Model):
    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'user_id', name='uq_tournament_admin'),
    )

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournament.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    tournament = db.relationship('Tournament', backref='admins')


class TournamentStaff(db.Model):
    """Staff invitation; scoped to catalog events via join rows or trial events by name."""
    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournament.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True, index=True)
    email = db.Column(db.String(200), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=True)
    role = db.Column(db.String(30), default=STAFF_EVENT_SUPERVISOR, nullable=False)
    status = db.Column(db.String(20), default='PENDING', nullable=False)
    trial_events = db.Column(db.Text, nullable=True)
    invited_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    accepted_at = db.Column(db.DateTime, nullable=True)

    tournament = db.relationship('Tournament', backref='staff')
    events = db.relationship('TournamentStaffEvent', backref='staff', lazy='selectin',
                             cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id, 'tournament_id': self.tournament_id,
            'user_id': self.user_id, 'email': self.email, 'name': self.name,
            'role': self.role, 'status': self.status,
            'invited_at': to_iso(self.invited_at),
            'accepted_at': to_iso(self.accepted_at),
        }


class TournamentStaffEvent(db.Model):
    __table_args__ = (
        db.UniqueConstraint('staff_id', 'event_id', name='uq_staff_event'),
    )

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey('tournament_staff.id'), nullable=False, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey('event.id'), nullable=False)

    event = db.relationship('Event', lazy='joined')


# ── Registrations ─────────────────────────────────────────────────────

class TournamentRegistration(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournament.id'), nullable=False, index=True)
    club_id = db.Column(db.Integer, db.ForeignKey('club.id'), nullable=False, index=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=True, index=True)
    registered_by_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    status = db.Column(db.String(20), default='CONFIRMED', nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    tournament = db.relationship('Tournament', backref='registrations')
    club = db.relationship('Club')
    team = db.relationship('Team')
    event_selections = db.relationship(
        'TournamentEventSelection', backref='registration', lazy='selectin',
        cascade='all, delete-orphan',
    )
    trial_event_selections = db.relationship(
        'TournamentTrialEventSelection', backref='registration', lazy='selectin',
        cascade='all, delete-orphan',
    )
    member_event_assignments = db.relationship(
        'TournamentMemberEventAssignment', backref='registration', lazy='selectin',
        cascade='all, delete-orphan',
    )
    member_trial_event_assignments = db.relationship(
        'TournamentMemberTrialEventAssignment', backref='registration', lazy='selectin',
        cascade='all, delete-orphan',
    )

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'status': self.status,
            'club': self.club.to_dict() if self.club else None,
            'team': self.team.to_dict() if self.team else None,
            'event_selections': [
                row.event.to_dict() for row in self.event_selections if row.event
            ],
            'trial_event_selections': [
                {'name': row.event_name, 'division': row.event_division}
                for row in self.trial_event_selections
            ],
            'member_event_assignments': [
                {'membership_id': row.membership_id, 'event_id': row.event_id}
                for row in self.member_event_assignments
            ],
            'member_trial_event_assignments': [
                {
                    'membership_id': row.membership_id,
                    'event_name': row.event_name,
                    'event_division': row.event_division,
                }
                for row in self.member_trial_event_assignments
            ],
            'created_at': to_iso(self.created_at),
        }


class TournamentEventSelection(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    registration_id = db.Column(
        db.Integer, db.ForeignKey('tournament_registration.id'), nullable=False, index=True,
    )
    event_id = db.Column(db.Integer, db.ForeignKey('event.id'), nullable=False)

    event = db.relationship('Event', lazy='joined')


class TournamentTrialEventSelection(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    registration_id = db.Column(
        db.Integer, db.ForeignKey('tournament_registration.id'), nullable=False, index=True,
    )
    event_name = db.Column(db.String(200), nullable=False)
    event_division = db.Column(db.String(1), nullable=False)


class TournamentMemberEventAssignment(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    registration_id = db.Column(
        db.Integer, db.ForeignKey('tournament_registration.id'), nullable=False, index=True,
    )
    membership_id = db.Column(db.Integer, db.ForeignKey('membership.id'), nullable=False, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey('event.id'), nullable=False)

    event = db.relationship('Event', lazy='joined')


class TournamentMemberTrialEventAssignment(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    registration_id = db.Column(
        db.Integer, db.ForeignKey('tournament_registration.id'), nullable=False, index=True,
    )
    membership_id = db.Column(db.Integer, db.ForeignKey('membership.id'), nullable=False, index=True)
    event_name = db.Column(db.String(200), nullable=False)
    event_division = db.Column(db.String(1), nullable=False)


# ── Tests (club-scoped) ───────────────────────────────────────────────

class _TestSettingsMixin:
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    instructions = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), default=TEST_DRAFT, nullable=False)
    duration_minutes = db.Column(db.Integer, default=60)
    start_at = db.Column(db.DateTime, nullable=True)
    end_at = db.Column(db.DateTime, nullable=True)
    allow_late_until = db.Column(db.DateTime, nullable=True)
    require_fullscreen = db.Column(db.Boolean, default=True)
    allow_calculator = db.Column(db.Boolean, default=False)
    calculator_type = db.Column(db.String(20), nullable=True)  # FOUR_FUNCTION, SCIENTIFIC, GRAPHING
    allow_note_sheet = db.Column(db.Boolean, default=False)
    note_sheet_instructions = db.Column(db.Text, nullable=True)
    max_attempts = db.Column(db.Integer, nullable=True)
    score_release_mode = db.Column(db.String(30), nullable=True)  # NONE, SCORE_ONLY, SCORE_WITH_WRONG, FULL_TEST
    release_scores_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    updated_at = db.Column(db.DateTime, default=lambda: utcnow_naive(),
                           onupdate=lambda: utcnow_naive())

    def settings_dict(self):
        return {
            'name': self.name,
            'description': self.description,
            'instructions': self.instructions,
            'status': self.status,
            'duration_minutes': self.duration_minutes,
            'start_at': to_iso(self.start_at),
            'end_at': to_iso(self.end_at),
            'allow_late_until': to_iso(self.allow_late_until),
            'require_fullscreen': bool(self.require_fullscreen),
            'allow_calculator': bool(self.allow_calculator),
            'calculator_type': self.calculator_type,
            'allow_note_sheet': bool(self.allow_note_sheet),
            'note_sheet_instructions': self.note_sheet_instructions,
            'max_attempts': self.max_attempts,
            'score_release_mode': self.score_release_mode,
            'release_scores_at': to_iso(self.release_scores_at),
        }


class Test(_TestSettingsMixin, db.Model):
    __test__ = False  # keep pytest from collecting the model

    id = db.Column(db.Integer, primary_key=True)
    club_id = db.Column(db.Integer, db.ForeignKey('club.id'), nullable=False, index=True)

    club = db.relationship('Club', backref='tests')
    questions = db.relationship('TestQuestion', backref='test', order_by='TestQuestion.order',
                                cascade='all, delete-orphan')


class TestQuestion(db.Model):
    __test__ = False

    id = db.Column(db.Integer, primary_key=True)
    test_id = db.Column(db.Integer, db.ForeignKey('test.id'), nullable=False, index=True)
    type = db.Column(db.String(20), nullable=False)
    prompt_md = db.Column(db.Text, nullable=False)
    explanation = db.Column(db.Text, nullable=True)
    points = db.Column(db.Float, default=1.0)
    order = db.Column(db.Integer, default=0)

    options = db.relationship('TestQuestionOption', backref='question',
                              order_by='TestQuestionOption.order',
                              cascade='all, delete-orphan')


class TestQuestionOption(db.Model):
    __test__ = False

    id = db.Column(db.Integer, primary_key=True)
    question_id = db.Column(db.Integer, db.ForeignKey('test_question.id'), nullable=False, index=True)
    label = db.Column(db.Text, nullable=False)
    is_correct = db.Column(db.Boolean, default=False)
    order = db.Column(db.Integer, default=0)


class TournamentTest(db.Model):
    """Places a club Test into a tournament, optionally bound to a catalog event."""
    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'test_id', name='uq_tournament_test'),
    )

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournament.id'), nullable=False, index=True)
    test_id = db.Column(db.Integer, db.ForeignKey('test.id'), nullable=False, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey('event.id'), nullable=True)

    tournament = db.relationship('Tournament')
    test = db.relationship('Test', backref='tournament_links')
    event = db.relationship('Event')

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'test_id': self.test_id,
            'event_id': self.event_id,
            'event': self.event.to_dict() if self.event else None,
        }


class TestAttempt(db.Model):
    __test__ = False

    id = db.Column(db.Integer, primary_key=True)
    test_id = db.Column(db.Integer, db.ForeignKey('test.id'), nullable=False, index=True)
    membership_id = db.Column(db.Integer, db.ForeignKey('membership.id'), nullable=False, index=True)
    status = db.Column(db.String(20), default=ATTEMPT_IN_PROGRESS, nullable=False)
    started_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    submitted_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id, 'test_id': self.test_id, 'kind': TEST_KIND_CLUB,
            'membership_id': self.membership_id, 'status': self.status,
            'started_at': to_iso(self.started_at),
            'submitted_at': to_iso(self.submitted_at),
        }


# ── ES tests (tournament-scoped, authored by staff) ───────────────────

class ESTest(_TestSettingsMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournament.id'), nullable=False, index=True)
    staff_id = db.Column(db.Integer, db.ForeignKey('tournament_staff.id'), nullable=True)
    created_by_staff_id = db.Column(db.Integer, db.ForeignKey('tournament_staff.id'), nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    event_id = db.Column(db.Integer, db.ForeignKey('event.id'), nullable=True)
    scores_released = db.Column(db.Boolean, default=False, nullable=False)

    tournament = db.relationship('Tournament', backref='es_tests')
    event = db.relationship('Event')
    staff = db.relationship('TournamentStaff', foreign_keys=[staff_id])
    created_by_staff = db.relationship('TournamentStaff', foreign_keys=[created_by_staff_id])
    questions = db.relationship('ESTestQuestion', backref='test', order_by='ESTestQuestion.order',
                                cascade='all, delete-orphan')


class ESTestQuestion(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    test_id = db.Column(db.Integer, db.ForeignKey('es_test.id'), nullable=False, index=True)
    type = db.Column(db.String(20), nullable=False)
    prompt_md = db.Column(db.Text, nullable=False)
    explanation = db.Column(db.Text, nullable=True)
    points = db.Column(db.Float, default=1.0)
    order = db.Column(db.Integer, default=0)

    options = db.relationship('ESTestQuestionOption', backref='question',
                              order_by='ESTestQuestionOption.order',
                              cascade='all, delete-orphan')


class ESTestQuestionOption(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    question_id = db.Column(db.Integer, db.ForeignKey('es_test_question.id'), nullable=False, index=True)
    label = db.Column(db.Text, nullable=False)
    is_correct = db.Column(db.Boolean, default=False)
    order = db.Column(db.Integer, default=0)


class ESTestAttempt(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    test_id = db.Column(db.Integer, db.ForeignKey('es_test.id'), nullable=False, index=True)
    membership_id = db.Column(db.Integer, db.ForeignKey('membership.id'), nullable=False, index=True)
    status = db.Column(db.String(20), default=ATTEMPT_IN_PROGRESS, nullable=False)
    started_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    submitted_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id, 'test_id': self.test_id, 'kind': TEST_KIND_ES,
            'membership_id': self.membership_id, 'status': self.status,
            'started_at': to_iso(self.started_at),
            'submitted_at': to_iso(self.submitted_at),
        }


# ── Audit log ─────────────────────────────────────────────────────────

class TestAuditLog(db.Model):
    """Append-only create/update/delete history for Test and ESTest rows.

    ``test_id`` deliberately has no foreign key: entries must outlive the test,
    and for trial-event tests the CREATE entry is the only record of which
    trial event the test was written for.
    """
    __test__ = False
    __table_args__ = (
        db.Index('ix_test_audit_kind_test_action', 'test_kind', 'test_id', 'action'),
    )

    id = db.Column(db.Integer, primary_key=True)
    test_kind = db.Column(db.String(10), nullable=False)
    test_id = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(10), nullable=False)  # CREATE, UPDATE, DELETE
    actor_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    details = db.Column(db.Text, default='{}')
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive(), index=True)

    @property
    def details_data(self):
        data = _safe_json(self.details, {})
        return data if isinstance(data, dict) else {}

    def to_dict(self):
        return {
            'id': self.id, 'test_kind': self.test_kind, 'test_id': self.test_id,
            'action': self.action, 'actor_user_id': self.actor_user_id,
            'details': self.details_data,
            'created_at': to_iso(self.created_at),
        }
