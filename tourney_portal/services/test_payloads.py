"""Detached snapshots and JSON payloads for club tests and ES tests.

Feeds load tests on worker threads, so rows are copied into ``TestSnapshot``
objects before their session goes away. Snapshots expose the same attribute
names as the models, which lets the attempt gating checks run on either.
"""
from sqlalchemy import func
from sqlalchemy.orm import joinedload, selectinload

from tourney_portal.app import db
from tourney_portal.models import (
    ESTest, ESTestQuestion, Test, TestQuestion, TournamentTest,
    TEST_KIND_CLUB, TEST_KIND_ES, TEST_PUBLISHED,
)
from tourney_portal.time_utils import to_iso

_SETTING_FIELDS = (
    'name', 'description', 'instructions', 'status', 'duration_minutes', 'start_at', 'end_at',
    'allow_late_until', 'require_fullscreen', 'allow_calculator', 'calculator_type',
    'allow_note_sheet', 'note_sheet_instructions', 'max_attempts', 'score_release_mode',
    'release_scores_at', 'created_at', 'updated_at',
)


class TestSnapshot:
    __test__ = False

    def __init__(self, kind, row, tournament_id, event_id, event=None, club=None,
                 question_count=0, scores_released=False, staff=None, created_by=None,
                 questions=None):
        self.kind = kind
        self.id = row.id
        self.tournament_id = tournament_id
        self.event_id = event_id
        self.event = event
        self.club = club
        self.question_count = question_count
        self.scores_released = bool(scores_released)
        self.staff = staff
        self.created_by = created_by
        self.questions = questions
        for field in _SETTING_FIELDS:
            setattr(self, field, getattr(row, field))


def _question_counts(question_model, test_ids):
    if not test_ids:
        return {}
    rows = db.session.query(question_model.test_id, func.count(question_model.id)).filter(
        question_model.test_id.in_(test_ids),
    ).group_by(question_model.test_id).all()
    return {test_id: int(count) for test_id, count in rows}


def _event_summary(event):
    if not event:
        return None
    return {'id': event.id, 'name': event.name, 'slug': event.slug, 'division': event.division}


def _staff_summary(staff):
    if not staff:
        return None
    return {'id': staff.id, 'name': staff.name, 'email': staff.email}


def question_payload(question):
    return {
        'id': question.id,
        'type': question.type,
        'promptMd': question.prompt_md,
        'explanation': question.explanation,
        'points': float(question.points or 0),
        'order': question.order,
        'options': [
            {'id': option.id, 'label': option.label, 'isCorrect': bool(option.is_correct),
             'order': option.order}
            for option in question.options
        ],
    }


def published_tournament_tests(tournament_ids):
    """Published club tests linked into any of the tournaments, as snapshots."""
    ids = sorted(set(tournament_ids or []))
    if not ids:
        return []
    links = TournamentTest.query.join(Test, TournamentTest.test_id == Test.id).options(
        joinedload(TournamentTest.test).joinedload(Test.club),
        joinedload(TournamentTest.event),
    ).filter(
        TournamentTest.tournament_id.in_(ids),
        Test.status == TEST_PUBLISHED,
    ).order_by(Test.created_at.asc(), Test.id.asc()).all()
    counts = _question_counts(TestQuestion, [link.test_id for link in links])
    return [
        TestSnapshot(
            TEST_KIND_CLUB, link.test, link.tournament_id, link.event_id,
            event=_event_summary(link.event),
            club={'id': link.test.club.id, 'name': link.test.club.name} if link.test.club else None,
            question_count=counts.get(link.test_id, 0),
        )
        for link in links
    ]


def es_tests_for_tournaments(tournament_ids, published_only=False, include_questions=False):
    """ES tests for any of the tournaments, newest first, as snapshots."""
    ids = sorted(set(tournament_ids or []))
    if not ids:
        return []
    query = ESTest.query.options(
        joinedload(ESTest.event),
        joinedload(ESTest.staff),
        joinedload(ESTest.created_by_staff),
    ).filter(ESTest.tournament_id.in_(ids))
    if include_questions:
        query = query.options(selectinload(ESTest.questions).selectinload(ESTestQuestion.options))
    if published_only:
        query = query.filter(ESTest.status == TEST_PUBLISHED)
    tests = query.order_by(ESTest.created_at.desc(), ESTest.id.desc()).all()
    counts = _question_counts(ESTestQuestion, [test.id for test in tests])
    return [
        TestSnapshot(
            TEST_KIND_ES, test, test.tournament_id, test.event_id,
            event=_event_summary(test.event),
            question_count=counts.get(test.id, 0),
            scores_released=test.scores_released,
            staff=_staff_summary(test.staff),
            created_by=_staff_summary(test.created_by_staff),
            questions=[question_payload(question) for question in test.questions]
            if include_questions else None,
        )
        for test in tests
    ]


def member_test_payload(snapshot):
    return {
        'id': snapshot.id,
        'kind': snapshot.kind,
        'isESTest': snapshot.kind == TEST_KIND_ES,
        'eventId': snapshot.event_id,
        'name': snapshot.name,
        'description': snapshot.description,
        'instructions': snapshot.instructions,
        'durationMinutes': snapshot.duration_minutes,
        'startAt': to_iso(snapshot.start_at),
        'endAt': to_iso(snapshot.end_at),
        'allowLateUntil': to_iso(snapshot.allow_late_until),
        'requireFullscreen': bool(snapshot.require_fullscreen),
        'allowCalculator': bool(snapshot.allow_calculator),
        'calculatorType': snapshot.calculator_type,
        'allowNoteSheet': bool(snapshot.allow_note_sheet),
        'noteSheetInstructions': snapshot.note_sheet_instructions,
        'maxAttempts': snapshot.max_attempts,
        'scoreReleaseMode': snapshot.score_release_mode,
        'releaseScoresAt': to_iso(snapshot.release_scores_at),
        'questionCount': snapshot.question_count,
        'club': snapshot.club,
    }


def staff_test_payload(snapshot, include_questions=True):
    payload = {
        'id': snapshot.id,
        'tournamentId': snapshot.tournament_id,
        'name': snapshot.name,
        'status': snapshot.status,
        'eventId': snapshot.event_id,
        'createdAt': to_iso(snapshot.created_at),
        'updatedAt': to_iso(snapshot.updated_at),
        'allowNoteSheet': bool(snapshot.allow_note_sheet),
        'scoresReleased': snapshot.scores_released,
        'event': {'id': snapshot.event['id'], 'name': snapshot.event['name']} if snapshot.event else None,
        'staff': snapshot.staff,
        'createdBy': snapshot.created_by,
    }
    if include_questions:
        payload['questions'] = snapshot.questions or []
    return payload


def es_test_detail(test):
    """Full payload for one ES test row, used by the create/update responses."""
    payload = test.settings_dict()
    payload.update({
        'id': test.id,
        'tournament_id': test.tournament_id,
        'event_id': test.event_id,
        'staff_id': test.staff_id,
        'created_by_staff_id': test.created_by_staff_id,
        'scores_released': bool(test.scores_released),
        'event': _event_summary(test.event),
        'questions': [question_payload(question) for question in test.questions],
    })
    return payload
