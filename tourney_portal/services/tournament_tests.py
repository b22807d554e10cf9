"""Placing club tests into a tournament.

A tournament director links a club's test to the tournament, optionally
bound to one catalog event. The event must sit in the tournament's effective
division, and the test's club must hold a confirmed registration.
"""
import logging

from tourney_portal.app import db
from tourney_portal.auth_utils import verified_email
from tourney_portal.errors import AuthorizationError, NotFoundError, ValidationError
from tourney_portal.models import Event, Test, Tournament, TournamentRegistration, TournamentTest
from tourney_portal.services.authority import authority_for_tournament
from tourney_portal.services.catalog import divisions_for, effective_division

logger = logging.getLogger(__name__)


def _optional_id(body, key):
    value = body.get(key)
    if value in (None, ''):
        return None
    if isinstance(value, bool):
        raise ValidationError('Invalid input')
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError('Invalid input')


def _require_director(user, tournament_id):
    authority = authority_for_tournament(user.id, verified_email(user), tournament_id)
    if not authority or not authority.is_director:
        raise AuthorizationError('Only tournament admins can assign tests')


def assign_club_test(user, tournament_id, body):
    """Create or update the tournament link for a club test.

    Returns ``(link, created)``.
    """
    tournament = db.session.get(Tournament, tournament_id)
    if not tournament:
        raise NotFoundError('Tournament not found')
    _require_director(user, tournament.id)

    if not isinstance(body, dict):
        raise ValidationError('Invalid input')
    test_id = _optional_id(body, 'testId')
    if test_id is None:
        raise ValidationError('Invalid input')
    event_id = _optional_id(body, 'eventId')

    test = db.session.get(Test, test_id)
    if not test:
        raise NotFoundError('Test not found')

    registered = TournamentRegistration.query.filter_by(
        tournament_id=tournament.id, club_id=test.club_id, status='CONFIRMED',
    ).first()
    if not registered:
        raise ValidationError('The test\'s club is not registered for this tournament')

    if event_id is not None:
        event = db.session.get(Event, event_id)
        if not event:
            raise NotFoundError('Event not found')
        hosting_division = tournament.hosting_request.division if tournament.hosting_request else None
        if event.division not in divisions_for(effective_division(tournament.division, hosting_division)):
            raise ValidationError('Event does not match tournament division')

    link = TournamentTest.query.filter_by(tournament_id=tournament.id, test_id=test.id).first()
    created = link is None
    if created:
        link = TournamentTest(tournament_id=tournament.id, test_id=test.id)
        db.session.add(link)
    link.event_id = event_id
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        'User %s %s club test %s in tournament %s (event %s)',
        user.id, 'linked' if created else 'relinked', test.id, tournament.id, event_id,
    )
    return link, created
