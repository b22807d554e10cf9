"""Tests for the event catalog."""
from tourney_portal.models import Event
from tourney_portal.services.catalog import (
    divisions_for, effective_division, fetch_events_by_division, load_event_catalog, seed_events,
)


def test_division_expansion():
    assert divisions_for('B&C') == ('B', 'C')
    assert divisions_for(' c ') == ('C',)
    assert divisions_for('X') == ()


def test_hosting_division_overrides_tournament_division():
    assert effective_division('C', 'B&C') == 'B&C'
    assert effective_division('C', None) == 'C'
    assert effective_division('B', 'bogus') == 'B'


def test_seed_events_runs_once(app):
    catalog = load_event_catalog()
    created = seed_events()
    assert created == Event.query.count()
    assert created > 0
    assert Event.query.filter_by(division='B').count() == len(set(catalog['B']))
    assert seed_events() == 0


def test_fetch_events_grouped_by_division(app, build):
    build.event('Road Scholar', division='B')
    build.event('Chemistry Lab', division='C')
    build.event('Anatomy and Physiology', division='C')

    grouped = fetch_events_by_division(['C', 'B', 'Z'])
    assert list(grouped) == ['B', 'C']
    assert [event['name'] for event in grouped['C']] == ['Anatomy and Physiology', 'Chemistry Lab']
