"""Catalog event lookups, division expansion and first-run seeding."""

import json
import re
from pathlib import Path

from tourney_portal.app import db
from tourney_portal.models import Event, DIVISION_B, DIVISION_C, DIVISION_BOTH

EVENT_DATA_FILE = Path(__file__).resolve().parent.parent / 'data' / 'events.json'
CATALOG_DIVISIONS = (DIVISION_B, DIVISION_C)


def divisions_for(division):
    """Expand a tournament/registration division into catalog divisions."""
    normalized = str(division or '').strip().upper()
    if normalized == DIVISION_BOTH:
        return CATALOG_DIVISIONS
    if normalized in CATALOG_DIVISIONS:
        return (normalized,)
    return ()


def effective_division(tournament_division, hosting_division=None):
    """The hosting request's division, when present, overrides the tournament's own."""
    hosting = str(hosting_division or '').strip().upper()
    if hosting in (DIVISION_B, DIVISION_C, DIVISION_BOTH):
        return hosting
    return str(tournament_division or '').strip().upper()


def slugify(name):
    return re.sub(r'[^a-z0-9]+', '-', str(name or '').strip().lower()).strip('-')


def fetch_events_by_division(divisions):
    """Fetch the catalog for every requested division in one query, keyed by division."""
    wanted = sorted({division for division in divisions if division in CATALOG_DIVISIONS})
    grouped = {division: [] for division in wanted}
    if not wanted:
        return grouped
    events = Event.query.filter(
        Event.division.in_(wanted),
    ).order_by(Event.name.asc(), Event.id.asc()).all()
    for event in events:
        grouped[event.division].append(event.to_dict())
    return grouped


def load_event_catalog():
    with EVENT_DATA_FILE.open('r', encoding='utf-8') as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict):
        raise ValueError('Event catalog must be a JSON object keyed by division.')
    return payload


def seed_events():
    """Insert the event catalog only when the table is empty."""
    if Event.query.first():
        return 0

    payload = load_event_catalog()
    created = 0
    try:
        for division in CATALOG_DIVISIONS:
            seen = set()
            for raw_name in payload.get(division) or []:
                name = str(raw_name or '').strip()
                slug = slugify(name)
                if not slug or slug in seen:
                    continue
                seen.add(slug)
                db.session.add(Event(name=name, slug=slug, division=division))
                created += 1
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return created
